from typing import Iterable, List, Sequence, Tuple

from fields import FIELD_REGISTRY, RECORD_FIELDS, FieldId
from schemas.commands import MenuChoice, NavigationFrame

# =========================
# 🔹 ACTION TOKENS
# =========================

SORTING = "Sorting"
FILTRATION = "Filtration"
SORT_TEST_DATE_ASCENDING = "SortTestDateAscending"
SORT_TEST_DATE_DESCENDING = "SortTestDateDescending"
UNIVERSAL_SORT = "UniversalSort"
SORT_ASCENDING_FOR_UNIVERSAL_SIDE = "SortAscendingForUniversalSide"
SORT_DESCENDING_FOR_UNIVERSAL_SIDE = "SortDescendingForUniversalSide"
FILTER_DISTRICT = "FilterDistrict"
FILTER_OWNER = "FilterOwner"
FILTER_ADM_AREA_AND_OWNER = "FilterAdmAreaAndOwner"
MORE_DETAILED_FILTERING = "MoreDetailedFiltering"
UNIVERSAL_FILTER_THE_SAME_FIELD = "UniversalFilterTheSameField"
SEND_JSON_FILE = "SendJSONFile"
SEND_CSV_FILE = "SendCSVFile"
BACK = "Back"

UNIVERSAL_SORT_FIELD_PREFIX = "UniversalSortField_"
UNIVERSAL_FILTER_FIELD_PREFIX = "UniversalFilterField_"
UNIVERSAL_FILTER_SECOND_FIELD_PREFIX = "UniversalFilterSecondField_"


# =========================
# 🔹 TEXTS
# =========================

START_TEXT = (
    "👋 Hello, I am a bot that can filter and sort files of a specific format by their fields.\n\n"
    "📍 Send /help for detailed instructions.\n\n"
    "▶️ To begin, send a .csv or .json file."
)

HELP_TEXT = (
    "📍 After you send a file it is checked for correctness.\n\n"
    "🛠 Expected headers of a .csv file:\n\n"
    "1️⃣ First line:\n"
    "\"ID\";\"FullName\";\"global_id\";\"ShortName\";\"AdmArea\";\"District\";\"Address\";\"Owner\";\"TestDate\";\"geodata_center\";\"geoarea\";\n\n"
    "2️⃣ Second line:\n"
    "\"Код\";\"Полное официальное наименование\";\"global_id\";\"Сокращенное наименование\";\"Административный округ\";\"Район\";\"Адрес\";\"Наименование компании\";\"Дата проверки\";\"geodata_center\";\"geoarea\";\n\n"
    "✅ Once the file is processed you get a menu with actions.\n\n"
    "▶️ While the menu is open your messages are not processed, except when you are asked for filter values.\n\n"
    "◀️ At any moment you can go back and process the last uploaded file with other actions.\n\n"
    "🗂 The processed file can be downloaded in 2 formats: .json and .csv."
)

UNKNOWN_COMMAND_TEXT = "❌ Unknown command."
MENU_ACTIVE_TEXT = (
    "🛑 You are working with the menu, your messages are not processed.\n\n"
    "🔄 Send /help to see the instructions."
)
UPLOAD_FIRST_TEXT = "📄 Send a .csv or .json file first, then use the menu."
MENU_CLOSED_TEXT = "🔁 This menu is no longer active, your file is still loaded. Send it again to open a new menu."
FILE_PROCESSED_TEXT = "✅ File processed successfully."
GENERIC_FAILURE_TEXT = "⚠️ Something went wrong while processing your request. Send /start to begin again."
EXPORT_CAPTION = "🗂 Updated data:"
RETRY_FILTER_SUFFIX = "\n\n🔃 Try the search again:"

QUICK_REPLIES = ["/start", "/help"]

BACK_LABEL = "⬅️ Go back ⬅️"


def unknown_action_text(token: str) -> str:
    return f"unknown command: {token}"


def matches_found_text(count: int) -> str:
    return f"✅ Matches found: {count}."


def filter_prompt(field1: FieldId, field2: FieldId) -> str:
    """Asks for one value, or for two values on separate lines."""
    if field2 in (None, FieldId.NONE) or field1 == field2:
        return f"🔎 Enter the value to filter by field {field1.value}:"
    return (
        f"🔎 Enter the values to filter by fields {field1.value} and {field2.value}:\n"
        f"First line: {field1.value}\n"
        f"Second line: {field2.value}"
    )


# =========================
# 🔹 FRAMES
# =========================

def _choice(label: str, token: str) -> MenuChoice:
    return MenuChoice(label=label, token=token)


def _frame(name: str, prompt: str, rows: Iterable[Sequence[MenuChoice]]) -> NavigationFrame:
    return NavigationFrame(name=name, prompt=prompt, rows=tuple(tuple(row) for row in rows))


def _back_row() -> List[MenuChoice]:
    return [_choice(BACK_LABEL, BACK)]


def _field_rows(prefix: str, per_row: int = 3) -> List[List[MenuChoice]]:
    choices = [_choice(FIELD_REGISTRY[f].label, prefix + f.value) for f in RECORD_FIELDS]
    return [choices[i:i + per_row] for i in range(0, len(choices), per_row)]


def root_menu() -> NavigationFrame:
    return _frame("root", "Choose an action:", [
        [_choice("Sort the data.", SORTING)],
        [_choice("Filter the data.", FILTRATION)],
    ])


def sort_side_menu() -> NavigationFrame:
    return _frame("sort_side", "Choose an action:", [
        [_choice("Sort TestDate by ascending date.", SORT_TEST_DATE_ASCENDING)],
        [_choice("Sort TestDate by descending date.", SORT_TEST_DATE_DESCENDING)],
        [_choice("Go to all fields.", UNIVERSAL_SORT)],
        _back_row(),
    ])


def all_sort_fields_menu() -> NavigationFrame:
    return _frame("sort_fields", "Choose a field to sort by.", [
        *_field_rows(UNIVERSAL_SORT_FIELD_PREFIX),
        _back_row(),
    ])


def sort_direction_menu() -> NavigationFrame:
    return _frame("sort_direction", "Choose the sort direction.", [
        [_choice("🔼 Ascending 🔼", SORT_ASCENDING_FOR_UNIVERSAL_SIDE)],
        [_choice("🔽 Descending 🔽", SORT_DESCENDING_FOR_UNIVERSAL_SIDE)],
        _back_row(),
    ])


def filter_field_menu() -> NavigationFrame:
    return _frame("filter_field", "Filter by field:", [
        [_choice("District", FILTER_DISTRICT), _choice("Owner", FILTER_OWNER)],
        [_choice("AdmArea and Owner together", FILTER_ADM_AREA_AND_OWNER)],
        [_choice("Go to more detailed filtering", MORE_DETAILED_FILTERING)],
        _back_row(),
    ])


def first_filter_field_menu() -> NavigationFrame:
    return _frame("filter_first_field", "Choose the first field to filter by.", [
        *_field_rows(UNIVERSAL_FILTER_FIELD_PREFIX),
        _back_row(),
    ])


def second_filter_field_menu() -> NavigationFrame:
    return _frame("filter_second_field", "Choose the second field to filter by, or filter by the chosen field only.", [
        *_field_rows(UNIVERSAL_FILTER_SECOND_FIELD_PREFIX),
        [_choice("By the chosen field only", UNIVERSAL_FILTER_THE_SAME_FIELD)],
        _back_row(),
    ])


def export_menu(with_back: bool = True) -> NavigationFrame:
    rows: List[List[MenuChoice]] = [[_choice("JSON", SEND_JSON_FILE), _choice("CSV", SEND_CSV_FILE)]]
    if with_back:
        rows.append(_back_row())
    return _frame("export" if with_back else "export_after_filter", "Choose the file format.", rows)


def field_tokens(prefix: str) -> List[Tuple[str, FieldId]]:
    """(token, field) pairs for every record field under an action prefix."""
    return [(prefix + f.value, f) for f in RECORD_FIELDS]
