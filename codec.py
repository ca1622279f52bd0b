import csv
import io
import json
from datetime import date
from pathlib import PurePath
from typing import Any, Dict, List, Sequence, Tuple

import pandas as pd
from pydantic import TypeAdapter, ValidationError

from errors import (
    EmptyFieldsError,
    EmptyFileError,
    HeaderMismatchError,
    InvalidFileError,
    UnsupportedFormatError,
)
from logger import LOGGER
from schemas.station import UNSET_DATE, GasStation

SUPPORTED_FORMATS = (".csv", ".json")

# Wire names, in file column order.
CSV_COLUMNS = [
    "ID", "FullName", "global_id", "ShortName", "AdmArea", "District",
    "Address", "Owner", "TestDate", "geodata_center", "geoarea",
]

FIRST_HEADER_LINE = "".join(f'"{name}";' for name in CSV_COLUMNS)

SECOND_HEADER_LINE = (
    '"Код";"Полное официальное наименование";"global_id";"Сокращенное наименование";'
    '"Административный округ";"Район";"Адрес";"Наименование компании";"Дата проверки";'
    '"geodata_center";"geoarea";'
)

EXPORT_FILE_NAMES = {
    ".json": "Updated data.json",
    ".csv": "Updated data.csv",
}

_STATIONS_ADAPTER = TypeAdapter(List[GasStation])


def detect_format(file_name: str) -> str:
    """Returns the lower-cased extension ('.csv', '.json', ...) of an uploaded file."""
    return PurePath(file_name or "").suffix.lower()


def format_date(value: date) -> str:
    if value == UNSET_DATE:
        return ""
    return f"{value.day:02d}.{value.month:02d}.{value.year:04d}"


# =========================
# 🔹 VALIDATION
# =========================

def validate_records(records: Sequence[GasStation]) -> None:
    if not records:
        raise EmptyFileError()

    if all(record.is_blank() for record in records):
        raise EmptyFieldsError("All fields are empty or null.")

    if all(record.has_empty_field() for record in records):
        raise EmptyFieldsError("All fields of one type are empty or null.")


# =========================
# 🔹 CSV
# =========================

def read_csv(raw: bytes) -> List[GasStation]:
    try:
        text = raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise InvalidFileError("The file is not UTF-8 encoded.") from None

    lines = text.splitlines()
    if len(lines) < 2:
        raise InvalidFileError("Invalid file format: the file has fewer than 2 lines.")

    if lines[0].strip() != FIRST_HEADER_LINE or lines[1].strip() != SECOND_HEADER_LINE:
        raise HeaderMismatchError()

    try:
        frame = pd.read_csv(
            io.StringIO(text),
            sep=";",
            header=None,
            skiprows=2,
            dtype=str,
            keep_default_na=False,
        )
    except pd.errors.EmptyDataError:
        return []
    except (pd.errors.ParserError, ValueError) as e:
        raise InvalidFileError() from e

    if frame.shape[1] < len(CSV_COLUMNS):
        raise InvalidFileError()

    frame = frame.iloc[:, :len(CSV_COLUMNS)]
    frame.columns = CSV_COLUMNS

    try:
        return [GasStation.model_validate(row) for row in frame.to_dict(orient="records")]
    except ValidationError as e:
        raise InvalidFileError() from e


def write_csv(records: Sequence[GasStation]) -> bytes:
    rows: List[Dict[str, Any]] = []
    for record in records:
        row = record.model_dump(by_alias=True)
        row["TestDate"] = format_date(record.test_date)
        rows.append(row)

    frame = pd.DataFrame(rows, columns=CSV_COLUMNS)
    body = frame.to_csv(
        sep=";",
        header=False,
        index=False,
        quoting=csv.QUOTE_ALL,
        lineterminator="\n",
    )
    return (FIRST_HEADER_LINE + "\n" + SECOND_HEADER_LINE + "\n" + body).encode("utf-8")


# =========================
# 🔹 JSON
# =========================

def read_json(raw: bytes) -> List[GasStation]:
    try:
        return _STATIONS_ADAPTER.validate_json(raw)
    except (ValidationError, ValueError) as e:
        raise InvalidFileError() from e


def write_json(records: Sequence[GasStation]) -> bytes:
    payload = [record.model_dump(mode="json", by_alias=True) for record in records]
    return json.dumps(payload, ensure_ascii=False, indent=2).encode("utf-8")


# =========================
# 🔹 ENTRY POINTS
# =========================

def decode(raw: bytes, declared_format: str) -> Tuple[GasStation, ...]:
    """Parses and validates an uploaded file into a dataset."""
    fmt = declared_format.lower()
    if fmt == ".csv":
        records = read_csv(raw)
    elif fmt == ".json":
        records = read_json(raw)
    else:
        raise UnsupportedFormatError(fmt)

    validate_records(records)
    LOGGER.info("[CODEC] Parsed %d records from %s upload", len(records), fmt)
    return tuple(records)


def encode(records: Sequence[GasStation], declared_format: str) -> Tuple[bytes, str]:
    """Serializes a dataset; returns the file bytes and the export file name."""
    if not records:
        raise EmptyFileError("There are no records to write.")

    fmt = declared_format.lower()
    if fmt == ".csv":
        content = write_csv(records)
    elif fmt == ".json":
        content = write_json(records)
    else:
        raise UnsupportedFormatError(fmt)

    return content, EXPORT_FILE_NAMES[fmt]
