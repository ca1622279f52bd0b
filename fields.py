from dataclasses import dataclass
from datetime import date
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping

from errors import UnknownFieldError
from schemas.station import GasStation


class FieldId(str, Enum):
    """
    Identifiers of the record fields a user can sort or filter by.
    The values double as the suffix of the menu action tokens.
    """
    ID = "Id"
    FULL_NAME = "FullName"
    GLOBAL_ID = "GlobalId"
    SHORT_NAME = "ShortName"
    ADM_AREA = "AdmArea"
    DISTRICT = "District"
    ADDRESS = "Address"
    OWNER = "Owner"
    TEST_DATE = "TestDate"
    GEODATA_CENTER = "GeodataCenter"
    GEOAREA = "Geoarea"

    # --- Sentinels (never resolved by the registry) ---
    ADM_AREA_AND_OWNER = "AdmAreaAndOwner"
    NONE = "None"


class ValueType(str, Enum):
    INTEGER = "integer"
    TEXT = "text"
    DATE = "date"


@dataclass(frozen=True)
class FieldSpec:
    """Typed accessor for one record field."""
    field_id: FieldId
    value_type: ValueType
    attribute: str
    label: str

    def accessor(self, record: GasStation) -> Any:
        return getattr(record, self.attribute)

    def sort_key(self, record: GasStation) -> Any:
        # ints and dates order natively, str orders by code point
        return getattr(record, self.attribute)

    def compare(self, left: GasStation, right: GasStation) -> int:
        a, b = self.sort_key(left), self.sort_key(right)
        return (a > b) - (a < b)


ZERO_VALUES: Dict[ValueType, Any] = {
    ValueType.INTEGER: 0,
    ValueType.TEXT: "",
    ValueType.DATE: date.min,
}


def _spec(field_id: FieldId, value_type: ValueType, attribute: str, label: str) -> FieldSpec:
    return FieldSpec(field_id=field_id, value_type=value_type, attribute=attribute, label=label)


# =========================
# 🔹 FIELD REGISTRY
# =========================

FIELD_REGISTRY: Mapping[FieldId, FieldSpec] = MappingProxyType({
    FieldId.ID: _spec(FieldId.ID, ValueType.INTEGER, "id", "ID"),
    FieldId.FULL_NAME: _spec(FieldId.FULL_NAME, ValueType.TEXT, "full_name", "Full name"),
    FieldId.GLOBAL_ID: _spec(FieldId.GLOBAL_ID, ValueType.INTEGER, "global_id", "Global Id"),
    FieldId.SHORT_NAME: _spec(FieldId.SHORT_NAME, ValueType.TEXT, "short_name", "Short name"),
    FieldId.ADM_AREA: _spec(FieldId.ADM_AREA, ValueType.TEXT, "adm_area", "AdmArea"),
    FieldId.DISTRICT: _spec(FieldId.DISTRICT, ValueType.TEXT, "district", "District"),
    FieldId.ADDRESS: _spec(FieldId.ADDRESS, ValueType.TEXT, "address", "Address"),
    FieldId.OWNER: _spec(FieldId.OWNER, ValueType.TEXT, "owner", "Owner"),
    FieldId.TEST_DATE: _spec(FieldId.TEST_DATE, ValueType.DATE, "test_date", "TestDate"),
    FieldId.GEODATA_CENTER: _spec(FieldId.GEODATA_CENTER, ValueType.TEXT, "geodata_center", "Geodata center"),
    FieldId.GEOAREA: _spec(FieldId.GEOAREA, ValueType.TEXT, "geoarea", "Geoarea"),
})

# Fields in declaration order, as offered in the "all fields" menus.
RECORD_FIELDS: List[FieldId] = list(FIELD_REGISTRY.keys())


def resolve(field: Any) -> FieldSpec:
    """
    Looks up the typed accessor for a field identifier.
    Sentinels and unknown tokens raise UnknownFieldError.
    """
    try:
        field_id = FieldId(field)
    except ValueError:
        raise UnknownFieldError(field) from None

    spec = FIELD_REGISTRY.get(field_id)
    if spec is None:
        raise UnknownFieldError(field_id.value)
    return spec


def date_fields() -> List[FieldSpec]:
    return [s for s in FIELD_REGISTRY.values() if s.value_type == ValueType.DATE]
