import re
from datetime import datetime
from typing import Any, Optional, Sequence, Tuple

from errors import (
    EmptyDatasetError,
    IncompleteDataError,
    MalformedCompoundInputError,
    NoMatchError,
    TypeMismatchError,
)
from fields import ZERO_VALUES, FieldId, FieldSpec, ValueType, date_fields, resolve
from logger import LOGGER
from schemas.station import DATE_FORMAT, GasStation

Dataset = Tuple[GasStation, ...]

_INTEGER_PATTERN = re.compile(r"^[+-]?\d+$")


# =========================
# 🔹 VALUE COERCION
# =========================

def coerce_value(spec: FieldSpec, raw_input: str) -> Any:
    """
    Converts free text typed by the user into the field's value type.

    - integer: optional sign followed by digits
    - date: DD.MM.YYYY
    - text: taken verbatim, always succeeds
    """
    if spec.value_type == ValueType.TEXT:
        return raw_input

    candidate = raw_input.strip()

    if spec.value_type == ValueType.INTEGER:
        if not _INTEGER_PATTERN.match(candidate):
            raise TypeMismatchError(spec.field_id, spec.value_type, raw_input)
        return int(candidate)

    if spec.value_type == ValueType.DATE:
        try:
            return datetime.strptime(candidate, DATE_FORMAT).date()
        except ValueError:
            raise TypeMismatchError(spec.field_id, spec.value_type, raw_input) from None

    raise TypeMismatchError(spec.field_id, spec.value_type, raw_input)


def split_compound_input(raw_input: str) -> Tuple[str, str]:
    """Splits two-field filter input into exactly two non-empty lines."""
    lines = [line.rstrip("\r") for line in raw_input.split("\n")]
    lines = [line for line in lines if line.strip()]
    if len(lines) != 2:
        raise MalformedCompoundInputError()
    return lines[0], lines[1]


def _require_records(dataset: Optional[Sequence[GasStation]]) -> Dataset:
    if not dataset:
        raise EmptyDatasetError()
    return tuple(dataset)


# =========================
# 🔹 SORT
# =========================

def sort_records(dataset: Optional[Sequence[GasStation]], field: Any, reverse: bool = False) -> Dataset:
    """
    Returns a new dataset ordered by `field`.

    Ordering is stable: records with equal keys keep their input order in
    both directions.
    """
    records = _require_records(dataset)

    unset = ZERO_VALUES[ValueType.DATE]
    for spec in date_fields():
        if any(spec.accessor(record) == unset for record in records):
            raise IncompleteDataError()

    spec = resolve(field)
    result = tuple(sorted(records, key=spec.sort_key, reverse=reverse))
    LOGGER.debug("[ENGINE] Sorted %d records by %s (reverse=%s)", len(result), spec.field_id.value, reverse)
    return result


# =========================
# 🔹 FILTER
# =========================

def filter_records(
    dataset: Optional[Sequence[GasStation]],
    field1: Any,
    raw_input: str,
    field2: Any = FieldId.NONE,
) -> Dataset:
    """
    Returns the records whose field1 (and field2, in two-field mode) equal the
    values typed by the user. An empty result raises NoMatchError.
    """
    records = _require_records(dataset)
    spec1 = resolve(field1)

    if field2 is None or field2 == FieldId.NONE or field2 == spec1.field_id:
        expected = coerce_value(spec1, raw_input)
        result = tuple(r for r in records if spec1.accessor(r) == expected)
    else:
        spec2 = resolve(field2)
        first, second = split_compound_input(raw_input)
        expected1 = coerce_value(spec1, first)
        expected2 = coerce_value(spec2, second)
        result = tuple(
            r for r in records
            if spec1.accessor(r) == expected1 and spec2.accessor(r) == expected2
        )

    if not result:
        raise NoMatchError()

    LOGGER.debug("[ENGINE] Filter matched %d of %d records", len(result), len(records))
    return result
