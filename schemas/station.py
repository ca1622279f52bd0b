from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Marks a record whose TestDate was never filled in by the uploaded file.
UNSET_DATE = date.min

DATE_FORMAT = "%d.%m.%Y"


class GasStation(BaseModel):
    """
    One row of the uploaded dataset.

    Field names are the python attributes; aliases are the names used in the
    CSV header and the JSON keys, so the codec can validate raw rows directly.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: int = Field(default=0, alias="ID")
    full_name: str = Field(default="", alias="FullName")
    global_id: int = Field(default=0, alias="global_id")
    short_name: str = Field(default="", alias="ShortName")
    adm_area: str = Field(default="", alias="AdmArea")
    district: str = Field(default="", alias="District")
    address: str = Field(default="", alias="Address")
    owner: str = Field(default="", alias="Owner")
    test_date: date = Field(default=UNSET_DATE, alias="TestDate")
    geodata_center: str = Field(default="", alias="geodata_center")
    geoarea: str = Field(default="", alias="geoarea")

    @field_validator("test_date", mode="before")
    @classmethod
    def parse_test_date(cls, value: Any) -> Any:
        """Accepts dd.mm.yyyy as written in the CSV files, ISO otherwise."""
        if isinstance(value, str):
            raw = value.strip()
            if not raw:
                return UNSET_DATE
            try:
                return datetime.strptime(raw, DATE_FORMAT).date()
            except ValueError:
                pass
            if "T" in raw:
                try:
                    return datetime.fromisoformat(raw).date()
                except ValueError:
                    pass
            return raw
        return value

    def is_blank(self) -> bool:
        """Returns True when every field still holds its zero value."""
        return (
            self.id == 0
            and self.global_id == 0
            and self.test_date == UNSET_DATE
            and not any([
                self.full_name, self.short_name, self.adm_area, self.district,
                self.address, self.owner, self.geodata_center, self.geoarea,
            ])
        )

    def has_empty_field(self) -> bool:
        """True if any of the mandatory (non geodata) fields is empty."""
        return (
            self.id == 0
            or not self.full_name
            or self.global_id == 0
            or not self.short_name
            or not self.adm_area
            or not self.district
            or not self.address
            or not self.owner
            or self.test_date == UNSET_DATE
        )
