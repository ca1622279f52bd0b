from datetime import date
from typing import List

from schemas.commands import OutboundCommand
from schemas.station import GasStation


def station(**overrides) -> GasStation:
    """A fully populated record; pass python field names to override."""
    values = dict(
        id=1,
        full_name="Gas station No. 1",
        global_id=1001,
        short_name="GS-1",
        adm_area="Central",
        district="Arbat",
        address="Arbat st., 1",
        owner="X",
        test_date=date(2020, 1, 1),
        geodata_center="{coordinates=[37.59, 55.75]}",
        geoarea="",
    )
    values.update(overrides)
    return GasStation(**values)


def sample_dataset():
    return (
        station(id=1, global_id=1001, owner="X", adm_area="CentralDistrict", district="Arbat", test_date=date(2020, 1, 1)),
        station(id=2, global_id=1002, owner="Y", adm_area="CentralDistrict", district="Tverskoy", test_date=date(2021, 6, 15)),
        station(id=3, global_id=1003, owner="X", adm_area="Northern", district="Airport", test_date=date(2019, 3, 9)),
    )


class RecordingTransport:
    """Collects delivered commands; optionally fails on a given delivery."""

    def __init__(self, fail_with: Exception = None):
        self.delivered: List[OutboundCommand] = []
        self.fail_with = fail_with

    async def deliver(self, command: OutboundCommand) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.delivered.append(command)
