from enum import Enum
from typing import Optional, Tuple

from pydantic import BaseModel

from fields import FieldId
from schemas.station import GasStation


class Stage(str, Enum):
    MESSAGE = "Message"
    DOCUMENT = "Document"
    FILTER = "Filter"


class SessionState(BaseModel):
    """
    Represents the per-user state of the conversation:
    where the user is in the workflow and which data/selections they hold.
    """

    stage: Stage = Stage.MESSAGE

    # --- Data ---
    dataset: Optional[Tuple[GasStation, ...]] = None
    last_result: Optional[Tuple[GasStation, ...]] = None

    # --- Pending selections ---
    filter_field1: Optional[FieldId] = None
    filter_field2: Optional[FieldId] = None
    last_sort_field: Optional[FieldId] = None

    def has_dataset(self) -> bool:
        return bool(self.dataset)

    def dataset_size(self) -> int:
        return len(self.dataset) if self.dataset else 0

    def clear_selections(self):
        """Resets the pending filter/sort selections (not the data)."""
        self.filter_field1 = None
        self.filter_field2 = None
        self.last_sort_field = None

