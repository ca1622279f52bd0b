from typing import List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field


# --- Menus ---

class MenuChoice(BaseModel):
    model_config = ConfigDict(frozen=True)

    label: str
    token: str


class NavigationFrame(BaseModel):
    """Snapshot of one rendered menu: the prompt and its rows of choices."""
    model_config = ConfigDict(frozen=True)

    name: str
    prompt: str
    rows: Tuple[Tuple[MenuChoice, ...], ...]

    def tokens(self) -> List[str]:
        return [choice.token for row in self.rows for choice in row]


# --- Inbound events ---

class DatasetUploaded(BaseModel):
    user_id: int
    raw_bytes: bytes
    file_name: str
    declared_format: str


class TextReceived(BaseModel):
    user_id: int
    text: str


class MenuActionSelected(BaseModel):
    user_id: int
    action_token: str
    # id of the message holding the clicked keyboard, used to edit in place
    message_id: Optional[int] = None


InboundEvent = Union[DatasetUploaded, TextReceived, MenuActionSelected]


# --- Outbound commands ---

class RenderMenu(BaseModel):
    user_id: int
    frame: NavigationFrame
    replace_message_id: Optional[int] = None

    @property
    def prompt(self) -> str:
        return self.frame.prompt


class SendPlainText(BaseModel):
    user_id: int
    text: str
    quick_replies: List[str] = Field(default_factory=list)
    remove_quick_replies: bool = False


class SendFile(BaseModel):
    user_id: int
    content: bytes
    filename: str
    declared_format: str
    caption: str = ""


OutboundCommand = Union[RenderMenu, SendPlainText, SendFile]
