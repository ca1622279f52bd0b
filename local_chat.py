import asyncio
from pathlib import Path
from typing import List, Optional

from codec import detect_format
from controller import ConversationController
from schemas.commands import (
    DatasetUploaded,
    MenuChoice,
    MenuActionSelected,
    OutboundCommand,
    RenderMenu,
    SendFile,
    SendPlainText,
    TextReceived,
)
from schemas.state import Stage

LOCAL_USER_ID = 1


class ConsoleTransport:
    """Prints controller output to the terminal and writes exported files to the working directory."""

    def __init__(self, output_dir: Optional[Path] = None):
        self.output_dir = output_dir or Path.cwd()
        self.choices: List[MenuChoice] = []
        self.menu_message_id = 0

    async def deliver(self, command: OutboundCommand) -> None:
        if isinstance(command, RenderMenu):
            if command.replace_message_id is None:
                self.menu_message_id += 1
            self.choices = [choice for row in command.frame.rows for choice in row]
            print(f"\n🤖 Bot: {command.prompt}")
            for number, choice in enumerate(self.choices, start=1):
                print(f"   [{number}] {choice.label}")

        elif isinstance(command, SendPlainText):
            print(f"\n🤖 Bot: {command.text}")
            if command.quick_replies:
                print(f"   (try: {', '.join(command.quick_replies)})")

        elif isinstance(command, SendFile):
            target = self.output_dir / command.filename
            target.write_bytes(command.content)
            print(f"\n🤖 Bot: {command.caption} {target}")

    def choice_token(self, number: int) -> Optional[str]:
        if 1 <= number <= len(self.choices):
            return self.choices[number - 1].token
        return None


def load_file_event(path: str) -> DatasetUploaded:
    file_path = Path(path).expanduser()
    return DatasetUploaded(
        user_id=LOCAL_USER_ID,
        raw_bytes=file_path.read_bytes(),
        file_name=file_path.name,
        declared_format=detect_format(file_path.name),
    )


def parse_pick(user_input: str, awaiting_filter: bool) -> Optional[int]:
    """Menu choice number typed by the user, or None when the input is a text message."""
    if user_input.startswith("#") and user_input[1:].isdigit():
        return int(user_input[1:])
    if user_input.isdigit() and not awaiting_filter:
        return int(user_input)
    return None


async def main_chat_interface(transport: Optional[ConsoleTransport] = None, controller: Optional[ConversationController] = None):
    print("=" * 60)
    print("  DATASET SORT & FILTER BOT - Terminal Interface")
    print("=" * 60)
    print("  COMMANDS:")
    print("  • 'load <path>' - Upload a .csv or .json file")
    print("  • <number> - Pick a menu choice")
    print("  • #<number> - Pick a menu choice while a filter value is awaited")
    print("  • anything else - Sent as a text message (/start, /help, filter values)")
    print("  • 'exit' or 'quit' - End session")
    print("=" * 60)

    transport = transport or ConsoleTransport()
    controller = controller or ConversationController(transport)

    while True:
        user_input = (await asyncio.to_thread(input, "\n👤 You: ")).strip()

        if user_input.lower() in ["exit", "quit"]:
            print("\n👋 Goodbye! Session state cleared.")
            break

        if not user_input:
            continue

        if user_input.lower().startswith("load "):
            try:
                event = load_file_event(user_input[5:].strip())
            except OSError as e:
                print(f"✗ Could not read file: {e}")
                continue
            await controller.dispatch(event)
            continue

        # while a filter value is awaited, bare digits are filter input
        state = controller.store.get(LOCAL_USER_ID)
        awaiting_filter = state is not None and state.stage == Stage.FILTER
        pick = parse_pick(user_input, awaiting_filter)
        if pick is not None:
            token = transport.choice_token(pick)
            if token is None:
                print("✗ No such choice in the current menu.")
                continue
            await controller.dispatch(MenuActionSelected(
                user_id=LOCAL_USER_ID,
                action_token=token,
                message_id=transport.menu_message_id,
            ))
            continue

        await controller.dispatch(TextReceived(user_id=LOCAL_USER_ID, text=user_input))


if __name__ == "__main__":
    asyncio.run(main_chat_interface())
