import unittest
from typing import Any, Dict, List, Optional, Tuple

from fastapi.testclient import TestClient

import codec
import menus
from config import BotSettings
from controller import ConversationController
from errors import TelegramApiError
from schemas.commands import DatasetUploaded, MenuActionSelected, RenderMenu, SendFile, SendPlainText, TextReceived
from schemas.state import Stage
from telegram_bot import TelegramTransport, UpdateDeduplicator, create_app, update_to_event
from tests.helpers import RecordingTransport, sample_dataset

USER = 321

SETTINGS = BotSettings(
    telegram_token="TEST",
    telegram_api_base="https://api.telegram.invalid",
    mode="webhook",
    host="127.0.0.1",
    port=5002,
    session_cap=100,
    session_idle_ttl_hours=0,
    timezone="Europe/Moscow",
    http_timeout=1,
)


class FakeTelegramClient:
    """Stands in for TelegramClient: serves one uploaded file and records API calls."""

    def __init__(self, files: Optional[Dict[str, bytes]] = None, edit_error: Optional[TelegramApiError] = None):
        self.files = files or {}
        self.edit_error = edit_error
        self.calls: List[Tuple[str, Any]] = []

    async def answer_callback_query(self, callback_query_id: str) -> None:
        self.calls.append(("answerCallbackQuery", callback_query_id))

    async def get_file(self, file_id: str) -> Dict[str, Any]:
        self.calls.append(("getFile", file_id))
        return {"file_id": file_id, "file_path": f"documents/{file_id}"}

    async def download_file(self, file_path: str) -> bytes:
        self.calls.append(("downloadFile", file_path))
        return self.files[file_path.split("/")[-1]]

    async def send_message(self, chat_id: int, text: str, reply_markup=None) -> None:
        self.calls.append(("sendMessage", (chat_id, text, reply_markup)))

    async def edit_message_text(self, chat_id: int, message_id: int, text: str, reply_markup=None) -> None:
        self.calls.append(("editMessageText", (chat_id, message_id, text, reply_markup)))
        if self.edit_error is not None:
            raise self.edit_error

    async def send_document(self, chat_id: int, content: bytes, filename: str, caption: str = "") -> None:
        self.calls.append(("sendDocument", (chat_id, filename, caption)))


def message_update(update_id: int, **message: Any) -> Dict[str, Any]:
    return {
        "update_id": update_id,
        "message": {"message_id": update_id, "from": {"id": USER}, "chat": {"id": USER}, **message},
    }


def document_update(update_id: int, file_name: str, file_id: str = "file-1") -> Dict[str, Any]:
    return message_update(update_id, document={"file_id": file_id, "file_name": file_name})


def callback_update(update_id: int, token: str, message_id: int = 77) -> Dict[str, Any]:
    return {
        "update_id": update_id,
        "callback_query": {
            "id": f"cb-{update_id}",
            "from": {"id": USER},
            "data": token,
            "message": {"message_id": message_id, "chat": {"id": USER}},
        },
    }


class UpdateParsingTests(unittest.IsolatedAsyncioTestCase):
    async def test_text_message(self) -> None:
        event = await update_to_event(message_update(1, text="/start"), FakeTelegramClient())
        self.assertEqual(event, TextReceived(user_id=USER, text="/start"))

    async def test_callback_query(self) -> None:
        event = await update_to_event(callback_update(2, menus.SORTING, message_id=9), FakeTelegramClient())
        self.assertEqual(event, MenuActionSelected(user_id=USER, action_token=menus.SORTING, message_id=9))

    async def test_document_is_downloaded(self) -> None:
        content, _ = codec.encode(sample_dataset(), ".json")
        client = FakeTelegramClient(files={"file-1": content})
        event = await update_to_event(document_update(3, "Stations.JSON"), client)

        self.assertIsInstance(event, DatasetUploaded)
        self.assertEqual(event.declared_format, ".json")
        self.assertEqual(event.raw_bytes, content)
        self.assertEqual([name for name, _ in client.calls], ["getFile", "downloadFile"])

    async def test_unsupported_document_is_not_downloaded(self) -> None:
        client = FakeTelegramClient()
        event = await update_to_event(document_update(4, "photo.png"), client)
        self.assertEqual(event.declared_format, ".png")
        self.assertEqual(event.raw_bytes, b"")
        self.assertEqual(client.calls, [])

    async def test_other_updates_are_ignored(self) -> None:
        self.assertIsNone(await update_to_event({"update_id": 5, "edited_message": {}}, FakeTelegramClient()))
        self.assertIsNone(await update_to_event(message_update(6, sticker={"file_id": "x"}), FakeTelegramClient()))


class TransportTests(unittest.IsolatedAsyncioTestCase):
    async def test_render_menu_sends_or_edits(self) -> None:
        client = FakeTelegramClient()
        transport = TelegramTransport(client)
        frame = menus.export_menu()

        await transport.deliver(RenderMenu(user_id=USER, frame=frame))
        await transport.deliver(RenderMenu(user_id=USER, frame=frame, replace_message_id=12))

        (send_name, send_args), (edit_name, edit_args) = client.calls
        self.assertEqual(send_name, "sendMessage")
        self.assertEqual(send_args[1], frame.prompt)
        keyboard = send_args[2]["inline_keyboard"]
        self.assertEqual(keyboard[0][0], {"text": "JSON", "callback_data": menus.SEND_JSON_FILE})
        self.assertEqual(keyboard[1][0]["callback_data"], menus.BACK)
        self.assertEqual(edit_name, "editMessageText")
        self.assertEqual(edit_args[1], 12)

    async def test_unchanged_menu_edit_is_not_an_error(self) -> None:
        error = TelegramApiError("editMessageText", 400, "Bad Request: message is not modified")
        transport = TelegramTransport(FakeTelegramClient(edit_error=error))
        await transport.deliver(RenderMenu(user_id=USER, frame=menus.root_menu(), replace_message_id=1))

    async def test_other_edit_errors_propagate(self) -> None:
        error = TelegramApiError("editMessageText", 403, "Forbidden: bot was blocked by the user")
        transport = TelegramTransport(FakeTelegramClient(edit_error=error))
        with self.assertRaises(TelegramApiError):
            await transport.deliver(RenderMenu(user_id=USER, frame=menus.root_menu(), replace_message_id=1))

    async def test_plain_text_keyboards(self) -> None:
        client = FakeTelegramClient()
        transport = TelegramTransport(client)
        await transport.deliver(SendPlainText(user_id=USER, text="a", quick_replies=["/start", "/help"]))
        await transport.deliver(SendPlainText(user_id=USER, text="b", remove_quick_replies=True))
        await transport.deliver(SendPlainText(user_id=USER, text="c"))

        markups = [args[2] for _, args in client.calls]
        self.assertEqual(markups[0]["keyboard"], [[{"text": "/start"}, {"text": "/help"}]])
        self.assertEqual(markups[1], {"remove_keyboard": True})
        self.assertIsNone(markups[2])

    async def test_send_file(self) -> None:
        client = FakeTelegramClient()
        await TelegramTransport(client).deliver(SendFile(
            user_id=USER, content=b"[]", filename="Updated data.json", declared_format=".json", caption="🗂",
        ))
        self.assertEqual(client.calls, [("sendDocument", (USER, "Updated data.json", "🗂"))])


class WebhookTests(unittest.TestCase):
    def setUp(self) -> None:
        content, _ = codec.encode(sample_dataset(), ".json")
        self.client = FakeTelegramClient(files={"file-1": content})
        self.transport = RecordingTransport()
        self.controller = ConversationController(self.transport)
        self.http = TestClient(create_app(settings=SETTINGS, client=self.client, controller=self.controller))

    def post(self, update: Dict[str, Any]):
        response = self.http.post("/api/telegram/webhook", json=update)
        self.assertEqual(response.status_code, 200)
        return response.json()

    def test_upload_then_menu_click(self) -> None:
        self.assertEqual(self.post(document_update(1, "stations.json")), {"status": "ok"})
        self.assertEqual(self.controller.store.get(USER).stage, Stage.DOCUMENT)

        self.post(callback_update(2, menus.SORTING, message_id=55))
        last = self.transport.delivered[-1]
        self.assertEqual(last.frame.name, "sort_side")
        self.assertEqual(last.replace_message_id, 55)
        self.assertIn(("answerCallbackQuery", "cb-2"), self.client.calls)

    def test_duplicate_updates_are_ignored(self) -> None:
        self.post(message_update(10, text="/start"))
        self.assertEqual(self.post(message_update(10, text="/start")), {"status": "ignored"})
        self.assertEqual(len(self.transport.delivered), 1)

    def test_failures_still_answer_200(self) -> None:
        self.post(document_update(11, "stations.json", file_id="missing"))
        self.assertEqual(self.transport.delivered, [])

        response = self.http.post("/api/telegram/webhook", content=b"not json", headers={"Content-Type": "application/json"})
        self.assertEqual(response.status_code, 200)

    def test_health_sessions_and_clear(self) -> None:
        self.post(document_update(1, "stations.json"))

        health = self.http.get("/health").json()
        self.assertEqual(health["active_sessions"], 1)

        sessions = self.http.get("/sessions").json()
        self.assertEqual(sessions["total"], 1)
        entry = sessions["sessions"][0]
        self.assertEqual(entry["user_id"], USER)
        self.assertEqual(entry["stage"], "Document")
        self.assertEqual(entry["dataset_size"], 3)
        self.assertTrue(entry["last_active"].endswith("+03:00"))

        self.assertEqual(self.http.post(f"/sessions/{USER}/clear").json(), {"status": "cleared", "user_id": USER})
        self.assertEqual(self.http.post(f"/sessions/{USER}/clear").json(), {"error": "Session not found"})
        self.assertEqual(self.controller.navigation.depth(USER), 0)


class DeduplicatorTests(unittest.TestCase):
    def test_capacity(self) -> None:
        dedup = UpdateDeduplicator(capacity=2)
        self.assertFalse(dedup.seen(1))
        self.assertFalse(dedup.seen(2))
        self.assertTrue(dedup.seen(1))
        self.assertFalse(dedup.seen(3))
        self.assertFalse(dedup.seen(1))
        self.assertFalse(dedup.seen(None))
        self.assertFalse(dedup.seen(None))


if __name__ == "__main__":
    unittest.main()
