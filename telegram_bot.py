import asyncio
from collections import OrderedDict
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional, Set

import pytz
import requests
import uvicorn
from fastapi import FastAPI, Request

from codec import SUPPORTED_FORMATS, detect_format
from config import BotSettings, load_settings
from controller import ConversationController
from errors import TelegramApiError
from logger import LOGGER
from schemas.commands import (
    DatasetUploaded,
    InboundEvent,
    MenuActionSelected,
    OutboundCommand,
    RenderMenu,
    SendFile,
    SendPlainText,
    TextReceived,
)
from session_store import SessionStore, UserLockRegistry

POLL_TIMEOUT_SECONDS = 30
SWEEP_INTERVAL_SECONDS = 600
MAX_REMEMBERED_UPDATES = 1000


# =========================
# 🔹 BOT API CLIENT
# =========================

class TelegramClient:
    """Thin wrapper over the Telegram Bot API. Blocking `requests` calls run in a worker thread."""

    def __init__(self, token: Optional[str], api_base: str = "https://api.telegram.org", timeout: float = 10):
        self.token = token
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout

    def _method_url(self, method: str) -> str:
        if not self.token:
            raise RuntimeError("TELEGRAM_BOT_TOKEN environment variable is required.")
        return f"{self.api_base}/bot{self.token}/{method}"

    async def call(self, method: str, payload: Optional[Dict[str, Any]] = None, files=None, timeout: Optional[float] = None) -> Any:
        url = self._method_url(method)
        if files:
            response = await asyncio.to_thread(requests.post, url, data=payload, files=files, timeout=timeout or self.timeout)
        else:
            response = await asyncio.to_thread(requests.post, url, json=payload or {}, timeout=timeout or self.timeout)

        try:
            body = response.json()
        except ValueError:
            raise TelegramApiError(method, response.status_code, response.text[:200]) from None

        if response.status_code != 200 or not body.get("ok"):
            raise TelegramApiError(method, response.status_code, body.get("description", ""))
        return body.get("result")

    async def send_message(self, chat_id: int, text: str, reply_markup: Optional[Dict[str, Any]] = None) -> Any:
        payload: Dict[str, Any] = {"chat_id": chat_id, "text": text}
        if reply_markup is not None:
            payload["reply_markup"] = reply_markup
        return await self.call("sendMessage", payload)

    async def edit_message_text(self, chat_id: int, message_id: int, text: str, reply_markup: Optional[Dict[str, Any]] = None) -> Any:
        payload: Dict[str, Any] = {"chat_id": chat_id, "message_id": message_id, "text": text}
        if reply_markup is not None:
            payload["reply_markup"] = reply_markup
        return await self.call("editMessageText", payload)

    async def send_document(self, chat_id: int, content: bytes, filename: str, caption: str = "") -> Any:
        data = {"chat_id": str(chat_id), "caption": caption}
        return await self.call("sendDocument", data, files={"document": (filename, content)})

    async def answer_callback_query(self, callback_query_id: str) -> Any:
        return await self.call("answerCallbackQuery", {"callback_query_id": callback_query_id})

    async def get_file(self, file_id: str) -> Dict[str, Any]:
        return await self.call("getFile", {"file_id": file_id})

    async def download_file(self, file_path: str) -> bytes:
        if not self.token:
            raise RuntimeError("TELEGRAM_BOT_TOKEN environment variable is required.")
        url = f"{self.api_base}/file/bot{self.token}/{file_path}"
        response = await asyncio.to_thread(requests.get, url, timeout=self.timeout)
        if response.status_code != 200:
            raise TelegramApiError("downloadFile", response.status_code, response.text[:200])
        return response.content

    async def get_updates(self, offset: Optional[int], timeout: int = POLL_TIMEOUT_SECONDS) -> List[Dict[str, Any]]:
        payload: Dict[str, Any] = {"timeout": timeout, "allowed_updates": ["message", "callback_query"]}
        if offset is not None:
            payload["offset"] = offset
        return await self.call("getUpdates", payload, timeout=timeout + self.timeout)


# =========================
# 🔹 OUTBOUND
# =========================

def inline_keyboard(command: RenderMenu) -> Dict[str, Any]:
    return {
        "inline_keyboard": [
            [{"text": choice.label, "callback_data": choice.token} for choice in row]
            for row in command.frame.rows
        ]
    }


def reply_keyboard(command: SendPlainText) -> Optional[Dict[str, Any]]:
    if command.quick_replies:
        return {
            "keyboard": [[{"text": text} for text in command.quick_replies]],
            "resize_keyboard": True,
            "one_time_keyboard": True,
        }
    if command.remove_quick_replies:
        return {"remove_keyboard": True}
    return None


class TelegramTransport:
    """Renders controller commands as Bot API calls."""

    def __init__(self, client: TelegramClient):
        self.client = client

    async def deliver(self, command: OutboundCommand) -> None:
        if isinstance(command, RenderMenu):
            markup = inline_keyboard(command)
            if command.replace_message_id is not None:
                try:
                    await self.client.edit_message_text(command.user_id, command.replace_message_id, command.prompt, markup)
                except TelegramApiError as e:
                    # re-rendering the same frame (back on the root menu)
                    if e.status == 400 and "message is not modified" in e.description:
                        LOGGER.debug("[TELEGRAM] Menu for user %s is already up to date", command.user_id)
                        return
                    raise
            else:
                await self.client.send_message(command.user_id, command.prompt, markup)

        elif isinstance(command, SendPlainText):
            await self.client.send_message(command.user_id, command.text, reply_keyboard(command))

        elif isinstance(command, SendFile):
            await self.client.send_document(command.user_id, command.content, command.filename, command.caption)

        else:
            raise TypeError(f"Unsupported command: {command!r}")


# =========================
# 🔹 INBOUND
# =========================

async def update_to_event(update: Dict[str, Any], client: TelegramClient) -> Optional[InboundEvent]:
    """Turns a Telegram update into a controller event. Returns None for updates the bot ignores."""
    callback = update.get("callback_query")
    if callback:
        message = callback.get("message") or {}
        return MenuActionSelected(
            user_id=callback["from"]["id"],
            action_token=callback.get("data") or "",
            message_id=message.get("message_id"),
        )

    message = update.get("message")
    if not message or "from" not in message:
        return None
    user_id = message["from"]["id"]

    document = message.get("document")
    if document:
        file_name = document.get("file_name") or ""
        declared_format = detect_format(file_name)
        raw_bytes = b""
        # unsupported files are rejected by the codec without downloading them
        if declared_format in SUPPORTED_FORMATS:
            file_info = await client.get_file(document["file_id"])
            raw_bytes = await client.download_file(file_info["file_path"])
        return DatasetUploaded(
            user_id=user_id,
            raw_bytes=raw_bytes,
            file_name=file_name,
            declared_format=declared_format,
        )

    text = message.get("text")
    if text is not None:
        return TextReceived(user_id=user_id, text=text)

    return None


async def process_update(update: Dict[str, Any], client: TelegramClient, controller: ConversationController) -> None:
    """Handles one update end to end. Failures are logged, never raised."""
    try:
        callback = update.get("callback_query")
        if callback:
            try:
                await client.answer_callback_query(callback["id"])
            except (TelegramApiError, requests.RequestException) as e:
                LOGGER.warning("[TELEGRAM] answerCallbackQuery failed: %s", e)

        event = await update_to_event(update, client)
        if event is None:
            LOGGER.debug("[TELEGRAM] Ignoring update %s", update.get("update_id"))
            return
        await controller.dispatch(event)
    except asyncio.CancelledError:
        raise
    except Exception:
        LOGGER.exception("[ERROR] Failed to process update %s", update.get("update_id"))


class UpdateDeduplicator:
    """Remembers the most recent update ids so redelivered webhooks are processed once."""

    def __init__(self, capacity: int = MAX_REMEMBERED_UPDATES):
        self.capacity = capacity
        self._seen: "OrderedDict[int, None]" = OrderedDict()

    def seen(self, update_id: Optional[int]) -> bool:
        if update_id is None:
            return False
        if update_id in self._seen:
            return True
        self._seen[update_id] = None
        if len(self._seen) > self.capacity:
            self._seen.popitem(last=False)
        return False


# =========================
# 🔹 WEB APP
# =========================

def build_controller(client: TelegramClient, settings: BotSettings) -> ConversationController:
    locks = UserLockRegistry()
    store = SessionStore(
        max_sessions=settings.session_cap,
        idle_ttl_seconds=settings.session_idle_ttl_seconds,
        is_busy=locks.is_busy,
    )
    return ConversationController(TelegramTransport(client), store=store, locks=locks)


async def sweep_sessions(controller: ConversationController, interval: float = SWEEP_INTERVAL_SECONDS) -> None:
    while True:
        await asyncio.sleep(interval)
        evicted = controller.store.evict_expired()
        if evicted:
            LOGGER.info("[SESSION] Idle sweep removed %d sessions", len(evicted))


def create_app(
    settings: Optional[BotSettings] = None,
    client: Optional[TelegramClient] = None,
    controller: Optional[ConversationController] = None,
) -> FastAPI:
    settings = settings or load_settings()
    client = client or TelegramClient(settings.telegram_token, settings.telegram_api_base, settings.http_timeout)
    controller = controller or build_controller(client, settings)
    deduplicator = UpdateDeduplicator()
    timezone = pytz.timezone(settings.timezone)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        sweeper = asyncio.create_task(sweep_sessions(controller))
        try:
            yield
        finally:
            sweeper.cancel()

    app = FastAPI(lifespan=lifespan)
    app.state.settings = settings
    app.state.client = client
    app.state.controller = controller

    # --- Webhook ---
    @app.post("/api/telegram/webhook")
    async def webhook(request: Request):
        """Handles updates pushed by Telegram. Always answers 200 so Telegram does not redeliver."""
        try:
            update = await request.json()
        except ValueError:
            LOGGER.warning("[TELEGRAM] Webhook received a non-JSON body")
            return {"status": "ignored"}

        update_id = update.get("update_id")
        if deduplicator.seen(update_id):
            LOGGER.info("[TELEGRAM] Duplicate update %s ignored", update_id)
            return {"status": "ignored"}

        await process_update(update, client, controller)
        return {"status": "ok"}

    # --- Health Check ---
    @app.get("/health")
    def health_check():
        return {
            "status": "ok",
            "service": "dataset_bot",
            "active_sessions": len(controller.store),
        }

    # --- Utility: Get All Sessions ---
    @app.get("/sessions")
    def get_sessions():
        """List of all sessions with their stage, dataset size and last activity."""
        sessions = []
        for user_id, state in controller.store.items():
            last_active = controller.store.last_active(user_id)
            sessions.append({
                "user_id": user_id,
                "stage": state.stage.value,
                "dataset_size": state.dataset_size(),
                "last_active": last_active.astimezone(timezone).isoformat() if last_active else None,
            })
        return {"total": len(sessions), "sessions": sessions}

    # --- Utility: Clear Session ---
    @app.post("/sessions/{user_id}/clear")
    async def clear_session(user_id: int):
        """Manually drop a user's session (admin)."""
        async with controller.locks.hold(user_id):
            removed = controller.store.remove(user_id)
        if removed:
            return {"status": "cleared", "user_id": user_id}
        return {"error": "Session not found"}

    return app


# =========================
# 🔹 LONG POLLING
# =========================

async def run_polling(client: TelegramClient, controller: ConversationController) -> None:
    """getUpdates loop; every update runs as its own task so users never wait on each other."""
    offset: Optional[int] = None
    tasks: Set[asyncio.Task] = set()
    sweeper = asyncio.create_task(sweep_sessions(controller))

    try:
        while True:
            try:
                updates = await client.get_updates(offset)
            except (TelegramApiError, requests.RequestException) as e:
                LOGGER.error("[TELEGRAM] getUpdates failed: %s", e)
                await asyncio.sleep(1)
                continue

            for update in updates:
                offset = update["update_id"] + 1
                task = asyncio.create_task(process_update(update, client, controller))
                tasks.add(task)
                task.add_done_callback(tasks.discard)
    finally:
        sweeper.cancel()
        for task in tasks:
            task.cancel()


# --- Run Server ---
if __name__ == "__main__":
    settings = load_settings()
    settings.require_token()

    print("=" * 60)
    print("  DATASET SORT & FILTER BOT - Telegram Server")
    print("=" * 60)

    if settings.mode == "polling":
        print("\n🚀 Starting long polling...")
        print("\n" + "=" * 60 + "\n")
        bot_client = TelegramClient(settings.telegram_token, settings.telegram_api_base, settings.http_timeout)
        asyncio.run(run_polling(bot_client, build_controller(bot_client, settings)))
    else:
        print(f"\n🚀 Starting FastAPI server on port {settings.port}...")
        print("\n📡 Available endpoints:")
        print("   POST /api/telegram/webhook - Telegram webhook")
        print("   GET  /health - Health check")
        print("   GET  /sessions - List all active sessions")
        print("   POST /sessions/{user_id}/clear - Clear a session")
        print("\n" + "=" * 60 + "\n")
        uvicorn.run(create_app(settings), host=settings.host, port=settings.port)
