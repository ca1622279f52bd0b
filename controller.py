import asyncio
from typing import Callable, Dict, List, Optional, Protocol

import codec
import menus
from engine import filter_records, sort_records
from errors import CodecError, EmptyDatasetError, QueryError, UnknownFieldError
from fields import FieldId
from logger import LOGGER
from navigation import NavigationStack
from schemas.commands import (
    DatasetUploaded,
    InboundEvent,
    MenuActionSelected,
    NavigationFrame,
    OutboundCommand,
    RenderMenu,
    SendFile,
    SendPlainText,
    TextReceived,
)
from schemas.state import SessionState, Stage
from session_store import SessionStore, UserLockRegistry

# Named filter shortcuts expanded into a (field1, field2) pair.
COMPOUND_FILTERS = {
    FieldId.ADM_AREA_AND_OWNER: (FieldId.ADM_AREA, FieldId.OWNER),
}

ActionHandler = Callable[[int, SessionState, Optional[int]], List[OutboundCommand]]


class Transport(Protocol):
    async def deliver(self, command: OutboundCommand) -> None:
        ...


class ConversationController:
    """
    Per-user state machine driving the upload → sort/filter → export workflow.

    `dispatch` serializes events of one user behind that user's lock. The
    handlers themselves never await, so every state change for an event is
    applied in one step; outbound commands are delivered afterwards, still
    under the lock, so replies for one user keep their order.
    """

    def __init__(
        self,
        transport: Transport,
        store: Optional[SessionStore] = None,
        navigation: Optional[NavigationStack] = None,
        locks: Optional[UserLockRegistry] = None,
    ):
        self.transport = transport
        self.locks = locks or UserLockRegistry()
        self.store = store or SessionStore(is_busy=self.locks.is_busy)
        self.navigation = navigation or NavigationStack()
        self.store.add_evict_listener(self.navigation.discard)
        self.store.add_evict_listener(self.locks.discard)
        self._action_handlers = self._build_action_handlers()

    # ========================================
    # DISPATCH
    # ========================================

    async def dispatch(self, event: InboundEvent) -> List[OutboundCommand]:
        user_id = event.user_id
        async with self.locks.hold(user_id):
            state = self.store.get_or_create(user_id)
            saved_state = state.model_copy()
            saved_frames = self.navigation.snapshot(user_id)

            try:
                commands = self._handle(event, state)
            except Exception:
                LOGGER.exception("[ERROR] Failed to process %s for user %s", type(event).__name__, user_id)
                self.store.replace(user_id, saved_state)
                self.navigation.restore(user_id, saved_frames)
                self.store.set_stage(user_id, Stage.MESSAGE)
                commands = [SendPlainText(user_id=user_id, text=menus.GENERIC_FAILURE_TEXT)]

            delivered = 0
            try:
                for command in commands:
                    await self.transport.deliver(command)
                    delivered += 1
            except asyncio.CancelledError:
                if delivered == 0:
                    self._rollback(user_id, saved_state, saved_frames)
                raise
            except Exception:
                LOGGER.exception("[TRANSPORT] Delivery failed for user %s", user_id)
                if delivered == 0:
                    self._rollback(user_id, saved_state, saved_frames)

            return commands

    def _rollback(self, user_id: int, state: SessionState, frames) -> None:
        LOGGER.warning("[SESSION] Rolling back state of user %s, nothing was delivered", user_id)
        self.store.replace(user_id, state)
        self.navigation.restore(user_id, frames)

    def _handle(self, event: InboundEvent, state: SessionState) -> List[OutboundCommand]:
        if isinstance(event, DatasetUploaded):
            LOGGER.info("[EVENT] User %s uploaded '%s'", event.user_id, event.file_name)
            return self._handle_upload(event, state)

        if isinstance(event, TextReceived):
            LOGGER.info("[EVENT] User %s sent text in stage %s: %r", event.user_id, state.stage.value, event.text[:100])
            if state.stage == Stage.FILTER:
                return self._handle_filter_input(event.user_id, state, event.text)
            if state.stage == Stage.DOCUMENT:
                return self._handle_menu_text(event.user_id, event.text)
            return self._handle_message_text(event.user_id, event.text)

        if isinstance(event, MenuActionSelected):
            LOGGER.info("[EVENT] User %s clicked %s", event.user_id, event.action_token)
            if event.action_token not in self._action_handlers:
                return [SendPlainText(user_id=event.user_id, text=menus.unknown_action_text(event.action_token))]
            if state.stage == Stage.MESSAGE:
                # buttons of a menu that is no longer active
                hint = menus.MENU_CLOSED_TEXT if state.has_dataset() else menus.UPLOAD_FIRST_TEXT
                return [SendPlainText(user_id=event.user_id, text=hint)]
            return self._handle_action(event, state)

        raise TypeError(f"Unsupported event: {event!r}")

    # ========================================
    # TEXT
    # ========================================

    def _handle_message_text(self, user_id: int, text: str) -> List[OutboundCommand]:
        command = text.strip()
        if command == "/start":
            return [SendPlainText(user_id=user_id, text=menus.START_TEXT)]
        if command == "/help":
            return [SendPlainText(user_id=user_id, text=menus.HELP_TEXT)]
        return [SendPlainText(user_id=user_id, text=menus.UNKNOWN_COMMAND_TEXT, quick_replies=list(menus.QUICK_REPLIES))]

    def _handle_menu_text(self, user_id: int, text: str) -> List[OutboundCommand]:
        if text.strip() == "/help":
            return [SendPlainText(user_id=user_id, text=menus.HELP_TEXT)]
        return [SendPlainText(user_id=user_id, text=menus.MENU_ACTIVE_TEXT)]

    def _handle_filter_input(self, user_id: int, state: SessionState, text: str) -> List[OutboundCommand]:
        field1 = state.filter_field1
        field2 = state.filter_field2 or FieldId.NONE
        try:
            result = filter_records(state.dataset, field1, text, field2)
        except QueryError as e:
            if not e.retryable:
                raise
            LOGGER.info("[FILTER] User %s: %s (%s)", user_id, e.kind.value, e.message)
            return [SendPlainText(user_id=user_id, text=f"❌ {e.message}{menus.RETRY_FILTER_SUFFIX}")]

        self.store.set_last_result(user_id, result)
        LOGGER.info("[FILTER] User %s matched %d records", user_id, len(result))
        # stage stays Filter: further text is still treated as filter input
        return [
            SendPlainText(user_id=user_id, text=menus.matches_found_text(len(result))),
            RenderMenu(user_id=user_id, frame=menus.export_menu(with_back=False)),
        ]

    # ========================================
    # UPLOAD
    # ========================================

    def _handle_upload(self, event: DatasetUploaded, state: SessionState) -> List[OutboundCommand]:
        user_id = event.user_id
        try:
            dataset = codec.decode(event.raw_bytes, event.declared_format)
        except CodecError as e:
            LOGGER.error("[CODEC] User %s: failed to process '%s': %s", user_id, event.file_name, e.message)
            if not state.has_dataset():
                self.store.set_stage(user_id, Stage.MESSAGE)
            return [SendPlainText(user_id=user_id, text=e.message)]

        root = menus.root_menu()
        self.store.set_dataset(user_id, dataset)
        self.store.set_last_result(user_id, None)
        self.store.clear_selections(user_id)
        self.navigation.reset(user_id, root)
        self.store.set_stage(user_id, Stage.DOCUMENT)

        return [
            SendPlainText(user_id=user_id, text=menus.FILE_PROCESSED_TEXT, remove_quick_replies=True),
            RenderMenu(user_id=user_id, frame=root),
        ]

    # ========================================
    # MENU ACTIONS
    # ========================================

    def _build_action_handlers(self) -> Dict[str, ActionHandler]:
        handlers: Dict[str, ActionHandler] = {
            # Separate filtering and sorting.
            menus.SORTING: self._open(menus.sort_side_menu),
            menus.FILTRATION: self._open(menus.filter_field_menu),

            # Sorting by TestDate.
            menus.SORT_TEST_DATE_ASCENDING: lambda u, s, m: self._sort_and_offer_export(u, s, m, FieldId.TEST_DATE, False),
            menus.SORT_TEST_DATE_DESCENDING: lambda u, s, m: self._sort_and_offer_export(u, s, m, FieldId.TEST_DATE, True),

            # Quick filters.
            menus.FILTER_DISTRICT: lambda u, s, m: self._ask_filter_input(u, FieldId.DISTRICT, FieldId.NONE),
            menus.FILTER_OWNER: lambda u, s, m: self._ask_filter_input(u, FieldId.OWNER, FieldId.NONE),
            menus.FILTER_ADM_AREA_AND_OWNER: lambda u, s, m: self._ask_filter_input(u, *COMPOUND_FILTERS[FieldId.ADM_AREA_AND_OWNER]),

            # Back and file format.
            menus.BACK: self._back,
            menus.SEND_JSON_FILE: lambda u, s, m: self._export(u, s, ".json"),
            menus.SEND_CSV_FILE: lambda u, s, m: self._export(u, s, ".csv"),

            # Sorting by any field.
            menus.UNIVERSAL_SORT: self._open(menus.all_sort_fields_menu),
            menus.SORT_ASCENDING_FOR_UNIVERSAL_SIDE: lambda u, s, m: self._sort_and_offer_export(u, s, m, s.last_sort_field, False),
            menus.SORT_DESCENDING_FOR_UNIVERSAL_SIDE: lambda u, s, m: self._sort_and_offer_export(u, s, m, s.last_sort_field, True),

            # Filtering by any field.
            menus.MORE_DETAILED_FILTERING: self._open(menus.first_filter_field_menu),
            menus.UNIVERSAL_FILTER_THE_SAME_FIELD: lambda u, s, m: self._choose_second_filter_field(u, s, s.filter_field1),
        }

        for token, field_id in menus.field_tokens(menus.UNIVERSAL_SORT_FIELD_PREFIX):
            handlers[token] = self._make_sort_field_handler(field_id)
        for token, field_id in menus.field_tokens(menus.UNIVERSAL_FILTER_FIELD_PREFIX):
            handlers[token] = self._make_first_filter_field_handler(field_id)
        for token, field_id in menus.field_tokens(menus.UNIVERSAL_FILTER_SECOND_FIELD_PREFIX):
            handlers[token] = self._make_second_filter_field_handler(field_id)

        return handlers

    def _handle_action(self, event: MenuActionSelected, state: SessionState) -> List[OutboundCommand]:
        user_id = event.user_id
        handler = self._action_handlers[event.action_token]
        try:
            return handler(user_id, state, event.message_id)
        except QueryError as e:
            if not e.retryable:
                raise
            LOGGER.info("[ENGINE] User %s: %s (%s)", user_id, e.kind.value, e.message)
            return [SendPlainText(user_id=user_id, text=f"❌ {e.message}")]

    def _show(self, user_id: int, frame: NavigationFrame, message_id: Optional[int]) -> List[OutboundCommand]:
        """Pushes a menu on the user's stack and renders it in place of the clicked one."""
        self.navigation.push(user_id, frame)
        return [RenderMenu(user_id=user_id, frame=frame, replace_message_id=message_id)]

    def _open(self, build_frame: Callable[[], NavigationFrame]) -> ActionHandler:
        return lambda user_id, state, message_id: self._show(user_id, build_frame(), message_id)

    def _back(self, user_id: int, state: SessionState, message_id: Optional[int]) -> List[OutboundCommand]:
        self.store.set_stage(user_id, Stage.DOCUMENT)
        frame = self.navigation.pop(user_id) or self.navigation.peek(user_id)
        if frame is None:
            frame = menus.root_menu()
            self.navigation.reset(user_id, frame)
        return [RenderMenu(user_id=user_id, frame=frame, replace_message_id=message_id)]

    # --- sorting ---

    def _sort_and_offer_export(
        self,
        user_id: int,
        state: SessionState,
        message_id: Optional[int],
        field_id: Optional[FieldId],
        reverse: bool,
    ) -> List[OutboundCommand]:
        if field_id is None:
            raise UnknownFieldError(None)
        result = sort_records(state.dataset, field_id, reverse)
        self.store.set_last_result(user_id, result)
        self.store.set_last_sort_field(user_id, field_id)
        LOGGER.info("[SORT] User %s sorted %d records by %s (reverse=%s)", user_id, len(result), field_id.value, reverse)
        return self._show(user_id, menus.export_menu(), message_id)

    def _make_sort_field_handler(self, field_id: FieldId) -> ActionHandler:
        def handler(user_id: int, state: SessionState, message_id: Optional[int]) -> List[OutboundCommand]:
            if not state.has_dataset():
                raise EmptyDatasetError()
            self.store.set_last_sort_field(user_id, field_id)
            return self._show(user_id, menus.sort_direction_menu(), message_id)
        return handler

    # --- filtering ---

    def _ask_filter_input(self, user_id: int, field1: FieldId, field2: FieldId) -> List[OutboundCommand]:
        self.store.set_filter_fields(user_id, field1, field2)
        self.store.set_stage(user_id, Stage.FILTER)
        return [SendPlainText(user_id=user_id, text=menus.filter_prompt(field1, field2))]

    def _make_first_filter_field_handler(self, field_id: FieldId) -> ActionHandler:
        def handler(user_id: int, state: SessionState, message_id: Optional[int]) -> List[OutboundCommand]:
            self.store.set_filter_fields(user_id, field_id, FieldId.NONE)
            return self._show(user_id, menus.second_filter_field_menu(), message_id)
        return handler

    def _make_second_filter_field_handler(self, field_id: FieldId) -> ActionHandler:
        return lambda user_id, state, message_id: self._choose_second_filter_field(user_id, state, field_id)

    def _choose_second_filter_field(self, user_id: int, state: SessionState, field_id: Optional[FieldId]) -> List[OutboundCommand]:
        first = state.filter_field1
        if first is None or field_id is None:
            raise UnknownFieldError(None)
        return self._ask_filter_input(user_id, first, field_id)

    # --- export ---

    def _export(self, user_id: int, state: SessionState, declared_format: str) -> List[OutboundCommand]:
        if not state.last_result:
            raise EmptyDatasetError("There is no processed data to send yet.")
        try:
            content, filename = codec.encode(state.last_result, declared_format)
        except CodecError as e:
            LOGGER.error("[CODEC] User %s: failed to write %s: %s", user_id, declared_format, e.message)
            return [SendPlainText(user_id=user_id, text=e.message)]

        LOGGER.info("[EXPORT] User %s receives '%s' (%d records)", user_id, filename, len(state.last_result))
        return [SendFile(
            user_id=user_id,
            content=content,
            filename=filename,
            declared_format=declared_format,
            caption=menus.EXPORT_CAPTION,
        )]
