import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from tg_relay import policy
from tg_relay.errors import AuthorizationDenied, InvalidTransition, ResponderError
from tg_relay.linker import complete_call, prepare_call
from tg_relay.metrics import MetricsLedger, format_snapshot
from tg_relay.policy import TransitionKind, text_for
from tg_relay.store import ConversationStore, Locale, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Outbound:
    text: str
    locale: Locale = Locale.NL
    show_menu: bool = False


class TurnOrchestrator:
    """Turns one inbound event into one outbound action.

    The orchestrator is the only writer of conversation records. Text turns
    for the same user run under the store's per-user lock, so at most one
    responder call per user is in flight.
    """

    def __init__(
        self,
        store: ConversationStore,
        responder,
        ledger: Optional[MetricsLedger] = None,
        admin_id: int = 0,
        require_explicit_mode: bool = False,
        clock: Callable = utcnow,
    ):
        self.store = store
        self.responder = responder
        self.ledger = ledger if ledger is not None else MetricsLedger()
        self.admin_id = admin_id
        self.require_explicit_mode = require_explicit_mode
        self.clock = clock

    def _enter(self, user_id, command=None, message=False):
        now = self.clock()
        self.store.touch(user_id, now)
        if command:
            self.ledger.record_command(user_id, command, now)
        elif message:
            self.ledger.record_message(user_id, now)
        else:
            self.ledger.record_update(user_id, now)
        return self.store.get(user_id)

    def _needs_mode(self, record):
        return self.require_explicit_mode and not record.is_active

    # === Commands ===

    async def on_start(self, user_id) -> Outbound:
        record = self._enter(user_id, command="start")
        if self._needs_mode(record):
            return Outbound(text_for("welcome_idle", record.locale), record.locale, show_menu=True)
        return Outbound(text_for("welcome", record.locale), record.locale)

    async def on_reset(self, user_id) -> Outbound:
        self._enter(user_id, command="reset")
        async with self.store.lock(user_id):
            record = self.store.reset(user_id)
            self.store.touch(user_id, self.clock())
        logger.info("user %s reset their conversation", user_id)
        text = policy.confirmation_text(TransitionKind.RESET, record)
        return Outbound(text, record.locale, show_menu=self.require_explicit_mode)

    async def on_menu(self, user_id) -> Outbound:
        record = self._enter(user_id, command="menu")
        return Outbound(text_for("menu", record.locale), record.locale, show_menu=True)

    async def on_help(self, user_id) -> Outbound:
        record = self._enter(user_id, command="help")
        return Outbound(text_for("help", record.locale), record.locale)

    async def on_unknown_command(self, user_id, command) -> Outbound:
        record = self._enter(user_id, command=command or "unknown")
        return Outbound(text_for("unknown_command", record.locale), record.locale)

    async def on_stats(self, user_id) -> Outbound:
        """Admin-only ledger snapshot. Never writes to the ledger."""
        locale = self.store.get(user_id).locale
        try:
            snapshot = self.stats_snapshot(user_id)
        except AuthorizationDenied:
            logger.info("refused /stats for user %s", user_id)
            return Outbound(text_for("unknown_command", locale), locale)
        return Outbound(format_snapshot(snapshot), locale)

    def stats_snapshot(self, user_id):
        if not self.admin_id or user_id != self.admin_id:
            raise AuthorizationDenied(f"user {user_id} is not the admin")
        return self.ledger.snapshot(self.clock())

    # === Menu ===

    async def on_button(self, user_id, data) -> Outbound:
        record = self._enter(user_id)
        try:
            kind, value = policy.parse_menu_data(data)
        except InvalidTransition as e:
            logger.warning("user %s sent bad menu data: %s", user_id, e)
            return Outbound(text_for("menu", record.locale), record.locale, show_menu=True)

        async with self.store.lock(user_id):
            record = self.store.get(user_id)
            try:
                record, text = policy.apply_transition(
                    record, kind, value, default_mode=self.store.default_mode
                )
            except InvalidTransition as e:
                logger.warning("user %s sent bad menu data: %s", user_id, e)
                return Outbound(text_for("menu", record.locale), record.locale, show_menu=True)
            self.store.save(record)
        return Outbound(text, record.locale, show_menu=self._needs_mode(record))

    # === Messages ===

    async def on_non_text(self, user_id) -> Outbound:
        record = self._enter(user_id)
        return Outbound(text_for("send_text", record.locale), record.locale)

    async def on_text(
        self, user_id, text, before_call: Optional[Callable[[], Awaitable]] = None
    ) -> Outbound:
        text = (text or "").strip()
        if not text:
            return await self.on_non_text(user_id)

        self._enter(user_id, message=True)
        async with self.store.lock(user_id):
            # checked under the lock so a concurrent /reset is seen
            record = self.store.get(user_id)
            if self._needs_mode(record):
                return Outbound(text_for("choose_first", record.locale), record.locale, show_menu=True)
            envelope = prepare_call(record, text)
            if before_call is not None:
                await before_call()
            try:
                reply = await self.responder.respond(envelope)
            except ResponderError as e:
                logger.error(f"Responder failed for user {user_id}: {e}")
                return Outbound(text_for("apology", record.locale), record.locale)
            # re-read: touch() may have replaced the record while we waited
            self.store.save(complete_call(self.store.get(user_id), reply))
        return Outbound(reply.text, record.locale)
