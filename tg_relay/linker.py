from dataclasses import dataclass, replace
from typing import Optional

from tg_relay.store import ConversationRecord, Locale, Mode


@dataclass(frozen=True)
class RequestEnvelope:
    user_id: int
    text: str
    mode: Mode
    locale: Locale
    previous_token: Optional[str] = None


@dataclass(frozen=True)
class ResponderReply:
    text: str
    token: str


def prepare_call(record: ConversationRecord, user_text: str) -> RequestEnvelope:
    # an IDLE record only reaches the responder when explicit mode is off
    return RequestEnvelope(
        user_id=record.user_id,
        text=user_text,
        mode=record.mode or Mode.GENERAL,
        locale=record.locale,
        previous_token=record.continuation_token or None,
    )


def complete_call(record: ConversationRecord, reply: ResponderReply) -> ConversationRecord:
    """Store the handle of a successful call. Failed calls never get here."""
    return replace(record, continuation_token=reply.token)
