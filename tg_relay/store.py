import asyncio
import datetime
import enum
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass, replace
from typing import Dict, Optional


class Mode(str, enum.Enum):
    GENERAL = "GENERAL"
    SEEKING_WORK = "SEEKING_WORK"
    HIRING = "HIRING"
    QUICK = "QUICK"


class Locale(str, enum.Enum):
    NL = "NL"
    EN = "EN"
    DE = "DE"


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


@dataclass(frozen=True)
class ConversationRecord:
    user_id: int
    # None means no mode chosen yet (only when explicit selection is required)
    mode: Optional[Mode] = Mode.GENERAL
    locale: Locale = Locale.NL
    continuation_token: Optional[str] = None
    last_seen_at: Optional[datetime.datetime] = None

    @property
    def is_active(self) -> bool:
        return self.mode is not None

    @classmethod
    def fresh(cls, user_id, default_mode=Mode.GENERAL):
        return cls(user_id=user_id, mode=default_mode)


class ConversationStore(ABC):
    """Holds one ConversationRecord per user id.

    Only the turn orchestrator writes to the store. Records are replaced
    wholesale through ``save``; nothing is ever deleted.
    """

    def __init__(self, default_mode: Optional[Mode] = Mode.GENERAL):
        self.default_mode = default_mode
        self._locks: Dict[int, asyncio.Lock] = defaultdict(asyncio.Lock)

    @abstractmethod
    def get(self, user_id: int) -> ConversationRecord:
        """Return the user's record, creating a default one on first contact."""

    @abstractmethod
    def reset(self, user_id: int) -> ConversationRecord:
        """Overwrite the user's record with defaults."""

    @abstractmethod
    def touch(self, user_id: int, now: datetime.datetime) -> None:
        """Update last_seen_at."""

    @abstractmethod
    def save(self, record: ConversationRecord) -> None:
        pass

    def lock(self, user_id: int) -> asyncio.Lock:
        """Per-user lock; turns for one user run one at a time."""
        return self._locks[user_id]


class InMemoryConversationStore(ConversationStore):
    """Process-local store. A restart resets every user to defaults."""

    def __init__(self, default_mode: Optional[Mode] = Mode.GENERAL):
        super().__init__(default_mode)
        self._records: Dict[int, ConversationRecord] = {}

    def get(self, user_id):
        record = self._records.get(user_id)
        if record is None:
            record = ConversationRecord.fresh(user_id, self.default_mode)
            record = self._records.setdefault(user_id, record)
        return record

    def reset(self, user_id):
        record = ConversationRecord.fresh(user_id, self.default_mode)
        self._records[user_id] = record
        return record

    def touch(self, user_id, now):
        self._records[user_id] = replace(self.get(user_id), last_seen_at=now)

    def save(self, record):
        self._records[record.user_id] = record

    def __len__(self):
        return len(self._records)

    def __contains__(self, user_id):
        return user_id in self._records
