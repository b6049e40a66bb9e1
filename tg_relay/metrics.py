import datetime
import threading
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, Optional

from tg_relay.store import utcnow


@dataclass
class MetricsLedger:
    """Additive counters for the admin. Conversation logic never reads them.

    Written from the bot's event loop thread and read from Flask request
    threads, so every access goes through ``_lock``.
    """

    total_updates: int = 0
    total_messages: int = 0
    last_seen: Dict[int, datetime.datetime] = field(default_factory=dict)
    commands: Counter = field(default_factory=Counter)
    last_update_at: Optional[datetime.datetime] = None
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False, compare=False)

    def _bump(self, user_id, now):
        self.total_updates += 1
        self.last_seen[user_id] = now
        self.last_update_at = now

    def record_update(self, user_id, now=None):
        with self._lock:
            self._bump(user_id, now or utcnow())

    def record_message(self, user_id, now=None):
        with self._lock:
            self._bump(user_id, now or utcnow())
            self.total_messages += 1

    def record_command(self, user_id, command, now=None):
        with self._lock:
            self._bump(user_id, now or utcnow())
            self.commands[command] += 1

    @property
    def distinct_users(self):
        with self._lock:
            return len(self.last_seen)

    def active_since(self, since):
        with self._lock:
            return self._active_since(since)

    def _active_since(self, since):
        return sum(1 for seen in self.last_seen.values() if seen >= since)

    def snapshot(self, now=None):
        now = now or utcnow()
        with self._lock:
            return {
                "total_updates": self.total_updates,
                "total_messages": self.total_messages,
                "distinct_users": len(self.last_seen),
                "active_24h": self._active_since(now - datetime.timedelta(hours=24)),
                "active_7d": self._active_since(now - datetime.timedelta(days=7)),
                "commands": dict(self.commands),
                "last_update_at": self.last_update_at.isoformat() if self.last_update_at else None,
            }


def format_snapshot(snapshot):
    text = "Statistieken:\n"
    text += f"\nUpdates: {snapshot['total_updates']}"
    text += f"\nBerichten: {snapshot['total_messages']}"
    text += f"\nUnieke gebruikers: {snapshot['distinct_users']}"
    text += f"\nActief 24u: {snapshot['active_24h']}"
    text += f"\nActief 7d: {snapshot['active_7d']}"
    for command, count in sorted(snapshot["commands"].items()):
        text += f"\n/{command}: {count}"
    if snapshot["last_update_at"]:
        text += f"\nLaatste update: {snapshot['last_update_at']}"
    return text
