import datetime

import pytest

from tg_relay.errors import ResponderFailure
from tg_relay.linker import ResponderReply
from tg_relay.metrics import MetricsLedger
from tg_relay.orchestrator import TurnOrchestrator
from tg_relay.store import InMemoryConversationStore, Mode

NOW = datetime.datetime(2026, 10, 1, 12, 0, tzinfo=datetime.timezone.utc)


class FakeResponder:
    """Records envelopes and answers with resp_1, resp_2, ..."""

    def __init__(self):
        self.calls = []
        self.fail_with = None

    async def respond(self, envelope):
        self.calls.append(envelope)
        if self.fail_with is not None:
            raise self.fail_with
        return ResponderReply(text=f"answer to {envelope.text}", token=f"resp_{len(self.calls)}")


@pytest.fixture
def responder():
    return FakeResponder()


@pytest.fixture
def ledger():
    return MetricsLedger()


def make_orchestrator(responder, ledger, require_explicit_mode=False, admin_id=42):
    store = InMemoryConversationStore(
        default_mode=None if require_explicit_mode else Mode.GENERAL
    )
    return TurnOrchestrator(
        store,
        responder,
        ledger=ledger,
        admin_id=admin_id,
        require_explicit_mode=require_explicit_mode,
        clock=lambda: NOW,
    )


@pytest.fixture
def orchestrator(responder, ledger):
    return make_orchestrator(responder, ledger)


@pytest.fixture
def strict_orchestrator(responder, ledger):
    return make_orchestrator(responder, ledger, require_explicit_mode=True)


@pytest.fixture
def failure():
    return ResponderFailure("boom")
