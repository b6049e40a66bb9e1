import asyncio

import pytest

from conftest import make_orchestrator
from tg_relay.errors import ResponderIncompleteState
from tg_relay.linker import ResponderReply
from tg_relay.policy import text_for
from tg_relay.store import ConversationRecord, Locale, Mode

U1 = 1001
ADMIN = 42


@pytest.mark.asyncio
async def test_start_welcomes_with_general_default(orchestrator):
    outbound = await orchestrator.on_start(U1)

    assert outbound.text == text_for("welcome", Locale.NL)
    assert not outbound.show_menu
    record = orchestrator.store.get(U1)
    assert record.mode is Mode.GENERAL
    assert record.continuation_token is None


@pytest.mark.asyncio
async def test_hiring_scenario(strict_orchestrator, responder):
    orch = strict_orchestrator

    welcome = await orch.on_start(U1)
    assert welcome.show_menu

    nudge = await orch.on_text(U1, "hello")
    assert nudge.text == text_for("choose_first", Locale.NL)
    assert nudge.show_menu
    assert responder.calls == []

    confirmation = await orch.on_button(U1, "SET_MODE:HIRING")
    assert orch.store.get(U1).mode is Mode.HIRING
    assert "personeel" in confirmation.text
    assert not confirmation.show_menu

    reply = await orch.on_text(U1, "I need 3 people Friday")
    assert len(responder.calls) == 1
    assert responder.calls[0].previous_token is None
    assert responder.calls[0].mode is Mode.HIRING
    assert reply.text == "answer to I need 3 people Friday"
    assert orch.store.get(U1).continuation_token == "resp_1"

    # locale switch drops the upstream conversation
    await orch.on_button(U1, "SET_LOCALE:EN")
    record = orch.store.get(U1)
    assert record.locale is Locale.EN
    assert record.continuation_token is None

    await orch.on_text(U1, "And on Saturday?")
    assert len(responder.calls) == 2
    assert responder.calls[1].previous_token is None
    assert responder.calls[1].locale is Locale.EN


@pytest.mark.asyncio
async def test_second_turn_continues_conversation(orchestrator, responder):
    await orchestrator.on_text(U1, "first")
    await orchestrator.on_text(U1, "second")

    assert responder.calls[1].previous_token == "resp_1"
    assert orchestrator.store.get(U1).continuation_token == "resp_2"


@pytest.mark.asyncio
async def test_failed_call_leaves_token_unchanged(orchestrator, responder, failure):
    await orchestrator.on_text(U1, "first")
    before = orchestrator.store.get(U1).continuation_token

    responder.fail_with = failure
    outbound = await orchestrator.on_text(U1, "second")

    assert outbound.text == text_for("apology", Locale.NL)
    assert orchestrator.store.get(U1).continuation_token == before == "resp_1"


@pytest.mark.asyncio
async def test_incomplete_state_is_an_apology(orchestrator, responder):
    responder.fail_with = ResponderIncompleteState("function_call")

    outbound = await orchestrator.on_text(U1, "book it")

    assert outbound.text == text_for("apology", Locale.NL)
    assert orchestrator.store.get(U1).continuation_token is None


@pytest.mark.asyncio
async def test_reset_returns_defaults(strict_orchestrator):
    orch = strict_orchestrator
    orch.store.save(ConversationRecord(user_id=U1, mode=Mode.QUICK, locale=Locale.DE, continuation_token="x"))

    outbound = await orch.on_reset(U1)

    record = orch.store.get(U1)
    assert (record.mode, record.locale, record.continuation_token) == (None, Locale.NL, None)
    assert outbound.text == text_for("reset", Locale.NL)
    assert outbound.show_menu


@pytest.mark.asyncio
async def test_mode_change_clears_token(orchestrator):
    await orchestrator.on_text(U1, "hi")
    await orchestrator.on_button(U1, "SET_MODE:QUICK")
    assert orchestrator.store.get(U1).continuation_token is None


@pytest.mark.asyncio
async def test_bad_button_shows_menu_again(orchestrator):
    outbound = await orchestrator.on_button(U1, "SET_MODE:DANCING")

    assert outbound.show_menu
    assert orchestrator.store.get(U1).mode is Mode.GENERAL


@pytest.mark.asyncio
@pytest.mark.parametrize("text", ["", "   ", None])
async def test_empty_text_nudges_without_call(orchestrator, responder, text):
    outbound = await orchestrator.on_text(U1, text)

    assert outbound.text == text_for("send_text", Locale.NL)
    assert responder.calls == []


@pytest.mark.asyncio
async def test_before_call_runs_once_per_call(orchestrator):
    calls = []

    async def typing():
        calls.append(True)

    await orchestrator.on_text(U1, "hi", before_call=typing)
    assert calls == [True]


@pytest.mark.asyncio
async def test_metrics_totals(orchestrator, ledger):
    await orchestrator.on_start(1)
    await orchestrator.on_text(1, "a")
    await orchestrator.on_text(2, "b")
    await orchestrator.on_text(2, "c")
    await orchestrator.on_menu(3)

    snapshot = ledger.snapshot()
    assert snapshot["total_messages"] == 3
    assert snapshot["total_updates"] == 5
    assert snapshot["distinct_users"] == 3
    assert snapshot["commands"] == {"start": 1, "menu": 1}


@pytest.mark.asyncio
async def test_stats_for_admin(orchestrator):
    await orchestrator.on_text(U1, "hi")

    outbound = await orchestrator.on_stats(ADMIN)

    assert "Updates: 1" in outbound.text
    assert "Unieke gebruikers: 1" in outbound.text


@pytest.mark.asyncio
async def test_stats_refused_for_others_without_touching_ledger(orchestrator, ledger):
    await orchestrator.on_text(U1, "hi")
    before = ledger.snapshot()

    outbound = await orchestrator.on_stats(U1)

    assert outbound.text == text_for("unknown_command", Locale.NL)
    assert ledger.snapshot() == before


@pytest.mark.asyncio
async def test_stats_refused_when_no_admin_configured(responder, ledger):
    orch = make_orchestrator(responder, ledger, admin_id=0)
    outbound = await orch.on_stats(0)
    assert outbound.text == text_for("unknown_command", Locale.NL)


@pytest.mark.asyncio
async def test_same_user_turns_are_serialized(orchestrator):
    in_flight = []
    overlaps = []

    class SlowResponder:
        async def respond(self, envelope):
            if in_flight:
                overlaps.append(envelope.text)
            in_flight.append(envelope.text)
            await asyncio.sleep(0.01)
            in_flight.remove(envelope.text)
            return ResponderReply(text="ok", token=f"tok-{envelope.text}")

    orchestrator.responder = SlowResponder()

    await asyncio.gather(orchestrator.on_text(U1, "a"), orchestrator.on_text(U1, "b"))

    assert overlaps == []
    assert orchestrator.store.get(U1).continuation_token in {"tok-a", "tok-b"}


@pytest.mark.asyncio
async def test_text_queued_behind_reset_sees_idle_record(strict_orchestrator):
    orch = strict_orchestrator
    gate = asyncio.Event()
    calls = []

    class GatedResponder:
        async def respond(self, envelope):
            calls.append(envelope.text)
            await gate.wait()
            return ResponderReply(text="ok", token="resp_a")

    orch.responder = GatedResponder()
    await orch.on_button(U1, "SET_MODE:HIRING")

    first = asyncio.create_task(orch.on_text(U1, "a"))
    while not calls:
        await asyncio.sleep(0)
    reset = asyncio.create_task(orch.on_reset(U1))
    await asyncio.sleep(0)
    second = asyncio.create_task(orch.on_text(U1, "b"))
    await asyncio.sleep(0)
    gate.set()

    _, _, nudge = await asyncio.gather(first, reset, second)

    assert calls == ["a"]
    assert nudge.text == text_for("choose_first", Locale.NL)
    assert nudge.show_menu
    assert orch.store.get(U1).mode is None
