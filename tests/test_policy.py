import pytest

from tg_relay.errors import InvalidTransition
from tg_relay.policy import (
    TransitionKind,
    apply_transition,
    menu_data,
    parse_menu_data,
    text_for,
)
from tg_relay.store import ConversationRecord, Locale, Mode


@pytest.fixture
def record():
    return ConversationRecord(user_id=1, mode=Mode.QUICK, locale=Locale.NL, continuation_token="resp_1")


@pytest.mark.parametrize("locale", list(Locale))
def test_set_locale_always_clears_token(record, locale):
    updated, text = apply_transition(record, TransitionKind.SET_LOCALE, locale.value)

    assert updated.locale is locale
    assert updated.continuation_token is None
    assert updated.mode is Mode.QUICK
    assert text


def test_set_mode_clears_token(record):
    updated, text = apply_transition(record, TransitionKind.SET_MODE, "HIRING")

    assert updated.mode is Mode.HIRING
    assert updated.continuation_token is None
    assert "Ik zoek personeel" in text


def test_confirmation_follows_new_locale(record):
    _, text = apply_transition(record, "SET_LOCALE", "EN")
    assert text.startswith("Language set to")


def test_reset_returns_default_record(record):
    updated, text = apply_transition(record, TransitionKind.RESET)

    assert updated == ConversationRecord.fresh(1)
    assert text == text_for("reset", Locale.NL)


def test_reset_honours_default_mode(record):
    updated, _ = apply_transition(record, TransitionKind.RESET, default_mode=None)
    assert updated.mode is None


def test_input_record_untouched(record):
    apply_transition(record, TransitionKind.SET_LOCALE, "DE")
    assert record.continuation_token == "resp_1"
    assert record.locale is Locale.NL


def test_unknown_values_rejected(record):
    with pytest.raises(InvalidTransition):
        apply_transition(record, TransitionKind.SET_MODE, "DANCING")
    with pytest.raises(InvalidTransition):
        apply_transition(record, TransitionKind.SET_LOCALE, "FR")
    with pytest.raises(InvalidTransition):
        apply_transition(record, "FLY", "x")


def test_menu_data_round_trip():
    data = menu_data(TransitionKind.SET_MODE, Mode.SEEKING_WORK)
    assert data == "SET_MODE:SEEKING_WORK"
    assert parse_menu_data(data) == (TransitionKind.SET_MODE, "SEEKING_WORK")


@pytest.mark.parametrize("data", [None, "", "SET_MODE", "SET_MODE:", "RESET:now", "NOPE:1"])
def test_parse_menu_data_rejects_garbage(data):
    with pytest.raises(InvalidTransition):
        parse_menu_data(data)
