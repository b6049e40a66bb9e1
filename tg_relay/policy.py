import enum
from dataclasses import replace

from tg_relay.errors import InvalidTransition
from tg_relay.store import ConversationRecord, Locale, Mode


class TransitionKind(str, enum.Enum):
    SET_MODE = "SET_MODE"
    SET_LOCALE = "SET_LOCALE"
    RESET = "RESET"


# === Copy ===

MODE_LABELS = {
    Locale.NL: {
        Mode.GENERAL: "💬 Algemene vraag",
        Mode.SEEKING_WORK: "🧑‍🔧 Ik zoek werk",
        Mode.HIRING: "🏢 Ik zoek personeel",
        Mode.QUICK: "⚡ Snelle vraag",
    },
    Locale.EN: {
        Mode.GENERAL: "💬 General question",
        Mode.SEEKING_WORK: "🧑‍🔧 I'm looking for work",
        Mode.HIRING: "🏢 I'm hiring",
        Mode.QUICK: "⚡ Quick question",
    },
    Locale.DE: {
        Mode.GENERAL: "💬 Allgemeine Frage",
        Mode.SEEKING_WORK: "🧑‍🔧 Ich suche Arbeit",
        Mode.HIRING: "🏢 Ich suche Personal",
        Mode.QUICK: "⚡ Schnelle Frage",
    },
}

LOCALE_LABELS = {
    Locale.NL: "🇳🇱 Nederlands",
    Locale.EN: "🇬🇧 English",
    Locale.DE: "🇩🇪 Deutsch",
}

MODE_CONFIRMATIONS = {
    Locale.NL: "Top! Modus: {mode}. Stuur je vraag, dan help ik je verder 🙌",
    Locale.EN: "Great! Mode: {mode}. Send your question and I'll help you out 🙌",
    Locale.DE: "Super! Modus: {mode}. Schick deine Frage, ich helfe dir weiter 🙌",
}

LOCALE_CONFIRMATIONS = {
    Locale.NL: "Taal ingesteld op {locale}. Modus: {mode}.",
    Locale.EN: "Language set to {locale}. Mode: {mode}.",
    Locale.DE: "Sprache auf {locale} eingestellt. Modus: {mode}.",
}

NO_MODE = {
    Locale.NL: "nog niet gekozen",
    Locale.EN: "not chosen yet",
    Locale.DE: "noch nicht gewählt",
}

TEXTS = {
    "welcome": {
        Locale.NL: "Hi! Stuur je vraag, dan help ik je verder 🙌\nMet /menu kies je een onderwerp of taal.",
        Locale.EN: "Hi! Send your question and I'll help you out 🙌\nUse /menu to pick a topic or language.",
        Locale.DE: "Hallo! Schick deine Frage, ich helfe dir weiter 🙌\nMit /menu wählst du Thema oder Sprache.",
    },
    "welcome_idle": {
        Locale.NL: "Hi! Waar kan ik je mee helpen? Kies hieronder een onderwerp 👇",
        Locale.EN: "Hi! What can I help you with? Pick a topic below 👇",
        Locale.DE: "Hallo! Wobei kann ich helfen? Wähle unten ein Thema 👇",
    },
    "reset": {
        Locale.NL: "Alles is gewist. We beginnen opnieuw ✨",
        Locale.EN: "Everything has been cleared. Starting fresh ✨",
        Locale.DE: "Alles gelöscht. Wir fangen neu an ✨",
    },
    "menu": {
        Locale.NL: "Kies een onderwerp of taal:",
        Locale.EN: "Pick a topic or language:",
        Locale.DE: "Wähle ein Thema oder eine Sprache:",
    },
    "choose_first": {
        Locale.NL: "Kies eerst waar je vraag over gaat 👇",
        Locale.EN: "Please choose what your question is about first 👇",
        Locale.DE: "Bitte wähle zuerst, worum es geht 👇",
    },
    "send_text": {
        Locale.NL: "Ik kan alleen tekstberichten lezen. Stuur je vraag als tekst ✍️",
        Locale.EN: "I can only read text messages. Please send your question as text ✍️",
        Locale.DE: "Ich kann nur Textnachrichten lesen. Schick deine Frage bitte als Text ✍️",
    },
    "apology": {
        Locale.NL: "Oeps, er ging iets mis. Probeer het zo nog eens.",
        Locale.EN: "Oops, something went wrong. Please try again in a moment.",
        Locale.DE: "Hoppla, da ist etwas schiefgelaufen. Bitte versuch es gleich noch einmal.",
    },
    "unknown_command": {
        Locale.NL: "Dat commando ken ik niet. Probeer /help.",
        Locale.EN: "I don't know that command. Try /help.",
        Locale.DE: "Diesen Befehl kenne ich nicht. Versuch /help.",
    },
    "help": {
        Locale.NL: "/start - begin\n/menu - onderwerp of taal kiezen\n/reset - gesprek wissen\n/help - deze hulp",
        Locale.EN: "/start - begin\n/menu - choose topic or language\n/reset - clear the conversation\n/help - this help",
        Locale.DE: "/start - beginnen\n/menu - Thema oder Sprache wählen\n/reset - Gespräch löschen\n/help - diese Hilfe",
    },
}


def text_for(key, locale):
    return TEXTS[key][locale]


def mode_label(mode, locale):
    if mode is None:
        return NO_MODE[locale]
    return MODE_LABELS[locale][mode]


def confirmation_text(kind, record):
    """Look up the confirmation for the record's (mode, locale) after ``kind``."""
    if kind is TransitionKind.RESET:
        return TEXTS["reset"][record.locale]
    if kind is TransitionKind.SET_LOCALE:
        template = LOCALE_CONFIRMATIONS[record.locale]
        return template.format(
            locale=LOCALE_LABELS[record.locale], mode=mode_label(record.mode, record.locale)
        )
    return MODE_CONFIRMATIONS[record.locale].format(mode=mode_label(record.mode, record.locale))


# === Transitions ===

def _coerce(enum_cls, value):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).strip().upper())
    except ValueError:
        raise InvalidTransition(f"unknown {enum_cls.__name__.lower()}: {value!r}") from None


def apply_transition(record, kind, value=None, *, default_mode=Mode.GENERAL):
    """Apply a menu transition to ``record``.

    Returns ``(updated_record, confirmation_text)``. The input record is not
    modified. Changing mode or locale always drops the continuation token so
    the next turn starts a new upstream conversation.
    """
    kind = _coerce(TransitionKind, kind)
    if kind is TransitionKind.SET_MODE:
        updated = replace(record, mode=_coerce(Mode, value), continuation_token=None)
    elif kind is TransitionKind.SET_LOCALE:
        updated = replace(record, locale=_coerce(Locale, value), continuation_token=None)
    else:
        updated = ConversationRecord.fresh(record.user_id, default_mode)
    return updated, confirmation_text(kind, updated)


def parse_menu_data(data):
    """Split callback data such as ``SET_MODE:HIRING`` into (kind, value)."""
    kind, sep, value = (data or "").partition(":")
    if not sep or not value:
        raise InvalidTransition(f"malformed menu data: {data!r}")
    kind = _coerce(TransitionKind, kind)
    if kind is TransitionKind.RESET:
        raise InvalidTransition("reset is not a menu selection")
    return kind, value


def menu_data(kind, value):
    return f"{kind.value}:{value.value}"
