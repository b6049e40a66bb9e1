import os
from dataclasses import dataclass
from typing import Optional

from tg_relay.errors import ConfigError
from tg_relay.responder import DEFAULT_SYSTEM_PROMPT

TRUE_VALUES = {"1", "true", "yes", "on"}


def _flag(name, default=False):
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in TRUE_VALUES


def _number(name, default, cast):
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return cast(raw.strip())
    except ValueError:
        raise ConfigError(f"{name} must be a {cast.__name__}, got {raw!r}") from None


@dataclass(frozen=True)
class Settings:
    telegram_token: str
    openai_api_key: str
    openai_model: str = "gpt-4o-mini"
    openai_prompt_id: Optional[str] = None
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    owner_id: int = 0
    admin_token: Optional[str] = None
    webhook_secret: Optional[str] = None
    require_explicit_mode: bool = False
    responder_timeout: float = 60.0
    responder_poll_interval: float = 1.0
    responder_max_polls: int = 30
    openai_background: bool = False
    use_polling: bool = False
    port: int = 5000
    log_level: str = "INFO"

    @classmethod
    def from_env(cls):
        """Read settings from the environment (call load_dotenv() first)."""
        telegram_token = os.getenv("TELEGRAM_TOKEN")
        openai_api_key = os.getenv("OPENAI_API_KEY")
        if not telegram_token:
            raise ConfigError("TELEGRAM_TOKEN is not set")
        if not openai_api_key:
            raise ConfigError("OPENAI_API_KEY is not set")

        return cls(
            telegram_token=telegram_token,
            openai_api_key=openai_api_key,
            openai_model=os.getenv("OPENAI_MODEL") or "gpt-4o-mini",
            openai_prompt_id=os.getenv("OPENAI_PROMPT_ID") or None,
            system_prompt=os.getenv("SYSTEM_PROMPT") or DEFAULT_SYSTEM_PROMPT,
            owner_id=_number("OWNER_ID", 0, int),
            admin_token=os.getenv("ADMIN_TOKEN") or None,
            webhook_secret=os.getenv("WEBHOOK_SECRET") or None,
            require_explicit_mode=_flag("REQUIRE_EXPLICIT_MODE"),
            responder_timeout=_number("RESPONDER_TIMEOUT", 60.0, float),
            responder_poll_interval=_number("RESPONDER_POLL_INTERVAL", 1.0, float),
            responder_max_polls=_number("RESPONDER_MAX_POLLS", 30, int),
            openai_background=_flag("OPENAI_BACKGROUND"),
            use_polling=_flag("USE_POLLING"),
            port=_number("PORT", 5000, int),
            log_level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
        )
