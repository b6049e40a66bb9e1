import atexit
import logging

from dotenv import load_dotenv
from openai import AsyncOpenAI
from telegram import Update

from tg_relay.bot import WebhookBridge, build_application
from tg_relay.config import Settings
from tg_relay.metrics import MetricsLedger
from tg_relay.orchestrator import TurnOrchestrator
from tg_relay.responder import OpenAIResponder
from tg_relay.store import InMemoryConversationStore, Mode
from tg_relay.web import create_app

logger = logging.getLogger(__name__)

# === Environment ===
load_dotenv()
settings = Settings.from_env()

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, settings.log_level, logging.INFO),
)
# httpx logs request URLs, which contain the bot token
logging.getLogger("httpx").setLevel(logging.WARNING)

# === Wiring ===
ledger = MetricsLedger()
store = InMemoryConversationStore(
    default_mode=None if settings.require_explicit_mode else Mode.GENERAL
)
responder = OpenAIResponder(
    AsyncOpenAI(api_key=settings.openai_api_key),
    model=settings.openai_model,
    system_prompt=settings.system_prompt,
    prompt_id=settings.openai_prompt_id,
    timeout=settings.responder_timeout,
    poll_interval=settings.responder_poll_interval,
    max_polls=settings.responder_max_polls,
    background=settings.openai_background,
)
orchestrator = TurnOrchestrator(
    store,
    responder,
    ledger=ledger,
    admin_id=settings.owner_id,
    require_explicit_mode=settings.require_explicit_mode,
)
application = build_application(
    settings.telegram_token, orchestrator, webhook=not settings.use_polling
)

# === Webhook mode: PTB runs on its own event loop thread ===
bridge = WebhookBridge(application)
app = create_app(settings, ledger, bridge.submit)

if not settings.use_polling:
    bridge.start()
    atexit.register(bridge.stop)


# === Run ===
if __name__ == "__main__":
    if settings.use_polling:
        logger.info("Telegram bot running (polling)...")
        application.run_polling(allowed_updates=Update.ALL_TYPES)
    else:
        app.run(host="0.0.0.0", port=settings.port)
