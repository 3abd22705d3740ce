"""Environment-driven settings.

Values are read once at import time; `.env` is loaded for local development.
"""

import os

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./repair_desk.db")
SITE_URL = os.getenv("SITE_URL", "http://localhost:3000").rstrip("/")

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
OPENAI_CHAT_MODEL = os.getenv("OPENAI_CHAT_MODEL", "gpt-4o")

STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")
PLATFORM_FEE_BPS = int(os.getenv("PLATFORM_FEE_BPS", "300"))

TWILIO_ACCOUNT_SID = os.getenv("TWILIO_ACCOUNT_SID")
TWILIO_AUTH_TOKEN = os.getenv("TWILIO_AUTH_TOKEN")
TWILIO_FROM_NUMBER = os.getenv("TWILIO_FROM_NUMBER")

SHOP_BOOST_SECRET = os.getenv("SHOP_BOOST_SECRET")
SHOP_BOOST_ENDPOINT = os.getenv(
    "SHOP_BOOST_ENDPOINT",
    "http://localhost:8000/internal/shop-boost/process",
)

SCHEDULER_ENABLED = _env_bool("SCHEDULER_ENABLED", True)
REMINDER_HOUR = int(os.getenv("REMINDER_HOUR", "9"))
SHOP_BOOST_SWEEP_MINUTES = int(os.getenv("SHOP_BOOST_SWEEP_MINUTES", "15"))
SSE_POLL_INTERVAL_SECONDS = float(os.getenv("SSE_POLL_INTERVAL_SECONDS", "0.9"))
