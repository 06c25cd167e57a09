# planbot/settings.py
"""
Process configuration, read from the environment (and a .env file if present).
"""
import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel

from planbot.plan_synthesizer import DEFAULT_MAX_TOKENS


def _int_or_default(raw: Optional[str], default: int) -> int:
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return default
    return value if value > 0 else default


def _float_or_none(raw: Optional[str]) -> Optional[float]:
    if raw is None or raw.strip() == "":
        return None
    try:
        value = float(raw)
    except ValueError:
        return None
    return value if value > 0 else None


class BotSettings(BaseModel):
    telegram_bot_token: str
    openai_api_key: str
    openai_model: str = "gpt-3.5-turbo"
    openai_max_tokens: int = DEFAULT_MAX_TOKENS
    openai_timeout: float = 60.0
    database_url: Optional[str] = None
    state_ttl_seconds: Optional[float] = None
    telegram_poll_timeout: int = 30
    telegram_webhook_secret: Optional[str] = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, load_env_file: bool = True) -> "BotSettings":
        if load_env_file:
            load_dotenv()

        missing = [
            name for name in ("TELEGRAM_BOT_TOKEN", "OPENAI_API_KEY")
            if not os.getenv(name)
        ]
        if missing:
            raise ValueError(f"Missing required environment variable(s): {', '.join(missing)}")

        return cls(
            telegram_bot_token=os.environ["TELEGRAM_BOT_TOKEN"],
            openai_api_key=os.environ["OPENAI_API_KEY"],
            openai_model=os.getenv("OPENAI_MODEL") or "gpt-3.5-turbo",
            # unparsable or non-positive values fall back to the default ceiling
            openai_max_tokens=_int_or_default(os.getenv("OPENAI_MAX_TOKENS"), DEFAULT_MAX_TOKENS),
            openai_timeout=_float_or_none(os.getenv("OPENAI_TIMEOUT")) or 60.0,
            database_url=os.getenv("DATABASE_URL") or None,
            state_ttl_seconds=_float_or_none(os.getenv("INTAKE_STATE_TTL_SECONDS")),
            telegram_poll_timeout=_int_or_default(os.getenv("TELEGRAM_POLL_TIMEOUT"), 30),
            telegram_webhook_secret=os.getenv("TELEGRAM_WEBHOOK_SECRET") or None,
            log_level=os.getenv("LOG_LEVEL") or "INFO",
        )
