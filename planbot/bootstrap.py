# planbot/bootstrap.py

import logging

from planbot.db_connection import DbConnection
from planbot.engine import ConversationEngine
from planbot.llm_client import LlmClient
from planbot.plan_synthesizer import PlanSynthesizer
from planbot.settings import BotSettings
from planbot.state_store import ConversationStateStore
from planbot.telegram_transport import TelegramTransport
from planbot.transcript_store import SqlTranscriptStore
from planbot.transcript_writer import TranscriptWriter

logger = logging.getLogger("planbot")


def connect_store(settings: BotSettings) -> DbConnection:
    """
    Open the transcript store and make sure the schema exists.
    Raises if the database is unreachable; callers treat that as fatal.
    """
    db = DbConnection(settings.database_url)
    db.ping()
    db.create_schema()
    logger.info("Connected to the transcript store")
    return db


def build_engine(settings: BotSettings, db: DbConnection, transport: TelegramTransport | None = None) -> ConversationEngine:
    llm = LlmClient(
        settings.openai_model,
        api_key=settings.openai_api_key,
        timeout=settings.openai_timeout,
    )
    return ConversationEngine(
        transport=transport or TelegramTransport(settings.telegram_bot_token),
        synthesizer=PlanSynthesizer(llm, max_tokens=settings.openai_max_tokens),
        writer=TranscriptWriter(SqlTranscriptStore(db.build_db_session_factory())),
        store=ConversationStateStore(ttl_seconds=settings.state_ttl_seconds),
    )
