# planbot/db_connection.py

import logging
import os
from typing import Callable

from sqlalchemy import create_engine, text
from sqlalchemy.engine import URL, Engine, make_url
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from planbot.entities import Base

logger = logging.getLogger("planbot")


class DbConnection:
    def __init__(self, database_url: str | None = None) -> None:
        # ---- env config ----
        self.DB_HOST      = os.getenv("DB_HOST", "localhost")
        self.DB_PORT      = int(os.getenv("DB_PORT", "5432"))
        self.DB_NAME      = os.getenv("DB_NAME", "planbot")
        self.DB_USER      = os.getenv("DB_USER", "postgres")
        self.DB_PASSWORD  = os.getenv("DB_PASSWORD", "")

        # !###############################################
        # !   EITHER A FULL DATABASE_URL (ANY SQLALCHEMY
        # !   DIALECT) OR THE DB_* PARTS FOR POSTGRES
        # !###############################################
        self.DATABASE_URL = database_url or os.getenv("DATABASE_URL", "")
        if not self.DATABASE_URL:
            self.DATABASE_URL = URL.create(
                "postgresql+pg8000",
                username=self.DB_USER,
                password=self.DB_PASSWORD or None,
                host=self.DB_HOST,
                port=self.DB_PORT,
                database=self.DB_NAME,
            ).render_as_string(hide_password=False)
        self._engine: Engine | None = None
        self._sessionmaker: sessionmaker | None = None

    def get_engine(self) -> Engine:
        if self._engine is None:
            connect_args = {}
            engine_kwargs = {}
            url = make_url(self.DATABASE_URL)
            if url.drivername == "postgresql+pg8000":
                # pg8000 supports 'timeout' in seconds
                connect_args["timeout"] = 10  # fail in 10s instead of hanging forever
            elif url.drivername.startswith("sqlite") and url.database in (None, "", ":memory:"):
                # one shared in-memory database across threads
                connect_args["check_same_thread"] = False
                engine_kwargs["poolclass"] = StaticPool
            logger.info(f"[DB] Connecting to {self._redacted_url()}")
            self._engine = create_engine(
                self.DATABASE_URL,
                future=True,
                pool_pre_ping=True,
                connect_args=connect_args,
                **engine_kwargs,
            )
        return self._engine

    def _redacted_url(self) -> str:
        return make_url(self.DATABASE_URL).render_as_string(hide_password=True)

    # -------- SQLAlchemy Session factory --------
    def build_db_session_factory(self) -> Callable[[], Session]:
        if self._sessionmaker is None:
            self._sessionmaker = sessionmaker(
                bind=self.get_engine(),
                autoflush=False,
                autocommit=False,
                future=True,
            )

        def _factory() -> Session:
            return self._sessionmaker()

        return _factory

    def create_schema(self) -> None:
        Base.metadata.create_all(self.get_engine())

    def ping(self) -> None:
        """
        Raises if the store cannot be reached.
        """
        with self.get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
