# server.py

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import BackgroundTasks, FastAPI, Header, HTTPException, Request

from planbot.base_utils import configure_logging
from planbot.bootstrap import build_engine, connect_store
from planbot.engine import ConversationEngine
from planbot.settings import BotSettings
from planbot.telegram_transport import parse_text_update

logger = logging.getLogger("planbot")


def create_app(engine: Optional[ConversationEngine] = None, webhook_secret: Optional[str] = None) -> FastAPI:
    """
    Build the webhook app. With no engine, one is built from the environment at
    startup; an unreachable transcript store aborts the startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.engine is None:
            settings = BotSettings.from_env()
            configure_logging(settings.log_level)
            try:
                db = connect_store(settings)
            except Exception as e:
                logger.error(f"Transcript store connection error: {e}")
                raise RuntimeError("Transcript store unreachable at startup") from e
            app.state.engine = build_engine(settings, db)
            app.state.webhook_secret = settings.telegram_webhook_secret
        yield
        await app.state.engine.writer.drain()

    app = FastAPI(lifespan=lifespan)
    app.state.engine = engine
    app.state.webhook_secret = webhook_secret

    @app.post("/telegram/webhook")
    async def telegram_webhook(
        request: Request,
        background_tasks: BackgroundTasks,
        x_telegram_bot_api_secret_token: Optional[str] = Header(default=None),
    ):
        secret = app.state.webhook_secret
        if secret and x_telegram_bot_api_secret_token != secret:
            raise HTTPException(status_code=403, detail="bad secret token")

        try:
            update: Dict[str, Any] = await request.json()
        except ValueError:
            raise HTTPException(status_code=400, detail="body must be a JSON Telegram update")

        parsed = parse_text_update(update)
        if parsed is None:
            return {"ok": True, "handled": False}

        user_id, text = parsed
        # answer Telegram right away; the conversation turn runs after the response
        background_tasks.add_task(app.state.engine.on_text, user_id, text)
        return {"ok": True, "handled": True}

    @app.get("/health")
    async def health():
        return {"status": "ok", "active_conversations": len(app.state.engine.store)}

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
