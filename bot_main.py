# bot_main.py
"""
Long-polling Telegram worker

Pulls updates with getUpdates and hands every text message to the
ConversationEngine as its own asyncio task, so a slow plan synthesis for one
user never holds up the others. Turns of the same user are serialized inside
the engine.

The transcript store must be reachable at startup: if the ping fails the
process logs the error and exits with status 1.

Use server.py instead when Telegram should push updates to a webhook.
"""

import asyncio
import logging
import signal
import sys
from typing import Any, Dict, Optional, Set

from planbot.base_utils import configure_logging
from planbot.bootstrap import build_engine, connect_store
from planbot.engine import ConversationEngine
from planbot.settings import BotSettings
from planbot.telegram_transport import TelegramError, TelegramTransport, parse_text_update

logger = logging.getLogger("planbot_worker")


class UpdatePoller:
    def __init__(
        self,
        engine: ConversationEngine,
        transport: TelegramTransport,
        poll_timeout: int = 30,
        error_backoff: float = 5.0,
    ):
        self.engine = engine
        self.transport = transport
        self.poll_timeout = poll_timeout
        self.error_backoff = error_backoff
        self.offset: Optional[int] = None
        self._in_flight: Set[asyncio.Task] = set()

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    def dispatch(self, update: Dict[str, Any]) -> Optional[asyncio.Task]:
        update_id = update.get("update_id")
        if isinstance(update_id, int):
            self.offset = max(self.offset or 0, update_id + 1)

        parsed = parse_text_update(update)
        if parsed is None:
            logger.debug("Ignoring non-text update %s", update_id)
            return None

        user_id, text = parsed
        task = asyncio.create_task(self.engine.on_text(user_id, text))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        return task

    async def poll_once(self) -> int:
        updates = await asyncio.to_thread(
            self.transport.get_updates, self.offset, self.poll_timeout
        )
        for update in updates:
            self.dispatch(update)
        return len(updates)

    async def run(self) -> None:
        logger.info("UpdatePoller running – poll_timeout=%ds", self.poll_timeout)

        while True:
            removed = self.engine.store.sweep_expired()
            if removed:
                logger.debug("ConversationStateStore sweep: removed %d idle conversations", removed)

            try:
                await self.poll_once()
            except Exception as e:
                logger.warning("getUpdates failed, retrying in %.1fs: %s", self.error_backoff, e)
                await asyncio.sleep(self.error_backoff)

    async def shutdown(self) -> None:
        if self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)
        await self.engine.writer.drain()


async def _serve(poller: UpdatePoller, stop_signals=(signal.SIGTERM, signal.SIGINT)) -> None:
    loop = asyncio.get_running_loop()
    task = asyncio.current_task()
    for sig in stop_signals:
        loop.add_signal_handler(sig, task.cancel)

    try:
        await poller.run()
    except asyncio.CancelledError:
        logger.info("Stop signal received, finishing in-flight turns")
    finally:
        for sig in stop_signals:
            loop.remove_signal_handler(sig)
        await poller.shutdown()


def main() -> None:
    try:
        settings = BotSettings.from_env()
    except ValueError as e:
        configure_logging()
        logger.error(str(e))
        sys.exit(1)

    configure_logging(settings.log_level)

    try:
        db = connect_store(settings)
    except Exception as e:
        logger.error("Transcript store connection error: %s", e)
        sys.exit(1)

    transport = TelegramTransport(settings.telegram_bot_token)
    # getUpdates does not work while a webhook is registered
    try:
        transport.delete_webhook()
    except TelegramError as e:
        logger.error("Telegram connection error: %s", e)
        sys.exit(1)

    engine = build_engine(settings, db, transport=transport)
    poller = UpdatePoller(engine, transport, poll_timeout=settings.telegram_poll_timeout)

    logger.info("Bot is running...")
    asyncio.run(_serve(poller))
    logger.info("Bot stopped")


if __name__ == "__main__":
    main()
