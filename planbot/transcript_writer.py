# planbot/transcript_writer.py

import asyncio
import logging
from typing import Dict, List, Mapping, Optional, Set

from planbot.transcript_store import TranscriptStore

logger = logging.getLogger("planbot")


class TranscriptWriter:
    """
    Turns a finished conversation into a transcript record and hands it to the store.

    Storage is best effort: write() logs failures and never raises, and submit()
    runs write() off the event loop without the caller waiting on it.
    """

    def __init__(self, store: TranscriptStore):
        self.store = store
        self._in_flight: Set[asyncio.Task] = set()

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    def build_messages(self, answers: Mapping[str, str], plan: Optional[str]) -> List[Dict[str, str]]:
        messages = [
            {"role": "bot" if label.startswith("bot") else "user", "content": content}
            for label, content in answers.items()
        ]
        if plan:
            messages.append({"role": "bot", "content": plan})
        return messages

    def write(self, user_id: str, answers: Mapping[str, str], plan: Optional[str]) -> bool:
        record = {
            "user_id": str(user_id),
            "messages": self.build_messages(answers, plan),
        }
        try:
            self.store.append(record)
        except Exception as e:
            logger.exception(f"Error saving conversation for user {user_id}: {e}")
            return False
        logger.info(f"Conversation saved for user {user_id}")
        return True

    def submit(self, user_id: str, answers: Mapping[str, str], plan: Optional[str]) -> asyncio.Task:
        """
        Fire-and-forget write. The answers are copied so later mutation by the caller
        cannot leak into the stored record.
        """
        task = asyncio.create_task(
            asyncio.to_thread(self.write, user_id, dict(answers), plan)
        )
        self._in_flight.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._in_flight.discard(task)
        if task.cancelled():
            logger.warning("Transcript write was cancelled before completion")
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Transcript write crashed: {exc!r}")

    async def drain(self) -> None:
        """
        Wait for every pending write. Used on shutdown and by tests.
        """
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)
