# planbot/engine.py

import asyncio
import logging
from typing import List, Protocol, Sequence

from planbot.bot_prompts import GENERIC_APOLOGY, PLAN_ACKNOWLEDGMENT, QUESTION_CATALOG
from planbot.plan_synthesizer import PlanSynthesizer
from planbot.state_store import ConversationState, ConversationStateStore
from planbot.transcript_writer import TranscriptWriter

logger = logging.getLogger("planbot")


class Transport(Protocol):
    def send(self, user_id: str, text: str) -> None: ...


class ConversationEngine:
    """
    Drives the intake conversation: one catalog question per inbound message, then
    a synthesized plan once every question has an answer.

    Turns of the same user run one at a time (per-user lock held by the state
    store); different users never wait on each other. Blocking collaborators
    (transport, completion service) are called through asyncio.to_thread.
    """

    def __init__(
        self,
        transport: Transport,
        synthesizer: PlanSynthesizer,
        writer: TranscriptWriter,
        store: ConversationStateStore | None = None,
        catalog: Sequence[str] = QUESTION_CATALOG,
    ):
        if not catalog:
            raise ValueError("ConversationEngine needs at least one question")
        self.transport = transport
        self.synthesizer = synthesizer
        self.writer = writer
        self.store = store if store is not None else ConversationStateStore()
        self.catalog = tuple(catalog)

    async def _send(self, user_id: str, text: str) -> None:
        await asyncio.to_thread(self.transport.send, user_id, text)

    async def handle_inbound(self, user_id, text: str) -> List[str]:
        """
        Advance user_id's conversation by one inbound message.
        Returns the outbound texts, in the order they were sent.
        """
        uid = str(user_id)
        async with self.store.lock_for(uid):
            state = self.store.get_or_create(uid)

            # No question is pending on first contact, so that message is not an answer.
            if state.awaiting_answer:
                state.record_answer(text)

            if state.question_index < len(self.catalog):
                return await self._ask_next_question(state)
            return await self._finalize(state)

    async def _ask_next_question(self, state: ConversationState) -> List[str]:
        question = self.catalog[state.question_index]
        state.record_question(question)
        logger.debug(f"user={state.user_id} asking question {state.question_index}: {question}")
        await self._send(state.user_id, question)
        return [question]

    async def _finalize(self, state: ConversationState) -> List[str]:
        plan = await asyncio.to_thread(self.synthesizer.synthesize, dict(state.answers))
        state.plan = plan
        try:
            await self._send(state.user_id, PLAN_ACKNOWLEDGMENT)
            await self._send(state.user_id, plan)
        except Exception:
            # keep the state so the next message retries the finalization
            state.plan = None
            raise

        self.writer.submit(state.user_id, state.answers, state.plan)
        self.store.remove(state.user_id)
        logger.info(f"Intake completed for user {state.user_id} after {state.step} turns")
        return [PLAN_ACKNOWLEDGMENT, plan]

    async def on_text(self, user_id, text: str) -> List[str]:
        """
        Top-level handler for an inbound text: never raises.
        On any failure the user gets GENERIC_APOLOGY.
        """
        try:
            return await self.handle_inbound(user_id, text)
        except Exception as e:
            logger.exception(f"Error handling message from user {user_id}: {e}")
            try:
                await self._send(str(user_id), GENERIC_APOLOGY)
            except Exception as send_error:
                logger.error(f"Could not deliver apology to user {user_id}: {send_error!r}")
                return []
            return [GENERIC_APOLOGY]
