# planbot/plan_synthesizer.py

import logging
from typing import Mapping, Protocol

from planbot.base_utils import BaseUtils
from planbot.bot_prompts import PLAN_FALLBACK, PLAN_PROMPT

logger = logging.getLogger("planbot")

DEFAULT_MAX_TOKENS = 150


class CompletionClient(Protocol):
    def complete(self, prompt: str, max_tokens: int) -> str: ...


class PlanSynthesizer(BaseUtils):
    """
    Turns the collected intake answers into a short plan via the completion service.

    synthesize() never raises: any failure of the completion client (or an empty
    completion) yields PLAN_FALLBACK so finalization always has a plan to send.
    """

    def __init__(self, llm: CompletionClient, max_tokens: int = DEFAULT_MAX_TOKENS):
        self.llm = llm
        self.max_tokens = max_tokens

    def _humanize_label(self, label: str) -> str:
        return label.replace("_", " ")

    def build_prompt(self, answers: Mapping[str, str]) -> str:
        details = "\n".join(
            f"{self._humanize_label(label)}: {text}" for label, text in answers.items()
        )
        return self.unsafe_string_format(PLAN_PROMPT, DETAILS=details)

    def synthesize(self, answers: Mapping[str, str]) -> str:
        prompt = self.build_prompt(answers)
        logger.debug(f"===============Plan prompt\n\n{prompt}")
        try:
            plan = self.llm.complete(prompt, self.max_tokens)
        except Exception as e:
            logger.exception(f"Plan synthesis failed: {e}")
            return PLAN_FALLBACK

        plan = (plan or "").strip()
        if not plan:
            self.color_print("Plan synthesis returned an empty completion, using fallback.", color="yellow", level=logging.WARNING)
            return PLAN_FALLBACK
        return plan
