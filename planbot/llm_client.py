# planbot/llm_client.py

import asyncio
import logging
import threading
import random
import time
import traceback
from typing import Callable, TypeVar, Any, Dict, List, Optional

from openai import OpenAI

logger = logging.getLogger("planbot")

T = TypeVar("T")


class MaxRetryErrorsException(Exception):
    pass


# Global backoff state (shared across all clients)
_global_backoff_lock = threading.Lock()
_global_wait_until = 0.0
_global_backoff_seconds = 2.0
_GLOBAL_BACKOFF_MAX = 30.0


def call_with_retries_sync(
    fn: Callable[[], T],
    *,
    retries: int = 2,
    log: Callable[[str], None] | None = None,
) -> T:
    """
    Run a sync LLM call with global 429/timeout backoff + retries.
    """
    last_exception: Exception | None = None

    def _is_timeout_error(e: Exception) -> bool:
        if isinstance(e, (asyncio.TimeoutError, TimeoutError)):
            return True
        msg = repr(e)
        return "Timeout" in msg or "timed out" in msg.lower()

    def _is_rate_limit_error(e: Exception) -> bool:
        if getattr(e, "status_code", None) == 429:
            return True
        msg = str(e)
        return "429" in msg and ("Too Many Requests" in msg or "rate limit" in msg.lower())

    def _respect_global_backoff() -> None:
        while True:
            with _global_backoff_lock:
                now = time.monotonic()
                wait = _global_wait_until - now
            if wait <= 0:
                return
            time.sleep(min(wait, 1.0))

    def _register_429_and_get_delay() -> float:
        global _global_wait_until, _global_backoff_seconds

        with _global_backoff_lock:
            now = time.monotonic()
            base = _global_backoff_seconds
            delay = random.uniform(base * 0.95, base * 1.35)
            _global_backoff_seconds = min(_global_backoff_seconds * 2, _GLOBAL_BACKOFF_MAX)
            _global_wait_until = max(_global_wait_until, now + delay)
            return delay

    def _reset_backoff_on_success() -> None:
        global _global_backoff_seconds
        with _global_backoff_lock:
            _global_backoff_seconds = max(1.0, _global_backoff_seconds * 0.5)

    for attempt in range(retries):
        _respect_global_backoff()
        start_time = time.time()
        try:
            result = fn()
            _reset_backoff_on_success()
            return result
        except Exception as e:
            elapsed = time.time() - start_time
            last_exception = e

            if _is_rate_limit_error(e) or _is_timeout_error(e):
                delay = _register_429_and_get_delay()
                msg = f"Attempt {attempt+1} got 429/timeout, backing off ~{delay:.1f}s."
            else:
                msg = f"Attempt {attempt+1} failed."

            if log:
                log(f"{msg} (elapsed={elapsed:.2f}s): {e}\n{traceback.format_exc()}")

    raise MaxRetryErrorsException(f"All {retries} retry attempts failed.") from last_exception


class LlmClient:
    """
    Minimal wrapper for "completion-style" use:

        text = llm.complete("some prompt", max_tokens=150)

    Under the hood: OpenAI Chat Completions with a single user message.
    """

    def __init__(
        self,
        model_name: str,
        *,
        api_key: str | None = None,
        timeout: float | None = None,
        client: Any = None,
    ):
        self.model_name = model_name
        self._timeout = timeout
        self.last_usage: Optional[Dict[str, int]] = None

        if client is not None:
            self._client = client
        else:
            client_kwargs: Dict[str, Any] = {"max_retries": 0}
            if api_key:
                client_kwargs["api_key"] = api_key
            if timeout is not None:
                client_kwargs["timeout"] = timeout
            self._client = OpenAI(**client_kwargs)

    def _merge_usage(self, resp: Any) -> None:
        usage = getattr(resp, "usage", None)
        if usage is None:
            return
        inc = {
            "prompt_tokens": getattr(usage, "prompt_tokens", 0) or 0,
            "completion_tokens": getattr(usage, "completion_tokens", 0) or 0,
            "total_tokens": getattr(usage, "total_tokens", 0) or 0,
        }
        if self.last_usage is None:
            self.last_usage = inc
            return
        for k, v in inc.items():
            self.last_usage[k] = (self.last_usage.get(k, 0) or 0) + v

    def _to_openai_messages(self, prompt: str) -> List[Dict[str, str]]:
        return [{"role": "user", "content": prompt}]

    def _complete_once(self, prompt: str, max_tokens: int) -> str:
        """
        Single HTTP call without retries/backoff.
        """
        resp = self._client.chat.completions.create(
            model=self.model_name,
            messages=self._to_openai_messages(prompt),
            max_tokens=max_tokens,
        )
        self._merge_usage(resp)

        choices = getattr(resp, "choices", None) or []
        if not choices:
            return ""
        text = getattr(choices[0].message, "content", "") or ""
        return text.strip()

    def complete(self, prompt: str, max_tokens: int, *, retries: int = 2) -> str:
        """
        Synchronous call with global 429/timeout backoff + retries.
        """
        return call_with_retries_sync(
            lambda: self._complete_once(prompt, max_tokens),
            retries=retries,
            log=lambda msg: logger.warning(f"[LLM-RETRY] {msg}"),
        )
