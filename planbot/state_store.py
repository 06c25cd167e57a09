# planbot/state_store.py

import asyncio
import threading
import time
import weakref
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional


class Phase(str, Enum):
    AWAITING_QUESTION = "awaiting_question"
    AWAITING_ANSWER = "awaiting_answer"


@dataclass
class ConversationState:
    """
    Progress of one user through the question catalog.

    step counts recorded turns and is only ever incremented. phase/question_index
    say what the next inbound message means:
      AWAITING_QUESTION(i): question i has not been asked yet
      AWAITING_ANSWER(i):   question i was asked, the next message answers it
    so step == 2 * question_index + (1 if AWAITING_ANSWER else 0).
    """

    user_id: str
    step: int = 0
    phase: Phase = Phase.AWAITING_QUESTION
    question_index: int = 0
    answers: Dict[str, str] = field(default_factory=dict)
    plan: Optional[str] = None
    touched_at: float = field(default_factory=time.monotonic)

    @property
    def awaiting_answer(self) -> bool:
        return self.phase is Phase.AWAITING_ANSWER

    def record_question(self, question: str) -> None:
        self.answers[f"bot_step_{self.step}"] = question
        self.step += 1
        self.phase = Phase.AWAITING_ANSWER

    def record_answer(self, text: str) -> None:
        self.answers[f"user_step_{self.step}"] = text
        self.step += 1
        self.phase = Phase.AWAITING_QUESTION
        self.question_index += 1


class ConversationStateStore:
    """
    In-memory, per-user intake state with:
    - lazy creation on first contact
    - optional sliding TTL (expires ttl_seconds after last touch), off by default
    - one asyncio.Lock per user so a user's turns run one at a time
    - thread-safe dict operations (tasks may hop to worker threads)
    """

    def __init__(self, ttl_seconds: Optional[float] = None):
        self.ttl_seconds = ttl_seconds
        self._lock = threading.Lock()
        # user_id -> ConversationState
        self._items: Dict[str, ConversationState] = {}
        # user_id -> asyncio.Lock; an entry lives while a turn holds or waits on the lock
        self._turn_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _is_expired_unlocked(self, state: ConversationState, now: float) -> bool:
        if self.ttl_seconds is None:
            return False
        return state.touched_at + self.ttl_seconds <= now

    def get_or_create(self, user_id) -> ConversationState:
        uid = str(user_id)
        now = time.monotonic()
        with self._lock:
            state = self._items.get(uid)
            if state is not None and not self._is_expired_unlocked(state, now):
                state.touched_at = now
                return state

            state = ConversationState(user_id=uid, touched_at=now)
            self._items[uid] = state
            return state

    def get(self, user_id) -> Optional[ConversationState]:
        with self._lock:
            return self._items.get(str(user_id))

    def remove(self, user_id) -> None:
        with self._lock:
            self._items.pop(str(user_id), None)

    def lock_for(self, user_id) -> asyncio.Lock:
        uid = str(user_id)
        with self._lock:
            lock = self._turn_locks.get(uid)
            if lock is None:
                lock = asyncio.Lock()
                self._turn_locks[uid] = lock
            return lock

    @property
    def turn_lock_count(self) -> int:
        with self._lock:
            return len(self._turn_locks)

    def sweep_expired(self) -> int:
        """
        Delete states idle for longer than ttl_seconds. Safe to call every poll cycle.
        Returns how many entries were removed.
        """
        if self.ttl_seconds is None:
            return 0
        now = time.monotonic()
        removed = 0
        with self._lock:
            expired = [k for k, v in self._items.items() if self._is_expired_unlocked(v, now)]
            for k in expired:
                del self._items[k]
                removed += 1
        return removed

    def __contains__(self, user_id) -> bool:
        with self._lock:
            return str(user_id) in self._items

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
