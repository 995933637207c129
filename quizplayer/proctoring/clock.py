# FILE: quizplayer/proctoring/clock.py
"""
Per-question records and timing

A response latency of 0 ms is the sentinel for a violation-forced advance; it
is never produced by an honest answer and is excluded from the latency heuristic.
"""
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

Clock = Callable[[], int]

FORCED_LATENCY_MS = 0


def now_ms() -> int:
    """Wall clock in epoch milliseconds"""
    return int(time.time() * 1000)


class QuestionState(str, Enum):
    """Lifecycle of one question within an attempt"""
    UNSEEN = "unseen"
    CURRENT = "current"
    ANSWERED = "answered"
    LOCKED = "locked"
    ADVANCED = "advanced"


@dataclass
class QuestionRecord:
    """Mutable per-question state, addressed by question index"""
    index: int
    question_id: str
    state: QuestionState = QuestionState.UNSEEN
    answer: Any = None
    answered: bool = False
    started_at_ms: Optional[int] = None
    response_time_ms: Optional[int] = None
    violation: Optional[str] = None

    @property
    def has_violation(self) -> bool:
        return self.violation is not None


class QuestionClock:
    """Stamps question start times and measures response latency"""

    def __init__(
        self,
        clock: Optional[Clock] = None,
        suspicious_fast_ms: int = 2000,
        suspicious_slow_ms: int = 300000
    ):
        self.clock = clock or now_ms
        self.suspicious_fast_ms = suspicious_fast_ms
        self.suspicious_slow_ms = suspicious_slow_ms

    def start(self, record: QuestionRecord) -> None:
        """Question became current"""
        record.started_at_ms = self.clock()

    def elapsed_seconds(self, record: QuestionRecord) -> int:
        """Whole seconds the question has been on screen (display timer)"""
        if record.started_at_ms is None:
            return 0
        return max(0, (self.clock() - record.started_at_ms) // 1000)

    def stop(self, record: QuestionRecord, forced: bool = False) -> Optional[int]:
        """
        Store the response latency of a question being left.

        forced=True records the 0 ms fraud sentinel. Returns the stored latency,
        or None when the question was never started.
        """
        if record.started_at_ms is None:
            return None
        if forced:
            record.response_time_ms = FORCED_LATENCY_MS
        else:
            record.response_time_ms = max(1, self.clock() - record.started_at_ms)
        return record.response_time_ms

    def is_suspicious(self, latency_ms: Optional[int]) -> bool:
        """Observational hint only; never blocks anything"""
        if latency_ms is None or latency_ms == FORCED_LATENCY_MS:
            return False
        return latency_ms < self.suspicious_fast_ms or latency_ms > self.suspicious_slow_ms
