# FILE: quizplayer/proctoring/attempt.py
"""
Quiz attempt aggregate

One QuestionRecord per question, index-addressed, plus the attempt-wide
locked set and violation log. The locked set only grows and the submitted
score is written once; a resubmission needs a fresh attempt.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Set

from quizplayer.errors import AttemptStateError
from quizplayer.models.quizzes import QuizDefinition
from quizplayer.models.submissions import SubmissionPayload
from quizplayer.proctoring.clock import QuestionRecord
from quizplayer.proctoring.monitor import ViolationKind


class AttemptState(str, Enum):
    """Attempt lifecycle"""
    IN_PROGRESS = "in_progress"
    SUBMITTING = "submitting"
    SUBMITTED = "submitted"
    REJECTED = "rejected"
    DISCARDED = "discarded"


@dataclass(frozen=True)
class ViolationEntry:
    question_index: int
    kind: ViolationKind
    timestamp_ms: int


@dataclass
class QuizAttempt:
    quiz_id: str
    started_at: int
    records: List[QuestionRecord]
    number: int = 1
    current_index: int = 0
    state: AttemptState = AttemptState.IN_PROGRESS
    violation_log: List[ViolationEntry] = field(default_factory=list)
    client_score: Optional[int] = None
    passed: Optional[bool] = None
    score_source: Optional[str] = None
    ended_at: Optional[int] = None
    pending_payload: Optional[SubmissionPayload] = None
    _locked: Set[int] = field(default_factory=set, repr=False)
    _submitted_score: Optional[int] = field(default=None, repr=False)

    @classmethod
    def start(cls, quiz: QuizDefinition, started_at: int, number: int = 1) -> "QuizAttempt":
        records = [
            QuestionRecord(index=index, question_id=question.id)
            for index, question in enumerate(quiz.questions)
        ]
        return cls(quiz_id=quiz.id, started_at=started_at, records=records, number=number)

    @property
    def locked_indices(self) -> FrozenSet[int]:
        return frozenset(self._locked)

    def is_locked(self, index: int) -> bool:
        return index in self._locked

    def lock(self, index: int) -> None:
        if not 0 <= index < len(self.records):
            raise IndexError(f"Question index {index} out of range")
        self._locked.add(index)

    @property
    def submitted_score(self) -> Optional[int]:
        return self._submitted_score

    def finalize_score(self, score: int) -> None:
        if self._submitted_score is not None:
            raise AttemptStateError("Attempt already has a submitted score; start a new attempt to resubmit")
        self._submitted_score = score

    @property
    def is_active(self) -> bool:
        return self.state == AttemptState.IN_PROGRESS

    @property
    def current_record(self) -> QuestionRecord:
        return self.records[self.current_index]

    @property
    def is_last_question(self) -> bool:
        return self.current_index == len(self.records) - 1

    @property
    def answered_count(self) -> int:
        return sum(1 for record in self.records if record.answered)

    def log_violation(self, entry: ViolationEntry) -> None:
        self.violation_log.append(entry)

    def violation_kinds(self) -> List[str]:
        """Distinct kinds in first-seen order"""
        kinds: List[str] = []
        for entry in self.violation_log:
            if entry.kind.value not in kinds:
                kinds.append(entry.kind.value)
        return kinds

    def violations_by_index(self) -> Dict[int, List[str]]:
        grouped: Dict[int, List[str]] = {}
        for entry in self.violation_log:
            kinds = grouped.setdefault(entry.question_index, [])
            if entry.kind.value not in kinds:
                kinds.append(entry.kind.value)
        return grouped
