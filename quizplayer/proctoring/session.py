# FILE: quizplayer/proctoring/session.py
"""
Quiz attempt session - the proctored player state machine

Per question:  unseen -> current -> {answered | locked} -> advanced
Per attempt:   in_progress -> submitting -> submitted   (or rejected / discarded)

- Forward-only: leaving a question with Next locks it for the rest of the attempt.
- A violation locks the current question immediately; an owned asyncio task
  advances (or auto-submits on the last question) after the advance delay.
- The server verdict is authoritative: its score overrides the client score,
  and a security rejection discards the attempt.

Must be driven from inside a running event loop (violation advances are tasks).
"""
import asyncio
import logging
from typing import Any, Dict, Optional, Protocol

from quizplayer.config import Settings, get_settings
from quizplayer.errors import (
    AttemptStateError,
    InvalidAnswerError,
    NavigationError,
    QuestionLockedError,
    QuizUnavailableError,
    RetryNotAllowedError,
    SecurityRejectionError,
    SubmissionTransportError,
)
from quizplayer.models.progress import ModuleOutcome
from quizplayer.models.quizzes import Question, QuestionKind, QuizDefinition
from quizplayer.models.submissions import SubmissionMetadata, SubmissionPayload, SubmissionResult
from quizplayer.proctoring.attempt import AttemptState, QuizAttempt, ViolationEntry
from quizplayer.proctoring.clock import Clock, QuestionClock, QuestionRecord, QuestionState, now_ms
from quizplayer.proctoring.monitor import AppliedViolation, Signal, ViolationKind, ViolationMonitor
from quizplayer.services.correlation import generate_session_id, generate_session_token
from quizplayer.services.telemetry import record_event

logger = logging.getLogger(__name__)


class SubmissionGateway(Protocol):
    """Where finished attempts are sent (the training API)"""

    async def submit_quiz(self, quiz_id: str, payload: SubmissionPayload) -> SubmissionResult:
        ...


class OutcomeSink(Protocol):
    """Receives module outcomes of accepted submissions"""

    def record(self, outcome: ModuleOutcome) -> None:
        ...

    def reset(self, module_id: str) -> None:
        ...


def compute_score(quiz: QuizDefinition, attempt: QuizAttempt) -> int:
    """round(100 * correct / total), halves rounded up; unanswered counts as wrong"""
    total = len(quiz.questions)
    if total == 0:
        return 0
    correct = sum(
        1
        for question, record in zip(quiz.questions, attempt.records)
        if record.answered and question.is_correct(record.answer)
    )
    return (200 * correct + total) // (2 * total)


class QuizAttemptSession:
    """Owns the active QuizAttempt of one learner on one quiz"""

    def __init__(
        self,
        quiz: QuizDefinition,
        gateway: SubmissionGateway,
        learner_id: str,
        *,
        session_id: Optional[str] = None,
        session_token: Optional[str] = None,
        user_agent: str = "",
        outcome_sink: Optional[OutcomeSink] = None,
        monitor: Optional[ViolationMonitor] = None,
        clock: Optional[Clock] = None,
        advance_delay: Optional[float] = None,
        settings: Optional[Settings] = None
    ):
        if not quiz.questions:
            raise QuizUnavailableError(f"No quiz available ({quiz.id} has no questions)")

        settings = settings or get_settings()
        self.quiz = quiz
        self.gateway = gateway
        self.learner_id = learner_id
        self.session_id = session_id or generate_session_id()
        self.session_token = session_token or generate_session_token()
        self.user_agent = user_agent
        self.outcome_sink = outcome_sink
        self.clock = clock or now_ms
        self.advance_delay = (
            settings.violation_advance_delay_seconds if advance_delay is None else advance_delay
        )
        self.passing_score = quiz.effective_passing_score(
            module_default=settings.default_module_passing_score,
            final_exam_default=settings.default_final_exam_passing_score,
        )
        self.question_clock = QuestionClock(
            clock=self.clock,
            suspicious_fast_ms=settings.suspicious_fast_ms,
            suspicious_slow_ms=settings.suspicious_slow_ms,
        )
        self.monitor = monitor or ViolationMonitor(
            allowed_keys=settings.allowed_keys, clock=self.clock, quiz_id=quiz.id
        )
        self.monitor.subscribe(self._on_violation)
        self.last_error: Optional[str] = None
        self._advance_task: Optional[asyncio.Task] = None

        self.attempt = self._begin_attempt(number=1)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _begin_attempt(self, number: int) -> QuizAttempt:
        attempt = QuizAttempt.start(self.quiz, started_at=self.clock(), number=number)
        self.attempt = attempt
        self._enter(0)
        self.monitor.arm(lambda: self.attempt.current_index)
        record_event(
            "attempt_started",
            session_id=self.session_id,
            quiz_id=self.quiz.id,
            learner_id=self.learner_id,
            attempt_number=number,
        )
        logger.info(f"Attempt {number} started: quiz={self.quiz.id} learner={self.learner_id}")
        return attempt

    def close(self) -> None:
        """Tear down: cancel timers, stop watching, abandon an unsubmitted attempt"""
        self._cancel_advance()
        self.monitor.disarm()
        if self.attempt.state in (AttemptState.IN_PROGRESS, AttemptState.SUBMITTING):
            self.attempt.state = AttemptState.DISCARDED
            logger.info(f"Attempt {self.attempt.number} on quiz {self.quiz.id} discarded")

    @property
    def state(self) -> AttemptState:
        return self.attempt.state

    @property
    def advance_pending(self) -> bool:
        return self._advance_task is not None and not self._advance_task.done()

    async def wait_for_advance(self) -> None:
        """Wait until a pending violation advance (and any auto-submit) has run"""
        task = self._advance_task
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    # ------------------------------------------------------------------
    # Learner actions
    # ------------------------------------------------------------------

    def observe(self, signal: Signal) -> Optional[AppliedViolation]:
        """Forward a raw environment signal to the monitor"""
        return self.monitor.observe(signal)

    def select_answer(self, value: Any) -> None:
        """Set or change the answer of the current question"""
        self._require_active()
        self._require_current_unlocked()
        record = self.attempt.current_record
        self._validate_answer(self.quiz.questions[record.index], value)
        record.answer = value
        record.answered = True
        record.state = QuestionState.ANSWERED

    async def next_question(self) -> None:
        """Leave the current question for good; submits after the last one"""
        self._require_active()
        self._require_current_unlocked()
        attempt = self.attempt
        record = attempt.current_record
        self._leave(record, forced=False)
        attempt.lock(record.index)
        record.state = QuestionState.ADVANCED

        if attempt.is_last_question:
            await self.submit()
            return
        self._enter(record.index + 1)

    def previous_question(self) -> None:
        """Step back, only into a question that is not locked"""
        self._require_active()
        attempt = self.attempt
        if self.advance_pending:
            raise QuestionLockedError(attempt.current_index)
        target = attempt.current_index - 1
        if target < 0:
            raise NavigationError("Already at the first question")
        if attempt.is_locked(target):
            logger.info(f"Backward navigation into locked question {target} refused")
            raise QuestionLockedError(target)

        record = attempt.current_record
        record.state = QuestionState.ANSWERED if record.answered else QuestionState.UNSEEN
        self._enter(target)

    async def submit(self) -> SubmissionResult:
        """
        Score the attempt and send it to the server.

        The payload is frozen on the first call; after a transport failure the
        attempt is back in progress and calling submit() again resends it unchanged.
        """
        attempt = self.attempt
        if attempt.state != AttemptState.IN_PROGRESS:
            raise AttemptStateError(f"Cannot submit an attempt that is {attempt.state.value}")
        self._cancel_advance()

        if attempt.pending_payload is None:
            record = attempt.current_record
            if record.response_time_ms is None:
                # a violated question submitted before its advance still gets the 0 ms sentinel
                self._leave(record, forced=record.has_violation)
                if record.has_violation:
                    record.state = QuestionState.ADVANCED
            attempt.client_score = compute_score(self.quiz, attempt)
            attempt.ended_at = self.clock()
            attempt.pending_payload = self.build_payload()
        else:
            logger.info(f"Resubmitting frozen payload for quiz {self.quiz.id}")

        attempt.state = AttemptState.SUBMITTING
        self.monitor.disarm()
        record_event(
            "submission_sent",
            session_id=self.session_id,
            quiz_id=self.quiz.id,
            attempt_number=attempt.number,
            client_score=attempt.client_score,
            violation_count=len(attempt.violation_log),
        )

        try:
            result = await self.gateway.submit_quiz(self.quiz.id, attempt.pending_payload)
        except SubmissionTransportError as e:
            if attempt.state == AttemptState.SUBMITTING:
                attempt.state = AttemptState.IN_PROGRESS
            self.last_error = e.message
            record_event("submission_failed", session_id=self.session_id, quiz_id=self.quiz.id, error=e.message)
            logger.error(f"Submission of quiz {self.quiz.id} failed: {e.message}")
            raise

        if self.attempt is not attempt or attempt.state != AttemptState.SUBMITTING:
            logger.warning(f"Ignoring verdict for superseded attempt {attempt.number} on quiz {self.quiz.id}")
            return result
        if result.security_violation:
            self._reject(attempt, result)
        else:
            self._accept(attempt, result)
        return result

    def retry(self, force: bool = False) -> QuizAttempt:
        """Discard a failed attempt and start over with a clean slate"""
        attempt = self.attempt
        if attempt.state != AttemptState.SUBMITTED:
            raise RetryNotAllowedError(f"Retry is not offered while the attempt is {attempt.state.value}")
        if attempt.passed and not force:
            raise RetryNotAllowedError("Quiz already passed")
        max_attempts = self.quiz.max_attempts
        if max_attempts is not None and attempt.number >= max_attempts:
            raise RetryNotAllowedError(f"Attempt limit reached ({max_attempts})")

        self._cancel_advance()
        if self.outcome_sink is not None:
            self.outcome_sink.reset(self.quiz.outcome_key)
        self.last_error = None
        return self._begin_attempt(number=attempt.number + 1)

    # ------------------------------------------------------------------
    # Violations
    # ------------------------------------------------------------------

    def _on_violation(self, violation: AppliedViolation) -> None:
        attempt = self.attempt
        if not attempt.is_active or attempt.pending_payload is not None:
            return
        record = attempt.records[violation.question_index]
        if record.has_violation:
            return

        record.violation = violation.kind.value
        record.state = QuestionState.LOCKED
        attempt.lock(record.index)
        attempt.log_violation(
            ViolationEntry(record.index, violation.kind, violation.timestamp_ms)
        )
        record_event(
            "violation_applied",
            session_id=self.session_id,
            quiz_id=self.quiz.id,
            question_index=record.index,
            kind=violation.kind.value,
        )
        self._advance_task = asyncio.get_running_loop().create_task(
            self._advance_after_violation(attempt, record.index)
        )

    async def _advance_after_violation(self, attempt: QuizAttempt, index: int) -> None:
        await asyncio.sleep(self.advance_delay)
        if self.attempt is not attempt or not attempt.is_active or attempt.current_index != index:
            logger.debug(f"Stale violation advance for question {index} ignored")
            return
        self._advance_task = None

        record = attempt.records[index]
        self._leave(record, forced=True)
        record.state = QuestionState.ADVANCED
        if index < len(attempt.records) - 1:
            self._enter(index + 1)
            return

        logger.info(f"Violation on last question of quiz {self.quiz.id}: auto-submitting")
        try:
            await self.submit()
        except (SubmissionTransportError, SecurityRejectionError) as e:
            # already recorded on the session; the client sees it through snapshot()
            logger.error(f"Auto-submit of quiz {self.quiz.id} ended with: {e.message}")

    def _cancel_advance(self) -> None:
        task = self._advance_task
        self._advance_task = None
        if task is None or task.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        if task is not current:
            task.cancel()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_active(self) -> None:
        attempt = self.attempt
        if attempt.state != AttemptState.IN_PROGRESS:
            raise AttemptStateError(f"Attempt is {attempt.state.value}")
        if attempt.pending_payload is not None:
            raise AttemptStateError("Submission pending; resubmit to continue")

    def _require_current_unlocked(self) -> None:
        attempt = self.attempt
        if attempt.is_locked(attempt.current_index) or self.advance_pending:
            raise QuestionLockedError(attempt.current_index)

    def _enter(self, index: int) -> None:
        attempt = self.attempt
        attempt.current_index = index
        record = attempt.records[index]
        record.state = QuestionState.ANSWERED if record.answered else QuestionState.CURRENT
        self.question_clock.start(record)

    def _leave(self, record: QuestionRecord, forced: bool) -> None:
        latency = self.question_clock.stop(record, forced=forced)
        if not forced and self.question_clock.is_suspicious(latency):
            logger.warning(f"Suspicious: question {record.index + 1} of quiz {self.quiz.id} took {latency}ms")
            record_event(
                "suspicious_latency",
                session_id=self.session_id,
                quiz_id=self.quiz.id,
                question_index=record.index,
                latency_ms=latency,
            )

    @staticmethod
    def _validate_answer(question: Question, value: Any) -> None:
        if question.kind == QuestionKind.MULTIPLE_CHOICE:
            if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value < len(question.options):
                raise InvalidAnswerError(f"Answer must be an option index between 0 and {len(question.options) - 1}")
        elif question.kind == QuestionKind.TRUE_FALSE:
            if not isinstance(value, bool):
                raise InvalidAnswerError("Answer must be true or false")
        elif not isinstance(value, str):
            raise InvalidAnswerError("Answer must be text")

    def _accept(self, attempt: QuizAttempt, result: SubmissionResult) -> None:
        if result.score is not None:
            score, source = result.score, "server"
            if score != attempt.client_score:
                logger.info(f"Server score {score} overrides client score {attempt.client_score}")
        else:
            score, source = attempt.client_score, "client"
        # the server may fail an attempt, never pass one below the passing score
        passed = score >= self.passing_score
        if result.passed is not None:
            passed = result.passed and passed
        if result.passed and not passed:
            logger.warning(f"Server marked quiz {self.quiz.id} passed with score {score} below {self.passing_score}")

        if result.penalty_applied:
            logger.warning(f"Penalty applied: {result.penalty_percentage}% reduction due to violations")

        attempt.finalize_score(score)
        attempt.passed = passed
        attempt.score_source = source
        attempt.state = AttemptState.SUBMITTED
        self.last_error = None

        if self.outcome_sink is not None:
            self.outcome_sink.record(
                ModuleOutcome(module_id=self.quiz.outcome_key, attempted=True, passed=passed, score=score)
            )
        record_event(
            "submission_accepted",
            session_id=self.session_id,
            quiz_id=self.quiz.id,
            score=score,
            score_source=source,
            passed=passed,
            penalty_applied=result.penalty_applied,
        )
        logger.info(f"Quiz {self.quiz.id} submitted: score={score} ({source}) passed={passed}")

    def _reject(self, attempt: QuizAttempt, result: SubmissionResult) -> None:
        message = result.security_message or "Your quiz has been rejected"
        attempt.state = AttemptState.REJECTED
        self._cancel_advance()
        self.monitor.disarm()
        self.last_error = message
        if self.outcome_sink is not None:
            self.outcome_sink.reset(self.quiz.outcome_key)
        record_event(
            "submission_rejected",
            session_id=self.session_id,
            quiz_id=self.quiz.id,
            learner_id=self.learner_id,
            message=message,
        )
        logger.error(f"SECURITY VIOLATION on quiz {self.quiz.id}: {message}")
        raise SecurityRejectionError(message)

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def build_payload(self) -> SubmissionPayload:
        """Answers plus the security metadata the server audits"""
        attempt = self.attempt
        records = attempt.records
        kinds = attempt.violation_kinds()
        logged = [entry.kind for entry in attempt.violation_log]

        metadata = SubmissionMetadata(
            start_time=attempt.started_at,
            end_time=attempt.ended_at if attempt.ended_at is not None else self.clock(),
            violation_count=len(attempt.violation_log),
            question_response_times={
                record.question_id: record.response_time_ms
                for record in records
                if record.response_time_ms is not None
            },
            violation_types=kinds,
            violations_by_question={
                records[index].question_id: index_kinds
                for index, index_kinds in attempt.violations_by_index().items()
            },
            user_agent=self.user_agent,
            session_token=self.session_token,
            locked_questions=[records[index].question_id for index in sorted(attempt.locked_indices)],
            tab_switch_count=logged.count(ViolationKind.TAB_SWITCH),
            keyboard_shortcut_attempted=bool(
                {ViolationKind.KEYBOARD_SHORTCUT, ViolationKind.KEYBOARD_BLOCKED} & set(logged)
            ),
            copy_paste_attempted=bool(
                {ViolationKind.COPY_ATTEMPT, ViolationKind.CUT_ATTEMPT, ViolationKind.PASTE_ATTEMPT} & set(logged)
            ),
            right_click_attempted=ViolationKind.RIGHT_CLICK in logged,
        )
        answers = {
            record.question_id: (record.answer if record.answered else None)
            for record in records
        }
        return SubmissionPayload(user_id=self.learner_id, answers=answers, metadata=metadata)

    def time_remaining_seconds(self) -> Optional[int]:
        if self.quiz.time_limit_minutes is None:
            return None
        elapsed = (self.clock() - self.attempt.started_at) // 1000
        return max(0, self.quiz.time_limit_minutes * 60 - elapsed)

    def snapshot(self) -> Dict[str, Any]:
        """Read-only view for the player UI"""
        attempt = self.attempt
        record = attempt.current_record
        in_play = attempt.state == AttemptState.IN_PROGRESS
        return {
            "session_id": self.session_id,
            "quiz_id": self.quiz.id,
            "module_id": self.quiz.module_id,
            "title": self.quiz.title,
            "attempt_number": attempt.number,
            "max_attempts": self.quiz.max_attempts,
            "state": attempt.state.value,
            "passing_score": self.passing_score,
            "total_questions": len(attempt.records),
            "current_index": attempt.current_index,
            "current_question": self.quiz.questions[record.index].public_view() if in_play else None,
            "current_answer": record.answer if record.answered else None,
            "current_locked": attempt.is_locked(attempt.current_index),
            "advance_pending": self.advance_pending,
            "elapsed_seconds": self.question_clock.elapsed_seconds(record) if in_play else 0,
            "time_remaining_seconds": self.time_remaining_seconds() if in_play else None,
            "answered_count": attempt.answered_count,
            "locked_indices": sorted(attempt.locked_indices),
            "violation_count": len(attempt.violation_log),
            "client_score": attempt.client_score,
            "score": attempt.submitted_score,
            "score_source": attempt.score_source,
            "passed": attempt.passed,
            "submission_pending": attempt.pending_payload is not None and attempt.state == AttemptState.IN_PROGRESS,
            "last_error": self.last_error,
        }
