# FILE: tests/test_quiz_session.py

import asyncio

import pytest

from conftest import FakeGateway, transport_error
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
from quizplayer.models.quizzes import QuizDefinition
from quizplayer.models.submissions import SubmissionResult
from quizplayer.proctoring.attempt import AttemptState
from quizplayer.proctoring.monitor import Signal, SignalType
from quizplayer.proctoring.session import QuizAttemptSession, compute_score


async def answer_all(session, answers):
    for value in answers:
        session.select_answer(value)
        await session.next_question()


@pytest.mark.asyncio
async def test_three_of_five_scores_sixty(make_session, gateway, sink):
    """q1, q2, q5 right; q3, q4 wrong"""
    session = make_session()
    await answer_all(session, [0, 1, 0, False, "  paris "])

    assert session.state == AttemptState.SUBMITTED
    assert session.attempt.client_score == 60
    assert session.attempt.submitted_score == 60
    assert session.attempt.score_source == "client"
    assert session.attempt.passed is False
    assert len(gateway.calls) == 1
    assert sink.recorded[-1].model_dump() == {
        "module_id": "mod-1", "attempted": True, "passed": False, "score": 60
    }


def test_compute_score_rounds_half_up():
    questions = [
        {"id": f"tf{i}", "question": "?", "type": "true-false", "correctAnswer": True}
        for i in range(8)
    ]
    quiz = QuizDefinition.model_validate({"id": "half", "questions": questions})
    session = QuizAttemptSession(quiz, FakeGateway(), "learner-1")
    record = session.attempt.records[0]
    record.answer, record.answered = True, True
    # 1/8 = 12.5 -> 13
    assert compute_score(quiz, session.attempt) == 13


@pytest.mark.asyncio
async def test_server_score_overrides_client_score(make_session, gateway):
    gateway.results = [SubmissionResult(score=90, passed=True)]
    session = make_session()
    await answer_all(session, [0, 0, 0, False, "x"])

    assert session.attempt.client_score == 20
    assert session.attempt.submitted_score == 90
    assert session.attempt.score_source == "server"
    assert session.attempt.passed is True


@pytest.mark.asyncio
async def test_server_score_of_zero_is_respected(make_session, gateway):
    gateway.results = [SubmissionResult(score=0)]
    session = make_session()
    await answer_all(session, [0, 1, 2, True, "Paris"])

    assert session.attempt.client_score == 100
    assert session.attempt.submitted_score == 0
    assert session.attempt.passed is False


@pytest.mark.asyncio
async def test_server_pass_below_passing_score_is_stored_as_failed(make_session, gateway, sink):
    gateway.results = [SubmissionResult(score=40, passed=True)]
    session = make_session()
    await answer_all(session, [0, 1, 2, True, "Paris"])

    assert session.attempt.submitted_score == 40
    assert session.attempt.passed is False
    assert sink.recorded[-1].passed is False
    assert session.retry().number == 2
    session.close()


@pytest.mark.asyncio
async def test_server_can_fail_an_attempt_above_passing_score(make_session, gateway):
    gateway.results = [SubmissionResult(score=90, passed=False)]
    session = make_session()
    await answer_all(session, [0, 1, 2, True, "Paris"])

    assert session.attempt.passed is False


@pytest.mark.asyncio
async def test_locked_set_grows_and_back_navigation_is_refused(make_session):
    session = make_session()
    seen = []
    for value in (0, 1, 2):
        session.select_answer(value)
        await session.next_question()
        seen.append(set(session.attempt.locked_indices))

    assert seen == [{0}, {0, 1}, {0, 1, 2}]

    before = session.snapshot()
    with pytest.raises(QuestionLockedError) as exc_info:
        session.previous_question()
    assert exc_info.value.index == 2
    assert session.snapshot() == before


@pytest.mark.asyncio
async def test_previous_at_first_question(make_session):
    session = make_session()
    with pytest.raises(NavigationError):
        session.previous_question()
    assert session.attempt.current_index == 0


@pytest.mark.asyncio
async def test_violation_locks_and_advances_with_forced_zero_latency(make_session):
    session = make_session()
    violation = session.observe(Signal(SignalType.BLUR))

    assert violation is not None
    assert violation.question_index == 0
    assert session.attempt.is_locked(0)
    with pytest.raises(QuestionLockedError):
        session.select_answer(1)

    await session.wait_for_advance()

    assert session.attempt.current_index == 1
    assert session.attempt.records[0].response_time_ms == 0
    assert session.attempt.records[0].violation == "tab_switch"


@pytest.mark.asyncio
async def test_one_effective_violation_per_question(make_session):
    session = make_session(advance_delay=5)
    first = session.observe(Signal(SignalType.COPY))
    second = session.observe(Signal(SignalType.PASTE))
    third = session.observe(Signal(SignalType.KEYDOWN, key="c", ctrl=True))

    assert first is not None
    assert second is None and third is None
    assert len(session.attempt.violation_log) == 1
    assert len(session.monitor.audit_log) == 3
    session.close()


@pytest.mark.asyncio
async def test_navigation_refused_while_advance_pending(make_session):
    session = make_session(advance_delay=5)
    session.select_answer(0)
    await session.next_question()
    session.observe(Signal(SignalType.CONTEXT_MENU))

    assert session.advance_pending
    with pytest.raises(QuestionLockedError):
        session.previous_question()
    with pytest.raises(QuestionLockedError):
        await session.next_question()

    session.close()
    assert session.state == AttemptState.DISCARDED
    assert not session.advance_pending


@pytest.mark.asyncio
async def test_violation_on_last_question_auto_submits(make_session, gateway, fake_clock):
    session = make_session(advance_delay=0.01)
    for value in (0, 1, 2, True):
        fake_clock.advance(5000)
        session.select_answer(value)
        await session.next_question()

    session.observe(Signal(SignalType.KEYDOWN, key="a"))
    await asyncio.wait_for(session.wait_for_advance(), timeout=1)

    assert session.state == AttemptState.SUBMITTED
    assert len(gateway.calls) == 1
    payload = gateway.calls[0][1]
    assert payload.metadata.question_response_times["q5"] == 0
    assert payload.metadata.question_response_times["q1"] == 5000
    assert payload.metadata.keyboard_shortcut_attempted is True
    assert payload.answers["q5"] is None
    # four right, unanswered last question counts as wrong
    assert session.attempt.client_score == 80


@pytest.mark.asyncio
async def test_submit_during_violation_advance_forces_zero_latency(make_session, gateway, fake_clock):
    session = make_session(advance_delay=5.0)
    for value in (0, 1, 2, True):
        fake_clock.advance(5000)
        session.select_answer(value)
        await session.next_question()

    session.observe(Signal(SignalType.CONTEXT_MENU))
    assert session.advance_pending
    await session.submit()

    assert not session.advance_pending
    assert session.state == AttemptState.SUBMITTED
    times = gateway.calls[0][1].metadata.question_response_times
    assert times == {"q1": 5000, "q2": 5000, "q3": 5000, "q4": 5000, "q5": 0}


@pytest.mark.asyncio
async def test_submission_payload_metadata(make_session, gateway):
    session = make_session()
    session.observe(Signal(SignalType.BLUR))
    session.observe(Signal(SignalType.VISIBILITY_HIDDEN))
    await session.wait_for_advance()
    session.observe(Signal(SignalType.BLUR))
    await session.wait_for_advance()
    await session.submit()

    wire = gateway.calls[0][1].to_wire()
    metadata = wire["metadata"]
    assert wire["userId"] == "learner-1"
    assert metadata["violationCount"] == 2
    assert metadata["tabSwitchCount"] == 2
    assert metadata["violationTypes"] == ["tab_switch"]
    assert metadata["violationsByQuestion"] == {"q1": ["tab_switch"], "q2": ["tab_switch"]}
    assert metadata["lockedQuestions"] == ["q1", "q2"]
    assert metadata["questionResponseTimes"] == {"q1": 0, "q2": 0, "q3": 1}
    assert metadata["sessionToken"] == "token-abc"
    assert metadata["userAgent"] == "pytest"
    assert metadata["copyPasteAttempted"] is False
    assert metadata["rightClickAttempted"] is False


@pytest.mark.asyncio
async def test_transport_failure_keeps_attempt_and_resends_same_payload(make_session, gateway):
    gateway.results = [transport_error(), SubmissionResult(score=80, passed=True)]
    session = make_session()

    with pytest.raises(SubmissionTransportError):
        await answer_all(session, [0, 1, 2, True, "Paris"])

    assert session.state == AttemptState.IN_PROGRESS
    assert session.snapshot()["submission_pending"] is True
    assert session.last_error
    with pytest.raises(AttemptStateError):
        session.select_answer(0)
    assert session.observe(Signal(SignalType.BLUR)) is None

    await session.submit()

    assert len(gateway.calls) == 2
    assert gateway.calls[0][1] == gateway.calls[1][1]
    assert session.state == AttemptState.SUBMITTED
    assert session.attempt.submitted_score == 80
    assert session.last_error is None


@pytest.mark.asyncio
async def test_security_rejection_is_terminal(make_session, gateway, sink):
    gateway.results = [
        SubmissionResult.model_validate({"securityViolation": True, "securityMessage": "Too many violations"})
    ]
    session = make_session()

    with pytest.raises(SecurityRejectionError) as exc_info:
        await session.submit()

    assert exc_info.value.message == "Too many violations"
    assert session.state == AttemptState.REJECTED
    assert session.attempt.submitted_score is None
    assert sink.resets == ["mod-1"]
    assert sink.recorded == []
    assert not session.monitor.armed
    with pytest.raises(RetryNotAllowedError):
        session.retry()
    with pytest.raises(AttemptStateError):
        await session.submit()


@pytest.mark.asyncio
async def test_retry_starts_a_clean_attempt(make_session, sink, sample_quiz):
    session = make_session()
    session.observe(Signal(SignalType.BLUR))
    await session.wait_for_advance()
    session.select_answer(0)
    await session.submit()
    first = session.attempt
    assert first.submitted_score is not None

    second = session.retry()

    assert second is session.attempt
    assert second.number == 2
    assert second.locked_indices == frozenset()
    assert second.violation_log == []
    assert second.submitted_score is None
    assert second.current_index == 0
    assert session.quiz is sample_quiz
    assert session.monitor.armed
    assert sink.resets == ["mod-1"]
    # flagged set was reset with the new attempt
    assert session.observe(Signal(SignalType.BLUR)) is not None
    session.close()


@pytest.mark.asyncio
async def test_stale_advance_never_touches_new_attempt(make_session):
    session = make_session(advance_delay=0.05)
    session.observe(Signal(SignalType.BLUR))
    old_attempt = session.attempt
    await session.submit()
    session.retry()

    await asyncio.sleep(0.1)
    assert session.attempt.current_index == 0
    assert session.attempt.records[0].response_time_ms is None

    await session._advance_after_violation(old_attempt, 0)
    assert session.attempt.current_index == 0
    assert session.attempt.is_locked(0) is False
    session.close()


@pytest.mark.asyncio
async def test_retry_refused_after_pass_unless_forced(make_session, gateway):
    gateway.results = [SubmissionResult(score=100, passed=True)]
    session = make_session()
    await session.submit()

    with pytest.raises(RetryNotAllowedError):
        session.retry()
    assert session.retry(force=True).number == 2
    session.close()


@pytest.mark.asyncio
async def test_retry_limited_by_max_attempts(make_session):
    session = make_session()
    for _ in range(2):
        await session.submit()
        session.retry()
    await session.submit()

    assert session.attempt.number == 3
    with pytest.raises(RetryNotAllowedError):
        session.retry()


@pytest.mark.asyncio
async def test_score_is_written_once(make_session):
    session = make_session()
    await session.submit()
    with pytest.raises(AttemptStateError):
        session.attempt.finalize_score(50)
    with pytest.raises(AttemptStateError):
        await session.submit()


def test_quiz_without_questions_is_unavailable(gateway):
    with pytest.raises(QuizUnavailableError):
        QuizAttemptSession(QuizDefinition(id="empty"), gateway, "learner-1")


@pytest.mark.asyncio
async def test_answers_are_validated_by_kind(make_session):
    session = make_session()
    with pytest.raises(InvalidAnswerError):
        session.select_answer("0")
    with pytest.raises(InvalidAnswerError):
        session.select_answer(True)
    with pytest.raises(InvalidAnswerError):
        session.select_answer(3)

    session.select_answer(2)
    session.select_answer(1)
    assert session.snapshot()["current_answer"] == 1


@pytest.mark.asyncio
async def test_snapshot_hides_answer_key(make_session):
    session = make_session()
    snapshot = session.snapshot()

    assert snapshot["current_question"]["id"] == "q1"
    assert "correct_answer" not in snapshot["current_question"]
    assert snapshot["total_questions"] == 5
    assert snapshot["passing_score"] == 70
    assert snapshot["time_remaining_seconds"] is None
