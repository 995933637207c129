# FILE: tests/test_training_api.py

import httpx
import pytest

from quizplayer.errors import QuizUnavailableError, SubmissionTransportError
from quizplayer.models.submissions import SubmissionMetadata, SubmissionPayload
from quizplayer.providers.training_api import TrainingApiClient, unwrap


def payload():
    return SubmissionPayload(
        user_id="learner-1",
        answers={"q1": 0, "q2": None},
        metadata=SubmissionMetadata(start_time=1000, end_time=9000, violation_count=1, tab_switch_count=1),
    )


def test_unwrap_envelope():
    assert unwrap({"success": True, "data": [1, 2]}) == [1, 2]
    assert unwrap({"score": 80}) == {"score": 80}
    with pytest.raises(QuizUnavailableError):
        unwrap({"success": False, "data": None, "message": "nope"})


@pytest.mark.asyncio
async def test_get_quiz(training_api):
    client = training_api.client()
    quiz = await client.get_quiz("quiz-1")
    await client.aclose()

    assert quiz.id == "quiz-1"
    assert len(quiz.questions) == 5


@pytest.mark.asyncio
async def test_get_modules_in_order_with_sections(training_api):
    client = training_api.client()
    modules = await client.get_modules("training-1")
    await client.aclose()

    assert [module.id for module in modules] == ["mod-1", "mod-2"]
    assert modules[0].section_ids == ["s1", "s2"]


@pytest.mark.asyncio
async def test_training_and_module_quizzes(training_api):
    client = training_api.client()
    quizzes = await client.get_training_quizzes("training-1")
    module_quizzes = await client.get_module_quizzes("mod-1")
    await client.aclose()

    assert [quiz.is_final_exam for quiz in quizzes] == [False, False, True]
    assert [quiz.id for quiz in module_quizzes] == ["quiz-1"]


@pytest.mark.asyncio
async def test_missing_quiz_is_unavailable(training_api):
    client = training_api.client()
    with pytest.raises(QuizUnavailableError):
        await client.get_quiz("nope")
    await client.aclose()


@pytest.mark.asyncio
async def test_malformed_quiz_is_unavailable(training_api):
    training_api.quizzes[0] = {
        "_id": "quiz-1",
        "questions": [{"_id": "q1", "question": "?", "type": "multiple-choice", "options": ["A"], "correctAnswer": 0}],
    }
    client = training_api.client()
    with pytest.raises(QuizUnavailableError):
        await client.get_quiz("quiz-1")
    await client.aclose()


@pytest.mark.asyncio
async def test_submit_sends_wire_format(training_api):
    training_api.submit_responses = [{"score": 72, "passed": True, "penaltyApplied": True, "penaltyPercentage": 10}]
    client = training_api.client()
    result = await client.submit_quiz("quiz-1", payload())
    await client.aclose()

    body = training_api.submissions[0]
    assert body["userId"] == "learner-1"
    assert body["answers"] == {"q1": 0, "q2": None}
    assert body["metadata"]["startTime"] == 1000
    assert body["metadata"]["tabSwitchCount"] == 1
    assert result.score == 72
    assert result.penalty_applied is True


@pytest.mark.asyncio
async def test_submit_server_error_is_transport_error(training_api):
    training_api.submit_responses = [httpx.Response(500, json={"error": "boom"})]
    client = training_api.client()
    with pytest.raises(SubmissionTransportError):
        await client.submit_quiz("quiz-1", payload())
    await client.aclose()


@pytest.mark.asyncio
async def test_submit_connection_error_is_transport_error():
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = TrainingApiClient(base_url="http://training.test", transport=httpx.MockTransport(refuse))
    with pytest.raises(SubmissionTransportError):
        await client.submit_quiz("quiz-1", payload())
    await client.aclose()
