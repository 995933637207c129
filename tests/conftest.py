# FILE: tests/conftest.py

import os
import sys
import tempfile
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# Keep test runs out of the working tree
_tmp_root = Path(tempfile.mkdtemp(prefix="quizplayer-tests-"))
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATA_DIR", str(_tmp_root / "data"))
os.environ.setdefault("OUTCOMES_DIR", str(_tmp_root / "data" / "outcomes"))
os.environ.setdefault("LOGS_DIR", str(_tmp_root / "logs"))
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

import json
from typing import List, Optional

import httpx
import pytest

from quizplayer.config import get_settings
from quizplayer.errors import SubmissionTransportError
from quizplayer.models.progress import ModuleOutcome
from quizplayer.models.quizzes import QuizDefinition
from quizplayer.models.submissions import SubmissionPayload, SubmissionResult
from quizplayer.proctoring.session import QuizAttemptSession
from quizplayer.providers.training_api import TrainingApiClient
from quizplayer.services.outcome_store import OutcomeStore
from quizplayer.services.telemetry import reset_telemetry_tail


class FakeClock:
    """Manually advanced epoch-ms clock"""

    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class FakeGateway:
    """Submission gateway double: records payloads, replays scripted results"""

    def __init__(self, results: Optional[List] = None):
        self.results = list(results or [])
        self.calls: List[tuple] = []

    async def submit_quiz(self, quiz_id: str, payload: SubmissionPayload) -> SubmissionResult:
        self.calls.append((quiz_id, payload))
        result = self.results.pop(0) if self.results else SubmissionResult()
        if isinstance(result, Exception):
            raise result
        return result


class RecordingSink:
    """Outcome sink double"""

    def __init__(self):
        self.recorded: List[ModuleOutcome] = []
        self.resets: List[str] = []

    def record(self, outcome: ModuleOutcome) -> None:
        self.recorded.append(outcome)

    def reset(self, module_id: str) -> None:
        self.resets.append(module_id)


@pytest.fixture(scope="session")
def settings():
    """Provide settings for tests"""
    return get_settings()


@pytest.fixture(autouse=True)
def clean_telemetry():
    reset_telemetry_tail()
    yield


@pytest.fixture
def quiz_document():
    """Quiz as the training API returns it"""
    return {
        "_id": "quiz-1",
        "moduleId": "mod-1",
        "trainingId": "training-1",
        "title": "Safety Basics Quiz",
        "passingScore": 70,
        "timeLimit": 0,
        "maxAttempts": 3,
        "questions": [
            {"_id": "q1", "question": "Pick A", "type": "multiple-choice",
             "options": ["A", "B", "C"], "correctAnswer": 0},
            {"_id": "q2", "question": "Pick B", "type": "multiple-choice",
             "options": ["A", "B"], "correctAnswer": "1"},
            {"_id": "q3", "question": "Pick C", "type": "multiple-choice",
             "options": ["A", "B", "C"], "correctAnswer": 2},
            {"_id": "q4", "question": "Sky is blue?", "type": "true-false", "correctAnswer": "true"},
            {"_id": "q5", "question": "Capital of France?", "type": "short-answer", "correctAnswer": "Paris"},
        ],
    }


@pytest.fixture
def sample_quiz(quiz_document):
    return QuizDefinition.model_validate(quiz_document)


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def make_session(sample_quiz, gateway, sink, fake_clock):
    """Session factory; advance delay is zero unless given"""

    def _make(quiz=None, gateway_override=None, advance_delay: float = 0.0, **kwargs):
        return QuizAttemptSession(
            quiz or sample_quiz,
            gateway_override or gateway,
            "learner-1",
            outcome_sink=kwargs.pop("outcome_sink", sink),
            clock=fake_clock,
            advance_delay=advance_delay,
            session_token="token-abc",
            user_agent="pytest",
            **kwargs
        )

    return _make


def transport_error() -> SubmissionTransportError:
    return SubmissionTransportError("connection refused")


class FakeTrainingApi:
    """In-process training API behind httpx.MockTransport"""

    def __init__(self, quiz_document):
        self.training = {"_id": "training-1", "title": "Forklift Safety"}
        self.modules = [
            {"_id": "mod-2", "title": "Loading", "orderIndex": 1, "sections": [{"_id": "s3"}]},
            {"_id": "mod-1", "title": "Basics", "orderIndex": 0, "sections": [{"_id": "s1"}, {"_id": "s2"}]},
        ]
        self.quizzes = [
            quiz_document,
            {
                "_id": "quiz-2", "moduleId": "mod-2", "trainingId": "training-1", "title": "Loading Quiz",
                "questions": [{"_id": "l1", "question": "Lift slowly?", "type": "true-false", "correctAnswer": True}],
            },
            {
                "_id": "final", "moduleId": None, "trainingId": "training-1", "title": "Final Exam",
                "passingScore": 0,
                "questions": [{"_id": "f1", "question": "Done?", "type": "true-false", "correctAnswer": True}],
            },
        ]
        self.submissions: List[dict] = []
        self.submit_responses: List = []

    def _wrapped(self, data) -> httpx.Response:
        return httpx.Response(200, json={"success": True, "data": data})

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if request.method == "POST" and path.endswith("/submit"):
            self.submissions.append(json.loads(request.content))
            response = self.submit_responses.pop(0) if self.submit_responses else {}
            if isinstance(response, Exception):
                raise response
            if isinstance(response, httpx.Response):
                return response
            return self._wrapped(response)

        routes = {
            "/manual-trainings/training-1": self.training,
            "/manual-trainings/training-1/modules": self.modules,
            "/manual-trainings/training-1/quizzes": self.quizzes,
            "/manual-trainings/modules/mod-1/quizzes": [self.quizzes[0]],
        }
        for quiz in self.quizzes:
            routes[f"/manual-trainings/quizzes/{quiz['_id']}"] = quiz
        if path in routes:
            return self._wrapped(routes[path])
        return httpx.Response(404, json={"success": False, "message": "Not found"})

    def client(self) -> TrainingApiClient:
        return TrainingApiClient(base_url="http://training.test", transport=httpx.MockTransport(self.handler))


@pytest.fixture
def training_api(quiz_document):
    return FakeTrainingApi(quiz_document)


@pytest.fixture
def outcome_store(tmp_path):
    return OutcomeStore(str(tmp_path / "outcomes"))
