# FILE: quizplayer/routes/sessions.py
"""
Quiz session endpoints (the proctored player)
"""
import logging
from typing import Optional, Union
from fastapi import APIRouter, Header
from pydantic import BaseModel

from quizplayer.errors import SecurityRejectionError
from quizplayer.proctoring.attempt import AttemptState
from quizplayer.proctoring.monitor import Signal, SignalType
from quizplayer.providers.training_api import get_training_api_client
from quizplayer.services.progress import get_progress_registry
from quizplayer.services.session_registry import get_session_registry

logger = logging.getLogger(__name__)
router = APIRouter()


class SessionCreateRequest(BaseModel):
    """Open a quiz session"""
    learner_id: str
    quiz_id: str
    training_id: Optional[str] = None
    user_agent: Optional[str] = None


class SignalRequest(BaseModel):
    """Raw environment signal forwarded by the browser"""
    type: SignalType
    key: Optional[str] = None
    ctrl: bool = False
    meta: bool = False
    alt: bool = False


class AnswerRequest(BaseModel):
    """Answer for the current question"""
    value: Union[bool, int, str]


class RetryRequest(BaseModel):
    force: bool = False


async def _submitting(session_id: str, session, action):
    """Run an action that may submit; a security rejection drops the session"""
    try:
        await action()
    except SecurityRejectionError:
        get_session_registry().discard_rejected(session_id)
        raise
    return session.snapshot()


@router.post("")
async def create_session(
    request: SessionCreateRequest,
    user_agent: Optional[str] = Header(None),
    x_session_token: Optional[str] = Header(None)
):
    """Fetch the quiz, check the module gate, start attempt 1"""
    logger.info(f"Create session: learner={request.learner_id} quiz={request.quiz_id}")
    client = get_training_api_client()
    quiz = await client.get_quiz(request.quiz_id)

    outcome_sink = None
    training_id = request.training_id or quiz.training_id
    if training_id:
        progress = await get_progress_registry().get(request.learner_id, training_id)
        try:
            index = progress.module_index(quiz.outcome_key)
        except KeyError:
            logger.warning(f"Quiz {quiz.id} is not part of training {training_id}; no gate applied")
        else:
            progress.enter_module(index)
            outcome_sink = progress

    session = get_session_registry().open(
        quiz,
        client,
        request.learner_id,
        outcome_sink=outcome_sink,
        user_agent=request.user_agent or user_agent or "",
        session_token=x_session_token,
    )
    return {**session.snapshot(), "session_token": session.session_token}


@router.get("/{session_id}")
async def get_session(session_id: str):
    registry = get_session_registry()
    session = registry.get(session_id)
    snapshot = session.snapshot()
    if session.state == AttemptState.REJECTED:
        # rejected by a background auto-submit; report once, then drop
        registry.discard_rejected(session_id)
    return snapshot


@router.delete("/{session_id}")
async def close_session(session_id: str):
    get_session_registry().close(session_id)
    return {"status": "closed", "session_id": session_id}


@router.post("/{session_id}/signals")
async def post_signal(session_id: str, request: SignalRequest):
    session = get_session_registry().get(session_id)
    violation = session.observe(
        Signal(type=request.type, key=request.key, ctrl=request.ctrl, meta=request.meta, alt=request.alt)
    )
    if violation is None:
        return {"applied": False}
    return {
        "applied": True,
        "question_index": violation.question_index,
        "kind": violation.kind.value,
        "timestamp_ms": violation.timestamp_ms,
        "advance_in_seconds": session.advance_delay,
    }


@router.put("/{session_id}/answer")
async def put_answer(session_id: str, request: AnswerRequest):
    session = get_session_registry().get(session_id)
    session.select_answer(request.value)
    return session.snapshot()


@router.post("/{session_id}/next")
async def next_question(session_id: str):
    session = get_session_registry().get(session_id)
    return await _submitting(session_id, session, session.next_question)


@router.post("/{session_id}/previous")
async def previous_question(session_id: str):
    session = get_session_registry().get(session_id)
    session.previous_question()
    return session.snapshot()


@router.post("/{session_id}/submit")
async def submit(session_id: str):
    session = get_session_registry().get(session_id)
    return await _submitting(session_id, session, session.submit)


@router.post("/{session_id}/retry")
async def retry(session_id: str, request: Optional[RetryRequest] = None):
    session = get_session_registry().get(session_id)
    session.retry(force=request.force if request else False)
    return session.snapshot()
