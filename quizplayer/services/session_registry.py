# FILE: quizplayer/services/session_registry.py
"""
Live quiz sessions, one per learner
"""
import logging
from typing import Dict, Optional

from quizplayer.errors import QuizUnavailableError, SessionNotFoundError
from quizplayer.models.quizzes import QuizDefinition
from quizplayer.proctoring.session import OutcomeSink, QuizAttemptSession, SubmissionGateway
from quizplayer.services.telemetry import record_event

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Creates, finds and tears down quiz sessions"""

    def __init__(self):
        self.sessions: Dict[str, QuizAttemptSession] = {}
        self.by_learner: Dict[str, str] = {}

    def open(
        self,
        quiz: QuizDefinition,
        gateway: SubmissionGateway,
        learner_id: str,
        outcome_sink: Optional[OutcomeSink] = None,
        **session_kwargs
    ) -> QuizAttemptSession:
        """Start a session; a learner's previous session is closed first"""
        if not quiz.questions:
            logger.warning(f"Quiz {quiz.id} has no questions; no attempt created")
            raise QuizUnavailableError(f"No quiz available ({quiz.id} has no questions)")

        previous_id = self.by_learner.get(learner_id)
        if previous_id is not None:
            logger.info(f"Learner {learner_id} switched quiz; closing session {previous_id}")
            self.close(previous_id)

        session = QuizAttemptSession(
            quiz, gateway, learner_id, outcome_sink=outcome_sink, **session_kwargs
        )
        self.sessions[session.session_id] = session
        self.by_learner[learner_id] = session.session_id
        record_event("session_opened", session_id=session.session_id, quiz_id=quiz.id, learner_id=learner_id)
        return session

    def get(self, session_id: str) -> QuizAttemptSession:
        session = self.sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Quiz session {session_id} not found")
        return session

    def close(self, session_id: str) -> None:
        """Close and forget a session (cancels its timers)"""
        session = self.sessions.pop(session_id, None)
        if session is None:
            raise SessionNotFoundError(f"Quiz session {session_id} not found")
        session.close()
        if self.by_learner.get(session.learner_id) == session_id:
            del self.by_learner[session.learner_id]
        record_event("session_closed", session_id=session_id, state=session.state.value)

    def close_for_module_switch(self, learner_id: str, module_id: str) -> None:
        """Close the learner's live session unless its quiz belongs to module_id"""
        session_id = self.by_learner.get(learner_id)
        if session_id is None:
            return
        session = self.sessions[session_id]
        if session.quiz.outcome_key == module_id:
            return
        logger.info(f"Learner {learner_id} switched to module {module_id}; closing session {session_id}")
        self.close(session_id)

    def discard_rejected(self, session_id: str) -> None:
        """Drop a session whose attempt the server rejected"""
        if session_id in self.sessions:
            logger.warning(f"Removing rejected session {session_id}")
            self.close(session_id)

    def close_all(self) -> None:
        for session_id in list(self.sessions):
            self.close(session_id)

    def __len__(self) -> int:
        return len(self.sessions)


_registry: Optional[SessionRegistry] = None


def get_session_registry() -> SessionRegistry:
    """Get or create global session registry"""
    global _registry
    if _registry is None:
        _registry = SessionRegistry()
    return _registry
