# FILE: quizplayer/errors.py
"""
Domain errors for the quiz player

Each error carries the HTTP status the API layer answers with.
"""


class QuizPlayerError(Exception):
    """Base class for quiz player errors"""

    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__doc__)
        self.message = message or self.__class__.__doc__


class QuizUnavailableError(QuizPlayerError):
    """No quiz available"""

    status_code = 404


class SessionNotFoundError(QuizPlayerError):
    """Quiz session not found"""

    status_code = 404


class InvalidAnswerError(QuizPlayerError, ValueError):
    """Answer does not match the question kind"""

    status_code = 422


class NavigationError(QuizPlayerError):
    """Navigation not possible"""

    status_code = 409


class QuestionLockedError(NavigationError):
    """Question locked"""

    def __init__(self, index: int, message: str = ""):
        super().__init__(message or f"Question {index + 1} is locked and cannot be revisited")
        self.index = index


class AttemptStateError(QuizPlayerError):
    """Operation not allowed in the current attempt state"""

    status_code = 409


class RetryNotAllowedError(AttemptStateError):
    """Retry not allowed"""


class ModuleLockedError(QuizPlayerError):
    """You must pass previous modules before accessing this one"""

    status_code = 403


class SubmissionTransportError(QuizPlayerError):
    """Error submitting quiz. Please try again."""

    status_code = 502


class SecurityRejectionError(QuizPlayerError):
    """Submission rejected as a security violation"""

    status_code = 403
