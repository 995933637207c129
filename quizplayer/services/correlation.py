# FILE: quizplayer/services/correlation.py
"""
Session token and id utilities
"""
import secrets
import uuid


def generate_session_id() -> str:
    """Generate unique quiz session id"""
    return uuid.uuid4().hex


def generate_session_token() -> str:
    """Generate the opaque token sent with submissions for server-side audit"""
    return secrets.token_urlsafe(24)
