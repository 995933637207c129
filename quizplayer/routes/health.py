# FILE: quizplayer/routes/health.py
"""
Health check endpoint
"""
import logging
from fastapi import APIRouter

from quizplayer.config import get_settings
from quizplayer.services.session_registry import get_session_registry
from quizplayer.services.telemetry import get_telemetry_summary

logger = logging.getLogger(__name__)
router = APIRouter()

VERSION = "0.1.0"


@router.get("")
async def health_check():
    """Service status, live sessions and telemetry counters"""
    settings = get_settings()
    telemetry = get_telemetry_summary()
    return {
        "status": "healthy",
        "version": VERSION,
        "environment": settings.environment,
        "training_api_base_url": settings.training_api_base_url,
        "active_sessions": len(get_session_registry()),
        "telemetry": telemetry.get("counters_in_memory", {}),
    }
