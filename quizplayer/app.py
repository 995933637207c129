# FILE: quizplayer/app.py
"""
FastAPI application entry point for the proctored quiz player
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from quizplayer.config import get_settings
from quizplayer.errors import QuizPlayerError, SubmissionTransportError
from quizplayer.middleware.rate_limit import RateLimitMiddleware
from quizplayer.providers.training_api import close_training_api_client
from quizplayer.routes import health, progress, sessions
from quizplayer.routes.health import VERSION
from quizplayer.services.session_registry import get_session_registry
from quizplayer.services.telemetry import init_telemetry

logger = logging.getLogger(__name__)
settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown"""
    logger.info(f"Starting quiz player backend v{VERSION} (training API: {settings.training_api_base_url})")

    init_telemetry()

    yield

    # Shutdown: cancel pending advances, release the HTTP client
    logger.info("Shutting down quiz player backend")
    get_session_registry().close_all()
    await close_training_api_client()


app = FastAPI(
    title="Quiz Player API",
    description="Proctored quiz player with module gating and certification",
    version=VERSION,
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Rate limiting
if settings.rate_limit_enabled:
    app.add_middleware(RateLimitMiddleware, rpm=settings.rate_limit_rpm)


@app.exception_handler(QuizPlayerError)
async def quiz_player_exception_handler(request: Request, exc: QuizPlayerError):
    logger.info(f"{exc.__class__.__name__} on {request.url.path}: {exc.message}")
    content = {"error": exc.__class__.__name__, "detail": exc.message}
    if isinstance(exc, SubmissionTransportError):
        content["retryable"] = True
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "detail": str(exc)}
    )

# Include routers
app.include_router(health.router, prefix="/health", tags=["health"])
app.include_router(sessions.router, prefix="/sessions", tags=["sessions"])
app.include_router(progress.router, prefix="/progress", tags=["progress"])


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "service": "Quiz Player",
        "version": VERSION,
        "status": "active"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "quizplayer.app:app",
        host=settings.backend_host,
        port=settings.backend_port,
        reload=settings.environment == "development"
    )
