# FILE: quizplayer/config.py
"""
Configuration management for the proctored quiz player
Loads from environment variables with validation
"""
import os
from typing import List, Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_ALLOWED_KEYS = ["Tab", "Enter", " ", "ArrowUp", "ArrowDown", "ArrowLeft", "ArrowRight"]


class Settings(BaseSettings):
    """Application settings loaded from environment"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Backend server
    backend_host: str = Field(default="0.0.0.0", alias="BACKEND_HOST")
    backend_port: int = Field(default=8000, alias="BACKEND_PORT")
    environment: str = Field(default="development", alias="ENVIRONMENT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Remote training API (quiz definitions, module listings, submissions)
    training_api_base_url: str = Field(default="http://localhost:5010", alias="TRAINING_API_BASE_URL")
    training_api_timeout: float = Field(default=15.0, alias="TRAINING_API_TIMEOUT")

    # Proctoring
    violation_advance_delay_seconds: float = Field(
        default=2.0,
        alias="VIOLATION_ADVANCE_DELAY_SECONDS",
        description="Delay between a violation and the forced advance, so the learner sees the notice"
    )
    allowed_keys: List[str] = Field(
        default_factory=lambda: list(DEFAULT_ALLOWED_KEYS),
        alias="ALLOWED_KEYS",
        description="Navigation/accessibility keys that never count as a blocked key press"
    )
    suspicious_fast_ms: int = Field(default=2000, alias="SUSPICIOUS_FAST_MS")
    suspicious_slow_ms: int = Field(default=300000, alias="SUSPICIOUS_SLOW_MS")

    # Scoring and gating
    default_module_passing_score: int = Field(default=70, alias="DEFAULT_MODULE_PASSING_SCORE")
    default_final_exam_passing_score: int = Field(default=80, alias="DEFAULT_FINAL_EXAM_PASSING_SCORE")
    quizless_modules_block: bool = Field(
        default=True,
        alias="QUIZLESS_MODULES_BLOCK",
        description="Treat a module without a quiz as a non-passable gate (legacy behaviour)"
    )

    # Data paths
    data_dir: str = Field(default="./data", alias="DATA_DIR")
    outcomes_dir: str = Field(default="./data/outcomes", alias="OUTCOMES_DIR")
    logs_dir: str = Field(default="./logs", alias="LOGS_DIR")

    # Telemetry
    telemetry_enabled: bool = Field(default=True, alias="TELEMETRY_ENABLED")
    telemetry_timezone: str = Field(default="UTC", alias="TELEMETRY_TIMEZONE")
    telemetry_retention_days: int = Field(default=90, alias="TELEMETRY_RETENTION_DAYS")

    # Security
    rate_limit_enabled: bool = Field(default=True, alias="RATE_LIMIT_ENABLED")
    rate_limit_rpm: int = Field(default=240, alias="RATE_LIMIT_RPM")

    # CORS
    cors_origins: List[str] = Field(default=["http://localhost:5173"], alias="CORS_ORIGINS")

    # Validators
    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v):
        if v not in ["development", "staging", "production", "test"]:
            raise ValueError("environment must be 'development', 'staging', 'production' or 'test'")
        return v

    @field_validator("violation_advance_delay_seconds")
    @classmethod
    def validate_advance_delay(cls, v):
        if v < 0:
            raise ValueError("violation_advance_delay_seconds must not be negative")
        if v > 30:
            raise ValueError("violation_advance_delay_seconds should not exceed 30 seconds")
        return v

    @field_validator("default_module_passing_score", "default_final_exam_passing_score")
    @classmethod
    def validate_passing_score(cls, v):
        if not 0 <= v <= 100:
            raise ValueError("passing scores must be between 0 and 100")
        return v

    @field_validator("suspicious_slow_ms")
    @classmethod
    def validate_suspicious_window(cls, v, info):
        fast = info.data.get("suspicious_fast_ms", 0)
        if v <= fast:
            raise ValueError("suspicious_slow_ms must be greater than suspicious_fast_ms")
        return v

    @field_validator("allowed_keys")
    @classmethod
    def validate_allowed_keys(cls, v):
        if not v:
            raise ValueError("allowed_keys must contain at least one key")
        return v

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        # Ensure directories exist
        for dir_path in [self.data_dir, self.outcomes_dir, self.logs_dir]:
            os.makedirs(dir_path, exist_ok=True)


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get or create singleton settings instance"""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings():
    """Reload settings (useful for testing)"""
    global _settings
    _settings = None
    return get_settings()
