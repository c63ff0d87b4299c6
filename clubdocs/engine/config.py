"""
clubdocs Configuration — Load and validate clubdocs.yaml at startup.

Usage:
    from clubdocs.engine.config import load_config, get_config
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from clubdocs.engine.errors import ClubDocsConfigError

CONFIG_FILENAME = "clubdocs.yaml"


# ---------------------------------------------------------------------------
# Pydantic models for clubdocs.yaml
# ---------------------------------------------------------------------------

class DatabaseConfig(BaseModel):
    url: str = "sqlite:///clubdocs.db"
    pool_size: int = 10
    max_overflow: int = 20
    pool_timeout: int = 30
    pool_recycle: int = 1800
    pool_pre_ping: bool = True
    echo: bool = False


class LogRetentionConfig(BaseModel):
    execution_days: int = 90
    security_days: int = 365


class LogAsyncQueueConfig(BaseModel):
    flush_interval_ms: int = 100
    flush_batch_size: int = 50
    max_queue_size: int = 10000


class LoggingConfig(BaseModel):
    level: str = "INFO"
    directory: str = ".clubdocs/logs"
    compress_after_days: int = 7
    retention: LogRetentionConfig = LogRetentionConfig()
    async_queue: LogAsyncQueueConfig = LogAsyncQueueConfig()

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        v = v.upper()
        if v not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"logging.level must be a stdlib level name, got '{v}'")
        return v


class WorkflowConfig(BaseModel):
    max_recompute_attempts: int = Field(default=3, ge=1)
    timezone: str = "UTC"

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"workflow.timezone must be an IANA zone name, got '{v}'") from e
        return v


class FilesConfig(BaseModel):
    upload_dir: str = ".clubdocs/uploads"
    max_upload_size_mb: int = Field(default=10, ge=1)
    allowed_mime_types: List[str] = Field(default_factory=lambda: [
        "application/pdf",
        "image/jpeg",
        "image/jpg",
        "image/png",
        "image/gif",
        "image/webp",
    ])


class NotificationsConfig(BaseModel):
    sink: str = "log"
    webhook_url: Optional[str] = None
    timeout_seconds: float = 5.0
    api_key: Optional[str] = None

    @field_validator("sink")
    @classmethod
    def validate_sink(cls, v: str) -> str:
        if v not in ("log", "webhook", "none"):
            raise ValueError(f"notifications.sink must be log/webhook/none, got '{v}'")
        return v


class APIConfig(BaseModel):
    title: str = "Club Documents API"
    host: str = "127.0.0.1"
    port: int = 8000
    cors_origins: List[str] = Field(default_factory=list)


class ClubDocsConfig(BaseModel):
    """Root model for clubdocs.yaml."""
    name: str = "clubdocs"
    environment: str = "dev"

    database: DatabaseConfig = DatabaseConfig()
    logging: LoggingConfig = LoggingConfig()
    workflow: WorkflowConfig = WorkflowConfig()
    files: FilesConfig = FilesConfig()
    notifications: NotificationsConfig = NotificationsConfig()
    api: APIConfig = APIConfig()

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        if v not in ("dev", "staging", "prod"):
            raise ValueError(f"environment must be dev/staging/prod, got '{v}'")
        return v


# ---------------------------------------------------------------------------
# Config Loading Functions
# ---------------------------------------------------------------------------

_config: Optional[ClubDocsConfig] = None


def _find_project_root() -> Path:
    """Find the project root by looking for clubdocs.yaml."""
    current = Path.cwd()
    for parent in [current, *current.parents]:
        if (parent / CONFIG_FILENAME).exists():
            return parent
    return current


def load_config(config_path: Optional[str] = None) -> ClubDocsConfig:
    """
    Load and validate clubdocs.yaml.

    Args:
        config_path: Explicit path to clubdocs.yaml. If None, auto-discovers.

    Returns:
        Validated ClubDocsConfig instance. Defaults when no file exists.

    Raises:
        ClubDocsConfigError: unreadable YAML or values failing validation.
    """
    global _config

    if config_path is None:
        config_path = str(_find_project_root() / CONFIG_FILENAME)

    path = Path(config_path)
    if not path.exists():
        _config = ClubDocsConfig()
        return _config

    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ClubDocsConfigError(f"Cannot parse {path}: {e}", path=str(path)) from e

    if not isinstance(raw, dict):
        raise ClubDocsConfigError(f"{path} must contain a mapping", path=str(path))

    try:
        _config = ClubDocsConfig(**raw)
    except ValidationError as e:
        raise ClubDocsConfigError(
            f"Invalid configuration in {path}",
            path=str(path),
            validation_errors=e.errors(include_url=False),
        ) from e
    return _config


def get_config() -> ClubDocsConfig:
    """Get the currently loaded config, loading if necessary."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: Optional[ClubDocsConfig]) -> None:
    """Install an already-built config (or clear it with None)."""
    global _config
    _config = config
