"""Configuration management for stackops.

Settings are layered, lowest precedence first: model defaults, an optional
YAML file named by ``STACKOPS_CONFIG``, a ``.env`` file and finally the
process environment.
"""

from __future__ import annotations

import logging
import os
import re
from functools import lru_cache
from pathlib import Path

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

from stackops.errors import ConfigurationError

_config_logger = logging.getLogger(__name__)

_SAFE_REF_RE = re.compile(r"^[a-zA-Z0-9._/+-]+$")
_SAFE_NAME_RE = re.compile(r"^[A-Za-z0-9_$-]+$")


class LoggingSettings(BaseModel):
    level: str = Field(default="INFO", description="Python logging level name")
    file: str | None = Field(default=None, description="Optional log file path")


class AuditSettings(BaseModel):
    path: str = Field(default="./logs/stackops-audit.jsonl")
    excerpt_chars: int = Field(default=2_000, ge=100, le=100_000)


class DeploySettings(BaseModel):
    app_dir: str = Field(default="./app")
    repo_url: str = Field(default="")
    branch: str = Field(default="main")
    process_name: str = Field(default="app")
    install_command: tuple[str, ...] = Field(default=("npm", "install"))
    fetch_timeout_seconds: int = Field(default=300, ge=1, le=3600)
    install_timeout_seconds: int = Field(default=900, ge=1, le=7200)
    restart_timeout_seconds: int = Field(default=60, ge=1, le=600)

    @field_validator("branch")
    @classmethod
    def _validate_branch(cls, value: str) -> str:
        if not _SAFE_REF_RE.match(value) or value.startswith("-"):
            raise ValueError(f"branch contains invalid characters: {value[:120]}")
        return value


class BackupSettings(BaseModel):
    database: str = Field(default="myappdb")
    user: str = Field(default="root")
    host: str = Field(default="localhost")
    port: int = Field(default=3306, ge=1, le=65535)
    credential_ref: str = Field(
        default="env:BACKUP_DB_PASSWORD",
        description="env:NAME | file:/path | secretsmanager:<secret id>",
    )
    backup_dir: str = Field(default="./backups")
    bucket: str = Field(default="")
    prefix: str = Field(default="backups")
    retention_days: int = Field(default=7, ge=1, le=3650)
    max_attempts: int = Field(default=3, ge=1, le=10)
    backoff_base_seconds: float = Field(default=2.0, ge=0.0, le=300.0)
    backoff_cap_seconds: float = Field(default=60.0, ge=0.0, le=3600.0)
    dump_timeout_seconds: int = Field(default=1800, ge=1, le=86_400)
    upload_timeout_seconds: int = Field(default=300, ge=1, le=3600)
    lock_dir: str = Field(default="./locks")

    @field_validator("database")
    @classmethod
    def _validate_database(cls, value: str) -> str:
        if not _SAFE_NAME_RE.match(value):
            raise ValueError(f"database name contains invalid characters: {value[:120]}")
        return value

    @field_validator("prefix")
    @classmethod
    def _strip_prefix(cls, value: str) -> str:
        return value.strip("/")


class ScheduleSettings(BaseModel):
    interval_minutes: int = Field(default=60, ge=1, le=10_080)


class AWSSettings(BaseModel):
    default_region: str | None = Field(default=None)
    default_profile: str | None = Field(default=None)


class Settings(BaseModel):
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    audit: AuditSettings = Field(default_factory=AuditSettings)
    deploy: DeploySettings = Field(default_factory=DeploySettings)
    backup: BackupSettings = Field(default_factory=BackupSettings)
    schedule: ScheduleSettings = Field(default_factory=ScheduleSettings)
    aws: AWSSettings = Field(default_factory=AWSSettings)


# (section, field) -> environment variable
ENV_KEYS: dict[tuple[str, str], str] = {
    ("logging", "level"): "LOG_LEVEL",
    ("logging", "file"): "LOG_FILE",
    ("audit", "path"): "AUDIT_LOG_PATH",
    ("audit", "excerpt_chars"): "AUDIT_EXCERPT_CHARS",
    ("deploy", "app_dir"): "DEPLOY_APP_DIR",
    ("deploy", "repo_url"): "DEPLOY_REPO_URL",
    ("deploy", "branch"): "DEPLOY_BRANCH",
    ("deploy", "process_name"): "DEPLOY_PROCESS_NAME",
    ("deploy", "install_command"): "DEPLOY_INSTALL_COMMAND",
    ("deploy", "fetch_timeout_seconds"): "DEPLOY_FETCH_TIMEOUT_SECONDS",
    ("deploy", "install_timeout_seconds"): "DEPLOY_INSTALL_TIMEOUT_SECONDS",
    ("deploy", "restart_timeout_seconds"): "DEPLOY_RESTART_TIMEOUT_SECONDS",
    ("backup", "database"): "BACKUP_DB_NAME",
    ("backup", "user"): "BACKUP_DB_USER",
    ("backup", "host"): "BACKUP_DB_HOST",
    ("backup", "port"): "BACKUP_DB_PORT",
    ("backup", "credential_ref"): "BACKUP_CREDENTIAL_REF",
    ("backup", "backup_dir"): "BACKUP_DIR",
    ("backup", "bucket"): "BACKUP_S3_BUCKET",
    ("backup", "prefix"): "BACKUP_S3_PREFIX",
    ("backup", "retention_days"): "BACKUP_RETENTION_DAYS",
    ("backup", "max_attempts"): "BACKUP_MAX_ATTEMPTS",
    ("backup", "backoff_base_seconds"): "BACKUP_BACKOFF_BASE_SECONDS",
    ("backup", "backoff_cap_seconds"): "BACKUP_BACKOFF_CAP_SECONDS",
    ("backup", "dump_timeout_seconds"): "BACKUP_DUMP_TIMEOUT_SECONDS",
    ("backup", "upload_timeout_seconds"): "BACKUP_UPLOAD_TIMEOUT_SECONDS",
    ("backup", "lock_dir"): "BACKUP_LOCK_DIR",
    ("schedule", "interval_minutes"): "SCHEDULE_INTERVAL_MINUTES",
    ("aws", "default_profile"): "AWS_PROFILE",
}

_PATH_FIELDS = frozenset(
    {
        ("logging", "file"),
        ("audit", "path"),
        ("deploy", "app_dir"),
        ("backup", "backup_dir"),
        ("backup", "lock_dir"),
    }
)


def _env_file() -> Path:
    return Path(os.getenv("STACKOPS_ENV_FILE", ".env"))


def _resolve_path(path: str) -> str:
    return str(Path(path).expanduser().resolve())


def _split_command(value: str) -> tuple[str, ...]:
    return tuple(item for item in value.split() if item)


def _env_int(key: str, default: int) -> int:
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        _config_logger.warning(
            "Invalid integer value for %s: %r, using default %d", key, value, default
        )
        return default


def _env_float(key: str, default: float) -> float:
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    try:
        return float(value)
    except ValueError:
        _config_logger.warning(
            "Invalid float value for %s: %r, using default %s", key, value, default
        )
        return default


def _load_yaml_file(path: str) -> dict[str, dict[str, object]]:
    try:
        with Path(path).expanduser().open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except OSError as exc:
        raise ConfigurationError(f"Cannot read config file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Invalid YAML in config file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")
    return {str(k): dict(v or {}) for k, v in data.items()}


def _apply_env(settings_data: dict[str, dict[str, object]]) -> None:
    defaults = Settings()
    for (section, name), env_key in ENV_KEYS.items():
        raw = os.getenv(env_key)
        if raw is None or raw.strip() == "":
            continue
        default = getattr(getattr(defaults, section), name)
        value: object
        if isinstance(default, bool):
            value = raw.strip().lower() in {"1", "true", "yes"}
        elif isinstance(default, int):
            value = _env_int(env_key, default)
        elif isinstance(default, float):
            value = _env_float(env_key, default)
        elif isinstance(default, tuple):
            value = _split_command(raw)
        else:
            value = raw.strip()
        settings_data.setdefault(section, {})[name] = value

    region = os.getenv("AWS_REGION") or os.getenv("AWS_DEFAULT_REGION")
    if region:
        settings_data.setdefault("aws", {})["default_region"] = region


def load_settings() -> Settings:
    """Load configuration and cache the result."""

    return _load_settings_cached()


@lru_cache(maxsize=1)
def _load_settings_cached() -> Settings:
    load_dotenv(dotenv_path=_env_file())

    config_file = os.getenv("STACKOPS_CONFIG")
    settings_data = _load_yaml_file(config_file) if config_file else {}
    _apply_env(settings_data)

    for section, name in _PATH_FIELDS:
        value = settings_data.get(section, {}).get(name)
        if isinstance(value, str) and value:
            settings_data[section][name] = _resolve_path(value)

    try:
        settings = Settings.model_validate(settings_data)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration: {exc}") from exc

    if settings.backup.backoff_cap_seconds < settings.backup.backoff_base_seconds:
        raise ConfigurationError(
            "Invalid configuration: BACKUP_BACKOFF_CAP_SECONDS must not be lower "
            "than BACKUP_BACKOFF_BASE_SECONDS"
        )

    return settings
