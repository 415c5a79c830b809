from __future__ import annotations

import json
import secrets
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field

from chatdesk_core.home import ChatDeskPaths


class NetworkConfig(BaseModel):
    bind_host: str = Field(default="127.0.0.1")
    core_port: int = Field(default=8765, ge=1, le=65535)


class PathOverrides(BaseModel):
    db_dir: str | None = None
    backups_dir: str | None = None
    logs_dir: str | None = None


class AuthConfig(BaseModel):
    install_token: str | None = Field(default=None)


class LoggingConfig(BaseModel):
    max_size_mb: int = Field(
        default=10, ge=1, description="Max size of a log file in MB before rolling."
    )
    backup_count: int = Field(default=5, ge=1, description="Number of log archives to keep.")
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")


class CryptoConfig(BaseModel):
    """Settings for the at-rest protection of API keys."""

    kdf_iterations: int = Field(
        default=480_000,
        ge=1,
        description="PBKDF2 iterations used to derive the API-key cipher from the master secret.",
    )
    secure_storage_key_file: str = Field(
        default="secure-storage.key",
        description=(
            "File name (under config/) of the key that protects master secrets. "
            "Created with user-only permissions on first use."
        ),
    )
    master_key_name: str = Field(default="api_keys")


class AIConfig(BaseModel):
    default_service: str = Field(default="gemini")
    default_model: str = Field(default="gemini-1.5-flash")


class CoreConfig(BaseModel):
    version: str = Field(default="1")
    network: NetworkConfig = Field(default_factory=NetworkConfig)
    paths: PathOverrides = Field(default_factory=PathOverrides)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    crypto: CryptoConfig = Field(default_factory=CryptoConfig)
    ai: AIConfig = Field(default_factory=AIConfig)


def _read_json(path: Path) -> dict[str, Any]:
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


def load_core_config(paths: ChatDeskPaths) -> CoreConfig:
    """Load config from ${CHATDESK_HOME}/config/core.json.

    - If missing: returns defaults.
    - Validation is performed by Pydantic.
    """

    config_path = paths.core_config_path
    if not config_path.exists():
        return CoreConfig()

    raw = _read_json(config_path)
    return CoreConfig.model_validate(raw)


def write_core_config(paths: ChatDeskPaths, config: CoreConfig) -> None:
    """Persist config to ${CHATDESK_HOME}/config/core.json."""

    payload = config.model_dump(mode="json", exclude_none=True)
    paths.config_dir.mkdir(parents=True, exist_ok=True)
    paths.core_config_path.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")


def ensure_install_token(paths: ChatDeskPaths, config: CoreConfig) -> CoreConfig:
    """Ensure a per-install API token exists and is stored in config.

    If missing, generate a new token and persist it to core.json.
    """

    raw = (config.auth.install_token or "").strip()
    if raw:
        return config

    token = secrets.token_urlsafe(32)
    updated_auth = config.auth.model_copy(update={"install_token": token})
    updated = config.model_copy(update={"auth": updated_auth})
    write_core_config(paths, updated)
    return updated


def resolve_configured_paths(paths: ChatDeskPaths, config: CoreConfig) -> ChatDeskPaths:
    """Apply user-configurable path overrides from config.

    config/ is not configurable; the backup dir is created lazily by backups.
    """

    def _resolve_dir(raw: str | None, default: Path) -> Path:
        if raw is None or not str(raw).strip():
            return default
        candidate = Path(raw).expanduser()
        if not candidate.is_absolute():
            candidate = (paths.home / candidate).resolve()
        else:
            candidate = candidate.resolve()
        return candidate

    db_dir = _resolve_dir(config.paths.db_dir, paths.db_dir)
    backups_dir = _resolve_dir(config.paths.backups_dir, paths.backups_dir)
    logs_dir = _resolve_dir(config.paths.logs_dir, paths.logs_dir)

    for p in (db_dir, logs_dir):
        p.mkdir(parents=True, exist_ok=True)

    return ChatDeskPaths(
        home=paths.home,
        db_dir=db_dir,
        backups_dir=backups_dir,
        logs_dir=logs_dir,
        config_dir=paths.config_dir,
    )
