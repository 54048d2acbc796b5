"""Application configuration: quack.yml parsing, env overrides and defaults."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field

CONFIG_FILENAME = "quack.yml"


class DatabaseConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")
    path: str = "data/quack.duckdb"


class StorageConfig(BaseModel):
    """Where uploaded CSVs and notebook archives are kept."""
    model_config = ConfigDict(extra="ignore")

    upload_dir: str = "data/uploads"
    export_dir: str = "data/exports"


class QueryConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    default_limit: int = 1000
    max_limit: int = 10_000
    timeout_seconds: float = 30.0


class ServerConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    host: str = "127.0.0.1"
    port: int = 3001
    max_upload_bytes: int = 52_428_800  # 50MB
    cors_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:5173", "http://127.0.0.1:5173"]
    )


class AppConfig(BaseModel):
    model_config = ConfigDict(extra="ignore", arbitrary_types_allowed=True)

    name: str = "quack"
    log_level: str = "INFO"
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    query: QueryConfig = Field(default_factory=QueryConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    project_dir: Path = Field(default_factory=Path.cwd)

    def resolve(self, path: str) -> Path:
        """Resolve a configured path against the project directory."""
        candidate = Path(path).expanduser()
        if candidate.is_absolute():
            return candidate
        return self.project_dir / candidate

    @property
    def db_path(self) -> Path:
        return self.resolve(self.database.path)

    @property
    def upload_dir(self) -> Path:
        return self.resolve(self.storage.upload_dir)

    @property
    def export_dir(self) -> Path:
        return self.resolve(self.storage.export_dir)


def _expand_env_vars(value: Any) -> Any:
    """Expand ${ENV_VAR} references in string values."""
    if isinstance(value, str):
        return re.sub(
            r"\$\{(\w+)\}",
            lambda m: os.environ.get(m.group(1), m.group(0)),
            value,
        )
    if isinstance(value, dict):
        return {k: _expand_env_vars(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_expand_env_vars(v) for v in value]
    return value


# Environment variable -> (section, key)
_ENV_OVERRIDES = {
    "QUACK_DB_PATH": ("database", "path"),
    "QUACK_UPLOAD_DIR": ("storage", "upload_dir"),
    "QUACK_EXPORT_DIR": ("storage", "export_dir"),
    "QUACK_QUERY_TIMEOUT": ("query", "timeout_seconds"),
    "QUACK_HOST": ("server", "host"),
    "QUACK_PORT": ("server", "port"),
}


def _apply_env_overrides(raw: dict[str, Any]) -> dict[str, Any]:
    for env_name, (section, key) in _ENV_OVERRIDES.items():
        value = os.environ.get(env_name)
        if value:
            section_raw = dict(raw.get(section) or {})
            section_raw[key] = value
            raw[section] = section_raw
    level = os.environ.get("QUACK_LOG_LEVEL")
    if level:
        raw["log_level"] = level
    return raw


def load_config(project_dir: Path | None = None) -> AppConfig:
    """Load quack.yml from the given directory (or cwd).

    Missing file means defaults. ``QUACK_*`` environment variables win over
    values in the file.
    """
    project_dir = Path(project_dir) if project_dir else Path.cwd()
    config_path = project_dir / CONFIG_FILENAME

    raw: dict[str, Any] = {}
    if config_path.exists():
        raw = yaml.safe_load(config_path.read_text()) or {}
        raw = _expand_env_vars(raw)
    raw = _apply_env_overrides(raw)

    return AppConfig(
        name=raw.get("name", project_dir.name),
        log_level=str(raw.get("log_level", "INFO")),
        database=DatabaseConfig(**(raw.get("database") or {})),
        storage=StorageConfig(**(raw.get("storage") or {})),
        query=QueryConfig(**(raw.get("query") or {})),
        server=ServerConfig(**(raw.get("server") or {})),
        project_dir=project_dir,
    )


CONFIG_TEMPLATE = """\
name: {name}

database:
  path: data/quack.duckdb

storage:
  upload_dir: data/uploads
  export_dir: data/exports

query:
  default_limit: 1000
  max_limit: 10000
  timeout_seconds: 30
"""
