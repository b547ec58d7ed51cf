from __future__ import annotations
"""forwarder/core/config.py
~~~~~~~~~~~~~~~~~~~~~~~~~~
Paramètres :
- `Settings` (pydantic-settings) : ENV + fichier `.env` (DB, broker, token API, retry).
- `ForwarderConfig` (pydantic) : fichier YAML (Dynatrace, polling, connecteurs, logs).

Les références `${VAR}` dans les headers des connecteurs sont résolues au
chargement ; une variable absente est une erreur de configuration (le moteur
ne reçoit jamais un connecteur incomplet).
"""

import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from forwarder.core.errors import ConfigError

logger = logging.getLogger(__name__)

_ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")


class Settings(BaseSettings):
    CONFIG_PATH: str = "./config.yaml"
    DATABASE_URL: str = "sqlite+pysqlite:///./data/forwarder.db"
    DB_CONNECT_TIMEOUT: int = 5
    REDIS_URL: str = "redis://localhost:6379/0"
    DYNATRACE_API_TOKEN: Optional[str] = None
    RETRY_BASE_DELAY_SECONDS: float = 1.0
    RETRY_MAX_DELAY_SECONDS: float = 60.0
    DISPATCH_MAX_WORKERS: int = 8
    LOG_LEVEL: Optional[str] = None
    LOG_FORMAT: Optional[str] = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )


settings = Settings()


# ──────────────────────────────────────────────────────────────────────────────
# Modèles YAML
# ──────────────────────────────────────────────────────────────────────────────

class DynatraceConfig(BaseModel):
    base_url: str
    tenant: str
    problem_selector: Optional[str] = None
    page_size: Optional[int] = Field(default=None, gt=0, le=500)
    max_pages: int = Field(default=50, gt=0)
    timeout_seconds: float = Field(default=30.0, gt=0)

    @field_validator("base_url", "tenant")
    @classmethod
    def _not_empty(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("must not be empty")
        return v

    def problems_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/e/{self.tenant}/api/v2/problems"


class PollingConfig(BaseModel):
    interval_seconds: int = Field(default=60, gt=0)


class DatabaseConfig(BaseModel):
    path: Optional[Path] = None


class ConnectorConfig(BaseModel):
    """Connecteur HTTP (immuable : partagé entre threads pendant un cycle)."""

    model_config = ConfigDict(frozen=True)

    name: str
    url: str
    method: Literal["GET", "POST", "PUT", "PATCH"] = "POST"
    headers: Dict[str, str] = Field(default_factory=dict)
    timeout_seconds: float = Field(default=30.0, gt=0)
    retry_attempts: int = Field(default=3, ge=0)
    verify_ssl: bool = True

    @field_validator("method", mode="before")
    @classmethod
    def _upper_method(cls, v: Any) -> Any:
        return v.strip().upper() if isinstance(v, str) else v

    @field_validator("name")
    @classmethod
    def _name_not_empty(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("connector name cannot be empty")
        return v

    @model_validator(mode="after")
    def _check_url(self) -> "ConnectorConfig":
        if not self.url.startswith(("http://", "https://")):
            raise ValueError(f"connector '{self.name}' URL must start with http:// or https://")
        return self


class LoggingConfig(BaseModel):
    level: str = "info"
    format: Literal["pretty", "json"] = "pretty"


class ForwarderConfig(BaseModel):
    dynatrace: DynatraceConfig
    polling: PollingConfig = Field(default_factory=PollingConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    connectors: List[ConnectorConfig]
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="after")
    def _check_connectors(self) -> "ForwarderConfig":
        if not self.connectors:
            raise ValueError("at least one connector must be configured")
        names = [c.name for c in self.connectors]
        dupes = sorted({n for n in names if names.count(n) > 1})
        if dupes:
            raise ValueError(f"duplicate connector names: {', '.join(dupes)}")
        return self

    def database_url(self, default: str | None = None) -> str:
        """`database.path` (SQLite) prioritaire sur `DATABASE_URL`."""
        if self.database.path is not None:
            return f"sqlite+pysqlite:///{self.database.path}"
        return default or settings.DATABASE_URL


# ──────────────────────────────────────────────────────────────────────────────
# Substitution ${VAR}
# ──────────────────────────────────────────────────────────────────────────────

def resolve_env_vars(value: str, *, env: Dict[str, str] | None = None) -> str:
    """Remplace les `${VAR}` ; lève ConfigError si une variable est absente."""
    source = os.environ if env is None else env

    def _replace(match: re.Match) -> str:
        name = match.group(1)
        if name not in source:
            raise ConfigError(f"environment variable '{name}' is not set")
        return source[name]

    return _ENV_VAR_PATTERN.sub(_replace, value)


def _resolve_connector_headers(raw: Dict[str, Any], env: Dict[str, str] | None) -> Dict[str, Any]:
    connectors = raw.get("connectors") or []
    resolved = []
    for conn in connectors:
        if not isinstance(conn, dict):
            resolved.append(conn)
            continue
        headers = conn.get("headers") or {}
        new_headers = {}
        for key, value in headers.items():
            try:
                new_headers[key] = resolve_env_vars(str(value), env=env)
            except ConfigError as exc:
                raise ConfigError(
                    f"connector '{conn.get('name')}' header '{key}': {exc}"
                ) from exc
        resolved.append({**conn, "headers": new_headers})
    return {**raw, "connectors": resolved}


def parse_config(raw: Any, *, env: Dict[str, str] | None = None) -> ForwarderConfig:
    if not isinstance(raw, dict):
        raise ConfigError("configuration root must be a mapping")
    data = _resolve_connector_headers(raw, env)
    try:
        return ForwarderConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"invalid configuration: {exc}") from exc


def load_config(path: str | Path | None = None, *, env: Dict[str, str] | None = None) -> ForwarderConfig:
    """
    Charge et valide le fichier YAML.
    Chemin : argument > settings.CONFIG_PATH.
    """
    config_path = Path(path or settings.CONFIG_PATH)
    if not config_path.exists():
        raise ConfigError(
            f"Configuration file not found: {config_path}. "
            "Create a config.yaml (see config.yaml.example) or pass --config."
        )
    try:
        raw = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Failed to read config file '{config_path}': {exc}") from exc

    cfg = parse_config(raw, env=env)
    logger.debug("configuration loaded from %s (%d connector(s))", config_path, len(cfg.connectors))
    return cfg
