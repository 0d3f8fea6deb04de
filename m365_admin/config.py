"""Configuration utilities for the M365 admin tools."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from m365_admin.utils.path_validation import normalize_sqlite_path, resolve_path_safely

PROJECT_ROOT = Path(__file__).resolve().parent.parent
DEFAULT_DB_PATH = PROJECT_ROOT / "data" / "m365_admin.db"
DEFAULT_OUTPUT_DIR = PROJECT_ROOT / "data" / "output"
DEFAULT_LOG_DIR = PROJECT_ROOT / "data" / "logs"
ENV_PREFIX = "M365_ADMIN_"


@dataclass(slots=True)
class AdminConfig:
    database_url: str = f"sqlite:///{DEFAULT_DB_PATH}"
    output_dir: Path = DEFAULT_OUTPUT_DIR
    log_dir: Path = DEFAULT_LOG_DIR
    tenant_id: str | None = None
    client_id: str | None = None
    client_secret: str | None = None
    graph_token: str | None = None
    organization: str | None = None
    certificate_thumbprint: str | None = None
    user_principal_name: str | None = None
    powershell_path: str | None = None
    poll_interval_seconds: float = 10.0
    poll_max_failures: int = 5
    log_level: str = "INFO"
    env_name: str = "local"

    @property
    def has_app_credentials(self) -> bool:
        return bool(self.tenant_id and self.client_id and self.client_secret)


def _env(name: str) -> Optional[str]:
    value = os.getenv(f"{ENV_PREFIX}{name}")
    if value is None:
        return None
    value = value.strip()
    return value or None


def _resolve_path_from_env(env_value: Optional[str], default: Path) -> Path:
    """Resolve a path from an environment value, relative paths anchored at PROJECT_ROOT."""
    if env_value:
        return resolve_path_safely(env_value, PROJECT_ROOT)
    return default.resolve()


def _float_from_env(name: str, default: float) -> float:
    raw = _env(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{ENV_PREFIX}{name} must be a number, got {raw!r}") from exc


def _int_from_env(name: str, default: int) -> int:
    raw = _env(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{ENV_PREFIX}{name} must be an integer, got {raw!r}") from exc


def load_config(env_file: Optional[Path] = None) -> AdminConfig:
    if env_file is None:
        env_file = PROJECT_ROOT / ".env"

    load_dotenv(dotenv_path=env_file, override=False)

    database_url = _env("DATABASE_URL")
    if not database_url:
        database_url = f"sqlite:///{DEFAULT_DB_PATH}"
    else:
        database_url = normalize_sqlite_path(database_url)

    return AdminConfig(
        database_url=database_url,
        output_dir=_resolve_path_from_env(_env("OUTPUT_DIR"), DEFAULT_OUTPUT_DIR),
        log_dir=_resolve_path_from_env(_env("LOG_DIR"), DEFAULT_LOG_DIR),
        tenant_id=_env("TENANT_ID"),
        client_id=_env("CLIENT_ID"),
        client_secret=_env("CLIENT_SECRET"),
        graph_token=_env("GRAPH_TOKEN"),
        organization=_env("ORGANIZATION"),
        certificate_thumbprint=_env("CERT_THUMBPRINT"),
        user_principal_name=_env("UPN"),
        powershell_path=_env("POWERSHELL_PATH"),
        poll_interval_seconds=_float_from_env("POLL_INTERVAL", 10.0),
        poll_max_failures=_int_from_env("POLL_MAX_FAILURES", 5),
        log_level=(_env("LOG_LEVEL") or "INFO").upper(),
        env_name=_env("ENV") or "local",
    )
