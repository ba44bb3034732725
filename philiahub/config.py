"""Global configuration for Philia Hub."""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any, Callable

DEFAULTS: dict[str, Any] = {
    "database_url": "",
    "auth_rate_limit": 5,
    "auth_rate_window_seconds": 15 * 60,
    "create_event_rate_limit": 10,
    "create_event_rate_window_seconds": 60 * 60,
    "comment_rate_limit": 20,
    "comment_rate_window_seconds": 60,
    "report_rate_limit": 5,
    "report_rate_window_seconds": 60 * 60,
    "contact_rate_limit": 3,
    "contact_rate_window_seconds": 60 * 60,
    "rate_limit_purge_minutes": 5,
    "banned_terms": ["spam", "scam", "phishing"],
    "comment_edit_window_minutes": 15,
    "email_token_hours": 24,
    "password_token_hours": 1,
    "token_purge_hours": 1,
    "events_per_page": 20,
    "default_timezone": "America/Detroit",
    "base_url": "http://localhost:8000",
    "support_inbox": "support@philiahub.local",
    "smtp_host": "",
    "smtp_port": 587,
    "smtp_username": "",
    "smtp_password": "",
    "smtp_sender": "no-reply@philiahub.local",
    "smtp_use_tls": True,
    "turnstile_secret_key": "",
    "google_maps_api_key": "",
    "http_timeout_seconds": 10.0,
    "enable_scheduler": True,
    "app_host": "0.0.0.0",
    "app_port": 8000,
}


def _listify(value: Any) -> list[str]:
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    return [str(item).strip() for item in value if str(item).strip()]


TYPE_CASTERS: dict[str, Callable[[Any], Any]] = {
    "database_url": str,
    "auth_rate_limit": int,
    "auth_rate_window_seconds": int,
    "create_event_rate_limit": int,
    "create_event_rate_window_seconds": int,
    "comment_rate_limit": int,
    "comment_rate_window_seconds": int,
    "report_rate_limit": int,
    "report_rate_window_seconds": int,
    "contact_rate_limit": int,
    "contact_rate_window_seconds": int,
    "rate_limit_purge_minutes": int,
    "banned_terms": _listify,
    "comment_edit_window_minutes": int,
    "email_token_hours": int,
    "password_token_hours": int,
    "token_purge_hours": int,
    "events_per_page": int,
    "default_timezone": str,
    "base_url": str,
    "support_inbox": str,
    "smtp_host": str,
    "smtp_port": int,
    "smtp_username": str,
    "smtp_password": str,
    "smtp_sender": str,
    "smtp_use_tls": bool,
    "turnstile_secret_key": str,
    "google_maps_api_key": str,
    "http_timeout_seconds": float,
    "enable_scheduler": bool,
    "app_host": str,
    "app_port": int,
}

RATE_LIMIT_PRESETS = ("auth", "create_event", "comment", "report", "contact")


@dataclass(frozen=True)
class Settings:
    base_dir: Path
    data_dir: Path
    database_path: Path
    database_url: str
    auth_rate_limit: int
    auth_rate_window_seconds: int
    create_event_rate_limit: int
    create_event_rate_window_seconds: int
    comment_rate_limit: int
    comment_rate_window_seconds: int
    report_rate_limit: int
    report_rate_window_seconds: int
    contact_rate_limit: int
    contact_rate_window_seconds: int
    rate_limit_purge_minutes: int
    banned_terms: tuple[str, ...]
    comment_edit_window_minutes: int
    email_token_hours: int
    password_token_hours: int
    token_purge_hours: int
    events_per_page: int
    default_timezone: str
    base_url: str
    support_inbox: str
    smtp_host: str
    smtp_port: int
    smtp_username: str
    smtp_password: str
    smtp_sender: str
    smtp_use_tls: bool
    turnstile_secret_key: str
    google_maps_api_key: str
    http_timeout_seconds: float
    enable_scheduler: bool
    app_host: str
    app_port: int
    config_path: Path

    @property
    def comment_edit_window(self) -> timedelta:
        return timedelta(minutes=self.comment_edit_window_minutes)

    @property
    def email_token_ttl(self) -> timedelta:
        return timedelta(hours=self.email_token_hours)

    @property
    def password_token_ttl(self) -> timedelta:
        return timedelta(hours=self.password_token_hours)

    @property
    def rate_limit_presets(self) -> dict[str, tuple[timedelta, int]]:
        """Map preset names to ``(window, max_count)`` pairs."""
        return {
            name: (
                timedelta(seconds=getattr(self, f"{name}_rate_window_seconds")),
                getattr(self, f"{name}_rate_limit"),
            )
            for name in RATE_LIMIT_PRESETS
        }

    @property
    def sqlalchemy_url(self) -> str:
        return self.database_url or f"sqlite:///{self.database_path}"


def _boolify(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    raise ValueError(f"Cannot parse boolean value from {value!r}")


def _cast_value(key: str, value: Any) -> Any:
    if key not in TYPE_CASTERS:
        return value
    caster = TYPE_CASTERS[key]
    if caster is bool:
        return _boolify(value)
    return caster(value)


def _load_toml_config(config_path: Path) -> dict[str, Any]:
    if not config_path.exists():
        return {}
    with config_path.open("rb") as handle:
        return tomllib.load(handle)


def _config_layered_value(key: str, *, toml_config: dict[str, Any]) -> Any:
    env_key = f"PHILIAHUB_{key.upper()}"
    if env_key in os.environ:
        return _cast_value(key, os.environ[env_key])
    if key in toml_config:
        return _cast_value(key, toml_config[key])
    return DEFAULTS[key]


def _resolve_paths(
    *,
    base_dir: Path,
    data_dir: str | Path | None,
    database_path: str | Path | None,
):
    resolved_base = Path(base_dir)
    resolved_data = Path(data_dir) if data_dir else resolved_base / "data"
    if not resolved_data.is_absolute():
        resolved_data = resolved_base / resolved_data
    resolved_db = Path(database_path) if database_path else resolved_data / "philiahub.db"
    if not resolved_db.is_absolute():
        resolved_db = resolved_base / resolved_db
    return resolved_base, resolved_data, resolved_db


def load_settings(config_override: Path | None = None) -> Settings:
    base_dir = Path(os.getenv("PHILIAHUB_BASE_DIR", Path.cwd()))
    env_config = os.getenv("PHILIAHUB_CONFIG")
    config_path = Path(config_override or env_config or base_dir / "philiahub.toml")
    toml_config = _load_toml_config(config_path)

    base_dir_value, data_dir_value, database_path_value = _resolve_paths(
        base_dir=base_dir,
        data_dir=os.getenv("PHILIAHUB_DATA_DIR", toml_config.get("data_dir")),
        database_path=os.getenv("PHILIAHUB_DB", toml_config.get("database_path")),
    )

    values = {
        key: _config_layered_value(key, toml_config=toml_config) for key in DEFAULTS
    }
    values["banned_terms"] = tuple(_listify(values["banned_terms"]))

    settings = Settings(
        base_dir=base_dir_value,
        data_dir=data_dir_value,
        database_path=database_path_value,
        config_path=config_path,
        **values,
    )
    if not settings.database_url:
        settings.data_dir.mkdir(parents=True, exist_ok=True)
    return settings


settings = load_settings()
