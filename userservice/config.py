"""Configuration management for the user directory service."""
from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Dict, Mapping, Optional

import yaml

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 3000
DEFAULT_DB_WAIT_INTERVAL = 1.0
DEFAULT_DB_WAIT_TIMEOUT = 60.0
DEFAULT_SMTP_PORT = 587

# Environment variable -> settings field. Secrets are only ever read from here.
_ENV_FIELDS: Dict[str, str] = {
    "DATABASE_URL": "database_url",
    "NOTIFICATION_EMAIL": "notification_recipient",
    "NOTIFICATION_SENDER": "notification_sender",
    "SMTP_HOST": "smtp_host",
    "SMTP_PORT": "smtp_port",
    "SMTP_USERNAME": "smtp_username",
    "SMTP_PASSWORD": "smtp_password",
    "USERSERVICE_HOST": "host",
    "USERSERVICE_PORT": "port",
    "USERSERVICE_DB_WAIT_INTERVAL": "db_wait_interval",
    "USERSERVICE_DB_WAIT_TIMEOUT": "db_wait_timeout",
}

_SECRET_FIELDS = frozenset({"smtp_password"})
_UNBOUNDED_VALUES = frozenset({"0", "none", "unbounded", "infinite"})


@dataclass(frozen=True)
class Settings:
    """Process-wide settings, assembled once at start-up and passed around."""

    database_url: Optional[str] = None
    notification_recipient: Optional[str] = None
    notification_sender: Optional[str] = None
    smtp_host: Optional[str] = None
    smtp_port: int = DEFAULT_SMTP_PORT
    smtp_username: Optional[str] = None
    smtp_password: Optional[str] = field(default=None, repr=False)
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    db_wait_interval: float = DEFAULT_DB_WAIT_INTERVAL
    db_wait_timeout: Optional[float] = DEFAULT_DB_WAIT_TIMEOUT

    @staticmethod
    def from_dict(data: Mapping[str, object]) -> "Settings":
        """Create :class:`Settings` from raw key/value data, coercing types."""

        known = {item.name for item in fields(Settings)}
        unknown = set(data.keys()) - known
        if unknown:
            raise ValueError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")

        values: Dict[str, object] = {}
        for key, raw in data.items():
            if raw is None:
                continue
            if key in ("port", "smtp_port"):
                values[key] = _parse_port(key, raw)
            elif key == "db_wait_interval":
                interval = _parse_seconds(key, raw)
                if interval is None or interval <= 0:
                    raise ValueError(f"{key} must be a positive number of seconds")
                values[key] = interval
            elif key == "db_wait_timeout":
                values[key] = _parse_seconds(key, raw)
            else:
                text = str(raw).strip()
                if text:
                    values[key] = text
        if "db_wait_timeout" in data and data["db_wait_timeout"] is None:
            values["db_wait_timeout"] = None
        return Settings(**values)  # type: ignore[arg-type]

    def with_overrides(self, **overrides: object) -> "Settings":
        """Return a copy with the non-``None`` overrides applied."""

        current = {item.name: getattr(self, item.name) for item in fields(self)}
        for key, value in overrides.items():
            if value is None:
                continue
            if key in ("port", "smtp_port"):
                value = _parse_port(key, value)
            current[key] = value
        return Settings(**current)  # type: ignore[arg-type]


def _parse_port(name: str, raw: object) -> int:
    try:
        port = int(str(raw).strip())
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc
    if not 0 < port < 65536:
        raise ValueError(f"{name} must be between 1 and 65535, got {port}")
    return port


def _parse_seconds(name: str, raw: object) -> Optional[float]:
    text = str(raw).strip().lower()
    if text in _UNBOUNDED_VALUES:
        return None
    try:
        value = float(text)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number of seconds, got {raw!r}") from exc
    if value < 0:
        raise ValueError(f"{name} must not be negative")
    return value


def resolve_config_path(env_value: Optional[str]) -> Path:
    """Resolve the path to the optional YAML settings file."""
    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    return (Path(__file__).resolve().parent.parent / "config" / "settings.yaml").resolve(strict=False)


def _load_yaml_defaults(config_path: Path) -> Dict[str, object]:
    if not config_path.exists():
        return {}
    with config_path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"Configuration file {config_path} must contain a mapping")

    leaked = _SECRET_FIELDS & raw.keys()
    if leaked:
        raise ValueError(
            f"Secrets must be provided through the environment, not {config_path}: "
            f"{', '.join(sorted(leaked))}"
        )
    return dict(raw)


def load_settings(
    environ: Optional[Mapping[str, str]] = None,
    *,
    config_path: Optional[Path] = None,
) -> Settings:
    """Assemble settings from the YAML file (if any) overlaid with the environment."""

    env = os.environ if environ is None else environ
    path = config_path or resolve_config_path(env.get("USERSERVICE_CONFIG"))

    data = _load_yaml_defaults(path)
    for variable, key in _ENV_FIELDS.items():
        # An empty variable (e.g. an unset compose interpolation) counts as unset.
        if env.get(variable, "").strip():
            data[key] = env[variable]

    return Settings.from_dict(data)


__all__ = ["Settings", "load_settings", "resolve_config_path"]
