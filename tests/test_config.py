from __future__ import annotations

from pathlib import Path

import pytest

from userservice.config import (
    DEFAULT_DB_WAIT_INTERVAL,
    DEFAULT_DB_WAIT_TIMEOUT,
    DEFAULT_PORT,
    Settings,
    load_settings,
    resolve_config_path,
)


def _missing(tmp_path: Path) -> Path:
    return tmp_path / "absent.yaml"


def test_defaults_without_environment(tmp_path: Path) -> None:
    settings = load_settings({}, config_path=_missing(tmp_path))

    assert settings.database_url is None
    assert settings.port == DEFAULT_PORT
    assert settings.db_wait_interval == DEFAULT_DB_WAIT_INTERVAL
    assert settings.db_wait_timeout == DEFAULT_DB_WAIT_TIMEOUT


def test_environment_values_are_parsed(tmp_path: Path) -> None:
    env = {
        "DATABASE_URL": "postgresql+psycopg://prisma:prisma@db:5432/app",
        "NOTIFICATION_EMAIL": "team@example.com",
        "SMTP_PASSWORD": "app-password",
        "SMTP_PORT": "2525",
        "USERSERVICE_PORT": "8080",
        "USERSERVICE_DB_WAIT_INTERVAL": "0.5",
        "USERSERVICE_DB_WAIT_TIMEOUT": "120",
    }

    settings = load_settings(env, config_path=_missing(tmp_path))

    assert settings.database_url == env["DATABASE_URL"]
    assert settings.notification_recipient == "team@example.com"
    assert settings.smtp_password == "app-password"
    assert settings.smtp_port == 2525
    assert settings.port == 8080
    assert settings.db_wait_interval == 0.5
    assert settings.db_wait_timeout == 120.0


def test_secret_is_not_in_repr(tmp_path: Path) -> None:
    settings = load_settings({"SMTP_PASSWORD": "hunter2-secret"}, config_path=_missing(tmp_path))

    assert "hunter2-secret" not in repr(settings)


@pytest.mark.parametrize("raw", ["0", "none"])
def test_zero_or_none_timeout_means_unbounded(tmp_path: Path, raw: str) -> None:
    settings = load_settings({"USERSERVICE_DB_WAIT_TIMEOUT": raw}, config_path=_missing(tmp_path))

    assert settings.db_wait_timeout is None


def test_yaml_defaults_are_overridden_by_environment(tmp_path: Path) -> None:
    config = tmp_path / "settings.yaml"
    config.write_text(
        "database_url: sqlite:///from-file.sqlite3\n"
        "notification_recipient: file@example.com\n"
        "port: 9000\n",
        encoding="utf-8",
    )

    settings = load_settings({"NOTIFICATION_EMAIL": "env@example.com"}, config_path=config)

    assert settings.database_url == "sqlite:///from-file.sqlite3"
    assert settings.notification_recipient == "env@example.com"
    assert settings.port == 9000


def test_config_path_comes_from_environment(tmp_path: Path) -> None:
    config = tmp_path / "custom.yaml"
    config.write_text("port: 4000\n", encoding="utf-8")

    settings = load_settings({"USERSERVICE_CONFIG": str(config)})

    assert settings.port == 4000
    assert resolve_config_path(str(config)) == config.resolve()


def test_secrets_are_refused_in_yaml(tmp_path: Path) -> None:
    config = tmp_path / "settings.yaml"
    config.write_text("smtp_password: committed-by-mistake\n", encoding="utf-8")

    with pytest.raises(ValueError, match="environment"):
        load_settings({}, config_path=config)


def test_unknown_yaml_keys_are_rejected(tmp_path: Path) -> None:
    config = tmp_path / "settings.yaml"
    config.write_text("hosts: []\n", encoding="utf-8")

    with pytest.raises(ValueError, match="hosts"):
        load_settings({}, config_path=config)


@pytest.mark.parametrize(
    "variable,value",
    [
        ("USERSERVICE_PORT", "not-a-port"),
        ("USERSERVICE_PORT", "70000"),
        ("USERSERVICE_DB_WAIT_INTERVAL", "0"),
        ("USERSERVICE_DB_WAIT_TIMEOUT", "-5"),
    ],
)
def test_invalid_values_are_rejected(tmp_path: Path, variable: str, value: str) -> None:
    with pytest.raises(ValueError):
        load_settings({variable: value}, config_path=_missing(tmp_path))


def test_with_overrides_ignores_missing_values() -> None:
    settings = Settings(host="0.0.0.0", port=3000)

    updated = settings.with_overrides(host="127.0.0.1", port=None)

    assert updated.host == "127.0.0.1"
    assert updated.port == 3000


@pytest.mark.parametrize("raw", ["", "   "])
def test_empty_timeout_variable_keeps_the_default_deadline(tmp_path: Path, raw: str) -> None:
    settings = load_settings({"USERSERVICE_DB_WAIT_TIMEOUT": raw}, config_path=_missing(tmp_path))

    assert settings.db_wait_timeout == DEFAULT_DB_WAIT_TIMEOUT


def test_empty_variable_does_not_mask_yaml_value(tmp_path: Path) -> None:
    config = tmp_path / "settings.yaml"
    config.write_text("db_wait_timeout: 15\n", encoding="utf-8")

    settings = load_settings({"USERSERVICE_DB_WAIT_TIMEOUT": ""}, config_path=config)

    assert settings.db_wait_timeout == 15.0


@pytest.mark.parametrize("port", [0, 70000, -1])
def test_port_override_is_range_checked(port: int) -> None:
    with pytest.raises(ValueError, match="port must be between 1 and 65535"):
        Settings().with_overrides(port=port)


def test_port_override_is_applied() -> None:
    assert Settings().with_overrides(port=8081, host="127.0.0.1").port == 8081
