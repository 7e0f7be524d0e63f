from __future__ import annotations

import pytest

from journal_controller.src.config import ConfigError, ControllerConfig, env_int, parse_bool


def test_defaults_match_controller_contract() -> None:
    config = ControllerConfig.from_env({})

    assert config.watch_namespace is None
    assert config.resync_seconds == 1800
    assert config.error_backoff_seconds == 360
    assert config.workers == 4
    assert config.field_manager == "cntrlr"
    assert config.reporter == "engula-operator"
    assert config.publish_events is True
    assert config.health_port == 8080


def test_from_env_reads_overrides() -> None:
    config = ControllerConfig.from_env(
        {
            "WATCH_NAMESPACE": " engula ",
            "RESYNC_SECONDS": "600",
            "ERROR_BACKOFF_SECONDS": "30",
            "RECONCILE_WORKERS": "8",
            "FIELD_MANAGER": "journal-ctl",
            "EVENT_REPORTER": "journal-ctl",
            "PUBLISH_EVENTS": "false",
            "HEALTH_PORT": "9090",
        }
    )

    assert config.watch_namespace == "engula"
    assert config.resync_seconds == 600
    assert config.error_backoff_seconds == 30
    assert config.workers == 8
    assert config.field_manager == "journal-ctl"
    assert config.publish_events is False
    assert config.health_port == 9090


def test_blank_namespace_means_all_namespaces() -> None:
    assert ControllerConfig.from_env({"WATCH_NAMESPACE": "  "}).watch_namespace is None


@pytest.mark.parametrize(
    "env",
    [
        {"RESYNC_SECONDS": "0"},
        {"ERROR_BACKOFF_SECONDS": "-5"},
        {"RECONCILE_WORKERS": "0"},
        {"HEALTH_PORT": "70000"},
        {"FIELD_MANAGER": " "},
        {"EVENT_REPORTER": ""},
        {"RESYNC_SECONDS": "soon"},
    ],
)
def test_invalid_values_raise_config_error(env: dict[str, str]) -> None:
    with pytest.raises(ConfigError):
        ControllerConfig.from_env(env)


def test_env_int_bounds() -> None:
    assert env_int("X", 5, env={}) == 5
    assert env_int("X", 5, minimum=1, env={"X": "3"}) == 3
    with pytest.raises(ConfigError, match="X must be >= 4"):
        env_int("X", 5, minimum=4, env={"X": "3"})


@pytest.mark.parametrize("raw,expected", [("1", True), ("Yes", True), ("on", True), ("no", False), ("", False)])
def test_parse_bool(raw: str, expected: bool) -> None:
    assert parse_bool(raw) is expected


def test_parse_bool_default_when_unset() -> None:
    assert parse_bool(None, default=True) is True
