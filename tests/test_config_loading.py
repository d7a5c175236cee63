"""Tests for YAML config loading, schema validation and settings precedence."""

from __future__ import annotations

import json
from collections.abc import Iterator
from pathlib import Path

import pytest
import yaml

from event_relay.config.settings import (
    Settings,
    deep_merge,
    get_settings,
    load_all_configs,
    reset_settings,
)

REPO_CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"

_ENV_KEYS = (
    "NOTIFICATION_THRESHOLD_MINUTES",
    "PUSHER_APP_ID",
    "PUSHER_KEY",
    "PUSHER_SECRET",
    "REDIS_URL",
    "LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    reset_settings()
    yield
    reset_settings()


def _write_yaml(path: Path, content: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(content), encoding="utf-8")


def test_shipped_config_passes_schema() -> None:
    config = load_all_configs(REPO_CONFIG_DIR)

    assert config["notifications"]["threshold_minutes"] == 30
    assert config["conflicts"]["back_to_back_threshold_minutes"] == 0
    assert config["publishing"]["cluster"] == "us2"


def test_defaults_without_config_dir(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.chdir(tmp_path)

    settings = Settings()

    assert settings.notification_threshold_minutes == 30
    assert settings.event_store_max_events == 1000
    assert settings.conflict_back_to_back_threshold_minutes == 0
    assert settings.conflict_min_overlap_minutes == 1
    assert settings.pusher_secret is None
    assert settings.redis_url is None


def test_yaml_values_apply_and_env_wins(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.chdir(tmp_path)
    _write_yaml(
        tmp_path / "config" / "main.yaml",
        {
            "notifications": {"threshold_minutes": 10},
            "conflicts": {"back_to_back_threshold_minutes": 5},
            "logging": {"level": "DEBUG", "json": True},
        },
    )
    monkeypatch.setenv("NOTIFICATION_THRESHOLD_MINUTES", "45")

    settings = Settings()

    assert settings.notification_threshold_minutes == 45
    assert settings.conflict_back_to_back_threshold_minutes == 5
    assert settings.log_level == "DEBUG"
    assert settings.log_json is True


def test_later_files_override_main(tmp_path: Path) -> None:
    _write_yaml(tmp_path / "main.yaml", {"publishing": {"cluster": "us2", "timeout_seconds": 5}})
    _write_yaml(tmp_path / "overrides.yaml", {"publishing": {"cluster": "eu"}})

    config = load_all_configs(tmp_path)

    assert config["publishing"] == {"cluster": "eu", "timeout_seconds": 5}


def test_schema_violation_raises(tmp_path: Path) -> None:
    schemas = tmp_path / "schemas"
    schemas.mkdir()
    (schemas / "main.schema.json").write_text(
        json.dumps(
            {
                "type": "object",
                "properties": {
                    "notifications": {
                        "type": "object",
                        "properties": {"threshold_minutes": {"type": "integer"}},
                    }
                },
            }
        ),
        encoding="utf-8",
    )
    _write_yaml(tmp_path / "main.yaml", {"notifications": {"threshold_minutes": "soon"}})

    with pytest.raises(ValueError, match="Config validation failed for main"):
        load_all_configs(tmp_path)


def test_deep_merge_keeps_nested_keys() -> None:
    merged = deep_merge({"a": {"x": 1, "y": 2}, "b": 1}, {"a": {"y": 3}, "c": 4})

    assert merged == {"a": {"x": 1, "y": 3}, "b": 1, "c": 4}


def test_get_settings_is_cached(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)

    first = get_settings()

    assert get_settings() is first
    reset_settings()
    assert get_settings() is not first
