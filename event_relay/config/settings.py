"""Application settings with Pydantic Settings validation.

Secrets (Pusher credentials, Redis URL) are loaded from .env file.
Non-sensitive configuration is loaded from config/*.yaml files.
All configs are automatically merged and validated against JSON schemas.
"""

import json
from pathlib import Path
from typing import Any, Final, cast

import yaml
from jsonschema import ValidationError as JSONSchemaValidationError
from jsonschema import validate
from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from event_relay.config.logging_config import get_logger
from event_relay.domain.conflict_constants import (
    DEFAULT_BACK_TO_BACK_THRESHOLD_MINUTES,
    DEFAULT_MIN_OVERLAP_MINUTES,
)

CONFIG_DIR: Final[Path] = Path("config")
MAIN_CONFIG_NAME: Final[str] = "main"

NOTIFICATION_THRESHOLD_MINUTES_DEFAULT: Final[int] = 30
EVENT_STORE_MAX_EVENTS_DEFAULT: Final[int] = 1000
EVENT_STORE_MAX_AGE_HOURS_DEFAULT: Final[int] = 24
PUBLISH_RETRY_DELAY_SECONDS_DEFAULT: Final[float] = 1.0
PUBLISH_TIMEOUT_SECONDS_DEFAULT: Final[int] = 5
ENRICHMENT_MAX_WORKERS_DEFAULT: Final[int] = 4
ENRICHMENT_MAX_PENDING_DEFAULT: Final[int] = 100
REDIS_SOCKET_TIMEOUT_SECONDS_DEFAULT: Final[float] = 2.0
POLLING_INTERVAL_SECONDS_DEFAULT: Final[int] = 60

logger = cast(Any, get_logger(__name__))


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dictionaries.

    Args:
        base: Base dictionary
        override: Dictionary to merge into base (takes precedence)

    Returns:
        Merged dictionary
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_schema(schema_name: str, config_dir: Path = CONFIG_DIR) -> dict[str, Any]:
    """Load JSON Schema from config/schemas/.

    Returns:
        JSON Schema dictionary or empty dict if not found
    """
    schema_path = config_dir / "schemas" / f"{schema_name}.schema.json"
    if not schema_path.exists():
        return {}

    try:
        with open(schema_path, encoding="utf-8") as f:
            return json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        logger.warning(
            "config_schema_load_failed",
            schema=schema_name,
            error=str(e),
        )
        return {}


def validate_config_section(
    config: dict[str, Any],
    schema_name: str,
    file_path: str = "",
    config_dir: Path = CONFIG_DIR,
) -> None:
    """Validate config section against JSON Schema.

    Raises:
        ValueError: If validation fails
    """
    schema = load_schema(schema_name, config_dir)
    if not schema:
        return

    try:
        validate(instance=config, schema=schema)
        logger.debug("config_validation_succeeded", schema=schema_name)
    except JSONSchemaValidationError as e:
        error_msg = f"Config validation failed for {schema_name}"
        if file_path:
            error_msg += f" (file: {file_path})"
        error_msg += f": {e.message}"
        raise ValueError(error_msg) from e


def _load_yaml(path: Path) -> dict[str, Any]:
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def load_all_configs(config_dir: Path = CONFIG_DIR) -> dict[str, Any]:
    """Load and merge all YAML configs from the config directory.

    Loading order (later overrides earlier):
    1. main.yaml
    2. All other *.yaml files (sorted alphabetically)

    Each file is validated against ``schemas/<stem>.schema.json`` if present.

    Returns:
        Merged configuration dictionary
    """
    if not config_dir.is_dir():
        logger.info("config_load_complete", file_count=0)
        return {}

    main_path = config_dir / f"{MAIN_CONFIG_NAME}.yaml"
    yaml_files = sorted(f for f in config_dir.glob("*.yaml") if f != main_path)
    ordered = ([main_path] if main_path.exists() else []) + yaml_files

    merged_config: dict[str, Any] = {}
    for yaml_file in ordered:
        schema_name = yaml_file.stem
        try:
            file_config = _load_yaml(yaml_file)
        except (yaml.YAMLError, OSError) as e:
            logger.warning(
                "config_file_load_failed",
                path=str(yaml_file),
                error=str(e),
            )
            continue

        try:
            validate_config_section(
                file_config, schema_name, str(yaml_file), config_dir
            )
        except ValueError as e:
            logger.error(
                "config_validation_failed",
                path=str(yaml_file),
                schema=schema_name,
                error=str(e),
            )
            raise

        merged_config = deep_merge(merged_config, file_config)
        logger.debug("config_file_loaded", path=str(yaml_file), schema=schema_name)

    logger.info("config_load_complete", file_count=len(ordered))
    return merged_config


class Settings(BaseSettings):
    """Application settings.

    Secrets are loaded from .env file.
    Non-sensitive config is loaded from config/*.yaml with fallback to defaults.
    """

    model_config = SettingsConfigDict(
        env_file=".env" if Path(".env").exists() else None,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # === SECRETS (from .env) ===

    pusher_app_id: str | None = Field(default=None, description="Pusher app id")
    pusher_key: str | None = Field(default=None, description="Pusher public key")
    pusher_secret: SecretStr | None = Field(
        default=None, description="Pusher secret (from .env)"
    )
    redis_url: SecretStr | None = Field(
        default=None,
        description="Redis URL for shared dedup/subscription state (from .env)",
    )

    # === NON-SENSITIVE CONFIG (from config/*.yaml or defaults) ===

    pusher_cluster: str = Field(default="us2", description="Pusher cluster")
    publish_retry_delay_seconds: float = Field(
        default=PUBLISH_RETRY_DELAY_SECONDS_DEFAULT,
        ge=0,
        description="Delay before the single retry of a transient publish failure",
    )
    publish_timeout_seconds: int = Field(
        default=PUBLISH_TIMEOUT_SECONDS_DEFAULT,
        gt=0,
        description="HTTP timeout for a single publish",
    )

    notification_threshold_minutes: int = Field(
        default=NOTIFICATION_THRESHOLD_MINUTES_DEFAULT,
        gt=0,
        description="Window in which the same change is announced only once",
    )

    event_store_max_events: int = Field(
        default=EVENT_STORE_MAX_EVENTS_DEFAULT, gt=0, description="Event store cap"
    )
    event_store_max_age_hours: int = Field(
        default=EVENT_STORE_MAX_AGE_HOURS_DEFAULT,
        gt=0,
        description="Event store retention",
    )

    conflict_back_to_back_threshold_minutes: int = Field(
        default=DEFAULT_BACK_TO_BACK_THRESHOLD_MINUTES,
        description="Max gap reported as back-to-back",
    )
    conflict_enable_back_to_back: bool = Field(
        default=True, description="Report back-to-back items"
    )
    conflict_min_overlap_minutes: int = Field(
        default=DEFAULT_MIN_OVERLAP_MINUTES,
        description="Minimum overlap reported as a conflict",
    )

    enrichment_enabled: bool = Field(
        default=True, description="Convert calendar events into chat messages"
    )
    enrichment_max_workers: int = Field(
        default=ENRICHMENT_MAX_WORKERS_DEFAULT, gt=0, description="Worker threads"
    )
    enrichment_max_pending: int = Field(
        default=ENRICHMENT_MAX_PENDING_DEFAULT,
        gt=0,
        description="Queued plus running enrichment jobs before rejecting",
    )

    redis_socket_timeout_seconds: float = Field(
        default=REDIS_SOCKET_TIMEOUT_SECONDS_DEFAULT,
        gt=0,
        description="Redis socket/connect timeout",
    )

    snapshot_dir: str = Field(
        default="data/snapshots", description="Directory of per-user snapshots"
    )
    polling_interval_seconds: int = Field(
        default=POLLING_INTERVAL_SECONDS_DEFAULT,
        gt=0,
        description="Worker polling interval",
    )

    log_level: str = Field(default="INFO", description="Logging level")
    log_json: bool = Field(default=False, description="Emit JSON logs")

    def __init__(self, **data: Any):
        """Initialize settings with auto-loaded configs from all YAML files."""
        config = load_all_configs()

        super().__init__(**data)
        self._apply_yaml_defaults(config)

    def _apply_yaml_defaults(self, config: dict[str, Any]) -> None:
        """Apply YAML-sourced defaults without overriding env-provided values."""

        fields_from_env = set(self.model_fields_set)

        def _assign(field_name: str, value: Any) -> None:
            if value is None:
                return
            if field_name in fields_from_env:
                return

            object.__setattr__(self, field_name, value)
            self.model_fields_set.add(field_name)

        notifications_config = config.get("notifications") or {}
        _assign(
            "notification_threshold_minutes",
            notifications_config.get("threshold_minutes"),
        )

        publishing_config = config.get("publishing") or {}
        _assign("pusher_cluster", publishing_config.get("cluster"))
        _assign(
            "publish_retry_delay_seconds",
            publishing_config.get("retry_delay_seconds"),
        )
        _assign("publish_timeout_seconds", publishing_config.get("timeout_seconds"))

        event_store_config = config.get("event_store") or {}
        _assign("event_store_max_events", event_store_config.get("max_events"))
        _assign("event_store_max_age_hours", event_store_config.get("max_age_hours"))

        conflicts_config = config.get("conflicts") or {}
        _assign(
            "conflict_back_to_back_threshold_minutes",
            conflicts_config.get("back_to_back_threshold_minutes"),
        )
        _assign(
            "conflict_enable_back_to_back",
            conflicts_config.get("enable_back_to_back_detection"),
        )
        _assign(
            "conflict_min_overlap_minutes",
            conflicts_config.get("min_overlap_minutes"),
        )

        enrichment_config = config.get("enrichment") or {}
        _assign("enrichment_enabled", enrichment_config.get("enabled"))
        _assign("enrichment_max_workers", enrichment_config.get("max_workers"))
        _assign("enrichment_max_pending", enrichment_config.get("max_pending"))

        redis_config = config.get("redis") or {}
        _assign(
            "redis_socket_timeout_seconds",
            redis_config.get("socket_timeout_seconds"),
        )

        worker_config = config.get("worker") or {}
        _assign("snapshot_dir", worker_config.get("snapshot_dir"))
        _assign(
            "polling_interval_seconds",
            worker_config.get("polling_interval_seconds"),
        )

        logging_config = config.get("logging") or {}
        _assign("log_level", logging_config.get("level"))
        _assign("log_json", logging_config.get("json"))


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create global settings instance.

    Returns:
        Settings instance
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Drop the cached instance (used by tests and config reloads)."""
    global _settings
    _settings = None
