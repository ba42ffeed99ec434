"""Application settings with Pydantic Settings validation.

Secrets (tokens, database URL) are loaded from the environment or a .env file.
Non-sensitive configuration may also be loaded from config/main.yaml and other
config/*.yaml files. All configs are merged and validated against JSON schemas.
"""

import json
from pathlib import Path
from typing import Any, Final, Literal, cast

import yaml
from jsonschema import ValidationError as JSONSchemaValidationError
from jsonschema import validate
from pydantic import AliasChoices, Field, SecretStr, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from plusplus_bot.config.logging_config import get_logger

POSTGRES_MIN_CONNECTIONS_DEFAULT: Final[int] = 1
POSTGRES_MAX_CONNECTIONS_DEFAULT: Final[int] = 10
POSTGRES_STATEMENT_TIMEOUT_MS_DEFAULT: Final[int] = 10_000
POSTGRES_CONNECT_TIMEOUT_SECONDS_DEFAULT: Final[int] = 10
POSTGRES_APPLICATION_NAME_DEFAULT: Final[str] = "plusplus_bot"

MAX_OPS_DEFAULT: Final[int] = 10
RATE_LIMIT_WINDOW_SECONDS_DEFAULT: Final[int] = 3600
LEADERBOARD_LIMIT_DEFAULT: Final[int] = 10

CONFIG_DIR: Final[str] = "config"
SCHEMA_DIR: Final[str] = "config/schemas"

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


def load_schema(schema_name: str) -> dict[str, Any]:
    """Load JSON Schema from config/schemas/.

    Args:
        schema_name: Schema name without extension (e.g., "main")

    Returns:
        JSON Schema dictionary or empty dict if not found
    """
    schema_path = Path(SCHEMA_DIR) / f"{schema_name}.schema.json"
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
    config: dict[str, Any], schema_name: str, file_path: str = ""
) -> None:
    """Validate config section against JSON Schema.

    Args:
        config: Configuration dictionary to validate
        schema_name: Name of schema to validate against
        file_path: Optional file path for error messages

    Raises:
        ValueError: If validation fails
    """
    schema = load_schema(schema_name)
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


def load_all_configs() -> dict[str, Any]:
    """Load and merge all YAML configs from the config/ directory.

    Loading order (later overrides earlier):
    1. config/main.yaml
    2. All other config/*.yaml files (sorted alphabetically)

    Each file is validated against config/schemas/<stem>.schema.json if present.

    Returns:
        Merged configuration dictionary

    Raises:
        ValueError: If a config file fails schema validation
    """
    merged_config: dict[str, Any] = {}
    config_dir = Path(CONFIG_DIR)
    if not config_dir.is_dir():
        return merged_config

    main_path = config_dir / "main.yaml"
    yaml_files = sorted(f for f in config_dir.glob("*.yaml") if f.name != "main.yaml")
    if main_path.exists():
        yaml_files.insert(0, main_path)

    for yaml_file in yaml_files:
        schema_name = yaml_file.stem
        try:
            with open(yaml_file, encoding="utf-8") as f:
                file_config = yaml.safe_load(f) or {}
        except (yaml.YAMLError, OSError) as e:
            logger.warning(
                "config_file_load_failed",
                path=str(yaml_file),
                error=str(e),
            )
            continue

        try:
            validate_config_section(file_config, schema_name, str(yaml_file))
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

    logger.info("config_load_complete", file_count=len(yaml_files))
    return merged_config


class Settings(BaseSettings):
    """Application settings.

    Secrets are loaded from the environment (or .env).
    Non-sensitive config is loaded from config/*.yaml with fallback to defaults.
    """

    model_config = SettingsConfigDict(
        env_file=".env" if Path(".env").exists() else None,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # === SECRETS (from environment) ===

    slack_bot_token: SecretStr = Field(
        ...,
        validation_alias=AliasChoices(
            "slack_bot_token", "slack_bot_user_oauth_access_token"
        ),
        description="Slack Bot User OAuth Token",
    )
    slack_app_token: SecretStr | None = Field(
        default=None, description="Slack app-level token for Socket Mode"
    )
    database_url: SecretStr | None = Field(
        default=None, description="PostgreSQL connection string"
    )

    @field_validator("slack_bot_token", mode="before")
    @classmethod
    def _ensure_secret(
        cls, value: SecretStr | str | None, info: ValidationInfo
    ) -> SecretStr:
        if value is None:
            raise ValueError(f"{info.field_name} must be provided")

        if isinstance(value, SecretStr):
            secret_value = value.get_secret_value()
        else:
            secret_value = str(value)

        if not secret_value.strip():
            raise ValueError(f"{info.field_name} must not be empty")

        return value if isinstance(value, SecretStr) else SecretStr(secret_value)

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

        server_config = config.get("server") or {}
        _assign("port", server_config.get("port"))

        scoring_config = config.get("scoring") or {}
        _assign("max_ops", scoring_config.get("max_ops"))
        _assign(
            "rate_limit_window_seconds",
            scoring_config.get("rate_limit_window_seconds"),
        )
        _assign("reward_token", scoring_config.get("reward_token"))
        _assign("penalty_token", scoring_config.get("penalty_token"))
        _assign("score_unit", scoring_config.get("score_unit"))
        _assign("leaderboard_limit", scoring_config.get("leaderboard_limit"))

        policy_config = config.get("policy") or {}
        _assign("privileged_actor_id", policy_config.get("privileged_actor_id"))
        _assign(
            "privileged_penalty_enabled",
            policy_config.get("privileged_penalty_enabled"),
        )
        _assign("era_reset_actor_ids", policy_config.get("era_reset_actor_ids"))

        database_config = config.get("database") or {}
        _assign("database_type", database_config.get("type"))
        _assign("db_path", database_config.get("path"))
        _assign("database_use_ssl", database_config.get("use_ssl"))

        postgres_config = database_config.get("postgres") or {}
        _assign("postgres_min_connections", postgres_config.get("min_connections"))
        _assign("postgres_max_connections", postgres_config.get("max_connections"))
        _assign(
            "postgres_statement_timeout_ms",
            postgres_config.get("statement_timeout_ms"),
        )
        _assign(
            "postgres_connect_timeout_seconds",
            postgres_config.get("connect_timeout_seconds"),
        )

        logging_config = config.get("logging") or {}
        _assign("log_level", logging_config.get("level"))
        _assign("json_logs", logging_config.get("json"))

        metrics_config = config.get("metrics") or {}
        _assign("metrics_port", metrics_config.get("port"))

    # Server
    port: int = Field(default=80, description="Listening port for the HTTP host")

    # Scoring policy
    max_ops: int = Field(
        default=MAX_OPS_DEFAULT,
        ge=0,
        description="Operations allowed per actor per rate-limit window",
    )
    rate_limit_window_seconds: int = Field(
        default=RATE_LIMIT_WINDOW_SECONDS_DEFAULT,
        ge=1,
        description="Length of the rate-limit window in seconds",
    )
    reward_token: str = Field(
        default=":taco:", description="Token that awards one point per occurrence"
    )
    penalty_token: str = Field(
        default=":poop:",
        description="Token counted for the privileged compensating decrement",
    )
    score_unit: str = Field(
        default=":taco:", description="Emoji printed next to scores in replies"
    )
    leaderboard_limit: int = Field(
        default=LEADERBOARD_LIMIT_DEFAULT,
        ge=1,
        description="Entries per section in leaderboard replies",
    )

    # Privileged compensating decrement (off unless explicitly enabled)
    privileged_actor_id: str | None = Field(
        default=None,
        description="Slack user ID whose crediting messages may also debit targets",
    )
    privileged_penalty_enabled: bool = Field(
        default=False,
        description="Enable compensating decrements for the privileged actor",
    )
    era_reset_actor_ids: list[str] = Field(
        default_factory=list,
        description="Slack user IDs allowed to reset era scores with `reincarnate`",
    )

    # Database configuration
    database_type: Literal["sqlite", "postgres"] = Field(
        default="sqlite", description="Database type: sqlite or postgres"
    )
    db_path: str = Field(default="data/plusplus.db", description="SQLite database path")
    database_use_ssl: bool = Field(
        default=True, description="Require TLS for PostgreSQL connections"
    )
    postgres_min_connections: int = Field(
        default=POSTGRES_MIN_CONNECTIONS_DEFAULT,
        description="Minimum number of connections in PostgreSQL pool",
    )
    postgres_max_connections: int = Field(
        default=POSTGRES_MAX_CONNECTIONS_DEFAULT,
        description="Maximum number of connections in PostgreSQL pool",
    )
    postgres_statement_timeout_ms: int = Field(
        default=POSTGRES_STATEMENT_TIMEOUT_MS_DEFAULT,
        description="PostgreSQL statement timeout in milliseconds",
    )
    postgres_connect_timeout_seconds: int = Field(
        default=POSTGRES_CONNECT_TIMEOUT_SECONDS_DEFAULT,
        description="PostgreSQL connection timeout in seconds",
    )
    postgres_application_name: str = Field(
        default=POSTGRES_APPLICATION_NAME_DEFAULT,
        description="Application name for PostgreSQL connections",
    )

    # Observability
    log_level: str = Field(default="INFO", description="Logging level")
    json_logs: bool = Field(default=False, description="Emit JSON log lines")
    metrics_port: int | None = Field(
        default=None, description="Prometheus exporter port (disabled when unset)"
    )


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create global settings instance.

    Only entrypoints use this; library code receives settings explicitly.

    Returns:
        Settings instance
    """
    global _settings
    if _settings is None:
        _settings = Settings()  # type: ignore[call-arg]
    return _settings
