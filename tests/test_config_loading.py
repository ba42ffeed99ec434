"""Tests for configuration loading system."""

import json
import os
from collections.abc import Iterator
from pathlib import Path

import pytest
import yaml
from jsonschema import validate
from pydantic import ValidationError

from plusplus_bot.config.settings import (
    Settings,
    deep_merge,
    load_all_configs,
    load_schema,
    validate_config_section,
)

REPO_ROOT = Path(__file__).resolve().parent.parent


@pytest.fixture
def in_tmp_dir(tmp_path: Path) -> Iterator[Path]:
    """Run the test with ``tmp_path`` as the working directory."""
    original_cwd = os.getcwd()
    os.chdir(tmp_path)
    try:
        yield tmp_path
    finally:
        os.chdir(original_cwd)


def write_yaml(path: Path, content: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(content, f)


def test_deep_merge_nested() -> None:
    """Nested dictionaries merge; scalars and lists are replaced."""
    base = {"scoring": {"max_ops": 10, "reward_token": ":taco:"}, "items": [1, 2]}
    override = {"scoring": {"max_ops": 5}, "items": [3]}

    assert deep_merge(base, override) == {
        "scoring": {"max_ops": 5, "reward_token": ":taco:"},
        "items": [3],
    }


def test_load_schema_missing(in_tmp_dir: Path) -> None:
    assert load_schema("nonexistent_schema_xyz") == {}


def test_validate_config_section_invalid(in_tmp_dir: Path) -> None:
    schema_dir = in_tmp_dir / "config" / "schemas"
    schema_dir.mkdir(parents=True)
    schema = {
        "$schema": "http://json-schema.org/draft-07/schema#",
        "type": "object",
        "properties": {"name": {"type": "string"}},
        "required": ["name"],
    }
    with open(schema_dir / "test.schema.json", "w", encoding="utf-8") as f:
        json.dump(schema, f)

    validate_config_section({"name": "ok"}, "test")
    with pytest.raises(ValueError, match="Config validation failed"):
        validate_config_section({"wrong_field": "x"}, "test")


def test_load_all_configs_empty_directory(in_tmp_dir: Path) -> None:
    assert load_all_configs() == {}


def test_load_all_configs_main_first_then_overrides(in_tmp_dir: Path) -> None:
    write_yaml(in_tmp_dir / "config" / "main.yaml", {"scoring": {"max_ops": 10}})
    write_yaml(in_tmp_dir / "config" / "zz_local.yaml", {"scoring": {"max_ops": 2}})

    assert load_all_configs() == {"scoring": {"max_ops": 2}}


def test_shipped_main_config_matches_schema() -> None:
    with open(REPO_ROOT / "config" / "main.yaml", encoding="utf-8") as f:
        config = yaml.safe_load(f)
    with open(REPO_ROOT / "config" / "schemas" / "main.schema.json", encoding="utf-8") as f:
        schema = json.load(f)

    validate(instance=config, schema=schema)


def test_invalid_yaml_value_is_rejected(in_tmp_dir: Path) -> None:
    schema_dir = in_tmp_dir / "config" / "schemas"
    schema_dir.mkdir(parents=True)
    (schema_dir / "main.schema.json").write_text(
        (REPO_ROOT / "config" / "schemas" / "main.schema.json").read_text(
            encoding="utf-8"
        ),
        encoding="utf-8",
    )
    write_yaml(in_tmp_dir / "config" / "main.yaml", {"scoring": {"max_ops": -1}})

    with pytest.raises(ValueError, match="Config validation failed"):
        load_all_configs()


def test_settings_defaults(in_tmp_dir: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("MAX_OPS", "PRIVILEGED_PENALTY_ENABLED", "DATABASE_TYPE", "PORT"):
        monkeypatch.delenv(name, raising=False)

    settings = Settings(slack_bot_token="xoxb-test")

    assert settings.port == 80
    assert settings.max_ops == 10
    assert settings.rate_limit_window_seconds == 3600
    assert settings.reward_token == ":taco:"
    assert settings.privileged_penalty_enabled is False
    assert settings.database_type == "sqlite"
    assert settings.database_use_ssl is True


def test_settings_yaml_overrides_defaults(
    in_tmp_dir: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.delenv("MAX_OPS", raising=False)
    write_yaml(
        in_tmp_dir / "config" / "main.yaml",
        {
            "scoring": {"max_ops": 4, "reward_token": ":star:"},
            "policy": {
                "privileged_actor_id": "U0BOSS001",
                "privileged_penalty_enabled": True,
            },
            "database": {"type": "sqlite", "path": "var/scores.db"},
        },
    )

    settings = Settings(slack_bot_token="xoxb-test")

    assert settings.max_ops == 4
    assert settings.reward_token == ":star:"
    assert settings.privileged_actor_id == "U0BOSS001"
    assert settings.privileged_penalty_enabled is True
    assert settings.db_path == "var/scores.db"


def test_environment_wins_over_yaml(
    in_tmp_dir: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    write_yaml(in_tmp_dir / "config" / "main.yaml", {"scoring": {"max_ops": 4}})
    monkeypatch.setenv("MAX_OPS", "7")

    settings = Settings(slack_bot_token="xoxb-test")

    assert settings.max_ops == 7


def test_legacy_token_variable_is_accepted(
    in_tmp_dir: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.delenv("SLACK_BOT_TOKEN", raising=False)
    monkeypatch.setenv("SLACK_BOT_USER_OAUTH_ACCESS_TOKEN", "xoxb-legacy")

    settings = Settings()  # type: ignore[call-arg]

    assert settings.slack_bot_token.get_secret_value() == "xoxb-legacy"


def test_blank_token_is_rejected(
    in_tmp_dir: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.delenv("SLACK_BOT_USER_OAUTH_ACCESS_TOKEN", raising=False)
    monkeypatch.delenv("SLACK_BOT_TOKEN", raising=False)

    with pytest.raises(ValidationError):
        Settings(slack_bot_token="   ")


def test_ssl_flag_parses_false(in_tmp_dir: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DATABASE_USE_SSL", "false")

    settings = Settings(slack_bot_token="xoxb-test")

    assert settings.database_use_ssl is False
