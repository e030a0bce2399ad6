"""Unit tests for the YAML config loader, env var resolution and backups."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from sakura_tg.config.loader import (
    export_config,
    find_latest_backup,
    load_bot_config,
    load_yaml,
    resolve_env_vars,
)
from sakura_tg.errors import ConfigError
from sakura_tg.types import UpdateType

EXAMPLE_CONFIG = Path(__file__).resolve().parents[2] / "examples" / "bot.yaml"
TOKEN = "123456:ABC-def_ghi"


def _write(path: Path, data: dict) -> Path:
    path.write_text(yaml.safe_dump(data))
    return path


class TestResolveEnvVars:
    def test_plain_string_unchanged(self):
        assert resolve_env_vars("hello") == "hello"

    def test_substitutes_env_var(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("BOT_TOKEN", TOKEN)
        assert resolve_env_vars("${BOT_TOKEN}") == TOKEN

    def test_default_when_var_missing(self):
        assert resolve_env_vars("${MISSING_VAR:-fallback}") == "fallback"

    def test_env_var_overrides_default(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("MY_LIMIT", "50")
        assert resolve_env_vars("${MY_LIMIT:-100}") == "50"

    def test_empty_default(self):
        assert resolve_env_vars("${MISSING_VAR:-}") == ""

    def test_missing_var_no_default_raises(self):
        with pytest.raises(ConfigError, match="UNDEFINED_VAR"):
            resolve_env_vars("${UNDEFINED_VAR}")

    def test_default_with_colons(self):
        result = resolve_env_vars("${MISSING:-http://localhost:8081}")
        assert result == "http://localhost:8081"

    def test_recursive(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("KIND", "message")
        data = {"polling": {"allowed_updates": ["${KIND}", "poll"], "limit": 5}}
        assert resolve_env_vars(data) == {
            "polling": {"allowed_updates": ["message", "poll"], "limit": 5}
        }


class TestLoadYaml:
    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(FileNotFoundError, match="not found"):
            load_yaml(tmp_path / "nope.yaml")

    def test_empty_file_is_empty_mapping(self, tmp_path: Path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_yaml(path) == {}

    def test_non_mapping_rejected(self, tmp_path: Path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigError, match="mapping"):
            load_yaml(path)

    def test_parse_error_reports_location(self, tmp_path: Path):
        path = tmp_path / "broken.yaml"
        path.write_text("api:\n  token: [unclosed\n")
        with pytest.raises(ConfigError, match="line"):
            load_yaml(path)


class TestLoadBotConfig:
    def test_example_config_loads(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("SAKURA_BOT_TOKEN", TOKEN)
        monkeypatch.delenv("SAKURA_MAX_CONCURRENCY", raising=False)
        monkeypatch.delenv("SAKURA_LOG_LEVEL", raising=False)

        cfg = load_bot_config(EXAMPLE_CONFIG)

        assert cfg.api.token.get_secret_value() == TOKEN
        assert cfg.polling.limit == 100
        assert cfg.polling.max_concurrency == 4
        assert cfg.polling.allowed_updates == [
            UpdateType.MESSAGE,
            UpdateType.CALLBACK_QUERY,
        ]
        # inherited from the built-in defaults
        assert cfg.api.retry.max_attempts == 3

    def test_example_config_requires_token(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.delenv("SAKURA_BOT_TOKEN", raising=False)
        with pytest.raises(ConfigError, match="SAKURA_BOT_TOKEN"):
            load_bot_config(EXAMPLE_CONFIG)

    def test_invalid_values_raise_config_error(self, tmp_path: Path):
        path = _write(
            tmp_path / "bot.yaml",
            {"api": {"token": TOKEN}, "polling": {"limit": 500}},
        )
        with pytest.raises(ConfigError, match="Invalid bot config"):
            load_bot_config(path)

    def test_missing_token_raises_config_error(self, tmp_path: Path):
        path = _write(tmp_path / "bot.yaml", {"polling": {"limit": 5}})
        with pytest.raises(ConfigError, match="token"):
            load_bot_config(path)


class TestBackups:
    def test_export_omits_token(self, tmp_path: Path):
        path = _write(
            tmp_path / "bot.yaml",
            {"api": {"token": TOKEN}, "admins": [42]},
        )
        cfg = load_bot_config(path)

        exported = export_config(cfg, tmp_path / "backups")

        assert exported.parent == tmp_path / "backups"
        assert exported.name.startswith("bot-")
        data = yaml.safe_load(exported.read_text())
        assert "token" not in data["api"]
        assert data["admins"] == [42]
        assert TOKEN not in exported.read_text()

    def test_export_defaults_to_config_dir(self, tmp_path: Path):
        path = _write(
            tmp_path / "bot.yaml",
            {"api": {"token": TOKEN}, "config_dir": str(tmp_path / "cfg")},
        )
        exported = export_config(load_bot_config(path))
        assert exported.parent == tmp_path / "cfg"

    def test_find_latest_backup(self, tmp_path: Path):
        for stamp in ("20240101T000000000000Z", "20250101T000000000000Z"):
            (tmp_path / f"bot-{stamp}.yaml").write_text("{}")
        (tmp_path / "other.yaml").write_text("{}")

        latest = find_latest_backup(tmp_path)

        assert latest == tmp_path / "bot-20250101T000000000000Z.yaml"

    def test_find_latest_backup_missing_dir(self, tmp_path: Path):
        assert find_latest_backup(tmp_path / "absent") is None

    def test_restore_backup_wins_over_file(self, tmp_path: Path):
        backups = tmp_path / "backups"
        path = _write(
            tmp_path / "bot.yaml",
            {
                "api": {"token": TOKEN},
                "admins": [1],
                "config_dir": str(backups),
            },
        )
        saved = load_bot_config(path).model_copy(update={"admins": [1, 2, 3]})
        export_config(saved)

        restored = load_bot_config(path, restore_backup=True)
        assert restored.admins == [1, 2, 3]
        # the token still comes from the file
        assert restored.api.token.get_secret_value() == TOKEN

    def test_restore_without_backup_keeps_file_values(self, tmp_path: Path):
        path = _write(
            tmp_path / "bot.yaml",
            {
                "api": {"token": TOKEN},
                "admins": [1],
                "config_dir": str(tmp_path / "empty"),
            },
        )
        cfg = load_bot_config(path, restore_backup=True)
        assert cfg.admins == [1]
