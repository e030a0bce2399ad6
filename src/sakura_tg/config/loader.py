"""YAML + environment variable config loader, with settings backups."""

from __future__ import annotations

import os
import re
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, cast

import structlog
import yaml
from pydantic import ValidationError

from sakura_tg.config.defaults import load_defaults, merge_configs
from sakura_tg.config.models import BotConfig
from sakura_tg.errors import ConfigError

logger = structlog.get_logger()

# Matches ${VAR} or ${VAR:-default}
_ENV_PATTERN = re.compile(r"\$\{([^}:]+)(?::-((?:[^}\\]|\\.)*))?}")

BACKUP_PREFIX = "bot-"
BACKUP_SUFFIX = ".yaml"


def _resolve_env_str(value: str) -> str:
    """Replace all ${VAR} / ${VAR:-default} references in a string."""

    def _replace(match: re.Match[str]) -> str:
        var_name = match.group(1)
        default = match.group(2)
        env_val = os.environ.get(var_name)
        if env_val is not None:
            return env_val
        if default is not None:
            return default.replace("\\}", "}")
        msg = f"Environment variable '{var_name}' is not set and no default provided"
        raise ConfigError(msg)

    return _ENV_PATTERN.sub(_replace, value)


def resolve_env_vars(data: Any) -> Any:
    """Recursively resolve ${VAR} and ${VAR:-default} in parsed YAML data."""
    if isinstance(data, str):
        return _resolve_env_str(data)
    if isinstance(data, dict):
        return {k: resolve_env_vars(v) for k, v in data.items()}
    if isinstance(data, list):
        return [resolve_env_vars(item) for item in data]
    return data


def load_yaml(path: str | Path) -> dict[str, Any]:
    """Load a YAML file and return its contents as a dict."""
    p = Path(path)
    if not p.exists():
        msg = f"Config file not found: {p}"
        raise FileNotFoundError(msg)
    try:
        with p.open() as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as exc:
        msg = f"Failed to parse YAML in {p}"
        if hasattr(exc, "problem_mark") and exc.problem_mark is not None:
            mark = exc.problem_mark
            msg += f" at line {mark.line + 1}, column {mark.column + 1}"
        msg += f": {exc}"
        raise ConfigError(msg) from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        msg = f"Expected a YAML mapping at top level in {p}, got {type(data).__name__}"
        raise ConfigError(msg)
    return cast(dict[str, Any], resolve_env_vars(data))


def find_latest_backup(directory: str | Path) -> Path | None:
    """Return the most recent exported settings file in *directory*, if any."""
    d = Path(directory)
    if not d.is_dir():
        return None
    candidates = sorted(d.glob(f"{BACKUP_PREFIX}*{BACKUP_SUFFIX}"))
    return candidates[-1] if candidates else None


def build_bot_config(overrides: dict[str, Any]) -> BotConfig:
    """Build a validated BotConfig by merging built-in defaults with overrides."""
    merged = merge_configs(load_defaults(), overrides)
    return BotConfig.model_validate(merged)


def load_bot_config(
    path: str | Path | None = None,
    *,
    restore_backup: bool = False,
) -> BotConfig:
    """Load the bot config from defaults, a YAML file and optionally a backup.

    When *restore_backup* is set and the configured ``config_dir`` holds an
    exported settings file, the newest one is applied last and wins over the
    values from *path*.
    """
    overrides = load_yaml(path) if path is not None else {}

    if restore_backup:
        directory = overrides.get("config_dir") or load_defaults()["config_dir"]
        backup = find_latest_backup(directory)
        if backup is None:
            logger.warning("config.no_backup_found", directory=directory)
        else:
            overrides = merge_configs(overrides, load_yaml(backup))
            logger.info("config.backup_restored", path=str(backup))

    try:
        return build_bot_config(overrides)
    except ValidationError as exc:
        source = path or "built-in defaults"
        msg = f"Invalid bot config ({source}):\n{exc}"
        raise ConfigError(msg) from exc


def export_config(config: BotConfig, directory: str | Path | None = None) -> Path:
    """Write *config* to a timestamped YAML file and return its path.

    The API token is never written to disk.
    """
    d = Path(directory if directory is not None else config.config_dir)
    d.mkdir(parents=True, exist_ok=True)
    stamp = datetime.now(UTC).strftime("%Y%m%dT%H%M%S%fZ")
    path = d / f"{BACKUP_PREFIX}{stamp}{BACKUP_SUFFIX}"
    data = config.model_dump(mode="json", exclude={"api": {"token"}})
    with path.open("w") as f:
        yaml.safe_dump(data, f, sort_keys=False)
    logger.info("config.exported", path=str(path))
    return path
