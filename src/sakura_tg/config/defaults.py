"""Built-in bot defaults and the deep merge applied on top of them."""

from __future__ import annotations

import copy
from pathlib import Path
from typing import Any

import yaml

DEFAULTS_DIR = Path(__file__).parent / "defaults"


def load_defaults(name: str = "bot") -> dict[str, Any]:
    """Return a fresh copy of ``defaults/<name>.yaml``."""
    path = DEFAULTS_DIR / f"{name}.yaml"
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        msg = f"No built-in defaults named '{name}' ({path})"
        raise FileNotFoundError(msg) from None
    return yaml.safe_load(text) or {}


def merge_configs(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    """Deep-merge *overrides* into a copy of *base*.

    Nested mappings merge key by key. Any other value, lists included,
    replaces the base value outright. Neither argument is modified.
    """
    merged = copy.deepcopy(base)
    for key, value in overrides.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            value = merge_configs(current, value)
        merged[key] = copy.deepcopy(value)
    return merged
