# src/focusflow/engine/config.py

"""
Workspace configuration.

An optional `focusflow.yml` in the workspace directory overrides the
defaults below. Unknown keys are ignored; values of the wrong type fall
back to the default.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final

import yaml

from .recurring import AUTO_GENERATED_SUFFIX
from .reposition import INDENT_WIDTH
from .store import COPY_SUFFIX

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME: Final[str] = "focusflow.yml"
DEFAULT_STORE_FILE: Final[str] = ".focusflow/workspace.yml"

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def _as_int(value: Any, *, default: int) -> int:
    if isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _as_str(value: Any, *, default: str) -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return default


@dataclass(frozen=True)
class EngineConfig:
    store_file: str = DEFAULT_STORE_FILE
    indent_width: int = INDENT_WIDTH
    auto_generated_suffix: str = AUTO_GENERATED_SUFFIX
    copy_suffix: str = COPY_SUFFIX
    log_level: str = "WARNING"

    def store_path(self, workspace_dir: Path) -> Path:
        p = Path(self.store_file)
        return p if p.is_absolute() else workspace_dir / p


def load_config(workspace_dir: str | Path) -> EngineConfig:
    """
    Read `focusflow.yml` from `workspace_dir`, or return the defaults.
    """
    path = Path(workspace_dir) / CONFIG_FILE_NAME
    if not path.is_file():
        return EngineConfig()

    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning("Ignoring unreadable config %s: %s", path, e)
        return EngineConfig()

    if not isinstance(data, dict):
        logger.warning("Ignoring config %s: root must be a mapping", path)
        return EngineConfig()

    return config_from_mapping(data)


def config_from_mapping(data: dict[str, Any]) -> EngineConfig:
    defaults = EngineConfig()

    indent_width = _as_int(data.get("indent_width"), default=defaults.indent_width)
    if indent_width < 1:
        indent_width = defaults.indent_width

    log_level = _as_str(data.get("log_level"), default=defaults.log_level).upper()
    if log_level not in _LOG_LEVELS:
        log_level = defaults.log_level

    return EngineConfig(
        store_file=_as_str(data.get("store_file"), default=defaults.store_file),
        indent_width=indent_width,
        auto_generated_suffix=_as_str(data.get("auto_generated_suffix"), default=defaults.auto_generated_suffix),
        copy_suffix=_as_str(data.get("copy_suffix"), default=defaults.copy_suffix),
        log_level=log_level,
    )
