from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml

from ..emulator.errors import ConfigurationError
from .models import EmulatorSettings, Settings

# Used when neither a path nor PUBSUBEMU_CONFIG is given
DEFAULT_CONFIG = "configs/emulator.yaml"


def config_path(path: str | Path | None = None) -> Path:
    """Explicit path, else PUBSUBEMU_CONFIG, else configs/emulator.yaml."""
    return Path(path or os.getenv("PUBSUBEMU_CONFIG") or DEFAULT_CONFIG)


def load_settings(path: str | Path | None = None) -> Settings:
    """
    Load settings from a YAML file. Environment variables (PUBSUBEMU_...) win
    over file values.

    A missing or empty file gives the defaults.

    Raises:
        ConfigurationError: The file is not valid YAML or its top level is not a mapping.
    """
    file_path = config_path(path)
    data: dict[str, Any] = {}

    if file_path.is_file():
        try:
            with file_path.open(encoding="utf-8") as f:
                loaded = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"invalid YAML in {file_path}: {e}") from e
        if isinstance(loaded, dict):
            data = loaded
        elif loaded is not None:
            raise ConfigurationError(
                f"{file_path}: expected a mapping at top level, got {type(loaded).__name__}"
            )

    return Settings(**data)


def load_emulator_settings(path: str | Path | None = None, **overrides: Any) -> EmulatorSettings:
    """
    Emulator section of load_settings() with explicit overrides applied on top.

    Overrides set to None are ignored; the rest are validated like file values.
    """
    emulator = load_settings(path).emulator
    updates = {k: v for k, v in overrides.items() if v is not None}
    if not updates:
        return emulator
    return EmulatorSettings.model_validate({**emulator.model_dump(), **updates})
