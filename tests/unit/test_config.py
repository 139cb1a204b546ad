from __future__ import annotations

from pathlib import Path
from textwrap import dedent

import pytest
from pydantic import ValidationError

from pubsubemu.config.loader import config_path, load_emulator_settings, load_settings
from pubsubemu.config.models import EmulatorSettings, Settings
from pubsubemu.emulator.errors import ConfigurationError


def test_load_settings_yaml_and_env_override(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """
    Test that settings are correctly loaded from a YAML file
    and that environment variables override YAML values.

    Steps:
    1. Create a temporary YAML configuration file with emulator settings.
    2. Override the port and project via environment variables.
    3. Verify that environment variables take precedence over YAML.
    """
    cfg = tmp_path / "cfg.yaml"
    cfg.write_text(
        dedent(
            """
            emulator:
              project_id: yaml-project
              port: 8681
              start_timeout: 45
              aggressive_cleanup: true
            """
        ),
        encoding="utf-8",
    )

    monkeypatch.setenv("PUBSUBEMU_EMULATOR__PORT", "8690")
    monkeypatch.setenv("PUBSUBEMU_EMULATOR__PROJECT_ID", "env-project")

    s: Settings = load_settings(str(cfg))

    assert s.emulator.port == 8690  # env variable overrides YAML value
    assert s.emulator.project_id == "env-project"
    assert s.emulator.start_timeout == 45.0  # comes from YAML
    assert s.emulator.aggressive_cleanup is True
    assert s.emulator.host_port == "localhost:8690"


def test_missing_config_file_gives_defaults(tmp_path: Path) -> None:
    s = load_settings(str(tmp_path / "absent.yaml"))

    assert s.emulator == EmulatorSettings(data_dir=s.emulator.data_dir)
    assert s.emulator.port == 8085
    assert s.emulator.grace_period == 3.0
    assert s.emulator.start_timeout == 30.0
    assert s.emulator.export_env is False
    assert s.emulator.env_var == "PUBSUB_EMULATOR_HOST"


@pytest.mark.parametrize(
    "field, value",
    [("port", 0), ("port", 70000), ("start_timeout", 0), ("grace_period", -1)],
)
def test_invalid_values_rejected(field: str, value: float) -> None:
    with pytest.raises(ValidationError):
        EmulatorSettings(**{field: value})


def test_config_path_from_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    cfg = tmp_path / "from-env.yaml"
    cfg.write_text("emulator:\n  port: 8701\n", encoding="utf-8")
    monkeypatch.setenv("PUBSUBEMU_CONFIG", str(cfg))

    assert config_path() == cfg
    assert load_settings().emulator.port == 8701


@pytest.mark.parametrize("content", ["- just\n- a list\n", "emulator: [unclosed\n"])
def test_malformed_config_raises(tmp_path: Path, content: str) -> None:
    cfg = tmp_path / "bad.yaml"
    cfg.write_text(content, encoding="utf-8")

    with pytest.raises(ConfigurationError, match="bad.yaml"):
        load_settings(cfg)


def test_emulator_overrides_are_validated(tmp_path: Path) -> None:
    absent = tmp_path / "absent.yaml"

    s = load_emulator_settings(absent, port=8702, project_id=None)
    assert s.port == 8702
    assert s.project_id == "test-project"

    with pytest.raises(ValidationError):
        load_emulator_settings(absent, port=0)
