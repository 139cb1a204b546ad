from __future__ import annotations

import tempfile
from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict


def _default_data_dir() -> Path:
    return Path(tempfile.gettempdir()) / "pubsub-emulator-data"


class EmulatorSettings(BaseModel):
    """
    Settings of the local Pub/Sub emulator process.

    Timing fields are in seconds. The defaults match what the emulator needs on a
    typical developer machine; tests scale them down.
    """

    project_id: str = "test-project"  # Any label works for the emulator
    port: int = Field(default=8085, ge=1, le=65535)
    host: str = "localhost"
    data_dir: Path = Field(default_factory=_default_data_dir)  # Kept between runs
    executable: str = "gcloud"  # Resolved on PATH at launch

    grace_period: float = Field(default=3.0, gt=0)  # Fast-failure window
    start_timeout: float = Field(default=30.0, gt=0)  # Overall readiness budget
    early_exit_window: float = Field(default=3.0, ge=0)  # Exit within it is "immediate"

    aggressive_cleanup: bool = False  # Opt-in name-based kills (java/emulator/pubsub/gcloud)
    export_env: bool = False  # Mirror the endpoint into env_var for Google client libraries
    env_var: str = "PUBSUB_EMULATOR_HOST"
    output_log: str | None = "artifacts/emulator/pubsub-emulator.log"  # None disables
    stop_join_timeout: float = Field(default=2.0, ge=0)  # Wait for output readers on teardown

    @property
    def host_port(self) -> str:
        return f"{self.host}:{self.port}"


class Settings(BaseSettings):
    """
    Main configuration class.

    Loads values from the following sources:
    - Environment variables (with prefix PUBSUBEMU_)
    - Initialization values (e.g., from YAML)
    - .env file
    - Secret files
    """

    model_config = SettingsConfigDict(env_prefix="PUBSUBEMU_", env_nested_delimiter="__")

    emulator: EmulatorSettings = Field(default_factory=EmulatorSettings)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,  # type: type[BaseSettings]
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """
        Configure the order of configuration sources.

        Loading priority:
        1. Environment variables
        2. Initialization values (e.g., from YAML)
        3. .env file
        4. Secret files
        """
        return (env_settings, init_settings, dotenv_settings, file_secret_settings)
