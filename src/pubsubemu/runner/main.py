from __future__ import annotations

from typing import Any

import pytest
import typer
from pydantic import ValidationError

from ..config.loader import load_emulator_settings
from ..emulator.errors import ConfigurationError, EmulatorError
from ..emulator.supervisor import PubSubEmulator
from ..utils.logging import bind_context, get_logger

# Create a CLI application using Typer
app = typer.Typer(add_completion=False, help="Local Pub/Sub emulator for integration tests")

_log = get_logger(__name__)


@app.command()
def start(
    config: str = typer.Option(None, help="Path to the YAML configuration file"),
    project: str = typer.Option(None, help="Project ID (any label works with the emulator)"),
    port: int = typer.Option(None, help="Port the emulator binds to"),
    export_env: bool = typer.Option(
        None, "--export-env/--no-export-env", help="Export PUBSUB_EMULATOR_HOST"
    ),
) -> None:
    """
    Start the emulator, print its endpoint and keep it running until Enter is pressed.

    Example usage:
        pubsubemu start --project demo --port 8085
    """
    try:
        s = load_emulator_settings(config, project_id=project, port=port, export_env=export_env)
    except (ConfigurationError, ValidationError) as e:
        typer.echo(f"Invalid configuration: {e}", err=True)
        raise typer.Exit(code=2) from e

    bind_context(settings=s)
    emulator = PubSubEmulator(s)
    try:
        endpoint = emulator.start()
    except EmulatorError as e:
        typer.echo(f"Failed to start emulator: {e}", err=True)
        raise typer.Exit(code=1) from e
    except KeyboardInterrupt:
        emulator.stop()
        raise typer.Exit(code=130) from None

    try:
        typer.echo(f"Pub/Sub emulator running at {endpoint} (project {s.project_id})")
        typer.echo("\nPress Enter to stop emulator...")
        try:
            input()
        except (EOFError, KeyboardInterrupt):
            pass
        fault = emulator.wait_for_fault(timeout=0)
        if fault is not None:
            typer.echo(f"Emulator stopped on its own: {fault}", err=True)
    finally:
        emulator.stop()


@app.command()
def test(
    config: str = typer.Option(None, help="Path to the YAML configuration file"),
    port: int = typer.Option(None, help="Port override for the emulator fixture"),
    tests_path: str = typer.Option("tests", help="Path to the tests to run"),
    extra: str = typer.Option("", help="Additional arguments for pytest (space-separated)"),
) -> Any:
    """
    Run pytest with the emulator fixture configured.

    Example usage:
        pubsubemu test --config configs/emulator.yaml --extra "-m integration"
    """
    args = [tests_path]
    if config:
        args += ["--emulator-config", config]
    if port:
        args += ["--emulator-port", str(port)]
    if extra:
        args += extra.split()

    _log.info("Running pytest", args=args)
    # Exit with pytest’s return code
    raise SystemExit(pytest.main(args))


if __name__ == "__main__":
    app()
