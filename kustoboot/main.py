"""
kustoboot — CLI entrypoint.

Usage:
    python -m kustoboot.main --help
    python -m kustoboot.main deploy
    python -m kustoboot.main deploy --manual --listen-port 8090
    python -m kustoboot.main status --json
"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path
from typing import Any

import click

from kustoboot import __version__
from kustoboot.core.config.loader import load_config
from kustoboot.core.config.settings import DeploymentConfig
from kustoboot.core.engine.orchestrator import Orchestrator
from kustoboot.core.errors import ConfigFormatError
from kustoboot.core.observability.logging_config import setup_logging


def build_orchestrator(config: DeploymentConfig) -> Orchestrator:
    """Wire the orchestrator to the real host."""
    return Orchestrator(config, echo=click.echo)


def _load(config_path: str | None, overrides: dict[str, Any]) -> DeploymentConfig:
    try:
        return load_config(Path(config_path) if config_path else None, overrides)
    except ConfigFormatError as e:
        click.secho(f"❌ {e}", fg="red", err=True)
        sys.exit(1)


def _console_level(verbose: bool, default: str) -> str:
    if verbose:
        return "DEBUG"
    return os.environ.get("KUSTOBOOT_LOG_LEVEL", default)


@click.group()
@click.version_option(version=__version__, prog_name="kustoboot")
def cli() -> None:
    """Deploy the Kusto emulator on WSL2 + Docker, resuming across reboots."""


@cli.command()
@click.option(
    "--skip-virtualization-install",
    is_flag=True,
    default=None,
    help="Do not check or install WSL2.",
)
@click.option(
    "--skip-reboot",
    is_flag=True,
    default=None,
    help="Register the continuation task but never reboot automatically.",
)
@click.option(
    "--download-only",
    is_flag=True,
    default=None,
    help="Only download the container runtime installer, then exit.",
)
@click.option(
    "--manual",
    is_flag=True,
    default=None,
    help="Never create a continuation task; print reboot instructions instead.",
)
@click.option("--listen-port", default=None, help="Host port for the emulator (default: 8080).")
@click.option("--data-path", default=None, help="Host directory for emulator data.")
@click.option("--verbose", "-v", is_flag=True, default=None, help="Debug output on the console.")
@click.option(
    "--cleanup-continuation-task",
    is_flag=True,
    help="Remove the continuation task and checkpoint, then exit.",
)
@click.option("--no-sample-data", is_flag=True, help="Skip creating the sample table.")
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=False, dir_okay=False),
    default=None,
    help="Path to kustoboot.yml (default: ./kustoboot.yml if present).",
)
@click.option(
    "--state-dir",
    type=click.Path(file_okay=False),
    default=None,
    help="Where the checkpoint, audit ledger and log live.",
)
@click.option(
    "--docker-settings-file",
    type=click.Path(dir_okay=False),
    default=None,
    help="Docker Desktop settings-store.json to patch (default: the current user's).",
)
def deploy(
    skip_virtualization_install: bool | None,
    skip_reboot: bool | None,
    download_only: bool | None,
    manual: bool | None,
    listen_port: str | None,
    data_path: str | None,
    verbose: bool | None,
    cleanup_continuation_task: bool,
    no_sample_data: bool,
    config_path: str | None,
    state_dir: str | None,
    docker_settings_file: str | None,
) -> None:
    """Run (or resume) the deployment."""
    config = _load(
        config_path,
        {
            "skip_virtualization_install": skip_virtualization_install,
            "skip_reboot": skip_reboot,
            "download_only": download_only,
            "manual": manual,
            "listen_port": listen_port,
            "data_path": data_path,
            "verbose": verbose,
            "sample_data": False if no_sample_data else None,
            "state_dir": state_dir,
            "docker_settings_file": docker_settings_file,
        },
    )

    setup_logging(
        level=_console_level(config.verbose, "INFO"),
        log_file=config.log_path,
        log_file_level="DEBUG",
        quiet_third_party=not config.verbose,
    )

    orchestrator = build_orchestrator(config)
    if cleanup_continuation_task:
        sys.exit(orchestrator.cleanup())
    sys.exit(orchestrator.run())


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=False, dir_okay=False),
    default=None,
    help="Path to kustoboot.yml (default: ./kustoboot.yml if present).",
)
@click.option("--state-dir", type=click.Path(file_okay=False), default=None)
def status(as_json: bool, config_path: str | None, state_dir: str | None) -> None:
    """Show the detected phase, the last checkpoint and the task state."""
    config = _load(config_path, {"state_dir": state_dir})
    setup_logging(level=_console_level(False, "WARNING"))

    result = build_orchestrator(config).status()

    if as_json:
        click.echo(json.dumps(result, indent=2))
        return

    click.secho(f"\n📋 Kusto emulator deployment ({config.service_url})", fg="cyan", bold=True)
    host = result.get("host") or {}
    if host:
        click.echo(f"   Host: {host.get('distro') or host.get('system')} ({host.get('machine', '?')})")
    phase = result["detected_phase"]
    click.echo("   Detected phase: ", nl=False)
    click.secho(phase, fg="green" if phase == "COMPLETE" else "yellow", bold=True)

    for name, met in result["checks"].items():
        marker = click.style("✓", fg="green") if met else click.style("✗", fg="red")
        click.echo(f"     {marker} {name}")

    checkpoint = result["checkpoint"]
    click.echo()
    if checkpoint:
        click.echo(f"   Checkpoint: {checkpoint['Phase']} at {checkpoint['Timestamp']}")
        if checkpoint["Data"]:
            click.echo(f"     {checkpoint['Data']}")
    else:
        click.echo("   Checkpoint: none")

    task = result["continuation_task"]
    state = task["state"] if task["registered"] else "not registered"
    click.echo(f"   Continuation task '{task['name']}': {state}")

    events = result.get("recent_events") or []
    if events:
        click.echo()
        click.echo("   Recent events:")
        for event in events:
            line = f"     {event['timestamp'][:19]}  {event['event']:<12} {event['status']}"
            if event["message"]:
                line += f"  {event['message']}"
            click.echo(line)
    click.echo()


if __name__ == "__main__":
    cli()
