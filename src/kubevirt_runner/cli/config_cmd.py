"""The config stage: describe the driver to GitLab Runner."""

from __future__ import annotations

import json
import platform
from typing import Any, Dict

import click
import kubernetes

from .. import DRIVER_NAME, __version__


def driver_version() -> str:
    """Driver version with the interpreter and API client it runs on."""
    client_version = getattr(kubernetes, "__version__", "unknown")
    return f"{__version__} (python {platform.python_version()}; kubernetes: {client_version})"


def describe() -> Dict[str, Any]:
    return {"driver": {"name": DRIVER_NAME, "version": driver_version()}}


def register_config_commands(main: click.Group) -> None:
    """Register the config command."""

    @main.command("config")
    def config_stage():
        """Print the driver description (config_exec)."""
        click.echo(json.dumps(describe()))
