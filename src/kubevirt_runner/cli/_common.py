"""Shared plumbing for the stage commands.

Provides the stderr console, the error-to-exit-code mapping, the
duration parameter type and the per-invocation stage context.
"""

from __future__ import annotations

import logging
import signal
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import click
import yaml
from rich.console import Console

from ..debug import Debug
from ..errors import BuildFailure, Cancelled, build_failure_exit, system_failure_exit
from ..identity import JobContext
from ..kube import VMIClient
from ..timing import parse_duration

# GitLab Runner shows the driver's stderr in the job log; stdout is
# reserved for machine-readable output (the config stage).
console = Console(stderr=True, highlight=False)

logger = logging.getLogger(__name__)


class Duration(click.ParamType):
    """Durations like '1h', '5m30s', '10s', or plain seconds."""

    name = "duration"

    def convert(self, value: Any, param, ctx) -> float:
        if isinstance(value, (int, float)):
            return float(value)
        try:
            return parse_duration(str(value))
        except ValueError as exc:
            self.fail(str(exc), param, ctx)


DURATION = Duration()


@dataclass
class StageContext:
    """What every stage command receives from the main group."""

    job: JobContext
    debug: Debug

    def vmis(self) -> VMIClient:
        return VMIClient.from_environment()


class StageGroup(click.Group):
    """Click group that turns failures into GitLab Runner exit codes."""

    def invoke(self, ctx: click.Context) -> Any:
        try:
            return super().invoke(ctx)
        except (click.exceptions.Exit, click.ClickException, click.Abort):
            raise
        except BuildFailure:
            build_failure_exit()
        except Exception as exc:
            prog = ctx.find_root().info_name or "gitlab-runner-kubevirt"
            click.echo(f"{prog}: {exc}", err=True)
            logger.debug("Stage failed", exc_info=True)
            system_failure_exit()


def load_config_file(ctx: click.Context, param, value: Optional[str]) -> Optional[str]:
    """Eager callback: load a YAML defaults file into click's default_map.

    The file maps command names to option defaults, e.g.::

        prepare:
          default_image: registry.example.com/ci/debian:12
          shell: bash
          ssh_user: ci
        cleanup:
          skip_if: [Failed]
    """
    if not value:
        return value
    path = Path(value).expanduser()
    try:
        data: Dict[str, Any] = yaml.safe_load(path.read_text()) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise click.BadParameter(f"cannot load {path}: {exc}", ctx=ctx, param=param)
    if not isinstance(data, dict):
        raise click.BadParameter(f"{path} must contain a mapping", ctx=ctx, param=param)
    ctx.default_map = {**(ctx.default_map or {}), **data}
    return value


def setup_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(message)s",
        stream=sys.stderr,
    )
    # The kubernetes client and paramiko are chatty at DEBUG.
    for noisy in ("kubernetes", "urllib3", "paramiko"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def _raise_cancelled(signum, frame):
    raise Cancelled(f"received {signal.Signals(signum).name}")


def install_signal_handlers() -> None:
    """Make SIGTERM (job cancelled or timed out) interrupt blocking waits."""
    signal.signal(signal.SIGTERM, _raise_cancelled)
