"""The cleanup stage: delete the job's machine."""

from __future__ import annotations

from typing import Iterable, List

import click

from ..cleanup import cleanup_job_vm
from ..timing import Deadline
from ._common import DURATION, StageContext


def split_predicates(values: Iterable[str]) -> List[str]:
    """Flatten repeated and comma-separated --skip-if values."""
    if isinstance(values, str):
        values = [values]
    return [part.strip() for value in values for part in value.split(",") if part.strip()]


def register_cleanup_commands(main: click.Group) -> None:
    """Register the cleanup command."""

    @main.command("cleanup")
    @click.option("--timeout", default="1h", type=DURATION, show_default=True,
                  help="How long to wait for the machine to go away.")
    @click.option("--skip-if", multiple=True,
                  help="Keep the machine when its phase matches (e.g. Failed, !Succeeded). "
                       "Comma-separated or repeated; first match wins.")
    @click.pass_obj
    def cleanup_stage(obj: StageContext, timeout: float, skip_if: tuple):
        """Delete the job's virtual machine and wait until it is gone."""
        cleanup_job_vm(
            obj.vmis(),
            obj.job.namespace,
            obj.job.id,
            split_predicates(skip_if),
            Deadline(timeout),
            debug=obj.debug,
        )
