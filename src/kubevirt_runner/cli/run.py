"""The run stage: execute one job script on the job's machine."""

from __future__ import annotations

from pathlib import Path

import click

from ..errors import BuildFailure, InstanceNotRunning
from ..executor import execute
from ..instance import address, annotations, name, phase
from ..kube import find_job_vm
from ..models import RUN_CONFIG_ANNOTATION, RunConfig
from ..timing import Deadline
from ._common import DURATION, StageContext


def register_run_commands(main: click.Group) -> None:
    """Register the run command."""

    @main.command("run")
    @click.argument("script", type=click.Path(exists=True, dir_okay=False, path_type=Path))
    @click.argument("stage")
    @click.option("--retry-timeout", default="5m", type=DURATION, show_default=True,
                  help="How long to keep retrying the SSH connection.")
    @click.option("--dial-timeout", default="10s", type=DURATION, show_default=True,
                  help="Timeout of each SSH connection attempt.")
    @click.pass_obj
    def run_stage(obj: StageContext, script: Path, stage: str, retry_timeout: float, dial_timeout: float):
        """Run SCRIPT for job stage STAGE on the job's machine."""
        vmis = obj.vmis()
        vmi = find_job_vm(vmis, obj.job.namespace, obj.job.id)
        run_config = RunConfig.from_annotation(annotations(vmi).get(RUN_CONFIG_ANNOTATION))

        vmi_name = name(vmi)
        if phase(vmi) != "Running":
            raise InstanceNotRunning(
                f"Virtual Machine instance {vmi_name} is not running (phase: {phase(vmi) or 'unknown'})"
            )
        ip = address(vmi)
        if not ip:
            raise InstanceNotRunning(f"Virtual Machine instance {vmi_name} has no IP; is it running?")

        outcome = execute(
            ip,
            run_config,
            dial_timeout,
            Deadline(retry_timeout),
            script,
            stage,
            debug=obj.debug,
        )
        if outcome.failed:
            raise BuildFailure(outcome.status, outcome.signaled)
