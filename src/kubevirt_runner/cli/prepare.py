"""The prepare stage: create the job's machine and wait until it's usable."""

from __future__ import annotations

from typing import Optional

import click
from pydantic import ValidationError
from rich.panel import Panel

from ..executor import dial_ssh
from ..instance import address, name, node_name
from ..models import ExecMethod, RunConfig, ShellKind, SSHConfig
from ..provision import create_job_vm, wait_until_ready
from ..timing import Deadline
from ._common import DURATION, StageContext, console


def ssh_options(func):
    """Run configuration options, shared with anything that builds a RunConfig."""
    options = [
        click.option(
            "--shell", required=True,
            type=click.Choice([k.value for k in ShellKind]),
            help="Shell the job scripts are written for.",
        ),
        click.option(
            "--method", default=ExecMethod.SSH.value, show_default=True,
            type=click.Choice([m.value for m in ExecMethod]),
            help="How scripts are executed.",
        ),
        click.option("--ssh-port", default=22, show_default=True, type=click.IntRange(1, 65535)),
        click.option("--ssh-user", default="", help="SSH username."),
        click.option("--ssh-password", envvar="KUBEVIRT_SSH_PASSWORD", default=None, help="SSH password."),
        click.option(
            "--ssh-private-key-file", default=None, type=click.Path(dir_okay=False),
            help="SSH private key (exclusive with --ssh-password).",
        ),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def build_run_config(
    shell: str,
    method: str,
    ssh_port: int,
    ssh_user: str,
    ssh_password: Optional[str],
    ssh_private_key_file: Optional[str],
) -> RunConfig:
    try:
        return RunConfig(
            shell=ShellKind(shell),
            method=ExecMethod(method),
            ssh=SSHConfig(
                port=ssh_port,
                user=ssh_user,
                password=ssh_password,
                private_key_path=ssh_private_key_file,
            ),
        )
    except ValidationError as exc:
        raise click.UsageError(str(exc))


def register_prepare_commands(main: click.Group) -> None:
    """Register the prepare command."""

    @main.command("prepare")
    @click.option("--default-image", default="", help="Image when the job sets none.")
    @click.option("--default-image-pull-policy", default="")
    @click.option("--default-image-pull-secret", default="")
    @click.option("--default-cpu-request", default="1", show_default=True)
    @click.option("--default-cpu-limit", default="1", show_default=True)
    @click.option("--default-memory-request", default="1Gi", show_default=True)
    @click.option("--default-memory-limit", default="1Gi", show_default=True)
    @click.option("--default-ephemeral-storage-request", default="")
    @click.option("--default-ephemeral-storage-limit", default="")
    @click.option("--default-machine-type", default="")
    @click.option("--default-timezone", default="Etc/UTC", show_default=True)
    @click.option("--timeout", default="1h", type=DURATION, show_default=True,
                  help="How long to wait for the machine to become ready.")
    @click.option("--dial-timeout", default="10s", type=DURATION, show_default=True,
                  help="Timeout of each SSH connection attempt.")
    @click.option("--retry-timeout", default="5m", type=DURATION, show_default=True,
                  help="How long to keep retrying SSH once the machine is ready.")
    @ssh_options
    @click.pass_obj
    def prepare_stage(
        obj: StageContext,
        default_image: str,
        default_image_pull_policy: str,
        default_image_pull_secret: str,
        default_cpu_request: str,
        default_cpu_limit: str,
        default_memory_request: str,
        default_memory_limit: str,
        default_ephemeral_storage_request: str,
        default_ephemeral_storage_limit: str,
        default_machine_type: str,
        default_timezone: str,
        timeout: float,
        dial_timeout: float,
        retry_timeout: float,
        shell: str,
        method: str,
        ssh_port: int,
        ssh_user: str,
        ssh_password: Optional[str],
        ssh_private_key_file: Optional[str],
    ):
        """Create the job's virtual machine and wait until SSH answers."""
        run_config = build_run_config(
            shell, method, ssh_port, ssh_user, ssh_password, ssh_private_key_file,
        )
        job = obj.job.apply_defaults(
            image=default_image,
            image_pull_policy=default_image_pull_policy,
            image_pull_secret=default_image_pull_secret,
            cpu_request=default_cpu_request,
            cpu_limit=default_cpu_limit,
            memory_request=default_memory_request,
            memory_limit=default_memory_limit,
            ephemeral_storage_request=default_ephemeral_storage_request,
            ephemeral_storage_limit=default_ephemeral_storage_limit,
            machine_type=default_machine_type,
            timezone=default_timezone,
        )

        vmis = obj.vmis()
        deadline = Deadline(timeout)

        created = create_job_vm(vmis, job, run_config)
        vmi = wait_until_ready(vmis, job, created, deadline, debug=obj.debug)
        ip = address(vmi)

        console.print(
            Panel(
                f"Name: [bold]{name(vmi)}[/]\n"
                f"Image: {job.image}\n"
                f"Node: {node_name(vmi) or '[dim]unknown[/]'}\n"
                f"IP: [cyan]{ip}[/]",
                title="[green]Virtual Machine instance is ready[/]",
                border_style="green",
            )
        )

        console.print("Waiting for virtual machine to become reachable via ssh...")
        client = dial_ssh(ip, run_config.ssh, dial_timeout, Deadline(retry_timeout), debug=obj.debug)
        client.close()
