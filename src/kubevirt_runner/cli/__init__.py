"""
gitlab-runner-kubevirt CLI — the custom executor entry point.

GitLab Runner calls the four stages as separate processes::

    gitlab-runner-kubevirt config
    gitlab-runner-kubevirt prepare --shell bash --ssh-user ci ...
    gitlab-runner-kubevirt run <script> <stage>
    gitlab-runner-kubevirt cleanup

Job coordinates come from the CUSTOM_ENV_CI_* variables the runner
exports. Entry point: kubevirt_runner.cli:main
"""

from __future__ import annotations

import click

from .. import __version__
from ..debug import Debug
from ..identity import job_context
from ._common import StageContext, StageGroup, install_signal_handlers, load_config_file, setup_logging


@click.group(cls=StageGroup)
@click.version_option(version=__version__, prog_name="gitlab-runner-kubevirt")
@click.option(
    "--config-file", envvar="KUBEVIRT_RUNNER_CONFIG", type=click.Path(dir_okay=False),
    callback=load_config_file, is_eager=True, expose_value=False,
    help="YAML file with default option values per command.",
)
@click.option("--runner-id", envvar="CUSTOM_ENV_CI_RUNNER_ID", default="")
@click.option("--project-id", envvar="CUSTOM_ENV_CI_PROJECT_ID", default="")
@click.option("--concurrent-id", envvar="CUSTOM_ENV_CI_CONCURRENT_PROJECT_ID", default="")
@click.option("--job-id", envvar="CUSTOM_ENV_CI_JOB_ID", default="")
@click.option("--image", envvar="CUSTOM_ENV_CI_JOB_IMAGE", default="", help="Job containerdisk image.")
@click.option(
    "--namespace", envvar="KUBEVIRT_NAMESPACE", default="gitlab-runner", show_default=True,
    help="Namespace the job machines are created in.",
)
@click.option("--debug", is_flag=True, help="Echo connection attempts, scripts and remote commands.")
@click.pass_context
def main(
    ctx: click.Context,
    runner_id: str,
    project_id: str,
    concurrent_id: str,
    job_id: str,
    image: str,
    namespace: str,
    debug: bool,
):
    """Run GitLab CI jobs in KubeVirt virtual machines."""
    setup_logging(debug)
    install_signal_handlers()
    ctx.obj = StageContext(
        job=job_context(runner_id, project_id, concurrent_id, job_id, image=image, namespace=namespace),
        debug=Debug.to_stderr() if debug else Debug(),
    )


# ---------------------------------------------------------------------------
# Register the stage commands
# ---------------------------------------------------------------------------

from .config_cmd import register_config_commands
from .prepare import register_prepare_commands
from .run import register_run_commands
from .cleanup import register_cleanup_commands

register_config_commands(main)
register_prepare_commands(main)
register_run_commands(main)
register_cleanup_commands(main)
