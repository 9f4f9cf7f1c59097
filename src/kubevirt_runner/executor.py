"""
Remote executor — run a job script on the instance over SSH.

A freshly booted machine refuses connections for a while, so the TCP
dial is retried with randomized exponential backoff (tenacity) until
the retry deadline. Anything that fails *after* the dial (host key
exchange, protocol banner, authentication) fails at once: waiting
won't fix a wrong password.

Host keys are not verified. Every machine is brand new and unknown to
any known_hosts file; this is an accepted risk.
"""

from __future__ import annotations

import logging
import shlex
import socket
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, List, Optional

import paramiko
from tenacity import Retrying, before_sleep_log, retry_if_exception_type, wait_random_exponential

from .debug import DISABLED, Debug
from .errors import ConnectError, ConnectTimeout, RunnerError
from .models import RunConfig, SSHConfig
from .shells import get_shell
from .timing import Deadline, stop_at_deadline, wait_within_deadline

logger = logging.getLogger(__name__)

_CHUNK = 32768
_POLL_INTERVAL = 0.05

# Dial retry pacing: random waits, growing from 0.5s, never above 5s.
_DIAL_WAIT_MULTIPLIER = 0.5
_DIAL_WAIT_MAX = 5.0


class _TrustAnyHostKey(paramiko.MissingHostKeyPolicy):
    """Accept whatever host key the machine presents."""

    def missing_host_key(self, client, hostname, key) -> None:
        return None


@dataclass(frozen=True)
class ExecOutcome:
    """Exit status of the remote command.

    ``status`` is None when the command died without reporting one,
    which is what a signal looks like over SSH.
    """

    status: Optional[int]
    signaled: bool = False

    @property
    def failed(self) -> bool:
        return self.signaled or self.status != 0


def _handshake(sock: socket.socket, address: str, ssh: SSHConfig, dial_timeout: float) -> paramiko.SSHClient:
    client = paramiko.SSHClient()
    client.set_missing_host_key_policy(_TrustAnyHostKey())

    kwargs = {
        "hostname": address,
        "port": ssh.port,
        "username": ssh.user,
        "sock": sock,
        "timeout": dial_timeout,
        "banner_timeout": dial_timeout,
        "auth_timeout": dial_timeout,
        "allow_agent": False,
        "look_for_keys": False,
    }
    if ssh.private_key_path:
        kwargs["key_filename"] = ssh.private_key_path
    else:
        kwargs["password"] = ssh.password

    try:
        client.connect(**kwargs)
    except (paramiko.SSHException, OSError) as exc:
        client.close()
        sock.close()
        raise ConnectError(f"ssh {ssh.user}@{address}:{ssh.port}: {exc}") from exc
    return client


def dial_ssh(
    address: str,
    ssh: SSHConfig,
    dial_timeout: float,
    deadline: Deadline,
    debug: Debug = DISABLED,
) -> paramiko.SSHClient:
    """Connect to *address*, retrying the dial until *deadline*.

    Cancellation (SIGTERM from the runner) interrupts the pause between
    attempts through the stage's signal handler.

    Args:
        address: Machine IP.
        ssh: Port and credentials.
        dial_timeout: Timeout for each connection attempt.
        deadline: Retry deadline, independent of any stage timeout.
        debug: Diagnostic sink.

    Returns:
        paramiko.SSHClient: Connected and authenticated client.

    Raises:
        ConnectTimeout: Still unreachable at the deadline.
        ConnectError: Handshake or authentication failure (not retried).
    """
    retrying = Retrying(
        retry=retry_if_exception_type(OSError),
        wait=wait_within_deadline(
            deadline, wait_random_exponential(multiplier=_DIAL_WAIT_MULTIPLIER, max=_DIAL_WAIT_MAX),
        ),
        stop=stop_at_deadline(deadline),
        sleep=time.sleep,
        before_sleep=before_sleep_log(logger, logging.DEBUG),
        reraise=True,
    )

    attempts = 0
    try:
        for attempt in retrying:
            with attempt:
                attempts = attempt.retry_state.attempt_number
                debug.echo("attempting to connect to %s:%d...", address, ssh.port)
                try:
                    sock = socket.create_connection((address, ssh.port), timeout=dial_timeout)
                except OSError as exc:
                    debug.echo("%s", exc)
                    raise
    except OSError as exc:
        raise ConnectTimeout(
            f"could not reach {address}:{ssh.port} after {attempts} attempts: {exc}"
        ) from exc

    return _handshake(sock, address, ssh, dial_timeout)




def upload_script(client: paramiko.SSHClient, local: Path, remote: str) -> None:
    """Copy *local* to *remote* (relative to the login directory) via SFTP."""
    try:
        sftp = client.open_sftp()
        try:
            sftp.put(str(local), remote)
        finally:
            sftp.close()
    except (paramiko.SSHException, OSError) as exc:
        raise RunnerError(f"uploading {local} to {remote}: {exc}") from exc


def run_command(
    client: paramiko.SSHClient,
    argv: List[str],
    stdout: BinaryIO,
    stderr: BinaryIO,
) -> ExecOutcome:
    """Run *argv* remotely, streaming its output, and return its exit status."""
    transport = client.get_transport()
    if transport is None or not transport.is_active():
        raise RunnerError("ssh connection closed before the command could run")

    chan = transport.open_session()
    try:
        chan.exec_command(shlex.join(argv))
        while True:
            busy = False
            if chan.recv_ready():
                stdout.write(chan.recv(_CHUNK))
                busy = True
            if chan.recv_stderr_ready():
                stderr.write(chan.recv_stderr(_CHUNK))
                busy = True
            if busy:
                continue
            if chan.exit_status_ready():
                break
            time.sleep(_POLL_INTERVAL)
        # Drain whatever arrived along with the exit status.
        while chan.recv_ready():
            stdout.write(chan.recv(_CHUNK))
        while chan.recv_stderr_ready():
            stderr.write(chan.recv_stderr(_CHUNK))
        status = chan.recv_exit_status()
    finally:
        chan.close()
        stdout.flush()
        stderr.flush()

    if status == -1:
        return ExecOutcome(status=None, signaled=True)
    return ExecOutcome(status=status)


def execute(
    address: str,
    run_config: RunConfig,
    dial_timeout: float,
    deadline: Deadline,
    script: Path,
    stage: str,
    debug: Debug = DISABLED,
    stdout: Optional[BinaryIO] = None,
    stderr: Optional[BinaryIO] = None,
) -> ExecOutcome:
    """Upload *script* as ``<stage>.<ext>`` and run it with the job's shell.

    A failing script is reported through the returned outcome, not
    raised; only connection and transfer problems raise.
    """
    shell = get_shell(run_config.shell)
    remote_path = shell.script_path(stage)

    client = dial_ssh(address, run_config.ssh, dial_timeout, deadline, debug=debug)
    try:
        debug.echo("uploading script %s", script)
        upload_script(client, script, remote_path)
        if debug.enabled:
            debug.dump_file(script)

        argv = shell.build_invocation(remote_path)
        debug.echo("executing %s", argv)
        outcome = run_command(
            client,
            argv,
            stdout or sys.stdout.buffer,
            stderr or sys.stderr.buffer,
        )
    finally:
        client.close()

    if outcome.signaled:
        logger.error("Command crashed with a signal")
    elif outcome.status:
        logger.error("Command exited with status %s", outcome.status)
    return outcome
