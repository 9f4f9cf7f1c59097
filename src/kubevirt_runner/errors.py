"""
Failure classes and process exit codes.

GitLab Runner tells a custom executor's failures apart by exit code:
a *system failure* means the infrastructure broke (the job may be
retried), a *build failure* means the job's own script failed. Both
codes can be overridden through the environment.
"""

from __future__ import annotations

import os
import sys
from typing import Optional

SYSTEM_FAILURE_ENV = "SYSTEM_FAILURE_EXIT_CODE"
BUILD_FAILURE_ENV = "BUILD_FAILURE_EXIT_CODE"
SYSTEM_FAILURE_DEFAULT = 2
BUILD_FAILURE_DEFAULT = 1


class RunnerError(Exception):
    """Base class for system failures: anything that isn't the job's fault."""


class ControlPlaneError(RunnerError):
    """The Kubernetes API rejected or failed a request."""

    def __init__(self, operation: str, status: Optional[int], reason: str) -> None:
        self.operation = operation
        self.status = status
        self.reason = reason
        super().__init__(f"{operation} Virtual Machine instance: ({status}) {reason}")


class InstanceVanished(RunnerError):
    """The job's instance no longer exists."""

    def __init__(self, message: str = "Virtual Machine instance disappeared while the job was running!") -> None:
        super().__init__(message)


class AmbiguousIdentity(RunnerError):
    """More than one instance carries the job's identity label."""

    def __init__(self, count: int, identity: str) -> None:
        self.count = count
        self.identity = identity
        super().__init__(
            f"Virtual Machine instance has ambiguous ID! "
            f"{count} instances found with ID {identity}"
        )


class MissingImage(RunnerError):
    """No containerdisk image was given by the job or the operator."""

    def __init__(self) -> None:
        super().__init__("must specify a containerdisk image")


class InvalidResourceQuantity(RunnerError):
    """A CPU/memory/storage request or limit could not be parsed."""

    def __init__(self, resource: str, bound: str, value: str, detail: str) -> None:
        self.resource = resource
        self.bound = bound
        self.value = value
        super().__init__(f"invalid {resource} {bound} quantity {value!r}: {detail}")


class InvalidRunConfig(RunnerError):
    """The run configuration stored on the instance is missing or malformed."""


class InstanceNotRunning(RunnerError):
    """The instance exists but can't take commands."""


class WatchTimeout(RunnerError):
    """The deadline passed before the watched instance reached the wanted state."""


class ConnectError(RunnerError):
    """SSH handshake or authentication failed; retrying won't help."""


class ConnectTimeout(RunnerError):
    """The machine stayed unreachable until the retry deadline."""


class Cancelled(RunnerError):
    """The stage was cancelled from outside (e.g. SIGTERM from the runner)."""


class BuildFailure(Exception):
    """The job's script ran and failed on the virtual machine."""

    def __init__(self, status: Optional[int], signaled: bool = False) -> None:
        self.status = status
        self.signaled = signaled
        if signaled:
            message = "Command was terminated by a signal"
        else:
            message = f"Command exited with status {status}"
        super().__init__(message)


def resolve_exit_code(env: str, default: int) -> int:
    """Return the exit code configured in *env*, or *default*.

    An unparseable override is reported on stderr and ignored.
    """
    raw = os.environ.get(env, "")
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        print(f"{env}={raw} is not a valid exit code: {exc}", file=sys.stderr)
        return default


def system_failure_exit() -> None:
    sys.exit(resolve_exit_code(SYSTEM_FAILURE_ENV, SYSTEM_FAILURE_DEFAULT))


def build_failure_exit() -> None:
    sys.exit(resolve_exit_code(BUILD_FAILURE_ENV, BUILD_FAILURE_DEFAULT))
