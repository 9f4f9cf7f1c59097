"""
Job identity — which virtual machine belongs to which CI job.

The four stages of a job run as unrelated processes. The only thing
they can all compute independently is a digest of the job coordinates
GitLab hands them in the environment; that digest is the label that
ties a job to its instance.
"""

from __future__ import annotations

import hashlib
import os
import struct
from typing import Callable, Mapping, Optional, Union

from pydantic import BaseModel

# Per-job overrides a pipeline can set as CI variables (GitLab passes job
# variables to custom executors prefixed with CUSTOM_ENV_).
JOB_OVERRIDE_ENV = {
    "cpu_request": "CUSTOM_ENV_VM_CPU_REQUEST",
    "cpu_limit": "CUSTOM_ENV_VM_CPU_LIMIT",
    "memory_request": "CUSTOM_ENV_VM_MEMORY_REQUEST",
    "memory_limit": "CUSTOM_ENV_VM_MEMORY_LIMIT",
    "ephemeral_storage_request": "CUSTOM_ENV_VM_EPHEMERAL_STORAGE_REQUEST",
    "ephemeral_storage_limit": "CUSTOM_ENV_VM_EPHEMERAL_STORAGE_LIMIT",
    "image_pull_policy": "CUSTOM_ENV_VM_IMAGE_PULL_POLICY",
    "machine_type": "CUSTOM_ENV_VM_MACHINE_TYPE",
    "timezone": "CUSTOM_ENV_VM_TIMEZONE",
}

_U64 = struct.Struct(">Q")


def digest(*fields: Union[str, bytes], hashfunc: Callable = hashlib.sha1) -> str:
    """Hash an ordered list of fields into a hex identity.

    The field count and each field's byte length are hashed ahead of the
    content, so ``("ab", "c")`` and ``("a", "bc")`` never collide.

    Args:
        *fields: Values to hash, in order. ``str`` is encoded as UTF-8.
        hashfunc: hashlib constructor (default SHA-1).

    Returns:
        str: Hex digest.
    """
    h = hashfunc()
    h.update(_U64.pack(len(fields)))
    for field in fields:
        data = field.encode("utf-8") if isinstance(field, str) else bytes(field)
        h.update(_U64.pack(len(data)))
        h.update(data)
    return h.hexdigest()


class JobContext(BaseModel):
    """Working configuration of one CI job inside one stage process."""

    id: str
    base_name: str
    namespace: str = "gitlab-runner"
    image: str = ""
    image_pull_policy: str = ""
    image_pull_secret: str = ""
    machine_type: str = ""
    timezone: str = ""

    cpu_request: str = ""
    cpu_limit: str = ""
    memory_request: str = ""
    memory_limit: str = ""
    ephemeral_storage_request: str = ""
    ephemeral_storage_limit: str = ""

    def apply_defaults(self, **defaults: Optional[str]) -> "JobContext":
        """Fill every empty field with the operator's default.

        Values the job already set win. Unknown keys raise ``KeyError``.

        Returns:
            JobContext: A new context; ``self`` is left untouched.
        """
        updates = {}
        for key, value in defaults.items():
            if key not in type(self).model_fields:
                raise KeyError(key)
            if not getattr(self, key) and value:
                updates[key] = value
        return self.model_copy(update=updates)


def job_context(
    runner_id: str,
    project_id: str,
    concurrent_id: str,
    job_id: str,
    image: str = "",
    namespace: str = "gitlab-runner",
    environ: Optional[Mapping[str, str]] = None,
) -> JobContext:
    """Build the JobContext for the current job.

    Args:
        runner_id: CI_RUNNER_ID.
        project_id: CI_PROJECT_ID.
        concurrent_id: CI_CONCURRENT_PROJECT_ID.
        job_id: CI_JOB_ID.
        image: Job image (containerdisk reference).
        namespace: Kubernetes namespace for the instance.
        environ: Where to read per-job overrides (default os.environ).
    """
    env = os.environ if environ is None else environ
    overrides = {
        field: env[name] for field, name in JOB_OVERRIDE_ENV.items() if env.get(name)
    }
    return JobContext(
        id=digest(runner_id, project_id, concurrent_id, job_id),
        base_name=f"runner-{runner_id}-project-{project_id}-concurrent-{concurrent_id}-",
        namespace=namespace,
        image=image or "",
        **overrides,
    )
