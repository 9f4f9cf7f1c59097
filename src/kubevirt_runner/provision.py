"""
Provisioner — create the job's VirtualMachineInstance and wait for it.

The instance boots from a containerdisk (the job image) and carries:
- the job identity as a label, so later stages can find it
- the run configuration as an annotation, so later stages run scripts
  the way this stage set the machine up
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from kubernetes.utils import parse_quantity

from .debug import DISABLED, Debug
from .errors import InstanceVanished, InvalidResourceQuantity, MissingImage
from .identity import JobContext
from .instance import Instance, is_ready, name, resource_version
from .kube import GROUP, ID_LABEL, KIND, VERSION, VMIClient
from .models import RUN_CONFIG_ANNOTATION, RunConfig
from .timing import Deadline
from .watcher import CONTINUE, DONE, ErrorEvent, EventKind, Verdict, WatchEvent, watch_job_vm

logger = logging.getLogger(__name__)

# (resource name, bound, JobContext field)
_RESOURCE_FIELDS = (
    ("cpu", "request", "cpu_request"),
    ("cpu", "limit", "cpu_limit"),
    ("memory", "request", "memory_request"),
    ("memory", "limit", "memory_limit"),
    ("ephemeral-storage", "request", "ephemeral_storage_request"),
    ("ephemeral-storage", "limit", "ephemeral_storage_limit"),
)


def build_resources(ctx: JobContext) -> Dict[str, Dict[str, str]]:
    """Resource requests/limits for the instance domain.

    An empty value means "leave that bound unset", so it is left out of
    the map entirely rather than sent as zero.

    Raises:
        InvalidResourceQuantity: A value isn't a Kubernetes quantity.
    """
    resources: Dict[str, Dict[str, str]] = {"requests": {}, "limits": {}}
    for resource, bound, attr in _RESOURCE_FIELDS:
        value = getattr(ctx, attr)
        if not value:
            continue
        try:
            parse_quantity(value)
        except ValueError as exc:
            raise InvalidResourceQuantity(resource, bound, value, str(exc)) from exc
        resources[f"{bound}s"][resource] = value
    return resources


def build_manifest(ctx: JobContext, run_config: RunConfig) -> Dict[str, Any]:
    """Build the VirtualMachineInstance body for *ctx*.

    Raises:
        MissingImage: No image was configured.
        InvalidResourceQuantity: See ``build_resources``.
    """
    if not ctx.image:
        raise MissingImage()

    resources = build_resources(ctx)

    container_disk: Dict[str, Any] = {"image": ctx.image}
    if ctx.image_pull_policy:
        container_disk["imagePullPolicy"] = ctx.image_pull_policy
    if ctx.image_pull_secret:
        container_disk["imagePullSecret"] = ctx.image_pull_secret

    domain: Dict[str, Any] = {
        "resources": resources,
        "devices": {"disks": [{"name": "root"}]},
    }
    if ctx.machine_type:
        domain["machine"] = {"type": ctx.machine_type}
    if ctx.timezone:
        domain["clock"] = {"timezone": ctx.timezone}

    return {
        "apiVersion": f"{GROUP}/{VERSION}",
        "kind": KIND,
        "metadata": {
            "generateName": ctx.base_name,
            "labels": {ID_LABEL: ctx.id},
            "annotations": {RUN_CONFIG_ANNOTATION: run_config.to_annotation()},
        },
        "spec": {
            "domain": domain,
            "volumes": [{"name": "root", "containerDisk": container_disk}],
        },
    }


def create_job_vm(vmis: VMIClient, ctx: JobContext, run_config: RunConfig) -> Instance:
    """Submit the job's instance and return it as created by the server."""
    body = build_manifest(ctx, run_config)
    logger.info("Creating Virtual Machine instance")
    return vmis.create(ctx.namespace, body)


def wait_until_ready(
    vmis: VMIClient,
    ctx: JobContext,
    created: Instance,
    deadline: Deadline,
    debug: Debug = DISABLED,
) -> Instance:
    """Block until the new instance is addressed and Ready.

    Watch errors are survived: the watcher resyncs and keeps waiting
    until the deadline.

    Raises:
        WatchTimeout: Not ready before the deadline.
        InstanceVanished: The instance got deleted while we waited.
    """
    latest: Dict[str, Optional[Instance]] = {"vmi": created}

    def until_ready(event: WatchEvent) -> Verdict:
        if isinstance(event, ErrorEvent):
            return CONTINUE
        if event.kind is EventKind.DELETED:
            return Verdict.fail(InstanceVanished(
                f"Virtual Machine instance {name(event.instance)} was deleted "
                f"before it became ready"
            ))
        latest["vmi"] = event.instance
        return DONE if is_ready(event.instance) else CONTINUE

    if is_ready(created):
        return created

    logger.info("Waiting for Virtual Machine instance %s to be ready...", name(created))
    watch_job_vm(
        vmis, ctx.namespace, ctx.id, resource_version(created), deadline, until_ready, debug=debug,
    )
    return latest["vmi"] or created
