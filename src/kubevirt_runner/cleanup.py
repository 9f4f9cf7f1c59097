"""
Deprovisioner — delete the job's instance and wait for it to go away.

Operators can keep machines around for debugging with phase predicates
(``--skip-if Failed``, ``--skip-if '!Succeeded'``...).
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from .debug import DISABLED, Debug
from .instance import name, phase, resource_version
from .kube import VMIClient, find_job_vm
from .timing import Deadline
from .watcher import CONTINUE, DONE, ErrorEvent, EventKind, Verdict, WatchEvent, watch_job_vm

logger = logging.getLogger(__name__)


def should_skip(current_phase: str, predicates: Iterable[str]) -> Optional[str]:
    """Return the first predicate matching *current_phase*, if any.

    ``"Failed"`` matches phase Failed; ``"!Failed"`` matches any other phase.
    """
    for predicate in predicates:
        predicate = predicate.strip()
        if not predicate:
            continue
        if predicate.startswith("!"):
            if current_phase != predicate[1:]:
                return predicate
        elif current_phase == predicate:
            return predicate
    return None


def until_deleted(event: WatchEvent) -> Verdict:
    """Deletion policy: done on DELETED, and give up on any watch error.

    Retrying like provisioning does could block forever: the instance may
    already be gone and no event would ever say so.
    """
    if isinstance(event, ErrorEvent):
        logger.warning("Couldn't wait for Virtual Machine instance to go away, abandoning it")
        return DONE
    if event.kind is EventKind.DELETED:
        return DONE
    return CONTINUE


def cleanup_job_vm(
    vmis: VMIClient,
    namespace: str,
    identity: str,
    skip_if: Iterable[str],
    deadline: Deadline,
    debug: Debug = DISABLED,
) -> bool:
    """Delete the job's instance unless a skip predicate matches.

    Returns:
        bool: False if deletion was skipped.

    Raises:
        InstanceVanished, AmbiguousIdentity: From the lookup.
        WatchTimeout: Still present at the deadline.
    """
    vmi = find_job_vm(vmis, namespace, identity)
    vmi_name = name(vmi)

    matched = should_skip(phase(vmi), skip_if)
    if matched is not None:
        logger.info(
            "Skipping cleanup of Virtual Machine instance %s because of --skip-if=%s",
            vmi_name, matched,
        )
        return False

    logger.info("Deleting Virtual Machine instance %s", vmi_name)
    if not vmis.delete(namespace, vmi_name):
        logger.info("Virtual Machine instance %s was already gone", vmi_name)
        return True

    watch_job_vm(
        vmis, namespace, identity, resource_version(vmi), deadline, until_deleted, debug=debug,
    )
    return True
