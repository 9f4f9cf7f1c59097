"""
KubeVirt access — cluster config, the VMI API and the instance locator.

Uses the official ``kubernetes`` client. KubeVirt instances are custom
resources, so they go through ``CustomObjectsApi`` and come back as
plain dicts (see ``instance`` for accessors).

Credentials:
- in-cluster service account when running as a pod
- otherwise the kubeconfig named by KUBECONFIG, or ~/.kube/config
"""

from __future__ import annotations

import json
import logging
import math
import os
from typing import Any, Dict, Iterator, List, Optional

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException
from kubernetes.watch.watch import iter_resp_lines
from urllib3.exceptions import HTTPError

from . import LABEL_PREFIX
from .errors import AmbiguousIdentity, ControlPlaneError, InstanceVanished
from .instance import Instance

logger = logging.getLogger(__name__)

GROUP = "kubevirt.io"
VERSION = "v1"
PLURAL = "virtualmachineinstances"
KIND = "VirtualMachineInstance"

ID_LABEL = f"{LABEL_PREFIX}/id"

_CONNECT_TIMEOUT = 10.0


def selector(identity: str) -> str:
    """Label selector matching the instance of job *identity*."""
    return f"{ID_LABEL}={identity}"


def load_cluster_config() -> None:
    """Load cluster credentials into the kubernetes client defaults."""
    try:
        config.load_incluster_config()
        logger.debug("Using in-cluster service account")
        return
    except ConfigException:
        pass
    config.load_kube_config(config_file=os.environ.get("KUBECONFIG") or None)


def _api_error(operation: str, exc: ApiException) -> ControlPlaneError:
    reason = exc.reason or ""
    if exc.body:
        try:
            reason = json.loads(exc.body).get("message") or reason
        except (ValueError, AttributeError):
            pass
    return ControlPlaneError(operation, exc.status, reason)


class VMIClient:
    """Thin wrapper over the VirtualMachineInstance endpoints.

    Args:
        api: A ``CustomObjectsApi``; built from the loaded cluster config
            when omitted.
    """

    def __init__(self, api: Optional[client.CustomObjectsApi] = None) -> None:
        self._api = api or client.CustomObjectsApi()

    @classmethod
    def from_environment(cls) -> "VMIClient":
        load_cluster_config()
        return cls()

    def list(self, namespace: str, label_selector: str) -> List[Instance]:
        try:
            result = self._api.list_namespaced_custom_object(
                GROUP, VERSION, namespace, PLURAL, label_selector=label_selector,
            )
        except ApiException as exc:
            raise _api_error("listing", exc) from exc
        return list(result.get("items") or [])

    def create(self, namespace: str, body: Dict[str, Any]) -> Instance:
        try:
            return self._api.create_namespaced_custom_object(
                GROUP, VERSION, namespace, PLURAL, body,
            )
        except ApiException as exc:
            raise _api_error("creating", exc) from exc

    def delete(self, namespace: str, name: str) -> bool:
        """Delete instance *name*.

        Returns:
            bool: False if it was already gone.
        """
        try:
            self._api.delete_namespaced_custom_object(
                GROUP, VERSION, namespace, PLURAL, name,
            )
        except ApiException as exc:
            if exc.status == 404:
                return False
            raise _api_error("deleting", exc) from exc
        return True

    def watch(
        self,
        namespace: str,
        label_selector: str,
        resource_version: str,
        timeout: float,
    ) -> Iterator[Dict[str, Any]]:
        """Yield raw watch events (``{"type": ..., "object": ...}``).

        The iterator simply ends when the server closes the stream, the
        read times out or the connection drops; the caller resubscribes.

        Raises:
            ControlPlaneError: If the subscription can't be opened.
        """
        kwargs: Dict[str, Any] = {
            "label_selector": label_selector,
            "watch": True,
            "timeout_seconds": max(1, math.ceil(timeout)),
            "_preload_content": False,
            "_request_timeout": (_CONNECT_TIMEOUT, max(1.0, timeout)),
        }
        if resource_version:
            kwargs["resource_version"] = resource_version
        try:
            resp = self._api.list_namespaced_custom_object(
                GROUP, VERSION, namespace, PLURAL, **kwargs,
            )
        except ApiException as exc:
            raise _api_error("watching", exc) from exc

        try:
            for line in iter_resp_lines(resp):
                if not line.strip():
                    continue
                try:
                    yield json.loads(line)
                except ValueError:
                    logger.debug("Discarding undecodable watch line: %r", line[:200])
        except HTTPError as exc:
            logger.debug("Watch stream interrupted: %s", exc)
        finally:
            resp.close()
            resp.release_conn()


def find_job_vm(vmis: VMIClient, namespace: str, identity: str) -> Instance:
    """Return the single instance labelled with *identity*.

    Raises:
        InstanceVanished: No instance has the label.
        AmbiguousIdentity: Several instances have it.
    """
    items = vmis.list(namespace, selector(identity))
    if not items:
        raise InstanceVanished()
    if len(items) > 1:
        raise AmbiguousIdentity(len(items), identity)
    return items[0]
