"""Shared test fixtures for gitlab-runner-kubevirt."""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

import pytest

from kubevirt_runner.identity import JobContext, digest
from kubevirt_runner.kube import ID_LABEL
from kubevirt_runner.models import RUN_CONFIG_ANNOTATION, RunConfig, ShellKind, SSHConfig


def make_vmi(
    name: str = "runner-1-project-2-concurrent-0-abcde",
    identity: str = "deadbeef",
    phase: str = "Running",
    ip: Optional[str] = "10.0.0.7",
    ready: bool = True,
    resource_version: str = "100",
    run_config: Optional[RunConfig] = None,
) -> Dict[str, Any]:
    """Build a VirtualMachineInstance dict the way the API returns it."""
    status: Dict[str, Any] = {"phase": phase, "nodeName": "node-a"}
    if ip is not None:
        status["interfaces"] = [{"name": "default", "ipAddress": ip}]
    status["conditions"] = [
        {"type": "LiveMigratable", "status": "False"},
        {"type": "Ready", "status": "True" if ready else "False"},
    ]
    annotations = {}
    if run_config is not None:
        annotations[RUN_CONFIG_ANNOTATION] = run_config.to_annotation()
    return {
        "apiVersion": "kubevirt.io/v1",
        "kind": "VirtualMachineInstance",
        "metadata": {
            "name": name,
            "namespace": "gitlab-runner",
            "resourceVersion": resource_version,
            "labels": {ID_LABEL: identity},
            "annotations": annotations,
        },
        "status": status,
    }


def event(kind: str, obj: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return {"type": kind, "object": obj or {}}


class FakeVMIClient:
    """In-memory stand-in for VMIClient.

    ``streams`` is consumed one list per watch() call; once exhausted,
    every further subscription yields nothing.
    """

    def __init__(
        self,
        items: Optional[List[Dict[str, Any]]] = None,
        streams: Optional[Iterable[List[Dict[str, Any]]]] = None,
    ) -> None:
        self.items = list(items or [])
        self.streams = list(streams or [])
        self.created: List[Dict[str, Any]] = []
        self.deleted: List[str] = []
        self.watch_calls: List[Dict[str, Any]] = []
        self.delete_result = True

    def list(self, namespace: str, label_selector: str) -> List[Dict[str, Any]]:
        return list(self.items)

    def create(self, namespace: str, body: Dict[str, Any]) -> Dict[str, Any]:
        self.created.append(body)
        vmi = dict(body)
        vmi["metadata"] = dict(body["metadata"], name=body["metadata"]["generateName"] + "x1y2z", resourceVersion="1")
        vmi["status"] = {}
        return vmi

    def delete(self, namespace: str, name: str) -> bool:
        self.deleted.append(name)
        return self.delete_result

    def watch(self, namespace: str, label_selector: str, resource_version: str, timeout: float):
        self.watch_calls.append({
            "namespace": namespace,
            "label_selector": label_selector,
            "resource_version": resource_version,
        })
        if self.streams:
            yield from self.streams.pop(0)


@pytest.fixture
def run_config() -> RunConfig:
    return RunConfig(shell=ShellKind.BASH, ssh=SSHConfig(user="ci", password="hunter2"))


@pytest.fixture
def job() -> JobContext:
    return JobContext(
        id=digest("r1", "p1", "c1", "j1"),
        base_name="runner-r1-project-p1-concurrent-c1-",
        namespace="gitlab-runner",
        image="img:latest",
    )
