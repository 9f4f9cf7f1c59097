"""Accessors over a VirtualMachineInstance as returned by the API (a dict)."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

Instance = Dict[str, Any]


def name(vmi: Instance) -> str:
    return vmi.get("metadata", {}).get("name", "")


def resource_version(vmi: Instance) -> str:
    return vmi.get("metadata", {}).get("resourceVersion", "")


def annotations(vmi: Instance) -> Dict[str, str]:
    return vmi.get("metadata", {}).get("annotations") or {}


def phase(vmi: Instance) -> str:
    return (vmi.get("status") or {}).get("phase", "")


def node_name(vmi: Instance) -> str:
    return (vmi.get("status") or {}).get("nodeName", "")


def interfaces(vmi: Instance) -> List[Dict[str, Any]]:
    return (vmi.get("status") or {}).get("interfaces") or []


def address(vmi: Instance) -> Optional[str]:
    """IP address of the first network interface, if it has one yet."""
    ifaces = interfaces(vmi)
    if not ifaces:
        return None
    # Older KubeVirt releases reported the address as ``ip``.
    return ifaces[0].get("ipAddress") or ifaces[0].get("ip") or None


def has_condition(vmi: Instance, cond_type: str, status: str = "True") -> bool:
    """Whether the (unordered) condition list has *cond_type* at *status*."""
    for cond in (vmi.get("status") or {}).get("conditions") or []:
        if cond.get("type") == cond_type and cond.get("status") == status:
            return True
    return False


def is_ready(vmi: Instance) -> bool:
    """Ready means addressed AND reporting Ready=True.

    The network comes up before the guest agent reports readiness, so an
    address alone isn't enough.
    """
    return address(vmi) is not None and has_condition(vmi, "Ready", "True")
