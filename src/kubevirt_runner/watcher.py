"""
Reconciliation watcher — follow one job's instance through the watch API.

The watcher only consumes events; it never mutates the instance. What
counts as "done", and what to do about a watch error, is the caller's
call, expressed by the ``Verdict`` its predicate returns:

- provisioning keeps waiting through errors (a lost stream says nothing
  about a machine that is still being created)
- deletion gives up on the first error (the machine may already be gone,
  and nothing would ever tell us)

Dropped connections and typeless events are routine and are absorbed by
resubscribing from the last seen resource version.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional, Union

from tenacity import Retrying, retry_if_exception_type, wait_exponential

from .debug import DISABLED, Debug
from .errors import WatchTimeout
from .instance import Instance, resource_version
from .kube import VMIClient, selector
from .timing import Deadline, format_seconds, wait_within_deadline

logger = logging.getLogger(__name__)

# Resource version meaning "start over from current state".
RESYNC = "0"

_RESUBSCRIBE_DELAY = 0.1
_RESUBSCRIBE_DELAY_MAX = 2.0


class EventKind(str, Enum):
    """Watch event types carried by the API."""

    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"
    ERROR = "ERROR"


@dataclass(frozen=True)
class InstanceEvent:
    """The instance was added, modified or deleted."""

    kind: EventKind
    instance: Instance


@dataclass(frozen=True)
class ErrorEvent:
    """The API server reported an error on the stream (a Status object)."""

    status: Dict[str, Any] = field(default_factory=dict)
    kind: EventKind = EventKind.ERROR
    instance: None = None

    @property
    def reason(self) -> str:
        return str(self.status.get("reason", ""))

    @property
    def message(self) -> str:
        return str(self.status.get("message", ""))

    @property
    def code(self) -> Optional[int]:
        return self.status.get("code")


WatchEvent = Union[InstanceEvent, ErrorEvent]


class Step(str, Enum):
    CONTINUE = "continue"
    DONE = "done"
    FAIL = "fail"


@dataclass(frozen=True)
class Verdict:
    """What the watcher should do after an event."""

    step: Step
    error: Optional[BaseException] = None

    @classmethod
    def fail(cls, error: BaseException) -> "Verdict":
        return cls(Step.FAIL, error)


CONTINUE = Verdict(Step.CONTINUE)
DONE = Verdict(Step.DONE)

Predicate = Callable[[WatchEvent], Verdict]


def parse_event(raw: Dict[str, Any]) -> Optional[WatchEvent]:
    """Turn a raw watch event into a typed one.

    Returns None for events without a usable type (BOOKMARK included);
    the caller decides whether that's worth a resubscribe.
    """
    kind = raw.get("type") or ""
    obj = raw.get("object") or {}
    if kind == EventKind.ERROR.value:
        return ErrorEvent(status=obj)
    try:
        event_kind = EventKind(kind)
    except ValueError:
        return None
    return InstanceEvent(kind=event_kind, instance=obj)


class _Resubscribe(Exception):
    """The current subscription is over; open a new one from the cursor."""


def watch_job_vm(
    vmis: VMIClient,
    namespace: str,
    identity: str,
    cursor: str,
    deadline: Deadline,
    on_event: Predicate,
    debug: Debug = DISABLED,
) -> Optional[Instance]:
    """Feed the job instance's events to *on_event* until it says DONE.

    Every new subscription (closed stream, unusable event, resync after an
    error) waits a little first, exponentially longer each time up to a
    cap, so an unstable API server can't turn this into a busy loop.

    Args:
        vmis: VMI API client.
        namespace: Namespace of the instance.
        identity: Job identity (label value).
        cursor: Resource version to resume from ("" or RESYNC to start fresh).
        deadline: When to give up.
        on_event: Predicate returning CONTINUE, DONE or Verdict.fail(exc).
        debug: Diagnostic sink.

    Returns:
        The last instance seen in an event, if any.

    Raises:
        WatchTimeout: The deadline passed first.
        ControlPlaneError: The subscription itself couldn't be opened.
        Exception: Whatever a FAIL verdict carried.
    """
    label_selector = selector(identity)
    state: Dict[str, Any] = {"cursor": cursor, "last": None}

    def subscribe() -> Optional[Instance]:
        if deadline.expired():
            raise WatchTimeout(
                f"timed out after {format_seconds(deadline.seconds)} "
                f"waiting on Virtual Machine instance {identity}"
            )

        debug.echo("watching %s in %s from resource version %r", label_selector, namespace, state["cursor"])
        stream = vmis.watch(namespace, label_selector, state["cursor"], deadline.remaining())
        try:
            for raw in stream:
                if raw.get("type") == "BOOKMARK":
                    state["cursor"] = resource_version(raw.get("object") or {}) or state["cursor"]
                    continue

                event = parse_event(raw)
                if event is None:
                    raise _Resubscribe("unusable watch event")

                if isinstance(event, ErrorEvent):
                    logger.warning(
                        "Error watching Virtual Machine instance, retrying. Reason: %s, Message: %s",
                        event.reason, event.message,
                    )
                    verdict = on_event(event)
                    if verdict.step is Step.CONTINUE:
                        state["cursor"] = RESYNC
                        raise _Resubscribe(event.reason or "watch error")
                    return _conclude(verdict, state["last"])

                state["last"] = event.instance
                verdict = on_event(event)
                if verdict.step is not Step.CONTINUE:
                    return _conclude(verdict, state["last"])
                state["cursor"] = resource_version(event.instance) or state["cursor"]

                if deadline.expired():
                    break
        finally:
            stream.close()
        raise _Resubscribe("watch stream closed")

    # No stop strategy: the deadline check at the top of each subscription
    # ends the loop with WatchTimeout.
    retrying = Retrying(
        retry=retry_if_exception_type(_Resubscribe),
        wait=wait_within_deadline(
            deadline,
            wait_exponential(multiplier=_RESUBSCRIBE_DELAY, max=_RESUBSCRIBE_DELAY_MAX),
        ),
        sleep=time.sleep,
        reraise=True,
    )
    return retrying(subscribe)


def _conclude(verdict: Verdict, last: Optional[Instance]) -> Optional[Instance]:
    if verdict.step is Step.FAIL:
        raise verdict.error or RuntimeError("watch predicate failed")
    return last
