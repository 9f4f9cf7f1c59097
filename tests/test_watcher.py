"""Tests for the reconciliation watcher.

Covers event parsing, resubscription after dropped streams, the
caller-chosen error policies, predicate failures and deadlines.
"""

from __future__ import annotations

from typing import List
from unittest.mock import patch

import pytest

from conftest import FakeVMIClient, event, make_vmi

from kubevirt_runner.errors import WatchTimeout
from kubevirt_runner.kube import selector
from kubevirt_runner.timing import Deadline
from kubevirt_runner.watcher import (
    CONTINUE,
    DONE,
    RESYNC,
    ErrorEvent,
    EventKind,
    InstanceEvent,
    Step,
    Verdict,
    parse_event,
    watch_job_vm,
)


@pytest.fixture(autouse=True)
def no_sleep():
    with patch("kubevirt_runner.watcher.time.sleep") as mock_sleep:
        yield mock_sleep


def _cursors(vmis: FakeVMIClient) -> List[str]:
    return [c["resource_version"] for c in vmis.watch_calls]


class FakeClock:
    def __init__(self, step: float = 1.0) -> None:
        self.now = 0.0
        self.step = step

    def __call__(self) -> float:
        self.now += self.step
        return self.now


# ---------------------------------------------------------------------------
# Event parsing
# ---------------------------------------------------------------------------


class TestParseEvent:
    @pytest.mark.parametrize("kind", ["ADDED", "MODIFIED", "DELETED"])
    def test_instance_events(self, kind):
        vmi = make_vmi()
        parsed = parse_event(event(kind, vmi))
        assert isinstance(parsed, InstanceEvent)
        assert parsed.kind is EventKind(kind)
        assert parsed.instance is vmi

    def test_error_event(self):
        parsed = parse_event(event("ERROR", {"reason": "Expired", "message": "too old", "code": 410}))
        assert isinstance(parsed, ErrorEvent)
        assert parsed.kind is EventKind.ERROR
        assert parsed.instance is None
        assert parsed.reason == "Expired"
        assert parsed.message == "too old"
        assert parsed.code == 410

    @pytest.mark.parametrize("raw", [{}, {"type": ""}, {"type": "SURPRISE", "object": {}}])
    def test_unusable_events(self, raw):
        assert parse_event(raw) is None


class TestVerdict:
    def test_fail_carries_error(self):
        err = RuntimeError("x")
        verdict = Verdict.fail(err)
        assert verdict.step is Step.FAIL
        assert verdict.error is err

    def test_constants(self):
        assert CONTINUE.step is Step.CONTINUE
        assert DONE.step is Step.DONE


# ---------------------------------------------------------------------------
# Watch loop
# ---------------------------------------------------------------------------


class TestWatchLoop:
    def test_done_on_first_match(self):
        ready = make_vmi(resource_version="5")
        vmis = FakeVMIClient(streams=[[event("MODIFIED", ready)]])

        result = watch_job_vm(vmis, "ns", "id", "1", Deadline(60), lambda e: DONE)

        assert result is ready
        assert vmis.watch_calls == [
            {"namespace": "ns", "label_selector": selector("id"), "resource_version": "1"},
        ]

    def test_predicate_sees_every_event(self):
        seen = []
        events = [
            event("ADDED", make_vmi(resource_version="2", ready=False)),
            event("MODIFIED", make_vmi(resource_version="3", ready=False)),
            event("MODIFIED", make_vmi(resource_version="4", ready=True)),
        ]
        vmis = FakeVMIClient(streams=[events])

        def predicate(e):
            seen.append(e.kind)
            return DONE if e.instance["metadata"]["resourceVersion"] == "4" else CONTINUE

        watch_job_vm(vmis, "ns", "id", "1", Deadline(60), predicate)
        assert seen == [EventKind.ADDED, EventKind.MODIFIED, EventKind.MODIFIED]

    def test_closed_stream_resubscribes_from_last_cursor(self, no_sleep):
        vmis = FakeVMIClient(streams=[
            [event("MODIFIED", make_vmi(resource_version="7", ready=False))],
            [],
            [event("MODIFIED", make_vmi(resource_version="9"))],
        ])
        result = watch_job_vm(
            vmis, "ns", "id", "1", Deadline(60),
            lambda e: DONE if e.instance["metadata"]["resourceVersion"] == "9" else CONTINUE,
        )
        assert result["metadata"]["resourceVersion"] == "9"
        assert _cursors(vmis) == ["1", "7", "7"]
        assert no_sleep.called

    def test_typeless_event_resubscribes(self):
        vmis = FakeVMIClient(streams=[
            [{"type": "", "object": None}, event("MODIFIED", make_vmi())],
            [event("MODIFIED", make_vmi(resource_version="3"))],
        ])
        calls = []

        def predicate(e):
            calls.append(e)
            return DONE

        watch_job_vm(vmis, "ns", "id", "1", Deadline(60), predicate)
        assert len(calls) == 1
        assert _cursors(vmis) == ["1", "1"]

    def test_bookmark_advances_cursor(self):
        vmis = FakeVMIClient(streams=[
            [event("BOOKMARK", {"metadata": {"resourceVersion": "50"}})],
            [event("DELETED", make_vmi())],
        ])
        watch_job_vm(vmis, "ns", "id", "1", Deadline(60), lambda e: DONE)
        assert _cursors(vmis) == ["1", "50"]

    def test_resubscribe_backoff_is_capped(self, no_sleep):
        vmis = FakeVMIClient(streams=[[]] * 10 + [[event("MODIFIED", make_vmi())]])
        watch_job_vm(vmis, "ns", "id", "1", Deadline(600), lambda e: DONE)
        delays = [c.args[0] for c in no_sleep.call_args_list]
        assert delays[0] == pytest.approx(0.1)
        assert max(delays) <= 2.0
        assert delays == sorted(delays)


class TestErrorPolicies:
    """The caller decides what a watch error means."""

    def _error(self):
        return event("ERROR", {"reason": "InternalError", "message": "etcd hiccup", "code": 500})

    def test_resync_policy_resets_cursor(self):
        vmis = FakeVMIClient(streams=[
            [event("MODIFIED", make_vmi(resource_version="4", ready=False)), self._error()],
            [event("MODIFIED", make_vmi(resource_version="8"))],
        ])

        def tolerant(e):
            if isinstance(e, ErrorEvent):
                return CONTINUE
            return DONE if e.instance["metadata"]["resourceVersion"] == "8" else CONTINUE

        result = watch_job_vm(vmis, "ns", "id", "1", Deadline(60), tolerant)
        assert result["metadata"]["resourceVersion"] == "8"
        assert _cursors(vmis) == ["1", RESYNC]

    def test_repeated_errors_are_paced(self, no_sleep):
        vmis = FakeVMIClient(streams=[[self._error()]] * 6 + [[event("MODIFIED", make_vmi())]])

        def tolerant(e):
            return CONTINUE if isinstance(e, ErrorEvent) else DONE

        watch_job_vm(vmis, "ns", "id", "1", Deadline(600), tolerant)

        delays = [c.args[0] for c in no_sleep.call_args_list]
        assert len(delays) == 6
        assert delays[0] == pytest.approx(0.1)
        assert delays == sorted(delays)
        assert max(delays) <= 2.0
        assert _cursors(vmis) == ["1"] + [RESYNC] * 6

    def test_abandon_policy_returns_immediately(self):
        vmis = FakeVMIClient(streams=[
            [self._error(), event("DELETED", make_vmi())],
        ])
        seen = []

        def abandon(e):
            seen.append(e)
            return DONE if isinstance(e, ErrorEvent) else CONTINUE

        assert watch_job_vm(vmis, "ns", "id", "1", Deadline(60), abandon) is None
        assert len(seen) == 1
        assert len(vmis.watch_calls) == 1

    def test_error_is_logged(self, caplog):
        vmis = FakeVMIClient(streams=[[self._error()]])
        with caplog.at_level("WARNING"):
            watch_job_vm(vmis, "ns", "id", "1", Deadline(60), lambda e: DONE)
        assert "etcd hiccup" in caplog.text


class TestFailuresAndDeadlines:
    def test_fail_verdict_raises(self):
        vmis = FakeVMIClient(streams=[[event("DELETED", make_vmi())]])
        with pytest.raises(LookupError, match="gone"):
            watch_job_vm(vmis, "ns", "id", "1", Deadline(60), lambda e: Verdict.fail(LookupError("gone")))

    def test_deadline_expiry(self):
        vmis = FakeVMIClient()
        deadline = Deadline(5, clock=FakeClock())
        with pytest.raises(WatchTimeout, match="timed out"):
            watch_job_vm(vmis, "ns", "id", "1", deadline, lambda e: CONTINUE)
        assert 0 < len(vmis.watch_calls) < 10

    def test_already_expired(self):
        vmis = FakeVMIClient(streams=[[event("MODIFIED", make_vmi())]])
        deadline = Deadline(0)
        with pytest.raises(WatchTimeout):
            watch_job_vm(vmis, "ns", "id", "1", deadline, lambda e: DONE)
        assert vmis.watch_calls == []
