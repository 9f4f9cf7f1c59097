"""Tests for exit code resolution and error messages."""

from __future__ import annotations

import pytest

from kubevirt_runner.errors import (
    BUILD_FAILURE_ENV,
    SYSTEM_FAILURE_ENV,
    BuildFailure,
    ControlPlaneError,
    InvalidResourceQuantity,
    build_failure_exit,
    resolve_exit_code,
    system_failure_exit,
)


class TestExitCodes:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv(SYSTEM_FAILURE_ENV, raising=False)
        monkeypatch.delenv(BUILD_FAILURE_ENV, raising=False)
        with pytest.raises(SystemExit) as sys_exit:
            system_failure_exit()
        assert sys_exit.value.code == 2
        with pytest.raises(SystemExit) as build_exit:
            build_failure_exit()
        assert build_exit.value.code == 1

    def test_override(self, monkeypatch):
        monkeypatch.setenv(BUILD_FAILURE_ENV, "42")
        assert resolve_exit_code(BUILD_FAILURE_ENV, 1) == 42

    def test_invalid_override_reported(self, monkeypatch, capsys):
        monkeypatch.setenv(SYSTEM_FAILURE_ENV, "two")
        assert resolve_exit_code(SYSTEM_FAILURE_ENV, 2) == 2
        assert "SYSTEM_FAILURE_EXIT_CODE=two is not a valid exit code" in capsys.readouterr().err


class TestMessages:
    def test_control_plane_error(self):
        err = ControlPlaneError("creating", 409, "already exists")
        assert str(err) == "creating Virtual Machine instance: (409) already exists"

    def test_resource_quantity(self):
        err = InvalidResourceQuantity("ephemeral-storage", "request", "ten", "Invalid number format: ten")
        assert str(err).startswith("invalid ephemeral-storage request quantity 'ten'")

    def test_build_failure(self):
        assert str(BuildFailure(3)) == "Command exited with status 3"
        assert "signal" in str(BuildFailure(None, signaled=True))
