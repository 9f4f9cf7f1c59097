"""
Shell strategies — how a job script is named and invoked remotely.

POSIX shells just get the script path. PowerShell gets the whole
invocation as one ``-EncodedCommand`` block: the SSH transport and the
Windows console mangle raw UTF-8 scripts, so the block (UTF-8 console
setup, the script call, exit code propagation) travels as base64 of
UTF-16LE text, which is what ``-EncodedCommand`` expects.
"""

from __future__ import annotations

import base64
from typing import Dict, List

from .models import ShellKind


class Shell:
    """A shell the job scripts are written for."""

    kind: ShellKind

    @property
    def name(self) -> str:
        return self.kind.value

    def extension(self) -> str:
        raise NotImplementedError

    def build_invocation(self, script_path: str) -> List[str]:
        """Argument vector that runs *script_path* on the target."""
        raise NotImplementedError

    def script_path(self, stage: str) -> str:
        """Remote path the script for *stage* is uploaded to."""
        return f"{stage}.{self.extension()}"


class PosixShell(Shell):
    """bash, sh: ``<shell> <script>``."""

    def __init__(self, kind: ShellKind) -> None:
        self.kind = kind

    def extension(self) -> str:
        return self.name

    def build_invocation(self, script_path: str) -> List[str]:
        return [self.name, script_path]


class PowerShell(Shell):
    """pwsh (PowerShell Core) or powershell (Windows PowerShell)."""

    def __init__(self, kind: ShellKind) -> None:
        self.kind = kind

    def extension(self) -> str:
        return "ps1"

    def command_block(self, script_path: str) -> str:
        return (
            "$OutputEncoding = [console]::InputEncoding = [console]::OutputEncoding"
            " = New-Object System.Text.UTF8Encoding\r\n"
            f"{self.name} -File {script_path}\r\n"
            "exit $LASTEXITCODE\r\n"
        )

    def encode(self, block: str) -> str:
        return base64.b64encode(block.encode("utf-16-le")).decode("ascii")

    def build_invocation(self, script_path: str) -> List[str]:
        return [
            self.name,
            "-NoProfile",
            "-NoLogo",
            "-InputFormat", "text",
            "-OutputFormat", "text",
            "-NonInteractive",
            "-ExecutionPolicy", "Bypass",
            "-EncodedCommand", self.encode(self.command_block(script_path)),
        ]


SHELLS: Dict[ShellKind, Shell] = {
    ShellKind.BASH: PosixShell(ShellKind.BASH),
    ShellKind.SH: PosixShell(ShellKind.SH),
    ShellKind.PWSH: PowerShell(ShellKind.PWSH),
    ShellKind.POWERSHELL: PowerShell(ShellKind.POWERSHELL),
}


def get_shell(kind: ShellKind) -> Shell:
    """Look up the strategy for *kind*.

    Raises:
        ValueError: Unsupported shell.
    """
    try:
        return SHELLS[ShellKind(kind)]
    except (KeyError, ValueError):
        raise ValueError(f"Unsupported shell: {kind}") from None
