"""Diagnostic sink for ``--debug``.

Silent unless enabled. Components receive a ``Debug`` explicitly
instead of writing to a process-wide stream.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional, TextIO


class Debug:
    """Echoes connection attempts, script contents and remote argv.

    Args:
        stream: Where to write; ``None`` disables output.
    """

    def __init__(self, stream: Optional[TextIO] = None) -> None:
        self._stream = stream

    @classmethod
    def to_stderr(cls) -> "Debug":
        return cls(sys.stderr)

    @property
    def enabled(self) -> bool:
        return self._stream is not None

    def echo(self, message: str, *args: object) -> None:
        if self._stream is None:
            return
        self._stream.write((message % args if args else message) + "\n")
        self._stream.flush()

    def dump_file(self, path: Path) -> None:
        """Write the contents of *path*, framed, or the read error."""
        if self._stream is None:
            return
        self.echo("contents of %s:", path)
        try:
            self._stream.write(Path(path).read_text(errors="replace"))
        except OSError as exc:
            self._stream.write(f"<ERROR: {exc}>")
        self.echo("\n---")


DISABLED = Debug()
