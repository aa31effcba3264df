"""Per-session transcript files for child process I/O.

Each session appends to ``{log_dir}/claude_{slug}.log``::

    [COMMAND 2026-01-01T00:00:00+00:00] hello
    [STDOUT 2026-01-01T00:00:01+00:00] Hi there
    [STDERR 2026-01-01T00:00:01+00:00] warning: ...

Dependencies: (none, leaf module)
Wired in: process/registry.py, process/controller.py, process/channel.py
"""

from __future__ import annotations

import logging
import re
import time
from datetime import UTC, datetime
from pathlib import Path
from typing import TextIO

_log = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_-]")


def session_slug(session_id: str) -> str:
    """Return *session_id* reduced to filesystem-safe characters."""
    return _UNSAFE_CHARS.sub("_", session_id) or "session"


def transcript_path(log_dir: Path, session_id: str) -> Path:
    log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir / f"claude_{session_slug(session_id)}.log"


class TranscriptWriter:
    """Append-only transcript for one process, holding its file open until ``close``.

    The file is opened on the first entry.  Write failures are logged once
    and disable the writer; they never reach the caller.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._fh: TextIO | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def write(self, kind: str, text: str) -> None:
        """Append one timestamped entry."""
        if self._closed:
            return
        stamp = datetime.now(UTC).isoformat()
        entry = f"[{kind} {stamp}] {text}"
        if not text.endswith("\n"):
            entry += "\n"
        try:
            if self._fh is None:
                self._fh = self.path.open("a", encoding="utf-8")
            self._fh.write(entry)
            self._fh.flush()
        except OSError as exc:
            _log.warning("Could not write transcript %s: %s", self.path, exc)
            self.close()

    def close(self) -> None:
        self._closed = True
        fh, self._fh = self._fh, None
        if fh is None:
            return
        try:
            fh.close()
        except OSError as exc:
            _log.warning("Could not close transcript %s: %s", self.path, exc)


def cleanup_transcripts(log_dir: Path, *, max_age_hours: float = 24.0 * 7) -> int:
    """Remove transcript files older than *max_age_hours*. Returns count removed."""
    if not log_dir.exists():
        return 0
    cutoff = time.time() - max_age_hours * 3600
    removed = 0
    for entry in log_dir.glob("claude_*.log"):
        if entry.is_file() and entry.stat().st_mtime < cutoff:
            entry.unlink(missing_ok=True)
            removed += 1
    return removed
