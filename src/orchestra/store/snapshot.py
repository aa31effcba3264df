"""JSON snapshot of in-memory state, written atomically.

The snapshot document looks like::

    {
      "processes": {"<sessionId>": {ProcessStatus...}},
      "projects": [...],
      "sessions": [...],
      "messages": {"<sessionId>": [...]},
      "savedAt": "2026-01-01T00:00:00+00:00"
    }

Loading is best-effort: a missing or corrupt file yields ``None`` and a log
line, never an exception.

Dependencies: (none, leaf module)
Wired in: server/app.py → lifespan()
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

_log = logging.getLogger(__name__)


class SnapshotStore:
    """Read and write the snapshot file at *path*."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def save(self, document: dict[str, Any]) -> Path:
        """Write *document* plus ``savedAt``; replaces the file atomically."""
        payload = {**document, "savedAt": datetime.now(UTC).isoformat()}
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self._path.name}.", suffix=".tmp", dir=self._path.parent
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(payload, fh, ensure_ascii=False, indent=2, default=str)
            os.replace(tmp_name, self._path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        _log.info("Saved state snapshot to %s", self._path)
        return self._path

    def load(self) -> dict[str, Any] | None:
        """Return the saved document, or None if absent or unreadable."""
        if not self._path.is_file():
            _log.info("No state snapshot at %s", self._path)
            return None
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            _log.error("Could not read state snapshot %s: %s", self._path, exc)
            return None
        if not isinstance(data, dict):
            _log.error("Ignoring state snapshot %s: not a JSON object", self._path)
            return None
        _log.info("Loaded state snapshot (saved at %s)", data.get("savedAt", "unknown"))
        return data
