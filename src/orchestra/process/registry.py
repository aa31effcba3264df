"""In-memory registry of session process records.

The registry is the one shared table between the controller (which owns the
records), the command channel (which writes to a record's stdin) and the
server (which reads status views).  Every read-modify-write goes through a
method here under ``threading.Lock`` because snapshots are taken from a worker
thread while the event loop keeps mutating records.

Dependencies: models, process.transcript
Wired in: process/controller.py, process/channel.py, server/app.py → create_app()
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from orchestra.models import ProcessState, ProcessStatus
from orchestra.process.transcript import TranscriptWriter

_log = logging.getLogger(__name__)

_STDERR_TAIL_LINES = 50


def _now() -> datetime:
    return datetime.now(UTC)


@dataclass
class ProcessRecord:
    """Bookkeeping for one session's interactive child process."""

    session_id: str
    workdir: Path
    process: asyncio.subprocess.Process | None = None
    pid: int | None = None
    state: ProcessState = ProcessState.STARTING
    started_at: datetime = field(default_factory=_now)
    exited_at: datetime | None = None
    exit_code: int | None = None
    last_activity: float = field(default_factory=time.monotonic)
    transcript: TranscriptWriter | None = field(default=None, repr=False)
    stop_requested: bool = False
    pending: list[str] = field(default_factory=list)
    stderr_tail: deque[str] = field(default_factory=lambda: deque(maxlen=_STDERR_TAIL_LINES))
    tasks: list[asyncio.Task[None]] = field(default_factory=list, repr=False)
    _listener: asyncio.Queue[str | None] | None = field(default=None, repr=False)
    _output_closed: bool = field(default=False, repr=False)

    @property
    def is_alive(self) -> bool:
        """True while the process can accept input."""
        if self.state not in (ProcessState.STARTING, ProcessState.RUNNING):
            return False
        return self.process is not None and self.process.returncode is None

    @property
    def log_path(self) -> Path | None:
        return self.transcript.path if self.transcript is not None else None

    def log(self, kind: str, text: str) -> None:
        """Append an entry to the transcript, if this record keeps one."""
        if self.transcript is not None:
            self.transcript.write(kind, text)

    @property
    def pending_size(self) -> int:
        return sum(len(part) for part in self.pending)

    def pending_text(self) -> str:
        return "".join(self.pending)

    def append_output(self, text: str) -> None:
        """Hand a stdout chunk to the in-flight command.

        Chunks that arrive with no command in flight are dropped, so
        ``pending`` only holds output of the outstanding reply.
        """
        self.last_activity = time.monotonic()
        if self._listener is None:
            _log.debug(
                "Session %s: dropping %d chars of output received between commands",
                self.session_id,
                len(text),
            )
            return
        self.pending.append(text)
        self._listener.put_nowait(text)

    def append_error(self, text: str) -> None:
        self.last_activity = time.monotonic()
        self.stderr_tail.extend(line for line in text.splitlines() if line.strip())

    def close_output(self) -> None:
        """Mark stdout as finished and wake the in-flight command."""
        self._output_closed = True
        if self._listener is not None:
            self._listener.put_nowait(None)

    def attach_listener(self) -> asyncio.Queue[str | None]:
        """Subscribe the in-flight command to stdout chunks."""
        if self._listener is not None:
            raise RuntimeError(f"Session {self.session_id} already has a listener attached")
        queue: asyncio.Queue[str | None] = asyncio.Queue()
        if self._output_closed:
            queue.put_nowait(None)
        self._listener = queue
        return queue

    def detach_listener(self) -> None:
        self._listener = None

    def clear_pending(self) -> None:
        self.pending.clear()

    def to_status(self) -> ProcessStatus:
        return ProcessStatus(
            session_id=self.session_id,
            running=self.is_alive,
            pid=self.pid,
            start_time=self.started_at,
            exit_time=self.exited_at,
            exit_code=self.exit_code,
            workdir=str(self.workdir),
            state=self.state,
        )


class ProcessRegistry:
    """Thread-safe mapping of session id to ``ProcessRecord``."""

    def __init__(self) -> None:
        self._records: dict[str, ProcessRecord] = {}
        self._lock = threading.Lock()

    def put(self, record: ProcessRecord) -> ProcessRecord | None:
        """Insert *record*, replacing (and returning) any previous record."""
        with self._lock:
            previous = self._records.get(record.session_id)
            self._records[record.session_id] = record
            return previous

    def get(self, session_id: str) -> ProcessRecord | None:
        with self._lock:
            return self._records.get(session_id)

    def remove(self, session_id: str) -> ProcessRecord | None:
        with self._lock:
            return self._records.pop(session_id, None)

    def list_records(self) -> list[ProcessRecord]:
        """Return all records (newest first)."""
        with self._lock:
            records = list(self._records.values())
        return sorted(records, key=lambda r: r.started_at, reverse=True)

    def session_ids(self) -> list[str]:
        with self._lock:
            return list(self._records)

    def mark_running(self, session_id: str) -> None:
        with self._lock:
            record = self._records.get(session_id)
            if record is not None and record.state is ProcessState.STARTING:
                record.state = ProcessState.RUNNING

    def mark_stopping(self, session_id: str) -> bool:
        """Flag a stop request; returns False if the record is gone or exited."""
        with self._lock:
            record = self._records.get(session_id)
            if record is None or record.state is ProcessState.EXITED:
                return False
            record.stop_requested = True
            record.state = ProcessState.STOPPING
            return True

    def mark_exited(self, session_id: str, exit_code: int | None) -> None:
        """Record process exit."""
        with self._lock:
            record = self._records.get(session_id)
            if record is None or record.state is ProcessState.EXITED:
                return
            self._set_exited(record, exit_code)

    def status(self, session_id: str) -> ProcessStatus | None:
        """Return a status view, reconciling cached state with the OS handle."""
        with self._lock:
            record = self._records.get(session_id)
            if record is None:
                return None
            self._reconcile(record)
            return record.to_status()

    def statuses(self) -> dict[str, ProcessStatus]:
        with self._lock:
            result: dict[str, ProcessStatus] = {}
            for session_id, record in self._records.items():
                self._reconcile(record)
                result[session_id] = record.to_status()
            return result

    def restore(self, statuses: Iterable[ProcessStatus]) -> int:
        """Register exited records for sessions from a previous run.

        Live sessions are left untouched.  Returns the number restored.
        """
        restored = 0
        with self._lock:
            for status in statuses:
                if status.session_id in self._records:
                    continue
                self._records[status.session_id] = ProcessRecord(
                    session_id=status.session_id,
                    workdir=Path(status.workdir),
                    pid=status.pid,
                    state=ProcessState.EXITED,
                    started_at=status.start_time or _now(),
                    exited_at=status.exit_time or _now(),
                    exit_code=status.exit_code,
                )
                restored += 1
        return restored

    def reset(self) -> None:
        """Clear all records (testing only)."""
        with self._lock:
            self._records.clear()

    @staticmethod
    def _set_exited(record: ProcessRecord, exit_code: int | None) -> None:
        record.state = ProcessState.EXITED
        record.exit_code = exit_code
        record.exited_at = _now()

    def _reconcile(self, record: ProcessRecord) -> None:
        """Caller holds the lock."""
        if record.state is ProcessState.EXITED:
            return
        if record.process is None:
            self._set_exited(record, record.exit_code)
            return
        code = record.process.returncode
        if code is not None:
            self._set_exited(record, code)
