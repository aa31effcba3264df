"""Session process controller: spawn, watch and stop one child per session.

The controller is the only component that creates or tears down child
processes.  For every spawned child it starts three tasks: a permanent
reader for stdout, one for stderr, and an exit watcher that is the single
authority for the ``EXITED`` transition.  Readers never detach; the command
channel subscribes to a record's stdout through ``ProcessRecord`` instead.

Dependencies: config, errors, models, process.registry, process.spawn,
    process.transcript
Wired in: server/app.py → create_app(), server/routes.py
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import signal
import time
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING

from orchestra.errors import SpawnFailureError
from orchestra.models import ProcessState, ProcessStatus
from orchestra.process import transcript
from orchestra.process.registry import ProcessRecord, ProcessRegistry
from orchestra.process.spawn import pump_stream, spawn_interactive

if TYPE_CHECKING:
    from orchestra.config import OrchestraSettings

_log = logging.getLogger(__name__)

StatusListener = Callable[[str, ProcessStatus], None]

# Upper bound on waiting for the OS to reap a child after SIGKILL.
_KILL_CONFIRM_TIMEOUT = 5.0


class SessionController:
    """Own the mapping from session id to a running child process."""

    def __init__(self, registry: ProcessRegistry, settings: OrchestraSettings) -> None:
        self._registry = registry
        self._settings = settings
        self._start_locks: dict[str, asyncio.Lock] = {}
        self._listeners: list[StatusListener] = []

    @property
    def registry(self) -> ProcessRegistry:
        return self._registry

    @property
    def settings(self) -> OrchestraSettings:
        return self._settings

    def add_status_listener(self, listener: StatusListener) -> None:
        """Call *listener* with ``(session_id, status)`` on start and exit."""
        self._listeners.append(listener)

    def default_workdir(self, session_id: str) -> Path:
        millis = int(time.time() * 1000)
        name = f"session_{transcript.session_slug(session_id)}_{millis}"
        return (self._settings.workspace_root / name).resolve()

    async def start_session(
        self, session_id: str, workdir: str | Path | None = None
    ) -> ProcessRecord | None:
        """Return the live record for *session_id*, spawning one if needed.

        Idempotent while the process is alive.  Returns ``None`` when the
        child could not be spawned; the failure is logged, not retried.
        """
        lock = self._start_locks.setdefault(session_id, asyncio.Lock())
        async with lock:
            existing = self._registry.get(session_id)
            if existing is not None and existing.is_alive:
                _log.info("Reusing process for session %s (pid %s)", session_id, existing.pid)
                return existing
            if existing is not None and existing.state is ProcessState.STOPPING:
                await self._await_exit(existing)

            if workdir is not None:
                target = Path(workdir).resolve()
            elif existing is not None:
                target = existing.workdir
            else:
                target = self.default_workdir(session_id)

            try:
                record = await self._spawn(session_id, target)
            except (SpawnFailureError, OSError) as exc:
                _log.error("Could not start process for session %s: %s", session_id, exc)
                return None

        self._notify(session_id)
        return record

    async def _spawn(self, session_id: str, workdir: Path) -> ProcessRecord:
        workdir.mkdir(parents=True, exist_ok=True)
        settings = self._settings
        _log.info(
            "Starting process for session %s: %s %s (cwd=%s)",
            session_id,
            settings.command,
            " ".join(settings.args),
            workdir,
        )
        process = await spawn_interactive(
            session_id, settings.command, settings.args, cwd=workdir
        )
        record = ProcessRecord(
            session_id=session_id,
            workdir=workdir,
            process=process,
            pid=process.pid,
            transcript=transcript.TranscriptWriter(
                transcript.transcript_path(settings.log_dir, session_id)
            ),
        )
        self._registry.put(record)
        self._start_tasks(record)
        self._registry.mark_running(session_id)
        _log.info("Process started for session %s, pid %s", session_id, process.pid)
        return record

    def _start_tasks(self, record: ProcessRecord) -> None:
        process = record.process
        assert process is not None
        readers: list[asyncio.Task[None]] = []
        if process.stdout is not None:
            readers.append(asyncio.create_task(self._read_stdout(record, process.stdout)))
        if process.stderr is not None:
            readers.append(asyncio.create_task(self._read_stderr(record, process.stderr)))
        watcher = asyncio.create_task(self._watch_exit(record, readers))
        record.tasks.extend([*readers, watcher])

    async def _read_stdout(self, record: ProcessRecord, stream: asyncio.StreamReader) -> None:
        def on_text(text: str) -> None:
            record.append_output(text)
            record.log("STDOUT", text)

        try:
            await pump_stream(stream, on_text)
        except Exception:
            _log.exception("stdout reader failed for session %s", record.session_id)
        finally:
            record.close_output()

    async def _read_stderr(self, record: ProcessRecord, stream: asyncio.StreamReader) -> None:
        def on_text(text: str) -> None:
            record.append_error(text)
            _log.warning("[%s] stderr: %s", record.session_id, text.rstrip())
            record.log("STDERR", text)

        try:
            await pump_stream(stream, on_text)
        except Exception:
            _log.exception("stderr reader failed for session %s", record.session_id)

    async def _watch_exit(
        self, record: ProcessRecord, readers: list[asyncio.Task[None]]
    ) -> None:
        process = record.process
        assert process is not None
        try:
            code = await process.wait()
            # Let readers flush what the child wrote before it exited.
            await asyncio.gather(*readers, return_exceptions=True)
        finally:
            if record.transcript is not None:
                record.transcript.close()
        current = self._registry.get(record.session_id)
        if current is record:
            self._registry.mark_exited(record.session_id, code)
        else:
            # Replaced record; update the orphan directly.
            record.state = ProcessState.EXITED
            record.exit_code = code
        _log.info("Process for session %s exited with code %s", record.session_id, code)
        if current is record:
            self._notify(record.session_id)

    async def stop_session(self, session_id: str) -> bool:
        """Stop the session's process: exit command, grace period, then kill.

        Returns False for an unknown session or one whose process died on its
        own; True once a requested stop is confirmed (idempotently).
        """
        record = self._registry.get(session_id)
        if record is None:
            _log.warning("No process found for session %s", session_id)
            return False
        if record.state is ProcessState.EXITED:
            _log.info("Process for session %s already exited", session_id)
            return record.stop_requested
        if not self._registry.mark_stopping(session_id):
            return record.stop_requested

        process = record.process
        if process is None:
            self._registry.mark_exited(session_id, record.exit_code)
            return True

        await self._send_exit_command(record)
        try:
            await asyncio.wait_for(asyncio.shield(process.wait()), self._settings.stop_grace)
        except TimeoutError:
            _log.info(
                "Session %s did not exit within %.1fs, killing pid %s",
                session_id,
                self._settings.stop_grace,
                record.pid,
            )
            with contextlib.suppress(ProcessLookupError):
                process.kill()
        await self._await_exit(record)
        _log.info("Stopped process for session %s", session_id)
        return True

    async def _send_exit_command(self, record: ProcessRecord) -> None:
        """Write the exit command line to the child's stdin.

        This is the one stdin writer that does not take the channel's session
        lock: a stop preempts an in-flight command, which then ends on EOF or
        with ``ProcessDiedError`` once the child is gone.  ``mark_stopping``
        has already run, so queued commands fail with
        ``SessionNotRunningError`` instead of reaching stdin.
        """
        process = record.process
        if process is None or process.stdin is None or process.stdin.is_closing():
            return
        try:
            process.stdin.write(f"{self._settings.exit_command}\n".encode())
            await process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError, RuntimeError) as exc:
            _log.debug("Exit command not delivered to session %s: %s", record.session_id, exc)

    async def _await_exit(self, record: ProcessRecord) -> None:
        """Wait until the exit watcher has recorded the exit."""
        process = record.process
        if process is None:
            return
        try:
            await asyncio.wait_for(asyncio.shield(process.wait()), _KILL_CONFIRM_TIMEOUT)
        except TimeoutError:
            _log.error("Process for session %s did not exit after kill", record.session_id)
            return
        watchers = [t for t in record.tasks if not t.done()]
        if watchers:
            await asyncio.wait(watchers, timeout=_KILL_CONFIRM_TIMEOUT)
        # The watcher may have been cancelled during shutdown.
        if record.state is not ProcessState.EXITED and self._registry.get(record.session_id) is record:
            self._registry.mark_exited(record.session_id, process.returncode)

    async def remove_session(self, session_id: str) -> bool:
        """Stop (if needed) and forget a session. Returns False if unknown."""
        record = self._registry.get(session_id)
        if record is None:
            return False
        if record.state is not ProcessState.EXITED:
            await self.stop_session(session_id)
        if self._registry.get(session_id) is record:
            self._registry.remove(session_id)
        lock = self._start_locks.get(session_id)
        if lock is not None and not lock.locked():
            del self._start_locks[session_id]
        _log.info("Removed session %s", session_id)
        return True

    def get_status(self, session_id: str) -> ProcessStatus | None:
        return self._registry.status(session_id)

    def get_all_statuses(self) -> dict[str, ProcessStatus]:
        return self._registry.statuses()

    async def cleanup_all(self) -> None:
        """Stop every non-exited session; called on shutdown."""
        targets = [
            r.session_id for r in self._registry.list_records() if r.state is not ProcessState.EXITED
        ]
        if not targets:
            return
        _log.info("Cleaning up %d session process(es)", len(targets))
        results = await asyncio.gather(
            *(self.stop_session(sid) for sid in targets), return_exceptions=True
        )
        for sid, result in zip(targets, results, strict=True):
            if isinstance(result, BaseException):
                _log.error("Cleanup failed for session %s: %s", sid, result)

    def kill_all_now(self) -> None:
        """Synchronously SIGKILL every live child (best effort, for atexit)."""
        for record in self._registry.list_records():
            if record.process is None or record.process.returncode is not None:
                continue
            if record.pid is None:
                continue
            with contextlib.suppress(ProcessLookupError, PermissionError):
                os.kill(record.pid, signal.SIGKILL)

    def _notify(self, session_id: str) -> None:
        status = self._registry.status(session_id)
        if status is None:
            return
        for listener in self._listeners:
            try:
                listener(session_id, status)
            except Exception:
                _log.exception("Status listener failed for session %s", session_id)
