"""Service container shared by the route handlers and the app lifespan.

``OrchestraServices`` bundles the registry, controller, channel, fan-out hub
and stores built from one ``OrchestraSettings``, and holds the glue that
turns an incoming command into a reply: make sure the session's process is
up, then send the line through the channel.

Dependencies: config, errors, models, process, server.connections, store
Wired in: server/app.py → create_app(), server/routes.py → get_services()
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from orchestra.config import OrchestraSettings
from orchestra.errors import SpawnFailureError
from orchestra.models import ProcessStatus
from orchestra.process import CommandChannel, ProcessRecord, ProcessRegistry, SessionController
from orchestra.server.connections import ConnectionManager
from orchestra.store import ProjectStore, SnapshotStore

_log = logging.getLogger(__name__)


@dataclass
class OrchestraServices:
    settings: OrchestraSettings
    registry: ProcessRegistry
    controller: SessionController
    channel: CommandChannel
    connections: ConnectionManager
    projects: ProjectStore
    snapshots: SnapshotStore

    @classmethod
    def from_settings(cls, settings: OrchestraSettings) -> OrchestraServices:
        registry = ProcessRegistry()
        services = cls(
            settings=settings,
            registry=registry,
            controller=SessionController(registry, settings),
            channel=CommandChannel(registry, settings.completion_policy()),
            connections=ConnectionManager(),
            projects=ProjectStore(),
            snapshots=SnapshotStore(settings.snapshot_path),
        )
        services.connections.set_command_handler(services.run_command)
        services.controller.add_status_listener(services.publish_status)
        return services

    async def ensure_process(self, session_id: str) -> ProcessRecord:
        """Return a live record for *session_id*, starting or restarting it.

        A restart reuses the previous working directory.  Raises
        ``SpawnFailureError`` when the process cannot be started.
        """
        record = self.registry.get(session_id)
        if record is not None and record.is_alive:
            return record
        if record is None:
            _log.info("No process for session %s, starting one", session_id)
        else:
            _log.info("Process for session %s is not running, restarting", session_id)
        started = await self.controller.start_session(session_id)
        if started is None:
            raise SpawnFailureError(session_id, f"Failed to start process for session {session_id}")
        if self.settings.startup_delay > 0:
            await asyncio.sleep(self.settings.startup_delay)
        return started

    async def run_command(self, session_id: str, content: str) -> str:
        """Ensure the session's process is up and return its reply to *content*."""
        await self.ensure_process(session_id)
        return await self.channel.send(session_id, content)

    async def remove_session(self, session_id: str) -> bool:
        """Stop and forget a session, releasing its per-session locks.

        Returns False for an unknown session.
        """
        if not await self.controller.remove_session(session_id):
            return False
        self.channel.forget(session_id)
        self.connections.forget_session(session_id)
        await self.persist_quietly()
        return True

    def publish_status(self, session_id: str, status: ProcessStatus) -> None:
        self.connections.schedule_status(session_id, status)

    # --- Persistence ---

    def snapshot_document(self) -> dict[str, Any]:
        processes = {
            sid: status.model_dump(mode="json", by_alias=True)
            for sid, status in self.registry.statuses().items()
        }
        return {"processes": processes, **self.projects.to_document()}

    async def persist(self) -> None:
        """Take a snapshot now and write it from a worker thread."""
        document = self.snapshot_document()
        await asyncio.to_thread(self.snapshots.save, document)

    async def persist_quietly(self) -> bool:
        """Like ``persist`` but logs failures instead of raising."""
        try:
            await self.persist()
        except Exception:
            _log.exception("Failed to persist state snapshot")
            return False
        return True

    def restore(self) -> int:
        """Load the snapshot, if any. Returns the number of processes restored."""
        document = self.snapshots.load()
        if document is None:
            return 0
        self.projects.load_document(document)
        raw = document.get("processes")
        statuses: list[ProcessStatus] = []
        if isinstance(raw, dict):
            for sid, item in raw.items():
                try:
                    statuses.append(ProcessStatus.model_validate(item))
                except ValidationError as exc:
                    _log.warning("Skipping invalid process entry %s in snapshot: %s", sid, exc)
        restored = self.registry.restore(statuses)
        _log.info("Restored %d process record(s) as exited", restored)
        return restored
