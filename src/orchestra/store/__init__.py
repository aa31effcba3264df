"""State persistence: project/session business data and the JSON snapshot.

Public API: ProjectStore, SnapshotStore
"""

from orchestra.store.projects import ProjectStore
from orchestra.store.snapshot import SnapshotStore

__all__ = ["ProjectStore", "SnapshotStore"]
