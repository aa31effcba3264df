"""Interactive child-process sessions.

Public API: CommandChannel, CompletionPolicy, CompletionReason,
    CollectedResponse, ProcessRecord, ProcessRegistry, SessionController
Internal: completion, spawn, transcript
"""

from orchestra.process.channel import CommandChannel
from orchestra.process.completion import CollectedResponse, CompletionPolicy, CompletionReason
from orchestra.process.controller import SessionController
from orchestra.process.registry import ProcessRecord, ProcessRegistry

__all__ = [
    "CollectedResponse",
    "CommandChannel",
    "CompletionPolicy",
    "CompletionReason",
    "ProcessRecord",
    "ProcessRegistry",
    "SessionController",
]
