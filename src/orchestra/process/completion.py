"""Response-completion heuristic for unframed interactive stdout.

The child program gives no structured signal that a reply is finished, so a
reply is declared complete by whichever of these happens first:

* a known prompt marker shows up in the freshly received chunk,
* enough text has accumulated and the stream has gone quiet,
* stdout reaches EOF,
* the hard timeout elapses.

``ResponseCollector.collect`` runs that race as one coroutine over a queue of
decoded chunks (``None`` marks EOF), which keeps it testable without a real
process.  The marker set and thresholds are empirical; treat them as
configuration, not protocol.

Dependencies: errors
Wired in: process/channel.py, config.py → OrchestraSettings.completion_policy()
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum

from orchestra.errors import ProcessDiedError

_log = logging.getLogger(__name__)

DEFAULT_SENTINELS: tuple[str, ...] = ("▌", "> ", "$", "claude>", "user>")
_TRAILING_CLOCK = re.compile(r"\d+:\d+:\d+\s*$")

TIMEOUT_SUFFIX = "\n[response timed out - showing partial response]"
STILL_RUNNING_PLACEHOLDER = (
    "[response timed out - process is still running, please try again]"
)


class CompletionReason(StrEnum):
    """Why a response was judged complete."""

    SENTINEL = "sentinel"
    QUIET = "quiet"
    EOF = "eof"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class CompletionPolicy:
    """Thresholds and markers used to decide that a reply is finished."""

    sentinels: tuple[str, ...] = DEFAULT_SENTINELS
    sentinel_patterns: tuple[re.Pattern[str], ...] = (_TRAILING_CLOCK,)
    min_response_chars: int = 500
    quiet_period: float = 3.0
    hard_timeout: float = 120.0

    def matches_sentinel(self, chunk: str) -> bool:
        """Return True when *chunk* contains a prompt marker."""
        if any(marker in chunk for marker in self.sentinels):
            return True
        stripped = chunk.strip()
        return any(pattern.search(stripped) for pattern in self.sentinel_patterns)


@dataclass(frozen=True)
class CollectedResponse:
    """Text produced for one command plus how collection ended."""

    text: str
    reason: CompletionReason
    elapsed: float

    @property
    def truncated(self) -> bool:
        return self.reason is CompletionReason.TIMEOUT


class ResponseCollector:
    """Accumulate chunks for one command until a completion condition fires."""

    def __init__(self, session_id: str, policy: CompletionPolicy) -> None:
        self._session_id = session_id
        self._policy = policy

    async def collect(
        self,
        chunks: asyncio.Queue[str | None],
        is_alive: Callable[[], bool],
    ) -> CollectedResponse:
        """Drain *chunks* until the reply is complete.

        Raises ``ProcessDiedError`` when nothing was received and the process
        is gone (EOF, or hard timeout with a dead process).
        """
        policy = self._policy
        loop = asyncio.get_running_loop()
        started = loop.time()
        deadline = started + policy.hard_timeout
        parts: list[str] = []
        size = 0

        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                return self._on_timeout("".join(parts), loop.time() - started, is_alive)

            quiet_armed = size > 0 and size >= policy.min_response_chars
            quiet_first = quiet_armed and policy.quiet_period < remaining
            wait = policy.quiet_period if quiet_first else remaining
            try:
                chunk = await asyncio.wait_for(chunks.get(), timeout=wait)
            except TimeoutError:
                if quiet_first:
                    _log.debug(
                        "Session %s quiet for %.1fs after %d chars, treating as complete",
                        self._session_id,
                        policy.quiet_period,
                        size,
                    )
                    return self._done(parts, CompletionReason.QUIET, loop.time() - started)
                continue

            if chunk is None:
                if not parts:
                    raise ProcessDiedError(self._session_id)
                return self._done(parts, CompletionReason.EOF, loop.time() - started)

            parts.append(chunk)
            size += len(chunk)
            if policy.matches_sentinel(chunk):
                _log.debug(
                    "Session %s prompt marker detected: %r",
                    self._session_id,
                    chunk[-20:].strip(),
                )
                return self._done(parts, CompletionReason.SENTINEL, loop.time() - started)

    def _done(
        self, parts: list[str], reason: CompletionReason, elapsed: float
    ) -> CollectedResponse:
        return CollectedResponse(text="".join(parts), reason=reason, elapsed=elapsed)

    def _on_timeout(
        self, text: str, elapsed: float, is_alive: Callable[[], bool]
    ) -> CollectedResponse:
        if text:
            _log.warning(
                "Session %s response timed out, returning %d partial chars",
                self._session_id,
                len(text),
            )
            return CollectedResponse(
                text=text + TIMEOUT_SUFFIX, reason=CompletionReason.TIMEOUT, elapsed=elapsed
            )
        if is_alive():
            _log.warning("Session %s timed out with no output; process still alive", self._session_id)
            return CollectedResponse(
                text=STILL_RUNNING_PLACEHOLDER, reason=CompletionReason.TIMEOUT, elapsed=elapsed
            )
        _log.error("Session %s timed out and its process has exited", self._session_id)
        raise ProcessDiedError(self._session_id)
