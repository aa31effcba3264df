"""Thin typed wrapper around asyncio subprocess spawning for interactive children."""

from __future__ import annotations

import asyncio
import codecs
import logging
import os
from collections.abc import Callable, Sequence
from pathlib import Path

from orchestra.errors import SpawnFailureError

logger = logging.getLogger(__name__)

_READ_SIZE = 4096


async def spawn_interactive(
    session_id: str,
    command: str,
    args: Sequence[str] = (),
    *,
    cwd: Path,
    env: dict[str, str] | None = None,
) -> asyncio.subprocess.Process:
    """Spawn *command* with piped stdin/stdout/stderr inside *cwd*.

    ``TERM`` is forced to ``xterm-color`` so assistants that probe the
    terminal still start.  Raises ``SpawnFailureError`` when the OS refuses
    (missing binary, permissions, bad cwd).
    """
    child_env = dict(os.environ if env is None else env)
    child_env["TERM"] = "xterm-color"
    try:
        return await asyncio.create_subprocess_exec(
            command,
            *args,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(cwd),
            env=child_env,
        )
    except OSError as exc:
        logger.debug("Subprocess spawn failed with %s", type(exc).__name__, exc_info=exc)
        raise SpawnFailureError(
            session_id, f"Failed to start {command!r} for session {session_id}: {exc}"
        ) from exc


async def pump_stream(
    stream: asyncio.StreamReader,
    on_text: Callable[[str], None],
) -> None:
    """Read *stream* until EOF, passing decoded text to *on_text*.

    Decoding is incremental so multi-byte characters split across reads are
    not mangled.
    """
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    while True:
        data = await stream.read(_READ_SIZE)
        if not data:
            break
        text = decoder.decode(data)
        if text:
            on_text(text)
    tail = decoder.decode(b"", final=True)
    if tail:
        on_text(tail)
