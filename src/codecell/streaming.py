"""Incremental draining of a child process's output.

stdout and stderr are read by two independent tasks so that a program that
fills one pipe while the reader of the other is slow cannot stall.  Lines
are handed to the callback as soon as they are read, terminator included.
"""

from __future__ import annotations

import asyncio
import codecs
from typing import Callable, Optional, Tuple

from .models import Stream

LineCallback = Callable[[str, Stream], None]


async def _read_line(reader: asyncio.StreamReader) -> bytes:
    """Read up to and including the next newline.

    Returns the unterminated tail at end of stream, ``b""`` once the stream
    is exhausted, and a limit-sized chunk when a line exceeds the reader's
    buffer limit.
    """
    try:
        return await reader.readuntil(b"\n")
    except asyncio.IncompleteReadError as exc:
        return exc.partial
    except asyncio.LimitOverrunError as exc:
        return await reader.readexactly(exc.consumed)


async def drain(
    reader: Optional[asyncio.StreamReader],
    stream: Stream,
    on_line: LineCallback,
) -> str:
    """Read ``reader`` to end of stream, reporting each line, and return the full text."""
    if reader is None:
        return ""
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    chunks = []
    while True:
        raw = await _read_line(reader)
        if not raw:
            break
        line = decoder.decode(raw)
        if not line:
            # Only part of a multibyte character so far.
            continue
        chunks.append(line)
        on_line(line, stream)
    tail = decoder.decode(b"", final=True)
    if tail:
        chunks.append(tail)
        on_line(tail, stream)
    return "".join(chunks)


async def drain_process(
    process: asyncio.subprocess.Process,
    on_line: LineCallback,
) -> Tuple[str, str]:
    """Drain both output pipes of ``process`` concurrently.

    Returns ``(stdout, stderr)`` once both pipes reach end of stream.
    """
    stdout, stderr = await asyncio.gather(
        drain(process.stdout, Stream.STDOUT, on_line),
        drain(process.stderr, Stream.STDERR, on_line),
    )
    return stdout, stderr
