"""Async line sources for the pipeline.

Pipes, sockets and terminals are read through the event loop so that a
stop request does not wait on a blocked read. Regular files are read in
chunks on a worker thread.

Lines longer than MAX_LINE_LENGTH are skipped on both paths. A final
line without a trailing newline is still delivered.
"""

import asyncio
import os
import stat
from collections.abc import AsyncGenerator, Iterable
from contextlib import aclosing
from typing import BinaryIO

from acctflow.common.logging import get_logger
from acctflow.common.metrics import LINES_REJECTED

logger = get_logger(__name__)

# Bytes per chunk read from regular files
READ_CHUNK_HINT = 64 * 1024

# Longest line accepted, excluding the newline
MAX_LINE_LENGTH = 64 * 1024

NEWLINE = b"\n"


def _is_stream(stream: BinaryIO) -> bool:
    mode = os.fstat(stream.fileno()).st_mode
    return stat.S_ISFIFO(mode) or stat.S_ISSOCK(mode) or stat.S_ISCHR(mode)


def _decode(line: bytes) -> str:
    return line.decode("ascii", errors="replace")


def _skip_long_line(length: int) -> None:
    LINES_REJECTED.labels(reason="line_too_long").inc()
    logger.debug("Skipping line", reason="line_too_long", length=length, limit=MAX_LINE_LENGTH)


async def _read_pipe(stream: BinaryIO) -> AsyncGenerator[str, None]:
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader(limit=MAX_LINE_LENGTH)
    transport, _ = await loop.connect_read_pipe(
        lambda: asyncio.StreamReaderProtocol(reader),
        stream,
    )

    # Bytes dropped so far from an overlong line
    skipped = 0
    try:
        while True:
            try:
                line = await reader.readuntil(NEWLINE)
            except asyncio.IncompleteReadError as e:
                if skipped:
                    _skip_long_line(skipped + len(e.partial))
                elif e.partial:
                    yield _decode(e.partial)
                return
            except asyncio.LimitOverrunError as e:
                # Drop the buffered part; the rest follows on the next read
                await reader.readexactly(e.consumed)
                skipped += e.consumed
                continue

            if skipped:
                _skip_long_line(skipped + len(line) - 1)
                skipped = 0
                continue
            yield _decode(line)
    finally:
        transport.close()


async def _read_file(stream: BinaryIO) -> AsyncGenerator[str, None]:
    while True:
        lines = await asyncio.to_thread(stream.readlines, READ_CHUNK_HINT)
        if not lines:
            return
        for line in lines:
            length = len(line) - line.endswith(NEWLINE)
            if length > MAX_LINE_LENGTH:
                _skip_long_line(length)
                continue
            yield _decode(line)


async def read_lines(stream: BinaryIO) -> AsyncGenerator[str, None]:
    """Yield text lines from a binary stream.

    Args:
        stream: Binary stream such as sys.stdin.buffer or an open file.
    """
    source = _read_pipe(stream) if _is_stream(stream) else _read_file(stream)
    async with aclosing(source):
        async for line in source:
            yield line


async def iter_lines(lines: Iterable[str]) -> AsyncGenerator[str, None]:
    """Adapt an in-memory iterable of lines to an async source."""
    for line in lines:
        yield line
