"""Async byte streams passed between database and storage backends.

A ``ByteStream`` is anything with ``async read(size)`` and ``async aclose()``.
Backends hand streams to each other; whoever obtains a stream releases it,
normally with ``contextlib.aclosing``.

Usage:
    from contextlib import aclosing
    from db_archive.streams import MemoryStream, iter_chunks

    async with aclosing(MemoryStream(b"payload")) as stream:
        async for chunk in iter_chunks(stream):
            ...
"""

import asyncio
from collections.abc import AsyncIterator
from pathlib import Path
from typing import BinaryIO, Protocol, runtime_checkable

CHUNK_SIZE = 1024 * 1024


@runtime_checkable
class ByteStream(Protocol):
    """Readable, closable source of bytes."""

    async def read(self, size: int = -1) -> bytes:
        """Read up to ``size`` bytes (all remaining when ``size < 0``).

        Returns ``b""`` once the stream is exhausted.
        """
        ...

    async def aclose(self) -> None:
        """Release the underlying resource."""
        ...


class MemoryStream:
    """``ByteStream`` over an in-memory bytes object."""

    def __init__(self, data: bytes) -> None:
        self._data = data
        self._pos = 0
        self.closed = False

    async def read(self, size: int = -1) -> bytes:
        if self.closed:
            raise ValueError("read from closed stream")
        if size < 0:
            end = len(self._data)
        else:
            end = min(self._pos + size, len(self._data))
        chunk = self._data[self._pos:end]
        self._pos = end
        return chunk

    async def aclose(self) -> None:
        self.closed = True


class FileStream:
    """``ByteStream`` over a binary file object.

    Reads run in a worker thread so the event loop is never blocked on disk
    I/O.  Closing the stream closes the file.
    """

    def __init__(self, fileobj: BinaryIO) -> None:
        self._file = fileobj

    @classmethod
    async def open(cls, path: Path) -> "FileStream":
        """Open ``path`` for binary reading."""
        fileobj = await asyncio.to_thread(open, path, "rb")
        return cls(fileobj)

    async def read(self, size: int = -1) -> bytes:
        return await asyncio.to_thread(self._file.read, size)

    async def aclose(self) -> None:
        if not self._file.closed:
            await asyncio.to_thread(self._file.close)


async def iter_chunks(stream: ByteStream, chunk_size: int = CHUNK_SIZE) -> AsyncIterator[bytes]:
    """Yield successive non-empty chunks from ``stream`` until EOF.

    Does not close the stream.
    """
    while True:
        chunk = await stream.read(chunk_size)
        if not chunk:
            return
        yield chunk


async def read_all(stream: ByteStream) -> bytes:
    """Read ``stream`` to EOF and return the concatenated bytes."""
    return b"".join([chunk async for chunk in iter_chunks(stream)])
