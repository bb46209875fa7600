# infrastructure/sinks.py
"""Byte destinations for a rendered document.

A sink receives the document in page-sized chunks. ``write`` raising means the
destination is gone; the render pass stops at that point.
"""

import asyncio
from pathlib import Path
from typing import AsyncIterator, List, Optional, Protocol

import aiofiles


class DocumentSink(Protocol):
    async def write(self, data: bytes) -> None: ...

    async def close(self) -> None: ...


class MemorySink:
    """Keeps every chunk; for tests and small in-process renders."""

    def __init__(self):
        self.chunks: List[bytes] = []
        self.closed = False

    async def write(self, data: bytes) -> None:
        if self.closed:
            raise ConnectionError("sink is closed")
        self.chunks.append(data)

    async def close(self) -> None:
        self.closed = True

    def getvalue(self) -> bytes:
        return b"".join(self.chunks)


class FileSink:
    def __init__(self, path: Path):
        self.path = Path(path)
        self._file = None

    async def write(self, data: bytes) -> None:
        if self._file is None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._file = await aiofiles.open(self.path, "wb")
        await self._file.write(data)
        await self._file.flush()

    async def close(self) -> None:
        if self._file is not None:
            await self._file.close()
            self._file = None


_EOF = object()


class StreamSink:
    """Bounded hand-off between a render task and an async consumer.

    ``write`` waits while ``max_chunks`` chunks are queued, so a slow client
    slows the render instead of piling pages up in memory. Once the consumer
    stops iterating, further writes fail.
    """

    def __init__(self, max_chunks: int = 2):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_chunks)
        self._detached = False
        self._closed = False

    @property
    def detached(self) -> bool:
        return self._detached

    async def write(self, data: bytes) -> None:
        if self._detached:
            raise ConnectionResetError("stream consumer went away")
        if self._closed:
            raise ConnectionError("sink is closed")
        await self._queue.put(data)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if not self._detached:
            await self._queue.put(_EOF)

    async def chunks(self, producer: Optional[asyncio.Task] = None) -> AsyncIterator[bytes]:
        """Yield chunks until the producer closes the sink.

        If iteration stops early (client disconnect), the producer task is
        cancelled.
        """
        try:
            while True:
                item = await self._queue.get()
                if item is _EOF:
                    break
                yield item
        finally:
            self._detached = True
            # Unblock a producer waiting on a full queue.
            while not self._queue.empty():
                self._queue.get_nowait()
            if producer is not None and not producer.done():
                producer.cancel()
