"""Fakes shared by the render tests: an in-memory resolver, a recording writer,
a sink that breaks after a number of writes, and a local HTTP asset origin."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from io import BytesIO
from typing import Dict, List, Optional, Tuple

from aiohttp import web
from aiohttp.test_utils import TestServer
from PIL import Image

from cardpress.domain.composer import AssetStage, Composer
from cardpress.domain.documents import program_for
from cardpress.domain.models import RenderJob
from cardpress.infrastructure.pdf.stream_writer import DocumentStreamWriter, TextStyle
from cardpress.infrastructure.sinks import MemorySink


def make_png(size: Tuple[int, int] = (40, 30), color=(200, 30, 30, 255), mode: str = "RGBA") -> bytes:
    buf = BytesIO()
    Image.new(mode, size, color).save(buf, format="PNG")
    return buf.getvalue()


class FakeResolver:
    """Serves bytes from a dict keyed by asset reference, with optional per-ref delays."""

    def __init__(self, assets: Optional[Dict] = None, delays: Optional[Dict] = None):
        self.assets = assets or {}
        self.delays = delays or {}
        self.calls: List = []

    async def __aenter__(self) -> "FakeResolver":
        return self

    async def __aexit__(self, *exc_info) -> None:
        return None

    async def resolve(self, ref):
        self.calls.append(ref)
        delay = self.delays.get(ref)
        if delay:
            await asyncio.sleep(delay)
        return self.assets.get(ref)


class RecordingWriter(DocumentStreamWriter):
    """Real writer that also records every drawing call with the page it landed on."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.events: List[tuple] = []

    async def new_page(self) -> None:
        await super().new_page()
        self.events.append(("page", self.page_count))

    def draw_text(self, text, x, y, style=TextStyle(), width=None):
        result = super().draw_text(text, x, y, style, width)
        self.events.append(("text", self.page_count, text, x, y))
        return result

    def draw_image(self, image, x, y, width, height):
        super().draw_image(image, x, y, width, height)
        self.events.append(("image", self.page_count, image, x, y, width, height))

    def draw_rect(self, x, y, width, height, stroke=None, fill=None, line_width=1.0):
        super().draw_rect(x, y, width, height, stroke=stroke, fill=fill, line_width=line_width)
        self.events.append(("rect", self.page_count, x, y, width, height, stroke, fill))

    def texts(self, page: Optional[int] = None) -> List[tuple]:
        return [e for e in self.events if e[0] == "text" and (page is None or e[1] == page)]

    def images(self) -> List[tuple]:
        return [e for e in self.events if e[0] == "image"]

    def rects(self) -> List[tuple]:
        return [e for e in self.events if e[0] == "rect"]


class BrokenSink(MemorySink):
    """Accepts ``ok_writes`` chunks, then fails like a dropped connection."""

    def __init__(self, ok_writes: int = 0):
        super().__init__()
        self.ok_writes = ok_writes
        self.attempts = 0

    async def write(self, data: bytes) -> None:
        self.attempts += 1
        if self.attempts > self.ok_writes:
            raise ConnectionResetError("client went away")
        await super().write(data)


async def run_program(job: RenderJob, resolver=None, window: int = 3, cache: bool = False):
    """Drive one job through the composer with a RecordingWriter; returns (writer, composer, sink)."""
    program = program_for(job)
    program.validate()
    sink = MemorySink()
    writer = RecordingWriter(sink, *program.page_size(), compress=False)
    stage = AssetStage(resolver or FakeResolver(), None, cache=cache)
    composer = Composer(writer, stage, window=window)
    try:
        await composer.run(
            job.entities,
            program.asset_refs,
            lambda index, entity, assets: program.draw_entity(composer, index, entity, assets),
        )
    finally:
        await stage.close()
    await writer.finish()
    return writer, composer, sink


class RaisingStore:
    """Blob store whose reads fail with something other than AssetUnavailable."""

    def __init__(self, blobs: Optional[Dict[str, bytes]] = None):
        self.blobs = blobs or {}

    async def open(self, key: str) -> bytes:
        if key in self.blobs:
            return self.blobs[key]
        raise ValueError("Must supply cloud_name in tag or in configuration")

    async def close(self) -> None:
        return None


async def _ok(request: web.Request) -> web.Response:
    return web.Response(body=b"IMG", content_type="image/png")


async def _broken(request: web.Request) -> web.Response:
    return web.Response(status=500, text="boom")


@asynccontextmanager
async def asset_server():
    """Local HTTP origin: ``/uploads/ok.png`` -> 200, ``/uploads/broken.png`` -> 500, anything else 404."""
    app = web.Application()
    app.router.add_get("/uploads/ok.png", _ok)
    app.router.add_get("/uploads/broken.png", _broken)
    server = TestServer(app)
    await server.start_server()
    try:
        yield server
    finally:
        await server.close()
