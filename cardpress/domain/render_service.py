# domain/render_service.py
import asyncio
import logging
import os
import time
import traceback
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

import psutil

from cardpress.config.settings import settings
from cardpress.domain.composer import AssetStage, Composer
from cardpress.domain.documents import DocumentProgram, program_for
from cardpress.domain.errors import SinkFailure
from cardpress.domain.models import DocumentKind, RenderJob
from cardpress.infrastructure.assets.resolver import AssetResolver
from cardpress.infrastructure.pdf.stream_writer import CONTENT_TYPE, DocumentStreamWriter
from cardpress.infrastructure.sinks import DocumentSink
from cardpress.infrastructure.storage.blob_store import BlobStore

# --- LOGGER SETUP ---
logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler()
    formatter = logging.Formatter('%(asctime)s [%(levelname)s] %(message)s', '%Y-%m-%d %H:%M:%S')
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    logger.propagate = False


def suggested_filename(kind: DocumentKind, now: Optional[datetime] = None) -> str:
    now = now or datetime.now()
    return f"{kind.value}_{now:%Y%m%d_%H%M%S}.pdf"


@dataclass
class RenderSummary:
    kind: DocumentKind
    entities: int
    pages: int
    bytes_written: int
    duration: float
    failed_entities: List[int] = field(default_factory=list)
    content_type: str = CONTENT_TYPE


def _memory_mb() -> float:
    return psutil.Process(os.getpid()).memory_info().rss / 1024 / 1024


class RenderService:
    """Runs render passes. Each pass owns its writer, resolver session and prefetch tasks."""

    def __init__(
        self,
        blob_store: BlobStore,
        cpu_executor: Optional[ThreadPoolExecutor] = None,
        prefetch_window: int = settings.PREFETCH_WINDOW,
        cache_assets: bool = settings.ASSET_CACHE_ENABLED,
        base_url: str = settings.ASSET_BASE_URL,
        compress: bool = True,
        resolver_factory: Optional[Callable[[], AssetResolver]] = None,
    ):
        self.blob_store = blob_store
        self.cpu_executor = cpu_executor
        self.prefetch_window = prefetch_window
        self.cache_assets = cache_assets
        self.base_url = base_url
        self.compress = compress
        self.resolver_factory = resolver_factory

    def prepare(self, job: RenderJob) -> DocumentProgram:
        """Build and validate the program for ``job``. Raises InvalidGeometry."""
        program = program_for(job)
        program.validate()
        return program

    def resolver(self) -> AssetResolver:
        if self.resolver_factory is not None:
            return self.resolver_factory()
        return AssetResolver(self.blob_store, base_url=self.base_url)

    async def render(self, job: RenderJob, sink: DocumentSink, program: Optional[DocumentProgram] = None) -> RenderSummary:
        """Render ``job`` into ``sink`` and close the sink.

        Geometry errors are raised before anything is written. A sink failure or
        cancellation stops the pass after one attempt to finish the document.
        """
        if program is None:
            program = self.prepare(job)
        run_id = f"{job.kind.value}/{len(job.entities)}"
        logger.info(f"=== START RENDER {run_id} ===")
        try:
            logger.info(f"Memory usage at start: {_memory_mb():.1f}MB for {run_id}")
        except Exception as mem_error:
            logger.warning(f"Could not get memory info: {mem_error}")

        start = time.perf_counter()
        width, height = program.page_size()
        writer = DocumentStreamWriter(sink, width, height, compress=self.compress)
        try:
            async with self.resolver() as resolver:
                stage = AssetStage(resolver, self.cpu_executor, cache=self.cache_assets)
                composer = Composer(writer, stage, window=self.prefetch_window)
                try:
                    await composer.run(
                        job.entities,
                        program.asset_refs,
                        lambda index, entity, assets: program.draw_entity(composer, index, entity, assets),
                    )
                except (Exception, asyncio.CancelledError) as e:
                    logger.error(f"=== RENDER ABORTED {run_id} after {composer.drawn} entities: {type(e).__name__}: {e} ===")
                    await self._finish_after_abort(writer)
                    raise
                finally:
                    await stage.close()
                await writer.finish()
        finally:
            try:
                await sink.close()
            except Exception as close_error:
                logger.warning(f"Closing sink failed for {run_id}: {close_error}")

        duration = time.perf_counter() - start
        summary = RenderSummary(
            kind=job.kind,
            entities=len(job.entities),
            pages=writer.page_count,
            bytes_written=writer.bytes_written,
            duration=duration,
            failed_entities=sorted(set(composer.failed_entities)),
        )
        logger.info(
            f"=== COMPLETED RENDER {run_id}: {summary.pages} pages, {summary.bytes_written} bytes "
            f"in {duration:.2f}s ({len(summary.failed_entities)} entities degraded) ==="
        )
        return summary

    async def _finish_after_abort(self, writer: DocumentStreamWriter) -> None:
        try:
            await writer.finish()
        except SinkFailure as e:
            logger.warning(f"Could not finish document after abort: {e}")
        except Exception:
            logger.error(f"Unexpected error finishing document after abort.\n{traceback.format_exc()}")
