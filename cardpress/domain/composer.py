# domain/composer.py
"""Ordered fetch -> draw pipeline and the per-card drawing layers.

Assets for upcoming entities are resolved and decoded ahead of time in a
bounded window of asyncio tasks. Drawing consumes that window strictly in
input order, so the output never depends on which fetch finishes first.
"""

import asyncio
import logging
import traceback
from collections import deque
from concurrent.futures import Executor
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Deque, Dict, Iterable, List, Optional, Sequence, Tuple

from cardpress.config.settings import settings
from cardpress.domain.errors import SinkFailure
from cardpress.domain.layout import ResolvedField
from cardpress.domain.models import AssetReference, EntityRecord, ResultRow
from cardpress.infrastructure.assets.resolver import AssetResolver
from cardpress.infrastructure.pdf.images import PdfImage, prepare_image
from cardpress.infrastructure.pdf.qr import dark_runs, qr_matrix
from cardpress.infrastructure.pdf.stream_writer import DocumentStreamWriter, TextStyle

# --- LOGGER SETUP ---
logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler()
    formatter = logging.Formatter('%(asctime)s [%(levelname)s] %(message)s', '%Y-%m-%d %H:%M:%S')
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    logger.propagate = False

PLACEHOLDER_OUTLINE = "#e2e8f0"
TABLE_HEADER_FILL = "#f1f5f9"
TABLE_HEADER_TEXT = "#475569"


# --- Asset stage ---

class AssetStage:
    """Resolve + decode one asset reference into an embeddable image.

    With ``cache`` enabled, successful loads are shared by every entity in the
    pass that uses the same reference (one fetch, one embedded image). Failed
    loads are never cached, so a transient failure only affects the entities
    that hit it.
    """

    def __init__(
        self,
        resolver: AssetResolver,
        executor: Optional[Executor] = None,
        cache: bool = settings.ASSET_CACHE_ENABLED,
        max_side: int = settings.MAX_IMAGE_SIDE,
        quality: int = settings.JPEG_QUALITY,
    ):
        self.resolver = resolver
        self.executor = executor
        self.max_side = max_side
        self.quality = quality
        self._cache: Optional[Dict[AssetReference, asyncio.Future]] = {} if cache else None

    async def load(self, ref: Optional[AssetReference]) -> Optional[PdfImage]:
        if ref is None:
            return None
        if self._cache is None:
            return await self._load_uncached(ref)
        fut = self._cache.get(ref)
        if fut is None:
            fut = asyncio.ensure_future(self._load_uncached(ref))
            self._cache[ref] = fut
        try:
            image = await asyncio.shield(fut)
        except asyncio.CancelledError:
            raise
        except Exception:
            self._forget(ref, fut)
            raise
        if image is None:
            self._forget(ref, fut)
        return image

    def _forget(self, ref: AssetReference, fut: asyncio.Future) -> None:
        if self._cache.get(ref) is fut:
            del self._cache[ref]

    async def _load_uncached(self, ref: AssetReference) -> Optional[PdfImage]:
        raw = await self.resolver.resolve(ref)
        if raw is None:
            return None
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(self.executor, prepare_image, raw, self.max_side, self.quality)
        except Exception as e:
            logger.warning(f"Could not decode image ({len(raw)} bytes): {type(e).__name__}: {e}")
            return None

    async def close(self) -> None:
        if not self._cache:
            return
        pending = [fut for fut in self._cache.values() if not fut.done()]
        for fut in pending:
            fut.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self._cache.clear()


@dataclass
class EntityAssets:
    images: Dict[str, Optional[PdfImage]] = field(default_factory=dict)
    # roles whose load raised instead of resolving to an image or None
    failed_roles: List[str] = field(default_factory=list)

    def get(self, role: str) -> Optional[PdfImage]:
        return self.images.get(role)


# A layer draws one part of one entity. Layers run in list order.
Layer = Callable[["Composer", int, EntityRecord, EntityAssets], Awaitable[None]]


class Composer:
    def __init__(self, writer: DocumentStreamWriter, stage: AssetStage, window: int = settings.PREFETCH_WINDOW):
        self.writer = writer
        self.stage = stage
        self.window = max(1, window)
        self.drawn = 0
        self.failed_entities: List[int] = []

    # --- pipeline ---

    async def _prefetch(self, refs: Dict[str, Optional[AssetReference]]) -> EntityAssets:
        roles = list(refs)
        results = await asyncio.gather(*(self.stage.load(refs[role]) for role in roles), return_exceptions=True)
        assets = EntityAssets()
        for role, result in zip(roles, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                logger.warning(f"Asset '{role}' failed to load: {type(result).__name__}: {result}")
                assets.images[role] = None
                assets.failed_roles.append(role)
            else:
                assets.images[role] = result
        return assets

    async def run(
        self,
        entities: Sequence[EntityRecord],
        asset_refs: Callable[[EntityRecord], Dict[str, Optional[AssetReference]]],
        draw_entity: Callable[[int, EntityRecord, EntityAssets], Awaitable[None]],
    ) -> None:
        """Draw every entity in order with at most ``window`` prefetches in flight.

        A failure inside one entity is logged and skipped. ``SinkFailure`` and
        cancellation stop the pass; outstanding prefetches are cancelled and no
        new ones are started.
        """
        upcoming = iter(enumerate(entities))
        pending: Deque[Tuple[int, EntityRecord, asyncio.Task]] = deque()

        def schedule() -> None:
            for index, entity in upcoming:
                pending.append((index, entity, asyncio.ensure_future(self._prefetch(asset_refs(entity)))))
                return

        for _ in range(self.window):
            schedule()

        try:
            while pending:
                index, entity, task = pending.popleft()
                try:
                    assets = await task
                except asyncio.CancelledError:
                    raise
                except Exception:
                    logger.error(f"Entity #{index} ({entity.roll_no}): asset stage failed.\n{traceback.format_exc()}")
                    assets = EntityAssets()
                    self.failed_entities.append(index)
                if assets.failed_roles:
                    self.failed_entities.append(index)
                schedule()
                await draw_entity(index, entity, assets)
                self.drawn += 1
        finally:
            leftovers = [task for _, _, task in pending]
            for task in leftovers:
                task.cancel()
            if leftovers:
                await asyncio.gather(*leftovers, return_exceptions=True)

    async def draw_layers(self, index: int, entity: EntityRecord, assets: EntityAssets, layers: Iterable[Tuple[str, Layer]]) -> None:
        for name, layer in layers:
            try:
                await layer(self, index, entity, assets)
            except (SinkFailure, asyncio.CancelledError):
                raise
            except Exception:
                if index not in self.failed_entities[-1:]:
                    self.failed_entities.append(index)
                logger.error(
                    f"Entity #{index} ({entity.roll_no}): layer '{name}' failed, "
                    f"remaining layers skipped.\n{traceback.format_exc()}"
                )
                return

    # --- card layers ---

    def draw_background(self, x: float, y: float, width: float, height: float, image: Optional[PdfImage]) -> None:
        if image is not None:
            self.writer.draw_image(image, x, y, width, height)
        else:
            self.writer.draw_rect(x, y, width, height, stroke=PLACEHOLDER_OUTLINE)

    def draw_portrait(self, x: float, y: float, spec: ResolvedField, image: Optional[PdfImage]) -> bool:
        if image is None:
            return False
        self.writer.draw_image(image, x + spec.x, y + spec.y, spec.width, spec.height)
        return True

    def draw_identity(self, x: float, y: float, entity: EntityRecord, name: ResolvedField, roll: ResolvedField) -> None:
        self.writer.draw_text(
            entity.name.upper(), x + name.x, y + name.y,
            TextStyle(font="Helvetica-Bold", size=name.font_size, color=name.color),
        )
        self.writer.draw_text(
            f"Roll: {entity.roll_no}", x + roll.x, y + roll.y,
            TextStyle(font="Helvetica", size=roll.font_size, color=roll.color),
        )

    def draw_qr(self, x: float, y: float, spec: ResolvedField, payload: str, color: str = "#000000") -> None:
        matrix = qr_matrix(payload)
        size = min(spec.width, spec.height)
        module = size / len(matrix)
        left, top = x + spec.x, y + spec.y
        for row, col, length in dark_runs(matrix):
            self.writer.draw_rect(left + col * module, top + row * module, length * module, module, fill=color)

    # --- result table ---

    async def draw_results_table(
        self,
        rows: List[ResultRow],
        header_y: float,
        columns: Sequence[Tuple[str, float]],
        row_stride: float = 25.0,
        first_row_offset: float = 30.0,
        left: float = 50.0,
        width: float = 500.0,
        bottom_limit: Optional[float] = None,
        continued_header_y: float = 50.0,
        size: float = 12.0,
    ) -> int:
        """Header row then one line per result at ``header_y + offset + i * row_stride``.

        A row that would cross ``bottom_limit`` moves to a new page, where the
        header is repeated at ``continued_header_y``. Returns the pages opened.
        """
        bottom_limit = bottom_limit if bottom_limit is not None else self.writer.page_height - 50.0
        pages_opened = 0
        self._table_header(header_y, columns, left, width, size)
        row_index = 0
        for result in rows:
            row_y = header_y + first_row_offset + row_index * row_stride
            if row_y + size > bottom_limit:
                await self.writer.new_page()
                pages_opened += 1
                header_y = continued_header_y
                self._table_header(header_y, columns, left, width, size)
                row_index = 0
                row_y = header_y + first_row_offset
            style = TextStyle(size=size, color="#000000")
            values = (result.subject, result.marks, result.grade)
            for (_title, col_x), value in zip(columns, values):
                self.writer.draw_text(value, col_x, row_y, style)
            row_index += 1
        return pages_opened

    def _table_header(self, header_y, columns, left, width, size) -> None:
        self.writer.draw_rect(left, header_y, width, 20, fill=TABLE_HEADER_FILL)
        style = TextStyle(size=size, color=TABLE_HEADER_TEXT)
        for title, col_x in columns:
            self.writer.draw_text(title, col_x, header_y + 5, style)
