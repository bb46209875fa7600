# infrastructure/pdf/stream_writer.py
"""Page-at-a-time PDF writer.

Objects are appended to a page buffer as drawing happens. When a page is
closed, its content stream and page object are added and the buffer is handed
to the sink, so at most one page of output is held in memory. The page tree,
catalog and cross-reference table are written by ``finish()``; the page tree
is the only object that refers forward and its number is reserved up front.

Callers use top-left coordinates with y growing downward. The writer flips
them into PDF user space.
"""

import logging
import weakref
import zlib
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from reportlab.lib import colors
from reportlab.pdfbase.pdfmetrics import getAscent, stringWidth

from cardpress.domain.errors import SinkFailure
from cardpress.infrastructure.pdf.images import PdfImage
from cardpress.infrastructure.sinks import DocumentSink

logger = logging.getLogger(__name__)

PDF_HEADER = b"%PDF-1.4\n%\xe2\xe3\xcf\xd3\n"
CONTENT_TYPE = "application/pdf"

# Standard Type1 fonts, never embedded.
FONT_RESOURCES = {"Helvetica": "F1", "Helvetica-Bold": "F2"}


@dataclass(frozen=True)
class TextStyle:
    font: str = "Helvetica"
    size: float = 12.0
    color: str = "#000000"
    align: str = "left"
    underline: bool = False


def _num(value: float) -> str:
    text = f"{value:.3f}".rstrip("0").rstrip(".")
    return "0" if text in ("", "-0") else text


def _rgb(color: str) -> Tuple[float, float, float]:
    try:
        c = colors.toColor(color)
    except ValueError:
        logger.warning(f"Unknown color {color!r}, using black.")
        c = colors.black
    return c.red, c.green, c.blue


def _pdf_string(text: str) -> bytes:
    raw = " ".join(text.splitlines()).encode("cp1252", errors="replace")
    raw = raw.replace(b"\\", b"\\\\").replace(b"(", b"\\(").replace(b")", b"\\)")
    return b"(" + raw + b")"


class DocumentStreamWriter:
    def __init__(self, sink: DocumentSink, page_width: float, page_height: float, compress: bool = True):
        self.sink = sink
        self.page_width = page_width
        self.page_height = page_height
        self.compress = compress

        self._object_count = 0
        self._offsets: Dict[int, int] = {}
        self._written = 0
        self._buffer = bytearray()
        self._header_done = False

        self._catalog_id = self._reserve()
        self._pages_id = self._reserve()
        self._font_ids = {font: self._reserve() for font in FONT_RESOURCES}
        self._page_ids: List[int] = []
        self._images = weakref.WeakKeyDictionary()

        self._ops: Optional[List[bytes]] = None
        self._page_xobjects: Dict[str, int] = {}
        self._failed = False
        self._finished = False

    # --- state ---

    @property
    def page_count(self) -> int:
        return len(self._page_ids) + (1 if self._ops is not None else 0)

    @property
    def bytes_written(self) -> int:
        return self._written

    @property
    def finished(self) -> bool:
        return self._finished

    # --- low level object output ---

    def _reserve(self) -> int:
        self._object_count += 1
        return self._object_count

    def _emit_object(self, obj_id: int, body: bytes) -> None:
        if not self._header_done:
            self._buffer += PDF_HEADER
            self._header_done = True
        self._offsets[obj_id] = self._written + len(self._buffer)
        self._buffer += f"{obj_id} 0 obj\n".encode("ascii") + body + b"\nendobj\n"

    def _emit_dict(self, obj_id: int, entries: str) -> None:
        self._emit_object(obj_id, f"<< {entries} >>".encode("ascii"))

    def _emit_stream(self, obj_id: int, entries: str, data: bytes) -> None:
        head = f"<< {entries} /Length {len(data)} >>\nstream\n".encode("ascii")
        self._emit_object(obj_id, head + data + b"\nendstream")

    async def _flush(self) -> None:
        if not self._buffer:
            return
        chunk = bytes(self._buffer)
        self._buffer.clear()
        try:
            await self.sink.write(chunk)
        except Exception as e:
            self._failed = True
            raise SinkFailure(f"sink rejected {len(chunk)} bytes after {self._written}: {type(e).__name__}: {e}") from e
        self._written += len(chunk)

    # --- pages ---

    def _ensure_page(self) -> List[bytes]:
        if self._finished:
            raise RuntimeError("document already finished")
        if self._ops is None:
            self._ops = []
            self._page_xobjects = {}
        return self._ops

    def _close_page(self) -> None:
        content = b"\n".join(self._ops)
        entries = ""
        if self.compress:
            content = zlib.compress(content)
            entries = "/Filter /FlateDecode"
        content_id = self._reserve()
        self._emit_stream(content_id, entries, content)

        fonts = " ".join(f"/{res} {self._font_ids[font]} 0 R" for font, res in FONT_RESOURCES.items())
        resources = f"/Font << {fonts} >>"
        if self._page_xobjects:
            xobjects = " ".join(f"/{name} {obj_id} 0 R" for name, obj_id in self._page_xobjects.items())
            resources += f" /XObject << {xobjects} >>"
        page_id = self._reserve()
        self._emit_dict(
            page_id,
            f"/Type /Page /Parent {self._pages_id} 0 R "
            f"/MediaBox [0 0 {_num(self.page_width)} {_num(self.page_height)}] "
            f"/Resources << {resources} >> /Contents {content_id} 0 R",
        )
        self._page_ids.append(page_id)
        self._ops = None
        self._page_xobjects = {}

    async def new_page(self) -> None:
        """Close the current page, send it to the sink and start the next one.

        Before anything is drawn there is no current page; the first drawing
        call opens page one, so an empty render produces no pages.
        """
        if self._finished:
            raise RuntimeError("document already finished")
        if self._ops is not None:
            self._close_page()
            await self._flush()
        self._ensure_page()

    # --- drawing ---

    def _embed(self, image: PdfImage) -> str:
        obj_id = self._images.get(image)
        if obj_id is None:
            obj_id = self._reserve()
            self._emit_stream(
                obj_id,
                f"/Type /XObject /Subtype /Image /Width {image.width} /Height {image.height} "
                "/ColorSpace /DeviceRGB /BitsPerComponent 8 /Filter /DCTDecode",
                image.data,
            )
            self._images[image] = obj_id
        name = f"Im{obj_id}"
        self._page_xobjects[name] = obj_id
        return name

    def draw_image(self, image: PdfImage, x: float, y: float, width: float, height: float) -> None:
        ops = self._ensure_page()
        name = self._embed(image)
        bottom = self.page_height - y - height
        ops.append(
            f"q {_num(width)} 0 0 {_num(height)} {_num(x)} {_num(bottom)} cm /{name} Do Q".encode("ascii")
        )

    def draw_text(self, text: str, x: float, y: float, style: TextStyle = TextStyle(), width: Optional[float] = None) -> float:
        """Draw one line with its top at ``y``. Returns the rendered width.

        With ``width`` set, ``style.align`` positions the line inside ``[x, x + width]``.
        """
        ops = self._ensure_page()
        font = style.font if style.font in FONT_RESOURCES else "Helvetica"
        text_width = stringWidth(text, font, style.size)
        if width is not None and style.align == "center":
            x += (width - text_width) / 2
        elif width is not None and style.align == "right":
            x += width - text_width
        baseline = y + getAscent(font) * style.size / 1000.0
        r, g, b = _rgb(style.color)
        ops.append(
            f"BT /{FONT_RESOURCES[font]} {_num(style.size)} Tf {_num(r)} {_num(g)} {_num(b)} rg "
            f"{_num(x)} {_num(self.page_height - baseline)} Td ".encode("ascii")
            + _pdf_string(text)
            + b" Tj ET"
        )
        if style.underline:
            under = baseline + style.size * 0.12
            self.draw_line(x, under, x + text_width, under, color=style.color, line_width=max(0.5, style.size / 18))
        return text_width

    def draw_rect(
        self,
        x: float,
        y: float,
        width: float,
        height: float,
        stroke: Optional[str] = None,
        fill: Optional[str] = None,
        line_width: float = 1.0,
    ) -> None:
        ops = self._ensure_page()
        if stroke is None and fill is None:
            return
        parts = ["q"]
        if fill is not None:
            parts.append("%s %s %s rg" % tuple(_num(v) for v in _rgb(fill)))
        if stroke is not None:
            parts.append("%s %s %s RG %s w" % (*(_num(v) for v in _rgb(stroke)), _num(line_width)))
        bottom = self.page_height - y - height
        parts.append(f"{_num(x)} {_num(bottom)} {_num(width)} {_num(height)} re")
        parts.append("B" if fill is not None and stroke is not None else ("f" if fill is not None else "S"))
        parts.append("Q")
        ops.append(" ".join(parts).encode("ascii"))

    def draw_line(self, x1: float, y1: float, x2: float, y2: float, color: str = "#000000", line_width: float = 1.0) -> None:
        ops = self._ensure_page()
        r, g, b = _rgb(color)
        ops.append(
            f"q {_num(r)} {_num(g)} {_num(b)} RG {_num(line_width)} w "
            f"{_num(x1)} {_num(self.page_height - y1)} m {_num(x2)} {_num(self.page_height - y2)} l S Q".encode("ascii")
        )

    # --- end of document ---

    async def finish(self) -> None:
        """Close the last page and write the document trailer. Safe to call again."""
        if self._finished:
            return
        self._finished = True
        if self._failed:
            logger.warning("Sink failed earlier in this pass; document trailer not written.")
            return
        if self._ops is not None:
            self._close_page()
        for font, obj_id in self._font_ids.items():
            self._emit_dict(obj_id, f"/Type /Font /Subtype /Type1 /BaseFont /{font} /Encoding /WinAnsiEncoding")
        kids = " ".join(f"{page_id} 0 R" for page_id in self._page_ids)
        self._emit_dict(self._pages_id, f"/Type /Pages /Kids [{kids}] /Count {len(self._page_ids)}")
        self._emit_dict(self._catalog_id, f"/Type /Catalog /Pages {self._pages_id} 0 R")

        xref_at = self._written + len(self._buffer)
        size = self._object_count + 1
        xref = [f"xref\n0 {size}\n", "0000000000 65535 f \n"]
        xref += [f"{self._offsets[obj_id]:010d} 00000 n \n" for obj_id in range(1, size)]
        self._buffer += "".join(xref).encode("ascii")
        self._buffer += (
            f"trailer\n<< /Size {size} /Root {self._catalog_id} 0 R >>\nstartxref\n{xref_at}\n%%EOF\n"
        ).encode("ascii")
        await self._flush()
