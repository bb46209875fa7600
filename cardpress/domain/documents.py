# domain/documents.py
"""The three document programs.

Each program decides where an entity goes (grid slot or its own page), which
assets it needs, and which layers to draw in which order. The drawing itself
goes through the Composer and the stream writer.
"""

from typing import Dict, List, Optional, Tuple, Type

from cardpress.domain.composer import Composer, EntityAssets, Layer
from cardpress.domain.errors import InvalidGeometry
from cardpress.domain.layout import card_origin, resolve_template, validate_geometry
from cardpress.domain.models import AssetReference, DocumentKind, EntityRecord, RenderJob
from cardpress.infrastructure.pdf.stream_writer import TextStyle

PAGE_MARGIN = 50.0


def qr_payload(entity: EntityRecord) -> str:
    return "|".join(part for part in (entity.roll_no, entity.name, entity.class_name) if part)


class DocumentProgram:
    kind: DocumentKind

    def __init__(self, job: RenderJob):
        self.job = job
        self.geometry = job.geometry

    def validate(self) -> None:
        g = self.geometry
        if not (g.page_width > 0 and g.page_height > 0):
            raise InvalidGeometry(f"page size must be positive, got {g.page_width}x{g.page_height}")

    def page_size(self) -> Tuple[float, float]:
        return self.geometry.page_width, self.geometry.page_height

    def asset_refs(self, entity: EntityRecord) -> Dict[str, Optional[AssetReference]]:
        return {}

    def layers(self, index: int) -> List[Tuple[str, Layer]]:
        raise NotImplementedError

    async def place(self, composer: Composer, index: int) -> None:
        """One page per entity."""
        if index > 0:
            await composer.writer.new_page()

    async def draw_entity(self, composer: Composer, index: int, entity: EntityRecord, assets: EntityAssets) -> None:
        await self.place(composer, index)
        await composer.draw_layers(index, entity, assets, self.layers(index))


class IdCardGrid(DocumentProgram):
    """Many cards per page; background, portrait, identity text and a QR code."""

    kind = DocumentKind.ID_CARD_GRID

    def __init__(self, job: RenderJob):
        super().__init__(job)
        self.fields = resolve_template(job.template, self.geometry.card_width, self.geometry.card_height)

    def validate(self) -> None:
        validate_geometry(self.geometry)

    def asset_refs(self, entity: EntityRecord) -> Dict[str, Optional[AssetReference]]:
        return {"background": self.fields.background, "photo": entity.photo}

    async def place(self, composer: Composer, index: int) -> None:
        if card_origin(index, self.geometry).is_new_page:
            await composer.writer.new_page()

    def layers(self, index: int) -> List[Tuple[str, Layer]]:
        g = self.geometry
        f = self.fields
        x, y, _ = card_origin(index, g)

        async def background(c: Composer, i, entity, assets):
            c.draw_background(x, y, g.card_width, g.card_height, assets.get("background"))

        async def photo(c: Composer, i, entity, assets):
            c.draw_portrait(x, y, f.photo, assets.get("photo"))

        async def identity(c: Composer, i, entity, assets):
            c.draw_identity(x, y, entity, f.name, f.roll)

        async def code(c: Composer, i, entity, assets):
            c.draw_qr(x, y, f.qr_code, qr_payload(entity))

        return [("background", background), ("photo", photo), ("identity", identity), ("code", code)]


class AdmitCard(DocumentProgram):
    """One official page per entity; fixed header and footer, no grid."""

    kind = DocumentKind.ADMIT_CARD

    TITLE = "EXAMINATION ADMIT CARD"
    INSTRUCTION = "Please carry a printed copy and your school ID to the exam center."
    SIGNATORY = "Controller of Examinations"
    PHOTO_BOX = (440.0, 140.0, 100.0, 120.0)

    def asset_refs(self, entity: EntityRecord) -> Dict[str, Optional[AssetReference]]:
        return {"photo": entity.photo}

    def layers(self, index: int) -> List[Tuple[str, Layer]]:
        width, _height = self.page_size()
        inner = width - 2 * PAGE_MARGIN
        institution = self.job.institution

        async def header(c: Composer, i, entity, assets):
            w = c.writer
            w.draw_text(
                institution.name.upper(), PAGE_MARGIN, 50,
                TextStyle(font="Helvetica-Bold", size=22, color="#1e40af", align="center"), width=inner,
            )
            w.draw_text(
                institution.address, PAGE_MARGIN, 78,
                TextStyle(size=10, color="#64748b", align="center"), width=inner,
            )
            w.draw_line(PAGE_MARGIN, 110, width - PAGE_MARGIN, 110, color="#cbd5e1")

        async def title(c: Composer, i, entity, assets):
            c.writer.draw_text(
                self.TITLE, PAGE_MARGIN, 118,
                TextStyle(size=16, color="#1e293b", align="center", underline=True), width=inner,
            )

        async def photo(c: Composer, i, entity, assets):
            image = assets.get("photo")
            if image is not None:
                c.writer.draw_image(image, *self.PHOTO_BOX)

        async def details(c: Composer, i, entity, assets):
            rows = (("Name: ", entity.name, 150), ("Roll No: ", entity.roll_no, 175), ("Class: ", entity.class_name, 200))
            for label, value, row_y in rows:
                label_width = c.writer.draw_text(label, PAGE_MARGIN, row_y, TextStyle(size=12, color="#475569"))
                c.writer.draw_text(value, PAGE_MARGIN + label_width, row_y, TextStyle(size=12, color="#000000"))

        async def footer(c: Composer, i, entity, assets):
            w = c.writer
            w.draw_text("Important:", PAGE_MARGIN, 650, TextStyle(size=10, color="#ef4444"))
            w.draw_text(self.INSTRUCTION, PAGE_MARGIN, 663, TextStyle(size=10, color="#64748b"))
            w.draw_text(
                self.SIGNATORY, 400, 750,
                TextStyle(size=10, color="#64748b", align="right"), width=width - PAGE_MARGIN - 400,
            )

        return [("header", header), ("title", title), ("photo", photo), ("details", details), ("footer", footer)]


class ResultSheet(DocumentProgram):
    """One progress report per entity with a subject/marks/grade table."""

    kind = DocumentKind.RESULT_SHEET

    TITLE = "PROGRESS REPORT"
    TABLE_HEADER_Y = 200.0
    ROW_STRIDE = 25.0
    COLUMNS = (("Subject", 60.0), ("Marks", 300.0), ("Grade", 450.0))

    def layers(self, index: int) -> List[Tuple[str, Layer]]:
        width, height = self.page_size()

        async def heading(c: Composer, i, entity, assets):
            w = c.writer
            w.draw_text(self.TITLE, PAGE_MARGIN, 50, TextStyle(size=20, align="center"), width=width - 2 * PAGE_MARGIN)
            w.draw_text(f"Student Name: {entity.name}", PAGE_MARGIN, 95, TextStyle(size=12))
            w.draw_text(f"Roll Number: {entity.roll_no}", PAGE_MARGIN, 112, TextStyle(size=12))
            if entity.class_name:
                w.draw_text(f"Class: {entity.class_name}", PAGE_MARGIN, 129, TextStyle(size=12))

        async def table(c: Composer, i, entity, assets):
            await c.draw_results_table(
                entity.results,
                header_y=self.TABLE_HEADER_Y,
                columns=self.COLUMNS,
                row_stride=self.ROW_STRIDE,
                left=PAGE_MARGIN,
                width=min(500.0, width - 2 * PAGE_MARGIN),
                bottom_limit=height - PAGE_MARGIN,
                continued_header_y=PAGE_MARGIN,
            )

        return [("heading", heading), ("table", table)]


PROGRAMS: Dict[DocumentKind, Type[DocumentProgram]] = {
    DocumentKind.ID_CARD_GRID: IdCardGrid,
    DocumentKind.ADMIT_CARD: AdmitCard,
    DocumentKind.RESULT_SHEET: ResultSheet,
}


def program_for(job: RenderJob) -> DocumentProgram:
    return PROGRAMS[job.kind](job)
