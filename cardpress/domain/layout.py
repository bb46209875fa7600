# domain/layout.py
"""Grid placement and normalized-to-point mapping.

All coordinates here use a top-left origin with y growing downward, the same
convention the stream writer accepts. Field positions are fractions of the
*card*, not the page.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import NamedTuple, Optional, Tuple

from cardpress.domain.errors import InvalidGeometry
from cardpress.domain.models import AssetReference, FieldSpec, Geometry, Template

# --- Defaults, in points from the card's top-left corner ---
DEFAULT_FIELD_OFFSETS = {
    "photo": (10.0, 10.0),
    "name": (70.0, 20.0),
    "qrCode": (190.0, 90.0),
}
DEFAULT_PHOTO_SIZE = (50.0, 60.0)
DEFAULT_QR_SIZE = 50.0
DEFAULT_NAME_FONT_SIZE = 10.0
DEFAULT_ROLL_FONT_SIZE = 8.0
DEFAULT_TEXT_COLOR = "#000000"
ROLL_LINE_OFFSET = 12.0


class CardOrigin(NamedTuple):
    x: float
    y: float
    is_new_page: bool


@dataclass(frozen=True)
class ResolvedField:
    x: float
    y: float
    width: Optional[float] = None
    height: Optional[float] = None
    font_size: Optional[float] = None
    color: str = DEFAULT_TEXT_COLOR


@dataclass(frozen=True)
class ResolvedTemplate:
    """A template with every optional field filled in for one card size."""

    background: Optional[AssetReference]
    photo: ResolvedField
    name: ResolvedField
    roll: ResolvedField
    qr_code: ResolvedField


def validate_geometry(geometry: Geometry) -> None:
    positive = {
        "page_width": geometry.page_width,
        "page_height": geometry.page_height,
        "card_width": geometry.card_width,
        "card_height": geometry.card_height,
        "columns": geometry.columns,
        "rows_per_page": geometry.rows_per_page,
    }
    for name, value in positive.items():
        if not value > 0:
            raise InvalidGeometry(f"{name} must be positive, got {value}")
    for name in ("margin_x", "margin_y", "gap"):
        value = getattr(geometry, name)
        if value < 0:
            raise InvalidGeometry(f"{name} must not be negative, got {value}")


def cards_per_page(geometry: Geometry) -> int:
    return geometry.columns * geometry.rows_per_page


def card_origin(index: int, geometry: Geometry) -> CardOrigin:
    """Top-left corner of card ``index`` and whether it starts a new page.

    Cards fill rows left to right, rows fill pages top to bottom. Index 0 never
    starts a new page.
    """
    if index < 0:
        raise ValueError(f"card index must be non-negative, got {index}")
    per_page = cards_per_page(geometry)
    slot = index % per_page
    col = slot % geometry.columns
    row = slot // geometry.columns
    x = geometry.margin_x + col * (geometry.card_width + geometry.gap)
    y = geometry.margin_y + row * (geometry.card_height + geometry.gap)
    return CardOrigin(x, y, index > 0 and slot == 0)


def page_count(entity_count: int, geometry: Geometry) -> int:
    return math.ceil(entity_count / cards_per_page(geometry)) if entity_count > 0 else 0


def field_point(
    spec: Optional[FieldSpec],
    card_width: float,
    card_height: float,
    default: Tuple[float, float],
) -> Tuple[float, float]:
    """Map a normalized field position to points relative to the card origin."""
    if spec is None:
        return default
    px = spec.x * card_width if spec.x is not None else default[0]
    py = spec.y * card_height if spec.y is not None else default[1]
    return px, py


def _resolve_field(spec, card_width, card_height, default, **fallbacks) -> ResolvedField:
    x, y = field_point(spec, card_width, card_height, default)
    return ResolvedField(
        x=x,
        y=y,
        width=(spec.width if spec and spec.width else fallbacks.get("width")),
        height=(spec.height if spec and spec.height else fallbacks.get("height")),
        font_size=(spec.font_size if spec and spec.font_size else fallbacks.get("font_size")),
        color=(spec.color if spec and spec.color else DEFAULT_TEXT_COLOR),
    )


def resolve_template(template: Template, card_width: float, card_height: float) -> ResolvedTemplate:
    fields = template.fields
    name = _resolve_field(
        fields.get("name"), card_width, card_height, DEFAULT_FIELD_OFFSETS["name"],
        font_size=DEFAULT_NAME_FONT_SIZE,
    )
    # Roll number sits one line under the name unless placed explicitly.
    roll = _resolve_field(
        fields.get("roll"), card_width, card_height, (name.x, name.y + ROLL_LINE_OFFSET),
        font_size=DEFAULT_ROLL_FONT_SIZE,
    )
    return ResolvedTemplate(
        background=template.background_image,
        photo=_resolve_field(
            fields.get("photo"), card_width, card_height, DEFAULT_FIELD_OFFSETS["photo"],
            width=DEFAULT_PHOTO_SIZE[0], height=DEFAULT_PHOTO_SIZE[1],
        ),
        name=name,
        roll=roll,
        qr_code=_resolve_field(
            fields.get("qrCode"), card_width, card_height, DEFAULT_FIELD_OFFSETS["qrCode"],
            width=DEFAULT_QR_SIZE, height=DEFAULT_QR_SIZE,
        ),
    )
