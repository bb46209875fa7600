"""Render inputs: templates, geometry, entity records and asset references.

Everything here is a frozen pydantic model. A render pass reads these values
and never mutates them.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Dict, List, Literal, Optional, Union
from urllib.parse import urlsplit

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from reportlab.lib.pagesizes import A4


class DocumentKind(str, Enum):
    ID_CARD_GRID = "id-cards"
    ADMIT_CARD = "admit-card"
    RESULT_SHEET = "result-sheet"


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)


# --- Asset references ---

class RemoteAsset(_Frozen):
    kind: Literal["remote"] = "remote"
    url: str


class StoredAsset(_Frozen):
    kind: Literal["stored"] = "stored"
    key: str


AssetReference = Annotated[Union[RemoteAsset, StoredAsset], Field(discriminator="kind")]


def _is_absolute(value: str) -> bool:
    parts = urlsplit(value)
    return bool(parts.scheme or parts.netloc)


def asset_ref_from_path(value: str, stored: bool) -> Union[RemoteAsset, StoredAsset]:
    """Build a reference from the raw string kept by the record store.

    Absolute and protocol-relative URLs are always remote. Otherwise ``stored``
    decides: upload paths such as ``/uploads/abc.jpg`` become a blob key
    (``abc.jpg``), anything else is a path relative to the asset origin.
    """
    value = value.strip()
    if _is_absolute(value):
        return RemoteAsset(url=value)
    if stored:
        return StoredAsset(key=value.rstrip("/").split("/")[-1])
    return RemoteAsset(url=value)


def _coerce_ref(value, stored: bool):
    if value is None or value == "":
        return None
    if isinstance(value, str):
        return asset_ref_from_path(value, stored=stored)
    return value


# --- Template ---

# Designer UI names for the same field roles.
FIELD_ALIASES = {
    "studentPhoto": "photo",
    "studentName": "name",
    "rollNo": "roll",
    "qr": "qrCode",
}


class FieldSpec(_Frozen):
    x: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    y: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    width: Optional[float] = Field(default=None, gt=0, validation_alias=AliasChoices("width", "w", "size"))
    height: Optional[float] = Field(default=None, gt=0, validation_alias=AliasChoices("height", "h", "size"))
    font_size: Optional[float] = Field(default=None, gt=0, validation_alias=AliasChoices("font_size", "fontSize"))
    color: Optional[str] = None


class Template(_Frozen):
    background_image: Optional[AssetReference] = Field(
        default=None, validation_alias=AliasChoices("background_image", "backgroundImage")
    )
    fields: Dict[str, FieldSpec] = Field(
        default_factory=dict, validation_alias=AliasChoices("fields", "config", "settings")
    )

    @field_validator("background_image", mode="before")
    @classmethod
    def _background_from_path(cls, value):
        return _coerce_ref(value, stored=False)

    @field_validator("fields", mode="before")
    @classmethod
    def _canonical_field_names(cls, value):
        if not isinstance(value, dict):
            return value
        return {FIELD_ALIASES.get(name, name): spec for name, spec in value.items() if spec is not None}


# --- Geometry ---

class Geometry(_Frozen):
    """Page and card grid, in PDF points. Not validated here; see layout.validate_geometry."""

    page_width: float = A4[0]
    page_height: float = A4[1]
    card_width: float = 250
    card_height: float = 150
    margin_x: float = 40
    margin_y: float = 50
    gap: float = 20
    columns: int = 2
    rows_per_page: int = 5


# --- Entities ---

class ResultRow(_Frozen):
    subject: str
    marks: str = ""
    grade: str = ""

    @field_validator("marks", "grade", mode="before")
    @classmethod
    def _as_text(cls, value):
        return "" if value is None else str(value)


class EntityRecord(_Frozen):
    name: str
    roll_no: str = Field(validation_alias=AliasChoices("roll_no", "rollNo"))
    class_name: str = Field(default="", validation_alias=AliasChoices("class_name", "class"))
    father_name: Optional[str] = Field(default=None, validation_alias=AliasChoices("father_name", "fatherName"))
    mother_name: Optional[str] = Field(default=None, validation_alias=AliasChoices("mother_name", "motherName"))
    blood_group: Optional[str] = Field(default=None, validation_alias=AliasChoices("blood_group", "bloodGroup"))
    emergency_contact: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("emergency_contact", "emergencyContact")
    )
    address: Optional[str] = None
    photo: Optional[AssetReference] = None
    results: List[ResultRow] = Field(default_factory=list)

    @field_validator("roll_no", mode="before")
    @classmethod
    def _roll_as_text(cls, value):
        return str(value)

    @field_validator("photo", mode="before")
    @classmethod
    def _photo_from_path(cls, value):
        return _coerce_ref(value, stored=True)


class Institution(_Frozen):
    name: str = ""
    address: str = ""


class RenderJob(_Frozen):
    kind: DocumentKind
    entities: List[EntityRecord] = Field(default_factory=list)
    template: Template = Field(default_factory=Template)
    geometry: Geometry = Field(default_factory=Geometry)
    institution: Institution = Field(default_factory=Institution)
