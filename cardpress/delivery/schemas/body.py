from pydantic import BaseModel, Field
from typing import List, Optional

from cardpress.domain.models import DocumentKind, EntityRecord, Geometry, Institution, RenderJob, Template

class RenderRequest(BaseModel):
    # Already filtered by the caller; rendered in this order
    entities: List[EntityRecord] = Field(default_factory=list)

    # Tenant design; photo/name/qrCode positions are fractions of the card
    template: Template = Field(default_factory=Template)

    # Omit for the default A4 sheet of 2x5 cards
    geometry: Optional[Geometry] = None

    # Admit card header
    institution: Institution = Field(default_factory=Institution)

    def to_job(self, kind: DocumentKind) -> RenderJob:
        return RenderJob(
            kind=kind,
            entities=self.entities,
            template=self.template,
            geometry=self.geometry or Geometry(),
            institution=self.institution,
        )
