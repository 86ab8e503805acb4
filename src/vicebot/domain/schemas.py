"""Pydantic schemas: LLM structured outputs and the HTTP API."""

from typing import Literal, Optional

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# LLM structured outputs
# ---------------------------------------------------------------------------

AreaCodeLiteral = Literal["it", "man", "ama", "rs", "seg"]


class VisionResponse(BaseModel):
    """Vision analyzer output for one guest photo."""
    interpretacion: Optional[str] = Field(default=None, description="Brief neutral description of the problem")
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    tags: list[str] = Field(default_factory=list)
    safety: list[str] = Field(default_factory=list, description="Safety concerns visible in the photo")
    area_hints: list[AreaCodeLiteral] = Field(default_factory=list, description="Most likely areas first")


class InformalPlaceResponse(BaseModel):
    """Informal place classifier output."""
    found: bool = False
    canonical_label: Optional[str] = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)


# ---------------------------------------------------------------------------
# HTTP API
# ---------------------------------------------------------------------------

class ImagePayload(BaseModel):
    mimetype: str = "image/jpeg"
    data_base64: str
    filename: Optional[str] = None


class TurnRequest(BaseModel):
    conversation_id: str = Field(min_length=1, max_length=100)
    text: str = ""
    images: list[ImagePayload] = Field(default_factory=list)


class TurnResponse(BaseModel):
    replies: list[str] = Field(default_factory=list)
    mode: Optional[str] = None
    folio: Optional[str] = None


class DraftSnapshot(BaseModel):
    descripcion: Optional[str] = None
    descripcion_original: Optional[str] = None
    interpretacion: Optional[str] = None
    lugar: Optional[str] = None
    building: Optional[str] = None
    floor: Optional[str] = None
    room: Optional[str] = None
    area_destino: Optional[str] = None
    areas: list[str] = Field(default_factory=list)
    details: list[str] = Field(default_factory=list)


class SessionSnapshot(BaseModel):
    conversation_id: str
    mode: str
    draft: DraftSnapshot
    pending_media: int = 0
    vision_area_hints: list[str] = Field(default_factory=list)


class IncidentOut(BaseModel):
    id: str
    folio: str
    status: str
    descripcion: Optional[str] = None
    lugar: str
    area_destino: str
    areas: list[str] = Field(default_factory=list)
    details: list[str] = Field(default_factory=list)

    model_config = {"from_attributes": True}
