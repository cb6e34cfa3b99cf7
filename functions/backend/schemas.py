"""
Pydantic schemas for the vignette API.

Wire names are camelCase; Python attributes stay snake_case.
"""

from __future__ import annotations

from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AdHocCharacter(ApiModel):
    name: str = Field(..., min_length=1, max_length=100)
    role: Optional[str] = Field(None, max_length=100)


class GenerateRequest(ApiModel):
    hero_id: str = Field(..., min_length=1)
    character_ids: List[str] = Field(default_factory=list)
    ad_hoc_characters: List[AdHocCharacter] = Field(default_factory=list)
    mode: Literal["fun", "growth"] = "fun"
    genre: str = Field(..., min_length=1, max_length=100)
    tone: str = Field(..., min_length=1, max_length=100)
    custom_instructions: Optional[str] = Field(None, max_length=1000)
    hero_age: Optional[int] = Field(None, ge=1, le=18)


class SpliceRequest(ApiModel):
    story_id: UUID


class PanelPayload(ApiModel):
    index: int
    image_url: str
    story_id: str


class SpliceData(ApiModel):
    story_id: str
    panels: List[PanelPayload]
    panoramic_image_url: str
    generation_id: str
    message: str


class SpliceResponse(ApiModel):
    success: bool = True
    data: SpliceData


class GenerateData(ApiModel):
    story_id: str
    title: str
    summary: str
    scenes: List[str]
    panels: List[PanelPayload]
    message: str


class GenerateResponse(ApiModel):
    success: bool = True
    data: GenerateData


class PanelListData(ApiModel):
    story_id: str
    story_title: str
    panels: List[PanelPayload]
    count: int
    complete: bool


class PanelListResponse(ApiModel):
    success: bool = True
    data: PanelListData


class VignetteStoryData(ApiModel):
    story_id: str
    title: str
    summary: str
    theme: Optional[str] = None
    scenes: List[str]
    panels: List[PanelPayload]
    panoramic_image_url: Optional[str] = None
    generation_metadata: dict
    vignette_prompt: Optional[str] = None
    vignette_helper_prompt: Optional[str] = None
    created_at: float


class VignetteStoryResponse(ApiModel):
    success: bool = True
    data: VignetteStoryData


class ErrorResponse(ApiModel):
    success: bool = False
    error: str
    details: Optional[list] = None


class HealthResponse(BaseModel):
    status: str
