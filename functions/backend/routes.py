"""
HTTP routes for the vignette backend API.
"""

from __future__ import annotations

import logging
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header, Query

from backend.auth import AuthClient, parse_bearer
from backend.db import CONTENT_TYPE_VIGNETTE, DbClient
from backend.dependencies import get_auth_client, get_db_client, get_splicer
from backend.schemas import (
    GenerateData,
    GenerateRequest,
    GenerateResponse,
    HealthResponse,
    PanelListData,
    PanelListResponse,
    PanelPayload,
    SpliceData,
    SpliceRequest,
    SpliceResponse,
    VignetteStoryData,
    VignetteStoryResponse,
)
from shared.errors import NotFound, Unauthorized
from shared.types import (
    PANEL_COUNT,
    Panel,
    StoryCharacter,
    StoryMode,
    VignetteStoryParams,
)
from vignette_pipeline.splicer import VignetteSplicer, to_story_character

logger = logging.getLogger(__name__)

router = APIRouter()

DEFAULT_HERO_AGE = 6


def get_current_user(
    authorization: Optional[str] = Header(None),
    auth: AuthClient = Depends(get_auth_client),
) -> str:
    token = parse_bearer(authorization)
    if not token:
        raise Unauthorized("Missing bearer token")
    user_id = auth.get_user_id(token)
    if not user_id:
        raise Unauthorized("Invalid or expired session")
    return user_id


def _panel_payloads(panels: List[Panel]) -> List[PanelPayload]:
    return [PanelPayload(**panel.as_dict()) for panel in panels]


def _resolve_characters(
    payload: GenerateRequest, user_id: str, db: DbClient
) -> List[StoryCharacter]:
    """Hero first, then the other saved characters, then the ad-hoc ones."""
    others = [cid for cid in payload.character_ids if cid != payload.hero_id]
    requested = [payload.hero_id] + list(dict.fromkeys(others))
    records = db.get_characters(requested, user_id)
    found = {record.character_id for record in records}
    if payload.hero_id not in found:
        raise NotFound("Hero character not found")
    missing = [cid for cid in requested if cid not in found]
    if missing:
        raise NotFound(f"Characters not found: {', '.join(missing)}")

    characters = []
    for record in records:
        character = to_story_character(record)
        character.role = "hero" if record.character_id == payload.hero_id else None
        characters.append(character)
    characters.extend(
        StoryCharacter(name=extra.name, role=extra.role)
        for extra in payload.ad_hoc_characters
    )
    return characters


@router.get("/health", response_model=HealthResponse)
def health():
    return HealthResponse(status="ok")


@router.post("/vignette/generate", response_model=GenerateResponse)
def generate_vignette_story(
    payload: GenerateRequest,
    user_id: str = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
    splicer: VignetteSplicer = Depends(get_splicer),
):
    characters = _resolve_characters(payload, user_id, db)
    params = VignetteStoryParams(
        characters=characters,
        genre=payload.genre,
        tone=payload.tone,
        mode=StoryMode(payload.mode),
        custom_instructions=payload.custom_instructions,
        hero_age=payload.hero_age or DEFAULT_HERO_AGE,
    )
    logger.info(
        "Generating vignette story for user %s with %d characters",
        user_id,
        len(characters),
    )
    result = splicer.generate_story(
        params, user_id, character_ids=[c.id for c in characters if c.id]
    )
    return GenerateResponse(
        data=GenerateData(
            story_id=result.story_id,
            title=result.title,
            summary=result.summary,
            scenes=result.scenes,
            panels=_panel_payloads(result.panels),
            message=f"Successfully generated vignette story with {len(result.panels)} panels",
        )
    )


@router.post("/vignette/splice", response_model=SpliceResponse)
def splice_vignette(
    payload: SpliceRequest,
    user_id: str = Depends(get_current_user),
    splicer: VignetteSplicer = Depends(get_splicer),
):
    result = splicer.splice_story(str(payload.story_id), user_id)
    return SpliceResponse(
        data=SpliceData(
            story_id=result.story_id,
            panels=_panel_payloads(result.panels),
            panoramic_image_url=result.panoramic_image_url,
            generation_id=result.generation_id,
            message=f"Successfully created {len(result.panels)} vignette panels",
        )
    )


@router.get("/vignette/splice", response_model=PanelListResponse)
def list_vignette_panels(
    story_id: UUID = Query(..., alias="storyId"),
    user_id: str = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    story = db.get_story(str(story_id), user_id=user_id)
    if not story:
        raise NotFound("Story not found or access denied")
    panels = db.get_panels(story.story_id)
    return PanelListResponse(
        data=PanelListData(
            story_id=story.story_id,
            story_title=story.title,
            panels=_panel_payloads(panels),
            count=len(panels),
            complete=len(panels) == PANEL_COUNT,
        )
    )


@router.get("/vignettes/{story_id}", response_model=VignetteStoryResponse)
def get_vignette_story(
    story_id: UUID,
    user_id: str = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    story = db.get_story(
        str(story_id), user_id=user_id, content_type=CONTENT_TYPE_VIGNETTE
    )
    if not story:
        raise NotFound("Vignette story not found")
    panorama = db.get_panorama(story.story_id)
    metadata = story.generation_metadata
    return VignetteStoryResponse(
        data=VignetteStoryData(
            story_id=story.story_id,
            title=story.title,
            summary=metadata.get("summary") or story.body,
            theme=story.theme,
            scenes=metadata.get("scenes") or [],
            panels=_panel_payloads(db.get_panels(story.story_id)),
            panoramic_image_url=panorama.image_url if panorama else None,
            generation_metadata=metadata,
            vignette_prompt=story.vignette_prompt,
            vignette_helper_prompt=story.vignette_helper_prompt,
            created_at=story.created_at,
        )
    )
