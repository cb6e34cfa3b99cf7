# Copyright 2025 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# ==============================================================================

"""
Vignette splicer: one panoramic image in, nine stored panels out.

Workflow per run:
1. Build the panoramic prompt (always nine scenes)
2. Generate the square panorama, retrying transient provider failures
3. Slice it into a 3x3 grid of panels
4. Upload the panorama and the panels to blob storage
5. Record the panel rows and the panorama row in one transaction
"""

from __future__ import annotations

import logging
import random
import time
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Iterator, List, Optional

from backend.db import CONTENT_TYPE_STORY, CONTENT_TYPE_VIGNETTE, CharacterRecord, DbClient
from backend.locks import KeyBusy, KeyLock, hold
from backend.storage import StorageClient, panel_path, panorama_path
from models.leonardo import ImageGenerationClient
from shared.errors import (
    GenerationFailed,
    InvalidInput,
    NotFound,
    PersistenceFailed,
    SpliceInProgress,
    StorageWriteFailed,
    VignetteError,
)
from shared.types import (
    PANEL_COUNT,
    GeneratedVignette,
    ImageResult,
    Panel,
    Panorama,
    SpliceStage,
    StoryCharacter,
    VignetteResult,
    VignetteStoryParams,
)
from vignette_pipeline import prompt_builder
from vignette_pipeline.scene_writer import SceneWriter
from vignette_pipeline.slicer import slice_panorama

logger = logging.getLogger(__name__)

PLACEHOLDER_TITLE = "Generating vignette story..."
PLACEHOLDER_BODY = "Story generation in progress"


@dataclass
class SpliceRun:
    """Per-invocation state; never persisted."""

    story_id: str
    stage: SpliceStage = SpliceStage.START
    failure_reason: Optional[str] = None

    def advance(self, stage: SpliceStage) -> None:
        logger.info("[%s] %s -> %s", self.story_id, self.stage.value, stage.value)
        self.stage = stage

    def fail(self, reason: str) -> None:
        logger.warning(
            "[%s] %s -> %s: %s",
            self.story_id,
            self.stage.value,
            SpliceStage.FAILED.value,
            reason,
        )
        self.stage = SpliceStage.FAILED
        self.failure_reason = reason


def to_story_character(record: CharacterRecord) -> StoryCharacter:
    return StoryCharacter(
        id=record.character_id,
        name=record.name,
        description=record.appearance_description,
        character_type=record.character_type,
        attributes=record.attributes,
    )


class VignetteSplicer:
    """Composes prompt building, generation, slicing, storage and persistence."""

    def __init__(
        self,
        *,
        db: DbClient,
        storage: StorageClient,
        image_client: ImageGenerationClient,
        scene_writer: SceneWriter,
        key_lock: KeyLock,
        panorama_size: int = 1536,
        scene_fallback: str = prompt_builder.SCENE_FALLBACK_STRICT,
        prompt_max_length: int = prompt_builder.PANORAMIC_PROMPT_MAX_LENGTH,
        max_attempts: int = 3,
        retry_base_delay_seconds: float = 1.0,
        retry_max_delay_seconds: float = 30.0,
        upload_concurrency: int = 4,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.db = db
        self.storage = storage
        self.image_client = image_client
        self.scene_writer = scene_writer
        self.key_lock = key_lock
        self.panorama_size = panorama_size
        self.scene_fallback = scene_fallback
        self.prompt_max_length = prompt_max_length
        self.max_attempts = max_attempts
        self.retry_base_delay_seconds = retry_base_delay_seconds
        self.retry_max_delay_seconds = retry_max_delay_seconds
        self.upload_concurrency = max(1, upload_concurrency)
        self.sleep = sleep

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def splice_story(self, story_id: str, user_id: str) -> VignetteResult:
        """Generates and stores the nine panels for an existing story."""
        story = self.db.get_story(
            story_id, user_id=user_id, content_type=CONTENT_TYPE_STORY
        )
        if not story:
            raise NotFound("Story not found or access denied")

        characters = [
            to_story_character(c) for c in self.db.get_story_characters(story_id)
        ]
        run = SpliceRun(story_id=story_id)
        with self._pipeline(run):
            scenes = prompt_builder.map_paragraphs_to_scenes(
                story.paragraphs, PANEL_COUNT, self.scene_fallback
            )
            prompt = prompt_builder.build_panoramic_prompt(
                story.title,
                [prompt_builder.build_character_description(c) for c in characters],
                scenes,
                story.generation_metadata.get("genre") or "adventure",
                story.generation_metadata.get("tone") or "heartwarming",
                max_length=self.prompt_max_length,
            )
            run.advance(SpliceStage.PROMPT_BUILT)
            return self._render(run, prompt)

    def generate_story(
        self,
        params: VignetteStoryParams,
        user_id: str,
        character_ids: Optional[List[str]] = None,
    ) -> GeneratedVignette:
        """Writes a new vignette story from scratch, then renders its panels."""
        character_ids = character_ids or [c.id for c in params.characters if c.id]
        try:
            story = self.db.create_story(
                user_id,
                content_type=CONTENT_TYPE_VIGNETTE,
                title=PLACEHOLDER_TITLE,
                body=PLACEHOLDER_BODY,
                theme=params.genre,
                generation_metadata={
                    "mode": params.mode.value,
                    "genre": params.genre,
                    "tone": params.tone,
                    "hero_age": params.hero_age,
                    "characters_used": character_ids,
                },
            )
            if character_ids:
                self.db.link_story_characters(story.story_id, character_ids)
        except Exception as exc:
            logger.exception("Failed to create vignette story placeholder")
            raise PersistenceFailed(f"Failed to create vignette story: {exc}") from exc
        logger.info("[%s] Created placeholder vignette story", story.story_id)

        run = SpliceRun(story_id=story.story_id)
        with self._pipeline(run):
            written, helper_prompt = self.scene_writer.write_scenes(params)
            try:
                scenes = prompt_builder.map_paragraphs_to_scenes(
                    written.scenes, PANEL_COUNT, self.scene_fallback
                )
            except InvalidInput as exc:
                raise GenerationFailed(f"Scene writer output unusable: {exc}") from exc

            character_descriptions = [
                prompt_builder.build_character_description(c) for c in params.characters
            ]
            prompt = prompt_builder.build_prompt_from_visual_scenes(
                written.summary, character_descriptions, scenes
            )
            try:
                self.db.update_story(
                    story.story_id,
                    title=written.title,
                    body=written.summary,
                    generation_metadata={
                        "scenes": scenes,
                        "summary": written.summary,
                    },
                    vignette_helper_prompt=helper_prompt,
                    vignette_prompt=prompt,
                )
            except Exception as exc:
                raise PersistenceFailed(f"Failed to update vignette story: {exc}") from exc
            run.advance(SpliceStage.PROMPT_BUILT)

            result = self._render(run, prompt)
            return GeneratedVignette(
                story_id=story.story_id,
                title=written.title,
                summary=written.summary,
                scenes=scenes,
                panels=result.panels,
            )

    # ------------------------------------------------------------------
    # Pipeline stages
    # ------------------------------------------------------------------

    @contextmanager
    def _pipeline(self, run: SpliceRun) -> Iterator[None]:
        """Holds the story's single-flight lock and records the terminal state."""
        try:
            with hold(self.key_lock, run.story_id):
                yield
        except KeyBusy as exc:
            run.fail("another render is in progress")
            raise SpliceInProgress(
                f"Vignettes for story {run.story_id} are already being generated",
                stage=SpliceStage.START.value,
            ) from exc
        except VignetteError as exc:
            if exc.stage is None:
                exc.stage = run.stage.value
            run.fail(str(exc))
            raise
        except Exception as exc:
            logger.exception("[%s] Unexpected failure at %s", run.story_id, run.stage.value)
            run.fail(str(exc))
            raise

    def _render(self, run: SpliceRun, prompt: str) -> VignetteResult:
        image = self._generate_with_retry(run, prompt)
        run.advance(SpliceStage.IMAGE_GENERATED)

        panel_images = slice_panorama(image.image_bytes)
        run.advance(SpliceStage.PANELS_SLICED)

        # Uploads overwrite the previous objects in place, so earlier rows must
        # not outlive them
        try:
            self.db.clear_panels(run.story_id)
        except Exception as exc:
            logger.exception("[%s] Failed to clear previous panel metadata", run.story_id)
            raise PersistenceFailed(f"Failed to clear previous panels: {exc}") from exc

        panorama, panels = self._upload_assets(run, image, panel_images)
        run.advance(SpliceStage.ASSETS_UPLOADED)

        try:
            self.db.record_panels(run.story_id, panorama, panels)
        except Exception as exc:
            logger.exception("[%s] Failed to record panel metadata", run.story_id)
            raise PersistenceFailed(f"Failed to record panels: {exc}") from exc
        run.advance(SpliceStage.METADATA_RECORDED)

        return VignetteResult(
            story_id=run.story_id,
            panels=panels,
            panoramic_image_url=panorama.image_url,
            generation_id=image.generation_id,
        )

    def _retry_delay(self, attempt: int) -> float:
        delay = min(
            self.retry_max_delay_seconds,
            self.retry_base_delay_seconds * (2 ** (attempt - 1)),
        )
        return delay * random.uniform(0.8, 1.2)

    def _generate_with_retry(self, run: SpliceRun, prompt: str) -> ImageResult:
        for attempt in range(1, self.max_attempts + 1):
            try:
                result = self.image_client.generate(prompt, self.panorama_size)
            except GenerationFailed as exc:
                error = exc
            except Exception as exc:
                error = GenerationFailed(f"Image generation failed: {exc}", retryable=False)
                error.__cause__ = exc
            else:
                if not result.image_bytes:
                    raise GenerationFailed(
                        "Image provider returned no image data", retryable=False
                    )
                if attempt > 1:
                    logger.info("[%s] Generation succeeded on attempt %d", run.story_id, attempt)
                return result

            if not error.retryable or attempt == self.max_attempts:
                raise error
            delay = self._retry_delay(attempt)
            logger.warning(
                "[%s] Generation attempt %d/%d failed: %s. Retrying in %.1fs",
                run.story_id,
                attempt,
                self.max_attempts,
                error,
                delay,
            )
            self.sleep(delay)
        raise AssertionError("unreachable")

    def _upload_assets(
        self, run: SpliceRun, image: ImageResult, panel_images: List[bytes]
    ) -> tuple[Panorama, List[Panel]]:
        story_id = run.story_id

        def upload_panel(item: tuple[int, bytes]) -> Panel:
            index, data = item
            path = panel_path(story_id, index)
            url = self.storage.upload_bytes(path, data, "image/png")
            return Panel(
                story_id=story_id,
                index=index,
                image_url=url,
                storage_path=path,
                generation_id=image.generation_id,
            )

        try:
            path = panorama_path(story_id)
            panorama = Panorama(
                story_id=story_id,
                image_url=self.storage.upload_bytes(path, image.image_bytes, "image/png"),
                storage_path=path,
                generation_id=image.generation_id,
            )
            with ThreadPoolExecutor(max_workers=self.upload_concurrency) as pool:
                panels = list(pool.map(upload_panel, enumerate(panel_images)))
        except Exception as exc:
            logger.exception("[%s] Asset upload failed", story_id)
            raise StorageWriteFailed(f"Failed to upload vignette assets: {exc}") from exc

        logger.info("[%s] Uploaded panorama and %d panels", story_id, len(panels))
        return panorama, panels
