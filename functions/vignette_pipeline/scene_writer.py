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

"""Language-model step that writes a title, summary and visual scenes."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Protocol

from pydantic import BaseModel

import models.gemini as gemini
from shared.errors import GenerationFailed
from shared.types import PANEL_COUNT, VignetteScenes, VignetteStoryParams
from vignette_pipeline import prompt_builder

logger = logging.getLogger(__name__)

SYSTEM_INSTRUCTION = (
    "You are a visual storytelling expert who creates detailed scene "
    "descriptions for panoramic storyboard images."
)


# Pydantic BaseModel used to specify structured output to Gemini
class VignetteScenesSchema(BaseModel):
    title: str
    summary: str
    scenes: List[str]


class SceneWriter(Protocol):
    def write_scenes(self, params: VignetteStoryParams) -> tuple[VignetteScenes, str]:
        """Returns the scenes and the prompt that produced them."""
        ...


@dataclass
class GeminiSceneWriter:
    api_key: str
    model: str = gemini.DEFAULT_MODEL

    def write_scenes(self, params: VignetteStoryParams) -> tuple[VignetteScenes, str]:
        prompt = prompt_builder.build_scene_writer_prompt(params)
        parsed = gemini.call_predict_with_schema(
            prompt,
            VignetteScenesSchema,
            api_key=self.api_key,
            model=self.model,
            system_instruction=SYSTEM_INSTRUCTION,
            temperature=gemini.SCENE_WRITER_TEMPERATURE,
        )
        if not isinstance(parsed, VignetteScenesSchema):
            raise GenerationFailed("Scene writer returned no usable response")
        if not parsed.title.strip() or not parsed.scenes:
            raise GenerationFailed("Scene writer returned an empty story")
        logger.info("Scene writer produced '%s' with %d scenes", parsed.title, len(parsed.scenes))
        return (
            VignetteScenes(
                title=parsed.title.strip(),
                summary=parsed.summary.strip(),
                scenes=[s.strip() for s in parsed.scenes if s and s.strip()],
            ),
            prompt,
        )


@dataclass
class InMemorySceneWriter:
    """Deterministic scene writer for development and tests."""

    scene_count: int = PANEL_COUNT
    calls: List[VignetteStoryParams] = field(default_factory=list)

    def write_scenes(self, params: VignetteStoryParams) -> tuple[VignetteScenes, str]:
        self.calls.append(params)
        prompt = prompt_builder.build_scene_writer_prompt(params)
        hero = params.characters[0].name if params.characters else "Our hero"
        scenes = [
            f"Scene {i + 1}: {hero} on a {params.genre.lower()} journey, moment {i + 1}"
            for i in range(self.scene_count)
        ]
        return (
            VignetteScenes(
                title=f"{hero}'s {params.genre} Adventure",
                summary=f"{hero} discovers something {params.tone.lower()}",
                scenes=scenes,
            ),
            prompt,
        )
