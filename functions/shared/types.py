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
Dataclasses shared by the vignette pipeline, the database layer and the API.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

GRID_SIZE = 3
PANEL_COUNT = GRID_SIZE * GRID_SIZE


class SpliceStage(Enum):
    START = "START"
    PROMPT_BUILT = "PROMPT_BUILT"
    IMAGE_GENERATED = "IMAGE_GENERATED"
    PANELS_SLICED = "PANELS_SLICED"
    ASSETS_UPLOADED = "ASSETS_UPLOADED"
    METADATA_RECORDED = "METADATA_RECORDED"
    FAILED = "FAILED"


class StoryMode(Enum):
    FUN = "fun"
    GROWTH = "growth"


@dataclass
class ImageResult:
    """One finished generation from the image provider."""

    generation_id: str
    image_url: Optional[str] = None
    image_bytes: Optional[bytes] = None


@dataclass
class Panel:
    """One grid cell of a panorama, row-major index 0..8."""

    story_id: str
    index: int
    image_url: str
    storage_path: str
    generation_id: str
    created_at: float = field(default_factory=lambda: time.time())

    def as_dict(self) -> dict:
        return {
            "index": self.index,
            "imageUrl": self.image_url,
            "storyId": self.story_id,
        }


@dataclass
class Panorama:
    """Reference row for the uncut panoramic image."""

    story_id: str
    image_url: str
    storage_path: str
    generation_id: str
    created_at: float = field(default_factory=lambda: time.time())


@dataclass
class StoryCharacter:
    """A character as it is fed to the prompt builders."""

    name: str
    description: Optional[str] = None
    character_type: str = "storybook_character"
    attributes: dict = field(default_factory=dict)
    id: Optional[str] = None
    role: Optional[str] = None


@dataclass
class VignetteStoryParams:
    characters: List[StoryCharacter]
    genre: str
    tone: str
    mode: StoryMode = StoryMode.FUN
    custom_instructions: Optional[str] = None
    hero_age: int = 6


@dataclass
class VignetteScenes:
    """Scene writer output: a title, a summary and the visual scenes."""

    title: str
    summary: str
    scenes: List[str]


@dataclass
class VignetteResult:
    story_id: str
    panels: List[Panel]
    panoramic_image_url: str
    generation_id: str


@dataclass
class GeneratedVignette:
    story_id: str
    title: str
    summary: str
    scenes: List[str]
    panels: List[Panel]
