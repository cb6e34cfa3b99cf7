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

"""Prompt builders for the nine-scene panoramic storyboard."""

from __future__ import annotations

import logging
import re
from typing import List, Optional

from shared.errors import InvalidInput
from shared.types import GRID_SIZE, PANEL_COUNT, StoryCharacter, StoryMode, VignetteStoryParams

logger = logging.getLogger(__name__)

SCENE_FALLBACK_STRICT = "strict"
SCENE_FALLBACK_PAD = "pad"

TRANSITION_SCENE = (
    "A transitional moment showing the passage of time or change in setting"
)
GENERIC_SCENE = "A moment in the story unfolds"
DEFAULT_CHARACTER_DESCRIPTION = "A character in the story"

MAX_SCENE_LENGTH = 120
MIN_SCENE_LENGTH = 24
PANORAMIC_PROMPT_MAX_LENGTH = 1500
VISUAL_SCENES_PROMPT_MAX_LENGTH = 2000

NUMBER_EMOJIS = ["1️⃣", "2️⃣", "3️⃣", "4️⃣", "5️⃣", "6️⃣", "7️⃣", "8️⃣", "9️⃣"]

_SCENE_PREFIX_PATTERN = re.compile(r"^(scene|frame|panel)\s*\d+\s*[:.)-]\s*", re.IGNORECASE)
_REPEATED_WORD_PATTERN = re.compile(r"\b(\w+)\s+\1\b", re.IGNORECASE)


def _normalize_beat(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip().lower()


def distinct_beats(paragraphs: List[str]) -> List[str]:
    """Non-empty paragraphs with case/whitespace duplicates removed, in order."""
    seen = set()
    beats = []
    for paragraph in paragraphs:
        cleaned = (paragraph or "").strip()
        key = _normalize_beat(cleaned)
        if not key or key in seen:
            continue
        seen.add(key)
        beats.append(cleaned)
    return beats


def map_paragraphs_to_scenes(
    paragraphs: List[str],
    scene_count: int = PANEL_COUNT,
    fallback: str = SCENE_FALLBACK_STRICT,
) -> List[str]:
    """
    Maps story paragraphs onto exactly `scene_count` scenes.

    With at least `scene_count` distinguishable beats, the beats are split into
    `scene_count` equal groups and the first beat of each group is kept. With
    fewer, `fallback` decides: "strict" raises InvalidInput, "pad" inserts
    transitional scenes evenly between the beats.

    Args:
        paragraphs (List[str]): Story paragraphs in reading order.
        scene_count (int): Number of scenes to produce.
        fallback (str): Policy for short stories, "strict" or "pad".

    Returns:
        List[str]: Exactly `scene_count` scene descriptions.

    Raises:
        InvalidInput: If the story is too short and the fallback is "strict".
    """
    if fallback not in (SCENE_FALLBACK_STRICT, SCENE_FALLBACK_PAD):
        raise ValueError(f"Unknown scene fallback: {fallback}")

    beats = distinct_beats(paragraphs)

    if len(beats) >= scene_count:
        per_group = len(beats) / scene_count
        return [beats[int(i * per_group)] for i in range(scene_count)]

    if fallback == SCENE_FALLBACK_STRICT:
        raise InvalidInput(
            f"Story has {len(beats)} distinguishable scenes; {scene_count} are required"
        )

    if not beats:
        return [GENERIC_SCENE] * scene_count

    needed = scene_count - len(beats)
    # Transition i goes after beat slots[i]; slots are spread evenly over the beats
    slots = [int((i + 1) * len(beats) / (needed + 1)) for i in range(needed)]
    scenes = []
    for index, beat in enumerate(beats):
        scenes.append(beat)
        scenes.extend(TRANSITION_SCENE for slot in slots if slot == index)
    return scenes


def _join_attributes(items: List[str]) -> str:
    if len(items) == 1:
        return items[0]
    if len(items) == 2:
        return " and ".join(items)
    return ", ".join(items[:-1]) + ", and " + items[-1]


def describe_from_attributes(character_type: str, attributes: dict) -> Optional[str]:
    """
    Builds an appearance sentence from structured character attributes.

    Returns None when the attributes carry nothing beyond the character type.
    """
    attrs = {key: str(value).strip() for key, value in (attributes or {}).items() if value}
    features: List[str] = []

    if character_type in ("child", "storybook_character"):
        if attrs.get("gender"):
            subject = f"A {attrs['gender']}"
        elif attrs.get("age"):
            subject = f"A {attrs['age']} year old child"
        else:
            subject = None
        for key, noun in (("hair", "hair"), ("eyes", "eyes"), ("skin", "skin"), ("body", "build")):
            if attrs.get(key):
                features.append(f"{attrs[key]} {noun}")
        if subject is None and not features:
            return None
        subject = subject or "A child"
    elif character_type == "pet":
        if attrs.get("species"):
            color = attrs.get("pet_color")
            subject = f"A {color} {attrs['species']}" if color else f"A {attrs['species']}"
        else:
            subject = None
        if attrs.get("eyes"):
            features.append(f"{attrs['eyes']} eyes")
        if subject is None and not features:
            return None
        subject = subject or "A pet"
    elif character_type == "magical_creature":
        if attrs.get("creature"):
            color = attrs.get("magical_color")
            subject = f"A {color} {attrs['creature']}" if color else f"A {attrs['creature']}"
        else:
            subject = None
        for key, noun in (("hair", "mane"), ("eyes", "eyes"), ("skin", "scales")):
            if attrs.get(key):
                features.append(f"{attrs[key]} {noun}")
        if subject is None and not features:
            return None
        subject = subject or "A magical creature"
    else:
        return None

    if features:
        return f"{subject} with {_join_attributes(features)}"
    return subject


def clean_repeated_words(text: str) -> str:
    """Collapses accidental doubled words, e.g. "build build"."""
    return _REPEATED_WORD_PATTERN.sub(r"\1", text)


def build_character_description(character: StoryCharacter) -> str:
    description = describe_from_attributes(
        character.character_type, character.attributes
    )
    if not description:
        description = (character.description or "").strip() or DEFAULT_CHARACTER_DESCRIPTION
    return f"{character.name}: {clean_repeated_words(description)}"


def determine_visual_style(genre: str, tone: str) -> str:
    genre_lower = (genre or "").lower()
    tone_lower = (tone or "").lower()

    if "heartwarming" in tone_lower or "gentle" in tone_lower:
        return "A heartwarming Disney-Pixar style"
    if "adventure" in genre_lower or "fantasy" in genre_lower:
        return "An epic Disney-Pixar style"
    if "mystery" in genre_lower:
        return "A mysterious yet playful Pixar style"
    return "A Disney-Pixar style"


def strip_scene_prefix(scene: str) -> str:
    return _SCENE_PREFIX_PATTERN.sub("", scene.strip())


def extract_visual_moment(paragraph: str, max_length: int = MAX_SCENE_LENGTH) -> str:
    """Shortens narrative text to one concrete moment: first sentence or a word-boundary cut."""
    cleaned = (
        paragraph.replace("“", '"')
        .replace("”", '"')
        .replace("‘", "'")
        .replace("’", "'")
    )
    cleaned = re.sub(r"\s+", " ", cleaned).strip()
    if len(cleaned) <= max_length:
        return cleaned

    first_sentence = re.match(r"^[^.!?]+[.!?]", cleaned)
    if first_sentence and len(first_sentence.group(0)) <= max_length:
        return first_sentence.group(0).strip()

    cut = cleaned[: max_length - 3]
    if " " in cut:
        cut = cut.rsplit(" ", 1)[0]
    return cut.strip() + "..."


def _scene_budget(boilerplate_length: int, max_length: int, scene_count: int) -> int:
    # 4 characters per scene for the number marker and separator
    budget = (max_length - boilerplate_length) // max(scene_count, 1) - 4
    return max(budget, MIN_SCENE_LENGTH)


def build_panoramic_prompt(
    title: str,
    character_descriptions: List[str],
    scenes: List[str],
    genre: str,
    tone: str,
    max_length: int = PANORAMIC_PROMPT_MAX_LENGTH,
) -> str:
    """
    Builds the image prompt for a 3x3 storyboard from story paragraphs.

    Scenes are numbered in reading order so panel index i shows scene i + 1.
    """
    if len(scenes) != PANEL_COUNT:
        raise InvalidInput(f"Expected {PANEL_COUNT} scenes, got {len(scenes)}")

    style = determine_visual_style(genre, tone)
    character_section = (
        ". ".join(character_descriptions) + "."
        if character_descriptions
        else "Characters in a story."
    )
    header = (
        f'{style} panoramic storyboard: {PANEL_COUNT} connected scenes arranged in a '
        f'{GRID_SIZE}x{GRID_SIZE} grid, read left to right, top to bottom, telling "{title}". '
        f"The same characters keep identical appearance, clothing and hair in every scene. "
        f"{character_section}"
    )
    closing = (
        "Cinematic lighting, detailed backgrounds, warm palette, cohesive composition. "
        "No text, borders, or frames."
    )

    def assemble(scene_length: int) -> str:
        scene_section = "\n".join(
            f"{idx + 1}. {extract_visual_moment(scene, scene_length)}"
            for idx, scene in enumerate(scenes)
        )
        return f"{header}\n\nScenes:\n{scene_section}\n\n{closing}"

    prompt = assemble(MAX_SCENE_LENGTH)
    if len(prompt) <= max_length:
        return prompt

    budget = _scene_budget(len(header) + len(closing) + 12, max_length, len(scenes))
    logger.warning(
        "Panoramic prompt too long (%d chars), trimming scenes to %d chars",
        len(prompt),
        budget,
    )
    prompt = assemble(min(budget, MAX_SCENE_LENGTH))
    if len(prompt) > max_length:
        logger.warning("Panoramic prompt still %d chars after trimming", len(prompt))
    return prompt


def build_prompt_from_visual_scenes(
    summary: str,
    character_descriptions: List[str],
    scenes: List[str],
    max_length: int = VISUAL_SCENES_PROMPT_MAX_LENGTH,
) -> str:
    """Builds the image prompt from scene-writer output (already visual, not narrative)."""
    if len(scenes) != PANEL_COUNT:
        raise InvalidInput(f"Expected {PANEL_COUNT} scenes, got {len(scenes)}")

    opening = (
        "A heartwarming Disney-Pixar style cinematic illustration showing nine connected "
        f"vignettes in a {GRID_SIZE}x{GRID_SIZE} grid, flowing left to right and top to "
        f"bottom in one panoramic image, telling a story about {summary.strip().rstrip('.')}."
    )
    character_section = ". ".join(clean_repeated_words(d) for d in character_descriptions)
    if character_section:
        character_section += "."
    facial = (
        "All faces have natural, well-proportioned eyes and realistic Pixar-style expressions."
    )
    closing = (
        "Pixar-style 3D realism, cinematic lighting consistency, detailed background, "
        "warm natural color palette, cohesive panoramic composition, no text, no captions."
    )

    def assemble(scene_length: Optional[int]) -> str:
        parts = []
        for idx, scene in enumerate(scenes):
            cleaned = strip_scene_prefix(scene)
            if scene_length is not None and len(cleaned) > scene_length:
                cleaned = cleaned[:scene_length].strip() + "..."
            parts.append(f"{NUMBER_EMOJIS[idx]} {cleaned}")
        return (
            f"{opening} {character_section} {facial} "
            f"The visual progression shows: {' '.join(parts)} {closing}"
        )

    prompt = assemble(None)
    if len(prompt) <= max_length:
        return prompt

    boilerplate = len(opening) + len(character_section) + len(facial) + len(closing) + 40
    budget = _scene_budget(boilerplate, max_length, len(scenes))
    logger.warning(
        "Visual-scenes prompt exceeds %d chars (%d), compressing scenes to %d",
        max_length,
        len(prompt),
        budget,
    )
    return assemble(budget)


def build_scene_writer_prompt(params: VignetteStoryParams) -> str:
    """Prompt asking the language model for a title, a summary and nine visual scenes."""
    character_lines = "\n".join(
        f"- {build_character_description(c)}"
        + (f" (role: {c.role})" if c.role else "")
        for c in params.characters
    )
    story_type = "Help my child grow" if params.mode == StoryMode.GROWTH else "Just for fun"

    topic = ""
    if params.custom_instructions:
        if params.mode == StoryMode.GROWTH:
            topic = f"- Growth Area: Emotional Growth, Topic: {params.custom_instructions}\n"
        else:
            topic = f"- Topic: {params.custom_instructions}\n"

    return f"""Write a short picture-book story told in exactly {PANEL_COUNT} visual scenes.

Story Information:
- Characters:
{character_lines}
- Story Type: {story_type}
{topic}- Genre: {params.genre}
- Tone: {params.tone}
- Reader age: {params.hero_age}

Requirements:
1. Return a title, a one-sentence summary, and exactly {PANEL_COUNT} scenes.
2. Each scene is one concrete visual moment (who, where, what they are doing), under 30 words.
3. Scenes flow in order and will be drawn left to right, top to bottom in a {GRID_SIZE}x{GRID_SIZE} grid.
4. Keep every character's appearance identical across scenes; refer to them by name.
5. No dialogue, captions or on-image text.
"""
