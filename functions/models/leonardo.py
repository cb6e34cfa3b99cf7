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

"""Image generation client for the Leonardo.ai REST API."""

from __future__ import annotations

import io
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Protocol

import requests
from PIL import Image

from shared.errors import ConfigurationError, GenerationFailed
from shared.types import GRID_SIZE, ImageResult

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://cloud.leonardo.ai/api/rest/v1"
REQUEST_TIMEOUT = 30  # seconds
RETRYABLE_STATUS_CODES = {408, 429, 500, 502, 503, 504}


class ImageGenerationClient(Protocol):
    """Anything that can turn a prompt into one square image."""

    def generate(self, prompt: str, size: int) -> ImageResult:
        ...


def _error_message(response: requests.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.reason or f"HTTP {response.status_code}"
    if isinstance(payload, dict):
        return payload.get("message") or payload.get("error") or str(payload)
    return str(payload)


@dataclass
class LeonardoClient:
    """
    Submits a generation job, polls it to completion and downloads the image.

    Every provider failure surfaces as GenerationFailed; `retryable` is set for
    timeouts, connection errors and HTTP 408/429/5xx.
    """

    api_key: str
    model_id: str
    base_url: str = DEFAULT_BASE_URL
    poll_interval_seconds: float = 2.0
    max_poll_attempts: int = 30
    timeout_seconds: float = 90.0
    guidance_scale: Optional[float] = 7
    negative_prompt: Optional[str] = None
    session: Optional[requests.Session] = None
    sleep: Callable[[float], None] = time.sleep
    clock: Callable[[], float] = time.monotonic

    def __post_init__(self):
        if not self.api_key:
            raise ConfigurationError("Leonardo API key is required")
        if self.session is None:
            self.session = requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"Bearer {self.api_key}",
                "Accept": "application/json",
            }
        )

    def _request(self, method: str, path: str, **kwargs) -> dict:
        url = f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"
        try:
            response = self.session.request(
                method, url, timeout=REQUEST_TIMEOUT, **kwargs
            )
        except requests.Timeout as exc:
            raise GenerationFailed(f"Leonardo request timed out: {exc}") from exc
        except requests.RequestException as exc:
            raise GenerationFailed(f"Leonardo request failed: {exc}") from exc

        if not response.ok:
            raise GenerationFailed(
                f"Leonardo API error: {_error_message(response)}",
                retryable=response.status_code in RETRYABLE_STATUS_CODES,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise GenerationFailed("Leonardo API returned invalid JSON") from exc

    def submit(self, prompt: str, size: int) -> str:
        """Start a generation job and return its id."""
        body = {
            "prompt": prompt,
            "modelId": self.model_id,
            "width": size,
            "height": size,
            "num_images": 1,
            "public": False,
        }
        if self.guidance_scale is not None:
            body["guidance_scale"] = self.guidance_scale
        if self.negative_prompt:
            body["negative_prompt"] = self.negative_prompt

        data = self._request("POST", "/generations", json=body)
        generation_id = (data.get("sdGenerationJob") or {}).get("generationId")
        if not generation_id:
            raise GenerationFailed(
                "No generation ID returned from Leonardo API", retryable=False
            )
        return generation_id

    def get_generation(self, generation_id: str) -> dict:
        data = self._request("GET", f"/generations/{generation_id}")
        generation = data.get("generations_by_pk")
        if not generation:
            raise GenerationFailed(
                f"Generation not found: {generation_id}", retryable=False
            )
        return generation

    def poll(self, generation_id: str, deadline: float) -> dict:
        """Poll until COMPLETE, FAILED, the attempt budget or the deadline."""
        for attempt in range(1, self.max_poll_attempts + 1):
            if self.clock() >= deadline:
                break
            try:
                generation = self.get_generation(generation_id)
            except GenerationFailed as exc:
                if not exc.retryable:
                    raise
                logger.warning(
                    "[%s] Poll attempt %d failed: %s", generation_id, attempt, exc
                )
            else:
                status = generation.get("status")
                if status == "COMPLETE":
                    return generation
                if status == "FAILED":
                    raise GenerationFailed(
                        f"Image generation failed: {generation_id}"
                    )
                logger.debug("[%s] Status %s (attempt %d)", generation_id, status, attempt)
            self.sleep(self.poll_interval_seconds)

        raise GenerationFailed(
            f"Generation {generation_id} timed out after {self.timeout_seconds:.0f}s"
        )

    def download_image(self, image_url: str) -> bytes:
        try:
            response = self.session.get(image_url, timeout=REQUEST_TIMEOUT)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise GenerationFailed(f"Failed to download image: {exc}") from exc
        return response.content

    def generate(self, prompt: str, size: int) -> ImageResult:
        deadline = self.clock() + self.timeout_seconds
        generation_id = self.submit(prompt, size)
        logger.info("[%s] Leonardo generation submitted (%dx%d)", generation_id, size, size)

        generation = self.poll(generation_id, deadline)
        images = [
            image
            for image in generation.get("generated_images") or []
            if not image.get("nsfw")
        ]
        if not images:
            raise GenerationFailed(
                "Leonardo generation returned no usable images", retryable=False
            )
        image_url = images[0]["url"]
        return ImageResult(
            generation_id=generation_id,
            image_url=image_url,
            image_bytes=self.download_image(image_url),
        )

    def get_user_credits(self) -> int:
        data = self._request("GET", "/me")
        details = data.get("user_details") or [{}]
        if isinstance(details, list):
            details = details[0] if details else {}
        return int(details.get("apiCreditBalance") or 0)

    def validate_connection(self) -> bool:
        try:
            self.get_user_credits()
        except GenerationFailed as exc:
            logger.error("Leonardo API validation failed: %s", exc)
            return False
        return True


CELL_COLORS = [
    (230, 57, 70),
    (241, 143, 1),
    (255, 209, 102),
    (6, 214, 160),
    (17, 138, 178),
    (7, 59, 76),
    (131, 56, 236),
    (255, 0, 110),
    (58, 134, 255),
]


def render_grid_image(size: int, grid_size: int = GRID_SIZE) -> bytes:
    """A PNG whose grid cells are flat, distinct colours in row-major order."""
    image = Image.new("RGB", (size, size), (255, 255, 255))
    cell = size // grid_size
    for row in range(grid_size):
        for col in range(grid_size):
            color = CELL_COLORS[(row * grid_size + col) % len(CELL_COLORS)]
            image.paste(color, (col * cell, row * cell, (col + 1) * cell, (row + 1) * cell))
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


@dataclass
class InMemoryImageClient:
    """Offline generator for development and tests."""

    failures: List[Exception] = field(default_factory=list)
    prompts: List[str] = field(default_factory=list)

    def generate(self, prompt: str, size: int) -> ImageResult:
        self.prompts.append(prompt)
        if self.failures:
            raise self.failures.pop(0)
        generation_id = uuid.uuid4().hex
        return ImageResult(
            generation_id=generation_id,
            image_url=f"https://example.test/generations/{generation_id}.png",
            image_bytes=render_grid_image(size),
        )
