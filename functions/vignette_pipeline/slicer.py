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

from __future__ import annotations

import io
import logging
from typing import List

from PIL import Image, UnidentifiedImageError

from shared.errors import InvalidImageGeometry
from shared.types import GRID_SIZE

logger = logging.getLogger(__name__)


def load_image(image_bytes: bytes) -> Image.Image:
    """
    Decodes image bytes into a fully loaded PIL image.

    Raises:
        InvalidImageGeometry: If the bytes are not a decodable image.
    """
    try:
        with Image.open(io.BytesIO(image_bytes)) as img:
            img.load()
            return img.copy()
    except (UnidentifiedImageError, OSError) as e:
        raise InvalidImageGeometry(f"Panorama is not a decodable image: {e}") from e


def check_geometry(width: int, height: int, grid_size: int = GRID_SIZE) -> int:
    """
    Validates a panorama's size and returns the panel side length.

    Raises:
        InvalidImageGeometry: If the image is not square or its side is not
                              evenly divisible by `grid_size`.
    """
    if grid_size <= 0:
        raise ValueError("grid_size must be positive")
    if width != height:
        raise InvalidImageGeometry(f"Panorama must be square, got {width}x{height}")
    if width == 0 or width % grid_size:
        raise InvalidImageGeometry(
            f"Panorama side {width} is not divisible by grid size {grid_size}"
        )
    return width // grid_size


def slice_image(image: Image.Image, grid_size: int = GRID_SIZE) -> List[Image.Image]:
    """
    Crops a square image into grid_size x grid_size equal panels.

    Panels are returned in row-major (reading) order: index = row * grid_size + col.
    """
    panel_side = check_geometry(image.width, image.height, grid_size)
    panels = []
    for row in range(grid_size):
        for col in range(grid_size):
            left = col * panel_side
            top = row * panel_side
            panels.append(image.crop((left, top, left + panel_side, top + panel_side)))
    return panels


def slice_panorama(image_bytes: bytes, grid_size: int = GRID_SIZE) -> List[bytes]:
    """
    Slices an encoded panorama into PNG-encoded panels.

    Args:
        image_bytes (bytes): The encoded panoramic image.
        grid_size (int): Panels per row and per column.

    Returns:
        List[bytes]: grid_size**2 PNG images in row-major order.

    Raises:
        InvalidImageGeometry: If the image cannot be decoded, is not square,
                              or its side is not divisible by grid_size.
    """
    image = load_image(image_bytes)
    logger.info("Slicing %dx%d panorama into %dx%d grid", image.width, image.height, grid_size, grid_size)
    encoded = []
    for panel in slice_image(image, grid_size):
        buffer = io.BytesIO()
        panel.save(buffer, format="PNG")
        encoded.append(buffer.getvalue())
    return encoded
