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

import io
import os
import unittest

from PIL import Image

from models.leonardo import CELL_COLORS, render_grid_image
from shared.errors import InvalidImageGeometry
from vignette_pipeline import slicer


def _encode(image: Image.Image) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


class SlicerTest(unittest.TestCase):

    def test_full_size_panorama_gives_nine_square_panels(self):
        panels = slicer.slice_panorama(render_grid_image(3072))
        self.assertEqual(len(panels), 9)
        for index, data in enumerate(panels):
            with Image.open(io.BytesIO(data)) as panel:
                self.assertEqual(panel.format, "PNG")
                self.assertEqual(panel.size, (1024, 1024))
                # Row-major: panel i is the i-th grid cell colour
                self.assertEqual(panel.convert("RGB").getpixel((512, 512)), CELL_COLORS[index])

    def test_panels_reassemble_bit_exact(self):
        original = Image.frombytes("RGB", (300, 300), os.urandom(300 * 300 * 3))
        panels = slicer.slice_panorama(_encode(original))

        rebuilt = Image.new("RGB", (300, 300))
        for index, data in enumerate(panels):
            row, col = divmod(index, 3)
            with Image.open(io.BytesIO(data)) as panel:
                rebuilt.paste(panel, (col * 100, row * 100))
        self.assertEqual(rebuilt.tobytes(), original.tobytes())

    def test_non_square_image_is_rejected(self):
        with self.assertRaises(InvalidImageGeometry):
            slicer.slice_panorama(_encode(Image.new("RGB", (300, 299))))

    def test_indivisible_side_is_rejected(self):
        with self.assertRaises(InvalidImageGeometry):
            slicer.slice_panorama(_encode(Image.new("RGB", (100, 100))))

    def test_undecodable_bytes_are_rejected(self):
        with self.assertRaises(InvalidImageGeometry):
            slicer.slice_panorama(b"not an image")

    def test_check_geometry(self):
        self.assertEqual(slicer.check_geometry(1536, 1536), 512)
        self.assertEqual(slicer.check_geometry(8, 8, grid_size=2), 4)
        with self.assertRaises(InvalidImageGeometry):
            slicer.check_geometry(0, 0)
        with self.assertRaises(ValueError):
            slicer.check_geometry(9, 9, grid_size=0)


if __name__ == "__main__":
    unittest.main()
