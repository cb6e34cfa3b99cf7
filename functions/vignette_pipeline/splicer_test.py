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
import threading
import unittest

from PIL import Image

from backend.db import CONTENT_TYPE_STORY, CharacterRecord, InMemoryDbClient
from backend.locks import InMemoryKeyLock
from backend.storage import InMemoryStorageClient
from models.leonardo import InMemoryImageClient
from shared.errors import (
    GenerationFailed,
    InvalidImageGeometry,
    NotFound,
    PersistenceFailed,
    SpliceInProgress,
    StorageWriteFailed,
)
from shared.types import ImageResult, StoryCharacter, StoryMode, VignetteStoryParams
from vignette_pipeline.scene_writer import InMemorySceneWriter
from vignette_pipeline.splicer import VignetteSplicer

PANORAMA_SIZE = 300
PARAGRAPHS = [f"Paragraph {i}: Mia and the fox explore place {i}." for i in range(9)]


def _encode(image):
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


class FailingStorage(InMemoryStorageClient):
    def upload_bytes(self, path, data, content_type="image/png"):
        if path.endswith("panel_4.png"):
            raise OSError("bucket unavailable")
        return super().upload_bytes(path, data, content_type)


class FailingDb(InMemoryDbClient):
    def record_panels(self, story_id, panorama, panels):
        raise RuntimeError("connection reset")


class FixedImageClient:
    def __init__(self, image_bytes):
        self.image_bytes = image_bytes

    def generate(self, prompt, size):
        return ImageResult(generation_id="fixed", image_bytes=self.image_bytes)


class NoiseImageClient:
    def __init__(self):
        self.generations = 0

    def generate(self, prompt, size):
        self.generations += 1
        image = Image.frombytes("RGB", (size, size), os.urandom(size * size * 3))
        return ImageResult(
            generation_id=f"noise-{self.generations}", image_bytes=_encode(image)
        )


class SwitchableStorage(InMemoryStorageClient):
    failing_path = None

    def upload_bytes(self, path, data, content_type="image/png"):
        if self.failing_path and path.endswith(self.failing_path):
            raise OSError("bucket unavailable")
        return super().upload_bytes(path, data, content_type)


class BlockingImageClient(InMemoryImageClient):
    def __init__(self):
        super().__init__()
        self.started = threading.Event()
        self.release = threading.Event()

    def generate(self, prompt, size):
        self.started.set()
        self.release.wait(5)
        return super().generate(prompt, size)


class VignetteSplicerTest(unittest.TestCase):

    def setUp(self):
        self.db = InMemoryDbClient()
        self.storage = InMemoryStorageClient()
        self.image_client = InMemoryImageClient()
        self.scene_writer = InMemorySceneWriter()
        self.key_lock = InMemoryKeyLock()
        self.sleeps = []
        self.story_id = self._create_story()

    def _create_story(self, paragraphs=PARAGRAPHS, user_id="user-1"):
        story = self.db.create_story(
            user_id,
            content_type=CONTENT_TYPE_STORY,
            title="Mia and the Fox",
            body="\n\n".join(paragraphs),
            generation_metadata={"genre": "Fantasy", "tone": "Heartwarming"},
        )
        return story.story_id

    def _splicer(self, **overrides):
        params = dict(
            db=self.db,
            storage=self.storage,
            image_client=self.image_client,
            scene_writer=self.scene_writer,
            key_lock=self.key_lock,
            panorama_size=PANORAMA_SIZE,
            max_attempts=3,
            retry_base_delay_seconds=1.0,
            retry_max_delay_seconds=30.0,
            sleep=self.sleeps.append,
        )
        params.update(overrides)
        return VignetteSplicer(**params)

    def _assert_nothing_written(self, story_id):
        self.assertEqual(self.db.get_panels(story_id), [])
        self.assertIsNone(self.db.get_panorama(story_id))
        self.assertEqual(self.storage.stored_objects, {})

    def test_splice_story_records_nine_panels(self):
        result = self._splicer().splice_story(self.story_id, "user-1")

        self.assertEqual([p.index for p in result.panels], list(range(9)))
        self.assertEqual(
            [p.storage_path for p in result.panels],
            [f"vignettes/{self.story_id}/panels/panel_{i}.png" for i in range(9)],
        )
        self.assertEqual(len(self.db.get_panels(self.story_id)), 9)
        self.assertEqual(
            self.db.get_panorama(self.story_id).image_url, result.panoramic_image_url
        )
        self.assertEqual(len(self.storage.stored_objects), 10)
        self.assertIn('"Mia and the Fox"', self.image_client.prompts[0])
        self.assertEqual(self.key_lock.held, set())

    def test_panels_are_the_sliced_grid_cells(self):
        result = self._splicer().splice_story(self.story_id, "user-1")
        first = self.storage.get_bytes(result.panels[0].storage_path)
        last = self.storage.get_bytes(result.panels[8].storage_path)
        self.assertNotEqual(first, last)
        with Image.open(io.BytesIO(first)) as panel:
            self.assertEqual(panel.size, (100, 100))

    def test_unknown_story_writes_nothing(self):
        with self.assertRaises(NotFound):
            self._splicer().splice_story("missing", "user-1")
        self.assertEqual(self.image_client.prompts, [])
        self.assertEqual(self.storage.stored_objects, {})

    def test_other_users_story_is_not_found(self):
        with self.assertRaises(NotFound):
            self._splicer().splice_story(self.story_id, "user-2")
        self._assert_nothing_written(self.story_id)

    def test_retryable_failures_are_retried_with_backoff(self):
        self.image_client.failures.extend(
            [GenerationFailed("rate limited"), GenerationFailed("rate limited")]
        )
        result = self._splicer().splice_story(self.story_id, "user-1")

        self.assertEqual(len(result.panels), 9)
        self.assertEqual(len(self.image_client.prompts), 3)
        self.assertEqual(len(self.sleeps), 2)
        self.assertTrue(0.8 <= self.sleeps[0] <= 1.2)
        self.assertTrue(1.6 <= self.sleeps[1] <= 2.4)

    def test_generation_timeout_aborts_with_zero_rows(self):
        self.image_client.failures.extend(
            [GenerationFailed("Generation gen-1 timed out after 90s")] * 3
        )
        with self.assertRaises(GenerationFailed) as ctx:
            self._splicer().splice_story(self.story_id, "user-1")

        self.assertIn("timed out", str(ctx.exception))
        self.assertEqual(ctx.exception.stage, "PROMPT_BUILT")
        self.assertEqual(len(self.image_client.prompts), 3)
        self._assert_nothing_written(self.story_id)
        self.assertEqual(self.key_lock.held, set())

    def test_non_retryable_failure_is_not_retried(self):
        self.image_client.failures.append(
            GenerationFailed("Prompt rejected", retryable=False)
        )
        with self.assertRaises(GenerationFailed):
            self._splicer().splice_story(self.story_id, "user-1")
        self.assertEqual(len(self.image_client.prompts), 1)
        self.assertEqual(self.sleeps, [])

    def test_unexpected_client_error_becomes_generation_failed(self):
        self.image_client.failures.append(KeyError("url"))
        with self.assertRaises(GenerationFailed) as ctx:
            self._splicer().splice_story(self.story_id, "user-1")
        self.assertFalse(ctx.exception.retryable)
        self.assertIsInstance(ctx.exception.__cause__, KeyError)

    def test_invalid_geometry_writes_nothing(self):
        splicer = self._splicer(
            image_client=FixedImageClient(_encode(Image.new("RGB", (300, 200))))
        )
        with self.assertRaises(InvalidImageGeometry) as ctx:
            splicer.splice_story(self.story_id, "user-1")
        self.assertEqual(ctx.exception.stage, "IMAGE_GENERATED")
        self._assert_nothing_written(self.story_id)

    def test_storage_failure_records_no_rows(self):
        self.storage = FailingStorage()
        with self.assertRaises(StorageWriteFailed) as ctx:
            self._splicer().splice_story(self.story_id, "user-1")
        self.assertEqual(ctx.exception.stage, "PANELS_SLICED")
        self.assertEqual(self.db.get_panels(self.story_id), [])

    def test_persistence_failure(self):
        db = FailingDb()
        db.stories = self.db.stories
        with self.assertRaises(PersistenceFailed) as ctx:
            self._splicer(db=db).splice_story(self.story_id, "user-1")
        self.assertEqual(ctx.exception.stage, "ASSETS_UPLOADED")
        self.assertEqual(db.get_panels(self.story_id), [])

    def test_failed_resplice_does_not_keep_stale_panels(self):
        self.storage = SwitchableStorage()
        splicer = self._splicer(image_client=NoiseImageClient(), upload_concurrency=1)
        splicer.splice_story(self.story_id, "user-1")
        self.assertEqual(len(self.db.get_panels(self.story_id)), 9)

        self.storage.failing_path = "panel_8.png"
        with self.assertRaises(StorageWriteFailed):
            splicer.splice_story(self.story_id, "user-1")

        self.assertEqual(self.db.get_panels(self.story_id), [])
        self.assertIsNone(self.db.get_panorama(self.story_id))

        self.storage.failing_path = None
        result = splicer.splice_story(self.story_id, "user-1")
        stored = self.db.get_panels(self.story_id)
        self.assertEqual(len(stored), 9)
        self.assertEqual({p.generation_id for p in stored}, {result.generation_id})

    def test_resplice_is_idempotent(self):
        splicer = self._splicer()
        first = splicer.splice_story(self.story_id, "user-1")
        second = splicer.splice_story(self.story_id, "user-1")

        self.assertEqual(
            [p.storage_path for p in first.panels],
            [p.storage_path for p in second.panels],
        )
        stored = self.db.get_panels(self.story_id)
        self.assertEqual(len(stored), 9)
        self.assertEqual({p.generation_id for p in stored}, {second.generation_id})
        self.assertEqual(len(self.storage.stored_objects), 10)

    def test_concurrent_splice_for_same_story_is_rejected(self):
        blocking = BlockingImageClient()
        splicer = self._splicer(image_client=blocking)
        results = []
        worker = threading.Thread(
            target=lambda: results.append(splicer.splice_story(self.story_id, "user-1"))
        )
        worker.start()
        try:
            self.assertTrue(blocking.started.wait(5))
            with self.assertRaises(SpliceInProgress):
                splicer.splice_story(self.story_id, "user-1")
        finally:
            blocking.release.set()
            worker.join(5)

        self.assertEqual(len(results), 1)
        self.assertEqual(len(blocking.prompts), 1)
        self.assertEqual(len(self.db.get_panels(self.story_id)), 9)

    def test_invalid_attempt_budget(self):
        with self.assertRaises(ValueError):
            self._splicer(max_attempts=0)


class GenerateStoryTest(unittest.TestCase):

    def setUp(self):
        self.db = InMemoryDbClient()
        self.db.save_character(
            CharacterRecord(
                character_id="hero-1",
                user_id="user-1",
                name="Mia",
                character_type="child",
                attributes={"gender": "girl", "hair": "curly red"},
            )
        )
        self.storage = InMemoryStorageClient()
        self.image_client = InMemoryImageClient()
        self.params = VignetteStoryParams(
            characters=[
                StoryCharacter(
                    id="hero-1",
                    name="Mia",
                    character_type="child",
                    attributes={"gender": "girl", "hair": "curly red"},
                    role="hero",
                ),
                StoryCharacter(name="Pip", role="friend"),
            ],
            genre="Fantasy",
            tone="Gentle",
            mode=StoryMode.GROWTH,
            custom_instructions="sharing",
        )

    def _splicer(self, scene_writer, scene_fallback="strict"):
        return VignetteSplicer(
            db=self.db,
            storage=self.storage,
            image_client=self.image_client,
            scene_writer=scene_writer,
            key_lock=InMemoryKeyLock(),
            panorama_size=PANORAMA_SIZE,
            scene_fallback=scene_fallback,
            sleep=lambda _: None,
        )

    def test_generate_story_writes_story_and_panels(self):
        result = self._splicer(InMemorySceneWriter()).generate_story(
            self.params, "user-1"
        )

        self.assertEqual(result.title, "Mia's Fantasy Adventure")
        self.assertEqual(len(result.scenes), 9)
        self.assertEqual(len(result.panels), 9)

        story = self.db.get_story(result.story_id, user_id="user-1")
        self.assertEqual(story.content_type, "vignette_story")
        self.assertEqual(story.title, result.title)
        self.assertEqual(story.generation_metadata["mode"], "growth")
        self.assertEqual(story.generation_metadata["characters_used"], ["hero-1"])
        self.assertEqual(story.generation_metadata["scenes"], result.scenes)
        self.assertIn("Mia: A girl with curly red hair", story.vignette_prompt)
        self.assertIn("Growth Area", story.vignette_helper_prompt)
        self.assertEqual(story.vignette_prompt, self.image_client.prompts[0])
        self.assertEqual(
            [c.character_id for c in self.db.get_story_characters(result.story_id)],
            ["hero-1"],
        )
        self.assertEqual(len(self.db.get_panels(result.story_id)), 9)

    def test_short_scene_list_fails_when_strict(self):
        with self.assertRaises(GenerationFailed):
            self._splicer(InMemorySceneWriter(scene_count=5)).generate_story(
                self.params, "user-1"
            )
        self.assertEqual(self.image_client.prompts, [])
        self.assertEqual(self.storage.stored_objects, {})

    def test_short_scene_list_is_padded(self):
        result = self._splicer(
            InMemorySceneWriter(scene_count=5), scene_fallback="pad"
        ).generate_story(self.params, "user-1")
        self.assertEqual(len(result.scenes), 9)
        self.assertEqual(len(result.panels), 9)


if __name__ == "__main__":
    unittest.main()
