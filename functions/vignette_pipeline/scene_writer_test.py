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

import unittest
from unittest.mock import patch

from shared.errors import GenerationFailed
from shared.types import StoryCharacter, VignetteStoryParams
from vignette_pipeline.scene_writer import (
    GeminiSceneWriter,
    InMemorySceneWriter,
    VignetteScenesSchema,
)


class SceneWriterTest(unittest.TestCase):

    def setUp(self):
        self.params = VignetteStoryParams(
            characters=[StoryCharacter(name="Mia", role="hero")],
            genre="Fantasy",
            tone="Gentle",
        )

    @patch("vignette_pipeline.scene_writer.gemini.call_predict_with_schema")
    def test_gemini_scene_writer_parses_structured_output(self, mock_call):
        mock_call.return_value = VignetteScenesSchema(
            title=" Mia's Quest ",
            summary="Mia finds a friend.",
            scenes=[f"Scene {i}" for i in range(9)] + ["  "],
        )
        writer = GeminiSceneWriter(api_key="key", model="gemini-test")

        scenes, prompt = writer.write_scenes(self.params)

        self.assertEqual(scenes.title, "Mia's Quest")
        self.assertEqual(len(scenes.scenes), 9)
        self.assertIn("Mia", prompt)
        _, kwargs = mock_call.call_args
        self.assertEqual(kwargs["api_key"], "key")
        self.assertEqual(kwargs["model"], "gemini-test")
        self.assertEqual(kwargs["temperature"], 0.8)

    @patch("vignette_pipeline.scene_writer.gemini.call_predict_with_schema")
    def test_gemini_failure_is_generation_failed(self, mock_call):
        mock_call.return_value = None
        with self.assertRaises(GenerationFailed):
            GeminiSceneWriter(api_key="key").write_scenes(self.params)

    @patch("vignette_pipeline.scene_writer.gemini.call_predict_with_schema")
    def test_empty_story_is_generation_failed(self, mock_call):
        mock_call.return_value = VignetteScenesSchema(title="", summary="", scenes=[])
        with self.assertRaises(GenerationFailed):
            GeminiSceneWriter(api_key="key").write_scenes(self.params)

    def test_in_memory_scene_writer_is_deterministic(self):
        writer = InMemorySceneWriter()
        first, _ = writer.write_scenes(self.params)
        second, _ = writer.write_scenes(self.params)
        self.assertEqual(first, second)
        self.assertEqual(len(first.scenes), 9)
        self.assertEqual(len(writer.calls), 2)


if __name__ == "__main__":
    unittest.main()
