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

import time
import logging
from google import genai
from typing import List, Optional, Type, TypeVar

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-3-flash-preview"
SCENE_WRITER_TEMPERATURE = 0.8

T = TypeVar("T")


class GeminiInvalidResponseException(Exception):
    pass


def call_predict_with_schema(
    query: str,
    response_schema: Type[T],
    api_key: str,
    model: str = DEFAULT_MODEL,
    system_instruction: Optional[str] = None,
    temperature: float = 0,
) -> T | List[T] | None:
    """
    Calls Gemini with a response schema for structured output.

    Returns None when the call fails or the response cannot be parsed; the
    caller decides whether that is fatal.
    """
    client = genai.Client(api_key=api_key)
    start_time = time.time()
    truncated_query = (query[:200] + "...") if len(query) > 200 else query
    logger.info("Calling Gemini with schema, prompt: '%s'", truncated_query)
    config = {
        "response_mime_type": "application/json",
        "response_schema": response_schema,
        "temperature": temperature,
    }
    if system_instruction:
        config["system_instruction"] = system_instruction
    try:
        response = client.models.generate_content(
            model=model,
            contents=query,
            config=config,
        )
        logger.info("Gemini with schema call took: %.2fs", time.time() - start_time)
        if not response.parsed:
            raise GeminiInvalidResponseException()
        return response.parsed
    except Exception as e:
        logger.warning("An error occurred during predict with schema API call: %s", e)
        return None
