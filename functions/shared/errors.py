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
Error taxonomy for the vignette pipeline and its HTTP surface.

Every error carries the HTTP status it maps to at the API boundary.
"""

from __future__ import annotations

from typing import Optional


class VignetteError(Exception):
    """
    Base class for all pipeline errors rendered as `{success: false}`.

    `stage` is the last pipeline stage the run completed before failing.
    """

    status_code = 500
    retryable = False

    def __init__(self, message: str, *, stage: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.stage = stage

    def __str__(self) -> str:
        return self.message


class InvalidInput(VignetteError):
    """Bad or missing request fields."""

    status_code = 400


class NotFound(InvalidInput):
    """The referenced story or character does not exist for this user."""

    status_code = 404


class Unauthorized(VignetteError):
    status_code = 401


class SpliceInProgress(VignetteError):
    """Another render for the same story id is already running."""

    status_code = 409
    retryable = True


class GenerationFailed(VignetteError):
    """The image provider failed, rejected the prompt, or timed out."""

    def __init__(
        self,
        message: str,
        *,
        retryable: bool = True,
        stage: Optional[str] = None,
    ):
        super().__init__(message, stage=stage)
        self.retryable = retryable


class InvalidImageGeometry(VignetteError):
    """The panorama is not square or not divisible by the grid size."""


class StorageWriteFailed(VignetteError):
    retryable = True


class PersistenceFailed(VignetteError):
    retryable = True


class ConfigurationError(Exception):
    """Raised at startup when required settings are missing."""
