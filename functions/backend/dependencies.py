"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

from backend.auth import AuthClient, InMemoryAuthClient, SupabaseAuthClient
from backend.config import get_settings
from backend.db import DbClient, InMemoryDbClient, PostgresDbClient
from backend.locks import InMemoryKeyLock, KeyLock, RedisKeyLock
from backend.storage import InMemoryStorageClient, S3StorageClient, StorageClient
from models.leonardo import ImageGenerationClient, InMemoryImageClient, LeonardoClient
from vignette_pipeline.scene_writer import (
    GeminiSceneWriter,
    InMemorySceneWriter,
    SceneWriter,
)
from vignette_pipeline.splicer import VignetteSplicer

_db_client: DbClient | None = None
_storage_client: StorageClient | None = None
_key_lock: KeyLock | None = None
_auth_client: AuthClient | None = None
_image_client: ImageGenerationClient | None = None
_scene_writer: SceneWriter | None = None
_splicer: VignetteSplicer | None = None


def get_db_client() -> DbClient:
    """
    Return a singleton DB client so stories and panels persist across requests.
    """
    global _db_client
    if _db_client:
        return _db_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.database_url:
        _db_client = InMemoryDbClient()
    else:
        _db_client = PostgresDbClient(settings.database_url)
    return _db_client


def get_storage_client() -> StorageClient:
    global _storage_client
    if _storage_client:
        return _storage_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.storage_bucket:
        _storage_client = InMemoryStorageClient()
    else:
        _storage_client = S3StorageClient(
            bucket=settings.storage_bucket,
            region=settings.storage_region or "",
            endpoint=settings.storage_endpoint or "",
            access_key_id=settings.aws_access_key_id or "",
            secret_access_key=settings.aws_secret_access_key or "",
            public_base_url=settings.storage_public_base_url,
        )
    return _storage_client


def get_key_lock() -> KeyLock:
    """
    Return the single-flight lock shared by every render in this process.
    """
    global _key_lock
    if _key_lock:
        return _key_lock

    settings = get_settings()
    if settings.redis_url and not settings.use_in_memory_backends:
        _key_lock = RedisKeyLock(
            url=settings.redis_url,
            key_prefix=settings.lock_key_prefix,
            ttl_seconds=settings.lock_ttl_seconds,
        )
    else:
        _key_lock = InMemoryKeyLock()
    return _key_lock


def get_auth_client() -> AuthClient:
    global _auth_client
    if _auth_client:
        return _auth_client

    settings = get_settings()
    if (
        settings.use_in_memory_backends
        or not settings.supabase_url
        or not settings.supabase_anon_key
    ):
        _auth_client = InMemoryAuthClient()
    else:
        _auth_client = SupabaseAuthClient(
            url=settings.supabase_url, anon_key=settings.supabase_anon_key
        )
    return _auth_client


def get_image_client() -> ImageGenerationClient:
    global _image_client
    if _image_client:
        return _image_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.leonardo_api_key:
        _image_client = InMemoryImageClient()
    else:
        _image_client = LeonardoClient(
            api_key=settings.leonardo_api_key,
            model_id=settings.leonardo_model_id,
            base_url=settings.leonardo_base_url,
            poll_interval_seconds=settings.leonardo_poll_interval_seconds,
            max_poll_attempts=settings.leonardo_max_poll_attempts,
            timeout_seconds=settings.generation_timeout_seconds,
            guidance_scale=settings.leonardo_guidance_scale,
            negative_prompt=settings.leonardo_negative_prompt,
        )
    return _image_client


def get_scene_writer() -> SceneWriter:
    global _scene_writer
    if _scene_writer:
        return _scene_writer

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.gemini_api_key:
        _scene_writer = InMemorySceneWriter()
    else:
        _scene_writer = GeminiSceneWriter(
            api_key=settings.gemini_api_key, model=settings.gemini_model
        )
    return _scene_writer


def get_splicer() -> VignetteSplicer:
    global _splicer
    if _splicer:
        return _splicer

    settings = get_settings()
    _splicer = VignetteSplicer(
        db=get_db_client(),
        storage=get_storage_client(),
        image_client=get_image_client(),
        scene_writer=get_scene_writer(),
        key_lock=get_key_lock(),
        panorama_size=settings.panorama_size,
        scene_fallback=settings.scene_fallback,
        prompt_max_length=settings.prompt_max_length,
        max_attempts=settings.generation_max_attempts,
        retry_base_delay_seconds=settings.retry_base_delay_seconds,
        retry_max_delay_seconds=settings.retry_max_delay_seconds,
        upload_concurrency=settings.upload_concurrency,
    )
    return _splicer
