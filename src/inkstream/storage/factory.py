"""Build storage backends from settings."""

from inkstream.core.config import Settings, get_settings
from inkstream.storage.base import BlobStore, JobTokenStore, WorkflowStore
from inkstream.storage.local import LocalBlobStore
from inkstream.storage.memory import MemoryBlobStore, MemoryJobTokenStore, MemoryWorkflowStore
from inkstream.storage.s3 import S3BlobStore
from inkstream.storage.sqlite import SQLiteJobTokenStore, SQLiteWorkflowStore


def create_workflow_store(settings: Settings | None = None) -> WorkflowStore:
    """Create the configured workflow store."""
    settings = settings or get_settings()
    if settings.store_backend == "memory":
        return MemoryWorkflowStore(max_limit=settings.list_max_limit)
    return SQLiteWorkflowStore(settings.store_sqlite_path, max_limit=settings.list_max_limit)


def create_token_store(settings: Settings | None = None) -> JobTokenStore:
    """Create the configured job token store."""
    settings = settings or get_settings()
    if settings.store_backend == "memory":
        return MemoryJobTokenStore()
    return SQLiteJobTokenStore(settings.store_sqlite_path)


def create_blob_store(settings: Settings | None = None) -> BlobStore:
    """Create the configured blob store."""
    settings = settings or get_settings()
    if settings.blob_backend == "memory":
        return MemoryBlobStore()
    if settings.blob_backend == "s3":
        return S3BlobStore(settings=settings)
    return LocalBlobStore(settings=settings)
