"""Workflow, job token and blob storage backends."""

from inkstream.storage.base import BlobStore, JobTokenStore, WorkflowStore
from inkstream.storage.factory import (
    create_blob_store,
    create_token_store,
    create_workflow_store,
)
from inkstream.storage.local import LocalBlobStore
from inkstream.storage.memory import MemoryBlobStore, MemoryJobTokenStore, MemoryWorkflowStore
from inkstream.storage.s3 import S3BlobStore
from inkstream.storage.sqlite import SQLiteJobTokenStore, SQLiteWorkflowStore

__all__ = [
    "WorkflowStore",
    "JobTokenStore",
    "BlobStore",
    "MemoryWorkflowStore",
    "MemoryJobTokenStore",
    "MemoryBlobStore",
    "SQLiteWorkflowStore",
    "SQLiteJobTokenStore",
    "LocalBlobStore",
    "S3BlobStore",
    "create_workflow_store",
    "create_token_store",
    "create_blob_store",
]
