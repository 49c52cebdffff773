"""Tests for storage backends."""

import asyncio
import io
from collections.abc import Iterator
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest
from botocore.exceptions import ClientError

from inkstream.core.config import Settings
from inkstream.core.exceptions import (
    ConfigurationError,
    StorageError,
    ValidationError,
    WorkflowExistsError,
    WorkflowStateError,
)
from inkstream.models.jobs import JobToken
from inkstream.models.queries import ListIndex, ListQuery
from inkstream.models.workflow import (
    StatusPatch,
    WorkflowParameters,
    WorkflowRecord,
    WorkflowStatus,
)
from inkstream.storage import (
    LocalBlobStore,
    MemoryBlobStore,
    MemoryJobTokenStore,
    MemoryWorkflowStore,
    S3BlobStore,
    SQLiteJobTokenStore,
    SQLiteWorkflowStore,
    create_blob_store,
    create_token_store,
    create_workflow_store,
)
from inkstream.storage.base import JobTokenStore, WorkflowStore
from inkstream.storage.pagination import decode_cursor, encode_cursor

T0 = datetime(2024, 3, 1, 12, 0, tzinfo=UTC)


def make_record(
    workflow_id: str,
    user_id: str = "u1",
    offset: int = 0,
) -> WorkflowRecord:
    """Record created ``offset`` seconds after T0."""
    return WorkflowRecord.new(
        user_id,
        workflow_id,
        WorkflowParameters(),
        f"users/{user_id}/uploads/{workflow_id}.pdf",
        now=T0 + timedelta(seconds=offset),
    )


@pytest.fixture(params=["memory", "sqlite"])
def workflow_store(request: pytest.FixtureRequest, tmp_path: Path) -> Iterator[WorkflowStore]:
    """Each workflow store backend."""
    if request.param == "memory":
        yield MemoryWorkflowStore()
        return
    store = SQLiteWorkflowStore(tmp_path / "inkstream.db")
    yield store
    store.close()


@pytest.fixture(params=["memory", "sqlite"])
def tokens(request: pytest.FixtureRequest, tmp_path: Path) -> Iterator[JobTokenStore]:
    """Each job token store backend."""
    if request.param == "memory":
        yield MemoryJobTokenStore()
        return
    store = SQLiteJobTokenStore(tmp_path / "inkstream.db")
    yield store
    store.close()


async def collect_pages(store: WorkflowStore, user_id: str, **query: Any) -> list[str]:
    """Walk every page of a listing and return the workflow ids in order."""
    ids: list[str] = []
    cursor = None
    while True:
        page = await store.list(user_id, ListQuery(cursor=cursor, **query))
        ids.extend(record.workflow_id for record in page.items)
        if page.next_cursor is None:
            return ids
        cursor = page.next_cursor


class TestWorkflowStore:
    """Tests shared by every workflow store backend."""

    @pytest.mark.asyncio
    async def test_create_and_get(self, workflow_store: WorkflowStore) -> None:
        """Test a created record can be read back."""
        await workflow_store.create(make_record("wf-1"))

        loaded = await workflow_store.get("u1", "wf-1")
        assert loaded is not None
        assert loaded.status is WorkflowStatus.STARTING
        assert loaded.created_at == T0
        assert await workflow_store.get("u1", "missing") is None
        assert await workflow_store.get("u2", "wf-1") is None

    @pytest.mark.asyncio
    async def test_duplicate_create_rejected(self, workflow_store: WorkflowStore) -> None:
        """Test a key can only be created once."""
        await workflow_store.create(make_record("wf-1"))
        with pytest.raises(WorkflowExistsError):
            await workflow_store.create(make_record("wf-1"))

    @pytest.mark.asyncio
    async def test_append_status_is_additive(self, workflow_store: WorkflowStore) -> None:
        """Test appends extend history and merge artifacts."""
        await workflow_store.create(make_record("wf-1"))
        await workflow_store.append_status("u1", "wf-1", WorkflowStatus.EXTRACTING_TEXT)
        await workflow_store.append_status(
            "u1",
            "wf-1",
            WorkflowStatus.TEXT_FORMATTING_COMPLETE,
            StatusPatch(artifact_paths={"formatted_text": "users/u1/formatted/wf-1.txt"}),
        )
        updated = await workflow_store.append_status(
            "u1",
            "wf-1",
            WorkflowStatus.SUCCEEDED,
            StatusPatch(artifact_paths={"audio_file": "users/u1/audio/wf-1.mp3"}),
        )

        stored = await workflow_store.get("u1", "wf-1")
        assert stored == updated
        assert [entry.status for entry in stored.status_history] == [
            WorkflowStatus.STARTING,
            WorkflowStatus.EXTRACTING_TEXT,
            WorkflowStatus.TEXT_FORMATTING_COMPLETE,
            WorkflowStatus.SUCCEEDED,
        ]
        assert stored.artifact_paths.outputs() == {
            "formatted_text": "users/u1/formatted/wf-1.txt",
            "audio_file": "users/u1/audio/wf-1.mp3",
        }
        assert stored.updated_at >= stored.created_at

    @pytest.mark.asyncio
    async def test_append_to_missing_record(self, workflow_store: WorkflowStore) -> None:
        """Test appending to an unknown key raises WorkflowStateError."""
        with pytest.raises(WorkflowStateError):
            await workflow_store.append_status("u1", "missing", WorkflowStatus.FAILED)

    @pytest.mark.asyncio
    async def test_expect_active_guards_terminal_records(
        self, workflow_store: WorkflowStore
    ) -> None:
        """Test a terminal record refuses guarded appends."""
        await workflow_store.create(make_record("wf-1"))
        await workflow_store.append_status("u1", "wf-1", WorkflowStatus.SUCCEEDED)

        with pytest.raises(WorkflowStateError):
            await workflow_store.append_status(
                "u1",
                "wf-1",
                WorkflowStatus.TIMED_OUT,
                StatusPatch(error="late"),
                expect_active=True,
            )
        stored = await workflow_store.get("u1", "wf-1")
        assert stored.status is WorkflowStatus.SUCCEEDED
        assert stored.error is None

    @pytest.mark.asyncio
    async def test_listing_newest_first(self, workflow_store: WorkflowStore) -> None:
        """Test listings run newest first on the chosen attribute."""
        for offset, workflow_id in enumerate(["wf-a", "wf-b", "wf-c"]):
            await workflow_store.create(make_record(workflow_id, offset=offset))
        # Touching wf-a makes it the most recently updated
        await workflow_store.append_status("u1", "wf-a", WorkflowStatus.EXTRACTING_TEXT)

        by_created = await workflow_store.list("u1", ListQuery(sort_by="createdAt"))
        assert [r.workflow_id for r in by_created.items] == ["wf-c", "wf-b", "wf-a"]
        assert by_created.next_cursor is None

        by_updated = await workflow_store.list("u1")
        assert [r.workflow_id for r in by_updated.items] == ["wf-a", "wf-c", "wf-b"]

    @pytest.mark.asyncio
    async def test_paging_matches_unpaged_listing(self, workflow_store: WorkflowStore) -> None:
        """Test concatenated pages equal the unlimited listing."""
        for offset in range(7):
            await workflow_store.create(make_record(f"wf-{offset}", offset=offset))
        # Two records sharing a timestamp are ordered by workflow id
        await workflow_store.create(make_record("wf-tie", offset=3))

        unpaged = await workflow_store.list("u1", ListQuery(sort_by="createdAt"))
        paged = await collect_pages(workflow_store, "u1", limit=3, sort_by="createdAt")
        assert paged == [r.workflow_id for r in unpaged.items]
        assert len(paged) == 8

    @pytest.mark.asyncio
    async def test_exact_page_has_no_cursor(self, workflow_store: WorkflowStore) -> None:
        """Test a page that exhausts the listing carries no cursor."""
        for offset in range(3):
            await workflow_store.create(make_record(f"wf-{offset}", offset=offset))

        page = await workflow_store.list("u1", ListQuery(limit=3))
        assert len(page.items) == 3
        assert page.next_cursor is None

    @pytest.mark.asyncio
    async def test_status_filter(self, workflow_store: WorkflowStore) -> None:
        """Test filtering by exact status."""
        for offset in range(4):
            await workflow_store.create(make_record(f"wf-{offset}", offset=offset))
        await workflow_store.append_status("u1", "wf-1", WorkflowStatus.FAILED)
        await workflow_store.append_status("u1", "wf-3", WorkflowStatus.FAILED)
        await workflow_store.append_status("u1", "wf-2", WorkflowStatus.TIMED_OUT)

        failed = await collect_pages(workflow_store, "u1", status="FAILED", limit=1)
        assert sorted(failed) == ["wf-1", "wf-3"]

    @pytest.mark.asyncio
    async def test_category_filter(self, workflow_store: WorkflowStore) -> None:
        """Test filtering by category orders by creation time."""
        for offset in range(4):
            await workflow_store.create(make_record(f"wf-{offset}", offset=offset))
        await workflow_store.append_status("u1", "wf-0", WorkflowStatus.TIMED_OUT)
        await workflow_store.append_status("u1", "wf-2", WorkflowStatus.FAILED)
        await workflow_store.append_status("u1", "wf-3", WorkflowStatus.SUCCEEDED)

        failed = await collect_pages(workflow_store, "u1", category="failed", limit=1)
        assert failed == ["wf-2", "wf-0"]
        active = await workflow_store.list("u1", ListQuery(category="active"))
        assert [r.workflow_id for r in active.items] == ["wf-1"]

    @pytest.mark.asyncio
    async def test_listing_is_per_user(self, workflow_store: WorkflowStore) -> None:
        """Test users never see each other's workflows."""
        await workflow_store.create(make_record("wf-1", user_id="u1"))
        await workflow_store.create(make_record("wf-1", user_id="u2"))
        await workflow_store.create(make_record("wf-2", user_id="u2"))

        page = await workflow_store.list("u1")
        assert [(r.user_id, r.workflow_id) for r in page.items] == [("u1", "wf-1")]
        assert (await workflow_store.list("nobody")).items == []

    @pytest.mark.asyncio
    async def test_invalid_cursor(self, workflow_store: WorkflowStore) -> None:
        """Test a cursor that does not decode is rejected."""
        with pytest.raises(ValidationError) as exc_info:
            await workflow_store.list("u1", ListQuery(cursor="not a cursor!"))
        assert exc_info.value.field == "cursor"

    @pytest.mark.asyncio
    async def test_cursor_from_other_listing(self, workflow_store: WorkflowStore) -> None:
        """Test a cursor minted for another index is rejected."""
        for offset in range(3):
            await workflow_store.create(make_record(f"wf-{offset}", offset=offset))
        page = await workflow_store.list("u1", ListQuery(limit=1, sort_by="createdAt"))
        assert page.next_cursor is not None

        with pytest.raises(ValidationError):
            await workflow_store.list("u1", ListQuery(cursor=page.next_cursor, status="STARTING"))

    @pytest.mark.asyncio
    async def test_list_overdue(self, workflow_store: WorkflowStore) -> None:
        """Test the sweep returns old active records of every user, oldest first."""
        await workflow_store.create(make_record("wf-old", "u1", offset=0))
        await workflow_store.create(make_record("wf-other-user", "u2", offset=5))
        await workflow_store.create(make_record("wf-done", "u1", offset=1))
        await workflow_store.create(make_record("wf-new", "u1", offset=600))
        await workflow_store.append_status("u1", "wf-done", WorkflowStatus.FAILED)

        overdue = await workflow_store.list_overdue(T0 + timedelta(minutes=5))

        assert [(r.user_id, r.workflow_id) for r in overdue] == [
            ("u1", "wf-old"),
            ("u2", "wf-other-user"),
        ]

    @pytest.mark.asyncio
    async def test_sort_with_filter_rejected(self, workflow_store: WorkflowStore) -> None:
        """Test sortBy and a filter cannot be combined."""
        with pytest.raises(ValidationError):
            await workflow_store.list("u1", ListQuery(sort_by="createdAt", category="failed"))


class TestSQLiteWorkflowStore:
    """Tests specific to the SQLite backend."""

    @pytest.mark.asyncio
    async def test_records_survive_reopen(self, tmp_path: Path) -> None:
        """Test records persist across store instances."""
        db_path = tmp_path / "nested" / "inkstream.db"
        store = SQLiteWorkflowStore(db_path)
        await store.create(make_record("wf-1"))
        await store.append_status("u1", "wf-1", WorkflowStatus.EXTRACTING_TEXT)
        store.close()

        reopened = SQLiteWorkflowStore(db_path)
        loaded = await reopened.get("u1", "wf-1")
        reopened.close()
        assert loaded is not None
        assert loaded.status is WorkflowStatus.EXTRACTING_TEXT
        assert len(loaded.status_history) == 2

    @pytest.mark.asyncio
    async def test_concurrent_appends_across_connections(self, tmp_path: Path) -> None:
        """Test concurrent appends from two connections are all kept."""
        db_path = tmp_path / "inkstream.db"
        first = SQLiteWorkflowStore(db_path)
        second = SQLiteWorkflowStore(db_path)
        await first.create(make_record("wf-1"))

        appends = 40
        await asyncio.gather(
            *(
                (first if n % 2 else second).append_status(
                    "u1", "wf-1", WorkflowStatus.EXTRACTING_TEXT
                )
                for n in range(appends)
            )
        )

        for store in (first, second):
            record = await store.get("u1", "wf-1")
            assert record is not None
            assert len(record.status_history) == 1 + appends
        first.close()
        second.close()

    @pytest.mark.asyncio
    async def test_max_limit(self, tmp_path: Path) -> None:
        """Test the configured ceiling bounds the page size."""
        store = SQLiteWorkflowStore(tmp_path / "inkstream.db", max_limit=5)
        with pytest.raises(ValidationError):
            await store.list("u1", ListQuery(limit=6))
        store.close()


class TestJobTokenStore:
    """Tests shared by every job token store backend."""

    @staticmethod
    def token(job_id: str = "job-1", ttl: float = 60) -> JobToken:
        return JobToken.issue(job_id, "extract_text:abc", "u1", "wf-1", "in.pdf", ttl, now=T0)

    @pytest.mark.asyncio
    async def test_take_consumes_token(self, tokens: JobTokenStore) -> None:
        """Test a token can be taken exactly once."""
        await tokens.put(self.token())
        assert (await tokens.get("job-1")).workflow_id == "wf-1"

        taken = await tokens.take("job-1")
        assert taken is not None
        assert taken.resume_token == "extract_text:abc"
        assert await tokens.take("job-1") is None
        assert await tokens.get("job-1") is None

    @pytest.mark.asyncio
    async def test_tokens_are_write_once(self, tokens: JobTokenStore) -> None:
        """Test a second token for the same job is rejected."""
        await tokens.put(self.token())
        with pytest.raises(WorkflowStateError):
            await tokens.put(self.token())

    @pytest.mark.asyncio
    async def test_delete_expired(self, tokens: JobTokenStore) -> None:
        """Test only expired tokens are reaped."""
        await tokens.put(self.token("short", ttl=60))
        await tokens.put(self.token("long", ttl=3600))

        assert await tokens.delete_expired(T0 + timedelta(seconds=30)) == 0
        assert await tokens.delete_expired(T0 + timedelta(seconds=60)) == 1
        assert await tokens.get("short") is None
        assert await tokens.get("long") is not None


class TestMemoryBlobStore:
    """Tests for the in-memory blob store."""

    @pytest.mark.asyncio
    async def test_put_and_get(self) -> None:
        """Test blobs round-trip as bytes and text."""
        blobs = MemoryBlobStore()
        await blobs.put_text("users/u1/formatted/a.txt", "héllo")
        assert await blobs.get_text("users/u1/formatted/a.txt") == "héllo"

    @pytest.mark.asyncio
    async def test_missing_blob(self) -> None:
        """Test reading a missing blob raises StorageError."""
        with pytest.raises(StorageError):
            await MemoryBlobStore().get("nope")

    @pytest.mark.asyncio
    async def test_list_keys(self) -> None:
        """Test keys are listed sorted under a prefix."""
        blobs = MemoryBlobStore()
        for key in ["out/job/2", "out/job/1", "other/x"]:
            await blobs.put(key, b"{}")
        assert await blobs.list_keys("out/") == ["out/job/1", "out/job/2"]


class TestLocalBlobStore:
    """Tests for the filesystem blob store."""

    @pytest.mark.asyncio
    async def test_put_get_list(self, tmp_path: Path) -> None:
        """Test blobs are written below the base path."""
        blobs = LocalBlobStore(tmp_path)
        await blobs.put("users/u1/audio/a.mp3", b"ID3")
        await blobs.put("users/u1/formatted/a.txt", b"text")

        assert (tmp_path / "users" / "u1" / "audio" / "a.mp3").read_bytes() == b"ID3"
        assert await blobs.get("users/u1/audio/a.mp3") == b"ID3"
        assert await blobs.list_keys("users/u1/") == [
            "users/u1/audio/a.mp3",
            "users/u1/formatted/a.txt",
        ]

    @pytest.mark.asyncio
    async def test_missing_blob(self, tmp_path: Path) -> None:
        """Test reading a missing blob raises StorageError."""
        with pytest.raises(StorageError, match="Blob not found"):
            await LocalBlobStore(tmp_path).get("missing.txt")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("ref", ["../escape.txt", "users/../../etc/passwd", "", "a/./b"])
    async def test_path_traversal_rejected(self, tmp_path: Path, ref: str) -> None:
        """Test references cannot leave the base directory."""
        with pytest.raises(StorageError):
            await LocalBlobStore(tmp_path).put(ref, b"x")


class FakeS3Client:
    """Minimal stand-in for a boto3 S3 client."""

    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}
        self.content_types: dict[str, str] = {}

    def get_object(self, Bucket: str, Key: str) -> dict[str, Any]:
        if Key not in self.objects:
            raise ClientError(
                {"Error": {"Code": "NoSuchKey", "Message": "The key does not exist"}},
                "GetObject",
            )
        return {"Body": io.BytesIO(self.objects[Key])}

    def put_object(self, Bucket: str, Key: str, Body: bytes, ContentType: str = "") -> dict:
        self.objects[Key] = Body
        self.content_types[Key] = ContentType
        return {}

    def get_paginator(self, operation: str) -> "FakeS3Client":
        assert operation == "list_objects_v2"
        return self

    def paginate(self, Bucket: str, Prefix: str) -> list[dict[str, Any]]:
        keys = sorted(key for key in self.objects if key.startswith(Prefix))
        # Two pages to exercise paginator handling
        return [
            {"Contents": [{"Key": key} for key in keys[:1]]},
            {"Contents": [{"Key": key} for key in keys[1:]]},
            {},
        ]


class TestS3BlobStore:
    """Tests for the S3 blob store."""

    @pytest.mark.asyncio
    async def test_put_get_list(self, settings: Settings) -> None:
        """Test object operations go through the client."""
        client = FakeS3Client()
        blobs = S3BlobStore("documents", settings, client=client)

        await blobs.put("users/u1/audio/a.mp3", b"ID3", "audio/mpeg")
        await blobs.put("users/u1/formatted/a.txt", b"text")
        assert client.content_types["users/u1/audio/a.mp3"] == "audio/mpeg"
        assert await blobs.get("users/u1/audio/a.mp3") == b"ID3"
        assert await blobs.list_keys("users/") == [
            "users/u1/audio/a.mp3",
            "users/u1/formatted/a.txt",
        ]

    @pytest.mark.asyncio
    async def test_missing_object(self, settings: Settings) -> None:
        """Test NoSuchKey becomes a StorageError."""
        blobs = S3BlobStore("documents", settings, client=FakeS3Client())
        with pytest.raises(StorageError, match="Blob not found"):
            await blobs.get("missing")

    def test_bucket_required(self, settings: Settings) -> None:
        """Test the store refuses to start without a bucket."""
        with pytest.raises(ConfigurationError):
            S3BlobStore(settings=settings, client=FakeS3Client())


class TestCursors:
    """Tests for cursor encoding."""

    def test_round_trip(self) -> None:
        """Test a cursor decodes to the key it was minted from."""
        key = ("2024-03-01T12:00:00.000000Z", "wf-1")
        cursor = encode_cursor(ListIndex.CREATED_AT, key)
        assert decode_cursor(cursor, ListIndex.CREATED_AT) == key

    def test_wrong_index(self) -> None:
        """Test cursors are bound to their index."""
        cursor = encode_cursor(ListIndex.CREATED_AT, ("x", "wf-1"))
        with pytest.raises(ValidationError):
            decode_cursor(cursor, ListIndex.UPDATED_AT)


class TestFactory:
    """Tests for building stores from settings."""

    def test_memory_backends(self, settings: Settings) -> None:
        """Test memory backends are selected by settings."""
        assert isinstance(create_workflow_store(settings), MemoryWorkflowStore)
        assert isinstance(create_token_store(settings), MemoryJobTokenStore)
        assert isinstance(create_blob_store(settings), MemoryBlobStore)

    def test_persistent_backends(self, settings: Settings, tmp_path: Path) -> None:
        """Test SQLite and local backends are selected by settings."""
        configured = settings.model_copy(
            update={
                "store_backend": "sqlite",
                "store_sqlite_path": str(tmp_path / "db" / "inkstream.db"),
                "blob_backend": "local",
                "blob_local_path": str(tmp_path / "blobs"),
            }
        )
        store = create_workflow_store(configured)
        token_store = create_token_store(configured)
        assert isinstance(store, SQLiteWorkflowStore)
        assert isinstance(token_store, SQLiteJobTokenStore)
        assert isinstance(create_blob_store(configured), LocalBlobStore)
        store.close()
        token_store.close()
