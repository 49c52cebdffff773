"""Sort keys and opaque cursors for workflow listings."""

import base64
import binascii
import json
from collections.abc import Iterable

from inkstream.core.exceptions import ValidationError
from inkstream.models.queries import ListIndex
from inkstream.models.workflow import WorkflowRecord, format_timestamp

SortKey = tuple[str, str]


def index_value(record: WorkflowRecord, index: ListIndex) -> str:
    """Value of ``record`` on the attribute ``index`` orders by."""
    if index is ListIndex.CREATED_AT:
        return format_timestamp(record.created_at)
    if index is ListIndex.UPDATED_AT:
        return format_timestamp(record.updated_at)
    if index is ListIndex.STATUS:
        return record.status.value
    return f"{record.status_category.value}#{format_timestamp(record.created_at)}"


def sort_key(record: WorkflowRecord, index: ListIndex) -> SortKey:
    """Composite key; the workflow id breaks ties between equal values."""
    return index_value(record, index), record.workflow_id


def encode_cursor(index: ListIndex, key: SortKey) -> str:
    """Encode the last-seen key of a page."""
    payload = json.dumps({"i": index.value, "k": list(key)}, separators=(",", ":"))
    return base64.urlsafe_b64encode(payload.encode("utf-8")).decode("ascii")


def decode_cursor(cursor: str, index: ListIndex) -> SortKey:
    """Decode a cursor minted for ``index``.

    Raises:
        ValidationError: If the cursor is malformed or belongs to another index
    """
    try:
        raw = base64.urlsafe_b64decode(cursor.encode("ascii"))
        payload = json.loads(raw.decode("utf-8"))
    except (binascii.Error, UnicodeError, ValueError) as e:
        raise ValidationError("Invalid cursor", field="cursor") from e

    if not isinstance(payload, dict) or payload.get("i") != index.value:
        raise ValidationError(
            "Cursor does not belong to this listing",
            field="cursor",
            details={"index": index.value},
        )

    key = payload.get("k")
    if (
        not isinstance(key, list)
        or len(key) != 2
        or not all(isinstance(part, str) for part in key)
    ):
        raise ValidationError("Invalid cursor", field="cursor")
    return key[0], key[1]


def paginate(
    records: Iterable[WorkflowRecord],
    index: ListIndex,
    limit: int | None,
    after: SortKey | None,
) -> tuple[list[WorkflowRecord], str | None]:
    """Order records newest first and cut the page following ``after``."""
    ordered = sorted(records, key=lambda r: sort_key(r, index), reverse=True)
    if after is not None:
        ordered = [r for r in ordered if sort_key(r, index) < after]

    if limit is None or len(ordered) <= limit:
        return ordered, None

    page = ordered[:limit]
    return page, encode_cursor(index, sort_key(page[-1], index))
