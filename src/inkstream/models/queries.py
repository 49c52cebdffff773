"""Listing queries and pages."""

from dataclasses import dataclass
from enum import StrEnum

from pydantic import BaseModel, Field

from inkstream.core.exceptions import ValidationError
from inkstream.models.workflow import StatusCategory, WorkflowRecord, WorkflowStatus

DEFAULT_MAX_LIMIT = 100


class SortBy(StrEnum):
    """Orderings available to unfiltered listings."""

    CREATED_AT = "createdAt"
    UPDATED_AT = "updatedAt"


class ListIndex(StrEnum):
    """Iteration order a listing runs on."""

    CREATED_AT = "createdAt"
    UPDATED_AT = "updatedAt"
    STATUS = "status"
    CATEGORY = "statusCategoryCreatedAt"


@dataclass
class ListQuery:
    """Parameters of a workflow listing.

    A filter pins the order to the filtered attribute, so ``sort_by`` may
    only be given when neither ``status`` nor ``category`` is.
    """

    limit: int | None = None
    cursor: str | None = None
    sort_by: SortBy | str | None = None
    status: WorkflowStatus | str | None = None
    category: StatusCategory | str | None = None

    def resolve(self, max_limit: int = DEFAULT_MAX_LIMIT) -> ListIndex:
        """Validate the query and pick the index it iterates on."""
        if self.limit is not None and not 1 <= self.limit <= max_limit:
            raise ValidationError(
                f"limit must be between 1 and {max_limit}",
                field="limit",
                details={"limit": self.limit},
            )

        has_filter = self.status is not None or self.category is not None
        if self.sort_by is not None and has_filter:
            raise ValidationError(
                "sortBy cannot be combined with a filter",
                field="sortBy",
            )
        if self.status is not None and self.category is not None:
            raise ValidationError(
                "Filter by status or by category, not both",
                field="filter",
            )

        if self.status is not None:
            self.status = _coerce(WorkflowStatus, self.status, "status")
            return ListIndex.STATUS
        if self.category is not None:
            self.category = _coerce(StatusCategory, self.category, "category")
            return ListIndex.CATEGORY

        sort_by = _coerce(SortBy, self.sort_by or SortBy.UPDATED_AT, "sortBy")
        return ListIndex(sort_by.value)

    def matches(self, record: WorkflowRecord) -> bool:
        """Check a record against the query's filter."""
        if self.status is not None and record.status != self.status:
            return False
        if self.category is not None and record.status_category != self.category:
            return False
        return True


def _coerce(enum_type, value, field_name: str):
    try:
        return enum_type(value)
    except ValueError as e:
        raise ValidationError(
            f"Invalid {field_name}: {value!r}",
            field=field_name,
        ) from e


class WorkflowPage(BaseModel):
    """One page of a listing."""

    items: list[WorkflowRecord] = Field(default_factory=list)
    next_cursor: str | None = None
