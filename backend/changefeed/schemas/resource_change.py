"""Pydantic schemas for the resource change feed API."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from changefeed.models.resource_change import ResourceChangeType


class ResourceChangeResponse(BaseModel):
    """A single resource change record."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    timestamp: datetime
    resource_id: str
    resource_type_id: int
    resource_version: int
    resource_change_type_id: ResourceChangeType


class ResourceChangePage(BaseModel):
    """One page of the change feed, ordered by id."""

    items: list[ResourceChangeResponse]
    start_id: int
    page_size: int
    next_start_id: int | None = Field(
        default=None,
        description="Start id for the next fetch; null when the page is empty",
    )


class PartitionMaintenanceResponse(BaseModel):
    """Result of a partition maintenance run."""

    count_ahead: int
    boundaries_created: list[datetime]
