"""Pydantic schemas."""

from changefeed.schemas.resource_change import (
    PartitionMaintenanceResponse,
    ResourceChangePage,
    ResourceChangeResponse,
)

__all__ = [
    "PartitionMaintenanceResponse",
    "ResourceChangePage",
    "ResourceChangeResponse",
]
