"""SQLAlchemy models."""

from changefeed.models.resource_change import (
    ResourceChangeData,
    ResourceChangeType,
    resource_change_data,
    resource_change_data_staging,
)

__all__ = [
    "ResourceChangeData",
    "ResourceChangeType",
    "resource_change_data",
    "resource_change_data_staging",
]
