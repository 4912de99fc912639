"""Resource change feed API routes.

Consumers poll ``GET /resource-changes`` with their checkpoint; a scheduler
calls ``POST /resource-changes/partitions`` to keep hourly partitions ahead
of writers.
"""

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status

from changefeed.auth import verify_api_key
from changefeed.config import settings
from changefeed.repositories.base import ChangeStore
from changefeed.repositories.resource_change import get_change_store
from changefeed.schemas.resource_change import (
    PartitionMaintenanceResponse,
    ResourceChangePage,
    ResourceChangeResponse,
)
from changefeed.services.change_feed import MAX_ID, MAX_PAGE_SIZE, MIN_ID, fetch_page
from changefeed.services.partition_maintainer import ensure_future_partitions

router = APIRouter(prefix="/resource-changes", tags=["resource-changes"])

# Look-ahead cap for on-demand maintenance (one week of hourly partitions)
MAX_COUNT_AHEAD = 168


@router.get("", response_model=ResourceChangePage)
async def list_resource_changes(
    store: ChangeStore = Depends(get_change_store),
    _api_key: str = Depends(verify_api_key),
    start_id: int = Query(0, ge=MIN_ID, le=MAX_ID),
    last_processed: datetime | None = None,
    page_size: int = Query(settings.change_feed_page_size, ge=0, le=MAX_PAGE_SIZE),
) -> ResourceChangePage:
    """Fetch the next page of resource changes.

    Args:
        start_id: Smallest id to return (inclusive).
        last_processed: Checkpoint time of the consumer; omitted means the epoch.
        page_size: Maximum number of records to return.

    Returns:
        Records ordered by id plus the start id for the next call.
    """
    try:
        records = await fetch_page(store, start_id, last_processed, page_size)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        )

    return ResourceChangePage(
        items=[ResourceChangeResponse.model_validate(record) for record in records],
        start_id=start_id,
        page_size=page_size,
        next_start_id=records[-1].id + 1 if records else None,
    )


@router.post("/partitions", response_model=PartitionMaintenanceResponse)
async def maintain_partitions(
    store: ChangeStore = Depends(get_change_store),
    _api_key: str = Depends(verify_api_key),
    count_ahead: int = Query(settings.partition_lookahead_hours, ge=0, le=MAX_COUNT_AHEAD),
) -> PartitionMaintenanceResponse:
    """Ensure hourly partitions exist for now and the next ``count_ahead`` hours."""
    try:
        created = await ensure_future_partitions(store, count_ahead)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        )

    return PartitionMaintenanceResponse(
        count_ahead=count_ahead,
        boundaries_created=created,
    )
