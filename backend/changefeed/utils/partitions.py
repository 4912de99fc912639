"""Time helpers shared by the change feed pager and partition maintainer."""

from datetime import datetime, timedelta, timezone

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
PARTITION_INTERVAL = timedelta(hours=1)


def to_utc(value: datetime) -> datetime:
    """Normalize a datetime to an aware UTC datetime.

    Naive values are taken to already be in UTC.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def floor_to_hour(value: datetime) -> datetime:
    """Round a datetime down to the start of its UTC hour."""
    return to_utc(value).replace(minute=0, second=0, microsecond=0)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def partition_name(table_name: str, boundary: datetime) -> str:
    """Name of the partition whose range starts at ``boundary``.

    Example: ``resource_change_data_p2026101813``.
    """
    return f"{table_name}_p{to_utc(boundary):%Y%m%d%H}"
