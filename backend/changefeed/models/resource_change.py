"""SQLAlchemy models for the resource change feed.

The change table is range-partitioned on ``timestamp``, one partition per
hour. PostgreSQL only allows unique constraints on a partitioned table when
they include the partition key, so consumers reach rows through a plain index
on ``id`` instead of a primary key.
"""

import enum

from sqlalchemy import (
    DDL,
    BigInteger,
    Column,
    DateTime,
    Index,
    Integer,
    Sequence,
    SmallInteger,
    String,
    Table,
    event,
    text,
)

from changefeed.database import Base

RESOURCE_CHANGE_TABLE = "resource_change_data"
DEFAULT_PARTITION = f"{RESOURCE_CHANGE_TABLE}_default"


class ResourceChangeType(enum.IntEnum):
    """Kind of mutation recorded in the change feed."""

    CREATED = 0
    UPDATED = 1
    DELETED = 2


resource_change_data_id_seq = Sequence(
    "resource_change_data_id_seq",
    metadata=Base.metadata,
)

resource_change_data = Table(
    RESOURCE_CHANGE_TABLE,
    Base.metadata,
    Column(
        "id",
        BigInteger,
        resource_change_data_id_seq,
        server_default=resource_change_data_id_seq.next_value(),
        nullable=False,
    ),
    Column(
        "timestamp",
        DateTime(timezone=True),
        server_default=text("now()"),
        nullable=False,
    ),
    Column("resource_id", String(64), nullable=False),
    Column("resource_type_id", SmallInteger, nullable=False),
    Column("resource_version", Integer, nullable=False),
    Column("resource_change_type_id", SmallInteger, nullable=False),
    Index("ix_resource_change_data_id", "id"),
    postgresql_partition_by='RANGE ("timestamp")',
)

# Rows older than the first boundary land here; hourly partitions are split off
# by the partition maintainer.
event.listen(
    resource_change_data,
    "after_create",
    DDL(
        f"CREATE TABLE {DEFAULT_PARTITION} PARTITION OF {RESOURCE_CHANGE_TABLE} DEFAULT"
    ).execute_if(dialect="postgresql"),
)

resource_change_data_staging = Table(
    f"{RESOURCE_CHANGE_TABLE}_staging",
    Base.metadata,
    Column("id", BigInteger, nullable=False),
    Column(
        "timestamp",
        DateTime(timezone=True),
        server_default=text("now()"),
        nullable=False,
    ),
    Column("resource_id", String(64), nullable=False),
    Column("resource_type_id", SmallInteger, nullable=False),
    Column("resource_version", Integer, nullable=False),
    Column("resource_change_type_id", SmallInteger, nullable=False),
    Index("ix_resource_change_data_staging", "id", "timestamp"),
)


class ResourceChangeData(Base):
    """One row per FHIR resource mutation.

    ``id`` is the sole ordering key for consumers; ``timestamp`` only decides
    which hourly partition the row lives in.
    """

    __table__ = resource_change_data
    __mapper_args__ = {"primary_key": [resource_change_data.c.id]}

    def __repr__(self) -> str:
        return (
            f"<ResourceChangeData(id={self.id}, resource_id={self.resource_id}, "
            f"version={self.resource_version}, change_type={self.resource_change_type_id})>"
        )
