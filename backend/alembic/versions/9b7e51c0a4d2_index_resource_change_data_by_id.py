"""index resource change data by id

Revision ID: 9b7e51c0a4d2
Revises: 4f1c2a9d7e30
Create Date: 2026-10-14

Replaces the (timestamp, id) primary keys of resource_change_data and
resource_change_data_staging with indexes led by id, the only column change
feed consumers filter and sort on.

The migration is online: per-partition indexes are built with
CREATE INDEX CONCURRENTLY, so reads and writes continue while it runs. The
partitioned parent index is created ON ONLY the parent and becomes valid once
every partition index is attached. On large tables this takes a long time.
"""

import logging
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "9b7e51c0a4d2"
down_revision: Union[str, Sequence[str], None] = "4f1c2a9d7e30"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

logger = logging.getLogger("alembic.runtime.migration")

PARENT_INDEX = "ix_resource_change_data_id"
STAGING_INDEX = "ix_resource_change_data_staging"


def _partition_names() -> list[str]:
    """Names of all partitions of resource_change_data, including DEFAULT."""
    result = op.get_bind().execute(
        sa.text(
            """
            SELECT c.relname
            FROM pg_catalog.pg_inherits i
            JOIN pg_catalog.pg_class c ON c.oid = i.inhrelid
            WHERE i.inhparent = CAST('resource_change_data' AS regclass)
            ORDER BY c.relname
            """
        )
    )
    return list(result.scalars())


def upgrade() -> None:
    """Build id indexes online, then drop the (timestamp, id) primary keys."""
    logger.info("Beginning resource change id index migration")

    logger.info("Creating %s on resource_change_data", PARENT_INDEX)
    op.execute(
        f"CREATE INDEX IF NOT EXISTS {PARENT_INDEX} ON ONLY resource_change_data (id)"
    )
    partitions = _partition_names()

    # CONCURRENTLY cannot run inside a transaction block
    with op.get_context().autocommit_block():
        for partition in partitions:
            logger.info("Creating id index on partition %s", partition)
            op.execute(
                f"CREATE INDEX CONCURRENTLY IF NOT EXISTS {partition}_id_idx "
                f"ON {partition} (id)"
            )
        logger.info("Creating %s on resource_change_data_staging", STAGING_INDEX)
        op.execute(
            f"CREATE INDEX CONCURRENTLY IF NOT EXISTS {STAGING_INDEX} "
            f'ON resource_change_data_staging (id, "timestamp")'
        )

    for partition in partitions:
        op.execute(f"ALTER INDEX {PARENT_INDEX} ATTACH PARTITION {partition}_id_idx")

    logger.info("Dropping pk_resource_change_data_timestamp_id")
    op.execute(
        "ALTER TABLE resource_change_data "
        "DROP CONSTRAINT IF EXISTS pk_resource_change_data_timestamp_id"
    )
    logger.info("Dropping pk_resource_change_data_staging_timestamp_id")
    op.execute(
        "ALTER TABLE resource_change_data_staging "
        "DROP CONSTRAINT IF EXISTS pk_resource_change_data_staging_timestamp_id"
    )

    logger.info("Completed resource change id index migration")


def downgrade() -> None:
    """Restore the (timestamp, id) primary keys and drop the id indexes."""
    op.create_primary_key(
        "pk_resource_change_data_timestamp_id",
        "resource_change_data",
        ["timestamp", "id"],
    )
    op.create_primary_key(
        "pk_resource_change_data_staging_timestamp_id",
        "resource_change_data_staging",
        ["timestamp", "id"],
    )
    # Dropping the partitioned index also drops the attached partition indexes
    op.drop_index(PARENT_INDEX, table_name="resource_change_data")
    op.drop_index(STAGING_INDEX, table_name="resource_change_data_staging")
