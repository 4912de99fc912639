"""create resource change tables

Revision ID: 4f1c2a9d7e30
Revises:
Create Date: 2026-10-12

This migration:
1. Creates the id sequence shared by change rows
2. Creates resource_change_data, range-partitioned on timestamp, with its
   DEFAULT partition
3. Creates the unpartitioned resource_change_data_staging twin
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "4f1c2a9d7e30"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _change_columns(with_sequence: bool) -> list[sa.Column]:
    id_default = (
        sa.text("nextval('resource_change_data_id_seq')") if with_sequence else None
    )
    return [
        sa.Column("id", sa.BigInteger(), server_default=id_default, nullable=False),
        sa.Column(
            "timestamp",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column("resource_id", sa.String(64), nullable=False),
        sa.Column("resource_type_id", sa.SmallInteger(), nullable=False),
        sa.Column("resource_version", sa.Integer(), nullable=False),
        sa.Column("resource_change_type_id", sa.SmallInteger(), nullable=False),
    ]


def upgrade() -> None:
    """Create the partitioned change table and its staging table."""
    op.execute(sa.schema.CreateSequence(sa.Sequence("resource_change_data_id_seq")))

    op.create_table(
        "resource_change_data",
        *_change_columns(with_sequence=True),
        sa.PrimaryKeyConstraint(
            "timestamp", "id", name="pk_resource_change_data_timestamp_id"
        ),
        postgresql_partition_by='RANGE ("timestamp")',
    )
    op.execute(
        "CREATE TABLE resource_change_data_default "
        "PARTITION OF resource_change_data DEFAULT"
    )

    op.create_table(
        "resource_change_data_staging",
        *_change_columns(with_sequence=False),
        sa.PrimaryKeyConstraint(
            "timestamp", "id", name="pk_resource_change_data_staging_timestamp_id"
        ),
    )


def downgrade() -> None:
    """Drop change tables (partitions are dropped with their parent)."""
    op.drop_table("resource_change_data_staging")
    op.drop_table("resource_change_data")
    op.execute(sa.schema.DropSequence(sa.Sequence("resource_change_data_id_seq")))
