"""Schedule blocks, contact merge links and name keys.

Revision ID: 002_blocks_merge
Revises: 001_initial
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from clinic_core.services.normalization import name_key, normalize_birth_date


revision: str = "002_blocks_merge"
down_revision: Union[str, None] = "001_initial"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

_ENUMS = {
    "blocktype": ("VACATION", "CONFERENCE", "EMERGENCY", "PERSONAL", "MAINTENANCE", "OTHER"),
    "blockrecurrence": ("DAILY", "WEEKLY", "MONTHLY", "YEARLY"),
}


def _enum(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*_ENUMS[name], name=name, create_type=False)


def upgrade() -> None:
    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        for name, values in _ENUMS.items():
            postgresql.ENUM(*values, name=name).create(bind, checkfirst=True)

    with op.batch_alter_table("contacts") as batch:
        batch.add_column(sa.Column("name_key", sa.String(), nullable=False, server_default=""))
        batch.add_column(sa.Column("merged_into_id", sa.Integer(), nullable=True))
        batch.create_foreign_key("fk_contacts_merged_into_id", "contacts", ["merged_into_id"], ["id"])
        batch.create_index(op.f("ix_contacts_name_key"), ["name_key"], unique=False)
        batch.create_index(op.f("ix_contacts_merged_into_id"), ["merged_into_id"], unique=False)

    # existing rows get the same keys new intakes store
    contacts = sa.table(
        "contacts", sa.column("id", sa.Integer), sa.column("name", sa.String), sa.column("name_key", sa.String),
        sa.column("birth_date", sa.String),
    )
    for row in bind.execute(sa.select(contacts.c.id, contacts.c.name, contacts.c.birth_date)).all():
        bind.execute(
            contacts.update()
            .where(contacts.c.id == row.id)
            .values(name_key=name_key(row.name), birth_date=normalize_birth_date(row.birth_date))
        )

    op.create_table(
        "schedule_blocks",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("provider_id", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("block_type", _enum("blocktype"), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=True),
        sa.Column("end_time", sa.Time(), nullable=True),
        sa.Column("recurrence", _enum("blockrecurrence"), nullable=True),
        sa.Column("recurrence_end_date", sa.Date(), nullable=True),
        sa.Column("status", postgresql.ENUM("ACTIVE", "INACTIVE", name="entitystatus", create_type=False), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    for column in ("provider_id", "start_date", "status"):
        op.create_index(op.f(f"ix_schedule_blocks_{column}"), "schedule_blocks", [column], unique=False)


def downgrade() -> None:
    op.drop_table("schedule_blocks")
    with op.batch_alter_table("contacts") as batch:
        batch.drop_index(op.f("ix_contacts_merged_into_id"))
        batch.drop_index(op.f("ix_contacts_name_key"))
        batch.drop_constraint("fk_contacts_merged_into_id", type_="foreignkey")
        batch.drop_column("merged_into_id")
        batch.drop_column("name_key")
    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        for name in reversed(list(_ENUMS)):
            postgresql.ENUM(name=name).drop(bind, checkfirst=True)
