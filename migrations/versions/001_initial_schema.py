"""Initial schema: contacts, patients, slots, appointments, duplicate_candidates.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# created once up front; several tables share entitystatus
_ENUMS = {
    "entitystatus": ("ACTIVE", "INACTIVE"),
    "appointmentstatus": ("SCHEDULED", "CONFIRMED", "IN_PROGRESS", "COMPLETED", "CANCELLED", "NO_SHOW"),
    "appointmenttype": ("CONSULTATION", "FOLLOW_UP", "TELEMEDICINE", "PROCEDURE", "EXAM", "EMERGENCY"),
    "appointmentsource": ("PUBLIC", "SECRETARY", "DOCTOR", "PHONE", "WHATSAPP", "MIGRATION"),
    "duplicateseverity": ("LIKELY", "POSSIBLE"),
    "candidatestatus": ("PENDING", "CONFIRMED_MERGE", "CONFIRMED_DISTINCT"),
}


def _enum(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*_ENUMS[name], name=name, create_type=False)


def upgrade() -> None:
    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        for name, values in _ENUMS.items():
            postgresql.ENUM(*values, name=name).create(bind, checkfirst=True)

    op.create_table(
        "contacts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("phone", sa.String(), nullable=True),
        sa.Column("whatsapp", sa.String(), nullable=True),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("birth_date", sa.String(), nullable=True),
        sa.Column("registration_sources", sa.JSON(), nullable=False),
        sa.Column("status", _enum("entitystatus"), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    for column in ("phone", "whatsapp", "email", "birth_date", "status"):
        op.create_index(op.f(f"ix_contacts_{column}"), "contacts", [column], unique=False)

    op.create_table(
        "patients",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("contact_id", sa.Integer(), nullable=False),
        sa.Column("document_number", sa.String(), nullable=False),
        sa.Column("medical_record_number", sa.Integer(), nullable=False),
        sa.Column("full_name", sa.String(), nullable=False),
        sa.Column("insurance_type", sa.String(), nullable=False),
        sa.Column("status", _enum("entitystatus"), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["contact_id"], ["contacts.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_patients_contact_id"), "patients", ["contact_id"], unique=True)
    op.create_index(op.f("ix_patients_document_number"), "patients", ["document_number"], unique=False)
    op.create_index(
        op.f("ix_patients_medical_record_number"), "patients", ["medical_record_number"], unique=True
    )
    op.create_index(op.f("ix_patients_status"), "patients", ["status"], unique=False)
    op.create_index(
        "uq_patients_active_document",
        "patients",
        ["document_number"],
        unique=True,
        postgresql_where=sa.text("status = 'ACTIVE'"),
        sqlite_where=sa.text("status = 'ACTIVE'"),
    )

    op.create_table(
        "slots",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("provider_id", sa.String(), nullable=False),
        sa.Column("slot_date", sa.Date(), nullable=False),
        sa.Column("slot_time", sa.Time(), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=False),
        sa.Column("is_available", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("status", _enum("entitystatus"), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_slots_provider_id"), "slots", ["provider_id"], unique=False)
    op.create_index(op.f("ix_slots_slot_date"), "slots", ["slot_date"], unique=False)
    op.create_index(op.f("ix_slots_status"), "slots", ["status"], unique=False)
    op.create_index(
        "uq_slots_active_key",
        "slots",
        ["provider_id", "slot_date", "slot_time"],
        unique=True,
        postgresql_where=sa.text("status = 'ACTIVE'"),
        sqlite_where=sa.text("status = 'ACTIVE'"),
    )

    op.create_table(
        "appointments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("contact_id", sa.Integer(), nullable=False),
        sa.Column("patient_id", sa.Integer(), nullable=True),
        sa.Column("provider_id", sa.String(), nullable=True),
        sa.Column("slot_id", sa.Integer(), nullable=True),
        sa.Column("appointment_date", sa.Date(), nullable=False),
        sa.Column("appointment_time", sa.Time(), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=False),
        sa.Column("type", _enum("appointmenttype"), nullable=False),
        sa.Column("source", _enum("appointmentsource"), nullable=False),
        sa.Column("status", _enum("appointmentstatus"), nullable=False),
        sa.Column("notes", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["contact_id"], ["contacts.id"]),
        sa.ForeignKeyConstraint(["patient_id"], ["patients.id"]),
        sa.ForeignKeyConstraint(["slot_id"], ["slots.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    for column in ("contact_id", "patient_id", "provider_id", "slot_id", "appointment_date", "status"):
        op.create_index(op.f(f"ix_appointments_{column}"), "appointments", [column], unique=False)

    op.create_table(
        "duplicate_candidates",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("contact_a_id", sa.Integer(), nullable=False),
        sa.Column("contact_b_id", sa.Integer(), nullable=False),
        sa.Column("score", sa.Float(), nullable=False),
        sa.Column("matched_fields", sa.JSON(), nullable=False),
        sa.Column("severity", _enum("duplicateseverity"), nullable=False),
        sa.Column("status", _enum("candidatestatus"), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("resolved_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["contact_a_id"], ["contacts.id"]),
        sa.ForeignKeyConstraint(["contact_b_id"], ["contacts.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("contact_a_id", "contact_b_id", name="uq_duplicate_pair"),
    )
    op.create_index(
        op.f("ix_duplicate_candidates_contact_a_id"), "duplicate_candidates", ["contact_a_id"], unique=False
    )
    op.create_index(
        op.f("ix_duplicate_candidates_contact_b_id"), "duplicate_candidates", ["contact_b_id"], unique=False
    )
    op.create_index(op.f("ix_duplicate_candidates_status"), "duplicate_candidates", ["status"], unique=False)


def downgrade() -> None:
    op.drop_table("duplicate_candidates")
    op.drop_table("appointments")
    op.drop_table("slots")
    op.drop_table("patients")
    op.drop_table("contacts")
    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        for name in reversed(list(_ENUMS)):
            postgresql.ENUM(name=name).drop(bind, checkfirst=True)
