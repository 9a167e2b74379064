"""create registration and student tables

Revision ID: 3b7e91c04d2a
Revises:
Create Date: 2026-02-02 09:00:00.000000

Creates the tables used by the approval pipeline:
- pending_registrations: guardian-submitted applications, one per child
- students: enrolled students, created on approval in pending_payment
- student_audit_logs: admin actions on students (outlives deleted students)

Student codes (MI0001, MI0002, ...) come from the student_code_seq sequence.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "3b7e91c04d2a"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

REGISTRATION_STATUS_VALUES = ("pending", "awaiting_payment", "approved", "rejected")
REGISTRATION_TYPE_VALUES = ("maktab", "hifz")
STUDENT_STATUS_VALUES = ("pending_payment", "active", "left")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    """Create enums, the student code sequence, and the three tables."""
    bind = op.get_bind()

    registration_status = postgresql.ENUM(
        *REGISTRATION_STATUS_VALUES, name="registration_status", create_type=False
    )
    registration_type = postgresql.ENUM(
        *REGISTRATION_TYPE_VALUES, name="registration_type", create_type=False
    )
    student_status = postgresql.ENUM(*STUDENT_STATUS_VALUES, name="student_status", create_type=False)
    registration_status.create(bind, checkfirst=True)
    registration_type.create(bind, checkfirst=True)
    student_status.create(bind, checkfirst=True)

    op.execute("CREATE SEQUENCE IF NOT EXISTS student_code_seq START 1")

    op.create_table(
        "pending_registrations",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        # Child
        sa.Column("first_name", sa.String(length=100), nullable=False),
        sa.Column("middle_name", sa.String(length=100), nullable=True),
        sa.Column("last_name", sa.String(length=100), nullable=False),
        sa.Column("date_of_birth", sa.Date(), nullable=False),
        sa.Column("place_of_birth", sa.String(length=100), nullable=False),
        sa.Column("gender", sa.String(length=10), nullable=False),
        sa.Column("ethnic_origin", sa.String(length=100), nullable=True),
        sa.Column("medical_notes", sa.Text(), nullable=True),
        # Address and contact
        sa.Column("address", sa.String(length=500), nullable=False),
        sa.Column("post_code", sa.String(length=10), nullable=False),
        sa.Column("home_contact", sa.String(length=20), nullable=True),
        sa.Column("mobile_contact", sa.String(length=20), nullable=False),
        sa.Column("mother_name", sa.String(length=200), nullable=True),
        sa.Column("mother_mobile", sa.String(length=20), nullable=True),
        # Guardian
        sa.Column("guardian_name", sa.String(length=200), nullable=False),
        sa.Column("guardian_email", sa.String(length=255), nullable=False),
        sa.Column(
            "registration_type", registration_type, nullable=False, server_default="maktab"
        ),
        # Decision tracking
        sa.Column("status", registration_status, nullable=False, server_default="pending"),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reviewed_by", sa.String(length=200), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("assigned_group", sa.String(length=10), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_pending_registrations_status", "pending_registrations", ["status"], unique=False
    )
    op.create_index(
        "ix_pending_registrations_guardian_email",
        "pending_registrations",
        ["guardian_email"],
        unique=False,
    )

    op.create_table(
        "students",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column(
            "student_code",
            sa.String(length=20),
            server_default=sa.text("'MI' || lpad(nextval('student_code_seq')::text, 4, '0')"),
            nullable=False,
        ),
        # Identity and placement
        sa.Column("name", sa.String(length=300), nullable=False),
        sa.Column("maktab", sa.String(length=10), nullable=False),
        sa.Column("student_group", sa.String(length=10), nullable=True),
        sa.Column("status", student_status, nullable=False, server_default="pending_payment"),
        sa.Column("admission_date", sa.Date(), nullable=True),
        # Copied from the application
        sa.Column("date_of_birth", sa.Date(), nullable=True),
        sa.Column("place_of_birth", sa.String(length=100), nullable=True),
        sa.Column("gender", sa.String(length=10), nullable=True),
        sa.Column("ethnic_origin", sa.String(length=100), nullable=True),
        sa.Column("medical_notes", sa.Text(), nullable=True),
        sa.Column("address", sa.String(length=500), nullable=True),
        sa.Column("post_code", sa.String(length=10), nullable=True),
        sa.Column("home_contact", sa.String(length=20), nullable=True),
        sa.Column("mobile_contact", sa.String(length=20), nullable=True),
        sa.Column("guardian_name", sa.String(length=200), nullable=True),
        sa.Column("guardian_email", sa.String(length=255), nullable=True),
        # Provisioning links
        sa.Column("application_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("billing_batch_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("sibling_count", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("has_other_maktab", sa.Boolean(), nullable=False, server_default="false"),
        # Payment references
        sa.Column("stripe_customer_id", sa.String(length=100), nullable=True),
        sa.Column("checkout_session_id", sa.String(length=255), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("student_code", name="uq_students_student_code"),
        sa.ForeignKeyConstraint(
            ["application_id"],
            ["pending_registrations.id"],
            name="fk_students_application_id",
            ondelete="SET NULL",
        ),
    )
    op.create_index("ix_students_status", "students", ["status"], unique=False)
    op.create_index("ix_students_guardian_email", "students", ["guardian_email"], unique=False)
    op.create_index(
        "ix_students_billing_batch", "students", ["billing_batch_id", "maktab"], unique=False
    )

    op.create_table(
        "student_audit_logs",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        # No FK to students: entries must survive cancellation
        sa.Column("student_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("student_name", sa.String(length=300), nullable=False),
        sa.Column("maktab", sa.String(length=10), nullable=False),
        sa.Column("action", sa.Text(), nullable=False),
        sa.Column("performed_by", sa.String(length=200), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_student_audit_logs_student_id", "student_audit_logs", ["student_id"], unique=False
    )


def downgrade() -> None:
    """Drop the tables, sequence and enum types."""
    op.drop_index("ix_student_audit_logs_student_id", table_name="student_audit_logs")
    op.drop_table("student_audit_logs")

    op.drop_index("ix_students_billing_batch", table_name="students")
    op.drop_index("ix_students_guardian_email", table_name="students")
    op.drop_index("ix_students_status", table_name="students")
    op.drop_table("students")

    op.drop_index("ix_pending_registrations_guardian_email", table_name="pending_registrations")
    op.drop_index("ix_pending_registrations_status", table_name="pending_registrations")
    op.drop_table("pending_registrations")

    op.execute("DROP SEQUENCE IF EXISTS student_code_seq")

    bind = op.get_bind()
    postgresql.ENUM(*STUDENT_STATUS_VALUES, name="student_status").drop(bind, checkfirst=True)
    postgresql.ENUM(*REGISTRATION_TYPE_VALUES, name="registration_type").drop(bind, checkfirst=True)
    postgresql.ENUM(*REGISTRATION_STATUS_VALUES, name="registration_status").drop(
        bind, checkfirst=True
    )
