"""Initial CredGuard schema."""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "20261019001"
down_revision = None
branch_labels = None
depends_on = None

provider_state = postgresql.ENUM(
    "PENDING", "ACTIVE", "SUSPENDED", "TERMINATED", name="provider_state", create_type=False
)
suspension_kind = postgresql.ENUM(
    "TEMPORARY", "INDEFINITE", name="suspension_kind", create_type=False
)
suspension_status = postgresql.ENUM(
    "ACTIVE", "REVOKED", name="suspension_status", create_type=False
)
suspension_severity = postgresql.ENUM(
    "MINOR", "MODERATE", "MAJOR", "CRITICAL", name="suspension_severity", create_type=False
)
blacklist_reason = postgresql.ENUM(
    "PROVIDER_TERMINATED",
    "CANDIDATE_REJECTED_REPEATEDLY",
    "LICENSE_CONFLICT",
    "MANUAL",
    name="blacklist_reason",
    create_type=False,
)
blacklist_origin_entity_type = postgresql.ENUM(
    "PROVIDER", "CANDIDATE", name="blacklist_origin_entity_type", create_type=False
)

ENUMS = (
    provider_state,
    suspension_kind,
    suspension_status,
    suspension_severity,
    blacklist_reason,
    blacklist_origin_entity_type,
)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.text("now()"), nullable=False),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    for enum_type in ENUMS:
        enum_type.create(bind, checkfirst=True)

    op.create_table(
        "providers",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        *_timestamps(),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("phone", sa.String(length=32), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column(
            "specializations",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column("state", provider_state, nullable=False, server_default="ACTIVE"),
        sa.Column("approved_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("email", name="uq_providers_email"),
    )
    op.create_index("ix_providers_phone", "providers", ["phone"], unique=False)

    op.create_table(
        "provider_licenses",
        sa.Column("provider_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("license_number", sa.String(length=128), nullable=False),
        sa.ForeignKeyConstraint(["provider_id"], ["providers.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("provider_id", "position", name="pk_provider_licenses"),
    )
    op.create_index(
        "ix_provider_licenses_license_number",
        "provider_licenses",
        ["license_number"],
        unique=False,
    )

    op.create_table(
        "candidates",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        *_timestamps(),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("phone", sa.String(length=32), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column(
            "specializations",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column("experience", sa.String(length=255), nullable=True),
        sa.Column("about", sa.Text(), nullable=True),
        sa.Column("submitted_at", sa.DateTime(), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_candidates_email", "candidates", ["email"], unique=False)
    op.create_index("ix_candidates_phone", "candidates", ["phone"], unique=False)

    op.create_table(
        "candidate_licenses",
        sa.Column("candidate_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("license_number", sa.String(length=128), nullable=False),
        sa.ForeignKeyConstraint(["candidate_id"], ["candidates.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("candidate_id", "position", name="pk_candidate_licenses"),
    )
    op.create_index(
        "ix_candidate_licenses_license_number",
        "candidate_licenses",
        ["license_number"],
        unique=False,
    )

    op.create_table(
        "suspension_records",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        *_timestamps(),
        sa.Column("provider_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("sequence_number", sa.Integer(), nullable=False),
        sa.Column("kind", suspension_kind, nullable=False, server_default="TEMPORARY"),
        sa.Column("status", suspension_status, nullable=False, server_default="ACTIVE"),
        sa.Column("severity", suspension_severity, nullable=False, server_default="MAJOR"),
        sa.Column("reasons", postgresql.JSONB(), nullable=False),
        sa.Column("starts_at", sa.DateTime(), server_default=sa.text("now()"), nullable=False),
        sa.Column("ends_at", sa.DateTime(), nullable=True),
        sa.Column("duration_days", sa.Integer(), nullable=True),
        sa.Column(
            "blocks_patient_access", sa.Boolean(), nullable=False, server_default=sa.text("false")
        ),
        sa.Column(
            "blocks_scheduling", sa.Boolean(), nullable=False, server_default=sa.text("false")
        ),
        sa.Column(
            "blocks_prescribing", sa.Boolean(), nullable=False, server_default=sa.text("false")
        ),
        sa.Column(
            "blocks_system_access", sa.Boolean(), nullable=False, server_default=sa.text("false")
        ),
        sa.Column("issued_by", sa.String(length=255), nullable=False),
        sa.Column("revoked_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["provider_id"], ["providers.id"], ondelete="CASCADE"),
        sa.UniqueConstraint(
            "provider_id",
            "sequence_number",
            name="uq_suspension_records_provider_sequence",
        ),
    )
    op.create_index(
        "ix_suspension_records_provider_id", "suspension_records", ["provider_id"], unique=False
    )
    op.create_index(
        "ix_suspension_records_status", "suspension_records", ["status"], unique=False
    )

    op.create_table(
        "blacklist_entries",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        *_timestamps(),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("phone", sa.String(length=32), nullable=True),
        sa.Column("reason", blacklist_reason, nullable=False),
        sa.Column("origin_entity_type", blacklist_origin_entity_type, nullable=False),
        sa.Column("origin_entity_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("origin_display_name", sa.String(length=255), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_by", sa.String(length=255), nullable=True),
        sa.Column(
            "blacklisted_at", sa.DateTime(), server_default=sa.text("now()"), nullable=False
        ),
        sa.Column("expires_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_blacklist_entries_email", "blacklist_entries", ["email"], unique=False)
    op.create_index("ix_blacklist_entries_phone", "blacklist_entries", ["phone"], unique=False)
    op.create_index("ix_blacklist_entries_reason", "blacklist_entries", ["reason"], unique=False)
    op.create_index(
        "ix_blacklist_entries_is_active", "blacklist_entries", ["is_active"], unique=False
    )

    op.create_table(
        "blacklist_licenses",
        sa.Column("entry_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("license_number", sa.String(length=128), nullable=False),
        sa.ForeignKeyConstraint(["entry_id"], ["blacklist_entries.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("entry_id", "position", name="pk_blacklist_licenses"),
    )
    op.create_index(
        "ix_blacklist_licenses_license_number",
        "blacklist_licenses",
        ["license_number"],
        unique=False,
    )

    op.create_table(
        "rejection_counters",
        sa.Column("email", sa.String(length=255), primary_key=True, nullable=False),
        *_timestamps(),
        sa.Column("count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("last_rejected_at", sa.DateTime(), nullable=True),
    )


def downgrade() -> None:
    op.drop_table("rejection_counters")
    op.drop_index("ix_blacklist_licenses_license_number", table_name="blacklist_licenses")
    op.drop_table("blacklist_licenses")
    op.drop_index("ix_blacklist_entries_is_active", table_name="blacklist_entries")
    op.drop_index("ix_blacklist_entries_reason", table_name="blacklist_entries")
    op.drop_index("ix_blacklist_entries_phone", table_name="blacklist_entries")
    op.drop_index("ix_blacklist_entries_email", table_name="blacklist_entries")
    op.drop_table("blacklist_entries")
    op.drop_index("ix_suspension_records_status", table_name="suspension_records")
    op.drop_index("ix_suspension_records_provider_id", table_name="suspension_records")
    op.drop_table("suspension_records")
    op.drop_index("ix_candidate_licenses_license_number", table_name="candidate_licenses")
    op.drop_table("candidate_licenses")
    op.drop_index("ix_candidates_phone", table_name="candidates")
    op.drop_index("ix_candidates_email", table_name="candidates")
    op.drop_table("candidates")
    op.drop_index("ix_provider_licenses_license_number", table_name="provider_licenses")
    op.drop_table("provider_licenses")
    op.drop_index("ix_providers_phone", table_name="providers")
    op.drop_table("providers")

    bind = op.get_bind()
    for enum_type in reversed(ENUMS):
        enum_type.drop(bind, checkfirst=True)
