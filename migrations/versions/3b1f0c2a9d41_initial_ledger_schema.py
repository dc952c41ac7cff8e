"""initial ledger schema

Revision ID: 3b1f0c2a9d41
Revises:
Create Date: 2026-10-19 09:12:40.512318

"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "3b1f0c2a9d41"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

BIGINT_ID = sa.BigInteger().with_variant(sa.Integer(), "sqlite")
AMOUNT = sa.Numeric(20, 8)
TIMESTAMP = sa.DateTime(timezone=True)


def upgrade() -> None:
    """Create identity, referral, reward and claim tables."""
    op.create_table(
        "wallet_identity",
        sa.Column("wallet_address", sa.String(64), nullable=False),
        sa.Column("wallet_type", sa.String(16), nullable=False),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("first_seen_at", TIMESTAMP, nullable=False),
        sa.Column("last_seen_at", TIMESTAMP, nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False),
        sa.Column("deactivated_at", TIMESTAMP, nullable=True),
        sa.PrimaryKeyConstraint("wallet_address"),
    )
    op.create_table(
        "device",
        sa.Column("device_id", sa.String(128), nullable=False),
        sa.Column("hardware_fingerprint", sa.String(128), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("first_seen_at", TIMESTAMP, nullable=False),
        sa.Column("last_seen_at", TIMESTAMP, nullable=False),
        sa.PrimaryKeyConstraint("device_id"),
    )
    op.create_table(
        "wallet_device",
        sa.Column("wallet_address", sa.String(64), nullable=False),
        sa.Column("device_id", sa.String(128), nullable=False),
        sa.Column("first_seen_at", TIMESTAMP, nullable=False),
        sa.Column("last_seen_at", TIMESTAMP, nullable=False),
        sa.Column("last_ip", sa.String(64), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False),
        sa.ForeignKeyConstraint(
            ["wallet_address"], ["wallet_identity.wallet_address"], ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(["device_id"], ["device.device_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("wallet_address", "device_id"),
    )
    op.create_index(
        "ix_wallet_device_device_id", "wallet_device", ["device_id", "last_seen_at"]
    )

    op.create_table(
        "referral_code",
        sa.Column("code", sa.String(16), nullable=False),
        sa.Column("wallet_address", sa.String(64), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", TIMESTAMP, nullable=False),
        sa.ForeignKeyConstraint(["wallet_address"], ["wallet_identity.wallet_address"]),
        sa.PrimaryKeyConstraint("code"),
        sa.UniqueConstraint("wallet_address"),
    )
    op.create_table(
        "referral_relationship",
        sa.Column("id", BIGINT_ID, autoincrement=True, nullable=False),
        sa.Column("referrer_wallet", sa.String(64), nullable=False),
        sa.Column("referred_wallet", sa.String(64), nullable=False),
        sa.Column("referral_code", sa.String(16), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("fraud_score", sa.Float(), nullable=False),
        sa.Column("fraud_signals", sa.JSON(), nullable=False),
        sa.Column("device_id", sa.String(128), nullable=True),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("rejection_reason", sa.String(64), nullable=True),
        sa.Column("created_at", TIMESTAMP, nullable=False),
        sa.Column("validated_at", TIMESTAMP, nullable=True),
        sa.Column("reviewed_at", TIMESTAMP, nullable=True),
        sa.ForeignKeyConstraint(["referrer_wallet"], ["wallet_identity.wallet_address"]),
        sa.ForeignKeyConstraint(["referred_wallet"], ["wallet_identity.wallet_address"]),
        sa.ForeignKeyConstraint(["referral_code"], ["referral_code.code"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "uq_referral_relationship_live_referred",
        "referral_relationship",
        ["referred_wallet"],
        unique=True,
        sqlite_where=sa.text("status != 'rejected'"),
        postgresql_where=sa.text("status != 'rejected'"),
    )
    op.create_index(
        "ix_referral_relationship_referrer_status",
        "referral_relationship",
        ["referrer_wallet", "status"],
    )

    op.create_table(
        "reward_balance",
        sa.Column("wallet_address", sa.String(64), nullable=False),
        sa.Column("tier_level", sa.SmallInteger(), nullable=False),
        sa.Column("total_accrued", AMOUNT, nullable=False),
        sa.Column("total_claimed", AMOUNT, nullable=False),
        sa.Column("last_claim_at", TIMESTAMP, nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.CheckConstraint(
            "total_claimed <= total_accrued", name="ck_reward_balance_claimed_le_accrued"
        ),
        sa.CheckConstraint("total_claimed >= 0", name="ck_reward_balance_claimed_non_negative"),
        sa.PrimaryKeyConstraint("wallet_address"),
    )

    op.create_table(
        "claim_record",
        sa.Column("id", BIGINT_ID, autoincrement=True, nullable=False),
        sa.Column("wallet_address", sa.String(64), nullable=False),
        sa.Column("amount", AMOUNT, nullable=False),
        sa.Column("token_amount", sa.Numeric(28, 8), nullable=False),
        sa.Column("exchange_rate", AMOUNT, nullable=False),
        sa.Column("token_symbol", sa.String(16), nullable=False),
        sa.Column("period_key", sa.String(16), nullable=False),
        sa.Column("claimed_at", TIMESTAMP, nullable=False),
        sa.Column("settlement_status", sa.String(16), nullable=False),
        sa.Column("transaction_hash", sa.String(128), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_claim_record_wallet_period", "claim_record", ["wallet_address", "period_key"]
    )
    op.create_table(
        "claim_period_total",
        sa.Column("wallet_address", sa.String(64), nullable=False),
        sa.Column("period_key", sa.String(16), nullable=False),
        sa.Column("total_amount", AMOUNT, nullable=False),
        sa.Column("claim_count", sa.Integer(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("wallet_address", "period_key"),
    )

    op.create_table(
        "wallet_session",
        sa.Column("id", BIGINT_ID, autoincrement=True, nullable=False),
        sa.Column("wallet_address", sa.String(64), nullable=False),
        sa.Column("device_id", sa.String(128), nullable=False),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("start_time", TIMESTAMP, nullable=False),
        sa.Column("end_time", TIMESTAMP, nullable=True),
        sa.Column("last_active", TIMESTAMP, nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False),
        sa.Column("duration_seconds", sa.Float(), nullable=True),
        sa.Column("close_reason", sa.String(16), nullable=True),
        sa.ForeignKeyConstraint(["wallet_address"], ["wallet_identity.wallet_address"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_wallet_session_active_last_active", "wallet_session", ["active", "last_active"]
    )
    op.create_index("ix_wallet_session_wallet", "wallet_session", ["wallet_address"])


def downgrade() -> None:
    """Drop every ledger table."""
    op.drop_index("ix_wallet_session_wallet", table_name="wallet_session")
    op.drop_index("ix_wallet_session_active_last_active", table_name="wallet_session")
    op.drop_table("wallet_session")
    op.drop_table("claim_period_total")
    op.drop_index("ix_claim_record_wallet_period", table_name="claim_record")
    op.drop_table("claim_record")
    op.drop_table("reward_balance")
    op.drop_index("ix_referral_relationship_referrer_status", table_name="referral_relationship")
    op.drop_index("uq_referral_relationship_live_referred", table_name="referral_relationship")
    op.drop_table("referral_relationship")
    op.drop_table("referral_code")
    op.drop_index("ix_wallet_device_device_id", table_name="wallet_device")
    op.drop_table("wallet_device")
    op.drop_table("device")
    op.drop_table("wallet_identity")
