"""Initial raffle schema

Revision ID: 0001
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ID_TYPE = sa.BigInteger().with_variant(sa.Integer(), "sqlite")


def upgrade() -> None:
    op.create_table(
        "raffles",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("raffle_type", sa.String(length=30), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("registration_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("registration_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column("draw_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("min_tickets_to_participate", sa.Integer(), nullable=False),
        sa.Column("max_tickets_per_user", sa.Integer(), nullable=False),
        sa.Column("max_participants", sa.Integer(), nullable=False),
        sa.Column("current_participants", sa.Integer(), nullable=False),
        sa.Column("is_public", sa.Boolean(), nullable=False),
        sa.Column("requires_verification", sa.Boolean(), nullable=False),
        sa.Column("entry_fee", sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column("winner_selection_method", sa.String(length=30), nullable=False),
        sa.Column("created_by", sa.String(length=100), nullable=True),
        sa.Column("updated_by", sa.String(length=100), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_raffles")),
    )
    op.create_index(op.f("ix_raffles_status"), "raffles", ["status"], unique=False)
    op.create_index(
        "uq_raffles_name_lower", "raffles", [sa.text("lower(name)")], unique=True
    )

    op.create_table(
        "raffle_prizes",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("raffle_id", ID_TYPE, nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("prize_type", sa.String(length=30), nullable=False),
        sa.Column("tier", sa.Integer(), nullable=False),
        sa.Column("value", sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("quantity_available", sa.Integer(), nullable=False),
        sa.Column("quantity_awarded", sa.Integer(), nullable=False),
        sa.Column("winning_probability", sa.Numeric(precision=8, scale=6), nullable=True),
        sa.Column("requires_identity_verification", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "quantity_awarded <= quantity_available",
            name=op.f("ck_raffle_prizes_quantity_awarded_within_available"),
        ),
        sa.CheckConstraint("tier >= 1", name=op.f("ck_raffle_prizes_tier_positive")),
        sa.ForeignKeyConstraint(
            ["raffle_id"],
            ["raffles.id"],
            name=op.f("fk_raffle_prizes_raffle_id_raffles"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_raffle_prizes")),
    )
    op.create_index(
        op.f("ix_raffle_prizes_raffle_id"), "raffle_prizes", ["raffle_id"], unique=False
    )
    op.create_index(
        "ix_raffle_prizes_raffle_tier", "raffle_prizes", ["raffle_id", "tier"], unique=False
    )

    op.create_table(
        "raffle_tickets",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("raffle_id", ID_TYPE, nullable=False),
        sa.Column("ticket_number", sa.String(length=50), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("source_type", sa.String(length=30), nullable=False),
        sa.Column("source_reference", sa.String(length=100), nullable=True),
        sa.Column("entry_sequence", sa.Integer(), nullable=False),
        sa.Column("coupon_reference", sa.String(length=100), nullable=True),
        sa.Column("campaign_reference", sa.String(length=100), nullable=True),
        sa.Column("station_id", sa.BigInteger(), nullable=True),
        sa.Column("transaction_reference", sa.String(length=100), nullable=True),
        sa.Column("purchase_amount", sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column("verification_code", sa.String(length=10), nullable=True),
        sa.Column("is_verified", sa.Boolean(), nullable=False),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("verified_by", sa.String(length=100), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["raffle_id"],
            ["raffles.id"],
            name=op.f("fk_raffle_tickets_raffle_id_raffles"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_raffle_tickets")),
        sa.UniqueConstraint("ticket_number", name="uq_raffle_tickets_ticket_number"),
        sa.UniqueConstraint(
            "user_id",
            "raffle_id",
            "source_type",
            "source_reference",
            "entry_sequence",
            name="uq_raffle_tickets_entry_source",
        ),
    )
    op.create_index(
        op.f("ix_raffle_tickets_user_id"), "raffle_tickets", ["user_id"], unique=False
    )
    op.create_index(
        op.f("ix_raffle_tickets_raffle_id"), "raffle_tickets", ["raffle_id"], unique=False
    )
    op.create_index(
        "ix_raffle_tickets_raffle_status",
        "raffle_tickets",
        ["raffle_id", "status"],
        unique=False,
    )
    op.create_index(
        "ix_raffle_tickets_user_raffle",
        "raffle_tickets",
        ["user_id", "raffle_id"],
        unique=False,
    )
    op.create_index(
        "ix_raffle_tickets_verification_code",
        "raffle_tickets",
        ["verification_code"],
        unique=False,
    )

    op.create_table(
        "raffle_winners",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("raffle_id", ID_TYPE, nullable=False),
        sa.Column("prize_id", ID_TYPE, nullable=False),
        sa.Column("ticket_id", ID_TYPE, nullable=False),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("won_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("notified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("claim_deadline", sa.DateTime(timezone=True), nullable=False),
        sa.Column("verification_code", sa.String(length=16), nullable=False),
        sa.Column("is_verified", sa.Boolean(), nullable=False),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("verified_by", sa.String(length=100), nullable=True),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("processed_by", sa.String(length=100), nullable=True),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("delivery_method", sa.String(length=50), nullable=True),
        sa.Column("tracking_info", sa.String(length=255), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["prize_id"],
            ["raffle_prizes.id"],
            name=op.f("fk_raffle_winners_prize_id_raffle_prizes"),
            ondelete="RESTRICT",
        ),
        sa.ForeignKeyConstraint(
            ["raffle_id"],
            ["raffles.id"],
            name=op.f("fk_raffle_winners_raffle_id_raffles"),
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["ticket_id"],
            ["raffle_tickets.id"],
            name=op.f("fk_raffle_winners_ticket_id_raffle_tickets"),
            ondelete="RESTRICT",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_raffle_winners")),
        sa.UniqueConstraint("prize_id", "ticket_id", name="uq_raffle_winners_prize_ticket"),
    )
    for column in ("raffle_id", "prize_id", "ticket_id", "user_id"):
        op.create_index(
            op.f(f"ix_raffle_winners_{column}"), "raffle_winners", [column], unique=False
        )
    op.create_index(
        "ix_raffle_winners_status_deadline",
        "raffle_winners",
        ["status", "claim_deadline"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_table("raffle_winners")
    op.drop_table("raffle_tickets")
    op.drop_table("raffle_prizes")
    op.drop_index("uq_raffles_name_lower", table_name="raffles")
    op.drop_table("raffles")
