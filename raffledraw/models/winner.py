"""Database model for draw winners and their claim progress."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    select,
)
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship

from ..db.utils import as_utc, dt_iso, utcnow
from .base import Base
from .enums import WinnerStatus
from .types import ID_TYPE, UTCDateTime, enum_column_type

if TYPE_CHECKING:
    from .raffle import Raffle, RafflePrize
    from .ticket import RaffleTicket


class RaffleWinner(Base):
    """Links a winning ticket to the prize it won."""

    __tablename__ = "raffle_winners"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    """Primary key."""

    raffle_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("raffles.id", ondelete="CASCADE"), nullable=False, index=True
    )
    prize_id: Mapped[int] = mapped_column(
        ID_TYPE,
        ForeignKey("raffle_prizes.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    ticket_id: Mapped[int] = mapped_column(
        ID_TYPE,
        ForeignKey("raffle_tickets.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    """Owner of the winning ticket at draw time."""

    status: Mapped[WinnerStatus] = mapped_column(
        enum_column_type(WinnerStatus, length=20),
        nullable=False,
        default=WinnerStatus.PENDING_CLAIM,
    )

    won_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    notified_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    claim_deadline: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    """``won_at`` plus the claim window of the prize type."""

    verification_code: Mapped[str] = mapped_column(String(16), nullable=False)
    """Eight character code the winner presents to verify their identity."""

    is_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    """Starts ``True`` when the prize does not require identity verification."""

    verified_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    verified_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    claimed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    processed_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    delivered_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    delivery_method: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    tracking_info: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    raffle: Mapped["Raffle"] = relationship()
    prize: Mapped["RafflePrize"] = relationship()
    ticket: Mapped["RaffleTicket"] = relationship()

    __table_args__ = (
        UniqueConstraint("prize_id", "ticket_id", name="uq_raffle_winners_prize_ticket"),
        Index("ix_raffle_winners_status_deadline", "status", "claim_deadline"),
    )

    def __init__(
        self,
        *,
        raffle_id: int,
        prize_id: int,
        ticket_id: int,
        user_id: int,
        claim_deadline: datetime,
        verification_code: str,
        is_verified: bool = False,
        status: WinnerStatus = WinnerStatus.PENDING_CLAIM,
        won_at: Optional[datetime] = None,
        notes: Optional[str] = None,
    ) -> None:
        self.raffle_id = raffle_id
        self.prize_id = prize_id
        self.ticket_id = ticket_id
        self.user_id = user_id
        self.claim_deadline = claim_deadline
        self.verification_code = verification_code
        self.is_verified = is_verified
        self.status = status
        self.won_at = won_at or utcnow()
        self.notes = notes
        self.created_at = self.won_at
        self.updated_at = self.won_at

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return "<RaffleWinner(id={id}, prize_id={pid}, ticket_id={tid}, status={status})>".format(
            id=self.id,
            pid=self.prize_id,
            tid=self.ticket_id,
            status=self.status.value if self.status else None,
        )

    @classmethod
    def list_for_raffle(cls, session: Session, raffle_id: int) -> list["RaffleWinner"]:
        stmt = (
            select(cls)
            .where(cls.raffle_id == raffle_id)
            .order_by(cls.won_at.asc(), cls.id.asc())
        )
        return list(session.scalars(stmt))

    def is_claim_expired(self, now: Optional[datetime] = None) -> bool:
        """Return ``True`` once ``now`` is past the claim deadline."""

        ref = as_utc(now) or utcnow()
        return ref > as_utc(self.claim_deadline)

    def to_json(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "raffle_id": self.raffle_id,
            "prize_id": self.prize_id,
            "ticket_id": self.ticket_id,
            "user_id": self.user_id,
            "status": self.status.value,
            "won_at": dt_iso(self.won_at),
            "notified_at": dt_iso(self.notified_at),
            "claim_deadline": dt_iso(self.claim_deadline),
            "is_verified": self.is_verified,
            "verified_at": dt_iso(self.verified_at),
            "claimed_at": dt_iso(self.claimed_at),
            "delivered_at": dt_iso(self.delivered_at),
            "delivery_method": self.delivery_method,
            "tracking_info": self.tracking_info,
        }


__all__ = ["RaffleWinner"]
