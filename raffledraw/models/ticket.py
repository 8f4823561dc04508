"""Database model for raffle tickets."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
    select,
)
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship

from ..db.utils import dt_iso, utcnow
from .base import Base
from .enums import TicketSourceType, TicketStatus
from .types import ID_TYPE, UTCDateTime, enum_column_type

if TYPE_CHECKING:
    from .raffle import Raffle


class RaffleTicket(Base):
    """One entry into a raffle held by a user."""

    __tablename__ = "raffle_tickets"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    """Primary key."""

    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    """Opaque identifier of the owning user."""

    raffle_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("raffles.id", ondelete="CASCADE"), nullable=False, index=True
    )
    """Foreign key referencing :class:`~raffledraw.models.raffle.Raffle`."""

    ticket_number: Mapped[str] = mapped_column(String(50), nullable=False)
    """Globally unique human readable number, ``R<raffle>U<user>T<millis><rand>``."""

    status: Mapped[TicketStatus] = mapped_column(
        enum_column_type(TicketStatus, length=20),
        nullable=False,
        default=TicketStatus.ACTIVE,
    )

    source_type: Mapped[TicketSourceType] = mapped_column(
        enum_column_type(TicketSourceType), nullable=False
    )
    """How the ticket was obtained. Drives the weighted selection method."""

    source_reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    """Identifier of the entry event (coupon, transaction, campaign, ...)."""

    entry_sequence: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    """Position of the ticket inside the entry call that created it (1..n)."""

    coupon_reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    campaign_reference: Mapped[Optional[str]] = mapped_column(
        String(100), nullable=True
    )
    station_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    transaction_reference: Mapped[Optional[str]] = mapped_column(
        String(100), nullable=True
    )
    purchase_amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(10, 2), nullable=True
    )
    """Amount paid for this ticket when it was purchased directly."""

    verification_code: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    """Six character code, present only when the raffle requires verification."""

    is_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    verified_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    verified_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow
    )
    """Entry timestamp. Orders tickets for first-come-first-served draws."""

    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    raffle: Mapped["Raffle"] = relationship()

    __table_args__ = (
        UniqueConstraint("ticket_number", name="uq_raffle_tickets_ticket_number"),
        UniqueConstraint(
            "user_id",
            "raffle_id",
            "source_type",
            "source_reference",
            "entry_sequence",
            name="uq_raffle_tickets_entry_source",
        ),
        Index("ix_raffle_tickets_raffle_status", "raffle_id", "status"),
        Index("ix_raffle_tickets_user_raffle", "user_id", "raffle_id"),
        Index("ix_raffle_tickets_verification_code", "verification_code"),
    )

    def __init__(
        self,
        *,
        user_id: int,
        raffle_id: int,
        ticket_number: str,
        source_type: TicketSourceType,
        status: TicketStatus = TicketStatus.ACTIVE,
        source_reference: Optional[str] = None,
        entry_sequence: int = 1,
        coupon_reference: Optional[str] = None,
        campaign_reference: Optional[str] = None,
        station_id: Optional[int] = None,
        transaction_reference: Optional[str] = None,
        purchase_amount: Optional[Decimal] = None,
        verification_code: Optional[str] = None,
        is_verified: bool = False,
        notes: Optional[str] = None,
        created_at: Optional[datetime] = None,
        id: Optional[int] = None,
    ) -> None:
        if id is not None:
            self.id = id
        self.user_id = user_id
        self.raffle_id = raffle_id
        self.ticket_number = ticket_number
        self.source_type = source_type
        self.status = status
        self.source_reference = source_reference
        self.entry_sequence = entry_sequence
        self.coupon_reference = coupon_reference
        self.campaign_reference = campaign_reference
        self.station_id = station_id
        self.transaction_reference = transaction_reference
        self.purchase_amount = purchase_amount
        self.verification_code = verification_code
        self.is_verified = is_verified
        self.notes = notes
        self.created_at = created_at or utcnow()
        self.updated_at = self.created_at

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return "<RaffleTicket(id={id}, number={num}, user_id={uid}, status={status})>".format(
            id=self.id,
            num=self.ticket_number,
            uid=self.user_id,
            status=self.status.value if self.status else None,
        )

    @classmethod
    def get_by_number(
        cls, session: Session, ticket_number: str
    ) -> Optional["RaffleTicket"]:
        return session.scalar(select(cls).where(cls.ticket_number == ticket_number))

    @classmethod
    def get_by_verification_code(
        cls, session: Session, code: str
    ) -> Optional["RaffleTicket"]:
        """Return the ticket carrying ``code``.

        The entry workflows never hand out a code twice. For rows written
        some other way the most recent ticket wins when several share one.
        """

        stmt = (
            select(cls)
            .where(cls.verification_code == code)
            .order_by(cls.created_at.desc(), cls.id.desc())
        )
        return session.scalars(stmt).first()

    @classmethod
    def count_active(
        cls,
        session: Session,
        raffle_id: int,
        user_id: Optional[int] = None,
    ) -> int:
        """Return the number of ACTIVE tickets in a raffle, optionally for one user."""

        stmt = select(func.count(cls.id)).where(
            cls.raffle_id == raffle_id,
            cls.status == TicketStatus.ACTIVE,
        )
        if user_id is not None:
            stmt = stmt.where(cls.user_id == user_id)
        return int(session.scalar(stmt) or 0)

    @property
    def is_active(self) -> bool:
        return self.status == TicketStatus.ACTIVE

    def to_json(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "ticket_number": self.ticket_number,
            "user_id": self.user_id,
            "raffle_id": self.raffle_id,
            "status": self.status.value,
            "source_type": self.source_type.value,
            "source_reference": self.source_reference,
            "station_id": self.station_id,
            "purchase_amount": (
                str(self.purchase_amount) if self.purchase_amount is not None else None
            ),
            "requires_verification": self.verification_code is not None,
            "is_verified": self.is_verified,
            "verified_at": dt_iso(self.verified_at),
            "created_at": dt_iso(self.created_at),
        }


__all__ = ["RaffleTicket"]
