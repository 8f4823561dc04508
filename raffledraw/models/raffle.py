"""Database models for raffle definitions and their prize pools."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
    select,
)
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship

from ..db.utils import as_utc, dt_iso, utcnow
from .base import Base
from .enums import PrizeType, RaffleStatus, RaffleType, SelectionMethod
from .types import ID_TYPE, UTCDateTime, enum_column_type

if TYPE_CHECKING:
    from .winner import RaffleWinner


class Raffle(Base):
    """A named drawing event that tickets are entered into."""

    __tablename__ = "raffles"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    """Primary key."""

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    """Display name. Unique regardless of case."""

    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    """Free form description shown to participants."""

    raffle_type: Mapped[RaffleType] = mapped_column(
        enum_column_type(RaffleType), nullable=False, default=RaffleType.WEEKLY
    )
    """Kind of raffle. ``INSTANT_WIN`` and ``TIERED`` allow multiple wins per user."""

    status: Mapped[RaffleStatus] = mapped_column(
        enum_column_type(RaffleStatus, length=20),
        nullable=False,
        default=RaffleStatus.DRAFT,
        index=True,
    )
    """Lifecycle state, see :mod:`raffledraw.models.states`."""

    registration_start: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    """Start of the registration window (inclusive)."""

    registration_end: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    """End of the registration window (inclusive)."""

    draw_date: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    """Earliest moment the draw may run. Always after ``registration_end``."""

    min_tickets_to_participate: Mapped[int] = mapped_column(
        Integer, nullable=False, default=1
    )
    """Minimum number of active tickets a user must hold to take part."""

    max_tickets_per_user: Mapped[int] = mapped_column(
        Integer, nullable=False, default=10
    )
    """Maximum number of active tickets a single user may hold."""

    max_participants: Mapped[int] = mapped_column(Integer, nullable=False, default=1000)
    """Capacity of the raffle, measured in active tickets."""

    current_participants: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    """Cached count of active tickets. Recomputed, never incremented."""

    is_public: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    """Whether the raffle is listed publicly."""

    requires_verification: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    """Tickets must be verified with their code before they count in a draw."""

    entry_fee: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    """Price of a single ticket for direct purchases. ``None`` means no minimum payment."""

    winner_selection_method: Mapped[SelectionMethod] = mapped_column(
        enum_column_type(SelectionMethod), nullable=False, default=SelectionMethod.RANDOM
    )
    """Strategy used by the draw engine."""

    created_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    updated_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow
    )
    """Timestamp when the raffle was created."""

    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow
    )
    """Timestamp automatically bumped when the raffle is modified."""

    completed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    """Set when the draw completes."""

    prizes: Mapped[list["RafflePrize"]] = relationship(
        back_populates="raffle",
        cascade="all, delete-orphan",
        order_by="RafflePrize.tier",
    )
    """Prize pool, ordered by tier."""

    winners: Mapped[list["RaffleWinner"]] = relationship(viewonly=True)

    def __init__(
        self,
        *,
        name: str,
        registration_start: datetime,
        registration_end: datetime,
        draw_date: datetime,
        raffle_type: RaffleType = RaffleType.WEEKLY,
        status: RaffleStatus = RaffleStatus.DRAFT,
        description: Optional[str] = None,
        min_tickets_to_participate: int = 1,
        max_tickets_per_user: int = 10,
        max_participants: int = 1000,
        current_participants: int = 0,
        is_public: bool = True,
        requires_verification: bool = False,
        entry_fee: Optional[Decimal] = None,
        winner_selection_method: SelectionMethod = SelectionMethod.RANDOM,
        created_by: Optional[str] = None,
        prizes: Optional[list["RafflePrize"]] = None,
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None,
    ) -> None:
        self.name = name
        self.registration_start = registration_start
        self.registration_end = registration_end
        self.draw_date = draw_date
        self.raffle_type = raffle_type
        self.status = status
        self.description = description
        self.min_tickets_to_participate = min_tickets_to_participate
        self.max_tickets_per_user = max_tickets_per_user
        self.max_participants = max_participants
        self.current_participants = current_participants
        self.is_public = is_public
        self.requires_verification = requires_verification
        self.entry_fee = entry_fee
        self.winner_selection_method = winner_selection_method
        self.created_by = created_by
        if prizes is not None:
            self.prizes = prizes
        if created_at is not None:
            self.created_at = created_at
        if updated_at is not None:
            self.updated_at = updated_at

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return "<Raffle(id={id}, name={name!r}, status={status})>".format(
            id=self.id,
            name=self.name,
            status=self.status.value if self.status else None,
        )

    @classmethod
    def get_by_name(cls, session: Session, name: str) -> Optional["Raffle"]:
        """Return the raffle whose name matches ``name`` ignoring case."""

        return session.scalar(
            select(cls).where(func.lower(cls.name) == name.strip().lower())
        )

    @property
    def is_final(self) -> bool:
        return self.status in (RaffleStatus.COMPLETED, RaffleStatus.CANCELLED)

    @property
    def is_draw_completed(self) -> bool:
        return self.status == RaffleStatus.COMPLETED

    @property
    def allows_modifications(self) -> bool:
        return self.status == RaffleStatus.DRAFT

    @property
    def allows_multiple_wins(self) -> bool:
        return RaffleType(self.raffle_type).allows_multiple_wins

    @property
    def remaining_slots(self) -> int:
        return max(self.max_participants - (self.current_participants or 0), 0)

    def has_capacity(self) -> bool:
        return (self.current_participants or 0) < self.max_participants

    def is_registration_open(self, now: Optional[datetime] = None) -> bool:
        """Return ``True`` when the raffle is active and ``now`` is inside the window."""

        ref = as_utc(now) or utcnow()
        return (
            self.status == RaffleStatus.ACTIVE
            and as_utc(self.registration_start) <= ref <= as_utc(self.registration_end)
        )

    def is_eligible_for_draw(self, now: Optional[datetime] = None) -> bool:
        """Return ``True`` once registration has ended and the draw date is reached."""

        ref = as_utc(now) or utcnow()
        return (
            self.status in (RaffleStatus.ACTIVE, RaffleStatus.CLOSED)
            and ref > as_utc(self.registration_end)
            and ref >= as_utc(self.draw_date)
        )

    def snapshot(self) -> dict[str, Any]:
        """Small summary returned alongside entry responses."""

        return {
            "raffle_id": self.id,
            "registration_end": dt_iso(self.registration_end),
            "draw_date": dt_iso(self.draw_date),
            "remaining_slots": self.remaining_slots,
        }

    def to_json(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "raffle_type": self.raffle_type.value,
            "status": self.status.value,
            "registration_start": dt_iso(self.registration_start),
            "registration_end": dt_iso(self.registration_end),
            "draw_date": dt_iso(self.draw_date),
            "min_tickets_to_participate": self.min_tickets_to_participate,
            "max_tickets_per_user": self.max_tickets_per_user,
            "max_participants": self.max_participants,
            "current_participants": self.current_participants,
            "is_public": self.is_public,
            "requires_verification": self.requires_verification,
            "entry_fee": str(self.entry_fee) if self.entry_fee is not None else None,
            "winner_selection_method": self.winner_selection_method.value,
            "completed_at": dt_iso(self.completed_at),
        }


# Case-insensitive uniqueness on the raffle name.
Index("uq_raffles_name_lower", func.lower(Raffle.name), unique=True)


class RafflePrize(Base):
    """One prize tier inside a raffle's prize pool."""

    __tablename__ = "raffle_prizes"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    raffle_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("raffles.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    prize_type: Mapped[PrizeType] = mapped_column(
        enum_column_type(PrizeType), nullable=False, default=PrizeType.OTHER
    )
    tier: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    """Rank of the prize. Tier 1 is drawn first."""

    value: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    quantity_available: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    quantity_awarded: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    winning_probability: Mapped[Optional[float]] = mapped_column(
        Numeric(8, 6, asdecimal=False), nullable=True
    )
    """Per-ticket win chance used by the ``PROBABILITY`` selection method."""

    requires_identity_verification: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    raffle: Mapped["Raffle"] = relationship(back_populates="prizes")
    winners: Mapped[list["RaffleWinner"]] = relationship(viewonly=True)

    __table_args__ = (
        CheckConstraint(
            "quantity_awarded <= quantity_available",
            name="quantity_awarded_within_available",
        ),
        CheckConstraint("tier >= 1", name="tier_positive"),
        Index("ix_raffle_prizes_raffle_tier", "raffle_id", "tier"),
    )

    def __init__(
        self,
        *,
        name: str,
        prize_type: PrizeType = PrizeType.OTHER,
        tier: int = 1,
        quantity_available: int = 1,
        quantity_awarded: int = 0,
        value: Optional[Decimal] = None,
        currency: str = "USD",
        winning_probability: Optional[float] = None,
        requires_identity_verification: bool = False,
        description: Optional[str] = None,
        raffle: Optional[Raffle] = None,
        raffle_id: Optional[int] = None,
    ) -> None:
        self.name = name
        self.prize_type = prize_type
        self.tier = tier
        self.quantity_available = quantity_available
        self.quantity_awarded = quantity_awarded
        self.value = value
        self.currency = currency
        self.winning_probability = winning_probability
        self.requires_identity_verification = requires_identity_verification
        self.description = description
        if raffle is not None:
            self.raffle = raffle
        if raffle_id is not None:
            self.raffle_id = raffle_id

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return "<RafflePrize(id={id}, name={name!r}, tier={tier}, remaining={rem})>".format(
            id=self.id,
            name=self.name,
            tier=self.tier,
            rem=self.remaining_quantity,
        )

    @property
    def remaining_quantity(self) -> int:
        return max((self.quantity_available or 0) - (self.quantity_awarded or 0), 0)

    @property
    def is_physical(self) -> bool:
        return PrizeType(self.prize_type).requires_physical_delivery

    def to_json(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "raffle_id": self.raffle_id,
            "name": self.name,
            "prize_type": self.prize_type.value,
            "tier": self.tier,
            "value": str(self.value) if self.value is not None else None,
            "currency": self.currency,
            "quantity_available": self.quantity_available,
            "quantity_awarded": self.quantity_awarded,
            "remaining_quantity": self.remaining_quantity,
            "winning_probability": self.winning_probability,
            "requires_identity_verification": self.requires_identity_verification,
        }


__all__ = ["Raffle", "RafflePrize"]
