"""Enumerations shared by the raffle models."""

from __future__ import annotations

import enum


class RaffleStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    CLOSED = "CLOSED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class RaffleType(str, enum.Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    SPECIAL = "SPECIAL"
    INSTANT_WIN = "INSTANT_WIN"
    TIERED = "TIERED"
    PROGRESSIVE = "PROGRESSIVE"
    SEASONAL = "SEASONAL"

    @property
    def allows_multiple_wins(self) -> bool:
        """Whether one user may win more than one tier in the same draw."""
        return self in (RaffleType.INSTANT_WIN, RaffleType.TIERED)


class SelectionMethod(str, enum.Enum):
    RANDOM = "RANDOM"
    PROBABILITY = "PROBABILITY"
    FIRST_COME_FIRST_SERVED = "FIRST_COME_FIRST_SERVED"
    WEIGHTED = "WEIGHTED"


class TicketStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    WON = "WON"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"
    TRANSFERRED = "TRANSFERRED"
    SUSPENDED = "SUSPENDED"


class TicketSourceType(str, enum.Enum):
    COUPON_REDEMPTION = "COUPON_REDEMPTION"
    DIRECT_PURCHASE = "DIRECT_PURCHASE"
    PROMOTIONAL = "PROMOTIONAL"
    BONUS = "BONUS"
    LOYALTY_REWARD = "LOYALTY_REWARD"
    REFERRAL = "REFERRAL"
    ADMIN_ISSUED = "ADMIN_ISSUED"


class PrizeType(str, enum.Enum):
    CASH = "CASH"
    GIFT_CARD = "GIFT_CARD"
    CREDIT = "CREDIT"
    PHYSICAL_ITEM = "PHYSICAL_ITEM"
    MERCHANDISE = "MERCHANDISE"
    SERVICE = "SERVICE"
    DISCOUNT = "DISCOUNT"
    POINTS = "POINTS"
    FUEL_CREDIT = "FUEL_CREDIT"
    OTHER = "OTHER"

    @property
    def claim_window_days(self) -> int:
        """Days a winner has to claim a prize of this type."""
        return _CLAIM_WINDOW_DAYS[self]

    @property
    def requires_physical_delivery(self) -> bool:
        return self in (PrizeType.PHYSICAL_ITEM, PrizeType.MERCHANDISE)


_CLAIM_WINDOW_DAYS = {
    PrizeType.CASH: 30,
    PrizeType.GIFT_CARD: 90,
    PrizeType.CREDIT: 60,
    PrizeType.PHYSICAL_ITEM: 14,
    PrizeType.MERCHANDISE: 14,
    PrizeType.SERVICE: 30,
    PrizeType.DISCOUNT: 60,
    PrizeType.POINTS: 90,
    PrizeType.FUEL_CREDIT: 60,
    PrizeType.OTHER: 30,
}


class WinnerStatus(str, enum.Enum):
    PENDING_CLAIM = "PENDING_CLAIM"
    NOTIFIED = "NOTIFIED"
    VERIFIED = "VERIFIED"
    CLAIMED = "CLAIMED"
    EXPIRED_UNCLAIMED = "EXPIRED_UNCLAIMED"
    DELIVERED = "DELIVERED"


__all__ = [
    "RaffleStatus",
    "RaffleType",
    "SelectionMethod",
    "TicketStatus",
    "TicketSourceType",
    "PrizeType",
    "WinnerStatus",
]
