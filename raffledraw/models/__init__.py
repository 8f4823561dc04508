from .base import Base

# import models so Alembic/autoloaders can discover mappers
from .enums import (  # noqa: F401
    PrizeType,
    RaffleStatus,
    RaffleType,
    SelectionMethod,
    TicketSourceType,
    TicketStatus,
    WinnerStatus,
)
from .raffle import Raffle, RafflePrize  # noqa: F401
from .ticket import RaffleTicket  # noqa: F401
from .winner import RaffleWinner  # noqa: F401

__all__ = [
    "Base",
    "PrizeType",
    "RaffleStatus",
    "RaffleType",
    "SelectionMethod",
    "TicketSourceType",
    "TicketStatus",
    "WinnerStatus",
    "Raffle",
    "RafflePrize",
    "RaffleTicket",
    "RaffleWinner",
]
