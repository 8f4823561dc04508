"""Domain events emitted by workflows.

Workflows never publish events themselves. Each command returns the updated
aggregate together with the events it produced, and publication is left to
the caller as a separate step.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from .db.utils import dt_iso, utcnow


@dataclass(frozen=True)
class DomainEvent:
    """Immutable record of something that happened to an aggregate.

    Attributes
    ----------
    name : str
        Event name such as ``"raffle.activated"`` or ``"ticket.issued"``.
    aggregate : str
        Aggregate type (``"raffle"``, ``"ticket"``, ``"winner"``).
    aggregate_id : Optional[int]
        Primary key of the aggregate, when it has been flushed.
    occurred_at : datetime
        When the event happened (UTC).
    payload : dict[str, Any]
        Event specific details.
    """

    name: str
    aggregate: str
    aggregate_id: Optional[int]
    occurred_at: datetime = field(default_factory=utcnow)
    payload: dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "aggregate": self.aggregate,
            "aggregate_id": self.aggregate_id,
            "occurred_at": dt_iso(self.occurred_at),
            "payload": dict(self.payload),
        }


__all__ = ["DomainEvent"]
