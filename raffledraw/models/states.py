"""Transition tables for the raffle, ticket and winner state machines.

Every status change in the workflows goes through :meth:`StateMachine.apply`
so the allowed moves live in exactly one place.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping, Optional

from ..db.utils import utcnow
from ..errors import InvalidState
from ..events import DomainEvent
from .enums import RaffleStatus, TicketStatus, WinnerStatus


@dataclass(frozen=True)
class StateMachine:
    """Allowed transitions for one aggregate type.

    Attributes
    ----------
    aggregate : str
        Aggregate name used in emitted events (``"raffle"``, ``"ticket"``, ...).
    transitions : Mapping[Any, frozenset]
        Maps each status to the set of statuses it may move to. Statuses with
        an empty set are terminal.
    """

    aggregate: str
    transitions: Mapping[Any, frozenset]

    def allowed_targets(self, current) -> frozenset:
        return self.transitions.get(current, frozenset())

    def can_transition(self, current, target) -> bool:
        return target in self.allowed_targets(current)

    def is_terminal(self, status) -> bool:
        return not self.allowed_targets(status)

    def apply(
        self,
        entity,
        target,
        *,
        now: Optional[datetime] = None,
        payload: Optional[dict[str, Any]] = None,
    ) -> DomainEvent:
        """Move ``entity.status`` to ``target`` and describe the move.

        Parameters
        ----------
        entity
            ORM object with ``id`` and ``status`` attributes.
        target
            Desired status.
        now : Optional[datetime], default: None
            Timestamp recorded on the event and on ``entity.updated_at``.
        payload : Optional[dict[str, Any]], default: None
            Extra event details.

        Returns
        -------
        DomainEvent
            Event named ``"<aggregate>.<target>"`` in lower case.

        Raises
        ------
        InvalidState
            If the transition table does not allow the move.
        """
        current = entity.status
        if not self.can_transition(current, target):
            raise InvalidState(
                f"{self.aggregate} {entity.id} cannot move from "
                f"{_label(current)} to {_label(target)}"
            )
        ts = now or utcnow()
        entity.status = target
        if hasattr(entity, "updated_at"):
            entity.updated_at = ts
        details = {"from": _label(current), "to": _label(target)}
        if payload:
            details.update(payload)
        return DomainEvent(
            name=f"{self.aggregate}.{_label(target).lower()}",
            aggregate=self.aggregate,
            aggregate_id=entity.id,
            occurred_at=ts,
            payload=details,
        )


def _label(status) -> str:
    return getattr(status, "value", str(status))


RAFFLE_STATE_MACHINE = StateMachine(
    aggregate="raffle",
    transitions={
        RaffleStatus.DRAFT: frozenset({RaffleStatus.ACTIVE, RaffleStatus.CANCELLED}),
        RaffleStatus.ACTIVE: frozenset(
            {
                RaffleStatus.PAUSED,
                RaffleStatus.CLOSED,
                RaffleStatus.COMPLETED,
                RaffleStatus.CANCELLED,
            }
        ),
        RaffleStatus.PAUSED: frozenset({RaffleStatus.ACTIVE, RaffleStatus.CANCELLED}),
        RaffleStatus.CLOSED: frozenset(
            {RaffleStatus.COMPLETED, RaffleStatus.CANCELLED}
        ),
        RaffleStatus.COMPLETED: frozenset(),
        RaffleStatus.CANCELLED: frozenset(),
    },
)

TICKET_STATE_MACHINE = StateMachine(
    aggregate="ticket",
    transitions={
        TicketStatus.ACTIVE: frozenset(
            {
                TicketStatus.WON,
                TicketStatus.EXPIRED,
                TicketStatus.CANCELLED,
                TicketStatus.TRANSFERRED,
                TicketStatus.SUSPENDED,
            }
        ),
        TicketStatus.SUSPENDED: frozenset(
            {TicketStatus.ACTIVE, TicketStatus.CANCELLED}
        ),
        TicketStatus.WON: frozenset(),
        TicketStatus.EXPIRED: frozenset(),
        TicketStatus.CANCELLED: frozenset(),
        TicketStatus.TRANSFERRED: frozenset(),
    },
)

WINNER_STATE_MACHINE = StateMachine(
    aggregate="winner",
    transitions={
        WinnerStatus.PENDING_CLAIM: frozenset(
            {
                WinnerStatus.NOTIFIED,
                WinnerStatus.VERIFIED,
                WinnerStatus.CLAIMED,
                WinnerStatus.EXPIRED_UNCLAIMED,
            }
        ),
        WinnerStatus.NOTIFIED: frozenset(
            {
                WinnerStatus.VERIFIED,
                WinnerStatus.CLAIMED,
                WinnerStatus.EXPIRED_UNCLAIMED,
            }
        ),
        WinnerStatus.VERIFIED: frozenset({WinnerStatus.CLAIMED}),
        WinnerStatus.CLAIMED: frozenset({WinnerStatus.DELIVERED}),
        WinnerStatus.EXPIRED_UNCLAIMED: frozenset(),
        WinnerStatus.DELIVERED: frozenset(),
    },
)


def can_transition(machine: StateMachine, current, target) -> bool:
    return machine.can_transition(current, target)


def apply_transition(
    machine: StateMachine,
    entity,
    target,
    *,
    now: Optional[datetime] = None,
    payload: Optional[dict[str, Any]] = None,
) -> DomainEvent:
    return machine.apply(entity, target, now=now, payload=payload)


__all__ = [
    "StateMachine",
    "RAFFLE_STATE_MACHINE",
    "TICKET_STATE_MACHINE",
    "WINNER_STATE_MACHINE",
    "can_transition",
    "apply_transition",
]
