"""Raffle lifecycle workflows: definition, state changes and the draw."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
import logging
import random
from typing import Any, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..db.utils import as_utc, utcnow
from ..errors import EmptyDraw, InvalidEntry, InvalidState
from ..events import DomainEvent
from ..models import (
    Raffle,
    RafflePrize,
    RaffleStatus,
    RaffleTicket,
    RaffleWinner,
    TicketStatus,
)
from ..models.states import RAFFLE_STATE_MACHINE, TICKET_STATE_MACHINE
from ..prize_draw import SelectionRegistry, distribute
from .validation import load_raffle

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = frozenset(
    {
        "name",
        "description",
        "raffle_type",
        "registration_start",
        "registration_end",
        "draw_date",
        "min_tickets_to_participate",
        "max_tickets_per_user",
        "max_participants",
        "is_public",
        "requires_verification",
        "entry_fee",
        "winner_selection_method",
    }
)


@dataclass
class LifecycleResult:
    raffle: Raffle
    events: list[DomainEvent] = field(default_factory=list)


@dataclass
class DrawOutcome:
    """Result of a completed draw.

    Attributes
    ----------
    raffle : Raffle
        The raffle, now ``COMPLETED``.
    winners : list[RaffleWinner]
        Persisted winners in award order (tier 1 first).
    events : list[DomainEvent]
        ``raffle.completed``, one ``winner.selected`` per winner and one
        ``ticket.won`` per winning ticket.
    """

    raffle: Raffle
    winners: list[RaffleWinner]
    events: list[DomainEvent] = field(default_factory=list)

    def to_json(self) -> dict[str, Any]:
        return {
            "raffle_id": self.raffle.id,
            "status": self.raffle.status.value,
            "winners": [w.to_json() for w in self.winners],
        }


def get_raffle(session: Session, raffle_id: int) -> Raffle:
    return load_raffle(session, raffle_id)


def _validate_definition(raffle: Raffle) -> None:
    start = as_utc(raffle.registration_start)
    end = as_utc(raffle.registration_end)
    draw = as_utc(raffle.draw_date)
    if start is None or end is None or draw is None:
        raise InvalidEntry("invalid_dates", "Registration and draw dates are required")
    if start >= end:
        raise InvalidEntry(
            "invalid_dates", "Registration start must be before registration end"
        )
    if end >= draw:
        raise InvalidEntry("invalid_dates", "Registration end must be before the draw date")
    if raffle.max_participants is None or raffle.max_participants <= 0:
        raise InvalidEntry("invalid_limits", "Max participants must be positive")
    if raffle.min_tickets_to_participate is None or raffle.min_tickets_to_participate <= 0:
        raise InvalidEntry(
            "invalid_limits", "Minimum tickets to participate must be positive"
        )
    if raffle.max_tickets_per_user is None or raffle.max_tickets_per_user <= 0:
        raise InvalidEntry("invalid_limits", "Max tickets per user must be positive")
    if raffle.max_tickets_per_user < raffle.min_tickets_to_participate:
        raise InvalidEntry(
            "invalid_limits",
            "Max tickets per user cannot be less than minimum tickets to participate",
        )
    if raffle.entry_fee is not None and raffle.entry_fee < 0:
        raise InvalidEntry("invalid_entry_fee", "Entry fee cannot be negative")


def _ensure_unique_name(session: Session, name: str, raffle_id: Optional[int] = None) -> None:
    if not name or not name.strip():
        raise InvalidEntry("invalid_name", "Raffle name is required")
    existing = Raffle.get_by_name(session, name)
    if existing is not None and existing.id != raffle_id:
        raise InvalidEntry("duplicate_name", f"Raffle with name '{name}' already exists")


def _flush_definition(session: Session, raffle: Raffle) -> None:
    try:
        with session.begin_nested():
            session.add(raffle)
            session.flush()
    except IntegrityError as exc:
        raise InvalidEntry(
            "duplicate_name", f"Raffle with name '{raffle.name}' already exists"
        ) from exc


def create_raffle(
    session: Session, raffle: Raffle, created_by: Optional[str] = None
) -> Raffle:
    """Validate and persist a new raffle in ``DRAFT`` status.

    Parameters
    ----------
    session : Session
        Active SQLAlchemy session.
    raffle : Raffle
        Transient raffle. Prizes attached to ``raffle.prizes`` are persisted
        with it.
    created_by : Optional[str]
        Actor recorded on the raffle.

    Returns
    -------
    Raffle
        The flushed raffle with its ``id`` populated.

    Raises
    ------
    InvalidEntry
        If the dates are out of order, a limit is not positive, max tickets
        per user is below the minimum, or the name is taken (ignoring case).
    """
    if raffle.id is not None:
        raise ValueError("Raffle already has an ID, cannot create again.")
    _validate_definition(raffle)
    _ensure_unique_name(session, raffle.name)

    raffle.status = RaffleStatus.DRAFT
    raffle.current_participants = 0
    if created_by is not None:
        raffle.created_by = created_by
    _flush_definition(session, raffle)

    logger.info(f"Created raffle {raffle.id} ({raffle.name!r})")
    return raffle


def update_raffle(
    session: Session,
    raffle_id: int,
    *,
    updated_by: Optional[str] = None,
    **changes: Any,
) -> Raffle:
    """Apply ``changes`` to a ``DRAFT`` raffle.

    Raises
    ------
    ValueError
        If ``changes`` names a field that cannot be updated.
    InvalidState
        If the raffle is no longer a draft.
    InvalidEntry
        If the updated definition is invalid.
    """
    unknown = set(changes) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Unsupported raffle fields: {', '.join(sorted(unknown))}")

    raffle = load_raffle(session, raffle_id)
    if not raffle.allows_modifications:
        raise InvalidState(
            f"Raffle in status '{raffle.status.value}' cannot be modified"
        )

    if "name" in changes:
        _ensure_unique_name(session, changes["name"], raffle.id)

    # Validate against a scratch copy so a rejected update leaves the raffle untouched.
    values = {name: getattr(raffle, name) for name in UPDATABLE_FIELDS}
    values.update(changes)
    _validate_definition(Raffle(**values))

    for name, value in changes.items():
        setattr(raffle, name, value)
    raffle.updated_by = updated_by
    raffle.updated_at = utcnow()
    _flush_definition(session, raffle)
    return raffle


def add_prize(session: Session, raffle_id: int, prize: RafflePrize) -> RafflePrize:
    """Attach ``prize`` to a ``DRAFT`` raffle."""
    raffle = load_raffle(session, raffle_id)
    if not raffle.allows_modifications:
        raise InvalidState(
            f"Prizes cannot be added to a raffle in status '{raffle.status.value}'"
        )
    if prize.quantity_available is None or prize.quantity_available <= 0:
        raise InvalidEntry("invalid_prize", "Prize quantity must be positive")
    if prize.tier is None or prize.tier < 1:
        raise InvalidEntry("invalid_prize", "Prize tier must be 1 or greater")
    if prize.winning_probability is not None and not (
        0.0 <= float(prize.winning_probability) <= 1.0
    ):
        raise InvalidEntry(
            "invalid_prize", "Winning probability must be between 0 and 1"
        )

    prize.quantity_awarded = 0
    raffle.prizes.append(prize)
    session.flush()
    return prize


def _transition(
    session: Session,
    raffle_id: int,
    target: RaffleStatus,
    actor: Optional[str],
    now: Optional[datetime],
) -> LifecycleResult:
    raffle = load_raffle(session, raffle_id)
    event = RAFFLE_STATE_MACHINE.apply(
        raffle, target, now=as_utc(now) or utcnow(), payload={"actor": actor}
    )
    raffle.updated_by = actor
    session.flush()
    logger.info(f"Raffle {raffle.id} moved to {target.value}")
    return LifecycleResult(raffle=raffle, events=[event])


def activate_raffle(
    session: Session,
    raffle_id: int,
    actor: Optional[str] = None,
    now: Optional[datetime] = None,
) -> LifecycleResult:
    """Open a ``DRAFT`` raffle. At least one prize must have stock left."""
    raffle = load_raffle(session, raffle_id)
    if raffle.status != RaffleStatus.DRAFT:
        raise InvalidState("Only draft raffles can be activated")
    if not any(p.remaining_quantity > 0 for p in raffle.prizes):
        raise InvalidState("Raffle must have at least one prize to be activated")
    return _transition(session, raffle_id, RaffleStatus.ACTIVE, actor, now)


def pause_raffle(
    session: Session,
    raffle_id: int,
    actor: Optional[str] = None,
    now: Optional[datetime] = None,
) -> LifecycleResult:
    raffle = load_raffle(session, raffle_id)
    if raffle.status != RaffleStatus.ACTIVE:
        raise InvalidState("Only active raffles can be paused")
    return _transition(session, raffle_id, RaffleStatus.PAUSED, actor, now)


def resume_raffle(
    session: Session,
    raffle_id: int,
    actor: Optional[str] = None,
    now: Optional[datetime] = None,
) -> LifecycleResult:
    raffle = load_raffle(session, raffle_id)
    if raffle.status != RaffleStatus.PAUSED:
        raise InvalidState("Only paused raffles can be resumed")
    return _transition(session, raffle_id, RaffleStatus.ACTIVE, actor, now)


def close_registration(
    session: Session,
    raffle_id: int,
    actor: Optional[str] = None,
    now: Optional[datetime] = None,
) -> LifecycleResult:
    """Stop accepting entries ahead of the draw (``ACTIVE`` -> ``CLOSED``)."""
    raffle = load_raffle(session, raffle_id)
    if raffle.status != RaffleStatus.ACTIVE:
        raise InvalidState("Only active raffles can be closed")
    return _transition(session, raffle_id, RaffleStatus.CLOSED, actor, now)


def cancel_raffle(
    session: Session,
    raffle_id: int,
    actor: Optional[str] = None,
    now: Optional[datetime] = None,
) -> LifecycleResult:
    return _transition(session, raffle_id, RaffleStatus.CANCELLED, actor, now)


def _eligible_tickets(session: Session, raffle: Raffle) -> list[RaffleTicket]:
    stmt = select(RaffleTicket).where(
        RaffleTicket.raffle_id == raffle.id,
        RaffleTicket.status == TicketStatus.ACTIVE,
    )
    if raffle.requires_verification:
        stmt = stmt.where(RaffleTicket.is_verified.is_(True))
    return list(session.scalars(stmt.order_by(RaffleTicket.id.asc())))


def _available_prizes(session: Session, raffle: Raffle) -> list[RafflePrize]:
    stmt = (
        select(RafflePrize)
        .where(
            RafflePrize.raffle_id == raffle.id,
            RafflePrize.quantity_awarded < RafflePrize.quantity_available,
        )
        .order_by(RafflePrize.tier.asc(), RafflePrize.id.asc())
    )
    return list(session.scalars(stmt))


def execute_draw(
    session: Session,
    raffle_id: int,
    *,
    executed_by: Optional[str] = None,
    rng: Optional[random.Random] = None,
    now: Optional[datetime] = None,
    registry: Optional[SelectionRegistry] = None,
) -> DrawOutcome:
    """Run the draw for ``raffle_id`` exactly once.

    Parameters
    ----------
    session : Session
        Active SQLAlchemy session. The draw is flushed inside a savepoint and
        committed by the caller.
    raffle_id : int
        Raffle to draw.
    executed_by : Optional[str]
        Actor recorded on the raffle.
    rng : Optional[random.Random]
        Random source forwarded to :func:`~raffledraw.prize_draw.distribute`.
    now : Optional[datetime]
        Draw timestamp.
    registry : Optional[SelectionRegistry]
        Selection strategies forwarded to the draw engine.

    Returns
    -------
    DrawOutcome
        The completed raffle, its winners and the emitted events.

    Raises
    ------
    NotFound
        If the raffle does not exist.
    InvalidState
        If the raffle is not eligible for a draw, has no prize left to award,
        or another draw completed it first.
    EmptyDraw
        If prizes remain but there is no eligible ticket.

    Notes
    -----
    Every refusal happens before anything is written. The write phase then
    runs in one savepoint:

    1. Conditionally move the raffle from ``ACTIVE``/``CLOSED`` to
       ``COMPLETED``. Zero affected rows means another draw won the race.
    2. Compute winners with the draw engine.
    3. Insert the winners, mark their tickets ``WON`` and increment each
       prize's ``quantity_awarded``.

    Any failure rolls the savepoint back so the raffle is never completed
    without winners nor winners stored without a completed raffle.
    """
    ref = as_utc(now) or utcnow()
    raffle = load_raffle(session, raffle_id)

    if not raffle.is_eligible_for_draw(ref):
        raise InvalidState(
            f"Raffle {raffle.id} is not eligible for a draw "
            f"(status {raffle.status.value})"
        )
    prizes = _available_prizes(session, raffle)
    if not prizes:
        raise InvalidState(f"Raffle {raffle.id} has no prize left to award")
    tickets = _eligible_tickets(session, raffle)
    if not tickets:
        raise EmptyDraw(f"Raffle {raffle.id} has no eligible tickets")

    previous = raffle.status
    try:
        with session.begin_nested():
            result = session.execute(
                update(Raffle)
                .where(
                    Raffle.id == raffle.id,
                    Raffle.status.in_([RaffleStatus.ACTIVE, RaffleStatus.CLOSED]),
                )
                .values(
                    status=RaffleStatus.COMPLETED,
                    completed_at=ref,
                    updated_at=ref,
                    updated_by=executed_by,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise InvalidState(f"Raffle {raffle.id} has already been drawn")
            session.refresh(raffle)

            winners = distribute(
                raffle, tickets, prizes, rng=rng, now=ref, registry=registry
            )
            session.add_all(winners)

            events: list[DomainEvent] = [
                DomainEvent(
                    name="raffle.completed",
                    aggregate="raffle",
                    aggregate_id=raffle.id,
                    occurred_at=ref,
                    payload={
                        "from": previous.value,
                        "to": RaffleStatus.COMPLETED.value,
                        "actor": executed_by,
                        "winner_count": len(winners),
                    },
                )
            ]
            by_ticket = {t.id: t for t in tickets}
            for winner in winners:
                events.append(
                    TICKET_STATE_MACHINE.apply(
                        by_ticket[winner.ticket_id],
                        TicketStatus.WON,
                        now=ref,
                        payload={"raffle_id": raffle.id, "prize_id": winner.prize_id},
                    )
                )

            awarded = Counter(w.prize_id for w in winners)
            for prize in prizes:
                if awarded[prize.id]:
                    prize.quantity_awarded = RafflePrize.quantity_awarded + awarded[prize.id]
            session.flush()
    except Exception:
        # Column values refreshed inside the savepoint are not expired by its rollback.
        session.expire(raffle)
        raise

    for winner in winners:
        events.append(
            DomainEvent(
                name="winner.selected",
                aggregate="winner",
                aggregate_id=winner.id,
                occurred_at=ref,
                payload={
                    "raffle_id": raffle.id,
                    "prize_id": winner.prize_id,
                    "ticket_id": winner.ticket_id,
                    "user_id": winner.user_id,
                },
            )
        )

    logger.info(
        f"Draw completed for raffle {raffle.id} by {executed_by or 'system'}: "
        f"{len(winners)} winners"
    )
    return DrawOutcome(raffle=raffle, winners=winners, events=events)


def raffles_ready_for_draw(
    session: Session, now: Optional[datetime] = None
) -> list[Raffle]:
    """Return raffles whose registration has ended and whose draw date is reached."""
    ref = as_utc(now) or utcnow()
    stmt = (
        select(Raffle)
        .where(
            Raffle.status.in_([RaffleStatus.ACTIVE, RaffleStatus.CLOSED]),
            Raffle.registration_end < ref,
            Raffle.draw_date <= ref,
        )
        .order_by(Raffle.draw_date.asc(), Raffle.id.asc())
    )
    return list(session.scalars(stmt))


def raffle_statistics(session: Session, raffle_id: int) -> dict[str, Any]:
    """Summarize tickets, prizes and winners of a raffle."""
    raffle = load_raffle(session, raffle_id)

    ticket_rows = session.execute(
        select(RaffleTicket.status, func.count(RaffleTicket.id))
        .where(RaffleTicket.raffle_id == raffle.id)
        .group_by(RaffleTicket.status)
    ).all()
    tickets_by_status = {status.value: int(count) for status, count in ticket_rows}

    winner_rows = session.execute(
        select(RaffleWinner.status, func.count(RaffleWinner.id))
        .where(RaffleWinner.raffle_id == raffle.id)
        .group_by(RaffleWinner.status)
    ).all()
    winners_by_status = {status.value: int(count) for status, count in winner_rows}

    unique_users = session.scalar(
        select(func.count(func.distinct(RaffleTicket.user_id))).where(
            RaffleTicket.raffle_id == raffle.id
        )
    )

    prizes = list(raffle.prizes)
    participation_rate = (
        raffle.current_participants / raffle.max_participants * 100.0
        if raffle.max_participants
        else 0.0
    )
    return {
        "raffle": {
            **raffle.to_json(),
            "is_registration_open": raffle.is_registration_open(),
            "participation_rate": round(participation_rate, 2),
        },
        "tickets": {
            "total": sum(tickets_by_status.values()),
            "unique_users": int(unique_users or 0),
            "by_status": tickets_by_status,
        },
        "prizes": {
            "count": len(prizes),
            "quantity_available": sum(p.quantity_available for p in prizes),
            "quantity_awarded": sum(p.quantity_awarded for p in prizes),
            "items": [p.to_json() for p in prizes],
        },
        "winners": {
            "total": sum(winners_by_status.values()),
            "by_status": winners_by_status,
        },
    }


def delete_raffle(session: Session, raffle_id: int) -> None:
    """Delete a ``DRAFT`` raffle that has no tickets."""
    raffle = load_raffle(session, raffle_id)
    if raffle.status != RaffleStatus.DRAFT:
        raise InvalidState("Only draft raffles can be deleted")
    has_tickets = session.scalar(
        select(RaffleTicket.id).where(RaffleTicket.raffle_id == raffle.id).limit(1)
    )
    if has_tickets is not None:
        raise InvalidState("Cannot delete a raffle with existing tickets")
    session.delete(raffle)
    session.flush()
    logger.info(f"Deleted raffle {raffle_id}")


__all__ = [
    "DrawOutcome",
    "LifecycleResult",
    "activate_raffle",
    "add_prize",
    "cancel_raffle",
    "close_registration",
    "create_raffle",
    "delete_raffle",
    "execute_draw",
    "get_raffle",
    "pause_raffle",
    "raffle_statistics",
    "raffles_ready_for_draw",
    "resume_raffle",
    "update_raffle",
]
