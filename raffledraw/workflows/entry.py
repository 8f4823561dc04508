"""Ticket issuance and ticket maintenance workflows."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
import logging
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..db.utils import as_utc, utcnow
from ..errors import Forbidden, InvalidEntry, InvalidState, NotFound
from ..events import DomainEvent
from ..models import Raffle, RaffleTicket, TicketSourceType
from ..models.states import TICKET_STATE_MACHINE
from ..models.enums import TicketStatus
from ..models.utils import (
    generate_ticket_number,
    generate_ticket_verification_code,
)
from .validation import (
    check_entry,
    load_raffle,
    validate_ticket_cancellable,
    validate_ticket_ownership,
    validate_verification_code,
)

logger = logging.getLogger(__name__)

_CENT = Decimal("0.01")


def _parse_amount(value) -> Decimal:
    """Return ``value`` as a finite, strictly positive ``Decimal``."""
    if value is None:
        raise InvalidEntry("invalid_purchase_amount", "Purchase amount is required")
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        raise InvalidEntry(
            "invalid_purchase_amount", f"Purchase amount {value!r} is not a number"
        ) from None
    if not amount.is_finite() or amount <= 0:
        raise InvalidEntry("invalid_purchase_amount", "Purchase amount must be positive")
    return amount


@dataclass
class EntryResult:
    """Tickets created by one entry call.

    Attributes
    ----------
    tickets : list[RaffleTicket]
        Newly issued tickets, flushed so ids and numbers are populated.
    user_ticket_total : int
        The user's ACTIVE ticket count in the raffle after the entry.
    raffle_snapshot : dict[str, Any]
        Registration end, draw date and remaining slots of the raffle.
    events : list[DomainEvent]
        One ``ticket.issued`` event per ticket.
    """

    tickets: list[RaffleTicket]
    user_ticket_total: int
    raffle_snapshot: dict[str, Any]
    events: list[DomainEvent] = field(default_factory=list)

    def to_json(self) -> dict[str, Any]:
        return {
            "tickets": [t.to_json() for t in self.tickets],
            "user_ticket_total": self.user_ticket_total,
            "raffle": dict(self.raffle_snapshot),
        }


@dataclass
class TicketPage:
    items: list[RaffleTicket]
    total: int
    page: int
    page_size: int

    @property
    def pages(self) -> int:
        if self.page_size <= 0:
            return 0
        return (self.total + self.page_size - 1) // self.page_size

    def to_json(self) -> dict[str, Any]:
        return {
            "items": [t.to_json() for t in self.items],
            "total": self.total,
            "page": self.page,
            "page_size": self.page_size,
            "pages": self.pages,
        }


@dataclass
class TicketResult:
    ticket: RaffleTicket
    events: list[DomainEvent] = field(default_factory=list)


def recompute_participant_count(session: Session, raffle_id: int) -> int:
    """Refresh the raffle's cached participant count from live ACTIVE tickets."""
    raffle = load_raffle(session, raffle_id)
    session.flush()
    raffle.current_participants = RaffleTicket.count_active(session, raffle.id)
    session.flush()
    return raffle.current_participants


def count_user_active_tickets(session: Session, user_id: int, raffle_id: int) -> int:
    return RaffleTicket.count_active(session, raffle_id, user_id)


def _issue_tickets(
    session: Session,
    raffle: Raffle,
    user_id: int,
    ticket_count: int,
    *,
    source_type: TicketSourceType,
    source_reference: Optional[str],
    now: datetime,
    **metadata: Any,
) -> EntryResult:
    tickets = []
    numbers: set[str] = set()
    codes: set[str] = set()
    for sequence in range(1, ticket_count + 1):
        number = generate_ticket_number(raffle.id, user_id, session=session, now=now)
        while number in numbers:
            number = generate_ticket_number(raffle.id, user_id, session=session, now=now)
        numbers.add(number)
        code = None
        if raffle.requires_verification:
            code = generate_ticket_verification_code(session, codes)
            codes.add(code)
        tickets.append(
            RaffleTicket(
                user_id=user_id,
                raffle_id=raffle.id,
                ticket_number=number,
                source_type=source_type,
                source_reference=source_reference,
                entry_sequence=sequence,
                verification_code=code,
                is_verified=not raffle.requires_verification,
                created_at=now,
                **metadata,
            )
        )

    # The unique constraint on the entry source is the backstop for
    # concurrent duplicates that slipped past the pre-check.
    try:
        with session.begin_nested():
            session.add_all(tickets)
            session.flush()
    except IntegrityError as exc:
        raise InvalidEntry(
            "duplicate_entry",
            f"Tickets were already issued for {source_reference!r}",
        ) from exc

    recompute_participant_count(session, raffle.id)
    total = RaffleTicket.count_active(session, raffle.id, user_id)

    events = [
        DomainEvent(
            name="ticket.issued",
            aggregate="ticket",
            aggregate_id=t.id,
            occurred_at=now,
            payload={
                "raffle_id": raffle.id,
                "user_id": user_id,
                "ticket_number": t.ticket_number,
                "source_type": source_type.value,
                "source_reference": source_reference,
            },
        )
        for t in tickets
    ]
    logger.info(
        f"Issued {len(tickets)} {source_type.value} tickets to user {user_id} "
        f"in raffle {raffle.id}"
    )
    return EntryResult(
        tickets=tickets,
        user_ticket_total=total,
        raffle_snapshot=raffle.snapshot(),
        events=events,
    )


def enter_with_coupon(
    session: Session,
    user_id: int,
    raffle_id: int,
    coupon_ref: str,
    ticket_count: int,
    station_id: Optional[int] = None,
    transaction_ref: Optional[str] = None,
    now: Optional[datetime] = None,
) -> EntryResult:
    """Issue tickets for a redeemed coupon.

    The coupon's redeemability is checked upstream; this workflow only
    refuses a second entry for the same ``(user, raffle, coupon_ref)``.

    Raises
    ------
    NotFound
        If the raffle does not exist.
    InvalidEntry
        If any entry precondition fails or the coupon was already used.
    """
    ref = as_utc(now) or utcnow()
    coupon_ref = str(coupon_ref).strip() if coupon_ref is not None else None
    raffle = check_entry(
        session,
        user_id,
        raffle_id,
        ticket_count,
        source_type=TicketSourceType.COUPON_REDEMPTION,
        source_reference=coupon_ref,
        now=ref,
    )
    return _issue_tickets(
        session,
        raffle,
        user_id,
        ticket_count,
        source_type=TicketSourceType.COUPON_REDEMPTION,
        source_reference=coupon_ref,
        now=ref,
        coupon_reference=coupon_ref,
        station_id=station_id,
        transaction_reference=transaction_ref,
    )


def enter_with_purchase(
    session: Session,
    user_id: int,
    raffle_id: int,
    ticket_count: int,
    purchase_amount,
    station_id: Optional[int] = None,
    transaction_ref: Optional[str] = None,
    now: Optional[datetime] = None,
) -> EntryResult:
    """Issue tickets bought directly.

    ``purchase_amount`` must be strictly positive and, when the raffle has an
    entry fee, cover ``entry_fee * ticket_count``. Each ticket records its
    share of the amount.
    """
    ref = as_utc(now) or utcnow()
    raffle = check_entry(
        session,
        user_id,
        raffle_id,
        ticket_count,
        source_type=TicketSourceType.DIRECT_PURCHASE,
        source_reference=transaction_ref,
        now=ref,
    )

    amount = _parse_amount(purchase_amount)
    if raffle.entry_fee is not None:
        expected = Decimal(raffle.entry_fee) * ticket_count
        if amount < expected:
            raise InvalidEntry(
                "insufficient_payment",
                f"Purchase amount {amount} does not cover {ticket_count} tickets "
                f"at {raffle.entry_fee}",
            )

    per_ticket = (amount / ticket_count).quantize(_CENT, rounding=ROUND_HALF_UP)
    return _issue_tickets(
        session,
        raffle,
        user_id,
        ticket_count,
        source_type=TicketSourceType.DIRECT_PURCHASE,
        source_reference=transaction_ref,
        now=ref,
        station_id=station_id,
        transaction_reference=transaction_ref,
        purchase_amount=per_ticket,
    )


def enter_with_promotion(
    session: Session,
    user_id: int,
    raffle_id: int,
    ticket_count: int,
    campaign_ref: Optional[str] = None,
    source_ref: Optional[str] = None,
    now: Optional[datetime] = None,
) -> EntryResult:
    """Grant promotional tickets. Only capacity and per-user limits apply."""
    ref = as_utc(now) or utcnow()
    raffle = check_entry(
        session,
        user_id,
        raffle_id,
        ticket_count,
        source_type=TicketSourceType.PROMOTIONAL,
        source_reference=source_ref,
        now=ref,
    )
    return _issue_tickets(
        session,
        raffle,
        user_id,
        ticket_count,
        source_type=TicketSourceType.PROMOTIONAL,
        source_reference=source_ref,
        now=ref,
        campaign_reference=campaign_ref,
    )


def list_user_tickets(
    session: Session,
    raffle_id: int,
    user_id: int,
    page: int = 1,
    page_size: int = 20,
) -> TicketPage:
    """Return one page of a user's tickets in a raffle, newest first."""
    load_raffle(session, raffle_id)
    page = max(int(page), 1)
    page_size = min(max(int(page_size), 1), 100)

    filters = (RaffleTicket.raffle_id == raffle_id, RaffleTicket.user_id == user_id)
    total = session.scalar(select(func.count(RaffleTicket.id)).where(*filters)) or 0
    stmt = (
        select(RaffleTicket)
        .where(*filters)
        .order_by(RaffleTicket.created_at.desc(), RaffleTicket.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return TicketPage(
        items=list(session.scalars(stmt)),
        total=int(total),
        page=page,
        page_size=page_size,
    )


def get_ticket(session: Session, ticket_id: int, user_id: int) -> RaffleTicket:
    """Return a ticket owned by ``user_id``.

    Raises
    ------
    NotFound
        If the ticket does not exist.
    Forbidden
        If the ticket belongs to another user.
    """
    ticket = session.get(RaffleTicket, ticket_id)
    if ticket is None:
        raise NotFound(f"Ticket {ticket_id} not found")
    owned = validate_ticket_ownership(ticket, user_id)
    if not owned:
        raise Forbidden(owned.reason)
    return ticket


def verify_ticket(
    session: Session,
    verification_code: str,
    verified_by: Optional[str] = None,
    now: Optional[datetime] = None,
) -> TicketResult:
    """Mark the ticket carrying ``verification_code`` as verified.

    Raises
    ------
    InvalidEntry
        If the code is blank or malformed.
    NotFound
        If no ticket carries the code.
    InvalidState
        If the ticket is not ACTIVE or is already verified.
    """
    check = validate_verification_code(session, verification_code)
    if not check:
        if check.rule in ("code_required", "code_format"):
            raise InvalidEntry(check.rule, check.reason)
        if check.rule == "code_unknown":
            raise NotFound(check.reason)
        raise InvalidState(check.reason)

    ref = as_utc(now) or utcnow()
    ticket = RaffleTicket.get_by_verification_code(
        session, verification_code.strip().upper()
    )
    ticket.is_verified = True
    ticket.verified_at = ref
    ticket.verified_by = verified_by
    ticket.updated_at = ref
    session.flush()

    logger.info(f"Ticket {ticket.ticket_number} verified by {verified_by or 'system'}")
    event = DomainEvent(
        name="ticket.verified",
        aggregate="ticket",
        aggregate_id=ticket.id,
        occurred_at=ref,
        payload={"raffle_id": ticket.raffle_id, "verified_by": verified_by},
    )
    return TicketResult(ticket=ticket, events=[event])


def cancel_ticket(
    session: Session,
    ticket_id: int,
    user_id: int,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> TicketResult:
    """Cancel a user's own ACTIVE ticket and refresh the participant count."""
    ticket = get_ticket(session, ticket_id, user_id)
    check = validate_ticket_cancellable(ticket)
    if not check:
        raise InvalidState(check.reason)

    ref = as_utc(now) or utcnow()
    event = TICKET_STATE_MACHINE.apply(
        ticket,
        TicketStatus.CANCELLED,
        now=ref,
        payload={"raffle_id": ticket.raffle_id, "reason": reason},
    )
    if reason:
        ticket.notes = f"{ticket.notes or ''}\nCancelled: {reason}".strip()
    session.flush()
    recompute_participant_count(session, ticket.raffle_id)

    logger.info(f"Ticket {ticket.ticket_number} cancelled by user {user_id}")
    return TicketResult(ticket=ticket, events=[event])


__all__ = [
    "EntryResult",
    "TicketPage",
    "TicketResult",
    "cancel_ticket",
    "count_user_active_tickets",
    "enter_with_coupon",
    "enter_with_promotion",
    "enter_with_purchase",
    "get_ticket",
    "list_user_tickets",
    "recompute_participant_count",
    "verify_ticket",
]
