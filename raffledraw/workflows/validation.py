"""Stateless eligibility checks for raffle entries and tickets.

The ``validate_*`` helpers return a :class:`ValidationResult` instead of
raising so callers can tell users why an action is not possible. The entry
workflows reuse :func:`check_entry`, which raises on the first violation.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import logging
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..db.utils import as_utc, dt_iso, utcnow
from ..errors import InvalidEntry, NotFound
from ..models import Raffle, RaffleStatus, RaffleTicket, TicketSourceType, TicketStatus
from ..models.utils import TICKET_CODE_LENGTH

logger = logging.getLogger(__name__)

MAX_TICKETS_PER_TRANSACTION = 100


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of a validation check.

    Attributes
    ----------
    is_valid : bool
        ``True`` when the action may proceed.
    reason : Optional[str]
        Human readable explanation when ``is_valid`` is ``False``.
    rule : Optional[str]
        Machine readable name of the violated rule.
    """

    is_valid: bool
    reason: Optional[str] = None
    rule: Optional[str] = None

    @classmethod
    def ok(cls) -> "ValidationResult":
        return cls(True)

    @classmethod
    def fail(cls, reason: str, rule: Optional[str] = None) -> "ValidationResult":
        return cls(False, reason, rule)

    def __bool__(self) -> bool:
        return self.is_valid


def load_raffle(session: Session, raffle_id: int) -> Raffle:
    raffle = session.get(Raffle, raffle_id)
    if raffle is None:
        raise NotFound(f"Raffle {raffle_id} not found")
    return raffle


def check_entry(
    session: Session,
    user_id: int,
    raffle_id: int,
    ticket_count: int,
    *,
    source_type: Optional[TicketSourceType] = None,
    source_reference: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Raffle:
    """Run the shared entry pipeline and return the raffle on success.

    Checks, in order: the raffle exists, registration is open at ``now``,
    capacity is left, ``ticket_count`` is positive and within the per
    transaction cap, and the user's active tickets plus ``ticket_count`` stay
    inside the raffle's min/max. When ``source_type`` is given the source
    rules and duplicate detection run as well.

    Capacity only requires that the raffle is below ``max_participants``
    before the entry, so one multi-ticket entry may take the live count past
    the maximum.

    Raises
    ------
    NotFound
        If the raffle does not exist.
    InvalidEntry
        On the first violated rule, named by ``InvalidEntry.rule``.
    """
    raffle = load_raffle(session, raffle_id)
    ref = as_utc(now) or utcnow()

    if not raffle.is_registration_open(ref):
        raise InvalidEntry(
            "registration_closed",
            f"Registration for raffle {raffle.id} is not open",
        )

    live_count = RaffleTicket.count_active(session, raffle.id)
    if live_count >= raffle.max_participants:
        raise InvalidEntry(
            "capacity_reached",
            f"Raffle {raffle.id} has reached its maximum of "
            f"{raffle.max_participants} participants",
        )

    if ticket_count is None or ticket_count <= 0:
        raise InvalidEntry("invalid_ticket_count", "Ticket count must be positive")
    if ticket_count > MAX_TICKETS_PER_TRANSACTION:
        raise InvalidEntry(
            "transaction_limit",
            f"At most {MAX_TICKETS_PER_TRANSACTION} tickets can be issued at once",
        )

    held = RaffleTicket.count_active(session, raffle.id, user_id)
    if held + ticket_count > raffle.max_tickets_per_user:
        raise InvalidEntry(
            "max_tickets_per_user",
            f"User {user_id} would hold {held + ticket_count} tickets, "
            f"above the limit of {raffle.max_tickets_per_user}",
        )
    if held + ticket_count < raffle.min_tickets_to_participate:
        raise InvalidEntry(
            "min_tickets_to_participate",
            f"At least {raffle.min_tickets_to_participate} tickets are required "
            "to participate",
        )

    if source_type is not None:
        source_type = TicketSourceType(source_type)
        if source_type == TicketSourceType.COUPON_REDEMPTION and not source_reference:
            raise InvalidEntry(
                "missing_coupon_reference", "Coupon entries need a coupon reference"
            )
        duplicate = validate_no_duplicate_entry(
            session, user_id, raffle.id, source_type, source_reference
        )
        if not duplicate:
            raise InvalidEntry("duplicate_entry", duplicate.reason)

    return raffle


def validate_entry(
    session: Session,
    user_id: int,
    raffle_id: int,
    ticket_count: int,
    source_type: Optional[TicketSourceType] = None,
    source_reference: Optional[str] = None,
    now: Optional[datetime] = None,
) -> ValidationResult:
    """Non-raising form of :func:`check_entry`."""
    try:
        check_entry(
            session,
            user_id,
            raffle_id,
            ticket_count,
            source_type=source_type,
            source_reference=source_reference,
            now=now,
        )
    except InvalidEntry as exc:
        logger.debug(f"Entry rejected for user {user_id} in raffle {raffle_id}: {exc.rule}")
        return ValidationResult.fail(exc.detail, exc.rule)
    except NotFound as exc:
        return ValidationResult.fail(exc.detail, "raffle_not_found")
    return ValidationResult.ok()


def validate_no_duplicate_entry(
    session: Session,
    user_id: int,
    raffle_id: int,
    source_type: TicketSourceType,
    source_reference: Optional[str],
) -> ValidationResult:
    """Reject a second ticket set for the same entry event.

    Entries without a source reference cannot be matched and always pass.
    """
    if not source_reference:
        return ValidationResult.ok()
    existing = session.scalar(
        select(RaffleTicket.id)
        .where(
            RaffleTicket.user_id == user_id,
            RaffleTicket.raffle_id == raffle_id,
            RaffleTicket.source_type == TicketSourceType(source_type),
            RaffleTicket.source_reference == source_reference,
        )
        .limit(1)
    )
    if existing is not None:
        return ValidationResult.fail(
            f"Tickets were already issued for {source_reference!r}", "duplicate_entry"
        )
    return ValidationResult.ok()


def validate_ticket_ownership(ticket: RaffleTicket, user_id: int) -> ValidationResult:
    if ticket.user_id != user_id:
        return ValidationResult.fail(
            f"Ticket {ticket.id} does not belong to user {user_id}", "ticket_ownership"
        )
    return ValidationResult.ok()


def validate_ticket_verifiable(ticket: RaffleTicket) -> ValidationResult:
    if ticket.status != TicketStatus.ACTIVE:
        return ValidationResult.fail(
            f"Only active tickets can be verified (ticket is {ticket.status.value})",
            "ticket_not_active",
        )
    if ticket.is_verified:
        return ValidationResult.fail("Ticket is already verified", "already_verified")
    if not ticket.verification_code:
        return ValidationResult.fail(
            "Ticket does not require verification", "verification_not_required"
        )
    return ValidationResult.ok()


def validate_ticket_cancellable(ticket: RaffleTicket) -> ValidationResult:
    if ticket.status != TicketStatus.ACTIVE:
        return ValidationResult.fail(
            f"Only active tickets can be cancelled (ticket is {ticket.status.value})",
            "ticket_not_active",
        )
    if ticket.raffle is not None and ticket.raffle.status == RaffleStatus.COMPLETED:
        return ValidationResult.fail(
            "Tickets cannot be cancelled after the draw", "draw_completed"
        )
    return ValidationResult.ok()


def validate_verification_code(session: Session, code: Optional[str]) -> ValidationResult:
    """Check that ``code`` is well formed and points at a verifiable ticket."""
    if code is None or not code.strip():
        return ValidationResult.fail("Verification code is required", "code_required")
    code = code.strip().upper()
    if len(code) != TICKET_CODE_LENGTH:
        return ValidationResult.fail(
            f"Verification code must be {TICKET_CODE_LENGTH} characters",
            "code_format",
        )
    ticket = RaffleTicket.get_by_verification_code(session, code)
    if ticket is None:
        return ValidationResult.fail("Unknown verification code", "code_unknown")
    return validate_ticket_verifiable(ticket)


def validation_summary(
    session: Session,
    user_id: int,
    raffle_id: int,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """Describe whether ``user_id`` can still enter ``raffle_id``."""
    raffle = load_raffle(session, raffle_id)
    ref = as_utc(now) or utcnow()
    held = RaffleTicket.count_active(session, raffle.id, user_id)
    live_count = RaffleTicket.count_active(session, raffle.id)
    registration_open = raffle.is_registration_open(ref)
    has_capacity = live_count < raffle.max_participants
    return {
        "raffle_id": raffle.id,
        "can_enter": registration_open
        and has_capacity
        and held < raffle.max_tickets_per_user,
        "registration_open": registration_open,
        "has_capacity": has_capacity,
        "user_ticket_count": held,
        "min_tickets_to_participate": raffle.min_tickets_to_participate,
        "max_tickets_per_user": raffle.max_tickets_per_user,
        "remaining_user_slots": max(raffle.max_tickets_per_user - held, 0),
        "remaining_slots": max(raffle.max_participants - live_count, 0),
        "registration_end": dt_iso(raffle.registration_end),
        "draw_date": dt_iso(raffle.draw_date),
    }


__all__ = [
    "MAX_TICKETS_PER_TRANSACTION",
    "ValidationResult",
    "check_entry",
    "load_raffle",
    "validate_entry",
    "validate_no_duplicate_entry",
    "validate_ticket_cancellable",
    "validate_ticket_ownership",
    "validate_ticket_verifiable",
    "validate_verification_code",
    "validation_summary",
]
