"""Winner claim workflows, from notification to delivery."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..db.utils import as_utc, dt_iso, utcnow
from ..errors import ClaimExpired, InvalidEntry, InvalidState, NotFound, NotYetVerified
from ..events import DomainEvent
from ..models import RaffleWinner, WinnerStatus
from ..models.states import WINNER_STATE_MACHINE
from ..notifications.dispatcher import LoggingDispatcher, NotificationDispatcher
from .validation import load_raffle

logger = logging.getLogger(__name__)

_CLAIMABLE_UNVERIFIED = (WinnerStatus.PENDING_CLAIM, WinnerStatus.NOTIFIED)


@dataclass
class ClaimResult:
    winner: RaffleWinner
    events: list[DomainEvent] = field(default_factory=list)


@dataclass
class ExpiryResult:
    winners: list[RaffleWinner]
    events: list[DomainEvent] = field(default_factory=list)


def get_winner(session: Session, winner_id: int) -> RaffleWinner:
    winner = session.get(RaffleWinner, winner_id)
    if winner is None:
        raise NotFound(f"Winner {winner_id} not found")
    return winner


def list_winners(session: Session, raffle_id: int) -> list[RaffleWinner]:
    load_raffle(session, raffle_id)
    return RaffleWinner.list_for_raffle(session, raffle_id)


def _default_message(winner: RaffleWinner) -> str:
    prize = winner.prize
    return (
        f"Congratulations! Your ticket won '{prize.name}'. "
        f"Claim it with code {winner.verification_code} before "
        f"{dt_iso(winner.claim_deadline)}."
    )


def notify_winner(
    session: Session,
    winner_id: int,
    dispatcher: Optional[NotificationDispatcher] = None,
    message: Optional[str] = None,
    now: Optional[datetime] = None,
) -> ClaimResult:
    """Tell a winner about their prize.

    Idempotent: once ``notified_at`` is set further calls change nothing and
    send nothing. A ``PENDING_CLAIM`` winner moves to ``NOTIFIED``; winners
    already further along keep their status. Dispatch failures are logged and
    never undo the state change.

    Raises
    ------
    NotFound
        If the winner does not exist.
    InvalidState
        If the winner's claim already expired.
    """
    winner = get_winner(session, winner_id)
    if winner.notified_at is not None:
        return ClaimResult(winner=winner)
    if winner.status == WinnerStatus.EXPIRED_UNCLAIMED:
        raise InvalidState(f"Winner {winner.id} can no longer be notified")

    ref = as_utc(now) or utcnow()
    events: list[DomainEvent] = []
    if winner.status == WinnerStatus.PENDING_CLAIM:
        events.append(WINNER_STATE_MACHINE.apply(winner, WinnerStatus.NOTIFIED, now=ref))
    winner.notified_at = ref
    winner.updated_at = ref
    session.flush()

    channel = dispatcher or LoggingDispatcher()
    try:
        channel.notify(winner.user_id, winner.id, message or _default_message(winner))
    except Exception as exc:
        logger.warning(f"Notification for winner {winner.id} failed: {exc}")

    return ClaimResult(winner=winner, events=events)


def verify_winner(
    session: Session,
    winner_id: int,
    code: str,
    verified_by: Optional[str] = None,
    now: Optional[datetime] = None,
) -> ClaimResult:
    """Confirm a winner's identity with their verification code.

    Raises
    ------
    InvalidState
        If the winner is already verified or past the point of verification.
    ClaimExpired
        If the claim deadline has passed.
    InvalidEntry
        If ``code`` does not match.
    """
    winner = get_winner(session, winner_id)
    ref = as_utc(now) or utcnow()

    if winner.is_verified:
        raise InvalidState(f"Winner {winner.id} is already verified")
    if not WINNER_STATE_MACHINE.can_transition(winner.status, WinnerStatus.VERIFIED):
        raise InvalidState(
            f"Winner {winner.id} cannot be verified in status {winner.status.value}"
        )
    if winner.is_claim_expired(ref):
        raise ClaimExpired(f"Claim deadline for winner {winner.id} has passed")
    if not code or code.strip().upper() != winner.verification_code:
        raise InvalidEntry("invalid_verification_code", "Verification code does not match")

    event = WINNER_STATE_MACHINE.apply(
        winner, WinnerStatus.VERIFIED, now=ref, payload={"verified_by": verified_by}
    )
    winner.is_verified = True
    winner.verified_at = ref
    winner.verified_by = verified_by
    session.flush()
    logger.info(f"Winner {winner.id} verified by {verified_by or 'system'}")
    return ClaimResult(winner=winner, events=[event])


def claim_prize(
    session: Session,
    winner_id: int,
    processed_by: Optional[str] = None,
    now: Optional[datetime] = None,
) -> ClaimResult:
    """Hand the prize over to the winner.

    Allowed from ``VERIFIED``, or from ``PENDING_CLAIM``/``NOTIFIED`` when the
    prize does not require identity verification, and only before the claim
    deadline.

    Raises
    ------
    InvalidState
        If the winner is in any other status.
    ClaimExpired
        If the claim deadline has passed.
    NotYetVerified
        If verification is required but has not happened.
    """
    winner = get_winner(session, winner_id)
    ref = as_utc(now) or utcnow()

    if winner.status != WinnerStatus.VERIFIED and winner.status not in _CLAIMABLE_UNVERIFIED:
        raise InvalidState(
            f"Prize for winner {winner.id} cannot be claimed in status "
            f"{winner.status.value}"
        )
    if winner.is_claim_expired(ref):
        raise ClaimExpired(f"Claim deadline for winner {winner.id} has passed")
    if winner.status != WinnerStatus.VERIFIED and not winner.is_verified:
        raise NotYetVerified(f"Winner {winner.id} must be verified before claiming")

    event = WINNER_STATE_MACHINE.apply(
        winner, WinnerStatus.CLAIMED, now=ref, payload={"processed_by": processed_by}
    )
    winner.claimed_at = ref
    winner.processed_by = processed_by
    session.flush()
    logger.info(f"Prize claimed for winner {winner.id}")
    return ClaimResult(winner=winner, events=[event])


def mark_delivered(
    session: Session,
    winner_id: int,
    tracking_info: str,
    delivery_method: Optional[str] = None,
    now: Optional[datetime] = None,
) -> ClaimResult:
    """Record delivery of a claimed physical prize."""
    winner = get_winner(session, winner_id)
    if not winner.prize.is_physical:
        raise InvalidState(f"Prize for winner {winner.id} is not delivered physically")
    if not tracking_info or not tracking_info.strip():
        raise InvalidEntry("tracking_info_required", "Tracking information is required")

    ref = as_utc(now) or utcnow()
    event = WINNER_STATE_MACHINE.apply(
        winner,
        WinnerStatus.DELIVERED,
        now=ref,
        payload={"tracking_info": tracking_info, "delivery_method": delivery_method},
    )
    winner.delivered_at = ref
    winner.tracking_info = tracking_info.strip()
    if delivery_method is not None:
        winner.delivery_method = delivery_method
    session.flush()
    logger.info(f"Prize for winner {winner.id} delivered ({winner.tracking_info})")
    return ClaimResult(winner=winner, events=[event])


def expire_unclaimed_winners(
    session: Session, now: Optional[datetime] = None
) -> ExpiryResult:
    """Expire every pending or notified winner whose claim deadline has passed.

    Meant to be called periodically, see ``scripts/sweep_claims.py``.
    """
    ref = as_utc(now) or utcnow()
    stmt = (
        select(RaffleWinner)
        .where(
            RaffleWinner.status.in_(_CLAIMABLE_UNVERIFIED),
            RaffleWinner.claim_deadline < ref,
        )
        .order_by(RaffleWinner.claim_deadline.asc(), RaffleWinner.id.asc())
    )
    expired = list(session.scalars(stmt))
    events = [
        WINNER_STATE_MACHINE.apply(winner, WinnerStatus.EXPIRED_UNCLAIMED, now=ref)
        for winner in expired
    ]
    session.flush()
    if expired:
        logger.info(f"Expired {len(expired)} unclaimed winners")
    return ExpiryResult(winners=expired, events=events)


__all__ = [
    "ClaimResult",
    "ExpiryResult",
    "claim_prize",
    "expire_unclaimed_winners",
    "get_winner",
    "list_winners",
    "mark_delivered",
    "notify_winner",
    "verify_winner",
]
