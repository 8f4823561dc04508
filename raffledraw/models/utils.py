"""Utility helpers for the models package."""

from __future__ import annotations

import secrets
import string
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..db.utils import as_utc, utcnow

CODE_ALPHABET = string.ascii_uppercase + string.digits
TICKET_CODE_LENGTH = 6
WINNER_CODE_LENGTH = 8


def generate_verification_code(length: int = TICKET_CODE_LENGTH) -> str:
    """Return ``length`` random characters drawn from ``A-Z0-9``."""
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def generate_ticket_number(
    raffle_id: int,
    user_id: int,
    session: Optional[Session] = None,
    now: Optional[datetime] = None,
    max_attempts: int = 32,
) -> str:
    """Return a ticket number of the form ``R<raffle>U<user>T<millis><4 digits>``.

    When a session is provided, the helper retries if the generated value is
    already present (or pending) in ``RaffleTicket.ticket_number``.
    """

    ticket_cls = None
    if session is not None:
        from .ticket import RaffleTicket

        ticket_cls = RaffleTicket

    millis = int((as_utc(now) or utcnow()).timestamp() * 1000)
    attempts = 0
    while attempts < max_attempts:
        suffix = f"{secrets.randbelow(10000):04d}"
        candidate = f"R{raffle_id}U{user_id}T{millis}{suffix}"

        if session is not None and ticket_cls is not None:
            collision = any(
                isinstance(obj, ticket_cls)
                and getattr(obj, "ticket_number", None) == candidate
                for obj in session.new
            )
            if collision:
                attempts += 1
                continue

            exists = session.scalar(
                select(ticket_cls.id).where(ticket_cls.ticket_number == candidate)
            )
            if exists is not None:
                attempts += 1
                continue

        return candidate

    raise RuntimeError("Unable to generate a unique ticket number after multiple attempts")


def generate_ticket_verification_code(
    session: Session,
    taken: Optional[set[str]] = None,
    max_attempts: int = 32,
) -> str:
    """Return a ticket verification code no other ticket carries.

    ``taken`` holds codes already handed out to tickets that are not in the
    session yet.
    """
    from .ticket import RaffleTicket

    for _ in range(max_attempts):
        candidate = generate_verification_code(TICKET_CODE_LENGTH)
        if taken and candidate in taken:
            continue
        if any(
            isinstance(obj, RaffleTicket) and obj.verification_code == candidate
            for obj in session.new
        ):
            continue
        exists = session.scalar(
            select(RaffleTicket.id).where(RaffleTicket.verification_code == candidate)
        )
        if exists is None:
            return candidate

    raise RuntimeError(
        "Unable to generate a unique verification code after multiple attempts"
    )
