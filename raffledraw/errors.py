"""Exception taxonomy shared by the raffle workflows.

Each error carries an HTTP-equivalent ``status_code`` hint so that request
handlers can surface it without a second mapping table.
"""

from __future__ import annotations

from typing import Optional


class RaffleError(Exception):
    """Base class for raffle domain errors."""

    status_code: int = 400

    def __init__(self, detail: str, *, status_code: Optional[int] = None) -> None:
        self.detail = detail
        if status_code is not None:
            self.status_code = status_code
        super().__init__(detail)


class NotFound(RaffleError):
    """A raffle, ticket, prize or winner does not exist."""

    status_code = 404


class InvalidEntry(RaffleError):
    """An entry precondition failed.

    ``rule`` names the violated rule (``"registration_closed"``,
    ``"capacity_reached"``, ...) so callers can react programmatically.
    """

    status_code = 400

    def __init__(self, rule: str, detail: str) -> None:
        self.rule = rule
        super().__init__(detail)


class Forbidden(RaffleError):
    """The acting user does not own the resource."""

    status_code = 403


class InvalidState(RaffleError):
    """A lifecycle transition is not permitted from the current state."""

    status_code = 409


class EmptyDraw(InvalidState):
    """The raffle has prizes to award but not a single eligible ticket."""


class NotYetVerified(RaffleError):
    """A prize requiring identity verification was claimed unverified."""

    status_code = 409


class ClaimExpired(RaffleError):
    """The claim deadline for a winner has passed."""

    status_code = 410


__all__ = [
    "RaffleError",
    "NotFound",
    "InvalidEntry",
    "Forbidden",
    "InvalidState",
    "EmptyDraw",
    "NotYetVerified",
    "ClaimExpired",
]
