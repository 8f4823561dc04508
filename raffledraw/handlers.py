"""Framework-agnostic request handlers.

Each handler takes an open ``Session`` and a JSON-like ``payload`` dict and
returns ``(status_code, body)``. Committing the session is left to the
caller, which typically commits on a 2xx status and rolls back otherwise.
"""

from __future__ import annotations

from functools import wraps
import logging
from typing import Any, Callable, Mapping, Optional

from sqlalchemy.orm import Session

from .errors import InvalidEntry, RaffleError
from .models import TicketSourceType
from .workflows import entry, lifecycle, validation

logger = logging.getLogger(__name__)

Response = tuple[int, dict[str, Any]]


class MalformedRequest(ValueError):
    """The payload is missing a field or a field has the wrong shape."""


def _error_body(error: str, detail: str, **extra: Any) -> dict[str, Any]:
    body = {"error": error, "detail": detail}
    body.update(extra)
    return body


def handler(func: Callable[[Session, Mapping[str, Any]], Response]):
    """Translate workflow errors into ``(status_code, body)`` responses.

    Only payload parsing failures become a 400 ``BadRequest``; any other
    exception from the workflow propagates to the caller.
    """

    @wraps(func)
    def wrapper(session: Session, payload: Mapping[str, Any]) -> Response:
        try:
            return func(session, payload or {})
        except InvalidEntry as exc:
            return exc.status_code, _error_body(
                type(exc).__name__, exc.detail, rule=exc.rule
            )
        except RaffleError as exc:
            return exc.status_code, _error_body(type(exc).__name__, exc.detail)
        except MalformedRequest as exc:
            logger.debug(f"Rejected malformed request to {func.__name__}: {exc}")
            return 400, _error_body("BadRequest", f"Malformed request: {exc}")

    return wrapper


def _require(payload: Mapping[str, Any], key: str) -> Any:
    value = payload.get(key)
    if value is None:
        raise MalformedRequest(f"missing field '{key}'")
    return value


def _to_int(key: str, value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise MalformedRequest(f"field '{key}' must be an integer") from None


def _int(payload: Mapping[str, Any], key: str) -> int:
    return _to_int(key, _require(payload, key))


def _opt_int(payload: Mapping[str, Any], key: str, default: Optional[int] = None):
    value = payload.get(key)
    return _to_int(key, value) if value is not None else default


def _opt_source_type(payload: Mapping[str, Any], key: str):
    value = payload.get(key)
    if not value:
        return None
    try:
        return TicketSourceType(value)
    except ValueError:
        raise MalformedRequest(f"unknown source type {value!r}") from None


@handler
def enter_coupon(session: Session, payload: Mapping[str, Any]) -> Response:
    """``POST enter/coupon``"""
    result = entry.enter_with_coupon(
        session,
        _int(payload, "user_id"),
        _int(payload, "raffle_id"),
        str(_require(payload, "coupon_ref")),
        _int(payload, "ticket_count"),
        station_id=_opt_int(payload, "station_id"),
        transaction_ref=payload.get("transaction_ref"),
    )
    return 201, result.to_json()


@handler
def enter_purchase(session: Session, payload: Mapping[str, Any]) -> Response:
    """``POST enter/purchase``"""
    result = entry.enter_with_purchase(
        session,
        _int(payload, "user_id"),
        _int(payload, "raffle_id"),
        _int(payload, "ticket_count"),
        _require(payload, "purchase_amount"),
        station_id=_opt_int(payload, "station_id"),
        transaction_ref=payload.get("transaction_ref"),
    )
    return 201, result.to_json()


@handler
def enter_promotional(session: Session, payload: Mapping[str, Any]) -> Response:
    """``POST enter/promotional``"""
    result = entry.enter_with_promotion(
        session,
        _int(payload, "user_id"),
        _int(payload, "raffle_id"),
        _int(payload, "ticket_count"),
        campaign_ref=payload.get("campaign_ref"),
        source_ref=payload.get("source_ref"),
    )
    return 201, result.to_json()


@handler
def list_tickets(session: Session, payload: Mapping[str, Any]) -> Response:
    """``GET raffles/{id}/tickets?user_id=``"""
    page = entry.list_user_tickets(
        session,
        _int(payload, "raffle_id"),
        _int(payload, "user_id"),
        page=_opt_int(payload, "page", 1),
        page_size=_opt_int(payload, "page_size", 20),
    )
    return 200, page.to_json()


@handler
def verify_ticket(session: Session, payload: Mapping[str, Any]) -> Response:
    """``POST tickets/verify``"""
    result = entry.verify_ticket(
        session,
        str(payload.get("verification_code") or ""),
        verified_by=payload.get("verified_by"),
    )
    return 200, result.ticket.to_json()


@handler
def cancel_ticket(session: Session, payload: Mapping[str, Any]) -> Response:
    """``POST tickets/{id}/cancel``"""
    result = entry.cancel_ticket(
        session,
        _int(payload, "ticket_id"),
        _int(payload, "user_id"),
        reason=payload.get("reason"),
    )
    return 200, result.ticket.to_json()


@handler
def draw(session: Session, payload: Mapping[str, Any]) -> Response:
    """``POST raffles/{id}/draw``"""
    outcome = lifecycle.execute_draw(
        session,
        _int(payload, "raffle_id"),
        executed_by=payload.get("executed_by"),
    )
    return 200, outcome.to_json()


@handler
def validate_entry(session: Session, payload: Mapping[str, Any]) -> Response:
    """``GET raffles/{id}/validate?user_id=&ticket_count=&source_type=``"""
    raffle_id = _int(payload, "raffle_id")
    user_id = _int(payload, "user_id")
    result = validation.validate_entry(
        session,
        user_id,
        raffle_id,
        _opt_int(payload, "ticket_count", 1),
        source_type=_opt_source_type(payload, "source_type"),
        source_reference=payload.get("source_ref"),
    )
    if result.rule == "raffle_not_found":
        return 404, _error_body("NotFound", result.reason)
    summary = validation.validation_summary(session, user_id, raffle_id)
    return 200, {
        "valid": result.is_valid,
        "can_enter": summary["can_enter"],
        "message": result.reason or "Entry is allowed",
        "rule": result.rule,
    }


__all__ = [
    "cancel_ticket",
    "draw",
    "enter_coupon",
    "enter_promotional",
    "enter_purchase",
    "MalformedRequest",
    "handler",
    "list_tickets",
    "validate_entry",
    "verify_ticket",
]
