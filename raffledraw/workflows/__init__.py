"""Session-scoped workflows. Each takes the caller's ``Session`` and flushes
without committing."""

from .claims import (
    ClaimResult,
    ExpiryResult,
    claim_prize,
    expire_unclaimed_winners,
    list_winners,
    mark_delivered,
    notify_winner,
    verify_winner,
)
from .entry import (
    EntryResult,
    TicketPage,
    TicketResult,
    cancel_ticket,
    count_user_active_tickets,
    enter_with_coupon,
    enter_with_promotion,
    enter_with_purchase,
    get_ticket,
    list_user_tickets,
    recompute_participant_count,
    verify_ticket,
)
from .lifecycle import (
    DrawOutcome,
    LifecycleResult,
    activate_raffle,
    add_prize,
    cancel_raffle,
    close_registration,
    create_raffle,
    delete_raffle,
    execute_draw,
    get_raffle,
    pause_raffle,
    raffle_statistics,
    raffles_ready_for_draw,
    resume_raffle,
    update_raffle,
)
from .validation import ValidationResult, validate_entry, validation_summary

__all__ = [
    "ClaimResult",
    "DrawOutcome",
    "EntryResult",
    "ExpiryResult",
    "LifecycleResult",
    "TicketPage",
    "TicketResult",
    "ValidationResult",
    "activate_raffle",
    "add_prize",
    "cancel_raffle",
    "cancel_ticket",
    "claim_prize",
    "close_registration",
    "count_user_active_tickets",
    "create_raffle",
    "delete_raffle",
    "enter_with_coupon",
    "enter_with_promotion",
    "enter_with_purchase",
    "execute_draw",
    "expire_unclaimed_winners",
    "get_raffle",
    "get_ticket",
    "list_user_tickets",
    "list_winners",
    "mark_delivered",
    "notify_winner",
    "pause_raffle",
    "raffle_statistics",
    "raffles_ready_for_draw",
    "recompute_participant_count",
    "resume_raffle",
    "update_raffle",
    "validate_entry",
    "validation_summary",
    "verify_ticket",
    "verify_winner",
]
