"""Utilities for the prize draw subsystem."""

from .engine import claim_deadline_for, distribute
from .selection import (
    DEFAULT_SELECTION_REGISTRY,
    SelectionRegistry,
    SelectionStrategy,
    TICKET_WEIGHTS,
    ticket_weight,
)

__all__ = [
    "DEFAULT_SELECTION_REGISTRY",
    "SelectionRegistry",
    "SelectionStrategy",
    "TICKET_WEIGHTS",
    "claim_deadline_for",
    "distribute",
    "ticket_weight",
]
