"""Winner selection strategies for raffle draws."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import random
from typing import Callable, Dict, Optional, Sequence

from ..models.enums import SelectionMethod, TicketSourceType
from ..models.raffle import RafflePrize
from ..models.ticket import RaffleTicket

logger = logging.getLogger(__name__)

TICKET_WEIGHTS: Dict[TicketSourceType, float] = {
    TicketSourceType.DIRECT_PURCHASE: 2.0,
    TicketSourceType.COUPON_REDEMPTION: 1.5,
    TicketSourceType.LOYALTY_REWARD: 1.3,
    TicketSourceType.REFERRAL: 1.2,
    TicketSourceType.PROMOTIONAL: 1.0,
    TicketSourceType.BONUS: 1.0,
    TicketSourceType.ADMIN_ISSUED: 0.5,
}

Selector = Callable[
    [RafflePrize, Sequence[RaffleTicket], int, random.Random], list[RaffleTicket]
]


def ticket_weight(source_type: TicketSourceType) -> float:
    """Return the weighted-selection weight for a ticket source type."""
    return TICKET_WEIGHTS.get(TicketSourceType(source_type), 1.0)


@dataclass(frozen=True)
class SelectionStrategy:
    """Definition of a winner selection strategy.

    Attributes
    ----------
    key : str
        Registry key, matching a :class:`~raffledraw.models.enums.SelectionMethod`
        value for the built-in strategies.
    selector : Selector
        Callable taking ``(prize, pool, count, rng)`` and returning at most
        ``count`` distinct tickets from ``pool``.
    description : Optional[str]
        Human-readable summary of the strategy's behaviour.
    """

    key: str
    selector: Selector
    description: Optional[str] = None

    def select(
        self,
        prize: RafflePrize,
        pool: Sequence[RaffleTicket],
        count: int,
        rng: random.Random,
    ) -> list[RaffleTicket]:
        if count <= 0 or not pool:
            return []
        return self.selector(prize, pool, min(count, len(pool)), rng)


class SelectionRegistry:
    """Mutable registry mapping selection method keys to strategies."""

    def __init__(self, *, fallback_key: str = SelectionMethod.RANDOM.value) -> None:
        self._strategies: Dict[str, SelectionStrategy] = {}
        self._fallback_key = fallback_key

    def register(self, strategy: SelectionStrategy, *, replace: bool = False) -> None:
        """Register a strategy under its key.

        Parameters
        ----------
        strategy : SelectionStrategy
            Strategy to add to the registry.
        replace : bool, default: False
            When ``True`` an existing registration with the same key is
            overwritten. Otherwise a duplicate raises :class:`ValueError`.
        """
        if not replace and strategy.key in self._strategies:
            raise ValueError(f"Selection strategy '{strategy.key}' is already registered")
        self._strategies[strategy.key] = strategy

    def get(self, key: str) -> SelectionStrategy:
        """Return the strategy registered under ``key``."""
        try:
            return self._strategies[key]
        except KeyError as exc:
            raise KeyError(f"Unknown selection strategy '{key}'") from exc

    def resolve(self, key) -> SelectionStrategy:
        """Return the strategy for ``key``, falling back to the default one.

        Unknown keys are logged and served by the fallback strategy (RANDOM)
        so a misconfigured raffle still awards its prizes.
        """
        name = getattr(key, "value", key)
        name = str(name).upper() if name is not None else ""
        if name in self._strategies:
            return self._strategies[name]
        logger.warning(
            f"Unknown winner selection method {name!r}, using {self._fallback_key}"
        )
        return self.get(self._fallback_key)

    def select(
        self,
        key,
        prize: RafflePrize,
        pool: Sequence[RaffleTicket],
        count: int,
        rng: random.Random,
    ) -> list[RaffleTicket]:
        """Select up to ``count`` winners from ``pool`` with the strategy ``key``."""
        return self.resolve(key).select(prize, pool, count, rng)

    def available_strategies(self) -> Dict[str, SelectionStrategy]:
        """Return a copy of the registered strategies keyed by identifier."""
        return dict(self._strategies)


def _select_random(
    prize: RafflePrize,
    pool: Sequence[RaffleTicket],
    count: int,
    rng: random.Random,
) -> list[RaffleTicket]:
    shuffled = list(pool)
    rng.shuffle(shuffled)
    return shuffled[:count]


def _select_probability(
    prize: RafflePrize,
    pool: Sequence[RaffleTicket],
    count: int,
    rng: random.Random,
) -> list[RaffleTicket]:
    probability = prize.winning_probability
    if probability is None:
        return _select_random(prize, pool, count, rng)

    shuffled = list(pool)
    rng.shuffle(shuffled)
    selected: list[RaffleTicket] = []
    for ticket in shuffled:
        if len(selected) >= count:
            break
        if rng.random() < float(probability):
            selected.append(ticket)

    # Shortfall is always filled at random so a prize is never under-awarded.
    if len(selected) < count:
        chosen = {id(t) for t in selected}
        leftover = [t for t in shuffled if id(t) not in chosen]
        selected.extend(_select_random(prize, leftover, count - len(selected), rng))
    return selected[:count]


def _select_first_come(
    prize: RafflePrize,
    pool: Sequence[RaffleTicket],
    count: int,
    rng: random.Random,
) -> list[RaffleTicket]:
    ordered = sorted(pool, key=lambda t: (t.created_at, t.id or 0))
    return ordered[:count]


def _select_weighted(
    prize: RafflePrize,
    pool: Sequence[RaffleTicket],
    count: int,
    rng: random.Random,
) -> list[RaffleTicket]:
    remaining = [(ticket, ticket_weight(ticket.source_type)) for ticket in pool]
    selected: list[RaffleTicket] = []
    while remaining and len(selected) < count:
        total = sum(weight for _, weight in remaining)
        target = rng.random() * total
        acc = 0.0
        index = len(remaining) - 1
        for i, (_, weight) in enumerate(remaining):
            acc += weight
            if target < acc:
                index = i
                break
        ticket, _ = remaining.pop(index)
        selected.append(ticket)
    return selected


DEFAULT_SELECTION_REGISTRY = SelectionRegistry()
DEFAULT_SELECTION_REGISTRY.register(
    SelectionStrategy(
        key=SelectionMethod.RANDOM.value,
        selector=_select_random,
        description="Uniform shuffle of the pool, take the first N tickets.",
    )
)
DEFAULT_SELECTION_REGISTRY.register(
    SelectionStrategy(
        key=SelectionMethod.PROBABILITY.value,
        selector=_select_probability,
        description=(
            "Each ticket rolls against the prize's winning probability; any "
            "shortfall is filled with random selection over the rest of the pool."
        ),
    )
)
DEFAULT_SELECTION_REGISTRY.register(
    SelectionStrategy(
        key=SelectionMethod.FIRST_COME_FIRST_SERVED.value,
        selector=_select_first_come,
        description="Earliest tickets win, ordered by creation time then id.",
    )
)
DEFAULT_SELECTION_REGISTRY.register(
    SelectionStrategy(
        key=SelectionMethod.WEIGHTED.value,
        selector=_select_weighted,
        description=(
            "Weighted draw without replacement using per-source-type ticket weights."
        ),
    )
)

__all__ = [
    "DEFAULT_SELECTION_REGISTRY",
    "SelectionRegistry",
    "SelectionStrategy",
    "TICKET_WEIGHTS",
    "ticket_weight",
]
