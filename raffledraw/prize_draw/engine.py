"""Prize distribution over a raffle's eligible tickets."""

from __future__ import annotations

from datetime import datetime, timedelta
import logging
import random
from typing import Callable, Iterable, Optional, Sequence

from ..db.utils import as_utc, utcnow
from ..models.enums import PrizeType
from ..models.raffle import Raffle, RafflePrize
from ..models.ticket import RaffleTicket
from ..models.utils import WINNER_CODE_LENGTH, generate_verification_code
from ..models.winner import RaffleWinner
from .selection import DEFAULT_SELECTION_REGISTRY, SelectionRegistry

logger = logging.getLogger(__name__)


def claim_deadline_for(prize_type: PrizeType, won_at: datetime) -> datetime:
    """Return ``won_at`` plus the claim window of ``prize_type``."""
    return as_utc(won_at) + timedelta(days=PrizeType(prize_type).claim_window_days)


def _winner_code() -> str:
    return generate_verification_code(WINNER_CODE_LENGTH)


def distribute(
    raffle: Raffle,
    eligible_tickets: Iterable[RaffleTicket],
    prizes: Sequence[RafflePrize],
    *,
    rng: Optional[random.Random] = None,
    now: Optional[datetime] = None,
    registry: Optional[SelectionRegistry] = None,
    code_factory: Optional[Callable[[], str]] = None,
) -> list[RaffleWinner]:
    """Compute the winners of a draw without touching the database.

    Parameters
    ----------
    raffle : Raffle
        Raffle being drawn. Its ``winner_selection_method`` picks the strategy
        and its ``raffle_type`` decides whether one user may win several tiers.
    eligible_tickets : Iterable[RaffleTicket]
        Pool of tickets that may win.
    prizes : Sequence[RafflePrize]
        Prizes to award. Processed by ascending ``tier`` whatever their order.
    rng : Optional[random.Random], default: None
        Random source. Pass a seeded :class:`random.Random` for reproducible
        draws; defaults to :class:`random.SystemRandom`.
    now : Optional[datetime], default: None
        Win timestamp used for every winner and their claim deadlines.
    registry : Optional[SelectionRegistry], default: None
        Registry containing the selection strategies. Typically omitted, in
        which case :data:`DEFAULT_SELECTION_REGISTRY` is used.
    code_factory : Optional[Callable[[], str]], default: None
        Generator for winner verification codes.

    Returns
    -------
    list[RaffleWinner]
        Transient winner rows in award order, carrying only foreign key ids.

    Notes
    -----
    After each prize the pool is pruned before the next tier is processed:
    every ticket of a just-won user is removed unless the raffle type allows
    multiple wins, in which case only the winning tickets are removed.
    """
    rng = rng or random.SystemRandom()
    active_registry = registry or DEFAULT_SELECTION_REGISTRY
    make_code = code_factory or _winner_code
    won_at = as_utc(now) or utcnow()

    pool = list(eligible_tickets)
    ordered_prizes = sorted(prizes, key=lambda p: (p.tier, p.id or 0))
    multi_win = raffle.allows_multiple_wins

    logger.info(
        f"Distributing prizes for raffle {raffle.id}: {len(ordered_prizes)} prizes, "
        f"{len(pool)} eligible tickets"
    )

    winners: list[RaffleWinner] = []
    for prize in ordered_prizes:
        to_select = min(prize.remaining_quantity, len(pool))
        if to_select <= 0:
            logger.warning(
                f"Skipping prize {prize.name!r} (tier {prize.tier}): "
                f"remaining={prize.remaining_quantity}, pool={len(pool)}"
            )
            continue

        selected = active_registry.select(
            raffle.winner_selection_method, prize, pool, to_select, rng
        )
        for ticket in selected:
            winners.append(
                RaffleWinner(
                    raffle_id=raffle.id,
                    prize_id=prize.id,
                    ticket_id=ticket.id,
                    user_id=ticket.user_id,
                    won_at=won_at,
                    claim_deadline=claim_deadline_for(prize.prize_type, won_at),
                    verification_code=make_code(),
                    is_verified=not prize.requires_identity_verification,
                )
            )

        if multi_win:
            taken = {id(t) for t in selected}
            pool = [t for t in pool if id(t) not in taken]
        else:
            winning_users = {t.user_id for t in selected}
            pool = [t for t in pool if t.user_id not in winning_users]

        logger.info(
            f"Selected {len(selected)} winners for prize {prize.name!r} (tier {prize.tier})"
        )

    logger.info(f"Prize distribution completed: {len(winners)} total winners selected")
    return winners


__all__ = ["claim_deadline_for", "distribute"]
