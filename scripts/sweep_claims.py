"""Expire unclaimed winners whose claim deadline has passed.

Meant to run from cron or a scheduler, e.g. hourly.
"""

from __future__ import annotations

import logging

from raffledraw.db.engine import get_sessionmaker, make_engine
from raffledraw.workflows import expire_unclaimed_winners

logger = logging.getLogger(__name__)


def main() -> int:
    logging.basicConfig(
        level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s"
    )
    Session = get_sessionmaker(make_engine())
    with Session.begin() as session:
        result = expire_unclaimed_winners(session)
        for event in result.events:
            logger.info(f"{event.name} winner={event.aggregate_id}")
    print(f"Expired {len(result.winners)} unclaimed winners.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
