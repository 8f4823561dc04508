from datetime import timedelta
from decimal import Decimal

from raffledraw.db.engine import get_sessionmaker, make_engine
from raffledraw.db.utils import utcnow
from raffledraw.models import (
    Base,
    PrizeType,
    Raffle,
    RafflePrize,
    RaffleType,
    SelectionMethod,
)
from raffledraw.workflows import (
    activate_raffle,
    create_raffle,
    enter_with_coupon,
    enter_with_promotion,
    enter_with_purchase,
)


def main() -> None:
    """Reset the development database and seed a running weekly raffle."""
    engine = make_engine()

    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)
    Session = get_sessionmaker(engine)

    now = utcnow()

    with Session.begin() as session:
        raffle = create_raffle(
            session,
            Raffle(
                name="Weekly Fuel Raffle",
                description="Redeem coupons at any station for a chance to win.",
                raffle_type=RaffleType.WEEKLY,
                registration_start=now - timedelta(days=1),
                registration_end=now + timedelta(days=6),
                draw_date=now + timedelta(days=7),
                max_tickets_per_user=20,
                max_participants=500,
                entry_fee=Decimal("2.50"),
                winner_selection_method=SelectionMethod.WEIGHTED,
                prizes=[
                    RafflePrize(
                        name="Grand prize: 500 cash",
                        prize_type=PrizeType.CASH,
                        tier=1,
                        value=Decimal("500.00"),
                        requires_identity_verification=True,
                    ),
                    RafflePrize(
                        name="Fuel credit",
                        prize_type=PrizeType.FUEL_CREDIT,
                        tier=2,
                        value=Decimal("50.00"),
                        quantity_available=3,
                    ),
                    RafflePrize(
                        name="Branded cap",
                        prize_type=PrizeType.MERCHANDISE,
                        tier=3,
                        quantity_available=10,
                    ),
                ],
            ),
            created_by="seed",
        )
        activate_raffle(session, raffle.id, actor="seed", now=now)

        enter_with_coupon(session, 1001, raffle.id, "CPN-0001", 2, station_id=7, now=now)
        enter_with_coupon(session, 1002, raffle.id, "CPN-0002", 1, station_id=7, now=now)
        enter_with_purchase(
            session, 1003, raffle.id, 4, Decimal("10.00"), transaction_ref="TX-9001", now=now
        )
        enter_with_promotion(
            session, 1004, raffle.id, 1, campaign_ref="WELCOME", source_ref="promo-1004", now=now
        )

    print("Seed complete.")


if __name__ == "__main__":
    main()
