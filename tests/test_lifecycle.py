import random
import unittest
from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

from sqlalchemy import func, select, update

from raffledraw.errors import EmptyDraw, InvalidEntry, InvalidState, NotFound
from raffledraw.models import (
    PrizeType,
    Raffle,
    RafflePrize,
    RaffleStatus,
    RaffleType,
    RaffleWinner,
    SelectionMethod,
    TicketStatus,
)
from raffledraw.workflows import (
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

from factories import (
    AFTER_DRAW_DATE,
    DRAW_DATE,
    NOW,
    REGISTRATION_END,
    RaffleDBTestCase,
    add_raffle,
    add_ticket,
    build_raffle,
)


def winner_count(session, raffle_id):
    return session.scalar(
        select(func.count(RaffleWinner.id)).where(RaffleWinner.raffle_id == raffle_id)
    )


def awarded_total(session, raffle_id):
    return session.scalar(
        select(func.coalesce(func.sum(RafflePrize.quantity_awarded), 0)).where(
            RafflePrize.raffle_id == raffle_id
        )
    )


class CreateRaffleTests(RaffleDBTestCase):
    def test_create_forces_draft(self):
        with self.Session.begin() as session:
            raffle = build_raffle(status=RaffleStatus.ACTIVE)
            raffle.prizes = [RafflePrize(name="Fuel Card", prize_type=PrizeType.FUEL_CREDIT)]
            created = create_raffle(session, raffle, created_by="ops")

            self.assertIsNotNone(created.id)
            self.assertEqual(created.status, RaffleStatus.DRAFT)
            self.assertEqual(created.current_participants, 0)
            self.assertEqual(created.created_by, "ops")
            self.assertIsNotNone(created.prizes[0].id)
            self.assertIs(get_raffle(session, created.id), created)

            with self.assertRaises(ValueError):
                create_raffle(session, created)

    def test_definition_rules(self):
        cases = {
            "invalid_dates": [
                dict(registration_start=REGISTRATION_END),
                dict(registration_end=DRAW_DATE),
            ],
            "invalid_limits": [
                dict(max_participants=0),
                dict(min_tickets_to_participate=0),
                dict(max_tickets_per_user=0),
                dict(min_tickets_to_participate=5, max_tickets_per_user=4),
            ],
            "invalid_entry_fee": [dict(entry_fee=Decimal("-1.00"))],
        }
        with self.Session.begin() as session:
            for rule, variants in cases.items():
                for overrides in variants:
                    with self.subTest(rule=rule, overrides=overrides):
                        raffle = build_raffle(name=f"{rule} {sorted(overrides)}")
                        for key, value in overrides.items():
                            setattr(raffle, key, value)
                        with self.assertRaises(InvalidEntry) as ctx:
                            create_raffle(session, raffle)
                        self.assertEqual(ctx.exception.rule, rule)

    def test_name_is_unique_ignoring_case(self):
        with self.Session.begin() as session:
            create_raffle(session, build_raffle("Summer Draw"))
            with self.assertRaises(InvalidEntry) as ctx:
                create_raffle(session, build_raffle("  summer DRAW "))
            self.assertEqual(ctx.exception.rule, "duplicate_name")
            with self.assertRaises(InvalidEntry) as ctx:
                create_raffle(session, build_raffle(" "))
            self.assertEqual(ctx.exception.rule, "invalid_name")

    def test_lower_name_index_backstops_uniqueness(self):
        with self.Session.begin() as session:
            create_raffle(session, build_raffle("Summer Draw"))
            with patch("raffledraw.workflows.lifecycle._ensure_unique_name"):
                with self.assertRaises(InvalidEntry) as ctx:
                    create_raffle(session, build_raffle("SUMMER DRAW"))
            self.assertEqual(ctx.exception.rule, "duplicate_name")
            self.assertEqual(session.scalar(select(func.count(Raffle.id))), 1)


class UpdateRaffleTests(RaffleDBTestCase):
    def test_update_draft(self):
        with self.Session.begin() as session:
            raffle = create_raffle(session, build_raffle())
            update_raffle(
                session,
                raffle.id,
                updated_by="ops",
                name="Renamed",
                max_tickets_per_user=4,
                winner_selection_method=SelectionMethod.WEIGHTED,
            )
            self.assertEqual(raffle.name, "Renamed")
            self.assertEqual(raffle.max_tickets_per_user, 4)
            self.assertEqual(raffle.updated_by, "ops")
            self.assertEqual(raffle.winner_selection_method, SelectionMethod.WEIGHTED)

    def test_rejected_update_leaves_raffle_untouched(self):
        with self.Session.begin() as session:
            raffle = create_raffle(session, build_raffle())
            with self.assertRaises(InvalidEntry):
                update_raffle(session, raffle.id, registration_end=DRAW_DATE + timedelta(days=1))
            self.assertEqual(raffle.registration_end, REGISTRATION_END)

            with self.assertRaises(ValueError):
                update_raffle(session, raffle.id, status=RaffleStatus.ACTIVE)

            with self.assertRaises(NotFound):
                update_raffle(session, 999, name="Ghost")

    def test_only_drafts_can_change(self):
        with self.Session.begin() as session:
            raffle = add_raffle(session, status=RaffleStatus.ACTIVE)
            with self.assertRaises(InvalidState):
                update_raffle(session, raffle.id, name="Too Late")
            with self.assertRaises(InvalidState):
                add_prize(session, raffle.id, RafflePrize(name="Late Prize"))


class AddPrizeTests(RaffleDBTestCase):
    def test_add_prize(self):
        with self.Session.begin() as session:
            raffle = create_raffle(session, build_raffle())
            prize = add_prize(
                session,
                raffle.id,
                RafflePrize(
                    name="TV",
                    prize_type=PrizeType.PHYSICAL_ITEM,
                    tier=2,
                    quantity_available=3,
                    quantity_awarded=3,
                ),
            )
            self.assertIsNotNone(prize.id)
            self.assertEqual(prize.raffle_id, raffle.id)
            self.assertEqual(prize.quantity_awarded, 0)
            self.assertEqual(prize.remaining_quantity, 3)
            self.assertEqual(raffle.prizes, [prize])

    def test_invalid_prizes(self):
        with self.Session.begin() as session:
            raffle = create_raffle(session, build_raffle())
            for prize in (
                RafflePrize(name="None", quantity_available=0),
                RafflePrize(name="Tierless", tier=0),
                RafflePrize(name="Odds", winning_probability=1.5),
            ):
                with self.subTest(prize=prize.name):
                    with self.assertRaises(InvalidEntry) as ctx:
                        add_prize(session, raffle.id, prize)
                    self.assertEqual(ctx.exception.rule, "invalid_prize")
            self.assertEqual(raffle.prizes, [])


class RaffleStateTests(RaffleDBTestCase):
    def test_activate_requires_prize(self):
        with self.Session.begin() as session:
            raffle = create_raffle(session, build_raffle())
            with self.assertRaises(InvalidState):
                activate_raffle(session, raffle.id)

            add_prize(session, raffle.id, RafflePrize(name="Cash", prize_type=PrizeType.CASH))
            result = activate_raffle(session, raffle.id, actor="ops", now=NOW)

            self.assertEqual(result.raffle.status, RaffleStatus.ACTIVE)
            self.assertEqual(result.raffle.updated_by, "ops")
            (event,) = result.events
            self.assertEqual(event.name, "raffle.active")
            self.assertEqual(event.payload, {"from": "DRAFT", "to": "ACTIVE", "actor": "ops"})

            with self.assertRaises(InvalidState):
                activate_raffle(session, raffle.id)

    def test_pause_resume_close_cancel(self):
        with self.Session.begin() as session:
            raffle = add_raffle(session, status=RaffleStatus.ACTIVE)

            self.assertEqual(pause_raffle(session, raffle.id).raffle.status, RaffleStatus.PAUSED)
            with self.assertRaises(InvalidState):
                pause_raffle(session, raffle.id)
            with self.assertRaises(InvalidState):
                close_registration(session, raffle.id)

            self.assertEqual(resume_raffle(session, raffle.id).raffle.status, RaffleStatus.ACTIVE)
            with self.assertRaises(InvalidState):
                resume_raffle(session, raffle.id)

            closed = close_registration(session, raffle.id, now=NOW)
            self.assertEqual(closed.raffle.status, RaffleStatus.CLOSED)
            self.assertEqual(closed.events[0].name, "raffle.closed")

            cancelled = cancel_raffle(session, raffle.id)
            self.assertEqual(cancelled.raffle.status, RaffleStatus.CANCELLED)
            self.assertTrue(cancelled.raffle.is_final)
            with self.assertRaises(InvalidState):
                cancel_raffle(session, raffle.id)

    def test_get_raffle_not_found(self):
        with self.Session.begin() as session:
            with self.assertRaises(NotFound) as ctx:
                get_raffle(session, 404)
            self.assertEqual(ctx.exception.status_code, 404)


class ExecuteDrawTests(RaffleDBTestCase):
    def _seed(self, session, *, users=(1, 2, 3, 4), prizes=None, **raffle_kwargs):
        if prizes is None:
            prizes = [
                RafflePrize(name="Grand", prize_type=PrizeType.CASH, tier=1),
                RafflePrize(
                    name="Gift Cards",
                    prize_type=PrizeType.GIFT_CARD,
                    tier=2,
                    quantity_available=2,
                ),
            ]
        raffle = add_raffle(session, prizes=prizes, **raffle_kwargs)
        tickets = [add_ticket(session, raffle, user_id) for user_id in users]
        return raffle, tickets

    def test_draw_awards_prizes(self):
        with self.Session.begin() as session:
            raffle, tickets = self._seed(session)
            raffle_id = raffle.id

            outcome = execute_draw(
                session,
                raffle.id,
                executed_by="auditor",
                rng=random.Random(2024),
                now=AFTER_DRAW_DATE,
            )

            self.assertEqual(outcome.raffle.status, RaffleStatus.COMPLETED)
            self.assertEqual(outcome.raffle.completed_at, AFTER_DRAW_DATE)
            self.assertEqual(outcome.raffle.updated_by, "auditor")
            self.assertEqual(len(outcome.winners), 3)
            self.assertEqual(len({w.user_id for w in outcome.winners}), 3)
            self.assertTrue(all(w.id is not None for w in outcome.winners))

            names = [e.name for e in outcome.events]
            self.assertEqual(names[0], "raffle.completed")
            self.assertEqual(names.count("ticket.won"), 3)
            self.assertEqual(names.count("winner.selected"), 3)
            self.assertEqual(outcome.events[0].payload["winner_count"], 3)

            won = {w.ticket_id for w in outcome.winners}
            for ticket in tickets:
                expected = TicketStatus.WON if ticket.id in won else TicketStatus.ACTIVE
                self.assertEqual(ticket.status, expected)

            body = outcome.to_json()
            self.assertEqual(body["status"], "COMPLETED")
            self.assertEqual(len(body["winners"]), 3)

        with self.Session() as session:
            self.assertEqual(winner_count(session, raffle_id), 3)
            self.assertEqual(awarded_total(session, raffle_id), 3)
            grand = session.scalar(
                select(RafflePrize).where(
                    RafflePrize.raffle_id == raffle_id, RafflePrize.tier == 1
                )
            )
            self.assertEqual(grand.quantity_awarded, 1)
            self.assertEqual(grand.remaining_quantity, 0)

    def test_single_cash_prize_two_users(self):
        with self.Session.begin() as session:
            raffle, _ = self._seed(
                session,
                users=(1, 2),
                prizes=[RafflePrize(name="Cash", prize_type=PrizeType.CASH)],
            )
            outcome = execute_draw(session, raffle.id, rng=random.Random(5), now=AFTER_DRAW_DATE)

            (winner,) = outcome.winners
            self.assertIn(winner.user_id, {1, 2})
            self.assertEqual(winner.claim_deadline, AFTER_DRAW_DATE + timedelta(days=30))
            self.assertEqual(winner.claim_deadline - winner.won_at, timedelta(days=30))

    def test_draw_before_draw_date_is_refused(self):
        with self.Session.begin() as session:
            raffle, _ = self._seed(session)
            for moment in (NOW, REGISTRATION_END, DRAW_DATE - timedelta(seconds=1)):
                with self.assertRaises(InvalidState):
                    execute_draw(session, raffle.id, now=moment)
            self.assertEqual(raffle.status, RaffleStatus.ACTIVE)
            self.assertEqual(winner_count(session, raffle.id), 0)

            # The draw date itself is eligible.
            execute_draw(session, raffle.id, rng=random.Random(1), now=DRAW_DATE)

    def test_draw_twice_is_refused(self):
        with self.Session.begin() as session:
            raffle, _ = self._seed(session)
            execute_draw(session, raffle.id, rng=random.Random(1), now=AFTER_DRAW_DATE)
            with self.assertRaises(InvalidState):
                execute_draw(session, raffle.id, rng=random.Random(2), now=AFTER_DRAW_DATE)
            self.assertEqual(winner_count(session, raffle.id), 3)
            self.assertEqual(awarded_total(session, raffle.id), 3)

    def test_concurrent_completion_wins_the_race(self):
        with self.Session.begin() as session:
            raffle, _ = self._seed(session)
            # Another process completes the raffle behind this session's back.
            session.execute(
                update(Raffle)
                .where(Raffle.id == raffle.id)
                .values(status=RaffleStatus.COMPLETED)
                .execution_options(synchronize_session=False)
            )
            self.assertEqual(raffle.status, RaffleStatus.ACTIVE)

            with self.assertRaises(InvalidState) as ctx:
                execute_draw(session, raffle.id, rng=random.Random(1), now=AFTER_DRAW_DATE)

            self.assertIn("already been drawn", ctx.exception.detail)
            self.assertEqual(winner_count(session, raffle.id), 0)
            self.assertEqual(awarded_total(session, raffle.id), 0)
            self.assertEqual(raffle.status, RaffleStatus.COMPLETED)

    def test_failure_rolls_back_the_draw(self):
        with self.Session.begin() as session:
            raffle, tickets = self._seed(session)
            with patch(
                "raffledraw.workflows.lifecycle.distribute",
                side_effect=RuntimeError("storage unavailable"),
            ):
                with self.assertRaises(RuntimeError):
                    execute_draw(session, raffle.id, now=AFTER_DRAW_DATE)

            self.assertEqual(raffle.status, RaffleStatus.ACTIVE)
            self.assertIsNone(raffle.completed_at)
            self.assertEqual(winner_count(session, raffle.id), 0)
            self.assertTrue(all(t.status == TicketStatus.ACTIVE for t in tickets))

            # The raffle can still be drawn afterwards.
            outcome = execute_draw(session, raffle.id, rng=random.Random(1), now=AFTER_DRAW_DATE)
            self.assertEqual(len(outcome.winners), 3)

    def test_failure_after_winners_are_written_rolls_back_everything(self):
        with self.Session.begin() as session:
            raffle, tickets = self._seed(session)
            prizes = list(raffle.prizes)
            real_flush = session.flush
            written = []

            def flush_then_fail(*args, **kwargs):
                writes_winners = any(isinstance(obj, RaffleWinner) for obj in session.new)
                real_flush(*args, **kwargs)
                if writes_winners:
                    written.append(winner_count(session, raffle.id))
                    raise RuntimeError("connection lost")

            with patch.object(session, "flush", side_effect=flush_then_fail):
                with self.assertRaises(RuntimeError):
                    execute_draw(session, raffle.id, rng=random.Random(1), now=AFTER_DRAW_DATE)

            # Winners, ticket updates and counters reached the database first.
            self.assertEqual(written, [3])

            self.assertEqual(winner_count(session, raffle.id), 0)
            self.assertEqual(awarded_total(session, raffle.id), 0)
            self.assertTrue(all(t.status == TicketStatus.ACTIVE for t in tickets))
            self.assertEqual([p.quantity_awarded for p in prizes], [0, 0])
            self.assertEqual(raffle.status, RaffleStatus.ACTIVE)
            self.assertIsNone(raffle.completed_at)

            outcome = execute_draw(session, raffle.id, rng=random.Random(1), now=AFTER_DRAW_DATE)
            self.assertEqual(len(outcome.winners), 3)
            self.assertEqual(winner_count(session, raffle.id), 3)
            self.assertEqual(sorted(p.quantity_awarded for p in prizes), [1, 2])

    def test_empty_pool(self):
        with self.Session.begin() as session:
            raffle, _ = self._seed(session, users=())
            with self.assertRaises(EmptyDraw) as ctx:
                execute_draw(session, raffle.id, now=AFTER_DRAW_DATE)
            self.assertIsInstance(ctx.exception, InvalidState)
            self.assertEqual(raffle.status, RaffleStatus.ACTIVE)

    def test_no_prize_left(self):
        with self.Session.begin() as session:
            raffle, _ = self._seed(
                session,
                prizes=[RafflePrize(name="Gone", quantity_available=1, quantity_awarded=1)],
            )
            with self.assertRaises(InvalidState) as ctx:
                execute_draw(session, raffle.id, now=AFTER_DRAW_DATE)
            self.assertNotIsInstance(ctx.exception, EmptyDraw)

    def test_cancelled_or_draft_raffle_cannot_be_drawn(self):
        with self.Session.begin() as session:
            for index, status in enumerate((RaffleStatus.DRAFT, RaffleStatus.CANCELLED)):
                raffle, _ = self._seed(session, name=f"Raffle {index}", status=status)
                with self.assertRaises(InvalidState):
                    execute_draw(session, raffle.id, now=AFTER_DRAW_DATE)

    def test_closed_raffle_can_be_drawn(self):
        with self.Session.begin() as session:
            raffle, _ = self._seed(session, status=RaffleStatus.CLOSED)
            outcome = execute_draw(session, raffle.id, rng=random.Random(1), now=AFTER_DRAW_DATE)
            self.assertEqual(outcome.events[0].payload["from"], "CLOSED")

    def test_probability_draw_fills_every_prize(self):
        with self.Session.begin() as session:
            raffle, _ = self._seed(
                session,
                prizes=[RafflePrize(name="Long shot", quantity_available=2, winning_probability=0.0)],
                method=SelectionMethod.PROBABILITY,
            )
            outcome = execute_draw(session, raffle.id, rng=random.Random(9), now=AFTER_DRAW_DATE)
            self.assertEqual(len(outcome.winners), 2)

    def test_unverified_tickets_are_not_eligible(self):
        with self.Session.begin() as session:
            raffle = add_raffle(
                session,
                requires_verification=True,
                prizes=[RafflePrize(name="Cash", quantity_available=2)],
            )
            verified = add_ticket(session, raffle, 1, verification_code="AAA111", is_verified=True)
            add_ticket(session, raffle, 2, verification_code="BBB222", is_verified=False)

            outcome = execute_draw(session, raffle.id, rng=random.Random(1), now=AFTER_DRAW_DATE)

            self.assertEqual([w.ticket_id for w in outcome.winners], [verified.id])

    def test_tiered_raffle_awards_one_user_several_tiers(self):
        with self.Session.begin() as session:
            raffle = add_raffle(
                session,
                raffle_type=RaffleType.TIERED,
                prizes=[
                    RafflePrize(name="First", tier=1),
                    RafflePrize(name="Second", tier=2),
                ],
            )
            add_ticket(session, raffle, 1)
            add_ticket(session, raffle, 1)

            outcome = execute_draw(session, raffle.id, rng=random.Random(1), now=AFTER_DRAW_DATE)

            self.assertEqual([w.user_id for w in outcome.winners], [1, 1])
            self.assertEqual(winner_count(session, raffle.id), awarded_total(session, raffle.id))

    def test_awarded_matches_winners_across_seeds(self):
        for seed in range(5):
            with self.subTest(seed=seed):
                with self.Session.begin() as session:
                    raffle, _ = self._seed(
                        session,
                        name=f"Seed {seed}",
                        users=(1, 1, 2, 3),
                        method=SelectionMethod.WEIGHTED,
                    )
                    outcome = execute_draw(
                        session, raffle.id, rng=random.Random(seed), now=AFTER_DRAW_DATE
                    )
                    self.assertEqual(
                        awarded_total(session, raffle.id), len(outcome.winners)
                    )
                    tiers_by_user = {}
                    for w in outcome.winners:
                        tiers_by_user.setdefault(w.user_id, set()).add(w.prize_id)
                    self.assertTrue(all(len(t) == 1 for t in tiers_by_user.values()))


class RaffleQueryTests(RaffleDBTestCase):
    def test_ready_for_draw(self):
        with self.Session.begin() as session:
            active = add_raffle(session, name="Active")
            closed = add_raffle(session, name="Closed", status=RaffleStatus.CLOSED)
            add_raffle(session, name="Draft", status=RaffleStatus.DRAFT)
            add_raffle(session, name="Paused", status=RaffleStatus.PAUSED)

            self.assertEqual(raffles_ready_for_draw(session, now=NOW), [])
            self.assertEqual(
                raffles_ready_for_draw(session, now=AFTER_DRAW_DATE), [active, closed]
            )

    def test_statistics(self):
        with self.Session.begin() as session:
            raffle = add_raffle(session, max_participants=10)
            add_ticket(session, raffle, 1)
            add_ticket(session, raffle, 1)
            add_ticket(session, raffle, 2)
            execute_draw(session, raffle.id, rng=random.Random(1), now=AFTER_DRAW_DATE)

            stats = raffle_statistics(session, raffle.id)

            self.assertEqual(stats["raffle"]["status"], "COMPLETED")
            self.assertEqual(stats["tickets"]["total"], 3)
            self.assertEqual(stats["tickets"]["unique_users"], 2)
            self.assertEqual(stats["tickets"]["by_status"].get("WON"), 1)
            self.assertEqual(stats["prizes"]["quantity_awarded"], 1)
            self.assertEqual(stats["winners"]["total"], 1)
            self.assertEqual(stats["winners"]["by_status"], {"PENDING_CLAIM": 1})

    def test_delete_raffle(self):
        with self.Session.begin() as session:
            draft = create_raffle(session, build_raffle("Draft"))
            add_prize(session, draft.id, RafflePrize(name="Cash"))
            delete_raffle(session, draft.id)
            with self.assertRaises(NotFound):
                get_raffle(session, draft.id)
            self.assertEqual(session.scalar(select(func.count(RafflePrize.id))), 0)

            with_tickets = add_raffle(session, name="Has Tickets", status=RaffleStatus.DRAFT)
            add_ticket(session, with_tickets, 1)
            with self.assertRaises(InvalidState):
                delete_raffle(session, with_tickets.id)

            active = add_raffle(session, name="Live")
            with self.assertRaises(InvalidState):
                delete_raffle(session, active.id)


if __name__ == "__main__":
    unittest.main()
