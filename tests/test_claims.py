import random
import unittest
from datetime import timedelta

from raffledraw.errors import (
    ClaimExpired,
    InvalidEntry,
    InvalidState,
    NotFound,
    NotYetVerified,
)
from raffledraw.models import PrizeType, RafflePrize, WinnerStatus
from raffledraw.workflows import (
    claim_prize,
    execute_draw,
    expire_unclaimed_winners,
    list_winners,
    mark_delivered,
    notify_winner,
    verify_winner,
)
from raffledraw.workflows.claims import get_winner

from factories import AFTER_DRAW_DATE, RaffleDBTestCase, add_raffle, add_ticket


class RecordingDispatcher:
    def __init__(self, error=None):
        self.error = error
        self.calls = []

    def notify(self, user_id, winner_id, message):
        self.calls.append((user_id, winner_id, message))
        if self.error is not None:
            raise self.error


class ClaimTestCase(RaffleDBTestCase):
    def draw(
        self,
        session,
        *,
        prize_type=PrizeType.CASH,
        requires_identity=False,
        users=(1,),
        name="Claim Raffle",
    ):
        raffle = add_raffle(
            session,
            name=name,
            prizes=[
                RafflePrize(
                    name="Prize",
                    prize_type=prize_type,
                    quantity_available=len(users),
                    requires_identity_verification=requires_identity,
                )
            ],
        )
        for user_id in users:
            add_ticket(session, raffle, user_id)
        outcome = execute_draw(session, raffle.id, rng=random.Random(1), now=AFTER_DRAW_DATE)
        return outcome.winners


class NotifyWinnerTests(ClaimTestCase):
    def test_notify_moves_to_notified_once(self):
        dispatcher = RecordingDispatcher()
        with self.Session.begin() as session:
            (winner,) = self.draw(session)
            later = AFTER_DRAW_DATE + timedelta(hours=1)

            result = notify_winner(session, winner.id, dispatcher=dispatcher, now=later)

            self.assertEqual(result.winner.status, WinnerStatus.NOTIFIED)
            self.assertEqual(result.winner.notified_at, later)
            self.assertEqual([e.name for e in result.events], ["winner.notified"])
            (call,) = dispatcher.calls
            self.assertEqual(call[:2], (winner.user_id, winner.id))
            self.assertIn(winner.verification_code, call[2])

            again = notify_winner(session, winner.id, dispatcher=dispatcher)
            self.assertEqual(again.events, [])
            self.assertEqual(again.winner.notified_at, later)
            self.assertEqual(len(dispatcher.calls), 1)

    def test_dispatch_failure_is_logged(self):
        dispatcher = RecordingDispatcher(error=ConnectionError("gateway down"))
        with self.Session.begin() as session:
            (winner,) = self.draw(session)
            with self.assertLogs("raffledraw.workflows.claims", level="WARNING") as logs:
                result = notify_winner(session, winner.id, dispatcher=dispatcher, message="Hi")
            self.assertEqual(result.winner.status, WinnerStatus.NOTIFIED)
            self.assertEqual(dispatcher.calls[0][2], "Hi")
            self.assertIn("gateway down", logs.output[0])

    def test_default_dispatcher_logs_message(self):
        with self.Session.begin() as session:
            (winner,) = self.draw(session)
            with self.assertLogs("raffledraw.notifications.dispatcher", level="INFO") as logs:
                notify_winner(session, winner.id)
            self.assertIn(f"winner {winner.id}", logs.output[0])

    def test_verified_winner_keeps_status(self):
        with self.Session.begin() as session:
            (winner,) = self.draw(session, requires_identity=True)
            verify_winner(session, winner.id, winner.verification_code, now=AFTER_DRAW_DATE)
            result = notify_winner(session, winner.id, dispatcher=RecordingDispatcher())
            self.assertEqual(result.winner.status, WinnerStatus.VERIFIED)
            self.assertIsNotNone(result.winner.notified_at)
            self.assertEqual(result.events, [])

    def test_expired_winner_is_not_notified(self):
        with self.Session.begin() as session:
            (winner,) = self.draw(session)
            expire_unclaimed_winners(session, now=winner.claim_deadline + timedelta(days=1))
            with self.assertRaises(InvalidState):
                notify_winner(session, winner.id, dispatcher=RecordingDispatcher())

    def test_unknown_winner(self):
        with self.Session.begin() as session:
            with self.assertRaises(NotFound):
                notify_winner(session, 999)
            with self.assertRaises(NotFound):
                get_winner(session, 999)


class VerifyWinnerTests(ClaimTestCase):
    def test_verify_with_code(self):
        with self.Session.begin() as session:
            (winner,) = self.draw(session, requires_identity=True)
            self.assertFalse(winner.is_verified)

            with self.assertRaises(InvalidEntry) as ctx:
                verify_winner(session, winner.id, "WRONGCODE", now=AFTER_DRAW_DATE)
            self.assertEqual(ctx.exception.rule, "invalid_verification_code")
            with self.assertRaises(InvalidEntry):
                verify_winner(session, winner.id, "", now=AFTER_DRAW_DATE)

            result = verify_winner(
                session,
                winner.id,
                winner.verification_code.lower(),
                verified_by="desk",
                now=AFTER_DRAW_DATE,
            )

            self.assertEqual(result.winner.status, WinnerStatus.VERIFIED)
            self.assertTrue(result.winner.is_verified)
            self.assertEqual(result.winner.verified_by, "desk")
            self.assertEqual(result.winner.verified_at, AFTER_DRAW_DATE)
            self.assertEqual(result.events[0].name, "winner.verified")

            with self.assertRaises(InvalidState):
                verify_winner(session, winner.id, winner.verification_code)

    def test_prize_without_identity_check_is_already_verified(self):
        with self.Session.begin() as session:
            (winner,) = self.draw(session)
            self.assertTrue(winner.is_verified)
            with self.assertRaises(InvalidState):
                verify_winner(session, winner.id, winner.verification_code)

    def test_verify_after_deadline(self):
        with self.Session.begin() as session:
            (winner,) = self.draw(session, requires_identity=True)
            with self.assertRaises(ClaimExpired) as ctx:
                verify_winner(
                    session,
                    winner.id,
                    winner.verification_code,
                    now=winner.claim_deadline + timedelta(seconds=1),
                )
            self.assertEqual(ctx.exception.status_code, 410)
            self.assertEqual(winner.status, WinnerStatus.PENDING_CLAIM)


class ClaimPrizeTests(ClaimTestCase):
    def test_claim_requires_verification(self):
        with self.Session.begin() as session:
            (winner,) = self.draw(session, requires_identity=True)
            with self.assertRaises(NotYetVerified):
                claim_prize(session, winner.id, now=AFTER_DRAW_DATE)

            verify_winner(session, winner.id, winner.verification_code, now=AFTER_DRAW_DATE)
            result = claim_prize(session, winner.id, processed_by="desk", now=AFTER_DRAW_DATE)

            self.assertEqual(result.winner.status, WinnerStatus.CLAIMED)
            self.assertEqual(result.winner.claimed_at, AFTER_DRAW_DATE)
            self.assertEqual(result.winner.processed_by, "desk")
            self.assertEqual(result.events[0].name, "winner.claimed")

            with self.assertRaises(InvalidState):
                claim_prize(session, winner.id, now=AFTER_DRAW_DATE)

    def test_claim_without_identity_check(self):
        with self.Session.begin() as session:
            (winner,) = self.draw(session)
            notify_winner(session, winner.id, dispatcher=RecordingDispatcher())
            result = claim_prize(session, winner.id, now=AFTER_DRAW_DATE)
            self.assertEqual(result.winner.status, WinnerStatus.CLAIMED)

    def test_claim_after_deadline(self):
        with self.Session.begin() as session:
            (winner,) = self.draw(session)
            # The deadline itself is still claimable.
            with self.assertRaises(ClaimExpired):
                claim_prize(
                    session, winner.id, now=winner.claim_deadline + timedelta(seconds=1)
                )
            claim_prize(session, winner.id, now=winner.claim_deadline)


class DeliveryTests(ClaimTestCase):
    def test_mark_delivered(self):
        with self.Session.begin() as session:
            (winner,) = self.draw(session, prize_type=PrizeType.PHYSICAL_ITEM)
            self.assertEqual(winner.claim_deadline, AFTER_DRAW_DATE + timedelta(days=14))

            with self.assertRaises(InvalidState):
                mark_delivered(session, winner.id, "TRACK-1")

            claim_prize(session, winner.id, now=AFTER_DRAW_DATE)
            with self.assertRaises(InvalidEntry):
                mark_delivered(session, winner.id, "   ")

            result = mark_delivered(
                session, winner.id, " TRACK-1 ", delivery_method="courier", now=AFTER_DRAW_DATE
            )

            self.assertEqual(result.winner.status, WinnerStatus.DELIVERED)
            self.assertEqual(result.winner.tracking_info, "TRACK-1")
            self.assertEqual(result.winner.delivery_method, "courier")
            self.assertEqual(result.winner.delivered_at, AFTER_DRAW_DATE)

    def test_non_physical_prize_is_not_delivered(self):
        with self.Session.begin() as session:
            (winner,) = self.draw(session, prize_type=PrizeType.GIFT_CARD)
            claim_prize(session, winner.id, now=AFTER_DRAW_DATE)
            with self.assertRaises(InvalidState):
                mark_delivered(session, winner.id, "TRACK-1")


class ExpirySweepTests(ClaimTestCase):
    def test_sweep_expires_only_open_claims_past_deadline(self):
        with self.Session.begin() as session:
            pending, notified, claimed = self.draw(session, users=(1, 2, 3))
            notify_winner(session, notified.id, dispatcher=RecordingDispatcher())
            claim_prize(session, claimed.id, now=AFTER_DRAW_DATE)

            deadline = pending.claim_deadline
            self.assertEqual(expire_unclaimed_winners(session, now=deadline).winners, [])

            result = expire_unclaimed_winners(session, now=deadline + timedelta(minutes=1))

            self.assertEqual({w.id for w in result.winners}, {pending.id, notified.id})
            self.assertEqual(
                [e.name for e in result.events], ["winner.expired_unclaimed"] * 2
            )
            self.assertEqual(pending.status, WinnerStatus.EXPIRED_UNCLAIMED)
            self.assertEqual(notified.status, WinnerStatus.EXPIRED_UNCLAIMED)
            self.assertEqual(claimed.status, WinnerStatus.CLAIMED)

            again = expire_unclaimed_winners(session, now=deadline + timedelta(days=1))
            self.assertEqual(again.winners, [])

            with self.assertRaises(InvalidState):
                claim_prize(session, pending.id, now=deadline)

    def test_list_winners(self):
        with self.Session.begin() as session:
            winners = self.draw(session, users=(1, 2))
            raffle_id = winners[0].raffle_id
            self.assertEqual(
                {w.id for w in list_winners(session, raffle_id)}, {w.id for w in winners}
            )
            with self.assertRaises(NotFound):
                list_winners(session, 999)


if __name__ == "__main__":
    unittest.main()
