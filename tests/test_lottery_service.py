"""Tests for lottery draws and draw waves."""
import random

from lottery_enrollment.models import InvitationStatus, WaitlistStatus
from lottery_enrollment.schemas.notification import NotificationCategory
from lottery_enrollment.services.lottery_service import LotteryService
from lottery_enrollment.utils.exceptions import ErrorCode
from tests.conftest import FailingSender, count_entries, join_many, load_event, set_counters


class TestDrawSize:

    async def test_more_winners_than_waiting_selects_everyone_waiting(self, db, services, make_event):
        event = await make_event(capacity=50)
        await join_many(services, event.id, 4)

        draw = (await services.lottery.run_lottery(event.id, 10)).unwrap()

        assert draw.selected_count == 4
        assert draw.not_selected_user_ids == []
        assert await count_entries(db, event.id, WaitlistStatus.INVITED) == 4

    async def test_full_event_selects_nobody(self, db, services, sender, make_event):
        """capacity=5, enrolled=5 → runLottery(1) selects 0 regardless of the waiting pool."""
        event = await make_event(capacity=5)
        await join_many(services, event.id, 6)
        await set_counters(db, event.id, enrolled=5)

        draw = (await services.lottery.run_lottery(event.id, 1)).unwrap()

        assert draw.selected_count == 0
        stored = await load_event(db, event.id)
        assert stored.draw_wave == 1
        assert await count_entries(db, event.id, WaitlistStatus.WAITING) == 6
        assert sender.by_category(NotificationCategory.SELECTION) == []

    async def test_draw_bounded_by_remaining_spots(self, db, services, make_event):
        event = await make_event(capacity=5)
        await join_many(services, event.id, 10)
        await set_counters(db, event.id, enrolled=3)

        draw = (await services.lottery.run_lottery(event.id, 4)).unwrap()

        assert draw.selected_count == 2

    async def test_empty_waitlist_is_no_op(self, db, services, make_event):
        event = await make_event()

        draw = (await services.lottery.run_lottery(event.id, 3)).unwrap()

        assert draw.selected_count == 0
        assert (await load_event(db, event.id)).draw_wave == 1

    async def test_defaults_to_sampling_count(self, services, make_event):
        event = await make_event(capacity=20, sampling_count=3)
        await join_many(services, event.id, 8)

        draw = (await services.lottery.run_lottery(event.id)).unwrap()

        assert draw.requested == 3
        assert draw.selected_count == 3

    async def test_negative_winners_is_validation_error(self, services, make_event):
        event = await make_event()
        result = await services.lottery.run_lottery(event.id, -1)
        assert result.error_code == ErrorCode.VALIDATION_ERROR


class TestWaves:

    async def test_each_draw_stamps_and_advances_wave(self, db, services, make_event):
        event = await make_event(capacity=10)
        await join_many(services, event.id, 6)

        first = (await services.lottery.run_lottery(event.id, 2)).unwrap()
        second = (await services.lottery.run_lottery(event.id, 2)).unwrap()

        assert first.draw_wave == 1
        assert second.draw_wave == 2
        assert {invitation.draw_wave for invitation in second.invitations} == {2}
        assert (await load_event(db, event.id)).draw_wave == 3
        assert not set(first.selected_user_ids) & set(second.selected_user_ids)

    async def test_invitations_are_pending_and_linked_to_entries(self, services, make_event):
        event = await make_event(capacity=10)
        entry_ids = set(await join_many(services, event.id, 3))

        draw = (await services.lottery.run_lottery(event.id, 3)).unwrap()

        assert {invitation.status for invitation in draw.invitations} == {InvitationStatus.PENDING}
        assert {invitation.entry_id for invitation in draw.invitations} == entry_ids

    async def test_draw_replacement_invites_one(self, services, make_event):
        event = await make_event(capacity=10)
        await join_many(services, event.id, 5)

        draw = (await services.lottery.draw_replacement(event.id)).unwrap()

        assert draw.selected_count == 1


class TestDrawNotifications:

    async def test_one_batched_request_per_wave(self, services, sender, make_event):
        event = await make_event(capacity=10)
        await join_many(services, event.id, 7)

        draw = (await services.lottery.run_lottery(event.id, 3)).unwrap()

        selected = sender.by_category(NotificationCategory.SELECTION)
        rejected = sender.by_category(NotificationCategory.REJECTION)
        assert len(selected) == 1 and len(rejected) == 1
        assert sorted(selected[0].recipient_ids) == sorted(draw.selected_user_ids)
        assert sorted(rejected[0].recipient_ids) == sorted(draw.not_selected_user_ids)
        assert len(rejected[0].recipient_ids) == 4

    async def test_dispatch_failure_does_not_undo_draw(self, db, services, make_event):
        failing = FailingSender()
        services.notifications.sender = failing
        event = await make_event(capacity=10)
        await join_many(services, event.id, 3)

        result = await services.lottery.run_lottery(event.id, 2)

        assert result.is_ok
        assert failing.attempts == 2
        assert await count_entries(db, event.id, WaitlistStatus.INVITED) == 2


class RecordingRandom(random.Random):
    """Seeded generator that remembers every population it sampled from."""

    def __init__(self, seed):
        super().__init__(seed)
        self.populations = []

    def sample(self, population, k, **kwargs):
        self.populations.append(list(population))
        return super().sample(population, k, **kwargs)


class TestFairness:

    async def test_sampling_covers_whole_waiting_pool(self, db, services, make_event):
        """Selection is uniform over every WAITING entrant, not a prefix of the queue."""
        event = await make_event(capacity=3)
        await join_many(services, event.id, 9)
        rng = RecordingRandom(99)
        lottery = LotteryService(db, services.ledger, services.notifications, rng=rng)

        draw = (await lottery.run_lottery(event.id, 3)).unwrap()

        assert len(rng.populations) == 1
        assert sorted(entry.user_id for entry in rng.populations[0]) == sorted(
            f"user-{index}" for index in range(9)
        )
        assert draw.selected_count == 3

    async def test_injected_rng_makes_draw_reproducible(self, db, services, make_event):
        first_event = await make_event(capacity=10)
        second_event = await make_event(capacity=10)
        await join_many(services, first_event.id, 8)
        await join_many(services, second_event.id, 8)

        lottery_a = LotteryService(db, services.ledger, services.notifications, rng=random.Random(7))
        lottery_b = LotteryService(db, services.ledger, services.notifications, rng=random.Random(7))
        draw_a = (await lottery_a.run_lottery(first_event.id, 3)).unwrap()
        draw_b = (await lottery_b.run_lottery(second_event.id, 3)).unwrap()

        assert draw_a.selected_user_ids == draw_b.selected_user_ids
