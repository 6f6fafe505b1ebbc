"""Tests for waitlist membership, purges, queries and broadcasts."""
import asyncio
import uuid
from datetime import datetime, timedelta, timezone

from sqlalchemy import text

from lottery_enrollment.models import InvitationStatus, WaitlistStatus
from lottery_enrollment.schemas.notification import NotificationCategory
from lottery_enrollment.utils.exceptions import ErrorCode
from tests.conftest import count_entries, join_many, load_event, set_counters


async def assert_queue_matches_counter(db, event_id):
    """The queued counter always equals the WAITING + INVITED entries."""
    stored = await load_event(db, event_id)
    queued = await count_entries(db, event_id, WaitlistStatus.WAITING, WaitlistStatus.INVITED)
    assert stored.waitlist_count == queued


class TestJoin:

    async def test_two_joins_on_partially_filled_waitlist(self, db, services, make_event):
        """capacity=87, waitlistCount=32 → two joins → 34 with two new WAITING entries."""
        event = await make_event(capacity=87, waitlist_capacity=100)
        await set_counters(db, event.id, waitlist_count=32)

        first = await services.waitlist.join(event.id, "alice", "Alice")
        second = await services.waitlist.join(event.id, "bob", "Bob")

        assert first.is_ok and second.is_ok
        assert first.value != second.value
        assert (await load_event(db, event.id)).waitlist_count == 34
        assert await count_entries(db, event.id, WaitlistStatus.WAITING) == 2

    async def test_join_full_waitlist_is_capacity_exceeded(self, db, services, make_event):
        event = await make_event(waitlist_capacity=2)
        await join_many(services, event.id, 2)

        result = await services.waitlist.join(event.id, "late", "Late Comer")

        assert not result.is_ok
        assert result.error_code == ErrorCode.CAPACITY_EXCEEDED
        assert (await load_event(db, event.id)).waitlist_count == 2

    async def test_join_is_idempotent_for_members(self, db, services, make_event):
        event = await make_event()

        first = (await services.waitlist.join(event.id, "alice", "Alice")).unwrap()
        again = (await services.waitlist.join(event.id, "alice", "Alice")).unwrap()

        assert first == again
        assert (await load_event(db, event.id)).waitlist_count == 1

    async def test_join_unknown_event_is_not_found(self, services):
        result = await services.waitlist.join(uuid.uuid4(), "alice", "Alice")
        assert result.error_code == ErrorCode.NOT_FOUND

    async def test_geolocation_required(self, services, make_event):
        event = await make_event(requires_geolocation=True)

        missing = await services.waitlist.join(event.id, "alice", "Alice")
        located = await services.waitlist.join(event.id, "bob", "Bob", latitude=53.5, longitude=-113.5)

        assert missing.error_code == ErrorCode.VALIDATION_ERROR
        assert located.is_ok

    async def test_join_notifies_entrant(self, services, sender, make_event):
        event = await make_event()
        await services.waitlist.join(event.id, "alice", "Alice")

        requests = sender.by_category(NotificationCategory.WAITLIST)
        assert len(requests) == 1
        assert requests[0].recipient_ids == ["alice"]

    async def test_concurrent_joins_keep_counter_consistent(self, db, services, make_event):
        event = await make_event(waitlist_capacity=5)
        results = await asyncio.gather(
            *(services.waitlist.join(event.id, f"user-{i}", f"User {i}") for i in range(8))
        )

        assert sum(1 for result in results if result.is_ok) == 5
        assert all(
            result.error_code == ErrorCode.CAPACITY_EXCEEDED for result in results if not result.is_ok
        )
        await assert_queue_matches_counter(db, event.id)


class TestLeave:

    async def test_leave_from_waiting_decrements(self, db, services, make_event):
        event = await make_event()
        entry_ids = await join_many(services, event.id, 3)

        assert (await services.waitlist.leave(entry_ids[0])).is_ok

        membership = (await services.waitlist.get_membership(event.id, "user-0")).unwrap()
        assert membership.status == WaitlistStatus.CANCELLED
        await assert_queue_matches_counter(db, event.id)

    async def test_leave_from_invited_withdraws_invitation(self, db, services, make_event):
        event = await make_event(capacity=5)
        entry_ids = await join_many(services, event.id, 1)
        draw = (await services.lottery.run_lottery(event.id, 1)).unwrap()

        assert (await services.waitlist.leave(entry_ids[0])).is_ok

        invitation = (await services.invitations.get_invitation(draw.invitations[0].id)).unwrap()
        assert invitation.status == InvitationStatus.EXPIRED
        assert invitation.expiry_reason == "withdrawn"
        await assert_queue_matches_counter(db, event.id)

    async def test_leave_twice_is_invalid_transition(self, services, make_event):
        event = await make_event()
        entry_ids = await join_many(services, event.id, 1)

        await services.waitlist.leave(entry_ids[0])
        result = await services.waitlist.leave(entry_ids[0])

        assert result.error_code == ErrorCode.INVALID_TRANSITION

    async def test_cancelled_entrant_can_rejoin(self, db, services, make_event):
        event = await make_event()
        entry_id = (await join_many(services, event.id, 1))[0]
        await services.waitlist.leave(entry_id)

        rejoined = (await services.waitlist.join(event.id, "user-0", "Entrant 0")).unwrap()

        assert rejoined == entry_id
        membership = (await services.waitlist.get_membership(event.id, "user-0")).unwrap()
        assert membership.status == WaitlistStatus.WAITING
        await assert_queue_matches_counter(db, event.id)

    async def test_join_leave_sequence_keeps_invariant(self, db, services, make_event):
        event = await make_event(capacity=3)
        entry_ids = await join_many(services, event.id, 6)
        await services.lottery.run_lottery(event.id, 2)

        for entry_id in entry_ids[::2]:
            await services.waitlist.leave(entry_id)
        await services.waitlist.join(event.id, "user-0", "Entrant 0")
        await services.waitlist.join(event.id, "newcomer", "Newcomer")

        await assert_queue_matches_counter(db, event.id)


class TestDirectSignUp:

    async def test_sign_up_direct_enrolls(self, db, services, make_event):
        event = await make_event(capacity=1)

        first = await services.waitlist.sign_up_direct(event.id, "alice", "Alice")
        second = await services.waitlist.sign_up_direct(event.id, "bob", "Bob")

        assert first.is_ok
        assert second.error_code == ErrorCode.CAPACITY_EXCEEDED
        assert (await load_event(db, event.id)).enrolled == 1

    async def test_sign_up_direct_twice_is_already_registered(self, services, make_event):
        event = await make_event(capacity=5)
        await services.waitlist.sign_up_direct(event.id, "alice", "Alice")

        result = await services.waitlist.sign_up_direct(event.id, "alice", "Alice")
        assert result.error_code == ErrorCode.ALREADY_REGISTERED


class TestRemoveChosenEntrant:

    async def test_removing_accepted_entrant_frees_spot(self, db, services, make_event):
        event = await make_event(capacity=2)
        entry_id = (await services.waitlist.sign_up_direct(event.id, "alice", "Alice")).unwrap()

        assert (await services.waitlist.remove_chosen_entrant(entry_id)).is_ok

        assert (await load_event(db, event.id)).enrolled == 0
        membership = (await services.waitlist.get_membership(event.id, "alice")).unwrap()
        assert membership.cancellation_reason == "Removed by organizer"

    async def test_removing_waiting_entrant_is_invalid(self, services, make_event):
        event = await make_event()
        entry_id = (await join_many(services, event.id, 1))[0]

        result = await services.waitlist.remove_chosen_entrant(entry_id)
        assert result.error_code == ErrorCode.INVALID_TRANSITION


class TestRenameAndPurge:

    async def test_rename_updates_entries_and_invitations(self, services, make_event):
        first = await make_event()
        second = await make_event(title="Pottery")
        await services.waitlist.join(first.id, "alice", "Alice")
        await services.waitlist.join(second.id, "alice", "Alice")
        draw = (await services.lottery.run_lottery(first.id, 1)).unwrap()

        renamed = (await services.waitlist.rename_entrant("alice", "  Alice Smith ")).unwrap()

        assert renamed == 2
        history = (await services.waitlist.get_user_history("alice")).unwrap()
        assert {entry.user_name for entry in history} == {"Alice Smith"}
        invitation = (await services.invitations.get_invitation(draw.invitations[0].id)).unwrap()
        assert invitation.user_display_name == "Alice Smith"

    async def test_rename_rejects_blank(self, services):
        result = await services.waitlist.rename_entrant("alice", "   ")
        assert result.error_code == ErrorCode.VALIDATION_ERROR

    async def test_purge_entrant_reconciles_counters(self, db, services, make_event):
        queued_event = await make_event()
        enrolled_event = await make_event(title="Pottery", capacity=3)
        await services.waitlist.join(queued_event.id, "alice", "Alice")
        await services.waitlist.sign_up_direct(enrolled_event.id, "alice", "Alice")

        assert (await services.waitlist.purge_entrant("alice")).unwrap() == 2

        assert (await load_event(db, queued_event.id)).waitlist_count == 0
        assert (await load_event(db, enrolled_event.id)).enrolled == 0
        assert (await services.waitlist.get_user_history("alice")).unwrap() == []

        # Purging again is a no-op
        assert (await services.waitlist.purge_entrant("alice")).unwrap() == 0

    async def test_purge_event_removes_entries_and_resets(self, db, services, make_event):
        event = await make_event(capacity=5)
        await join_many(services, event.id, 4)
        draw = (await services.lottery.run_lottery(event.id, 2)).unwrap()
        await services.invitations.accept(draw.invitations[0].id)

        assert (await services.waitlist.purge_event(event.id)).unwrap() == 4

        stored = await load_event(db, event.id)
        assert (stored.enrolled, stored.waitlist_count) == (0, 0)
        assert (await services.invitations.get_event_invitations(event.id)).unwrap() == []
        assert (await services.waitlist.purge_event(event.id)).unwrap() == 0


class TestQueries:

    async def test_waiting_entries_in_join_order(self, services, make_event):
        event = await make_event()
        await join_many(services, event.id, 4)

        waiting = (await services.waitlist.get_waiting_entries(event.id)).unwrap()

        assert [entry.user_id for entry in waiting] == ["user-0", "user-1", "user-2", "user-3"]
        assert [entry.position for entry in waiting] == [1, 2, 3, 4]

    async def test_chosen_and_accepted_entries(self, services, make_event):
        event = await make_event(capacity=5)
        await join_many(services, event.id, 5)
        draw = (await services.lottery.run_lottery(event.id, 3)).unwrap()
        await services.invitations.accept(draw.invitations[0].id)

        chosen = (await services.waitlist.get_chosen_entries(event.id)).unwrap()
        accepted = (await services.waitlist.get_accepted_entries(event.id)).unwrap()

        assert len(chosen) == 3
        assert [entry.user_id for entry in accepted] == [draw.invitations[0].user_id]

    async def test_decision_stats(self, services, make_event):
        event = await make_event(capacity=5)
        await join_many(services, event.id, 5)
        draw = (await services.lottery.run_lottery(event.id, 3)).unwrap()
        await services.invitations.accept(draw.invitations[0].id)
        await services.invitations.decline(draw.invitations[1].id)

        stats = (await services.waitlist.get_decision_stats(event.id)).unwrap()

        assert (stats.accepted, stats.pending, stats.declined, stats.waiting) == (1, 1, 1, 2)

    async def test_user_history_newest_event_first(self, services, make_event):
        soon = await make_event(title="Soon", event_date=datetime.now(timezone.utc) + timedelta(days=1))
        later = await make_event(title="Later", event_date=datetime.now(timezone.utc) + timedelta(days=60))
        await services.waitlist.join(soon.id, "alice", "Alice")
        await services.waitlist.join(later.id, "alice", "Alice")

        history = (await services.waitlist.get_user_history("alice")).unwrap()

        assert [entry.event.title for entry in history] == ["Later", "Soon"]


class TestBroadcast:

    async def test_broadcast_to_filtered_entrants(self, services, sender, make_event):
        event = await make_event(capacity=5)
        await join_many(services, event.id, 4)
        await services.lottery.run_lottery(event.id, 1)

        sent = (
            await services.waitlist.broadcast(
                event.id, "Venue change", "We moved to hall B", target_status=[WaitlistStatus.WAITING]
            )
        ).unwrap()

        assert sent == 3
        request = sender.by_category(NotificationCategory.ORGANIZER_UPDATE)[0]
        assert request.title == "Venue change"
        assert len(request.recipient_ids) == 3

    async def test_broadcast_requires_message(self, services, make_event):
        event = await make_event()
        result = await services.waitlist.broadcast(event.id, "Hello", " ")
        assert result.error_code == ErrorCode.VALIDATION_ERROR

    async def test_broadcast_rejects_overlong_title(self, services, sender, make_event):
        event = await make_event()
        await services.waitlist.join(event.id, "alice", "Alice")

        result = await services.waitlist.broadcast(event.id, "T" * 300, "hello")

        assert result.error_code == ErrorCode.VALIDATION_ERROR
        assert result.error.field == "title"
        assert sender.by_category(NotificationCategory.ORGANIZER_UPDATE) == []


class TestLegacyStatus:

    async def test_stored_selected_status_reads_as_invited(self, db, services, make_event):
        event = await make_event()
        await services.waitlist.join(event.id, "alice", "Alice")
        async with db.session() as session:
            await session.execute(
                text("UPDATE waitlist SET status = 'selected' WHERE user_id = :user_id"),
                {"user_id": "alice"},
            )

        membership = (await services.waitlist.get_membership(event.id, "alice")).unwrap()

        assert membership.status == WaitlistStatus.INVITED
