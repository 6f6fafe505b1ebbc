"""Tests for the scheduled invitation sweep."""
from datetime import timedelta

from lottery_enrollment.models import InvitationStatus
from lottery_enrollment.models.base import utcnow
from lottery_enrollment.tasks.celery_app import celery_app
from lottery_enrollment.tasks.invitation_tasks import expire_and_backfill
from tests.conftest import join_many


class TestExpireAndBackfill:

    async def test_sweep_without_backfill(self, services, make_event):
        event = await make_event(capacity=2)
        await join_many(services, event.id, 4)
        await services.lottery.run_lottery(event.id, 2)

        summary = await expire_and_backfill(services, now=utcnow() + timedelta(days=2))

        assert summary == {"status": "ok", "events": {str(event.id): {"expired": 2}}}

    async def test_sweep_with_backfill_draws_new_wave(self, services, make_event):
        event = await make_event(capacity=2)
        await join_many(services, event.id, 4)
        await services.lottery.run_lottery(event.id, 2)

        summary = await expire_and_backfill(services, now=utcnow() + timedelta(days=2), backfill=True)

        assert summary["events"][str(event.id)] == {"expired": 2, "backfilled": 2}
        second_wave = (await services.invitations.get_event_invitations(event.id, draw_wave=2)).unwrap()
        assert {invitation.status for invitation in second_wave} == {InvitationStatus.PENDING}

    def test_beat_schedule_runs_the_sweep(self):
        schedule = celery_app.conf.beat_schedule["expire-overdue-invitations"]
        assert schedule["task"] == "expire_overdue_invitations_task"
