"""Tests for the trial expiration job."""

from datetime import timedelta

import pytest
from sqlalchemy import select

from taskmaster.billing.exceptions import FreePlanMissingError
from taskmaster.jobs.trial_expiration import run_trial_expiration
from taskmaster.models.notification import Notification
from taskmaster.models.profile import Profile
from taskmaster.models.subscription import STATUS_ACTIVE, STATUS_CANCELED, STATUS_TRIALING, Subscription
from taskmaster.notifications import templates
from taskmaster.notifications.dispatcher import DispatchResult


async def _reload(db, model, pk):
    return await db.get(model, pk, populate_existing=True)


async def _notifications(db, user_id) -> list[Notification]:
    result = await db.execute(select(Notification).where(Notification.user_id == user_id))
    return list(result.scalars().all())


class TestExpiredTrial:
    async def test_elapsed_trial_is_downgraded(self, db_session, plans, make_profile, make_subscription, dispatcher):
        profile = await make_profile(plan=plans["pro"])
        subscription = await make_subscription(profile, plans["pro"], ends_in=timedelta(days=-1))
        sub_id, user_id = subscription.id, profile.id
        free_id = plans["free"].id

        result = await run_trial_expiration(db_session, dispatcher=dispatcher)

        assert result.success is True
        assert result.processed == 1
        assert result.errors is None
        row = result.results[0]
        assert row.subscription_id == sub_id
        assert row.user_id == user_id
        assert row.action == "trial_expired"
        assert row.plan_name == "Pro"

        subscription = await _reload(db_session, Subscription, sub_id)
        assert subscription.status == STATUS_CANCELED
        assert subscription.plan_id == free_id
        assert subscription.canceled_at is not None
        profile = await _reload(db_session, Profile, user_id)
        assert profile.plan_id == free_id

        notifications = await _notifications(db_session, user_id)
        assert [n.title for n in notifications] == ["Trial Period Ended"]

    async def test_email_requested_after_downgrade(self, db_session, plans, make_profile, make_subscription, dispatcher):
        profile = await make_profile(plan=plans["pro"], locale="lt")
        await make_subscription(profile, plans["pro"])

        await run_trial_expiration(db_session, dispatcher=dispatcher)

        dispatcher.notify.assert_awaited_once()
        args, kwargs = dispatcher.notify.call_args
        assert args[0] == profile.id
        assert args[1] == templates.TRIAL_ENDED
        assert args[2] == "lt"
        assert args[3]["plan_name"] == "Pro"
        assert kwargs["to"] == profile.email

    async def test_second_run_is_a_no_op(self, db_session, plans, make_profile, make_subscription, dispatcher):
        profile = await make_profile(plan=plans["pro"])
        await make_subscription(profile, plans["pro"])

        first = await run_trial_expiration(db_session, dispatcher=dispatcher)
        second = await run_trial_expiration(db_session, dispatcher=dispatcher)

        assert first.processed == 1
        assert second.processed == 0
        assert second.results == []
        assert dispatcher.notify.await_count == 1
        assert len(await _notifications(db_session, profile.id)) == 1

    async def test_email_failure_is_not_a_row_error(self, db_session, plans, make_profile, make_subscription, dispatcher):
        dispatcher.notify.return_value = DispatchResult(success=False, error="Resend unavailable")
        profile = await make_profile(plan=plans["pro"])
        subscription = await make_subscription(profile, plans["pro"])
        sub_id = subscription.id

        result = await run_trial_expiration(db_session, dispatcher=dispatcher)

        assert result.errors is None
        assert result.results[0].details == "email not sent: Resend unavailable"
        subscription = await _reload(db_session, Subscription, sub_id)
        assert subscription.status == STATUS_CANCELED

    async def test_dispatcher_exception_is_contained(self, db_session, plans, make_profile, make_subscription, dispatcher):
        dispatcher.notify.side_effect = RuntimeError("socket closed")
        profile = await make_profile(plan=plans["pro"])
        await make_subscription(profile, plans["pro"])

        result = await run_trial_expiration(db_session, dispatcher=dispatcher)

        assert result.processed == 1
        assert result.errors is None
        assert "socket closed" in result.results[0].details


class TestSkippedRows:
    async def test_future_trial_untouched(self, db_session, plans, make_profile, make_subscription, dispatcher):
        profile = await make_profile(plan=plans["pro"])
        subscription = await make_subscription(profile, plans["pro"], ends_in=timedelta(days=2))
        sub_id = subscription.id

        result = await run_trial_expiration(db_session, dispatcher=dispatcher)

        assert result.processed == 0
        assert (await _reload(db_session, Subscription, sub_id)).status == STATUS_TRIALING
        dispatcher.notify.assert_not_awaited()

    async def test_processor_managed_trial_untouched(self, db_session, plans, make_profile, make_subscription, dispatcher):
        profile = await make_profile(plan=plans["pro"])
        subscription = await make_subscription(profile, plans["pro"], stripe_subscription_id="sub_managed")
        sub_id = subscription.id

        result = await run_trial_expiration(db_session, dispatcher=dispatcher)

        assert result.processed == 0
        assert (await _reload(db_session, Subscription, sub_id)).status == STATUS_TRIALING

    async def test_elapsed_active_subscription_is_not_a_trial(self, db_session, plans, make_profile, make_subscription, dispatcher):
        profile = await make_profile(plan=plans["pro"])
        subscription = await make_subscription(profile, plans["pro"], status=STATUS_ACTIVE)
        sub_id = subscription.id

        result = await run_trial_expiration(db_session, dispatcher=dispatcher)

        assert result.processed == 0
        assert (await _reload(db_session, Subscription, sub_id)).status == STATUS_ACTIVE


class TestMisconfiguredCatalog:
    async def test_missing_free_plan_aborts_before_any_write(self, db_session, plans, make_profile, make_subscription, dispatcher):
        profile = await make_profile(plan=plans["pro"])
        subscription = await make_subscription(profile, plans["pro"])
        sub_id = subscription.id
        plans["free"].is_active = False
        await db_session.commit()

        with pytest.raises(FreePlanMissingError):
            await run_trial_expiration(db_session, dispatcher=dispatcher)

        assert (await _reload(db_session, Subscription, sub_id)).status == STATUS_TRIALING
        dispatcher.notify.assert_not_awaited()
