"""Tests for the expiry reminder job."""

from datetime import timedelta

from sqlalchemy import select

from taskmaster.database import utcnow
from taskmaster.jobs.reminders import days_left, run_expiry_reminders, start_of_day
from taskmaster.models.notification import Notification
from taskmaster.models.subscription import STATUS_ACTIVE, STATUS_CANCELED, STATUS_TRIALING, Subscription
from taskmaster.notifications import templates


async def _reload(db, pk) -> Subscription:
    return await db.get(Subscription, pk, populate_existing=True)


async def _titles(db, user_id) -> list[str]:
    result = await db.execute(select(Notification.title).where(Notification.user_id == user_id))
    return list(result.scalars().all())


class TestWindows:
    def test_days_left(self):
        now = utcnow()
        assert days_left(now + timedelta(hours=2), now) == 1
        assert days_left(now + timedelta(hours=24), now) == 1
        assert days_left(now + timedelta(hours=25), now) == 3
        assert days_left(now + timedelta(hours=72), now) == 3

    def test_start_of_day(self):
        now = utcnow()
        day = start_of_day(now)
        assert day.date() == now.date()
        assert (day.hour, day.minute, day.second, day.microsecond) == (0, 0, 0, 0)


class TestReminders:
    async def test_one_and_three_day_reminders(self, db_session, plans, make_profile, make_subscription, dispatcher):
        trial_user = await make_profile(plan=plans["pro"])
        paying_user = await make_profile(plan=plans["business"], stripe_customer_id="cus_123")
        trial = await make_subscription(trial_user, plans["pro"], ends_in=timedelta(hours=12))
        paid = await make_subscription(
            paying_user, plans["business"], status=STATUS_ACTIVE, ends_in=timedelta(hours=48)
        )
        trial_id, paid_id = trial.id, paid.id
        trial_user_id, paying_user_id = trial_user.id, paying_user.id
        now = utcnow()

        result = await run_expiry_reminders(db_session, now=now, dispatcher=dispatcher)

        assert result.processed == 2
        assert result.errors is None
        by_sub = {r.subscription_id: r for r in result.results}
        assert by_sub[trial_id].action == "reminder_sent"
        assert by_sub[trial_id].details == "1 days left, no payment method"
        assert by_sub[paid_id].details == "3 days left, will auto-renew"

        assert await _titles(db_session, trial_user_id) == ["Trial ending in 1 day(s)"]
        assert await _titles(db_session, paying_user_id) == ["Subscription ending in 3 day(s)"]

        trial = await _reload(db_session, trial_id)
        assert trial.status == STATUS_TRIALING
        assert trial.plan_id == plans["pro"].id
        assert trial.last_reminder_sent_at == now

        kinds = {call.args[1]: call.args[3] for call in dispatcher.notify.call_args_list}
        assert kinds[templates.TRIAL_ENDING_SOON]["days_left"] == 1
        assert kinds[templates.TRIAL_ENDING_SOON]["is_trial"] is True
        assert kinds[templates.SUBSCRIPTION_EXPIRING_SOON]["days_left"] == 3
        assert kinds[templates.SUBSCRIPTION_EXPIRING_SOON]["has_payment_method"] is True

    async def test_canceled_subscription_with_card_is_not_told_it_renews(
        self, db_session, plans, make_profile, make_subscription, dispatcher
    ):
        profile = await make_profile(plan=plans["business"], stripe_customer_id="cus_123")
        subscription = await make_subscription(
            profile,
            plans["business"],
            status=STATUS_ACTIVE,
            ends_in=timedelta(hours=30),
            cancel_at_period_end=True,
        )
        sub_id, user_id = subscription.id, profile.id

        result = await run_expiry_reminders(db_session, dispatcher=dispatcher)

        assert result.results[0].subscription_id == sub_id
        assert result.results[0].details == "3 days left, canceled at period end"
        bodies = await db_session.execute(select(Notification.body).where(Notification.user_id == user_id))
        assert bodies.scalars().all() == ["Canceled: you will be moved to the free plan when this period ends."]
        email_args = dispatcher.notify.call_args.args[3]
        assert email_args["cancel_at_period_end"] is True
        assert email_args["has_payment_method"] is True
        email = templates.render(templates.SUBSCRIPTION_EXPIRING_SOON, "en", email_args)
        assert "will not renew" in email.html
        assert "charged automatically" not in email.html

    async def test_same_day_rerun_sends_nothing(self, db_session, plans, make_profile, make_subscription, dispatcher):
        profile = await make_profile(plan=plans["pro"])
        now = start_of_day(utcnow()) + timedelta(hours=12)
        await make_subscription(profile, plans["pro"], period_end=now + timedelta(hours=40))

        first = await run_expiry_reminders(db_session, now=now, dispatcher=dispatcher)
        second = await run_expiry_reminders(db_session, now=now + timedelta(minutes=5), dispatcher=dispatcher)

        assert first.processed == 1
        assert second.processed == 0
        assert dispatcher.notify.await_count == 1

    async def test_next_day_sends_the_one_day_reminder(self, db_session, plans, make_profile, make_subscription, dispatcher):
        profile = await make_profile(plan=plans["pro"])
        await make_subscription(profile, plans["pro"], ends_in=timedelta(hours=47))
        now = utcnow()

        first = await run_expiry_reminders(db_session, now=now, dispatcher=dispatcher)
        second = await run_expiry_reminders(db_session, now=now + timedelta(days=1), dispatcher=dispatcher)

        assert first.results[0].details.startswith("3 days left")
        assert second.results[0].details.startswith("1 days left")

    async def test_rows_outside_the_window_are_ignored(self, db_session, plans, make_profile, make_subscription, dispatcher):
        far_off, canceled, elapsed, managed = [await make_profile(plan=plans["pro"]) for _ in range(4)]
        await make_subscription(far_off, plans["pro"], ends_in=timedelta(days=5))
        await make_subscription(canceled, plans["pro"], status=STATUS_CANCELED, ends_in=timedelta(hours=10))
        await make_subscription(elapsed, plans["pro"], ends_in=timedelta(hours=-2))
        await make_subscription(
            managed, plans["pro"], status=STATUS_ACTIVE, ends_in=timedelta(hours=10), stripe_subscription_id="sub_x"
        )

        result = await run_expiry_reminders(db_session, dispatcher=dispatcher)

        assert result.processed == 0
        dispatcher.notify.assert_not_awaited()

    async def test_reminder_sent_yesterday_does_not_suppress(self, db_session, plans, make_profile, make_subscription, dispatcher):
        now = utcnow()
        profile = await make_profile(plan=plans["pro"])
        await make_subscription(
            profile,
            plans["pro"],
            ends_in=timedelta(hours=10),
            last_reminder_sent_at=start_of_day(now) - timedelta(hours=1),
        )

        result = await run_expiry_reminders(db_session, now=now, dispatcher=dispatcher)

        assert result.processed == 1
