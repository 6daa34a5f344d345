"""
Integration tests for the daily rollover and auto-resume sweeps.

The clock starts on Tuesday 2026-01-13; sample subscriptions pick up on
Wednesdays, so most tests move the clock to Wednesday 2026-01-14.
"""

from datetime import date, datetime, timezone
from unittest.mock import patch

import pytest

from subscribe_save.domain import pickup as pickup_domain
from subscribe_save.domain.events import EventType
from subscribe_save.domain.pickup import PickupStatus
from subscribe_save.domain.subscription import SubscriptionStatus
from subscribe_save.infrastructure.db.database import get_session_context
from subscribe_save.infrastructure.db.models import PickupInstanceModel
from subscribe_save.infrastructure.db.repositories.pickup_repository import PickupRepository
from subscribe_save.infrastructure.services.rollover_service import RolloverService


SHOP = "test-shop.myshopify.com"
WEDNESDAY_MORNING = datetime(2026, 1, 14, 10, 0, tzinfo=timezone.utc)  # 02:00 in LA


@pytest.fixture
def service(session_factory, clock, dispatcher, test_settings):
    return RolloverService(
        session_factory=session_factory,
        clock=clock,
        dispatcher=dispatcher,
        settings=test_settings,
    )


@pytest.fixture
def pickups_for(session_factory):
    async def _pickups(subscription_id):
        async with get_session_context(session_factory) as session:
            return await PickupRepository(session).list_for_subscription(subscription_id)
    return _pickups


class TestDailyRollover:

    @pytest.mark.asyncio
    async def test_due_subscription_is_materialized_and_advanced(
        self, service, seed, make_subscription, load, pickups_for, now, dispatcher
    ):
        now.set(WEDNESDAY_MORNING)
        sub = await seed(make_subscription())

        result = await service.run_daily_rollover(SHOP)

        assert (result.processed, result.created, result.errors) == (1, 1, [])

        pickups = await pickups_for(sub.id)
        assert len(pickups) == 1
        assert pickups[0].pickup_date == date(2026, 1, 14)
        assert pickups[0].status == PickupStatus.SCHEDULED
        assert pickups[0].time_slot == "12:00 PM - 2:00 PM"

        advanced = await load(sub.id)
        assert advanced.next_pickup_date == date(2026, 1, 21)
        assert advanced.next_billing_date == datetime(2026, 1, 18, 7, 0, tzinfo=timezone.utc)

        dispatched = dispatcher.dispatch.await_args.args[0]
        assert dispatched[0].type == EventType.PICKUP_CREATED
        assert dispatched[0].pickup_id == pickups[0].id

    @pytest.mark.asyncio
    async def test_second_run_same_day_creates_nothing(
        self, service, seed, make_subscription, pickups_for, now, count_rows
    ):
        now.set(WEDNESDAY_MORNING)
        sub = await seed(make_subscription())

        await service.run_daily_rollover(SHOP)
        second = await service.run_daily_rollover(SHOP)

        assert (second.processed, second.created) == (0, 0)
        assert len(await pickups_for(sub.id)) == 1
        assert await count_rows(PickupInstanceModel) == 1

    @pytest.mark.asyncio
    async def test_not_yet_due_is_skipped(self, service, seed, make_subscription, count_rows):
        await seed(make_subscription())  # due tomorrow

        result = await service.run_daily_rollover(SHOP)

        assert result.processed == 0
        assert await count_rows(PickupInstanceModel) == 0

    @pytest.mark.asyncio
    async def test_paused_and_cancelled_are_skipped(
        self, service, seed, make_subscription, now, count_rows
    ):
        now.set(WEDNESDAY_MORNING)
        await seed(make_subscription(
            external_contract_id="c-paused", status=SubscriptionStatus.PAUSED,
        ))
        await seed(make_subscription(
            external_contract_id="c-cancelled", status=SubscriptionStatus.CANCELLED,
        ))

        result = await service.run_daily_rollover(SHOP)

        assert result.processed == 0
        assert await count_rows(PickupInstanceModel) == 0

    @pytest.mark.asyncio
    async def test_one_time_override_is_consumed(
        self, service, seed, make_subscription, load, pickups_for, now
    ):
        now.set(datetime(2026, 1, 15, 10, 0, tzinfo=timezone.utc))  # Thursday 02:00 LA
        sub = await seed(make_subscription(
            next_pickup_date=date(2026, 1, 15),
            one_time_reschedule_date=date(2026, 1, 15),
            one_time_reschedule_time_slot="3:00 PM - 5:00 PM",
            one_time_reschedule_reason="dentist",
        ))

        await service.run_daily_rollover(SHOP)

        pickup = (await pickups_for(sub.id))[0]
        assert pickup.pickup_date == date(2026, 1, 15)
        assert pickup.time_slot == "3:00 PM - 5:00 PM"
        assert pickup.notes == "One-time reschedule: dentist"

        advanced = await load(sub.id)
        assert advanced.one_time_reschedule_date is None
        assert advanced.next_pickup_date == date(2026, 1, 28)

    @pytest.mark.asyncio
    async def test_missed_days_catch_up(self, service, seed, make_subscription, load, now):
        now.set(datetime(2026, 1, 28, 10, 0, tzinfo=timezone.utc))
        sub = await seed(make_subscription(next_pickup_date=date(2026, 1, 7)))

        result = await service.run_daily_rollover(SHOP)

        assert result.created == 1
        assert (await load(sub.id)).next_pickup_date == date(2026, 2, 4)

    @pytest.mark.asyncio
    async def test_one_failure_does_not_stop_the_batch(
        self, service, seed, make_subscription, load, now
    ):
        now.set(WEDNESDAY_MORNING)
        broken = await seed(make_subscription(external_contract_id="c-broken"))
        healthy = await seed(make_subscription(external_contract_id="c-healthy"))

        real_materialize = pickup_domain.materialize

        def flaky_materialize(subscription, created_at):
            if subscription.id == broken.id:
                raise RuntimeError("boom")
            return real_materialize(subscription, created_at)

        with patch(
            "subscribe_save.infrastructure.services.rollover_service.materialize",
            side_effect=flaky_materialize,
        ):
            result = await service.run_daily_rollover(SHOP)

        assert result.processed == 2
        assert result.created == 1
        assert [e.subscription_id for e in result.errors] == [broken.id]
        assert "boom" in result.errors[0].message

        # The failed one is untouched and will be retried next run
        assert (await load(broken.id)).next_pickup_date == date(2026, 1, 14)
        assert (await load(healthy.id)).next_pickup_date == date(2026, 1, 21)

    @pytest.mark.asyncio
    async def test_only_requested_shop(self, service, seed, make_subscription, now, count_rows):
        now.set(WEDNESDAY_MORNING)
        await seed(make_subscription(shop="other-shop.myshopify.com"))

        result = await service.run_daily_rollover(SHOP)

        assert result.processed == 0
        assert await count_rows(PickupInstanceModel) == 0


class TestAutoResume:

    @pytest.mark.asyncio
    async def test_elapsed_pause_is_resumed(self, service, seed, make_subscription, load):
        sub = await seed(make_subscription(
            status=SubscriptionStatus.PAUSED,
            paused_until=date(2026, 1, 13),
            pause_reason="Customer paused: vacation",
            next_pickup_date=date(2026, 1, 7),
        ))

        resumed = await service.run_auto_resume_sweep(SHOP)

        assert resumed == 1
        sub = await load(sub.id)
        assert sub.status == SubscriptionStatus.ACTIVE
        assert sub.paused_until is None
        assert sub.next_pickup_date == date(2026, 1, 14)
        assert sub.admin_notes[-1].message == "System resumed: pause period ended"

    @pytest.mark.asyncio
    async def test_future_pause_is_left_alone(self, service, seed, make_subscription, load):
        sub = await seed(make_subscription(
            status=SubscriptionStatus.PAUSED,
            paused_until=date(2026, 1, 20),
        ))

        assert await service.run_auto_resume_sweep(SHOP) == 0
        assert (await load(sub.id)).status == SubscriptionStatus.PAUSED

    @pytest.mark.asyncio
    async def test_billing_failure_pause_needs_staff(self, service, seed, make_subscription, load):
        sub = await seed(make_subscription(
            status=SubscriptionStatus.PAUSED,
            paused_until=date(2026, 1, 10),
            pause_reason="Billing failed 3 times: card_declined",
            billing_failure_count=3,
        ))

        assert await service.run_auto_resume_sweep(SHOP) == 0
        assert (await load(sub.id)).status == SubscriptionStatus.PAUSED


class TestAllShops:

    @pytest.mark.asyncio
    async def test_sweeps_every_shop(self, service, seed, make_subscription, now):
        now.set(WEDNESDAY_MORNING)
        await seed(make_subscription(external_contract_id="a"))
        await seed(make_subscription(shop="other-shop.myshopify.com", external_contract_id="b"))
        await seed(make_subscription(
            shop="paused-shop.myshopify.com",
            external_contract_id="c",
            status=SubscriptionStatus.PAUSED,
            paused_until=date(2026, 1, 14),
        ))

        results = await service.run_all_shops()

        by_shop = {r.shop: r for r in results}
        assert set(by_shop) == {
            SHOP,
            "other-shop.myshopify.com",
            "paused-shop.myshopify.com",
        }
        assert by_shop[SHOP].created == 1
        assert by_shop["other-shop.myshopify.com"].created == 1
        assert by_shop["paused-shop.myshopify.com"].resumed == 1

