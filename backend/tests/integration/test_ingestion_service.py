"""
Integration tests for subscription ingestion.

Verifies:
- Order and contract events create a fully scheduled subscription
- Replays are inert (one subscription, one processed marker)
- Order/contract reconciliation in either arrival order
- Malformed payloads leave nothing behind
- A failed unit of work leaves no processed marker
- Checkout pickups, order cancellation and upstream contract status
- Plan lookup and its fallback
"""

from datetime import date, datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch
from uuid import uuid4

import pytest

from subscribe_save.domain.events import EventType
from subscribe_save.domain.pickup import PickupStatus
from subscribe_save.domain.subscription import (
    CustomerInfo,
    Frequency,
    SubscriptionSource,
    SubscriptionStatus,
)
from subscribe_save.infrastructure.db.database import get_session_context
from subscribe_save.infrastructure.db.models import (
    IngestionEventModel,
    PickupInstanceModel,
    SubscriptionModel,
    SubscriptionPlanCreate,
)
from subscribe_save.infrastructure.db.repositories.ingestion_event_repository import (
    IngestionEventRepository,
)
from subscribe_save.infrastructure.db.repositories.pickup_repository import PickupRepository
from subscribe_save.infrastructure.db.repositories.plan_repository import (
    SubscriptionPlanRepository,
)
from subscribe_save.infrastructure.db.repositories.subscription_repository import (
    SubscriptionRepository,
)
from subscribe_save.infrastructure.exceptions import ValidationError
from subscribe_save.infrastructure.services.ingestion_service import (
    ORDER_CREATED_TOPIC,
    CheckoutPickup,
    IngestionOutcome,
    IngestionService,
)
from subscribe_save.infrastructure.services.plan_lookup_service import PlanLookupService


SHOP = "test-shop.myshopify.com"
ORDER_ID = "gid://shopify/Order/1001"
CONTRACT_ID = "gid://shopify/SubscriptionContract/2002"
JANE = CustomerInfo(email="Jane@Example.com", name="Jane Doe", phone="+15555550100")


@pytest.fixture
def service(session_factory, clock, dispatcher, test_settings):
    return IngestionService(
        session_factory=session_factory,
        clock=clock,
        plan_lookup=PlanLookupService(session_factory, test_settings),
        dispatcher=dispatcher,
        settings=test_settings,
    )


async def ingest_order(service, order_id=ORDER_ID, customer=JANE, interval=1, **kwargs):
    return await service.create_subscription_from_order_event(
        shop=SHOP,
        order_id=order_id,
        customer=customer,
        billing_interval_count=interval,
        preferred_day=kwargs.pop("preferred_day", 3),
        preferred_time_slot=kwargs.pop("preferred_time_slot", "12:00 PM - 2:00 PM"),
        product_label=kwargs.pop("product_label", "Sourdough Loaf"),
        **kwargs,
    )


async def ingest_contract(service, contract_id=CONTRACT_ID, customer=JANE, interval=1, **kwargs):
    return await service.create_subscription_from_contract_event(
        shop=SHOP,
        contract_id=contract_id,
        customer=customer,
        billing_interval_count=interval,
        **kwargs,
    )


class TestOrderIngestion:

    @pytest.mark.asyncio
    async def test_creates_scheduled_subscription(self, service, load, dispatcher):
        result = await ingest_order(service)
        assert result.outcome == IngestionOutcome.CREATED

        sub = await load(result.subscription_id)
        assert sub.status == SubscriptionStatus.ACTIVE
        assert sub.source == SubscriptionSource.ORDER
        assert sub.customer_email == "jane@example.com"
        assert sub.external_contract_id == ORDER_ID
        assert sub.origin_order_id == ORDER_ID
        assert sub.frequency == Frequency.WEEKLY
        assert sub.discount_percent == 10.0
        assert sub.billing_lead_hours == 85
        assert sub.next_pickup_date == date(2026, 1, 14)
        assert sub.next_billing_date == datetime(2026, 1, 11, 7, 0, tzinfo=timezone.utc)
        assert sub.product_label == "Sourdough Loaf"
        assert len(sub.admin_notes) == 1

        dispatched = dispatcher.dispatch.await_args.args[0]
        assert [e.type for e in dispatched] == [EventType.SUBSCRIPTION_CREATED]

    @pytest.mark.asyncio
    async def test_replay_is_inert(self, service, count_rows, dispatcher):
        first = await ingest_order(service)
        second = await ingest_order(service)

        assert second.outcome == IngestionOutcome.ALREADY_PROCESSED
        assert second.subscription_id == first.subscription_id
        assert await count_rows(SubscriptionModel) == 1
        assert await count_rows(IngestionEventModel) == 1
        assert dispatcher.dispatch.await_count == 1

    @pytest.mark.asyncio
    async def test_defaults_for_missing_preferences(self, service, load):
        result = await service.create_subscription_from_order_event(
            shop=SHOP,
            order_id=ORDER_ID,
            customer=JANE,
            billing_interval_count=2,
        )
        sub = await load(result.subscription_id)

        assert sub.preferred_day == 2
        assert sub.preferred_time_slot == "12:00 PM - 2:00 PM"
        assert sub.frequency == Frequency.BIWEEKLY
        assert sub.discount_percent == 5.0
        # Same weekday as today, biweekly: a week out
        assert sub.next_pickup_date == date(2026, 1, 20)

    @pytest.mark.asyncio
    async def test_unknown_interval_defaults_to_weekly(self, service, load):
        result = await ingest_order(service, interval=5)
        sub = await load(result.subscription_id)
        assert sub.frequency == Frequency.WEEKLY

    @pytest.mark.asyncio
    async def test_invalid_preferred_day_uses_default(self, service, load):
        result = await ingest_order(service, preferred_day=9)
        sub = await load(result.subscription_id)
        assert sub.preferred_day == 2

    @pytest.mark.asyncio
    async def test_missing_email_writes_nothing(self, service, count_rows):
        with pytest.raises(ValidationError) as exc_info:
            await ingest_order(service, customer=CustomerInfo(email=None))

        assert exc_info.value.details["missing"] == ["customer_email"]
        assert await count_rows(SubscriptionModel) == 0
        assert await count_rows(IngestionEventModel) == 0

    @pytest.mark.asyncio
    async def test_missing_order_id(self, service):
        with pytest.raises(ValidationError):
            await ingest_order(service, order_id=None)


class TestReconciliation:
    """Order and contract events for the same subscription."""

    @pytest.mark.asyncio
    async def test_contract_adopts_recent_order_record(self, service, load, count_rows):
        order = await ingest_order(service)
        contract = await ingest_contract(service)

        assert contract.outcome == IngestionOutcome.MATCHED
        assert contract.subscription_id == order.subscription_id
        assert await count_rows(SubscriptionModel) == 1

        sub = await load(order.subscription_id)
        assert sub.external_contract_id == CONTRACT_ID
        assert sub.origin_order_id == ORDER_ID
        assert sub.admin_notes[-1].message == f"Linked to subscription contract {CONTRACT_ID}"

    @pytest.mark.asyncio
    async def test_contract_outside_window_creates_new_record(self, service, now, count_rows):
        await ingest_order(service)
        now.set(now() + timedelta(minutes=10))

        contract = await ingest_contract(service)

        assert contract.outcome == IngestionOutcome.CREATED
        assert await count_rows(SubscriptionModel) == 2

    @pytest.mark.asyncio
    async def test_origin_order_matches_outside_window(self, service, now, count_rows):
        order = await ingest_order(service)
        now.set(now() + timedelta(hours=2))

        contract = await ingest_contract(service, origin_order_id=ORDER_ID)

        assert contract.outcome == IngestionOutcome.MATCHED
        assert contract.subscription_id == order.subscription_id
        assert await count_rows(SubscriptionModel) == 1

    @pytest.mark.asyncio
    async def test_different_customer_is_not_matched(self, service, count_rows):
        await ingest_order(service)
        result = await ingest_contract(service, customer=CustomerInfo(email="bob@example.com"))

        assert result.outcome == IngestionOutcome.CREATED
        assert await count_rows(SubscriptionModel) == 2

    @pytest.mark.asyncio
    async def test_order_after_contract_is_linked(self, service, load, count_rows, dispatcher):
        contract = await ingest_contract(service, preferred_day=4)
        order = await ingest_order(service, product_label="Rye Loaf")

        assert order.outcome == IngestionOutcome.MATCHED
        assert order.subscription_id == contract.subscription_id
        assert await count_rows(SubscriptionModel) == 1

        sub = await load(contract.subscription_id)
        assert sub.source == SubscriptionSource.CONTRACT
        assert sub.external_contract_id == CONTRACT_ID
        assert sub.origin_order_id == ORDER_ID
        assert sub.product_label == "Rye Loaf"
        # The contract's schedule wins
        assert sub.preferred_day == 4

        dispatched = dispatcher.dispatch.await_args.args[0]
        assert [e.type for e in dispatched] == [EventType.SUBSCRIPTION_LINKED]

    @pytest.mark.asyncio
    async def test_order_fills_in_defaulted_contract_schedule(self, service, load, dispatcher):
        contract = await ingest_contract(service)  # no day or slot on the contract
        sub = await load(contract.subscription_id)
        assert (sub.preferred_day, sub.next_pickup_date) == (2, date(2026, 1, 20))
        assert sub.preferred_day_defaulted and sub.time_slot_defaulted

        order = await ingest_order(
            service, preferred_day=5, preferred_time_slot="4:00 PM - 6:00 PM"
        )

        assert order.outcome == IngestionOutcome.MATCHED
        sub = await load(contract.subscription_id)
        assert sub.preferred_day == 5
        assert sub.preferred_time_slot == "4:00 PM - 6:00 PM"
        assert sub.preferred_time_slot_start == "16:00"
        assert sub.next_pickup_date == date(2026, 1, 16)
        assert not sub.preferred_day_defaulted
        assert not sub.time_slot_defaulted

        dispatched = dispatcher.dispatch.await_args.args[0]
        assert [e.type for e in dispatched] == [
            EventType.SUBSCRIPTION_LINKED,
            EventType.SUBSCRIPTION_RESCHEDULED,
        ]

    @pytest.mark.asyncio
    async def test_order_fills_in_only_the_defaulted_slot(self, service, load):
        contract = await ingest_contract(service, preferred_day=4)

        await ingest_order(service, preferred_day=1, preferred_time_slot="4:00 PM - 6:00 PM")

        sub = await load(contract.subscription_id)
        assert sub.preferred_day == 4
        assert sub.preferred_time_slot == "4:00 PM - 6:00 PM"

    @pytest.mark.asyncio
    async def test_order_named_by_contract_origin(self, service, now, count_rows):
        contract = await ingest_contract(service, origin_order_id=ORDER_ID)
        now.set(now() + timedelta(hours=1))

        order = await ingest_order(service)

        assert order.outcome == IngestionOutcome.MATCHED
        assert order.subscription_id == contract.subscription_id
        assert await count_rows(SubscriptionModel) == 1

    @pytest.mark.asyncio
    async def test_contract_replay(self, service, count_rows):
        first = await ingest_contract(service)
        second = await ingest_contract(service)

        assert second.outcome == IngestionOutcome.ALREADY_PROCESSED
        assert second.subscription_id == first.subscription_id
        assert await count_rows(SubscriptionModel) == 1


@pytest.fixture
def order_pickup(session_factory):
    async def _get(order_id=ORDER_ID):
        async with get_session_context(session_factory) as session:
            return await PickupRepository(session).get_by_order_id(SHOP, order_id)
    return _get


WEDNESDAY_PICKUP = CheckoutPickup(date(2026, 1, 14), "12:00 PM - 2:00 PM", "#1001")


class TestCheckoutPickup:

    @pytest.mark.asyncio
    async def test_subscription_order_books_linked_pickup(
        self, service, load, order_pickup, count_rows, dispatcher
    ):
        result = await ingest_order(service, checkout=WEDNESDAY_PICKUP)

        assert result.outcome == IngestionOutcome.CREATED
        assert await count_rows(PickupInstanceModel) == 1

        pickup = await order_pickup()
        assert pickup.id == result.pickup_id
        assert pickup.subscription_id == result.subscription_id
        assert pickup.status == PickupStatus.SCHEDULED
        assert pickup.pickup_date == date(2026, 1, 14)
        assert pickup.order_reference == "#1001"
        assert pickup.customer_email == "jane@example.com"

        # The booked Wednesday is not materialized again by the rollover
        sub = await load(result.subscription_id)
        assert sub.next_pickup_date == date(2026, 1, 21)
        assert sub.next_billing_date == datetime(2026, 1, 18, 7, 0, tzinfo=timezone.utc)

        dispatched = dispatcher.dispatch.await_args.args[0]
        assert [e.type for e in dispatched] == [
            EventType.SUBSCRIPTION_CREATED,
            EventType.PICKUP_CREATED,
            EventType.SUBSCRIPTION_ADVANCED,
        ]

    @pytest.mark.asyncio
    async def test_booking_before_next_pickup_leaves_schedule(self, service, load, dispatcher):
        result = await ingest_order(service, preferred_day=5, checkout=WEDNESDAY_PICKUP)

        sub = await load(result.subscription_id)
        assert sub.next_pickup_date == date(2026, 1, 16)
        dispatched = dispatcher.dispatch.await_args.args[0]
        assert EventType.SUBSCRIPTION_ADVANCED not in [e.type for e in dispatched]

    @pytest.mark.asyncio
    async def test_redelivery_books_once(self, service, count_rows):
        await ingest_order(service, checkout=WEDNESDAY_PICKUP)
        await ingest_order(service, checkout=WEDNESDAY_PICKUP, event_id="delivery-2")

        assert await count_rows(PickupInstanceModel) == 1
        assert await count_rows(SubscriptionModel) == 1

    @pytest.mark.asyncio
    async def test_one_off_order_books_unlinked_pickup(self, service, order_pickup, count_rows):
        result = await service.record_order_pickup(
            shop=SHOP,
            order_id=ORDER_ID,
            customer=JANE,
            checkout=CheckoutPickup(date(2026, 1, 16), "3:00 PM - 5:00 PM"),
        )

        assert result.outcome == IngestionOutcome.CREATED
        assert result.subscription_id is None
        assert await count_rows(SubscriptionModel) == 0
        assert await count_rows(IngestionEventModel) == 1

        pickup = await order_pickup()
        assert pickup.subscription_id is None
        assert pickup.time_slot == "3:00 PM - 5:00 PM"
        assert pickup.order_reference.startswith("SUB-")

    @pytest.mark.asyncio
    async def test_one_off_order_needs_a_slot(self, service, count_rows):
        with pytest.raises(ValidationError):
            await service.record_order_pickup(
                shop=SHOP,
                order_id=ORDER_ID,
                customer=JANE,
                checkout=CheckoutPickup(date(2026, 1, 16)),
            )
        assert await count_rows(PickupInstanceModel) == 0


class TestOrderCancelled:

    @pytest.mark.asyncio
    async def test_cancels_booked_pickup(self, service, order_pickup, dispatcher):
        booked = await ingest_order(service, checkout=WEDNESDAY_PICKUP)

        result = await service.cancel_order_pickup(SHOP, ORDER_ID)

        assert result.outcome == IngestionOutcome.UPDATED
        assert result.pickup_id == booked.pickup_id
        pickup = await order_pickup()
        assert pickup.status == PickupStatus.CANCELLED
        assert pickup.notes == "Order cancelled"

        dispatched = dispatcher.dispatch.await_args.args[0]
        assert [e.type for e in dispatched] == [EventType.PICKUP_CANCELLED]

    @pytest.mark.asyncio
    async def test_replay_and_terminal_pickup(self, service):
        await ingest_order(service, checkout=WEDNESDAY_PICKUP)
        await service.cancel_order_pickup(SHOP, ORDER_ID)

        replay = await service.cancel_order_pickup(SHOP, ORDER_ID)
        assert replay.outcome == IngestionOutcome.ALREADY_PROCESSED

        again = await service.cancel_order_pickup(SHOP, ORDER_ID, event_id="delivery-2")
        assert again.outcome == IngestionOutcome.IGNORED

    @pytest.mark.asyncio
    async def test_unknown_order_is_ignored(self, service, count_rows, dispatcher):
        result = await service.cancel_order_pickup(SHOP, "gid://shopify/Order/404")

        assert result.outcome == IngestionOutcome.IGNORED
        assert await count_rows(IngestionEventModel) == 1
        assert dispatcher.dispatch.await_args.args[0] == []


class TestContractStatus:

    @pytest.mark.asyncio
    async def test_pause_then_reactivate(self, service, load, dispatcher):
        created = await ingest_contract(service)

        paused = await service.apply_contract_status(SHOP, CONTRACT_ID, "PAUSED", event_id="w-1")

        assert paused.outcome == IngestionOutcome.UPDATED
        sub = await load(created.subscription_id)
        assert sub.status == SubscriptionStatus.PAUSED
        assert sub.pause_reason == "System paused: contract paused upstream"
        dispatched = dispatcher.dispatch.await_args.args[0]
        assert [e.type for e in dispatched] == [EventType.SUBSCRIPTION_PAUSED]

        resumed = await service.apply_contract_status(SHOP, CONTRACT_ID, "active", event_id="w-2")

        assert resumed.outcome == IngestionOutcome.UPDATED
        sub = await load(created.subscription_id)
        assert sub.status == SubscriptionStatus.ACTIVE
        assert sub.next_pickup_date == date(2026, 1, 20)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("upstream", ["CANCELLED", "EXPIRED", "FAILED"])
    async def test_terminal_upstream_cancels(self, service, load, upstream):
        created = await ingest_contract(service)

        result = await service.apply_contract_status(SHOP, CONTRACT_ID, upstream)

        assert result.outcome == IngestionOutcome.UPDATED
        sub = await load(created.subscription_id)
        assert sub.status == SubscriptionStatus.CANCELLED
        assert sub.next_pickup_date is None
        assert sub.pause_reason == f"System cancelled: contract {upstream.lower()} upstream"

    @pytest.mark.asyncio
    async def test_cancelled_is_not_revived(self, service, load):
        created = await ingest_contract(service)
        await service.apply_contract_status(SHOP, CONTRACT_ID, "CANCELLED", event_id="w-1")

        result = await service.apply_contract_status(SHOP, CONTRACT_ID, "ACTIVE", event_id="w-2")

        assert result.outcome == IngestionOutcome.IGNORED
        assert (await load(created.subscription_id)).status == SubscriptionStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_replay_is_inert(self, service, count_rows):
        await ingest_contract(service)
        await service.apply_contract_status(SHOP, CONTRACT_ID, "PAUSED", event_id="w-1")

        replay = await service.apply_contract_status(SHOP, CONTRACT_ID, "PAUSED", event_id="w-1")

        assert replay.outcome == IngestionOutcome.ALREADY_PROCESSED
        # contract create + one status update
        assert await count_rows(IngestionEventModel) == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("upstream", ["ACTIVE", "SOMETHING_NEW", None])
    async def test_no_change_is_ignored(self, service, load, upstream):
        created = await ingest_contract(service)

        result = await service.apply_contract_status(SHOP, CONTRACT_ID, upstream)

        assert result.outcome == IngestionOutcome.IGNORED
        assert result.subscription_id == created.subscription_id
        assert (await load(created.subscription_id)).status == SubscriptionStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_unknown_contract(self, service):
        result = await service.apply_contract_status(SHOP, "gid://shopify/SubscriptionContract/9", "PAUSED")

        assert result.outcome == IngestionOutcome.IGNORED
        assert result.subscription_id is None


class TestUnitOfWork:
    """A unit of work either fully commits, marker included, or leaves nothing."""

    @pytest.mark.asyncio
    async def test_failure_before_marker_rolls_everything_back(
        self, service, count_rows, dispatcher
    ):
        with patch.object(
            IngestionEventRepository,
            "mark_processed",
            new_callable=AsyncMock,
            side_effect=RuntimeError("connection lost"),
        ):
            with pytest.raises(RuntimeError):
                await ingest_order(service, checkout=WEDNESDAY_PICKUP)

        assert await count_rows(SubscriptionModel) == 0
        assert await count_rows(PickupInstanceModel) == 0
        assert await count_rows(IngestionEventModel) == 0
        dispatcher.dispatch.assert_not_awaited()

        # The redelivery is processed normally
        retry = await ingest_order(service, checkout=WEDNESDAY_PICKUP)
        assert retry.outcome == IngestionOutcome.CREATED
        assert await count_rows(IngestionEventModel) == 1

    @pytest.mark.asyncio
    async def test_failed_insert_writes_no_marker(self, service, count_rows):
        with patch.object(
            SubscriptionRepository,
            "add",
            new_callable=AsyncMock,
            side_effect=RuntimeError("insert failed"),
        ):
            with pytest.raises(RuntimeError):
                await ingest_contract(service)

        assert await count_rows(SubscriptionModel) == 0
        assert await count_rows(IngestionEventModel) == 0

    @pytest.mark.asyncio
    async def test_concurrent_duplicate_reports_already_processed(
        self, service, session_factory, count_rows, dispatcher, now
    ):
        winner_id = uuid4()
        async with get_session_context(session_factory) as session:
            await IngestionEventRepository(session).mark_processed(
                SHOP, ORDER_CREATED_TOPIC, ORDER_ID,
                processed_at=now(), subscription_id=winner_id,
            )

        real_find = IngestionEventRepository.find
        lookups = []

        async def find_after_race(repo, shop, topic, external_id):
            lookups.append(external_id)
            if len(lookups) == 1:
                # The other delivery has not committed when this one checks
                return None
            return await real_find(repo, shop, topic, external_id)

        with patch.object(IngestionEventRepository, "find", new=find_after_race):
            result = await ingest_order(service)

        assert result.outcome == IngestionOutcome.ALREADY_PROCESSED
        assert result.subscription_id == winner_id
        assert len(lookups) == 2
        assert await count_rows(SubscriptionModel) == 0
        assert await count_rows(IngestionEventModel) == 1
        dispatcher.dispatch.assert_not_awaited()


class TestPlanLookup:

    @pytest.mark.asyncio
    async def test_shop_plan_overrides_defaults(self, service, session_factory, load):
        async with get_session_context(session_factory) as session:
            await SubscriptionPlanRepository(session).upsert(SubscriptionPlanCreate(
                shop=SHOP,
                frequency="WEEKLY",
                name="Weekly Bread Club",
                discount_percent=15.0,
                billing_lead_hours=48,
            ))

        result = await ingest_order(service)
        sub = await load(result.subscription_id)

        assert sub.discount_percent == 15.0
        assert sub.billing_lead_hours == 48
        assert sub.next_billing_date == datetime(2026, 1, 12, 20, 0, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_inactive_plan_is_ignored(self, service, session_factory, load):
        async with get_session_context(session_factory) as session:
            await SubscriptionPlanRepository(session).upsert(SubscriptionPlanCreate(
                shop=SHOP, frequency="WEEKLY", discount_percent=50.0, is_active=False,
            ))

        result = await ingest_order(service)
        sub = await load(result.subscription_id)
        assert sub.discount_percent == 10.0

    @pytest.mark.asyncio
    async def test_lookup_failure_falls_back(self, service, load):
        with patch.object(
            PlanLookupService,
            "find_by_frequency",
            new_callable=AsyncMock,
            side_effect=RuntimeError("plans table unavailable"),
        ):
            result = await ingest_order(service, interval=3)

        sub = await load(result.subscription_id)
        assert sub.frequency == Frequency.TRIWEEKLY
        assert sub.discount_percent == 2.5
        assert sub.billing_lead_hours == 85

    @pytest.mark.asyncio
    async def test_save_plan_validates(self, session_factory, test_settings):
        plans = PlanLookupService(session_factory, test_settings)

        with pytest.raises(ValidationError):
            await plans.save_plan(SubscriptionPlanCreate(shop=SHOP, frequency="MONTHLY"))
        with pytest.raises(ValidationError):
            await plans.save_plan(SubscriptionPlanCreate(
                shop=SHOP, frequency="WEEKLY", billing_lead_hours=500,
            ))

        saved = await plans.save_plan(SubscriptionPlanCreate(
            shop=SHOP, frequency="bi-weekly", discount_percent=7.5,
        ))
        assert saved.frequency == "BIWEEKLY"
        assert [p.frequency for p in await plans.list_plans(SHOP)] == ["BIWEEKLY"]
