"""
Ingestion Service

Turns inbound commerce events into subscription records and booked pickups:
orders (created, cancelled) and subscription contracts (created, updated).

Order and contract creation usually describe the same real-world
subscription and arrive seconds apart under unrelated identifiers.
Reconciliation is a lookup-then-merge against the database within a
configurable time window.

Each event is handled in a single transaction whose last write is the
idempotency row, so a replay is inert and a failure leaves no marker behind.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Tuple
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from subscribe_save.config.settings import Settings, get_settings
from subscribe_save.domain import state_machine
from subscribe_save.domain.calendar import BusinessClock
from subscribe_save.domain.events import DomainEvent, EventType
from subscribe_save.domain.pickup import PickupStatus, book_order_pickup, transition_pickup
from subscribe_save.domain.scheduling import (
    billing_date,
    extract_time_slot_start,
    next_pickup_from_today,
    validate_billing_lead_hours,
)
from subscribe_save.domain.state_machine import (
    AdvanceSchedule,
    Cancel,
    Command,
    Pause,
    PermanentReschedule,
    Resume,
)
from subscribe_save.domain.subscription import (
    Actor,
    AuditEntry,
    CustomerInfo,
    Frequency,
    PlanTerms,
    Subscription,
    SubscriptionSource,
    SubscriptionStatus,
    frequency_from_interval_count,
    normalize_email,
)
from subscribe_save.infrastructure.db.database import get_session_context
from subscribe_save.infrastructure.db.repositories.ingestion_event_repository import (
    IngestionEventRepository,
)
from subscribe_save.infrastructure.db.repositories.pickup_repository import PickupRepository
from subscribe_save.infrastructure.db.repositories.subscription_repository import (
    SubscriptionRepository,
)
from subscribe_save.infrastructure.exceptions import StateConflictError, ValidationError
from subscribe_save.infrastructure.integrations.collaborators import SideEffectDispatcher
from subscribe_save.infrastructure.services.plan_lookup_service import PlanLookupService
from subscribe_save.infrastructure.services.subscription_service import (
    build_transition_context,
)


logger = logging.getLogger(__name__)


ORDER_CREATED_TOPIC = "orders/create"
ORDER_CANCELLED_TOPIC = "orders/cancelled"
CONTRACT_CREATED_TOPIC = "subscription_contracts/create"
CONTRACT_UPDATED_TOPIC = "subscription_contracts/update"

# Upstream contract status -> local status
CONTRACT_STATUS_MAP = {
    "ACTIVE": SubscriptionStatus.ACTIVE,
    "PAUSED": SubscriptionStatus.PAUSED,
    "CANCELLED": SubscriptionStatus.CANCELLED,
    "EXPIRED": SubscriptionStatus.CANCELLED,
    "FAILED": SubscriptionStatus.CANCELLED,
}


class IngestionOutcome(str, Enum):
    """What handling an inbound event did."""
    CREATED = "created"
    MATCHED = "matched"
    UPDATED = "updated"
    IGNORED = "ignored"
    ALREADY_PROCESSED = "already_processed"


@dataclass
class IngestionResult:
    outcome: IngestionOutcome
    subscription_id: Optional[UUID] = None
    events: List[DomainEvent] = field(default_factory=list)
    pickup_id: Optional[UUID] = None


Handler = Callable[[AsyncSession, datetime], Awaitable[IngestionResult]]


@dataclass(frozen=True)
class CheckoutPickup:
    """Pickup date and slot a customer chose at checkout."""
    pickup_date: date
    time_slot: Optional[str] = None
    order_name: Optional[str] = None


class IngestionService:
    """
    Service for applying upstream commerce events.

    Args:
        session_factory: Session factory (defaults to the app database)
        clock: Business clock (defaults to the configured shop timezone)
        plan_lookup: Frequency plan lookup with fallback defaults
        dispatcher: Delivers events to collaborators after commit
        settings: Application settings
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        clock: Optional[BusinessClock] = None,
        plan_lookup: Optional[PlanLookupService] = None,
        dispatcher: Optional[SideEffectDispatcher] = None,
        settings: Optional[Settings] = None,
    ):
        self._settings = settings or get_settings()
        self._session_factory = session_factory
        self._clock = clock or BusinessClock(self._settings.shop_timezone)
        self._plans = plan_lookup or PlanLookupService(session_factory, self._settings)
        self._dispatcher = dispatcher or SideEffectDispatcher()

    @property
    def dedup_window(self) -> timedelta:
        return timedelta(seconds=self._settings.dedup_window_seconds)

    # =========================================================================
    # Order Events
    # =========================================================================

    async def create_subscription_from_order_event(
        self,
        shop: str,
        order_id: str,
        customer: CustomerInfo,
        billing_interval_count: Optional[int],
        preferred_day: Optional[int] = None,
        preferred_time_slot: Optional[str] = None,
        product_label: Optional[str] = None,
        checkout: Optional[CheckoutPickup] = None,
        event_id: Optional[str] = None,
        payload: Optional[dict] = None,
    ) -> IngestionResult:
        """
        Handle an order carrying a recurring line item.

        When the order also booked a pickup, that pickup is created in the
        same transaction, linked to the subscription, and the subscription's
        next pickup moves past it.

        Returns:
            IngestionResult with the created or matched subscription id

        Raises:
            ValidationError: Shop, order id or customer email missing
        """
        email = normalize_email(customer.email)
        self._require(shop=shop, order_id=order_id, customer_email=email)
        order_id = str(order_id)
        frequency = self._frequency_for(billing_interval_count, shop, order_id)
        terms = await self._plans.resolve(shop, frequency)

        async def handle(session: AsyncSession, now: datetime) -> IngestionResult:
            repo = SubscriptionRepository(session)
            outcome, subscription, events = await self._resolve_order_subscription(
                repo, now, shop, order_id, email, customer, terms,
                preferred_day, preferred_time_slot, product_label,
            )

            pickup_id = None
            if checkout is not None:
                subscription, pickup_id, booked = await self._book_checkout_pickup(
                    session, now, shop, order_id, customer, checkout, subscription
                )
                events.extend(booked)
            return IngestionResult(outcome, subscription.id, events, pickup_id)

        return await self._ingest(
            shop, ORDER_CREATED_TOPIC, str(event_id or order_id), payload, handle
        )

    async def record_order_pickup(
        self,
        shop: str,
        order_id: str,
        customer: CustomerInfo,
        checkout: CheckoutPickup,
        event_id: Optional[str] = None,
        payload: Optional[dict] = None,
    ) -> IngestionResult:
        """
        Book the pickup of a one-off (non-subscription) order.

        Raises:
            ValidationError: Shop, order id or time slot missing
        """
        self._require(shop=shop, order_id=order_id, time_slot=checkout.time_slot)
        order_id = str(order_id)

        async def handle(session: AsyncSession, now: datetime) -> IngestionResult:
            _, pickup_id, events = await self._book_checkout_pickup(
                session, now, shop, order_id, customer, checkout, None
            )
            outcome = IngestionOutcome.CREATED if events else IngestionOutcome.MATCHED
            return IngestionResult(outcome, None, events, pickup_id)

        return await self._ingest(
            shop, ORDER_CREATED_TOPIC, str(event_id or order_id), payload, handle
        )

    async def cancel_order_pickup(
        self,
        shop: str,
        order_id: str,
        event_id: Optional[str] = None,
        payload: Optional[dict] = None,
    ) -> IngestionResult:
        """Cancel the pickup a now-cancelled order had booked."""
        self._require(shop=shop, order_id=order_id)
        order_id = str(order_id)

        async def handle(session: AsyncSession, now: datetime) -> IngestionResult:
            pickups = PickupRepository(session)
            pickup = await pickups.get_by_order_id(shop, order_id)
            if pickup is None:
                logger.info(f"No pickup booked by cancelled order {order_id} ({shop})")
                return IngestionResult(IngestionOutcome.IGNORED)
            if pickup.is_terminal:
                logger.info(
                    f"Pickup {pickup.id} for cancelled order {order_id} is already "
                    f"{pickup.status.value}"
                )
                return IngestionResult(
                    IngestionOutcome.IGNORED, pickup.subscription_id, pickup_id=pickup.id
                )

            updated, events = transition_pickup(
                pickup, PickupStatus.CANCELLED, now, notes="Order cancelled"
            )
            await pickups.save(updated)
            return IngestionResult(
                IngestionOutcome.UPDATED, pickup.subscription_id, events, pickup.id
            )

        return await self._ingest(
            shop, ORDER_CANCELLED_TOPIC, str(event_id or order_id), payload, handle
        )

    # =========================================================================
    # Contract Events
    # =========================================================================

    async def create_subscription_from_contract_event(
        self,
        shop: str,
        contract_id: str,
        customer: CustomerInfo,
        billing_interval_count: Optional[int],
        preferred_day: Optional[int] = None,
        preferred_time_slot: Optional[str] = None,
        origin_order_id: Optional[str] = None,
        event_id: Optional[str] = None,
        payload: Optional[dict] = None,
    ) -> IngestionResult:
        """
        Handle the authoritative contract-created event.

        An ACTIVE order-path subscription for the same customer created within
        the dedup window (or carrying the contract's origin order as its
        placeholder id) is adopted instead of creating a second record.

        Raises:
            ValidationError: Shop, contract id or customer email missing
        """
        email = normalize_email(customer.email)
        self._require(shop=shop, contract_id=contract_id, customer_email=email)
        contract_id = str(contract_id)
        origin_order_id = str(origin_order_id) if origin_order_id else None
        frequency = self._frequency_for(billing_interval_count, shop, contract_id)
        terms = await self._plans.resolve(shop, frequency)

        async def handle(session: AsyncSession, now: datetime) -> IngestionResult:
            repo = SubscriptionRepository(session)
            existing = await repo.get_by_contract_id(shop, contract_id)
            if existing is not None:
                return IngestionResult(IngestionOutcome.MATCHED, existing.id)

            match = None
            if origin_order_id:
                placeholder = await repo.get_by_contract_id(shop, origin_order_id)
                if placeholder is not None and placeholder.status == SubscriptionStatus.ACTIVE:
                    match = placeholder

            if match is None:
                candidates = await repo.find_recent_active_by_email(
                    shop, email, now - self.dedup_window, SubscriptionSource.ORDER
                )
                match = next(
                    (
                        s for s in candidates
                        if s.external_contract_id in (None, s.origin_order_id)
                    ),
                    None,
                )

            if match is not None:
                linked = self._append_note(
                    match, now, f"Linked to subscription contract {contract_id}",
                    {"external_contract_id": contract_id},
                )
                saved = await repo.save(linked)
                logger.info(
                    f"Contract {contract_id} matched existing subscription {saved.id}, "
                    "skipping duplicate creation"
                )
                return IngestionResult(IngestionOutcome.MATCHED, saved.id, [
                    DomainEvent(EventType.SUBSCRIPTION_LINKED, saved.id, detail=contract_id)
                ])

            subscription = self._new_subscription(
                shop=shop,
                source=SubscriptionSource.CONTRACT,
                external_contract_id=contract_id,
                origin_order_id=origin_order_id,
                customer=customer,
                terms=terms,
                preferred_day=preferred_day,
                preferred_time_slot=preferred_time_slot,
                product_label=None,
                now=now,
            )
            created = await repo.add(subscription)
            return IngestionResult(IngestionOutcome.CREATED, created.id, [
                DomainEvent(EventType.SUBSCRIPTION_CREATED, created.id, detail="contract")
            ])

        return await self._ingest(
            shop, CONTRACT_CREATED_TOPIC, str(event_id or contract_id), payload, handle
        )

    async def apply_contract_status(
        self,
        shop: str,
        contract_id: str,
        status: Optional[str],
        event_id: Optional[str] = None,
        payload: Optional[dict] = None,
    ) -> IngestionResult:
        """
        Mirror an upstream contract status change onto the subscription.

        The change runs through the state machine as the system actor, so a
        contract reactivated upstream cannot revive a cancelled subscription.
        """
        self._require(shop=shop, contract_id=contract_id)
        contract_id = str(contract_id)
        upstream = (status or "").strip().upper()
        target = CONTRACT_STATUS_MAP.get(upstream)

        async def handle(session: AsyncSession, now: datetime) -> IngestionResult:
            repo = SubscriptionRepository(session)
            subscription = await repo.get_by_contract_id(shop, contract_id)
            if subscription is None:
                logger.info(f"No subscription for updated contract {contract_id} ({shop})")
                return IngestionResult(IngestionOutcome.IGNORED)

            command = self._status_command(subscription, target, upstream)
            if command is None:
                return IngestionResult(IngestionOutcome.IGNORED, subscription.id)

            ctx = build_transition_context(self._clock, Actor.system(), self._settings)
            try:
                transition = state_machine.apply(subscription, command, ctx)
            except StateConflictError as e:
                logger.warning(
                    f"Contract {contract_id} is {upstream} upstream but subscription "
                    f"{subscription.id} cannot follow: {e.message}"
                )
                return IngestionResult(IngestionOutcome.IGNORED, subscription.id)

            saved = await repo.save(transition.subscription)
            return IngestionResult(IngestionOutcome.UPDATED, saved.id, transition.events)

        return await self._ingest(
            shop, CONTRACT_UPDATED_TOPIC, str(event_id or f"{contract_id}:{upstream}"),
            payload, handle,
        )

    # =========================================================================
    # Internals
    # =========================================================================

    async def _ingest(
        self,
        shop: str,
        topic: str,
        external_id: str,
        payload: Optional[dict],
        handler: Handler,
    ) -> IngestionResult:
        now = self._clock.now_utc()
        try:
            async with get_session_context(self._session_factory) as session:
                processed = IngestionEventRepository(session)
                marker = await processed.find(shop, topic, external_id)
                if marker is not None:
                    logger.info(f"Event {topic} {external_id} for {shop} already processed")
                    return IngestionResult(
                        IngestionOutcome.ALREADY_PROCESSED, marker.subscription_id
                    )

                result = await handler(session, now)
                # Commit point: the marker is the last write of the unit of work
                await processed.mark_processed(
                    shop,
                    topic,
                    external_id,
                    processed_at=now,
                    subscription_id=result.subscription_id,
                    payload=payload,
                )
        except IntegrityError as e:
            # A concurrent delivery of the same event won the race
            logger.info(f"Event {topic} {external_id} for {shop} raced a duplicate: {e.orig}")
            async with get_session_context(self._session_factory) as session:
                marker = await IngestionEventRepository(session).find(shop, topic, external_id)
            if marker is None:
                raise
            return IngestionResult(IngestionOutcome.ALREADY_PROCESSED, marker.subscription_id)

        logger.info(
            f"Event {topic} {external_id} for {shop}: {result.outcome.value} "
            f"subscription={result.subscription_id} pickup={result.pickup_id}"
        )
        await self._dispatcher.dispatch(result.events)
        return result

    async def _resolve_order_subscription(
        self,
        repo: SubscriptionRepository,
        now: datetime,
        shop: str,
        order_id: str,
        email: str,
        customer: CustomerInfo,
        terms: PlanTerms,
        preferred_day: Optional[int],
        preferred_time_slot: Optional[str],
        product_label: Optional[str],
    ) -> Tuple[IngestionOutcome, Subscription, List[DomainEvent]]:
        existing = await repo.get_by_contract_id(shop, order_id)
        if existing is not None:
            return IngestionOutcome.MATCHED, existing, []

        # Contract arrived first and already named this order as its origin
        match = await repo.get_by_origin_order_id(shop, order_id)
        if match is None:
            candidates = await repo.find_recent_active_by_email(
                shop, email, now - self.dedup_window, SubscriptionSource.CONTRACT
            )
            match = next((s for s in candidates if not s.origin_order_id), None)

        if match is not None:
            linked, events = await self._link_order(
                repo, match, now, order_id, preferred_day, preferred_time_slot, product_label
            )
            return IngestionOutcome.MATCHED, linked, events

        subscription = self._new_subscription(
            shop=shop,
            source=SubscriptionSource.ORDER,
            external_contract_id=order_id,
            origin_order_id=order_id,
            customer=customer,
            terms=terms,
            preferred_day=preferred_day,
            preferred_time_slot=preferred_time_slot,
            product_label=product_label,
            now=now,
        )
        created = await repo.add(subscription)
        return IngestionOutcome.CREATED, created, [
            DomainEvent(EventType.SUBSCRIPTION_CREATED, created.id, detail="order")
        ]

    async def _link_order(
        self,
        repo: SubscriptionRepository,
        match: Subscription,
        now: datetime,
        order_id: str,
        preferred_day: Optional[int],
        preferred_time_slot: Optional[str],
        product_label: Optional[str],
    ) -> Tuple[Subscription, List[DomainEvent]]:
        """Attach an order to the contract-path record it belongs to."""
        linked = self._append_note(match, now, f"Linked to order {order_id}", {
            "origin_order_id": order_id,
            "product_label": product_label or match.product_label,
        })
        events = [DomainEvent(EventType.SUBSCRIPTION_LINKED, linked.id, detail=order_id)]

        # The order carries the customer's explicit choice where the contract had none
        command = self._order_preferences(linked, order_id, preferred_day, preferred_time_slot)
        if command is not None:
            ctx = build_transition_context(self._clock, Actor.system(), self._settings)
            transition = state_machine.apply(linked, command, ctx)
            linked = transition.subscription
            events.extend(transition.events)

        saved = await repo.save(linked)
        logger.info(f"Order {order_id} matched contract subscription {saved.id}")
        return saved, events

    @staticmethod
    def _order_preferences(
        subscription: Subscription,
        order_id: str,
        preferred_day: Optional[int],
        preferred_time_slot: Optional[str],
    ) -> Optional[PermanentReschedule]:
        if subscription.status == SubscriptionStatus.CANCELLED:
            return None

        day = subscription.preferred_day
        if subscription.preferred_day_defaulted and preferred_day is not None and 0 <= preferred_day <= 6:
            day = preferred_day

        time_slot = None
        slot = (preferred_time_slot or "").strip()
        if subscription.time_slot_defaulted and slot and slot != subscription.preferred_time_slot:
            time_slot = slot

        if day == subscription.preferred_day and time_slot is None:
            return None
        return PermanentReschedule(
            preferred_day=day,
            time_slot=time_slot,
            reason=f"preferences from order {order_id}",
        )

    async def _book_checkout_pickup(
        self,
        session: AsyncSession,
        now: datetime,
        shop: str,
        order_id: str,
        customer: CustomerInfo,
        checkout: CheckoutPickup,
        subscription: Optional[Subscription],
    ) -> Tuple[Optional[Subscription], UUID, List[DomainEvent]]:
        """
        Create the order's SCHEDULED pickup, once per order.

        A subscription whose next pickup falls on or before the booked date
        is advanced past it, so the rollover never materializes it twice.
        """
        pickups = PickupRepository(session)
        existing = await pickups.get_by_order_id(shop, order_id)
        if existing is not None:
            return subscription, existing.id, []

        time_slot = (checkout.time_slot or "").strip()
        if not time_slot:
            time_slot = (
                subscription.preferred_time_slot if subscription
                else self._settings.default_time_slot
            )

        pickup = await pickups.add(book_order_pickup(
            shop=shop,
            order_id=order_id,
            pickup_date=checkout.pickup_date,
            time_slot=time_slot,
            customer=customer,
            created_at=now,
            subscription_id=subscription.id if subscription else None,
            order_name=checkout.order_name,
        ))
        events = [DomainEvent(
            EventType.PICKUP_CREATED, pickup.subscription_id, pickup.id, detail=order_id
        )]

        if (
            subscription is not None
            and subscription.status == SubscriptionStatus.ACTIVE
            and subscription.next_pickup_date is not None
            and subscription.next_pickup_date <= checkout.pickup_date
        ):
            ctx = build_transition_context(self._clock, Actor.system(), self._settings)
            transition = state_machine.apply(
                subscription, AdvanceSchedule(after=checkout.pickup_date), ctx
            )
            subscription = await SubscriptionRepository(session).save(transition.subscription)
            events.extend(transition.events)

        return subscription, pickup.id, events

    @staticmethod
    def _status_command(
        subscription: Subscription,
        target: Optional[SubscriptionStatus],
        upstream: str,
    ) -> Optional[Command]:
        if target is None:
            logger.warning(
                f"Unrecognized contract status {upstream!r} for subscription {subscription.id}"
            )
            return None
        if target == subscription.status:
            return None
        if target == SubscriptionStatus.ACTIVE:
            return Resume(comment="contract reactivated upstream")
        if target == SubscriptionStatus.PAUSED:
            return Pause(reason="contract paused upstream")
        return Cancel(reason=f"contract {upstream.lower()} upstream")

    def _require(self, **fields: Optional[str]) -> None:
        missing = [name for name, value in fields.items() if not value]
        if missing:
            raise ValidationError(
                f"Malformed event payload: missing {', '.join(missing)}",
                details={"missing": missing},
            )

    def _frequency_for(self, count: Optional[int], shop: str, reference: str) -> Frequency:
        frequency = frequency_from_interval_count(count)
        if frequency is None:
            logger.warning(
                f"Unrecognized billing interval count {count!r} for {shop} {reference}, "
                "defaulting to WEEKLY"
            )
            return Frequency.WEEKLY
        return frequency

    def _new_subscription(
        self,
        shop: str,
        source: SubscriptionSource,
        external_contract_id: Optional[str],
        origin_order_id: Optional[str],
        customer: CustomerInfo,
        terms: PlanTerms,
        preferred_day: Optional[int],
        preferred_time_slot: Optional[str],
        product_label: Optional[str],
        now: datetime,
    ) -> Subscription:
        settings = self._settings
        day = preferred_day
        day_defaulted = day is None or not 0 <= day <= 6
        if day_defaulted:
            if day is not None:
                logger.warning(f"Invalid preferred day {day!r} for {shop}, using default")
            day = settings.default_preferred_day

        time_slot = (preferred_time_slot or "").strip()
        slot_defaulted = not time_slot
        if slot_defaulted:
            time_slot = settings.default_time_slot

        start = extract_time_slot_start(time_slot)
        lead_hours = validate_billing_lead_hours(
            terms.billing_lead_hours,
            settings.min_billing_lead_hours,
            settings.max_billing_lead_hours,
        )
        next_pickup = next_pickup_from_today(day, terms.frequency, self._clock.today())
        next_billing = billing_date(
            next_pickup,
            start,
            lead_hours,
            self._clock.tz,
            settings.min_billing_lead_hours,
            settings.max_billing_lead_hours,
        )

        reference = external_contract_id if source == SubscriptionSource.CONTRACT else origin_order_id
        return Subscription(
            shop=shop,
            external_contract_id=external_contract_id,
            origin_order_id=origin_order_id,
            source=source,
            customer_name=customer.name,
            customer_email=normalize_email(customer.email),
            customer_phone=customer.phone,
            product_label=product_label,
            preferred_day=day,
            preferred_time_slot=time_slot,
            preferred_time_slot_start=start,
            preferred_day_defaulted=day_defaulted,
            time_slot_defaulted=slot_defaulted,
            frequency=terms.frequency,
            discount_percent=terms.discount_percent,
            billing_lead_hours=lead_hours,
            next_pickup_date=next_pickup,
            next_billing_date=next_billing,
            status=SubscriptionStatus.ACTIVE,
            admin_notes=[
                AuditEntry(
                    at=now,
                    actor="system",
                    message=f"Created from {source.value.lower()} {reference}",
                )
            ],
            created_at=now,
            updated_at=now,
        )

    @staticmethod
    def _append_note(
        subscription: Subscription,
        now: datetime,
        message: str,
        changes: dict,
    ) -> Subscription:
        note = AuditEntry(at=now, actor="system", message=message)
        return subscription.model_copy(update={
            **changes,
            "admin_notes": [*subscription.admin_notes, note],
            "updated_at": now,
        })
