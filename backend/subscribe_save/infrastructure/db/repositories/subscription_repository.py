"""
Subscription Repository

Data access layer for subscription persistence.
Maps between the SubscriptionModel table and the Subscription domain entity.
"""

import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional
from uuid import UUID, uuid4

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from subscribe_save.domain.calendar import to_utc
from subscribe_save.domain.subscription import (
    ActorRole,
    AuditEntry,
    Frequency,
    Subscription,
    SubscriptionSource,
    SubscriptionStatus,
)
from subscribe_save.infrastructure.db.models.subscription import SubscriptionModel
from subscribe_save.infrastructure.db.repositories.base_repository import BaseRepository
from subscribe_save.infrastructure.exceptions import NotFoundError


logger = logging.getLogger(__name__)


_DATETIME_FIELDS = (
    "next_billing_date",
    "cancelled_at",
    "one_time_reschedule_at",
    "last_billing_attempt_at",
    "created_at",
    "updated_at",
)


class SubscriptionRepository(BaseRepository[SubscriptionModel]):
    """
    Repository for subscription data access.

    Implements queries and writes with domain model mapping.
    """

    def __init__(self, session: AsyncSession):
        super().__init__(SubscriptionModel, session)

    # =========================================================================
    # Query Methods
    # =========================================================================

    async def get(self, subscription_id: UUID) -> Optional[Subscription]:
        model = await self.get_model(subscription_id)
        return self._to_domain(model) if model else None

    async def get_for_shop(self, shop: str, subscription_id: UUID) -> Optional[Subscription]:
        """Get a subscription only if it belongs to the given shop."""
        model = await self.get_model(subscription_id)
        if model is None or model.shop != shop:
            return None
        return self._to_domain(model)

    async def get_by_contract_id(
        self,
        shop: str,
        external_contract_id: str,
    ) -> Optional[Subscription]:
        statement = select(SubscriptionModel).where(
            SubscriptionModel.shop == shop,
            SubscriptionModel.external_contract_id == external_contract_id,
        )
        result = await self._session.execute(statement)
        model = result.scalar_one_or_none()
        return self._to_domain(model) if model else None

    async def get_by_origin_order_id(self, shop: str, origin_order_id: str) -> Optional[Subscription]:
        statement = (
            select(SubscriptionModel)
            .where(
                SubscriptionModel.shop == shop,
                SubscriptionModel.origin_order_id == origin_order_id,
            )
            .order_by(SubscriptionModel.created_at)
            .limit(1)
        )
        result = await self._session.execute(statement)
        model = result.scalar_one_or_none()
        return self._to_domain(model) if model else None

    async def find_recent_active_by_email(
        self,
        shop: str,
        customer_email: str,
        since: datetime,
        source: Optional[SubscriptionSource] = None,
    ) -> List[Subscription]:
        """
        ACTIVE subscriptions for a customer created at or after `since`.

        Newest first. Used to reconcile order and contract events that
        describe the same real-world subscription.
        """
        statement = (
            select(SubscriptionModel)
            .where(
                SubscriptionModel.shop == shop,
                SubscriptionModel.customer_email == customer_email,
                SubscriptionModel.status == SubscriptionStatus.ACTIVE.value,
                SubscriptionModel.created_at >= to_utc(since),
            )
            .order_by(SubscriptionModel.created_at.desc())
        )
        if source is not None:
            statement = statement.where(SubscriptionModel.source == source.value)

        result = await self._session.execute(statement)
        return [self._to_domain(model) for model in result.scalars().all()]

    async def list_due_ids(self, shop: str, today: date) -> List[UUID]:
        """ACTIVE subscriptions whose next pickup is today or earlier."""
        statement = (
            select(SubscriptionModel.id)
            .where(
                SubscriptionModel.shop == shop,
                SubscriptionModel.status == SubscriptionStatus.ACTIVE.value,
                SubscriptionModel.next_pickup_date.is_not(None),
                SubscriptionModel.next_pickup_date <= today,
            )
            .order_by(SubscriptionModel.next_pickup_date, SubscriptionModel.created_at)
        )
        result = await self._session.execute(statement)
        return list(result.scalars().all())

    async def list_resume_due_ids(self, shop: str, today: date) -> List[UUID]:
        """PAUSED subscriptions whose pause window has elapsed."""
        statement = (
            select(SubscriptionModel.id)
            .where(
                SubscriptionModel.shop == shop,
                SubscriptionModel.status == SubscriptionStatus.PAUSED.value,
                SubscriptionModel.paused_until.is_not(None),
                SubscriptionModel.paused_until <= today,
            )
            .order_by(SubscriptionModel.paused_until)
        )
        result = await self._session.execute(statement)
        return list(result.scalars().all())

    async def list_for_customer(self, shop: str, customer_email: str) -> List[Subscription]:
        statement = (
            select(SubscriptionModel)
            .where(
                SubscriptionModel.shop == shop,
                SubscriptionModel.customer_email == customer_email,
            )
            .order_by(SubscriptionModel.created_at.desc())
        )
        result = await self._session.execute(statement)
        return [self._to_domain(model) for model in result.scalars().all()]

    async def list_for_shop(
        self,
        shop: str,
        status: Optional[SubscriptionStatus] = None,
        limit: int = 100,
    ) -> List[Subscription]:
        statement = select(SubscriptionModel).where(SubscriptionModel.shop == shop)
        if status is not None:
            statement = statement.where(SubscriptionModel.status == status.value)
        statement = statement.order_by(SubscriptionModel.created_at.desc()).limit(limit)
        result = await self._session.execute(statement)
        return [self._to_domain(model) for model in result.scalars().all()]

    async def list_shops_with_open_subscriptions(self) -> List[str]:
        """Shops that have at least one ACTIVE or PAUSED subscription."""
        statement = (
            select(SubscriptionModel.shop)
            .where(
                SubscriptionModel.status.in_([
                    SubscriptionStatus.ACTIVE.value,
                    SubscriptionStatus.PAUSED.value,
                ])
            )
            .distinct()
            .order_by(SubscriptionModel.shop)
        )
        result = await self._session.execute(statement)
        return list(result.scalars().all())

    async def count_by_status(self, shop: str) -> Dict[str, int]:
        statement = (
            select(SubscriptionModel.status, func.count())
            .where(SubscriptionModel.shop == shop)
            .group_by(SubscriptionModel.status)
        )
        result = await self._session.execute(statement)
        counts = {status.value: 0 for status in SubscriptionStatus}
        for status, total in result.all():
            counts[status] = total
        return counts

    # =========================================================================
    # Command Methods
    # =========================================================================

    async def add(self, subscription: Subscription) -> Subscription:
        """
        Stage a new subscription.

        Args:
            subscription: Subscription domain model (id assigned if missing)

        Returns:
            Subscription with ID
        """
        values = self._to_values(subscription)
        values["id"] = subscription.id or uuid4()
        model = await self.add_model(SubscriptionModel(**values))
        logger.info(f"Created subscription {model.id} for shop {model.shop}")
        return self._to_domain(model)

    async def save(self, subscription: Subscription) -> Subscription:
        """
        Write every field of an existing subscription.

        Raises:
            NotFoundError: If the subscription row does not exist
        """
        model = await self.get_model(subscription.id)
        if model is None:
            raise NotFoundError(
                f"Subscription {subscription.id} not found",
                operation="update",
                table="subscriptions",
            )

        for field, value in self._to_values(subscription).items():
            setattr(model, field, value)

        self._session.add(model)
        await self._session.flush()
        return self._to_domain(model)

    # =========================================================================
    # Mapping
    # =========================================================================

    def _to_domain(self, model: SubscriptionModel) -> Subscription:
        """Convert database model to domain model."""
        return Subscription(
            id=model.id,
            shop=model.shop,
            external_contract_id=model.external_contract_id,
            origin_order_id=model.origin_order_id,
            source=SubscriptionSource(model.source),
            customer_name=model.customer_name,
            customer_email=model.customer_email,
            customer_phone=model.customer_phone,
            product_label=model.product_label,
            preferred_day=model.preferred_day,
            preferred_time_slot=model.preferred_time_slot,
            preferred_time_slot_start=model.preferred_time_slot_start,
            preferred_day_defaulted=model.preferred_day_defaulted,
            time_slot_defaulted=model.time_slot_defaulted,
            frequency=Frequency(model.frequency),
            discount_percent=model.discount_percent,
            billing_lead_hours=model.billing_lead_hours,
            next_pickup_date=model.next_pickup_date,
            next_billing_date=to_utc(model.next_billing_date),
            status=SubscriptionStatus(model.status),
            paused_until=model.paused_until,
            pause_reason=model.pause_reason,
            cancelled_at=to_utc(model.cancelled_at),
            one_time_reschedule_date=model.one_time_reschedule_date,
            one_time_reschedule_time_slot=model.one_time_reschedule_time_slot,
            one_time_reschedule_reason=model.one_time_reschedule_reason,
            one_time_reschedule_by=(
                ActorRole(model.one_time_reschedule_by)
                if model.one_time_reschedule_by else None
            ),
            one_time_reschedule_at=to_utc(model.one_time_reschedule_at),
            billing_failure_count=model.billing_failure_count,
            billing_failure_reason=model.billing_failure_reason,
            billing_cycle_count=model.billing_cycle_count,
            last_billing_status=model.last_billing_status,
            last_billing_attempt_at=to_utc(model.last_billing_attempt_at),
            admin_notes=[AuditEntry.model_validate(entry) for entry in (model.admin_notes or [])],
            created_at=to_utc(model.created_at),
            updated_at=to_utc(model.updated_at),
        )

    def _to_values(self, subscription: Subscription) -> Dict[str, Any]:
        """Column values for a domain model (id excluded)."""
        values = subscription.model_dump(
            exclude={"id", "admin_notes"},
            exclude_none=False,
        )
        for field in ("source", "frequency", "status", "one_time_reschedule_by"):
            if values[field] is not None:
                values[field] = values[field].value
        for field in _DATETIME_FIELDS:
            values[field] = to_utc(values[field])
        if values["created_at"] is None:
            values.pop("created_at")
        if values["updated_at"] is None:
            values.pop("updated_at")
        values["admin_notes"] = [
            entry.model_dump(mode="json") for entry in subscription.admin_notes
        ]
        return values

