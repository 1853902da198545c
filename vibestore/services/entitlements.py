"""
Entitlement Service - durable record of what each user owns.

Writes come only from verified webhooks. Every write claims the Stripe
event id first, in the same database transaction, and every insert is an
upsert keyed on a unique constraint, so any number of deliveries of one
event converge on one transaction row and one entitlement row.
"""

from datetime import UTC, datetime
from uuid import UUID, uuid4

from sqlalchemy import func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from vibestore.db.models import App, AppPurchase, Profile, StripeEvent, Subscription, Transaction
from vibestore.exceptions import DataIntegrityError, EntitlementGrantError
from vibestore.models.api import (
    CheckoutMode,
    PurchaseHistoryItem,
    SubscriptionTier,
    TransactionStatus,
)
from vibestore.models.domain import (
    ENDED_SUBSCRIPTION_STATUSES,
    AppGrant,
    GrantResult,
    SubscriptionChange,
    SubscriptionState,
)
from vibestore.observability.metrics import metrics

logger = get_logger(__name__)


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class EntitlementService:
    """
    Entitlement service over the durable store.

    Responsibilities:
    - Record app grants and subscription changes idempotently
    - Move abandoned checkouts to failed
    - Answer ownership, subscription and purchase-history reads
    """

    def __init__(self, session: AsyncSession) -> None:
        """Initialize with a database session."""
        self.session = session

    # ========================================================================
    # Reads
    # ========================================================================

    async def list_owned_app_ids(self, user_id: UUID) -> list[UUID]:
        """All app ids the user holds an entitlement for."""
        stmt = (
            select(AppPurchase.app_id)
            .where(AppPurchase.user_id == user_id)
            .order_by(AppPurchase.purchase_date)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def has_entitlement(self, user_id: UUID, app_id: UUID) -> bool:
        """Point check against the durable store."""
        stmt = (
            select(AppPurchase.id)
            .where(AppPurchase.user_id == user_id, AppPurchase.app_id == app_id)
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def get_subscription_tier(self, user_id: UUID) -> tuple[SubscriptionTier, datetime | None]:
        """Profile tier and period watermark; free when the profile is missing."""
        profile = await self._find_profile(user_id)
        if profile is None:
            return SubscriptionTier.FREE, None
        return SubscriptionTier(profile.subscription_tier), profile.current_period_end

    async def get_subscription(self, user_id: UUID) -> SubscriptionState | None:
        """Current paid subscription, or None on the free tier."""
        profile = await self._find_profile(user_id)
        if profile is None or profile.subscription_tier == SubscriptionTier.FREE.value:
            return None

        stmt = (
            select(Subscription)
            .where(Subscription.user_id == user_id)
            .order_by(Subscription.updated_at.desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        subscription = result.scalar_one_or_none()

        return SubscriptionState(
            tier=SubscriptionTier(profile.subscription_tier),
            status=subscription.status if subscription else "active",
            processor_subscription_id=(
                subscription.processor_subscription_id if subscription else None
            ),
            current_period_start=subscription.current_period_start if subscription else None,
            current_period_end=profile.current_period_end,
        )

    async def list_purchases(
        self, user_id: UUID, limit: int = 50, offset: int = 0
    ) -> tuple[list[PurchaseHistoryItem], int]:
        """Completed transactions, newest first, with the total count."""
        conditions = (
            Transaction.user_id == user_id,
            Transaction.status == TransactionStatus.COMPLETED.value,
        )

        count_stmt = select(func.count()).select_from(Transaction).where(*conditions)
        total = (await self.session.execute(count_stmt)).scalar_one()

        stmt = (
            select(Transaction, App.title)
            .outerjoin(App, App.id == Transaction.app_id)
            .where(*conditions)
            .order_by(Transaction.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await self.session.execute(stmt)

        items = [
            PurchaseHistoryItem(
                transaction_id=transaction.id,
                app_id=transaction.app_id,
                app_title=title,
                plan_tier=SubscriptionTier(transaction.plan_tier) if transaction.plan_tier else None,
                amount_minor=transaction.amount_minor,
                currency=transaction.currency,
                status=TransactionStatus(transaction.status),
                created_at=transaction.created_at,
                completed_at=transaction.completed_at,
            )
            for transaction, title in result.all()
        ]
        return items, total

    # ========================================================================
    # Webhook writes
    # ========================================================================

    async def grant_app(self, grant: AppGrant) -> GrantResult:
        """
        Record a verified one-time app purchase.

        In one database transaction:
        1. Claim the event id (a replay stops here)
        2. Move the checkout's transaction to completed (insert if unseen)
        3. Insert the entitlement unless the user already owns the app

        Raises:
            EntitlementGrantError: If the durable store rejects the write
        """
        try:
            if not await self._claim_event(grant.event_id, grant.event_type):
                await self.session.rollback()
                logger.info(
                    "stripe_webhook_duplicate",
                    event_id=grant.event_id,
                    processor_reference=grant.processor_reference,
                )
                return GrantResult(
                    duplicate_event=True, transaction_completed=False, entitlement_created=False
                )

            completed_id = await self._complete_transaction(
                user_id=grant.user_id,
                processor_reference=grant.processor_reference,
                amount_minor=grant.amount_minor,
                currency=grant.currency,
                mode=CheckoutMode.PAYMENT,
                event_id=grant.event_id,
                payment_intent_id=grant.payment_intent_id,
                app_id=grant.app_id,
            )
            transaction_id = completed_id or await self._find_transaction_id(
                grant.processor_reference
            )

            purchase_id = await self._insert_purchase(
                user_id=grant.user_id,
                app_id=grant.app_id,
                transaction_id=transaction_id,
                processor_reference=grant.processor_reference,
            )

            # Verify the entitlement exists whether or not this delivery wrote it
            if purchase_id is None and not await self.has_entitlement(grant.user_id, grant.app_id):
                raise DataIntegrityError(
                    f"Entitlement for app {grant.app_id} missing after conflicting insert"
                )

            await self.session.commit()

        except (SQLAlchemyError, DataIntegrityError) as exc:
            await self._fail_grant(grant.processor_reference, grant.event_id, exc)
            raise EntitlementGrantError(grant.processor_reference, str(exc)) from exc

        result = GrantResult(
            duplicate_event=False,
            transaction_completed=completed_id is not None,
            entitlement_created=purchase_id is not None,
            user_id=grant.user_id,
        )
        logger.info(
            "entitlement_granted",
            event_id=grant.event_id,
            user_id=str(grant.user_id),
            app_id=str(grant.app_id),
            processor_reference=grant.processor_reference,
            transaction_completed=result.transaction_completed,
            entitlement_created=result.entitlement_created,
        )
        return result

    async def apply_subscription(self, change: SubscriptionChange) -> GrantResult:
        """
        Overwrite the user's subscription tier from a verified event.

        The tier is replaced, never appended. Events older than the last
        applied one leave the profile untouched.

        Raises:
            EntitlementGrantError: If the durable store rejects the write
        """
        reference = change.processor_reference or change.processor_subscription_id or ""
        try:
            if not await self._claim_event(change.event_id, change.event_type):
                await self.session.rollback()
                logger.info("stripe_webhook_duplicate", event_id=change.event_id)
                return GrantResult(
                    duplicate_event=True, transaction_completed=False, entitlement_created=False
                )

            user_id = change.user_id
            if user_id is None and change.processor_subscription_id:
                user_id = await self._find_subscription_owner(change.processor_subscription_id)

            if user_id is None:
                # Commit the claim: redelivery cannot attribute this event either
                await self.session.commit()
                logger.warning(
                    "subscription_owner_unknown",
                    event_id=change.event_id,
                    processor_subscription_id=change.processor_subscription_id,
                )
                return GrantResult(
                    duplicate_event=False, transaction_completed=False, entitlement_created=False
                )

            completed_id = None
            if change.processor_reference and change.amount_minor is not None:
                completed_id = await self._complete_transaction(
                    user_id=user_id,
                    processor_reference=change.processor_reference,
                    amount_minor=change.amount_minor,
                    currency=change.currency or "USD",
                    mode=CheckoutMode.SUBSCRIPTION,
                    event_id=change.event_id,
                    plan_tier=change.tier,
                )

            # An ended subscription only downgrades the profile when it was the last live one
            superseded = (
                change.tier == SubscriptionTier.FREE
                and change.processor_subscription_id is not None
                and await self._has_other_live_subscription(
                    user_id, change.processor_subscription_id
                )
            )
            if superseded:
                applied = False
                await self._upsert_subscription(user_id, change)
            else:
                applied = await self._overwrite_profile_tier(user_id, change)
                if not applied and await self._find_profile(user_id) is None:
                    raise DataIntegrityError(f"No profile for subscriber {user_id}")
                if applied and change.processor_subscription_id:
                    await self._upsert_subscription(user_id, change)

            await self.session.commit()

        except (SQLAlchemyError, DataIntegrityError) as exc:
            await self._fail_grant(reference, change.event_id, exc)
            raise EntitlementGrantError(reference, str(exc)) from exc

        if superseded:
            logger.info(
                "subscription_ended_superseded",
                event_id=change.event_id,
                user_id=str(user_id),
                processor_subscription_id=change.processor_subscription_id,
            )
        elif applied:
            logger.info(
                "subscription_tier_applied",
                event_id=change.event_id,
                user_id=str(user_id),
                tier=change.tier.value,
                status=change.status,
                current_period_end=(
                    change.current_period_end.isoformat() if change.current_period_end else None
                ),
            )
        else:
            logger.info(
                "subscription_event_stale",
                event_id=change.event_id,
                user_id=str(user_id),
                event_created_at=change.event_created_at.isoformat(),
            )

        return GrantResult(
            duplicate_event=False,
            transaction_completed=completed_id is not None,
            entitlement_created=applied,
            user_id=user_id,
        )

    async def fail_checkout(self, event_id: str, event_type: str, processor_reference: str) -> GrantResult:
        """
        Move a pending checkout transaction to failed.

        Completed transactions are terminal and never touched.
        """
        try:
            if not await self._claim_event(event_id, event_type):
                await self.session.rollback()
                return GrantResult(
                    duplicate_event=True, transaction_completed=False, entitlement_created=False
                )

            stmt = (
                update(Transaction)
                .where(
                    Transaction.processor_reference == processor_reference,
                    Transaction.status == TransactionStatus.PENDING.value,
                )
                .values(status=TransactionStatus.FAILED.value)
            )
            result = await self.session.execute(stmt)
            await self.session.commit()
        except SQLAlchemyError:
            await self.session.rollback()
            raise

        logger.info(
            "checkout_transaction_failed",
            event_id=event_id,
            event_type=event_type,
            processor_reference=processor_reference,
            updated=result.rowcount > 0,
        )
        return GrantResult(
            duplicate_event=False, transaction_completed=False, entitlement_created=False
        )

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _fail_grant(self, reference: str, event_id: str, exc: Exception) -> None:
        """Roll back and report a verified payment that was not recorded."""
        await self.session.rollback()
        logger.error(
            "entitlement_grant_failed",
            event_id=event_id,
            processor_reference=reference,
            error=str(exc),
            error_type=type(exc).__name__,
        )
        metrics.record_grant_failure(type(exc).__name__)

    async def _claim_event(self, event_id: str, event_type: str) -> bool:
        """Record the event id; False when it was already processed."""
        stmt = (
            pg_insert(StripeEvent)
            .values(event_id=event_id, event_type=event_type, processed_at=_utc_now())
            .on_conflict_do_nothing(index_elements=["event_id"])
            .returning(StripeEvent.event_id)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def _complete_transaction(
        self,
        *,
        user_id: UUID,
        processor_reference: str,
        amount_minor: int,
        currency: str,
        mode: CheckoutMode,
        event_id: str,
        payment_intent_id: str | None = None,
        app_id: UUID | None = None,
        plan_tier: SubscriptionTier | None = None,
    ) -> UUID | None:
        """
        Upsert the transaction for a checkout session as completed.

        Returns the transaction id when this call moved it to completed,
        None when it already was.
        """
        now = _utc_now()
        insert_stmt = pg_insert(Transaction).values(
            id=uuid4(),
            user_id=user_id,
            app_id=app_id,
            plan_tier=plan_tier.value if plan_tier else None,
            amount_minor=amount_minor,
            currency=currency.upper(),
            mode=mode.value,
            processor_reference=processor_reference,
            payment_intent_id=payment_intent_id,
            completed_by_event_id=event_id,
            status=TransactionStatus.COMPLETED.value,
            created_at=now,
            completed_at=now,
        )
        stmt = insert_stmt.on_conflict_do_update(
            constraint="uq_transaction_processor_reference",
            set_={
                "status": TransactionStatus.COMPLETED.value,
                "completed_at": now,
                "completed_by_event_id": event_id,
                "payment_intent_id": func.coalesce(
                    insert_stmt.excluded.payment_intent_id, Transaction.payment_intent_id
                ),
            },
            where=Transaction.status != TransactionStatus.COMPLETED.value,
        ).returning(Transaction.id)

        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _find_transaction_id(self, processor_reference: str) -> UUID | None:
        stmt = select(Transaction.id).where(Transaction.processor_reference == processor_reference)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _insert_purchase(
        self,
        *,
        user_id: UUID,
        app_id: UUID,
        transaction_id: UUID | None,
        processor_reference: str,
    ) -> UUID | None:
        """Insert the entitlement; None when the user already owns the app."""
        stmt = (
            pg_insert(AppPurchase)
            .values(
                id=uuid4(),
                user_id=user_id,
                app_id=app_id,
                transaction_id=transaction_id,
                processor_reference=processor_reference,
                purchase_date=_utc_now(),
            )
            .on_conflict_do_nothing()
            .returning(AppPurchase.id)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _overwrite_profile_tier(self, user_id: UUID, change: SubscriptionChange) -> bool:
        """Replace tier and watermark unless a newer event was already applied."""
        stmt = (
            update(Profile)
            .where(
                Profile.id == user_id,
                or_(
                    Profile.subscription_event_at.is_(None),
                    Profile.subscription_event_at <= change.event_created_at,
                ),
            )
            .values(
                subscription_tier=change.tier.value,
                current_period_end=change.current_period_end,
                subscription_event_at=change.event_created_at,
                updated_at=_utc_now(),
            )
        )
        result = await self.session.execute(stmt)
        return result.rowcount > 0

    async def _upsert_subscription(self, user_id: UUID, change: SubscriptionChange) -> None:
        now = _utc_now()
        stmt = (
            pg_insert(Subscription)
            .values(
                id=uuid4(),
                user_id=user_id,
                tier=change.tier.value,
                status=change.status,
                processor_subscription_id=change.processor_subscription_id,
                current_period_start=change.current_period_start,
                current_period_end=change.current_period_end,
                created_at=now,
                updated_at=now,
            )
            .on_conflict_do_update(
                constraint="uq_subscription_processor_subscription_id",
                set_={
                    "tier": change.tier.value,
                    "status": change.status,
                    "current_period_start": change.current_period_start,
                    "current_period_end": change.current_period_end,
                    "updated_at": now,
                },
            )
        )
        await self.session.execute(stmt)

    async def _has_other_live_subscription(
        self, user_id: UUID, processor_subscription_id: str
    ) -> bool:
        stmt = (
            select(Subscription.id)
            .where(
                Subscription.user_id == user_id,
                Subscription.processor_subscription_id != processor_subscription_id,
                Subscription.status.not_in(ENDED_SUBSCRIPTION_STATUSES),
            )
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def _find_subscription_owner(self, processor_subscription_id: str) -> UUID | None:
        stmt = select(Subscription.user_id).where(
            Subscription.processor_subscription_id == processor_subscription_id
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _find_profile(self, user_id: UUID) -> Profile | None:
        stmt = select(Profile).where(Profile.id == user_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()
