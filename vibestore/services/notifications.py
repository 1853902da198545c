"""
Notification Service - user inbox rows written after the fact.

Notifications are best effort: they are written after the grant or
moderation change has committed, and a failure here is logged but never
propagated.
"""

from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from vibestore.db.models import App, Notification
from vibestore.models.api import SubscriptionTier
from vibestore.observability.metrics import metrics

logger = get_logger(__name__)


class NotificationType:
    """Notification type values stored in notifications.type."""

    PURCHASE_COMPLETED = "purchase_completed"
    SUBSCRIPTION_ACTIVATED = "subscription_activated"
    SUBSCRIPTION_CANCELED = "subscription_canceled"
    APP_APPROVED = "app_approved"
    APP_REJECTED = "app_rejected"


class NotificationService:
    """Writes notification rows in their own commit."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def notify(self, user_id: UUID, type_: str, title: str, message: str) -> bool:
        """Insert one notification. Returns False instead of raising on failure."""
        try:
            self.session.add(
                Notification(user_id=user_id, type=type_, title=title, message=message)
            )
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            logger.warning(
                "notification_failed",
                user_id=str(user_id),
                notification_type=type_,
                error=str(exc),
            )
            metrics.record_error(type(exc).__name__, "notify")
            return False

        logger.debug("notification_created", user_id=str(user_id), notification_type=type_)
        return True

    async def purchase_completed(self, user_id: UUID, app_id: UUID) -> bool:
        try:
            app = await self.session.get(App, app_id)
        except SQLAlchemyError as exc:
            await self.session.rollback()
            logger.warning("notification_failed", user_id=str(user_id), error=str(exc))
            return False

        name = app.title if app is not None else "your app"
        return await self.notify(
            user_id,
            NotificationType.PURCHASE_COMPLETED,
            "Purchase complete",
            f"You now own {name}. Enjoy!",
        )

    async def subscription_activated(self, user_id: UUID, tier: SubscriptionTier) -> bool:
        return await self.notify(
            user_id,
            NotificationType.SUBSCRIPTION_ACTIVATED,
            "Subscription active",
            f"Your {tier.value.capitalize()} plan is now active.",
        )

    async def subscription_canceled(self, user_id: UUID) -> bool:
        return await self.notify(
            user_id,
            NotificationType.SUBSCRIPTION_CANCELED,
            "Subscription ended",
            "Your subscription has ended and your account is back on the Free plan.",
        )

    async def app_approved(self, developer_id: UUID, app_title: str) -> bool:
        return await self.notify(
            developer_id,
            NotificationType.APP_APPROVED,
            "App Approved!",
            f'Your app "{app_title}" has been approved and is now live on Vibe Store.',
        )

    async def app_rejected(self, developer_id: UUID, app_title: str, reason: str) -> bool:
        return await self.notify(
            developer_id,
            NotificationType.APP_REJECTED,
            "App Rejected",
            f'Your app "{app_title}" was rejected. Reason: {reason}',
        )
