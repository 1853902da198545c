"""
Moderation Service - admin review of submitted apps.

Only approved apps can be checked out. Status changes commit first; the
developer notification afterwards is best effort.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from vibestore.db.models import App, Profile, utc_now
from vibestore.exceptions import AppNotFoundError, InvalidStatusTransitionError
from vibestore.models.api import (
    AppStatus,
    ModerationResponse,
    PendingAppItem,
    PricingType,
)
from vibestore.services.notifications import NotificationService

logger = get_logger(__name__)


class ModerationService:
    """Approves or rejects pending apps."""

    def __init__(
        self, session: AsyncSession, notifications: NotificationService | None = None
    ) -> None:
        self.session = session
        self.notifications = notifications or NotificationService(session)

    async def is_admin(self, user_id: UUID) -> bool:
        """Admins are profiles with role 'admin'."""
        stmt = select(Profile.role).where(Profile.id == user_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none() == "admin"

    async def list_pending(self) -> list[PendingAppItem]:
        stmt = (
            select(App)
            .where(App.status == AppStatus.PENDING.value)
            .order_by(App.created_at)
        )
        result = await self.session.execute(stmt)
        return [
            PendingAppItem(
                app_id=app.id,
                title=app.title,
                developer_id=app.developer_id,
                pricing_type=PricingType(app.pricing_type),
                price_minor=app.price_minor,
                created_at=app.created_at,
            )
            for app in result.scalars().all()
        ]

    async def approve(self, app_id: UUID, reviewer_id: UUID) -> ModerationResponse:
        """
        Approve a pending app.

        Raises:
            AppNotFoundError: If the app doesn't exist
            InvalidStatusTransitionError: If the app is not pending
        """
        app = await self._transition(app_id, AppStatus.APPROVED, reviewer_id)
        notified = await self.notifications.app_approved(app.developer_id, app.title)
        return ModerationResponse(app_id=app.id, status=AppStatus.APPROVED, notified=notified)

    async def reject(self, app_id: UUID, reviewer_id: UUID, reason: str) -> ModerationResponse:
        """
        Reject a pending app with a reason shown to the developer.

        Raises:
            AppNotFoundError: If the app doesn't exist
            InvalidStatusTransitionError: If the app is not pending
        """
        app = await self._transition(app_id, AppStatus.REJECTED, reviewer_id, reason=reason)
        notified = await self.notifications.app_rejected(app.developer_id, app.title, reason)
        return ModerationResponse(app_id=app.id, status=AppStatus.REJECTED, notified=notified)

    async def _transition(
        self,
        app_id: UUID,
        target: AppStatus,
        reviewer_id: UUID,
        reason: str | None = None,
    ) -> App:
        stmt = select(App).where(App.id == app_id).with_for_update()
        result = await self.session.execute(stmt)
        app = result.scalar_one_or_none()

        if app is None:
            raise AppNotFoundError(app_id)

        if app.status != AppStatus.PENDING.value:
            await self.session.rollback()
            raise InvalidStatusTransitionError(app_id, app.status, target.value)

        app.status = target.value
        app.updated_at = utc_now()
        await self.session.commit()

        logger.info(
            "app_moderated",
            app_id=str(app_id),
            status=target.value,
            reviewer_id=str(reviewer_id),
            reason=reason,
        )
        return app
