"""
Admin API Routes - app moderation.

All endpoints require a profile with role 'admin'.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from vibestore.api.dependencies import require_admin
from vibestore.db.session import get_write_db
from vibestore.exceptions import AppNotFoundError, InvalidStatusTransitionError
from vibestore.models.api import (
    ModerationResponse,
    PendingAppsResponse,
    RejectAppRequest,
)
from vibestore.models.domain import AuthenticatedUser
from vibestore.services.moderation import ModerationService

logger = get_logger(__name__)

router = APIRouter(prefix="/v1/admin", tags=["admin"])


@router.get("/apps/pending", response_model=PendingAppsResponse)
async def list_pending_apps(
    admin: AuthenticatedUser = Depends(require_admin),
    db: AsyncSession = Depends(get_write_db),
) -> PendingAppsResponse:
    """Apps waiting for review, oldest first."""
    apps = await ModerationService(db).list_pending()
    return PendingAppsResponse(apps=apps)


@router.post("/apps/{app_id}/approve", response_model=ModerationResponse)
async def approve_app(
    app_id: UUID,
    admin: AuthenticatedUser = Depends(require_admin),
    db: AsyncSession = Depends(get_write_db),
) -> ModerationResponse:
    """Approve an app; it becomes purchasable immediately."""
    try:
        return await ModerationService(db).approve(app_id, admin.user_id)
    except AppNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except InvalidStatusTransitionError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc


@router.post("/apps/{app_id}/reject", response_model=ModerationResponse)
async def reject_app(
    app_id: UUID,
    request: RejectAppRequest,
    admin: AuthenticatedUser = Depends(require_admin),
    db: AsyncSession = Depends(get_write_db),
) -> ModerationResponse:
    """Reject an app with a reason sent to the developer."""
    try:
        return await ModerationService(db).reject(app_id, admin.user_id, request.reason)
    except AppNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except InvalidStatusTransitionError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
