"""
Tests for app moderation: ModerationService and the admin routes.
"""

from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from tests.conftest import create_mock_app, make_result
from vibestore.exceptions import AppNotFoundError, InvalidStatusTransitionError
from vibestore.models.api import AppStatus, PricingType
from vibestore.services.moderation import ModerationService
from vibestore.services.notifications import NotificationService


@pytest.fixture
def notifications():
    notifications = MagicMock(spec=NotificationService)
    notifications.app_approved = AsyncMock(return_value=True)
    notifications.app_rejected = AsyncMock(return_value=True)
    return notifications


class TestModerationService:
    """Tests for ModerationService."""

    async def test_is_admin(self, db_session):
        db_session.execute = AsyncMock(return_value=make_result(scalar="admin"))
        assert await ModerationService(db_session).is_admin(uuid4()) is True

        db_session.execute = AsyncMock(return_value=make_result(scalar="user"))
        assert await ModerationService(db_session).is_admin(uuid4()) is False

    async def test_unknown_profile_is_not_admin(self, db_session):
        assert await ModerationService(db_session).is_admin(uuid4()) is False

    async def test_approve_pending_app(self, db_session, notifications, pending_app_row):
        db_session.execute = AsyncMock(return_value=make_result(scalar=pending_app_row))
        service = ModerationService(db_session, notifications)

        result = await service.approve(pending_app_row.id, uuid4())

        assert result.status == AppStatus.APPROVED
        assert result.notified is True
        assert pending_app_row.status == "approved"
        db_session.commit.assert_awaited_once()
        notifications.app_approved.assert_awaited_once_with(
            pending_app_row.developer_id, pending_app_row.title
        )

    async def test_reject_sends_reason(self, db_session, notifications, pending_app_row):
        db_session.execute = AsyncMock(return_value=make_result(scalar=pending_app_row))
        service = ModerationService(db_session, notifications)

        result = await service.reject(pending_app_row.id, uuid4(), "Crashes on launch")

        assert result.status == AppStatus.REJECTED
        assert pending_app_row.status == "rejected"
        notifications.app_rejected.assert_awaited_once_with(
            pending_app_row.developer_id, pending_app_row.title, "Crashes on launch"
        )

    async def test_missing_app(self, db_session, notifications):
        with pytest.raises(AppNotFoundError):
            await ModerationService(db_session, notifications).approve(uuid4(), uuid4())

    async def test_already_reviewed_app_cannot_transition(
        self, db_session, notifications, approved_app_row
    ):
        db_session.execute = AsyncMock(return_value=make_result(scalar=approved_app_row))

        with pytest.raises(InvalidStatusTransitionError) as exc_info:
            await ModerationService(db_session, notifications).reject(
                approved_app_row.id, uuid4(), "late"
            )

        assert exc_info.value.current_status == "approved"
        db_session.commit.assert_not_awaited()
        notifications.app_rejected.assert_not_awaited()

    async def test_notification_failure_still_approves(self, db_session, pending_app_row):
        """The status commit stands even when the inbox write fails."""
        notifications = MagicMock(spec=NotificationService)
        notifications.app_approved = AsyncMock(return_value=False)
        db_session.execute = AsyncMock(return_value=make_result(scalar=pending_app_row))

        result = await ModerationService(db_session, notifications).approve(
            pending_app_row.id, uuid4()
        )

        assert result.status == AppStatus.APPROVED
        assert result.notified is False

    async def test_list_pending(self, db_session):
        apps = [create_mock_app(status="pending"), create_mock_app(status="pending")]
        db_session.execute = AsyncMock(return_value=make_result(scalars=apps))

        pending = await ModerationService(db_session).list_pending()

        assert [item.app_id for item in pending] == [app.id for app in apps]
        assert pending[0].pricing_type == PricingType.ONE_TIME


class TestAdminRoutes:
    """/v1/admin/* with a real admin check against the mocked session."""

    @pytest.fixture
    def admin_client(self, app, mock_db_dependency, user):
        from vibestore.api.dependencies import get_current_user

        async def override_user():
            return user

        app.dependency_overrides.update(mock_db_dependency)
        app.dependency_overrides[get_current_user] = override_user
        yield TestClient(app)
        app.dependency_overrides.clear()

    def test_non_admin_is_403(self, admin_client, db_session):
        db_session.execute = AsyncMock(return_value=make_result(scalar="user"))

        response = admin_client.get("/v1/admin/apps/pending")

        assert response.status_code == 403

    def test_list_pending(self, admin_client, db_session, pending_app_row):
        db_session.execute = AsyncMock(
            side_effect=[make_result(scalar="admin"), make_result(scalars=[pending_app_row])]
        )

        response = admin_client.get("/v1/admin/apps/pending")

        assert response.status_code == 200
        assert response.json()["apps"][0]["app_id"] == str(pending_app_row.id)

    def test_approve(self, admin_client, db_session, pending_app_row):
        db_session.execute = AsyncMock(
            side_effect=[make_result(scalar="admin"), make_result(scalar=pending_app_row)]
        )

        response = admin_client.post(f"/v1/admin/apps/{pending_app_row.id}/approve")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "approved"
        assert body["notified"] is True

    def test_approve_missing_app_is_404(self, admin_client, db_session):
        db_session.execute = AsyncMock(
            side_effect=[make_result(scalar="admin"), make_result(scalar=None)]
        )

        response = admin_client.post(f"/v1/admin/apps/{uuid4()}/approve")

        assert response.status_code == 404

    def test_reject_reviewed_app_is_409(self, admin_client, db_session, approved_app_row):
        db_session.execute = AsyncMock(
            side_effect=[make_result(scalar="admin"), make_result(scalar=approved_app_row)]
        )

        response = admin_client.post(
            f"/v1/admin/apps/{approved_app_row.id}/reject", json={"reason": "too late"}
        )

        assert response.status_code == 409

    def test_reject_requires_reason(self, admin_client, db_session, pending_app_row):
        db_session.execute = AsyncMock(return_value=make_result(scalar="admin"))

        response = admin_client.post(
            f"/v1/admin/apps/{pending_app_row.id}/reject", json={"reason": ""}
        )

        assert response.status_code == 422
