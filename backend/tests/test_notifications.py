"""Tests for the Notifications router."""
import uuid

import pytest
from sqlalchemy import select, func

from models import Notification, NotificationType, NotificationPreference, utcnow
from tests.conftest import get_auth_headers, make_project


async def _notify(db_session, user, ntype=NotificationType.PROJETO_ATUALIZADO, read=False, title="Atualização"):
    notification = Notification(
        id=str(uuid.uuid4()),
        user_id=user.id,
        type=ntype,
        title=title,
        message="O projeto mudou de status.",
        data={},
        read_at=utcnow() if read else None,
    )
    db_session.add(notification)
    await db_session.commit()
    return notification


@pytest.mark.asyncio
async def test_list_notifications_empty(client, client_user):
    resp = await client.get("/api/v1/notifications", headers=get_auth_headers(client_user))
    assert resp.status_code == 200
    assert resp.json()["data"] == {"notifications": [], "total": 0, "has_more": False}


@pytest.mark.asyncio
async def test_list_filters(client, db_session, client_user, other_client):
    await _notify(db_session, client_user)
    await _notify(db_session, client_user, NotificationType.NOVA_MENSAGEM, read=True)
    await _notify(db_session, other_client)
    headers = get_auth_headers(client_user)

    everything = (await client.get("/api/v1/notifications", headers=headers)).json()["data"]
    assert everything["total"] == 2

    unread = (await client.get("/api/v1/notifications?unread_only=true", headers=headers)).json()["data"]
    assert unread["total"] == 1
    assert unread["notifications"][0]["is_read"] is False

    by_type = (await client.get("/api/v1/notifications?type=NOVA_MENSAGEM", headers=headers)).json()["data"]
    assert [n["type"] for n in by_type["notifications"]] == ["NOVA_MENSAGEM"]

    paged = (await client.get("/api/v1/notifications?limit=1", headers=headers)).json()["data"]
    assert paged["has_more"] is True


@pytest.mark.asyncio
async def test_notification_count(client, db_session, client_user):
    await _notify(db_session, client_user)
    await _notify(db_session, client_user)
    await _notify(db_session, client_user, read=True)
    resp = await client.get("/api/v1/notifications/count", headers=get_auth_headers(client_user))
    assert resp.json()["data"] == {"unread": 2}


@pytest.mark.asyncio
async def test_mark_read(client, db_session, client_user):
    notification = await _notify(db_session, client_user)
    resp = await client.patch(f"/api/v1/notifications/{notification.id}/read", headers=get_auth_headers(client_user))
    assert resp.status_code == 200
    assert resp.json()["data"]["is_read"] is True

    await db_session.refresh(notification)
    assert notification.read_at is not None


@pytest.mark.asyncio
async def test_mark_all_read(client, db_session, client_user, other_client):
    await _notify(db_session, client_user)
    await _notify(db_session, client_user)
    theirs = await _notify(db_session, other_client)

    resp = await client.post("/api/v1/notifications/read-all", headers=get_auth_headers(client_user))
    assert resp.json()["data"] == {"marked": 2}

    await db_session.refresh(theirs)
    assert theirs.read_at is None


@pytest.mark.asyncio
async def test_delete_notification(client, db_session, client_user):
    notification = await _notify(db_session, client_user)
    resp = await client.delete(f"/api/v1/notifications/{notification.id}", headers=get_auth_headers(client_user))
    assert resp.status_code == 200
    count = (await db_session.execute(select(func.count(Notification.id)))).scalar()
    assert count == 0


@pytest.mark.asyncio
async def test_other_users_notification_is_not_found(client, db_session, client_user, other_client):
    notification = await _notify(db_session, other_client)
    headers = get_auth_headers(client_user)

    assert (await client.patch(f"/api/v1/notifications/{notification.id}/read", headers=headers)).status_code == 404
    assert (await client.delete(f"/api/v1/notifications/{notification.id}", headers=headers)).status_code == 404
    await db_session.refresh(notification)
    assert notification.read_at is None


@pytest.mark.asyncio
async def test_preference_defaults(client, client_user):
    resp = await client.get("/api/v1/notifications/preferences", headers=get_auth_headers(client_user))
    prefs = {p["type"]: p for p in resp.json()["data"]}
    assert set(prefs) == {t.value for t in NotificationType}
    assert prefs["NOVA_MENSAGEM"] == {
        "type": "NOVA_MENSAGEM", "email_enabled": True, "push_enabled": True, "in_app_enabled": True,
    }
    assert prefs["SISTEMA"]["in_app_enabled"] is True
    assert prefs["SISTEMA"]["email_enabled"] is False
    assert prefs["SISTEMA"]["push_enabled"] is False


@pytest.mark.asyncio
async def test_update_preferences_suppresses_in_app(client, db_session, client_user, admin_user):
    headers = get_auth_headers(client_user)
    resp = await client.put("/api/v1/notifications/preferences", json={"preferences": [
        {"type": "PROJETO_ATUALIZADO", "email_enabled": False, "push_enabled": True, "in_app_enabled": False},
    ]}, headers=headers)
    assert resp.status_code == 200

    # Upsert: a second write updates the same row
    await client.put("/api/v1/notifications/preferences", json={"preferences": [
        {"type": "PROJETO_ATUALIZADO", "email_enabled": True, "push_enabled": True, "in_app_enabled": False},
    ]}, headers=headers)
    rows = (await db_session.execute(
        select(NotificationPreference).where(NotificationPreference.user_id == client_user.id)
    )).scalars().all()
    assert len(rows) == 1
    assert rows[0].email_enabled is True

    prefs = {p["type"]: p for p in (await client.get("/api/v1/notifications/preferences",
                                                     headers=headers)).json()["data"]}
    assert prefs["PROJETO_ATUALIZADO"]["in_app_enabled"] is False

    project = await make_project(db_session, client_user)
    await client.patch(f"/api/v1/admin/projects/{project.id}", json={"status": "PAUSADO"},
                       headers=get_auth_headers(admin_user))
    count = (await client.get("/api/v1/notifications/count", headers=headers)).json()["data"]["unread"]
    assert count == 0


@pytest.mark.asyncio
async def test_unknown_preference_type(client, client_user):
    resp = await client.put("/api/v1/notifications/preferences", json={"preferences": [
        {"type": "NEWSLETTER", "in_app_enabled": False},
    ]}, headers=get_auth_headers(client_user))
    assert resp.status_code == 400
    assert "preferences.0.type" in resp.json()["fields"]
