# tests/test_account.py — Password change, personal data export and account erasure
import pytest
from httpx import AsyncClient
from sqlalchemy import select, func

from auth import AuthService
from models import (
    User, Project, Briefing, Notification, NotificationType, ProjectFile, DataDeletionLog,
    AuditLog, AuditEventType, BriefingStatus, utcnow,
)
from tests.conftest import get_auth_headers, make_project, make_briefing, PASSWORD

NEW_PASSWORD = "OutraSenhaForte456!"
CONFIRMED = {"password": PASSWORD, "confirmation": "EXCLUIR CONTA"}


async def _count(db_session, model, *conditions) -> int:
    return (await db_session.execute(select(func.count(model.id)).where(*conditions))).scalar()


@pytest.mark.asyncio
class TestChangePassword:
    async def test_change_password(self, client: AsyncClient, db_session, client_user):
        res = await client.post("/api/v1/auth/change-password", json={
            "current_password": PASSWORD, "new_password": NEW_PASSWORD, "confirm_password": NEW_PASSWORD,
        }, headers=get_auth_headers(client_user))
        assert res.status_code == 200
        assert res.json()["message"] == "Password changed"

        await db_session.refresh(client_user)
        assert AuthService.verify_password(NEW_PASSWORD, client_user.password_hash)
        assert await _count(db_session, Notification, Notification.user_id == client_user.id,
                            Notification.type == NotificationType.SISTEMA) == 1
        assert await _count(db_session, AuditLog, AuditLog.event_type == AuditEventType.PASSWORD_CHANGED) == 1

        login = await client.post("/api/v1/auth/login", json={"email": client_user.email, "password": NEW_PASSWORD})
        assert login.status_code == 200

    async def test_wrong_current_password(self, client: AsyncClient, db_session, client_user):
        res = await client.post("/api/v1/auth/change-password", json={
            "current_password": "nao-e-essa", "new_password": NEW_PASSWORD, "confirm_password": NEW_PASSWORD,
        }, headers=get_auth_headers(client_user))
        assert res.status_code == 400
        assert "current_password" in res.json()["fields"]

        await db_session.refresh(client_user)
        assert AuthService.verify_password(PASSWORD, client_user.password_hash)

    @pytest.mark.parametrize("new,confirm", [
        ("curta", "curta"),
        (NEW_PASSWORD, NEW_PASSWORD + "x"),
        (PASSWORD, PASSWORD),
    ])
    async def test_invalid_new_password(self, client: AsyncClient, client_user, new, confirm):
        res = await client.post("/api/v1/auth/change-password", json={
            "current_password": PASSWORD, "new_password": new, "confirm_password": confirm,
        }, headers=get_auth_headers(client_user))
        assert res.status_code == 400

    async def test_requires_session(self, client: AsyncClient):
        res = await client.post("/api/v1/auth/change-password", json={
            "current_password": PASSWORD, "new_password": NEW_PASSWORD, "confirm_password": NEW_PASSWORD,
        })
        assert res.status_code == 401


@pytest.mark.asyncio
class TestDataExport:
    async def test_export_contains_own_records(self, client: AsyncClient, db_session, client_user, other_client,
                                               admin_user):
        project = await make_project(db_session, client_user, completed_milestones=1)
        await make_briefing(db_session, other_client)
        await client.post(f"/api/v1/admin/projects/{project.id}/notes",
                          json={"content": "Kickoff marcado para segunda"}, headers=get_auth_headers(admin_user))

        res = await client.get("/api/v1/account/data-export", headers=get_auth_headers(client_user))
        assert res.status_code == 200
        data = res.json()["data"]

        assert data["user"]["email"] == client_user.email
        assert data["user"]["role"] == "CLIENT"
        assert "password_hash" not in data["user"]
        assert [b["id"] for b in data["briefings"]] == [project.briefing_id]
        assert len(data["projects"]) == 1
        exported = data["projects"][0]
        assert exported["id"] == project.id
        assert [m["completed"] for m in exported["milestones"]] == [True, False, False, False]
        assert exported["comments"][0]["content"] == "Kickoff marcado para segunda"
        assert exported["files"] == []
        assert [n["type"] for n in data["notifications"]] == ["NOVA_MENSAGEM"]
        assert data["dpo_contact"]
        assert await _count(db_session, AuditLog, AuditLog.event_type == AuditEventType.USER_DATA_EXPORTED) == 1

    async def test_export_for_new_account(self, client: AsyncClient, client_user):
        data = (await client.get("/api/v1/account/data-export", headers=get_auth_headers(client_user))).json()["data"]
        assert data["briefings"] == []
        assert data["projects"] == []
        assert data["notifications"] == []
        assert data["notification_preferences"] == []


@pytest.mark.asyncio
class TestAccountDeletion:
    async def test_delete_account(self, client: AsyncClient, db_session, client_user):
        user_id = client_user.id
        contract = await make_project(db_session, client_user, is_contractual=True)
        loose = await make_briefing(db_session, client_user, BriefingStatus.REJEITADO)
        contract_id, loose_id = contract.id, loose.id
        headers = get_auth_headers(client_user)

        res = await client.post("/api/v1/account/delete", json=CONFIRMED, headers=headers)
        assert res.status_code == 200
        assert res.json()["data"] == {"contractual_preserved": True}

        db_session.expunge_all()
        assert await _count(db_session, User, User.id == user_id) == 0
        assert await _count(db_session, Briefing, Briefing.id == loose_id) == 0
        kept = (await db_session.execute(select(Project.user_id).where(Project.id == contract_id))).scalar_one()
        assert kept is None

        log = (await db_session.execute(select(DataDeletionLog))).scalar_one()
        assert log.user_email == "cliente@agencia.dev"
        assert log.reason == "Exclusão solicitada pelo titular"
        assert await _count(db_session, AuditLog, AuditLog.event_type == AuditEventType.ACCOUNT_DELETED) == 1

        assert (await client.get("/api/v1/auth/me", headers=headers)).status_code == 401

    async def test_stored_bytes_are_removed(self, client: AsyncClient, db_session, upload_dir, client_user):
        project = await make_project(db_session, client_user)
        stored = upload_dir / "projects" / project.id / "contrato.pdf"
        stored.parent.mkdir(parents=True)
        stored.write_bytes(b"%PDF-1.4")
        db_session.add(ProjectFile(
            id="7b0e4c1e-5a8f-4d8b-9f0e-2c6a1d3b4e5f", project_id=project.id, user_id=client_user.id,
            original_name="contrato.pdf", stored_name="contrato.pdf", mime_type="application/pdf", size=8,
            storage_path=f"projects/{project.id}/contrato.pdf", created_at=utcnow(),
        ))
        await db_session.commit()

        res = await client.post("/api/v1/account/delete", json=CONFIRMED, headers=get_auth_headers(client_user))
        assert res.status_code == 200
        assert not stored.exists()

    async def test_wrong_password_keeps_account(self, client: AsyncClient, db_session, client_user):
        res = await client.post("/api/v1/account/delete", json={**CONFIRMED, "password": "errada123"},
                                headers=get_auth_headers(client_user))
        assert res.status_code == 400
        assert "password" in res.json()["fields"]
        assert await _count(db_session, User, User.id == client_user.id) == 1

    async def test_confirmation_phrase_required(self, client: AsyncClient, db_session, client_user):
        res = await client.post("/api/v1/account/delete", json={**CONFIRMED, "confirmation": "excluir"},
                                headers=get_auth_headers(client_user))
        assert res.status_code == 400
        assert "confirmation" in res.json()["fields"]
        assert await _count(db_session, User, User.id == client_user.id) == 1
