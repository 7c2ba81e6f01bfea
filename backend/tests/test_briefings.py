# tests/test_briefings.py — Briefing drafts, submission and admin review
import uuid
from datetime import datetime, timezone

import pytest
from httpx import AsyncClient
from sqlalchemy import select, func

import workflows
from auth import to_current_user
from models import (
    Briefing, BriefingStatus, Project, ProjectMilestone, Notification, NotificationType,
    AuditLog, AuditEventType,
)
from tests.conftest import get_auth_headers, make_briefing, make_project

SUBMISSION = {
    "service_type": "ERP_ECOMMERCE",
    "company_name": "Loja da Esquina",
    "segment": "Varejo",
    "objectives": "Vender online e integrar o estoque da loja física",
}


async def _count(db_session, model, *conditions) -> int:
    return (await db_session.execute(select(func.count(model.id)).where(*conditions))).scalar()


@pytest.mark.asyncio
class TestDrafts:
    async def test_no_draft_yet(self, client: AsyncClient, client_user):
        res = await client.get("/api/v1/briefings/draft", headers=get_auth_headers(client_user))
        assert res.status_code == 200
        assert res.json() == {"success": True}

    async def test_save_and_load_partial_draft(self, client: AsyncClient, client_user):
        headers = get_auth_headers(client_user)
        res = await client.put("/api/v1/briefings/draft", json={"segment": "Varejo"}, headers=headers)
        assert res.status_code == 200
        draft_id = res.json()["data"]["id"]

        res = await client.put("/api/v1/briefings/draft", json={"company_name": "Loja"}, headers=headers)
        assert res.json()["data"]["id"] == draft_id

        loaded = (await client.get("/api/v1/briefings/draft", headers=headers)).json()["data"]
        assert loaded["status"] == "RASCUNHO"
        assert loaded["segment"] == "Varejo"
        assert loaded["company_name"] == "Loja"

    async def test_admin_cannot_use_client_routes(self, client: AsyncClient, admin_user):
        res = await client.get("/api/v1/briefings/draft", headers=get_auth_headers(admin_user))
        assert res.status_code == 403


@pytest.mark.asyncio
class TestSubmission:
    async def test_submit_promotes_draft_and_notifies_admins(
        self, client: AsyncClient, db_session, client_user, admin_user, super_admin,
    ):
        headers = get_auth_headers(client_user)
        draft = await client.put("/api/v1/briefings/draft", json={"budget": "R$ 10 mil"}, headers=headers)
        draft_id = draft.json()["data"]["id"]

        res = await client.post("/api/v1/briefings", json=SUBMISSION, headers=headers)
        assert res.status_code == 201
        data = res.json()["data"]
        assert data["id"] == draft_id
        assert data["status"] == "ENVIADO"
        assert data["submitted_at"] is not None
        assert data["budget"] == "R$ 10 mil"

        assert await _count(db_session, Notification, Notification.type == NotificationType.NOVO_BRIEFING) == 2
        assert await _count(db_session, Notification, Notification.user_id == client_user.id) == 0

    async def test_submit_rejects_short_fields(self, client: AsyncClient, client_user):
        res = await client.post("/api/v1/briefings", json={**SUBMISSION, "objectives": "curto"},
                                headers=get_auth_headers(client_user))
        assert res.status_code == 400
        assert "objectives" in res.json()["fields"]

    async def test_list_and_get_only_own(self, client: AsyncClient, db_session, client_user, other_client):
        mine = await make_briefing(db_session, client_user)
        theirs = await make_briefing(db_session, other_client)
        headers = get_auth_headers(client_user)

        listed = (await client.get("/api/v1/briefings", headers=headers)).json()["data"]
        assert [b["id"] for b in listed] == [mine.id]

        assert (await client.get(f"/api/v1/briefings/{mine.id}", headers=headers)).status_code == 200
        assert (await client.get(f"/api/v1/briefings/{theirs.id}", headers=headers)).status_code == 404
        assert (await client.get("/api/v1/briefings/not-a-uuid", headers=headers)).status_code == 400


@pytest.mark.asyncio
class TestApproval:
    async def test_approve_creates_project_with_four_milestones(
        self, client: AsyncClient, db_session, client_user, admin_user,
    ):
        briefing = await make_briefing(db_session, client_user, BriefingStatus.EM_ANALISE)
        res = await client.post(f"/api/v1/admin/briefings/{briefing.id}/approve",
                                headers=get_auth_headers(admin_user))
        assert res.status_code == 200
        project = res.json()["data"]
        assert project["status"] == "AGUARDANDO_APROVACAO"
        assert project["progress"] == 0
        assert project["name"] == briefing.company_name
        assert project["user_id"] == client_user.id

        milestones = (await db_session.execute(
            select(ProjectMilestone).where(ProjectMilestone.project_id == project["id"])
            .order_by(ProjectMilestone.order)
        )).scalars().all()
        assert [(m.order, m.name, m.completed) for m in milestones] == [
            (1, "Planejamento", False), (2, "Desenvolvimento", False),
            (3, "Testes", False), (4, "Entrega", False),
        ]

        await db_session.refresh(briefing)
        assert briefing.status == BriefingStatus.APROVADO
        assert briefing.reviewed_at is not None
        assert await _count(db_session, Notification, Notification.user_id == client_user.id,
                            Notification.type == NotificationType.BRIEFING_APROVADO) == 1
        assert await _count(db_session, AuditLog, AuditLog.event_type == AuditEventType.BRIEFING_APPROVED) == 1

    async def test_approve_twice_conflicts(self, client: AsyncClient, db_session, client_user, admin_user):
        briefing = await make_briefing(db_session, client_user, BriefingStatus.ENVIADO)
        project = await make_project(db_session, client_user, briefing=briefing)
        res = await client.post(f"/api/v1/admin/briefings/{briefing.id}/approve",
                                headers=get_auth_headers(admin_user))
        assert res.status_code == 409
        ids = (await db_session.execute(select(Project.id).where(Project.briefing_id == briefing.id))).scalars().all()
        assert ids == [project.id]

    @pytest.mark.parametrize("status", [BriefingStatus.RASCUNHO, BriefingStatus.REJEITADO, BriefingStatus.APROVADO])
    async def test_approve_requires_reviewable_status(
        self, client: AsyncClient, db_session, client_user, admin_user, status,
    ):
        briefing = await make_briefing(db_session, client_user, status)
        res = await client.post(f"/api/v1/admin/briefings/{briefing.id}/approve",
                                headers=get_auth_headers(admin_user))
        assert res.status_code == 400
        assert await _count(db_session, Project) == 0

    async def test_failed_milestone_creation_rolls_everything_back(
        self, db_session, client_user, admin_user, monkeypatch,
    ):
        briefing = await make_briefing(db_session, client_user, BriefingStatus.ENVIADO)
        briefing_id = briefing.id

        def boom(db, project):
            raise RuntimeError("milestone insert failed")

        monkeypatch.setattr(workflows, "create_default_milestones", boom)
        with pytest.raises(RuntimeError):
            await workflows.approve_briefing(db_session, to_current_user(admin_user), briefing_id)

        status = (await db_session.execute(
            select(Briefing.status).where(Briefing.id == briefing_id)
        )).scalar_one()
        assert status == BriefingStatus.ENVIADO
        assert await _count(db_session, Project) == 0
        assert await _count(db_session, ProjectMilestone) == 0
        assert await _count(db_session, Notification) == 0
        assert await _count(db_session, AuditLog) == 0

    async def test_unknown_briefing(self, client: AsyncClient, admin_user):
        res = await client.post(f"/api/v1/admin/briefings/{uuid.uuid4()}/approve",
                                headers=get_auth_headers(admin_user))
        assert res.status_code == 404


@pytest.mark.asyncio
class TestRejection:
    async def test_reject_with_reason(self, client: AsyncClient, db_session, client_user, admin_user):
        briefing = await make_briefing(db_session, client_user, BriefingStatus.ENVIADO)
        reason = "Faltam detalhes sobre as integrações desejadas"
        res = await client.post(f"/api/v1/admin/briefings/{briefing.id}/reject", json={"reason": reason},
                                headers=get_auth_headers(admin_user))
        assert res.status_code == 200
        assert res.json()["data"]["status"] == "REJEITADO"
        assert res.json()["data"]["rejection_reason"] == reason
        assert await _count(db_session, Notification, Notification.type == NotificationType.BRIEFING_REJEITADO) == 1

    @pytest.mark.parametrize("reason", ["curto", "x" * 501])
    async def test_reason_out_of_bounds_changes_nothing(
        self, client: AsyncClient, db_session, client_user, admin_user, reason,
    ):
        briefing = await make_briefing(db_session, client_user, BriefingStatus.ENVIADO)
        res = await client.post(f"/api/v1/admin/briefings/{briefing.id}/reject", json={"reason": reason},
                                headers=get_auth_headers(admin_user))
        assert res.status_code == 400
        assert "reason" in res.json()["fields"]
        await db_session.refresh(briefing)
        assert briefing.status == BriefingStatus.ENVIADO
        assert await _count(db_session, Notification) == 0


@pytest.mark.asyncio
class TestManualStatus:
    async def test_allowed_move(self, client: AsyncClient, db_session, client_user, admin_user):
        briefing = await make_briefing(db_session, client_user, BriefingStatus.ENVIADO)
        res = await client.patch(f"/api/v1/admin/briefings/{briefing.id}/status", json={"status": "EM_ANALISE"},
                                 headers=get_auth_headers(admin_user))
        assert res.status_code == 200
        assert res.json()["data"] == {
            "briefing_id": briefing.id, "old_status": "ENVIADO", "new_status": "EM_ANALISE",
        }

    async def test_back_to_draft_clears_submission(self, client: AsyncClient, db_session, client_user, admin_user):
        briefing = await make_briefing(db_session, client_user, BriefingStatus.ENVIADO)
        await client.patch(f"/api/v1/admin/briefings/{briefing.id}/status", json={"status": "RASCUNHO"},
                           headers=get_auth_headers(admin_user))
        await db_session.refresh(briefing)
        assert briefing.status == BriefingStatus.RASCUNHO
        assert briefing.submitted_at is None

    async def test_back_to_draft_refused_when_client_has_draft(
        self, client: AsyncClient, db_session, client_user, admin_user,
    ):
        await make_briefing(db_session, client_user, BriefingStatus.RASCUNHO)
        sent = await make_briefing(db_session, client_user, BriefingStatus.ENVIADO)

        res = await client.patch(f"/api/v1/admin/briefings/{sent.id}/status", json={"status": "RASCUNHO"},
                                 headers=get_auth_headers(admin_user))
        assert res.status_code == 409
        await db_session.refresh(sent)
        assert sent.status == BriefingStatus.ENVIADO
        drafts = await _count(db_session, Briefing, Briefing.user_id == client_user.id,
                              Briefing.status == BriefingStatus.RASCUNHO)
        assert drafts == 1

    @pytest.mark.parametrize("start,target", [
        (BriefingStatus.RASCUNHO, "EM_ANALISE"),
        (BriefingStatus.ENVIADO, "APROVADO"),
        (BriefingStatus.APROVADO, "ENVIADO"),
        (BriefingStatus.REJEITADO, "EM_ANALISE"),
    ])
    async def test_illegal_moves(self, client: AsyncClient, db_session, client_user, admin_user, start, target):
        briefing = await make_briefing(db_session, client_user, start)
        res = await client.patch(f"/api/v1/admin/briefings/{briefing.id}/status", json={"status": target},
                                 headers=get_auth_headers(admin_user))
        assert res.status_code == 400
        await db_session.refresh(briefing)
        assert briefing.status == start


@pytest.mark.asyncio
class TestAdminListing:
    async def test_filters_and_stats(self, client: AsyncClient, db_session, client_user, other_client, admin_user):
        await make_briefing(db_session, client_user, BriefingStatus.ENVIADO, company_name="Padaria Central")
        await make_briefing(db_session, other_client, BriefingStatus.APROVADO, company_name="Oficina Rápida")
        headers = get_auth_headers(admin_user)

        res = await client.get("/api/v1/admin/briefings", headers=headers)
        body = res.json()["data"]
        assert body["total"] == 2
        assert body["stats"]["enviados"] == 1
        assert body["stats"]["aprovados"] == 1
        assert body["stats"]["em_analise"] == 0

        res = await client.get("/api/v1/admin/briefings?search=padaria", headers=headers)
        assert [b["company_name"] for b in res.json()["data"]["briefings"]] == ["Padaria Central"]

        res = await client.get("/api/v1/admin/briefings?status=APROVADO", headers=headers)
        assert res.json()["data"]["total"] == 1
        assert res.json()["data"]["briefings"][0]["user"]["email"] == other_client.email

    async def test_date_range_is_inclusive(self, client: AsyncClient, db_session, client_user, other_client,
                                           admin_user):
        first = await make_briefing(db_session, client_user, created_at=datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc))
        last = await make_briefing(db_session, other_client, BriefingStatus.EM_ANALISE,
                                   created_at=datetime(2026, 3, 31, 18, 0, tzinfo=timezone.utc))
        await make_briefing(db_session, client_user, created_at=datetime(2026, 4, 2, 9, 0, tzinfo=timezone.utc))
        await make_briefing(db_session, client_user, created_at=datetime(2026, 2, 27, 9, 0, tzinfo=timezone.utc))
        headers = get_auth_headers(admin_user)
        window = {"date_from": "2026-03-01T09:00:00Z", "date_to": "2026-03-31T18:00:00Z"}

        res = await client.get("/api/v1/admin/briefings", params=window, headers=headers)
        body = res.json()["data"]
        assert body["total"] == 2
        assert {b["id"] for b in body["briefings"]} == {first.id, last.id}

        res = await client.get("/api/v1/admin/briefings", params={**window, "status": "EM_ANALISE"}, headers=headers)
        assert [b["id"] for b in res.json()["data"]["briefings"]] == [last.id]

        res = await client.get("/api/v1/admin/briefings", params={**window, "search": "outro@"}, headers=headers)
        assert [b["id"] for b in res.json()["data"]["briefings"]] == [last.id]

    async def test_invalid_filter(self, client: AsyncClient, admin_user):
        res = await client.get("/api/v1/admin/briefings?status=PERDIDO", headers=get_auth_headers(admin_user))
        assert res.status_code == 400
        assert "status" in res.json()["fields"]

    async def test_detail(self, client: AsyncClient, db_session, client_user, admin_user):
        briefing = await make_briefing(db_session, client_user)
        res = await client.get(f"/api/v1/admin/briefings/{briefing.id}", headers=get_auth_headers(admin_user))
        assert res.status_code == 200
        assert res.json()["data"]["user"]["id"] == client_user.id
        assert res.json()["data"]["project_id"] is None


class TestBriefingTransitionTable:
    def test_manual_moves(self):
        assert workflows.can_transition_briefing(BriefingStatus.RASCUNHO, BriefingStatus.ENVIADO)
        assert workflows.can_transition_briefing(BriefingStatus.EM_ANALISE, BriefingStatus.ENVIADO)
        assert not workflows.can_transition_briefing(BriefingStatus.RASCUNHO, BriefingStatus.APROVADO)

    def test_review_outcomes_are_terminal(self):
        for status in (BriefingStatus.APROVADO, BriefingStatus.REJEITADO):
            assert not any(workflows.can_transition_briefing(status, target) for target in BriefingStatus)
