# tests/test_cron.py — Scheduled data retention sweep
from datetime import timedelta

import pytest
from httpx import AsyncClient
from sqlalchemy import select, func

import retention
from models import (
    User, Briefing, Project, ProjectMilestone, Notification, NotificationType, DataDeletionLog,
    BriefingStatus, AuditLog, AuditEventType, utcnow,
)
from reporting import add_months
from tests.conftest import make_user, make_briefing, make_project, get_auth_headers

CRON_HEADERS = {"Authorization": "Bearer test-cron-secret"}


def _months_ago(months: int, days: int = 0):
    return add_months(utcnow(), -months) - timedelta(days=days)


async def _exists(db_session, model, object_id) -> bool:
    return (await db_session.execute(select(model.id).where(model.id == object_id))).scalar_one_or_none() is not None


@pytest.mark.asyncio
class TestCronAuth:
    async def test_missing_header(self, client: AsyncClient):
        res = await client.get("/api/v1/cron/data-retention")
        assert res.status_code == 401

    async def test_wrong_secret(self, client: AsyncClient):
        res = await client.get("/api/v1/cron/data-retention", headers={"Authorization": "Bearer nope"})
        assert res.status_code == 401

    async def test_unconfigured_secret_refuses_everyone(self, client: AsyncClient, monkeypatch):
        monkeypatch.delenv("CRON_SECRET", raising=False)
        res = await client.get("/api/v1/cron/data-retention", headers={"Authorization": "Bearer "})
        assert res.status_code == 401

    async def test_empty_sweep(self, client: AsyncClient):
        res = await client.get("/api/v1/cron/data-retention", headers=CRON_HEADERS)
        assert res.status_code == 200
        body = res.json()
        assert body["success"] is True
        assert body["summary"] == {
            "warnings_sent": 0, "users_deleted": 0, "contractual_preserved": 0, "briefings_anonymized": 0,
        }
        assert body["errors"] == []
        assert body["duration"].endswith("ms")


@pytest.mark.asyncio
class TestInactivityWarning:
    async def test_warns_once(self, client: AsyncClient, db_session):
        dormant = await make_user(db_session, "dormente@agencia.dev", last_login_at=_months_ago(11, days=10))

        first = (await client.get("/api/v1/cron/data-retention", headers=CRON_HEADERS)).json()
        assert first["summary"]["warnings_sent"] == 1
        second = (await client.get("/api/v1/cron/data-retention", headers=CRON_HEADERS)).json()
        assert second["summary"]["warnings_sent"] == 0

        warned_at = (await db_session.execute(
            select(User.warning_sent_at).where(User.id == dormant.id)
        )).scalar_one()
        assert warned_at is not None
        notices = (await db_session.execute(
            select(func.count(Notification.id)).where(
                Notification.user_id == dormant.id, Notification.type == NotificationType.SISTEMA,
            )
        )).scalar()
        assert notices == 1

    async def test_recent_and_protected_users_are_skipped(self, client: AsyncClient, db_session, client_user):
        await make_user(db_session, "recente@agencia.dev", last_login_at=_months_ago(2))
        await make_user(db_session, "vip@agencia.dev", last_login_at=_months_ago(11, days=10), do_not_delete=True)
        await make_user(db_session, "naoverificado@agencia.dev", verified=False,
                        last_login_at=_months_ago(11, days=10))

        body = (await client.get("/api/v1/cron/data-retention", headers=CRON_HEADERS)).json()
        assert body["summary"]["warnings_sent"] == 0


@pytest.mark.asyncio
class TestInactiveDeletion:
    async def test_deletes_user_and_keeps_contractual_records(self, client: AsyncClient, db_session):
        gone = await make_user(db_session, "antigo@agencia.dev", last_login_at=_months_ago(13))
        contract = await make_project(db_session, gone, is_contractual=True)
        throwaway = await make_project(db_session, gone)
        loose = await make_briefing(db_session, gone, BriefingStatus.REJEITADO)
        contract_id, contract_briefing_id = contract.id, contract.briefing_id
        throwaway_id, loose_id = throwaway.id, loose.id

        body = (await client.get("/api/v1/cron/data-retention", headers=CRON_HEADERS)).json()
        assert body["summary"]["users_deleted"] == 1
        assert body["summary"]["contractual_preserved"] == 1

        assert not await _exists(db_session, User, gone.id)
        assert not await _exists(db_session, Project, throwaway_id)
        assert not await _exists(db_session, Briefing, loose_id)
        assert not await _exists(db_session, Briefing, contract_briefing_id)

        kept = (await db_session.execute(
            select(Project.user_id, Project.briefing_id).where(Project.id == contract_id)
        )).one()
        assert tuple(kept) == (None, None)
        milestones = (await db_session.execute(
            select(func.count(ProjectMilestone.id)).where(ProjectMilestone.project_id == throwaway_id)
        )).scalar()
        assert milestones == 0

        log = (await db_session.execute(select(DataDeletionLog))).scalar_one()
        assert log.user_email == "antigo@agencia.dev"
        assert log.reason == "Inatividade por 12 meses"
        assert log.deleted_projects == 1
        assert log.preserved_projects == 1
        assert log.deleted_briefings == 3

    async def test_never_logged_in_counts_from_signup(self, db_session):
        stale = await make_user(db_session, "fantasma@agencia.dev", created_at=_months_ago(14))
        fresh = await make_user(db_session, "novo@agencia.dev")

        result = await retention.delete_inactive_data(db_session)
        assert result["users_deleted"] == 1
        assert not await _exists(db_session, User, stale.id)
        assert await _exists(db_session, User, fresh.id)

    async def test_admins_and_protected_users_survive(self, db_session, admin_user):
        await make_user(db_session, "vip@agencia.dev", last_login_at=_months_ago(20), do_not_delete=True)
        admin_user.last_login_at = _months_ago(20)
        await db_session.commit()

        result = await retention.delete_inactive_data(db_session)
        assert result["users_deleted"] == 0


@pytest.mark.asyncio
class TestAnonymization:
    async def test_old_briefings_without_project(self, db_session, client_user):
        old = await make_briefing(db_session, client_user, BriefingStatus.REJEITADO, created_at=_months_ago(25),
                                  budget="R$ 10 mil", rejection_reason="Fora do escopo atendido")
        recent = await make_briefing(db_session, client_user, BriefingStatus.ENVIADO)
        with_project = await make_briefing(db_session, client_user, BriefingStatus.APROVADO,
                                           created_at=_months_ago(30))
        await make_project(db_session, client_user, briefing=with_project)
        old_id, recent_id, with_project_id = old.id, recent.id, with_project.id

        result = await retention.anonymize_briefings(db_session)
        assert result == {"briefings_anonymized": 1, "errors": []}

        rows = {
            bid: (company, objectives, budget, reason, user_id)
            for bid, company, objectives, budget, reason, user_id in (await db_session.execute(
                select(Briefing.id, Briefing.company_name, Briefing.objectives, Briefing.budget,
                       Briefing.rejection_reason, Briefing.user_id)
            )).all()
        }
        assert rows[old_id] == (
            "[ANONIMIZADO]", "[Dados removidos por política de retenção LGPD]", None, None, None,
        )
        assert rows[recent_id][0] == "Padaria Pão Quente"
        assert rows[with_project_id][0] == "Padaria Pão Quente"

        again = await retention.anonymize_briefings(db_session)
        assert again["briefings_anonymized"] == 0


@pytest.mark.asyncio
class TestManualRetentionRun:
    async def test_super_admin_runs_sweep(self, client: AsyncClient, db_session, super_admin):
        await make_user(db_session, "antigo@agencia.dev", last_login_at=_months_ago(13))

        res = await client.post("/api/v1/admin/data-retention/run", headers=get_auth_headers(super_admin))
        assert res.status_code == 200
        data = res.json()["data"]
        assert data["summary"]["users_deleted"] == 1
        assert data["errors"] == []

        audit = (await db_session.execute(
            select(AuditLog).where(AuditLog.event_type == AuditEventType.RETENTION_RUN)
        )).scalar_one()
        assert audit.user_id == super_admin.id
        assert audit.details["users_deleted"] == 1

        logs = (await client.get("/api/v1/admin/data-retention/logs", headers=get_auth_headers(super_admin))).json()
        assert [log["user_email"] for log in logs["data"]] == ["antigo@agencia.dev"]
        assert logs["data"][0]["reason"] == "Inatividade por 12 meses"

    async def test_admin_is_refused(self, client: AsyncClient, admin_user):
        res = await client.post("/api/v1/admin/data-retention/run", headers=get_auth_headers(admin_user))
        assert res.status_code == 403
        res = await client.get("/api/v1/admin/data-retention/logs", headers=get_auth_headers(admin_user))
        assert res.status_code == 403

    async def test_client_is_refused(self, client: AsyncClient, client_user):
        res = await client.post("/api/v1/admin/data-retention/run", headers=get_auth_headers(client_user))
        assert res.status_code == 403
