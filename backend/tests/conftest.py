# tests/conftest.py — Shared test fixtures
import os
import uuid
import tempfile
from datetime import timedelta

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

# Use SQLite for tests
TEST_DB_URL = "sqlite+aiosqlite:///./test.db"
os.environ["DATABASE_URL"] = TEST_DB_URL
os.environ["JWT_SECRET_KEY"] = "test-secret-key-for-unit-tests-only-min-32-chars"
os.environ["CRON_SECRET"] = "test-cron-secret"
os.environ["ENVIRONMENT"] = "test"
os.environ.setdefault("UPLOAD_DIR", tempfile.mkdtemp(prefix="agency-uploads-"))

from models import (
    Base, User, UserRole, Briefing, BriefingStatus, ServiceType, Project, ProjectStatus,
    ProjectMilestone, PricingPlan, utcnow,
)
from auth import AuthService
from database import get_db_session
from workflows import DEFAULT_MILESTONES
from main import app

PASSWORD = "TestPassword123!"


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    engine = create_async_engine(TEST_DB_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(db_engine):
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def client(db_engine):
    """HTTP test client with overridden DB dependency"""
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def upload_dir(tmp_path, monkeypatch):
    """Point file storage at a per-test directory"""
    import storage
    monkeypatch.setattr(storage, "UPLOAD_DIR", str(tmp_path))
    return tmp_path


# ============================================================
# USERS
# ============================================================

async def make_user(db_session, email: str, role: UserRole = UserRole.CLIENT, verified: bool = True, **kwargs) -> User:
    user = User(
        id=str(uuid.uuid4()),
        email=email,
        name=kwargs.pop("name", email.split("@")[0].title()),
        password_hash=AuthService.hash_password(PASSWORD),
        role=role,
        is_active=kwargs.pop("is_active", True),
        email_verified=utcnow() if verified else None,
        **kwargs,
    )
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest_asyncio.fixture
async def client_user(db_session):
    """A verified client"""
    return await make_user(db_session, "cliente@agencia.dev", company="Padaria Pão Quente")


@pytest_asyncio.fixture
async def other_client(db_session):
    return await make_user(db_session, "outro@agencia.dev")


@pytest_asyncio.fixture
async def unverified_client(db_session):
    return await make_user(db_session, "pendente@agencia.dev", verified=False)


@pytest_asyncio.fixture
async def admin_user(db_session):
    return await make_user(db_session, "admin@agencia.dev", role=UserRole.ADMIN)


@pytest_asyncio.fixture
async def super_admin(db_session):
    return await make_user(db_session, "root@agencia.dev", role=UserRole.SUPER_ADMIN)


def get_auth_headers(user: User) -> dict:
    """Generate auth headers for a user"""
    token = AuthService.create_access_token(AuthService.token_claims(user))
    return {"Authorization": f"Bearer {token}"}


# ============================================================
# ENTITY FACTORIES
# ============================================================

async def make_briefing(
    db_session,
    user: User,
    status: BriefingStatus = BriefingStatus.ENVIADO,
    service_type: ServiceType = ServiceType.ERP_BASICO,
    **kwargs,
) -> Briefing:
    briefing = Briefing(
        id=str(uuid.uuid4()),
        user_id=user.id if user else None,
        service_type=service_type,
        company_name=kwargs.pop("company_name", "Padaria Pão Quente"),
        segment=kwargs.pop("segment", "Alimentação"),
        objectives=kwargs.pop("objectives", "Controlar estoque e vendas da padaria"),
        status=status,
        submitted_at=None if status == BriefingStatus.RASCUNHO else utcnow(),
        **kwargs,
    )
    db_session.add(briefing)
    await db_session.commit()
    await db_session.refresh(briefing)
    return briefing


async def make_project(
    db_session,
    user: User,
    status: ProjectStatus = ProjectStatus.ATIVO,
    briefing: Briefing = None,
    completed_milestones: int = 0,
    **kwargs,
) -> Project:
    """Project with the four default milestones, the first N completed"""
    if briefing is None:
        briefing = await make_briefing(db_session, user, BriefingStatus.APROVADO)
    project = Project(
        id=str(uuid.uuid4()),
        user_id=user.id if user else None,
        briefing_id=briefing.id,
        name=kwargs.pop("name", briefing.company_name),
        description=briefing.objectives,
        status=status,
        progress=completed_milestones * 25,
        started_at=utcnow() - timedelta(days=10) if status != ProjectStatus.AGUARDANDO_APROVACAO else None,
        **kwargs,
    )
    db_session.add(project)
    for order, (name, description) in enumerate(DEFAULT_MILESTONES, start=1):
        done = order <= completed_milestones
        db_session.add(ProjectMilestone(
            id=str(uuid.uuid4()),
            project_id=project.id,
            name=name,
            description=description,
            order=order,
            completed=done,
            completed_at=utcnow() if done else None,
        ))
    await db_session.commit()
    await db_session.refresh(project)
    return project


async def make_plan(
    db_session,
    service_type: ServiceType = ServiceType.ERP_BASICO,
    order: int = 0,
    storage_limit: int = 1,
    is_active: bool = True,
) -> PricingPlan:
    plan = PricingPlan(
        id=str(uuid.uuid4()),
        service_type=service_type,
        name=f"Plano {service_type.value.title()}",
        price=1990.0,
        features=["Suporte por email", "Hospedagem inclusa"],
        storage_limit=storage_limit,
        is_active=is_active,
        order=order,
    )
    db_session.add(plan)
    await db_session.commit()
    await db_session.refresh(plan)
    return plan
