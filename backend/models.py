# models.py — Database models for the agency portal
# - UUID string primary keys everywhere
# - 3-tier role system (CLIENT, ADMIN, SUPER_ADMIN)
# - Briefing → Project workflow with four fixed milestones
# - Notifications with per-type channel preferences
# - Data retention bookkeeping (LGPD)

import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum
from sqlalchemy import (
    Column, String, DateTime, JSON, Boolean, BigInteger, Integer, Float,
    Enum as SQLEnum, ForeignKey, Text, Index, UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utcnow():
    return datetime.now(timezone.utc)


def new_uuid():
    return str(uuid.uuid4())


def ensure_utc(value):
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ============================================================
# ENUMS
# ============================================================

class UserRole(str, PyEnum):
    CLIENT = "CLIENT"
    ADMIN = "ADMIN"
    SUPER_ADMIN = "SUPER_ADMIN"


ADMIN_ROLES = (UserRole.ADMIN, UserRole.SUPER_ADMIN)


class TokenType(str, PyEnum):
    VERIFICATION = "VERIFICATION"
    PASSWORD_RESET = "PASSWORD_RESET"


class ServiceType(str, PyEnum):
    ERP_BASICO = "ERP_BASICO"
    ERP_ECOMMERCE = "ERP_ECOMMERCE"
    ERP_PREMIUM = "ERP_PREMIUM"
    LANDING_IA = "LANDING_IA"
    LANDING_IA_WHATSAPP = "LANDING_IA_WHATSAPP"


class BriefingStatus(str, PyEnum):
    RASCUNHO = "RASCUNHO"
    ENVIADO = "ENVIADO"
    EM_ANALISE = "EM_ANALISE"
    APROVADO = "APROVADO"
    REJEITADO = "REJEITADO"


class ProjectStatus(str, PyEnum):
    AGUARDANDO_APROVACAO = "AGUARDANDO_APROVACAO"
    ATIVO = "ATIVO"
    PAUSADO = "PAUSADO"
    CONCLUIDO = "CONCLUIDO"
    CANCELADO = "CANCELADO"
    ARQUIVADO = "ARQUIVADO"


class NotificationType(str, PyEnum):
    NOVO_BRIEFING = "NOVO_BRIEFING"
    PROJETO_ATUALIZADO = "PROJETO_ATUALIZADO"
    NOVA_MENSAGEM = "NOVA_MENSAGEM"
    ARQUIVO_SOLICITADO = "ARQUIVO_SOLICITADO"
    PROJETO_CONCLUIDO = "PROJETO_CONCLUIDO"
    BRIEFING_APROVADO = "BRIEFING_APROVADO"
    BRIEFING_REJEITADO = "BRIEFING_REJEITADO"
    MILESTONE_CONCLUIDA = "MILESTONE_CONCLUIDA"
    SISTEMA = "SISTEMA"


class NotificationChannel(str, PyEnum):
    IN_APP = "IN_APP"
    EMAIL = "EMAIL"
    PUSH = "PUSH"


class AuditEventType(str, PyEnum):
    # Auth events
    USER_LOGIN = "auth.user.login"
    USER_REGISTER = "auth.user.register"
    USER_VERIFIED = "auth.user.verified"
    USER_DEACTIVATED = "auth.user.deactivated"
    PASSWORD_RESET = "auth.password.reset"
    PASSWORD_CHANGED = "auth.password.changed"
    ACCOUNT_DELETED = "auth.account.deleted"
    USER_DATA_EXPORTED = "lgpd.user_data.exported"
    RETENTION_RUN = "lgpd.retention.run"
    # Workflow events
    BRIEFING_SUBMITTED = "briefing.submitted"
    BRIEFING_STATUS_CHANGED = "briefing.status_changed"
    BRIEFING_APPROVED = "briefing.approved"
    BRIEFING_REJECTED = "briefing.rejected"
    PROJECT_STATUS_CHANGED = "project.status_changed"
    MILESTONE_TOGGLED = "project.milestone_toggled"
    PROJECT_NOTE_ADDED = "project.note_added"
    # File events
    FILE_UPLOADED = "file.uploaded"
    FILE_DELETED = "file.deleted"
    # Pricing events
    PLAN_CREATED = "pricing.plan.created"
    PLAN_UPDATED = "pricing.plan.updated"
    PLAN_TOGGLED = "pricing.plan.toggled"
    PLANS_REORDERED = "pricing.plans.reordered"


# ============================================================
# USERS
# ============================================================

class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=new_uuid)
    email = Column(String, unique=True, nullable=False, index=True)
    name = Column(String, nullable=True)
    password_hash = Column(String, nullable=False)
    role = Column(SQLEnum(UserRole), default=UserRole.CLIENT, nullable=False, index=True)
    company = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    email_verified = Column(DateTime(timezone=True), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    marketing_consent = Column(Boolean, default=False, nullable=False)
    last_login_at = Column(DateTime(timezone=True), nullable=True)
    # Retention bookkeeping
    warning_sent_at = Column(DateTime(timezone=True), nullable=True)
    do_not_delete = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    briefings = relationship("Briefing", back_populates="user")
    projects = relationship("Project", back_populates="user")
    notifications = relationship("Notification", back_populates="user")

    __table_args__ = (
        Index("idx_user_role_active", "role", "is_active"),
    )


class VerificationToken(Base):
    __tablename__ = "verification_tokens"

    id = Column(String, primary_key=True, default=new_uuid)
    identifier = Column(String, nullable=False, index=True)
    token = Column(String, unique=True, nullable=False)
    type = Column(SQLEnum(TokenType), nullable=False, default=TokenType.VERIFICATION)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        Index("idx_token_identifier_type", "identifier", "type"),
    )


# ============================================================
# BRIEFINGS
# ============================================================

class Briefing(Base):
    __tablename__ = "briefings"

    id = Column(String, primary_key=True, default=new_uuid)
    user_id = Column(String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    # Nullable only while the briefing is a draft
    service_type = Column(SQLEnum(ServiceType), nullable=True, index=True)
    company_name = Column(String, nullable=False, default="")
    segment = Column(String, nullable=True)
    objectives = Column(Text, nullable=True)
    budget = Column(String, nullable=True)
    deadline = Column(String, nullable=True)
    features = Column(Text, nullable=True)
    references = Column(Text, nullable=True)
    integrations = Column(Text, nullable=True)
    additional_info = Column(Text, nullable=True)
    status = Column(SQLEnum(BriefingStatus), default=BriefingStatus.RASCUNHO, nullable=False, index=True)
    rejection_reason = Column(Text, nullable=True)
    submitted_at = Column(DateTime(timezone=True), nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    is_contractual = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="briefings")
    project = relationship("Project", back_populates="briefing", uselist=False)

    __table_args__ = (
        Index("idx_briefing_user_status", "user_id", "status"),
    )


# ============================================================
# PROJECTS
# ============================================================

class Project(Base):
    __tablename__ = "projects"

    id = Column(String, primary_key=True, default=new_uuid)
    user_id = Column(String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    briefing_id = Column(String, ForeignKey("briefings.id", ondelete="SET NULL"), nullable=True, unique=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    status = Column(
        SQLEnum(ProjectStatus), default=ProjectStatus.AGUARDANDO_APROVACAO, nullable=False, index=True,
    )
    progress = Column(Integer, default=0, nullable=False)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    is_contractual = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, index=True)

    user = relationship("User", back_populates="projects")
    briefing = relationship("Briefing", back_populates="project")
    milestones = relationship(
        "ProjectMilestone", back_populates="project",
        order_by="ProjectMilestone.order", cascade="all, delete-orphan",
    )
    comments = relationship("ProjectComment", back_populates="project", cascade="all, delete-orphan")
    files = relationship("ProjectFile", back_populates="project", cascade="all, delete-orphan")

    __table_args__ = (
        Index("idx_project_user_status", "user_id", "status"),
    )


class ProjectMilestone(Base):
    __tablename__ = "project_milestones"

    id = Column(String, primary_key=True, default=new_uuid)
    project_id = Column(String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    order = Column(Integer, nullable=False)
    completed = Column(Boolean, default=False, nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    project = relationship("Project", back_populates="milestones")

    __table_args__ = (
        UniqueConstraint("project_id", "order", name="uq_milestone_project_order"),
    )


class ProjectComment(Base):
    __tablename__ = "project_comments"

    id = Column(String, primary_key=True, default=new_uuid)
    project_id = Column(String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    milestone_id = Column(
        String, ForeignKey("project_milestones.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)

    project = relationship("Project", back_populates="comments")
    user = relationship("User")


class ProjectFile(Base):
    __tablename__ = "project_files"

    id = Column(String, primary_key=True, default=new_uuid)
    project_id = Column(String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=True, index=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    original_name = Column(String, nullable=False)
    stored_name = Column(String, nullable=False)
    mime_type = Column(String, nullable=False)
    size = Column(BigInteger, nullable=False, default=0)
    storage_path = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)

    project = relationship("Project", back_populates="files")
    user = relationship("User")


# ============================================================
# PRICING
# ============================================================

class PricingPlan(Base):
    __tablename__ = "pricing_plans"

    id = Column(String, primary_key=True, default=new_uuid)
    service_type = Column(SQLEnum(ServiceType), unique=True, nullable=False)
    name = Column(String, nullable=False)
    price = Column(Float, nullable=False)
    features = Column(JSON, nullable=False, default=list)
    # Gigabytes
    storage_limit = Column(Integer, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    order = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


# ============================================================
# NOTIFICATIONS
# ============================================================

class Notification(Base):
    __tablename__ = "notifications"

    id = Column(String, primary_key=True, default=new_uuid)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(SQLEnum(NotificationType), nullable=False, index=True)
    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    data = Column(JSON, nullable=False, default=dict)
    read_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)

    user = relationship("User", back_populates="notifications")

    __table_args__ = (
        Index("idx_notification_user_read", "user_id", "read_at"),
    )


class NotificationPreference(Base):
    __tablename__ = "notification_preferences"

    id = Column(String, primary_key=True, default=new_uuid)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(SQLEnum(NotificationType), nullable=False)
    email_enabled = Column(Boolean, default=True, nullable=False)
    push_enabled = Column(Boolean, default=True, nullable=False)
    in_app_enabled = Column(Boolean, default=True, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "type", name="uq_preference_user_type"),
    )


# ============================================================
# AUDIT & RETENTION
# ============================================================

class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(String, primary_key=True, default=new_uuid)
    timestamp = Column(DateTime(timezone=True), default=utcnow, index=True)
    event_type = Column(SQLEnum(AuditEventType), nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    resource_type = Column(String, nullable=True)
    resource_id = Column(String, nullable=True)
    details = Column(JSON, nullable=True)

    __table_args__ = (
        Index("idx_audit_resource", "resource_type", "resource_id"),
        Index("idx_audit_event_timestamp", "event_type", "timestamp"),
    )


class DataDeletionLog(Base):
    __tablename__ = "data_deletion_logs"

    id = Column(String, primary_key=True, default=new_uuid)
    user_id = Column(String, nullable=False, index=True)
    user_email = Column(String, nullable=False)
    reason = Column(String, nullable=False)
    deleted_briefings = Column(Integer, default=0, nullable=False)
    deleted_projects = Column(Integer, default=0, nullable=False)
    preserved_briefings = Column(Integer, default=0, nullable=False)
    preserved_projects = Column(Integer, default=0, nullable=False)
    deleted_at = Column(DateTime(timezone=True), default=utcnow, index=True)
