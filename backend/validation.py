# validation.py — Inbound payload schemas and the validate() entry point
# Every mutation and every filter set has a schema here. validate() is pure:
# it never touches the database.

import re
from datetime import datetime, timezone
from typing import Annotated, List, Literal, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from errors import ValidationError, fields_from_errors
from models import BriefingStatus, ProjectStatus, ServiceType, NotificationType

UUID_PATTERN = r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$"
_UUID_RE = re.compile(UUID_PATTERN)

Identifier = Annotated[str, Field(pattern=UUID_PATTERN)]

ModelT = TypeVar("ModelT", bound=BaseModel)


def validate(schema: Type[ModelT], payload) -> ModelT:
    """Return the narrowed model or raise ValidationError with per-field messages."""
    try:
        return schema.model_validate(payload)
    except PydanticValidationError as exc:
        raise ValidationError(fields=fields_from_errors(exc.errors()))


def validate_id(value: str, field: str = "id") -> str:
    if not isinstance(value, str) or not _UUID_RE.match(value):
        raise ValidationError(f"Invalid {field}", fields={field: "Invalid identifier"})
    return value


class Schema(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)


# ============================================================
# BRIEFINGS
# ============================================================

class BriefingDraftInput(Schema):
    """A draft may be saved half filled in."""
    service_type: Optional[ServiceType] = None
    company_name: Optional[str] = Field(default=None, max_length=100)
    segment: Optional[str] = Field(default=None, max_length=100)
    objectives: Optional[str] = Field(default=None, max_length=2000)
    budget: Optional[str] = Field(default=None, max_length=100)
    deadline: Optional[str] = Field(default=None, max_length=100)
    features: Optional[str] = Field(default=None, max_length=2000)
    references: Optional[str] = Field(default=None, max_length=2000)
    integrations: Optional[str] = Field(default=None, max_length=1000)
    additional_info: Optional[str] = Field(default=None, max_length=2000)


class BriefingSubmitInput(BriefingDraftInput):
    service_type: ServiceType
    company_name: str = Field(..., min_length=2, max_length=100)
    segment: str = Field(..., min_length=2, max_length=100)
    objectives: str = Field(..., min_length=10, max_length=2000)


class BriefingRejectInput(Schema):
    reason: str = Field(..., min_length=10, max_length=500)


class BriefingStatusInput(Schema):
    status: BriefingStatus


# ============================================================
# PROJECTS, MILESTONES, COMMENTS
# ============================================================

class ProjectStatusInput(Schema):
    status: ProjectStatus


class MilestoneToggleInput(Schema):
    milestone_id: Identifier
    # Omitted means flip the current value
    completed: Optional[bool] = None


class ProjectNoteInput(Schema):
    content: str = Field(..., min_length=10, max_length=1000)


class CommentInput(Schema):
    content: str = Field(..., min_length=1, max_length=5000)
    milestone_id: Optional[Identifier] = None


# ============================================================
# PRICING
# ============================================================

class PlanUpdateInput(Schema):
    name: str = Field(..., min_length=3, max_length=100)
    price: float = Field(..., gt=0)
    features: List[str] = Field(..., min_length=1, max_length=15)
    storage_limit: int = Field(..., gt=0, description="Storage quota in GB")

    @field_validator("features")
    @classmethod
    def validate_features(cls, v: List[str]) -> List[str]:
        cleaned = [f.strip() for f in v]
        if any(not f for f in cleaned):
            raise ValueError("Features cannot be empty")
        if any(len(f) > 200 for f in cleaned):
            raise ValueError("Features must be at most 200 characters")
        return cleaned


class PlanCreateInput(PlanUpdateInput):
    service_type: ServiceType


class PlanReorderInput(Schema):
    plan_ids: List[Identifier] = Field(..., min_length=1)

    @field_validator("plan_ids")
    @classmethod
    def validate_unique(cls, v: List[str]) -> List[str]:
        if len(set(v)) != len(v):
            raise ValueError("Plan ids must be unique")
        return v


# ============================================================
# NOTIFICATIONS
# ============================================================

class PreferenceInput(Schema):
    type: NotificationType
    email_enabled: bool = True
    push_enabled: bool = True
    in_app_enabled: bool = True


class PreferencesUpdateInput(Schema):
    preferences: List[PreferenceInput] = Field(..., min_length=1)


# ============================================================
# FILTERS
# Every field optional; absent means unconstrained.
# ============================================================

class _DateRangeFilter(Schema):
    search: Optional[str] = Field(default=None, max_length=100)
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None

    @field_validator("date_from", "date_to")
    @classmethod
    def as_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        if v is None:
            return v
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)

    @field_validator("search")
    @classmethod
    def blank_is_absent(cls, v: Optional[str]) -> Optional[str]:
        return v or None

    @model_validator(mode="after")
    def check_range(self):
        if self.date_from and self.date_to and self.date_from > self.date_to:
            raise ValueError("date_from must not be after date_to")
        return self


class BriefingFilters(_DateRangeFilter):
    status: Optional[BriefingStatus] = None
    service_type: Optional[ServiceType] = None


class ProjectFilters(_DateRangeFilter):
    status: Optional[ProjectStatus] = None
    service_type: Optional[ServiceType] = None
    user_id: Optional[Identifier] = None


class ClientFilters(_DateRangeFilter):
    status: Optional[Literal["active", "inactive"]] = None
