from pydantic import BaseModel, Field, field_validator
from datetime import datetime, date, timezone
from typing import Any

PLANS = ("free", "pro", "enterprise")

def _assume_utc(v: datetime | None) -> datetime | None:
    if v is not None and v.tzinfo is None:
        return v.replace(tzinfo=timezone.utc)
    return v

class UserCreate(BaseModel):
    email: str
    password: str = Field(min_length=8)
    first_name: str | None = None
    last_name: str | None = None

class UserOut(BaseModel):
    id: int
    email: str
    first_name: str | None = None
    last_name: str | None = None
    is_superadmin: bool
    facebook_page_id: str | None = None
    campaign_goal: str | None = None
    target_audience: str | None = None
    daily_budget: float | None = None
    onboarding_complete: bool
    autopilot_enabled: bool
    auto_posting_enabled: bool
    auto_boosting_enabled: bool
    subscription_plan: str
    created_at: datetime | None = None

    class Config:
        from_attributes = True

class OnboardingPayload(BaseModel):
    facebook_page_id: str | None = None
    campaign_goal: str
    daily_budget: float = Field(default=50.0, gt=0)
    target_audience: str | None = None
    autopilot_enabled: bool = False
    auto_posting_enabled: bool = False
    auto_boosting_enabled: bool = False

class FacebookPageOut(BaseModel):
    id: int
    page_id: str
    page_name: str
    category: str | None = None
    follower_count: int | None = 0
    is_active: bool
    webhook_fields: list[str] | None = None
    last_webhook_at: datetime | None = None
    health_status: str | None = None
    last_health_check_at: datetime | None = None

    class Config:
        from_attributes = True

class AdAccountOut(BaseModel):
    id: int
    ad_account_id: str
    name: str
    currency: str | None = None
    account_status: int | None = None
    is_active: bool

    class Config:
        from_attributes = True

class AdAccountConnectIn(BaseModel):
    ad_account_id: str = Field(min_length=1)
    access_token: str | None = None

class PublishPostIn(BaseModel):
    page_id: str | None = None
    message: str = Field(min_length=1)
    link: str | None = None
    scheduled_time: datetime | None = None

    @field_validator("scheduled_time")
    @classmethod
    def assume_utc(cls, v):
        return _assume_utc(v)

class BoostPostIn(BaseModel):
    post_id: str
    daily_budget: float = Field(default=10.0, gt=0)
    duration_days: int = Field(default=3, ge=1, le=30)
    targeting: dict[str, Any] | None = None

class ScheduledBoostIn(BaseModel):
    post_id: str
    date: date
    budget: float | None = Field(default=None, gt=0)
    duration_days: int = Field(default=3, ge=1, le=30)

class ScheduledBoostOut(BaseModel):
    id: int
    post_id: str
    date: date
    budget: float | None = None
    duration_days: int | None = None
    status: str
    campaign_id: str | None = None
    last_error: str | None = None

    class Config:
        from_attributes = True

class InteractionOut(BaseModel):
    id: int
    page_id: int
    customer_id: str
    customer_name: str | None = None
    message: str
    response: str | None = None
    responded_by: str | None = None
    response_time: int | None = None
    sentiment: str | None = None
    urgency_score: int | None = 0
    source: str | None = None
    status: str
    is_auto_response: bool | None = False
    ai_suggested_reply: str | None = None
    created_at: datetime | None = None

    class Config:
        from_attributes = True

class RespondIn(BaseModel):
    response: str = Field(min_length=1)
    employee_id: int | None = None
    response_time: int | None = Field(default=None, ge=0)
    send_to_customer: bool = True

class SuggestionFeedbackIn(BaseModel):
    suggestion: str
    feedback: bool
    notes: str | None = None
    response_time_ms: int | None = None

class EmployeeCreate(BaseModel):
    name: str
    email: str
    role: str = "agent"

class EmployeeOut(BaseModel):
    id: int
    name: str
    email: str
    role: str
    avg_response_time: float | None = 0
    total_responses: int | None = 0
    is_active: bool
    last_active: datetime | None = None

    class Config:
        from_attributes = True

class AlertOut(BaseModel):
    id: int
    page_id: int | None = None
    ad_account_id: int | None = None
    alert_type: str
    severity: str
    message: str
    ai_suggestion: str | None = None
    is_resolved: bool
    resolved_at: datetime | None = None
    created_at: datetime | None = None

    class Config:
        from_attributes = True

class RecommendationOut(BaseModel):
    id: int
    type: str
    title: str
    description: str
    priority: str
    actionable: dict[str, Any] | None = None
    is_implemented: bool
    implemented_at: datetime | None = None
    created_at: datetime | None = None

    class Config:
        from_attributes = True

class NotificationOut(BaseModel):
    id: int
    title: str
    description: str | None = None
    type: str
    priority: str
    is_read: bool
    created_at: datetime | None = None

    class Config:
        from_attributes = True

class OptimizeIn(BaseModel):
    ad_data: dict[str, Any] = Field(default_factory=dict)
    objective: str | None = None
    target_audience: str | None = None

class ComplianceIn(BaseModel):
    content: str = Field(min_length=1)
    target_audience: str | None = None
    category: str | None = None

class AdCopyIn(BaseModel):
    product: str = Field(min_length=1)
    target_audience: str | None = None
    objective: str | None = None
    tone: str = "professional"

class TextIn(BaseModel):
    text: str = Field(min_length=1)

class GeneratePostIn(BaseModel):
    topic: str = Field(min_length=1)
    business_context: str | None = None
    content_type: str = "engagement"

class PlanContentIn(BaseModel):
    topic: str = Field(min_length=1)
    plan: str | None = None

    @field_validator("plan")
    @classmethod
    def check_plan(cls, v):
        if v is not None and v not in PLANS:
            raise ValueError(f"plan must be one of {', '.join(PLANS)}")
        return v

class ClaudeGenerateIn(BaseModel):
    prompt: str = Field(min_length=1)
    content_type: str = "post"
    brand: str | None = None
    audience: str | None = None

class QueueItemCreate(BaseModel):
    page_id: int | None = None
    title: str | None = None
    content: str = Field(min_length=1)
    hashtags: list[str] | None = None
    images: list[str] | None = None
    post_type: str = "text"
    status: str = "draft"
    scheduled_for: datetime | None = None

    @field_validator("scheduled_for")
    @classmethod
    def assume_utc(cls, v):
        return _assume_utc(v)

    @field_validator("status")
    @classmethod
    def check_status(cls, v):
        if v not in ("draft", "scheduled"):
            raise ValueError("status must be draft or scheduled")
        return v

class QueueItemUpdate(BaseModel):
    title: str | None = None
    content: str | None = None
    hashtags: list[str] | None = None
    status: str | None = None
    scheduled_for: datetime | None = None

    @field_validator("scheduled_for")
    @classmethod
    def assume_utc(cls, v):
        return _assume_utc(v)

class QueueItemOut(BaseModel):
    id: int
    page_id: int | None = None
    title: str | None = None
    content: str
    hashtags: list[str] | None = None
    images: list[str] | None = None
    post_type: str | None = None
    status: str
    scheduled_for: datetime | None = None
    published_at: datetime | None = None
    external_post_id: str | None = None
    seo_score: int | None = None
    estimated_reach: int | None = None
    failure_reason: str | None = None
    retry_count: int | None = 0
    flags: dict[str, Any] | None = Field(default_factory=dict)
    created_at: datetime | None = None

    class Config:
        from_attributes = True

class TemplateCreate(BaseModel):
    name: str
    category: str | None = None
    content: str = Field(min_length=1)
    hashtags: list[str] | None = None
    variables: list[str] | None = None
    is_public: bool = False

class TemplateOut(BaseModel):
    id: int
    name: str
    category: str | None = None
    content: str
    hashtags: list[str] | None = None
    variables: list[str] | None = None
    is_public: bool
    use_count: int | None = 0

    class Config:
        from_attributes = True

class RenderTemplateIn(BaseModel):
    variables: dict[str, Any] = Field(default_factory=dict)

class TimeSlot(BaseModel):
    day: int | None = Field(default=None, ge=0, le=6)
    hour: int = Field(ge=0, le=23)
    minute: int = Field(default=0, ge=0, le=59)

class ScheduleCreate(BaseModel):
    name: str
    page_id: int | None = None
    timezone: str = "UTC"
    frequency: str = "daily"
    time_slots: list[TimeSlot] = Field(default_factory=list)
    content_type: str = "mixed"
    is_active: bool = True
    auto_generate: bool = False

class ScheduleOut(BaseModel):
    id: int
    name: str
    page_id: int | None = None
    timezone: str
    frequency: str
    time_slots: list[dict[str, Any]] | None = None
    content_type: str
    is_active: bool
    auto_generate: bool

    class Config:
        from_attributes = True

class ScheduleUpdate(BaseModel):
    name: str | None = None
    page_id: int | None = None
    timezone: str | None = None
    frequency: str | None = None
    time_slots: list[TimeSlot] | None = None
    content_type: str | None = None
    is_active: bool | None = None
    auto_generate: bool | None = None
