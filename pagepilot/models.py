# Copyright (c) 2026 Mohammed Hassan. All rights reserved.
# Proprietary and confidential. Unauthorized copying, modification, distribution, or use is prohibited.

from sqlalchemy import Column, Integer, String, Text, DateTime, Date, JSON, ForeignKey, Boolean, Float, UniqueConstraint
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()

class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    password_hash = Column(String, nullable=True)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    is_active = Column(Boolean, default=True)
    is_superadmin = Column(Boolean, default=False)

    facebook_user_id = Column(String, index=True, nullable=True)
    facebook_page_id = Column(String, nullable=True)
    campaign_goal = Column(String, nullable=True)
    target_audience = Column(Text, nullable=True)
    daily_budget = Column(Float, default=50.0)
    onboarding_complete = Column(Boolean, default=False)
    autopilot_enabled = Column(Boolean, default=False)
    auto_posting_enabled = Column(Boolean, default=False)
    auto_boosting_enabled = Column(Boolean, default=False)
    automation_active = Column(Boolean, default=False)
    subscription_plan = Column(String, default="free") # free, pro, enterprise

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    pages = relationship("FacebookPage", back_populates="user", cascade="all, delete-orphan")
    ad_accounts = relationship("FacebookAdAccount", back_populates="user", cascade="all, delete-orphan")
    api_keys = relationship("ApiKey", back_populates="user", cascade="all, delete-orphan")

    @property
    def display_name(self) -> str:
        parts = [p for p in (self.first_name, self.last_name) if p]
        return " ".join(parts) or self.email

class ApiKey(Base):
    __tablename__ = "api_keys"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    name = Column(String, nullable=False)
    key_hash = Column(String, index=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    revoked_at = Column(DateTime(timezone=True), nullable=True)
    last_used_at = Column(DateTime(timezone=True), nullable=True)

    user = relationship("User", back_populates="api_keys")

class FacebookPage(Base):
    __tablename__ = "facebook_pages"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    page_id = Column(String, index=True, nullable=False)
    page_name = Column(String, nullable=False)
    access_token = Column(Text, nullable=True)
    category = Column(String, nullable=True)
    follower_count = Column(Integer, default=0)
    is_active = Column(Boolean, default=True)
    webhook_fields = Column(JSON, nullable=True)
    last_webhook_at = Column(DateTime(timezone=True), nullable=True)
    health_status = Column(String, default="unknown") # unknown, healthy, warning, restricted, error
    health_failures = Column(Integer, default=0) # consecutive failed health checks
    last_health_check_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    user = relationship("User", back_populates="pages")
    interactions = relationship("CustomerInteraction", back_populates="page", cascade="all, delete-orphan")

    __table_args__ = (UniqueConstraint("user_id", "page_id", name="uq_user_page"),)

class FacebookAdAccount(Base):
    __tablename__ = "facebook_ad_accounts"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    ad_account_id = Column(String, nullable=False)
    name = Column(String, nullable=False)
    access_token = Column(Text, nullable=True)
    currency = Column(String, default="USD")
    account_status = Column(Integer, nullable=True) # Meta status code, 1 = active
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    user = relationship("User", back_populates="ad_accounts")
    metrics = relationship("AdMetric", back_populates="ad_account", cascade="all, delete-orphan")

    __table_args__ = (UniqueConstraint("user_id", "ad_account_id", name="uq_user_ad_account"),)

class AdMetric(Base):
    __tablename__ = "ad_metrics"
    id = Column(Integer, primary_key=True, index=True)
    ad_account_id = Column(Integer, ForeignKey("facebook_ad_accounts.id"), nullable=False)
    campaign_id = Column(String, index=True, nullable=False)
    campaign_name = Column(String, nullable=True)
    spend = Column(Float, default=0.0)
    impressions = Column(Integer, default=0)
    clicks = Column(Integer, default=0)
    conversions = Column(Integer, default=0)
    reach = Column(Integer, default=0)
    frequency = Column(Float, default=0.0)
    cpm = Column(Float, default=0.0)
    cpc = Column(Float, default=0.0)
    ctr = Column(Float, default=0.0)
    date = Column(Date, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    ad_account = relationship("FacebookAdAccount", back_populates="metrics")

    # one row per campaign per day; re-syncs overwrite
    __table_args__ = (UniqueConstraint("ad_account_id", "campaign_id", "date", name="uq_ad_metric_day"),)

class CustomerInteraction(Base):
    __tablename__ = "customer_interactions"
    id = Column(Integer, primary_key=True, index=True)
    page_id = Column(Integer, ForeignKey("facebook_pages.id"), nullable=False)
    customer_id = Column(String, index=True, nullable=False)
    customer_name = Column(String, nullable=True)
    message = Column(Text, nullable=False)
    response = Column(Text, nullable=True)
    responded_by = Column(String, nullable=True) # "ai" or employee id
    response_time = Column(Integer, nullable=True) # seconds
    sentiment = Column(String, nullable=True)
    urgency_score = Column(Integer, default=0)
    ai_classification = Column(String, nullable=True)
    source = Column(String, default="messenger") # messenger, comment, review, postback, websocket
    status = Column(String, default="pending") # pending, responded, escalated
    is_auto_response = Column(Boolean, default=False)
    meta = Column("metadata", JSON, nullable=True)
    ai_suggested_reply = Column(Text, nullable=True)
    ai_feedback_score = Column(Integer, nullable=True)
    ai_feedback_notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    page = relationship("FacebookPage", back_populates="interactions")

class Employee(Base):
    __tablename__ = "employees"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    name = Column(String, nullable=False)
    email = Column(String, nullable=False)
    role = Column(String, default="agent")
    avg_response_time = Column(Float, default=0.0)
    total_responses = Column(Integer, default=0)
    is_active = Column(Boolean, default=True)
    last_active = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

class RestrictionAlert(Base):
    __tablename__ = "restriction_alerts"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    page_id = Column(Integer, ForeignKey("facebook_pages.id"), nullable=True)
    ad_account_id = Column(Integer, ForeignKey("facebook_ad_accounts.id"), nullable=True)
    alert_type = Column(String, nullable=False)
    severity = Column(String, default="medium") # low, medium, high, critical
    message = Column(Text, nullable=False)
    ai_suggestion = Column(Text, nullable=True)
    is_resolved = Column(Boolean, default=False)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

class AIRecommendation(Base):
    __tablename__ = "ai_recommendations"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    type = Column(String, nullable=False) # budget, timing, content, audience
    title = Column(String, nullable=False)
    description = Column(Text, nullable=False)
    priority = Column(String, default="medium")
    actionable = Column(JSON, nullable=True)
    is_implemented = Column(Boolean, default=False)
    implemented_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

class ContentQueueItem(Base):
    __tablename__ = "content_queue"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    page_id = Column(Integer, ForeignKey("facebook_pages.id"), nullable=True)
    title = Column(String, nullable=True)
    content = Column(Text, nullable=False)
    hashtags = Column(JSON, nullable=True)
    images = Column(JSON, nullable=True)
    post_type = Column(String, default="text") # text, image, link
    status = Column(String, default="draft", index=True) # draft, scheduled, publishing, published, failed, cancelled, remote_scheduled
    scheduled_for = Column(DateTime(timezone=True), nullable=True, index=True)
    published_at = Column(DateTime(timezone=True), nullable=True)
    external_post_id = Column(String, nullable=True)
    seo_score = Column(Integer, nullable=True)
    estimated_reach = Column(Integer, nullable=True)
    performance_score = Column(Float, nullable=True)
    score_updated_at = Column(DateTime(timezone=True), nullable=True)
    failure_reason = Column(Text, nullable=True)
    retry_count = Column(Integer, default=0)
    flags = Column(JSON, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

class ContentTemplate(Base):
    __tablename__ = "content_templates"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    name = Column(String, nullable=False)
    category = Column(String, nullable=True)
    content = Column(Text, nullable=False)
    hashtags = Column(JSON, nullable=True)
    variables = Column(JSON, nullable=True)
    is_public = Column(Boolean, default=False)
    use_count = Column(Integer, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

class PostingSchedule(Base):
    __tablename__ = "posting_schedules"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    page_id = Column(Integer, ForeignKey("facebook_pages.id"), nullable=True)
    name = Column(String, nullable=False)
    timezone = Column(String, default="UTC")
    frequency = Column(String, default="daily")
    time_slots = Column(JSON, default=list) # [{"day": 0-6|None, "hour": 9, "minute": 0}]
    content_type = Column(String, default="mixed") # promotional, educational, engagement, mixed
    is_active = Column(Boolean, default=True)
    auto_generate = Column(Boolean, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

class ScheduledBoost(Base):
    __tablename__ = "scheduled_boosts"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    post_id = Column(String, nullable=False)
    date = Column(Date, nullable=False, index=True)
    budget = Column(Float, nullable=True)
    duration_days = Column(Integer, default=3)
    status = Column(String, default="scheduled") # scheduled, active, completed, failed, cancelled
    campaign_id = Column(String, nullable=True)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

class Notification(Base):
    __tablename__ = "notifications"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    type = Column(String, default="info")
    priority = Column(String, default="normal")
    is_read = Column(Boolean, default=False)
    read_at = Column(DateTime(timezone=True), nullable=True)
    meta = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

class AutomationRun(Base):
    __tablename__ = "automation_runs"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    kind = Column(String, index=True, nullable=False) # auto_post, auto_content, auto_boost
    status = Column(String, default="running") # running, success, skipped, failed
    executed = Column(Boolean, default=False)
    reason = Column(Text, nullable=True)
    details = Column(JSON, nullable=True)
    started_at = Column(DateTime(timezone=True), server_default=func.now())
    finished_at = Column(DateTime(timezone=True), nullable=True)

class DataDeletionRecord(Base):
    __tablename__ = "data_deletion_records"
    id = Column(Integer, primary_key=True, index=True)
    facebook_user_id = Column(String, index=True, nullable=False)
    confirmation_code = Column(String, unique=True, index=True, nullable=False)
    status_url = Column(String, nullable=False)
    status = Column(String, default="completed")
    deleted_at = Column(DateTime(timezone=True), server_default=func.now())

class AISuggestionFeedback(Base):
    __tablename__ = "ai_suggestion_feedback"
    id = Column(Integer, primary_key=True, index=True)
    interaction_id = Column(Integer, ForeignKey("customer_interactions.id"), nullable=True)
    suggestion = Column(Text, nullable=False)
    feedback = Column(Boolean, nullable=False)
    reviewed_by = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    platform_context = Column(String, nullable=True)
    model_version = Column(String, nullable=True)
    response_time_ms = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
