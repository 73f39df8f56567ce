from __future__ import annotations

from datetime import datetime, timezone
from sqlalchemy.orm import declared_attr
from .extensions import db


def now_utc() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class User(db.Model):
    __tablename__ = "user"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)
    name = db.Column(db.String(120), nullable=True)
    password_hash = db.Column(db.String(255), nullable=False, default="")

    created_at = db.Column(db.DateTime, nullable=False, default=now_utc)
    updated_at = db.Column(db.DateTime, nullable=False, default=now_utc, onupdate=now_utc)


# =============================================================================
# Cloud accounts — one table per provider domain, identical schedule columns
# =============================================================================

class ScheduledAccountMixin:
    """
    Columns shared by every scannable cloud account.

    schedule_frequency: daily, weekly, monthly
    schedule_day_of_week: 0 = Sunday ... 6 = Saturday (weekly only)
    schedule_day_of_month: 1..31 (monthly only)
    next_scheduled_scan: NULL means "not yet scheduled"
    """

    id = db.Column(db.Integer, primary_key=True)

    @declared_attr
    def user_id(cls):
        return db.Column(db.Integer, db.ForeignKey("user.id", ondelete="CASCADE"), nullable=False, index=True)

    @declared_attr
    def user(cls):
        return db.relationship("User")

    name = db.Column(db.String(255), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    last_scan_at = db.Column(db.DateTime, nullable=True)

    # Schedule
    schedule_enabled = db.Column(db.Boolean, nullable=False, default=False)
    schedule_frequency = db.Column(db.String(20), nullable=True)
    schedule_hour = db.Column(db.Integer, nullable=True)
    schedule_day_of_week = db.Column(db.Integer, nullable=True)
    schedule_day_of_month = db.Column(db.Integer, nullable=True)
    next_scheduled_scan = db.Column(db.DateTime, nullable=True, index=True)

    created_at = db.Column(db.DateTime, nullable=False, default=now_utc)
    updated_at = db.Column(db.DateTime, nullable=False, default=now_utc, onupdate=now_utc)


class AwsAccount(ScheduledAccountMixin, db.Model):
    __tablename__ = "aws_account"

    account_id = db.Column(db.String(20), nullable=False)  # 12-digit AWS account number


class GcpProject(ScheduledAccountMixin, db.Model):
    __tablename__ = "gcp_project"

    project_id = db.Column(db.String(100), nullable=False)


class AzureSubscription(ScheduledAccountMixin, db.Model):
    __tablename__ = "azure_subscription"

    subscription_id = db.Column(db.String(64), nullable=False)


# =============================================================================
# Audits & findings
# =============================================================================

class Audit(db.Model):
    """
    One scan attempt. Created in "running" state by the scan executor;
    counts and completed_at are filled in by the scan engine.
    """
    __tablename__ = "audit"

    id = db.Column(db.Integer, primary_key=True)
    provider = db.Column(db.String(10), nullable=False, index=True)  # AWS, GCP, AZURE
    account_id = db.Column(db.Integer, nullable=False, index=True)

    status = db.Column(db.String(20), nullable=False, default="running")  # running, completed, failed
    critical = db.Column(db.Integer, nullable=False, default=0)
    high = db.Column(db.Integer, nullable=False, default=0)
    medium = db.Column(db.Integer, nullable=False, default=0)
    low = db.Column(db.Integer, nullable=False, default=0)
    total_findings = db.Column(db.Integer, nullable=False, default=0)

    started_at = db.Column(db.DateTime, nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)
    error_message = db.Column(db.String(500), nullable=True)
    alerted_at = db.Column(db.DateTime, nullable=True)  # set once summary alerts went out

    created_at = db.Column(db.DateTime, nullable=False, default=now_utc)


class Finding(db.Model):
    __tablename__ = "finding"

    id = db.Column(db.Integer, primary_key=True)
    audit_id = db.Column(
        db.Integer,
        db.ForeignKey("audit.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    severity = db.Column(db.String(20), nullable=False)  # CRITICAL, HIGH, MEDIUM, LOW
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.String(2000), nullable=True)
    resource = db.Column(db.String(500), nullable=False)
    resource_type = db.Column(db.String(100), nullable=True)
    region = db.Column(db.String(50), nullable=True)
    recommendation = db.Column(db.String(2000), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=now_utc)

    audit = db.relationship(
        "Audit",
        backref=db.backref("findings", cascade="all, delete-orphan"),
    )


# =============================================================================
# Scheduled scan execution log — append-only
# =============================================================================

class ScheduledScanLog(db.Model):
    __tablename__ = "scheduled_scan_log"

    id = db.Column(db.Integer, primary_key=True)
    cloud_provider = db.Column(db.String(10), nullable=False)
    account_id = db.Column(db.Integer, nullable=False, index=True)
    user_id = db.Column(db.Integer, nullable=False, index=True)

    status = db.Column(db.String(20), nullable=False)  # success, failed
    audit_id = db.Column(db.Integer, nullable=True)
    error_message = db.Column(db.String(500), nullable=True)

    scheduled_for = db.Column(db.DateTime, nullable=False)
    executed_at = db.Column(db.DateTime, nullable=False, default=now_utc)
    duration_ms = db.Column(db.Integer, nullable=True)


# =============================================================================
# Per-user notification settings
# =============================================================================

class UserSettings(db.Model):
    """
    Notification preferences, one row per user.
    Medium/low findings are never alerted, so only critical/high gates exist.
    """
    __tablename__ = "user_settings"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id", ondelete="CASCADE"), nullable=False, unique=True, index=True)

    # Generic incident webhook
    webhook_url = db.Column(db.String(500), nullable=True)
    webhook_enabled = db.Column(db.Boolean, nullable=False, default=False)
    webhook_alert_on_critical = db.Column(db.Boolean, nullable=False, default=True)
    webhook_alert_on_high = db.Column(db.Boolean, nullable=False, default=False)

    # Slack
    slack_webhook_url = db.Column(db.String(500), nullable=True)
    slack_enabled = db.Column(db.Boolean, nullable=False, default=False)
    slack_alert_on_critical = db.Column(db.Boolean, nullable=False, default=True)
    slack_alert_on_high = db.Column(db.Boolean, nullable=False, default=False)

    # Email (falls back to the user's account email)
    email_address = db.Column(db.String(255), nullable=True)
    email_enabled = db.Column(db.Boolean, nullable=False, default=False)
    email_alert_on_critical = db.Column(db.Boolean, nullable=False, default=True)
    email_alert_on_high = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime, nullable=False, default=now_utc)
    updated_at = db.Column(db.DateTime, nullable=False, default=now_utc, onupdate=now_utc)

    user = db.relationship("User", backref=db.backref("settings", uselist=False))
