# cloudguard/scheduling/providers.py
"""
Data-store operations the scheduler consumes, one ProviderStore per cloud
domain. The three account tables share the same schedule columns, so a
single class parameterised by the model replaces three copies of the
same queries.

Writes commit immediately unless called with commit=False, which lets the
executor group the audit insert and last_scan_at update into one commit.
Callers are expected to catch SQLAlchemyError and roll back.
"""
from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from cloudguard.extensions import db
from cloudguard.models import (
    Audit, AwsAccount, AzureSubscription, GcpProject,
    ScheduledScanLog, User, UserSettings,
)


class ProviderStore:
    """Schedule/audit persistence for one provider's account table."""

    def __init__(self, provider: str, model, label: str):
        self.provider = provider
        self.model = model
        self.label = label  # "account", "project", "subscription"

    def __repr__(self) -> str:
        return f"<ProviderStore {self.provider}>"

    def list_due(self, now: datetime) -> List:
        return (
            self.model.query
            .filter(
                self.model.schedule_enabled.is_(True),
                self.model.is_active.is_(True),
                self.model.next_scheduled_scan.isnot(None),
                self.model.next_scheduled_scan <= now,
            )
            .order_by(self.model.next_scheduled_scan.asc(), self.model.id.asc())
            .all()
        )

    def get(self, account_id: int):
        return db.session.get(self.model, account_id)

    def list_for_user(self, user_id: int, scheduled_only: bool = True) -> List:
        q = self.model.query.filter_by(user_id=user_id)
        if scheduled_only:
            q = q.filter(self.model.schedule_enabled.is_(True))
        return q.order_by(self.model.name.asc()).all()

    def create_running_audit(self, account_id: int, now: datetime, commit: bool = True) -> int:
        """Insert the running audit shell. With commit=False it is only flushed."""
        audit = Audit(
            provider=self.provider,
            account_id=account_id,
            status="running",
            started_at=now,
        )
        db.session.add(audit)
        if commit:
            db.session.commit()
        else:
            db.session.flush()
        return audit.id

    def update_last_scan_at(self, account_id: int, now: datetime, commit: bool = True) -> None:
        account = self.get(account_id)
        if account is None:
            return
        account.last_scan_at = now
        if commit:
            db.session.commit()

    def update_next_run_at(self, account_id: int, ts: Optional[datetime]) -> None:
        account = self.get(account_id)
        if account is None:
            return
        account.next_scheduled_scan = ts
        db.session.commit()

    def cloud_identifier(self, account) -> Optional[str]:
        for attr in ("account_id", "project_id", "subscription_id"):
            value = getattr(account, attr, None)
            if value:
                return value
        return None


PROVIDERS: Dict[str, ProviderStore] = {
    "AWS": ProviderStore("AWS", AwsAccount, "account"),
    "GCP": ProviderStore("GCP", GcpProject, "project"),
    "AZURE": ProviderStore("AZURE", AzureSubscription, "subscription"),
}


def get_provider(name) -> Optional[ProviderStore]:
    return PROVIDERS.get((name or "").strip().upper())


# ────────────────────────────────────────────────────────────
# Cross-provider helpers
# ────────────────────────────────────────────────────────────

def append_execution_log(entry: ScheduledScanLog) -> None:
    db.session.add(entry)
    db.session.commit()


def get_user_notification_settings(user_id: int) -> Optional[UserSettings]:
    return UserSettings.query.filter_by(user_id=user_id).first()


def get_user_email(user_id: int) -> Optional[str]:
    user = db.session.get(User, user_id)
    return user.email if user else None
