# cloudguard/scheduling/execution_log.py
"""Append-only record of every scheduled (or manually triggered) scan attempt."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from cloudguard.extensions import db
from cloudguard.models import ScheduledScanLog, now_utc
from .providers import append_execution_log

logger = logging.getLogger(__name__)


def record(provider: str, account_id: int, user_id: int, scheduled_for: datetime,
           result) -> Optional[ScheduledScanLog]:
    """
    Write one log row for a scan attempt.

    Best-effort: a failed write is logged and rolled back, never raised,
    so the scheduler keeps processing the rest of the tick.
    """
    entry = ScheduledScanLog(
        cloud_provider=provider,
        account_id=account_id,
        user_id=user_id,
        status="success" if result.success else "failed",
        audit_id=result.audit_id,
        error_message=(result.error or None) and str(result.error)[:500],
        scheduled_for=scheduled_for,
        executed_at=now_utc(),
        duration_ms=result.duration_ms,
    )
    try:
        append_execution_log(entry)
        return entry
    except Exception as e:
        db.session.rollback()
        logger.error(
            "Failed to log scheduled scan for %s %s: %s",
            provider, account_id, e,
        )
        return None
