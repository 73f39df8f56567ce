# cloudguard/scheduling/executor.py
"""
Scan executor
─────────────
Triggers a scan for one cloud account: creates the "running" audit shell,
stamps the account's last_scan_at and hands the audit to the scan engine.

The executor does not wait for the engine to collect findings. If the
engine happens to finish synchronously, the completed audit's severity
counts are attached to the result so the scheduler can alert on them;
otherwise alerting happens later through complete_audit().

Failures are returned as data (ScanResult.success = False), never raised,
so the scheduler can log every attempt the same way.

Scan engine hook:
    from cloudguard.scheduling.executor import set_scan_engine
    set_scan_engine(app, my_engine)   # my_engine(provider, account, audit_id)
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable, Optional

from flask import current_app

from cloudguard.alerts.dispatcher import SeveritySummary, dispatch_findings, dispatch_summary
from cloudguard.extensions import db
from cloudguard.models import Audit, Finding, now_utc
from .providers import get_provider

logger = logging.getLogger(__name__)

ScanEngine = Callable[[str, object, int], None]

ACCOUNT_NOT_FOUND = "Account not found"


@dataclass
class ScanResult:
    success: bool
    audit_id: Optional[int] = None
    error: Optional[str] = None
    duration_ms: int = 0
    summary: Optional[SeveritySummary] = None

    def as_dict(self) -> dict:
        out = {"success": self.success}
        if self.audit_id is not None:
            out["auditId"] = str(self.audit_id)
        if self.error:
            out["error"] = self.error
        out["durationMs"] = self.duration_ms
        if self.summary is not None:
            out["summary"] = self.summary.as_dict()
        return out


def log_only_engine(provider: str, account, audit_id: int) -> None:
    """Default engine: the real collectors pick up running audits on their own."""
    logger.info(
        "%s scan initiated for %s (audit: %s)",
        provider, account.name, audit_id,
    )


def set_scan_engine(app, engine: ScanEngine) -> None:
    app.extensions["scan_engine"] = engine


def _scan_engine() -> ScanEngine:
    return current_app.extensions.get("scan_engine") or log_only_engine


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def _read_summary(audit_id: int) -> Optional[SeveritySummary]:
    audit = db.session.get(Audit, audit_id)
    if audit is None or audit.status != "completed" or audit.alerted_at is not None:
        return None
    return SeveritySummary.coerce(audit)


def mark_alerted(audit_id: int) -> None:
    audit = db.session.get(Audit, audit_id)
    if audit is not None and audit.alerted_at is None:
        audit.alerted_at = now_utc()
        db.session.commit()


def _mark_audit_failed(audit_id: int, error: str) -> None:
    try:
        audit = db.session.get(Audit, audit_id)
        if audit is not None:
            audit.status = "failed"
            audit.error_message = error[:500]
            audit.completed_at = now_utc()
            db.session.commit()
    except Exception:
        db.session.rollback()
        logger.exception("Could not mark audit %s as failed", audit_id)


def execute_scan(provider: str, account_id: int, now: Optional[datetime] = None) -> ScanResult:
    """Trigger one scan. Exactly one Audit row and one last_scan_at update on success."""
    start = time.monotonic()

    store = get_provider(provider)
    if store is None:
        return ScanResult(success=False, error="Invalid cloud provider", duration_ms=_elapsed_ms(start))

    try:
        account = store.get(account_id)
        if account is None:
            return ScanResult(success=False, error=ACCOUNT_NOT_FOUND, duration_ms=_elapsed_ms(start))

        now = now or now_utc()
        # Audit shell and last_scan_at land together or not at all
        audit_id = store.create_running_audit(account.id, now, commit=False)
        store.update_last_scan_at(account.id, now, commit=False)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error("%s scan failed for %s %s: %s", store.provider, store.label, account_id, e)
        return ScanResult(success=False, error=str(e)[:500], duration_ms=_elapsed_ms(start))

    try:
        _scan_engine()(store.provider, account, audit_id)
    except Exception as e:
        logger.exception("Scan engine failed to start %s audit %s", store.provider, audit_id)
        _mark_audit_failed(audit_id, str(e))
        return ScanResult(
            success=False,
            audit_id=audit_id,
            error=str(e)[:500],
            duration_ms=_elapsed_ms(start),
        )

    return ScanResult(
        success=True,
        audit_id=audit_id,
        duration_ms=_elapsed_ms(start),
        summary=_read_summary(audit_id),
    )


# ════════════════════════════════════════════════════════════════════
# Completion callback for the scan engine
# ════════════════════════════════════════════════════════════════════

def _persist_findings(audit: Audit, findings: Iterable[dict]) -> list[Finding]:
    rows = []
    for data in findings:
        if not isinstance(data, dict):
            continue
        severity = (data.get("severity") or "LOW").upper()
        if severity not in ("CRITICAL", "HIGH", "MEDIUM", "LOW"):
            severity = "LOW"
        f = Finding(
            audit_id=audit.id,
            severity=severity,
            title=(data.get("title") or "Unknown finding")[:255],
            description=(data.get("description") or None),
            resource=(data.get("resource") or "unknown")[:500],
            resource_type=data.get("resource_type") or data.get("resourceType"),
            region=data.get("region"),
            recommendation=data.get("recommendation"),
        )
        db.session.add(f)
        rows.append(f)
    return rows


def _finding_dict(f: Finding) -> dict:
    # Alert workers run outside the session; hand them plain values
    return {
        "severity": f.severity,
        "title": f.title,
        "description": f.description,
        "resource": f.resource,
        "resource_type": f.resource_type,
        "region": f.region,
        "recommendation": f.recommendation,
    }


def complete_audit(audit_id: int, findings: Iterable[dict] = (), error: Optional[str] = None,
                   send_alerts: bool = True) -> Optional[Audit]:
    """
    Record the scan engine's results for a running audit and fire alerts.

    Severity counts are derived from the findings. A non-empty ``error``
    marks the audit failed and suppresses alerting.
    """
    audit = db.session.get(Audit, audit_id)
    if audit is None:
        logger.warning("complete_audit: audit %s not found", audit_id)
        return None

    if error:
        audit.status = "failed"
        audit.error_message = str(error)[:500]
        audit.completed_at = now_utc()
        db.session.commit()
        return audit

    rows = _persist_findings(audit, findings)
    counts = {"CRITICAL": 0, "HIGH": 0, "MEDIUM": 0, "LOW": 0}
    for f in rows:
        counts[f.severity] += 1

    audit.critical = counts["CRITICAL"]
    audit.high = counts["HIGH"]
    audit.medium = counts["MEDIUM"]
    audit.low = counts["LOW"]
    audit.total_findings = len(rows)
    audit.status = "completed"
    audit.completed_at = now_utc()
    db.session.commit()

    logger.info(
        "%s audit %s completed: %d critical, %d high, %d total",
        audit.provider, audit.id, audit.critical, audit.high, audit.total_findings,
    )

    if not send_alerts:
        return audit

    store = get_provider(audit.provider)
    account = store.get(audit.account_id) if store else None
    if account is None:
        return audit

    try:
        dispatch_summary(account.user_id, audit.provider, account.name, SeveritySummary.coerce(audit))
        dispatch_findings(account.user_id, audit.provider, account.name, [_finding_dict(f) for f in rows])
    except Exception:
        logger.exception("Alert dispatch failed for audit %s", audit.id)

    try:
        mark_alerted(audit.id)
    except Exception:
        db.session.rollback()
        logger.exception("Could not mark audit %s as alerted", audit.id)

    return audit
