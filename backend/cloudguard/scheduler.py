# cloudguard/scheduler.py
"""
Background Scheduler for Scheduled Cloud Scans
──────────────────────────────────────────────
Uses APScheduler to check for due accounts every SCHEDULER_TICK_SECONDS
(default 60). For each AWS account, GCP project and Azure subscription
whose next_scheduled_scan has passed, one tick:

    1. triggers the scan (scan executor)
    2. appends a ScheduledScanLog row
    3. recomputes next_scheduled_scan from the current wall-clock time
    4. sends the audit summary alert if the scan already has one

A failure on one account never stops the others. Ticks never overlap:
the interval job runs with max_instances=1 and coalesce=True, so a tick
that overruns simply delays the next one.

Setup in your app factory (__init__.py):
    from cloudguard.scheduler import start_scheduler
    handle = start_scheduler(app)
    ...
    handle.stop()
"""
from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from cloudguard.alerts.dispatcher import dispatch_summary
from cloudguard.extensions import db
from cloudguard.models import now_utc
from cloudguard.scheduling import execution_log
from cloudguard.scheduling.executor import ScanResult, execute_scan, mark_alerted
from cloudguard.scheduling.occurrence import ScheduleSpec, next_occurrence
from cloudguard.scheduling.providers import PROVIDERS, get_provider

logger = logging.getLogger(__name__)

DEFAULT_TICK_SECONDS = 60
JOB_ID = "scheduled_scan_checker"


@dataclass
class DueAccount:
    provider: str
    account_id: int
    user_id: int
    name: str
    scheduled_for: Optional[datetime]


@dataclass
class TickOutcome:
    provider: str
    account_id: int
    result: Optional[ScanResult] = None
    next_run_at: Optional[datetime] = None
    error: Optional[str] = None


def _snapshot(provider: str, account) -> DueAccount:
    return DueAccount(
        provider=provider,
        account_id=account.id,
        user_id=account.user_id,
        name=account.name,
        scheduled_for=account.next_scheduled_scan,
    )


def _alert_on_summary(provider: str, user_id: int, name: str, result: ScanResult) -> None:
    if result.summary is None or result.audit_id is None:
        return
    try:
        dispatch_summary(user_id, provider, name, result.summary)
        mark_alerted(result.audit_id)
    except Exception:
        db.session.rollback()
        logger.exception("Alert dispatch failed for %s %s (audit %s)", provider, name, result.audit_id)


def _advance_next_run(provider: str, account_id: int) -> Optional[datetime]:
    """
    Recompute next_scheduled_scan from *now*, not from the missed due time.

    An account whose schedule is no longer usable gets NULL so it stops
    showing up as due.
    """
    store = PROVIDERS[provider]
    account = store.get(account_id)
    if account is None:
        return None

    spec = ScheduleSpec.from_account(account)
    if spec is None or not spec.enabled:
        logger.warning(
            "%s %s %s has no valid schedule, clearing next run",
            provider, store.label, account_id,
        )
        store.update_next_run_at(account_id, None)
        return None

    next_run = next_occurrence(spec, now_utc())
    store.update_next_run_at(account_id, next_run)
    return next_run


def process_due_account(item: DueAccount) -> TickOutcome:
    """Run the full scan → log → reschedule → alert sequence for one account."""
    outcome = TickOutcome(provider=item.provider, account_id=item.account_id)
    logger.info("Executing scheduled %s scan for %s", item.provider, item.name)

    result = execute_scan(item.provider, item.account_id)
    outcome.result = result
    if not result.success:
        logger.warning("Scheduled %s scan for %s failed: %s", item.provider, item.name, result.error)

    execution_log.record(
        item.provider,
        item.account_id,
        item.user_id,
        item.scheduled_for or now_utc(),
        result,
    )

    try:
        outcome.next_run_at = _advance_next_run(item.provider, item.account_id)
        if outcome.next_run_at:
            logger.info(
                "Next %s scan for %s scheduled at %s",
                item.provider, item.name, outcome.next_run_at.isoformat(),
            )
    except Exception as e:
        db.session.rollback()
        outcome.error = f"Failed to update next run: {e}"
        logger.error("Failed to update next run for %s %s: %s", item.provider, item.account_id, e)

    _alert_on_summary(item.provider, item.user_id, item.name, result)
    return outcome


class ScanScheduler:
    """
    Handle for one running scan scheduler. Created by start_scheduler();
    stop() cancels future ticks but lets an in-flight tick finish.
    """

    def __init__(self, app, tick_seconds: int = DEFAULT_TICK_SECONDS, max_workers: int = 1):
        self.app = app
        self.tick_seconds = max(int(tick_seconds), 1)
        self.max_workers = max(int(max_workers), 1)
        self._scheduler: BackgroundScheduler | None = None
        self._in_flight: set = set()
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._scheduler is not None

    def start(self) -> "ScanScheduler":
        if self._scheduler is not None:
            logger.warning("Scan scheduler already running")
            return self

        self._scheduler = BackgroundScheduler(daemon=True, timezone="UTC")
        self._scheduler.add_job(
            func=self._tick_job,
            trigger=IntervalTrigger(seconds=self.tick_seconds),
            id=JOB_ID,
            name="Check for due scheduled scans",
            replace_existing=True,
            max_instances=1,  # Prevent overlapping ticks
            coalesce=True,
        )
        self._scheduler.start()
        logger.info("Scan scheduler started (checking every %ds)", self.tick_seconds)
        return self

    def stop(self) -> None:
        if self._scheduler is None:
            return
        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("Scan scheduler stopped")

    def _tick_job(self) -> None:
        with self.app.app_context():
            try:
                self.run_tick()
            except Exception:
                logger.exception("Scheduled scan tick failed")

    # ── One tick ─────────────────────────────────────────────────────

    def collect_due(self, now: datetime) -> List[DueAccount]:
        due: List[DueAccount] = []
        for provider, store in PROVIDERS.items():
            try:
                accounts = store.list_due(now)
            except Exception as e:
                db.session.rollback()
                logger.error("Failed to query due %s %ss: %s", provider, store.label, e)
                continue
            due.extend(_snapshot(provider, a) for a in accounts)
        return due

    def run_tick(self, now: Optional[datetime] = None) -> List[TickOutcome]:
        """Process every account due at ``now``. Safe to call directly (tests, ops)."""
        now = now or now_utc()
        due = self.collect_due(now)
        if not due:
            return []

        logger.info("Found %d due scheduled scan(s)", len(due))

        if self.max_workers == 1:
            return [o for o in (self._process_guarded(item) for item in due) if o is not None]

        outcomes: List[TickOutcome] = []
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = [executor.submit(self._process_in_context, item) for item in due]
            for future in futures:
                outcome = future.result()
                if outcome is not None:
                    outcomes.append(outcome)
        return outcomes

    def _process_in_context(self, item: DueAccount) -> Optional[TickOutcome]:
        with self.app.app_context():
            return self._process_guarded(item)

    def _process_guarded(self, item: DueAccount) -> Optional[TickOutcome]:
        key = (item.provider, item.account_id)
        with self._lock:
            if key in self._in_flight:
                logger.warning("%s account %s is already being processed, skipping", *key)
                return None
            self._in_flight.add(key)

        try:
            return process_due_account(item)
        except Exception as e:
            db.session.rollback()
            logger.exception("Failed to process scheduled scan for %s %s", *key)
            return TickOutcome(provider=item.provider, account_id=item.account_id, error=str(e))
        finally:
            with self._lock:
                self._in_flight.discard(key)


# ════════════════════════════════════════════════════════════════════
# Manual trigger & lifecycle helpers
# ════════════════════════════════════════════════════════════════════

def trigger_scan(provider: str, account_id: int) -> ScanResult:
    """
    Run a scan now, skipping the due-time check. Logged like a scheduled
    attempt; next_scheduled_scan is left untouched.
    """
    store = get_provider(provider)
    if store is None:
        return ScanResult(success=False, error="Invalid cloud provider")

    try:
        account = store.get(account_id)
        owner = _snapshot(store.provider, account) if account is not None else None
    except Exception as e:
        db.session.rollback()
        logger.error("Manual %s scan for %s %s failed: %s", store.provider, store.label, account_id, e)
        return ScanResult(success=False, error=str(e)[:500])

    result = execute_scan(store.provider, account_id)

    if owner is not None:
        execution_log.record(store.provider, owner.account_id, owner.user_id, now_utc(), result)
        _alert_on_summary(store.provider, owner.user_id, owner.name, result)

    return result


def start_scheduler(app) -> ScanScheduler:
    """Start (once) the scan scheduler for ``app`` and return its handle."""
    handle: ScanScheduler | None = app.extensions.get("scan_scheduler")
    if handle is not None and handle.running:
        logger.warning("Scan scheduler already initialized, skipping")
        return handle

    if handle is None:
        handle = ScanScheduler(
            app,
            tick_seconds=app.config.get("SCHEDULER_TICK_SECONDS", DEFAULT_TICK_SECONDS),
            max_workers=app.config.get("SCHEDULER_MAX_WORKERS", 1),
        )
        app.extensions["scan_scheduler"] = handle

    return handle.start()


def stop_scheduler(app) -> None:
    handle: ScanScheduler | None = app.extensions.get("scan_scheduler")
    if handle is not None:
        handle.stop()
