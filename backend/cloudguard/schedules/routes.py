# =============================================================================
# File: cloudguard/schedules/routes.py
# Description: Scan schedule routes for listing, configuring, disabling and
#   manually triggering scheduled scans on AWS accounts, GCP projects and
#   Azure subscriptions. Daily/weekly/monthly frequencies, hour in UTC.
#
# Endpoints (all require a bearer token; users only see their own accounts):
#   - GET /schedules: scheduled accounts across providers + recent logs
#   - POST /schedules: enable / update / disable one account's schedule
#   - GET /schedules/<id>?cloudProvider=: one schedule + its recent logs
#   - DELETE /schedules/<id>?cloudProvider=: disable scheduling
#   - POST /schedules/<id>/run-now?cloudProvider=: trigger a scan immediately
# =============================================================================

from __future__ import annotations

from flask import Blueprint, request, jsonify

from cloudguard.auth.decorators import require_auth, current_user_id
from cloudguard.extensions import db
from cloudguard.models import ScheduledScanLog
from cloudguard.scheduler import trigger_scan
from cloudguard.scheduling.occurrence import Frequency, compute_next_run
from cloudguard.scheduling.providers import PROVIDERS, get_provider

schedules_bp = Blueprint("schedules", __name__, url_prefix="/schedules")

VALID_FREQUENCIES = {f.value for f in Frequency}


def _iso(dt):
    return dt.isoformat() if dt else None


def _to_dict(account, store) -> dict:
    return {
        "id": str(account.id),
        "cloudProvider": store.provider,
        "name": account.name,
        "resourceId": store.cloud_identifier(account),
        "isActive": bool(account.is_active),
        "scheduleEnabled": bool(account.schedule_enabled),
        "scheduleFrequency": account.schedule_frequency,
        "scheduleHour": account.schedule_hour,
        "scheduleDayOfWeek": account.schedule_day_of_week,
        "scheduleDayOfMonth": account.schedule_day_of_month,
        "nextScheduledScan": _iso(account.next_scheduled_scan),
        "lastScanAt": _iso(account.last_scan_at),
    }


def _log_to_dict(entry: ScheduledScanLog) -> dict:
    return {
        "id": str(entry.id),
        "cloudProvider": entry.cloud_provider,
        "accountId": str(entry.account_id),
        "status": entry.status,
        "auditId": str(entry.audit_id) if entry.audit_id else None,
        "errorMessage": entry.error_message,
        "scheduledFor": _iso(entry.scheduled_for),
        "executedAt": _iso(entry.executed_at),
        "durationMs": entry.duration_ms,
    }


def _optional_int(value, name, low, high):
    """Parse an optional bounded int; returns (value, error)."""
    if value is None or value == "":
        return None, None
    try:
        value = int(value)
    except (TypeError, ValueError):
        return None, f"{name} must be an integer"
    if not low <= value <= high:
        return None, f"{name} must be between {low} and {high}"
    return value, None


def _parse_bool(value, name):
    """JSON booleans, or the usual string spellings; returns (value, error)."""
    if value is None:
        return False, None
    if isinstance(value, bool):
        return value, None
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "1", "yes", "on"):
            return True, None
        if lowered in ("false", "0", "no", "off", ""):
            return False, None
    return None, f"{name} must be a boolean"


def _owned_account(account_id: int, provider_name):
    """Return (store, account, error_response)."""
    store = get_provider(provider_name)
    if store is None:
        return None, None, (jsonify(error="Invalid cloud provider"), 400)
    account = store.get(account_id)
    if not account or account.user_id != current_user_id():
        return store, None, (jsonify(error=f"{store.label.capitalize()} not found"), 404)
    return store, account, None


# -- LIST --
@schedules_bp.get("")
@require_auth
def list_schedules():
    uid = current_user_id()

    schedules = []
    for store in PROVIDERS.values():
        schedules.extend(_to_dict(a, store) for a in store.list_for_user(uid))

    recent_logs = (
        ScheduledScanLog.query
        .filter_by(user_id=uid)
        .order_by(ScheduledScanLog.executed_at.desc(), ScheduledScanLog.id.desc())
        .limit(20)
        .all()
    )

    return jsonify(schedules=schedules, recentLogs=[_log_to_dict(e) for e in recent_logs]), 200


# -- CREATE / UPDATE --
@schedules_bp.post("")
@require_auth
def upsert_schedule():
    body = request.get_json(silent=True) or {}

    provider_name = body.get("cloudProvider")
    raw_account_id = body.get("accountId")
    if not provider_name or not raw_account_id:
        return jsonify(error="Cloud provider and account ID are required"), 400
    try:
        account_id = int(raw_account_id)
    except (TypeError, ValueError):
        return jsonify(error="accountId must be an integer"), 400

    enabled, err = _parse_bool(body.get("scheduleEnabled"), "scheduleEnabled")
    if err:
        return jsonify(error=err), 400
    frequency = str(body.get("scheduleFrequency") or "").strip().lower() or None

    hour, err = _optional_int(body.get("scheduleHour"), "scheduleHour", 0, 23)
    if err:
        return jsonify(error=err), 400
    day_of_week, err = _optional_int(body.get("scheduleDayOfWeek"), "scheduleDayOfWeek", 0, 6)
    if err:
        return jsonify(error=err), 400
    day_of_month, err = _optional_int(body.get("scheduleDayOfMonth"), "scheduleDayOfMonth", 1, 31)
    if err:
        return jsonify(error=err), 400

    if enabled:
        if not frequency or hour is None:
            return jsonify(error="Frequency and hour are required when enabling schedule"), 400
        if frequency not in VALID_FREQUENCIES:
            return jsonify(error="scheduleFrequency must be daily, weekly, or monthly"), 400
        if frequency == "weekly" and day_of_week is None:
            day_of_week = 0
        if frequency == "monthly" and day_of_month is None:
            day_of_month = 1

    store, account, error = _owned_account(account_id, provider_name)
    if error:
        return error

    account.schedule_enabled = enabled
    account.schedule_frequency = frequency if enabled else None
    account.schedule_hour = hour if enabled else None
    account.schedule_day_of_week = day_of_week if enabled and frequency == "weekly" else None
    account.schedule_day_of_month = day_of_month if enabled and frequency == "monthly" else None
    account.next_scheduled_scan = (
        compute_next_run(frequency, hour, day_of_week, day_of_month) if enabled else None
    )
    db.session.commit()

    message = (
        f"Schedule enabled. Next scan at {account.next_scheduled_scan.isoformat()}"
        if enabled else "Schedule disabled"
    )
    return jsonify(success=True, schedule=_to_dict(account, store), message=message), 200


# -- DETAIL --
@schedules_bp.get("/<int:account_id>")
@require_auth
def get_schedule(account_id: int):
    provider_name = request.args.get("cloudProvider")
    if not provider_name:
        return jsonify(error="Cloud provider is required"), 400

    store, account, error = _owned_account(account_id, provider_name)
    if error:
        return error

    recent_logs = (
        ScheduledScanLog.query
        .filter_by(cloud_provider=store.provider, account_id=account.id)
        .order_by(ScheduledScanLog.executed_at.desc(), ScheduledScanLog.id.desc())
        .limit(10)
        .all()
    )
    return jsonify(schedule=_to_dict(account, store), recentLogs=[_log_to_dict(e) for e in recent_logs]), 200


# -- DISABLE --
@schedules_bp.delete("/<int:account_id>")
@require_auth
def disable_schedule(account_id: int):
    provider_name = request.args.get("cloudProvider")
    if not provider_name:
        return jsonify(error="Cloud provider is required"), 400

    store, account, error = _owned_account(account_id, provider_name)
    if error:
        return error

    account.schedule_enabled = False
    account.schedule_frequency = None
    account.schedule_hour = None
    account.schedule_day_of_week = None
    account.schedule_day_of_month = None
    account.next_scheduled_scan = None
    db.session.commit()

    return jsonify(success=True, message="Schedule disabled"), 200


# -- RUN NOW --
@schedules_bp.post("/<int:account_id>/run-now")
@require_auth
def run_now(account_id: int):
    provider_name = request.args.get("cloudProvider") or (request.get_json(silent=True) or {}).get("cloudProvider")
    if not provider_name:
        return jsonify(error="Cloud provider is required"), 400

    store, account, error = _owned_account(account_id, provider_name)
    if error:
        return error

    result = trigger_scan(store.provider, account.id)
    status = 202 if result.success else 500
    return jsonify(result.as_dict()), status
