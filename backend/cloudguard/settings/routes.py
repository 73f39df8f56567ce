# =============================================================================
# File: cloudguard/settings/routes.py
# Description: Notification settings for the current user: generic incident
#   webhook, Slack incoming webhook and email, each with its own
#   critical/high gates. Test endpoints send a one-off message so users can
#   verify a destination before enabling it.
#
#   - GET /settings/notifications
#   - POST /settings/notifications (partial update, creates the row if missing)
#   - POST /settings/notifications/test/slack
#   - POST /settings/notifications/test/email
# =============================================================================

from __future__ import annotations

from flask import Blueprint, request, jsonify, g

from cloudguard.alerts.dispatcher import send_test_email, send_test_slack
from cloudguard.auth.decorators import require_auth, current_user_id
from cloudguard.extensions import db
from cloudguard.models import UserSettings

settings_bp = Blueprint("settings", __name__, url_prefix="/settings")

# request key -> column
BOOL_FIELDS = {
    "webhookEnabled": "webhook_enabled",
    "webhookAlertOnCritical": "webhook_alert_on_critical",
    "webhookAlertOnHigh": "webhook_alert_on_high",
    "slackEnabled": "slack_enabled",
    "slackAlertOnCritical": "slack_alert_on_critical",
    "slackAlertOnHigh": "slack_alert_on_high",
    "emailEnabled": "email_enabled",
    "emailAlertOnCritical": "email_alert_on_critical",
    "emailAlertOnHigh": "email_alert_on_high",
}

URL_FIELDS = {
    "webhookUrl": "webhook_url",
    "slackWebhookUrl": "slack_webhook_url",
}


def _settings_to_dict(s: UserSettings | None) -> dict:
    if s is None:
        return {
            "webhookUrl": None,
            "webhookEnabled": False,
            "webhookAlertOnCritical": True,
            "webhookAlertOnHigh": False,
            "slackWebhookUrl": None,
            "slackEnabled": False,
            "slackAlertOnCritical": True,
            "slackAlertOnHigh": False,
            "emailAddress": None,
            "emailEnabled": False,
            "emailAlertOnCritical": True,
            "emailAlertOnHigh": False,
        }
    out = {key: bool(getattr(s, col)) for key, col in BOOL_FIELDS.items()}
    out.update({key: getattr(s, col) for key, col in URL_FIELDS.items()})
    out["emailAddress"] = s.email_address
    return out


def _clean(value):
    if not value:
        return None
    return str(value).strip() or None


def _get_settings(user_id: int) -> UserSettings | None:
    return UserSettings.query.filter_by(user_id=user_id).first()


# GET /settings/notifications
@settings_bp.get("/notifications")
@require_auth
def get_notification_settings():
    return jsonify(_settings_to_dict(_get_settings(current_user_id()))), 200


# POST /settings/notifications
@settings_bp.post("/notifications")
@require_auth
def update_notification_settings():
    body = request.get_json(silent=True) or {}
    uid = current_user_id()

    for key in URL_FIELDS:
        if key in body and body[key]:
            url = str(body[key]).strip()
            if not url.startswith(("http://", "https://")):
                return jsonify(error=f"{key} must be an http(s) URL"), 400

    if "emailAddress" in body and body["emailAddress"]:
        if "@" not in str(body["emailAddress"]):
            return jsonify(error="emailAddress is not a valid email address"), 400

    s = _get_settings(uid)
    if s is None:
        s = UserSettings(user_id=uid)
        db.session.add(s)

    for key, col in BOOL_FIELDS.items():
        if key in body:
            setattr(s, col, bool(body[key]))

    for key, col in URL_FIELDS.items():
        if key in body:
            setattr(s, col, _clean(body[key]))

    if "emailAddress" in body:
        s.email_address = _clean(body["emailAddress"])

    db.session.commit()
    return jsonify(success=True, settings=_settings_to_dict(s)), 200


# POST /settings/notifications/test/slack
@settings_bp.post("/notifications/test/slack")
@require_auth
def test_slack():
    body = request.get_json(silent=True) or {}
    webhook_url = (body.get("webhookUrl") or "").strip()
    if not webhook_url:
        s = _get_settings(current_user_id())
        webhook_url = s.slack_webhook_url if s else None
    if not webhook_url:
        return jsonify(error="No Slack webhook URL configured"), 400

    ok, error = send_test_slack(webhook_url)
    if not ok:
        return jsonify(success=False, error=error), 502
    return jsonify(success=True, message="Test message sent to Slack"), 200


# POST /settings/notifications/test/email
@settings_bp.post("/notifications/test/email")
@require_auth
def test_email():
    body = request.get_json(silent=True) or {}
    to_email = (body.get("email") or "").strip()
    if not to_email:
        s = _get_settings(current_user_id())
        to_email = (s.email_address if s else None) or g.current_user.email
    if not to_email:
        return jsonify(error="No email address configured"), 400

    ok, error = send_test_email(to_email)
    if not ok:
        return jsonify(success=False, error=error), 502
    return jsonify(success=True, message=f"Test email sent to {to_email}"), 200
