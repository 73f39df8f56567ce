# =============================================================================
# File: cloudguard/alerts/channels.py
# Description: Payload builders and HTTP senders for the incident webhook and
#   Slack channels. Every sender returns (ok, error) and never raises on
#   transport failures; the dispatcher decides what to do with the outcome.
# =============================================================================

from __future__ import annotations

import json
from datetime import datetime, timezone

import requests

SOURCE_NAME = "CloudGuard Security Dashboard"
DEFAULT_RECOMMENDATION = "Review this finding and take appropriate action."

SEVERITY_COLORS = {
    "CRITICAL": "#dc2626",
    "HIGH": "#ea580c",
    "MEDIUM": "#eab308",
    "LOW": "#22c55e",
}


def severity_color(severity: str) -> str:
    return SEVERITY_COLORS.get((severity or "").upper(), "#6b7280")


def _severity_icon(severity: str) -> str:
    return "\U0001F6A8" if (severity or "").upper() == "CRITICAL" else "⚠️"


def _finding_value(finding, key, default=None):
    if isinstance(finding, dict):
        value = finding.get(key)
    else:
        value = getattr(finding, key, None)
    return value if value not in (None, "") else default


def _post_json(url: str, payload: dict, timeout: float, label: str) -> tuple[bool, str | None]:
    try:
        resp = requests.post(
            url,
            data=json.dumps(payload, default=str),
            headers={"Content-Type": "application/json"},
            timeout=timeout,
        )
        if 200 <= resp.status_code < 300:
            return True, None
        return False, f"{label} returned {resp.status_code}: {resp.text[:200]}"
    except requests.RequestException as e:
        return False, f"{label} request failed: {str(e)[:200]}"


# ────────────────────────────────────────────────────────────────
# Incident webhook (generic)
# ────────────────────────────────────────────────────────────────

def build_webhook_finding_payload(provider: str, account_name: str, finding) -> dict:
    severity = (_finding_value(finding, "severity", "")).upper()
    title = _finding_value(finding, "title", "Security finding")
    return {
        "title": f"[{provider}] {severity}: {title}",
        "severity": severity,
        "status": "triggered",
        "description": _finding_value(finding, "description", title),
        "resource": _finding_value(finding, "resource", "unknown"),
        "resource_type": _finding_value(finding, "resource_type"),
        "region": _finding_value(finding, "region"),
        "recommendation": _finding_value(finding, "recommendation", DEFAULT_RECOMMENDATION),
        "account": account_name,
        "cloud_provider": provider,
        "source": SOURCE_NAME,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


def build_webhook_summary_payload(provider: str, account_name: str, summary) -> dict:
    severity = "CRITICAL" if summary.critical > 0 else "HIGH"
    return {
        "title": (
            f"[{provider}] Security Audit Complete - "
            f"{summary.critical} Critical, {summary.high} High findings"
        ),
        "severity": severity,
        "status": "triggered",
        "description": (
            f"Security audit completed for {account_name} with "
            f"{summary.total} findings."
        ),
        "resource": account_name,
        "recommendation": "Review the audit results in the dashboard.",
        "account": account_name,
        "cloud_provider": provider,
        "summary": summary.as_dict(),
        "source": SOURCE_NAME,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


def send_webhook(url: str, payload: dict, timeout: float = 10) -> tuple[bool, str | None]:
    if not url:
        return False, "No webhook URL configured"
    return _post_json(url, payload, timeout, "Webhook")


# ────────────────────────────────────────────────────────────────
# Slack
# ────────────────────────────────────────────────────────────────

def build_slack_finding_payload(provider: str, account_name: str, finding) -> dict:
    severity = (_finding_value(finding, "severity", "")).upper()
    title = _finding_value(finding, "title", "Security finding")
    return {
        "blocks": [
            {
                "type": "header",
                "text": {
                    "type": "plain_text",
                    "text": f"{_severity_icon(severity)} [{provider}] {severity}: {title}"[:150],
                    "emoji": True,
                },
            },
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*Severity:*\n{severity}"},
                    {"type": "mrkdwn", "text": f"*Cloud Provider:*\n{provider}"},
                    {"type": "mrkdwn", "text": f"*Resource:*\n`{_finding_value(finding, 'resource', 'unknown')}`"},
                    {"type": "mrkdwn", "text": f"*Region:*\n{_finding_value(finding, 'region', 'N/A')}"},
                ],
            },
            {
                "type": "section",
                "text": {
                    "type": "mrkdwn",
                    "text": f"*Description:*\n{_finding_value(finding, 'description', title)}"[:3000],
                },
            },
            {
                "type": "context",
                "elements": [
                    {
                        "type": "mrkdwn",
                        "text": f"\U0001F4A1 *Recommendation:* "
                                f"{_finding_value(finding, 'recommendation', DEFAULT_RECOMMENDATION)}"[:3000],
                    },
                ],
            },
            {
                "type": "context",
                "elements": [
                    {
                        "type": "mrkdwn",
                        "text": (
                            f"Account: *{account_name}* | "
                            f"Resource Type: {_finding_value(finding, 'resource_type', 'Unknown')} | "
                            f"Source: {SOURCE_NAME}"
                        ),
                    },
                ],
            },
            {"type": "divider"},
        ],
        "attachments": [
            {
                "color": severity_color(severity),
                "fallback": f"[{provider}] {severity}: {title}",
            },
        ],
    }


def build_slack_summary_payload(provider: str, account_name: str, summary) -> dict:
    is_critical = summary.critical > 0
    return {
        "blocks": [
            {
                "type": "header",
                "text": {
                    "type": "plain_text",
                    "text": f"{_severity_icon('CRITICAL' if is_critical else 'HIGH')} "
                            f"[{provider}] Security Audit Complete",
                    "emoji": True,
                },
            },
            {
                "type": "section",
                "text": {"type": "mrkdwn", "text": f"Security audit completed for *{account_name}*"},
            },
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*Critical:*\n{summary.critical}"},
                    {"type": "mrkdwn", "text": f"*High:*\n{summary.high}"},
                    {"type": "mrkdwn", "text": f"*Medium:*\n{summary.medium}"},
                    {"type": "mrkdwn", "text": f"*Low:*\n{summary.low}"},
                ],
            },
            {
                "type": "context",
                "elements": [
                    {
                        "type": "mrkdwn",
                        "text": f"*Total Findings:* {summary.total} | Cloud: {provider} | Source: {SOURCE_NAME}",
                    },
                ],
            },
            {"type": "divider"},
        ],
        "attachments": [
            {
                "color": severity_color("CRITICAL" if is_critical else "HIGH"),
                "fallback": (
                    f"[{provider}] Audit Complete - "
                    f"{summary.critical} Critical, {summary.high} High findings"
                ),
            },
        ],
    }


def build_slack_test_payload() -> dict:
    return {
        "blocks": [
            {
                "type": "header",
                "text": {"type": "plain_text", "text": "✅ CloudGuard Test Alert", "emoji": True},
            },
            {
                "type": "section",
                "text": {
                    "type": "mrkdwn",
                    "text": "Your Slack webhook is configured correctly! You will receive security alerts here.",
                },
            },
            {
                "type": "context",
                "elements": [
                    {"type": "mrkdwn", "text": f"Test sent at {datetime.now(timezone.utc).isoformat()}"},
                ],
            },
        ],
        "attachments": [
            {"color": "#22c55e", "fallback": "CloudGuard Test Alert - Webhook configured successfully!"},
        ],
    }


def send_slack(webhook_url: str, payload: dict, timeout: float = 10) -> tuple[bool, str | None]:
    if not webhook_url:
        return False, "No Slack webhook URL configured"
    return _post_json(webhook_url, payload, timeout, "Slack")
