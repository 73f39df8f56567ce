# cloudguard/alerts/dispatcher.py
"""
Alert dispatcher — decides which notification channels hear about an audit
summary or an individual finding, then sends to all of them concurrently.

Policy:
    - Only CRITICAL and HIGH are ever alerted. MEDIUM/LOW never leave the
      building, whatever the user's settings say.
    - A channel is eligible when it is enabled, has a destination, and its
      gate for the event's severity is on.
    - Summaries with no critical and no high findings are not sent at all.
    - Email falls back to the user's account email; the webhook and Slack
      channels have no fallback.
    - Each channel is sent independently. A failure on one never stops the
      others; outcomes are logged, not raised.

Bulk finding alerts are capped per audit (ALERT_FINDING_LIMIT) and spaced
out on each channel by ALERT_SEND_DELAY seconds.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import asdict, dataclass
from typing import Callable, Dict, Iterable, List, Optional

from flask import current_app

from cloudguard.scheduling.providers import get_user_email, get_user_notification_settings
from . import mailer
from .channels import (
    build_slack_finding_payload,
    build_slack_summary_payload,
    build_slack_test_payload,
    build_webhook_finding_payload,
    build_webhook_summary_payload,
    send_slack,
    send_webhook,
)

logger = logging.getLogger(__name__)

ALERTABLE_SEVERITIES = ("CRITICAL", "HIGH")
CHANNELS = ("webhook", "slack", "email")

DEFAULT_FINDING_LIMIT = 10
DEFAULT_SEND_DELAY = 0.2
DEFAULT_TIMEOUT = 10


@dataclass
class SeveritySummary:
    critical: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0
    total: int = 0

    @classmethod
    def coerce(cls, value) -> "SeveritySummary":
        if isinstance(value, SeveritySummary):
            return value
        if isinstance(value, dict):
            return cls(**{k: int(value.get(k) or 0) for k in ("critical", "high", "medium", "low", "total")})
        return cls(
            critical=int(getattr(value, "critical", 0) or 0),
            high=int(getattr(value, "high", 0) or 0),
            medium=int(getattr(value, "medium", 0) or 0),
            low=int(getattr(value, "low", 0) or 0),
            total=int(getattr(value, "total_findings", getattr(value, "total", 0)) or 0),
        )

    @property
    def has_alertable(self) -> bool:
        return self.critical > 0 or self.high > 0

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass
class ChannelTarget:
    channel: str
    destination: str
    alert_on_critical: bool
    alert_on_high: bool

    def accepts(self, severity: str) -> bool:
        severity = (severity or "").upper()
        if severity == "CRITICAL":
            return self.alert_on_critical
        if severity == "HIGH":
            return self.alert_on_high
        return False

    def accepts_summary(self, summary: SeveritySummary) -> bool:
        return (summary.critical > 0 and self.alert_on_critical) or (
            summary.high > 0 and self.alert_on_high
        )


@dataclass
class AlertConfig:
    timeout: float = DEFAULT_TIMEOUT
    finding_limit: int = DEFAULT_FINDING_LIMIT
    send_delay: float = DEFAULT_SEND_DELAY
    sendgrid_api_key: Optional[str] = None
    from_email: str = "security@cloudguard.dev"

    @classmethod
    def from_app(cls, app=None) -> "AlertConfig":
        config = (app or current_app).config
        return cls(
            timeout=float(config.get("ALERT_HTTP_TIMEOUT", DEFAULT_TIMEOUT)),
            finding_limit=int(config.get("ALERT_FINDING_LIMIT", DEFAULT_FINDING_LIMIT)),
            send_delay=float(config.get("ALERT_SEND_DELAY", DEFAULT_SEND_DELAY)),
            sendgrid_api_key=config.get("SENDGRID_API_KEY"),
            from_email=config.get("ALERT_FROM_EMAIL") or "security@cloudguard.dev",
        )


# ════════════════════════════════════════════════════════════════════
# Destination resolution
# ════════════════════════════════════════════════════════════════════

def resolve_targets(settings, user_email: Optional[str]) -> Dict[str, ChannelTarget]:
    """Return the enabled channels that have somewhere to send to."""
    if settings is None:
        return {}

    targets: Dict[str, ChannelTarget] = {}

    if settings.webhook_enabled and settings.webhook_url:
        targets["webhook"] = ChannelTarget(
            "webhook", settings.webhook_url,
            bool(settings.webhook_alert_on_critical), bool(settings.webhook_alert_on_high),
        )

    if settings.slack_enabled and settings.slack_webhook_url:
        targets["slack"] = ChannelTarget(
            "slack", settings.slack_webhook_url,
            bool(settings.slack_alert_on_critical), bool(settings.slack_alert_on_high),
        )

    email = settings.email_address or user_email
    if settings.email_enabled and email:
        targets["email"] = ChannelTarget(
            "email", email,
            bool(settings.email_alert_on_critical), bool(settings.email_alert_on_high),
        )

    return targets


def _load_targets(user_id: int) -> Dict[str, ChannelTarget]:
    settings = get_user_notification_settings(user_id)
    if settings is None:
        logger.debug("No notification settings for user %s", user_id)
        return {}
    user_email = None
    if settings.email_enabled and not settings.email_address:
        user_email = get_user_email(user_id)
    return resolve_targets(settings, user_email)


# ════════════════════════════════════════════════════════════════════
# Per-channel senders
# ════════════════════════════════════════════════════════════════════

def _send_summary(target: ChannelTarget, provider: str, account_name: str,
                  summary: SeveritySummary, config: AlertConfig) -> tuple[bool, str | None]:
    if target.channel == "webhook":
        payload = build_webhook_summary_payload(provider, account_name, summary)
        return send_webhook(target.destination, payload, config.timeout)
    if target.channel == "slack":
        payload = build_slack_summary_payload(provider, account_name, summary)
        return send_slack(target.destination, payload, config.timeout)
    if target.channel == "email":
        return mailer.send_email(
            api_key=config.sendgrid_api_key,
            from_email=config.from_email,
            to_email=target.destination,
            subject=mailer.summary_subject(provider, summary),
            html=mailer.render_summary_email(provider, account_name, summary),
            timeout=config.timeout,
        )
    return False, f"Unknown channel {target.channel}"


def _send_finding(target: ChannelTarget, provider: str, account_name: str,
                  finding, config: AlertConfig) -> tuple[bool, str | None]:
    if target.channel == "webhook":
        payload = build_webhook_finding_payload(provider, account_name, finding)
        return send_webhook(target.destination, payload, config.timeout)
    if target.channel == "slack":
        payload = build_slack_finding_payload(provider, account_name, finding)
        return send_slack(target.destination, payload, config.timeout)
    if target.channel == "email":
        return mailer.send_email(
            api_key=config.sendgrid_api_key,
            from_email=config.from_email,
            to_email=target.destination,
            subject=mailer.finding_subject(provider, finding),
            html=mailer.render_finding_email(provider, account_name, finding),
            timeout=config.timeout,
        )
    return False, f"Unknown channel {target.channel}"


def _fan_out(jobs: Dict[str, Callable[[], object]], failure) -> Dict[str, object]:
    """Run one job per channel concurrently and collect every outcome."""
    if not jobs:
        return {}

    results: Dict[str, object] = {}
    with ThreadPoolExecutor(max_workers=len(jobs)) as executor:
        future_to_channel = {executor.submit(fn): name for name, fn in jobs.items()}
        for future in as_completed(future_to_channel):
            channel = future_to_channel[future]
            try:
                results[channel] = future.result()
            except Exception as e:
                logger.exception("Alert channel %s raised: %s", channel, e)
                results[channel] = failure(e)
    return results


def _severity_of(finding) -> str:
    if isinstance(finding, dict):
        return (finding.get("severity") or "").upper()
    return (getattr(finding, "severity", "") or "").upper()


def _title_of(finding) -> str:
    if isinstance(finding, dict):
        return finding.get("title") or ""
    return getattr(finding, "title", "") or ""


# ════════════════════════════════════════════════════════════════════
# Public API
# ════════════════════════════════════════════════════════════════════

def dispatch_summary(user_id: int, provider: str, account_name: str, summary) -> Dict[str, tuple]:
    """
    Send an audit summary to every eligible channel.

    Returns {channel: (ok, error)} for the channels that were attempted.
    """
    summary = SeveritySummary.coerce(summary)
    if not summary.has_alertable:
        logger.debug("Summary for %s/%s has no critical/high findings, not alerting", provider, account_name)
        return {}

    config = AlertConfig.from_app()
    targets = {
        name: t for name, t in _load_targets(user_id).items()
        if t.accepts_summary(summary)
    }

    jobs = {
        name: (lambda t=t: _send_summary(t, provider, account_name, summary, config))
        for name, t in targets.items()
    }
    results = _fan_out(jobs, failure=lambda e: (False, str(e)[:200]))

    for channel, (ok, error) in results.items():
        if ok:
            logger.info("Audit summary alert sent via %s for %s/%s", channel, provider, account_name)
        else:
            logger.warning("Audit summary alert via %s failed for %s/%s: %s", channel, provider, account_name, error)

    return results


def dispatch_finding(user_id: int, provider: str, account_name: str, finding) -> Dict[str, tuple]:
    """Send a single finding alert. MEDIUM/LOW findings are dropped."""
    severity = _severity_of(finding)
    if severity not in ALERTABLE_SEVERITIES:
        return {}

    config = AlertConfig.from_app()
    targets = {
        name: t for name, t in _load_targets(user_id).items()
        if t.accepts(severity)
    }

    jobs = {
        name: (lambda t=t: _send_finding(t, provider, account_name, finding, config))
        for name, t in targets.items()
    }
    results = _fan_out(jobs, failure=lambda e: (False, str(e)[:200]))

    for channel, (ok, error) in results.items():
        if ok:
            logger.info("%s finding alert sent via %s: %s", severity, channel, _title_of(finding))
        else:
            logger.warning("%s finding alert via %s failed: %s", severity, channel, error)

    return results


def dispatch_findings(
    user_id: int,
    provider: str,
    account_name: str,
    findings: Iterable,
    limit: Optional[int] = None,
) -> Dict[str, Dict[str, int]]:
    """
    Bulk finding alerts after a scan.

    Only the first ``limit`` CRITICAL/HIGH findings are candidates. Channels
    run in parallel; within a channel, sends are sequential with a small
    delay between them.

    Returns {channel: {"sent": n, "skipped": m}}.
    """
    config = AlertConfig.from_app()
    if limit is None:
        limit = config.finding_limit

    candidates: List = [f for f in findings if _severity_of(f) in ALERTABLE_SEVERITIES][:max(limit, 0)]
    if not candidates:
        return {}

    targets = _load_targets(user_id)

    def _run_channel(target: ChannelTarget) -> Dict[str, int]:
        sent = skipped = 0
        first = True
        for finding in candidates:
            if not target.accepts(_severity_of(finding)):
                skipped += 1
                continue
            if not first and config.send_delay > 0:
                time.sleep(config.send_delay)
            first = False
            ok, error = _send_finding(target, provider, account_name, finding, config)
            if ok:
                sent += 1
            else:
                skipped += 1
                logger.warning("Finding alert via %s failed: %s", target.channel, error)
        return {"sent": sent, "skipped": skipped}

    jobs = {name: (lambda t=t: _run_channel(t)) for name, t in targets.items()}
    results = _fan_out(jobs, failure=lambda e: {"sent": 0, "skipped": len(candidates)})

    logger.info(
        "Bulk finding alerts for %s/%s: %d candidate(s), %s",
        provider, account_name, len(candidates), results,
    )
    return results


# ════════════════════════════════════════════════════════════════════
# Test messages (settings page)
# ════════════════════════════════════════════════════════════════════

def send_test_slack(webhook_url: str) -> tuple[bool, str | None]:
    config = AlertConfig.from_app()
    return send_slack(webhook_url, build_slack_test_payload(), config.timeout)


def send_test_email(to_email: str) -> tuple[bool, str | None]:
    config = AlertConfig.from_app()
    return mailer.send_email(
        api_key=config.sendgrid_api_key,
        from_email=config.from_email,
        to_email=to_email,
        subject="CloudGuard Test Email - Alerts Configured",
        html=mailer.render_test_email(),
        timeout=config.timeout,
    )
