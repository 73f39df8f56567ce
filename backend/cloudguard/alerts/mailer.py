# =============================================================================
# File: cloudguard/alerts/mailer.py
# Description: HTML email rendering and SendGrid delivery for security alerts.
#   Subject lines:
#     finding: "[<Provider>] <SEVERITY>: <Title>"
#     summary: "[<Provider>] Security Audit Complete - <N> Critical, <M> High findings"
# =============================================================================

from __future__ import annotations

from datetime import datetime, timezone
from html import escape

import sendgrid
from sendgrid.helpers.mail import Mail

from .channels import DEFAULT_RECOMMENDATION, SOURCE_NAME, severity_color

_WRAPPER_OPEN = """
<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>{title}</title></head>
<body style="margin: 0; padding: 0; font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Arial, sans-serif; background-color: #0f0f23;">
  <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
    <div style="background: #1e1b4b; border-radius: 12px 12px 0 0; padding: 24px; text-align: center;">
      <h1 style="color: white; margin: 0; font-size: 24px;">CloudGuard Security</h1>
    </div>
    <div style="background-color: {color}; padding: 16px; text-align: center;">
      <span style="color: white; font-weight: bold; font-size: 18px;">{badge}</span>
    </div>
    <div style="background-color: #1a1a2e; border-radius: 0 0 12px 12px; padding: 24px; color: white;">
"""

_WRAPPER_CLOSE = """
    </div>
    <div style="text-align: center; padding: 20px; color: rgba(255,255,255,0.4); font-size: 12px;">
      <p style="margin: 0;">This alert was sent by {source}</p>
      <p style="margin: 8px 0 0 0;">Configure your alert preferences in Settings &rarr; Integrations</p>
    </div>
  </div>
</body>
</html>
"""


def _field(finding, key, default=""):
    if isinstance(finding, dict):
        value = finding.get(key)
    else:
        value = getattr(finding, key, None)
    return escape(str(value)) if value not in (None, "") else escape(default)


def _detail_cell(label: str, value: str, mono: bool = False) -> str:
    style = "font-family: monospace; font-size: 14px; word-break: break-all;" if mono else ""
    return f"""
      <div style="background-color: rgba(255,255,255,0.05); border-radius: 8px; padding: 12px; margin-bottom: 12px;">
        <div style="color: rgba(255,255,255,0.6); font-size: 12px; margin-bottom: 4px;">{label}</div>
        <div style="color: white; {style}">{value}</div>
      </div>
    """


# ────────────────────────────────────────────────────────────────
# Subjects
# ────────────────────────────────────────────────────────────────

def finding_subject(provider: str, finding) -> str:
    severity = _field(finding, "severity").upper()
    title = finding.get("title") if isinstance(finding, dict) else getattr(finding, "title", "")
    return f"[{provider}] {severity}: {title}"


def summary_subject(provider: str, summary) -> str:
    return (
        f"[{provider}] Security Audit Complete - "
        f"{summary.critical} Critical, {summary.high} High findings"
    )


# ────────────────────────────────────────────────────────────────
# Bodies
# ────────────────────────────────────────────────────────────────

def render_finding_email(provider: str, account_name: str, finding) -> str:
    severity = _field(finding, "severity").upper()
    title = _field(finding, "title", "Security finding")

    html = _WRAPPER_OPEN.format(
        title=f"Security Alert - {title}",
        color=severity_color(severity),
        badge=f"{severity} Security Finding",
    )
    html += f"""
      <h2 style="color: white; margin: 0 0 16px 0; font-size: 20px;">[{escape(provider)}] {title}</h2>
    """
    html += _detail_cell("ACCOUNT", escape(account_name))
    html += _detail_cell("RESOURCE", _field(finding, "resource", "unknown"), mono=True)
    html += _detail_cell("REGION", _field(finding, "region", "N/A"))
    html += _detail_cell("TYPE", _field(finding, "resource_type", "Unknown"))
    html += f"""
      <div style="margin-bottom: 20px;">
        <h3 style="color: rgba(255,255,255,0.8); font-size: 14px; margin: 0 0 8px 0;">Description</h3>
        <p style="color: rgba(255,255,255,0.7); margin: 0; line-height: 1.6;">{_field(finding, "description", title)}</p>
      </div>
      <div style="border-left: 3px solid #22c55e; border-radius: 0 8px 8px 0; padding: 16px; background: rgba(34,197,94,0.08);">
        <h3 style="color: #22c55e; font-size: 14px; margin: 0 0 8px 0;">Recommendation</h3>
        <p style="color: rgba(255,255,255,0.8); margin: 0; line-height: 1.6;">{_field(finding, "recommendation", DEFAULT_RECOMMENDATION)}</p>
      </div>
    """
    html += _WRAPPER_CLOSE.format(source=SOURCE_NAME)
    return html


def render_summary_email(provider: str, account_name: str, summary) -> str:
    is_critical = summary.critical > 0

    html = _WRAPPER_OPEN.format(
        title=f"Security Audit Summary - {escape(account_name)}",
        color=severity_color("CRITICAL" if is_critical else "HIGH"),
        badge="Security Audit Complete",
    )
    html += f"""
      <h2 style="color: white; margin: 0 0 8px 0; font-size: 20px;">[{escape(provider)}] {escape(account_name)}</h2>
      <p style="color: rgba(255,255,255,0.6); margin: 0 0 24px 0;">Security audit completed with {summary.total} findings</p>
      <table style="width: 100%; border-collapse: separate; border-spacing: 12px;">
        <tr>
    """
    for label, count in (
        ("Critical", summary.critical),
        ("High", summary.high),
        ("Medium", summary.medium),
        ("Low", summary.low),
    ):
        color = severity_color(label)
        html += f"""
          <td style="border: 1px solid {color}; border-radius: 12px; padding: 20px; text-align: center;">
            <div style="font-size: 36px; font-weight: bold; color: {color};">{count}</div>
            <div style="color: rgba(255,255,255,0.6); font-size: 14px;">{label}</div>
          </td>
        """
    html += """
        </tr>
      </table>
    """
    html += _WRAPPER_CLOSE.format(source=SOURCE_NAME)
    return html


def render_test_email() -> str:
    html = _WRAPPER_OPEN.format(
        title="CloudGuard Test Email",
        color="#22c55e",
        badge="Email Alerts Configured",
    )
    html += f"""
      <p style="color: rgba(255,255,255,0.8); margin: 0;">
        Your email alerts are configured correctly. Test sent at {datetime.now(timezone.utc).isoformat()}.
      </p>
    """
    html += _WRAPPER_CLOSE.format(source=SOURCE_NAME)
    return html


# ────────────────────────────────────────────────────────────────
# Delivery
# ────────────────────────────────────────────────────────────────

def send_email(
    *,
    api_key: str | None,
    from_email: str,
    to_email: str,
    subject: str,
    html: str,
    timeout: float = 10,
) -> tuple[bool, str | None]:
    if not to_email:
        return False, "No email address configured"
    if not api_key:
        return False, "SENDGRID_API_KEY is not configured"

    try:
        sg = sendgrid.SendGridAPIClient(api_key=api_key)
        sg.client.timeout = timeout
        message = Mail(
            from_email=from_email,
            to_emails=to_email,
            subject=subject[:200],
            html_content=html,
        )
        response = sg.send(message)

        if response.status_code in (200, 201, 202):
            return True, None
        return False, f"SendGrid returned {response.status_code}"
    except Exception as e:
        return False, f"Email send failed: {str(e)[:200]}"
