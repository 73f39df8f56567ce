import json
from types import SimpleNamespace

import requests

from cloudguard.alerts import channels, mailer
from cloudguard.alerts.dispatcher import SeveritySummary

FINDING = {
    "severity": "critical",
    "title": "S3 bucket is public",
    "description": "Bucket allows anonymous reads.",
    "resource": "arn:aws:s3:::customer-exports",
    "resource_type": "AWS::S3::Bucket",
    "region": "us-east-1",
}


class TestWebhookChannel:
    def test_finding_payload(self):
        payload = channels.build_webhook_finding_payload("AWS", "prod", FINDING)

        assert payload["title"] == "[AWS] CRITICAL: S3 bucket is public"
        assert payload["severity"] == "CRITICAL"
        assert payload["status"] == "triggered"
        assert payload["resource"] == "arn:aws:s3:::customer-exports"
        assert payload["recommendation"] == channels.DEFAULT_RECOMMENDATION
        assert payload["source"] == channels.SOURCE_NAME
        assert payload["cloud_provider"] == "AWS"

    def test_summary_payload(self):
        summary = SeveritySummary(critical=2, high=5, medium=1, low=0, total=8)
        payload = channels.build_webhook_summary_payload("GCP", "analytics", summary)

        assert payload["title"] == "[GCP] Security Audit Complete - 2 Critical, 5 High findings"
        assert payload["severity"] == "CRITICAL"
        assert payload["summary"]["total"] == 8

    def test_missing_url(self):
        assert channels.send_webhook("", {}) == (False, "No webhook URL configured")

    def test_posts_json_with_timeout(self, http_calls):
        ok, error = channels.send_webhook("https://hooks.example.com/x", {"a": 1}, timeout=3)

        assert (ok, error) == (True, None)
        call = http_calls.calls[0]
        assert json.loads(call["data"]) == {"a": 1}
        assert call["headers"]["Content-Type"] == "application/json"
        assert call["timeout"] == 3

    def test_non_2xx_is_an_error(self, http_calls):
        http_calls.status = 500
        ok, error = channels.send_webhook("https://hooks.example.com/x", {})

        assert ok is False
        assert error.startswith("Webhook returned 500")

    def test_transport_error_is_returned(self, monkeypatch):
        def fail(*args, **kwargs):
            raise requests.ConnectionError("connection refused")

        monkeypatch.setattr("cloudguard.alerts.channels.requests.post", fail)
        ok, error = channels.send_slack("https://hooks.slack.com/services/x", {})

        assert ok is False
        assert "Slack request failed" in error


class TestSlackChannel:
    def test_finding_blocks(self):
        payload = channels.build_slack_finding_payload("AWS", "prod", FINDING)

        assert payload["blocks"][0]["type"] == "header"
        assert "[AWS] CRITICAL: S3 bucket is public" in payload["blocks"][0]["text"]["text"]
        assert payload["attachments"][0]["color"] == channels.severity_color("CRITICAL")

    def test_unknown_severity_color(self):
        assert channels.severity_color("INFO") == "#6b7280"


class TestMailer:
    def test_subjects(self):
        summary = SeveritySummary(critical=1, high=0, total=3)
        assert mailer.finding_subject("AZURE", FINDING) == "[AZURE] CRITICAL: S3 bucket is public"
        assert mailer.summary_subject("AZURE", summary) == (
            "[AZURE] Security Audit Complete - 1 Critical, 0 High findings"
        )

    def test_finding_email_escapes_html(self):
        html = mailer.render_finding_email("AWS", "prod", dict(FINDING, title="<script>x</script>"))
        assert "<script>" not in html
        assert "&lt;script&gt;" in html

    def test_send_requires_api_key(self):
        ok, error = mailer.send_email(
            api_key=None, from_email="a@example.com", to_email="b@example.com",
            subject="s", html="<p>x</p>",
        )
        assert (ok, error) == (False, "SENDGRID_API_KEY is not configured")

    def test_send_through_sendgrid(self, monkeypatch):
        sent = []

        class FakeClient:
            def __init__(self, api_key):
                self.api_key = api_key
                self.client = SimpleNamespace()

            def send(self, message):
                sent.append(message)
                return SimpleNamespace(status_code=202)

        monkeypatch.setattr(mailer.sendgrid, "SendGridAPIClient", FakeClient)
        ok, error = mailer.send_email(
            api_key="SG.x", from_email="security@cloudguard.dev", to_email="ops@example.com",
            subject="hello", html="<p>hi</p>",
        )

        assert (ok, error) == (True, None)
        assert len(sent) == 1

    def test_sendgrid_rejection(self, monkeypatch):
        class FakeClient:
            def __init__(self, api_key):
                self.client = SimpleNamespace()

            def send(self, message):
                return SimpleNamespace(status_code=401)

        monkeypatch.setattr(mailer.sendgrid, "SendGridAPIClient", FakeClient)
        ok, error = mailer.send_email(
            api_key="SG.bad", from_email="a@example.com", to_email="b@example.com",
            subject="s", html="x",
        )

        assert ok is False
        assert "401" in error
