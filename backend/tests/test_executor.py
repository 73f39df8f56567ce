from unittest.mock import patch

from sqlalchemy.exc import OperationalError

from cloudguard.models import Audit, Finding, now_utc
from cloudguard.scheduling.executor import (
    ACCOUNT_NOT_FOUND,
    complete_audit,
    execute_scan,
    set_scan_engine,
)
from cloudguard.scheduling.providers import PROVIDERS


class TestExecuteScan:
    def test_success_creates_running_audit_and_stamps_last_scan(self, app, db, make_account):
        account = make_account("AWS")
        now = now_utc()

        result = execute_scan("AWS", account.id, now=now)

        assert result.success is True
        assert result.error is None
        assert result.summary is None
        audit = db.session.get(Audit, result.audit_id)
        assert audit.status == "running"
        assert audit.provider == "AWS"
        assert audit.account_id == account.id
        db.session.refresh(account)
        assert account.last_scan_at == now

    def test_provider_name_is_case_insensitive(self, app, make_account):
        account = make_account("GCP")
        assert execute_scan("gcp", account.id).success is True

    def test_missing_account_creates_no_audit(self, app, db):
        result = execute_scan("AZURE", 999)

        assert result.success is False
        assert result.error == ACCOUNT_NOT_FOUND
        assert result.audit_id is None
        assert Audit.query.count() == 0

    def test_invalid_provider(self, app):
        result = execute_scan("ORACLE", 1)
        assert result.success is False
        assert result.error == "Invalid cloud provider"

    def test_store_failure_is_returned_not_raised(self, app, make_account, monkeypatch):
        account = make_account("AWS")

        def boom(*args, **kwargs):
            raise RuntimeError("database is locked")

        monkeypatch.setattr(PROVIDERS["AWS"], "create_running_audit", boom)
        result = execute_scan("AWS", account.id)

        assert result.success is False
        assert "database is locked" in result.error
        assert result.duration_ms >= 0

    def test_engine_failure_marks_audit_failed(self, app, db, make_account):
        account = make_account("AWS")

        def engine(provider, acct, audit_id):
            raise RuntimeError("credentials rejected")

        set_scan_engine(app, engine)
        result = execute_scan("AWS", account.id)

        assert result.success is False
        assert result.audit_id is not None
        audit = db.session.get(Audit, result.audit_id)
        assert audit.status == "failed"
        assert "credentials rejected" in audit.error_message

    def test_synchronous_engine_reports_summary(self, app, make_account):
        account = make_account("AWS")

        def engine(provider, acct, audit_id):
            complete_audit(audit_id, [
                {"severity": "CRITICAL", "title": "Root MFA disabled", "resource": "root"},
                {"severity": "LOW", "title": "Old access key", "resource": "iam-user"},
            ], send_alerts=False)

        set_scan_engine(app, engine)
        result = execute_scan("AWS", account.id)

        assert result.success is True
        assert result.summary is not None
        assert (result.summary.critical, result.summary.low, result.summary.total) == (1, 1, 2)

    def test_summary_not_reported_when_already_alerted(self, app, make_account):
        account = make_account("AWS")

        def engine(provider, acct, audit_id):
            complete_audit(audit_id, [{"severity": "CRITICAL", "title": "x", "resource": "r"}])

        set_scan_engine(app, engine)
        with patch("cloudguard.scheduling.executor.dispatch_summary") as summary, \
                patch("cloudguard.scheduling.executor.dispatch_findings") as findings:
            result = execute_scan("AWS", account.id)

        assert result.success is True
        assert result.summary is None
        summary.assert_called_once()
        findings.assert_called_once()


class TestCompleteAudit:
    def _running_audit(self, db, account):
        audit = Audit(provider="AWS", account_id=account.id, status="running", started_at=now_utc())
        db.session.add(audit)
        db.session.commit()
        return audit

    def test_counts_findings_by_severity(self, app, db, make_account):
        audit = self._running_audit(db, make_account("AWS"))

        complete_audit(audit.id, [
            {"severity": "critical", "title": "a", "resource": "r1"},
            {"severity": "HIGH", "title": "b", "resource": "r2"},
            {"severity": "HIGH", "title": "c", "resource": "r3"},
            {"severity": "bogus", "title": "d", "resource": "r4"},
        ], send_alerts=False)

        db.session.refresh(audit)
        assert audit.status == "completed"
        assert (audit.critical, audit.high, audit.medium, audit.low) == (1, 2, 0, 1)
        assert audit.total_findings == 4
        assert Finding.query.filter_by(audit_id=audit.id).count() == 4

    def test_error_marks_failed_without_alerting(self, app, db, make_account):
        audit = self._running_audit(db, make_account("AWS"))

        with patch("cloudguard.scheduling.executor.dispatch_summary") as summary:
            complete_audit(audit.id, error="collector crashed")

        db.session.refresh(audit)
        assert audit.status == "failed"
        assert audit.alerted_at is None
        summary.assert_not_called()

    def test_alert_failure_does_not_break_completion(self, app, db, make_account):
        audit = self._running_audit(db, make_account("AWS"))

        with patch("cloudguard.scheduling.executor.dispatch_summary", side_effect=RuntimeError("slack down")):
            result = complete_audit(audit.id, [{"severity": "HIGH", "title": "t", "resource": "r"}])

        assert result.status == "completed"
        assert result.alerted_at is not None

    def test_unknown_audit(self, app):
        assert complete_audit(12345) is None


class TestAtomicTrigger:
    def test_failed_last_scan_update_leaves_no_audit(self, app, db, make_account, monkeypatch):
        account = make_account("AWS")

        def boom(*args, **kwargs):
            raise OperationalError("UPDATE aws_account", {}, Exception("disk I/O error"))

        monkeypatch.setattr(PROVIDERS["AWS"], "update_last_scan_at", boom)
        result = execute_scan("AWS", account.id)

        assert result.success is False
        assert result.audit_id is None
        assert "disk I/O error" in result.error
        assert Audit.query.count() == 0
        db.session.refresh(account)
        assert account.last_scan_at is None

    def test_failed_commit_leaves_no_audit(self, app, db, make_account, monkeypatch):
        account = make_account("GCP")
        real_commit = db.session.commit
        calls = {"n": 0}

        def flaky_commit():
            calls["n"] += 1
            if calls["n"] == 1:
                raise OperationalError("COMMIT", {}, Exception("database is locked"))
            return real_commit()

        monkeypatch.setattr(db.session, "commit", flaky_commit)
        result = execute_scan("GCP", account.id)
        monkeypatch.undo()

        assert result.success is False
        assert Audit.query.count() == 0
