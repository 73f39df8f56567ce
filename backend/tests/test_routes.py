from datetime import timedelta

from cloudguard.models import ScheduledScanLog, UserSettings, now_utc

SLACK = "https://hooks.slack.com/services/T000/B000/XXXX"


class TestAppBasics:
    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "up and running"
        assert resp.get_json()["scheduler"] == "stopped"

    def test_unknown_route_is_json_404(self, client):
        resp = client.get("/nope")
        assert resp.status_code == 404
        assert resp.get_json()["error"] == "Not found"

    def test_auth_required(self, client):
        assert client.get("/schedules").status_code == 401
        resp = client.get("/schedules", headers={"Authorization": "Bearer forged"})
        assert resp.status_code == 401


class TestSchedules:
    def test_enable_weekly_schedule(self, app, db, client, auth_headers, make_account):
        account = make_account("AWS", schedule_enabled=False, schedule_frequency=None,
                               schedule_hour=None, next_scheduled_scan=None)

        resp = client.post("/schedules", headers=auth_headers, json={
            "cloudProvider": "aws",
            "accountId": account.id,
            "scheduleEnabled": True,
            "scheduleFrequency": "weekly",
            "scheduleHour": 9,
            "scheduleDayOfWeek": 3,
        })

        assert resp.status_code == 200
        schedule = resp.get_json()["schedule"]
        assert schedule["cloudProvider"] == "AWS"
        assert schedule["scheduleFrequency"] == "weekly"
        assert schedule["scheduleDayOfWeek"] == 3
        assert schedule["scheduleDayOfMonth"] is None

        db.session.expire_all()
        account = db.session.get(type(account), account.id)
        assert account.next_scheduled_scan > now_utc()
        assert (account.next_scheduled_scan.weekday() + 1) % 7 == 3

    def test_invalid_values_are_rejected(self, client, auth_headers, make_account):
        account = make_account("AWS")
        base = {"cloudProvider": "AWS", "accountId": account.id, "scheduleEnabled": True}

        bad_hour = client.post("/schedules", headers=auth_headers,
                               json=dict(base, scheduleFrequency="daily", scheduleHour=24))
        bad_freq = client.post("/schedules", headers=auth_headers,
                               json=dict(base, scheduleFrequency="hourly", scheduleHour=1))
        missing_hour = client.post("/schedules", headers=auth_headers,
                                   json=dict(base, scheduleFrequency="daily"))
        bad_provider = client.post("/schedules", headers=auth_headers,
                                   json=dict(base, cloudProvider="IBM", scheduleFrequency="daily", scheduleHour=1))

        assert bad_hour.status_code == 400
        assert bad_freq.status_code == 400
        assert missing_hour.status_code == 400
        assert bad_provider.status_code == 400

    def test_string_false_disables_schedule(self, db, client, auth_headers, make_account):
        account = make_account("AWS")

        resp = client.post("/schedules", headers=auth_headers, json={
            "cloudProvider": "AWS", "accountId": account.id,
            "scheduleEnabled": "false", "scheduleFrequency": "daily", "scheduleHour": 9,
        })

        assert resp.status_code == 200
        schedule = resp.get_json()["schedule"]
        assert schedule["scheduleEnabled"] is False
        assert schedule["nextScheduledScan"] is None
        db.session.expire_all()
        assert db.session.get(type(account), account.id).schedule_enabled is False

    def test_string_true_enables_schedule(self, client, auth_headers, make_account):
        account = make_account("GCP", schedule_enabled=False, next_scheduled_scan=None)

        resp = client.post("/schedules", headers=auth_headers, json={
            "cloudProvider": "GCP", "accountId": account.id,
            "scheduleEnabled": "true", "scheduleFrequency": "daily", "scheduleHour": 4,
        })

        assert resp.status_code == 200
        assert resp.get_json()["schedule"]["scheduleEnabled"] is True
        assert resp.get_json()["schedule"]["nextScheduledScan"] is not None

    def test_unparseable_enabled_flag_is_rejected(self, db, client, auth_headers, make_account):
        account = make_account("AWS")
        due_at = account.next_scheduled_scan

        for flag in ("maybe", 2, ["true"]):
            resp = client.post("/schedules", headers=auth_headers, json={
                "cloudProvider": "AWS", "accountId": account.id,
                "scheduleEnabled": flag, "scheduleFrequency": "daily", "scheduleHour": 9,
            })
            assert resp.status_code == 400
            assert "scheduleEnabled" in resp.get_json()["error"]

        db.session.expire_all()
        assert db.session.get(type(account), account.id).next_scheduled_scan == due_at

    def test_cannot_touch_another_users_account(self, client, auth_headers, make_account, other_user):
        account = make_account("GCP", owner=other_user)

        resp = client.post("/schedules", headers=auth_headers, json={
            "cloudProvider": "GCP", "accountId": account.id,
            "scheduleEnabled": True, "scheduleFrequency": "daily", "scheduleHour": 2,
        })

        assert resp.status_code == 404
        assert client.get(f"/schedules/{account.id}?cloudProvider=GCP", headers=auth_headers).status_code == 404

    def test_list_and_detail(self, client, auth_headers, make_account):
        aws = make_account("AWS")
        make_account("AZURE", schedule_enabled=False)
        client.post(f"/schedules/{aws.id}/run-now?cloudProvider=AWS", headers=auth_headers)

        listing = client.get("/schedules", headers=auth_headers).get_json()
        assert [s["cloudProvider"] for s in listing["schedules"]] == ["AWS"]
        assert len(listing["recentLogs"]) == 1

        detail = client.get(f"/schedules/{aws.id}?cloudProvider=AWS", headers=auth_headers).get_json()
        assert detail["schedule"]["id"] == str(aws.id)
        assert detail["recentLogs"][0]["status"] == "success"

    def test_disable(self, db, client, auth_headers, make_account):
        account = make_account("AZURE")

        resp = client.delete(f"/schedules/{account.id}?cloudProvider=AZURE", headers=auth_headers)

        assert resp.status_code == 200
        db.session.expire_all()
        account = db.session.get(type(account), account.id)
        assert account.schedule_enabled is False
        assert account.next_scheduled_scan is None

    def test_run_now(self, db, client, auth_headers, make_account):
        future = now_utc() + timedelta(days=1)
        account = make_account("AWS", next_scheduled_scan=future)

        resp = client.post(f"/schedules/{account.id}/run-now?cloudProvider=AWS", headers=auth_headers)

        assert resp.status_code == 202
        body = resp.get_json()
        assert body["success"] is True
        assert body["auditId"]
        assert ScheduledScanLog.query.count() == 1
        db.session.expire_all()
        assert db.session.get(type(account), account.id).next_scheduled_scan == future

    def test_provider_required(self, client, auth_headers):
        assert client.delete("/schedules/1", headers=auth_headers).status_code == 400


class TestNotificationSettings:
    def test_defaults_without_row(self, client, auth_headers):
        body = client.get("/settings/notifications", headers=auth_headers).get_json()
        assert body["slackEnabled"] is False
        assert body["slackAlertOnCritical"] is True
        assert body["slackAlertOnHigh"] is False

    def test_update_creates_row(self, client, auth_headers, user):
        resp = client.post("/settings/notifications", headers=auth_headers, json={
            "slackEnabled": True,
            "slackWebhookUrl": SLACK,
            "slackAlertOnHigh": True,
            "emailEnabled": True,
        })

        assert resp.status_code == 200
        row = UserSettings.query.filter_by(user_id=user.id).one()
        assert row.slack_enabled is True
        assert row.slack_alert_on_high is True
        assert row.email_address is None

    def test_rejects_non_http_webhook(self, client, auth_headers):
        resp = client.post("/settings/notifications", headers=auth_headers,
                           json={"webhookUrl": "ftp://example.com/hook"})
        assert resp.status_code == 400

    def test_slack_test_message(self, client, auth_headers, http_calls):
        assert client.post("/settings/notifications/test/slack", headers=auth_headers, json={}).status_code == 400

        resp = client.post("/settings/notifications/test/slack", headers=auth_headers, json={"webhookUrl": SLACK})
        assert resp.status_code == 200
        assert http_calls.calls[0]["url"] == SLACK

    def test_email_test_uses_account_email(self, client, auth_headers, sent_emails):
        resp = client.post("/settings/notifications/test/email", headers=auth_headers, json={})

        assert resp.status_code == 200
        assert sent_emails[0]["to"] == "owner@example.com"
