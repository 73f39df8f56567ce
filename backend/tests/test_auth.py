from cloudguard.auth.tokens import create_access_token, verify_access_token

SECRET = "test-secret-key"


class TestTokens:
    def test_token_carries_user_id(self):
        token = create_access_token(secret_key=SECRET, user_id=42)
        assert verify_access_token(secret_key=SECRET, token=token) == 42

    def test_wrong_secret_or_tampered_token_is_rejected(self):
        token = create_access_token(secret_key=SECRET, user_id=42)
        assert verify_access_token(secret_key="another-secret", token=token) is None
        assert verify_access_token(secret_key=SECRET, token=token[:-2] + "xx") is None
        assert verify_access_token(secret_key=SECRET, token="not-a-token") is None

    def test_expired_token_is_rejected(self):
        token = create_access_token(secret_key=SECRET, user_id=42)
        assert verify_access_token(secret_key=SECRET, token=token, max_age_seconds=-1) is None


class TestRequireAuth:
    def test_max_age_comes_from_config(self, app, client, auth_headers):
        assert client.get("/schedules", headers=auth_headers).status_code == 200

        app.config["AUTH_TOKEN_MAX_AGE"] = -1
        resp = client.get("/schedules", headers=auth_headers)

        assert resp.status_code == 401
        assert resp.get_json()["error"] == "invalid or expired token"

    def test_token_for_deleted_user_is_rejected(self, app, client):
        token = create_access_token(secret_key=SECRET, user_id=999)
        resp = client.get("/schedules", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401
        assert resp.get_json()["error"] == "user not found"
