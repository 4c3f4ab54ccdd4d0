"""
tests/test_mobile_routes.py -- Integration tests for /api/v1/mobile/auth/*.

These run through the real ASGI stack (middleware, exception handlers,
dependencies) against a per-test database.
"""

from __future__ import annotations

from fastapi.testclient import TestClient

from auth.tokens import CSRF_COOKIE_NAME, CSRF_HEADER_NAME

PASSWORD = "secret123"
BASE = "/api/v1/mobile/auth"


def _register(client: TestClient, email: str = "a@x.com", **overrides):
    body = {
        "name": "A",
        "email": email,
        "password": PASSWORD,
        "password_confirmation": PASSWORD,
        "device_name": "iPhone",
    }
    body.update(overrides)
    return client.post(f"{BASE}/register", json=body)


def _login(client: TestClient, email: str = "a@x.com", device_name: str = "iPhone", password: str = PASSWORD):
    return client.post(f"{BASE}/login", json={"email": email, "password": password, "device_name": device_name})


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _csrf(client: TestClient) -> dict[str, str]:
    return {CSRF_HEADER_NAME: client.cookies.get(CSRF_COOKIE_NAME)}


class TestRegister:
    def test_register_returns_user_and_token(self, client: TestClient) -> None:
        resp = _register(client)
        assert resp.status_code == 201, resp.text
        body = resp.json()
        assert body["success"] is True
        assert body["message"] == "Registration successful"
        user = body["data"]["user"]
        assert [r["name"] for r in user["roles"]] == ["donor"]
        assert {"id", "name", "guard_name"} <= set(user["roles"][0])
        assert "create donations" in [p["name"] for p in user["permissions"]]
        assert isinstance(body["data"]["token"], str) and body["data"]["token"]
        assert "hashed_password" not in user and "password" not in user
        assert "device_token" not in user
        assert resp.headers["cache-control"] == "no-store"

    def test_register_with_allowed_role(self, client: TestClient) -> None:
        resp = _register(client, role="institution")
        assert resp.status_code == 201
        assert [r["name"] for r in resp.json()["data"]["user"]["roles"]] == ["institution"]

    def test_register_admin_role_not_allowed_on_mobile(self, client: TestClient) -> None:
        resp = _register(client, role="admin")
        assert resp.status_code == 422
        body = resp.json()
        assert body["success"] is False
        assert "role" in body["errors"]

    def test_register_missing_fields(self, client: TestClient) -> None:
        resp = client.post(f"{BASE}/register", json={"email": "not-an-email"})
        assert resp.status_code == 422
        errors = resp.json()["errors"]
        for field in ("name", "email", "password", "device_name"):
            assert field in errors, f"expected field error for {field}"

    def test_register_password_rules(self, client: TestClient) -> None:
        resp = _register(client, password="short", password_confirmation="short")
        assert resp.status_code == 422
        assert "password" in resp.json()["errors"]

    def test_register_duplicate_email(self, client: TestClient) -> None:
        assert _register(client).status_code == 201
        resp = _register(client, email="A@X.com")
        assert resp.status_code == 422
        assert resp.json()["errors"]["email"] == ["The email has already been taken."]


class TestLogin:
    def test_login_success(self, client: TestClient) -> None:
        _register(client)
        resp = _login(client, device_name="iPad")
        assert resp.status_code == 200, resp.text
        body = resp.json()
        assert body["message"] == "Login successful"
        assert body["data"]["user"]["last_login_at"] is not None
        assert body["data"]["token"]

    def test_wrong_password_and_unknown_email_same_shape(self, client: TestClient) -> None:
        _register(client)
        wrong = _login(client, password="wrongpass1")
        unknown = _login(client, email="nobody@x.com")
        assert wrong.status_code == unknown.status_code == 401
        assert wrong.json() == unknown.json()
        assert wrong.json()["errors"] == {"email": ["The provided credentials are incorrect."]}

    def test_pending_account_gets_403_and_no_token(self, client: TestClient, make_user, store) -> None:
        user = make_user("p@x.com", status="pending")
        resp = _login(client, email="p@x.com")
        assert resp.status_code == 403
        assert resp.json() == {"success": False, "message": "Your account is suspended or pending approval"}
        assert store.list_access_tokens(user.id) == []

    def test_login_rate_limited(self, client: TestClient) -> None:
        _register(client)
        statuses = [_login(client, password="wrongpass1").status_code for _ in range(11)]
        assert statuses[:10] == [401] * 10
        assert statuses[10] == 429
        assert "retry-after" in {k.lower() for k in _login(client).headers}


class TestAuthenticated:
    def test_me(self, client: TestClient) -> None:
        token = _register(client).json()["data"]["token"]
        resp = client.get(f"{BASE}/me", headers=_bearer(token))
        assert resp.status_code == 200
        assert resp.json()["data"]["user"]["email"] == "a@x.com"

    def test_me_requires_token(self, client: TestClient) -> None:
        resp = client.get(f"{BASE}/me")
        assert resp.status_code == 401
        assert resp.json() == {"success": False, "message": "Unauthenticated."}

    def test_me_rejects_garbage_token(self, client: TestClient) -> None:
        assert client.get(f"{BASE}/me", headers=_bearer("1|nope")).status_code == 401

    def test_logout_revokes_only_current_device(self, client: TestClient) -> None:
        phone = _register(client).json()["data"]["token"]
        tablet = _login(client, device_name="iPad").json()["data"]["token"]
        resp = client.post(f"{BASE}/logout", headers=_bearer(phone))
        assert resp.status_code == 200
        assert resp.json()["message"] == "Logged out successfully"
        assert client.get(f"{BASE}/me", headers=_bearer(phone)).status_code == 401
        assert client.get(f"{BASE}/me", headers=_bearer(tablet)).status_code == 200

    def test_logout_all_with_three_devices(self, client: TestClient, store) -> None:
        tokens = [_register(client).json()["data"]["token"]]
        tokens += [_login(client, device_name=f"d{i}").json()["data"]["token"] for i in range(2)]
        user_id = store.get_by_email("a@x.com").id
        assert len(store.list_access_tokens(user_id)) == 3
        resp = client.post(f"{BASE}/logout-all", headers=_bearer(tokens[0]))
        assert resp.status_code == 200
        assert resp.json()["message"] == "Logged out from all devices"
        for token in tokens:
            assert client.get(f"{BASE}/me", headers=_bearer(token)).status_code == 401
        assert store.list_access_tokens(user_id) == []

    def test_devices_listing(self, client: TestClient) -> None:
        _register(client)
        token = _login(client, device_name="iPad").json()["data"]["token"]
        resp = client.get(f"{BASE}/devices", headers=_bearer(token))
        assert resp.status_code == 200
        devices = resp.json()["data"]
        assert [d["name"] for d in devices] == ["iPad", "iPhone"]
        for device in devices:
            assert set(device) == {"id", "name", "last_used_at", "created_at"}

    def test_revoke_device(self, client: TestClient) -> None:
        phone = _register(client).json()["data"]["token"]
        tablet = _login(client, device_name="iPad").json()["data"]["token"]
        tablet_id = int(tablet.split("|")[0])
        resp = client.delete(f"{BASE}/devices/{tablet_id}", headers=_bearer(phone))
        assert resp.status_code == 200
        assert resp.json()["message"] == "Device logged out successfully"
        assert client.get(f"{BASE}/me", headers=_bearer(tablet)).status_code == 401

    def test_revoke_other_users_device_is_404(self, client: TestClient) -> None:
        alice = _register(client, email="alice@x.com").json()["data"]["token"]
        bob = _register(client, email="bob@x.com").json()["data"]["token"]
        bob_id = int(bob.split("|")[0])
        resp = client.delete(f"{BASE}/devices/{bob_id}", headers=_bearer(alice))
        assert resp.status_code == 404
        assert resp.json()["message"] == "Device not found"
        assert client.get(f"{BASE}/me", headers=_bearer(bob)).status_code == 200

    def test_revoke_unknown_device_is_404(self, client: TestClient) -> None:
        token = _register(client).json()["data"]["token"]
        assert client.delete(f"{BASE}/devices/99999", headers=_bearer(token)).status_code == 404

    def test_revoke_out_of_range_device_is_404(self, client: TestClient) -> None:
        token = _register(client).json()["data"]["token"]
        resp = client.delete(f"{BASE}/devices/99999999999999999999", headers=_bearer(token))
        assert resp.status_code == 404
        assert resp.json()["message"] == "Device not found"

    def test_out_of_range_token_id_is_401(self, client: TestClient) -> None:
        resp = client.get(f"{BASE}/me", headers=_bearer("99999999999999999999|abc"))
        assert resp.status_code == 401
        assert resp.json() == {"success": False, "message": "Unauthenticated."}


class TestSessionFallback:
    def test_web_session_can_call_mobile_me(self, client: TestClient) -> None:
        resp = client.post(
            "/api/v1/web/auth/register",
            json={"name": "W", "email": "w@x.com", "password": PASSWORD, "password_confirmation": PASSWORD},
        )
        assert resp.status_code == 201
        me = client.get(f"{BASE}/me")
        assert me.status_code == 200
        assert me.json()["data"]["user"]["email"] == "w@x.com"

    def test_logout_with_session_deletes_nothing(self, client: TestClient, store) -> None:
        """A session-authenticated request has an Ephemeral artifact: logout is a no-op."""
        token = _register(client, email="w@x.com").json()["data"]["token"]
        client.post("/api/v1/web/auth/login", json={"email": "w@x.com", "password": PASSWORD})
        resp = client.post(f"{BASE}/logout", headers=_csrf(client))
        assert resp.status_code == 200
        assert client.get(f"{BASE}/me", headers=_bearer(token)).status_code == 200

    def test_session_logout_all_requires_csrf(self, client: TestClient, store) -> None:
        token = _register(client, email="w@x.com").json()["data"]["token"]
        client.post("/api/v1/web/auth/login", json={"email": "w@x.com", "password": PASSWORD})
        user_id = store.get_by_email("w@x.com").id

        resp = client.post(f"{BASE}/logout-all")
        assert resp.status_code == 419
        assert resp.json() == {"success": False, "message": "CSRF token mismatch."}
        assert len(store.list_access_tokens(user_id)) == 1

        forged = client.post(f"{BASE}/logout-all", headers={CSRF_HEADER_NAME: "forged"})
        assert forged.status_code == 419
        assert client.get(f"{BASE}/me", headers=_bearer(token)).status_code == 200

        resp = client.post(f"{BASE}/logout-all", headers=_csrf(client))
        assert resp.status_code == 200
        assert store.list_access_tokens(user_id) == []

    def test_session_revoke_device_requires_csrf(self, client: TestClient) -> None:
        token = _register(client, email="w@x.com").json()["data"]["token"]
        client.post("/api/v1/web/auth/login", json={"email": "w@x.com", "password": PASSWORD})
        token_id = int(token.split("|")[0])
        assert client.delete(f"{BASE}/devices/{token_id}").status_code == 419
        assert client.get(f"{BASE}/me", headers=_bearer(token)).status_code == 200
