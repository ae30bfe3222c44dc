"""
tests/test_api_routes.py -- Integration tests for the Auth² REST API.

These tests exercise the full stack: FastAPI routing -> auth dependency
injection -> auth/ workflows -> AccountStore -> response model serialization
and the error envelope. Unit tests of the workflows live beside this file;
here the point is status codes, envelopes, headers and wiring.

Fixtures used (from conftest.py):
  - api_client: TestClient over the real app with an isolated store/gateway
  - make_account, auth_header, password, gateway
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

from fastapi.testclient import TestClient

from auth.messaging import LogGateway
from auth.models import AccountStatus, Role
from auth.tokens import create_access_token

REGISTRATION = {
    "first_name": "Ada",
    "last_name": "Lovelace",
    "email": "Ada@Example.com",
    "username": "ada_l",
    "phone": "(206) 555-7700",
    "password": "analytical-engine",
}


def _error(resp) -> dict:
    body = resp.json()
    assert "error" in body, f"Expected error envelope, got {body}"
    return body["error"]


class TestApiAuthFailure:
    """Unauthenticated requests to protected routes must return 401."""

    def test_get_me_unauthenticated(self, api_client: TestClient) -> None:
        """GET /api/v1/auth/me without Authorization header must return 401."""
        resp = api_client.get("/api/v1/auth/me")
        assert resp.status_code == 401
        assert _error(resp)["code"] == "unauthorized"

    def test_garbage_token(self, api_client: TestClient) -> None:
        resp = api_client.get("/api/v1/auth/me", headers={"Authorization": "Bearer nope"})
        assert resp.status_code == 401
        assert _error(resp)["code"] == "token_invalid"

    def test_expired_token_has_its_own_code(self, api_client: TestClient, make_account) -> None:
        account = make_account()
        old = create_access_token(account, now=datetime.now(timezone.utc) - timedelta(days=15))
        resp = api_client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {old}"})
        assert resp.status_code == 401
        assert _error(resp)["code"] == "token_expired"

    def test_token_of_deleted_account(self, api_client: TestClient, make_account, auth_header) -> None:
        account = make_account(status=AccountStatus.DELETED)
        resp = api_client.get("/api/v1/auth/me", headers=auth_header(account))
        assert resp.status_code == 401

    def test_token_of_suspended_account(self, api_client: TestClient, make_account, auth_header) -> None:
        account = make_account(status=AccountStatus.SUSPENDED)
        resp = api_client.get("/api/v1/auth/me", headers=auth_header(account))
        assert resp.status_code == 403
        assert _error(resp)["code"] == "account_unavailable"

    def test_admin_routes_unauthenticated(self, api_client: TestClient) -> None:
        assert api_client.get("/api/v1/admin/users").status_code == 401
        assert api_client.post("/api/v1/verify/email/send").status_code == 401


class TestRegisterAndLogin:
    def test_register(self, api_client: TestClient) -> None:
        resp = api_client.post("/api/v1/auth/register", json=REGISTRATION)
        assert resp.status_code == 201, resp.text
        data = resp.json()
        assert data["email"] == "ada@example.com"
        assert data["phone"] == "2065557700"
        assert data["role"] == 1
        assert data["role_name"] == "User"
        assert data["status"] == "pending"
        assert "password" not in data
        assert "salt" not in data

    def test_duplicate_registration(self, api_client: TestClient) -> None:
        api_client.post("/api/v1/auth/register", json=REGISTRATION)
        resp = api_client.post("/api/v1/auth/register", json={**REGISTRATION, "username": "someone_else"})
        assert resp.status_code == 409
        assert _error(resp)["code"] == "conflict"
        assert _error(resp)["detail"] == "email"

    def test_registration_validation(self, api_client: TestClient) -> None:
        resp = api_client.post("/api/v1/auth/register", json={**REGISTRATION, "password": "x" * 73})
        assert resp.status_code == 422
        assert _error(resp)["code"] == "validation_error"
        resp = api_client.post("/api/v1/auth/register", json={**REGISTRATION, "email": "not-an-email"})
        assert resp.status_code == 422

    def test_password_limit_counts_bytes(self, api_client: TestClient) -> None:
        """40 characters fit the length limit but are 80 bytes for bcrypt."""
        resp = api_client.post("/api/v1/auth/register", json={**REGISTRATION, "password": "\u00e9" * 40})
        assert resp.status_code == 422
        assert _error(resp)["code"] == "validation_error"
        resp = api_client.post("/api/v1/auth/register", json={**REGISTRATION, "password": "\u00e9" * 36})
        assert resp.status_code == 201, resp.text

    def test_login_and_me(self, api_client: TestClient) -> None:
        api_client.post("/api/v1/auth/register", json=REGISTRATION)
        resp = api_client.post(
            "/api/v1/auth/login", json={"email": "ada@example.com", "password": REGISTRATION["password"]}
        )
        assert resp.status_code == 200, resp.text
        assert resp.headers["Cache-Control"] == "no-store"
        body = resp.json()
        assert body["token_type"] == "bearer"
        assert body["expires_in"] == 14 * 24 * 3600
        me = api_client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {body['access_token']}"})
        assert me.status_code == 200
        assert me.json()["username"] == "ada_l"

    def test_bad_login(self, api_client: TestClient, make_account) -> None:
        account = make_account()
        wrong = api_client.post("/api/v1/auth/login", json={"email": account.email, "password": "wrong-password"})
        unknown = api_client.post("/api/v1/auth/login", json={"email": "ghost@example.com", "password": "whatever"})
        assert wrong.status_code == unknown.status_code == 401
        assert _error(wrong) == _error(unknown)

    def test_login_suspended(self, api_client: TestClient, make_account, password: str) -> None:
        account = make_account(status=AccountStatus.LOCKED)
        resp = api_client.post("/api/v1/auth/login", json={"email": account.email, "password": password})
        assert resp.status_code == 403
        assert _error(resp)["code"] == "account_unavailable"

    def test_login_rate_limited(self, api_client: TestClient) -> None:
        """The conftest limit is 20/minute; the 21st attempt is refused."""
        body = {"email": "ghost@example.com", "password": "whatever"}
        statuses = [api_client.post("/api/v1/auth/login", json=body).status_code for _ in range(21)]
        assert statuses[:20] == [401] * 20
        assert statuses[20] == 429
        last = api_client.post("/api/v1/auth/login", json=body)
        assert _error(last)["code"] == "rate_limited"
        assert "Retry-After" in last.headers


class TestPasswordRoutes:
    def test_change_password(self, api_client: TestClient, make_account, auth_header, password: str) -> None:
        account = make_account()
        resp = api_client.post(
            "/api/v1/auth/password/change",
            json={"current_password": password, "new_password": "brand-new-secret"},
            headers=auth_header(account),
        )
        assert resp.status_code == 200, resp.text
        login = api_client.post("/api/v1/auth/login", json={"email": account.email, "password": "brand-new-secret"})
        assert login.status_code == 200

    def test_change_password_wrong_current(self, api_client: TestClient, make_account, auth_header) -> None:
        account = make_account()
        resp = api_client.post(
            "/api/v1/auth/password/change",
            json={"current_password": "not-it", "new_password": "brand-new-secret"},
            headers=auth_header(account),
        )
        assert resp.status_code == 400
        assert _error(resp)["code"] == "incorrect_password"

    def test_reset_request_is_uniform(self, api_client: TestClient, make_account, gateway: LogGateway) -> None:
        account = make_account(email_verified=True)
        known = api_client.post("/api/v1/auth/password/reset-request", json={"email": account.email})
        unknown = api_client.post("/api/v1/auth/password/reset-request", json={"email": "ghost@example.com"})
        assert known.status_code == unknown.status_code == 202
        assert known.json() == unknown.json()
        assert len(gateway.outbox) == 1

    def test_reset_flow_single_use(self, api_client: TestClient, make_account, gateway: LogGateway) -> None:
        account = make_account(email_verified=True)
        api_client.post("/api/v1/auth/password/reset-request", json={"email": account.email})
        url = next(line for line in gateway.outbox[0].body.splitlines() if "token=" in line)
        token = parse_qs(urlparse(url).query)["token"][0]
        first = api_client.post("/api/v1/auth/password/reset", json={"token": token, "new_password": "reset-secret-1"})
        assert first.status_code == 200, first.text
        second = api_client.post("/api/v1/auth/password/reset", json={"token": token, "new_password": "reset-secret-2"})
        assert second.status_code == 400
        assert _error(second)["code"] == "claim_consumed"


class TestVerificationRoutes:
    def test_email_verification_flow(self, api_client: TestClient, make_account, auth_header) -> None:
        account = make_account(status=AccountStatus.PENDING)
        sent = api_client.post("/api/v1/verify/email/send", headers=auth_header(account))
        assert sent.status_code == 200, sent.text
        link = sent.json()["dev_link"]
        path = urlparse(link)
        confirmed = api_client.get(f"{path.path}?{path.query}")
        assert confirmed.status_code == 200, confirmed.text
        me = api_client.get("/api/v1/auth/me", headers=auth_header(account)).json()
        assert me["email_verified"] is True
        assert me["status"] == "active"

    def test_email_resend_cooldown(self, api_client: TestClient, make_account, auth_header) -> None:
        account = make_account()
        api_client.post("/api/v1/verify/email/send", headers=auth_header(account))
        resp = api_client.post("/api/v1/verify/email/send", headers=auth_header(account))
        assert resp.status_code == 429
        assert _error(resp)["code"] == "rate_limited"
        assert int(resp.headers["Retry-After"]) >= 1

    def test_confirm_unknown_token(self, api_client: TestClient) -> None:
        resp = api_client.get("/api/v1/verify/email/confirm", params={"token": "f" * 64})
        assert resp.status_code == 400
        assert _error(resp)["code"] == "token_invalid"

    def test_phone_verification_flow(self, api_client: TestClient, make_account, auth_header) -> None:
        account = make_account()
        sent = api_client.post("/api/v1/verify/phone/send", json={"carrier": "tmobile"}, headers=auth_header(account))
        assert sent.status_code == 200, sent.text
        code = sent.json()["dev_code"]
        wrong = "999999" if code != "999999" else "100000"
        bad = api_client.post("/api/v1/verify/phone/verify", json={"code": wrong}, headers=auth_header(account))
        assert bad.status_code == 400
        assert _error(bad)["code"] == "invalid_code"
        assert _error(bad)["detail"] == "remaining_attempts=2"
        good = api_client.post("/api/v1/verify/phone/verify", json={"code": code}, headers=auth_header(account))
        assert good.status_code == 200, good.text
        me = api_client.get("/api/v1/auth/me", headers=auth_header(account)).json()
        assert me["phone_verified"] is True

    def test_phone_send_without_body(self, api_client: TestClient, make_account, auth_header) -> None:
        account = make_account()
        resp = api_client.post("/api/v1/verify/phone/send", headers=auth_header(account))
        assert resp.status_code == 200, resp.text

    def test_verify_without_code(self, api_client: TestClient, make_account, auth_header) -> None:
        account = make_account()
        resp = api_client.post("/api/v1/verify/phone/verify", json={"code": "123456"}, headers=auth_header(account))
        assert resp.status_code == 404
        assert _error(resp)["code"] == "no_code_found"

    def test_carriers_public(self, api_client: TestClient) -> None:
        resp = api_client.get("/api/v1/verify/carriers")
        assert resp.status_code == 200
        assert any(c["id"] == "verizon" for c in resp.json())


class TestAdminRoutes:
    def test_user_cannot_reach_admin(self, api_client: TestClient, make_account, auth_header) -> None:
        user = make_account(role=Role.MODERATOR)
        resp = api_client.get("/api/v1/admin/users", headers=auth_header(user))
        assert resp.status_code == 403
        assert _error(resp)["code"] == "forbidden"

    def test_list_and_filter(self, api_client: TestClient, make_account, auth_header) -> None:
        admin = make_account(role=Role.ADMIN)
        make_account(status=AccountStatus.SUSPENDED)
        make_account()
        resp = api_client.get("/api/v1/admin/users", params={"status": "suspended"}, headers=auth_header(admin))
        assert resp.status_code == 200, resp.text
        body = resp.json()
        assert body["total"] == 1
        assert body["accounts"][0]["status"] == "suspended"

    def test_create_respects_role_ceiling(self, api_client: TestClient, make_account, auth_header) -> None:
        admin = make_account(role=Role.ADMIN)
        body = {**REGISTRATION, "role": 4}
        resp = api_client.post("/api/v1/admin/users", json=body, headers=auth_header(admin))
        assert resp.status_code == 403
        assert _error(resp)["detail"] == "role_assignment_too_high"
        resp = api_client.post("/api/v1/admin/users", json={**REGISTRATION, "role": 2}, headers=auth_header(admin))
        assert resp.status_code == 201, resp.text
        assert resp.json()["status"] == "active"

    def test_patch_suspend_blocks_login(
        self, api_client: TestClient, make_account, auth_header, password: str
    ) -> None:
        admin = make_account(role=Role.ADMIN)
        user = make_account()
        resp = api_client.patch(
            f"/api/v1/admin/users/{user.id}", json={"status": "suspended"}, headers=auth_header(admin)
        )
        assert resp.status_code == 200, resp.text
        login = api_client.post("/api/v1/auth/login", json={"email": user.email, "password": password})
        assert login.status_code == 403

    def test_patch_cannot_set_deleted(self, api_client: TestClient, make_account, auth_header) -> None:
        admin = make_account(role=Role.ADMIN)
        user = make_account()
        resp = api_client.patch(f"/api/v1/admin/users/{user.id}", json={"status": "deleted"}, headers=auth_header(admin))
        assert resp.status_code == 422

    def test_delete_then_delete_again(self, api_client: TestClient, make_account, auth_header) -> None:
        admin = make_account(role=Role.ADMIN)
        user = make_account()
        first = api_client.delete(f"/api/v1/admin/users/{user.id}", headers=auth_header(admin))
        assert first.status_code == 200, first.text
        second = api_client.delete(f"/api/v1/admin/users/{user.id}", headers=auth_header(admin))
        assert second.status_code == 409
        assert _error(second)["code"] == "invalid_status_transition"

    def test_cannot_delete_self(self, api_client: TestClient, make_account, auth_header) -> None:
        owner = make_account(role=Role.OWNER)
        resp = api_client.delete(f"/api/v1/admin/users/{owner.id}", headers=auth_header(owner))
        assert resp.status_code == 403
        assert _error(resp)["detail"] == "self_modification"

    def test_change_role(self, api_client: TestClient, make_account, auth_header) -> None:
        owner = make_account(role=Role.OWNER)
        user = make_account()
        resp = api_client.put(f"/api/v1/admin/users/{user.id}/role", json={"role": 4}, headers=auth_header(owner))
        assert resp.status_code == 200, resp.text
        assert resp.json()["old_role"] == 1
        assert resp.json()["new_role"] == 4

    def test_demotion_applies_to_existing_token(self, api_client: TestClient, make_account, auth_header) -> None:
        """The token still says Admin, but the stored role decides."""
        owner = make_account(role=Role.OWNER)
        admin = make_account(role=Role.ADMIN)
        admin_headers = auth_header(admin)
        assert api_client.get("/api/v1/admin/users", headers=admin_headers).status_code == 200
        api_client.put(f"/api/v1/admin/users/{admin.id}/role", json={"role": 1}, headers=auth_header(owner))
        assert api_client.get("/api/v1/admin/users", headers=admin_headers).status_code == 403

    def test_admin_password_reset_over_72_bytes(self, api_client: TestClient, make_account, auth_header) -> None:
        admin = make_account(role=Role.ADMIN)
        user = make_account()
        resp = api_client.put(
            f"/api/v1/admin/users/{user.id}/password",
            json={"new_password": "\u00e9" * 40},
            headers=auth_header(admin),
        )
        assert resp.status_code == 422

    def test_admin_password_reset(self, api_client: TestClient, make_account, auth_header) -> None:
        admin = make_account(role=Role.ADMIN)
        user = make_account()
        resp = api_client.put(
            f"/api/v1/admin/users/{user.id}/password",
            json={"new_password": "admin-chosen-pw"},
            headers=auth_header(admin),
        )
        assert resp.status_code == 200, resp.text
        login = api_client.post("/api/v1/auth/login", json={"email": user.email, "password": "admin-chosen-pw"})
        assert login.status_code == 200

    def test_search_stats_and_detail(self, api_client: TestClient, make_account, auth_header) -> None:
        admin = make_account(role=Role.ADMIN)
        target = make_account(first_name="Grace", username="grace_h")
        headers = auth_header(admin)
        found = api_client.get("/api/v1/admin/users/search", params={"q": "grace"}, headers=headers)
        assert [a["id"] for a in found.json()] == [target.id]
        stats = api_client.get("/api/v1/admin/users/stats", headers=headers).json()
        assert stats["total"] == 2
        assert stats["by_role"] == {"User": 1, "Admin": 1}
        detail = api_client.get(f"/api/v1/admin/users/{target.id}", headers=headers)
        assert detail.json()["username"] == "grace_h"
        missing = api_client.get("/api/v1/admin/users/9999", headers=headers)
        assert missing.status_code == 404
