"""
tests/test_api_routes.py -- Integration tests for the auth and user API routes.

These tests exercise the full stack: FastAPI routing -> dependency injection
-> AuthActions -> local identity provider + ProfileStore -> response model
serialization.

Coverage:
  - Auth failures: 401 on GET /auth/me, GET /users/{id}, /docs without a session
  - Registration: 201 + AUTHOR profile, duplicate email, validation envelope
  - Login/logout: cookie set, bad credentials verbatim, revoked session is 401
  - Password reset: generic answer, link -> verify -> complete -> new password
  - Profile: GET /auth/me, partial PATCH /auth/me
  - Orphaned identity: login works, /auth/me is 401, POST /users self-provisions
  - Role gates: GET /users (EDITOR+), PATCH /users/{id}/role (exact ADMIN)

Fixtures used (from conftest.py):
  - api_client: (client, profiles, outbox)
  - login_as:   factory returning (access_token, subject_id)
"""

from __future__ import annotations

from urllib.parse import parse_qs, urlparse

from conftest import TEST_PASSWORD, bearer, unique_email
from fastapi.testclient import TestClient

from auth.roles import Role


def _register(client: TestClient, email: str, password: str = TEST_PASSWORD, name: str | None = None):
    body = {"email": email, "password": password}
    if name is not None:
        body["name"] = name
    return client.post("/api/v1/auth/register", json=body)


def _login(client: TestClient, email: str, password: str = TEST_PASSWORD):
    resp = client.post("/api/v1/auth/login", json={"email": email, "password": password})
    client.cookies.clear()
    return resp


class TestApiAuthFailure:
    """Unauthenticated requests to protected API routes must return 401."""

    def test_get_me_unauthenticated(self, api_client) -> None:
        client, _, _ = api_client
        resp = client.get("/api/v1/auth/me")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"

    def test_get_me_with_garbage_token(self, api_client) -> None:
        client, _, _ = api_client
        resp = client.get("/api/v1/auth/me", headers=bearer("not-a-jwt"))
        assert resp.status_code == 401

    def test_get_user_unauthenticated(self, api_client) -> None:
        client, _, _ = api_client
        resp = client.get("/api/v1/users/some-id")
        assert resp.status_code == 401

    def test_docs_require_auth(self, api_client) -> None:
        client, _, _ = api_client
        assert client.get("/docs").status_code == 401
        assert client.get("/redoc").status_code == 401


class TestRegister:
    def test_register_creates_author_profile(self, api_client) -> None:
        client, profiles, _ = api_client
        email = unique_email("reg")
        resp = _register(client, email, name="Reg User")
        assert resp.status_code == 201, resp.text
        assert resp.json()["success"] is True
        assert resp.headers["Cache-Control"] == "no-store"

        profile = profiles.find_by_email(email)
        assert profile is not None
        assert profile.role is Role.AUTHOR
        assert profile.name == "Reg User"

    def test_register_duplicate_email_returns_provider_message(self, api_client) -> None:
        client, _, _ = api_client
        email = unique_email("dup")
        assert _register(client, email).status_code == 201
        resp = _register(client, email)
        assert resp.status_code == 400
        assert resp.json()["error"] == {"code": "registration_failed", "message": "User already registered"}

    def test_register_weak_password(self, api_client) -> None:
        client, profiles, _ = api_client
        email = unique_email("weak")
        resp = _register(client, email, password="abc")
        assert resp.status_code == 400
        assert "at least 6 characters" in resp.json()["error"]["message"]
        assert profiles.find_by_email(email) is None

    def test_register_missing_password_is_validation_error(self, api_client) -> None:
        client, _, _ = api_client
        resp = client.post("/api/v1/auth/register", json={"email": unique_email()})
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"


class TestLoginLogout:
    def test_login_sets_cookie_and_redirects_to_landing(self, api_client) -> None:
        client, _, _ = api_client
        email = unique_email("login")
        _register(client, email)
        resp = client.post("/api/v1/auth/login", json={"email": email, "password": TEST_PASSWORD})
        assert resp.status_code == 200, resp.text
        assert resp.json()["redirect_to"] == "/admin"
        assert "access_token" in resp.cookies
        assert "httponly" in resp.headers["set-cookie"].lower()

        # The cookie alone authenticates the next request.
        me = client.get("/api/v1/auth/me")
        assert me.status_code == 200
        assert me.json()["email"] == email
        client.cookies.clear()

    def test_login_bad_password(self, api_client) -> None:
        client, _, _ = api_client
        email = unique_email("badpw")
        _register(client, email)
        resp = _login(client, email, password="wrong-password")
        assert resp.status_code == 401
        assert resp.json()["error"] == {"code": "bad_credentials", "message": "Invalid login credentials"}

    def test_login_unknown_email_same_message(self, api_client) -> None:
        client, _, _ = api_client
        resp = _login(client, unique_email("nobody"))
        assert resp.status_code == 401
        assert resp.json()["error"]["message"] == "Invalid login credentials"

    def test_logout_revokes_session(self, api_client, login_as) -> None:
        client, _, _ = api_client
        token, _ = login_as()
        assert client.get("/api/v1/auth/me", headers=bearer(token)).status_code == 200

        resp = client.post("/api/v1/auth/logout", headers=bearer(token))
        assert resp.status_code == 200
        assert resp.json()["redirect_to"] == "/login"

        assert client.get("/api/v1/auth/me", headers=bearer(token)).status_code == 401

    def test_logout_without_session_succeeds(self, api_client) -> None:
        client, _, _ = api_client
        resp = client.post("/api/v1/auth/logout")
        assert resp.status_code == 200
        assert resp.json()["success"] is True


class TestPasswordReset:
    def test_reset_request_is_generic(self, api_client) -> None:
        client, _, outbox = api_client
        before = len(outbox)
        known = unique_email("known")
        _register(client, known)

        known_resp = client.post("/api/v1/auth/password-reset", json={"email": known})
        unknown_resp = client.post("/api/v1/auth/password-reset", json={"email": unique_email("unknown")})

        assert known_resp.status_code == unknown_resp.status_code == 200
        assert known_resp.json() == unknown_resp.json()
        assert known_resp.json()["message"] == "Password reset email sent. Check your inbox."
        # Only the registered address received a link.
        assert len(outbox) == before + 1
        assert outbox[-1][0] == known

    def test_full_reset_flow(self, api_client) -> None:
        client, _, outbox = api_client
        email = unique_email("reset")
        _register(client, email)
        client.post("/api/v1/auth/password-reset", json={"email": email})

        sent_to, link = outbox[-1]
        assert sent_to == email
        assert link.startswith("http://localhost:3000/reset-password?")
        token = parse_qs(urlparse(link).query)["token"][0]

        verify = client.post("/api/v1/auth/password-reset/verify", json={"token": token})
        assert verify.status_code == 200, verify.text
        assert "access_token" in client.cookies

        complete = client.post("/api/v1/auth/password-reset/complete", json={"password": "brand-new-secret"})
        client.cookies.clear()
        assert complete.status_code == 200, complete.text
        assert complete.json()["message"] == "Password updated successfully"
        assert complete.json()["redirect_to"] == "/login"

        assert _login(client, email).status_code == 401
        assert _login(client, email, password="brand-new-secret").status_code == 200

    def test_reset_link_is_single_use(self, api_client) -> None:
        client, _, outbox = api_client
        email = unique_email("once")
        _register(client, email)
        client.post("/api/v1/auth/password-reset", json={"email": email})
        token = parse_qs(urlparse(outbox[-1][1]).query)["token"][0]

        assert client.post("/api/v1/auth/password-reset/verify", json={"token": token}).status_code == 200
        client.cookies.clear()
        again = client.post("/api/v1/auth/password-reset/verify", json={"token": token})
        assert again.status_code == 400
        assert again.json()["error"] == {"code": "invalid_link", "message": "Email link is invalid or has expired"}

    def test_complete_without_session(self, api_client) -> None:
        client, _, _ = api_client
        resp = client.post("/api/v1/auth/password-reset/complete", json={"password": "whatever-123"})
        assert resp.status_code == 400
        assert resp.json()["error"]["message"] == "Auth session missing!"


class TestProfileRoutes:
    def test_get_me(self, api_client, login_as) -> None:
        client, _, _ = api_client
        token, subject_id = login_as()
        resp = client.get("/api/v1/auth/me", headers=bearer(token))
        assert resp.status_code == 200
        data = resp.json()
        assert data["id"] == subject_id
        assert data["role"] == "AUTHOR"
        assert "password" not in data and "hashed_password" not in data

    def test_patch_me_updates_only_given_fields(self, api_client, login_as) -> None:
        client, _, _ = api_client
        email = unique_email("patch")
        token, _ = login_as(email=email)
        # Prime the cached profile view.
        client.get("/api/v1/auth/me", headers=bearer(token))

        resp = client.patch("/api/v1/auth/me", json={"name": "New Name"}, headers=bearer(token))
        assert resp.status_code == 200, resp.text
        assert resp.json()["name"] == "New Name"
        assert resp.json()["email"] == email

        # The cached view was invalidated by the update.
        assert client.get("/api/v1/auth/me", headers=bearer(token)).json()["name"] == "New Name"

    def test_patch_me_email_taken(self, api_client, login_as) -> None:
        client, _, _ = api_client
        taken = unique_email("taken")
        login_as(email=taken)
        token, _ = login_as()
        resp = client.patch("/api/v1/auth/me", json={"email": taken}, headers=bearer(token))
        assert resp.status_code == 400
        assert resp.json()["error"] == {"code": "update_failed", "message": "Failed to update profile"}

    def test_get_user_by_id_not_found(self, api_client, login_as) -> None:
        client, _, _ = api_client
        token, _ = login_as()
        resp = client.get("/api/v1/users/does-not-exist", headers=bearer(token))
        assert resp.status_code == 404


class TestOrphanedIdentity:
    """An identity without a profile row reads as logged out until it self-provisions."""

    def _orphan(self, api_client) -> tuple[str, str, str]:
        client, _, _ = api_client
        identity = client.app.state.identity
        email = unique_email("orphan")
        user = identity.client().sign_up(email, TEST_PASSWORD)
        resp = _login(client, email)
        assert resp.status_code == 200
        return resp.cookies["access_token"], user.subject_id, email

    def test_orphan_reads_as_logged_out(self, api_client) -> None:
        client, _, _ = api_client
        token, subject_id, _ = self._orphan(api_client)
        assert client.get("/api/v1/auth/me", headers=bearer(token)).status_code == 401
        assert client.get(f"/api/v1/users/{subject_id}", headers=bearer(token)).status_code == 404

    def test_orphan_self_provisions(self, api_client) -> None:
        client, profiles, _ = api_client
        token, subject_id, email = self._orphan(api_client)
        resp = client.post(
            "/api/v1/users",
            json={"id": subject_id, "email": email, "name": "Late Profile"},
            headers=bearer(token),
        )
        assert resp.status_code == 201, resp.text
        assert resp.json()["role"] == "AUTHOR"
        assert profiles.find_by_id(subject_id) is not None
        assert client.get("/api/v1/auth/me", headers=bearer(token)).status_code == 200

    def test_create_profile_for_someone_else_forbidden(self, api_client) -> None:
        client, _, _ = api_client
        token, _, _ = self._orphan(api_client)
        resp = client.post(
            "/api/v1/users",
            json={"id": "someone-else", "email": unique_email("else")},
            headers=bearer(token),
        )
        assert resp.status_code == 403

    def test_create_profile_under_another_email_forbidden(self, api_client) -> None:
        client, profiles, _ = api_client
        token, subject_id, _ = self._orphan(api_client)
        resp = client.post(
            "/api/v1/users",
            json={"id": subject_id, "email": unique_email("else")},
            headers=bearer(token),
        )
        assert resp.status_code == 403
        assert resp.json()["error"]["message"] == "Profile email must match your account email."
        assert profiles.find_by_id(subject_id) is None

    def test_create_profile_email_match_ignores_case(self, api_client) -> None:
        client, profiles, _ = api_client
        token, subject_id, email = self._orphan(api_client)
        resp = client.post("/api/v1/users", json={"id": subject_id, "email": email.upper()}, headers=bearer(token))
        assert resp.status_code == 201, resp.text
        assert profiles.find_by_id(subject_id) is not None

    def test_create_profile_twice_is_500(self, api_client, login_as) -> None:
        client, _, _ = api_client
        email = unique_email("twice")
        token, subject_id = login_as(email=email)
        resp = client.post("/api/v1/users", json={"id": subject_id, "email": email}, headers=bearer(token))
        assert resp.status_code == 500
        assert resp.json() == {"error": "Failed to create user"}


class TestRoleGates:
    def test_list_users_requires_editor(self, api_client, login_as) -> None:
        client, _, _ = api_client
        author_token, _ = login_as()
        resp = client.get("/api/v1/users", headers=bearer(author_token))
        assert resp.status_code == 403
        assert resp.json()["error"]["message"] == "Editor access required."

        editor_token, _ = login_as(Role.EDITOR)
        resp = client.get("/api/v1/users", headers=bearer(editor_token))
        assert resp.status_code == 200
        assert isinstance(resp.json(), list)

    def test_admin_passes_editor_gate(self, api_client, login_as) -> None:
        client, _, _ = api_client
        token, _ = login_as(Role.ADMIN)
        assert client.get("/api/v1/users", headers=bearer(token)).status_code == 200

    def test_change_role_as_admin(self, api_client, login_as) -> None:
        client, profiles, _ = api_client
        admin_token, _ = login_as(Role.ADMIN)
        _, target_id = login_as()
        resp = client.patch(f"/api/v1/users/{target_id}/role", json={"role": "EDITOR"}, headers=bearer(admin_token))
        assert resp.status_code == 200, resp.text
        assert resp.json()["role"] == "EDITOR"
        assert profiles.find_by_id(target_id).role is Role.EDITOR

    def test_change_role_requires_exact_admin(self, api_client, login_as) -> None:
        client, _, _ = api_client
        editor_token, _ = login_as(Role.EDITOR)
        _, target_id = login_as()
        resp = client.patch(f"/api/v1/users/{target_id}/role", json={"role": "EDITOR"}, headers=bearer(editor_token))
        assert resp.status_code == 403
        assert resp.json()["error"]["message"] == "Admin access required."

    def test_change_role_unknown_role_rejected(self, api_client, login_as) -> None:
        client, _, _ = api_client
        admin_token, _ = login_as(Role.ADMIN)
        _, target_id = login_as()
        resp = client.patch(f"/api/v1/users/{target_id}/role", json={"role": "OWNER"}, headers=bearer(admin_token))
        assert resp.status_code == 422

    def test_change_role_unknown_user(self, api_client, login_as) -> None:
        client, _, _ = api_client
        admin_token, _ = login_as(Role.ADMIN)
        resp = client.patch("/api/v1/users/missing/role", json={"role": "EDITOR"}, headers=bearer(admin_token))
        assert resp.status_code == 404

    def test_admin_cannot_demote_self(self, api_client, login_as) -> None:
        client, _, _ = api_client
        admin_token, admin_id = login_as(Role.ADMIN)
        resp = client.patch(f"/api/v1/users/{admin_id}/role", json={"role": "AUTHOR"}, headers=bearer(admin_token))
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "self_demotion"

    def test_role_change_visible_on_me(self, api_client, login_as) -> None:
        client, _, _ = api_client
        admin_token, _ = login_as(Role.ADMIN)
        token, subject_id = login_as()
        assert client.get("/api/v1/auth/me", headers=bearer(token)).json()["role"] == "AUTHOR"
        client.patch(f"/api/v1/users/{subject_id}/role", json={"role": "EDITOR"}, headers=bearer(admin_token))
        assert client.get("/api/v1/auth/me", headers=bearer(token)).json()["role"] == "EDITOR"
