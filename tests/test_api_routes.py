"""
tests/test_api_routes.py -- Integration tests for the HTTP surface.

These tests exercise the full stack: FastAPI routing -> body/query parsing
-> handlers -> SessionStore/UserStore -> envelope serialization. Unit tests
of the handlers would miss the exception handlers that build the failure
envelope and the 404 fallback.

Fixtures used (from conftest.py):
  - api_client: TestClient backed by a seeded in-memory user store.
"""

from __future__ import annotations

import logging

from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError


def _connect(client: TestClient, username: str = "alice", password: str = "correct-pw") -> str:
    resp = client.post("/connect/", json={"username": username, "password": password})
    assert resp.status_code == 200, resp.text
    data = resp.json()
    assert data["success"] is True, data
    return data["uuid"]


class TestSessionFlow:
    def test_connect_me_disconnect_me(self, api_client: TestClient) -> None:
        """connect -> GET /me -> disconnect -> GET /me fails with Invalid session."""
        token = _connect(api_client)

        me = api_client.get(f"/me/{token}/").json()
        assert me["success"] is True
        assert me["user"]["username"] == "alice"
        assert set(me["user"]) == {"id", "username", "firstName", "lastName", "student", "grade"}
        assert "reason" not in me

        assert api_client.post(f"/disconnect/{token}/").json() == {"success": True}
        assert api_client.get(f"/me/{token}/").json() == {"success": False, "reason": "Invalid session"}

    def test_connect_returns_only_success_and_uuid(self, api_client: TestClient) -> None:
        data = api_client.post("/connect/", json={"username": "alice", "password": "correct-pw"}).json()
        assert set(data) == {"success", "uuid"}

    def test_connect_with_form_body(self, api_client: TestClient) -> None:
        resp = api_client.post("/connect/", data={"username": "tina", "password": "teacher-pw"})
        data = resp.json()
        assert data["success"] is True
        assert len(data["uuid"]) == 36

    def test_connect_failures(self, api_client: TestClient) -> None:
        cases = [
            ({"username": "alice"}, "Missing `username` or `password`"),
            ({"username": "nobody", "password": "x"}, "No such user found"),
            ({"username": "alice", "password": "wrong"}, "Incorrect password"),
        ]
        for body, reason in cases:
            resp = api_client.post("/connect/", json=body)
            assert resp.status_code == 200
            assert resp.json() == {"success": False, "reason": reason}

    def test_connect_malformed_json(self, api_client: TestClient) -> None:
        resp = api_client.post("/connect/", content=b"{oops", headers={"Content-Type": "application/json"})
        assert resp.json() == {"success": False, "reason": "Malformed request body"}

    def test_double_disconnect(self, api_client: TestClient) -> None:
        token = _connect(api_client)
        assert api_client.post(f"/disconnect/{token}/").json()["success"] is True
        assert api_client.post(f"/disconnect/{token}/").json() == {"success": False, "reason": "Invalid session"}

    def test_malformed_token_is_invalid_session(self, api_client: TestClient) -> None:
        for resp in (
            api_client.get("/me/not-a-uuid/"),
            api_client.post("/disconnect/not-a-uuid/"),
            api_client.get("/users/not-a-uuid/"),
        ):
            assert resp.status_code == 200
            assert resp.json() == {"success": False, "reason": "Invalid session"}


class TestProfileRoutes:
    def test_post_me_merges_fields(self, api_client: TestClient) -> None:
        token = _connect(api_client)
        resp = api_client.post(f"/me/{token}/", json={"firstName": "X"})
        assert resp.json() == {"success": True}
        user = api_client.get(f"/me/{token}/").json()["user"]
        assert (user["firstName"], user["lastName"], user["username"]) == ("X", "Adams", "alice")

    def test_post_me_malformed_body(self, api_client: TestClient) -> None:
        token = _connect(api_client)
        resp = api_client.post(f"/me/{token}/", content=b"nope", headers={"Content-Type": "application/json"})
        assert resp.json() == {"success": False, "reason": "Malformed request body"}

    def test_orphaned_session_self_heals(self, api_client: TestClient, user_store, sessions) -> None:
        token = _connect(api_client)
        user_store.delete_user(user_store.get_by_username("alice").id)

        first = api_client.get(f"/me/{token}/").json()
        assert first["success"] is False
        assert first["reason"] == "User bound to this session was removed, this session will be revoked"
        assert len(sessions) == 0
        assert api_client.get(f"/me/{token}/").json()["reason"] == "Invalid session"


class TestDirectoryRoutes:
    def test_teacher_lists_all_users(self, api_client: TestClient) -> None:
        token = _connect(api_client, "tina", "teacher-pw")
        data = api_client.get(f"/users/{token}/").json()
        assert data["success"] is True
        assert len(data["users"]) == 6
        for user in data["users"]:
            assert "password" not in user and "hashed_password" not in user

    def test_teacher_filters_by_grade_number(self, api_client: TestClient) -> None:
        token = _connect(api_client, "tina", "teacher-pw")
        data = api_client.get(f"/users/{token}/", params={"onlyStudents": "true", "grade": "11"}).json()
        assert sorted(u["username"] for u in data["users"]) == ["alice", "bob"]

    def test_bare_flag(self, api_client: TestClient) -> None:
        token = _connect(api_client, "tina", "teacher-pw")
        data = api_client.get(f"/users/{token}/?onlyTeachers").json()
        assert sorted(u["username"] for u in data["users"]) == ["tina", "tom"]
        assert all(u["student"] is False for u in data["users"])

    def test_conflicting_filters(self, api_client: TestClient) -> None:
        token = _connect(api_client, "tina", "teacher-pw")
        data = api_client.get(f"/users/{token}/?onlyStudents=true&onlyTeachers=true").json()
        assert data == {"success": False, "reason": "`onlyStudents` and `onlyTeachers` are mutually exclusive"}

    def test_student_forbidden(self, api_client: TestClient) -> None:
        token = _connect(api_client)
        for query in ("", "?onlyStudents=true", "?onlyTeachers=true&grade=11"):
            data = api_client.get(f"/users/{token}/{query}").json()
            assert data == {"success": False, "reason": "Students are not allowed to use this method"}

    def test_oversized_grade_is_rejected(self, api_client: TestClient) -> None:
        token = _connect(api_client, "tina", "teacher-pw")
        data = api_client.get(f"/users/{token}/", params={"grade": "x" * 20}).json()
        assert data == {"success": False, "reason": "Malformed request"}


class TestFallbacks:
    def test_unknown_route(self, api_client: TestClient) -> None:
        resp = api_client.get("/nowhere/")
        assert resp.status_code == 404
        assert resp.json() == {"success": False, "reason": "No such method found"}

    def test_wrong_method(self, api_client: TestClient) -> None:
        resp = api_client.get("/connect/")
        assert resp.status_code == 404
        assert resp.json() == {"success": False, "reason": "No such method found"}

    def test_health(self, api_client: TestClient) -> None:
        _connect(api_client)
        data = api_client.get("/health/").json()
        assert data["status"] == "healthy"
        assert data["database"] == "ok"
        assert data["sessions"] == 1
        assert "version" in data

    def test_health_reports_unreachable_database(self, api_client: TestClient, user_store, monkeypatch) -> None:
        def broken_ping() -> bool:
            raise OperationalError("SELECT 1", {}, Exception("database is locked"))

        monkeypatch.setattr(user_store, "ping", broken_ping)
        resp = api_client.get("/health/")
        assert resp.status_code == 200
        data = resp.json()
        assert (data["status"], data["database"]) == ("degraded", "unavailable")


class TestMiddleware:
    def test_request_log_wraps_cors_preflight(self, api_client: TestClient, caplog) -> None:
        """CORS answers preflights itself; the request log still sees them because it is outermost."""
        caplog.set_level(logging.INFO, logger="rtest.api")
        resp = api_client.options(
            "/connect/",
            headers={"Origin": "http://localhost", "Access-Control-Request-Method": "POST"},
        )
        assert resp.status_code == 200
        assert resp.headers["access-control-allow-origin"] == "http://localhost"
        assert any("OPTIONS /connect/ 200" in record.getMessage() for record in caplog.records)
