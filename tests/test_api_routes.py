"""
tests/test_api_routes.py — FastAPI Route Integration Tests
===========================================================
Covers the points triggers, reads, church config and reconcile routes using
the FastAPI TestClient against the in-memory SQLite engine.

These tests verify:
- Auth guards (missing token, wrong role)
- Ledger errors mapped to HTTP status codes
- Duplicate events answered with ``"duplicate": true``
"""

from __future__ import annotations

import pytest

from conftest import make_token


def _auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


# ===========================================================================
# Health endpoint
# ===========================================================================
class TestHealthEndpoint:
    def test_health_returns_ok(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}


# ===========================================================================
# Auth guards
# ===========================================================================
class TestAuthGuards:
    def test_missing_token(self, client):
        assert client.get("/api/points/users/u1/balance").status_code == 401

    def test_garbage_token(self, client):
        resp = client.get("/api/points/users/u1/balance", headers=_auth("not-a-jwt"))
        assert resp.status_code == 401

    def test_non_staff_role(self, client):
        token = make_token("parent-1", "parent")
        resp = client.get("/api/points/users/u1/balance", headers=_auth(token))
        assert resp.status_code == 403

    @pytest.mark.parametrize(
        ("method", "path", "body"),
        [
            ("post", "/api/points/adjustments/admin", {"user_id": "u1", "points": 5, "notes": "x"}),
            ("put", "/api/admin/churches/st-mark/points-config", {"trip_participation_points": 3}),
            ("post", "/api/admin/reconcile", {}),
        ],
    )
    def test_teacher_cannot_use_admin_routes(self, client, teacher_token, method, path, body):
        resp = getattr(client, method)(path, json=body, headers=_auth(teacher_token))
        assert resp.status_code == 403


# ===========================================================================
# Triggers
# ===========================================================================
class TestTriggers:
    def test_attendance_then_duplicate(self, client, church, teacher_token):
        body = {"user_id": "u1", "church_id": church, "status": "present", "attendance_id": "w1"}
        first = client.post("/api/points/attendance", json=body, headers=_auth(teacher_token))
        second = client.post("/api/points/attendance", json=body, headers=_auth(teacher_token))

        assert first.status_code == 200
        assert first.json()["applied"] is True
        assert first.json()["transaction"]["created_by"] == "teacher-1"
        assert second.json()["duplicate"] is True
        assert second.json()["balance"]["available_points"] == 10

    def test_unknown_church_is_404(self, client, teacher_token):
        body = {"user_id": "u1", "church_id": "nowhere", "trip_id": "t1"}
        resp = client.post("/api/points/trips", json=body, headers=_auth(teacher_token))
        assert resp.status_code == 404
        assert resp.json()["error"] == "ConfigNotFoundError"

    def test_noop_reports_not_applied(self, client, church, teacher_token):
        body = {"user_id": "u1", "church_id": church, "status": "excused"}
        resp = client.post("/api/points/attendance", json=body, headers=_auth(teacher_token))
        assert resp.status_code == 200
        assert resp.json()["applied"] is False
        assert resp.json()["transaction"] is None

    def test_missing_note_is_422(self, client, church, teacher_token):
        body = {"user_id": "u1", "church_id": church, "points": 5, "notes": ""}
        resp = client.post("/api/points/adjustments/teacher", json=body, headers=_auth(teacher_token))
        assert resp.status_code == 422

    def test_insufficient_is_409(self, client, teacher_token):
        body = {"user_id": "u1", "points": 10}
        resp = client.post("/api/points/orders/o1/suspend", json=body, headers=_auth(teacher_token))
        assert resp.status_code == 409

    def test_order_lifecycle(self, client, admin_token):
        headers = _auth(admin_token)
        client.post(
            "/api/points/adjustments/admin",
            json={"user_id": "u1", "points": 30, "notes": "prize"},
            headers=headers,
        )
        client.post("/api/points/orders/o1/suspend", json={"user_id": "u1", "points": 20}, headers=headers)
        resp = client.post("/api/points/orders/o1/approve", json={"user_id": "u1"}, headers=headers)
        assert resp.status_code == 200
        assert resp.json()["balance"]["used_points"] == 20

        again = client.post("/api/points/orders/o1/cancel", json={"user_id": "u1"}, headers=headers)
        assert again.status_code == 409

    def test_revocation(self, client, teacher_token):
        headers = _auth(teacher_token)
        client.post(
            "/api/points/activities/complete",
            json={"user_id": "u1", "activity_id": "a1", "points": 15},
            headers=headers,
        )
        resp = client.post(
            "/api/points/activities/revoke",
            json={"user_id": "u1", "activity_id": "a1", "reason": "duplicate"},
            headers=headers,
        )
        assert resp.json()["balance"]["available_points"] == 0


# ===========================================================================
# Reads
# ===========================================================================
class TestReads:
    def test_summary_and_leaderboard(self, client, teacher_token):
        headers = _auth(teacher_token)
        client.post(
            "/api/points/activities/complete",
            json={"user_id": "u1", "activity_id": "a1", "points": 15},
            headers=headers,
        )
        summary = client.get("/api/points/users/u1/summary", headers=headers).json()
        assert summary["points_by_type"]["activity"] == 15

        txs = client.get("/api/points/users/u1/transactions?limit=5", headers=headers).json()
        assert len(txs["transactions"]) == 1

        board = client.get("/api/points/leaderboard", headers=headers).json()
        assert board["entries"][0]["user_id"] == "u1"

    def test_leaderboard_without_config_file(self, db_engine, teacher_token, tmp_path, monkeypatch):
        from fastapi.testclient import TestClient

        from sundaypoints.api.main import app
        from sundaypoints.api.routes.points import get_config, get_engine

        monkeypatch.chdir(tmp_path)
        get_config.cache_clear()
        app.dependency_overrides[get_engine] = lambda: db_engine
        try:
            client = TestClient(app, raise_server_exceptions=False)
            resp = client.get("/api/points/leaderboard?limit=5", headers=_auth(teacher_token))
            assert resp.status_code == 200
            assert resp.json()["entries"] == []
            assert get_config().leaderboard_limit == 50
        finally:
            app.dependency_overrides.clear()
            get_config.cache_clear()


# ===========================================================================
# Admin
# ===========================================================================
class TestAdminRoutes:
    def test_config_roundtrip(self, client, church, admin_token, teacher_token):
        resp = client.put(
            f"/api/admin/churches/{church}/points-config",
            json={"trip_participation_points": 30, "reason": "summer"},
            headers=_auth(admin_token),
        )
        assert resp.status_code == 200
        read = client.get(
            f"/api/admin/churches/{church}/points-config", headers=_auth(teacher_token),
        )
        assert read.json()["trip_participation_points"] == 30

    def test_negative_config_value_rejected(self, client, church, admin_token):
        resp = client.put(
            f"/api/admin/churches/{church}/points-config",
            json={"attendance_points_present": -4},
            headers=_auth(admin_token),
        )
        assert resp.status_code == 422

    def test_missing_config_404(self, client, teacher_token):
        resp = client.get("/api/admin/churches/nowhere/points-config", headers=_auth(teacher_token))
        assert resp.status_code == 404

    def test_reconcile(self, client, admin_token):
        resp = client.post("/api/admin/reconcile", json={"fix": False}, headers=_auth(admin_token))
        assert resp.status_code == 200
        assert resp.json()["mismatched"] == 0
