"""
Backend API Tests for MemoryLane
Tests: Auth, remote collections, Dashboard widgets
"""
import pytest
from fastapi.testclient import TestClient

import server


@pytest.fixture
def client(fake_db):
    """TestClient with the document store swapped for the in-memory one"""
    server.app.dependency_overrides[server.get_database] = lambda: fake_db
    with TestClient(server.app) as test_client:
        yield test_client
    server.app.dependency_overrides.clear()
    server.dashboards.clear()


def sign_in(client, email="maria@example.com", password="pw123", role=None):
    payload = {"email": email, "password": password}
    if role:
        payload["role"] = role
    assert client.post("/api/auth/register", json=payload).status_code == 200
    response = client.post("/api/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


@pytest.fixture
def auth(client):
    return sign_in(client)


@pytest.fixture
def dashboard(client, auth):
    response = client.post("/api/dashboard", headers=auth)
    assert response.status_code == 200
    return auth


def family_mode(client, auth):
    response = client.put("/api/dashboard/mode", json={"mode": "family"}, headers=auth)
    assert response.status_code == 200


class TestHealthAndAuth:
    """Health check and authentication tests"""

    def test_api_root(self, client):
        response = client.get("/api/")
        assert response.status_code == 200
        assert response.json()["message"] == "MemoryLane API"

    def test_login_returns_user(self, client):
        client.post("/api/auth/register", json={"email": "john@example.com", "password": "pw", "role": "patient"})
        response = client.post("/api/auth/login", json={"email": "john@example.com", "password": "pw"})
        assert response.status_code == 200
        user = response.json()["user"]
        assert user["email"] == "john@example.com"
        assert user["role"] == "patient"
        assert user["id"].startswith("user_")
        assert response.json()["token_type"] == "bearer"
        assert response.json()["access_token"]

    def test_register_default_role_is_family(self, client, auth):
        response = client.get("/api/auth/me", headers=auth)
        assert response.status_code == 200
        assert response.json()["role"] == "family"

    def test_register_duplicate_email(self, client, auth):
        response = client.post("/api/auth/register", json={"email": "maria@example.com", "password": "x"})
        assert response.status_code == 400

    def test_register_unknown_role(self, client):
        response = client.post("/api/auth/register", json={"email": "a@example.com", "password": "x", "role": "admin"})
        assert response.status_code == 422

    def test_login_wrong_password(self, client, auth):
        response = client.post("/api/auth/login", json={"email": "maria@example.com", "password": "wrong"})
        assert response.status_code == 401

    def test_auth_me_without_token(self, client):
        assert client.get("/api/auth/me").status_code == 401

    def test_garbage_token(self, client):
        response = client.get("/api/auth/me", headers={"Authorization": "Bearer not.a.token"})
        assert response.status_code == 401


class TestRemoteCollections:
    """Document store accessors exposed over HTTP"""

    @pytest.mark.parametrize("path", ["/api/notes", "/api/meds", "/api/calender", "/api/records", "/api/pictures"])
    def test_requires_session(self, client, path):
        assert client.get(path).status_code == 401

    def test_note_create_list_update(self, client, auth):
        response = client.post("/api/notes", json={"title": "Groceries", "content": "Milk"}, headers=auth)
        assert response.status_code == 200
        note_id = response.json()["id"]

        update = client.put(f"/api/notes/{note_id}", json={"content": "Milk and eggs"}, headers=auth)
        assert update.status_code == 200

        notes = client.get("/api/notes", headers=auth).json()
        assert len(notes) == 1
        assert notes[0]["id"] == note_id
        assert notes[0]["content"] == "Milk and eggs"
        assert "updatedAt" in notes[0]

    def test_update_missing_note(self, client, auth):
        response = client.put("/api/notes/note_missing", json={"title": "x"}, headers=auth)
        assert response.status_code == 404

    def test_users_only_see_their_documents(self, client, auth):
        client.post("/api/meds", json={"name": "Aspirin", "dosage": "100mg", "time": "08:00"}, headers=auth)
        other = sign_in(client, email="john@example.com")
        assert client.get("/api/meds", headers=other).json() == []
        assert len(client.get("/api/meds", headers=auth).json()) == 1

    def test_picture_delete(self, client, auth):
        picture_id = client.post(
            "/api/pictures", json={"title": "Beach", "url": "https://img.test/1.jpg"}, headers=auth
        ).json()["id"]
        assert client.delete(f"/api/pictures/{picture_id}", headers=auth).status_code == 200
        assert client.get("/api/pictures", headers=auth).json() == []
        assert client.delete(f"/api/pictures/{picture_id}", headers=auth).status_code == 404

    def test_no_delete_for_notes(self, client, auth):
        assert client.delete("/api/notes/note_1", headers=auth).status_code == 405

    def test_event_date_is_checked(self, client, auth):
        bad = client.post("/api/calender", json={"date": "next week", "title": "Doctor"}, headers=auth)
        assert bad.status_code == 422

        event_id = client.post(
            "/api/calender", json={"date": "2024-06-01T17:30:00", "title": "Dinner"}, headers=auth
        ).json()["id"]
        events = client.get("/api/calender", headers=auth).json()
        assert events[0]["date"] == "2024-06-01"

        update = client.put(f"/api/calender/{event_id}", json={"date": "soon"}, headers=auth)
        assert update.status_code == 422

    def test_med_time_is_checked(self, client, auth):
        bad = client.post("/api/meds", json={"name": "Aspirin", "dosage": "100mg", "time": "8am"}, headers=auth)
        assert bad.status_code == 422

        med_id = client.post(
            "/api/meds", json={"name": "Aspirin", "dosage": "100mg", "time": "8:05"}, headers=auth
        ).json()["id"]
        assert client.get("/api/meds", headers=auth).json()[0]["time"] == "08:05"

        update = client.put(f"/api/meds/{med_id}", json={"time": "25:00"}, headers=auth)
        assert update.status_code == 422


class TestDashboard:
    """Dashboard widgets over HTTP"""

    def test_not_open(self, client, auth):
        assert client.get("/api/dashboard", headers=auth).status_code == 404

    def test_open_requires_session(self, client):
        assert client.post("/api/dashboard").status_code == 401

    def test_open_state(self, client, dashboard):
        data = client.get("/api/dashboard", headers=dashboard).json()
        assert data["mode"] == "patient"
        assert data["widgets"]["recordings"]["count"] == 2
        assert data["widgets"]["todos"]["allowed_operations"] == ["toggle"]
        assert data["now_playing"] is None

    def test_patient_cannot_add_todo(self, client, dashboard):
        response = client.post("/api/dashboard/todos", json={"text": "Water plants"}, headers=dashboard)
        assert response.status_code == 200
        data = response.json()
        assert data["applied"] is False
        assert data["message"] is None
        assert data["items"] == []

    def test_patient_can_write_journal(self, client, dashboard):
        response = client.post("/api/dashboard/journal", json={"content": "  Sunny walk  "}, headers=dashboard)
        data = response.json()
        assert data["applied"] is True
        assert data["message"] == "Journal entry saved."
        assert data["record"]["content"] == "Sunny walk"

    def test_todo_delete_gated_by_mode(self, client, dashboard):
        family_mode(client, dashboard)
        todo = client.post("/api/dashboard/todos", json={"text": "Water plants"}, headers=dashboard).json()
        assert todo["applied"] is True
        todo_id = todo["record"]["id"]
        client.post("/api/dashboard/todos", json={"text": "Call Sarah"}, headers=dashboard)

        client.put("/api/dashboard/mode", json={"mode": "patient"}, headers=dashboard)
        refused = client.delete(f"/api/dashboard/todos/{todo_id}", headers=dashboard).json()
        assert refused["applied"] is False
        assert len(refused["items"]) == 2

        toggled = client.post(f"/api/dashboard/todos/{todo_id}/toggle", headers=dashboard).json()
        assert toggled["applied"] is True
        assert toggled["record"]["completed"] is True

        family_mode(client, dashboard)
        removed = client.delete(f"/api/dashboard/todos/{todo_id}", headers=dashboard).json()
        assert removed["applied"] is True
        assert [t["text"] for t in removed["items"]] == ["Call Sarah"]

    def test_medication_validation_and_order(self, client, dashboard):
        family_mode(client, dashboard)
        bad = client.post(
            "/api/dashboard/medications",
            json={"name": "Aspirin", "dosage": "100mg", "time": "8am"},
            headers=dashboard,
        )
        assert bad.status_code == 400
        assert bad.json()["detail"] == "Invalid time format. Use HH:mm."

        missing = client.post("/api/dashboard/medications", json={"name": "Aspirin"}, headers=dashboard)
        assert missing.status_code == 400
        assert missing.json()["fields"] == ["dosage", "time"]

        for t in ("08:00", "13:30", "07:15"):
            client.post(
                "/api/dashboard/medications",
                json={"name": f"Med {t}", "dosage": "1 tablet", "time": t},
                headers=dashboard,
            )
        items = client.get("/api/dashboard/medications", headers=dashboard).json()["items"]
        assert [m["time"] for m in items] == ["07:15", "08:00", "13:30"]

    def test_non_string_medication_time(self, client, dashboard):
        family_mode(client, dashboard)
        response = client.post(
            "/api/dashboard/medications",
            json={"name": "Aspirin", "dosage": "100mg", "time": 800},
            headers=dashboard,
        )
        assert response.status_code == 400
        assert response.json()["fields"] == ["time"]

    def test_open_skips_bad_stored_documents(self, client, auth, fake_db):
        user_id = client.get("/api/auth/me", headers=auth).json()["id"]
        fake_db.calender.docs.append({"id": "event_bad", "user_id": user_id, "date": "next week", "title": "Doctor"})
        fake_db.meds.docs.append(
            {"id": "med_bad", "user_id": user_id, "name": "Aspirin", "dosage": "100mg", "time": "8am"}
        )
        client.post("/api/calender", json={"date": "2024-06-01", "title": "Dinner"}, headers=auth)

        opened = client.post("/api/dashboard", headers=auth)
        assert opened.status_code == 200
        assert opened.json()["widgets"]["calendar"] == 1
        assert opened.json()["widgets"]["medications"] == 0

    def test_calendar_day_filter(self, client, dashboard):
        family_mode(client, dashboard)
        client.post("/api/dashboard/calendar", json={"date": "2024-06-01T17:30:00", "title": "Dinner"}, headers=dashboard)
        client.post("/api/dashboard/calendar", json={"date": "2024-06-02", "title": "Church"}, headers=dashboard)

        june_first = client.get("/api/dashboard/calendar?day=2024-06-01", headers=dashboard).json()["items"]
        assert [e["title"] for e in june_first] == ["Dinner"]
        june_second = client.get("/api/dashboard/calendar?day=2024-06-02", headers=dashboard).json()["items"]
        assert [e["title"] for e in june_second] == ["Church"]

    def test_update_unknown_record(self, client, dashboard):
        family_mode(client, dashboard)
        response = client.put("/api/dashboard/notes/note_missing", json={"title": "x"}, headers=dashboard)
        assert response.status_code == 404

    def test_unknown_widget(self, client, dashboard):
        assert client.get("/api/dashboard/pictures", headers=dashboard).status_code == 404

    def test_invalid_mode(self, client, dashboard):
        response = client.put("/api/dashboard/mode", json={"mode": "admin"}, headers=dashboard)
        assert response.status_code == 422

    def test_close(self, client, dashboard):
        assert client.delete("/api/dashboard", headers=dashboard).status_code == 200
        assert client.get("/api/dashboard", headers=dashboard).status_code == 404
