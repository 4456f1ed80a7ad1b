"""End-to-end tests through the FastAPI app.

Each test talks to the app with a TestClient whose database is created lazily
on the app's own event loop.
"""

import random
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from apps.api.deps import get_codeforces_client, get_db, get_notifier, get_verifier
from apps.api.main import app
from apps.verification.verifier import CompilationErrorVerifier
from core.config import settings
from core.db import Base
from core.errors import ExternalServiceError
from tests import helpers

AUTH = ("admin", "changeme")


@pytest.fixture
def codeforces():
    return helpers.codeforces_mock()


@pytest.fixture
def verifier():
    return helpers.verifier_mock()


@pytest.fixture
def client(codeforces, verifier, tmp_path, monkeypatch):
    """TestClient with an in-memory database and mocked outside services."""
    state: dict = {}

    async def override_get_db():
        if "factory" not in state:
            engine = create_async_engine(
                "sqlite+aiosqlite:///:memory:",
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            state["factory"] = async_sessionmaker(
                engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
            )
        async with state["factory"]() as session:
            yield session

    monkeypatch.setattr(settings, "snapshot_path", str(tmp_path / "cheaters.json"))
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_codeforces_client] = lambda: codeforces
    app.dependency_overrides[get_verifier] = lambda: verifier
    app.dependency_overrides[get_notifier] = lambda: AsyncMock()

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


def _report(client: TestClient, username: str = "alice") -> dict:
    response = client.post("/reports", json={"username": username, "evidence": helpers.EVIDENCE})
    assert response.status_code == 201
    return response.json()["report"]


def _cheater(client: TestClient, username: str = "alice") -> dict:
    report = _report(client, username)
    assert client.post(f"/reports/{report['id']}/accept", auth=AUTH).status_code == 200
    cheaters = client.get("/cheaters", params={"search": username}).json()["cheaters"]
    return cheaters[0]


class TestHealth:
    """Test service endpoints."""

    def test_health(self, client):
        """Test the health checks."""
        assert client.get("/health/").json() == {"status": "healthy"}
        assert client.get("/health/db").json()["pending_reports"] == 0
        assert client.get("/health/redis").json() == {"status": "healthy", "redis": "connected"}

    def test_root_and_metrics(self, client):
        """Test the root and Prometheus endpoints."""
        assert client.get("/").json()["status"] == "ok"
        _report(client)

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "reports_submitted_total" in response.text
        assert 'endpoint="/reports"' in response.text


class TestReportEndpoints:
    """Test the report workflow over HTTP."""

    def test_submit_and_accept(self, client):
        """Test that an accepted report becomes a listed cheater."""
        response = client.post("/reports", json={"username": " Alice ", "evidence": helpers.EVIDENCE})

        assert response.status_code == 201
        assert response.json()["type"] == "success"
        assert response.json()["text"] == 'User "alice" has been reported successfully!'

        pending = client.get("/reports/pending", auth=AUTH).json()
        assert [r["username"] for r in pending["reports"]] == ["alice"]
        assert pending["next_cursor"] is None

        report_id = pending["reports"][0]["id"]
        accepted = client.post(f"/reports/{report_id}/accept", json={"admin_note": "same code"}, auth=AUTH)

        assert accepted.json()["text"] == "Report accepted and user added to cheaters."
        cheaters = client.get("/cheaters").json()["cheaters"]
        assert [(c["username"], c["admin_note"], c["accepted_by"]) for c in cheaters] == [
            ("alice", "same code", "admin")
        ]
        assert client.get("/cheaters/count").json() == {"total": 1}

    def test_validation_errors_are_tagged_messages(self, client):
        """Test the error body for user-correctable failures."""
        response = client.post("/reports", json={"username": "alice", "evidence": "no link here"})

        assert response.status_code == 400
        assert response.json()["type"] == "error"
        assert response.json()["text"].startswith("Evidence must include at least one link")

        response = client.post("/reports", json={"username": "", "evidence": ""})
        assert response.json() == {"type": "error", "text": "Please fill in all fields."}

    def test_codeforces_outage(self, client, codeforces):
        """Test that an unreachable Codeforces API maps to 502."""
        codeforces.validate_username.side_effect = ExternalServiceError(
            "Failed to validate Codeforces username. Please try again."
        )

        response = client.post("/reports", json={"username": "alice", "evidence": helpers.EVIDENCE})

        assert response.status_code == 502
        assert response.json()["type"] == "error"

    def test_queue_requires_moderator(self, client):
        """Test anonymous and wrong credentials."""
        anonymous = client.get("/reports/pending")
        wrong = client.get("/reports/pending", auth=("admin", "nope"))

        assert anonymous.status_code == 401
        assert anonymous.json() == {"type": "error", "text": "Moderator authentication required."}
        assert wrong.status_code == 401

    def test_decline_and_stale_ids(self, client):
        """Test decline, then acting on the same report again."""
        report = _report(client)

        declined = client.post(f"/reports/{report['id']}/decline", auth=AUTH)
        again = client.post(f"/reports/{report['id']}/accept", auth=AUTH)

        assert declined.json() == {"type": "info", "text": "Report declined."}
        assert again.status_code == 404
        assert again.json()["type"] == "error"

    def test_duplicates_reported_on_accept(self, client):
        """Test the duplicate cleanup message."""
        first = _report(client, "bob")
        _report(client, "bob")
        _report(client, "bob")

        response = client.post(f"/reports/{first['id']}/accept", auth=AUTH)

        assert response.json()["duplicates_deleted"] == 2
        assert "2 duplicate pending report(s)" in response.json()["text"]
        assert client.get("/reports/pending", auth=AUTH).json()["reports"] == []

    def test_pending_pagination(self, client):
        """Test next_cursor on the moderator queue."""
        for name in ("u1", "u2", "u3"):
            _report(client, name)

        first = client.get("/reports/pending", params={"page_size": 2}, auth=AUTH).json()
        second = client.get(
            "/reports/pending", params={"page_size": 2, "cursor": first["next_cursor"]}, auth=AUTH
        ).json()

        assert [r["username"] for r in first["reports"]] == ["u1", "u2"]
        assert [r["username"] for r in second["reports"]] == ["u3"]
        assert second["next_cursor"] is None


class TestCheaterEndpoints:
    """Test cheater listing and moderator actions over HTTP."""

    def test_search_sort_and_cursor(self, client):
        """Test prefix search and paging through the listing."""
        for name in ("anna", "andy", "bert"):
            _cheater(client, name)

        found = client.get("/cheaters", params={"search": "AN"}).json()
        first = client.get("/cheaters", params={"sort": "username_asc", "page_size": 2}).json()
        second = client.get(
            "/cheaters", params={"sort": "username_asc", "page_size": 2, "cursor": first["next_cursor"]}
        ).json()

        assert [c["username"] for c in found["cheaters"]] == ["andy", "anna"]
        assert [c["username"] for c in first["cheaters"]] == ["andy", "anna"]
        assert [c["username"] for c in second["cheaters"]] == ["bert"]
        assert client.get("/cheaters/count", params={"search": "an"}).json() == {"total": 2}

    def test_invalid_cursor(self, client):
        """Test that a tampered cursor is a 400."""
        response = client.get("/cheaters", params={"cursor": "garbage"})

        assert response.status_code == 400
        assert response.json() == {"type": "error", "text": "Invalid page cursor."}

    def test_move_to_pending(self, client):
        """Test moving a cheater back to the queue."""
        cheater = _cheater(client, "carol")

        response = client.post(f"/cheaters/{cheater['id']}/move-to-pending", auth=AUTH)
        again = client.post(f"/cheaters/{cheater['id']}/move-to-pending", auth=AUTH)

        assert response.status_code == 200
        assert response.json()["report"]["moved_to_pending_by"] == "admin"
        assert again.status_code == 409
        assert client.get("/cheaters/count").json() == {"total": 0}
        assert [r["username"] for r in client.get("/reports/pending", auth=AUTH).json()["reports"]] == ["carol"]

    def test_admin_note(self, client):
        """Test editing and the anonymous rejection."""
        cheater = _cheater(client, "dave")

        response = client.put(f"/cheaters/{cheater['id']}/admin-note", json={"admin_note": " alt "}, auth=AUTH)
        anonymous = client.put(f"/cheaters/{cheater['id']}/admin-note", json={"admin_note": "x"})

        assert response.json()["cheater"]["admin_note"] == "alt"
        assert anonymous.status_code == 401


class TestAppealEndpoints:
    """Test appeals over HTTP."""

    def test_appeal_decline_then_blocked(self, client, verifier):
        """Test submit, list, decline and the one-appeal rule."""
        _cheater(client, "erin")
        body = {"username": "erin", "message": "My own code.", "challenge_id": "c1"}

        created = client.post("/appeals", json=body)
        pending = client.get("/appeals/pending", auth=AUTH).json()["appeals"]
        declined = client.post(f"/appeals/{created.json()['appeal_id']}/decline", auth=AUTH)
        blocked = client.post("/appeals", json=body)

        assert created.status_code == 201
        assert created.json()["text"] == 'Appeal for "erin" submitted successfully!'
        assert [(a["username"], a["evidence"]) for a in pending] == [("erin", helpers.EVIDENCE)]
        assert declined.json() == {"type": "info", "text": "Appeal declined."}
        assert blocked.status_code == 400
        assert blocked.json()["text"] == "You can only appeal once. Your previous appeal was declined."
        verifier.verify.assert_awaited_with("c1", "erin")

    def test_appeal_accepted(self, client):
        """Test that accepting an appeal removes the cheater."""
        _cheater(client, "fay")
        created = client.post("/appeals", json={"username": "fay", "message": "Mine.", "challenge_id": "c1"})

        accepted = client.post(f"/appeals/{created.json()['appeal_id']}/accept", auth=AUTH)

        assert accepted.json()["text"] == "Appeal accepted and user completely removed from cheaters."
        assert client.get("/cheaters/count").json() == {"total": 0}
        assert client.get("/appeals/pending", auth=AUTH).json() == {"appeals": []}

    def test_unverified_appeal(self, client, verifier):
        """Test the verification failure body."""
        _cheater(client, "gus")
        verifier.verify.return_value = False

        response = client.post("/appeals", json={"username": "gus", "message": "Mine.", "challenge_id": "c1"})

        assert response.status_code == 400
        assert "submit a compilation error" in response.json()["text"]


class TestVerificationEndpoints:
    """Test challenge issuing over HTTP."""

    def test_issue_and_reroll(self, client, codeforces):
        """Test that challenges round-trip through Redis."""
        app.dependency_overrides[get_verifier] = lambda: CompilationErrorVerifier(codeforces, random.Random(1))

        issued = client.post("/verification/challenges", json={"handle": "Alice"})
        rerolled = client.post(f"/verification/challenges/{issued.json()['id']}/reroll")
        missing = client.post("/verification/challenges/unknown/reroll")

        assert issued.status_code == 201
        assert issued.json()["handle"] == "alice"
        assert issued.json()["problem_url"].startswith("https://codeforces.com/contest/")
        assert rerolled.json()["contest_id"] != issued.json()["contest_id"]
        assert missing.status_code == 404


class TestSnapshotEndpoint:
    """Test the published snapshot."""

    def test_empty_before_first_export(self, client):
        """Test the payload before any export ran."""
        assert client.get("/cheaters.json").json() == {"cheaters": []}

    def test_serves_exported_file(self, client, tmp_path):
        """Test that the exported file is served as is."""
        (tmp_path / "cheaters.json").write_text(
            '{"cheaters": ["zoe", "amy"], "lastExportTime": "2024-05-01T12:00:00Z"}', encoding="utf-8"
        )

        assert client.get("/cheaters.json").json() == {
            "cheaters": ["amy", "zoe"],
            "lastExportTime": "2024-05-01T12:00:00Z",
        }
