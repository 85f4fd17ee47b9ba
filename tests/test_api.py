"""
Tests for the Flask API surface using the test client.
"""

from datetime import datetime, timedelta, timezone

import jwt
import pytest

from studyaccess.api.app import create_app
from studyaccess.api.auth import generate_token
from studyaccess.config import SECRET_KEY
from studyaccess.errors import QueryError
from studyaccess.models import Caller, Grant


# ── Helpers / Fakes ──────────────────────────────────────────────────

class FakeStore:
    def __init__(self, rows=None, error=None, healthy=True):
        self.rows = rows if rows is not None else []
        self.error = error
        self.healthy = healthy
        self.timeout_seconds = 5
        self.calls = []

    def execute(self, statement, params=None, timeout=None):
        self.calls.append((statement, params))
        if self.error is not None:
            raise self.error
        return self.rows

    def ping(self):
        return self.healthy


ADMIN = Caller(id="u1", grants=(Grant("A", "STUDY_ADMIN"),))
VIEWER = Caller(id="v1", grants=(Grant("C", "VIEWER"),))


def auth(caller):
    return {"Authorization": f"Bearer {generate_token(caller)}"}


@pytest.fixture
def make_client(tmp_path):
    def _make(store=None):
        app = create_app(
            store=store or FakeStore(),
            dataset_root=str(tmp_path),
            study_root=str(tmp_path),
        )
        app.config["TESTING"] = True
        return app.test_client()
    return _make


# ── Tests: health / auth ─────────────────────────────────────────────

def test_health(make_client):
    assert make_client().get("/health").status_code == 200
    response = make_client(FakeStore(healthy=False)).get("/health")
    assert response.status_code == 503
    assert response.get_json()["checks"]["database"] is False


def test_missing_and_invalid_tokens(make_client):
    client = make_client()
    response = client.get("/api/status")
    assert response.status_code == 401
    assert response.get_json()["error"] == "No token provided"

    response = client.get("/api/status", headers={"Authorization": "Bearer nonsense"})
    assert response.status_code == 401
    assert response.get_json()["error"] == "Invalid or expired token"


def test_expired_token(make_client):
    token = generate_token(ADMIN, expires_in=timedelta(seconds=-5))
    response = make_client().get("/api/users", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401


def test_malformed_claims_are_forbidden(make_client):
    now = datetime.now(timezone.utc)
    token = jwt.encode(
        {"userId": "u1", "studyAccess": [{"studyId": "A", "role": "BOSS"}], "exp": now + timedelta(hours=1)},
        SECRET_KEY,
        algorithm="HS256",
    )
    response = make_client().get("/api/users", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 403
    assert response.get_json()["error"] == "Invalid study access claims"


def test_query_token_only_accepted_on_download_routes(make_client):
    token = generate_token(ADMIN)
    assert make_client().get(f"/api/users?token={token}").status_code == 401


# ── Tests: status ────────────────────────────────────────────────────

@pytest.mark.parametrize("days", ["0", "400", "abc"])
def test_status_rejects_bad_days(make_client, days):
    response = make_client().get(f"/api/status?days={days}", headers=auth(ADMIN))
    assert response.status_code == 400
    assert response.get_json()["success"] is False


def test_status_without_grants_is_zeroed(make_client):
    store = FakeStore()
    response = make_client(store).get("/api/status", headers=auth(Caller(id="nobody")))
    assert response.status_code == 200
    body = response.get_json()
    assert body["success"] is True
    assert body["data"]["by_study"] == []
    assert body["data"]["period_days"] == 7
    assert body["data"]["overall"]["users"]["total"] == 0
    assert store.calls == []


def test_status_database_failure(make_client):
    response = make_client(FakeStore(error=QueryError("down"))).get("/api/status?days=3", headers=auth(ADMIN))
    assert response.status_code == 500
    assert response.get_json() == {"success": False, "error": "Database query error"}


# ── Tests: listings ──────────────────────────────────────────────────

def test_users_forbidden_for_viewer(make_client):
    response = make_client().get("/api/users", headers=auth(VIEWER))
    assert response.status_code == 403
    assert response.get_json()["error"] == "Insufficient permissions"


def test_users_listing(make_client):
    store = FakeStore(rows=[{"user_id": 1, "study_id": "A"}])
    response = make_client(store).get("/api/users", headers=auth(ADMIN))
    assert response.status_code == 200
    assert response.get_json() == [{"user_id": 1, "study_id": "A"}]
    assert store.calls[0][1] == {"p1": "A"}


def test_participants_require_study(make_client):
    response = make_client().get("/api/participants", headers=auth(ADMIN))
    assert response.status_code == 400
    response = make_client().get("/api/participants?studyId=A&page=x", headers=auth(ADMIN))
    assert response.status_code == 400


# ── Tests: downloads ─────────────────────────────────────────────────

def test_dataset_download_with_query_token(make_client, tmp_path):
    (tmp_path / "data.csv").write_text("a,b\n")
    store = FakeStore(rows=[{"dataset_file_id": 3, "filename": "data.csv"}])
    token = generate_token(VIEWER)
    response = make_client(store).get(f"/api/datasets/3?token={token}")
    assert response.status_code == 200
    assert response.data == b"a,b\n"
    assert "attachment" in response.headers["Content-Disposition"]


def test_dataset_download_not_found(make_client):
    response = make_client(FakeStore(rows=[])).get("/api/datasets/3", headers=auth(VIEWER))
    assert response.status_code == 404
    assert response.get_json()["error"] == "Dataset file not found or access denied"

    store = FakeStore(rows=[{"dataset_file_id": 3, "filename": "missing.csv"}])
    response = make_client(store).get("/api/datasets/3", headers=auth(VIEWER))
    assert response.status_code == 404
    assert response.get_json()["error"] == "Dataset file not found on disk"


def test_study_files(make_client, tmp_path):
    folder = tmp_path / "C" / "VIEWER"
    folder.mkdir(parents=True)
    (folder / "notes.txt").write_text("hi")

    client = make_client()
    listing = client.get("/api/studies/C/files", headers=auth(VIEWER)).get_json()["files"]
    assert listing[0]["name"] == "VIEWER"
    assert listing[0]["children"][0]["path"] == "VIEWER/notes.txt"

    response = client.get("/api/studies/C/files/VIEWER/notes.txt", headers=auth(VIEWER))
    assert response.status_code == 200
    assert response.data == b"hi"

    assert client.get("/api/studies/C/files/VIEWER/nope.txt", headers=auth(VIEWER)).status_code == 404
    assert client.get("/api/studies/C/files/RESEARCHER/notes.txt", headers=auth(VIEWER)).status_code == 403
    assert client.get("/api/studies/A/files", headers=auth(VIEWER)).status_code == 403


def test_unknown_endpoint(make_client):
    assert make_client().get("/api/nothing").status_code == 404


def test_study_file_role_checked_on_actual_folder(make_client, tmp_path):
    folder = tmp_path / "C" / "RESEARCHER"
    folder.mkdir(parents=True)
    (folder / "protocol.pdf").write_bytes(b"%PDF")

    client = make_client()
    response = client.get("/api/studies/C/files/ADMIN/RESEARCHER/protocol.pdf", headers=auth(VIEWER))
    assert response.status_code == 403
    assert response.get_json()["error"] == "Unauthorized role access"
    listing = client.get("/api/studies/C/files?role=VIEWER", headers=auth(VIEWER)).get_json()["files"]
    assert listing == []
