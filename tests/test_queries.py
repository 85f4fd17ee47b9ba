"""
Unit tests for the scoped list/read queries.
"""

import os

import pytest

from studyaccess.errors import Forbidden, ValidationError
from studyaccess.models import Caller, Grant
from studyaccess.queries import (
    get_dataset_file,
    list_datasets,
    list_participants,
    list_studies,
    list_task_logs,
    list_user_tasks,
    list_users,
)


# ── Helpers / Fakes ──────────────────────────────────────────────────

class FakeStore:
    """Records every statement and replays queued results in order."""

    def __init__(self, *results):
        self.results = list(results)
        self.calls = []

    def execute(self, statement, params=None, timeout=None):
        self.calls.append((statement, dict(params or {})))
        return self.results.pop(0) if self.results else []


ADMIN = Caller(id="u1", grants=(
    Grant("A", "STUDY_ADMIN"),
    Grant("B", "SAMPLE_ADMIN", frozenset({"s1"})),
))
VIEWER = Caller(id="v1", grants=(Grant("C", "VIEWER"),))


# ── Tests: user-scoped listings ──────────────────────────────────────

def test_list_users_binds_grant_values():
    store = FakeStore([{"user_id": 1}])
    assert list_users(store, ADMIN) == [{"user_id": 1}]

    statement, params = store.calls[0]
    assert params == {"p1": "A", "p2": "B", "p3": ["s1"]}
    assert "(u.study_id = :p1) OR (u.study_id = :p2 AND EXISTS" in statement
    assert "FROM fw_psy_user u" in statement


def test_viewer_cannot_list_users_or_logs():
    store = FakeStore()
    with pytest.raises(Forbidden):
        list_users(store, VIEWER)
    with pytest.raises(Forbidden):
        list_task_logs(store, VIEWER)
    assert store.calls == []


def test_no_grants_short_circuits():
    store = FakeStore()
    with pytest.raises(Forbidden):
        list_users(store, Caller(id="nobody"))
    assert store.calls == []


def test_task_logs_join_through_users():
    store = FakeStore()
    list_task_logs(store, ADMIN)
    statement, _ = store.calls[0]
    assert "INNER JOIN fw_psy_user u ON ut.user_id = u.user_id" in statement


def test_user_tasks_reserve_first_placeholder_for_user():
    store = FakeStore()
    list_user_tasks(store, ADMIN, "42")
    statement, params = store.calls[0]
    assert params == {"p1": "42", "p2": "A", "p3": "B", "p4": ["s1"]}
    assert "ut.user_id = :p1" in statement
    assert "ANY(:p4)" in statement


def test_user_tasks_require_user_id():
    with pytest.raises(ValidationError, match="Missing user ID"):
        list_user_tasks(FakeStore(), ADMIN, "")


# ── Tests: datasets ──────────────────────────────────────────────────

def test_datasets_carry_sample_and_file_metadata(tmp_path):
    (tmp_path / "a.csv").write_text("x,y\n1,2\n")
    store = FakeStore([
        {"id": 1, "study_id": "A", "filename": "a.csv", "sample_id": 7, "sample_code": "S7", "sample_name": "Seven"},
        {"id": 2, "study_id": "C", "filename": "gone.csv", "sample_id": None, "sample_code": None, "sample_name": None},
    ])
    rows = list_datasets(store, VIEWER, files_root=str(tmp_path))

    first, second = rows
    assert first["sample"] == {"id": 7, "code": "S7", "name": "Seven"}
    assert first["exists"] is True
    assert first["size"] == os.path.getsize(tmp_path / "a.csv")
    assert "last_modified" in first
    assert "sample_code" not in first
    assert second["sample"] is None
    assert second["exists"] is False
    assert "size" not in second

    statement, params = store.calls[0]
    assert params == {"p1": "C"}
    assert "df.study_id = :p1" in statement


def test_dataset_filenames_cannot_escape_root(tmp_path):
    root = tmp_path / "datasets"
    root.mkdir()
    (tmp_path / "secret.csv").write_text("no")
    store = FakeStore([{"id": 1, "filename": "../secret.csv", "sample_id": None}])
    assert list_datasets(store, VIEWER, files_root=str(root))[0]["exists"] is False


def test_get_dataset_file():
    store = FakeStore([{"dataset_file_id": 9, "filename": "f.csv"}], [])
    assert get_dataset_file(store, ADMIN, 9) == {"dataset_file_id": 9, "filename": "f.csv"}
    assert get_dataset_file(store, ADMIN, 10) is None
    assert store.calls[0][1]["p1"] == "9"
    assert store.calls[0][1]["p2"] == "A"


# ── Tests: studies ───────────────────────────────────────────────────

def test_studies_nest_samples():
    store = FakeStore([
        {"study_id": "A", "terms": "t", "sample_id": 1, "sample_code": "S1", "sample_name": "One"},
        {"study_id": "A", "terms": "t", "sample_id": 2, "sample_code": "S2", "sample_name": "Two"},
        {"study_id": "B", "terms": None, "sample_id": None, "sample_code": None, "sample_name": None},
    ])
    studies = list_studies(store)
    assert [s["study_id"] for s in studies] == ["A", "B"]
    assert [s["sample_code"] for s in studies[0]["samples"]] == ["S1", "S2"]
    assert studies[1]["samples"] == []


# ── Tests: participants ──────────────────────────────────────────────

def test_participants_page():
    store = FakeStore([{"total": 45}], [{"user_id": 1}])
    result = list_participants(store, ADMIN, "A", page=2, page_size=20, sort_by="last_submission", sort_order="desc")

    assert result["data"] == [{"user_id": 1}]
    assert result["pagination"] == {"page": 2, "pageSize": 20, "totalRows": 45, "totalPages": 3}

    count_sql, count_params = store.calls[0]
    page_sql, page_params = store.calls[1]
    assert count_params == {"p1": "A"}
    assert page_params == {"p1": "A", "limit": 20, "offset": 20}
    assert "ORDER BY last_submission DESC" in page_sql
    assert "COUNT(DISTINCT u.user_id) AS total" in count_sql


def test_participants_scoped_to_requested_study_only():
    store = FakeStore([{"total": 0}], [])
    list_participants(store, ADMIN, "B", sample_id="s1", search="ab")
    _, params = store.calls[0]
    assert params == {"p1": "B", "p2": ["s1"], "sample_id": "s1", "search": "%ab%"}


def test_participants_validation():
    store = FakeStore()
    with pytest.raises(ValidationError, match="studyId is required"):
        list_participants(store, ADMIN, "")
    with pytest.raises(Forbidden, match="Unauthorized study access"):
        list_participants(store, ADMIN, "Z")
    with pytest.raises(Forbidden, match="Unauthorized sample access"):
        list_participants(store, ADMIN, "B", sample_id="s9")
    with pytest.raises(ValidationError):
        list_participants(store, ADMIN, "A", sort_by="password; DROP TABLE x")
    with pytest.raises(ValidationError):
        list_participants(store, ADMIN, "A", page=0)
    assert store.calls == []


def test_participants_page_size_capped():
    store = FakeStore([{"total": 1}], [])
    result = list_participants(store, ADMIN, "A", page_size=10_000)
    assert result["pagination"]["pageSize"] == 500
    assert store.calls[1][1]["limit"] == 500
