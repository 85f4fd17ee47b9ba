"""
Unit tests for study file browsing.
"""

import pytest

from studyaccess.errors import Forbidden
from studyaccess.files import list_study_files, resolve_study_file
from studyaccess.models import Caller, Grant

ADMIN = Caller(id="u1", grants=(Grant("A", "STUDY_ADMIN"),))
VIEWER = Caller(id="v1", grants=(Grant("A", "VIEWER"),))


@pytest.fixture
def study_root(tmp_path):
    (tmp_path / "A" / "RESEARCHER").mkdir(parents=True)
    (tmp_path / "A" / "RESEARCHER" / "protocol.pdf").write_bytes(b"%PDF")
    (tmp_path / "A" / "readme.txt").write_text("top")
    (tmp_path / "secret.txt").write_text("outside")
    return str(tmp_path)


def test_listing_is_recursive_and_sorted(study_root):
    files = list_study_files(ADMIN, "A", root=study_root)
    assert [f["name"] for f in files] == ["RESEARCHER", "readme.txt"]
    assert files[0]["type"] == "directory"
    assert files[0]["children"][0]["path"] == "RESEARCHER/protocol.pdf"
    assert files[1]["size"] == 3


def test_listing_missing_study_folder_is_empty(study_root):
    caller = Caller(id="u2", grants=(Grant("B", "VIEWER"),))
    assert list_study_files(caller, "B", root=study_root) == []


def test_resolve_prefers_study_folder_then_role_folder(study_root):
    assert resolve_study_file(ADMIN, "A", "ADMIN", "readme.txt", root=study_root).endswith("readme.txt")
    path = resolve_study_file(ADMIN, "A", "RESEARCHER", "protocol.pdf", root=study_root)
    assert path.endswith("protocol.pdf")
    assert resolve_study_file(ADMIN, "A", "ADMIN", "missing.txt", root=study_root) is None


def test_traversal_outside_study_folder(study_root):
    assert resolve_study_file(ADMIN, "A", "ADMIN", "../secret.txt", root=study_root) is None
    assert list_study_files(Caller(id="x", grants=(Grant("..", "VIEWER"),)), "..", root=study_root) == []


def test_role_folder_access(study_root):
    with pytest.raises(Forbidden):
        resolve_study_file(VIEWER, "A", "RESEARCHER", "protocol.pdf", root=study_root)
    with pytest.raises(Forbidden):
        list_study_files(VIEWER, "B", root=study_root)


def test_file_in_other_role_folder_cannot_be_reached_through_admin(tmp_path):
    (tmp_path / "A" / "STUDY_ADMIN").mkdir(parents=True)
    (tmp_path / "A" / "STUDY_ADMIN" / "secret.csv").write_text("x")
    root = str(tmp_path)

    with pytest.raises(Forbidden):
        resolve_study_file(VIEWER, "A", "STUDY_ADMIN", "secret.csv", root=root)
    with pytest.raises(Forbidden, match="Unauthorized role access"):
        resolve_study_file(VIEWER, "A", "ADMIN", "STUDY_ADMIN/secret.csv", root=root)
    assert resolve_study_file(VIEWER, "A", "VIEWER", "../STUDY_ADMIN/secret.csv", root=root) is None
    assert resolve_study_file(ADMIN, "A", "ADMIN", "STUDY_ADMIN/secret.csv", root=root).endswith("secret.csv")


def test_viewer_reads_admin_and_own_folder_through_any_path(tmp_path):
    for folder in ("ADMIN", "VIEWER"):
        (tmp_path / "A" / folder).mkdir(parents=True)
        (tmp_path / "A" / folder / "doc.txt").write_text(folder)
    root = str(tmp_path)

    assert resolve_study_file(VIEWER, "A", "ADMIN", "VIEWER/doc.txt", root=root).endswith("doc.txt")
    assert resolve_study_file(VIEWER, "A", "VIEWER", "doc.txt", root=root).endswith("doc.txt")
    assert resolve_study_file(VIEWER, "A", "ADMIN", "doc.txt", root=root).endswith("doc.txt")


def test_listing_hides_other_role_folders(tmp_path):
    for folder in ("ADMIN", "VIEWER", "STUDY_ADMIN", "RESEARCHER"):
        (tmp_path / "A" / folder).mkdir(parents=True)
        (tmp_path / "A" / folder / "f.txt").write_text(folder)
    (tmp_path / "A" / "readme.txt").write_text("top")
    root = str(tmp_path)

    names = [f["name"] for f in list_study_files(VIEWER, "A", role="VIEWER", root=root)]
    assert names == ["ADMIN", "VIEWER", "readme.txt"]
    assert [f["name"] for f in list_study_files(VIEWER, "A", root=root)] == names
    everything = [f["name"] for f in list_study_files(ADMIN, "A", root=root)]
    assert everything == ["ADMIN", "RESEARCHER", "STUDY_ADMIN", "VIEWER", "readme.txt"]
