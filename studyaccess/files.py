"""
Study file browsing. Folders under a study are named after roles.
"""

import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from werkzeug.security import safe_join

from studyaccess import config
from studyaccess.errors import Forbidden
from studyaccess.gate import authorize_role_folder, can_read_role_folder
from studyaccess.models import Caller


def list_study_files(caller: Caller, study_id: str, role: Optional[str] = None,
                     root: Optional[str] = None) -> List[Dict[str, Any]]:
    """
    Recursive listing of a study's folder; empty when it does not exist.

    Loose files are listed for everyone with study access. Top-level folders
    are role folders and only appear when the caller may read them.
    """
    authorize_role_folder(caller, study_id, role)
    base = safe_join(root or config.STUDY_FILES_PATH, study_id)
    if base is None or not os.path.isdir(base):
        return []
    return [
        entry for entry in _walk(base, base)
        if entry["type"] == "file" or can_read_role_folder(caller, study_id, entry["name"])
    ]


def _walk(directory: str, base: str) -> List[Dict[str, Any]]:
    entries = []
    with os.scandir(directory) as it:
        for entry in sorted(it, key=lambda e: e.name):
            relative = os.path.relpath(entry.path, base)
            if entry.is_dir():
                entries.append({
                    "name": entry.name,
                    "path": relative,
                    "type": "directory",
                    "children": _walk(entry.path, base),
                })
            else:
                stats = entry.stat()
                entries.append({
                    "name": entry.name,
                    "path": relative,
                    "type": "file",
                    "size": stats.st_size,
                    "modified": datetime.fromtimestamp(stats.st_mtime, tz=timezone.utc).isoformat(),
                })
    return entries


def resolve_study_file(caller: Caller, study_id: str, role: str, filepath: str,
                       root: Optional[str] = None) -> Optional[str]:
    """
    Absolute path of a study file, or None when it does not exist.

    The file is looked up directly in the study folder first, then inside the
    role folder. Paths escaping the study folder resolve to None. The folder a
    file actually sits in is checked, whatever role the URL names.
    """
    authorize_role_folder(caller, study_id, role)
    base = safe_join(root or config.STUDY_FILES_PATH, study_id)
    if base is None:
        return None
    for candidate in (safe_join(base, filepath), safe_join(base, role, filepath)):
        if candidate and os.path.isfile(candidate):
            folder = _role_folder(candidate, base)
            if not can_read_role_folder(caller, study_id, folder):
                raise Forbidden("Unauthorized role access")
            return candidate
    return None


def _role_folder(path: str, base: str) -> Optional[str]:
    """First path component below the study folder, or None for a loose file."""
    parts = os.path.normpath(os.path.relpath(path, base)).split(os.sep)
    return parts[0] if len(parts) > 1 else None
