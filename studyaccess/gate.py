"""
Request-level access checks on an explicit Caller.
"""

from typing import List, Optional

from studyaccess.config import ROLE_LEVELS, SAMPLE_ADMIN, STUDY_ADMIN, VIEWER
from studyaccess.errors import Forbidden
from studyaccess.models import Caller, Grant
from studyaccess.rbac import effective_grants, has_permission


def _grants_for(caller: Caller, study_id: str) -> List[Grant]:
    return [g for g in effective_grants(caller) if g.study_id == study_id]


def authorize(caller: Caller, permission: str) -> None:
    if not has_permission(caller, permission):
        raise Forbidden("Insufficient permissions")


def has_study_access(caller: Caller, study_id: str, min_role: str = VIEWER) -> bool:
    needed = ROLE_LEVELS[min_role]
    return any(ROLE_LEVELS.get(g.role, 0) >= needed for g in _grants_for(caller, study_id))


def authorize_study(caller: Caller, study_id: str, min_role: str = VIEWER) -> None:
    if not has_study_access(caller, study_id, min_role):
        raise Forbidden("Unauthorized study access")


def authorize_sample(
    caller: Caller,
    study_id: str,
    sample_id: Optional[str],
    null_sample_visible: bool = False,
) -> bool:
    """
    Whether any grant on *study_id* covers *sample_id*.

    Study admins cover every sample and sample admins only their listed ids.
    Viewers cover none, except that with *null_sample_visible* a resource
    without a sample id is visible to anyone with study access.
    """
    grants = _grants_for(caller, study_id)
    if not grants:
        return False
    if sample_id is None:
        return null_sample_visible or any(g.role == STUDY_ADMIN for g in grants)
    for grant in grants:
        if grant.role == STUDY_ADMIN:
            return True
        if grant.role == SAMPLE_ADMIN and str(sample_id) in (grant.sample_ids or ()):
            return True
    return False


def accessible_studies(caller: Caller, min_role: str = VIEWER) -> List[str]:
    """Distinct study ids reaching *min_role*, in grant order."""
    needed = ROLE_LEVELS[min_role]
    seen: List[str] = []
    for grant in effective_grants(caller):
        if ROLE_LEVELS.get(grant.role, 0) >= needed and grant.study_id not in seen:
            seen.append(grant.study_id)
    return seen


def accessible_samples(caller: Caller, study_id: str) -> List[str]:
    """``["*"]`` for study admins, else the union of listed sample ids."""
    grants = _grants_for(caller, study_id)
    if any(g.role == STUDY_ADMIN for g in grants):
        return ["*"]
    samples = set()
    for grant in grants:
        if grant.role == SAMPLE_ADMIN:
            samples.update(grant.sample_ids or ())
    return sorted(samples)


def can_read_role_folder(caller: Caller, study_id: str, folder: Optional[str]) -> bool:
    """
    Study file folders are named after roles. Everyone with study access may
    read the ADMIN folder and their own role's folder; study admins read all.
    """
    if not has_study_access(caller, study_id):
        return False
    if not folder or folder == "ADMIN":
        return True
    roles = {g.role for g in _grants_for(caller, study_id)}
    return STUDY_ADMIN in roles or folder in roles


def authorize_role_folder(caller: Caller, study_id: str, folder: Optional[str]) -> None:
    authorize_study(caller, study_id)
    if not can_read_role_folder(caller, study_id, folder):
        raise Forbidden("Unauthorized role access")
