"""
Role-Based Access Control – loading callers from identity claims and
deriving their permissions.
"""

import json
from typing import Any, Dict, FrozenSet, Iterable, List, Set, Tuple

from studyaccess import config
from studyaccess.config import ROLE_LEVELS, ROLE_PERMISSIONS, SAMPLE_ADMIN
from studyaccess.errors import InvalidGrant
from studyaccess.models import Caller, Grant


def load_caller(claims: Dict[str, Any]) -> Caller:
    """
    Build a Caller from already-verified identity claims.

    Expected shape: ``{"userId": ..., "studyAccess": [{"studyId", "role",
    "sampleIds"?}, ...], "region"?: ...}``. Only structural well-formedness is
    checked here; the signature was verified upstream.
    """
    user_id = claims.get("userId")
    study_access = claims.get("studyAccess")
    if not user_id or study_access is None:
        raise InvalidGrant("Invalid token claims: userId and studyAccess are required.")
    if not isinstance(study_access, list):
        raise InvalidGrant("Invalid study access claims: studyAccess must be a list.")

    grants = tuple(_parse_grant(entry, i) for i, entry in enumerate(study_access))
    return Caller(id=str(user_id), grants=grants, region=claims.get("region"))


def _parse_grant(entry: Any, position: int) -> Grant:
    if not isinstance(entry, dict):
        raise InvalidGrant(f"Invalid study access claim at position {position}.")

    study_id = entry.get("studyId")
    role = entry.get("role")
    if not study_id or not role:
        raise InvalidGrant(f"Study access claim at position {position} needs studyId and role.")
    if role not in ROLE_LEVELS:
        raise InvalidGrant(f"Unsupported role '{role}' in study access claims.")

    if role != SAMPLE_ADMIN:
        return Grant(study_id=str(study_id), role=role)

    sample_ids = entry.get("sampleIds")
    # Older tokens carried sampleIds as a JSON-encoded string.
    if isinstance(sample_ids, str):
        try:
            sample_ids = json.loads(sample_ids)
        except ValueError:
            raise InvalidGrant(f"SAMPLE_ADMIN grant for study {study_id} has unreadable sampleIds.")
    if not isinstance(sample_ids, list):
        raise InvalidGrant(f"SAMPLE_ADMIN grant for study {study_id} must list sampleIds.")

    return Grant(
        study_id=str(study_id),
        role=role,
        sample_ids=frozenset(str(s) for s in sample_ids),
    )


def resolve_permissions(grants: Iterable[Grant]) -> FrozenSet[str]:
    """Union of the static role table over all grants. Unknown roles add nothing."""
    permissions: Set[str] = set()
    for grant in grants:
        permissions.update(ROLE_PERMISSIONS.get(grant.role, ()))
    return frozenset(permissions)


def has_permission(caller: Caller, permission: str) -> bool:
    return permission in resolve_permissions(caller.grants)


def merge_duplicate_grants(grants: Iterable[Grant]) -> Tuple[Grant, ...]:
    """
    Collapse grants that share a study id.

    The most permissive role wins; when the surviving role is SAMPLE_ADMIN the
    sample ids of every SAMPLE_ADMIN grant on that study are unioned. Output
    keeps the position of each study's first grant.

    Roles rank by level, so SAMPLE_ADMIN beats VIEWER. For dataset rows a
    VIEWER clause covers the whole study while a SAMPLE_ADMIN clause covers
    only its samples, so a VIEWER + SAMPLE_ADMIN pair sees fewer dataset rows
    when merged than under the independent policy.
    """
    order: List[str] = []
    by_study: Dict[str, List[Grant]] = {}
    for grant in grants:
        if grant.study_id not in by_study:
            order.append(grant.study_id)
            by_study[grant.study_id] = []
        by_study[grant.study_id].append(grant)

    merged = []
    for study_id in order:
        group = by_study[study_id]
        best = max(group, key=lambda g: ROLE_LEVELS.get(g.role, 0))
        if best.role == SAMPLE_ADMIN:
            samples: Set[str] = set()
            for g in group:
                if g.role == SAMPLE_ADMIN and g.sample_ids:
                    samples.update(g.sample_ids)
            best = Grant(study_id=study_id, role=SAMPLE_ADMIN, sample_ids=frozenset(samples))
        merged.append(best)
    return tuple(merged)


def effective_grants(caller: Caller) -> Tuple[Grant, ...]:
    """Grants as configured by DUPLICATE_GRANT_POLICY."""
    if config.DUPLICATE_GRANT_POLICY == "merge":
        return merge_duplicate_grants(caller.grants)
    if config.DUPLICATE_GRANT_POLICY != "independent":
        raise ValueError(f"Unknown DUPLICATE_GRANT_POLICY '{config.DUPLICATE_GRANT_POLICY}'.")
    return tuple(caller.grants)
