"""
List/read queries behind the data endpoints. Each one checks the caller with
the access gate, compiles the study/sample predicate for its table and hands
the statement to the store.
"""

import logging
import math
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from studyaccess import config
from studyaccess.errors import Forbidden, ValidationError
from studyaccess.gate import authorize, authorize_sample, authorize_study
from studyaccess.models import Caller
from studyaccess.predicates import DATASET_CONTEXT, USER_CONTEXT, compile_predicate
from studyaccess.rbac import effective_grants

logger = logging.getLogger(__name__)

USERS_SQL = """
    SELECT DISTINCT u.*
    FROM fw_psy_user u
    WHERE {access_clause}
    ORDER BY u.user_id ASC
"""

TASK_LOGS_SQL = """
    SELECT l.*
    FROM fw_psy_user_task_log l
    INNER JOIN fw_psy_user_task ut ON l.user_task_id = ut.user_task_id
    INNER JOIN fw_psy_user u ON ut.user_id = u.user_id
    WHERE {access_clause}
    ORDER BY l.user_task_id ASC
"""

# :p1 is the user id.
USER_TASKS_SQL = """
    SELECT ut.*
    FROM fw_psy_user_task ut
    INNER JOIN fw_psy_user u ON ut.user_id = u.user_id
    WHERE ut.user_id = :p1
    AND ({access_clause})
    ORDER BY ut.user_task_id ASC
"""

DATASETS_SQL = """
    WITH latest_task_instances AS (
        SELECT DISTINCT ON (task_id)
            task_id,
            title AS task_title,
            summary AS task_summary,
            description AS task_description,
            language_code
        FROM fw_psy_task_instance
        ORDER BY task_id, file_modified DESC
    )
    SELECT
        df.dataset_file_id AS id,
        df.study_id,
        df.task_id,
        ti.task_title,
        ti.task_summary,
        ti.task_description,
        ti.language_code AS task_language,
        df.digest_def_id,
        df.sample_id,
        s.sample_code,
        s.sample_name,
        df.filename,
        df.updated_time
    FROM fw_psy_dataset_file df
    LEFT JOIN latest_task_instances ti ON df.task_id = ti.task_id
    LEFT JOIN fw_psy_sample s ON df.sample_id = s.sample_id
    WHERE {access_clause}
    ORDER BY df.updated_time DESC
"""

# :p1 is the dataset file id.
DATASET_FILE_SQL = """
    SELECT df.*
    FROM fw_psy_dataset_file df
    WHERE CAST(df.dataset_file_id AS TEXT) = :p1
    AND ({access_clause})
"""

STUDIES_SQL = """
    SELECT st.study_id, st.terms, sa.sample_id, sa.sample_code, sa.sample_name
    FROM fw_psy_study st
    LEFT JOIN fw_psy_sample sa ON sa.study_id = st.study_id
    ORDER BY st.study_id, sa.sample_id
"""

PARTICIPANT_FILTER_SQL = """
    FROM fw_psy_user u
    LEFT JOIN fw_psy_user_task ut ON u.user_id = ut.user_id
    LEFT JOIN fw_psy_user_task_log utl ON ut.user_task_id = utl.user_task_id
    WHERE {conditions}
"""

PARTICIPANTS_SQL = """
    SELECT
        u.user_id,
        u.user_code,
        u.email_address,
        MAX(utl.submission_time) AS last_submission,
        COUNT(DISTINCT utl.user_task_log_id) AS completed_tasks,
        COUNT(DISTINCT ut.task_id) AS assigned_tasks
    {filters}
    GROUP BY u.user_id, u.user_code, u.email_address
    ORDER BY {sort_column} {sort_order}
    LIMIT :limit OFFSET :offset
"""

PARTICIPANT_COUNT_SQL = """
    SELECT COUNT(DISTINCT u.user_id) AS total
    {filters}
"""


def _scoped_rows(store, caller: Caller, sql: str, context, first_index: int = 1,
                 extra: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
    grants = effective_grants(caller)
    if not grants:
        return []
    predicate = compile_predicate(grants, context, first_index=first_index)
    params = dict(extra or {})
    params.update(predicate.bind_params())
    logger.debug("Scoped %s query for caller %s: %d grants, %d params.",
                 context.name, caller.id, len(grants), len(params))
    return store.execute(sql.format(access_clause=predicate.clause), params)


def list_users(store, caller: Caller) -> List[Dict[str, Any]]:
    authorize(caller, "READ_USERS")
    return _scoped_rows(store, caller, USERS_SQL, USER_CONTEXT)


def list_task_logs(store, caller: Caller) -> List[Dict[str, Any]]:
    authorize(caller, "READ_LOGS")
    return _scoped_rows(store, caller, TASK_LOGS_SQL, USER_CONTEXT)


def list_user_tasks(store, caller: Caller, user_id: str) -> List[Dict[str, Any]]:
    authorize(caller, "READ_TASKS")
    if not user_id:
        raise ValidationError("Missing user ID")
    return _scoped_rows(store, caller, USER_TASKS_SQL, USER_CONTEXT, first_index=2, extra={"p1": user_id})


def list_datasets(store, caller: Caller, files_root: Optional[str] = None) -> List[Dict[str, Any]]:
    """Dataset files the caller can see, with on-disk metadata."""
    authorize(caller, "READ_DATASETS")
    rows = _scoped_rows(store, caller, DATASETS_SQL, DATASET_CONTEXT)
    root = files_root or config.DATASET_FILES_PATH
    return [_with_file_metadata(row, root) for row in rows]


def _with_file_metadata(row: Dict[str, Any], root: str) -> Dict[str, Any]:
    out = {k: v for k, v in row.items() if k not in ("sample_id", "sample_code", "sample_name")}
    out["sample"] = None
    if row.get("sample_id") is not None:
        out["sample"] = {
            "id": row["sample_id"],
            "code": row.get("sample_code"),
            "name": row.get("sample_name"),
        }
    path = os.path.join(root, os.path.basename(str(row.get("filename") or "")))
    try:
        stats = os.stat(path)
    except OSError:
        out["exists"] = False
        return out
    out["exists"] = True
    out["size"] = stats.st_size
    out["last_modified"] = datetime.fromtimestamp(stats.st_mtime, tz=timezone.utc)
    return out


def get_dataset_file(store, caller: Caller, file_id: str) -> Optional[Dict[str, Any]]:
    """The dataset file row if it exists and the caller may read it, else None."""
    authorize(caller, "READ_DATASETS")
    rows = _scoped_rows(store, caller, DATASET_FILE_SQL, DATASET_CONTEXT, first_index=2, extra={"p1": str(file_id)})
    return rows[0] if rows else None


def list_studies(store) -> List[Dict[str, Any]]:
    """Every study with its samples nested."""
    studies: Dict[Any, Dict[str, Any]] = {}
    for row in store.execute(STUDIES_SQL):
        study = studies.setdefault(row["study_id"], {
            "study_id": row["study_id"],
            "terms": row.get("terms"),
            "samples": [],
        })
        if row.get("sample_id") is not None:
            study["samples"].append({
                "sample_id": row["sample_id"],
                "sample_code": row.get("sample_code"),
                "sample_name": row.get("sample_name"),
            })
    return list(studies.values())


def list_participants(
    store,
    caller: Caller,
    study_id: str,
    sample_id: Optional[str] = None,
    search: str = "",
    page: int = 1,
    page_size: int = config.DEFAULT_PAGE_SIZE,
    sort_by: str = "user_code",
    sort_order: str = "asc",
) -> Dict[str, Any]:
    """One page of a study's participants with their task counts."""
    if not study_id:
        raise ValidationError("studyId is required")
    authorize_study(caller, study_id)
    if sample_id and not authorize_sample(caller, study_id, sample_id):
        raise Forbidden("Unauthorized sample access")
    if sort_by not in config.PARTICIPANT_SORT_COLUMNS:
        raise ValidationError(f"Cannot sort participants by '{sort_by}'")
    if page < 1 or page_size < 1:
        raise ValidationError("Invalid pagination parameters")
    page_size = min(page_size, config.MAX_PAGE_SIZE)

    grants = [g for g in effective_grants(caller) if g.study_id == study_id]
    predicate = compile_predicate(grants, USER_CONTEXT)
    conditions = [f"({predicate.clause})"]
    params: Dict[str, Any] = predicate.bind_params()

    if sample_id:
        conditions.append(
            "EXISTS (SELECT 1 FROM fw_psy_sample_user su "
            "WHERE su.user_id = u.user_id AND CAST(su.sample_id AS TEXT) = :sample_id)"
        )
        params["sample_id"] = str(sample_id)
    if search:
        conditions.append("(u.user_code ILIKE :search OR u.email_address ILIKE :search)")
        params["search"] = f"%{search}%"

    filters = PARTICIPANT_FILTER_SQL.format(conditions=" AND ".join(conditions))
    count_rows = store.execute(PARTICIPANT_COUNT_SQL.format(filters=filters), params)
    total = int(count_rows[0]["total"]) if count_rows else 0

    page_params = dict(params, limit=page_size, offset=(page - 1) * page_size)
    rows = store.execute(
        PARTICIPANTS_SQL.format(
            filters=filters,
            sort_column=sort_by,
            sort_order="DESC" if sort_order.lower() == "desc" else "ASC",
        ),
        page_params,
    )
    return {
        "data": rows,
        "pagination": {
            "page": page,
            "pageSize": page_size,
            "totalRows": total,
            "totalPages": math.ceil(total / page_size),
        },
    }
