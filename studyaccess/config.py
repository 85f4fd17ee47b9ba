"""
Centralised configuration constants and environment helpers.
"""

import os
import sys

from dotenv import load_dotenv

load_dotenv()

# ── Study roles ──────────────────────────────────────────────────────
STUDY_ADMIN = "STUDY_ADMIN"
SAMPLE_ADMIN = "SAMPLE_ADMIN"
VIEWER = "VIEWER"

# Higher level = more access. Used for min_role checks.
ROLE_LEVELS = {
    STUDY_ADMIN: 3,
    SAMPLE_ADMIN: 2,
    VIEWER: 1,
}

ROLE_PERMISSIONS = {
    STUDY_ADMIN: (
        "READ_USERS", "READ_LOGS", "READ_TASKS", "READ_DATASETS",
        "WRITE_USERS", "WRITE_TASKS", "ADMIN",
    ),
    SAMPLE_ADMIN: (
        "READ_USERS", "READ_LOGS", "READ_TASKS", "READ_DATASETS",
        "WRITE_USERS",
    ),
    VIEWER: ("READ_DATASETS",),
}

# "independent": every grant becomes its own OR-clause.
# "merge": grants on the same study collapse, most permissive role wins.
DUPLICATE_GRANT_POLICY = os.getenv("DUPLICATE_GRANT_POLICY", "independent").strip().lower()

# ── Status report ────────────────────────────────────────────────────
MIN_PERIOD_DAYS = 1
MAX_PERIOD_DAYS = 365
STATUS_DEFAULT_DAYS = int(os.getenv("STATUS_DEFAULT_DAYS", "7"))
STATUS_MAX_WORKERS = int(os.getenv("STATUS_MAX_WORKERS", "4"))

BUCKET_WEEK_AFTER_DAYS = int(os.getenv("BUCKET_WEEK_AFTER_DAYS", "60"))
BUCKET_MONTH_AFTER_DAYS = int(os.getenv("BUCKET_MONTH_AFTER_DAYS", "365"))

# ── Store ────────────────────────────────────────────────────────────
QUERY_TIMEOUT_SECONDS = float(os.getenv("QUERY_TIMEOUT_SECONDS", "30"))
DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "10"))
DB_MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", "5"))

# ── Files ────────────────────────────────────────────────────────────
DATASET_FILES_PATH = os.getenv("DATASET_FILES_PATH", "/var/psytools/datasets/")
STUDY_FILES_PATH = os.getenv("STUDY_FILES_PATH", "/var/psytools/study-files/")

# ── Participants listing ─────────────────────────────────────────────
PARTICIPANT_SORT_COLUMNS = {
    "user_code", "email_address", "last_submission",
    "completed_tasks", "assigned_tasks",
}
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 500

# ── API server ───────────────────────────────────────────────────────
SECRET_KEY = os.getenv("JWT_SECRET_KEY", "dev-secret-key-change-in-production")
TOKEN_EXPIRY_HOURS = int(os.getenv("TOKEN_EXPIRY_HOURS", "1"))
MAX_PREVIEW_ROWS = 20


def get_env(name: str) -> str:
    """Return an environment variable or exit with an error message."""
    value = os.getenv(name)
    if not value:
        print(f"ERROR: env var {name} is not set", file=sys.stderr)
        sys.exit(1)
    return value
