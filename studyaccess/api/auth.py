"""
JWT data-access token helpers and middleware for the Flask API.
"""

import logging
from datetime import datetime, timedelta, timezone
from functools import wraps
from typing import Any, Dict, Optional

import jwt
from flask import g, jsonify, request

from studyaccess.config import SECRET_KEY, TOKEN_EXPIRY_HOURS
from studyaccess.errors import InvalidGrant
from studyaccess.models import Caller
from studyaccess.rbac import load_caller

logger = logging.getLogger(__name__)


def generate_token(caller: Caller, expires_in: timedelta = timedelta(hours=TOKEN_EXPIRY_HOURS)) -> str:
    """Sign a data-access token carrying *caller*'s grants (local tooling and tests)."""
    now = datetime.now(timezone.utc)
    study_access = []
    for grant in caller.grants:
        entry: Dict[str, Any] = {"studyId": grant.study_id, "role": grant.role}
        if grant.sample_ids is not None:
            entry["sampleIds"] = sorted(grant.sample_ids)
        study_access.append(entry)
    payload = {
        "userId": caller.id,
        "studyAccess": study_access,
        "iat": now,
        "exp": now + expires_in,
    }
    if caller.region:
        payload["region"] = caller.region
    return jwt.encode(payload, SECRET_KEY, algorithm="HS256")


def verify_token(token: str) -> Optional[Dict[str, Any]]:
    """Verify a JWT token and return the decoded payload (or None)."""
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=["HS256"])
    except jwt.ExpiredSignatureError:
        return None
    except jwt.InvalidTokenError:
        return None


def _bearer_token() -> Optional[str]:
    header = request.headers.get("Authorization", "")
    parts = header.split(" ")
    if len(parts) == 2 and parts[0].lower() == "bearer" and parts[1]:
        return parts[1]
    return None


def token_required(allow_query_token: bool = False):
    """
    Decorator that resolves the request's Caller into ``g.caller``.

    With *allow_query_token* a signed ``?token=`` link is accepted when no
    Authorization header is present, so direct downloads work from a browser.
    """
    def decorator(f):
        @wraps(f)
        def decorated(*args, **kwargs):
            token = _bearer_token()
            if not token and allow_query_token:
                token = request.args.get("token")
            if not token:
                return jsonify({"error": "No token provided"}), 401

            payload = verify_token(token)
            if not payload:
                return jsonify({"error": "Invalid or expired token"}), 401

            try:
                g.caller = load_caller(payload)
            except InvalidGrant as e:
                logger.info("Rejected token claims: %s", e)
                return jsonify({"error": "Invalid study access claims"}), 403

            return f(*args, **kwargs)

        return decorated
    return decorator
