#!/usr/bin/env python3
"""
Mint a data-access token for local testing.

Usage:
    python scripts/generate_access_token.py claims.json [hours]

claims.json holds the identity claims, e.g.
    {"userId": "u1", "studyAccess": [
        {"studyId": "A", "role": "STUDY_ADMIN"},
        {"studyId": "B", "role": "SAMPLE_ADMIN", "sampleIds": ["s1", "s2"]}
    ]}
"""

import json
import sys
from datetime import timedelta

from studyaccess.api.auth import generate_token
from studyaccess.errors import InvalidGrant
from studyaccess.rbac import load_caller, resolve_permissions


def main(argv):
    if len(argv) < 2:
        print(__doc__)
        return 2

    with open(argv[1], encoding="utf-8") as fh:
        claims = json.load(fh)
    hours = float(argv[2]) if len(argv) > 2 else 1.0

    try:
        caller = load_caller(claims)
    except InvalidGrant as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    print("=" * 70)
    print(f"Caller: {caller.id}")
    print(f"Permissions: {', '.join(sorted(resolve_permissions(caller.grants))) or '(none)'}")
    print("=" * 70)
    print(generate_token(caller, expires_in=timedelta(hours=hours)))
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv))
