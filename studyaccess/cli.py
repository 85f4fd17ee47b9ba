"""
Interactive CLI for the Study Access Reporting API.
Inspect what a data-access token can see without going through HTTP.
"""

import pandas as pd

from studyaccess.api.auth import verify_token
from studyaccess.config import MAX_PREVIEW_ROWS
from studyaccess.database import Store, init_engine
from studyaccess.errors import Forbidden, InvalidGrant, QueryError, ValidationError
from studyaccess.queries import list_datasets, list_studies, list_task_logs, list_users
from studyaccess.rbac import load_caller, resolve_permissions
from studyaccess.status import build_status_report, parse_period_days

HELP = "Commands: status [days], users, logs, datasets, studies, help, quit"


def print_rows(rows):
    if not rows:
        print("(no rows returned)")
        return
    df = pd.DataFrame(rows)
    print(df.head(MAX_PREVIEW_ROWS).to_string(index=False))
    if len(df) > MAX_PREVIEW_ROWS:
        print(f"... {len(df) - MAX_PREVIEW_ROWS} more rows")


def print_status(report):
    data = report.to_dict()
    overall = data["overall"]
    print(f"\n[status] Period: {data['period_days']} days (since {data['cutoff_date']})")
    print(f"[status] Buckets: {data['time_aggregation']}")
    print(f"[status] Users: {overall['users']['total']} total, "
          f"{overall['users']['active_in_period']} active")
    print(f"[status] Submissions: {overall['activity']['total_submissions']} total, "
          f"{overall['activity']['submissions_in_period']} in period")
    rows = [
        {
            "study_id": s["study_id"],
            "users": s["users"]["total"],
            "submissions": s["activity"]["total_submissions"],
            "buckets": s["time_aggregation"],
            "range_days": s["date_range_days"],
        }
        for s in data["by_study"]
    ]
    print_rows(rows)


def run_command(store, caller, line: str) -> bool:
    """Run one REPL command. Returns False when the session should end."""
    parts = line.split()
    command, args = parts[0].lower(), parts[1:]

    if command in {"quit", "exit"}:
        print("Goodbye.")
        return False
    if command == "help":
        print(HELP)
        return True

    try:
        if command == "status":
            print_status(build_status_report(store, caller, parse_period_days(args[0] if args else None)))
        elif command == "users":
            print_rows(list_users(store, caller))
        elif command == "logs":
            print_rows(list_task_logs(store, caller))
        elif command == "datasets":
            print_rows(list_datasets(store, caller))
        elif command == "studies":
            print_rows(list_studies(store))
        else:
            print(f"Unknown command '{command}'. {HELP}")
    except ValidationError as e:
        print("\n[INPUT ERROR]", e)
    except Forbidden as e:
        print("\n[ACCESS DENIED]", e)
    except QueryError as e:
        print("\n[DB ERROR] Database error while running the query.")
        print("Details:", e)
    return True


def main():
    print("=== Study Access Reporting API: interactive inspector ===\n")

    store = Store(init_engine())

    # ── Login ────────────────────────────────────────────────────────
    try:
        token = input("Paste a data-access token (or 'quit'): ").strip()
    except (EOFError, KeyboardInterrupt):
        print("\nExiting.")
        return

    if not token or token.lower() in {"quit", "exit"}:
        print("Goodbye.")
        return

    payload = verify_token(token)
    if not payload:
        print("\n[ERROR] Token is invalid or expired.")
        return
    try:
        caller = load_caller(payload)
    except InvalidGrant as e:
        print("\n[ERROR] Token claims rejected.")
        print("Details:", e)
        return

    print(f"\n[auth] Caller: {caller.id} ({len(caller.grants)} grants)")
    print(f"[auth] Permissions: {', '.join(sorted(resolve_permissions(caller.grants))) or '(none)'}")
    print(HELP)

    # ── REPL ─────────────────────────────────────────────────────────
    while True:
        try:
            line = input("\n> ").strip()
        except (EOFError, KeyboardInterrupt):
            print("\nExiting.")
            break
        if not line:
            continue
        if not run_command(store, caller, line):
            break


if __name__ == "__main__":
    main()
