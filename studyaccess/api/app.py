"""
Flask application factory and server entry-point.
"""

import logging
import os

from flask import Flask
from flask_cors import CORS

from studyaccess.api.routes import register_routes
from studyaccess.config import DUPLICATE_GRANT_POLICY, QUERY_TIMEOUT_SECONDS, STATUS_MAX_WORKERS
from studyaccess.database import Store, init_engine

logger = logging.getLogger(__name__)


def create_app(store=None, dataset_root=None, study_root=None):
    """Build and return a fully configured Flask application."""
    app = Flask(__name__)
    CORS(app)

    # ── Initialise shared resources ──────────────────────────────────
    if store is None:
        logger.info("Initializing database connection...")
        store = Store(init_engine(), timeout_seconds=QUERY_TIMEOUT_SECONDS)

    # ── Register routes ──────────────────────────────────────────────
    register_routes(app, store, dataset_root=dataset_root, study_root=study_root)

    return app


def main():
    """Run the development server."""
    logging.basicConfig(
        level=logging.DEBUG if os.getenv("FLASK_ENV") == "development" else logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    print("=" * 60)
    print("Study Access Reporting API – REST API Server")
    print("=" * 60)

    app = create_app()

    host = os.getenv("API_HOST", "0.0.0.0")
    port = int(os.getenv("API_PORT", "3000"))
    debug = os.getenv("FLASK_ENV") == "development"

    print(f"\n[server] Starting Flask API on {host}:{port}")
    print(f"[server] Debug mode: {debug}")
    print(f"[server] Query timeout: {QUERY_TIMEOUT_SECONDS}s, status workers: {STATUS_MAX_WORKERS}")
    print(f"[server] Duplicate grant policy: {DUPLICATE_GRANT_POLICY}")
    print("\nAPI Endpoints:")
    print(f"  - GET  http://{host}:{port}/api/status?days=7")
    print(f"  - GET  http://{host}:{port}/api/users")
    print(f"  - GET  http://{host}:{port}/api/tasklogs")
    print(f"  - GET  http://{host}:{port}/api/userTask/<user_id>")
    print(f"  - GET  http://{host}:{port}/api/datasets")
    print(f"  - GET  http://{host}:{port}/api/studies")
    print(f"  - GET  http://{host}:{port}/api/participants")
    print(f"  - GET  http://{host}:{port}/health")
    print("\n" + "=" * 60)

    app.run(host=host, port=port, debug=debug, threaded=True)


if __name__ == "__main__":
    main()
