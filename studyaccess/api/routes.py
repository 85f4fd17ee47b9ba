"""
Flask route handlers for the REST API.
"""

import logging
import os

from flask import g, jsonify, request, send_file
from werkzeug.security import safe_join

from studyaccess import config
from studyaccess.api.auth import token_required
from studyaccess.errors import EmptyGrantSet, Forbidden, QueryError, ValidationError
from studyaccess.files import list_study_files, resolve_study_file
from studyaccess.queries import (
    get_dataset_file,
    list_datasets,
    list_participants,
    list_studies,
    list_task_logs,
    list_user_tasks,
    list_users,
)
from studyaccess.status import build_status_report, parse_period_days

logger = logging.getLogger(__name__)


def _int_arg(name: str, default: int) -> int:
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer")


def register_routes(app, store, dataset_root=None, study_root=None):
    """Register all API routes on the Flask *app*."""
    dataset_root = dataset_root or config.DATASET_FILES_PATH
    study_root = study_root or config.STUDY_FILES_PATH

    # ── Health / info ────────────────────────────────────────────────

    @app.route("/", methods=["GET"])
    def index():
        return jsonify({
            "service": "Study Access Reporting API",
            "version": "1.0.0",
            "status": "running",
            "endpoints": {
                "status": "/api/status",
                "users": "/api/users",
                "tasklogs": "/api/tasklogs",
                "user_tasks": "/api/userTask/<user_id>",
                "datasets": "/api/datasets",
                "studies": "/api/studies",
                "participants": "/api/participants",
                "health": "/health",
            },
        })

    @app.route("/health", methods=["GET"])
    def health():
        healthy = store.ping()
        return jsonify({
            "status": "healthy" if healthy else "unhealthy",
            "checks": {"database": healthy},
        }), 200 if healthy else 503

    # ── Status report ────────────────────────────────────────────────

    @app.route("/api/status", methods=["GET"])
    @token_required()
    def status():
        days = parse_period_days(request.args.get("days"))
        report = build_status_report(store, g.caller, days)
        return jsonify({"success": True, "data": report.to_dict()}), 200

    # ── Scoped listings ──────────────────────────────────────────────

    @app.route("/api/users", methods=["GET"])
    @token_required()
    def users():
        return jsonify(list_users(store, g.caller)), 200

    @app.route("/api/tasklogs", methods=["GET"])
    @token_required()
    def tasklogs():
        return jsonify(list_task_logs(store, g.caller)), 200

    @app.route("/api/userTask/<user_id>", methods=["GET"])
    @token_required()
    def user_tasks(user_id):
        return jsonify(list_user_tasks(store, g.caller, user_id)), 200

    @app.route("/api/datasets", methods=["GET"])
    @token_required()
    def datasets():
        return jsonify(list_datasets(store, g.caller, files_root=dataset_root)), 200

    @app.route("/api/datasets/<file_id>", methods=["GET"])
    @token_required(allow_query_token=True)
    def dataset_file(file_id):
        row = get_dataset_file(store, g.caller, file_id)
        if row is None:
            return jsonify({"error": "Dataset file not found or access denied"}), 404

        path = safe_join(dataset_root, str(row["filename"]))
        if path is None or not os.path.isfile(path):
            return jsonify({"error": "Dataset file not found on disk"}), 404

        logger.info("Serving dataset file %s to caller %s.", file_id, g.caller.id)
        return send_file(
            path,
            mimetype="application/octet-stream",
            as_attachment=True,
            download_name=os.path.basename(path),
        )

    @app.route("/api/studies", methods=["GET"])
    @token_required()
    def studies():
        return jsonify({"success": True, "data": list_studies(store)}), 200

    @app.route("/api/participants", methods=["GET"])
    @token_required()
    def participants():
        result = list_participants(
            store,
            g.caller,
            study_id=request.args.get("studyId", ""),
            sample_id=request.args.get("sampleId") or None,
            search=request.args.get("search", ""),
            page=_int_arg("page", 1),
            page_size=_int_arg("pageSize", config.DEFAULT_PAGE_SIZE),
            sort_by=request.args.get("sortBy", "user_code"),
            sort_order=request.args.get("sortOrder", "asc"),
        )
        return jsonify({"success": True, **result}), 200

    # ── Study files ──────────────────────────────────────────────────

    @app.route("/api/studies/<study_id>/files", methods=["GET"])
    @token_required()
    def study_files(study_id):
        files = list_study_files(g.caller, study_id, request.args.get("role"), root=study_root)
        return jsonify({"files": files}), 200

    @app.route("/api/studies/<study_id>/files/<role>/<path:filepath>", methods=["GET"])
    @token_required(allow_query_token=True)
    def study_file(study_id, role, filepath):
        path = resolve_study_file(g.caller, study_id, role, filepath, root=study_root)
        if path is None:
            return jsonify({"error": "File not found"}), 404
        return send_file(path, as_attachment=True, download_name=os.path.basename(path))

    # ── Error handlers ───────────────────────────────────────────────

    @app.errorhandler(ValidationError)
    def validation_error(e):
        return jsonify({"success": False, "error": str(e)}), 400

    @app.errorhandler(Forbidden)
    def forbidden(e):
        return jsonify({"success": False, "error": str(e)}), 403

    @app.errorhandler(EmptyGrantSet)
    def empty_grants(e):
        logger.warning("Predicate requested for a caller without grants: %s", e)
        return jsonify([]), 200

    @app.errorhandler(QueryError)
    def query_error(e):
        logger.error("Request %s %s failed: %s", request.method, request.path, e)
        return jsonify({"success": False, "error": "Database query error"}), 500

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "Endpoint not found", "message": str(e)}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"error": "Method not allowed", "message": str(e)}), 405

    @app.errorhandler(500)
    def internal_error(e):
        return jsonify({"error": "Internal server error"}), 500
