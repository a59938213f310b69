"""API routes for header monitoring administration."""

from functools import wraps
from flask import Blueprint, jsonify, request, current_app

from ...errors import ConfigurationMissing, HeaderMonitorError
from ...models import ActiveStage, StageHeader

api_bp = Blueprint("api", __name__)


def check_api_key(f):
    """Decorator to check API key for protected endpoints."""
    @wraps(f)
    def decorated(*args, **kwargs):
        api_key = current_app.config.get("DASHBOARD_API_KEY")

        # If no API key configured, allow all requests (dev mode)
        if not api_key:
            return f(*args, **kwargs)

        # Check key from query param or header
        provided_key = request.args.get("key") or request.headers.get("X-API-Key")

        if provided_key != api_key:
            return jsonify({"error": "Invalid or missing API key"}), 401

        return f(*args, **kwargs)

    return decorated


def _body() -> dict:
    return request.get_json(silent=True) or {}


def _optional_number(data: dict, key: str, cast=float):
    value = data.get(key)
    if value is None or value == "":
        return None
    return cast(value)


@api_bp.errorhandler(HeaderMonitorError)
def handle_monitor_error(error):
    return jsonify({"success": False, "error": str(error)}), 503


# Alerts

@api_bp.route("/alerts", methods=["GET"])
@check_api_key
def list_alerts():
    """List active (non-dismissed) alerts with snooze info."""
    project_id = request.args.get("projectId")
    alerts = current_app.monitor.list_active_alerts(project_id=project_id)
    return jsonify({
        "alerts": [a.to_dict() for a in alerts],
        "count": len(alerts),
    })


@api_bp.route("/alerts/<alert_id>/snooze", methods=["POST"])
@check_api_key
def snooze_alert(alert_id):
    """Snooze an alert for a number of seconds."""
    data = _body()
    try:
        duration = int(data.get("duration", current_app.config.get("DEFAULT_SNOOZE_SECONDS", 3600)))
    except (TypeError, ValueError):
        return jsonify({"success": False, "error": "duration must be an integer number of seconds"}), 400

    if duration <= 0:
        return jsonify({"success": False, "error": "duration must be positive"}), 400

    snooze = current_app.monitor.snooze_alert(alert_id, duration)
    if snooze is None:
        return jsonify({"success": False, "error": "Alert not found"}), 404

    return jsonify({
        "success": True,
        "alert_id": alert_id,
        "snooze_until": snooze.snooze_until.isoformat(),
    })


@api_bp.route("/alerts/<alert_id>", methods=["DELETE"])
@check_api_key
def dismiss_alert(alert_id):
    """Dismiss an alert."""
    if current_app.monitor.dismiss_alert(alert_id):
        return jsonify({"success": True, "alert_id": alert_id})
    return jsonify({"success": False, "error": "Alert not found or already dismissed"}), 404


# Monitored headers

@api_bp.route("/monitored-headers", methods=["GET"])
@check_api_key
def list_monitored_headers():
    """List monitored headers, optionally for one project."""
    project_id = request.args.get("projectId")
    headers = current_app.monitor.list_monitored_headers(project_id=project_id)
    return jsonify({"headers": [h.to_dict() for h in headers]})


@api_bp.route("/monitored-headers", methods=["POST"])
@check_api_key
def monitor_header():
    """Start monitoring a header; unset settings take category defaults."""
    data = _body()
    missing = [k for k in ("projectId", "headerId", "headerName") if not data.get(k)]
    if missing:
        return jsonify({"success": False, "error": f"Missing fields: {', '.join(missing)}"}), 400

    try:
        header = current_app.monitor.monitor_header(
            project_id=str(data["projectId"]),
            header_id=str(data["headerId"]),
            header_name=data["headerName"],
            threshold=_optional_number(data, "threshold"),
            alert_duration=_optional_number(data, "alertDuration", int),
            frozen_threshold=_optional_number(data, "frozenThreshold", int),
        )
    except (TypeError, ValueError) as e:
        return jsonify({"success": False, "error": f"Invalid setting: {e}"}), 400

    return jsonify({"success": True, "header": header.to_dict()}), 201


@api_bp.route("/monitored-headers/<project_id>/<header_id>/settings", methods=["PUT"])
@check_api_key
def update_header_settings(project_id, header_id):
    """Update threshold, alertDuration, frozenThreshold or headerName."""
    data = _body()
    settings = {}
    try:
        if "threshold" in data:
            settings["threshold"] = _optional_number(data, "threshold")
        if "alertDuration" in data:
            settings["alert_duration"] = _optional_number(data, "alertDuration", int)
        if "frozenThreshold" in data:
            settings["frozen_threshold"] = _optional_number(data, "frozenThreshold", int)
    except (TypeError, ValueError) as e:
        return jsonify({"success": False, "error": f"Invalid setting: {e}"}), 400
    if data.get("headerName"):
        settings["header_name"] = data["headerName"]

    try:
        header = current_app.monitor.update_header_settings(project_id, header_id, **settings)
    except ConfigurationMissing as e:
        return jsonify({"success": False, "error": str(e)}), 404

    return jsonify({"success": True, "header": header.to_dict()})


@api_bp.route("/monitored-headers/<project_id>/<header_id>", methods=["DELETE"])
@check_api_key
def unmonitor_header(project_id, header_id):
    """Stop monitoring one header."""
    if current_app.monitor.unmonitor_header(project_id, header_id):
        return jsonify({"success": True})
    return jsonify({"success": False, "error": "Header not found"}), 404


@api_bp.route("/monitored-headers/project/<project_id>", methods=["DELETE"])
@check_api_key
def disable_project(project_id):
    """Stop monitoring every header of a project."""
    count = current_app.monitor.disable_project(project_id)
    return jsonify({"success": True, "disabled": count})


# Projects and stages

@api_bp.route("/projects/active", methods=["POST"])
@check_api_key
def register_active_projects():
    """Record the active stage of one or more projects."""
    data = _body()
    stages = []
    for item in data.get("projects", []):
        if not item.get("projectId") or not item.get("stageId"):
            return jsonify({"success": False, "error": "Each project needs projectId and stageId"}), 400
        stages.append(ActiveStage(
            project_id=str(item["projectId"]),
            stage_id=str(item["stageId"]),
            company_id=str(item["companyId"]) if item.get("companyId") else None,
            company_name=item.get("companyName"),
            project_name=item.get("projectName"),
        ))

    count = current_app.monitor.register_active_stages(stages)
    return jsonify({"success": True, "count": count})


@api_bp.route("/transition-stage", methods=["POST"])
@check_api_key
def transition_stage():
    """Migrate monitoring from an old stage's headers to a new stage's."""
    data = _body()
    old_stage_id = data.get("oldStageId")
    new_stage_id = data.get("newStageId")
    if not old_stage_id or not new_stage_id:
        return jsonify({"success": False, "error": "oldStageId and newStageId are required"}), 400

    new_headers = None
    if data.get("newHeaders") is not None:
        new_headers = [
            StageHeader(id=str(h["id"]), name=h.get("name", ""))
            for h in data["newHeaders"]
            if h.get("id") is not None
        ]

    migrated = current_app.monitor.migrate_stage(str(old_stage_id), str(new_stage_id), new_headers)
    if not migrated:
        return jsonify({
            "success": False,
            "error": "Stages could not be resolved to the same project or headers were unavailable",
        }), 409
    return jsonify({"success": True})


@api_bp.route("/cleanup-duplicate-headers", methods=["POST"])
@check_api_key
def cleanup_duplicate_headers():
    """Disable duplicate monitored headers for one project or all."""
    project_id = _body().get("projectId")
    disabled = current_app.monitor.reconcile_duplicates(str(project_id) if project_id else None)
    return jsonify({"success": True, "disabled": disabled})


# Monitoring

@api_bp.route("/monitor/cycle", methods=["POST"])
@check_api_key
def run_cycle():
    """Run one monitoring cycle, optionally restricted to headerIds."""
    header_ids = _body().get("headerIds")
    if header_ids is not None:
        header_ids = [str(h) for h in header_ids]

    result = current_app.monitor.run_once(header_ids=header_ids)
    status = 409 if result.skipped else 200
    return jsonify(result.to_dict()), status


@api_bp.route("/health", methods=["GET"])
def health():
    """Monitoring health status."""
    status = current_app.monitor.get_status()
    return jsonify(status), 200 if status["is_healthy"] else 503
