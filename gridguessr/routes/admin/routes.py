from flask import current_app, jsonify, request
from flask_login import current_user

from gridguessr import limiter
from gridguessr.errors import ValidationError
from gridguessr.routes.admin import bp
from gridguessr.routes.admin.auth import admin_required
from gridguessr.services import scoring_service


def _json_body():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


@bp.route("/results", methods=["POST"])
@limiter.limit("30 per minute")
@admin_required
def publish_result():
    """Publish or correct a race result and score the race"""
    data = _json_body()
    race_id = data.get("raceId", data.get("race_id"))

    payload = data.get("result")
    if payload is None:
        payload = {k: v for k, v in data.items() if k not in ("raceId", "race_id")}

    current_app.logger.info(f"Admin {current_user.id} publishing result for race {race_id}")
    summary = scoring_service.publish_result(race_id, payload)
    return jsonify(summary)


@bp.route("/bonus/events/<int:event_id>/answers", methods=["POST"])
@limiter.limit("30 per minute")
@admin_required
def set_bonus_answers(event_id):
    """Set the answer key for the questions of a bonus event"""
    data = _json_body()
    event = scoring_service.set_bonus_answers(event_id, data.get("answers"))
    return jsonify(event.to_dict())


@bp.route("/bonus/events/<int:event_id>/score", methods=["POST"])
@limiter.limit("30 per minute")
@admin_required
def score_bonus_event(event_id):
    current_app.logger.info(f"Admin {current_user.id} scoring bonus event {event_id}")
    summary = scoring_service.score_bonus_event(event_id)
    return jsonify(summary)


@bp.route("/bonus/events/<int:event_id>/status", methods=["POST"])
@limiter.limit("30 per minute")
@admin_required
def set_bonus_event_status(event_id):
    data = _json_body()
    status = data.get("status")
    if not status:
        raise ValidationError("status is required", field="status")

    event = scoring_service.set_bonus_event_status(
        event_id, status, force=bool(data.get("force", False))
    )
    return jsonify(event.to_dict(include_questions=False))


@bp.route("/users/recompute", methods=["POST"])
@limiter.limit("10 per minute")
@admin_required
def recompute_users():
    """Recompute standings for the listed users, or for everyone"""
    data = _json_body()
    user_ids = data.get("userIds", data.get("user_ids")) or []
    if not isinstance(user_ids, list):
        raise ValidationError("userIds must be a list", field="userIds")

    try:
        user_ids = [int(user_id) for user_id in user_ids]
    except (TypeError, ValueError):
        raise ValidationError("userIds must be integers", field="userIds")

    return jsonify(scoring_service.recompute_standings(user_ids))
