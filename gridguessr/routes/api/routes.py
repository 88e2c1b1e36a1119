from flask import current_app, jsonify, request

from gridguessr import limiter
from gridguessr.errors import NotFoundError, ValidationError
from gridguessr.models import Prediction, User
from gridguessr.routes.api import bp
from gridguessr.services.deduplication import partition
from gridguessr.services.stores import badge_store, race_store, result_store
from gridguessr.utils.cache_utils import cached_query
from gridguessr.utils.scoring import score_prediction


@cached_query("User")
def _leaderboard(limit):
    users = User.get_leaderboard(limit=limit)
    return [dict(user.to_dict(), rank=rank) for rank, user in enumerate(users, start=1)]


@cached_query("User")
def _user_badges(user_id):
    return [grant.to_dict() for grant in badge_store.list_user_grants(user_id)]


@bp.route("/leaderboard")
@limiter.limit("120 per minute")
def leaderboard():
    """Users ranked by total points"""
    max_limit = current_app.config.get("LEADERBOARD_MAX_LIMIT", 500)
    limit = request.args.get("limit", 100, type=int)
    limit = min(max(limit, 1), max_limit)
    return jsonify({"leaderboard": _leaderboard(limit)})


@bp.route("/results/<int:race_id>")
@limiter.limit("120 per minute")
def race_results(race_id):
    """Per-category breakdown of one user's prediction for a race"""
    user_id = request.args.get("user_id", type=int)
    if user_id is None:
        raise ValidationError("user_id is required", field="user_id")

    race = race_store.require_event(race_id)
    result = result_store.get_result(race_id)

    rows = Prediction.query.filter_by(race_id=race_id, user_id=user_id).all()
    prediction = partition(rows).authoritative.get(user_id)
    if prediction is None:
        raise NotFoundError("Prediction for user", user_id)

    # Without a published result every category reads as pending
    card = score_prediction(prediction, result)

    data = {
        "race": race.to_dict(),
        "published": result is not None,
        "prediction_id": prediction.id,
        "user_id": user_id,
        "score": prediction.score,
        "scored_at": prediction.scored_at.isoformat() if prediction.scored_at else None,
    }
    data.update(card.to_dict())
    return jsonify(data)


@bp.route("/users/<int:user_id>/badges")
@limiter.limit("120 per minute")
def user_badges(user_id):
    user = User.query.get_or_404(user_id)
    return jsonify(
        {
            "user_id": user.id,
            "perfect_slates": user.perfect_slates,
            "badges": _user_badges(user_id),
        }
    )
