import logging

from flask import current_app, g, jsonify, request

from streakr import db
from streakr.models import AdminAction, Pick, Question, QuestionComment, Round
from streakr.routes.admin import bp
from streakr.services.lock_service import auto_sync_locks, set_game_lock
from streakr.services.settlement_service import settlement_service
from streakr.utils.cache_utils import CacheManager
from streakr.utils.decorators import (
    add_security_headers,
    get_json_body,
    int_arg,
    require_admin,
)
from streakr.utils.errors import InvalidInput, NotFound

logger = logging.getLogger(__name__)


@bp.route("/settlement", methods=["POST"])
@require_admin
@add_security_headers
def settle_question():
    """Lock, reopen or settle a question and score its picks"""
    data = get_json_body()
    result = settlement_service.settle(
        data.get("roundNumber"),
        data.get("questionId"),
        data.get("action"),
        admin_user_id=g.admin_user_id,
    )
    return jsonify(result.to_dict())


@bp.route("/game-lock", methods=["POST"])
@require_admin
@add_security_headers
def game_lock():
    data = get_json_body()
    game = set_game_lock(
        data.get("gameId"),
        data.get("isUnlockedForPicks"),
        round_number=data.get("roundNumber"),
        admin_user_id=g.admin_user_id,
    )
    return jsonify(
        {
            "ok": True,
            "gameId": game.id,
            "roundNumber": game.round_number,
            "isUnlockedForPicks": bool(game.is_unlocked_for_picks),
        }
    )


@bp.route("/locks/auto-sync", methods=["POST"])
@require_admin
@add_security_headers
def locks_auto_sync():
    data = get_json_body()
    season = data.get("season", current_app.config["CURRENT_SEASON"])
    return jsonify(
        auto_sync_locks(season, data.get("roundNumber"), admin_user_id=g.admin_user_id)
    )


@bp.route("/rounds/current", methods=["POST"])
@require_admin
def set_current_round():
    data = get_json_body()
    round_number = data.get("roundNumber")
    if isinstance(round_number, bool) or not isinstance(round_number, int):
        raise InvalidInput("roundNumber is required")

    target = Round.get(current_app.config["CURRENT_SEASON"], round_number)
    if target is None:
        raise NotFound(f"Round {round_number} not found")

    target.make_current()
    AdminAction.log_action(
        action_type="set_current_round",
        description=f"Current round set to {target.code}",
        admin_user_id=g.admin_user_id,
        round_number=round_number,
    )
    db.session.commit()
    return jsonify({"ok": True, "round": target.to_dict()})


@bp.route("/questions")
@require_admin
@add_security_headers
def list_questions():
    """Questions for a round with status, outcome and pick split"""
    round_number = int_arg("round")
    if round_number is None:
        raise InvalidInput("round is required")

    questions = (
        Question.query.filter_by(
            season=current_app.config["CURRENT_SEASON"], round_number=round_number
        )
        .order_by(Question.game_id, Question.quarter, Question.question_id)
        .all()
    )
    stats = Pick.stats_for_round(round_number)

    payload = []
    for question in questions:
        data = question.to_dict()
        data["overrideMode"] = question.override_mode
        data["picks"] = stats.get(question.question_id, {"yes": 0, "no": 0, "total": 0})
        payload.append(data)

    return jsonify({"roundNumber": round_number, "questions": payload})


@bp.route("/actions")
@require_admin
def admin_actions():
    """Audit log, optionally narrowed to one question"""
    round_number = int_arg("round")
    question_id = request.args.get("questionId")
    limit = min(int_arg("limit", 50), 200)

    if question_id and round_number is not None:
        actions = AdminAction.recent_for_question(round_number, question_id, limit=limit)
    else:
        query = AdminAction.query
        if round_number is not None:
            query = query.filter_by(round_number=round_number)
        actions = query.order_by(AdminAction.created_at.desc()).limit(limit).all()

    return jsonify({"actions": [action.to_dict() for action in actions]})


@bp.route("/comments/<int:comment_id>", methods=["DELETE"])
@require_admin
def remove_comment(comment_id):
    comment = db.session.get(QuestionComment, comment_id)
    if comment is None:
        raise NotFound("Comment not found")

    comment.is_removed = True
    AdminAction.log_action(
        action_type="remove_comment",
        description=f"Removed comment {comment.id} on {comment.question_id}",
        admin_user_id=g.admin_user_id,
        question_id=comment.question_id,
        action_metadata={"commentId": comment.id, "userId": comment.user_id},
    )
    db.session.commit()
    return jsonify({"ok": True})


@bp.route("/status")
@require_admin
def status():
    """Scheduler, Socket.IO and cache status"""
    from streakr.services.scheduler_service import scheduler_service
    from streakr.socketio_handlers import get_connection_stats

    return jsonify(
        {
            "scheduler": scheduler_service.get_status(),
            "connections": get_connection_stats(),
            "cache": CacheManager.get_cache_stats(),
        }
    )
