import logging
from datetime import datetime, timezone

from flask import current_app, jsonify, request
from flask_login import current_user, login_required
from sqlalchemy.exc import SQLAlchemyError

from streakr import db, limiter
from streakr.models import Game, PanicUse, Pick, Question, QuestionComment, Round
from streakr.models.comment import MAX_COMMENT_LENGTH
from streakr.models.pick import PICK_SELECTIONS
from streakr.models.question import infer_round_number
from streakr.routes.api import bp
from streakr.services.leaderboard_service import get_leaderboard, get_profile
from streakr.services.power_up_service import power_up_status, use_free_kick, use_panic
from streakr.socketio_handlers import broadcast_comment, broadcast_pick_update
from streakr.utils.decorators import add_security_headers, get_json_body, int_arg
from streakr.utils.errors import InvalidInput, NotFound, PickLocked
from streakr.utils.squiggle import SquiggleClient, find_game_for_id

logger = logging.getLogger(__name__)


def _season():
    return current_app.config["CURRENT_SEASON"]


def _percentages(stats):
    total = stats["total"]
    if not total:
        return 0, 0
    return round(stats["yes"] / total * 100), round(stats["no"] / total * 100)


def _resolve_round(question_id, round_number):
    """Question id prefixes win over a submitted round number"""
    inferred = infer_round_number(question_id)
    if inferred is not None:
        return inferred
    if isinstance(round_number, bool) or not isinstance(round_number, int) or round_number < 0:
        raise InvalidInput("roundNumber is required")
    return round_number


def _check_pickable(question, game):
    if not question.is_open:
        raise PickLocked(f"Question {question.question_id} is {question.status}")
    if game is not None and game.is_locked():
        raise PickLocked(f"Game {game.id} has started; picks are locked")


@bp.route("/rounds/current")
def current_round():
    current = Round.get_current(_season())
    if current is None:
        raise NotFound("No rounds have been seeded")
    return jsonify(current.to_dict())


@bp.route("/picks")
@add_security_headers
def round_picks():
    """Games and questions for a round with pick splits and the caller's picks"""
    round_number = int_arg("round")
    if round_number is None:
        current = Round.get_current(_season())
        round_number = current.round_number if current else 1

    games = (
        Game.query.filter_by(season=_season(), round_number=round_number)
        .order_by(Game.start_time, Game.id)
        .all()
    )
    questions = (
        Question.query.filter_by(season=_season(), round_number=round_number)
        .order_by(Question.game_id, Question.quarter, Question.question_id)
        .all()
    )
    stats = Pick.stats_for_round(round_number)

    user_picks = {}
    if current_user.is_authenticated:
        user_picks = {
            p.question_id: p.selection
            for p in Pick.query.filter_by(user_id=current_user.id, round_number=round_number)
        }

    questions_by_game = {}
    for question in questions:
        data = question.to_dict()
        yes_pct, no_pct = _percentages(stats.get(question.question_id, {"yes": 0, "no": 0, "total": 0}))
        data["yesPercent"] = yes_pct
        data["noPercent"] = no_pct
        data["userPick"] = user_picks.get(question.question_id)
        questions_by_game.setdefault(question.game_id, []).append(data)

    now = datetime.now(timezone.utc)
    payload = []
    for game in games:
        data = game.to_dict(questions=questions_by_game.get(game.id, []))
        data["isLocked"] = game.is_locked(now)
        for q in data["questions"]:
            q["sport"] = data["sport"]
        payload.append(data)

    return jsonify({"roundNumber": round_number, "games": payload})


@bp.route("/picks", methods=["POST"])
@login_required
@add_security_headers
def submit_pick():
    data = get_json_body()

    question_id = data.get("questionId")
    if not isinstance(question_id, str) or not question_id.strip():
        raise InvalidInput("questionId is required")
    question_id = question_id.strip()

    selection = str(data.get("pick") or "").strip().lower()
    if selection not in PICK_SELECTIONS:
        raise InvalidInput("pick must be 'yes' or 'no'")

    round_number = _resolve_round(question_id, data.get("roundNumber"))

    question = Question.lookup(_season(), round_number, question_id)
    if question is None:
        raise NotFound(f"Question {question_id} not found in round {round_number}")

    game_id = data.get("gameId") or question.game_id
    if question.game_id and game_id != question.game_id:
        raise InvalidInput(f"Question {question_id} belongs to game {question.game_id}")
    game = db.session.get(Game, game_id) if game_id else None

    _check_pickable(question, game)
    if PanicUse.voids(current_user.id, round_number, question_id):
        raise PickLocked(f"Panic was used on {question_id}; the decision is final")

    try:
        pick, created = Pick.submit(
            current_user.id, round_number, question_id, selection, game_id=game_id
        )
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Error saving pick for user {current_user.id}: {e}", exc_info=True)
        return jsonify({"error": "Failed to save pick"}), 500

    broadcast_pick_update(round_number, question_id, "created" if created else "updated")
    return jsonify({"ok": True, "created": created, "pick": pick.to_dict()}), (
        201 if created else 200
    )


@bp.route("/picks/<question_id>", methods=["DELETE"])
@login_required
@add_security_headers
def clear_pick(question_id):
    pick = Pick.query.filter_by(user_id=current_user.id, question_id=question_id).first()
    if pick is None:
        raise NotFound("No pick to clear")
    round_number = pick.round_number

    question = Question.lookup(_season(), round_number, question_id)
    if question is not None:
        game = db.session.get(Game, question.game_id) if question.game_id else None
        _check_pickable(question, game)

    try:
        db.session.delete(pick)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Error clearing pick for user {current_user.id}: {e}", exc_info=True)
        return jsonify({"error": "Failed to clear pick"}), 500

    broadcast_pick_update(round_number, question_id, "cleared")
    return jsonify({"ok": True})


@bp.route("/questions/<question_id>/stats")
def question_stats(question_id):
    round_number = infer_round_number(question_id)
    if round_number is None:
        round_number = int_arg("round")
    if round_number is None:
        raise InvalidInput("round is required for this question id")

    stats = Pick.stats_for_round(round_number).get(
        question_id, {"yes": 0, "no": 0, "total": 0}
    )
    yes_pct, no_pct = _percentages(stats)
    return jsonify({"total": stats["total"], "yesPct": yes_pct, "noPct": no_pct})


@bp.route("/panic", methods=["POST"])
@login_required
@add_security_headers
def panic():
    data = get_json_body()
    used = use_panic(
        current_user.id,
        _season(),
        data.get("roundNumber"),
        data.get("questionId"),
        game_id=data.get("gameId"),
    )
    return jsonify({"ok": True, "questionId": used.question_id, "roundNumber": used.round_number})


@bp.route("/free-kick", methods=["POST"])
@login_required
@add_security_headers
def free_kick():
    data = get_json_body()
    snapshot = use_free_kick(
        current_user.id,
        _season(),
        data.get("roundNumber"),
        data.get("gameId"),
        data.get("restoreStreakTo"),
    )
    return jsonify(
        {
            "ok": True,
            "currentStreak": snapshot.current,
            "longestStreak": snapshot.longest,
        }
    )


@bp.route("/power-ups")
@login_required
def power_ups():
    round_number = int_arg("round")
    if round_number is None:
        current = Round.get_current(_season())
        round_number = current.round_number if current else 1
    return jsonify(power_up_status(current_user.id, _season(), round_number))


@bp.route("/comments/<question_id>")
def question_comments(question_id):
    comments = QuestionComment.recent(_season(), question_id)
    return jsonify({"items": [comment.to_dict() for comment in comments]})


@bp.route("/comments/<question_id>", methods=["POST"])
@login_required
@limiter.limit("10 per minute")
@add_security_headers
def post_comment(question_id):
    data = get_json_body()
    body = data.get("body")
    if not isinstance(body, str) or not body.strip():
        raise InvalidInput("body is required")

    question = Question.query.filter_by(season=_season(), question_id=question_id).first()
    if question is None:
        raise NotFound(f"Question {question_id} not found")

    comment = QuestionComment(
        season=_season(),
        question_id=question_id,
        user_id=current_user.id,
        body=body.strip()[:MAX_COMMENT_LENGTH],
    )
    try:
        db.session.add(comment)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Error saving comment for user {current_user.id}: {e}", exc_info=True)
        return jsonify({"error": "Failed to save comment"}), 500

    broadcast_comment(question.round_number, comment.to_dict())
    return jsonify({"ok": True, "comment": comment.to_dict()}), 201


@bp.route("/leaderboard")
@add_security_headers
def leaderboard():
    scope = request.args.get("scope", "overall")
    if scope == "round":
        scope_id = int_arg("round")
        if scope_id is None:
            current = Round.get_current(_season())
            scope_id = current.round_number if current else None
    else:
        scope_id = int_arg("id")

    user_id = current_user.id if current_user.is_authenticated else None
    return jsonify(
        get_leaderboard(scope, scope_id=scope_id, user_id=user_id, limit=int_arg("limit"))
    )


@bp.route("/profile/<int:user_id>")
def profile(user_id):
    return jsonify(get_profile(user_id))


@bp.route("/squiggle/games")
def squiggle_games():
    year = int_arg("year")
    round_number = int_arg("round")
    if year is None or year < 2000:
        raise InvalidInput("year required")
    if round_number is None or not 0 <= round_number <= 40:
        raise InvalidInput("round required")

    games, cached = SquiggleClient().get_games(year, round_number)
    return jsonify({"games": games, "cached": cached})


@bp.route("/games/live-score", methods=["POST"])
def live_score():
    data = get_json_body()
    season = data.get("season")
    round_number = data.get("roundNumber")
    game_id = data.get("gameId")

    if (
        isinstance(season, bool)
        or not isinstance(season, int)
        or isinstance(round_number, bool)
        or not isinstance(round_number, int)
        or not isinstance(game_id, str)
    ):
        raise InvalidInput("season, roundNumber, gameId required")

    games, _ = SquiggleClient().get_games(season, round_number)
    # Seeded ids carry no team names; match against the fixture text too
    local_game = db.session.get(Game, game_id)
    needle = f"{game_id} {local_game.match}" if local_game else game_id
    matched = find_game_for_id(games, needle)
    if matched is None:
        raise NotFound("Game not found")

    scheduled = matched["status"] == "scheduled"
    return jsonify(
        {
            "gameId": game_id,
            "status": matched["status"],
            "homeTeam": matched["homeTeam"],
            "awayTeam": matched["awayTeam"],
            "homeScore": None if scheduled else matched["homeScore"],
            "awayScore": None if scheduled else matched["awayScore"],
            "updatedAtUtc": datetime.now(timezone.utc).isoformat(),
        }
    )
