"""
Streak power-ups

Panic: once per round a player may void their own answer on one question
before it settles. The pick is deleted and a PanicUse row is written in the
same commit; settlement then skips that player on that question, so the
streak neither grows nor resets. Never allowed on the sponsor question.

Golden Free Kick: once per season a player may restore their current
streak to an earlier value, capped at their longest streak. The restore
and the FreeKickUse record share one aggregate transaction.
"""

import logging

from flask import current_app
from sqlalchemy.exc import IntegrityError

from streakr import db, socketio
from streakr.models import FreeKickUse, Game, PanicUse, Pick, Question, ScoredPick
from streakr.models.pick import PICK_SELECTIONS
from streakr.models.question import infer_round_number
from streakr.services.stores import AggregateStore
from streakr.socketio_handlers import LIVE_NAMESPACE, broadcast_pick_update
from streakr.utils.cache_utils import invalidate_leaderboards
from streakr.utils.errors import InvalidInput, NotFound, PowerUpUnavailable

logger = logging.getLogger(__name__)


def _non_negative_int(value, name):
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise InvalidInput(f"{name} must be a number >= 0")
    return value


def _required_text(value, name):
    if not isinstance(value, str) or not value.strip():
        raise InvalidInput(f"{name} is required")
    return value.strip()


def use_panic(user_id, season, round_number, question_id, game_id=None):
    """Void the user's answer on ``question_id``; returns the PanicUse row"""
    question_id = _required_text(question_id, "questionId")
    inferred = infer_round_number(question_id)
    round_number = (
        inferred if inferred is not None else _non_negative_int(round_number, "roundNumber")
    )

    question = Question.lookup(season, round_number, question_id)
    if question is None:
        raise NotFound(f"Question {question_id} not found in round {round_number}")
    if game_id and question.game_id and game_id != question.game_id:
        raise InvalidInput(f"Question {question_id} belongs to game {question.game_id}")
    if question.is_sponsor_question:
        raise PowerUpUnavailable("Panic is not allowed on the sponsor question.")
    if question.status in ("final", "void"):
        raise PowerUpUnavailable(f"Question {question_id} is already settled.")

    existing = PanicUse.for_round(user_id, season, round_number)
    if existing is not None:
        raise PowerUpUnavailable(
            "Panic already used for this round.", usedQuestionId=existing.question_id
        )

    pick = Pick.query.filter_by(
        user_id=user_id, round_number=round_number, question_id=question_id
    ).first()
    if pick is None or pick.selection not in PICK_SELECTIONS:
        raise PowerUpUnavailable("Panic requires a question already answered.")

    already_scored = ScoredPick.query.filter_by(
        user_id=user_id, round_number=round_number, question_id=question_id
    ).first()
    if already_scored is not None:
        raise PowerUpUnavailable(f"Question {question_id} has already been scored.")

    panic = PanicUse(
        user_id=user_id,
        season=season,
        round_number=round_number,
        question_id=question_id,
        game_id=question.game_id or game_id,
        previous_selection=pick.selection,
    )
    db.session.add(panic)
    db.session.delete(pick)

    try:
        db.session.commit()
    except IntegrityError:
        # Lost a race with another Panic for the same round
        db.session.rollback()
        existing = PanicUse.for_round(user_id, season, round_number)
        raise PowerUpUnavailable(
            "Panic already used for this round.",
            usedQuestionId=existing.question_id if existing else None,
        ) from None

    logger.info(f"User {user_id} used Panic on {question_id} (round {round_number})")
    broadcast_pick_update(round_number, question_id, "panicked")
    return panic


def use_free_kick(user_id, season, round_number, game_id, restore_to):
    """Restore the user's current streak; returns the new StreakSnapshot"""
    round_number = _non_negative_int(round_number, "roundNumber")
    game_id = _required_text(game_id, "gameId")
    restore_to = _non_negative_int(restore_to, "restoreStreakTo")

    game = db.session.get(Game, game_id)
    if game is None:
        raise NotFound(f"Game {game_id} not found")
    if game.round_number != round_number:
        raise InvalidInput(f"Game {game_id} is not in round {round_number}")

    store = AggregateStore(max_retries=current_app.config["SETTLEMENT_MAX_RETRIES"])
    snapshot = store.restore(user_id, season, round_number, game_id, restore_to)

    logger.info(
        f"User {user_id} used the Golden Free Kick in {game_id}: streak restored to {restore_to}"
    )
    invalidate_leaderboards()
    try:
        socketio.emit(
            "streak_update",
            {
                "userId": user_id,
                "currentStreak": snapshot.current,
                "longestStreak": snapshot.longest,
                "totalWins": snapshot.total_wins,
            },
            namespace=LIVE_NAMESPACE,
            to=f"user_{user_id}",
        )
    except Exception as e:
        logger.error(f"Error broadcasting free kick streak update: {e}")
    return snapshot


def power_up_status(user_id, season, round_number):
    panic = PanicUse.for_round(user_id, season, round_number)
    free_kick = FreeKickUse.for_season(user_id, season)
    return {
        "season": season,
        "roundNumber": round_number,
        "panic": panic.to_dict() if panic else None,
        "freeKick": free_kick.to_dict() if free_kick else None,
    }
