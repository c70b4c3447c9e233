"""
Pick locking

Two ways questions stop accepting picks besides manual settlement:
- per-game admin override (``Game.is_unlocked_for_picks``) that keeps a game
  open past its scheduled start
- the automatic lock sync, which moves every open question of a round to
  ``pending`` once the live score feed reports any game of that round as
  live or final. Questions under a manual override are left alone.
"""

import logging

from sqlalchemy.exc import SQLAlchemyError

from streakr import db, socketio
from streakr.models import AdminAction, Game, Question
from streakr.utils.errors import InvalidInput, NotFound
from streakr.utils.performance import timer
from streakr.utils.squiggle import SquiggleClient

logger = logging.getLogger(__name__)


def set_game_lock(game_id, is_unlocked_for_picks, round_number=None, admin_user_id=None):
    """Toggle the admin unlock override for a game"""
    if not isinstance(game_id, str) or not game_id.strip():
        raise InvalidInput("Missing or invalid gameId")

    game = db.session.get(Game, game_id.strip())
    if game is None:
        raise NotFound(f"Game {game_id} not found")

    if isinstance(round_number, int) and round_number >= 0 and round_number != game.round_number:
        raise InvalidInput(f"Game {game.id} is not in round {round_number}")

    game.is_unlocked_for_picks = bool(is_unlocked_for_picks)
    AdminAction.log_action(
        action_type="game_lock",
        description=(
            f"{'Unlocked' if game.is_unlocked_for_picks else 'Locked'} picks for {game.id}"
        ),
        admin_user_id=admin_user_id,
        round_number=game.round_number,
        game_id=game.id,
        action_metadata={"isUnlockedForPicks": game.is_unlocked_for_picks},
    )
    db.session.commit()

    logger.info(
        f"Game {game.id} isUnlockedForPicks={game.is_unlocked_for_picks} "
        f"(admin {admin_user_id or 'token'})"
    )
    return game


@timer
def auto_sync_locks(season, round_number, client=None, admin_user_id=None):
    """
    Lock a round's open questions once any of its games is underway.

    Returns a summary dict ``{ok, locked, roundNumber, message?}``.
    """
    if isinstance(season, bool) or not isinstance(season, int):
        raise InvalidInput("season and roundNumber required")
    if isinstance(round_number, bool) or not isinstance(round_number, int):
        raise InvalidInput("season and roundNumber required")

    client = client or SquiggleClient()
    if not client.round_has_started(season, round_number):
        return {
            "ok": True,
            "locked": 0,
            "roundNumber": round_number,
            "message": "No games have started yet",
        }

    questions = Question.query.filter(
        Question.season == season,
        Question.round_number == round_number,
        Question.status == "open",
    ).all()

    locked = []
    for question in questions:
        # Manual override always wins
        if question.override_mode == "manual":
            continue
        question.status = "pending"
        question.override_mode = "auto"
        locked.append(question.question_id)

    if not locked:
        return {"ok": True, "locked": 0, "roundNumber": round_number}

    try:
        AdminAction.log_action(
            action_type="lock_sync",
            description=f"Auto-locked {len(locked)} question(s) in round {round_number}",
            admin_user_id=admin_user_id,
            round_number=round_number,
            action_metadata={"questionIds": locked},
        )
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Lock sync failed for round {round_number}: {e}", exc_info=True)
        raise

    socketio.emit(
        "questions_locked",
        {"roundNumber": round_number, "questionIds": locked},
        namespace="/live",
        to=f"round_{round_number}",
    )
    logger.info(f"Auto-locked {len(locked)} question(s) in {season} round {round_number}")
    return {"ok": True, "locked": len(locked), "roundNumber": round_number}
