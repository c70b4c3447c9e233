"""
Store adapters used by the settlement workflow

The settlement engine and streak aggregator only need a handful of logical
operations from the database: point lookups and merge-writes on questions,
an equality scan of picks by question, and a per-user transactional
read-modify-write on the streak aggregate. These classes provide exactly
that on top of Flask-SQLAlchemy so the services can be exercised against
in-memory stand-ins in tests.
"""

import logging
import time
from collections import namedtuple

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from streakr import db
from streakr.models import (
    FreeKickUse,
    PanicUse,
    Pick,
    Question,
    Round,
    ScoredPick,
    StreakAggregate,
)
from streakr.models.pick import PICK_SELECTIONS
from streakr.utils.errors import (
    ConcurrentAggregateConflict,
    InvalidInput,
    PowerUpUnavailable,
    StreakrError,
)

logger = logging.getLogger(__name__)

PickRef = namedtuple("PickRef", ["user_id", "selection"])
StreakSnapshot = namedtuple("StreakSnapshot", ["current", "longest", "total_wins"])
ScoringKey = namedtuple(
    "ScoringKey", ["round_number", "question_id", "selection", "outcome"]
)

# Lock/serialization failures worth retrying; anything else propagates
_CONTENTION_MARKERS = (
    "database is locked",
    "deadlock",
    "could not serialize",
    "lock timeout",
)


def _is_contention(error):
    if isinstance(error, (StaleDataError, IntegrityError)):
        return True
    if isinstance(error, OperationalError):
        message = str(error).lower()
        return any(marker in message for marker in _CONTENTION_MARKERS)
    return False


class QuestionStore:
    """Point lookups and last-write-wins merges on question documents"""

    def __init__(self, season):
        self.season = season

    def get(self, round_number, question_id):
        return Question.lookup(self.season, round_number, question_id)

    def round_exists(self, round_number):
        return Round.get(self.season, round_number) is not None

    def upsert_merge(self, round_number, question_id, fields):
        """
        Merge ``fields`` onto the question, creating it if absent.

        Keys not present in ``fields`` are left untouched; a key given as
        None clears the column. Commits immediately.
        """
        question = self.get(round_number, question_id)
        if question is None:
            question = Question(
                season=self.season,
                round_number=round_number,
                question_id=question_id,
                status="open",
            )
            db.session.add(question)

        for key, value in fields.items():
            setattr(question, key, value)

        db.session.commit()
        return question


class PickStore:
    """Equality-filtered scan of picks by question"""

    def find_by_question(self, round_number, question_id):
        rows = (
            db.session.query(Pick.user_id, Pick.selection)
            .filter(Pick.round_number == round_number, Pick.question_id == question_id)
            .all()
        )
        return [
            PickRef(user_id, selection)
            for user_id, selection in rows
            if selection in PICK_SELECTIONS
        ]


class AggregateStore:
    """
    Per-user transactional read-modify-write of streak aggregates.

    ``transaction(user_id, fn, guard)`` reads the aggregate with a row lock,
    passes a StreakSnapshot (or None when the user has none yet) to ``fn``
    and writes back the snapshot it returns, all in one database
    transaction. When ``guard`` is given the ScoredPick marker is checked
    and inserted in that same transaction; an existing marker, or a Panic
    the user spent on that question, short-circuits the update and
    ``transaction`` returns None.
    """

    def __init__(self, max_retries=5, backoff_seconds=0.05):
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds

    def get(self, user_id):
        aggregate = db.session.get(StreakAggregate, user_id)
        if aggregate is None:
            return None
        return StreakSnapshot(
            aggregate.current_streak, aggregate.longest_streak, aggregate.total_wins
        )

    def transaction(self, user_id, fn, guard=None):
        return self._with_retries(user_id, lambda: self._run_once(user_id, fn, guard))

    def restore(self, user_id, season, round_number, game_id, restore_to):
        """
        Spend the user's Golden Free Kick: set the current streak back to
        ``restore_to`` and record the use, in one transaction.

        ``restore_to`` must be above the current streak and no higher than
        the longest streak, so ``longest >= current`` keeps holding.
        """
        return self._with_retries(
            user_id,
            lambda: self._restore_once(user_id, season, round_number, game_id, restore_to),
        )

    def _with_retries(self, user_id, operation):
        for attempt in range(1, self.max_retries + 1):
            try:
                return operation()
            except (StaleDataError, IntegrityError, OperationalError) as e:
                db.session.rollback()
                if not _is_contention(e):
                    raise
                logger.debug(
                    f"Aggregate contention for user {user_id} "
                    f"(attempt {attempt}/{self.max_retries}): {e}"
                )
                if attempt < self.max_retries:
                    time.sleep(self.backoff_seconds * (2 ** (attempt - 1)))

        raise ConcurrentAggregateConflict(user_id, self.max_retries)

    def _run_once(self, user_id, fn, guard):
        if guard is not None:
            already_scored = (
                db.session.query(ScoredPick.id)
                .filter_by(
                    user_id=user_id,
                    round_number=guard.round_number,
                    question_id=guard.question_id,
                )
                .first()
            )
            if already_scored or PanicUse.voids(
                user_id, guard.round_number, guard.question_id
            ):
                db.session.rollback()
                return None

        aggregate = (
            db.session.query(StreakAggregate)
            .filter_by(user_id=user_id)
            .with_for_update()
            .first()
        )
        snapshot = None
        if aggregate is not None:
            snapshot = StreakSnapshot(
                aggregate.current_streak,
                aggregate.longest_streak,
                aggregate.total_wins,
            )

        updated = fn(snapshot)

        if aggregate is None:
            aggregate = StreakAggregate(user_id=user_id)
            db.session.add(aggregate)

        aggregate.current_streak = updated.current
        aggregate.longest_streak = updated.longest
        aggregate.total_wins = updated.total_wins

        if guard is not None:
            db.session.add(
                ScoredPick(
                    user_id=user_id,
                    round_number=guard.round_number,
                    question_id=guard.question_id,
                    selection=guard.selection,
                    outcome=guard.outcome,
                    is_correct=guard.selection == guard.outcome,
                )
            )

        db.session.commit()
        return updated

    def _restore_once(self, user_id, season, round_number, game_id, restore_to):
        try:
            used = FreeKickUse.for_season(user_id, season)
            if used is not None:
                raise PowerUpUnavailable(
                    "Golden Free Kick already used this season",
                    usedRound=used.round_number,
                    usedGameId=used.game_id,
                )

            aggregate = (
                db.session.query(StreakAggregate)
                .filter_by(user_id=user_id)
                .with_for_update()
                .first()
            )
            current = aggregate.current_streak if aggregate else 0
            longest = aggregate.longest_streak if aggregate else 0
            if restore_to > longest:
                raise InvalidInput(
                    f"restoreStreakTo cannot exceed the longest streak ({longest})"
                )
            if restore_to <= current:
                raise InvalidInput(
                    f"restoreStreakTo must be above the current streak ({current})"
                )
        except StreakrError:
            db.session.rollback()
            raise

        aggregate.current_streak = restore_to
        db.session.add(
            FreeKickUse(
                user_id=user_id,
                season=season,
                round_number=round_number,
                game_id=game_id,
                restored_from=current,
                restored_to=restore_to,
            )
        )
        db.session.commit()
        return StreakSnapshot(restore_to, aggregate.longest_streak, aggregate.total_wins)
