"""
Streak Aggregator

Applies one scoring event to one user's streak aggregate. Void outcomes
never touch the aggregate; a correct pick extends the current streak (and
the longest streak when it overtakes it); an incorrect pick resets the
current streak to zero. Each event is applied at most once per
(user, round, question) through the ScoredPick marker written in the same
transaction as the counters.
"""

import logging

from streakr.models.pick import PICK_SELECTIONS
from streakr.services.stores import AggregateStore, ScoringKey, StreakSnapshot
from streakr.utils.errors import InvalidInput

logger = logging.getLogger(__name__)

APPLIED = "applied"
SKIPPED = "skipped"
VOID = "void"

_OUTCOME_ALIASES = {
    "yes": "yes",
    "y": "yes",
    "correct": "yes",
    "win": "yes",
    "winner": "yes",
    "no": "no",
    "n": "no",
    "wrong": "no",
    "loss": "no",
    "loser": "no",
    "void": "void",
    "cancelled": "void",
    "canceled": "void",
}


def normalise_outcome(value):
    """Map loose outcome spellings onto yes/no/void; None when unrecognised"""
    if not isinstance(value, str):
        return None
    return _OUTCOME_ALIASES.get(value.strip().lower())


def next_streak(current, longest, correct):
    """Return the (current, longest) pair after one scored pick"""
    if correct:
        current += 1
        longest = max(longest, current)
    else:
        current = 0
    return current, longest


class StreakAggregator:
    def __init__(self, store=None):
        self.store = store or AggregateStore()

    def apply_outcome(self, user_id, selection, outcome, round_number, question_id):
        """
        Score ``selection`` against ``outcome`` for ``user_id``.

        Returns "void" when the outcome is void (nothing written), "skipped"
        when this question was already scored for the user or the user spent
        a Panic on it, otherwise "applied". Store failures propagate to the
        caller.
        """
        resolved = normalise_outcome(outcome)
        if resolved is None:
            raise InvalidInput(f"Unknown outcome: {outcome!r}")
        if resolved == VOID:
            return VOID
        if selection not in PICK_SELECTIONS:
            raise InvalidInput(f"Unknown pick selection: {selection!r}")

        correct = selection == resolved

        def update(snapshot):
            snapshot = snapshot or StreakSnapshot(0, 0, 0)
            current, longest = next_streak(snapshot.current, snapshot.longest, correct)
            total_wins = snapshot.total_wins + (1 if correct else 0)
            return StreakSnapshot(current, longest, total_wins)

        guard = ScoringKey(round_number, question_id, selection, resolved)
        updated = self.store.transaction(user_id, update, guard=guard)

        if updated is None:
            logger.debug(
                f"User {user_id} already scored for {question_id} (round {round_number})"
            )
            return SKIPPED

        logger.debug(
            f"User {user_id} {'correct' if correct else 'incorrect'} on {question_id}: "
            f"current={updated.current} longest={updated.longest}"
        )
        return APPLIED
