"""Streak aggregator rules, run against an in-memory aggregate store"""

import random

import pytest

from streakr.services.stores import StreakSnapshot
from streakr.services.streak_service import (
    APPLIED,
    SKIPPED,
    VOID,
    StreakAggregator,
    next_streak,
    normalise_outcome,
)
from streakr.utils.errors import InvalidInput


class MemoryAggregateStore:
    def __init__(self):
        self.rows = {}
        self.scored = set()
        self.transactions = 0

    def get(self, user_id):
        return self.rows.get(user_id)

    def transaction(self, user_id, fn, guard=None):
        self.transactions += 1
        if guard is not None:
            key = (user_id, guard.round_number, guard.question_id)
            if key in self.scored:
                return None
        updated = fn(self.rows.get(user_id))
        self.rows[user_id] = updated
        if guard is not None:
            self.scored.add(key)
        return updated


@pytest.fixture
def store():
    return MemoryAggregateStore()


@pytest.fixture
def aggregator(store):
    return StreakAggregator(store)


def test_next_streak_extends_and_resets():
    assert next_streak(0, 0, True) == (1, 1)
    assert next_streak(3, 5, True) == (4, 5)
    assert next_streak(5, 5, True) == (6, 6)
    assert next_streak(4, 7, False) == (0, 7)


def test_normalise_outcome_aliases():
    assert normalise_outcome(" YES ") == "yes"
    assert normalise_outcome("wrong") == "no"
    assert normalise_outcome("cancelled") == "void"
    assert normalise_outcome("maybe") is None
    assert normalise_outcome(None) is None


def test_first_correct_pick_creates_aggregate(aggregator, store):
    status = aggregator.apply_outcome(7, "yes", "yes", round_number=1, question_id="R1-G1-Q1")

    assert status == APPLIED
    assert store.get(7) == StreakSnapshot(1, 1, 1)


def test_incorrect_pick_resets_current_only(aggregator, store):
    store.rows[7] = StreakSnapshot(4, 6, 10)

    aggregator.apply_outcome(7, "no", "yes", round_number=2, question_id="R2-G1-Q1")

    assert store.get(7) == StreakSnapshot(0, 6, 10)


def test_correct_pick_overtakes_longest(aggregator, store):
    store.rows[7] = StreakSnapshot(3, 3, 3)

    aggregator.apply_outcome(7, "no", "no", round_number=2, question_id="R2-G1-Q2")

    assert store.get(7) == StreakSnapshot(4, 4, 4)


def test_void_outcome_never_touches_store(aggregator, store):
    store.rows[7] = StreakSnapshot(2, 5, 2)

    assert aggregator.apply_outcome(7, "yes", "void", round_number=1, question_id="R1-G1-Q1") == VOID
    assert store.transactions == 0
    assert store.get(7) == StreakSnapshot(2, 5, 2)


def test_same_question_is_scored_once(aggregator, store):
    first = aggregator.apply_outcome(7, "yes", "yes", round_number=1, question_id="R1-G1-Q1")
    second = aggregator.apply_outcome(7, "yes", "yes", round_number=1, question_id="R1-G1-Q1")

    assert (first, second) == (APPLIED, SKIPPED)
    assert store.get(7) == StreakSnapshot(1, 1, 1)


def test_sequence_of_events(aggregator, store):
    events = [("yes", "yes"), ("no", "no"), ("yes", "no"), ("yes", "yes")]
    for i, (selection, outcome) in enumerate(events, start=1):
        aggregator.apply_outcome(7, selection, outcome, round_number=1, question_id=f"R1-G1-Q{i}")

    assert store.get(7) == StreakSnapshot(1, 2, 3)


@pytest.mark.parametrize(
    "selection,outcome",
    [("yes", "sometimes"), ("maybe", "yes"), ("yes", None)],
)
def test_invalid_inputs_are_rejected(aggregator, store, selection, outcome):
    with pytest.raises(InvalidInput):
        aggregator.apply_outcome(7, selection, outcome, round_number=1, question_id="R1-G1-Q1")
    assert store.transactions == 0


def test_store_errors_propagate(store):
    class BrokenStore(MemoryAggregateStore):
        def transaction(self, user_id, fn, guard=None):
            raise RuntimeError("store unavailable")

    with pytest.raises(RuntimeError):
        StreakAggregator(BrokenStore()).apply_outcome(
            7, "yes", "yes", round_number=1, question_id="R1-G1-Q1"
        )


@pytest.mark.parametrize("seed", [1, 7, 42, 2026])
def test_random_event_sequences_keep_streak_invariants(seed):
    rng = random.Random(seed)
    store = MemoryAggregateStore()
    aggregator = StreakAggregator(store)
    run = 0

    for i in range(200):
        before = store.get(7) or StreakSnapshot(0, 0, 0)
        selection = rng.choice(["yes", "no"])
        outcome = rng.choice(["yes", "no", "void"])
        question_id = f"R{i // 10}-G1-Q{rng.randint(1, 12)}"
        repeat = (7, i // 10, question_id) in store.scored

        status = aggregator.apply_outcome(7, selection, outcome, i // 10, question_id)
        after = store.get(7) or StreakSnapshot(0, 0, 0)

        assert after.longest >= after.current >= 0
        assert after.longest >= before.longest
        if outcome == "void" or repeat:
            assert status in (VOID, SKIPPED)
            assert after == before
        else:
            run = run + 1 if selection == outcome else 0
            assert after.current == run
