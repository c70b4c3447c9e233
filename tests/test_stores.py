"""SQLAlchemy-backed store adapters"""

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from streakr import db
from streakr.models import Question, ScoredPick, StreakAggregate
from streakr.services import stores
from streakr.services.stores import (
    AggregateStore,
    PickStore,
    QuestionStore,
    ScoringKey,
    StreakSnapshot,
)
from streakr.services.streak_service import APPLIED, SKIPPED, StreakAggregator
from streakr.utils.errors import ConcurrentAggregateConflict

from .conftest import SEASON


def _bump(snapshot):
    snapshot = snapshot or StreakSnapshot(0, 0, 0)
    return StreakSnapshot(snapshot.current + 1, max(snapshot.longest, snapshot.current + 1), snapshot.total_wins + 1)


def test_question_store_merge_keeps_untouched_fields(app, make_question):
    make_question("R1-G1-Q1", prompt="Will Carlton kick 3 goals?", quarter=2)
    store = QuestionStore(SEASON)

    store.upsert_merge(1, "R1-G1-Q1", {"status": "final", "outcome": "yes"})

    question = store.get(1, "R1-G1-Q1")
    assert question.status == "final"
    assert question.outcome == "yes"
    assert question.prompt == "Will Carlton kick 3 goals?"
    assert question.quarter == 2


def test_question_store_merge_creates_missing_question(app):
    store = QuestionStore(SEASON)

    store.upsert_merge(4, "custom-q", {"status": "pending", "outcome": None})

    question = Question.lookup(SEASON, 4, "custom-q")
    assert question is not None
    assert question.status == "pending"
    assert question.outcome is None
    assert not store.round_exists(4)


def test_pick_store_filters_by_round_and_question(app, make_user, make_pick):
    alice = make_user("alice")
    bob = make_user("bob")
    make_pick(alice, "R1-G1-Q1", "yes")
    make_pick(bob, "R1-G1-Q1", "no")
    make_pick(bob, "R1-G1-Q2", "yes")

    refs = PickStore().find_by_question(1, "R1-G1-Q1")

    assert sorted(refs) == sorted([(alice.id, "yes"), (bob.id, "no")])
    assert PickStore().find_by_question(2, "R1-G1-Q1") == []


def test_aggregate_transaction_writes_marker_once(app, make_user):
    alice = make_user("alice")
    store = AggregateStore()
    guard = ScoringKey(1, "R1-G1-Q1", "yes", "yes")

    assert store.transaction(alice.id, _bump, guard=guard) == StreakSnapshot(1, 1, 1)
    assert store.transaction(alice.id, _bump, guard=guard) is None

    assert store.get(alice.id) == StreakSnapshot(1, 1, 1)
    markers = ScoredPick.query.filter_by(user_id=alice.id).all()
    assert len(markers) == 1
    assert markers[0].is_correct is True


def test_aggregator_against_database(app, make_user):
    alice = make_user("alice")
    aggregator = StreakAggregator(AggregateStore())

    assert aggregator.apply_outcome(alice.id, "yes", "yes", 1, "R1-G1-Q1") == APPLIED
    assert aggregator.apply_outcome(alice.id, "no", "no", 1, "R1-G1-Q2") == APPLIED
    assert aggregator.apply_outcome(alice.id, "no", "no", 1, "R1-G1-Q2") == SKIPPED
    assert aggregator.apply_outcome(alice.id, "yes", "no", 1, "R1-G2-Q1") == APPLIED

    aggregate = db.session.get(StreakAggregate, alice.id)
    assert (aggregate.current_streak, aggregate.longest_streak, aggregate.total_wins) == (0, 2, 2)


def test_contention_is_retried(app, make_user, monkeypatch):
    alice = make_user("alice")
    store = AggregateStore(max_retries=3, backoff_seconds=0)
    real_run_once = store._run_once
    calls = {"n": 0}

    def flaky(user_id, fn, guard):
        calls["n"] += 1
        if calls["n"] == 1:
            raise StaleDataError("version mismatch")
        return real_run_once(user_id, fn, guard)

    monkeypatch.setattr(store, "_run_once", flaky)

    assert store.transaction(alice.id, _bump) == StreakSnapshot(1, 1, 1)
    assert calls["n"] == 2


def test_contention_exhausts_retries(app, make_user, monkeypatch):
    alice = make_user("alice")
    store = AggregateStore(max_retries=2, backoff_seconds=0)

    def always_locked(user_id, fn, guard):
        raise OperationalError("UPDATE", {}, Exception("database is locked"))

    monkeypatch.setattr(store, "_run_once", always_locked)

    with pytest.raises(ConcurrentAggregateConflict) as excinfo:
        store.transaction(alice.id, _bump)
    assert excinfo.value.user_id == alice.id
    assert excinfo.value.attempts == 2


def test_non_contention_errors_propagate(app, make_user, monkeypatch):
    alice = make_user("alice")
    store = AggregateStore(max_retries=3, backoff_seconds=0)

    def disk_error(user_id, fn, guard):
        raise OperationalError("UPDATE", {}, Exception("disk I/O error"))

    monkeypatch.setattr(store, "_run_once", disk_error)

    with pytest.raises(OperationalError):
        store.transaction(alice.id, _bump)
    assert not stores._is_contention(OperationalError("x", {}, Exception("disk I/O error")))
