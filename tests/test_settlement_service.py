"""Settlement engine: status writes, streak fan-out and retry safety"""

import threading

import pytest
from sqlalchemy.exc import OperationalError

from streakr import db
from streakr.models import AdminAction, Pick, Question, ScoredPick, StreakAggregate
from streakr.services.settlement_service import (
    ACTION_EFFECTS,
    SettlementAction,
    SettlementService,
)
from streakr.services.stores import PickRef
from streakr.services.streak_service import APPLIED
from streakr.utils.errors import InvalidInput, NotFound

from .conftest import SEASON

QID = "R1-G1-Q1"


def _streak(user):
    aggregate = db.session.get(StreakAggregate, user.id)
    if aggregate is None:
        return (0, 0)
    return (aggregate.current_streak, aggregate.longest_streak)


@pytest.fixture
def service():
    return SettlementService()


@pytest.fixture
def alice_and_bob(app, make_user, make_question, make_pick):
    alice = make_user("alice")
    bob = make_user("bob")
    make_question(QID)
    make_pick(alice, QID, "yes")
    make_pick(bob, QID, "no")
    return alice, bob


def _seed_streak(user, current, longest):
    db.session.add(
        StreakAggregate(user_id=user.id, current_streak=current, longest_streak=longest, total_wins=longest)
    )
    db.session.commit()


def test_action_parse():
    assert SettlementAction.parse("final_yes") is SettlementAction.FINAL_YES
    assert SettlementAction.parse(" LOCK ") is SettlementAction.LOCK
    assert SettlementAction.parse(SettlementAction.VOID) is SettlementAction.VOID
    for bad in ("", None, "settle", 3):
        with pytest.raises(InvalidInput):
            SettlementAction.parse(bad)


def test_every_action_has_an_effect():
    assert set(ACTION_EFFECTS) == set(SettlementAction)
    for status, outcome in ACTION_EFFECTS.values():
        # outcome is set exactly when the status is terminal
        assert (outcome is not None) == (status in ("final", "void"))


def test_final_yes_scores_every_pick(service, alice_and_bob):
    alice, bob = alice_and_bob

    result = service.settle(1, QID, "final_yes")

    assert _streak(alice) == (1, 1)
    assert _streak(bob) == (0, 0)
    assert sorted(result.applied) == sorted([alice.id, bob.id])
    assert result.failed == []

    question = Question.lookup(SEASON, 1, QID)
    assert (question.status, question.outcome) == ("final", "yes")
    assert question.override_mode == "manual"


def test_final_void_leaves_streaks_alone(service, alice_and_bob):
    alice, bob = alice_and_bob

    result = service.settle(1, QID, "final_void")

    assert _streak(alice) == (0, 0)
    assert _streak(bob) == (0, 0)
    assert result.applied == []
    assert ScoredPick.query.count() == 0
    question = Question.lookup(SEASON, 1, QID)
    assert (question.status, question.outcome) == ("void", "void")


def test_lock_sets_pending_without_scoring(service, alice_and_bob):
    result = service.settle(1, QID, "lock")

    question = Question.lookup(SEASON, 1, QID)
    assert (question.status, question.outcome) == ("pending", None)
    assert result.applied == []
    assert StreakAggregate.query.count() == 0


def test_correct_pick_extends_existing_streak(service, alice_and_bob):
    alice, _ = alice_and_bob
    _seed_streak(alice, 4, 6)
    Pick.query.filter_by(user_id=alice.id).update({"selection": "no"})
    db.session.commit()

    service.settle(1, QID, "final_no")

    assert _streak(alice) == (5, 6)


def test_incorrect_pick_resets_current(service, alice_and_bob):
    alice, _ = alice_and_bob
    _seed_streak(alice, 4, 6)

    service.settle(1, QID, "final_no")

    assert _streak(alice) == (0, 6)


def test_resettling_is_idempotent(service, alice_and_bob):
    alice, bob = alice_and_bob

    service.settle(1, QID, "final_yes")
    second = service.settle(1, QID, "final_yes")

    assert _streak(alice) == (1, 1)
    assert _streak(bob) == (0, 0)
    assert second.applied == []
    assert sorted(second.skipped) == sorted([alice.id, bob.id])


def test_reopen_clears_outcome_but_keeps_streaks(service, alice_and_bob):
    alice, _ = alice_and_bob
    service.settle(1, QID, "final_yes")

    service.settle(1, QID, "reopen")

    question = Question.lookup(SEASON, 1, QID)
    assert (question.status, question.outcome) == ("open", None)
    assert _streak(alice) == (1, 1)


def test_question_with_no_picks(service, make_question):
    make_question(QID)

    result = service.settle(1, QID, "final_yes")

    assert result.to_dict()["scored"] == {"applied": 0, "skipped": 0, "failed": 0}
    assert StreakAggregate.query.count() == 0


@pytest.mark.parametrize(
    "round_number,question_id,action",
    [
        (None, QID, "lock"),
        ("1", QID, "lock"),
        (True, QID, "lock"),
        (-1, "custom", "lock"),
        (1, "", "lock"),
        (1, None, "lock"),
        (1, QID, "finalise"),
    ],
)
def test_invalid_input_is_rejected_before_writes(service, app, round_number, question_id, action):
    with pytest.raises(InvalidInput):
        service.settle(round_number, question_id, action)
    assert Question.query.count() == 0
    assert AdminAction.query.count() == 0


def test_question_id_prefix_overrides_body_round(service, make_question):
    make_question("R3-G2-Q1", round_number=3)

    result = service.settle(9, "R3-G2-Q1", "lock")

    assert result.round_number == 3
    assert result.to_dict()["roundNumberFromBody"] == 9
    assert result.to_dict()["roundNumberInferred"] == 3
    assert Question.lookup(SEASON, 3, "R3-G2-Q1").status == "pending"
    assert Question.lookup(SEASON, 9, "R3-G2-Q1") is None


def test_opening_round_prefix(service, make_question):
    make_question("OR-G1-Q1", round_number=0)

    result = service.settle(5, "OR-G1-Q1", "final_no")

    assert result.round_number == 0


def test_permissive_lookup_creates_missing_question(service, app):
    service.settle(2, "custom-question", "lock")

    assert Question.lookup(SEASON, 2, "custom-question").status == "pending"


def test_strict_lookup_reports_not_found(service, app, make_game):
    app.config["SETTLEMENT_STRICT_LOOKUP"] = True

    with pytest.raises(NotFound):
        service.settle(2, "custom-question", "lock")

    make_game("R1-G1")
    with pytest.raises(NotFound):
        service.settle(1, "R1-G1-Q9", "lock")
    assert Question.query.count() == 0


def test_settlement_is_audited(service, alice_and_bob):
    service.settle(1, QID, "final_yes", admin_user_id=alice_and_bob[0].id)

    action = AdminAction.query.one()
    assert action.action_type == "settle_question"
    assert action.question_id == QID
    assert action.action_metadata["applied"] == 2
    assert action.admin_user.username == "alice"


class FlakyAggregator:
    """Fails for selected users, succeeds for the rest"""

    def __init__(self, failing_user_ids):
        self.failing_user_ids = set(failing_user_ids)
        self.calls = []
        self.threads = set()
        self._lock = threading.Lock()

    def apply_outcome(self, user_id, selection, outcome, round_number, question_id):
        with self._lock:
            self.calls.append(user_id)
            self.threads.add(threading.get_ident())
        if user_id in self.failing_user_ids:
            raise RuntimeError("aggregate store unavailable")
        return APPLIED


def test_partial_failure_is_reported_not_raised(app, alice_and_bob):
    alice, bob = alice_and_bob
    service = SettlementService(aggregator=FlakyAggregator([bob.id]))

    result = service.settle(1, QID, "final_yes")

    assert result.applied == [alice.id]
    assert result.failed == [bob.id]
    payload = result.to_dict()
    assert payload["ok"] is True
    assert payload["warnings"][0]["failedUserIds"] == [bob.id]
    # the question write stands even though one user failed
    assert Question.lookup(SEASON, 1, QID).status == "final"


class ListPickStore:
    def __init__(self, picks):
        self.picks = picks

    def find_by_question(self, round_number, question_id):
        return list(self.picks)


def test_fan_out_runs_on_worker_pool(app, make_question):
    app.config["SETTLEMENT_MAX_WORKERS"] = 4
    make_question(QID)
    picks = [PickRef(user_id, "yes" if user_id % 2 else "no") for user_id in range(1, 21)]
    aggregator = FlakyAggregator([3, 8])
    service = SettlementService(pick_store=ListPickStore(picks), aggregator=aggregator)

    result = service.settle(1, QID, "final_yes")

    assert sorted(aggregator.calls) == list(range(1, 21))
    assert sorted(result.failed) == [3, 8]
    assert len(result.applied) == 18
    assert threading.get_ident() not in aggregator.threads


def test_unknown_round_with_fake_question_store(app):
    class MemoryQuestionStore:
        def __init__(self):
            self.docs = {}

        def get(self, round_number, question_id):
            return self.docs.get((round_number, question_id))

        def round_exists(self, round_number):
            return False

        def upsert_merge(self, round_number, question_id, fields):
            self.docs.setdefault((round_number, question_id), {}).update(fields)

    store = MemoryQuestionStore()
    service = SettlementService(question_store=store, pick_store=ListPickStore([]))

    service.settle(4, "custom", "final_no")
    service.settle(4, "custom", "lock")

    assert store.docs[(4, "custom")] == {"status": "pending", "outcome": None, "override_mode": "manual"}


def test_audit_failure_does_not_fail_settlement(client, admin_headers, alice_and_bob, monkeypatch):
    alice, bob = alice_and_bob

    def broken_audit(result, admin_user_id=None):
        raise OperationalError("INSERT INTO admin_actions", {}, Exception("disk I/O error"))

    monkeypatch.setattr(AdminAction, "log_settlement", staticmethod(broken_audit))

    response = client.post(
        "/api/admin/settlement",
        json={"roundNumber": 1, "questionId": QID, "action": "final_yes"},
        headers=admin_headers,
    )

    assert response.status_code == 200
    assert response.get_json()["scored"]["applied"] == 2
    assert Question.lookup(SEASON, 1, QID).status == "final"
    assert _streak(alice) == (1, 1)
    assert _streak(bob) == (0, 0)
    assert AdminAction.query.count() == 0
