"""
Settlement Engine

Converts an admin decision on a question into a durable status/outcome
write and, when the question goes final, a fan-out of streak updates to
every user who picked it.

Process:
1. Validate the round number, question id and action
2. Resolve the round (question id prefixes override the submitted round)
3. Merge the new status/outcome onto the question (last write wins)
4. For final questions, score every pick on a bounded worker pool
5. Record the admin action, invalidate leaderboards, broadcast the result

Per-user failures are collected, logged and reported as a partial fan-out
failure; they never undo the question write or block sibling users.
Re-running the same settlement is the recovery path: already-scored picks
are skipped by the aggregator's idempotency guard.
"""

import enum
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from streakr import db, socketio
from streakr.models import AdminAction, StreakAggregate
from streakr.models.question import infer_round_number
from streakr.services.stores import AggregateStore, PickStore, QuestionStore
from streakr.services.streak_service import APPLIED, SKIPPED, StreakAggregator
from streakr.utils.cache_utils import invalidate_leaderboards
from streakr.utils.errors import InvalidInput, NotFound, PartialFanoutFailure
from streakr.utils.logging_config import ContextualLogger
from streakr.utils.performance import PerformanceMonitor

logger = logging.getLogger(__name__)

LIVE_NAMESPACE = "/live"


class SettlementAction(enum.Enum):
    LOCK = "lock"
    REOPEN = "reopen"
    FINAL_YES = "final_yes"
    FINAL_NO = "final_no"
    FINAL_VOID = "final_void"
    VOID = "void"

    @classmethod
    def parse(cls, value):
        if isinstance(value, cls):
            return value
        if not isinstance(value, str) or not value.strip():
            raise InvalidInput("action is required")
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise InvalidInput(f"Invalid action: {value}") from None


# action -> (new status, new outcome); None clears the outcome
ACTION_EFFECTS = {
    SettlementAction.LOCK: ("pending", None),
    SettlementAction.REOPEN: ("open", None),
    SettlementAction.FINAL_YES: ("final", "yes"),
    SettlementAction.FINAL_NO: ("final", "no"),
    SettlementAction.FINAL_VOID: ("void", "void"),
    SettlementAction.VOID: ("void", "void"),
}


@dataclass
class SettlementResult:
    round_number: int
    question_id: str
    action: SettlementAction
    status: str
    outcome: str = None
    round_number_from_body: int = None
    round_number_inferred: int = None
    applied: list = field(default_factory=list)
    skipped: list = field(default_factory=list)
    failed: list = field(default_factory=list)

    @property
    def fanout_failure(self):
        if not self.failed:
            return None
        return PartialFanoutFailure(self.question_id, self.failed)

    def to_dict(self):
        data = {
            "ok": True,
            "roundNumberUsed": self.round_number,
            "roundNumberFromBody": self.round_number_from_body,
            "roundNumberInferred": self.round_number_inferred,
            "questionId": self.question_id,
            "status": self.status,
            "outcome": self.outcome,
            "scored": {
                "applied": len(self.applied),
                "skipped": len(self.skipped),
                "failed": len(self.failed),
            },
        }
        failure = self.fanout_failure
        if failure is not None:
            data["warnings"] = [failure.to_dict()]
        return data


def _validate_round_number(round_number):
    # bool is an int subclass; reject it explicitly
    if isinstance(round_number, bool) or not isinstance(round_number, int):
        raise InvalidInput("roundNumber is required")
    if round_number < 0:
        raise InvalidInput("roundNumber must be zero or greater")
    return round_number


def _validate_question_id(question_id):
    if not isinstance(question_id, str) or not question_id.strip():
        raise InvalidInput("questionId is required")
    return question_id.strip()


class SettlementService:
    def __init__(self, question_store=None, pick_store=None, aggregator=None):
        self._question_store = question_store
        self.pick_store = pick_store or PickStore()
        self._aggregator = aggregator

    @property
    def question_store(self):
        if self._question_store is None:
            return QuestionStore(current_app.config["CURRENT_SEASON"])
        return self._question_store

    @property
    def aggregator(self):
        if self._aggregator is None:
            return StreakAggregator(
                AggregateStore(max_retries=current_app.config["SETTLEMENT_MAX_RETRIES"])
            )
        return self._aggregator

    def settle(self, round_number, question_id, action, admin_user_id=None):
        """Apply ``action`` to the question and score its picks when final"""
        body_round = _validate_round_number(round_number)
        question_id = _validate_question_id(question_id)
        action = SettlementAction.parse(action)

        inferred_round = infer_round_number(question_id)
        round_used = inferred_round if inferred_round is not None else body_round

        question_store = self.question_store
        if current_app.config.get("SETTLEMENT_STRICT_LOOKUP"):
            if not question_store.round_exists(round_used):
                raise NotFound(f"Round {round_used} not found")
            if question_store.get(round_used, question_id) is None:
                raise NotFound(f"Question {question_id} not found in round {round_used}")

        status, outcome = ACTION_EFFECTS[action]
        log = ContextualLogger(__name__, {"round": round_used, "question": question_id})

        question_store.upsert_merge(
            round_used,
            question_id,
            {"status": status, "outcome": outcome, "override_mode": "manual"},
        )
        log.info(f"Question settled: action={action.value} status={status} outcome={outcome}")

        result = SettlementResult(
            round_number=round_used,
            question_id=question_id,
            action=action,
            status=status,
            outcome=outcome,
            round_number_from_body=body_round,
            round_number_inferred=inferred_round,
        )

        # Void outcomes never move a streak, so only final questions fan out
        if status == "final":
            with PerformanceMonitor(f"settlement fan-out {question_id}", log_threshold=1.0):
                self._fan_out(result, log)

        try:
            AdminAction.log_settlement(result, admin_user_id=admin_user_id)
            db.session.commit()
        except SQLAlchemyError as e:
            # The question write and streak updates are already durable
            db.session.rollback()
            logger.error(
                f"Failed to record audit entry for {question_id} (round {round_used}): {e}",
                exc_info=True,
            )

        invalidate_leaderboards()
        self._broadcast(result)

        failure = result.fanout_failure
        if failure is not None:
            log.warning(
                f"{failure.message}; re-run settlement to retry. "
                f"Failed user ids: {failure.failed_user_ids}"
            )

        return result

    def _fan_out(self, result, log):
        picks = self.pick_store.find_by_question(result.round_number, result.question_id)
        if not picks:
            log.info("No picks to score")
            return

        max_workers = current_app.config.get("SETTLEMENT_MAX_WORKERS", 1)
        aggregator = self.aggregator

        if max_workers <= 1 or len(picks) == 1:
            for pick in picks:
                self._record(result, pick, self._score(aggregator, pick, result))
        else:
            app = current_app._get_current_object()
            with ThreadPoolExecutor(max_workers=min(max_workers, len(picks))) as pool:
                futures = {
                    pool.submit(self._score_in_context, app, aggregator, pick, result): pick
                    for pick in picks
                }
                for future in as_completed(futures):
                    self._record(result, futures[future], future.result())

        log.info(
            f"Fan-out complete: {len(result.applied)} applied, "
            f"{len(result.skipped)} skipped, {len(result.failed)} failed"
        )

    def _score_in_context(self, app, aggregator, pick, result):
        with app.app_context():
            return self._score(aggregator, pick, result)

    def _score(self, aggregator, pick, result):
        try:
            return aggregator.apply_outcome(
                pick.user_id,
                pick.selection,
                result.outcome,
                round_number=result.round_number,
                question_id=result.question_id,
            )
        except Exception as e:
            db.session.rollback()
            logger.error(
                f"Streak update failed for user {pick.user_id} on question "
                f"{result.question_id} (round {result.round_number}): {e}",
                exc_info=True,
            )
            return None

    @staticmethod
    def _record(result, pick, status):
        if status == APPLIED:
            result.applied.append(pick.user_id)
        elif status == SKIPPED:
            result.skipped.append(pick.user_id)
        elif status is None:
            result.failed.append(pick.user_id)

    def _broadcast(self, result):
        try:
            socketio.emit(
                "question_settled",
                {
                    "roundNumber": result.round_number,
                    "questionId": result.question_id,
                    "status": result.status,
                    "outcome": result.outcome,
                },
                namespace=LIVE_NAMESPACE,
            )

            if result.applied:
                aggregates = StreakAggregate.query.filter(
                    StreakAggregate.user_id.in_(result.applied)
                ).all()
                for aggregate in aggregates:
                    socketio.emit(
                        "streak_update",
                        aggregate.to_dict(),
                        namespace=LIVE_NAMESPACE,
                        to=f"user_{aggregate.user_id}",
                    )
        except Exception as e:
            logger.error(f"Error broadcasting settlement: {e}")


settlement_service = SettlementService()
