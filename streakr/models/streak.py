from datetime import datetime, timezone

from streakr import db


class StreakAggregate(db.Model):
    """
    Cumulative streak counters for one user.

    Only the streak aggregator writes these rows, one user-scoped transaction
    at a time. ``version`` is bumped on every update so a concurrent writer
    holding a stale copy fails with StaleDataError instead of losing an
    increment.
    """

    __tablename__ = "streak_aggregates"

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), primary_key=True)
    current_streak = db.Column(db.Integer, nullable=False, default=0)
    longest_streak = db.Column(db.Integer, nullable=False, default=0)
    total_wins = db.Column(db.Integer, nullable=False, default=0)
    version = db.Column(db.Integer, nullable=False)
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        db.CheckConstraint("current_streak >= 0", name="current_streak_non_negative"),
        db.CheckConstraint(
            "longest_streak >= current_streak", name="longest_covers_current"
        ),
        db.Index("idx_streak_longest", "longest_streak"),
        db.Index("idx_streak_current", "current_streak"),
    )

    def __repr__(self):
        return f"<StreakAggregate user_id={self.user_id} current={self.current_streak} longest={self.longest_streak}>"

    def to_dict(self):
        return {
            "userId": self.user_id,
            "currentStreak": self.current_streak,
            "longestStreak": self.longest_streak,
            "totalWins": self.total_wins,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }


class ScoredPick(db.Model):
    """Marker that a (user, round, question) scoring event has been applied"""

    __tablename__ = "scored_picks"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    round_number = db.Column(db.Integer, nullable=False)
    question_id = db.Column(db.String(80), nullable=False)

    selection = db.Column(db.String(3), nullable=False)
    outcome = db.Column(db.String(4), nullable=False)
    is_correct = db.Column(db.Boolean, nullable=False)

    scored_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.UniqueConstraint(
            "user_id", "round_number", "question_id", name="unique_scored_pick"
        ),
        db.Index("idx_scored_round_user", "round_number", "user_id"),
    )

    def __repr__(self):
        return f"<ScoredPick user_id={self.user_id} question={self.question_id} correct={self.is_correct}>"
