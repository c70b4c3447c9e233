from datetime import datetime, timezone

from streakr import db


class PanicUse(db.Model):
    """
    A player's Panic for one round.

    Panic voids the player's own answer on one question: the pick is deleted
    and this row stands in for it, so settlement treats the question as
    void for that player. The unique constraint allows one Panic per
    (user, season, round).
    """

    __tablename__ = "panic_uses"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    season = db.Column(db.Integer, nullable=False)
    round_number = db.Column(db.Integer, nullable=False)
    question_id = db.Column(db.String(80), nullable=False)
    game_id = db.Column(db.String(40))

    previous_selection = db.Column(db.String(3), nullable=False)

    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.UniqueConstraint(
            "user_id", "season", "round_number", name="unique_panic_per_round"
        ),
        db.Index("idx_panic_question", "round_number", "question_id"),
    )

    def __repr__(self):
        return f"<PanicUse user_id={self.user_id} round={self.round_number} question={self.question_id}>"

    @staticmethod
    def for_round(user_id, season, round_number):
        return PanicUse.query.filter_by(
            user_id=user_id, season=season, round_number=round_number
        ).first()

    @staticmethod
    def voids(user_id, round_number, question_id):
        return (
            db.session.query(PanicUse.id)
            .filter_by(user_id=user_id, round_number=round_number, question_id=question_id)
            .first()
            is not None
        )

    def to_dict(self):
        return {
            "roundNumber": self.round_number,
            "questionId": self.question_id,
            "gameId": self.game_id,
            "previousPick": self.previous_selection,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


class FreeKickUse(db.Model):
    """The Golden Free Kick: one streak restore per user per season"""

    __tablename__ = "free_kick_uses"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    season = db.Column(db.Integer, nullable=False)
    round_number = db.Column(db.Integer, nullable=False)
    game_id = db.Column(db.String(40), nullable=False)

    restored_from = db.Column(db.Integer, nullable=False)
    restored_to = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.UniqueConstraint("user_id", "season", name="unique_free_kick_per_season"),
    )

    def __repr__(self):
        return f"<FreeKickUse user_id={self.user_id} season={self.season} to={self.restored_to}>"

    @staticmethod
    def for_season(user_id, season):
        return FreeKickUse.query.filter_by(user_id=user_id, season=season).first()

    def to_dict(self):
        return {
            "season": self.season,
            "roundNumber": self.round_number,
            "gameId": self.game_id,
            "restoredFrom": self.restored_from,
            "restoredTo": self.restored_to,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
