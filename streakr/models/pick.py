from datetime import datetime, timezone

from streakr import db

PICK_SELECTIONS = ("yes", "no")


class Pick(db.Model):
    __tablename__ = "picks"

    id = db.Column(db.Integer, primary_key=True)

    # Pick identification: one pick per (user, question)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    question_id = db.Column(db.String(80), nullable=False)
    round_number = db.Column(db.Integer, nullable=False)
    game_id = db.Column(db.String(40))

    selection = db.Column(db.String(3), nullable=False)

    # Timestamps (created_at survives resubmission)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.UniqueConstraint("user_id", "question_id", name="unique_user_question_pick"),
        db.Index("idx_pick_round_question", "round_number", "question_id"),
        db.Index("idx_pick_user_round", "user_id", "round_number"),
    )

    def __repr__(self):
        return f"<Pick user_id={self.user_id} question={self.question_id} pick={self.selection}>"

    @staticmethod
    def submit(user_id, round_number, question_id, selection, game_id=None):
        """
        Create or overwrite the user's pick for a question.

        Returns (pick, created). Validation of the question/game lock state is
        the caller's job; this only upserts.
        """
        pick = Pick.query.filter_by(user_id=user_id, question_id=question_id).first()
        created = pick is None

        if created:
            pick = Pick(user_id=user_id, question_id=question_id)
            db.session.add(pick)

        pick.round_number = round_number
        pick.selection = selection
        if game_id:
            pick.game_id = game_id
        if not created:
            pick.updated_at = datetime.now(timezone.utc)

        return pick, created

    @staticmethod
    def stats_for_round(round_number):
        """Per-question yes/no/total counts for a round"""
        stats = {}
        rows = (
            db.session.query(Pick.question_id, Pick.selection, db.func.count(Pick.id))
            .filter(Pick.round_number == round_number)
            .group_by(Pick.question_id, Pick.selection)
            .all()
        )
        for question_id, selection, count in rows:
            entry = stats.setdefault(question_id, {"yes": 0, "no": 0, "total": 0})
            if selection in PICK_SELECTIONS:
                entry[selection] += count
                entry["total"] += count
        return stats

    def to_dict(self):
        return {
            "userId": self.user_id,
            "questionId": self.question_id,
            "roundNumber": self.round_number,
            "gameId": self.game_id,
            "pick": self.selection,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }
