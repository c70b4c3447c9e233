import re
from datetime import datetime, timezone

from streakr import db

_ROUND_PREFIX = re.compile(r"^R(\d+)-")


def infer_round_number(question_id):
    """
    Infer the round from a question id prefix.

    "OR-G1-Q1" -> 0, "R12-G3-Q7" -> 12, anything else -> None.
    """
    text = str(question_id or "").strip().upper()
    if not text:
        return None
    if text.startswith("OR-"):
        return 0
    match = _ROUND_PREFIX.match(text)
    if match:
        return int(match.group(1))
    return None


class Question(db.Model):
    __tablename__ = "questions"

    id = db.Column(db.Integer, primary_key=True)

    # Composite identity: (season, round_number, question_id)
    season = db.Column(db.Integer, nullable=False)
    round_number = db.Column(db.Integer, nullable=False)
    question_id = db.Column(db.String(80), nullable=False)

    game_id = db.Column(db.String(40), index=True)
    quarter = db.Column(db.Integer, default=1)
    prompt = db.Column(db.Text)

    status = db.Column(db.String(10), nullable=False, default="open")
    outcome = db.Column(db.String(4))  # set only when status is final/void
    is_sponsor_question = db.Column(db.Boolean, default=False)

    # 'manual' questions are skipped by the automatic lock sync
    override_mode = db.Column(db.String(10))

    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.UniqueConstraint(
            "season", "round_number", "question_id", name="unique_round_question"
        ),
        db.Index("idx_question_round_status", "round_number", "status"),
        db.CheckConstraint(
            "(outcome IS NULL AND status IN ('open', 'pending')) OR "
            "(outcome IS NOT NULL AND status IN ('final', 'void'))",
            name="outcome_iff_terminal",
        ),
    )

    def __repr__(self):
        return f"<Question {self.question_id} round={self.round_number} status={self.status}>"

    @property
    def is_open(self):
        return self.status == "open"

    @staticmethod
    def lookup(season, round_number, question_id):
        return Question.query.filter_by(
            season=season, round_number=round_number, question_id=question_id
        ).first()

    def to_dict(self):
        return {
            "id": self.question_id,
            "roundNumber": self.round_number,
            "gameId": self.game_id,
            "quarter": self.quarter,
            "question": self.prompt or "",
            "status": self.status,
            "outcome": self.outcome,
            "isSponsorQuestion": bool(self.is_sponsor_question),
        }
