from datetime import datetime, timezone

from streakr import db

MAX_COMMENT_LENGTH = 300


class QuestionComment(db.Model):
    __tablename__ = "question_comments"

    id = db.Column(db.Integer, primary_key=True)
    season = db.Column(db.Integer, nullable=False)
    question_id = db.Column(db.String(80), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    body = db.Column(db.String(MAX_COMMENT_LENGTH), nullable=False)

    # Hidden by an admin; kept for the audit trail
    is_removed = db.Column(db.Boolean, default=False, nullable=False)

    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    user = db.relationship("User")

    __table_args__ = (
        db.Index("idx_comment_question_created", "season", "question_id", "created_at"),
    )

    def __repr__(self):
        return f"<QuestionComment {self.id} on {self.question_id}>"

    @staticmethod
    def recent(season, question_id, limit=20):
        return (
            QuestionComment.query.filter_by(
                season=season, question_id=question_id, is_removed=False
            )
            .order_by(QuestionComment.created_at.desc(), QuestionComment.id.desc())
            .limit(limit)
            .all()
        )

    def to_dict(self):
        return {
            "id": self.id,
            "questionId": self.question_id,
            "userId": self.user_id,
            "displayName": self.user.full_name if self.user else None,
            "avatarUrl": self.user.avatar_url if self.user else None,
            "body": self.body,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
