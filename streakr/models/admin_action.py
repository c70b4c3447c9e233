from datetime import datetime, timezone

from streakr import db


class AdminAction(db.Model):
    __tablename__ = "admin_actions"

    id = db.Column(db.Integer, primary_key=True)

    # Null when the action came in through the admin token or the CLI
    admin_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    # 'settle_question', 'game_lock', 'lock_sync', ...
    action_type = db.Column(db.String(50), nullable=False)
    action_description = db.Column(db.String(500), nullable=False)

    round_number = db.Column(db.Integer)
    question_id = db.Column(db.String(80))
    game_id = db.Column(db.String(40))

    action_metadata = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    admin_user = db.relationship("User", foreign_keys=[admin_user_id])

    __table_args__ = (
        db.Index("idx_admin_action_type", "action_type"),
        db.Index("idx_admin_action_question", "round_number", "question_id"),
        db.Index("idx_admin_action_created", "created_at"),
    )

    def __repr__(self):
        return f'<AdminAction {self.action_type} by {self.admin_user.username if self.admin_user else "token"}>'

    @staticmethod
    def log_action(
        action_type,
        description,
        admin_user_id=None,
        round_number=None,
        question_id=None,
        game_id=None,
        action_metadata=None,
    ):
        """Log an admin action (caller commits)"""
        action = AdminAction(
            admin_user_id=admin_user_id,
            action_type=action_type,
            action_description=description,
            round_number=round_number,
            question_id=question_id,
            game_id=game_id,
            action_metadata=action_metadata or {},
        )

        db.session.add(action)
        return action

    @staticmethod
    def log_settlement(result, admin_user_id=None):
        """Convenience method for logging a settlement decision"""
        description = (
            f"{result.action.value} on {result.question_id} (round {result.round_number}): "
            f"status={result.status}, outcome={result.outcome or '-'}"
        )

        return AdminAction.log_action(
            action_type="settle_question",
            description=description,
            admin_user_id=admin_user_id,
            round_number=result.round_number,
            question_id=result.question_id,
            action_metadata={
                "action": result.action.value,
                "status": result.status,
                "outcome": result.outcome,
                "applied": len(result.applied),
                "skipped": len(result.skipped),
                "failed": list(result.failed),
            },
        )

    @staticmethod
    def recent_for_question(round_number, question_id, limit=20):
        return (
            AdminAction.query.filter_by(
                round_number=round_number, question_id=question_id
            )
            .order_by(AdminAction.created_at.desc())
            .limit(limit)
            .all()
        )

    def to_dict(self):
        return {
            "id": self.id,
            "adminUser": self.admin_user.username if self.admin_user else None,
            "actionType": self.action_type,
            "description": self.action_description,
            "roundNumber": self.round_number,
            "questionId": self.question_id,
            "gameId": self.game_id,
            "metadata": self.action_metadata or {},
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
