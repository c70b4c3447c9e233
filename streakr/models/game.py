from datetime import datetime, timezone

from streakr import db
from streakr.utils.timezone_utils import format_game_time


class Game(db.Model):
    __tablename__ = "games"

    # Seeded ids look like "R1-G3" / "OR-G1"
    id = db.Column(db.String(40), primary_key=True)

    season = db.Column(db.Integer, nullable=False)
    round_number = db.Column(db.Integer, nullable=False)

    match = db.Column(db.String(200), nullable=False)
    venue = db.Column(db.String(200))
    sport = db.Column(db.String(20), default="AFL")
    start_time = db.Column(db.DateTime, nullable=False)

    # Admin override: keep picks open after the scheduled start
    is_unlocked_for_picks = db.Column(db.Boolean, default=False)

    # External id for the live score API
    squiggle_id = db.Column(db.Integer, index=True)

    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (db.Index("idx_game_season_round", "season", "round_number"),)

    def __repr__(self):
        return f"<Game {self.id} {self.match}>"

    def has_started(self, now=None):
        """True once the scheduled start time has passed"""
        now = now or datetime.now(timezone.utc)
        start = self.start_time
        # Naive timestamps are stored as UTC
        if start is not None and start.tzinfo is None:
            start = start.replace(tzinfo=timezone.utc)
        return start is not None and start <= now

    def is_locked(self, now=None):
        """Picks close at start time unless an admin unlocked the game"""
        if self.is_unlocked_for_picks:
            return False
        return self.has_started(now)

    def to_dict(self, questions=None):
        data = {
            "id": self.id,
            "match": self.match,
            "venue": self.venue or "",
            "sport": self.sport or "AFL",
            "startTime": self.start_time.isoformat() if self.start_time else None,
            "startTimeLocal": format_game_time(self.start_time),
            "isUnlockedForPicks": bool(self.is_unlocked_for_picks),
        }
        if questions is not None:
            data["questions"] = questions
        return data
