from datetime import datetime, timezone

from streakr import db


class Venue(db.Model):
    __tablename__ = "venues"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(150), nullable=False)
    suburb = db.Column(db.String(100))
    state = db.Column(db.String(10))
    is_active = db.Column(db.Boolean, default=True)

    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    leagues = db.relationship("League", backref="venue", lazy="dynamic")

    def __repr__(self):
        return f"<Venue {self.name}>"

    def member_ids(self):
        """Distinct active members across every league attached to this venue"""
        from .league import League, LeagueMember

        rows = (
            db.session.query(LeagueMember.user_id)
            .join(League, League.id == LeagueMember.league_id)
            .filter(League.venue_id == self.id, LeagueMember.is_active.is_(True))
            .distinct()
            .all()
        )
        return [row[0] for row in rows]

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "suburb": self.suburb or "",
            "state": self.state or "",
            "leagueCount": self.leagues.count(),
        }
