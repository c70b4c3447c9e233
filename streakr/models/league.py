import secrets
from datetime import datetime, timezone

from streakr import db


class League(db.Model):
    __tablename__ = "leagues"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text)

    is_active = db.Column(db.Boolean, default=True)
    max_members = db.Column(db.Integer, default=100)

    # Code for easy joining
    invite_code = db.Column(db.String(8), unique=True, nullable=False, index=True)

    # Venue leagues roll up into the venue leaderboard
    venue_id = db.Column(db.Integer, db.ForeignKey("venues.id"), nullable=True)

    creator_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    members = db.relationship(
        "LeagueMember", backref="league", lazy="dynamic", cascade="all, delete-orphan"
    )
    creator = db.relationship("User", foreign_keys=[creator_id])

    __table_args__ = (
        db.Index("idx_league_creator", "creator_id"),
        db.Index("idx_league_venue", "venue_id"),
    )

    def __repr__(self):
        return f"<League {self.name}>"

    def __init__(self, **kwargs):
        super(League, self).__init__(**kwargs)
        if not self.invite_code:
            self.invite_code = self.generate_invite_code()

    @staticmethod
    def generate_invite_code():
        """Generate a unique 8-character invite code"""
        while True:
            code = secrets.token_urlsafe(6)[:8].upper()
            if not League.query.filter_by(invite_code=code).first():
                return code

    def get_member_count(self):
        return self.members.filter_by(is_active=True).count()

    def active_member_ids(self):
        return [m.user_id for m in self.members.filter_by(is_active=True)]

    def is_user_member(self, user_id):
        return (
            self.members.filter_by(user_id=user_id, is_active=True).first() is not None
        )

    def add_member(self, user_id, is_admin=False):
        """Add a member, reactivating a previous membership. Returns (member, message)."""
        existing = LeagueMember.query.filter_by(
            user_id=user_id, league_id=self.id
        ).first()

        if existing and existing.is_active:
            return existing, "Already a member"

        if self.get_member_count() >= self.max_members:
            return None, "League is full"

        if existing:
            existing.reactivate()
            return existing, "Membership reactivated"

        member = LeagueMember(user_id=user_id, league_id=self.id, is_admin=is_admin)
        db.session.add(member)
        return member, "Joined league"

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description or "",
            "inviteCode": self.invite_code,
            "venueId": self.venue_id,
            "memberCount": self.get_member_count(),
            "creatorId": self.creator_id,
        }


class LeagueMember(db.Model):
    __tablename__ = "league_members"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    league_id = db.Column(db.Integer, db.ForeignKey("leagues.id"), nullable=False)

    is_active = db.Column(db.Boolean, default=True)
    is_admin = db.Column(db.Boolean, default=False)

    joined_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    left_at = db.Column(db.DateTime)

    __table_args__ = (
        db.UniqueConstraint("user_id", "league_id", name="unique_user_league"),
        db.Index("idx_league_members_active", "league_id", "is_active"),
    )

    def __repr__(self):
        return f"<LeagueMember user_id={self.user_id} league_id={self.league_id}>"

    def deactivate(self):
        self.is_active = False
        self.left_at = datetime.now(timezone.utc)

    def reactivate(self):
        self.is_active = True
        self.left_at = None
        self.joined_at = datetime.now(timezone.utc)
