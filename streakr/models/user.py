import html
import secrets
from datetime import datetime, timezone

from flask_login import UserMixin
from werkzeug.security import check_password_hash, generate_password_hash

from streakr import db


class User(UserMixin, db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False, index=True)
    email = db.Column(db.String(120), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)

    # Profile information
    first_name = db.Column(db.String(50))
    surname = db.Column(db.String(50))
    display_name = db.Column(db.String(100))
    avatar_url = db.Column(db.String(500))
    favourite_team = db.Column(db.String(100))

    # Account status
    is_active = db.Column(db.Boolean, default=True)
    is_admin = db.Column(db.Boolean, default=False)

    # Timestamps
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
    last_login = db.Column(db.DateTime)

    # Relationships
    picks = db.relationship(
        "Pick", backref="user", lazy="dynamic", cascade="all, delete-orphan"
    )
    streak = db.relationship(
        "StreakAggregate", backref="user", uselist=False, cascade="all, delete-orphan"
    )
    league_memberships = db.relationship(
        "LeagueMember", backref="user", lazy="dynamic", cascade="all, delete-orphan"
    )

    __table_args__ = (db.Index("idx_user_active_status", "is_active"),)

    def __repr__(self):
        return f"<User {self.username}>"

    @staticmethod
    def generate_avatar_url(seed=None):
        """Generate an avatar URL using DiceBear API"""
        if seed is None:
            seed = secrets.token_urlsafe(16)
        return f"https://api.dicebear.com/7.x/avataaars/svg?seed={seed}"

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)

    def set_display_name(self, display_name):
        """Set display name with sanitization"""
        if display_name:
            self.display_name = html.escape(display_name.strip())
        else:
            self.display_name = display_name

    @property
    def full_name(self):
        """First name + surname, falling back to display name, username, then 'Player'"""
        first = (self.first_name or "").strip()
        last = (self.surname or "").strip()
        if first or last:
            return f"{first} {last}".strip()
        return self.display_name or self.username or "Player"

    def update_last_login(self):
        self.last_login = datetime.now(timezone.utc)
        db.session.commit()

    def get_league_ids(self):
        from .league import LeagueMember

        return [
            m.league_id
            for m in LeagueMember.query.filter_by(user_id=self.id, is_active=True)
        ]

    def to_dict(self, include_streak=True):
        data = {
            "id": self.id,
            "username": self.username,
            "displayName": self.full_name,
            "avatarUrl": self.avatar_url or "",
            "favouriteTeam": self.favourite_team or "",
            "isAdmin": bool(self.is_admin),
        }
        if include_streak:
            data["currentStreak"] = self.streak.current_streak if self.streak else 0
            data["longestStreak"] = self.streak.longest_streak if self.streak else 0
        return data
