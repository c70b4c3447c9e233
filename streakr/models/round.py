from datetime import datetime, timezone

from streakr import db


def round_code(round_number):
    """Opening Round is round 0 and coded 'OR'; every other round is 'R<n>'"""
    if round_number == 0:
        return "OR"
    return f"R{round_number}"


def round_label_to_number(label):
    """Parse 'OR', 'Opening', 'Opening Round', 'R3' or '3' into a round number"""
    text = str(label if label is not None else "").strip().upper()
    if text in ("OR", "OPENING", "OPENING ROUND"):
        return 0
    if text.startswith("R") and text[1:].isdigit():
        return int(text[1:])
    if text.isdigit():
        return int(text)
    return None


class Round(db.Model):
    __tablename__ = "rounds"

    id = db.Column(db.Integer, primary_key=True)
    season = db.Column(db.Integer, nullable=False)
    round_number = db.Column(db.Integer, nullable=False)
    name = db.Column(db.String(50))
    is_current = db.Column(db.Boolean, default=False)

    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.UniqueConstraint("season", "round_number", name="unique_season_round"),
    )

    def __repr__(self):
        return f"<Round {self.season} {self.code}>"

    @property
    def code(self):
        return round_code(self.round_number)

    @property
    def display_name(self):
        if self.name:
            return self.name
        return "Opening Round" if self.round_number == 0 else f"Round {self.round_number}"

    @staticmethod
    def get(season, round_number):
        return Round.query.filter_by(season=season, round_number=round_number).first()

    @staticmethod
    def get_or_create(season, round_number):
        existing = Round.get(season, round_number)
        if existing:
            return existing
        new_round = Round(season=season, round_number=round_number)
        db.session.add(new_round)
        return new_round

    @staticmethod
    def get_current(season):
        current = Round.query.filter_by(season=season, is_current=True).first()
        if current:
            return current
        return (
            Round.query.filter_by(season=season).order_by(Round.round_number).first()
        )

    def make_current(self):
        Round.query.filter(
            Round.season == self.season, Round.id != self.id
        ).update({"is_current": False})
        self.is_current = True

    def to_dict(self):
        return {
            "season": self.season,
            "roundNumber": self.round_number,
            "code": self.code,
            "name": self.display_name,
            "isCurrent": bool(self.is_current),
        }
