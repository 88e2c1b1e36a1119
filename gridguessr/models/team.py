import uuid
from datetime import datetime, timezone

from gridguessr import db


def _new_id():
    return str(uuid.uuid4())


class Team(db.Model):
    __tablename__ = "teams"

    id = db.Column(db.String(36), primary_key=True, default=_new_id)

    name = db.Column(db.String(100), nullable=False)
    color = db.Column(db.String(7))  # Hex color
    is_active = db.Column(db.Boolean, default=True)

    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    drivers = db.relationship("Driver", backref="team", lazy="dynamic")

    def __repr__(self):
        return f"<Team {self.name}>"

    @staticmethod
    def get_active():
        return Team.query.filter_by(is_active=True).order_by(Team.name).all()

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "color": self.color,
            "is_active": self.is_active,
        }


class Driver(db.Model):
    __tablename__ = "drivers"

    id = db.Column(db.String(36), primary_key=True, default=_new_id)

    name = db.Column(db.String(100), nullable=False)
    number = db.Column(db.String(4))
    team_id = db.Column(db.String(36), db.ForeignKey("teams.id"), nullable=True)
    color = db.Column(db.String(7))
    is_active = db.Column(db.Boolean, default=True)

    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    def __repr__(self):
        return f"<Driver #{self.number} {self.name}>"

    @property
    def label(self):
        """Display label, e.g. '#1 Max Verstappen'"""
        prefix = f"#{self.number} " if self.number else ""
        return f"{prefix}{self.name}".strip()

    @staticmethod
    def get_active():
        return Driver.query.filter_by(is_active=True).order_by(Driver.name).all()

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "number": self.number,
            "team_id": self.team_id,
            "is_active": self.is_active,
        }
