from datetime import datetime, timezone

from gridguessr import db
from gridguessr.utils.timezone_utils import ensure_utc, has_passed

# Forward-only lifecycle; "completed" is the scored state for races
RACE_STATUSES = ("upcoming", "open", "locked", "completed", "archived")


class Race(db.Model):
    __tablename__ = "races"

    id = db.Column(db.Integer, primary_key=True)

    # Race identification
    name = db.Column(db.String(120), nullable=False)
    circuit = db.Column(db.String(120))
    country = db.Column(db.String(80))
    season = db.Column(db.Integer, nullable=False)
    round = db.Column(db.Integer)

    # Timing
    race_date = db.Column(db.DateTime)
    lock_time = db.Column(db.DateTime)

    status = db.Column(db.String(20), nullable=False, default="upcoming")
    wildcard_question = db.Column(db.String(300))

    # Timestamps
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    predictions = db.relationship("Prediction", backref="race", lazy="dynamic")
    result = db.relationship(
        "RaceResult", backref="race", uselist=False, cascade="all, delete-orphan"
    )

    __table_args__ = (
        db.Index("idx_race_season_round", "season", "round"),
        db.Index("idx_race_status", "status"),
    )

    def __repr__(self):
        return f"<Race {self.season} R{self.round} {self.name}>"

    @property
    def is_scored(self):
        return self.status == "completed"

    def is_locked(self, now=None):
        """Submissions are refused once locked, scored or archived"""
        if self.status in ("locked", "completed", "archived"):
            return True
        return has_passed(self.lock_time, now)

    def can_transition_to(self, new_status):
        """Statuses only move forward (or stay put)"""
        if new_status not in RACE_STATUSES:
            return False
        return RACE_STATUSES.index(new_status) >= RACE_STATUSES.index(self.status)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "circuit": self.circuit,
            "country": self.country,
            "season": self.season,
            "round": self.round,
            "race_date": self.race_date.isoformat() if self.race_date else None,
            "lock_time": (
                ensure_utc(self.lock_time).isoformat() if self.lock_time else None
            ),
            "status": self.status,
            "wildcard_question": self.wildcard_question,
        }


class RaceResult(db.Model):
    """Ground truth for one race; at most one row per race"""

    __tablename__ = "race_results"

    id = db.Column(db.Integer, primary_key=True)
    race_id = db.Column(
        db.Integer, db.ForeignKey("races.id"), nullable=False, unique=True
    )

    pole_driver_id = db.Column(db.String(36), db.ForeignKey("drivers.id"))
    winner_driver_id = db.Column(db.String(36), db.ForeignKey("drivers.id"))
    second_driver_id = db.Column(db.String(36), db.ForeignKey("drivers.id"))
    third_driver_id = db.Column(db.String(36), db.ForeignKey("drivers.id"))
    fastest_lap_driver_id = db.Column(db.String(36), db.ForeignKey("drivers.id"))
    fastest_pit_team_id = db.Column(db.String(36), db.ForeignKey("teams.id"))
    first_dnf_driver_id = db.Column(db.String(36), db.ForeignKey("drivers.id"))
    no_dnf = db.Column(db.Boolean, default=False)
    safety_car = db.Column(db.Boolean)
    winning_margin = db.Column(db.String(20))
    wildcard_result = db.Column(db.Boolean)

    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    ANSWER_FIELDS = (
        "pole_driver_id",
        "winner_driver_id",
        "second_driver_id",
        "third_driver_id",
        "fastest_lap_driver_id",
        "fastest_pit_team_id",
        "first_dnf_driver_id",
        "no_dnf",
        "safety_car",
        "winning_margin",
        "wildcard_result",
    )

    def __repr__(self):
        return f"<RaceResult race_id={self.race_id}>"

    def answers(self):
        """Plain mapping of the published answers, safe to hand to worker threads"""
        return {field: getattr(self, field) for field in self.ANSWER_FIELDS}

    def to_dict(self):
        data = {"race_id": self.race_id}
        data.update(self.answers())
        data["updated_at"] = self.updated_at.isoformat() if self.updated_at else None
        return data
