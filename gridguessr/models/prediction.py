from datetime import datetime, timezone

from gridguessr import db


class Prediction(db.Model):
    """
    A user's race submission.

    There is deliberately no unique constraint on (user_id, race_id): retried
    writes can leave several rows for the same pair, and the scoring engine
    picks the authoritative one (see gridguessr.services.deduplication).
    """

    __tablename__ = "predictions"

    id = db.Column(db.Integer, primary_key=True)

    # Prediction identification
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    race_id = db.Column(db.Integer, db.ForeignKey("races.id"), nullable=False)

    # Picks
    pole_driver_id = db.Column(db.String(36))
    winner_driver_id = db.Column(db.String(36))
    second_driver_id = db.Column(db.String(36))
    third_driver_id = db.Column(db.String(36))
    fastest_lap_driver_id = db.Column(db.String(36))
    fastest_pit_team_id = db.Column(db.String(36))
    first_dnf_driver_id = db.Column(db.String(36))
    no_dnf = db.Column(db.Boolean, default=False)
    safety_car = db.Column(db.Boolean)
    winning_margin = db.Column(db.String(20))
    wildcard_answer = db.Column(db.Boolean)

    # Results (calculated after the result is published)
    score = db.Column(db.Float, nullable=True)
    scored_at = db.Column(db.DateTime, nullable=True)

    # Timestamps
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.Index("idx_prediction_race", "race_id"),
        db.Index("idx_prediction_user_race", "user_id", "race_id"),
    )

    PICK_FIELDS = (
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
        "wildcard_answer",
    )

    def __repr__(self):
        return f"<Prediction id={self.id} user_id={self.user_id} race_id={self.race_id} score={self.score}>"

    @property
    def is_scored(self):
        return self.scored_at is not None

    def picks(self):
        """Plain mapping of the picks, safe to hand to worker threads"""
        return {field: getattr(self, field) for field in self.PICK_FIELDS}

    def to_dict(self):
        """Convert prediction to dictionary for API responses"""
        data = {
            "id": self.id,
            "user_id": self.user_id,
            "race_id": self.race_id,
            "score": self.score,
            "scored_at": self.scored_at.isoformat() if self.scored_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        data.update(self.picks())
        return data
