import uuid
from datetime import datetime, timezone

from gridguessr import db


class Badge(db.Model):
    """Achievement definition, provisioned out-of-band (see `manage.py badges seed`)"""

    __tablename__ = "badges"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = db.Column(db.String(80), unique=True, nullable=False, index=True)
    description = db.Column(db.String(300))
    icon = db.Column(db.String(16))
    type = db.Column(db.String(20), default="prediction")  # prediction or achievement

    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    grants = db.relationship("UserBadge", backref="badge", lazy="dynamic")

    def __repr__(self):
        return f"<Badge {self.name}>"

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "icon": self.icon,
            "type": self.type,
        }


class UserBadge(db.Model):
    """Grant of a badge to a user for one race"""

    __tablename__ = "user_badges"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    badge_id = db.Column(db.String(36), db.ForeignKey("badges.id"), nullable=False)
    race_id = db.Column(db.Integer, db.ForeignKey("races.id"), nullable=False)

    earned_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.UniqueConstraint(
            "user_id", "badge_id", "race_id", name="unique_user_badge_race"
        ),
        db.Index("idx_user_badge_user", "user_id"),
    )

    def __repr__(self):
        return f"<UserBadge user_id={self.user_id} badge_id={self.badge_id} race_id={self.race_id}>"

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "race_id": self.race_id,
            "earned_at": self.earned_at.isoformat() if self.earned_at else None,
            "badge": self.badge.to_dict() if self.badge else None,
        }
