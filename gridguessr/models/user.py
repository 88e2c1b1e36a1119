import hmac
import secrets
from datetime import datetime, timezone

from flask_login import UserMixin

from gridguessr import db


class User(UserMixin, db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    fid = db.Column(db.Integer, unique=True, index=True)  # Farcaster id
    username = db.Column(db.String(80), index=True)
    display_name = db.Column(db.String(100))
    pfp_url = db.Column(db.String(500))

    # Standing (cache, derivable from predictions and the bonus ledger)
    total_points = db.Column(db.Float, default=0.0, nullable=False)
    bonus_points = db.Column(db.Float, default=0.0, nullable=False)
    perfect_slates = db.Column(db.Integer, default=0, nullable=False)

    # Admin API access
    is_admin = db.Column(db.Boolean, default=False)
    api_token = db.Column(db.String(100), unique=True, nullable=True)

    # Timestamps
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    predictions = db.relationship("Prediction", backref="user", lazy="dynamic")
    badges = db.relationship(
        "UserBadge", backref="user", lazy="dynamic", cascade="all, delete-orphan"
    )
    ledger_entries = db.relationship(
        "BonusLedgerEntry",
        backref="user",
        lazy="dynamic",
        cascade="all, delete-orphan",
    )

    __table_args__ = (db.Index("idx_user_total_points", "total_points"),)

    def __repr__(self):
        return f"<User {self.username or self.id}>"

    @property
    def full_name(self):
        """Return display name or username"""
        return self.display_name or self.username or f"user-{self.id}"

    def generate_api_token(self):
        """Issue a fresh admin API token"""
        self.api_token = secrets.token_urlsafe(32)
        return self.api_token

    def check_api_token(self, token):
        if not self.api_token or not token:
            return False
        return hmac.compare_digest(self.api_token, token)

    @staticmethod
    def get_leaderboard(limit=100):
        """Users ordered by total points, best first"""
        return (
            User.query.order_by(User.total_points.desc(), User.id.asc())
            .limit(limit)
            .all()
        )

    def to_dict(self):
        """Convert user to dictionary for API responses"""
        return {
            "id": self.id,
            "fid": self.fid,
            "username": self.username,
            "display_name": self.display_name,
            "pfp_url": self.pfp_url,
            "total_points": self.total_points,
            "bonus_points": self.bonus_points,
            "perfect_slates": self.perfect_slates,
        }
