from datetime import datetime, timezone

from gridguessr import db
from gridguessr.utils.timezone_utils import ensure_utc, has_passed

BONUS_EVENT_TYPES = ("sprint", "open", "winter")
BONUS_EVENT_STATUSES = ("draft", "scheduled", "open", "locked", "scored", "archived")
BONUS_RESPONSE_TYPES = ("choice_driver", "choice_team", "choice_custom")


class BonusEvent(db.Model):
    __tablename__ = "bonus_events"

    id = db.Column(db.Integer, primary_key=True)

    type = db.Column(db.String(20), nullable=False, default="open")
    status = db.Column(db.String(20), nullable=False, default="draft")
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    race_id = db.Column(db.Integer, db.ForeignKey("races.id"), nullable=True)

    opens_at = db.Column(db.DateTime)
    locks_at = db.Column(db.DateTime)
    published_at = db.Column(db.DateTime)
    points_multiplier = db.Column(db.Float, default=1.0, nullable=False)

    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    questions = db.relationship(
        "BonusQuestion",
        backref="event",
        order_by="BonusQuestion.order_index",
        cascade="all, delete-orphan",
    )
    responses = db.relationship(
        "BonusResponse", backref="event", lazy="dynamic", cascade="all, delete-orphan"
    )

    __table_args__ = (db.Index("idx_bonus_event_status", "status"),)

    def __repr__(self):
        return f"<BonusEvent {self.id} {self.title} ({self.status})>"

    def derive_status(self, now=None):
        """Status implied by the clock; terminal and manual states are kept"""
        status = self.status or "draft"
        if status in ("archived", "scored", "locked", "draft"):
            return status

        if has_passed(self.locks_at, now):
            return "locked"

        if status == "open":
            return "open"

        if has_passed(self.opens_at, now):
            return "open"

        return "scheduled"

    def is_accepting_responses(self, now=None):
        return self.derive_status(now) == "open"

    def to_dict(self, include_questions=True):
        data = {
            "id": self.id,
            "type": self.type,
            "status": self.status,
            "title": self.title,
            "description": self.description,
            "race_id": self.race_id,
            "opens_at": ensure_utc(self.opens_at).isoformat() if self.opens_at else None,
            "locks_at": ensure_utc(self.locks_at).isoformat() if self.locks_at else None,
            "published_at": (
                ensure_utc(self.published_at).isoformat() if self.published_at else None
            ),
            "points_multiplier": self.points_multiplier,
        }
        if include_questions:
            data["questions"] = [question.to_dict() for question in self.questions]
        return data


class BonusQuestion(db.Model):
    __tablename__ = "bonus_questions"

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(db.Integer, db.ForeignKey("bonus_events.id"), nullable=False)

    prompt = db.Column(db.String(300), nullable=False)
    response_type = db.Column(db.String(20), nullable=False, default="choice_custom")
    max_selections = db.Column(db.Integer, nullable=False, default=1)
    points = db.Column(db.Integer, nullable=False, default=0)
    order_index = db.Column(db.Integer, nullable=False, default=0)

    # Answer key; None until the authority configures it
    correct_option_ids = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    options = db.relationship(
        "BonusOption",
        backref="question",
        order_by="BonusOption.order_index",
        cascade="all, delete-orphan",
    )

    __table_args__ = (db.Index("idx_bonus_question_event", "event_id"),)

    def __repr__(self):
        return f"<BonusQuestion {self.id} event={self.event_id}>"

    @property
    def option_ids(self):
        return [option.id for option in self.options]

    @property
    def is_multi_select(self):
        return (self.max_selections or 1) > 1

    @property
    def has_answer_key(self):
        return bool(self.correct_option_ids)

    def to_dict(self):
        return {
            "id": self.id,
            "prompt": self.prompt,
            "response_type": self.response_type,
            "max_selections": self.max_selections,
            "points": self.points,
            "order": self.order_index,
            "correct_option_ids": self.correct_option_ids,
            "options": [option.to_dict() for option in self.options],
        }


class BonusOption(db.Model):
    __tablename__ = "bonus_options"

    id = db.Column(db.Integer, primary_key=True)
    question_id = db.Column(
        db.Integer, db.ForeignKey("bonus_questions.id"), nullable=False
    )

    label = db.Column(db.String(200), nullable=False)
    driver_id = db.Column(db.String(36), db.ForeignKey("drivers.id"), nullable=True)
    team_id = db.Column(db.String(36), db.ForeignKey("teams.id"), nullable=True)
    order_index = db.Column(db.Integer, nullable=False, default=0)

    def __repr__(self):
        return f"<BonusOption {self.id} {self.label}>"

    def to_dict(self):
        return {
            "id": self.id,
            "label": self.label,
            "driver_id": self.driver_id,
            "team_id": self.team_id,
            "order": self.order_index,
        }


class BonusResponse(db.Model):
    """One user's selection for one bonus question"""

    __tablename__ = "bonus_responses"

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(db.Integer, db.ForeignKey("bonus_events.id"), nullable=False)
    question_id = db.Column(
        db.Integer, db.ForeignKey("bonus_questions.id"), nullable=False
    )
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    selected_option_ids = db.Column(db.JSON, nullable=True)

    points_awarded = db.Column(db.Float, nullable=True)
    scored_at = db.Column(db.DateTime, nullable=True)

    submitted_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    question = db.relationship("BonusQuestion")

    __table_args__ = (
        db.Index("idx_bonus_response_event", "event_id"),
        db.Index("idx_bonus_response_user", "user_id"),
    )

    def __repr__(self):
        return f"<BonusResponse {self.id} user={self.user_id} question={self.question_id}>"

    def to_dict(self):
        return {
            "id": self.id,
            "event_id": self.event_id,
            "question_id": self.question_id,
            "user_id": self.user_id,
            "selected_option_ids": self.selected_option_ids or [],
            "points_awarded": self.points_awarded,
            "scored_at": self.scored_at.isoformat() if self.scored_at else None,
        }


class BonusLedgerEntry(db.Model):
    """
    Bonus points earned outside race scoring, one row per (user, source).

    Scoring a bonus event overwrites its entry; User.bonus_points is the sum
    of a user's entries.
    """

    __tablename__ = "bonus_ledger"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    source = db.Column(db.String(80), nullable=False)  # e.g. "bonus_event:12"
    points = db.Column(db.Float, nullable=False, default=0.0)

    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.UniqueConstraint("user_id", "source", name="unique_ledger_user_source"),
    )

    def __repr__(self):
        return f"<BonusLedgerEntry user={self.user_id} {self.source}={self.points}>"
