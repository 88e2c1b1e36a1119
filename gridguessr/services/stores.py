"""
Store layer consumed by the scoring engine.

Each store is a thin wrapper over the SQLAlchemy models exposing only the
get/upsert/filter operations the engine needs. SQLAlchemy failures are
re-raised as TransientPersistenceError; badge uniqueness violations surface
as IdempotentConflict so the grantor can tell them apart.
"""

import logging

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from gridguessr import db
from gridguessr.errors import (
    IdempotentConflict,
    NotFoundError,
    TransientPersistenceError,
    ValidationError,
)
from gridguessr.models import (
    Badge,
    BonusEvent,
    BonusLedgerEntry,
    BonusQuestion,
    BonusResponse,
    Prediction,
    Race,
    RaceResult,
    User,
    UserBadge,
)
from gridguessr.models.bonus import BONUS_EVENT_STATUSES
from gridguessr.models.race import RACE_STATUSES

logger = logging.getLogger(__name__)


class EventStore:
    """Races and bonus events share the same lifecycle operations"""

    def __init__(self, model, statuses, entity_name):
        self.model = model
        self.statuses = statuses
        self.entity_name = entity_name

    def get_event(self, event_id):
        try:
            return db.session.get(self.model, event_id)
        except SQLAlchemyError as e:
            raise TransientPersistenceError(f"load {self.entity_name} {event_id}", e)

    def require_event(self, event_id):
        event = self.get_event(event_id)
        if event is None:
            raise NotFoundError(self.entity_name, event_id)
        return event

    def list_events(self, statuses=None):
        query = self.model.query
        if statuses:
            query = query.filter(self.model.status.in_(statuses))
        return query.order_by(self.model.id).all()

    def upsert_event(self, event):
        db.session.add(event)
        db.session.flush()
        return event

    def set_status(self, event_id, status, force=False):
        """Move an event forward; regressions need an administrative override"""
        if status not in self.statuses:
            raise ValidationError(f"Unknown status '{status}'", field="status")

        event = self.require_event(event_id)
        if not force and self.statuses.index(status) < self.statuses.index(
            event.status
        ):
            raise ValidationError(
                f"Cannot move {self.entity_name} {event_id} from {event.status} back to {status}",
                field="status",
            )

        if event.status != status:
            logger.info(
                f"{self.entity_name} {event_id} status {event.status} -> {status}"
            )
            event.status = status
        return event


race_store = EventStore(Race, RACE_STATUSES, "Race")
bonus_event_store = EventStore(BonusEvent, BONUS_EVENT_STATUSES, "Bonus event")


class ResultStore:
    def get_result(self, race_id):
        return RaceResult.query.filter_by(race_id=race_id).first()

    def upsert_result(self, race_id, answers):
        """Single row per race, last write wins"""
        result = self.get_result(race_id)
        if result is None:
            result = RaceResult(race_id=race_id)
            db.session.add(result)

        for field_name in RaceResult.ANSWER_FIELDS:
            setattr(result, field_name, answers.get(field_name))

        try:
            db.session.flush()
        except SQLAlchemyError as e:
            raise TransientPersistenceError(f"upsert result for race {race_id}", e)
        return result


result_store = ResultStore()


class SubmissionStore:
    """
    Raw submission rows for one submission model.

    Scores are written with a bulk UPDATE that leaves updated_at untouched:
    updated_at orders duplicates by when their picks changed, and a score
    write must not promote a superseded row.
    """

    def __init__(self, model, event_field, score_field):
        self.model = model
        self.event_field = event_field
        self.score_field = score_field

    def list_submissions(self, event_id):
        column = getattr(self.model, self.event_field)
        return self.model.query.filter(column == event_id).order_by(self.model.id).all()

    def list_for_users(self, user_ids):
        if not user_ids:
            return []
        return self.model.query.filter(self.model.user_id.in_(list(user_ids))).all()

    def update_score(self, submission_id, score, scored_at):
        stmt = (
            update(self.model)
            .where(self.model.id == submission_id)
            .values(
                {
                    self.score_field: score,
                    "scored_at": scored_at,
                    "updated_at": self.model.updated_at,
                }
            )
            .execution_options(synchronize_session="fetch")
        )
        try:
            db.session.execute(stmt)
        except SQLAlchemyError as e:
            raise TransientPersistenceError(
                f"update score of {self.model.__name__} {submission_id}", e
            )

    def clear_score(self, submission_id):
        self.update_score(submission_id, None, None)


prediction_store = SubmissionStore(Prediction, "race_id", "score")
bonus_response_store = SubmissionStore(BonusResponse, "event_id", "points_awarded")


class BonusQuestionStore:
    def list_questions(self, event_id):
        return (
            BonusQuestion.query.filter_by(event_id=event_id)
            .order_by(BonusQuestion.order_index, BonusQuestion.id)
            .all()
        )


bonus_question_store = BonusQuestionStore()


class BadgeStore:
    def find_badge_by_name(self, name):
        return Badge.query.filter_by(name=name).first()

    def insert_grant(self, user_id, badge_id, race_id):
        """
        Insert a grant inside a SAVEPOINT. A duplicate (user, badge, race)
        raises IdempotentConflict and leaves the outer transaction intact.
        """
        try:
            with db.session.begin_nested():
                grant = UserBadge(user_id=user_id, badge_id=badge_id, race_id=race_id)
                db.session.add(grant)
        except IntegrityError as e:
            raise IdempotentConflict(
                f"badge {badge_id} already granted to user {user_id} for race {race_id}"
            ) from e
        except SQLAlchemyError as e:
            raise TransientPersistenceError("insert badge grant", e)
        return grant

    def count_grants(self, user_id, badge_name):
        return (
            UserBadge.query.join(Badge)
            .filter(UserBadge.user_id == user_id, Badge.name == badge_name)
            .count()
        )

    def list_user_grants(self, user_id):
        return (
            UserBadge.query.filter_by(user_id=user_id)
            .order_by(UserBadge.earned_at.desc(), UserBadge.id.desc())
            .all()
        )


badge_store = BadgeStore()


class UserStore:
    def get_user(self, user_id):
        try:
            return db.session.get(User, user_id)
        except SQLAlchemyError as e:
            raise TransientPersistenceError(f"load user {user_id}", e)

    def list_user_ids(self):
        return [row[0] for row in db.session.query(User.id).order_by(User.id).all()]

    def set_total_points(self, user_id, total, perfect_slates=None):
        user = self.get_user(user_id)
        if user is None:
            raise NotFoundError("User", user_id)
        user.total_points = total
        if perfect_slates is not None:
            user.perfect_slates = perfect_slates
        return user

    def upsert_ledger_entry(self, user_id, source, points):
        entry = BonusLedgerEntry.query.filter_by(user_id=user_id, source=source).first()
        if entry is None:
            entry = BonusLedgerEntry(user_id=user_id, source=source)
            db.session.add(entry)
        entry.points = points
        return entry

    def sum_ledger(self, user_id):
        db.session.flush()
        total = (
            db.session.query(func.coalesce(func.sum(BonusLedgerEntry.points), 0.0))
            .filter(BonusLedgerEntry.user_id == user_id)
            .scalar()
        )
        return float(total or 0.0)

    def set_bonus_points(self, user_id, bonus_points):
        user = self.get_user(user_id)
        if user is None:
            raise NotFoundError("User", user_id)
        user.bonus_points = bonus_points
        return user


user_store = UserStore()
