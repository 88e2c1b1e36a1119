"""
Standings recomputation.

A user's total is never incremented in place. It is rebuilt from every scored
prediction the user has (best score per race) plus the bonus-points ledger,
and written back unconditionally.
"""

import logging

from sqlalchemy.exc import SQLAlchemyError

from gridguessr import db
from gridguessr.errors import ScoringError
from gridguessr.services.badges import PERFECT_SLATE
from gridguessr.services.stores import badge_store, prediction_store, user_store
from gridguessr.utils.outcomes import BatchReport, ItemOutcome

logger = logging.getLogger(__name__)


def best_scores_by_race(predictions):
    """
    Maximum non-null score per race.

    Stray duplicate rows for the same race are collapsed by taking the best
    score seen, so an unscored leftover row can never lower a total.
    """
    best = {}
    for prediction in predictions:
        if prediction.score is None:
            continue
        current = best.get(prediction.race_id)
        if current is None or prediction.score > current:
            best[prediction.race_id] = prediction.score
    return best


class PointsRecomputer:
    def __init__(self, users=None, predictions=None, badges=None):
        self.users = users or user_store
        self.predictions = predictions or prediction_store
        self.badges = badges or badge_store

    def compute_total(self, user_id):
        """Return (total_points, perfect_slates) for one user from full state"""
        user = self.users.get_user(user_id)
        if user is None:
            return None

        best = best_scores_by_race(self.predictions.list_for_users([user_id]))
        total = sum(best.values()) + (user.bonus_points or 0)
        perfect_slates = self.badges.count_grants(user_id, PERFECT_SLATE)
        return total, perfect_slates

    def _recompute_user(self, user_id):
        with db.session.begin_nested():
            computed = self.compute_total(user_id)
            if computed is None:
                return ItemOutcome.skipped(user_id, "user not found")

            total, perfect_slates = computed
            self.users.set_total_points(user_id, total, perfect_slates=perfect_slates)
        return ItemOutcome.ok(user_id, points=total)

    def recompute(self, user_ids):
        """
        Recompute standings for every user in user_ids.

        Each user runs in its own SAVEPOINT on the caller's session, one after
        another; one failure is reported and the remaining users still get
        recomputed. The caller commits.
        """
        report = BatchReport()
        for user_id in sorted(set(user_ids or [])):
            try:
                report.add(self._recompute_user(user_id))
            except (ScoringError, SQLAlchemyError) as e:
                logger.error(f"Failed to recompute points for user {user_id}: {e}", exc_info=True)
                report.add(ItemOutcome.failed(user_id, str(e)))

        logger.info(
            f"Recomputed standings for {len(report.ok)} users "
            f"({len(report.skipped)} skipped, {len(report.failed)} failed)"
        )
        return report

    def refresh_bonus_points(self, user_ids):
        """Set each user's bonus_points to the sum of their ledger entries"""
        report = BatchReport()
        for user_id in sorted(set(user_ids or [])):
            try:
                with db.session.begin_nested():
                    bonus_points = self.users.sum_ledger(user_id)
                    self.users.set_bonus_points(user_id, bonus_points)
                report.add(ItemOutcome.ok(user_id, points=bonus_points))
            except (ScoringError, SQLAlchemyError) as e:
                logger.error(f"Failed to refresh bonus points for user {user_id}: {e}", exc_info=True)
                report.add(ItemOutcome.failed(user_id, str(e)))
        return report


points_recomputer = PointsRecomputer()
