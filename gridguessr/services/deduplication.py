"""
Submission deduplication.

The submission tables have no unique key on (user, event), so retried writes
can leave several rows for the same pair. This module derives the logical
view: one authoritative row per key, the most recently updated one. The other
rows are reported as superseded and are never deleted.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from gridguessr.utils.timezone_utils import parse_timestamp

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def submission_timestamp(submission):
    """updated_at, falling back to created_at (or submitted_at for bonus rows)"""
    for attr in ("updated_at", "created_at", "submitted_at"):
        value = parse_timestamp(getattr(submission, attr, None))
        if value is not None:
            return value
    return _EPOCH


def _recency_key(submission):
    # Identical timestamps resolve to the highest row id, the newest insert
    return (submission_timestamp(submission), submission.id or 0)


def by_user(submission):
    return submission.user_id


def by_user_and_question(submission):
    return (submission.user_id, submission.question_id)


@dataclass
class DeduplicatedSubmissions:
    authoritative: dict = field(default_factory=dict)
    superseded: list = field(default_factory=list)
    discarded: int = 0


def partition(submissions, key=by_user):
    """
    Split raw rows into the authoritative row per key and the superseded rest.

    Rows without a user id are dropped silently so malformed data never
    blocks scoring of valid rows.
    """
    groups = {}
    discarded = 0

    for submission in submissions:
        if getattr(submission, "user_id", None) is None:
            discarded += 1
            continue
        groups.setdefault(key(submission), []).append(submission)

    result = DeduplicatedSubmissions(discarded=discarded)
    for group_key, rows in groups.items():
        rows = sorted(rows, key=_recency_key)
        result.authoritative[group_key] = rows[-1]
        result.superseded.extend(rows[:-1])

    if discarded:
        logger.debug(f"Discarded {discarded} submissions without a user id")
    if result.superseded:
        logger.info(
            f"Collapsed {len(result.superseded)} duplicate submissions "
            f"into {len(result.authoritative)} logical submissions"
        )

    return result


def reduce(submissions, key=by_user):
    """Map of key (user id by default) -> authoritative submission"""
    return partition(submissions, key=key).authoritative
