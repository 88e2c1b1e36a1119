from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

from gridguessr.services.deduplication import (
    by_user_and_question,
    partition,
    reduce,
    submission_timestamp,
)

T1 = datetime(2025, 3, 1, 10, 0, tzinfo=timezone.utc)
T2 = T1 + timedelta(hours=1)


def row(id, user_id, updated_at=None, created_at=None, **extra):
    return SimpleNamespace(id=id, user_id=user_id, updated_at=updated_at, created_at=created_at, **extra)


def test_latest_updated_wins():
    older = row(1, 7, updated_at=T1)
    newer = row(2, 7, updated_at=T2)
    assert reduce([newer, older]) == {7: newer}


def test_falls_back_to_created_at():
    a = row(1, 7, created_at=T2)
    b = row(2, 7, created_at=T1)
    assert reduce([a, b])[7] is a


def test_identical_timestamps_prefer_highest_id():
    a = row(5, 7, updated_at=T1)
    b = row(9, 7, updated_at=T1)
    assert reduce([b, a])[7] is b
    assert reduce([a, b])[7] is b


def test_rows_without_user_are_discarded():
    valid = row(1, 7, updated_at=T1)
    result = partition([row(2, None, updated_at=T2), valid])
    assert result.authoritative == {7: valid}
    assert result.discarded == 1


def test_superseded_rows_are_reported():
    older = row(1, 7, updated_at=T1)
    newer = row(2, 7, updated_at=T2)
    other = row(3, 8, updated_at=T1)
    result = partition([older, newer, other])
    assert result.superseded == [older]
    assert set(result.authoritative) == {7, 8}


def test_naive_and_string_timestamps():
    naive = row(1, 7, updated_at=datetime(2025, 3, 1, 12, 0))
    text = row(2, 7, updated_at="2025-03-01T11:00:00Z")
    assert reduce([naive, text])[7] is naive
    assert submission_timestamp(text) == datetime(2025, 3, 1, 11, 0, tzinfo=timezone.utc)


def test_group_by_user_and_question():
    a = row(1, 7, updated_at=T1, question_id=1)
    b = row(2, 7, updated_at=T1, question_id=2)
    c = row(3, 7, updated_at=T2, question_id=1)
    result = reduce([a, b, c], key=by_user_and_question)
    assert result == {(7, 1): c, (7, 2): b}


def test_empty_input():
    result = partition([])
    assert result.authoritative == {}
    assert result.superseded == []
