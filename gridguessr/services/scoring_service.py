"""
Scoring orchestration for GridGuessr

Entry points triggered by an administrative action (HTTP or CLI):

- publish_result: store a race result, score every logical prediction, grant
  badges and recompute standings of the impacted users
- score_bonus_event: score every logical bonus response once all answer keys
  are configured, write the bonus ledger and recompute standings
- set_bonus_answers / set_bonus_event_status / recompute_standings

All of them are safe to run repeatedly. Failures before iteration starts
(bad payload, unknown event) raise; failures for a single prediction, response
or user are reported in the returned summary and never abort the batch.
"""

from concurrent.futures import ThreadPoolExecutor, as_completed

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from gridguessr import db
from gridguessr.errors import ScoringError, ValidationError
from gridguessr.services.badges import BadgeGrantor, badges_for_scorecard
from gridguessr.services.deduplication import by_user, by_user_and_question, partition
from gridguessr.services.points import points_recomputer
from gridguessr.services.stores import (
    bonus_event_store,
    bonus_question_store,
    bonus_response_store,
    prediction_store,
    race_store,
    result_store,
    user_store,
)
from gridguessr.utils.cache_utils import invalidate_standings_cache
from gridguessr.utils.logging_config import ContextualLogger
from gridguessr.utils.outcomes import BatchReport, ItemOutcome
from gridguessr.utils.scoring import score_bonus_question, score_prediction
from gridguessr.utils.timezone_utils import get_utc_time

# Accepted payload keys per result column
RESULT_FIELD_ALIASES = {
    "pole_driver_id": ("pole_driver_id", "poleDriverId", "pole"),
    "winner_driver_id": ("winner_driver_id", "winnerDriverId", "winner"),
    "second_driver_id": ("second_driver_id", "secondDriverId", "second"),
    "third_driver_id": ("third_driver_id", "thirdDriverId", "third"),
    "fastest_lap_driver_id": ("fastest_lap_driver_id", "fastestLapDriverId", "fastestLap"),
    "fastest_pit_team_id": ("fastest_pit_team_id", "fastestPitTeamId", "fastestPit"),
    "first_dnf_driver_id": ("first_dnf_driver_id", "firstDnfDriverId", "firstDnf"),
    "no_dnf": ("no_dnf", "noDnf"),
    "safety_car": ("safety_car", "safetyCar"),
    "winning_margin": ("winning_margin", "winningMargin", "margin"),
    "wildcard_result": ("wildcard_result", "wildcardResult", "wildcard"),
}

BOOLEAN_RESULT_FIELDS = ("no_dnf", "safety_car", "wildcard_result")

BONUS_LEDGER_SOURCE = "bonus_event:{event_id}"


def _require_id(value, field):
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"{field} is required", field=field)
    return value


def _lookup(payload, aliases):
    for key in aliases:
        if key in payload:
            return payload[key]
    return None


def normalize_result_payload(payload):
    """
    Validate a result payload and map it onto result columns.

    Blank strings become None, identifiers are compared as strings, and a
    declared "no DNF" clears any first-DNF driver. Raises ValidationError
    before anything is written.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Result payload must be an object", field="result")

    answers = {}
    for field, aliases in RESULT_FIELD_ALIASES.items():
        value = _lookup(payload, aliases)

        if isinstance(value, str):
            value = value.strip() or None

        if field in BOOLEAN_RESULT_FIELDS:
            if value is not None and not isinstance(value, bool):
                raise ValidationError(f"{field} must be true or false", field=field)
        elif value is not None:
            if isinstance(value, bool) or not isinstance(value, (str, int)):
                raise ValidationError(f"{field} must be an identifier", field=field)
            value = str(value)

        answers[field] = value

    if answers["no_dnf"] is True:
        answers["first_dnf_driver_id"] = None
    answers["no_dnf"] = bool(answers["no_dnf"])

    if not any(
        answers[field] is not None for field in RESULT_FIELD_ALIASES if field != "no_dnf"
    ) and not answers["no_dnf"]:
        raise ValidationError("Result payload has no answers", field="result")

    return answers


def _max_workers():
    return max(int(current_app.config.get("SCORING_MAX_WORKERS", 8) or 1), 1)


def _score_concurrently(picks_by_key, answers):
    """
    Score every prediction snapshot against one result on a thread pool.

    Returns key -> ScoreCard, or key -> exception when scoring that
    prediction blew up. Workers only see plain dicts, never ORM rows.
    """
    cards = {}
    if not picks_by_key:
        return cards

    workers = min(_max_workers(), len(picks_by_key))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="race-score") as executor:
        futures = {
            executor.submit(score_prediction, picks, answers): key
            for key, picks in picks_by_key.items()
        }
        for future in as_completed(futures):
            key = futures[future]
            try:
                cards[key] = future.result()
            except Exception as e:
                cards[key] = e
    return cards


def _persist_prediction(prediction, card, grantor, race_id, scored_at):
    """Grant badges and write the score of one authoritative prediction"""
    with db.session.begin_nested():
        grants = grantor.grant_all(prediction.user_id, badges_for_scorecard(card), race_id)
        total = card.total_score

        if prediction.is_scored and prediction.score == total:
            outcome = ItemOutcome.skipped(prediction.id, "unchanged", points=total)
        else:
            prediction_store.update_score(prediction.id, total, scored_at)
            outcome = ItemOutcome.ok(prediction.id, points=total)

    return outcome, grants


def _clear_superseded(superseded, score_attr, store, log, settled, key=by_user):
    """
    Clear scores left on non-authoritative duplicates; returns affected user ids.

    Only duplicates whose authoritative row is in settled are cleared, a failed
    rescore leaves the previous score in place.
    """
    user_ids = set()
    for row in superseded:
        if getattr(row, score_attr) is None or key(row) not in settled:
            continue
        try:
            with db.session.begin_nested():
                store.clear_score(row.id)
            user_ids.add(row.user_id)
        except (ScoringError, SQLAlchemyError) as e:
            log.warning(f"Could not clear superseded submission {row.id}: {e}")
    return user_ids


def _summary(report, standings, **extra):
    summary = {
        "scoredCount": report.processed_count,
        "updatedCount": len(report.ok),
        "skippedCount": len(report.skipped),
        "failedCount": len(report.failed),
        "errors": report.errors(),
        "usersRecomputed": len(standings.ok),
        "recomputeErrors": standings.errors(),
    }
    summary.update(extra)
    return summary


def publish_result(race_id, payload):
    """
    Publish (or correct) the result of a race and score it.

    Returns a summary dict with scoredCount and the outcome distribution.
    """
    _require_id(race_id, "race_id")
    answers = normalize_result_payload(payload)
    race = race_store.require_event(race_id)

    log = ContextualLogger(__name__, {"race_id": race_id})
    log.info("Publishing race result")

    result = result_store.upsert_result(race_id, answers)
    result_answers = result.answers()

    deduped = partition(prediction_store.list_submissions(race_id))
    authoritative = deduped.authoritative

    # Snapshot picks on this thread, the session is not shared with workers
    cards = _score_concurrently(
        {user_id: prediction.picks() for user_id, prediction in authoritative.items()},
        result_answers,
    )

    report = BatchReport()
    grantor = BadgeGrantor()
    scored_at = get_utc_time()
    impacted = set()
    badges_granted = 0

    for user_id, prediction in authoritative.items():
        card = cards.get(user_id)
        if isinstance(card, Exception) or card is None:
            log.error(f"Scoring prediction {prediction.id} failed: {card}")
            report.add(ItemOutcome.failed(prediction.id, str(card)))
            continue

        try:
            outcome, grants = _persist_prediction(prediction, card, grantor, race_id, scored_at)
        except (ScoringError, SQLAlchemyError) as e:
            log.error(f"Persisting score of prediction {prediction.id} failed: {e}", exc_info=True)
            report.add(ItemOutcome.failed(prediction.id, str(e)))
            continue

        report.add(outcome)
        badges_granted += sum(1 for grant in grants if grant.status == "ok")
        impacted.add(user_id)

    impacted |= _clear_superseded(deduped.superseded, "score", prediction_store, log, set(impacted))

    # Every score write is settled before any total is rebuilt
    db.session.commit()
    standings = points_recomputer.recompute(impacted)

    if race.status != "archived":
        race_store.set_status(race_id, "completed")
    db.session.commit()
    invalidate_standings_cache()

    log.info(
        f"Scored {report.processed_count} predictions "
        f"({len(report.ok)} updated, {len(report.skipped)} unchanged, {len(report.failed)} failed)"
    )
    return _summary(
        report,
        standings,
        raceId=race_id,
        status=race.status,
        badgesGranted=badges_granted,
        discardedCount=deduped.discarded,
        supersededCount=len(deduped.superseded),
    )


def score_bonus_event(event_id):
    """
    Score every response of a bonus event.

    Refused with a ValidationError unless every question has an answer key.
    Bonus events grant no badges.
    """
    _require_id(event_id, "event_id")
    event = bonus_event_store.require_event(event_id)
    questions = bonus_question_store.list_questions(event_id)

    if not questions:
        raise ValidationError(f"Bonus event {event_id} has no questions", field="questions")

    unconfigured = [question.id for question in questions if not question.has_answer_key]
    if unconfigured:
        raise ValidationError(
            f"Questions without an answer key: {', '.join(str(q) for q in unconfigured)}",
            field="correct_option_ids",
        )

    log = ContextualLogger(__name__, {"bonus_event_id": event_id})
    questions_by_id = {question.id: question for question in questions}
    multiplier = event.points_multiplier or 1.0

    deduped = partition(
        bonus_response_store.list_submissions(event_id), key=by_user_and_question
    )

    report = BatchReport()
    scored_at = get_utc_time()
    event_points = {}
    settled = set()
    incomplete = set()

    for (user_id, question_id), response in deduped.authoritative.items():
        event_points.setdefault(user_id, 0)
        question = questions_by_id.get(question_id)
        if question is None:
            report.add(ItemOutcome.failed(response.id, f"question {question_id} is not part of the event"))
            incomplete.add(user_id)
            continue

        try:
            verdict = score_bonus_question(
                question,
                question.correct_option_ids,
                response.selected_option_ids,
                multiplier=multiplier,
            )
            with db.session.begin_nested():
                if response.scored_at is not None and response.points_awarded == verdict.points_earned:
                    outcome = ItemOutcome.skipped(response.id, "unchanged", points=verdict.points_earned)
                else:
                    bonus_response_store.update_score(response.id, verdict.points_earned, scored_at)
                    outcome = ItemOutcome.ok(response.id, points=verdict.points_earned)
        except Exception as e:
            log.error(f"Scoring bonus response {response.id} failed: {e}", exc_info=True)
            report.add(ItemOutcome.failed(response.id, str(e)))
            incomplete.add(user_id)
            continue

        report.add(outcome)
        event_points[user_id] += verdict.points_earned
        settled.add((user_id, question_id))

    _clear_superseded(
        deduped.superseded, "points_awarded", bonus_response_store, log, settled, key=by_user_and_question
    )

    source = BONUS_LEDGER_SOURCE.format(event_id=event_id)
    for user_id, points in event_points.items():
        # A partial tally would overwrite the entry of the last complete pass
        if user_id in incomplete:
            log.warning(f"Keeping previous ledger entry of user {user_id}, some responses failed")
            continue
        try:
            with db.session.begin_nested():
                user_store.upsert_ledger_entry(user_id, source, points)
        except SQLAlchemyError as e:
            log.error(f"Ledger write for user {user_id} failed: {e}")
            report.add(ItemOutcome.failed(("ledger", user_id), str(e)))

    db.session.commit()

    impacted = set(event_points)
    bonus_report = points_recomputer.refresh_bonus_points(impacted)
    report.extend(bonus_report.failed)
    standings = points_recomputer.recompute(impacted)

    if event.status != "archived":
        event.status = "scored"
    event.published_at = scored_at
    db.session.commit()
    invalidate_standings_cache()

    log.info(
        f"Scored {report.processed_count} bonus responses for {len(impacted)} users "
        f"({len(report.failed)} failed)"
    )
    return _summary(report, standings, eventId=event_id, status=event.status)


def set_bonus_answers(event_id, answers):
    """
    Configure the answer key of a bonus event.

    answers maps question id -> list of correct option ids. Every option id
    must belong to its question; nothing is written unless all of them do.
    """
    _require_id(event_id, "event_id")
    if not isinstance(answers, dict) or not answers:
        raise ValidationError("answers must map question ids to option ids", field="answers")

    event = bonus_event_store.require_event(event_id)
    questions_by_key = {str(question.id): question for question in event.questions}

    staged = []
    for question_key, option_ids in answers.items():
        question = questions_by_key.get(str(question_key))
        if question is None:
            raise ValidationError(
                f"Question {question_key} does not belong to bonus event {event_id}",
                field="answers",
            )

        if isinstance(option_ids, (str, int)):
            option_ids = [option_ids]
        if not isinstance(option_ids, list) or not option_ids:
            raise ValidationError(
                f"Question {question.id} needs at least one correct option", field="answers"
            )

        valid = {str(option_id): option_id for option_id in question.option_ids}
        resolved = []
        for option_id in option_ids:
            if str(option_id) not in valid:
                raise ValidationError(
                    f"Option {option_id} is not an option of question {question.id}",
                    field="answers",
                )
            if valid[str(option_id)] not in resolved:
                resolved.append(valid[str(option_id)])
        staged.append((question, resolved))

    for question, resolved in staged:
        question.correct_option_ids = resolved

    db.session.commit()
    ContextualLogger(__name__, {"bonus_event_id": event_id}).info(
        f"Answer key set for {len(staged)} questions"
    )
    return event


def set_bonus_event_status(event_id, status, force=False):
    _require_id(event_id, "event_id")
    event = bonus_event_store.set_status(event_id, status, force=force)
    db.session.commit()
    return event


def recompute_standings(user_ids=None):
    """Recompute totals for the given users, or everyone when user_ids is empty"""
    if not user_ids:
        user_ids = user_store.list_user_ids()

    standings = points_recomputer.recompute(user_ids)
    db.session.commit()
    invalidate_standings_cache()
    return {
        "usersRecomputed": len(standings.ok),
        "skippedCount": len(standings.skipped),
        "failedCount": len(standings.failed),
        "errors": standings.errors(),
    }
