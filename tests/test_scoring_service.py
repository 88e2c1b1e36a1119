from datetime import timedelta

import pytest

from gridguessr import db
from gridguessr.errors import NotFoundError, ValidationError
from gridguessr.models import BonusResponse, Prediction, Race, RaceResult, User, UserBadge
from gridguessr.services import scoring_service
from gridguessr.services.badges import (
    GRAND_PRIX_MASTER,
    HALF_CENTURY,
    PERFECT_SLATE,
    PODIUM_PROPHET,
    WILDCARD_WIZARD,
)
from gridguessr.services.scoring_service import normalize_result_payload

from conftest import FULL_RESULT, PERFECT_PICKS, T0


def _badge_names(user_id, race_id):
    return sorted(
        grant.badge.name
        for grant in UserBadge.query.filter_by(user_id=user_id, race_id=race_id).all()
    )


class TestNormalizeResultPayload:
    def test_accepts_camel_and_snake_case(self):
        answers = normalize_result_payload({"winnerDriverId": "D1", "second_driver_id": "D2"})
        assert answers["winner_driver_id"] == "D1"
        assert answers["second_driver_id"] == "D2"

    def test_blank_strings_become_none(self):
        answers = normalize_result_payload({"winner": "D1", "pole": "  "})
        assert answers["pole_driver_id"] is None

    def test_no_dnf_clears_first_dnf(self):
        answers = normalize_result_payload({"noDnf": True, "firstDnf": "D5"})
        assert answers["no_dnf"] is True
        assert answers["first_dnf_driver_id"] is None

    def test_rejects_non_boolean_flags(self):
        with pytest.raises(ValidationError) as exc:
            normalize_result_payload({"winner": "D1", "safetyCar": "yes"})
        assert exc.value.field == "safety_car"

    def test_rejects_empty_payload(self):
        with pytest.raises(ValidationError):
            normalize_result_payload({})

    def test_rejects_non_object(self):
        with pytest.raises(ValidationError):
            normalize_result_payload(["D1"])


class TestPublishResult:
    def test_perfect_submission(self, race, make_user, make_prediction, badges):
        user = make_user()
        prediction = make_prediction(user, race, **PERFECT_PICKS)

        summary = scoring_service.publish_result(race.id, FULL_RESULT)

        assert summary["scoredCount"] == 1
        assert summary["failedCount"] == 0
        assert db.session.get(Prediction, prediction.id).score == 110
        assert db.session.get(User, user.id).total_points == 110
        assert db.session.get(User, user.id).perfect_slates == 1

        names = _badge_names(user.id, race.id)
        for name in (PERFECT_SLATE, PODIUM_PROPHET, HALF_CENTURY, WILDCARD_WIZARD, GRAND_PRIX_MASTER):
            assert names.count(name) == 1

    def test_winner_only_submission(self, race, make_user, make_prediction, badges):
        user = make_user()
        with_wildcard = make_user()
        make_prediction(user, race, winner_driver_id="D1")
        make_prediction(with_wildcard, race, winner_driver_id="D1", wildcard_answer=True)

        scoring_service.publish_result(race.id, FULL_RESULT)

        assert db.session.get(User, user.id).total_points == 15
        assert db.session.get(User, with_wildcard.id).total_points == 25
        assert PERFECT_SLATE not in _badge_names(user.id, race.id)

    def test_later_duplicate_is_authoritative(self, race, make_user, make_prediction, badges):
        user = make_user()
        stale = make_prediction(
            user, race, updated_at=T0, score=40, scored_at=T0, winner_driver_id="D2"
        )
        fresh = make_prediction(
            user, race, updated_at=T0 + timedelta(hours=2), winner_driver_id="D1", pole_driver_id="D1"
        )

        summary = scoring_service.publish_result(race.id, FULL_RESULT)

        assert summary["scoredCount"] == 1
        assert db.session.get(Prediction, fresh.id).score == 30
        assert db.session.get(Prediction, stale.id).score is None
        assert db.session.get(User, user.id).total_points == 30

    def test_rerun_is_idempotent(self, race, make_user, make_prediction, badges):
        user = make_user()
        prediction = make_prediction(user, race, **PERFECT_PICKS)

        first = scoring_service.publish_result(race.id, FULL_RESULT)
        grants = UserBadge.query.count()
        second = scoring_service.publish_result(race.id, FULL_RESULT)

        assert first["updatedCount"] == 1
        assert second["updatedCount"] == 0
        assert second["skippedCount"] == 1
        assert second["badgesGranted"] == 0
        assert UserBadge.query.count() == grants
        assert db.session.get(Prediction, prediction.id).score == 110
        assert db.session.get(User, user.id).total_points == 110
        assert RaceResult.query.filter_by(race_id=race.id).count() == 1

    def test_correction_rescores(self, race, make_user, make_prediction, badges):
        user = make_user()
        prediction = make_prediction(user, race, winner_driver_id="D1")
        scoring_service.publish_result(race.id, FULL_RESULT)

        corrected = dict(FULL_RESULT, winner="D2")
        summary = scoring_service.publish_result(race.id, corrected)

        assert summary["updatedCount"] == 1
        assert db.session.get(Prediction, prediction.id).score == 0
        assert db.session.get(User, user.id).total_points == 0

    def test_bad_rows_do_not_block_others(self, race, make_user, make_prediction, badges):
        user = make_user()
        make_prediction(None, race, winner_driver_id="D1")
        make_prediction(user, race, winner_driver_id="D1")

        summary = scoring_service.publish_result(race.id, FULL_RESULT)

        assert summary["scoredCount"] == 1
        assert summary["discardedCount"] == 1
        assert db.session.get(User, user.id).total_points == 15

    def test_scoring_failure_is_isolated(self, race, make_user, make_prediction, badges, monkeypatch):
        healthy = make_user()
        broken = make_user()
        make_prediction(healthy, race, winner_driver_id="D1")
        make_prediction(broken, race, winner_driver_id="D1")

        real_score = scoring_service.score_prediction

        def flaky_score(picks, answers):
            if picks.get("pole_driver_id") == "boom":
                raise ValueError("corrupt pick")
            return real_score(picks, answers)

        Prediction.query.filter_by(user_id=broken.id).update({"pole_driver_id": "boom"})
        db.session.commit()
        monkeypatch.setattr(scoring_service, "score_prediction", flaky_score)

        summary = scoring_service.publish_result(race.id, FULL_RESULT)

        assert summary["scoredCount"] == 1
        assert summary["failedCount"] == 1
        assert "corrupt pick" in summary["errors"][0]["reason"]
        assert db.session.get(User, healthy.id).total_points == 15

    def test_failed_rescore_keeps_previous_score(self, race, make_user, make_prediction, badges, monkeypatch):
        user = make_user()
        stale = make_prediction(user, race, score=40, scored_at=T0, winner_driver_id="D1")
        make_prediction(user, race, updated_at=T0 + timedelta(hours=2), pole_driver_id="boom")
        user.total_points = 40
        db.session.commit()

        real_score = scoring_service.score_prediction

        def flaky_score(picks, answers):
            if picks.get("pole_driver_id") == "boom":
                raise ValueError("corrupt pick")
            return real_score(picks, answers)

        monkeypatch.setattr(scoring_service, "score_prediction", flaky_score)

        summary = scoring_service.publish_result(race.id, FULL_RESULT)

        assert summary["failedCount"] == 1
        assert db.session.get(Prediction, stale.id).score == 40
        assert db.session.get(User, user.id).total_points == 40

    def test_marks_race_completed(self, race, make_user, make_prediction):
        scoring_service.publish_result(race.id, FULL_RESULT)
        assert db.session.get(Race, race.id).status == "completed"

    def test_missing_badge_definitions_do_not_fail(self, race, make_user, make_prediction):
        user = make_user()
        make_prediction(user, race, **PERFECT_PICKS)

        summary = scoring_service.publish_result(race.id, FULL_RESULT)

        assert summary["failedCount"] == 0
        assert db.session.get(User, user.id).total_points == 110
        assert UserBadge.query.count() == 0

    def test_unknown_race(self, app):
        with pytest.raises(NotFoundError):
            scoring_service.publish_result(999, FULL_RESULT)

    def test_missing_race_id(self, app):
        with pytest.raises(ValidationError):
            scoring_service.publish_result(None, FULL_RESULT)

    def test_invalid_payload_writes_nothing(self, race):
        with pytest.raises(ValidationError):
            scoring_service.publish_result(race.id, {"winner": "D1", "noDnf": "maybe"})
        assert RaceResult.query.count() == 0


class TestScoreBonusEvent:
    def test_scores_and_writes_ledger(self, bonus_event, option_ids, make_user, make_response):
        fastest, front_row = bonus_event.questions
        scoring_service.set_bonus_answers(
            bonus_event.id,
            {
                str(fastest.id): [option_ids[0]["D1"]],
                str(front_row.id): [option_ids[1]["D1"], option_ids[1]["D2"]],
            },
        )
        sharp = make_user()
        partial = make_user()
        make_response(sharp, fastest, [option_ids[0]["D1"]])
        make_response(sharp, front_row, [option_ids[1]["D2"], option_ids[1]["D1"]])
        make_response(partial, fastest, [option_ids[0]["D1"]])
        make_response(partial, front_row, [option_ids[1]["D1"]])

        summary = scoring_service.score_bonus_event(bonus_event.id)

        assert summary["scoredCount"] == 4
        assert summary["errors"] == []
        assert db.session.get(User, sharp.id).bonus_points == 30
        assert db.session.get(User, sharp.id).total_points == 30
        assert db.session.get(User, partial.id).total_points == 10
        assert bonus_event.status == "scored"
        assert bonus_event.published_at is not None
        assert UserBadge.query.count() == 0

    def test_rescoring_overwrites_ledger(self, bonus_event, option_ids, make_user, make_response):
        fastest, front_row = bonus_event.questions
        answers = {
            str(fastest.id): [option_ids[0]["D1"]],
            str(front_row.id): [option_ids[1]["D1"], option_ids[1]["D2"]],
        }
        scoring_service.set_bonus_answers(bonus_event.id, answers)
        user = make_user()
        make_response(user, fastest, [option_ids[0]["D1"]])

        scoring_service.score_bonus_event(bonus_event.id)
        scoring_service.score_bonus_event(bonus_event.id)

        assert db.session.get(User, user.id).bonus_points == 10
        assert db.session.get(User, user.id).total_points == 10

    def test_latest_response_wins(self, bonus_event, option_ids, make_user, make_response):
        fastest, front_row = bonus_event.questions
        scoring_service.set_bonus_answers(
            bonus_event.id,
            {str(fastest.id): [option_ids[0]["D1"]], str(front_row.id): [option_ids[1]["D3"]]},
        )
        user = make_user()
        make_response(user, fastest, [option_ids[0]["D1"]], updated_at=T0)
        make_response(user, fastest, [option_ids[0]["D2"]], updated_at=T0 + timedelta(minutes=5))

        summary = scoring_service.score_bonus_event(bonus_event.id)

        assert summary["scoredCount"] == 1
        assert db.session.get(User, user.id).bonus_points == 0

    def test_failed_rescore_keeps_previous_bonus(
        self, bonus_event, option_ids, make_user, make_response, monkeypatch
    ):
        fastest, front_row = bonus_event.questions
        scoring_service.set_bonus_answers(
            bonus_event.id,
            {str(fastest.id): [option_ids[0]["D1"]], str(front_row.id): [option_ids[1]["D3"]]},
        )
        user = make_user()
        stale = make_response(user, fastest, [option_ids[0]["D1"]], updated_at=T0)
        scoring_service.score_bonus_event(bonus_event.id)
        assert db.session.get(User, user.id).bonus_points == 10

        make_response(user, fastest, [option_ids[0]["D2"]], updated_at=T0 + timedelta(minutes=5))

        def broken_score(*args, **kwargs):
            raise ValueError("corrupt selection")

        monkeypatch.setattr(scoring_service, "score_bonus_question", broken_score)

        summary = scoring_service.score_bonus_event(bonus_event.id)

        assert summary["failedCount"] == 1
        assert db.session.get(BonusResponse, stale.id).points_awarded == 10
        assert db.session.get(User, user.id).bonus_points == 10
        assert db.session.get(User, user.id).total_points == 10

    def test_multiplier_applies(self, bonus_event, option_ids, make_user, make_response):
        fastest, front_row = bonus_event.questions
        bonus_event.points_multiplier = 2.0
        db.session.commit()
        scoring_service.set_bonus_answers(
            bonus_event.id,
            {str(fastest.id): [option_ids[0]["D1"]], str(front_row.id): [option_ids[1]["D3"]]},
        )
        user = make_user()
        make_response(user, fastest, [option_ids[0]["D1"]])

        scoring_service.score_bonus_event(bonus_event.id)

        assert db.session.get(User, user.id).bonus_points == 20

    def test_refused_without_answer_keys(self, bonus_event, option_ids, make_user, make_response):
        fastest, _ = bonus_event.questions
        scoring_service.set_bonus_answers(bonus_event.id, {str(fastest.id): [option_ids[0]["D1"]]})
        make_response(make_user(), fastest, [option_ids[0]["D1"]])

        with pytest.raises(ValidationError):
            scoring_service.score_bonus_event(bonus_event.id)

        assert all(r.points_awarded is None for r in bonus_event.responses.all())

    def test_bonus_and_race_points_combine(
        self, race, bonus_event, option_ids, make_user, make_prediction, make_response
    ):
        fastest, front_row = bonus_event.questions
        scoring_service.set_bonus_answers(
            bonus_event.id,
            {str(fastest.id): [option_ids[0]["D1"]], str(front_row.id): [option_ids[1]["D3"]]},
        )
        user = make_user()
        make_prediction(user, race, winner_driver_id="D1")
        make_response(user, fastest, [option_ids[0]["D1"]])

        scoring_service.score_bonus_event(bonus_event.id)
        scoring_service.publish_result(race.id, FULL_RESULT)

        assert db.session.get(User, user.id).total_points == 25


class TestSetBonusAnswers:
    def test_rejects_foreign_option(self, bonus_event, option_ids):
        fastest, _ = bonus_event.questions
        with pytest.raises(ValidationError):
            scoring_service.set_bonus_answers(
                bonus_event.id, {str(fastest.id): [option_ids[1]["D1"]]}
            )
        assert fastest.correct_option_ids is None

    def test_rejects_unknown_question(self, bonus_event):
        with pytest.raises(ValidationError):
            scoring_service.set_bonus_answers(bonus_event.id, {"9999": [1]})

    def test_resolves_string_ids(self, bonus_event, option_ids):
        fastest, _ = bonus_event.questions
        scoring_service.set_bonus_answers(
            bonus_event.id, {str(fastest.id): [str(option_ids[0]["D2"])]}
        )
        assert fastest.correct_option_ids == [option_ids[0]["D2"]]


class TestBonusEventStatus:
    def test_forward_only_without_force(self, bonus_event):
        with pytest.raises(ValidationError):
            scoring_service.set_bonus_event_status(bonus_event.id, "open")

        event = scoring_service.set_bonus_event_status(bonus_event.id, "open", force=True)
        assert event.status == "open"
