"""Unit tests for race category scoring"""

import pytest

from gridguessr.utils.scoring import (
    BASE_MAX_POINTS,
    CATEGORY_POINTS,
    CORRECT,
    INCORRECT,
    MISSING,
    PENDING,
    WILDCARD_POINTS,
    score_prediction,
)

RESULT = {
    "pole_driver_id": "D1",
    "winner_driver_id": "D1",
    "second_driver_id": "D2",
    "third_driver_id": "D3",
    "fastest_lap_driver_id": "D4",
    "fastest_pit_team_id": "T1",
    "first_dnf_driver_id": None,
    "no_dnf": True,
    "safety_car": False,
    "winning_margin": "0-5s",
    "wildcard_result": True,
}

PERFECT = {
    "pole_driver_id": "D1",
    "winner_driver_id": "D1",
    "second_driver_id": "D2",
    "third_driver_id": "D3",
    "fastest_lap_driver_id": "D4",
    "fastest_pit_team_id": "T1",
    "first_dnf_driver_id": None,
    "no_dnf": True,
    "safety_car": False,
    "winning_margin": "0-5s",
    "wildcard_answer": True,
}


def _category(card, key):
    return next(c for c in card.categories if c["key"] == key)


class TestScoreRules:
    def test_base_slate_sums_to_100(self):
        assert BASE_MAX_POINTS == 100
        assert CATEGORY_POINTS["pole"] == 15
        assert CATEGORY_POINTS["winner"] == 15
        assert CATEGORY_POINTS["second"] == 10
        assert WILDCARD_POINTS == 10


class TestScorePrediction:
    def test_perfect_prediction(self):
        card = score_prediction(PERFECT, RESULT)
        assert card.base_score == 100
        assert card.wildcard_points == 10
        assert card.total_score == 110
        assert card.perfect_slate
        assert card.perfect_podium
        assert card.wildcard_correct

    def test_empty_prediction_scores_zero(self):
        card = score_prediction({}, RESULT)
        assert card.total_score == 0
        assert all(c["status"] == MISSING for c in card.categories)
        assert card.wildcard["status"] == MISSING

    def test_winner_only(self):
        card = score_prediction({"winner_driver_id": "D1"}, RESULT)
        assert card.base_score == 15
        assert card.total_score == 15
        assert card.correct_keys == ["winner"]
        assert not card.perfect_slate

    def test_winner_and_wildcard(self):
        card = score_prediction({"winner_driver_id": "D1", "wildcard_answer": True}, RESULT)
        assert card.base_score == 15
        assert card.total_score == 25
        assert not card.perfect_slate

    def test_total_never_exceeds_maximum(self):
        picks = dict(PERFECT, first_dnf_driver_id="D5")
        card = score_prediction(picks, RESULT)
        assert card.total_score <= BASE_MAX_POINTS + WILDCARD_POINTS

    def test_wildcard_does_not_complete_slate(self):
        picks = dict(PERFECT, winning_margin="5-10s")
        card = score_prediction(picks, RESULT)
        assert card.base_score == 90
        assert card.total_score == 100
        assert not card.perfect_slate

    def test_podium_requires_all_three(self):
        picks = dict(PERFECT, third_driver_id="D5")
        card = score_prediction(picks, RESULT)
        assert not card.perfect_podium
        assert _category(card, "third")["status"] == INCORRECT

    def test_margin_is_exact_string_match(self):
        card = score_prediction({"winning_margin": "0-5"}, RESULT)
        assert _category(card, "winning_margin")["status"] == INCORRECT

    def test_boolean_does_not_match_string(self):
        card = score_prediction({"safety_car": "False"}, RESULT)
        assert _category(card, "safety_car")["status"] == INCORRECT

    def test_safety_car_false_is_a_prediction(self):
        card = score_prediction({"safety_car": False}, RESULT)
        assert _category(card, "safety_car")["status"] == CORRECT

    def test_category_verdict_shape(self):
        verdict = _category(score_prediction(PERFECT, RESULT), "pole")
        assert verdict == {
            "key": "pole",
            "label": "Pole Position",
            "predicted": "D1",
            "actual": "D1",
            "status": CORRECT,
            "correct": True,
            "points_earned": 15,
            "points_available": 15,
        }

    def test_unpublished_category_is_pending(self):
        card = score_prediction({"winner_driver_id": "D1"}, {})
        assert _category(card, "winner")["status"] == PENDING
        assert card.total_score == 0

    def test_scores_model_objects(self, app, race, make_user, make_prediction):
        from gridguessr.models import RaceResult

        prediction = make_prediction(make_user(), race, **PERFECT_PICKS_MODEL)
        result = RaceResult(race_id=race.id, **RESULT)
        assert score_prediction(prediction, result).total_score == 110


PERFECT_PICKS_MODEL = {k: v for k, v in PERFECT.items() if v is not None}


class TestFirstDnf:
    @pytest.mark.parametrize(
        "picks, answers, status",
        [
            ({"no_dnf": True}, {"no_dnf": True}, CORRECT),
            ({"first_dnf_driver_id": "D5"}, {"no_dnf": True}, INCORRECT),
            ({"first_dnf_driver_id": "D5"}, {"first_dnf_driver_id": "D5"}, CORRECT),
            ({"first_dnf_driver_id": "D4"}, {"first_dnf_driver_id": "D5"}, INCORRECT),
            ({"no_dnf": True}, {"first_dnf_driver_id": "D5"}, INCORRECT),
            ({}, {"first_dnf_driver_id": "D5"}, MISSING),
        ],
    )
    def test_branches(self, picks, answers, status):
        card = score_prediction(picks, answers)
        assert _category(card, "first_dnf")["status"] == status

    def test_cannot_win_both_branches(self):
        # Claiming no DNF while naming the right driver is still wrong
        picks = {"no_dnf": True, "first_dnf_driver_id": "D5"}
        card = score_prediction(picks, {"first_dnf_driver_id": "D5"})
        assert _category(card, "first_dnf")["status"] == INCORRECT
        assert card.total_score == 0
