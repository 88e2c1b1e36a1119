"""
Scoring Engine for GridGuessr

This module holds the pure scoring rules: race category scoring against a
published result, the wildcard bonus, and bonus-question scoring. Nothing in
here touches the database, so it can run on worker threads. Persisting
scores, granting badges and recomputing standings is the job of
gridguessr.services.scoring_service.
"""

import math
from collections import namedtuple
from dataclasses import dataclass, field

CORRECT = "correct"
INCORRECT = "incorrect"
MISSING = "missing"  # nothing predicted / selected
PENDING = "pending"  # nothing to compare against yet

ScoreRule = namedtuple(
    "ScoreRule", ["key", "label", "prediction_field", "result_field", "points"]
)

# Static category -> points table. The base slate sums to 100.
SCORE_RULES = (
    ScoreRule("pole", "Pole Position", "pole_driver_id", "pole_driver_id", 15),
    ScoreRule("winner", "Race Winner", "winner_driver_id", "winner_driver_id", 15),
    ScoreRule("second", "Second Place", "second_driver_id", "second_driver_id", 10),
    ScoreRule("third", "Third Place", "third_driver_id", "third_driver_id", 10),
    ScoreRule(
        "fastest_lap",
        "Fastest Lap",
        "fastest_lap_driver_id",
        "fastest_lap_driver_id",
        10,
    ),
    ScoreRule(
        "fastest_pit", "Fastest Pit Stop", "fastest_pit_team_id", "fastest_pit_team_id", 10
    ),
    ScoreRule("first_dnf", "First DNF", "first_dnf_driver_id", "first_dnf_driver_id", 10),
    ScoreRule("safety_car", "Safety Car", "safety_car", "safety_car", 10),
    ScoreRule("winning_margin", "Winning Margin", "winning_margin", "winning_margin", 10),
)

CATEGORY_POINTS = {rule.key: rule.points for rule in SCORE_RULES}
BASE_MAX_POINTS = sum(CATEGORY_POINTS.values())
WILDCARD_POINTS = 10
PODIUM_KEYS = ("winner", "second", "third")

NO_DNF_LABEL = "No DNF"


def _is_blank(value):
    if value is None:
        return True
    return isinstance(value, str) and not value.strip()


def _same(predicted, actual):
    """Identity comparison of two referenced values, no partial credit"""
    # Keep True from matching 1 or "True"
    if isinstance(predicted, bool) or isinstance(actual, bool):
        return isinstance(predicted, bool) and isinstance(actual, bool) and predicted == actual
    return str(predicted) == str(actual)


def _as_mapping(source, accessor):
    if source is None:
        return {}
    if hasattr(source, accessor):
        return getattr(source, accessor)()
    return source


def _verdict(rule, predicted, actual, status):
    correct = status == CORRECT
    return {
        "key": rule.key,
        "label": rule.label,
        "predicted": predicted,
        "actual": actual,
        "status": status,
        "correct": correct,
        "points_earned": rule.points if correct else 0,
        "points_available": rule.points,
    }


def _evaluate_dnf(rule, picks, answers):
    """
    First DNF has two mutually exclusive branches. When the result declares
    no DNF, only a "no DNF" prediction is correct. Otherwise the predicted
    driver must match, and a prediction that also claimed "no DNF" never does.
    """
    predicted_no_dnf = picks.get("no_dnf") is True
    predicted_driver = picks.get("first_dnf_driver_id")
    actual_no_dnf = answers.get("no_dnf") is True
    actual_driver = answers.get("first_dnf_driver_id")

    predicted = NO_DNF_LABEL if predicted_no_dnf else predicted_driver
    actual = NO_DNF_LABEL if actual_no_dnf else actual_driver

    if not predicted_no_dnf and _is_blank(predicted_driver):
        return _verdict(rule, None, actual, MISSING)

    if not actual_no_dnf and _is_blank(actual_driver):
        return _verdict(rule, predicted, None, PENDING)

    if actual_no_dnf:
        correct = predicted_no_dnf
    else:
        correct = not predicted_no_dnf and _same(predicted_driver, actual_driver)

    return _verdict(rule, predicted, actual, CORRECT if correct else INCORRECT)


def evaluate_category(rule, picks, answers):
    """Score one category of a prediction against the result"""
    if rule.key == "first_dnf":
        return _evaluate_dnf(rule, picks, answers)

    predicted = picks.get(rule.prediction_field)
    actual = answers.get(rule.result_field)

    if _is_blank(predicted):
        return _verdict(rule, None, actual, MISSING)
    if _is_blank(actual):
        return _verdict(rule, predicted, None, PENDING)

    return _verdict(
        rule, predicted, actual, CORRECT if _same(predicted, actual) else INCORRECT
    )


def evaluate_wildcard(answer, result):
    """The wildcard is a single yes/no answer worth WILDCARD_POINTS, kept off the base slate"""
    if answer is None:
        status = MISSING
    elif result is None:
        status = PENDING
    else:
        status = CORRECT if _same(answer, result) else INCORRECT

    correct = status == CORRECT
    return {
        "key": "wildcard",
        "label": "Wildcard",
        "predicted": answer,
        "actual": result,
        "status": status,
        "correct": correct,
        "points_earned": WILDCARD_POINTS if correct else 0,
        "points_available": WILDCARD_POINTS,
    }


@dataclass
class ScoreCard:
    """Scoring outcome for one prediction"""

    categories: list = field(default_factory=list)
    wildcard: dict = None

    @property
    def base_score(self):
        return sum(category["points_earned"] for category in self.categories)

    @property
    def wildcard_points(self):
        return self.wildcard["points_earned"] if self.wildcard else 0

    @property
    def total_score(self):
        return self.base_score + self.wildcard_points

    @property
    def wildcard_correct(self):
        return bool(self.wildcard and self.wildcard["correct"])

    def is_correct(self, key):
        return any(c["key"] == key and c["correct"] for c in self.categories)

    @property
    def correct_keys(self):
        return [c["key"] for c in self.categories if c["correct"]]

    @property
    def perfect_podium(self):
        return all(self.is_correct(key) for key in PODIUM_KEYS)

    @property
    def perfect_slate(self):
        # Only the base slate counts; wildcard points never complete it
        return self.base_score == BASE_MAX_POINTS

    def to_dict(self):
        return {
            "categories": self.categories,
            "wildcard": self.wildcard,
            "base_score": self.base_score,
            "wildcard_points": self.wildcard_points,
            "total_score": self.total_score,
            "max_points": BASE_MAX_POINTS + WILDCARD_POINTS,
        }


def score_prediction(prediction, result):
    """
    Score a race prediction against a published result.

    Args:
        prediction: Prediction row or a mapping of its pick fields
        result: RaceResult row or a mapping of its answer fields

    Returns:
        ScoreCard with one verdict per category plus the wildcard. Missing
        picks score zero rather than raising.
    """
    picks = _as_mapping(prediction, "picks")
    answers = _as_mapping(result, "answers")

    categories = [evaluate_category(rule, picks, answers) for rule in SCORE_RULES]
    wildcard = evaluate_wildcard(
        picks.get("wildcard_answer"), answers.get("wildcard_result")
    )
    return ScoreCard(categories=categories, wildcard=wildcard)


# Bonus questions


@dataclass
class BonusVerdict:
    status: str
    points_earned: float
    points_available: float
    selection: list = field(default_factory=list)

    @property
    def correct(self):
        return self.status == CORRECT

    @property
    def is_pending(self):
        return self.status == PENDING

    def to_dict(self):
        return {
            "status": self.status,
            "correct": self.correct,
            "points_earned": self.points_earned,
            "points_available": self.points_available,
            "selection": self.selection,
        }


def _id_key(value):
    return str(value).strip()


def sanitize_selection(selected_option_ids, valid_option_ids, max_selections):
    """
    Drop ids that are not options of the question (and repeats), then keep
    at most max_selections in submission order.
    """
    valid = {_id_key(option_id): option_id for option_id in valid_option_ids or []}
    limit = max(int(max_selections or 1), 1)

    cleaned = []
    seen = set()
    for raw in selected_option_ids or []:
        if raw is None:
            continue
        key = _id_key(raw)
        if key not in valid or key in seen:
            continue
        seen.add(key)
        cleaned.append(valid[key])

    return cleaned[:limit]


def question_points(question, multiplier=1.0):
    # Halves round up, so 15 x 1.5 is worth 23
    return int(math.floor((question.points or 0) * (multiplier or 1.0) + 0.5))


def score_bonus_question(question, correct_option_ids, selected_option_ids, multiplier=1.0):
    """
    Score one bonus response.

    Single-select questions need the selected option to be the correct one.
    Multi-select questions (max_selections > 1) need the selection to equal
    the correct set exactly. Without an answer key the verdict is pending.
    """
    available = question_points(question, multiplier)
    correct_keys = {
        _id_key(option_id) for option_id in correct_option_ids or [] if option_id is not None
    }
    if not correct_keys:
        return BonusVerdict(status=PENDING, points_earned=0, points_available=available)

    selection = sanitize_selection(
        selected_option_ids, question.option_ids, question.max_selections
    )
    if not selection:
        return BonusVerdict(
            status=MISSING, points_earned=0, points_available=available, selection=[]
        )

    selected_keys = [_id_key(option_id) for option_id in selection]
    if (question.max_selections or 1) > 1:
        correct = set(selected_keys) == correct_keys
    else:
        correct = selected_keys[0] in correct_keys

    return BonusVerdict(
        status=CORRECT if correct else INCORRECT,
        points_earned=available if correct else 0,
        points_available=available,
        selection=selection,
    )
