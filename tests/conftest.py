from datetime import datetime, timedelta, timezone

import pytest

from gridguessr import create_app, db
from gridguessr.models import (
    BonusEvent,
    BonusOption,
    BonusQuestion,
    BonusResponse,
    Driver,
    Prediction,
    Race,
    Team,
    User,
)
from gridguessr.services.badges import seed_badges

T0 = datetime(2025, 3, 16, 12, 0, tzinfo=timezone.utc)

# Result used by the end-to-end scenarios
FULL_RESULT = {
    "winner": "D1",
    "second": "D2",
    "third": "D3",
    "pole": "D1",
    "fastestLap": "D4",
    "fastestPit": "T1",
    "noDnf": True,
    "safetyCar": False,
    "margin": "0-5s",
    "wildcard": True,
}

# Prediction fields matching FULL_RESULT exactly
PERFECT_PICKS = {
    "pole_driver_id": "D1",
    "winner_driver_id": "D1",
    "second_driver_id": "D2",
    "third_driver_id": "D3",
    "fastest_lap_driver_id": "D4",
    "fastest_pit_team_id": "T1",
    "no_dnf": True,
    "safety_car": False,
    "winning_margin": "0-5s",
    "wildcard_answer": True,
}


@pytest.fixture
def app():
    app = create_app("testing")
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def grid(app):
    """Two teams and five drivers with stable ids"""
    db.session.add_all(
        [
            Team(id="T1", name="Red Bull Racing"),
            Team(id="T2", name="Ferrari"),
            Driver(id="D1", name="Max Verstappen", number="1", team_id="T1"),
            Driver(id="D2", name="Charles Leclerc", number="16", team_id="T2"),
            Driver(id="D3", name="Lando Norris", number="4"),
            Driver(id="D4", name="Lewis Hamilton", number="44", team_id="T2"),
            Driver(id="D5", name="Oscar Piastri", number="81"),
        ]
    )
    db.session.commit()


@pytest.fixture
def badges(app):
    seed_badges()


@pytest.fixture
def make_race(app, grid):
    def _make_race(name="Australian Grand Prix", status="open", lock_time=None, round_number=1):
        race = Race(
            name=name,
            season=2025,
            round=round_number,
            status=status,
            lock_time=lock_time or T0 + timedelta(days=1),
            wildcard_question="Will a rookie score points?",
        )
        db.session.add(race)
        db.session.commit()
        return race

    return _make_race


@pytest.fixture
def race(make_race):
    return make_race()


@pytest.fixture
def make_user(app):
    counter = {"n": 0}

    def _make_user(username=None, is_admin=False, bonus_points=0.0):
        counter["n"] += 1
        user = User(
            username=username or f"racer{counter['n']}",
            is_admin=is_admin,
            bonus_points=bonus_points,
        )
        db.session.add(user)
        db.session.commit()
        return user

    return _make_user


@pytest.fixture
def make_prediction(app):
    def _make_prediction(user, race, updated_at=None, score=None, scored_at=None, **picks):
        stamp = updated_at or T0
        prediction = Prediction(
            user_id=user.id if user is not None else None,
            race_id=race.id,
            score=score,
            scored_at=scored_at,
            created_at=stamp,
            updated_at=stamp,
            **picks,
        )
        db.session.add(prediction)
        db.session.commit()
        return prediction

    return _make_prediction


@pytest.fixture
def admin(make_user):
    user = make_user(username="steward", is_admin=True)
    user.generate_api_token()
    db.session.commit()
    return user


@pytest.fixture
def admin_headers(admin):
    return {"X-Admin-Token": admin.api_token}


@pytest.fixture
def bonus_event(app, grid):
    """
    Sprint bonus event with a single-select driver question (10 pts) and a
    two-pick multi-select question (20 pts).
    """
    event = BonusEvent(title="Sprint Saturday", type="sprint", status="locked")
    db.session.add(event)
    db.session.flush()

    fastest = BonusQuestion(
        event_id=event.id,
        prompt="Who sets the fastest sprint lap?",
        response_type="choice_driver",
        max_selections=1,
        points=10,
        order_index=0,
    )
    top_two = BonusQuestion(
        event_id=event.id,
        prompt="Which two drivers finish on the sprint front row?",
        response_type="choice_driver",
        max_selections=2,
        points=20,
        order_index=1,
    )
    db.session.add_all([fastest, top_two])
    db.session.flush()

    for question in (fastest, top_two):
        for index, driver_id in enumerate(("D1", "D2", "D3")):
            db.session.add(
                BonusOption(
                    question_id=question.id,
                    label=driver_id,
                    driver_id=driver_id,
                    order_index=index,
                )
            )
    db.session.commit()
    return event


@pytest.fixture
def option_ids(bonus_event):
    """question index -> {driver id -> option id}"""
    return [
        {option.driver_id: option.id for option in question.options}
        for question in bonus_event.questions
    ]


@pytest.fixture
def make_response(app):
    def _make_response(user, question, selected, updated_at=None):
        stamp = updated_at or T0
        response = BonusResponse(
            event_id=question.event_id,
            question_id=question.id,
            user_id=user.id if user is not None else None,
            selected_option_ids=selected,
            submitted_at=stamp,
            updated_at=stamp,
        )
        db.session.add(response)
        db.session.commit()
        return response

    return _make_response
