from gridguessr import create_app, db
from gridguessr.models import (
    Badge,
    BonusEvent,
    BonusResponse,
    Driver,
    Prediction,
    Race,
    RaceResult,
    Team,
    User,
)

app = create_app()


@app.shell_context_processor
def make_shell_context():
    return {
        "db": db,
        "User": User,
        "Race": Race,
        "RaceResult": RaceResult,
        "Prediction": Prediction,
        "Badge": Badge,
        "BonusEvent": BonusEvent,
        "BonusResponse": BonusResponse,
        "Driver": Driver,
        "Team": Team,
    }


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=5000, debug=True)
