from gridguessr import db  # noqa: F401 - imported for model imports

from .badge import Badge, UserBadge
from .bonus import (
    BonusEvent,
    BonusLedgerEntry,
    BonusOption,
    BonusQuestion,
    BonusResponse,
)
from .prediction import Prediction
from .race import Race, RaceResult
from .team import Driver, Team
from .user import User

__all__ = [
    "User",
    "Team",
    "Driver",
    "Race",
    "RaceResult",
    "Prediction",
    "Badge",
    "UserBadge",
    "BonusEvent",
    "BonusQuestion",
    "BonusOption",
    "BonusResponse",
    "BonusLedgerEntry",
]
