"""
Badge catalog and grants.

Granting is idempotent: the insert is always attempted and a uniqueness
violation on (user, badge, race) counts as "already granted". Badge
definitions are provisioned out-of-band; a name with no definition is a
silent no-op so a missing row never fails scoring.
"""

import logging

from gridguessr import db
from gridguessr.errors import IdempotentConflict, TransientPersistenceError
from gridguessr.models import Badge
from gridguessr.services.stores import badge_store
from gridguessr.utils.outcomes import ItemOutcome
from gridguessr.utils.scoring import BASE_MAX_POINTS

logger = logging.getLogger(__name__)

POLE_PROPHET = "Pole Prophet"
WINNER_WIZARD = "Winner Wizard"
SILVER_SEER = "Silver Seer"
BRONZE_BRAINIAC = "Bronze Brainiac"
PODIUM_PROPHET = "Podium Prophet"
LAP_LEGEND = "Lap Legend"
PIT_PSYCHIC = "Pit Psychic"
DNF_DETECTIVE = "DNF Detective"
SAFETY_SAGE = "Safety Sage"
MARGIN_MASTER = "Margin Master"
HALF_CENTURY = "Half Century"
PERFECT_SLATE = "Perfect Slate"
WILDCARD_WIZARD = "Wildcard Wizard"
GRAND_PRIX_MASTER = "Grand Prix Master"

HALF_CENTURY_THRESHOLD = 50

CATEGORY_BADGES = {
    "pole": POLE_PROPHET,
    "winner": WINNER_WIZARD,
    "second": SILVER_SEER,
    "third": BRONZE_BRAINIAC,
    "fastest_lap": LAP_LEGEND,
    "fastest_pit": PIT_PSYCHIC,
    "first_dnf": DNF_DETECTIVE,
    "safety_car": SAFETY_SAGE,
    "winning_margin": MARGIN_MASTER,
}

BADGE_CATALOG = [
    {"name": POLE_PROPHET, "description": "Correctly predict pole position", "icon": "🏎️", "type": "prediction"},
    {"name": WINNER_WIZARD, "description": "Correctly predict the race winner", "icon": "🏆", "type": "prediction"},
    {"name": SILVER_SEER, "description": "Correctly predict second place", "icon": "🥈", "type": "prediction"},
    {"name": BRONZE_BRAINIAC, "description": "Correctly predict third place", "icon": "🥉", "type": "prediction"},
    {"name": PODIUM_PROPHET, "description": "Predict the whole podium in order", "icon": "🍾", "type": "achievement"},
    {"name": LAP_LEGEND, "description": "Correctly predict the fastest lap", "icon": "⏱️", "type": "prediction"},
    {"name": PIT_PSYCHIC, "description": "Correctly predict the fastest pit stop", "icon": "🔧", "type": "prediction"},
    {"name": DNF_DETECTIVE, "description": "Correctly predict the first DNF (or no DNF)", "icon": "🔍", "type": "prediction"},
    {"name": SAFETY_SAGE, "description": "Correctly predict whether a safety car appears", "icon": "🚨", "type": "prediction"},
    {"name": MARGIN_MASTER, "description": "Correctly predict the winning margin", "icon": "📏", "type": "prediction"},
    {"name": HALF_CENTURY, "description": "Score at least 50 base points in a race", "icon": "5️⃣", "type": "achievement"},
    {"name": PERFECT_SLATE, "description": "Score all 100 base points in a race", "icon": "💯", "type": "achievement"},
    {"name": WILDCARD_WIZARD, "description": "Correctly predict the wildcard bonus question", "icon": "🪄", "type": "prediction"},
    {"name": GRAND_PRIX_MASTER, "description": "Perfect slate with the wildcard bonus", "icon": "🏁", "type": "achievement"},
]


def badges_for_scorecard(card):
    """
    Badge names a race ScoreCard earns, in grant order.

    Compound badges are derived from the card here rather than inside the
    scorer: Half Century and Perfect Slate look at the base score only, and
    Grand Prix Master needs both a perfect base and the wildcard.
    """
    names = [CATEGORY_BADGES[key] for key in card.correct_keys if key in CATEGORY_BADGES]

    if card.perfect_podium:
        names.append(PODIUM_PROPHET)
    if card.base_score >= HALF_CENTURY_THRESHOLD:
        names.append(HALF_CENTURY)
    if card.base_score == BASE_MAX_POINTS:
        names.append(PERFECT_SLATE)
    if card.wildcard_correct:
        names.append(WILDCARD_WIZARD)
        if card.base_score == BASE_MAX_POINTS:
            names.append(GRAND_PRIX_MASTER)

    return names


class BadgeGrantor:
    """Idempotent badge grants for race scoring"""

    def __init__(self, store=None):
        self.store = store or badge_store
        self._badge_ids = {}

    def _resolve(self, badge_name):
        if badge_name not in self._badge_ids:
            badge = self.store.find_badge_by_name(badge_name)
            self._badge_ids[badge_name] = badge.id if badge else None
        return self._badge_ids[badge_name]

    def grant(self, user_id, badge_name, race_id):
        """
        Grant badge_name to user_id for race_id.

        Returns an ItemOutcome: ok for a new grant, skipped for an unknown
        badge or an existing grant, failed for a storage error. Never raises.
        """
        key = (user_id, badge_name, race_id)
        try:
            badge_id = self._resolve(badge_name)
            if badge_id is None:
                logger.debug(f"Badge '{badge_name}' is not provisioned, skipping grant")
                return ItemOutcome.skipped(key, "badge not provisioned")

            self.store.insert_grant(user_id, badge_id, race_id)
            logger.info(f"Granted '{badge_name}' to user {user_id} for race {race_id}")
            return ItemOutcome.ok(key)

        except IdempotentConflict:
            logger.debug(f"'{badge_name}' already granted to user {user_id} for race {race_id}")
            return ItemOutcome.skipped(key, "already granted")
        except TransientPersistenceError as e:
            logger.warning(f"Badge grant failed for user {user_id}: {e}")
            return ItemOutcome.failed(key, str(e))

    def grant_all(self, user_id, badge_names, race_id):
        return [self.grant(user_id, name, race_id) for name in badge_names]


def seed_badges():
    """Upsert the badge catalog by name; safe to run repeatedly"""
    created = 0
    for definition in BADGE_CATALOG:
        badge = Badge.query.filter_by(name=definition["name"]).first()
        if badge is None:
            badge = Badge(name=definition["name"])
            db.session.add(badge)
            created += 1
        badge.description = definition["description"]
        badge.icon = definition["icon"]
        badge.type = definition["type"]

    db.session.commit()
    logger.info(f"Badge catalog seeded ({created} new, {len(BADGE_CATALOG)} total)")
    return created
