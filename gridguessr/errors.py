"""
Error taxonomy for the scoring engine.

Only errors raised before iteration over a batch begins propagate to callers.
Failures for individual submissions or users are captured as ItemOutcome
records instead (see gridguessr.utils.outcomes).
"""


class ScoringError(Exception):
    """Base class for scoring engine errors"""


class ValidationError(ScoringError):
    """Malformed trigger: missing identifiers or invalid payload fields"""

    def __init__(self, message, field=None):
        super().__init__(message)
        self.field = field


class NotFoundError(ScoringError):
    """Referenced race, bonus event, result or user does not exist"""

    def __init__(self, entity, entity_id):
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class TransientPersistenceError(ScoringError):
    """A single read or write against the store failed"""

    def __init__(self, operation, original=None):
        message = f"Persistence failure during {operation}"
        if original is not None:
            message = f"{message}: {original}"
        super().__init__(message)
        self.operation = operation
        self.original = original


class IdempotentConflict(ScoringError):
    """A write collided with an identical earlier write (e.g. a repeated badge grant)"""
