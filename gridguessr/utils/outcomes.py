"""
Per-item outcome records for batch operations.

A batch (scoring every submission of a race, recomputing every impacted user)
never aborts because one item failed. Each item instead reports Ok, Skipped or
Failed so callers and tests can inspect the distribution.
"""

from dataclasses import dataclass, field

OK = "ok"
SKIPPED = "skipped"
FAILED = "failed"


@dataclass
class ItemOutcome:
    key: object
    status: str
    reason: str = None
    points: float = None

    @classmethod
    def ok(cls, key, points=None):
        return cls(key=key, status=OK, points=points)

    @classmethod
    def skipped(cls, key, reason, points=None):
        return cls(key=key, status=SKIPPED, reason=reason, points=points)

    @classmethod
    def failed(cls, key, reason):
        return cls(key=key, status=FAILED, reason=reason)

    def to_dict(self):
        return {
            "key": self.key,
            "status": self.status,
            "reason": self.reason,
            "points": self.points,
        }


@dataclass
class BatchReport:
    """Outcome distribution for one batch operation"""

    outcomes: list = field(default_factory=list)

    def add(self, outcome):
        self.outcomes.append(outcome)
        return outcome

    def extend(self, outcomes):
        self.outcomes.extend(outcomes)

    def _with_status(self, status):
        return [o for o in self.outcomes if o.status == status]

    @property
    def ok(self):
        return self._with_status(OK)

    @property
    def skipped(self):
        return self._with_status(SKIPPED)

    @property
    def failed(self):
        return self._with_status(FAILED)

    @property
    def processed_count(self):
        """Items evaluated without failure (written or unchanged)"""
        return len(self.ok) + len(self.skipped)

    def errors(self):
        return [{"key": o.key, "reason": o.reason} for o in self.failed]

    def to_dict(self):
        return {
            "ok": len(self.ok),
            "skipped": len(self.skipped),
            "failed": len(self.failed),
            "errors": self.errors(),
        }
