"""
Pipeline Exceptions

Error taxonomy of the star schema ETL. Referential gaps are not exceptions:
they are recovered by exclusion and reported (see schema.validators.ReferentialGap).
"""

from typing import Any, Dict, List, Optional


class StarETLError(Exception):
    """Base class for all pipeline errors"""

    retryable = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": type(self).__name__,
            "message": self.message,
            "details": self.details,
        }


class SourceUnavailable(StarETLError):
    """The relational source cannot be reached or read (retryable)"""

    retryable = True

    def __init__(self, entity: str, reason: str):
        super().__init__(
            f"Source unavailable while extracting '{entity}': {reason}",
            {"entity": entity, "reason": reason},
        )
        self.entity = entity
        self.reason = reason


class SchemaMismatch(StarETLError):
    """Fetched or derived data does not match the expected shape (fatal)"""

    def __init__(self, entity: str, violations: List[Any]):
        reasons = "; ".join(v.reason for v in violations[:5])
        if len(violations) > 5:
            reasons += f"; ... {len(violations) - 5} more"
        super().__init__(
            f"Schema mismatch for '{entity}': {reasons}",
            {
                "entity": entity,
                "violation_count": len(violations),
                "violations": [v.to_dict() for v in violations[:50]],
            },
        )
        self.entity = entity
        self.violations = violations


class PublishFailure(StarETLError):
    """The atomic publish at the sink could not complete (fatal)"""

    def __init__(self, table: str, reason: str):
        super().__init__(
            f"Publishing '{table}' failed: {reason}",
            {"table": table, "reason": reason},
        )
        self.table = table
        self.reason = reason


class RunInProgress(StarETLError):
    """Another run currently owns the output location"""

    def __init__(self, lock_path: str, owner: Optional[str] = None):
        super().__init__(
            f"Another run holds the output lock {lock_path}",
            {"lock_path": lock_path, "owner": owner},
        )
        self.lock_path = lock_path
        self.owner = owner


class RunCancelled(StarETLError):
    """A cancellation request was honoured between stages"""

    def __init__(self, stage: str):
        super().__init__(f"Run cancelled before stage '{stage}'", {"stage": stage})
        self.stage = stage
