# promptshelf/services/retention/errors.py
"""
Error taxonomy for the retention engine.

Batch passes catch RetentionError per record and keep going; a single
cascade operation surfaces these after its transaction has rolled back.
"""

from typing import Any


class RetentionError(Exception):
    """Base class for all retention engine errors."""

    def __init__(self, message: str, entity_type: Any = None, record_id: int | None = None):
        super().__init__(message)
        self.entity_type = entity_type
        self.record_id = record_id

    def describe(self) -> str:
        """Summary line for cleanup reports: '<type> <id>: <message>'."""
        if self.entity_type is None:
            return str(self)
        entity = getattr(self.entity_type, "value", self.entity_type)
        return f"{entity} {self.record_id}: {self}"


class GraphConfigurationError(RetentionError):
    """Raised at startup when the entity graph is not a tree of ownership edges."""

    pass


class TransientStoreError(RetentionError):
    """Connection loss or deadline exceeded. Retried by the next scheduled sweep."""

    pass


class ConstraintViolation(RetentionError):
    """Unexpected data shape or integrity failure. The record is skipped."""

    pass


class InvalidTransition(RetentionError):
    """A lifecycle transition the state machine does not allow."""

    pass


class GracePeriodNotElapsed(InvalidTransition):
    """Purge requested before the tombstone's grace period has passed."""

    pass


class AncestorDeleted(RetentionError):
    """Restore refused because an ancestor is tombstoned or purged."""

    pass


class ArchiveFailure(RetentionError):
    """The archive sink could not persist records; the purge was aborted."""

    pass


class RecordNotFound(RetentionError):
    """The requested record is not in the store."""

    pass
