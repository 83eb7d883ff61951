"""Exceptions raised by the migration engine."""

from typing import Optional


class MigrationError(Exception):
    """Base exception for migration failures."""


class MappingError(MigrationError):
    """The field mapping set is not usable."""


class PlanNotCreatedError(MigrationError):
    """A run was started before a plan was created."""


class CommerceAPIError(MigrationError):
    """A call to the commerce API failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class BulkOperationError(MigrationError):
    """A bulk job ended in a failed state."""

    def __init__(self, message: str, error_code: Optional[str] = None):
        super().__init__(message)
        self.error_code = error_code


class BulkOperationTimeout(BulkOperationError):
    """A bulk job did not reach a terminal state in time."""


class MigrationAlreadyStartedError(MigrationError):
    """A plan was executed a second time."""
