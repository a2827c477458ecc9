"""
Domain exception hierarchy for the attendance sync & payroll engine
"""
from typing import List, Optional


class EngineError(Exception):
    """Base exception for all engine errors."""


class NotFoundError(EngineError):
    """A referenced entity does not exist."""

    def __init__(self, entity: str, entity_id) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class DeviceOperationError(EngineError):
    """A terminal operation failed after the retry executor gave up."""

    def __init__(self, message: str, classified=None) -> None:
        self.classified = classified
        super().__init__(message)


class MalformedPunchDataError(EngineError):
    """A terminal returned a payload that is not a list of punch rows."""

    def __init__(self, message: str) -> None:
        from attendance_engine.services.error_classifier import ErrorCategory
        self.category = ErrorCategory.DATA_CORRUPTION
        super().__init__(f"Malformed punch data: {message}")


class InvalidSyncConfigError(EngineError):
    """Sync job configuration failed validation."""

    def __init__(self, errors: List[str]) -> None:
        self.errors = errors
        super().__init__("Invalid sync configuration: " + "; ".join(errors))


class SyncJobNotFoundError(NotFoundError):
    def __init__(self, job_id: int) -> None:
        super().__init__("Sync job", job_id)


class InvalidJobTransitionError(EngineError):
    """A sync job was asked to move to a state it cannot reach."""

    def __init__(self, job_id: int, current: str, target: str) -> None:
        self.job_id = job_id
        self.current = current
        self.target = target
        super().__init__(f"Sync job {job_id} cannot move from {current} to {target}")


class PeriodStateError(EngineError):
    """Attendance period lifecycle rule violated (overlap, not pending, unresolved conflicts)."""


class PayrollEligibilityError(EngineError):
    """Payroll calculation refused by the eligibility gate."""

    code = "ELIGIBILITY_ERROR"

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


class PayrollTransactionError(EngineError):
    """A payroll transaction could not be applied and was rolled back."""

    code = "TRANSACTION_ERROR"

    def __init__(self, reason: str, cause: Optional[BaseException] = None) -> None:
        self.reason = reason
        self.cause = cause
        super().__init__(reason)
