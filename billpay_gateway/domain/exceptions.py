"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class FinanceAPIError(DomainException):
    """Finance backend returned an error or is unavailable"""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class SessionExpiredError(FinanceAPIError):
    """Backend rejected the session (401/403); the operator must log in again"""

    pass


class InvalidSourceDataError(DomainException):
    """Payment source data is malformed or violates its invariants"""

    pass


class WorkflowStateError(DomainException):
    """Action is not allowed in the workflow's current step or readiness state"""

    pass


class SubmissionInFlightError(WorkflowStateError):
    """A payment submission is already awaiting its response"""

    pass


class RecipientLookupError(DomainException):
    """Contact lookup did not yield usable routing details"""

    pass


class UnknownBillError(DomainException):
    """Bill id is not part of the workflow's batch"""

    pass


class WorkflowNotFoundError(DomainException):
    """No open workflow session with the given id"""

    pass
