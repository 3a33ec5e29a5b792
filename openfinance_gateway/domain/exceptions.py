"""Domain-specific exceptions"""

from typing import Optional


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class BackendAPIError(DomainException):
    """Application backend returned an error or is unreachable"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

    @property
    def is_unauthorized(self) -> bool:
        return self.status_code in (401, 403)

    @property
    def is_transport_failure(self) -> bool:
        """No HTTP response at all (timeout, DNS, connection refused)"""
        return self.status_code is None


class QuotaExhaustedError(DomainException):
    """User has no aggregator credits left for today"""

    def __init__(self, max_per_day: int):
        super().__init__(f"Daily limit of {max_per_day} bank connections reached")
        self.max_per_day = max_per_day


class InvalidSessionTransition(DomainException):
    """Connection session cannot move from its current phase to the requested one"""

    pass


class SessionClosedError(DomainException):
    """Connection UI was closed; the session no longer accepts events"""

    pass
