"""
Error taxonomy for the exchange flow.

Every error carries the HTTP status it maps to and a stable machine code so
clients can tell "someone else scanned first" apart from a generic failure.
"""


class ExchangeError(Exception):
    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str = "Internal server error", code: str | None = None):
        self.message = message
        if code:
            self.code = code
        super().__init__(message)


class ValidationError(ExchangeError):
    status_code = 400
    code = "VALIDATION_ERROR"


class Forbidden(ExchangeError):
    status_code = 403
    code = "FORBIDDEN"


class NotFoundOrExpired(ExchangeError):
    status_code = 404
    code = "NOT_FOUND"


class WaitingForScan(ExchangeError):
    status_code = 404
    code = "WAITING_FOR_SCAN"


class RaceLost(ExchangeError):
    status_code = 409
    code = "ALREADY_SCANNED"


class StoreUnavailable(ExchangeError):
    status_code = 503
    code = "STORE_UNAVAILABLE"


class RateLimited(ExchangeError):
    status_code = 429
    code = "RATE_LIMITED"

    def __init__(self, retry_after_seconds: int):
        super().__init__(f"Too many requests. Retry in {retry_after_seconds}s")
        self.retry_after_seconds = retry_after_seconds
