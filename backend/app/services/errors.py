import math
from datetime import timedelta


class ServiceError(Exception):
    status_code = 400
    code = "service_error"


class InvalidRequest(ServiceError):
    code = "invalid_request"


class UnknownCode(ServiceError):
    status_code = 404
    code = "unknown_code"


class DuplicateCode(ServiceError):
    status_code = 409
    code = "duplicate_code"


class DeviceConflict(ServiceError):
    status_code = 403
    code = "device_conflict"


class InvalidCredential(ServiceError):
    status_code = 401
    code = "invalid_credential"


class AccountLocked(ServiceError):
    status_code = 423
    code = "account_locked"

    def __init__(self, remaining: timedelta):
        self.remaining = remaining
        super().__init__(
            f"Account locked. Try again in {self.remaining_minutes} minutes"
        )

    @property
    def remaining_minutes(self) -> int:
        return max(1, math.ceil(self.remaining.total_seconds() / 60))


class SamePassword(ServiceError):
    code = "same_password"


class WeakCredential(ServiceError):
    code = "weak_credential"


class NotAuthenticated(ServiceError):
    status_code = 401
    code = "not_authenticated"


class StoreUnavailable(ServiceError):
    status_code = 503
    code = "store_unavailable"
