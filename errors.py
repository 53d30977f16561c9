"""
Domain errors raised by the transfer and voucher services.

Every error carries an HTTP status and a stable machine code so callers can
tell, e.g., an expired voucher from one that was already used.
"""


class DomainError(Exception):
    status_code = 500
    code = "SERVER_ERROR"
    message = "An unexpected error occurred"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.message)
        self.message = message or self.message


# ---- kinds ----

class NotFound(DomainError):
    status_code = 404
    code = "NOT_FOUND"
    message = "Not found"


class Forbidden(DomainError):
    status_code = 403
    code = "FORBIDDEN"
    message = "Not allowed"


class Conflict(DomainError):
    status_code = 409
    code = "CONFLICT"
    message = "Conflicting state"


class Invalid(DomainError):
    status_code = 400
    code = "INVALID"
    message = "Invalid request"


class Expired(DomainError):
    status_code = 410
    code = "EXPIRED"
    message = "Expired"


# ---- concrete errors ----

class DeviceNotEligible(Invalid):
    code = "DEVICE_NOT_ELIGIBLE"
    message = "Device not found, not owned by the donor, or not approved"


class SchoolNotEligible(Invalid):
    code = "SCHOOL_NOT_ELIGIBLE"
    message = "School not found or not verified"


class InvalidStatus(Invalid):
    code = "INVALID_STATUS"
    message = "Invalid status"


class DuplicateTransfer(Conflict):
    code = "DUPLICATE_TRANSFER"
    message = "This device is already being transferred"


class TransitionNotAllowed(Conflict):
    code = "TRANSITION_NOT_ALLOWED"
    message = "Transfer cannot move to that status from its current status"


class StaleTransfer(Conflict):
    code = "STALE_TRANSFER"
    message = "Transfer status changed since it was read"


class TransferClosed(Conflict):
    code = "TRANSFER_CLOSED"
    message = "Transfer was rejected"


class VoucherAlreadyExists(Conflict):
    code = "VOUCHER_ALREADY_EXISTS"
    message = "Voucher already exists for this transfer"


class AlreadyUsed(Conflict):
    code = "ALREADY_USED"
    message = "Voucher has already been used"


class VoucherExpired(Expired):
    code = "VOUCHER_EXPIRED"
    message = "Voucher has expired"


class VoucherMismatch(Forbidden):
    code = "VOUCHER_MISMATCH"
    message = "Voucher does not belong to this transfer"
