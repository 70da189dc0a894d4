"""Business-rule failures raised by the services.

Each class carries a taxonomy ``kind`` and an HTTP status. Services raise
them; the ``action`` decorator in ``esusu.services.actions`` turns them into
failure results at the boundary, so callers never see the exception.
"""


class ServiceError(ValueError):
    kind = "Unexpected"
    status_code = 500
    default_message = "Something went wrong. Please try again."

    def __init__(self, message: str = None, **context):
        self.message = message or self.default_message
        self.context = context
        super().__init__(self.message)

    @property
    def code(self) -> str:
        return type(self).__name__

    def to_result(self) -> dict:
        return {
            "success": False,
            "error": self.message,
            "kind": self.kind,
            "code": self.code,
            **self.context,
        }


# Taxonomy kinds

class Unauthorized(ServiceError):
    kind = "Unauthorized"
    status_code = 403
    default_message = "Unauthorized: Admin access required"


class ValidationFailed(ServiceError):
    kind = "Validation"
    status_code = 422
    default_message = "Invalid input"


class Conflict(ServiceError):
    kind = "Conflict"
    status_code = 409
    default_message = "This record was changed by another request. Please try again."


class NotFound(ServiceError):
    kind = "NotFound"
    status_code = 404
    default_message = "Not found"


class PreconditionFailed(ServiceError):
    kind = "PreconditionFailed"
    status_code = 400
    default_message = "This action is not allowed right now"


# Specific failures

class AlreadyRegistered(Conflict):
    default_message = "You are already registered for this cycle"


class CycleClosed(PreconditionFailed):
    default_message = "This cycle is no longer accepting registrations"


class CycleFull(PreconditionFailed):
    default_message = "No available slots in this cycle"


class AlreadyPicked(Conflict):
    default_message = "You have already picked a number"


class NumberTaken(Conflict):
    default_message = "This number has already been picked by another user"


class OutOfRange(ValidationFailed):
    default_message = "Number is out of range"


class PickingNotOpen(PreconditionFailed):
    default_message = "Number picking has not started yet"


class AlreadyGenerated(Conflict):
    default_message = "Payments have already been generated for this cycle"


class MissingBankDetails(PreconditionFailed):
    default_message = "Bank details are required before this payout can be processed"


class NotPending(Conflict):
    default_message = "Payout has already been processed"


class ReasonTooShort(ValidationFailed):
    default_message = "Please provide a detailed reason (at least 10 characters)"


class NotEligible(PreconditionFailed):
    default_message = "You are not eligible to opt out"


class SlotsBelowPicked(PreconditionFailed):
    default_message = "Cannot reduce total slots below an already picked number"


class OutstandingObligations(PreconditionFailed):
    default_message = "Cannot close cycle while payments or payouts are pending"


class HasParticipants(PreconditionFailed):
    default_message = "Cannot delete cycle with participants. Close it instead."
