# errors.py


class BookingError(Exception):
    """Base for every failure the booking services report to a user."""

    status_code = 400
    category = "danger"

    def __init__(self, message=None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message

    default_message = "Request could not be completed."


class ValidationError(BookingError):
    default_message = "Invalid input."
    category = "warning"


class CancellationPolicyError(ValidationError):
    default_message = "This appointment can no longer be cancelled."


class NotFoundError(BookingError):
    status_code = 404
    default_message = "Not found."


class ConflictError(BookingError):
    status_code = 409
    default_message = "This item already exists or was changed by someone else."


class UnauthorizedError(BookingError):
    status_code = 401
    default_message = "Please log in to continue."


class InvalidTransitionError(BookingError):
    status_code = 409
    default_message = "This action is not allowed for the appointment's current status."


class ExternalServiceError(BookingError):
    status_code = 503
    category = "warning"
    default_message = "External service not available. Please try again later."
