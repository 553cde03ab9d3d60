class BookingEngineError(Exception):
    """Base class for every error the engine reports to its callers."""


class ValidationError(BookingEngineError):
    """Bad input. Raised before any mutation happens."""


class UnknownServiceError(ValidationError):
    pass


class UnknownSizeError(ValidationError):
    pass


class NotFoundError(ValidationError):
    pass


class RescheduleNotAllowedError(ValidationError):
    pass


class DuplicatePendingRequestError(ValidationError):
    pass


class RequestAlreadyResolvedError(ValidationError):
    pass


class RescheduleExpiredError(ValidationError):
    pass


class SlotUnavailableError(BookingEngineError):
    """Capacity exhausted, slot blocked or slot gone. The caller should pick another slot."""


class VersionConflictError(SlotUnavailableError):
    pass


class AlreadyTerminalError(BookingEngineError):
    pass


class InsufficientPointsError(BookingEngineError):
    pass


class InvariantViolation(BookingEngineError):
    """A bug, not a user error. Logged in full, shown to users as a generic retry message."""


class RescheduleInconsistencyError(InvariantViolation):
    pass
