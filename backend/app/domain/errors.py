class DomainError(Exception):
    """Base class for booking rejections. Deterministic given current data."""


class ValidationError(DomainError):
    pass


class NotFoundError(DomainError):
    pass


class AmenityNotReservableError(DomainError):
    pass


class NoRuleForDayError(DomainError):
    pass


class InvalidRangeError(DomainError):
    pass


class OutsideHoursError(DomainError):
    pass


class LeadTimeViolation(DomainError):
    pass


class SlotFullError(DomainError):
    pass


class DailyLimitError(DomainError):
    pass


class PersistenceError(Exception):
    """Transient infrastructure failure. Callers may retry."""


class ConflictError(PersistenceError):
    """The store refused an insert because of a constraint."""
