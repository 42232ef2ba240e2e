"""
Validation errors raised at the schedule boundary. Nothing is persisted when
one of these is raised.
"""


class ScheduleValidationError(ValueError):
    """Base class for rejected schedule input"""


class InvalidTimezone(ScheduleValidationError):
    pass


class InvalidCadence(ScheduleValidationError):
    pass


class InvalidTimeOfDay(ScheduleValidationError):
    pass


class InvalidContact(ScheduleValidationError):
    pass
