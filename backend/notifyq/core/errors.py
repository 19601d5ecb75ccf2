class NotifyQError(Exception):
    """Base class for queue errors."""


class ValidationError(NotifyQError):
    """Payload rejected at enqueue time; nothing was written."""


class UnknownJobType(ValidationError):
    pass


class JobNotFound(NotifyQError):
    pass


class InvalidJobState(NotifyQError):
    """The requested transition is not allowed from the job's current status."""


class DuplicateLiveJob(NotifyQError):
    """A pending or processing job already exists for the same business key."""
