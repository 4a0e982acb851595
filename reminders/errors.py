"""
Dispatch error taxonomy.

Losing a reservation is not an error and has no exception here: the
reservation store reports it as ``ReservationOutcome.LOST``.
"""


class DispatchError(Exception):
    """Base exception for reminder dispatch errors"""
    pass


class MalformedScheduleRecord(DispatchError):
    """A schedule or watch record cannot be evaluated; only that record is skipped"""
    pass


class UnknownTimezone(MalformedScheduleRecord):
    """The record names a timezone that is not a valid IANA zone"""
    pass


class ChannelError(DispatchError):
    """Raised by channel adapters; subclasses say whether a retry makes sense"""

    def __init__(self, message: str, *, channel: str | None = None):
        super().__init__(message)
        self.channel = channel


class ChannelTransientFailure(ChannelError):
    """Network trouble or provider 5xx/429; retryable within the retry window"""
    pass


class ChannelPermanentFailure(ChannelError):
    """Provider rejected the recipient or content; never retried"""
    pass


class ChannelTimeout(ChannelError):
    """The send did not finish in time; delivery outcome is unknown"""
    pass


class PersistenceUnavailable(DispatchError):
    """The dispatch store cannot be reached; the whole tick is aborted"""
    pass
