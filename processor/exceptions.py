"""Errors raised while checking for Foresters events."""


class ForestersCheckError(Exception):
    """Base error. ``stage`` names the step of the run that failed."""

    default_stage = 'Main Process'

    def __init__(self, message: str, stage: str = None):
        super().__init__(message)
        self.stage = stage or self.default_stage


class ConfigurationError(ForestersCheckError):
    """Required settings are missing or invalid."""

    default_stage = 'Credential Validation'


class AcquisitionError(ForestersCheckError):
    """Login or navigation on the member portal failed."""

    default_stage = 'Navigation'


class TokenCaptureError(AcquisitionError):
    """No bearer token was observed before the timeout."""

    default_stage = 'Token Capture'


class RequestError(ForestersCheckError):
    """The events API call failed or returned an unusable body."""

    default_stage = 'API Request'


class PersistenceError(ForestersCheckError):
    """The event store could not be read or written."""

    default_stage = 'Event Store'


class NotificationTransportError(ForestersCheckError):
    """An email could not be delivered."""

    default_stage = 'Email Notification'
