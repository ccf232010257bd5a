class DispatchError(Exception):
    """Base class for errors raised by the notification dispatcher."""


class InvalidEventError(DispatchError):
    """The trigger payload cannot be turned into a notification record."""


class FirebaseSetupError(DispatchError):
    """Firebase credentials are configured but unusable."""
