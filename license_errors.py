"""
Error taxonomy for the entitlement engine.

Remote clients never raise these to their callers; they travel inside result
objects so the managers can tell an inconclusive outcome from a definitive one.
The stores do raise StorageError.
"""


class LicensingError(Exception):
    """Base class for every licensing failure."""


class NetworkError(LicensingError):
    """Connect/read timeout or the service could not be reached."""


class ServerError(LicensingError):
    """Non-success HTTP status or an unexpected payload."""

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.status_code = status_code


class EndpointMisconfiguredError(ServerError):
    """An HTML document came back where JSON was expected."""


class ParseError(LicensingError):
    """Malformed JSON or a missing field."""


class ExpiredError(LicensingError):
    """A license or trial is past its end date."""


class NotConfiguredError(LicensingError):
    """No license key is stored locally."""


class StorageError(LicensingError):
    """Local persistence failed (I/O, decryption, database)."""
