"""
Exceptions raised by the realtime core.

Each error carries a short machine-readable ``code`` that is forwarded to
the originating client in a ``messageRejected`` event.
"""


class RelayError(Exception):
    """Base class for relay errors."""

    code = "RELAY_ERROR"

    def __init__(self, message: str, code: str = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def to_payload(self) -> dict:
        return {"reason": self.message, "code": self.code}


class ValidationError(RelayError):
    """Bad input: empty content, unidentified sender, malformed user id."""

    code = "VALIDATION_ERROR"


class PersistenceError(RelayError):
    """The persistence collaborator failed to read or write."""

    code = "PERSISTENCE_ERROR"


class TransportError(RelayError):
    """A push to a single live connection failed."""

    code = "TRANSPORT_ERROR"
