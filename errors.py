"""
Defines the error taxonomy shared by the store, the protocol and the gateway.

Every failure a client can trigger is one of these exceptions. The Socket.IO
bindings in events.py catch them and turn them into an ``error`` event that is
delivered to the originating connection only.
"""


class RelayError(Exception):
    """Base class for every error the relay reports back to a client."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @property
    def kind(self) -> str:
        return type(self).__name__

    def to_payload(self) -> dict:
        """Returns the ``{kind, message}`` body of an ``error`` event."""
        return {"kind": self.kind, "message": self.message}


class ValidationError(RelayError):
    """A required field is missing, empty or of the wrong type."""


class NotFoundError(RelayError):
    """The requested chat does not exist."""


class AuthorizationError(RelayError):
    """The user is not a participant of the chat."""


class NotConnectedError(RelayError):
    """The connection has not successfully joined a chat, or is already closed."""


class StoreError(RelayError):
    """The identity store failed. The backend exception is chained as __cause__."""
