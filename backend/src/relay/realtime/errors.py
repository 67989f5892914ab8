"""Error taxonomy of the realtime core."""

from __future__ import annotations


class RealtimeError(Exception):
    """Base class for failures raised by the realtime core."""


class AuthenticationFailure(RealtimeError):
    """The presented identity token is missing, invalid, expired or orphaned."""


class ValidationFailure(RealtimeError):
    """A send or read-receipt request was rejected before any write happened."""

    def __init__(self, reason: str, code: str = "invalid_payload") -> None:
        super().__init__(reason)
        self.reason = reason
        self.code = code

    @property
    def is_not_found(self) -> bool:
        return self.code.endswith("_not_found")


class PersistenceFailure(RealtimeError):
    """The durable store failed while recording a message or a flag update."""

    def __init__(self, reason: str = "Message could not be stored") -> None:
        super().__init__(reason)
        self.reason = reason
        self.code = "persistence_failed"
