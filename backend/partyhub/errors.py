"""
Error taxonomy for room and game handlers.

Every handler validates before it mutates, and raises one of these on the
way out. ``PartyRuntime.dispatch`` turns them into a unicast ``error`` frame
for the originating connection only.
"""
from __future__ import annotations


class PartyError(Exception):
    """Base class for every recoverable, client-visible failure."""

    code = "ERROR"
    default_message = "Request failed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_payload(self) -> dict[str, str]:
        return {"type": "error", "code": self.code, "message": self.message}


class NotFound(PartyError):
    """Room, session or target participant is absent."""

    code = "NOT_FOUND"
    default_message = "Not found"


class Forbidden(PartyError):
    """Non-host attempting a host-only action, or acting out of role."""

    code = "FORBIDDEN"
    default_message = "Only the host can do that"


class InvalidState(PartyError):
    """Action attempted outside of the phase where it is legal."""

    code = "INVALID_STATE"
    default_message = "That action is not available right now"


class InvalidInput(PartyError):
    code = "INVALID_INPUT"
    default_message = "Malformed request"


class NameConflict(PartyError):
    code = "NAME_CONFLICT"
    default_message = "Name already taken"


class InsufficientPlayers(PartyError):
    code = "INSUFFICIENT_PLAYERS"
    default_message = "Not enough players"


class InternalFailure(PartyError):
    code = "INTERNAL_FAILURE"
    default_message = "Something went wrong on the server"


class RegistrationError(PartyError):
    """Room code space exhausted."""

    code = "REGISTRATION_FAILED"
    default_message = "Failed to allocate room code"
