"""Domain errors raised by the engine services.

The HTTP layer maps each class to a status code; see `intentmatch.main`.
"""


class EngineError(Exception):
    """Base class for engine errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(EngineError):
    """Referenced intent, match, agent, dispute, vote or config does not exist."""


class InvalidStateError(EngineError):
    """Operation is not permitted in the record's current state."""


class UnauthorizedError(EngineError):
    """Caller is not a party to the record being mutated."""


class ValidationError(EngineError):
    """Malformed input, rejected before any write."""
