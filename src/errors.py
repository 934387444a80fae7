"""
Pokémon TCG Match Engine - Error Taxonomy (errors.py)

Every failure the engine reports is local and recoverable: the caller fixes
its input and resubmits. No exception is raised after a state transformation
has started, so a failed action never leaves a half-applied GameState.

- NotFoundError:          match or card does not exist
- IllegalStateError:      action not allowed in (state, phase, turn owner)
- MalformedInputError:    action data missing fields an effect needs
- GameRuleViolation:      well-formed input that breaks a game rule
- SelectionRequiredError: input incomplete pending a player choice
"""

from typing import Any, Dict, List, Optional


class MatchEngineError(Exception):
    """Base class for all engine errors."""
    pass


class NotFoundError(MatchEngineError):
    """Raised when a referenced match or card cannot be found."""
    pass


class IllegalStateError(MatchEngineError):
    """
    Raised when an action is not permitted in the current match state,
    turn phase or by the submitting player.

    `reason` is an ActionValidationError member when the state machine
    rejected the action.
    """

    def __init__(self, message: str, reason: Optional[Any] = None):
        super().__init__(message)
        self.reason = reason


class MalformedInputError(MatchEngineError):
    """Raised when action data does not satisfy an effect's input shape."""

    def __init__(self, reasons: List[str], message: Optional[str] = None):
        self.reasons = list(reasons)
        super().__init__(message or "Invalid action data: " + "; ".join(self.reasons))


class GameRuleViolation(MatchEngineError, ValueError):
    """Raised when well-formed input violates a game rule."""
    pass


class SelectionRequiredError(MatchEngineError):
    """
    Raised when the action needs a player choice that was not supplied.

    The payload is machine readable so the client can prompt the player and
    resubmit the same action with the selection filled in. The engine keeps
    no pending-choice state between calls.
    """

    def __init__(self, payload):
        self.payload = payload
        super().__init__(payload.message)

    def to_dict(self) -> Dict[str, Any]:
        return self.payload.model_dump(by_alias=True)
