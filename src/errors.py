"""
Error taxonomy shared by the decision and experimentation engines.

Validation and state errors surface to the caller. DecisionFailure is raised
inside the decision pipeline only and is converted to a fallback result.
"""


class DecisioningError(Exception):
    """Base class for all engine errors."""


class ValidationError(DecisioningError, ValueError):
    """Malformed request or experiment definition."""


class NotFoundError(DecisioningError, LookupError):
    """Unknown experiment id on a mutating call."""


class InvalidStateError(DecisioningError, RuntimeError):
    """Illegal experiment lifecycle transition."""


class DecisionFailure(DecisioningError):
    """Internal fault during a decision (including collaborator timeouts)."""
