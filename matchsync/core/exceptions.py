"""
Custom exceptions, shared by all layers.

Every exception raised on purpose by this package derives from SyncError, so callers (the presentation layer)
can catch the top-level type and let the specific types decide what to show the user.
"""


class SyncError(Exception):
    """Top-level exception of the match session synchronizer."""


class ConfigError(SyncError):
    """Configuration value missing or not interpretable."""


class InvalidMessageError(SyncError):
    """Wire data (REST body or push message) failed validation."""


class InvalidNotationError(InvalidMessageError):
    """Position or square notation could not be interpreted."""


# --- Session lifecycle ---
class LoadError(SyncError):
    """The match session cannot be opened (not found, unauthorized, ...). Terminal for the session."""


class SessionStateError(SyncError):
    """Operation is not allowed in the current lifecycle phase of the session."""


# --- Local, recoverable. State is never mutated when these are raised ---
class IllegalMoveError(SyncError):
    """The rules engine does not allow the move (or nothing was selected first)."""


class PromotionRequiredError(SyncError):
    """A pawn reaches the last rank and the caller must resubmit with a promotion piece."""


class MovePendingError(SyncError):
    """A previous move is still waiting for server confirmation."""


class ActionRejectedError(SyncError):
    """The action is refused, either by local validation or by the server (wrong turn, stale draw offer, ...)."""


# --- Transport / persistence ---
class TransportError(SyncError):
    """The realtime channel or the REST backend could not be reached."""


class AuthenticationError(TransportError):
    """The credential was rejected. Not retried."""


class RepositoryError(SyncError):
    """The REST backend did not return the expected record."""


class StaleMessageError(SyncError):
    """An incoming snapshot/message is older than (or identical to) the state already held. Never surfaced to the user."""
