# friendgraph/core/exceptions.py
"""Error taxonomy for relationship operations.

Every exception carries an HTTP status code so the API layer can translate it
without a lookup table. ``StoreError`` is the only transient kind; it is
retried for reads and surfaced as-is for writes.
"""


class FriendGraphException(Exception):
    """Base exception for all application-specific exceptions."""
    status_code = 500

    def __init__(self, detail: str = ""):
        super().__init__(detail)
        self.detail = detail or self.__class__.__doc__


class ValidationError(FriendGraphException):
    """Malformed or self-referential input."""
    status_code = 400


class Conflict(FriendGraphException):
    """Operation conflicts with the current relationship state."""
    status_code = 409


class NotFound(FriendGraphException):
    """Requested friend request or friendship does not exist."""
    status_code = 404


class Unauthorized(FriendGraphException):
    """Acting user is not allowed to perform this operation."""
    status_code = 403


class StoreError(FriendGraphException):
    """Relationship store is temporarily unavailable."""
    status_code = 503


class NotifierError(FriendGraphException):
    """Notification side effect failed. Never surfaced to API callers."""
    status_code = 500


# --- Realtime channel ---

class ChannelError(FriendGraphException):
    """Change event subscription was dropped by the transport."""
    status_code = 503


class ChannelClosed(FriendGraphException):
    """Change event subscription was released."""
    status_code = 410
