"""Error types raised by the game services.

Routes let these propagate; the app-level handler turns them into
``{"error": message}`` JSON responses with the matching status code.
"""


class GameError(Exception):
    http_status = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(GameError):
    """Bad or missing game/round/player reference or word input."""
    http_status = 400


class PermissionDeniedError(GameError):
    http_status = 403


class NotFoundError(GameError):
    http_status = 404


class ConflictError(GameError):
    """The game or round is not in a state that accepts the action."""
    http_status = 409


class TopicsUnavailableError(GameError):
    http_status = 503


class PersistenceError(GameError):
    """The store rejected a write. The session has already been rolled back."""
    http_status = 500
