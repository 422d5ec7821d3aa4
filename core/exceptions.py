"""
Custom exception classes.

Provides a consistent error structure across the engine. Missing dates and
unknown cadences are not errors; they route to fallbacks inside the services.
"""
from typing import Optional


class EngineException(Exception):
    """Base engine exception with consistent structure."""

    def __init__(self, detail: str, error_code: Optional[str] = None):
        super().__init__(detail)
        self.detail = detail
        self.error_code = error_code


class InvalidUserError(EngineException):
    """Progress is keyed by user identity; evaluating without one is a precondition failure."""

    def __init__(self, user_id: Optional[str] = None):
        detail = f"Unknown user: {user_id}" if user_id else "User identity required"
        super().__init__(detail=detail, error_code="INVALID_USER")
        self.user_id = user_id


class StreakConflictError(EngineException):
    """Concurrent streak writers kept invalidating our read."""

    def __init__(self, user_id: str, attempts: int):
        super().__init__(
            detail=f"Streak for user {user_id} changed concurrently {attempts} times",
            error_code="STREAK_CONFLICT"
        )
        self.user_id = user_id
        self.attempts = attempts


class AchievementPersistenceError(EngineException):
    """An achievement row could not be written."""

    def __init__(self, achievement_id: str, detail: str):
        super().__init__(
            detail=f"Failed to persist achievement {achievement_id}: {detail}",
            error_code="ACHIEVEMENT_WRITE_FAILED"
        )
        self.achievement_id = achievement_id


class DuplicateAchievementError(EngineException):
    """The (user, achievement, connection) row already exists."""

    def __init__(self, achievement_id: str, connection_id: Optional[str] = None):
        super().__init__(
            detail=f"Achievement {achievement_id} already recorded"
                   + (f" for connection {connection_id}" if connection_id else ""),
            error_code="DUPLICATE_ACHIEVEMENT"
        )
        self.achievement_id = achievement_id
        self.connection_id = connection_id


class ConnectionNotFoundError(EngineException):
    """The connection does not exist or belongs to another user."""

    def __init__(self, connection_id: str):
        super().__init__(
            detail=f"Connection not found: {connection_id}",
            error_code="CONNECTION_NOT_FOUND"
        )
        self.connection_id = connection_id
