"""
Exception hierarchy for the lesson tutor.
"""


class TutorError(Exception):
    """Base exception for all tutor errors."""
    pass


class ProviderError(TutorError):
    """Raised when the model provider call fails. Recoverable: no state is mutated."""
    pass


class ProviderTimeoutError(ProviderError):
    """Raised when the model provider does not answer within the timeout."""
    pass


class ResponseValidationError(ProviderError):
    """Raised when the model output does not match the turn response contract."""
    pass


class LessonNotFoundError(TutorError):
    """Raised when a lesson id is not in the catalog."""
    pass


class LessonContentError(TutorError):
    """Raised when static lesson content is malformed."""
    pass


class SessionError(TutorError):
    """Raised when session operation fails."""
    pass


class SessionNotFoundError(SessionError):
    """Raised when a session id is unknown."""
    pass


class SessionBusyError(SessionError):
    """Raised when a turn is already in flight for the session."""
    pass


class SessionConflictError(SessionError):
    """Raised when a stale session snapshot is written."""
    pass
