"""Exception types raised by the preference service.

Per-suggestion problems found while reconciling an AI batch are not errors;
they are reported as FilteredSuggestion records instead.
"""


class PreferenceError(Exception):
    """Base class for all preference service errors."""

    pass


class ValidationError(PreferenceError):
    """Raised when a slug, value, scope or confidence fails catalog validation.

    Nothing is written when this is raised.
    """

    def __init__(self, message: str, suggestions: list[str] | None = None):
        super().__init__(message)
        self.message = message
        self.suggestions = suggestions or []


class InvalidStateError(ValidationError):
    """Raised when a row is not in the status an operation requires."""

    pass


class NotFoundError(PreferenceError):
    """Raised when a preference, suggestion or location id does not exist."""

    pass


class OwnershipError(PreferenceError):
    """Raised when a row belongs to a different user."""

    pass


class AiResponseError(PreferenceError):
    """Raised when the AI payload is not valid JSON or fails schema validation."""

    def __init__(self, message: str, paths: list[str] | None = None):
        super().__init__(message)
        self.message = message
        self.paths = paths or []


class AiServiceError(PreferenceError):
    """Raised when the AI text generator itself fails or is not configured."""

    pass
