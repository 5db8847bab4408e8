"""Exception types raised by the exploration core."""


class ExplorationError(Exception):
    """Base class for exploration failures."""


class InvalidTransitionError(ExplorationError):
    """Raised when an operation is not valid in the current phase."""


class ContentNotFoundError(ExplorationError):
    """Raised when a snippet id does not resolve in the content repository."""

    def __init__(self, snippet_id: str):
        super().__init__(f"Missing snippet for id={snippet_id}")
        self.snippet_id = snippet_id


class NoEligibleContentError(ExplorationError):
    """Raised when no snippet is eligible for the player's current situation."""


class ChapterGenerationError(ExplorationError):
    """Raised when a chapter event provider cannot produce a chapter event."""


class SaveError(Exception):
    """Base class for save related failures."""


class SaveCorruptError(SaveError):
    """Raised when a save file cannot be parsed or validated."""
