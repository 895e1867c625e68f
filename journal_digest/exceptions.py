"""Custom exception hierarchy for the journal digest."""


class JournalDigestError(Exception):
    """Base exception for all journal digest errors."""


class ConfigurationError(JournalDigestError):
    """Raised at start-up when the configuration is missing or invalid."""


class CronExpressionError(ConfigurationError):
    """Raised when a cadence expression cannot be parsed."""


class DataSourceError(JournalDigestError):
    """Raised when the user data source is unreachable or unusable."""


class AnalysisError(JournalDigestError):
    """Raised when the sentiment analyzer cannot process a user's text."""


class NotifyError(JournalDigestError):
    """Raised when a notification cannot be dispatched."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class LLMAPIError(JournalDigestError):
    """Raised when a Gemini API call fails."""
