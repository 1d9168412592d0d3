class AchievoError(Exception):
    """Base class for errors raised by achievo."""


class ConfigurationError(AchievoError):
    """Settings are missing or invalid (e.g. no active repository path)."""


class VersionControlError(AchievoError):
    """A git query failed. Aborts the current cycle."""


class SummarizationError(AchievoError):
    """The summarization provider could not produce a reply."""
