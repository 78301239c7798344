class SeparatorError(Exception):
    """Base class for every error raised while separating animations."""


class ConfigurationError(SeparatorError):
    """Bad configuration. Raised before any graph is touched."""


class InvariantViolationError(SeparatorError):
    """The separation steps ran out of order or left inconsistent state."""
