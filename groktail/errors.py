"""Exception types raised during validation and per-line conversion."""


class ConfigError(Exception):
    """Raised by ParserSupervisor.start() when the configuration is unusable."""


class PatternError(ConfigError):
    """Raised when a grok pattern cannot be loaded, resolved, or compiled."""

    def __init__(self, message: str, pattern_name: str | None = None):
        super().__init__(message)
        self.pattern_name = pattern_name


class ConversionError(ValueError):
    """Raised when a captured substring cannot be converted to its declared type."""


class UnknownModifierError(PatternError):
    """Raised when a capture carries a modifier no conversion exists for."""
