"""Exception types."""


class Error(RuntimeError):
    """Base class for errors."""


class ConfigurationError(Error, ValueError):
    """Error raised when sampler or model options are invalid."""


class NumericDivergenceError(Error):
    """Error raised when a log density or gradient evaluation is non-finite."""


class StateCorruptionError(Error):
    """Error raised when a cached log density does not match state values."""


class AdaptationError(Error):
    """Error raised when adaptation of sampler parameters fails."""


class ReadOnlyStateError(Error):
    """Error raised when writing to variables of a read-only parameter state."""
