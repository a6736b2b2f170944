"""
Exceptions raised by the network engine.

Configuration and shape problems subclass ValueError so callers that already
catch ValueError (as for unknown activation or loss names) keep working.
"""


class NetworkError(Exception):
    """Base class for all errors raised by nnscratch."""


class ConfigurationError(NetworkError, ValueError):
    """Layers or hyperparameters that cannot be combined into a network."""


class ShapeMismatchError(NetworkError, ValueError):
    """Array shapes that disagree at run time (inputs, outputs, targets)."""


class PersistenceError(NetworkError):
    """A network snapshot could not be written, read or decoded."""
