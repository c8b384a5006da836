"""Exception types shared across the console and its audio graph."""


class DeckmixError(Exception):
    """Base class for all deckmix errors"""


class InvalidStateError(DeckmixError):
    """Raised when a graph node or the engine is used in a state that forbids the call"""


class AcquisitionFailure(DeckmixError):
    """Raised when a track could not be fetched or decoded"""

    def __init__(self, source, reason):
        self.source = source
        self.reason = reason
        super().__init__(f"Could not acquire '{source}': {reason}")
