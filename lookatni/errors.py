class LookatniError(Exception):
    """Base class for lookatni-specific errors."""


# Hard failures that abort a call
class SourceNotFound(LookatniError):
    pass


class DestinationNotFound(LookatniError):
    pass


# Option problems
class DialectError(LookatniError, ValueError):
    """Marker dialect options are unknown or incomplete."""
