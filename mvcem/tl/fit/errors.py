class MultiViewError(ValueError):
    """Base class of all configuration and input errors raised by mvcem."""


class ShapeMismatch(MultiViewError):
    """A table does not align with the unit set or layout of the view store."""


class UnitSetMismatch(MultiViewError):
    """Coordinates do not describe the same ordered set of units as the intrinsic table."""


class InvalidRadius(MultiViewError):
    """Kernel radius, bandwidth or cutoff is not strictly positive."""


class InsufficientNeighbors(MultiViewError):
    """More nearest neighbors were requested than there are other units."""


class MissingValueError(MultiViewError):
    """A table contains missing or infinite values, imputation is left to the caller."""


class DuplicateViewName(MultiViewError):
    """A view with this name is already registered."""
