"""Exception hierarchy raised by the vertexing code."""


class VertexingError(RuntimeError):
    """Base exception class for vertex fitting failures."""
    pass


class SingularCovarianceError(VertexingError):
    """Raised when a track, momentum-information or constraint matrix cannot be inverted."""
    pass


class SingularInformationMatrixError(VertexingError):
    """Raised when the aggregate vertex information matrix is singular (degenerate geometry)."""
    pass


class PropagationError(VertexingError):
    """Raised when a track cannot be propagated to, or linearized at, a reference point."""
    pass


class NumericFailureError(VertexingError):
    """Raised when an iteration produces a non-finite chi-square."""
    pass


class ConfigurationError(VertexingError, ValueError):
    """Raised when fitter or runner configuration is invalid."""
    pass
