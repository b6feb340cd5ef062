__all__ = [
    "VertexingError", "SingularCovarianceError", "SingularInformationMatrixError",
    "PropagationError", "NumericFailureError", "ConfigurationError",
    "BoundTrackParameters", "VertexConstraint", "TrackAtVertex", "Vertex",
    "extract_bound_parameters",
    "MagneticField", "ConstantBField",
    "perigee_expansion", "HelixPropagator", "HelicalTrackLinearizer", "LinearizedTrack",
    "VertexFitterConfig", "SimulationConfig", "RunConfig", "load_run_config",
    "VertexFitter", "IterationSummary",
    "BilloirTrack", "BilloirVertex", "FullBilloirVertexFitter",
    "wrap_phi", "normalize_phi_theta",
    "generate_event",
    "fit_probability", "vertex_residuals", "vertex_pulls", "summarize_fits", "summary_statistics",
]

# Errors
from .errors import (
    VertexingError,
    SingularCovarianceError,
    SingularInformationMatrixError,
    PropagationError,
    NumericFailureError,
    ConfigurationError,
)

# Data model
from .parameters import (
    BoundTrackParameters,
    VertexConstraint,
    TrackAtVertex,
    Vertex,
    extract_bound_parameters,
)

# Field, propagation & linearization
from .field import MagneticField, ConstantBField
from .helix import perigee_expansion
from .propagator import HelixPropagator
from .linearizer import HelicalTrackLinearizer, LinearizedTrack

# Configuration
from .config import VertexFitterConfig, SimulationConfig, RunConfig, load_run_config

# Fitters
from .fitters.fitter import VertexFitter, IterationSummary
from .fitters.billoir import BilloirTrack, BilloirVertex, FullBilloirVertexFitter

# Utilities
from .utils import wrap_phi, normalize_phi_theta
from .simulation import generate_event

# Metrics
from .metrics import (
    fit_probability,
    vertex_residuals,
    vertex_pulls,
    summarize_fits,
    summary_statistics,
)
