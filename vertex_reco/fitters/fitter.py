import abc
import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence, Tuple

import numpy as np

from vertex_reco.config import VertexFitterConfig
from vertex_reco.errors import PropagationError
from vertex_reco.field import MagneticField
from vertex_reco.linearizer import HelicalTrackLinearizer, LinearizedTrack, TrackLinearizer
from vertex_reco.parameters import BoundTrackParameters, Vertex, VertexConstraint, extract_bound_parameters


@dataclass(frozen=True, eq=False)
class IterationSummary:
    """Outcome of one fitter iteration."""

    iteration: int
    chi2: float
    position: np.ndarray
    step: float          # |delta_v| in mm
    committed: bool


class VertexFitter(abc.ABC):
    r"""
    Abstract base class for single-vertex fitters.

    Holds the immutable pieces shared by concrete fitters: configuration, the
    track linearizer (and through it the field and propagator) and the
    track-extraction capability. Concrete fitters implement
    :meth:`fit_with_history`; :meth:`fit` returns only the vertex.

    **Input convention.**
    Tracks are arbitrary caller objects. ``extract_parameters(track)`` must
    return :class:`~vertex_reco.parameters.BoundTrackParameters` with a 5x5
    covariance; the original object is kept (not copied) in every
    :class:`~vertex_reco.parameters.TrackAtVertex`.

    **Degrees of freedom.**
    Each track adds two independent constraints beyond the three vertex
    coordinates, and a position constraint adds three:

    .. math::

        n_\text{dof} = \begin{cases} 2N - 3 & N \ge 2 \\ 1 & N < 2 \end{cases}
        \;+\; 3\,[\text{constrained}].

    Parameters
    ----------
    linearizer : TrackLinearizer, optional
        Linearization service. Defaults to
        :class:`~vertex_reco.linearizer.HelicalTrackLinearizer` on ``field``.
    config : VertexFitterConfig, optional
        Iteration settings.
    field : MagneticField, optional
        Field handle, only used to build the default linearizer.
    extract_parameters : callable, optional
        ``track -> BoundTrackParameters``. Defaults to
        :func:`~vertex_reco.parameters.extract_bound_parameters`.

    Notes
    -----
    No per-call state is stored on the instance, so one fitter may serve
    concurrent independent ``fit`` calls.
    """

    def __init__(self,
                 linearizer: Optional[TrackLinearizer] = None,
                 config: Optional[VertexFitterConfig] = None,
                 field: Optional[MagneticField] = None,
                 extract_parameters: Optional[Callable[[Any], BoundTrackParameters]] = None):
        self.config = config or VertexFitterConfig()
        self.linearizer = linearizer if linearizer is not None else HelicalTrackLinearizer(field)
        self.extract_parameters = extract_parameters or extract_bound_parameters
        self.log = logging.getLogger(self.__class__.__name__)

    @abc.abstractmethod
    def fit_with_history(self,
                         tracks: Sequence[Any],
                         constraint: Optional[VertexConstraint] = None,
                         linearization_point: Optional[np.ndarray] = None
                         ) -> Tuple[Vertex, Tuple[IterationSummary, ...]]:
        r"""
        Fit one vertex and report every executed iteration.

        Parameters
        ----------
        tracks : sequence
            Caller track objects.
        constraint : VertexConstraint, optional
            Prior position; used only when its covariance trace is non-zero.
        linearization_point : array_like, shape (3,), optional
            First expansion point; overrides the constraint position.

        Returns
        -------
        vertex : Vertex
        history : tuple of IterationSummary
        """

    def fit(self,
            tracks: Sequence[Any],
            constraint: Optional[VertexConstraint] = None,
            linearization_point: Optional[np.ndarray] = None) -> Vertex:
        """Fit one vertex; see :meth:`fit_with_history`."""
        vertex, _ = self.fit_with_history(tracks, constraint, linearization_point)
        return vertex

    @staticmethod
    def degrees_of_freedom(n_tracks: int, constrained: bool) -> int:
        ndf = 2 * n_tracks - 3 if n_tracks >= 2 else 1
        return ndf + 3 if constrained else ndf

    @staticmethod
    def initial_point(constraint: Optional[VertexConstraint],
                      linearization_point: Optional[np.ndarray] = None) -> np.ndarray:
        """Explicit point, else the active constraint position, else the origin."""
        if linearization_point is not None:
            point = np.array(linearization_point, dtype=np.float64).reshape(-1)
            if point.shape != (3,):
                raise ValueError(f"linearization_point must have 3 entries, got {np.shape(linearization_point)}.")
            return point
        if constraint is not None and constraint.is_active:
            return np.array(constraint.position, dtype=np.float64)
        return np.zeros(3)

    def _linearize_all(self,
                       parameters: Sequence[BoundTrackParameters],
                       point: np.ndarray) -> List[LinearizedTrack]:
        r"""
        Linearize every track at ``point``.

        Raises
        ------
        PropagationError
            For the first track that cannot be linearized; the whole fit is
            aborted rather than silently dropping the track.
        """
        out: List[LinearizedTrack] = []
        for i, p in enumerate(parameters):
            try:
                out.append(self.linearizer.linearize(p, point))
            except PropagationError as e:
                raise PropagationError(f"Track {i} could not be linearized at {point.tolist()}: {e}") from e
        return out
