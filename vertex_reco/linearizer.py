from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol

import numpy as np

from vertex_reco.errors import PropagationError, SingularCovarianceError
from vertex_reco.field import ConstantBField, MagneticField
from vertex_reco.helix import perigee_expansion
from vertex_reco.parameters import BoundTrackParameters
from vertex_reco.propagator import HelixPropagator, Propagator


@dataclass(frozen=True, eq=False)
class LinearizedTrack:
    r"""
    First-order model of a track around a linearization point :math:`\mathbf{V}_0`.

    .. math::

        \mathbf{q}(\mathbf{V}, \mathbf{p}) \approx \mathbf{c}
            + D\,\mathbf{V} + E\,\mathbf{p},

    with :math:`\mathbf{c}` = ``constant_term``, :math:`D` =
    ``position_jacobian`` and :math:`E` = ``momentum_jacobian``.
    """

    parameters_at_pca: np.ndarray     # (5,) w.r.t. the linearization point
    covariance_at_pca: np.ndarray     # (5, 5)
    linearization_point: np.ndarray   # (3,)
    position_jacobian: np.ndarray     # (5, 3)
    momentum_jacobian: np.ndarray     # (5, 3)
    position_at_pca: np.ndarray       # (3,)
    momentum_at_pca: np.ndarray       # (3,) phi, theta, q/p
    constant_term: np.ndarray         # (5,)


class TrackLinearizer(Protocol):
    def linearize(self, parameters: BoundTrackParameters, linearization_point: np.ndarray) -> LinearizedTrack:
        ...


class HelicalTrackLinearizer:
    r"""
    Linearize helical tracks around a point in a uniform solenoidal field.

    The track is first transported to the perigee surface of the
    linearization point :math:`\mathbf{V}_0` with a :class:`Propagator`; the
    Jacobians are then evaluated at the resulting PCA and momentum with
    :func:`vertex_reco.helix.perigee_expansion`.

    Parameters
    ----------
    field : MagneticField, optional
        Field provider (default ``ConstantBField(2.0)``).
    propagator : Propagator, optional
        Perigee transport; defaults to a :class:`HelixPropagator` on ``field``.
    min_qop : float, optional
        :math:`|q/p|` below which the straight-line model is used.

    Notes
    -----
    The linearizer is stateless after construction; concurrent calls are safe
    as long as the propagator is.
    """

    __slots__ = ("field", "propagator", "min_qop")

    def __init__(self,
                 field: Optional[MagneticField] = None,
                 propagator: Optional[Propagator] = None,
                 min_qop: float = 1e-12) -> None:
        self.field = field if field is not None else ConstantBField()
        self.min_qop = float(min_qop)
        self.propagator = propagator if propagator is not None else HelixPropagator(self.field, self.min_qop)

    def linearize(self, parameters: BoundTrackParameters, linearization_point: np.ndarray) -> LinearizedTrack:
        r"""
        Build the :class:`LinearizedTrack` of ``parameters`` at ``linearization_point``.

        Parameters
        ----------
        parameters : BoundTrackParameters
            Track state with covariance, at any perigee reference.
        linearization_point : array_like, shape (3,)
            Expansion point :math:`\mathbf{V}_0`.

        Returns
        -------
        LinearizedTrack

        Raises
        ------
        PropagationError
            If the transport or the perigee expansion fails.
        SingularCovarianceError
            If ``parameters`` carries no covariance.
        """
        if parameters.cov is None:
            raise SingularCovarianceError("Track parameters without covariance cannot be linearized.")
        point = np.asarray(linearization_point, dtype=np.float64).reshape(-1)
        if point.shape != (3,) or not np.all(np.isfinite(point)):
            raise PropagationError(f"Invalid linearization point {linearization_point!r}.")

        at_pca = self.propagator.propagate_to_perigee(parameters, point)
        position = at_pca.position()
        momentum = at_pca.momentum_vector()
        expansion = perigee_expansion(position, momentum, point,
                                      self.field.curvature_factor(position),
                                      min_qop=self.min_qop)
        D, E = expansion.position_jacobian, expansion.momentum_jacobian
        return LinearizedTrack(
            parameters_at_pca=np.array(at_pca.params),
            covariance_at_pca=np.array(at_pca.cov),
            linearization_point=point,
            position_jacobian=D,
            momentum_jacobian=E,
            position_at_pca=position,
            momentum_at_pca=momentum,
            constant_term=expansion.params - D @ position - E @ momentum,
        )
