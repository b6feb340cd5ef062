from __future__ import annotations

import math
from typing import Optional, Protocol

import numpy as np

from vertex_reco.errors import PropagationError
from vertex_reco.field import ConstantBField, MagneticField
from vertex_reco.helix import PerigeeExpansion, perigee_expansion
from vertex_reco.linalg_kernels import symmetrize
from vertex_reco.parameters import PHI, BoundTrackParameters


class Propagator(Protocol):
    r"""Transport contract: move a perigee state to a new reference point."""

    def propagate_to_perigee(self,
                             parameters: BoundTrackParameters,
                             reference: np.ndarray) -> BoundTrackParameters:
        ...


class HelixPropagator:
    r"""
    Analytic perigee-to-perigee transport in a uniform solenoidal field.

    The source state :math:`\mathbf{q}` (reference :math:`\mathbf{r}`) is
    mapped to its PCA :math:`\mathbf{P}(\mathbf{q})` and momentum
    :math:`\mathbf{p}(\mathbf{q}) = (\phi,\theta,q/p)`, then re-expressed at
    the target reference :math:`\mathbf{r}'` with
    :func:`vertex_reco.helix.perigee_expansion`. The covariance follows the
    chain rule

    .. math::

        J &= D\,\frac{\partial\mathbf{P}}{\partial\mathbf{q}}
            + E\,\frac{\partial\mathbf{p}}{\partial\mathbf{q}}, \\
        C' &= J\,C\,J^\top,

    where :math:`\partial\mathbf{P}/\partial\mathbf{q}` has columns
    :math:`(-\sin\phi, \cos\phi, 0)` for :math:`d_0`, :math:`\hat z` for
    :math:`z_0` and :math:`-d_0(\cos\phi, \sin\phi, 0)` for :math:`\phi`, and
    :math:`\partial\mathbf{p}/\partial\mathbf{q}` selects the last three
    parameters.

    Parameters
    ----------
    field : MagneticField, optional
        Field provider. Defaults to ``ConstantBField(2.0)``.
    min_qop : float, optional
        :math:`|q/p|` below which tracks are propagated as straight lines.

    Notes
    -----
    Energy loss and multiple scattering are not modelled.
    """

    __slots__ = ("field", "min_qop")

    def __init__(self, field: Optional[MagneticField] = None, min_qop: float = 1e-12) -> None:
        self.field = field if field is not None else ConstantBField()
        self.min_qop = float(min_qop)

    def expand(self, parameters: BoundTrackParameters, reference: np.ndarray) -> PerigeeExpansion:
        """Perigee expansion of ``parameters`` (taken at its own PCA) around ``reference``."""
        start = parameters.position()
        return perigee_expansion(start,
                                 parameters.momentum_vector(),
                                 reference,
                                 self.field.curvature_factor(start),
                                 min_qop=self.min_qop)

    def transport_jacobian(self, parameters: BoundTrackParameters, expansion: PerigeeExpansion) -> np.ndarray:
        r"""
        Jacobian :math:`J = \partial\mathbf{q}'/\partial\mathbf{q}` (5x5).

        Parameters
        ----------
        parameters : BoundTrackParameters
            Source state.
        expansion : PerigeeExpansion
            Result of :meth:`expand` for the same state.

        Returns
        -------
        ndarray, shape (5, 5)
        """
        d0, phi = parameters.d0, parameters.phi
        dP = np.zeros((3, 5))
        dP[0, 0], dP[1, 0] = -math.sin(phi), math.cos(phi)
        dP[2, 1] = 1.0
        dP[0, PHI], dP[1, PHI] = -d0 * math.cos(phi), -d0 * math.sin(phi)
        dp = np.zeros((3, 5))
        dp[0, 2] = dp[1, 3] = dp[2, 4] = 1.0
        return expansion.position_jacobian @ dP + expansion.momentum_jacobian @ dp

    def propagate_to_perigee(self,
                             parameters: BoundTrackParameters,
                             reference: np.ndarray) -> BoundTrackParameters:
        r"""
        Express a track at the perigee surface of ``reference``.

        Parameters
        ----------
        parameters : BoundTrackParameters
            Source state (with or without covariance).
        reference : array_like, shape (3,)
            Target perigee reference point.

        Returns
        -------
        BoundTrackParameters
            Target state; its covariance is transported when the source has one.

        Raises
        ------
        PropagationError
            If the target is not finite or the perigee is undefined.
        """
        reference = np.asarray(reference, dtype=np.float64).reshape(-1)
        if reference.shape != (3,) or not np.all(np.isfinite(reference)):
            raise PropagationError(f"Invalid perigee reference point {reference!r}.")
        expansion = self.expand(parameters, reference)
        cov = None
        if parameters.cov is not None:
            J = self.transport_jacobian(parameters, expansion)
            cov = symmetrize(J @ parameters.cov @ J.T)
            if not np.all(np.isfinite(cov)):
                raise PropagationError("Transported covariance is not finite.")
        return BoundTrackParameters(expansion.params, cov, reference)
