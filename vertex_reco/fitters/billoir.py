import math
from dataclasses import dataclass
from typing import Any, List, NamedTuple, Optional, Sequence, Tuple

import numpy as np

from vertex_reco.errors import NumericFailureError, SingularCovarianceError, SingularInformationMatrixError
from vertex_reco.fitters.fitter import IterationSummary, VertexFitter
from vertex_reco.linalg_kernels import chi2_form, invert_checked, pseudo_inverse, symmetrize
from vertex_reco.linearizer import LinearizedTrack
from vertex_reco.parameters import (
    LOC0, LOC1, PHI, THETA, QOP,
    BoundTrackParameters, TrackAtVertex, Vertex, VertexConstraint,
)
from vertex_reco.utils import normalize_phi_theta, wrap_phi


@dataclass(frozen=True, eq=False)
class BilloirTrack:
    r"""
    Per-track quantities of one Billoir iteration.

    With :math:`W = \mathrm{Cov}(\mathbf{q})^{-1}`, position Jacobian
    :math:`D` and momentum Jacobian :math:`E`:

    .. math::

        G &= E^\top W E, \quad C = G^{-1}, \quad B = D^\top W E, \\
        U &= E^\top W\,\delta\mathbf{q}, \quad BC = B\,C,

    where :math:`\delta\mathbf{q} = (d_0, z_0, \phi - \phi_g, \theta -
    \theta_g, q/p - (q/p)_g)` compares the parameters at the expansion point
    with the momentum guess :math:`g`. The contributions to the vertex sums
    are :math:`D^\top W D`, :math:`D^\top W \delta\mathbf{q}`,
    :math:`BC\,B^\top` and :math:`BC\,U`.

    Instances are built fresh every iteration and never modified.
    """

    linearized: LinearizedTrack
    weight: np.ndarray        # W (5x5)
    delta_q: np.ndarray       # (5,)
    G: np.ndarray             # momentum information (3x3)
    C: np.ndarray             # G^-1
    B: np.ndarray             # cross term (3x3)
    U: np.ndarray             # (3,)
    BC: np.ndarray            # B C
    A_term: np.ndarray        # D^T W D
    T_term: np.ndarray        # D^T W dq

    @classmethod
    def build(cls, linearized: LinearizedTrack, momentum_guess: np.ndarray) -> "BilloirTrack":
        r"""
        Derive the per-track matrices from a linearized track.

        Raises
        ------
        SingularCovarianceError
            If the track covariance or :math:`G` is not invertible.
        """
        W = invert_checked(linearized.covariance_at_pca, SingularCovarianceError,
                           "track covariance at PCA")
        D = linearized.position_jacobian
        E = linearized.momentum_jacobian
        DtW = D.T @ W
        EtW = E.T @ W
        G = EtW @ E
        C = invert_checked(G, SingularCovarianceError, "momentum information matrix")
        B = DtW @ E

        q = linearized.parameters_at_pca
        dq = np.array([
            q[LOC0],
            q[LOC1],
            wrap_phi(q[PHI] - momentum_guess[0]),
            q[THETA] - momentum_guess[1],
            q[QOP] - momentum_guess[2],
        ])
        U = EtW @ dq
        return cls(linearized=linearized, weight=W, delta_q=dq, G=G, C=C, B=B, U=U,
                   BC=B @ C, A_term=DtW @ D, T_term=DtW @ dq)

    def momentum_update(self, delta_v: np.ndarray) -> np.ndarray:
        r""":math:`\delta\mathbf{p} = C\,(U - B^\top \delta\mathbf{V})`."""
        return self.C @ (self.U - self.B.T @ delta_v)

    def chi2(self, delta_v: np.ndarray, delta_p: np.ndarray) -> float:
        r"""Track :math:`\chi^2` of the residual :math:`\delta\mathbf{q} - D\,\delta\mathbf{V} - E\,\delta\mathbf{p}`."""
        r = (self.delta_q
             - self.linearized.position_jacobian @ delta_v
             - self.linearized.momentum_jacobian @ delta_p)
        return chi2_form(r, self.weight)

    def refit_covariance(self, vertex_cov: np.ndarray) -> np.ndarray:
        r"""
        5x5 covariance of the refit perigee parameters at the vertex.

        The stacked (vertex, momentum) covariance

        .. math::

            \Sigma_6 = \begin{pmatrix} V & -V G C \\ (-V G C)^\top & C + (BC)^\top V\,BC \end{pmatrix}

        is mapped through the fixed :math:`5\times 6` matrix whose first two
        rows carry the transverse entries of :math:`D` (plus :math:`\partial
        z_0/\partial z = 1`) and whose last three rows select the momentum.

        Since :math:`G C = I` the cross block reduces to :math:`-V`, so the
        result is not guaranteed to be positive semi-definite and should not be
        used as a track covariance downstream.
        """
        V = vertex_cov
        VP = -V @ self.G @ self.C
        PP = self.C + self.BC.T @ V @ self.BC
        cov6 = np.block([[V, VP], [VP.T, PP]])

        D = self.linearized.position_jacobian
        trans = np.zeros((5, 6))
        trans[0, 0], trans[0, 1] = D[0, 0], D[0, 1]
        trans[1, 0], trans[1, 1] = D[1, 0], D[1, 1]
        trans[1, 2] = 1.0
        trans[2, 3] = trans[3, 4] = trans[4, 5] = 1.0
        return symmetrize(trans @ cov6 @ trans.T)


class PositionSolution(NamedTuple):
    delta_v: np.ndarray   # (3,)
    cov: np.ndarray       # (3, 3)


@dataclass(frozen=True, eq=False)
class BilloirVertex:
    r"""
    Vertex-level sums of one iteration.

    .. math::

        A = \sum_i D_i^\top W_i D_i, \quad T = \sum_i D_i^\top W_i \delta\mathbf{q}_i, \quad
        BCB = \sum_i BC_i B_i^\top, \quad BCU = \sum_i BC_i U_i,

    reduced to the momentum-marginalized system
    :math:`(A - BCB)\,\delta\mathbf{V} = T - BCU`.
    """

    A: np.ndarray
    T: np.ndarray
    BCB: np.ndarray
    BCU: np.ndarray

    @classmethod
    def accumulate(cls, tracks: Sequence[BilloirTrack]) -> "BilloirVertex":
        A = np.zeros((3, 3))
        T = np.zeros(3)
        BCB = np.zeros((3, 3))
        BCU = np.zeros(3)
        for t in tracks:
            A = A + t.A_term
            T = T + t.T_term
            BCB = BCB + t.BC @ t.B.T
            BCU = BCU + t.BC @ t.U
        return cls(A=A, T=T, BCB=BCB, BCU=BCU)

    @property
    def information(self) -> np.ndarray:
        return symmetrize(self.A - self.BCB)

    @property
    def weighted_residual(self) -> np.ndarray:
        return self.T - self.BCU

    def solve(self,
              expansion_point: np.ndarray,
              constraint: Optional[VertexConstraint] = None,
              constraint_weight: Optional[np.ndarray] = None,
              pseudo_rcond: Optional[float] = None) -> PositionSolution:
        r"""
        Solve for the vertex position update around ``expansion_point``.

        With a constraint :math:`(\mathbf{c}, \Sigma)` the system gains the
        pseudo-measurement terms

        .. math::

            \mathcal{I} \mathrel{+}= \Sigma^{-1}, \qquad
            \mathbf{w} \mathrel{+}= \Sigma^{-1}(\mathbf{c} - \mathbf{V}_0).

        Parameters
        ----------
        expansion_point : ndarray, shape (3,)
            Current linearization point :math:`\mathbf{V}_0`.
        constraint : VertexConstraint, optional
            Active prior; requires ``constraint_weight``.
        constraint_weight : ndarray, shape (3, 3), optional
            :math:`\Sigma^{-1}`.
        pseudo_rcond : float, optional
            If given, use the minimum-norm pseudo-inverse solution instead of
            a checked inverse (lone unconstrained track).

        Returns
        -------
        PositionSolution
            :math:`\delta\mathbf{V} = \mathcal{I}^{-1}\mathbf{w}` and the
            iteration's vertex covariance :math:`\mathcal{I}^{-1}`.

        Raises
        ------
        SingularInformationMatrixError
            If :math:`\mathcal{I}` is singular (e.g. all tracks parallel).
        """
        info = self.information
        residual = self.weighted_residual
        if constraint is not None and constraint_weight is not None:
            info = info + constraint_weight
            residual = residual + constraint_weight @ (constraint.position - expansion_point)
        if pseudo_rcond is not None:
            cov = pseudo_inverse(info, rcond=pseudo_rcond)
        else:
            cov = invert_checked(info, SingularInformationMatrixError, "vertex information matrix")
        return PositionSolution(cov @ residual, cov)


class FullBilloirVertexFitter(VertexFitter):
    r"""
    Global least-squares vertex fit with simultaneous track momentum refit.

    Each iteration linearizes every track at the expansion point
    :math:`\mathbf{V}_0`, builds the per-track :class:`BilloirTrack`
    snapshots and their :class:`BilloirVertex` sums, and solves

    .. math::

        \delta\mathbf{V} &= (A - BCB)^{-1}\,(T - BCU), \\
        \delta\mathbf{p}_i &= C_i\,(U_i - B_i^\top\,\delta\mathbf{V}),

    after which the momenta are updated (angles normalized to
    :math:`\phi\in(-\pi,\pi]`, :math:`\theta\in[0,\pi]`) and the expansion
    point advances to :math:`\mathbf{V}_0 + \delta\mathbf{V}`. The total

    .. math::

        \chi^2 = \sum_i r_i^\top W_i r_i
            + \big[\delta\mathbf{V} - (\mathbf{c} - \mathbf{V}_0)\big]^\top
              \Sigma^{-1} \big[\cdots\big],
        \qquad r_i = \delta\mathbf{q}_i - D_i\delta\mathbf{V} - E_i\delta\mathbf{p}_i,

    (constraint term only for constrained fits) scores the iterate.

    Best-of-N policy
    ----------------
    All ``config.max_iterations`` iterations run (unless
    ``config.convergence_tolerance`` is set), and the returned vertex is the
    iterate with the lowest total :math:`\chi^2`; a later iterate replaces it
    only when strictly better. This keeps the result stable when the
    iterations oscillate around the optimum.

    Parameters
    ----------
    linearizer, config, field, extract_parameters
        See :class:`~vertex_reco.fitters.fitter.VertexFitter`.

    Notes
    -----
    - Zero tracks return :meth:`Vertex.at_origin` without fitting.
    - A single unconstrained track cannot fix the vertex along its own
      direction. The vertex is placed at the track's point of closest
      approach to the expansion point, with the minimum-norm (pseudo-inverse)
      covariance.
    - The refit track covariances follow the stacked form of
      :meth:`BilloirTrack.refit_covariance` and need not be positive
      semi-definite; do not treat ``fitted_params.cov`` as a proper covariance.
    - Singular matrices and linearization failures raise immediately; no
      partial vertex is returned.
    """

    def fit_with_history(self,
                         tracks: Sequence[Any],
                         constraint: Optional[VertexConstraint] = None,
                         linearization_point: Optional[np.ndarray] = None
                         ) -> Tuple[Vertex, Tuple[IterationSummary, ...]]:
        tracks = list(tracks)
        if not tracks:
            self.log.debug("No input tracks; returning the degenerate vertex at the origin.")
            return Vertex.at_origin(), ()

        params = [self.extract_parameters(t) for t in tracks]
        constrained = constraint is not None and constraint.is_active
        constraint_weight = None
        if constrained:
            constraint_weight = invert_checked(constraint.cov, SingularCovarianceError,
                                               "vertex constraint covariance")
        ndf = self.degrees_of_freedom(len(tracks), constrained)
        pseudo_rcond = self.config.single_track_rcond if (len(tracks) == 1 and not constrained) else None
        tolerance = self.config.convergence_tolerance

        lin_point = self.initial_point(constraint, linearization_point)
        momenta = [p.momentum_vector() for p in params]
        self.log.debug("Fitting %d tracks (constrained=%s, ndf=%d) from %s",
                       len(tracks), constrained, ndf, lin_point.tolist())

        best_chi2 = math.inf
        best: Optional[Vertex] = None
        history: List[IterationSummary] = []
        for iteration in range(self.config.max_iterations):
            linearized = self._linearize_all(params, lin_point)
            billoir_tracks = [BilloirTrack.build(lt, m) for lt, m in zip(linearized, momenta)]
            billoir_vertex = BilloirVertex.accumulate(billoir_tracks)
            delta_v, vertex_cov = billoir_vertex.solve(lin_point,
                                                       constraint if constrained else None,
                                                       constraint_weight,
                                                       pseudo_rcond)
            if pseudo_rcond is not None:
                # the lone track leaves the vertex free along its direction; pin it to the PCA
                delta_v = linearized[0].position_at_pca - lin_point

            new_momenta = []
            track_chi2 = []
            for bt, mom in zip(billoir_tracks, momenta):
                delta_p = bt.momentum_update(delta_v)
                updated = mom + delta_p
                phi, theta = normalize_phi_theta(updated[0], updated[1])
                new_momenta.append(np.array([phi, theta, updated[2]]))
                track_chi2.append(bt.chi2(delta_v, delta_p))

            chi2 = math.fsum(track_chi2)
            if constrained:
                chi2 += chi2_form(delta_v - (constraint.position - lin_point), constraint_weight)
            if not math.isfinite(chi2):
                raise NumericFailureError(f"Non-finite chi2 in iteration {iteration}.")

            lin_point = lin_point + delta_v
            momenta = new_momenta
            step = float(np.linalg.norm(delta_v))
            committed = chi2 < best_chi2
            if committed:
                best_chi2 = chi2
                best = self._assemble(tracks, billoir_tracks, momenta, track_chi2,
                                      lin_point, vertex_cov, chi2, ndf)
            history.append(IterationSummary(iteration, chi2, lin_point.copy(), step, committed))
            self.log.debug("iter %d: chi2=%.6g |dV|=%.3e committed=%s", iteration, chi2, step, committed)

            if tolerance is not None and step < tolerance:
                self.log.debug("Converged after %d iterations (|dV| < %g).", iteration + 1, tolerance)
                break

        return best, tuple(history)

    @staticmethod
    def _assemble(tracks: Sequence[Any],
                  billoir_tracks: Sequence[BilloirTrack],
                  momenta: Sequence[np.ndarray],
                  track_chi2: Sequence[float],
                  position: np.ndarray,
                  vertex_cov: np.ndarray,
                  chi2: float,
                  ndf: int) -> Vertex:
        """Build the output vertex; refit tracks sit on the perigee surface of the vertex."""
        at_vertex = []
        for track, bt, mom, c2 in zip(tracks, billoir_tracks, momenta, track_chi2):
            refit = BoundTrackParameters(
                params=np.array([0.0, 0.0, mom[0], mom[1], mom[2]]),
                cov=bt.refit_covariance(vertex_cov),
                reference=position,
            )
            at_vertex.append(TrackAtVertex(chi2=c2, fitted_params=refit, original_track=track))
        return Vertex(position=position, cov=vertex_cov, chi2=chi2, ndf=ndf, tracks=tuple(at_vertex))
