r"""
Analytic perigee expansion of a helical (or straight) track.

A track passing through the point :math:`\mathbf{V}` with momentum
:math:`\mathbf{p} = (\phi, \theta, q/p)` at :math:`\mathbf{V}` is described at a
perigee surface with reference point :math:`\mathbf{r}` by

.. math::

    \mathbf{q}(\mathbf{V}, \mathbf{p}) = (d_0, z_0, \phi_P, \theta, q/p),

where :math:`\phi_P` is the azimuth at the point of closest approach (PCA).
In a uniform field :math:`B_z` the transverse projection is a circle of signed
radius :math:`\rho = \sin\theta / (q/p \cdot kB_z)` with centre
:math:`\mathbf{c} = \mathbf{V}_T + \rho(\sin\phi, -\cos\phi)`. With
:math:`(X, Y) = \mathbf{c} - \mathbf{r}_T`, :math:`S = \sqrt{X^2 + Y^2}` and
:math:`h = \operatorname{sign}\rho`:

.. math::

    d_0 &= \rho - h S, \\
    \phi_P &= \operatorname{atan2}(hX, -hY), \\
    z_0 &= V_z - r_z - \rho\,(\phi_P - \phi)\cot\theta.

:func:`perigee_expansion` returns :math:`\mathbf{q}` together with the
Jacobians :math:`D = \partial\mathbf{q}/\partial\mathbf{V}` and
:math:`E = \partial\mathbf{q}/\partial\mathbf{p}` (Billoir, Fruhwirth &
Regler, NIM A241 (1985) 115). For a vanishing field, or :math:`|q/p|` below
``min_qop``, the exact straight-line expressions are used instead of the
:math:`\rho\to\infty` limit.
"""
from __future__ import annotations

import math
from typing import NamedTuple, Sequence

import numpy as np

from vertex_reco.errors import PropagationError
from vertex_reco.utils import wrap_phi


class PerigeeExpansion(NamedTuple):
    params: np.ndarray               # (5,)
    position_jacobian: np.ndarray    # (5, 3)
    momentum_jacobian: np.ndarray    # (5, 3)


def _check_inputs(pos: np.ndarray, ref: np.ndarray, phi: float, theta: float, qop: float) -> None:
    if not (np.all(np.isfinite(pos)) and np.all(np.isfinite(ref))):
        raise PropagationError("Track position or reference point is not finite.")
    if not all(math.isfinite(x) for x in (phi, theta, qop)):
        raise PropagationError("Track momentum is not finite.")
    if not 0.0 < theta < math.pi:
        raise PropagationError(f"Polar angle {theta!r} outside (0, pi); perigee undefined.")


def perigee_expansion(position: Sequence[float],
                      momentum: Sequence[float],
                      reference: Sequence[float],
                      curvature: float,
                      min_qop: float = 1e-12) -> PerigeeExpansion:
    r"""
    Perigee parameters of a track and their first derivatives.

    Parameters
    ----------
    position : array_like, shape (3,)
        A point :math:`\mathbf{V}` on the track (mm).
    momentum : array_like, shape (3,)
        :math:`(\phi, \theta, q/p)` at ``position``.
    reference : array_like, shape (3,)
        Perigee reference point :math:`\mathbf{r}` (mm).
    curvature : float
        Field factor :math:`kB_z` (GeV/mm per unit charge); ``0`` means no field.
    min_qop : float, optional
        Below this :math:`|q/p|` the track is treated as straight.

    Returns
    -------
    PerigeeExpansion
        ``params`` (5,), ``position_jacobian`` :math:`D` (5, 3) and
        ``momentum_jacobian`` :math:`E` (5, 3).

    Raises
    ------
    PropagationError
        Non-finite input, :math:`\theta\notin(0,\pi)`, or a reference point on
        the helix axis (PCA undefined).
    """
    pos = np.asarray(position, dtype=np.float64)
    ref = np.asarray(reference, dtype=np.float64)
    phi, theta, qop = (float(x) for x in momentum)
    _check_inputs(pos, ref, phi, theta, qop)

    sin_phi, cos_phi = math.sin(phi), math.cos(phi)
    sin_th, cos_th = math.sin(theta), math.cos(theta)
    cot_th = cos_th / sin_th
    dx = pos - ref

    D = np.zeros((5, 3))
    E = np.zeros((5, 3))
    E[3, 1] = 1.0
    E[4, 2] = 1.0

    if curvature == 0.0 or abs(qop) < min_qop:
        b = dx[0] * cos_phi + dx[1] * sin_phi     # transverse distance along the track
        a = -dx[0] * sin_phi + dx[1] * cos_phi    # signed transverse offset
        params = np.array([a, dx[2] - b * cot_th, wrap_phi(phi), theta, qop])

        D[0, 0], D[0, 1] = -sin_phi, cos_phi
        D[1, 0], D[1, 1], D[1, 2] = -cos_phi * cot_th, -sin_phi * cot_th, 1.0

        E[0, 0] = -b
        E[1, 0] = -a * cot_th
        E[1, 1] = b / (sin_th * sin_th)
        E[2, 0] = 1.0
        return PerigeeExpansion(params, D, E)

    rho = sin_th / (qop * curvature)
    h = 1.0 if rho > 0.0 else -1.0
    X = dx[0] + rho * sin_phi
    Y = dx[1] - rho * cos_phi
    S2 = X * X + Y * Y
    S = math.sqrt(S2)
    if S <= 1e-9 * max(1.0, abs(rho)):
        raise PropagationError("Reference point lies on the helix axis; perigee undefined.")

    phi_p = wrap_phi(math.atan2(h * X, -h * Y))
    dphi = wrap_phi(phi_p - phi)
    params = np.array([rho - h * S, dx[2] - rho * dphi * cot_th, phi_p, theta, qop])

    D[0, 0], D[0, 1] = -h * X / S, -h * Y / S
    D[1, 0], D[1, 1], D[1, 2] = rho * Y * cot_th / S2, -rho * X * cot_th / S2, 1.0
    D[2, 0], D[2, 1] = -Y / S2, X / S2

    R = X * cos_phi + Y * sin_phi
    Q = X * sin_phi - Y * cos_phi
    red = 1.0 - h * Q / S
    E[0, 0] = -h * rho * R / S
    E[0, 1] = red * rho * cot_th
    E[0, 2] = -red * rho / qop
    E[1, 0] = (1.0 - rho * Q / S2) * rho * cot_th
    E[1, 1] = (dphi + rho * R * cot_th * cot_th / S2) * rho
    E[1, 2] = (dphi - rho * R / S2) * rho * cot_th / qop
    E[2, 0] = rho * Q / S2
    E[2, 1] = -rho * R * cot_th / S2
    E[2, 2] = rho * R / (S2 * qop)
    return PerigeeExpansion(params, D, E)
