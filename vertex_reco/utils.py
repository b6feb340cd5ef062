from __future__ import annotations

import math
from typing import Tuple


TWO_PI = 2.0 * math.pi


def wrap_phi(phi: float) -> float:
    r"""
    Reduce an azimuth into the half-open interval :math:`(-\pi, \pi]`.

    .. math::

        \phi' = \phi - 2\pi\left\lceil \frac{\phi - \pi}{2\pi} \right\rceil

    Parameters
    ----------
    phi : float
        Angle in radians (any value).

    Returns
    -------
    float
        Equivalent angle in :math:`(-\pi, \pi]`.

    Examples
    --------
    >>> wrap_phi(3.5 * math.pi)
    -1.5707963267948966
    >>> wrap_phi(-math.pi)
    3.141592653589793
    """
    phi = float(phi)
    if -math.pi < phi <= math.pi:
        return phi
    out = math.fmod(phi + math.pi, TWO_PI)
    if out <= 0.0:
        out += TWO_PI
    return out - math.pi


def normalize_phi_theta(phi: float, theta: float) -> Tuple[float, float]:
    r"""
    Bring an (azimuth, polar angle) pair back into its canonical domain.

    The polar angle must lie in :math:`[0, \pi]` and the azimuth in
    :math:`(-\pi, \pi]`. A direction whose polar angle left the range is the
    same direction seen with :math:`\theta` reflected and :math:`\phi` rotated
    by :math:`\pi`:

    .. math::

        (\phi, \theta) \equiv (\phi + \pi,\ -\theta) \equiv (\phi + \pi,\ 2\pi - \theta).

    ``theta`` is first reduced modulo :math:`2\pi` into :math:`(-\pi, \pi]`;
    a negative value is then reflected (``-theta``) and ``phi`` shifted by
    :math:`\pi`. The azimuth is wrapped again after the shift.

    Parameters
    ----------
    phi : float
        Azimuthal angle (radians).
    theta : float
        Polar angle (radians).

    Returns
    -------
    (phi, theta) : tuple of float
        ``phi`` in :math:`(-\pi, \pi]`, ``theta`` in :math:`[0, \pi]`.

    Examples
    --------
    >>> normalize_phi_theta(0.5, -0.1)
    (-2.641592653589793, 0.1)
    """
    theta = float(theta)
    phi = float(phi)
    if not 0.0 <= theta <= math.pi:
        # theta in (pi, 2pi) wraps to a negative value here
        theta = wrap_phi(theta)
        if theta < 0.0:
            theta = -theta
            phi += math.pi
    return wrap_phi(phi), theta
