from __future__ import annotations
from typing import Protocol

import numpy as np

# GeV / (T * mm) per unit charge: p_T = 0.3 * B * R with R in metres
CURVATURE_PER_TESLA = 0.299792458e-3


class MagneticField(Protocol):
    r"""Field provider contract consumed by the propagator and linearizer."""

    def field(self, position: np.ndarray) -> np.ndarray:
        ...

    def curvature_factor(self, position: np.ndarray) -> float:
        ...


class ConstantBField:
    r"""
    Uniform solenoidal field :math:`\mathbf{B} = (0, 0, B_z)`.

    Parameters
    ----------
    bz : float, optional
        Longitudinal field in Tesla. Default ``2.0``. ``0`` gives straight
        tracks.

    Notes
    -----
    The helix radius of a track with polar angle :math:`\theta` and
    :math:`q/p` (e/GeV) is

    .. math::

        \rho = \frac{\sin\theta}{(q/p)\,k\,B_z}, \qquad
        k = 0.299792458\times10^{-3}\ \mathrm{GeV\,T^{-1}\,mm^{-1}},

    signed so that :math:`\rho > 0` for positive charge in positive
    :math:`B_z`.
    """

    __slots__ = ("bz",)

    def __init__(self, bz: float = 2.0) -> None:
        self.bz = float(bz)
        if not np.isfinite(self.bz):
            raise ValueError(f"Field value must be finite, got {bz!r}.")

    def field(self, position: np.ndarray) -> np.ndarray:
        return np.array([0.0, 0.0, self.bz])

    def curvature_factor(self, position: np.ndarray) -> float:
        """Return :math:`k B_z` at ``position`` (GeV/mm per unit charge)."""
        return CURVATURE_PER_TESLA * self.bz

    def __repr__(self) -> str:
        return f"ConstantBField(bz={self.bz})"
