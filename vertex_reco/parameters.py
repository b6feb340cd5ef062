"""Track and vertex data models used by the vertex fitter.

This module defines:
- perigee track parameters relative to a reference point (`BoundTrackParameters`)
- the optional prior position constraint (`VertexConstraint`)
- fitter outputs (`Vertex`, `TrackAtVertex`)
- the default track-extraction capability (`extract_bound_parameters`).
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Optional, Tuple

import numpy as np

# perigee parameter indices
LOC0, LOC1, PHI, THETA, QOP = range(5)
N_PARAMS = 5


def _as_vector(a, size: int, name: str) -> np.ndarray:
    v = np.array(a, dtype=np.float64).reshape(-1)
    if v.shape != (size,):
        raise ValueError(f"{name} must have {size} entries, got shape {np.shape(a)}.")
    v.setflags(write=False)
    return v


def _as_matrix(a, size: int, name: str) -> np.ndarray:
    m = np.array(a, dtype=np.float64)
    if m.shape != (size, size):
        raise ValueError(f"{name} must have shape ({size}, {size}), got {m.shape}.")
    m.setflags(write=False)
    return m


@dataclass(frozen=True, eq=False)
class BoundTrackParameters:
    """Perigee track state `(d0, z0, phi, theta, q/p)` relative to a reference point.

    The point of closest approach (PCA) in global coordinates is
    `reference + (-d0 sin(phi), d0 cos(phi), z0)`.
    """

    params: np.ndarray
    cov: Optional[np.ndarray] = None
    reference: np.ndarray = field(default_factory=lambda: np.zeros(3))

    def __post_init__(self) -> None:
        object.__setattr__(self, "params", _as_vector(self.params, N_PARAMS, "params"))
        if self.cov is not None:
            object.__setattr__(self, "cov", _as_matrix(self.cov, N_PARAMS, "cov"))
        object.__setattr__(self, "reference", _as_vector(self.reference, 3, "reference"))

    @property
    def d0(self) -> float:
        return float(self.params[LOC0])

    @property
    def z0(self) -> float:
        return float(self.params[LOC1])

    @property
    def phi(self) -> float:
        return float(self.params[PHI])

    @property
    def theta(self) -> float:
        return float(self.params[THETA])

    @property
    def qop(self) -> float:
        return float(self.params[QOP])

    @property
    def charge(self) -> int:
        """Sign of `q/p`; zero for a neutral (straight) track."""
        if self.qop > 0.0:
            return 1
        if self.qop < 0.0:
            return -1
        return 0

    @property
    def momentum(self) -> float:
        """Momentum magnitude `|1/(q/p)|` (infinite for `q/p = 0`)."""
        return math.inf if self.qop == 0.0 else abs(1.0 / self.qop)

    @property
    def transverse_momentum(self) -> float:
        return self.momentum * math.sin(self.theta)

    def position(self) -> np.ndarray:
        """Global position of the point of closest approach."""
        d0, phi = self.d0, self.phi
        return self.reference + np.array([-d0 * math.sin(phi), d0 * math.cos(phi), self.z0])

    def direction(self) -> np.ndarray:
        """Unit momentum direction at the PCA."""
        st = math.sin(self.theta)
        return np.array([st * math.cos(self.phi), st * math.sin(self.phi), math.cos(self.theta)])

    def momentum_vector(self) -> np.ndarray:
        """`(phi, theta, q/p)` as a fresh array."""
        return np.array(self.params[PHI:], dtype=np.float64)


@dataclass(frozen=True, eq=False)
class VertexConstraint:
    """Prior vertex position and covariance (e.g. the beam spot).

    A covariance with zero trace means "unconstrained".
    """

    position: np.ndarray = field(default_factory=lambda: np.zeros(3))
    cov: np.ndarray = field(default_factory=lambda: np.zeros((3, 3)))

    def __post_init__(self) -> None:
        object.__setattr__(self, "position", _as_vector(self.position, 3, "position"))
        object.__setattr__(self, "cov", _as_matrix(self.cov, 3, "cov"))

    @property
    def is_active(self) -> bool:
        return float(np.trace(self.cov)) != 0.0

    @classmethod
    def unconstrained(cls) -> "VertexConstraint":
        return cls()

    @classmethod
    def beam_spot(cls, position, sigmas) -> "VertexConstraint":
        """Diagonal constraint from per-axis standard deviations."""
        s = _as_vector(sigmas, 3, "sigmas")
        return cls(position=position, cov=np.diag(s * s))


@dataclass(frozen=True, eq=False)
class TrackAtVertex:
    """One input track after the fit: chi2 contribution, refit state and the original object."""

    chi2: float
    fitted_params: BoundTrackParameters
    original_track: Any


@dataclass(frozen=True, eq=False)
class Vertex:
    """Fitted vertex: position, covariance, fit quality and refit tracks."""

    position: np.ndarray
    cov: np.ndarray
    chi2: float = 0.0
    ndf: int = 0
    tracks: Tuple[TrackAtVertex, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "position", _as_vector(self.position, 3, "position"))
        object.__setattr__(self, "cov", _as_matrix(self.cov, 3, "cov"))
        object.__setattr__(self, "tracks", tuple(self.tracks))

    @classmethod
    def at_origin(cls) -> "Vertex":
        """Degenerate result returned for an empty track list."""
        return cls(position=np.zeros(3), cov=np.zeros((3, 3)))

    @property
    def fit_quality(self) -> Tuple[float, int]:
        return self.chi2, self.ndf

    @property
    def n_tracks(self) -> int:
        return len(self.tracks)


def extract_bound_parameters(track: Any) -> BoundTrackParameters:
    """Default extraction capability for caller track objects.

    Accepts `BoundTrackParameters` directly, or any object exposing a
    `parameters` (or `fitted_params`, e.g. `TrackAtVertex`) attribute that
    holds one.
    """
    if isinstance(track, BoundTrackParameters):
        return track
    for attr in ("parameters", "fitted_params"):
        value = getattr(track, attr, None)
        if isinstance(value, BoundTrackParameters):
            return value
    raise TypeError(
        f"Cannot extract perigee parameters from {type(track).__name__}; "
        "pass an extract_parameters callable."
    )
