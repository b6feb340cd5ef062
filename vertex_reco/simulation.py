r"""
Synthetic single-vertex events for exercising the fitter.

A true vertex :math:`\mathbf{V}` is drawn from a Gaussian beam spot and
:math:`N` charged tracks are emitted from it with

.. math::

    p_T \sim \mathcal{U}(p_T^\min, p_T^\max), \quad
    \eta \sim \mathcal{U}(-\eta_\max, \eta_\max), \quad
    \phi \sim \mathcal{U}(-\pi, \pi), \quad q = \pm 1,

:math:`\theta = 2\arctan e^{-\eta}` and :math:`q/p = q\sin\theta / p_T`.
The exact perigee parameters with respect to the origin are smeared with
independent Gaussian resolutions and carry the matching diagonal covariance.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np

from vertex_reco.config import SimulationConfig
from vertex_reco.field import ConstantBField, MagneticField
from vertex_reco.helix import perigee_expansion
from vertex_reco.parameters import PHI, QOP, BoundTrackParameters
from vertex_reco.utils import wrap_phi


@dataclass(frozen=True, eq=False)
class SimulatedEvent:
    true_vertex: np.ndarray
    tracks: Tuple[BoundTrackParameters, ...]
    true_params: Tuple[np.ndarray, ...]


def sample_vertex(rng: np.random.Generator,
                  beam_spot_sigma: Sequence[float],
                  center: Optional[Sequence[float]] = None) -> np.ndarray:
    """Draw a vertex position from a diagonal Gaussian beam spot."""
    mu = np.zeros(3) if center is None else np.asarray(center, dtype=np.float64)
    return mu + rng.normal(size=3) * np.asarray(beam_spot_sigma, dtype=np.float64)


def sample_momentum(rng: np.random.Generator,
                    pt_range: Tuple[float, float],
                    eta_max: float) -> np.ndarray:
    r"""Random :math:`(\phi, \theta, q/p)` of a unit-charge particle."""
    pt = rng.uniform(*pt_range)
    eta = rng.uniform(-eta_max, eta_max)
    phi = rng.uniform(-math.pi, math.pi)
    charge = 1.0 if rng.random() < 0.5 else -1.0
    theta = 2.0 * math.atan(math.exp(-eta))
    return np.array([phi, theta, charge * math.sin(theta) / pt])


def smear_parameters(params: np.ndarray,
                     rng: np.random.Generator,
                     resolution: Sequence[float]) -> BoundTrackParameters:
    r"""
    Gaussian smearing of exact perigee parameters (reference at the origin).

    ``resolution`` is :math:`(\sigma_{d_0}, \sigma_{z_0}, \sigma_\phi,
    \sigma_\theta, \sigma_{q/p}/|q/p|)`.
    """
    sigma = np.array(resolution, dtype=np.float64)
    sigma[QOP] *= abs(params[QOP])
    smeared = params + rng.normal(size=5) * sigma
    smeared[PHI] = wrap_phi(smeared[PHI])
    return BoundTrackParameters(smeared, np.diag(sigma * sigma))


def generate_event(rng: np.random.Generator,
                   config: Optional[SimulationConfig] = None,
                   field: Optional[MagneticField] = None,
                   vertex: Optional[Sequence[float]] = None) -> SimulatedEvent:
    r"""
    Generate one event.

    Parameters
    ----------
    rng : numpy.random.Generator
        Random source.
    config : SimulationConfig, optional
        Multiplicity, kinematics and resolutions.
    field : MagneticField, optional
        Field used for the exact helix (default ``ConstantBField(2.0)``).
    vertex : array_like, shape (3,), optional
        Fixed true vertex; otherwise drawn from the beam spot.

    Returns
    -------
    SimulatedEvent
    """
    config = config or SimulationConfig()
    field = field if field is not None else ConstantBField()
    true_vertex = (np.asarray(vertex, dtype=np.float64) if vertex is not None
                   else sample_vertex(rng, config.beam_spot_sigma))
    curvature = field.curvature_factor(true_vertex)
    origin = np.zeros(3)

    tracks = []
    truth = []
    for _ in range(config.n_tracks):
        momentum = sample_momentum(rng, config.pt_range, config.eta_max)
        exact = perigee_expansion(true_vertex, momentum, origin, curvature).params
        truth.append(exact)
        tracks.append(smear_parameters(exact, rng, config.resolution))
    logging.debug("Generated %d tracks at vertex %s", len(tracks), true_vertex.tolist())
    return SimulatedEvent(true_vertex, tuple(tracks), tuple(truth))
