import sys
import math
from pathlib import Path
sys.path.append(str(Path(__file__).resolve().parents[1]))

import numpy as np
import pytest

from vertex_reco.utils import normalize_phi_theta, wrap_phi


def _direction(phi, theta):
    return np.array([math.sin(theta) * math.cos(phi),
                     math.sin(theta) * math.sin(phi),
                     math.cos(theta)])


@pytest.mark.parametrize("phi, expected", [
    (0.0, 0.0),
    (1.0, 1.0),
    (math.pi, math.pi),
    (-math.pi, math.pi),
    (1.5 * math.pi, -0.5 * math.pi),
    (-1.5 * math.pi, 0.5 * math.pi),
    (2.0 * math.pi + 0.25, 0.25),
    (-4.0 * math.pi - 0.25, -0.25),
])
def test_wrap_phi(phi, expected):
    assert wrap_phi(phi) == pytest.approx(expected, abs=1e-12)


def test_wrap_phi_stays_in_half_open_interval():
    for phi in np.linspace(-20.0, 20.0, 1001):
        w = wrap_phi(phi)
        assert -math.pi < w <= math.pi
        assert math.cos(w) == pytest.approx(math.cos(phi), abs=1e-12)
        assert math.sin(w) == pytest.approx(math.sin(phi), abs=1e-12)


def test_normalize_in_range_is_unchanged():
    assert normalize_phi_theta(0.3, 1.0) == (0.3, 1.0)
    assert normalize_phi_theta(-2.0, 0.0) == (-2.0, 0.0)
    assert normalize_phi_theta(2.0, math.pi) == (2.0, math.pi)


def test_normalize_negative_theta_flips_phi():
    phi, theta = normalize_phi_theta(0.5, -0.1)
    assert theta == pytest.approx(0.1)
    assert phi == pytest.approx(0.5 - math.pi)

    phi, theta = normalize_phi_theta(3.0, -0.1)
    assert theta == pytest.approx(0.1)
    assert phi == pytest.approx(3.0 + math.pi - 2.0 * math.pi)


def test_normalize_wraps_phi_only():
    phi, theta = normalize_phi_theta(4.0, 1.2)
    assert theta == 1.2
    assert phi == pytest.approx(4.0 - 2.0 * math.pi)


@pytest.mark.parametrize("phi, theta", [
    (0.5, -0.1),
    (-2.5, -1.3),
    (1.0, math.pi + 0.2),
    (-3.0, 2.0 * math.pi - 0.4),
    (2.9, 1.7),
])
def test_normalize_preserves_direction(phi, theta):
    p, t = normalize_phi_theta(phi, theta)
    assert 0.0 <= t <= math.pi
    assert -math.pi < p <= math.pi
    np.testing.assert_allclose(_direction(p, t), _direction(phi, theta), atol=1e-12)
