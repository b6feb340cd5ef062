import sys
from pathlib import Path
sys.path.append(str(Path(__file__).resolve().parents[1]))

import numpy as np
import pytest

from vertex_reco.errors import PropagationError
from vertex_reco.field import ConstantBField
from vertex_reco.parameters import BoundTrackParameters
from vertex_reco.propagator import HelixPropagator


def _track(bz_sign=1.0):
    params = np.array([0.05, -1.2, 0.9, 1.2, 0.4 * bz_sign])
    cov = np.diag([4e-4, 2.5e-3, 2.5e-7, 2.5e-7, 1.6e-5])
    cov[0, 2] = cov[2, 0] = 5e-6
    return BoundTrackParameters(params, cov, np.zeros(3))


@pytest.mark.parametrize("bz", [0.0, 2.0, -3.8])
def test_same_reference_is_identity(bz):
    prop = HelixPropagator(ConstantBField(bz))
    track = _track()
    J = prop.transport_jacobian(track, prop.expand(track, track.reference))
    np.testing.assert_allclose(J, np.eye(5), atol=1e-9)
    out = prop.propagate_to_perigee(track, track.reference)
    np.testing.assert_allclose(out.params, track.params, atol=1e-10)
    np.testing.assert_allclose(out.cov, track.cov, rtol=1e-9, atol=1e-12)


@pytest.mark.parametrize("bz", [0.0, 2.0])
def test_round_trip(bz):
    prop = HelixPropagator(ConstantBField(bz))
    track = _track(-1.0)
    there = prop.propagate_to_perigee(track, [1.5, -0.7, 20.0])
    np.testing.assert_allclose(there.reference, [1.5, -0.7, 20.0])
    back = prop.propagate_to_perigee(there, track.reference)
    np.testing.assert_allclose(back.params, track.params, atol=1e-9)
    np.testing.assert_allclose(back.cov, track.cov, rtol=1e-6, atol=1e-12)


def test_position_is_preserved_along_the_track():
    prop = HelixPropagator(ConstantBField(2.0))
    track = _track()
    moved = prop.propagate_to_perigee(track, track.position())
    np.testing.assert_allclose(moved.params[:2], [0.0, 0.0], atol=1e-9)


def test_without_covariance():
    prop = HelixPropagator()
    track = BoundTrackParameters(_track().params)
    assert prop.propagate_to_perigee(track, np.ones(3)).cov is None


def test_invalid_reference_raises():
    prop = HelixPropagator()
    with pytest.raises(PropagationError):
        prop.propagate_to_perigee(_track(), [np.inf, 0.0, 0.0])
    with pytest.raises(PropagationError):
        prop.propagate_to_perigee(_track(), [0.0, 0.0])
