import sys
from pathlib import Path
sys.path.append(str(Path(__file__).resolve().parents[1]))

import numpy as np
import pytest

from vertex_reco.config import SimulationConfig
from vertex_reco.field import ConstantBField
from vertex_reco.parameters import BoundTrackParameters
from vertex_reco.propagator import HelixPropagator
from vertex_reco.simulation import generate_event, sample_momentum


def test_event_is_reproducible():
    cfg = SimulationConfig(n_tracks=7)
    a = generate_event(np.random.default_rng(5), cfg)
    b = generate_event(np.random.default_rng(5), cfg)
    assert len(a.tracks) == 7
    np.testing.assert_array_equal(a.true_vertex, b.true_vertex)
    for ta, tb in zip(a.tracks, b.tracks):
        np.testing.assert_array_equal(ta.params, tb.params)


@pytest.mark.parametrize("bz", [0.0, 2.0])
def test_true_parameters_pass_through_vertex(bz):
    field = ConstantBField(bz)
    event = generate_event(np.random.default_rng(9), SimulationConfig(n_tracks=5), field,
                           vertex=[0.05, -0.03, 20.0])
    prop = HelixPropagator(field)
    for params in event.true_params:
        at_vertex = prop.propagate_to_perigee(BoundTrackParameters(params), event.true_vertex)
        np.testing.assert_allclose(at_vertex.params[:2], [0.0, 0.0], atol=1e-8)


def test_smearing_matches_covariance():
    cfg = SimulationConfig(n_tracks=2000)
    event = generate_event(np.random.default_rng(1), cfg, vertex=np.zeros(3))
    pulls = np.array([
        (t.params - truth)[:2] / np.sqrt(np.diag(t.cov))[:2]
        for t, truth in zip(event.tracks, event.true_params)
    ])
    np.testing.assert_allclose(pulls.std(axis=0), [1.0, 1.0], atol=0.1)


def test_sampled_momentum_ranges():
    rng = np.random.default_rng(2)
    for _ in range(200):
        phi, theta, qop = sample_momentum(rng, (1.0, 2.0), 1.0)
        pt = abs(np.sin(theta) / qop)
        assert 1.0 <= pt <= 2.0
        assert 2 * np.arctan(np.exp(-1.0)) <= theta <= 2 * np.arctan(np.exp(1.0))
