import sys
import math
from pathlib import Path
sys.path.append(str(Path(__file__).resolve().parents[1]))

import numpy as np
import pytest

from vertex_reco.metrics import (
    fit_probability,
    summarize_fits,
    summary_statistics,
    vertex_chi2_to_truth,
    vertex_pulls,
    vertex_residuals,
)
from vertex_reco.parameters import Vertex


def _vertex(position, cov_diag, chi2=2.0, ndf=2):
    return Vertex(position=position, cov=np.diag(cov_diag), chi2=chi2, ndf=ndf)


def test_fit_probability():
    assert fit_probability(2.0, 2) == pytest.approx(math.exp(-1.0))
    assert fit_probability(0.0, 5) == pytest.approx(1.0)
    assert math.isnan(fit_probability(1.0, 0))
    assert math.isnan(fit_probability(float("inf"), 3))


def test_residuals_and_pulls():
    v = _vertex([1.0, 0.5, -2.0], [4.0, 0.25, 0.0])
    np.testing.assert_allclose(vertex_residuals(v, [0.0, 0.0, -1.0]), [1.0, 0.5, -1.0])
    pulls = vertex_pulls(v, [0.0, 0.0, -1.0])
    np.testing.assert_allclose(pulls[:2], [0.5, 1.0])
    assert math.isnan(pulls[2])


def test_chi2_to_truth():
    v = _vertex([1.0, 1.0, 1.0], [1.0, 4.0, 0.25])
    assert vertex_chi2_to_truth(v, np.zeros(3)) == pytest.approx(1.0 + 0.25 + 4.0)


def test_summarize_fits():
    records = [
        (0, _vertex([0.1, 0.0, 0.0], [0.01, 0.01, 0.01]), np.zeros(3)),
        (3, _vertex([0.0, -0.2, 0.0], [0.01, 0.01, 0.0]), np.zeros(3)),
    ]
    df = summarize_fits(records)
    assert list(df["event"]) == [0, 3]
    assert df.loc[0, "pull_x"] == pytest.approx(1.0)
    assert df.loc[1, "pull_y"] == pytest.approx(-2.0)
    assert df.loc[0, "chi2_truth"] == pytest.approx(1.0)
    assert math.isnan(df.loc[1, "chi2_truth"])
    assert df.loc[0, "prob"] == pytest.approx(math.exp(-1.0))

    stats = summary_statistics(df)
    assert stats["n_fits"] == 2
    assert stats["rms_res_x"] == pytest.approx(math.sqrt(0.005))
    assert stats["mean_chi2_ndf"] == pytest.approx(1.0)
    assert stats["pull_mean_z"] == 0.0
    assert math.isnan(stats["pull_std_z"])


def test_empty_summary():
    df = summarize_fits([])
    assert df.empty
    assert "pull_z" in df.columns
    assert summary_statistics(df) == {"n_fits": 0.0}
