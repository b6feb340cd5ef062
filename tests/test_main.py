import sys
from pathlib import Path
sys.path.append(str(Path(__file__).resolve().parents[1]))

import matplotlib
matplotlib.use("Agg")

import orjson

from vertex_reco.config import RunConfig, SimulationConfig, VertexFitterConfig
from vertex_reco.main import build_parser, resolve_run_config, run_events
from vertex_reco.plotting import plot_pull_distributions


def _small_config(**kwargs):
    return RunConfig(simulation=SimulationConfig(n_events=4, n_tracks=6, seed=13), **kwargs)


def test_cli_overrides(tmp_path):
    path = tmp_path / "run.json"
    path.write_bytes(orjson.dumps({"bz": 1.0, "simulation": {"n_tracks": 3}}))
    args = build_parser().parse_args(["--config", str(path), "-n", "2", "--beam-spot", "--tolerance", "1e-4"])
    cfg = resolve_run_config(args)
    assert cfg.bz == 1.0
    assert cfg.simulation.n_tracks == 3
    assert cfg.simulation.n_events == 2
    assert cfg.beam_spot_constraint is True
    assert cfg.fitter.convergence_tolerance == 1e-4

    cfg = resolve_run_config(build_parser().parse_args(["--bz", "0"]))
    assert cfg.bz == 0.0
    assert cfg.beam_spot_constraint is False


def test_run_events():
    df = run_events(_small_config())
    assert len(df) == 4
    assert (df["ndf"] == 9).all()
    assert (df["n_tracks"] == 6).all()
    assert df["prob"].between(0.0, 1.0).all()


def test_run_events_with_beam_spot_and_no_field():
    df = run_events(_small_config(bz=0.0, beam_spot_constraint=True,
                                  fitter=VertexFitterConfig(max_iterations=3)))
    assert len(df) == 4
    assert (df["ndf"] == 12).all()


def test_pull_plot_is_written(tmp_path):
    df = run_events(_small_config())
    out = tmp_path / "pulls.png"
    plot_pull_distributions(df, out)
    assert out.exists()
