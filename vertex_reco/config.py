"""Configuration objects for the vertex fitter and the synthetic-event runner."""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Mapping, MutableMapping, Optional, Tuple

import orjson

from vertex_reco.errors import ConfigurationError


@dataclass(frozen=True)
class VertexFitterConfig:
    """Settings of the iterative Billoir fit.

    `max_iterations` is the fixed iteration budget. `convergence_tolerance`
    (mm) enables an early exit once the position update is smaller; `None`
    always runs the full budget. `single_track_rcond` is the pseudo-inverse
    cutoff used for a lone unconstrained track.
    """

    max_iterations: int = 5
    convergence_tolerance: Optional[float] = None
    single_track_rcond: float = 1e-10

    def __post_init__(self) -> None:
        if isinstance(self.max_iterations, bool) or not isinstance(self.max_iterations, int):
            raise ConfigurationError(f"max_iterations must be an int, got {self.max_iterations!r}.")
        if self.max_iterations < 1:
            raise ConfigurationError(f"max_iterations must be positive, got {self.max_iterations}.")
        tol = self.convergence_tolerance
        if tol is not None and not (math.isfinite(tol) and tol > 0.0):
            raise ConfigurationError(f"convergence_tolerance must be a positive number, got {tol!r}.")
        if not 0.0 < self.single_track_rcond < 1.0:
            raise ConfigurationError(f"single_track_rcond must be in (0, 1), got {self.single_track_rcond!r}.")


@dataclass(frozen=True)
class SimulationConfig:
    """Synthetic event settings (mm, GeV, rad)."""

    n_events: int = 100
    n_tracks: int = 10
    beam_spot_sigma: Tuple[float, float, float] = (0.01, 0.01, 50.0)
    # sigma(d0), sigma(z0), sigma(phi), sigma(theta), relative sigma(q/p)
    resolution: Tuple[float, float, float, float, float] = (0.02, 0.05, 5e-4, 5e-4, 0.01)
    pt_range: Tuple[float, float] = (0.5, 10.0)
    eta_max: float = 2.5
    seed: Optional[int] = None

    def __post_init__(self) -> None:
        if self.n_events < 1 or self.n_tracks < 0:
            raise ConfigurationError("n_events must be >= 1 and n_tracks >= 0.")
        if len(self.beam_spot_sigma) != 3 or any(s < 0.0 for s in self.beam_spot_sigma):
            raise ConfigurationError(f"beam_spot_sigma must be 3 non-negative values, got {self.beam_spot_sigma!r}.")
        if len(self.resolution) != 5 or any(s <= 0.0 for s in self.resolution):
            raise ConfigurationError(f"resolution must be 5 positive values, got {self.resolution!r}.")
        lo, hi = self.pt_range
        if not 0.0 < lo <= hi:
            raise ConfigurationError(f"pt_range must satisfy 0 < lo <= hi, got {self.pt_range!r}.")
        if self.eta_max <= 0.0:
            raise ConfigurationError(f"eta_max must be positive, got {self.eta_max!r}.")


@dataclass(frozen=True)
class RunConfig:
    """Top-level runner configuration."""

    bz: float = 2.0
    beam_spot_constraint: bool = False
    fitter: VertexFitterConfig = field(default_factory=VertexFitterConfig)
    simulation: SimulationConfig = field(default_factory=SimulationConfig)

    @classmethod
    def from_mapping(cls, cfg: Mapping[str, Any]) -> "RunConfig":
        r"""
        Build a validated :class:`RunConfig` from a (possibly partial) mapping.

        Unknown keys raise :class:`~vertex_reco.errors.ConfigurationError`;
        missing keys take their defaults.
        """
        merged = _deep_update(asdict(cls()), dict(cfg))
        try:
            fitter = VertexFitterConfig(**merged.pop("fitter"))
            sim = dict(merged.pop("simulation"))
            for key in ("beam_spot_sigma", "resolution", "pt_range"):
                sim[key] = tuple(float(v) for v in sim[key])
            simulation = SimulationConfig(**sim)
            return cls(fitter=fitter, simulation=simulation, **merged)
        except ConfigurationError:
            raise
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e


def _deep_update(d: dict, u: Mapping[str, Any]) -> dict:
    r"""
    Recursively merge dictionaries (without side effects).

    Nested dicts are merged; scalars and containers from ``u`` replace those
    in ``d``.
    """
    out = dict(d)
    for k, v in u.items():
        if isinstance(v, Mapping) and isinstance(out.get(k), dict):
            out[k] = _deep_update(out[k], v)
        else:
            out[k] = v
    return out


def load_config(config_path: Path) -> MutableMapping[str, Any]:
    r"""
    Load a JSON configuration file with :mod:`orjson`.

    Parameters
    ----------
    config_path : pathlib.Path
        Path to the JSON file.

    Returns
    -------
    dict
        Parsed configuration.

    Raises
    ------
    ConfigurationError
        If the file cannot be read or parsed, or is not a JSON object.
    """
    try:
        cfg = orjson.loads(Path(config_path).read_bytes())
    except (OSError, orjson.JSONDecodeError) as e:
        raise ConfigurationError(f"Failed to parse {config_path}: {e}") from e
    if not isinstance(cfg, dict):
        raise ConfigurationError(f"{config_path} must contain a JSON object.")
    return cfg


def load_run_config(config_path: Optional[Path] = None) -> RunConfig:
    """Defaults, optionally overridden by a JSON file."""
    if config_path is None:
        return RunConfig()
    return RunConfig.from_mapping(load_config(config_path))
