from __future__ import annotations
from typing import Dict, Iterable, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy import stats

from vertex_reco.errors import SingularCovarianceError
from vertex_reco.linalg_kernels import chi2_form, invert_checked
from vertex_reco.parameters import Vertex

AXES = ("x", "y", "z")


def fit_probability(chi2: float, ndf: int) -> float:
    r"""
    Upper-tail probability :math:`P(\chi^2_{n} \ge \chi^2)`.

    Parameters
    ----------
    chi2 : float
        Fit :math:`\chi^2`.
    ndf : int
        Degrees of freedom.

    Returns
    -------
    float
        Survival function of the :math:`\chi^2_n` distribution, or ``nan`` when
        ``ndf <= 0`` or ``chi2`` is not finite.
    """
    if ndf <= 0 or not np.isfinite(chi2):
        return float("nan")
    return float(stats.chi2.sf(chi2, ndf))


def vertex_residuals(vertex: Vertex, truth: Sequence[float]) -> np.ndarray:
    r"""Residual :math:`\hat{\mathbf{V}} - \mathbf{V}_\text{true}` (mm)."""
    return vertex.position - np.asarray(truth, dtype=np.float64)


def vertex_pulls(vertex: Vertex, truth: Sequence[float]) -> np.ndarray:
    r"""
    Per-axis pulls :math:`(\hat V_k - V_k)/\sqrt{C_{kk}}`.

    Axes with non-positive variance give ``nan``.
    """
    res = vertex_residuals(vertex, truth)
    var = np.diag(vertex.cov)
    out = np.full(3, np.nan)
    ok = var > 0.0
    out[ok] = res[ok] / np.sqrt(var[ok])
    return out


def vertex_chi2_to_truth(vertex: Vertex, truth: Sequence[float]) -> float:
    r"""
    Full-covariance distance :math:`r^\top C^{-1} r` of the fitted to the true vertex.

    Expected to follow :math:`\chi^2_3` for a correctly estimated covariance.

    Raises
    ------
    SingularCovarianceError
        If the vertex covariance is not invertible.
    """
    weight = invert_checked(vertex.cov, SingularCovarianceError, "vertex covariance")
    return chi2_form(vertex_residuals(vertex, truth), weight)


def summarize_fits(records: Iterable[Tuple[int, Vertex, Sequence[float]]]) -> pd.DataFrame:
    r"""
    Tabulate fitted vertices against their truth.

    Parameters
    ----------
    records : iterable of (event_id, Vertex, truth)
        One entry per fitted event.

    Returns
    -------
    pandas.DataFrame
        Columns ``event, n_tracks, chi2, ndf, prob``, fitted position
        ``x, y, z``, residuals ``res_x, res_y, res_z``, pulls
        ``pull_x, pull_y, pull_z`` and ``chi2_truth``.
    """
    rows = []
    for event_id, vertex, truth in records:
        res = vertex_residuals(vertex, truth)
        pulls = vertex_pulls(vertex, truth)
        row = {
            "event": int(event_id),
            "n_tracks": vertex.n_tracks,
            "chi2": float(vertex.chi2),
            "ndf": int(vertex.ndf),
            "prob": fit_probability(vertex.chi2, vertex.ndf),
        }
        for k, axis in enumerate(AXES):
            row[axis] = float(vertex.position[k])
            row[f"res_{axis}"] = float(res[k])
            row[f"pull_{axis}"] = float(pulls[k])
        try:
            row["chi2_truth"] = vertex_chi2_to_truth(vertex, truth)
        except SingularCovarianceError:
            row["chi2_truth"] = float("nan")
        rows.append(row)
    columns = (["event", "n_tracks", "chi2", "ndf", "prob"] + list(AXES)
               + [f"res_{a}" for a in AXES] + [f"pull_{a}" for a in AXES] + ["chi2_truth"])
    return pd.DataFrame(rows, columns=columns)


def summary_statistics(df: pd.DataFrame) -> Dict[str, float]:
    r"""
    Aggregate fit-quality numbers of a :func:`summarize_fits` table.

    Returns
    -------
    dict
        ``n_fits``, mean ``prob``, mean ``chi2/ndf``, and per axis the RMS
        residual (``rms_res_*``) and the pull mean/std (``pull_mean_*``,
        ``pull_std_*``). Empty tables give ``n_fits = 0`` only.
    """
    out: Dict[str, float] = {"n_fits": float(len(df))}
    if df.empty:
        return out
    out["mean_prob"] = float(df["prob"].mean())
    out["mean_chi2_ndf"] = float((df["chi2"] / df["ndf"]).mean())
    for axis in AXES:
        res = df[f"res_{axis}"].to_numpy(dtype=np.float64)
        pull = df[f"pull_{axis}"].dropna().to_numpy(dtype=np.float64)
        out[f"rms_res_{axis}"] = float(np.sqrt(np.mean(res * res)))
        out[f"pull_mean_{axis}"] = float(pull.mean()) if pull.size else float("nan")
        out[f"pull_std_{axis}"] = float(pull.std(ddof=1)) if pull.size > 1 else float("nan")
    return out
