import logging
from pathlib import Path
from typing import Optional

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
from scipy import stats


def _finish(fig, out_path: Optional[Path], show: bool) -> None:
    r"""
    Save and/or show a figure, then always close it.

    Parameters
    ----------
    fig : matplotlib.figure.Figure
    out_path : pathlib.Path, optional
        If given, the figure is written there.
    show : bool
        Call ``plt.show()`` before closing.
    """
    fig.tight_layout()
    if out_path is not None:
        fig.savefig(out_path, dpi=120)
        logging.info("Wrote %s", out_path)
    if show:
        plt.show()
    plt.close(fig)


def plot_pull_distributions(df: pd.DataFrame,
                            out_path: Optional[Path] = None,
                            show: bool = False,
                            bins: int = 40):
    r"""
    Histogram the vertex pulls per axis with a unit Gaussian overlay.

    For a correctly estimated covariance each pull is distributed as
    :math:`\mathcal{N}(0, 1)`.

    Parameters
    ----------
    df : pandas.DataFrame
        Output of :func:`vertex_reco.metrics.summarize_fits`.
    out_path : pathlib.Path, optional
        Image file to write.
    show : bool, optional
        Display the figure.
    bins : int, optional
        Histogram bins on :math:`[-5, 5]`.

    Returns
    -------
    matplotlib.figure.Figure
        The (closed) figure, for inspection in tests.
    """
    fig, axes = plt.subplots(1, 4, figsize=(16, 4))
    grid = np.linspace(-5.0, 5.0, 201)
    for ax, axis in zip(axes[:3], ("x", "y", "z")):
        pulls = df[f"pull_{axis}"].dropna().to_numpy(dtype=np.float64)
        ax.hist(pulls, bins=bins, range=(-5.0, 5.0), density=True, alpha=0.6, label="fits")
        ax.plot(grid, stats.norm.pdf(grid), "k--", label=r"$\mathcal{N}(0,1)$")
        mean = pulls.mean() if pulls.size else np.nan
        std = pulls.std(ddof=1) if pulls.size > 1 else np.nan
        ax.set_title(f"pull {axis}: mean={mean:.2f} std={std:.2f}")
        ax.set_xlabel(f"({axis}_fit - {axis}_true) / sigma")
        ax.legend(loc="upper right")

    prob = df["prob"].dropna().to_numpy(dtype=np.float64)
    axes[3].hist(prob, bins=20, range=(0.0, 1.0), alpha=0.6)
    axes[3].set_title("fit probability")
    axes[3].set_xlabel(r"$P(\chi^2, n_\mathrm{dof})$")
    _finish(fig, out_path, show)
    return fig
