from __future__ import annotations
from typing import Type

import numpy as np

from vertex_reco.errors import SingularCovarianceError, VertexingError


__all__ = [
    "COND_LIMIT",
    "symmetrize",
    "invert_checked",
    "pseudo_inverse",
    "chi2_form",
]

# beyond this the inverse carries no significant digits in float64
COND_LIMIT = 1.0 / np.finfo(np.float64).eps


def symmetrize(M: np.ndarray) -> np.ndarray:
    r"""
    Return the symmetric part :math:`\tfrac12(M + M^\top)` of a square matrix.

    Parameters
    ----------
    M : ndarray, shape (n, n)

    Returns
    -------
    ndarray, shape (n, n)
    """
    M = np.asarray(M, dtype=np.float64)
    return 0.5 * (M + M.T)


def invert_checked(M: np.ndarray,
                   error: Type[VertexingError] = SingularCovarianceError,
                   what: str = "matrix",
                   cond_limit: float = COND_LIMIT) -> np.ndarray:
    r"""
    Invert a small square matrix, refusing singular or ill-conditioned input.

    The inverse is only formed when all of the following hold:

    .. math::

        M_{ij} \in \mathbb{R}\ \forall i,j, \qquad
        \operatorname{sign}\det M \neq 0, \qquad
        \kappa_2(M) = \frac{\sigma_\max}{\sigma_\min} \le \kappa_\text{lim},

    with :math:`\kappa_\text{lim} = 1/\varepsilon_\text{float64}` by default.
    Any violation raises ``error`` instead of letting NaNs or infinities leak
    into the fit.

    Parameters
    ----------
    M : array_like, shape (n, n)
        Matrix to invert (covariance, weight or information matrix).
    error : type of VertexingError, optional
        Exception class raised on failure. Defaults to
        :class:`~vertex_reco.errors.SingularCovarianceError`.
    what : str, optional
        Human-readable name used in the error message.
    cond_limit : float, optional
        Largest accepted 2-norm condition number.

    Returns
    -------
    ndarray, shape (n, n)
        :math:`M^{-1}`; symmetrized when ``M`` is symmetric.

    Raises
    ------
    ValueError
        If ``M`` is not a square 2-D array.
    VertexingError
        The ``error`` subclass, if ``M`` is non-finite, singular or too
        ill-conditioned.

    Notes
    -----
    ``slogdet`` is used for the determinant test so that well-conditioned
    matrices with very small or very large entries (weights of precise track
    parameters) do not under/overflow.
    """
    M = np.asarray(M, dtype=np.float64)
    if M.ndim != 2 or M.shape[0] != M.shape[1]:
        raise ValueError(f"{what} must be a square matrix, got shape {M.shape}.")
    if not np.all(np.isfinite(M)):
        raise error(f"{what} has non-finite entries.")
    sign, _ = np.linalg.slogdet(M)
    if sign == 0.0:
        raise error(f"{what} is singular (zero determinant).")
    cond = np.linalg.cond(M)
    if not np.isfinite(cond) or cond > cond_limit:
        raise error(f"{what} is ill-conditioned (condition number {cond:.3e}).")
    try:
        inv = np.linalg.inv(M)
    except np.linalg.LinAlgError as e:
        raise error(f"{what} could not be inverted: {e}") from e
    if np.array_equal(M, M.T):
        inv = symmetrize(inv)
    return inv


def pseudo_inverse(M: np.ndarray, rcond: float = 1e-10) -> np.ndarray:
    r"""
    Hermitian Moore-Penrose inverse :math:`M^{+}`.

    Singular values below ``rcond`` times the largest one are treated as zero,
    so :math:`M^{+} b` is the minimum-norm least-squares solution of
    :math:`M x = b`.

    Parameters
    ----------
    M : array_like, shape (n, n)
        Symmetric matrix.
    rcond : float, optional
        Relative cutoff for small singular values.

    Returns
    -------
    ndarray, shape (n, n)
    """
    M = symmetrize(M)
    if not np.all(np.isfinite(M)):
        raise SingularCovarianceError("matrix has non-finite entries.")
    return symmetrize(np.linalg.pinv(M, rcond=rcond, hermitian=True))


def chi2_form(residual: np.ndarray, weight: np.ndarray) -> float:
    r"""
    Quadratic form :math:`\chi^2 = r^\top W r`.

    Parameters
    ----------
    residual : ndarray, shape (n,)
    weight : ndarray, shape (n, n)
        Inverse covariance.

    Returns
    -------
    float
    """
    r = np.asarray(residual, dtype=np.float64)
    return float(r @ np.asarray(weight, dtype=np.float64) @ r)
