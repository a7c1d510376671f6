import numpy as np
from sklearn.preprocessing import SplineTransformer

SPLINE_DEGREE = 3


def diff_penalty(n, order=2):
    d = np.eye(n)
    for _ in range(order):
        d = d[1:, :] - d[:-1, :]
    return d.T @ d


def nullspace_of_pt(p):
    # returns Z such that P^T Z = 0
    u, s, vt = np.linalg.svd(p.T, full_matrices=True)
    tol = max(p.shape) * np.finfo(float).eps * (s[0] if s.size else 1.0)
    rank = np.sum(s > tol)
    v = vt.T
    return v[:, rank:]


def penalty_nullspace(s, rel_tol=1e-7):
    """Orthonormal basis of the null space of a symmetric penalty matrix."""
    vals, vecs = np.linalg.eigh(0.5 * (s + s.T))
    top = np.max(np.abs(vals)) if vals.size else 0.0
    if top <= 0.0:
        return vecs
    return vecs[:, vals <= rel_tol * top]


def bspline_transformer(x, k, degree=SPLINE_DEGREE):
    """Cubic B-spline basis with exactly ``k`` columns over the range of ``x``.

    Knots are uniform over the observed range; beyond it the basis extrapolates
    linearly, so prediction grids wider than the data stay well defined.
    """
    n_knots = int(k) - degree + 1
    if n_knots < 2:
        raise ValueError(f"basis dimension k={k} is below the minimum {degree + 1} for degree {degree}")
    tr = SplineTransformer(
        n_knots=n_knots,
        degree=degree,
        knots="uniform",
        extrapolation="linear",
        include_bias=True,
    )
    tr.fit(np.asarray(x, dtype=float).reshape(-1, 1))
    return tr


def sum_to_zero_constraint(b):
    # Columns of B @ Z sum to zero over the fitting data.
    c = np.sum(b, axis=0).reshape(-1, 1)
    return nullspace_of_pt(c)


def scale_penalty(s, x_block):
    """Rescale a penalty to the size of its block's cross-product so smoothing parameters share one scale."""
    xtx_norm = np.linalg.norm(x_block.T @ x_block, ord=1)
    s_norm = np.linalg.norm(s, ord=1)
    if s_norm <= 0.0 or xtx_norm <= 0.0:
        return s
    return s * (xtx_norm / s_norm)
