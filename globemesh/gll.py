"""
Gauss-Lobatto-Legendre quadrature and element mappings.

Provides the GLL points and weights on [-1, 1] used by the spectral
elements, and maps them into physical space through the 27 control
points of a hexahedron.

References
----------
- Canuto, C., Hussaini, M. Y., Quarteroni, A., & Zang, T. A. (1988).
  "Spectral Methods in Fluid Dynamics." Springer.
"""

from functools import lru_cache
from typing import Tuple

import numpy as np
from scipy.special import eval_legendre, roots_jacobi

# tensor position (a, b, c) of each VTK corner of an 8-node hexahedron
_VTK_CORNERS = (
    (0, 0, 0), (1, 0, 0), (1, 1, 0), (0, 1, 0),
    (0, 0, 1), (1, 0, 1), (1, 1, 1), (0, 1, 1),
)

_CONTROL_NODES = np.array([-1.0, 0.0, 1.0])


@lru_cache(maxsize=None)
def _gll_rule(ngll: int) -> Tuple[np.ndarray, np.ndarray]:
    n = ngll - 1
    interior = roots_jacobi(ngll - 2, 1.0, 1.0)[0] if ngll > 2 else np.empty(0)
    points = np.concatenate(([-1.0], np.sort(interior), [1.0]))
    weights = 2.0 / (n * (n + 1) * eval_legendre(n, points) ** 2)
    points.setflags(write=False)
    weights.setflags(write=False)
    return points, weights


def gll_points(ngll: int) -> Tuple[np.ndarray, np.ndarray]:
    """
    GLL points and weights.

    Parameters
    ----------
    ngll : int
        Number of points (polynomial degree + 1), at least 2

    Returns
    -------
    points : ndarray, shape (ngll,)
        Ascending points, including both end points
    weights : ndarray, shape (ngll,)
        Quadrature weights (sum to 2.0)

    Examples
    --------
    >>> points, weights = gll_points(5)
    >>> float(weights.sum())
    2.0
    """
    if ngll < 2:
        raise ValueError(f"GLL rule needs at least 2 points, got {ngll}")
    return _gll_rule(int(ngll))


def lagrange_basis(nodes: np.ndarray, x: np.ndarray) -> np.ndarray:
    """Lagrange polynomials on ``nodes`` evaluated at ``x``, shape (len(nodes), len(x))."""
    nodes = np.asarray(nodes, dtype=float)
    x = np.atleast_1d(np.asarray(x, dtype=float))
    basis = np.ones((len(nodes), len(x)))
    for i, xi in enumerate(nodes):
        for j, xj in enumerate(nodes):
            if i != j:
                basis[i] *= (x - xj) / (xi - xj)
    return basis


def trilinear_control_points(corners: np.ndarray) -> np.ndarray:
    """
    Control points of a trilinear hexahedron.

    Parameters
    ----------
    corners : ndarray, shape (8, 3)
        Corner positions in VTK ordering

    Returns
    -------
    ndarray, shape (27, 3)
        Points in tensor order ``a + 3 * b + 9 * c``
    """
    cube = np.empty((2, 2, 2, 3))
    for (a, b, c), point in zip(_VTK_CORNERS, corners):
        cube[c, b, a] = point
    t = np.array([0.0, 0.5, 1.0])
    out = np.empty((3, 3, 3, 3))
    for c in range(3):
        for b in range(3):
            for a in range(3):
                wa = (1.0 - t[a], t[a])
                wb = (1.0 - t[b], t[b])
                wc = (1.0 - t[c], t[c])
                out[c, b, a] = sum(
                    wa[i] * wb[j] * wc[k] * cube[k, j, i]
                    for i in range(2) for j in range(2) for k in range(2)
                )
    return out.reshape(27, 3)


def map_points(control_points: np.ndarray, points: np.ndarray) -> np.ndarray:
    """
    Map a tensor grid of reference points through 27 control points.

    Parameters
    ----------
    control_points : ndarray, shape (27, 3)
        Tensor-ordered control points
    points : ndarray, shape (n,)
        Reference coordinates in [-1, 1] used along each direction

    Returns
    -------
    ndarray, shape (n, n, n, 3)
        Physical coordinates indexed ``[c, b, a]`` (radial, eta, xi)
    """
    shape = lagrange_basis(_CONTROL_NODES, points)  # (3, n)
    control = np.asarray(control_points, dtype=float).reshape(3, 3, 3, 3)
    return np.einsum("kc,jb,ia,kjid->cbad", shape, shape, shape, control)
