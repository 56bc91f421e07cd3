"""
Cubed-sphere geometry.

Lateral positions are integers: a chunk with ``nex`` surface elements per
side uses ``u = 2 * i - nex`` for the lateral index ``i`` in 0..nex (odd
values of ``u`` address element mid-points). A point of chunk ``c`` maps
to the integer cube point ``(X, Y, Z) = M_c @ (u, v, nex)``, so nodes on
chunk edges get the same integer key from every chunk that touches them.

Positions are normalized so that the surface has radius
``R_UNIT_SPHERE``.
"""

from typing import Dict, Optional, Tuple

import numpy as np

from .config import MesherConfig
from .constants import Chunk, R_UNIT_SPHERE, SliceFace
from .layers import KEY_SUBDIVISIONS, LayerPlan

# cube point = M @ (u, v, w); every matrix is orthogonal and right-handed
CHUNK_MATRICES: Dict[Chunk, np.ndarray] = {
    Chunk.AB: np.array([[1, 0, 0], [0, 1, 0], [0, 0, 1]]),
    Chunk.AC: np.array([[1, 0, 0], [0, 0, -1], [0, 1, 0]]),
    Chunk.BC: np.array([[0, 0, 1], [1, 0, 0], [0, 1, 0]]),
    Chunk.AC_ANTIPODE: np.array([[-1, 0, 0], [0, 0, 1], [0, 1, 0]]),
    Chunk.BC_ANTIPODE: np.array([[0, 0, -1], [-1, 0, 0], [0, 1, 0]]),
    Chunk.AB_ANTIPODE: np.array([[-1, 0, 0], [0, 1, 0], [0, 0, -1]]),
}
for _matrix in CHUNK_MATRICES.values():
    _matrix.setflags(write=False)

# chunk edge -> (neighbor chunk, neighbor edge, along-edge index reversed)
_EDGES = (
    (Chunk.AB, SliceFace.XI_MIN, Chunk.BC_ANTIPODE, SliceFace.ETA_MAX, True),
    (Chunk.AB, SliceFace.XI_MAX, Chunk.BC, SliceFace.ETA_MAX, False),
    (Chunk.AB, SliceFace.ETA_MIN, Chunk.AC, SliceFace.ETA_MAX, False),
    (Chunk.AB, SliceFace.ETA_MAX, Chunk.AC_ANTIPODE, SliceFace.ETA_MAX, True),
    (Chunk.AB_ANTIPODE, SliceFace.XI_MIN, Chunk.BC, SliceFace.ETA_MIN, False),
    (Chunk.AB_ANTIPODE, SliceFace.XI_MAX, Chunk.BC_ANTIPODE, SliceFace.ETA_MIN, True),
    (Chunk.AB_ANTIPODE, SliceFace.ETA_MIN, Chunk.AC, SliceFace.ETA_MIN, True),
    (Chunk.AB_ANTIPODE, SliceFace.ETA_MAX, Chunk.AC_ANTIPODE, SliceFace.ETA_MIN, False),
    (Chunk.AC, SliceFace.XI_MIN, Chunk.BC_ANTIPODE, SliceFace.XI_MAX, False),
    (Chunk.AC, SliceFace.XI_MAX, Chunk.BC, SliceFace.XI_MIN, False),
    (Chunk.BC, SliceFace.XI_MAX, Chunk.AC_ANTIPODE, SliceFace.XI_MIN, False),
    (Chunk.AC_ANTIPODE, SliceFace.XI_MAX, Chunk.BC_ANTIPODE, SliceFace.XI_MIN, False),
)

CHUNK_EDGES: Dict[Tuple[Chunk, SliceFace], Tuple[Chunk, SliceFace, bool]] = {}
for _a, _fa, _b, _fb, _rev in _EDGES:
    CHUNK_EDGES[(_a, _fa)] = (_b, _fb, _rev)
    CHUNK_EDGES[(_b, _fb)] = (_a, _fa, _rev)


def chunks_for(nchunks: int) -> Tuple[Chunk, ...]:
    """Chunks meshed for a chunk count, in enumeration order."""
    return tuple(Chunk)[:nchunks]


def edge_neighbor(chunk: Chunk, face: SliceFace, nchunks: int):
    """Neighbor ``(chunk, edge, reversed)`` across a chunk edge, or None."""
    neighbor = CHUNK_EDGES.get((chunk, face))
    if neighbor is None or neighbor[0] not in chunks_for(nchunks):
        return None
    return neighbor


def lateral_to_cube(chunk: Chunk, i: int, j: int, nex: int) -> Tuple[int, int, int]:
    """Integer cube point of lateral index ``(i, j)`` of a chunk surface."""
    m = CHUNK_MATRICES[chunk]
    u, v, w = 2 * i - nex, 2 * j - nex, nex
    return (
        int(m[0, 0] * u + m[0, 1] * v + m[0, 2] * w),
        int(m[1, 0] * u + m[1, 1] * v + m[1, 2] * w),
        int(m[2, 0] * u + m[2, 1] * v + m[2, 2] * w),
    )


def cube_to_lateral(chunk: Chunk, point, nex: int) -> Optional[Tuple[int, int]]:
    """
    Lateral index of a cube point on a chunk face.

    Returns None when the point is not on the face of this chunk.
    """
    u, v, w = (int(c) for c in CHUNK_MATRICES[chunk].T @ np.asarray(point))
    if w != nex or abs(u) > nex or abs(v) > nex:
        return None
    if (u + nex) % 2 or (v + nex) % 2:
        return None
    return (u + nex) // 2, (v + nex) // 2


class CubedSphereGeometry:
    """
    Map global node keys to Cartesian positions.

    Parameters
    ----------
    config : MesherConfig
        Mesher configuration (projection, radii, central cube)
    plan : LayerPlan
        Radial plan providing the radius of each radial key

    Notes
    -----
    With a central cube, the innermost row is blended linearly from the
    sphere at its top to the flat cube face at its bottom, and the bottom
    key returns the cube point itself. Cube interior nodes carry the
    radial key -1.
    """

    def __init__(self, config: MesherConfig, plan: LayerPlan):
        self.config = config
        self.plan = plan
        self.nex = config.nex_xi
        self.projection = config.projection
        self.central_cube = config.has_central_cube
        # half side of the central cube, normalized
        self.cube_half_side = (
            config.r_central_cube / np.sqrt(3.0) / config.r_earth * R_UNIT_SPHERE
        )

    def directions(self, cube_points) -> np.ndarray:
        """Unit vectors of the projected cube points."""
        t = np.asarray(cube_points, dtype=float) / self.nex
        if self.projection == "equiangular":
            t = np.tan(np.pi / 4.0 * t)
        return t / np.linalg.norm(t, axis=-1, keepdims=True)

    def cube_positions(self, cube_points) -> np.ndarray:
        return self.cube_half_side * np.asarray(cube_points, dtype=float) / self.nex

    def positions(self, keys) -> np.ndarray:
        """
        Positions of global node keys.

        Parameters
        ----------
        keys : array-like, shape (n, 4)
            ``(X, Y, Z, radial_key)`` per node

        Returns
        -------
        ndarray, shape (n, 3)
        """
        keys = np.asarray(keys, dtype=np.int64).reshape(-1, 4)
        points = keys[:, :3]
        radial = keys[:, 3]
        out = np.empty((len(keys), 3))

        interior = radial < 0
        if np.any(interior) and not self.central_cube:
            raise ValueError("Central cube keys without a central cube")
        out[interior] = self.cube_positions(points[interior])

        shell = ~interior
        if np.any(shell):
            shell_keys = radial[shell]
            radius = (self.plan.radius_of_key(shell_keys)
                      / self.config.r_earth * R_UNIT_SPHERE)
            sphere = np.atleast_1d(radius)[:, None] * self.directions(points[shell])
            if self.central_cube:
                last_top = KEY_SUBDIVISIONS * (self.plan.n_rows - 1)
                gamma = np.clip(
                    (shell_keys - last_top) / KEY_SUBDIVISIONS, 0.0, 1.0
                )[:, None]
                cube = self.cube_positions(points[shell])
                sphere = np.where(gamma > 0.0, (1.0 - gamma) * sphere + gamma * cube, sphere)
                # bottom nodes are cube nodes, bit for bit
                bottom = shell_keys == self.plan.bottom_key
                sphere[bottom] = cube[bottom]
            out[shell] = sphere
        return out

    def position(self, key) -> np.ndarray:
        return self.positions([key])[0]
