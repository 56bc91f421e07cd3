"""
Mesh doubling superbrick.

The superbrick turns a 2 x 2 block of coarse elements (bottom) into a
4 x 4 block of fine elements (top) with 32 conforming 8-node hexahedra
and 67 nodes. It is assembled from a basic brick (one coarse element
under 2 x 2 fine ones, 8 hexahedra, 27 nodes) mirrored across its
``x = 2`` and ``y = 2`` planes.

The basic brick refines along x in a first stage and along y in a
second. Node heights are chosen so that the lateral faces ``x = 0`` and
``y = 0`` carry the same node pattern; adjacent superbricks therefore
conform whether they meet along xi or eta, which is what happens across
cubed-sphere chunk edges.

Local frame: integer ``x, y`` in 0..4 (fine lateral units) and ``z`` in
0..8 (eighths of the row, 0 = coarse bottom, 8 = fine top).
"""

from typing import Dict, List, Tuple

import numpy as np

from .constants import (
    NGLOB_DOUBLING_SUPERBRICK,
    NGNOD_DOUBLING_SUPERBRICK,
    NSPEC_DOUBLING_SUPERBRICK,
)
from .layers import KEY_SUBDIVISIONS

SUPERBRICK_VERSION = 1

# (x, z) profile of the first stage: one coarse cell refined along x
_STAGE1_QUADS = (
    ((0, 0), (2, 0), (2, 2), (0, 2)),
    ((0, 2), (2, 2), (2, 4), (1, 4)),
)

# stage 2 bottom follows the stage 1 top profile
_STAGE2_BASE = {0: 2, 1: 4, 2: 4}
# height of the R and M nodes of each x section
_STAGE2_MID = {0: 4, 1: 6, 2: 6}

_STAGE2_QUADS = (
    ("B0", "B1", "R", "M"),
    ("M", "R", "T2", "T1"),
    ("B0", "M", "T1", "T0"),
)

# vtk ordering: corner -> (previous along face, next along face, opposite face)
_CORNER_EDGES = (
    (1, 3, 4), (2, 0, 5), (3, 1, 6), (0, 2, 7),
    (7, 5, 0), (4, 6, 1), (5, 7, 2), (6, 4, 3),
)

BOUNDARY_NAMES = ("xi_min", "xi_max", "eta_min", "eta_max", "bottom", "top")


def hex_corner_jacobians(points: np.ndarray) -> np.ndarray:
    """
    Signed corner Jacobians of 8-node hexahedra in VTK ordering.

    Parameters
    ----------
    points : ndarray, shape (..., 8, 3)
        Corner coordinates

    Returns
    -------
    ndarray, shape (..., 8)
        Triple products of the three edges leaving each corner; all
        positive for a valid, positively oriented element
    """
    points = np.asarray(points, dtype=float)
    jac = np.empty(points.shape[:-1])
    for corner, (a, b, c) in enumerate(_CORNER_EDGES):
        p0 = points[..., corner, :]
        e1 = points[..., a, :] - p0
        e2 = points[..., b, :] - p0
        e3 = points[..., c, :] - p0
        jac[..., corner] = np.einsum("...i,...i->...", np.cross(e1, e2), e3)
    return jac


def _stage2_point(label: str, x: int) -> Tuple[int, int, int]:
    zb = _STAGE2_BASE[x]
    zm = _STAGE2_MID[x]
    return {
        "B0": (x, 0, zb),
        "B1": (x, 2, zb),
        "R": (x, 2, zm),
        "M": (x, 1, zm),
        "T0": (x, 0, 8),
        "T1": (x, 1, 8),
        "T2": (x, 2, 8),
    }[label]


def _basic_brick() -> List[List[Tuple[int, int, int]]]:
    hexes = []
    for quad in _STAGE1_QUADS:
        hexes.append([(x, 0, z) for x, z in quad] + [(x, 2, z) for x, z in quad])
    for x0, x1 in ((0, 1), (1, 2)):
        for quad in _STAGE2_QUADS:
            hexes.append(
                [_stage2_point(label, x0) for label in quad]
                + [_stage2_point(label, x1) for label in quad]
            )
    return hexes


def _orient(hexahedron: List[Tuple[int, int, int]]) -> List[Tuple[int, int, int]]:
    # mirrored or y-extruded quads come out left-handed: swap bottom and top
    jac = hex_corner_jacobians(np.array(hexahedron, dtype=float))
    if jac[0] < 0:
        return hexahedron[4:] + hexahedron[:4]
    return hexahedron


class SuperbrickTemplate:
    """
    Read-only doubling superbrick.

    Attributes
    ----------
    version : int
        Template version, bumped whenever the node layout changes
    nodes : ndarray, shape (67, 3)
        Integer local coordinates ``(x, y, z)``
    elements : ndarray, shape (32, 8)
        Node indices of each hexahedron, VTK ordering
    boundary : ndarray, shape (32, 6)
        ``iboun_sb`` flags: element has a face on the xi-min, xi-max,
        eta-min, eta-max, bottom or top side of the superbrick
    """

    def __init__(self):
        basic = _basic_brick()
        node_ids: Dict[Tuple[int, int, int], int] = {}
        elements = []
        for mirror_x in (False, True):
            for mirror_y in (False, True):
                for hexahedron in basic:
                    image = [
                        (4 - x if mirror_x else x, 4 - y if mirror_y else y, z)
                        for x, y, z in hexahedron
                    ]
                    elements.append(_orient(image))
        for hexahedron in elements:
            for point in hexahedron:
                node_ids.setdefault(point, len(node_ids))

        ordered = sorted(node_ids, key=lambda p: (p[2], p[1], p[0]))
        index = {point: i for i, point in enumerate(ordered)}

        self.version = SUPERBRICK_VERSION
        self.nodes = np.array(ordered, dtype=np.int64)
        self.elements = np.array(
            [[index[p] for p in hexahedron] for hexahedron in elements],
            dtype=np.int64,
        )
        self.boundary = self._boundary_flags()
        for array in (self.nodes, self.elements, self.boundary):
            array.setflags(write=False)

        if (len(self.nodes) != NGLOB_DOUBLING_SUPERBRICK
                or self.elements.shape != (NSPEC_DOUBLING_SUPERBRICK,
                                           NGNOD_DOUBLING_SUPERBRICK)):
            raise RuntimeError(
                f"Superbrick has {self.elements.shape[0]} elements and "
                f"{len(self.nodes)} nodes, expected "
                f"{NSPEC_DOUBLING_SUPERBRICK} and {NGLOB_DOUBLING_SUPERBRICK}"
            )
        if np.any(self.corner_jacobians() <= 0):
            raise RuntimeError("Superbrick contains inverted elements")

    def __repr__(self):
        return (
            f"SuperbrickTemplate(version={self.version}, "
            f"nspec={len(self.elements)}, nglob={len(self.nodes)})"
        )

    def _boundary_flags(self) -> np.ndarray:
        coords = self.nodes[self.elements]  # (32, 8, 3)
        x, y, z = coords[..., 0], coords[..., 1], coords[..., 2]
        # an element touches a side when one of its faces (4 nodes) lies on it
        sides = (x == 0, x == 4, y == 0, y == 4, z == 0, z == 8)
        return np.stack([side.sum(axis=1) >= 4 for side in sides], axis=1)

    @property
    def nspec(self) -> int:
        return len(self.elements)

    @property
    def nglob(self) -> int:
        return len(self.nodes)

    def corner_jacobians(self) -> np.ndarray:
        return hex_corner_jacobians(self.nodes[self.elements].astype(float))

    def footprint(self, coarse_ratio: int) -> int:
        """Lateral extent of one superbrick, in surface elements."""
        return 2 * coarse_ratio

    def emit(self, anchor_i: int, anchor_j: int, coarse_ratio: int, row: int):
        """
        Place the superbrick in a superbrick row.

        Parameters
        ----------
        anchor_i, anchor_j : int
            Lateral indices (surface element units) of the brick's
            lower-left corner
        coarse_ratio : int
            Ratio of the coarse (bottom) side; the fine side is half of it
        row : int
            Index of the superbrick row in the layer plan

        Returns
        -------
        lateral_keys : list of (int, int, int)
            ``(i, j, radial_key)`` of the 67 nodes; identical for a node
            shared with a neighboring brick or a regular row
        elements : ndarray, shape (32, 8)
            Connectivity into ``lateral_keys``
        """
        if coarse_ratio < 2 or coarse_ratio % 2:
            raise ValueError(f"Coarse ratio must be even, got {coarse_ratio}")
        unit = coarse_ratio // 2
        base = KEY_SUBDIVISIONS * row
        keys = [
            (anchor_i + int(x) * unit,
             anchor_j + int(y) * unit,
             base + KEY_SUBDIVISIONS - int(z))
            for x, y, z in self.nodes
        ]
        return keys, self.elements


SUPERBRICK = SuperbrickTemplate()
