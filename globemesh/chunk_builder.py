"""
Chunk topology builder.

Builds the hexahedral lattice of one processor slice of a cubed-sphere
chunk: regular rows over the row's lateral ratio, superbrick rows tiled
from the doubling template, and, for the AB and AB_ANTIPODE chunks of a
global mesh, the upper and lower halves of the central cube.

Nodes are identified by global keys ``(X, Y, Z, radial_key)`` (see
``cubed_sphere``); a slice registers each key once, so nodes shared by
neighboring elements, superbricks, rows or the cube are never duplicated.
"""

import logging
from typing import Dict, List, Optional, Tuple

import numpy as np

from . import gll
from .config import MesherConfig
from .constants import Chunk, CubeLocation, SliceFace
from .cubed_sphere import CHUNK_MATRICES, CubedSphereGeometry, chunks_for
from .errors import ConfigurationError
from .layers import KEY_SUBDIVISIONS, LayerPlan
from .regions import RegionAndFlagAssigner
from .superbrick import SUPERBRICK, SuperbrickTemplate, hex_corner_jacobians

logger = logging.getLogger(__name__)

NodeKey = Tuple[int, int, int, int]

# radial key of central cube interior nodes
CUBE_INTERIOR_KEY = -1


class _NodeRegistry:
    """Local numbering of global node keys."""

    def __init__(self):
        self.index: Dict[NodeKey, int] = {}
        self.keys: List[NodeKey] = []
        self.lateral: List[Optional[Tuple[int, int]]] = []

    def add(self, key: NodeKey, lateral: Optional[Tuple[int, int]] = None) -> int:
        idx = self.index.get(key)
        if idx is None:
            idx = len(self.keys)
            self.index[key] = idx
            self.keys.append(key)
            self.lateral.append(lateral)
        elif lateral is not None and self.lateral[idx] is None:
            self.lateral[idx] = lateral
        return idx


class Slice:
    """
    One processor's share of the mesh.

    The mesh arrays are filled by ``ChunkTopologyBuilder``; the shared
    boundary descriptors (``faces``, ``corners``, ``interfaces``,
    ``owners``, ``coupling``) by ``DomainDecomposer``. A slice is usable
    only once ``finalized`` is set, after every pairwise boundary check
    passed.

    Attributes
    ----------
    rank : int
        Slice identifier
    chunk : Chunk
        Chunk holding the slice
    iproc_xi, iproc_eta : int
        Position in the chunk's process grid
    xi_range, eta_range : (int, int)
        Lateral index ranges (surface elements) covered by the slice
    node_keys : list of tuple
        Global key of every local node
    coordinates : ndarray, shape (nglob, 3)
        Node positions, unit-sphere normalized
    elements : ndarray, shape (nspec, 8)
        Corner node indices, VTK ordering
    regions, flags : ndarray, shape (nspec,)
        ``Region`` and ``ElementFlag`` values of each element
    """

    def __init__(self, rank, chunk, iproc_xi, iproc_eta, xi_range, eta_range,
                 plan, geometry):
        self.rank = rank
        self.chunk = Chunk(chunk)
        self.iproc_xi = iproc_xi
        self.iproc_eta = iproc_eta
        self.xi_range = tuple(xi_range)
        self.eta_range = tuple(eta_range)
        self.plan = plan
        self.geometry = geometry

        self.node_keys: List[NodeKey] = []
        self.node_index: Dict[NodeKey, int] = {}
        self.node_lateral: List[Optional[Tuple[int, int]]] = []
        self.coordinates = np.empty((0, 3))
        self.elements = np.empty((0, 8), dtype=np.int64)
        self.element_rows = np.empty(0, dtype=np.int64)
        self.element_origins = np.empty((0, 2), dtype=np.int64)
        self.element_ratios = np.empty(0, dtype=np.int64)
        self.is_superbrick = np.empty(0, dtype=bool)
        self.cube_locations = np.empty(0, dtype=np.int64)
        self.regions = np.empty(0, dtype=np.int64)
        self.flags = np.empty(0, dtype=np.int64)

        self.faces = {}
        self.corners = {}
        self.interfaces: Dict[int, Tuple[NodeKey, ...]] = {}
        self.owners: Dict[NodeKey, int] = {}
        self.coupling = {}
        self.finalized = False

    def __repr__(self):
        return (
            f"Slice(rank={self.rank}, chunk={self.chunk.name}, "
            f"iproc=({self.iproc_xi}, {self.iproc_eta}), nspec={self.nspec}, "
            f"nglob={self.nglob}, finalized={self.finalized})"
        )

    @property
    def nspec(self) -> int:
        return len(self.elements)

    @property
    def nglob(self) -> int:
        return len(self.node_keys)

    def position_of(self, key: NodeKey) -> np.ndarray:
        return self.coordinates[self.node_index[key]]

    def element_keys(self) -> List[Tuple[NodeKey, ...]]:
        """Global identity of each element: its sorted corner keys."""
        keys = self.node_keys
        return [tuple(sorted(keys[n] for n in element)) for element in self.elements]

    def face_node_keys(self, face: SliceFace) -> Tuple[NodeKey, ...]:
        """
        Shell nodes on a lateral side of the slice, sorted by key.

        Central cube interior nodes are excluded; cube surface nodes that
        are also shell nodes of this chunk are included.
        """
        i0, i1 = self.xi_range
        j0, j1 = self.eta_range
        test = {
            SliceFace.XI_MIN: lambda i, j: i == i0,
            SliceFace.XI_MAX: lambda i, j: i == i1,
            SliceFace.ETA_MIN: lambda i, j: j == j0,
            SliceFace.ETA_MAX: lambda i, j: j == j1,
        }[SliceFace(face)]
        return tuple(sorted(
            key for key, lateral in zip(self.node_keys, self.node_lateral)
            if lateral is not None and test(*lateral)
        ))

    def control_points(self, ispec: int) -> np.ndarray:
        """
        The 27 control points of an element, shape (27, 3).

        Points are in tensor order ``a + 3 * b + 9 * c`` with ``a`` along
        xi, ``b`` along eta and ``c`` from the inner to the outer face.
        Regular shell elements map their mid-edge, mid-face and center
        points through the cubed-sphere mapping; superbrick and cube
        elements interpolate their corners trilinearly.
        """
        corners = self.coordinates[self.elements[ispec]]
        row = self.element_rows[ispec]
        if row < 0 or self.is_superbrick[ispec]:
            return gll.trilinear_control_points(corners)

        nex = self.geometry.nex
        q = int(self.element_ratios[ispec])
        i, j = self.element_origins[ispec]
        matrix = CHUNK_MATRICES[self.chunk]
        top = KEY_SUBDIVISIONS * row
        radial = (top + KEY_SUBDIVISIONS, top + KEY_SUBDIVISIONS // 2, top)
        keys = []
        for c in range(3):
            for b in range(3):
                for a in range(3):
                    u = 2 * i - nex + a * q
                    v = 2 * j - nex + b * q
                    x, y, z = (int(w) for w in matrix @ (u, v, nex))
                    keys.append((x, y, z, radial[c]))
        return self.geometry.positions(keys)

    def gll_coordinates(self, ngll: int) -> np.ndarray:
        """GLL point coordinates of every element, shape (nspec, n, n, n, 3)."""
        points, _ = gll.gll_points(ngll)
        return np.stack([
            gll.map_points(self.control_points(ispec), points)
            for ispec in range(self.nspec)
        ])

    def to_pyvista(self):
        """
        Export the slice as a ``pyvista.UnstructuredGrid``.

        Cell data carries the region, flag and row of each element.
        Requires the optional ``pyvista`` dependency.
        """
        try:
            import pyvista as pv
        except ImportError as e:
            raise ImportError(
                "pyvista is required for mesh export. "
                "Install with 'pip install globemesh[meshing]'"
            ) from e
        cells = np.hstack([
            np.full((self.nspec, 1), 8, dtype=np.int64), self.elements
        ]).ravel()
        celltypes = np.full(self.nspec, pv.CellType.HEXAHEDRON, dtype=np.uint8)
        grid = pv.UnstructuredGrid(cells, celltypes, self.coordinates)
        grid.cell_data["region"] = self.regions
        grid.cell_data["flag"] = self.flags
        grid.cell_data["row"] = self.element_rows
        return grid


class ChunkTopologyBuilder:
    """
    Build slices of the cubed-sphere chunks.

    Parameters
    ----------
    config : MesherConfig
        Mesher configuration
    plan : LayerPlan
        Radial plan shared by every slice
    template : SuperbrickTemplate, optional
        Doubling template; the module-level template by default

    Examples
    --------
    >>> config = MesherConfig(nex_xi=16, nex_eta=16, nchunks=1)
    >>> plan = RadialLayerPlanner(config).plan()
    >>> builder = ChunkTopologyBuilder(config, plan)
    >>> mesh = builder.build_slice(Chunk.AB, 0, 0)
    """

    def __init__(self, config: MesherConfig, plan: LayerPlan,
                 template: SuperbrickTemplate = SUPERBRICK):
        self.config = config
        self.plan = plan
        self.template = template
        self.geometry = CubedSphereGeometry(config, plan)
        self.assigner = RegionAndFlagAssigner(config)
        self.check()

    def check(self):
        """
        Validate lateral resolution against the plan.

        Raises
        ------
        ConfigurationError
            When the chunk is not square, the process grid does not divide
            it, or a slice is not a whole number of deepest superbricks
        """
        config = self.config
        if config.nex_xi != config.nex_eta:
            raise ConfigurationError(
                f"nex_xi ({config.nex_xi}) and nex_eta ({config.nex_eta}) "
                f"must be equal for cubed-sphere chunks"
            )
        for nex, nproc, axis in ((config.nex_xi, config.nproc_xi, "xi"),
                                 (config.nex_eta, config.nproc_eta, "eta")):
            if nex % nproc:
                raise ConfigurationError(
                    f"nex_{axis} ({nex}) is not divisible by nproc_{axis} ({nproc})"
                )
            footprint = self.template.footprint(self.plan.max_ratio)
            per_proc = nex // nproc
            if per_proc % footprint:
                raise ConfigurationError(
                    f"{per_proc} elements per slice along {axis} is not a "
                    f"multiple of the deepest superbrick footprint ({footprint}); "
                    f"use nex_{axis} = k * {footprint * nproc}"
                )

    def lateral_range(self, iproc_xi: int, iproc_eta: int):
        """Lateral index ranges ``(i0, i1), (j0, j1)`` of a slice."""
        nxi = self.config.nex_per_proc_xi
        neta = self.config.nex_per_proc_eta
        return ((iproc_xi * nxi, (iproc_xi + 1) * nxi),
                (iproc_eta * neta, (iproc_eta + 1) * neta))

    def has_cube(self, chunk: Chunk) -> bool:
        return self.config.has_central_cube and chunk in (Chunk.AB, Chunk.AB_ANTIPODE)

    def expected_element_count(self, chunk: Chunk) -> int:
        """Number of elements of a whole chunk lattice."""
        nex = self.config.nex_xi
        count = 0
        for row in self.plan.rows:
            if row.is_superbrick:
                count += (nex // self.template.footprint(row.ratio)) ** 2 * self.template.nspec
            else:
                count += (nex // row.ratio) ** 2
        if self.has_cube(chunk):
            n = nex // self.plan.max_ratio
            count += n * n * (n // 2)
        return count

    def build_slice(self, chunk: Chunk, iproc_xi: int, iproc_eta: int,
                    rank: Optional[int] = None) -> Slice:
        """
        Build the elements and nodes of one slice.

        Parameters
        ----------
        chunk : Chunk
            Chunk of the slice
        iproc_xi, iproc_eta : int
            Position in the process grid
        rank : int, optional
            Slice rank recorded on the result

        Returns
        -------
        Slice
            Mesh arrays filled, boundary descriptors empty
        """
        chunk = Chunk(chunk)
        if chunk not in chunks_for(self.config.nchunks):
            raise ConfigurationError(
                f"Chunk {chunk.name} is not meshed with nchunks = {self.config.nchunks}"
            )
        if not (0 <= iproc_xi < self.config.nproc_xi
                and 0 <= iproc_eta < self.config.nproc_eta):
            raise ValueError(f"Process ({iproc_xi}, {iproc_eta}) outside the grid")

        (i0, i1), (j0, j1) = self.lateral_range(iproc_xi, iproc_eta)
        nex = self.config.nex_xi
        matrix = CHUNK_MATRICES[chunk]
        registry = _NodeRegistry()
        cube_points: Dict[Tuple[int, int], Tuple[int, int, int]] = {}

        def node(i, j, radial_key):
            point = cube_points.get((i, j))
            if point is None:
                u, v = 2 * i - nex, 2 * j - nex
                point = tuple(int(w) for w in matrix @ (u, v, nex))
                cube_points[(i, j)] = point
            return registry.add(point + (radial_key,), (i, j))

        elements, rows, origins, ratios, superbrick, cube_loc, tags = ([] for _ in range(7))

        for row in self.plan.rows:
            layer = self.plan.layers[row.layer_index]
            tag = self.assigner.assign(chunk, layer, row.mid_radius)
            if row.is_superbrick:
                step = self.template.footprint(row.ratio)
                for aj in range(j0, j1, step):
                    for ai in range(i0, i1, step):
                        lateral, connectivity = self.template.emit(ai, aj, row.ratio, row.index)
                        local = [node(*key) for key in lateral]
                        for hexahedron in connectivity:
                            elements.append([local[n] for n in hexahedron])
                            origins.append((ai, aj))
                rows.extend([row.index] * (len(elements) - len(rows)))
            else:
                q = row.ratio
                top, bottom = row.top_key, row.bottom_key
                for j in range(j0, j1, q):
                    for i in range(i0, i1, q):
                        elements.append([
                            node(i, j, bottom), node(i + q, j, bottom),
                            node(i + q, j + q, bottom), node(i, j + q, bottom),
                            node(i, j, top), node(i + q, j, top),
                            node(i + q, j + q, top), node(i, j + q, top),
                        ])
                        origins.append((i, j))
                        rows.append(row.index)
            added = len(elements) - len(ratios)
            ratios.extend([row.ratio] * added)
            superbrick.extend([row.is_superbrick] * added)
            cube_loc.extend([-1] * added)
            tags.extend([tag] * added)

        if self.has_cube(chunk):
            for location, corners in self._cube_elements(chunk, i0, i1, j0, j1):
                elements.append([registry.add(key) for key in corners])
                rows.append(-1)
                origins.append((-1, -1))
                ratios.append(self.plan.max_ratio)
                superbrick.append(False)
                cube_loc.append(int(location))
                tags.append(self.assigner.assign(chunk, None, 0.0, location))

        mesh = Slice(rank, chunk, iproc_xi, iproc_eta, (i0, i1), (j0, j1),
                     self.plan, self.geometry)
        mesh.node_keys = registry.keys
        mesh.node_index = registry.index
        mesh.node_lateral = registry.lateral
        mesh.coordinates = self.geometry.positions(np.array(registry.keys, dtype=np.int64))
        mesh.elements = np.array(elements, dtype=np.int64).reshape(-1, 8)
        mesh.element_rows = np.array(rows, dtype=np.int64)
        mesh.element_origins = np.array(origins, dtype=np.int64).reshape(-1, 2)
        mesh.element_ratios = np.array(ratios, dtype=np.int64)
        mesh.is_superbrick = np.array(superbrick, dtype=bool)
        mesh.cube_locations = np.array(cube_loc, dtype=np.int64)
        mesh.regions = np.array([int(t.region) for t in tags], dtype=np.int64)
        mesh.flags = np.array([int(t.flag) for t in tags], dtype=np.int64)

        logger.debug(
            f"Built slice {chunk.name} ({iproc_xi}, {iproc_eta}): "
            f"{mesh.nspec} elements, {mesh.nglob} nodes"
        )
        return mesh

    def _cube_elements(self, chunk, i0, i1, j0, j1):
        """Central cube elements of a slice as (location, 8 corner keys)."""
        nex = self.config.nex_xi
        h = 2 * self.plan.max_ratio
        surface_key = self.plan.bottom_key
        if chunk == Chunk.AB:
            xs = range(2 * i0 - nex, 2 * i1 - nex, h)
            zs = range(0, nex, h)
        else:
            xs = range(nex - 2 * i1, nex - 2 * i0, h)
            zs = range(-nex, 0, h)
        ys = range(2 * j0 - nex, 2 * j1 - nex, h)

        def key(x, y, z):
            on_surface = max(abs(x), abs(y), abs(z)) == nex
            return (x, y, z, surface_key if on_surface else CUBE_INTERIOR_KEY)

        for z in zs:
            for y in ys:
                for x in xs:
                    if chunk == Chunk.AB and z + h == nex:
                        location = CubeLocation.TOP
                    elif chunk == Chunk.AB_ANTIPODE and z == -nex:
                        location = CubeLocation.BOTTOM
                    elif x == -nex or x + h == nex or y == -nex or y + h == nex:
                        location = CubeLocation.LATERAL
                    else:
                        location = CubeLocation.INTERIOR
                    yield location, [
                        key(x, y, z), key(x + h, y, z),
                        key(x + h, y + h, z), key(x, y + h, z),
                        key(x, y, z + h), key(x + h, y, z + h),
                        key(x + h, y + h, z + h), key(x, y + h, z + h),
                    ]

    def check_orientation(self, mesh: Slice) -> np.ndarray:
        """Indices of elements with a non-positive corner Jacobian."""
        jac = hex_corner_jacobians(mesh.coordinates[mesh.elements])
        return np.nonzero(np.any(jac <= 0.0, axis=1))[0]
