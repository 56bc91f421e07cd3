"""
Domain decomposition.

Every chunk is split into an ``nproc_xi x nproc_eta`` grid of slices of
equal size. For each slice the decomposer derives, from the global node
keys alone:

- the shared faces with the neighboring slice across each lateral side,
  inside the chunk or across a chunk edge;
- the ring of slices meeting at each of its four corners;
- the per-neighbor interfaces listing every node the slice shares,
  including the central cube, with the canonical owner (lowest rank);
- the fluid-solid coupling faces at the CMB and the ICB.

Neighboring slices are then reconciled pairwise; slices are finalized
only once every check has passed.
"""

import logging
import warnings
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np

from .chunk_builder import CUBE_INTERIOR_KEY, NodeKey, Slice
from .config import MesherConfig
from .constants import (
    NUMCORNERS_SHARED,
    SMALLVALTOL,
    Chunk,
    CouplingBoundary,
    Region,
    SliceCorner,
    SliceFace,
)
from .cubed_sphere import chunks_for, cube_to_lateral, edge_neighbor, lateral_to_cube
from .errors import ConfigurationError, TopologyConsistencyError
from .layers import KEY_SUBDIVISIONS, LayerPlan

logger = logging.getLogger(__name__)

# boundary condition tags: slice sides are summed only, fluid-solid pairs
# exchange tractions, disabled coupling leaves the boundary free
ASSEMBLE_ONLY = "assemble_only"
TRACTION_CONTINUITY = "traction_continuity"
UNCOUPLED = "uncoupled"

LATERAL_FACES = (SliceFace.XI_MIN, SliceFace.XI_MAX, SliceFace.ETA_MIN, SliceFace.ETA_MAX)

# the six faces of a VTK hexahedron
HEX_FACES = (
    (0, 1, 2, 3), (4, 5, 6, 7), (0, 1, 5, 4),
    (1, 2, 6, 5), (2, 3, 7, 6), (3, 0, 4, 7),
)


@dataclass(frozen=True)
class SharedFace:
    """Lateral side of a slice shared with one neighboring slice."""

    face: SliceFace
    neighbor_rank: int
    neighbor_face: SliceFace
    reversed: bool
    node_keys: Tuple[NodeKey, ...]
    condition: str = ASSEMBLE_ONLY

    @property
    def n_nodes(self) -> int:
        return len(self.node_keys)


@dataclass(frozen=True)
class SharedCorner:
    """
    Ring of slices meeting at a slice corner.

    ``ranks`` includes the slice itself. Rings hold 4 slices inside the
    mesh and along chunk edges, 3 at cube corners, fewer on the rim of a
    partial mesh and 1 for a chunk meshed as a single slice.
    """

    corner: SliceCorner
    point: Tuple[int, int, int]
    ranks: Tuple[int, ...]

    @property
    def degenerate(self) -> bool:
        return len(self.ranks) < NUMCORNERS_SHARED


@dataclass(frozen=True)
class CouplingFacePair:
    """A solid element face and the fluid element face it touches."""

    solid_element: int
    fluid_element: int
    node_keys: Tuple[NodeKey, ...]
    normal: Tuple[float, float, float]
    area: float


@dataclass(frozen=True)
class CouplingInterface:
    """
    Fluid-solid boundary of a slice.

    ``solid_faces`` and ``fluid_faces`` list ``(element, node keys)`` on
    each side and are always present; ``face_pairs`` is empty when
    coupling is disabled for this boundary. Normals point from the fluid
    into the solid.
    """

    boundary: CouplingBoundary
    coupled: bool
    condition: str
    solid_faces: Tuple[Tuple[int, Tuple[NodeKey, ...]], ...]
    fluid_faces: Tuple[Tuple[int, Tuple[NodeKey, ...]], ...]
    face_pairs: Tuple[CouplingFacePair, ...]


class DomainDecomposer:
    """
    Split chunks into slices and describe their shared boundaries.

    Parameters
    ----------
    config : MesherConfig
        Mesher configuration
    plan : LayerPlan
        Radial plan shared by every slice

    Examples
    --------
    >>> decomposer = DomainDecomposer(config, plan)
    >>> decomposer.rank_of(Chunk.AC, 1, 0)
    5
    """

    def __init__(self, config: MesherConfig, plan: LayerPlan):
        self.config = config
        self.plan = plan
        self.chunks = chunks_for(config.nchunks)
        self.nex = config.nex_xi
        self.check()

    def check(self):
        """
        Validate the process grid.

        Raises
        ------
        ConfigurationError
            When the grid does not divide the chunk evenly, or is not
            square while slices must match across chunk edges
        """
        config = self.config
        if config.nex_xi % config.nproc_xi or config.nex_eta % config.nproc_eta:
            raise ConfigurationError(
                f"Process grid {config.nproc_xi} x {config.nproc_eta} does not "
                f"divide the chunk ({config.nex_xi} x {config.nex_eta} elements) evenly"
            )
        if config.nchunks > 1 and config.nproc_xi != config.nproc_eta:
            raise ConfigurationError(
                f"nproc_xi ({config.nproc_xi}) and nproc_eta ({config.nproc_eta}) "
                f"must be equal when slices meet across chunk edges"
            )

    # ===== Ranks =====

    @property
    def nproc_total(self) -> int:
        return self.config.nproc_total

    def rank_of(self, chunk: Chunk, iproc_xi: int, iproc_eta: int) -> int:
        config = self.config
        index = self.chunks.index(Chunk(chunk))
        return index * config.nproc_per_chunk + iproc_eta * config.nproc_xi + iproc_xi

    def locate(self, rank: int) -> Tuple[Chunk, int, int]:
        """Chunk and process grid position of a rank."""
        if not 0 <= rank < self.nproc_total:
            raise ValueError(f"Rank {rank} outside [0, {self.nproc_total})")
        index, local = divmod(rank, self.config.nproc_per_chunk)
        iproc_eta, iproc_xi = divmod(local, self.config.nproc_xi)
        return self.chunks[index], iproc_xi, iproc_eta

    def ranks(self) -> List[int]:
        return list(range(self.nproc_total))

    # ===== Geometry of the partition =====

    @staticmethod
    def _procs(index: int, per_proc: int, nproc: int) -> List[int]:
        proc = index // per_proc
        procs = [proc] if proc < nproc else []
        if index % per_proc == 0 and proc > 0:
            procs.append(proc - 1)
        return procs

    def _ranks_at(self, chunk: Chunk, i: int, j: int) -> List[int]:
        config = self.config
        return [
            self.rank_of(chunk, px, py)
            for px in self._procs(i, config.nex_per_proc_xi, config.nproc_xi)
            for py in self._procs(j, config.nex_per_proc_eta, config.nproc_eta)
        ]

    def slices_containing(self, key: NodeKey) -> Tuple[int, ...]:
        """
        Ranks of every slice holding a node.

        Parameters
        ----------
        key : tuple
            Global node key ``(X, Y, Z, radial_key)``

        Returns
        -------
        tuple of int
            Sorted ranks
        """
        x, y, z, radial = key
        nex = self.nex
        ranks = set()
        if radial != CUBE_INTERIOR_KEY:
            for chunk in self.chunks:
                lateral = cube_to_lateral(chunk, (x, y, z), nex)
                if lateral is not None:
                    ranks.update(self._ranks_at(chunk, *lateral))
        if self.config.has_central_cube and radial in (CUBE_INTERIOR_KEY, self.plan.bottom_key):
            # upper half of the cube is meshed by AB, lower half by AB_ANTIPODE
            if z >= 0:
                ranks.update(self._ranks_at(Chunk.AB, (x + nex) // 2, (y + nex) // 2))
            if z <= 0:
                ranks.update(self._ranks_at(Chunk.AB_ANTIPODE, (nex - x) // 2, (y + nex) // 2))
        return tuple(sorted(ranks))

    def neighbor_across(self, chunk: Chunk, iproc_xi: int, iproc_eta: int,
                        face: SliceFace) -> Optional[Tuple[int, SliceFace, bool]]:
        """
        Slice across a lateral side: ``(rank, neighbor face, reversed)``.

        Returns None on the rim of a partial mesh.
        """
        config = self.config
        face = SliceFace(face)
        if face == SliceFace.XI_MIN and iproc_xi > 0:
            return self.rank_of(chunk, iproc_xi - 1, iproc_eta), SliceFace.XI_MAX, False
        if face == SliceFace.XI_MAX and iproc_xi < config.nproc_xi - 1:
            return self.rank_of(chunk, iproc_xi + 1, iproc_eta), SliceFace.XI_MIN, False
        if face == SliceFace.ETA_MIN and iproc_eta > 0:
            return self.rank_of(chunk, iproc_xi, iproc_eta - 1), SliceFace.ETA_MAX, False
        if face == SliceFace.ETA_MAX and iproc_eta < config.nproc_eta - 1:
            return self.rank_of(chunk, iproc_xi, iproc_eta + 1), SliceFace.ETA_MIN, False

        neighbor = edge_neighbor(chunk, face, config.nchunks)
        if neighbor is None:
            return None
        other_chunk, other_face, reverse = neighbor
        nproc = config.nproc_xi
        along = iproc_eta if face in (SliceFace.XI_MIN, SliceFace.XI_MAX) else iproc_xi
        if reverse:
            along = nproc - 1 - along
        across = 0 if other_face in (SliceFace.XI_MIN, SliceFace.ETA_MIN) else nproc - 1
        if other_face in (SliceFace.XI_MIN, SliceFace.XI_MAX):
            position = (across, along)
        else:
            position = (along, across)
        return self.rank_of(other_chunk, *position), other_face, reverse

    def corner_point(self, mesh: Slice, corner: SliceCorner) -> Tuple[int, int, int]:
        (i0, i1), (j0, j1) = mesh.xi_range, mesh.eta_range
        i, j = {
            SliceCorner.LOWERLOWER: (i0, j0),
            SliceCorner.LOWERUPPER: (i0, j1),
            SliceCorner.UPPERLOWER: (i1, j0),
            SliceCorner.UPPERUPPER: (i1, j1),
        }[SliceCorner(corner)]
        return lateral_to_cube(mesh.chunk, i, j, self.nex)

    # ===== Descriptors =====

    def _shared_candidates(self, mesh: Slice) -> Iterable[NodeKey]:
        (i0, i1), (j0, j1) = mesh.xi_range, mesh.eta_range
        bottom = self.plan.bottom_key
        for key, lateral in zip(mesh.node_keys, mesh.node_lateral):
            if lateral is None or key[3] == bottom:
                yield key
            elif lateral[0] in (i0, i1) or lateral[1] in (j0, j1):
                yield key

    def describe(self, mesh: Slice) -> Slice:
        """
        Attach faces, corners, interfaces, owners and coupling to a slice.

        Raises
        ------
        TopologyConsistencyError
            When a node of the slice is not attributed to it by the
            partition rules, or coupling faces do not pair up
        """
        rank = mesh.rank
        chunk = mesh.chunk

        mesh.faces = {}
        for face in LATERAL_FACES:
            neighbor = self.neighbor_across(chunk, mesh.iproc_xi, mesh.iproc_eta, face)
            if neighbor is None:
                continue
            other_rank, other_face, reverse = neighbor
            mesh.faces[face] = SharedFace(face, other_rank, other_face, reverse,
                                          mesh.face_node_keys(face))

        mesh.corners = {}
        for corner in SliceCorner:
            point = self.corner_point(mesh, corner)
            ring = self.slices_containing(point + (0,))
            mesh.corners[corner] = SharedCorner(corner, point, ring)

        interfaces: Dict[int, List[NodeKey]] = {}
        owners: Dict[NodeKey, int] = {}
        for key in self._shared_candidates(mesh):
            ranks = self.slices_containing(key)
            if rank not in ranks:
                raise TopologyConsistencyError(
                    f"Node {key} built by slice {rank} is not attributed to it",
                    ranks=(rank,),
                )
            if len(ranks) == 1:
                continue
            owners[key] = ranks[0]
            for other in ranks:
                if other != rank:
                    interfaces.setdefault(other, []).append(key)
        mesh.interfaces = {other: tuple(sorted(keys)) for other, keys in sorted(interfaces.items())}
        mesh.owners = owners

        mesh.coupling = {
            CouplingBoundary.CMB: self.coupling_interface(
                mesh, CouplingBoundary.CMB, self.config.couple_fluid_cmb),
            CouplingBoundary.ICB: self.coupling_interface(
                mesh, CouplingBoundary.ICB, self.config.couple_fluid_icb),
        }
        logger.debug(
            f"Slice {rank}: {len(mesh.faces)} shared faces, "
            f"{len(mesh.interfaces)} neighbors, {len(owners)} shared nodes"
        )
        return mesh

    def _faces_on(self, mesh: Slice, elements: np.ndarray, key: int):
        faces = []
        for ispec in elements:
            nodes = mesh.elements[ispec]
            for face in HEX_FACES:
                keys = tuple(mesh.node_keys[nodes[n]] for n in face)
                if all(k[3] == key for k in keys):
                    faces.append((int(ispec), keys))
        return faces

    def coupling_interface(self, mesh: Slice, boundary: CouplingBoundary,
                           coupled: bool) -> CouplingInterface:
        """
        Fluid-solid faces of a slice at the CMB or the ICB.

        The boundary faces are listed whether or not the boundary is
        coupled; face pairs are built only when it is.
        """
        if boundary == CouplingBoundary.CMB:
            radius, solid, fluid = self.config.r_cmb, Region.CRUST_MANTLE, Region.OUTER_CORE
        else:
            radius, solid, fluid = self.config.r_icb, Region.INNER_CORE, Region.OUTER_CORE
        key = self.plan.boundary_key(radius)
        row_below = key // KEY_SUBDIVISIONS

        rows = mesh.element_rows
        above = np.nonzero(rows == row_below - 1)[0]
        below = np.nonzero(rows == row_below)[0]
        if boundary == CouplingBoundary.CMB:
            solid_elements, fluid_elements = above, below
        else:
            solid_elements, fluid_elements = below, above
        solid_elements = solid_elements[mesh.regions[solid_elements] == solid]
        fluid_elements = fluid_elements[mesh.regions[fluid_elements] == fluid]

        solid_faces = self._faces_on(mesh, solid_elements, key)
        fluid_faces = self._faces_on(mesh, fluid_elements, key)

        pairs = []
        if coupled:
            fluid_by_keys = {frozenset(keys): ispec for ispec, keys in fluid_faces}
            if len(fluid_by_keys) != len(solid_faces):
                raise TopologyConsistencyError(
                    f"{boundary.name}: {len(solid_faces)} solid faces against "
                    f"{len(fluid_by_keys)} fluid faces",
                    ranks=(mesh.rank,),
                )
            outward = 1.0 if boundary == CouplingBoundary.CMB else -1.0
            for ispec, keys in solid_faces:
                match = fluid_by_keys.get(frozenset(keys))
                if match is None:
                    raise TopologyConsistencyError(
                        f"{boundary.name}: solid face of element {ispec} has no "
                        f"fluid counterpart",
                        ranks=(mesh.rank,),
                    )
                points = np.array([mesh.position_of(k) for k in keys])
                normal = np.cross(points[2] - points[0], points[3] - points[1])
                norm = np.linalg.norm(normal)
                if outward * np.dot(normal, points.mean(axis=0)) < 0:
                    normal = -normal
                pairs.append(CouplingFacePair(
                    solid_element=ispec,
                    fluid_element=match,
                    node_keys=keys,
                    normal=tuple(float(c) for c in normal / norm),
                    area=0.5 * float(norm),
                ))

        return CouplingInterface(
            boundary=boundary,
            coupled=coupled,
            condition=TRACTION_CONTINUITY if coupled else UNCOUPLED,
            solid_faces=tuple(solid_faces),
            fluid_faces=tuple(fluid_faces),
            face_pairs=tuple(pairs),
        )

    # ===== Reconciliation =====

    def _check_faces(self, mesh: Slice, slices: Dict[int, Slice]):
        for face, shared in mesh.faces.items():
            other = slices.get(shared.neighbor_rank)
            if other is None:
                continue
            ranks = (mesh.rank, other.rank)
            back = other.faces.get(shared.neighbor_face)
            if (back is None or back.neighbor_rank != mesh.rank
                    or back.neighbor_face != face or back.reversed != shared.reversed):
                raise TopologyConsistencyError(
                    f"Face {face.name} of slice {mesh.rank} is not matched by "
                    f"face {shared.neighbor_face.name} of slice {other.rank}",
                    ranks=ranks,
                )
            if back.n_nodes != shared.n_nodes:
                raise TopologyConsistencyError(
                    f"Shared face holds {shared.n_nodes} nodes on one side and "
                    f"{back.n_nodes} on the other",
                    ranks=ranks,
                )
            if back.node_keys != shared.node_keys:
                raise TopologyConsistencyError(
                    "Shared face nodes differ between the two sides", ranks=ranks
                )

    def _check_interfaces(self, mesh: Slice, slices: Dict[int, Slice]):
        for other_rank, keys in mesh.interfaces.items():
            if other_rank < mesh.rank or other_rank not in slices:
                continue
            other = slices[other_rank]
            ranks = (mesh.rank, other_rank)
            other_keys = other.interfaces.get(mesh.rank, ())
            if len(other_keys) != len(keys):
                raise TopologyConsistencyError(
                    f"Interface holds {len(keys)} nodes on one side and "
                    f"{len(other_keys)} on the other",
                    ranks=ranks,
                )
            if other_keys != keys:
                raise TopologyConsistencyError(
                    "Interface node keys differ between the two sides", ranks=ranks
                )
            mine = mesh.coordinates[[mesh.node_index[k] for k in keys]]
            theirs = other.coordinates[[other.node_index[k] for k in keys]]
            gap = float(np.max(np.abs(mine - theirs))) if len(keys) else 0.0
            if gap > SMALLVALTOL:
                raise TopologyConsistencyError(
                    f"Interface node positions differ by {gap:.3e}", ranks=ranks
                )

    def _check_corners(self, mesh: Slice, slices: Dict[int, Slice]):
        for shared in mesh.corners.values():
            for other_rank in shared.ranks:
                if other_rank == mesh.rank or other_rank not in slices:
                    continue
                match = [c for c in slices[other_rank].corners.values()
                         if c.point == shared.point]
                if not match or match[0].ranks != shared.ranks:
                    raise TopologyConsistencyError(
                        f"Corner ring at {shared.point} is inconsistent",
                        ranks=(mesh.rank, other_rank),
                    )

    def reconcile(self, slices: Dict[int, Slice]) -> Dict[int, Slice]:
        """
        Check every pair of neighboring slices, then finalize them.

        Pairs with a slice missing from ``slices`` (partial builds) are
        skipped. Checks are pairwise and order independent.

        Raises
        ------
        TopologyConsistencyError
            On the first mismatch, naming the slice pair; no slice is
            finalized in that case
        """
        for rank in sorted(slices):
            mesh = slices[rank]
            self._check_faces(mesh, slices)
            self._check_interfaces(mesh, slices)
            self._check_corners(mesh, slices)
        for mesh in slices.values():
            mesh.finalized = True
        uncoupled = sorted({
            boundary.name for mesh in slices.values()
            for boundary, interface in mesh.coupling.items() if not interface.coupled
        })
        if uncoupled:
            warnings.warn(
                f"Fluid-solid coupling disabled at {', '.join(uncoupled)}: the "
                f"boundary faces are exposed without face pairs"
            )
        logger.info(f"Reconciled and finalized {len(slices)} slices")
        return slices
