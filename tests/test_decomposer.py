"""Tests for globemesh.decomposer: ranks, shared boundaries, coupling."""

import dataclasses
import warnings

import numpy as np
import pytest

from globemesh import (
    Chunk,
    ChunkTopologyBuilder,
    ConfigurationError,
    DomainDecomposer,
    MesherConfig,
    RadialLayerPlanner,
    Region,
    SliceCorner,
    SliceFace,
    TopologyConsistencyError,
)
from globemesh.constants import CouplingBoundary
from globemesh.decomposer import ASSEMBLE_ONLY, TRACTION_CONTINUITY, UNCOUPLED


def _build_all(config):
    """Build and describe every slice of a configuration."""
    plan = RadialLayerPlanner(config).plan()
    builder = ChunkTopologyBuilder(config, plan)
    decomposer = DomainDecomposer(config, plan)
    slices = {}
    for rank in decomposer.ranks():
        chunk, iproc_xi, iproc_eta = decomposer.locate(rank)
        mesh = builder.build_slice(chunk, iproc_xi, iproc_eta, rank=rank)
        slices[rank] = decomposer.describe(mesh)
    return decomposer, slices


BASE = MesherConfig(nex_xi=16, nex_eta=16, implement_fourth_doubling=False)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(scope="module")
def global_mesh():
    """Six chunks, one slice each, with the central cube."""
    decomposer, slices = _build_all(BASE)
    decomposer.reconcile(slices)
    return decomposer, slices


@pytest.fixture(scope="module")
def global_split_mesh():
    """Six chunks on a 2 x 2 process grid."""
    decomposer, slices = _build_all(BASE.replace(nproc_xi=2, nproc_eta=2))
    decomposer.reconcile(slices)
    return decomposer, slices


@pytest.fixture(scope="module")
def regional_mesh():
    """A single chunk meshed as a single slice."""
    return _build_all(BASE.replace(nchunks=1))


@pytest.fixture(scope="module")
def split_decomposer():
    """Decomposer of the globe on a 2 x 2 grid per chunk, without slices."""
    config = BASE.replace(nproc_xi=2, nproc_eta=2)
    return DomainDecomposer(config, RadialLayerPlanner(config).plan())


# ---------------------------------------------------------------------------
# Ranks and checks
# ---------------------------------------------------------------------------

class TestRanks:
    def test_rank_round_trip(self):
        config = BASE.replace(nproc_xi=2, nproc_eta=2)
        decomposer = DomainDecomposer(config, RadialLayerPlanner(config).plan())
        assert decomposer.nproc_total == 24
        for rank in decomposer.ranks():
            assert decomposer.rank_of(*decomposer.locate(rank)) == rank
        assert decomposer.rank_of(Chunk.AC, 1, 0) == 5

    def test_rank_out_of_range(self, global_mesh):
        decomposer, _ = global_mesh
        with pytest.raises(ValueError):
            decomposer.locate(6)

    def test_uneven_grid_raises(self):
        config = BASE.replace(nproc_xi=3, nproc_eta=3)
        with pytest.raises(ConfigurationError, match="evenly"):
            DomainDecomposer(config, RadialLayerPlanner(config).plan())

    def test_rectangular_grid_needs_single_chunk(self):
        config = BASE.replace(nproc_xi=1, nproc_eta=2)
        plan = RadialLayerPlanner(config).plan()
        with pytest.raises(ConfigurationError, match="must be equal"):
            DomainDecomposer(config, plan)
        DomainDecomposer(config.replace(nchunks=1), plan)


class TestNeighbors:
    def test_inside_chunk(self, split_decomposer):
        decomposer = split_decomposer
        rank, face, reverse = decomposer.neighbor_across(Chunk.AB, 0, 0, SliceFace.XI_MAX)
        assert rank == decomposer.rank_of(Chunk.AB, 1, 0)
        assert face == SliceFace.XI_MIN
        assert not reverse

    @pytest.mark.parametrize("iproc_eta", [0, 1])
    def test_across_reversed_chunk_edge(self, split_decomposer, iproc_eta):
        decomposer = split_decomposer
        rank, face, reverse = decomposer.neighbor_across(Chunk.AB, 0, iproc_eta, SliceFace.XI_MIN)
        assert rank == decomposer.rank_of(Chunk.BC_ANTIPODE, 1 - iproc_eta, 1)
        assert face == SliceFace.ETA_MAX
        assert reverse

    def test_rim_of_regional_mesh(self):
        config = BASE.replace(nchunks=1)
        decomposer = DomainDecomposer(config, RadialLayerPlanner(config).plan())
        assert decomposer.neighbor_across(Chunk.AB, 0, 0, SliceFace.ETA_MIN) is None

    def test_slices_at_cube_corner(self, global_mesh):
        decomposer, _ = global_mesh
        # AB, BC and AC_ANTIPODE meet at (+, +, +)
        assert decomposer.slices_containing((16, 16, 16, 0)) == (0, 2, 3)

    def test_slices_at_cube_center(self, global_mesh):
        decomposer, _ = global_mesh
        assert decomposer.slices_containing((0, 0, 0, -1)) == (0, 5)


# ---------------------------------------------------------------------------
# Global mesh, one slice per chunk
# ---------------------------------------------------------------------------

class TestGlobalMesh:
    def test_all_finalized(self, global_mesh):
        _, slices = global_mesh
        assert len(slices) == 6
        assert all(mesh.finalized for mesh in slices.values())

    def test_chunk_edge_faces(self, global_mesh):
        _, slices = global_mesh
        ab = slices[0]
        assert set(ab.faces) == {SliceFace.XI_MIN, SliceFace.XI_MAX,
                                 SliceFace.ETA_MIN, SliceFace.ETA_MAX}
        shared = ab.faces[SliceFace.XI_MAX]
        assert shared.neighbor_rank == 2
        assert shared.neighbor_face == SliceFace.ETA_MAX
        back = slices[2].faces[SliceFace.ETA_MAX]
        assert back.node_keys == shared.node_keys
        assert shared.n_nodes > 0

    def test_corners_are_cube_corners(self, global_mesh):
        _, slices = global_mesh
        for mesh in slices.values():
            for corner in mesh.corners.values():
                assert len(corner.ranks) == 3
                assert corner.degenerate
                assert mesh.rank in corner.ranks

    def test_interfaces_symmetric(self, global_mesh):
        _, slices = global_mesh
        for rank, mesh in slices.items():
            for other, keys in mesh.interfaces.items():
                assert slices[other].interfaces[rank] == keys

    def test_slice_sides_are_assemble_only(self, global_mesh):
        _, slices = global_mesh
        conditions = {face.condition for mesh in slices.values() for face in mesh.faces.values()}
        assert conditions == {ASSEMBLE_ONLY}

    def test_cube_halves_share_the_mid_plane(self, global_mesh):
        _, slices = global_mesh
        keys = slices[0].interfaces[5]
        assert keys
        assert all(k[2] == 0 for k in keys)

    def test_owner_is_lowest_rank(self, global_mesh):
        decomposer, slices = global_mesh
        for mesh in slices.values():
            for key, owner in mesh.owners.items():
                assert owner == min(decomposer.slices_containing(key))
                assert owner <= mesh.rank or owner in mesh.interfaces


class TestCoupling:
    def test_cmb_pairs(self, global_mesh):
        _, slices = global_mesh
        cmb = slices[0].coupling[CouplingBoundary.CMB]
        assert cmb.coupled
        assert cmb.condition == TRACTION_CONTINUITY
        assert len(cmb.face_pairs) == 64
        assert len(cmb.solid_faces) == len(cmb.fluid_faces) == 64

    def test_icb_pairs(self, global_mesh):
        _, slices = global_mesh
        icb = slices[0].coupling[CouplingBoundary.ICB]
        assert len(icb.face_pairs) == 16

    def test_pair_regions(self, global_mesh):
        _, slices = global_mesh
        mesh = slices[1]
        for pair in mesh.coupling[CouplingBoundary.ICB].face_pairs:
            assert mesh.regions[pair.solid_element] == Region.INNER_CORE
            assert mesh.regions[pair.fluid_element] == Region.OUTER_CORE

    def test_normals_point_into_the_solid(self, global_mesh):
        _, slices = global_mesh
        mesh = slices[3]
        for boundary, sign in ((CouplingBoundary.CMB, 1.0), (CouplingBoundary.ICB, -1.0)):
            for pair in mesh.coupling[boundary].face_pairs:
                centroid = np.mean([mesh.position_of(k) for k in pair.node_keys], axis=0)
                assert sign * np.dot(pair.normal, centroid) > 0
                assert np.linalg.norm(pair.normal) == pytest.approx(1.0)

    def test_cmb_area(self, global_mesh):
        _, slices = global_mesh
        area = sum(
            pair.area
            for mesh in slices.values()
            for pair in mesh.coupling[CouplingBoundary.CMB].face_pairs
        )
        r = BASE.r_cmb / BASE.r_earth
        assert area == pytest.approx(4.0 * np.pi * r ** 2, rel=0.05)

    def test_disabled_coupling_keeps_faces(self):
        decomposer, slices = _build_all(BASE.replace(nchunks=1, couple_fluid_cmb=False))
        cmb = slices[0].coupling[CouplingBoundary.CMB]
        assert not cmb.coupled
        assert cmb.condition == UNCOUPLED
        assert cmb.face_pairs == ()
        assert len(cmb.solid_faces) == 64
        assert len(slices[0].coupling[CouplingBoundary.ICB].face_pairs) == 16
        with pytest.warns(UserWarning, match="CMB"):
            decomposer.reconcile(slices)
        assert slices[0].finalized


# ---------------------------------------------------------------------------
# Split global mesh
# ---------------------------------------------------------------------------

class TestGlobalSplitMesh:
    def test_all_finalized(self, global_split_mesh):
        _, slices = global_split_mesh
        assert len(slices) == 24
        assert all(mesh.finalized for mesh in slices.values())

    def test_one_cube_corner_per_slice(self, global_split_mesh):
        _, slices = global_split_mesh
        for mesh in slices.values():
            sizes = sorted(len(c.ranks) for c in mesh.corners.values())
            assert sizes == [3, 4, 4, 4]

    def test_faces_match_both_sides(self, global_split_mesh):
        _, slices = global_split_mesh
        for mesh in slices.values():
            assert len(mesh.faces) == 4
            for face, shared in mesh.faces.items():
                back = slices[shared.neighbor_rank].faces[shared.neighbor_face]
                assert back.neighbor_rank == mesh.rank
                assert back.neighbor_face == face
                assert back.node_keys == shared.node_keys

    def test_cube_interfaces_between_ab_slices(self, global_split_mesh):
        decomposer, slices = global_split_mesh
        left = decomposer.rank_of(Chunk.AB, 0, 0)
        right = decomposer.rank_of(Chunk.AB, 1, 0)
        keys = slices[left].interfaces[right]
        assert any(k[3] == -1 for k in keys)


# ---------------------------------------------------------------------------
# Regional mesh, single slice
# ---------------------------------------------------------------------------

class TestRegionalMesh:
    def test_no_faces(self, regional_mesh):
        _, slices = regional_mesh
        assert slices[0].faces == {}
        assert slices[0].interfaces == {}

    def test_degenerate_corners(self, regional_mesh):
        _, slices = regional_mesh
        corners = slices[0].corners
        assert set(corners) == set(SliceCorner)
        assert all(c.ranks == (0,) and c.degenerate for c in corners.values())

    def test_reconcile_single_slice(self, regional_mesh):
        decomposer, slices = regional_mesh
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            decomposer.reconcile(slices)
        assert slices[0].finalized


# ---------------------------------------------------------------------------
# Mismatches
# ---------------------------------------------------------------------------

class TestMismatches:
    @pytest.fixture
    def split(self):
        return _build_all(BASE.replace(nchunks=1, nproc_xi=2, nproc_eta=2))

    def test_face_node_count_mismatch(self, split):
        decomposer, slices = split
        face = slices[1].faces[SliceFace.XI_MIN]
        slices[1].faces[SliceFace.XI_MIN] = dataclasses.replace(
            face, node_keys=face.node_keys[:-1])
        with pytest.raises(TopologyConsistencyError) as excinfo:
            decomposer.reconcile(slices)
        assert excinfo.value.ranks == (0, 1)
        assert not any(mesh.finalized for mesh in slices.values())

    def test_interface_position_mismatch(self, split):
        decomposer, slices = split
        key = slices[0].interfaces[1][0]
        moved = slices[1].coordinates.copy()
        moved[slices[1].node_index[key]] += 1e-6
        slices[1].coordinates = moved
        with pytest.raises(TopologyConsistencyError, match="positions differ"):
            decomposer.reconcile(slices)

    def test_partial_build_skips_missing_neighbors(self, split):
        decomposer, slices = split
        partial = {0: slices[0], 3: slices[3]}
        decomposer.reconcile(partial)
        assert slices[0].finalized and slices[3].finalized
        assert not slices[1].finalized
