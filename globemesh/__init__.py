"""
GlobeMesh: Cubed-Sphere Spectral-Element Meshing of the Whole Earth

This package builds the hexahedral mesh of a global spectral-element
simulation and the lookup tables that go with it:
- Radial layering with mesh doublings snapped to element boundaries
- Conforming doubling superbricks (2 x 2 coarse to 4 x 4 fine)
- Six-chunk cubed sphere with an optional central cube
- Decomposition into processor slices with shared faces, corner rings
  and per-neighbor interfaces, reconciled pairwise
- Fluid-solid coupling faces at the CMB and the ICB
- Attenuation and gravity tables sampled from a 1-D Earth model

Key Classes:
- MesherConfig: Immutable mesher parameters
- RadialLayerPlanner: Radial layers and element rows
- ChunkTopologyBuilder: Elements and nodes of a slice
- DomainDecomposer: Shared boundaries between slices
- GlobalMesher: Concurrent build of slices and tables
- PlanetModel: 1-D Earth models from .nd files

Version: 0.1.0
"""

__version__ = "0.1.0"

from .config import MesherConfig
from .constants import Chunk, CubeLocation, ElementFlag, Region, SliceCorner, SliceFace
from .errors import (
    ConfigurationError,
    MesherError,
    ModelEvaluationError,
    TopologyConsistencyError,
)
from .layers import LayerPlan, RadialLayerPlanner
from .superbrick import SUPERBRICK, SuperbrickTemplate
from .cubed_sphere import CubedSphereGeometry
from .regions import ElementTag, RegionAndFlagAssigner
from .chunk_builder import ChunkTopologyBuilder, Slice
from .decomposer import DomainDecomposer
from .tables import AttenuationTableBuilder, GravityTableBuilder
from .earth_model import PlanetModel
from .mesher import GlobalMesher, MeshResult

__all__ = [
    'MesherConfig',
    'Chunk', 'CubeLocation', 'ElementFlag', 'Region', 'SliceCorner', 'SliceFace',
    'ConfigurationError', 'MesherError', 'ModelEvaluationError',
    'TopologyConsistencyError',
    'LayerPlan', 'RadialLayerPlanner',
    'SUPERBRICK', 'SuperbrickTemplate',
    'CubedSphereGeometry',
    'ElementTag', 'RegionAndFlagAssigner',
    'ChunkTopologyBuilder', 'Slice',
    'DomainDecomposer',
    'AttenuationTableBuilder', 'GravityTableBuilder',
    'PlanetModel',
    'GlobalMesher', 'MeshResult',
]
