"""
Physical, numerical and topological constants of the global mesher.

Radii are in meters. Enumerations replace integer flags of the mesher
parameter header; their values keep the historical numbering so
that arrays written with them stay comparable with older meshes.
"""

from enum import IntEnum

# ===== Doubling defaults =====

DEPTH_SECOND_DOUBLING_OPTIMAL = 1650000.0
DEPTH_THIRD_DOUBLING_OPTIMAL = 3860000.0
IMPLEMENT_FOURTH_DOUBLING = True
DEPTH_FOURTH_DOUBLING_OPTIMAL = 5000000.0

NB_LAYERS_SAMPLING_STUDY = 11

# ===== Superbrick =====

NSPEC_DOUBLING_SUPERBRICK = 32
NGLOB_DOUBLING_SUPERBRICK = 67
NGNOD_DOUBLING_SUPERBRICK = 8

# ===== PREM discontinuities =====

R_EARTH = 6371000.0
RMOHO = 6346600.0
R80 = 6291000.0
R220 = 6151000.0
R400 = 5971000.0
R600 = 5771000.0
R670 = 5701000.0
R771 = 5600000.0
RTOPDDOUBLEPRIME = 3630000.0
RCMB = 3480000.0
RICB = 1221000.0
R_CENTRAL_CUBE = 965000.0

R_UNIT_SPHERE = 1.0

# ===== Numerics =====

NGLLX = 5

GRAV = 6.6723e-11
SMALLVALTOL = 1.0e-10

# ===== Attenuation and gravity tables =====

N_SLS = 3
ATTENUATION_COMP_RESOLUTION = 1
ATTENUATION_COMP_MAXIMUM = 5000
NRAD_ATTENUATION = 70000
# table radii are in units of 100 m
TABLE_UNIT = 100.0
TABLE_ATTENUATION = R_EARTH / TABLE_UNIT
NRAD_GRAVITY = 70000

# absorption band of the standard linear solids, in seconds
MIN_ATTENUATION_PERIOD = 20.0
MAX_ATTENUATION_PERIOD = 1000.0
# PREM moduli are given at 1 s
REFERENCE_FREQUENCY = 1.0

# ===== Chunks =====

NCHUNKS_MAX = 6


class Chunk(IntEnum):
    """The six cubed-sphere chunks. AB must stay first: it owns the central cube."""

    AB = 1
    AC = 2
    BC = 3
    AC_ANTIPODE = 4
    BC_ANTIPODE = 5
    AB_ANTIPODE = 6


class Region(IntEnum):
    CRUST_MANTLE = 1
    OUTER_CORE = 2
    INNER_CORE = 3

    @property
    def is_fluid(self) -> bool:
        return self is Region.OUTER_CORE


class ElementFlag(IntEnum):
    """Material / attenuation sub-region of an element."""

    CRUST = 1
    MOHO_220 = 2
    R220_670 = 3
    MANTLE_NORMAL = 4
    OUTER_CORE_NORMAL = 5
    INNER_CORE_NORMAL = 6
    IN_CENTRAL_CUBE = 7
    BOTTOM_CENTRAL_CUBE = 8
    TOP_CENTRAL_CUBE = 9
    IN_FICTITIOUS_CUBE = 10

    @property
    def region(self) -> Region:
        return FLAG_REGION[self]


FLAG_REGION = {
    ElementFlag.CRUST: Region.CRUST_MANTLE,
    ElementFlag.MOHO_220: Region.CRUST_MANTLE,
    ElementFlag.R220_670: Region.CRUST_MANTLE,
    ElementFlag.MANTLE_NORMAL: Region.CRUST_MANTLE,
    ElementFlag.OUTER_CORE_NORMAL: Region.OUTER_CORE,
    ElementFlag.INNER_CORE_NORMAL: Region.INNER_CORE,
    ElementFlag.IN_CENTRAL_CUBE: Region.INNER_CORE,
    ElementFlag.BOTTOM_CENTRAL_CUBE: Region.INNER_CORE,
    ElementFlag.TOP_CENTRAL_CUBE: Region.INNER_CORE,
    ElementFlag.IN_FICTITIOUS_CUBE: Region.INNER_CORE,
}


class AttenuationRegion(IntEnum):
    INNER_CORE = 1
    CMB_670 = 2
    R670_220 = 3
    R220_80 = 4
    R80_SURFACE = 5


class SliceFace(IntEnum):
    """The four lateral edges of a slice."""

    XI_MIN = 1
    XI_MAX = 2
    ETA_MIN = 3
    ETA_MAX = 4


class SliceCorner(IntEnum):
    """Slice corners as (xi side, eta side)."""

    LOWERLOWER = 1
    LOWERUPPER = 2
    UPPERLOWER = 3
    UPPERUPPER = 4


class CubeLocation(IntEnum):
    """Position of a central-cube element relative to the cube surface."""

    INTERIOR = 0
    LATERAL = 1
    TOP = 2
    BOTTOM = 3


class CouplingBoundary(IntEnum):
    CMB = 1
    ICB = 2


# slices meeting at a corner away from the cube corners and the mesh rim
NUMCORNERS_SHARED = 4
