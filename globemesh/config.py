"""
Mesher configuration.

A single immutable structure carries every constant the core consumes.
It is passed explicitly to each component instead of living in
process-wide globals.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, fields, asdict
from typing import Any, Dict, Tuple

from obspy.geodetics import degrees2kilometers

from . import constants as C
from .errors import ConfigurationError

logger = logging.getLogger(__name__)

BASE_LAYER_NAMES: Tuple[str, ...] = (
    "crust",
    "80_moho",
    "220_80",
    "400_220",
    "600_400",
    "670_600",
    "771_670",
    "topddoubleprime_771",
    "cmb_topddoubleprime",
    "outer_core",
    "top_central_cube_icb",
)

# radial element counts of the base layers, outermost first
DEFAULT_NER: Tuple[int, ...] = (3, 1, 2, 3, 3, 1, 1, 15, 1, 16, 2)

PROJECTIONS = ("equiangular", "equidistant")
SUPPORTED_NCHUNKS = (1, 2, 3, 6)

# upper-case names used by Par_file style parameter files
_PARAMETER_ALIASES = {
    "NEX_XI": "nex_xi",
    "NEX_ETA": "nex_eta",
    "NPROC_XI": "nproc_xi",
    "NPROC_ETA": "nproc_eta",
    "NCHUNKS": "nchunks",
    "R_EARTH": "r_earth",
    "RMOHO": "r_moho",
    "R80": "r80",
    "R220": "r220",
    "R400": "r400",
    "R600": "r600",
    "R670": "r670",
    "R771": "r771",
    "RTOPDDOUBLEPRIME": "r_topddoubleprime",
    "RCMB": "r_cmb",
    "RICB": "r_icb",
    "R_CENTRAL_CUBE": "r_central_cube",
    "DEPTH_SECOND_DOUBLING_OPTIMAL": "depth_second_doubling",
    "DEPTH_THIRD_DOUBLING_OPTIMAL": "depth_third_doubling",
    "DEPTH_FOURTH_DOUBLING_OPTIMAL": "depth_fourth_doubling",
    "IMPLEMENT_FOURTH_DOUBLING": "implement_fourth_doubling",
    "INCLUDE_CENTRAL_CUBE": "include_central_cube",
    "ACTUALLY_COUPLE_FLUID_CMB": "couple_fluid_cmb",
    "ACTUALLY_COUPLE_FLUID_ICB": "couple_fluid_icb",
    "NGLLX": "ngll",
    "N_SLS": "n_sls",
    "ATTENUATION_COMP_RESOLUTION": "attenuation_comp_resolution",
    "ATTENUATION_COMP_MAXIMUM": "attenuation_comp_maximum",
    "NRAD_ATTENUATION": "nrad_attenuation",
    "NRAD_GRAVITY": "nrad_gravity",
    "MIN_ATTENUATION_PERIOD": "min_attenuation_period",
    "MAX_ATTENUATION_PERIOD": "max_attenuation_period",
}


@dataclass(frozen=True)
class MesherConfig:
    """
    Immutable set of parameters driving mesh construction.

    Parameters
    ----------
    nex_xi, nex_eta : int
        Number of surface elements along each side of a chunk
    nproc_xi, nproc_eta : int
        Process grid per chunk
    nchunks : int
        Number of chunks meshed (1, 2, 3 or 6); chunks are taken in
        ``Chunk`` order
    r_earth, r_moho, ..., r_central_cube : float
        Discontinuity radii in meters, outermost first
    ner : tuple of int
        Radial element count of each of the base layers
    depth_second_doubling, depth_third_doubling, depth_fourth_doubling : float
        Depths (m) of the mesh doublings
    implement_fourth_doubling : bool
        Whether the fourth doubling is instantiated
    include_central_cube : bool
        Mesh the central cube (global meshes only)
    couple_fluid_cmb, couple_fluid_icb : bool
        Whether fluid-solid coupling faces are paired at the CMB / ICB
    projection : str
        Cubed-sphere projection, ``'equiangular'`` or ``'equidistant'``
    ngll : int
        GLL points per element edge
    n_sls, attenuation_comp_resolution, attenuation_comp_maximum : int
        Standard linear solids, Q rounding digits and maximum Q
    min_attenuation_period, max_attenuation_period : float
        Absorption band (s)
    nrad_attenuation, nrad_gravity : int
        Lookup table sizes

    Examples
    --------
    >>> config = MesherConfig(nex_xi=32, nex_eta=32, nproc_xi=2, nproc_eta=2)
    >>> config.nex_per_proc_xi
    16
    """

    nex_xi: int = 64
    nex_eta: int = 64
    nproc_xi: int = 1
    nproc_eta: int = 1
    nchunks: int = C.NCHUNKS_MAX

    r_earth: float = C.R_EARTH
    r_moho: float = C.RMOHO
    r80: float = C.R80
    r220: float = C.R220
    r400: float = C.R400
    r600: float = C.R600
    r670: float = C.R670
    r771: float = C.R771
    r_topddoubleprime: float = C.RTOPDDOUBLEPRIME
    r_cmb: float = C.RCMB
    r_icb: float = C.RICB
    r_central_cube: float = C.R_CENTRAL_CUBE

    ner: Tuple[int, ...] = DEFAULT_NER

    depth_second_doubling: float = C.DEPTH_SECOND_DOUBLING_OPTIMAL
    depth_third_doubling: float = C.DEPTH_THIRD_DOUBLING_OPTIMAL
    depth_fourth_doubling: float = C.DEPTH_FOURTH_DOUBLING_OPTIMAL
    implement_fourth_doubling: bool = C.IMPLEMENT_FOURTH_DOUBLING

    include_central_cube: bool = True
    couple_fluid_cmb: bool = True
    couple_fluid_icb: bool = True

    projection: str = "equiangular"
    ngll: int = C.NGLLX

    n_sls: int = C.N_SLS
    attenuation_comp_resolution: int = C.ATTENUATION_COMP_RESOLUTION
    attenuation_comp_maximum: int = C.ATTENUATION_COMP_MAXIMUM
    min_attenuation_period: float = C.MIN_ATTENUATION_PERIOD
    max_attenuation_period: float = C.MAX_ATTENUATION_PERIOD
    nrad_attenuation: int = C.NRAD_ATTENUATION
    nrad_gravity: int = C.NRAD_GRAVITY

    def __post_init__(self):
        # tuples keep the structure hashable and immutable
        object.__setattr__(self, "ner", tuple(int(n) for n in self.ner))

        for name in ("nex_xi", "nex_eta", "nproc_xi", "nproc_eta", "ngll",
                     "n_sls", "nrad_attenuation", "nrad_gravity"):
            value = getattr(self, name)
            if int(value) != value or value < 1:
                raise ConfigurationError(
                    f"{name} must be a positive integer, got {value!r}"
                )
        if self.ngll < 2:
            raise ConfigurationError("ngll must be at least 2")
        if self.nrad_attenuation < 2 or self.nrad_gravity < 2:
            raise ConfigurationError("lookup tables need at least 2 entries")

        if self.nchunks not in SUPPORTED_NCHUNKS:
            raise ConfigurationError(
                f"nchunks must be one of {SUPPORTED_NCHUNKS}, got {self.nchunks}"
            )
        if self.projection not in PROJECTIONS:
            raise ConfigurationError(
                f"Unknown projection '{self.projection}'. "
                f"Available: {', '.join(PROJECTIONS)}"
            )

        if len(self.ner) != C.NB_LAYERS_SAMPLING_STUDY:
            raise ConfigurationError(
                f"ner must give {C.NB_LAYERS_SAMPLING_STUDY} radial element "
                f"counts, got {len(self.ner)}"
            )
        for name, n in zip(BASE_LAYER_NAMES, self.ner):
            if n < 1:
                raise ConfigurationError(
                    f"Base layer '{name}' needs at least one radial element"
                )

        radii = self.discontinuity_radii
        if not all(radii[i] > radii[i + 1] for i in range(len(radii) - 1)):
            raise ConfigurationError(
                "Discontinuity radii must be strictly decreasing from "
                f"r_earth to r_central_cube, got {list(radii)}"
            )
        if radii[-1] <= 0.0:
            raise ConfigurationError("r_central_cube must be positive")

        if self.attenuation_comp_resolution < 0:
            raise ConfigurationError("attenuation_comp_resolution must be >= 0")
        if self.attenuation_comp_maximum <= 0:
            raise ConfigurationError("attenuation_comp_maximum must be positive")
        if not 0.0 < self.min_attenuation_period < self.max_attenuation_period:
            raise ConfigurationError(
                "Absorption band needs 0 < min_attenuation_period "
                "< max_attenuation_period"
            )

    # ===== Derived quantities =====

    @property
    def discontinuity_radii(self) -> Tuple[float, ...]:
        """Base layer boundaries, surface first, central cube top last."""
        return (
            float(self.r_earth), float(self.r_moho), float(self.r80),
            float(self.r220), float(self.r400), float(self.r600),
            float(self.r670), float(self.r771),
            float(self.r_topddoubleprime), float(self.r_cmb),
            float(self.r_icb), float(self.r_central_cube),
        )

    @property
    def doubling_depths(self) -> Tuple[float, ...]:
        """Depths of the enabled doublings, in doubling order."""
        depths = [self.depth_second_doubling, self.depth_third_doubling]
        if self.implement_fourth_doubling:
            depths.append(self.depth_fourth_doubling)
        return tuple(float(d) for d in depths)

    @property
    def n_doublings(self) -> int:
        return len(self.doubling_depths)

    @property
    def nex_per_proc_xi(self) -> int:
        return self.nex_xi // self.nproc_xi

    @property
    def nex_per_proc_eta(self) -> int:
        return self.nex_eta // self.nproc_eta

    @property
    def nproc_per_chunk(self) -> int:
        return self.nproc_xi * self.nproc_eta

    @property
    def nproc_total(self) -> int:
        return self.nchunks * self.nproc_per_chunk

    @property
    def has_central_cube(self) -> bool:
        return self.include_central_cube and self.nchunks == C.NCHUNKS_MAX

    @property
    def table_end(self) -> float:
        """Outermost table radius, the surface, in units of 100 m."""
        return self.r_earth / C.TABLE_UNIT

    @property
    def table_step(self) -> float:
        """Radial step of the attenuation table in units of 100 m."""
        return self.table_end / (self.nrad_attenuation - 1)

    def describe(self) -> Dict[str, Any]:
        """
        Summarize the lateral resolution of the mesh.

        Returns
        -------
        dict
            Angular and metric surface element size, and the approximate
            shortest period resolved by the mesh (s)
        """
        width_deg = 90.0 / self.nex_xi
        return {
            "nchunks": self.nchunks,
            "nproc_total": self.nproc_total,
            "n_doublings": self.n_doublings,
            "element_width_deg": width_deg,
            "element_width_km": degrees2kilometers(
                width_deg, radius=self.r_earth / 1000.0
            ),
            "shortest_period_s": 256.0 / self.nex_xi * 17.0,
        }

    # ===== Loading =====

    @classmethod
    def from_dict(cls, params: Dict[str, Any]) -> "MesherConfig":
        """
        Build a configuration from a mapping of parameters.

        Keys may be field names or the upper-case Par_file names
        (``NEX_XI``, ``IMPLEMENT_FOURTH_DOUBLING``, ...).

        Raises
        ------
        ConfigurationError
            On unknown keys or invalid values
        """
        known = {f.name for f in fields(cls) if not f.name.startswith("_")}
        kwargs: Dict[str, Any] = {}
        for key, value in params.items():
            name = _PARAMETER_ALIASES.get(key, key)
            if name not in known:
                raise ConfigurationError(f"Unknown mesher parameter '{key}'")
            if name in kwargs:
                raise ConfigurationError(f"Parameter '{name}' given twice")
            kwargs[name] = value
        if "ner" in kwargs:
            kwargs["ner"] = tuple(kwargs["ner"])
        return cls(**kwargs)

    @classmethod
    def from_json(cls, path: str) -> "MesherConfig":
        """Load a configuration from a JSON file."""
        if not os.path.exists(path):
            raise FileNotFoundError(f"Configuration file not found: {path}")
        with open(path, "r") as f:
            params = json.load(f)
        logger.info(f"Loaded mesher configuration from {path}")
        return cls.from_dict(params)

    def to_dict(self) -> Dict[str, Any]:
        params = asdict(self)
        params["ner"] = list(self.ner)
        return params

    def replace(self, **changes: Any) -> "MesherConfig":
        """Return a copy with some parameters changed."""
        params = self.to_dict()
        params.update(changes)
        return MesherConfig.from_dict(params)
