"""
Region and material flag assignment.

Tags are a closed pair (region, flag): every flag belongs to exactly one
region and ``ElementTag`` refuses any other pairing. Flags select
material and attenuation properties downstream; they never change the
topology.
"""

from dataclasses import dataclass
from typing import Optional

import numpy as np

from .config import MesherConfig
from .constants import (
    AttenuationRegion,
    Chunk,
    CubeLocation,
    ElementFlag,
    Region,
)
from .layers import RadialLayer

_CUBE_FLAGS = {
    CubeLocation.INTERIOR: ElementFlag.IN_FICTITIOUS_CUBE,
    CubeLocation.LATERAL: ElementFlag.IN_CENTRAL_CUBE,
    CubeLocation.TOP: ElementFlag.TOP_CENTRAL_CUBE,
    CubeLocation.BOTTOM: ElementFlag.BOTTOM_CENTRAL_CUBE,
}


@dataclass(frozen=True)
class ElementTag:
    """Region and material flag of an element."""

    region: Region
    flag: ElementFlag

    def __post_init__(self):
        if self.flag.region is not self.region:
            raise ValueError(
                f"Flag {self.flag.name} belongs to region "
                f"{self.flag.region.name}, not {self.region.name}"
            )


class RegionAndFlagAssigner:
    """
    Deterministic ``(chunk, layer, radius[, cube location]) -> ElementTag``.

    Parameters
    ----------
    config : MesherConfig
        Provides the discontinuity radii

    Notes
    -----
    Radii are in meters and should be taken inside the element (its row
    mid-radius), never on a discontinuity. The chunk and layer do not
    change the result for a spherically symmetric mesh; they are part of
    the signature so that callers tag elements the same way everywhere.
    """

    def __init__(self, config: MesherConfig):
        self.r_moho = config.r_moho
        self.r220 = config.r220
        self.r670 = config.r670
        self.r80 = config.r80
        self.r_cmb = config.r_cmb
        self.r_icb = config.r_icb

    def region_of_radius(self, radius: float) -> Region:
        if radius > self.r_cmb:
            return Region.CRUST_MANTLE
        if radius > self.r_icb:
            return Region.OUTER_CORE
        return Region.INNER_CORE

    def assign(
        self,
        chunk: Chunk,
        layer: Optional[RadialLayer],
        radius: float,
        cube_location: Optional[CubeLocation] = None,
    ) -> ElementTag:
        if cube_location is not None:
            return ElementTag(Region.INNER_CORE, _CUBE_FLAGS[CubeLocation(cube_location)])
        if layer is not None and not (layer.inner_radius <= radius <= layer.outer_radius):
            raise ValueError(
                f"Radius {radius} m lies outside layer '{layer.name}'"
            )

        region = self.region_of_radius(radius)
        if region is Region.INNER_CORE:
            flag = ElementFlag.INNER_CORE_NORMAL
        elif region is Region.OUTER_CORE:
            flag = ElementFlag.OUTER_CORE_NORMAL
        elif radius > self.r_moho:
            flag = ElementFlag.CRUST
        elif radius > self.r220:
            flag = ElementFlag.MOHO_220
        elif radius > self.r670:
            flag = ElementFlag.R220_670
        else:
            flag = ElementFlag.MANTLE_NORMAL
        return ElementTag(region, flag)

    def attenuation_region(self, radius: float) -> Optional[AttenuationRegion]:
        """Attenuation region of a radius; None in the fluid outer core."""
        region = self.region_of_radius(radius)
        if region is Region.INNER_CORE:
            return AttenuationRegion.INNER_CORE
        if region is Region.OUTER_CORE:
            return None
        if radius <= self.r670:
            return AttenuationRegion.CMB_670
        if radius <= self.r220:
            return AttenuationRegion.R670_220
        if radius <= self.r80:
            return AttenuationRegion.R220_80
        return AttenuationRegion.R80_SURFACE

    def tag_slice(self, mesh):
        """
        Recompute the region and flag arrays of a built slice.

        Returns
        -------
        regions, flags : ndarray of int
        """
        regions = np.empty(mesh.nspec, dtype=np.int64)
        flags = np.empty(mesh.nspec, dtype=np.int64)
        for ispec in range(mesh.nspec):
            row = mesh.element_rows[ispec]
            if row < 0:
                tag = self.assign(mesh.chunk, None, 0.0,
                                  CubeLocation(mesh.cube_locations[ispec]))
            else:
                plan_row = mesh.plan.rows[row]
                tag = self.assign(mesh.chunk, mesh.plan.layers[plan_row.layer_index],
                                  plan_row.mid_radius)
            regions[ispec] = tag.region
            flags[ispec] = tag.flag
        return regions, flags
