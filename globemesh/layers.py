"""
Radial layering of the spherical mesh.

The planner starts from the base sampling layers bounded by the physical
discontinuities and splits the base layer holding each mesh doubling.
Every element row of the resulting plan is listed, outermost first, and
nodes are addressed radially by integer keys:

``radial_key = 8 * row_boundary + s``

where ``row_boundary`` counts row boundaries from the surface (0) down to
the top of the central cube (``n_rows``) and ``s`` in 0..7 locates
superbrick interior nodes in eighths of the row below that boundary.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np

from .config import BASE_LAYER_NAMES, MesherConfig
from .errors import ConfigurationError

logger = logging.getLogger(__name__)

DOUBLING_NAMES = ("second_doubling", "third_doubling", "fourth_doubling")

# subdivisions of a row in the radial key
KEY_SUBDIVISIONS = 8


@dataclass(frozen=True)
class RadialLayer:
    """
    Spherical shell of the mesh.

    Parameters
    ----------
    name : str
        Base layer name, or the doubling name for the lower part of a
        split base layer
    outer_radius, inner_radius : float
        Shell bounds (m)
    n_elements : int
        Number of element rows across the shell
    ratio : int
        Lateral element size in surface elements (1 at the surface,
        doubled below every doubling)
    is_doubling : bool
        True when the top row of the shell is a superbrick row
    first_row : int
        Index of the outermost row of the shell
    """

    name: str
    outer_radius: float
    inner_radius: float
    n_elements: int
    ratio: int
    is_doubling: bool
    first_row: int

    @property
    def thickness(self) -> float:
        return self.outer_radius - self.inner_radius

    @property
    def rows(self) -> range:
        return range(self.first_row, self.first_row + self.n_elements)


@dataclass(frozen=True)
class ElementRow:
    """One radial row of elements; superbrick rows sit on top of doubling layers."""

    index: int
    layer_index: int
    outer_radius: float
    inner_radius: float
    ratio: int
    is_superbrick: bool

    @property
    def top_key(self) -> int:
        return KEY_SUBDIVISIONS * self.index

    @property
    def bottom_key(self) -> int:
        return KEY_SUBDIVISIONS * (self.index + 1)

    @property
    def mid_radius(self) -> float:
        return 0.5 * (self.outer_radius + self.inner_radius)


class LayerPlan:
    """
    Immutable radial plan shared by every slice.

    Parameters
    ----------
    layers : sequence of RadialLayer
        Shells, outermost first
    rows : sequence of ElementRow
        Element rows, outermost first
    boundary_radii : ndarray
        Radii (m) of the ``n_rows + 1`` row boundaries
    """

    def __init__(self, layers, rows, boundary_radii):
        self.layers: Tuple[RadialLayer, ...] = tuple(layers)
        self.rows: Tuple[ElementRow, ...] = tuple(rows)
        radii = np.array(boundary_radii, dtype=float)
        radii.setflags(write=False)
        self.boundary_radii = radii

    def __repr__(self):
        return (
            f"LayerPlan(n_layers={self.n_layers}, n_rows={self.n_rows}, "
            f"n_doublings={self.n_doubling_layers}, max_ratio={self.max_ratio})"
        )

    @property
    def n_layers(self) -> int:
        return len(self.layers)

    @property
    def n_rows(self) -> int:
        return len(self.rows)

    @property
    def n_doubling_layers(self) -> int:
        return sum(1 for layer in self.layers if layer.is_doubling)

    @property
    def max_ratio(self) -> int:
        return max(layer.ratio for layer in self.layers)

    @property
    def bottom_key(self) -> int:
        """Radial key of the innermost row boundary (top of the central cube)."""
        return KEY_SUBDIVISIONS * self.n_rows

    @property
    def superbrick_rows(self) -> List[ElementRow]:
        return [row for row in self.rows if row.is_superbrick]

    def layer_index(self, name: str) -> int:
        for i, layer in enumerate(self.layers):
            if layer.name == name:
                return i
        raise KeyError(f"No layer named '{name}'")

    def layer_of_row(self, row: int) -> RadialLayer:
        return self.layers[self.rows[row].layer_index]

    def boundary_key(self, radius: float) -> int:
        """
        Radial key of the row boundary lying exactly at a radius.

        Raises
        ------
        KeyError
            If no row boundary lies at this radius
        """
        matches = np.nonzero(np.isclose(self.boundary_radii, radius,
                                        rtol=0.0, atol=1e-6))[0]
        if len(matches) == 0:
            raise KeyError(f"No row boundary at radius {radius} m")
        return KEY_SUBDIVISIONS * int(matches[0])

    def radius_of_key(self, key):
        """
        Radius (m) addressed by radial key(s).

        Keys inside a row are interpolated linearly between its bounds.
        Accepts an int or an integer array.
        """
        keys = np.asarray(key)
        if np.any(keys < 0) or np.any(keys > self.bottom_key):
            raise ValueError(
                f"Radial key outside [0, {self.bottom_key}]: {key}"
            )
        boundary, sub = np.divmod(keys, KEY_SUBDIVISIONS)
        below = np.minimum(boundary + 1, self.n_rows)
        top = self.boundary_radii[boundary]
        bottom = self.boundary_radii[below]
        radius = top + (bottom - top) * sub / KEY_SUBDIVISIONS
        if np.ndim(radius) == 0:
            return float(radius)
        return radius

    def ratio_of_key(self, key: int) -> int:
        """Lateral ratio of the row just below a key (the innermost row at the bottom)."""
        row = min(key // KEY_SUBDIVISIONS, self.n_rows - 1)
        return self.rows[row].ratio

    def summary(self) -> List[dict]:
        return [
            {
                "name": layer.name,
                "outer_radius_km": layer.outer_radius / 1000.0,
                "inner_radius_km": layer.inner_radius / 1000.0,
                "n_elements": layer.n_elements,
                "ratio": layer.ratio,
                "is_doubling": layer.is_doubling,
            }
            for layer in self.layers
        ]


class RadialLayerPlanner:
    """
    Plan the radial layers of the mesh from a configuration.

    Each doubling splits the base layer containing its radius at a row
    boundary of that layer. With ``x = (r_top - r_doubling) / cell`` the
    split falls after ``k = ceil(x - 0.5)`` rows (nearest boundary, ties
    toward the surface), clamped to ``[1, ner - 1]`` so that both parts
    keep at least one row.

    Parameters
    ----------
    config : MesherConfig
        Mesher configuration

    Examples
    --------
    >>> plan = RadialLayerPlanner(MesherConfig()).plan()
    >>> plan.n_layers
    14
    """

    def __init__(self, config: MesherConfig):
        self.config = config

    def _locate(self, radius: float, radii: Tuple[float, ...]) -> Optional[int]:
        for i in range(len(radii) - 1):
            if radii[i + 1] < radius <= radii[i]:
                return i
        return None

    def split_points(self) -> List[Tuple[int, int]]:
        """
        Base layer and row count above each doubling split.

        Returns
        -------
        list of (base_layer, k)
            One entry per enabled doubling, in doubling order

        Raises
        ------
        ConfigurationError
            For doublings out of order, outside the shell, in a base
            layer too thin to split, or sharing a radial cell
        """
        config = self.config
        radii = config.discontinuity_radii
        depths = config.doubling_depths

        for name_a, name_b, (da, db) in zip(DOUBLING_NAMES, DOUBLING_NAMES[1:],
                                           zip(depths, depths[1:])):
            if not db > da:
                raise ConfigurationError(
                    f"Doubling depths must increase: {name_b} ({db} m) is not "
                    f"deeper than {name_a} ({da} m)"
                )

        splits = []
        for name, depth in zip(DOUBLING_NAMES, depths):
            r_doubling = config.r_earth - depth
            base = self._locate(r_doubling, radii)
            if base is None or r_doubling >= radii[0]:
                raise ConfigurationError(
                    f"The {name.replace('_', ' ')} at depth {depth} m lies "
                    f"outside the meshed shell [{radii[-1]}, {radii[0]}] m"
                )
            ner = config.ner[base]
            if ner < 2:
                raise ConfigurationError(
                    f"Base layer '{BASE_LAYER_NAMES[base]}' has {ner} radial "
                    f"element(s) and cannot host the {name.replace('_', ' ')}"
                )
            cell = (radii[base] - radii[base + 1]) / ner
            x = (radii[base] - r_doubling) / cell
            k = min(max(int(math.ceil(x - 0.5)), 1), ner - 1)
            if (base, k) in splits:
                raise ConfigurationError(
                    f"Two doublings snap to the same radial cell boundary "
                    f"({k}) of base layer '{BASE_LAYER_NAMES[base]}'"
                )
            logger.debug(
                f"{name}: radius {r_doubling / 1000.0:.1f} km snapped to "
                f"row boundary {k} of '{BASE_LAYER_NAMES[base]}' (x = {x:.3f})"
            )
            splits.append((base, k))
        return splits

    def plan(self) -> LayerPlan:
        """Build the layer plan."""
        config = self.config
        radii = config.discontinuity_radii
        splits = self.split_points()

        layers: List[RadialLayer] = []
        rows: List[ElementRow] = []
        boundaries: List[float] = [radii[0]]
        ratio = 1

        for base, name in enumerate(BASE_LAYER_NAMES):
            ner = config.ner[base]
            # uniform cells of the base layer, kept bit-identical across splits
            cells = np.linspace(radii[base], radii[base + 1], ner + 1)
            cuts = sorted(k for b, k in splits if b == base)
            bounds = [0] + cuts + [ner]
            doubling_ids = sorted(
                (k, i) for i, (b, k) in enumerate(splits) if b == base
            )
            for part, (start, stop) in enumerate(zip(bounds, bounds[1:])):
                is_doubling = part > 0
                if is_doubling:
                    ratio *= 2
                    part_name = DOUBLING_NAMES[doubling_ids[part - 1][1]]
                else:
                    part_name = name
                layer = RadialLayer(
                    name=part_name,
                    outer_radius=float(cells[start]),
                    inner_radius=float(cells[stop]),
                    n_elements=stop - start,
                    ratio=ratio,
                    is_doubling=is_doubling,
                    first_row=len(rows),
                )
                for m in range(start, stop):
                    rows.append(ElementRow(
                        index=len(rows),
                        layer_index=len(layers),
                        outer_radius=float(cells[m]),
                        inner_radius=float(cells[m + 1]),
                        ratio=ratio,
                        is_superbrick=is_doubling and m == start,
                    ))
                    boundaries.append(float(cells[m + 1]))
                layers.append(layer)

        plan = LayerPlan(layers, rows, boundaries)
        logger.info(
            f"Planned {plan.n_layers} layers, {plan.n_rows} element rows, "
            f"{plan.n_doubling_layers} doublings (max ratio {plan.max_ratio})"
        )
        return plan
