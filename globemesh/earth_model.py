"""
Reference Earth model provider.

This module provides a read-only class representing 1-D planet models
loaded from TauP ``.nd`` files, extended with the optional ``qp qs``
columns. It is the default provider of the attenuation and gravity
table builders, through ``properties_at``.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, List, Optional, Union

import numpy as np

logger = logging.getLogger(__name__)

PROPERTIES = ("vp", "vs", "rho", "qp", "qs")


class PlanetModel:
    """
    A read-only planet model loaded from a TauP .nd file.

    Data lines read ``depth vp vs rho [qp qs]`` (km, km/s, g/cm^3); lines
    holding a single word name the layer below them (``mantle``,
    ``outer-core``, ``inner-core``). Missing Q columns default to
    ``qp = qs = 0`` (no attenuation information).

    Parameters
    ----------
    nd_file_path : str
        Path to the .nd file
    name : str, optional
        Custom name for the model. If None, uses the filename or the
        model name from the .nd file header.

    Examples
    --------
    >>> prem = PlanetModel.from_standard_model("prem")
    >>> values = prem.properties_at(np.array([6371000.0, 0.0]))
    >>> values["vs"][1] > 0
    True
    """

    def __init__(self, nd_file_path: str, name: Optional[str] = None):
        if not os.path.exists(nd_file_path):
            raise FileNotFoundError(f"ND file not found: {nd_file_path}")

        self.nd_file_path = nd_file_path
        self._parse_nd_file()

        if name is not None:
            self.name = name
        elif self._parsed_name:
            self.name = self._parsed_name
        else:
            self.name = os.path.splitext(os.path.basename(nd_file_path))[0]

    def __repr__(self):
        return (
            f"PlanetModel(name='{self.name}', radius_km={self.radius}, "
            f"layers={list(self.layers)})"
        )

    @classmethod
    def from_standard_model(cls, model_name: str) -> "PlanetModel":
        """
        Load a model bundled in the package ``models`` directory.

        Raises
        ------
        ValueError
            If no bundled model has this name
        """
        models_dir = os.path.join(os.path.dirname(os.path.abspath(__file__)), "models")
        nd_file_path = os.path.join(models_dir, f"{model_name.lower()}.nd")
        if not os.path.exists(nd_file_path):
            raise ValueError(
                f"Standard model '{model_name}' not found. "
                f"Available models: {', '.join(cls.list_standard_models())}"
            )
        return cls(nd_file_path, name=model_name.upper())

    @classmethod
    def list_standard_models(cls) -> List[str]:
        models_dir = os.path.join(os.path.dirname(os.path.abspath(__file__)), "models")
        if not os.path.isdir(models_dir):
            return []
        return sorted(f[:-3] for f in os.listdir(models_dir) if f.endswith(".nd"))

    def _parse_nd_file(self) -> None:
        """
        Parse the .nd file.

        Each layer is stored as a dict of depth-sorted numpy arrays
        (``depth`` and every entry of ``PROPERTIES``) plus ``radius``
        (km). The first layer is named ``surface``; duplicate layer names
        raise ValueError.
        """
        self.radius = 0.0
        self._parsed_name = None
        current = "surface"
        columns = ("depth",) + PROPERTIES
        self.layers: Dict[str, Dict[str, Any]] = {current: {c: [] for c in columns}}

        with open(self.nd_file_path, "r") as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                if line.startswith("#"):
                    if "model:" in line.lower():
                        self._parsed_name = line.split(":", 1)[1].strip()
                    continue

                parts = line.split("#")[0].split()
                if self._is_discontinuity_label(parts):
                    current = parts[0]
                    if current in self.layers:
                        raise ValueError(
                            f"Duplicate layer name '{current}' in {self.nd_file_path}"
                        )
                    self.layers[current] = {c: [] for c in columns}
                    continue

                if len(parts) not in (4, 6):
                    raise ValueError(
                        f"Error parsing line {line_num} in {self.nd_file_path}: "
                        f"'{line}'. Expected format: depth vp vs rho [qp qs]"
                    )
                try:
                    values = [float(p) for p in parts]
                except ValueError as e:
                    raise ValueError(
                        f"Error parsing line {line_num} in {self.nd_file_path}: '{line}'"
                    ) from e
                if len(values) == 4:
                    values += [0.0, 0.0]
                for column, value in zip(columns, values):
                    self.layers[current][column].append(value)
                self.radius = max(self.radius, values[0])

        if self.radius <= 0:
            raise ValueError(f"Invalid radius in {self.nd_file_path}")

        for name in list(self.layers):
            layer = self.layers[name]
            if not layer["depth"]:
                del self.layers[name]
                continue
            # stable sort keeps both sides of a discontinuity in file order
            order = np.argsort(layer["depth"], kind="stable")
            for column in columns:
                layer[column] = np.asarray(layer[column], dtype=float)[order]
            layer["radius"] = self.radius - layer["depth"]

    @staticmethod
    def _is_discontinuity_label(parts: List[str]) -> bool:
        if len(parts) != 1:
            return False
        try:
            float(parts[0])
        except ValueError:
            return True
        return False

    # ========== Read-Only Property Access ========== #

    def layerwise_linear_interp(self, depth, prop: str = "vp") -> np.ndarray:
        """
        Interpolate a property at one or more depths (km).

        Layers are concatenated shallowest first, so at a discontinuity the
        shallower value precedes the deeper one and ``np.interp`` returns
        a piecewise profile with sharp jumps.
        """
        if prop not in PROPERTIES:
            raise ValueError(f"Unknown property: {prop}")
        depth = np.asarray(depth, dtype=float)
        if np.any((depth < -1e-9) | (depth > self.radius + 1e-9)):
            raise ValueError(
                f"One or more depths outside valid range [0, {self.radius}] km"
            )
        all_depths = np.concatenate([layer["depth"] for layer in self.layers.values()])
        all_values = np.concatenate([layer[prop] for layer in self.layers.values()])
        return np.interp(depth, all_depths, all_values)

    def get_property_at_radius(
        self, property_name: str, radius: Union[float, np.ndarray]
    ) -> Union[float, np.ndarray]:
        """Get property value at one or more radii (km)."""
        depth = self.radius - np.asarray(radius, dtype=float)
        values = self.layerwise_linear_interp(depth, prop=property_name)
        return float(values) if np.isscalar(radius) else values

    def properties_at(self, radius_m) -> Dict[str, np.ndarray]:
        """
        Model properties at radii given in meters, in SI units.

        Returns
        -------
        dict
            ``density`` (kg/m^3), ``vp`` and ``vs`` (m/s), ``q_mu`` and
            ``q_p`` (the ``.nd`` quality factors)
        """
        radius_km = np.asarray(radius_m, dtype=float) / 1000.0
        return {
            "density": self.get_property_at_radius("rho", radius_km) * 1000.0,
            "vp": self.get_property_at_radius("vp", radius_km) * 1000.0,
            "vs": self.get_property_at_radius("vs", radius_km) * 1000.0,
            "q_mu": self.get_property_at_radius("qs", radius_km),
            "q_p": self.get_property_at_radius("qp", radius_km),
        }

    # ========== Model Information ========== #

    def get_discontinuities(self) -> Dict[str, float]:
        """Radius (km) of the top of every named layer below the surface layer."""
        return {
            name: float(layer["radius"][0])
            for name, layer in self.layers.items()
            if name != "surface"
        }

    def get_info(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "radius_km": self.radius,
            "properties": list(PROPERTIES),
            "n_layers": len(self.layers),
            "discontinuities": self.get_discontinuities(),
        }
