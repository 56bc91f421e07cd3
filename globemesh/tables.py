"""
Radius-indexed attenuation and gravity lookup tables.

Both tables sample ``linspace(0, r_earth_km * 10, N)``, i.e. radii in
units of 100 m from the center to the configured surface, and are frozen once
built. They depend only on the reference Earth model, never on the
slice decomposition, and can be built alongside the mesh.

The Earth model is any object exposing ``properties_at(radius_m)`` that
accepts a numpy array of radii (m) and returns a mapping with
``density`` (kg/m^3), ``vp``, ``vs`` (m/s) and ``q_mu`` arrays.
"""

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Dict, Tuple

import numpy as np
from scipy.integrate import cumulative_trapezoid
from scipy.optimize import nnls

from .config import MesherConfig
from .constants import GRAV, REFERENCE_FREQUENCY, TABLE_ATTENUATION, TABLE_UNIT
from .errors import ModelEvaluationError

logger = logging.getLogger(__name__)

# frequencies sampled across the absorption band by the fit
N_FIT_FREQUENCIES = 100


def _frozen(array) -> np.ndarray:
    array = np.array(array, dtype=float)
    array.setflags(write=False)
    return array


def table_radii(n: int, end: float = TABLE_ATTENUATION) -> np.ndarray:
    """Table sampling: ``n`` radii from 0 to ``end`` (100 m units)."""
    return np.linspace(0.0, end, n)


@lru_cache(maxsize=None)
def fit_standard_linear_solids(
    q: float, n_sls: int, min_period: float, max_period: float
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Fit standard linear solids to a constant quality factor.

    The relaxation times ``tau_sigma`` are log-spaced across the
    absorption band; the non-negative strengths ``y`` minimize the misfit
    of ``sum_l y_l w tau_l / (1 + w^2 tau_l^2)`` to ``1 / q``.

    Parameters
    ----------
    q : float
        Target quality factor (already rounded and capped)
    n_sls : int
        Number of standard linear solids
    min_period, max_period : float
        Absorption band (s)

    Returns
    -------
    tau_sigma, tau_epsilon : ndarray, shape (n_sls,)
        Stress and strain relaxation times (s)
    """
    f_min, f_max = 1.0 / max_period, 1.0 / min_period
    tau_sigma = 1.0 / (2.0 * np.pi * np.logspace(np.log10(f_min), np.log10(f_max), n_sls))
    omega = 2.0 * np.pi * np.logspace(np.log10(f_min), np.log10(f_max), N_FIT_FREQUENCIES)
    wt = omega[:, None] * tau_sigma[None, :]
    design = wt / (1.0 + wt ** 2)
    strengths, _ = nnls(design, np.full(len(omega), 1.0 / q))
    tau_epsilon = tau_sigma * (1.0 + strengths)
    return _frozen(tau_sigma), _frozen(tau_epsilon)


def _evaluate(model, radii_m: np.ndarray, fields, table: str) -> Dict[str, np.ndarray]:
    try:
        values = model.properties_at(radii_m)
    except Exception as e:
        raise ModelEvaluationError(
            f"Earth model failed to evaluate the {table} table over radii "
            f"{radii_m[0]:.1f}-{radii_m[-1]:.1f} m: {e}"
        ) from e
    out = {}
    for name in fields:
        if name not in values:
            raise ModelEvaluationError(f"Earth model does not provide '{name}'")
        array = np.asarray(values[name], dtype=float)
        if array.shape != radii_m.shape:
            raise ModelEvaluationError(
                f"Earth model returned {array.shape} values of '{name}' "
                f"for {radii_m.shape} radii"
            )
        out[name] = array
    return out


def _first_bad(mask: np.ndarray):
    bad = np.nonzero(mask)[0]
    return int(bad[0]) if len(bad) else None


@dataclass(frozen=True, eq=False)
class _RadiusTable:
    radius: np.ndarray

    @property
    def size(self) -> int:
        return len(self.radius)

    @property
    def step(self) -> float:
        return float(self.radius[1] - self.radius[0])

    def index_of(self, radius_m) -> np.ndarray:
        """Nearest table index of radius (m)."""
        position = np.asarray(radius_m, dtype=float) / TABLE_UNIT / self.step
        return np.clip(np.rint(position), 0, self.size - 1).astype(np.int64)

    def _sample(self, values: np.ndarray, radius_m, method: str):
        if method == "nearest":
            return values[self.index_of(radius_m)]
        if method == "linear":
            x = np.asarray(radius_m, dtype=float) / TABLE_UNIT
            if values.ndim == 1:
                return np.interp(x, self.radius, values)
            return np.stack(
                [np.interp(x, self.radius, column) for column in values.T], axis=-1
            )
        raise ValueError(f"Unknown lookup method '{method}'. Use 'nearest' or 'linear'")


@dataclass(frozen=True, eq=False)
class AttenuationTable(_RadiusTable):
    """
    Attenuation lookup table.

    Attributes
    ----------
    radius : ndarray, shape (n,)
        Radii in units of 100 m, strictly increasing from 0
    q_mu : ndarray, shape (n,)
        Rounded and capped shear quality factor
    tau_sigma : ndarray, shape (n_sls,)
        Stress relaxation times shared by every entry (s)
    tau_epsilon : ndarray, shape (n, n_sls)
        Strain relaxation times (s)
    scale_factor : ndarray, shape (n,)
        Modulus scaling from the reference frequency to the band center
    """

    q_mu: np.ndarray
    tau_sigma: np.ndarray
    tau_epsilon: np.ndarray
    scale_factor: np.ndarray

    def lookup(self, radius_m, method: str = "nearest") -> Dict[str, np.ndarray]:
        return {
            "q_mu": self._sample(self.q_mu, radius_m, method),
            "tau_epsilon": self._sample(self.tau_epsilon, radius_m, method),
            "scale_factor": self._sample(self.scale_factor, radius_m, method),
        }


@dataclass(frozen=True, eq=False)
class GravityTable(_RadiusTable):
    """
    Gravity lookup table: density (kg/m^3), gravity g (m/s^2) and its
    radial derivative dg/dr (1/s^2) at each table radius.
    """

    density: np.ndarray
    g: np.ndarray
    dg_dr: np.ndarray

    def lookup(self, radius_m, method: str = "nearest") -> Dict[str, np.ndarray]:
        return {
            "density": self._sample(self.density, radius_m, method),
            "g": self._sample(self.g, radius_m, method),
            "dg_dr": self._sample(self.dg_dr, radius_m, method),
        }


class AttenuationTableBuilder:
    """
    Build the attenuation table from an Earth model.

    Parameters
    ----------
    config : MesherConfig
        Table size, N_SLS, Q resolution and maximum, absorption band
    model : object
        Earth model provider
    """

    def __init__(self, config: MesherConfig, model):
        self.config = config
        self.model = model

    def round_q(self, q_mu: np.ndarray, vs: np.ndarray) -> np.ndarray:
        """Round Q to the configured resolution and cap it; fluids get the cap."""
        config = self.config
        q = np.round(q_mu, config.attenuation_comp_resolution)
        q = np.where((q <= 0.0) | (vs <= 0.0), config.attenuation_comp_maximum, q)
        return np.minimum(q, config.attenuation_comp_maximum)

    def build(self) -> AttenuationTable:
        """
        Evaluate the model at every table radius and fit the solids.

        Raises
        ------
        ModelEvaluationError
            If the model fails to evaluate, or returns non-finite or
            negative Q, or non-finite velocities
        """
        config = self.config
        radius = table_radii(config.nrad_attenuation, config.table_end)
        radii_m = radius * TABLE_UNIT
        values = _evaluate(self.model, radii_m, ("vs", "q_mu"), "attenuation")

        for name, valid in (("q_mu", np.isfinite(values["q_mu"]) & (values["q_mu"] >= 0.0)),
                            ("vs", np.isfinite(values["vs"]) & (values["vs"] >= 0.0))):
            index = _first_bad(~valid)
            if index is not None:
                raise ModelEvaluationError(
                    f"Invalid {name} {values[name][index]!r}",
                    radius=float(radii_m[index]), index=index,
                )

        q = self.round_q(values["q_mu"], values["vs"])
        unique_q, inverse = np.unique(q, return_inverse=True)
        tau_sigma = None
        fitted = np.empty((len(unique_q), config.n_sls))
        for k, value in enumerate(unique_q):
            tau_sigma, fitted[k] = fit_standard_linear_solids(
                float(value), config.n_sls,
                config.min_attenuation_period, config.max_attenuation_period,
            )

        f_center = 1.0 / np.sqrt(config.min_attenuation_period * config.max_attenuation_period)
        scale = 1.0 + 2.0 * np.log(f_center / REFERENCE_FREQUENCY) / (np.pi * q)

        logger.info(
            f"Attenuation table: {len(radius)} entries, "
            f"{len(unique_q)} distinct Q fits"
        )
        return AttenuationTable(
            radius=_frozen(radius),
            q_mu=_frozen(q),
            tau_sigma=tau_sigma,
            tau_epsilon=_frozen(fitted[inverse.ravel()]),
            scale_factor=_frozen(scale),
        )


class GravityTableBuilder:
    """
    Build the gravity table by integrating the model density.

    ``M(r) = int_0^r 4 pi s^2 rho(s) ds``, ``g = G M / r^2`` and
    ``dg/dr = 4 pi G rho - 2 g / r`` (``4 pi G rho / 3`` at the center).
    """

    def __init__(self, config: MesherConfig, model):
        self.config = config
        self.model = model

    def build(self) -> GravityTable:
        """
        Raises
        ------
        ModelEvaluationError
            If the model fails to evaluate, or returns a non-finite or
            non-positive density
        """
        radius = table_radii(self.config.nrad_gravity, self.config.table_end)
        radii_m = radius * TABLE_UNIT
        rho = _evaluate(self.model, radii_m, ("density",), "gravity")["density"]

        index = _first_bad(~(np.isfinite(rho) & (rho > 0.0)))
        if index is not None:
            raise ModelEvaluationError(
                f"Invalid density {rho[index]!r}",
                radius=float(radii_m[index]), index=index,
            )

        mass = cumulative_trapezoid(4.0 * np.pi * radii_m ** 2 * rho, radii_m, initial=0.0)
        g = np.zeros_like(radii_m)
        dg_dr = np.empty_like(radii_m)
        inside = radii_m > 0.0
        g[inside] = GRAV * mass[inside] / radii_m[inside] ** 2
        dg_dr[inside] = 4.0 * np.pi * GRAV * rho[inside] - 2.0 * g[inside] / radii_m[inside]
        dg_dr[~inside] = 4.0 * np.pi * GRAV * rho[~inside] / 3.0

        logger.info(
            f"Gravity table: {len(radius)} entries, surface g = {g[-1]:.3f} m/s^2"
        )
        return GravityTable(
            radius=_frozen(radius),
            density=_frozen(rho),
            g=_frozen(g),
            dg_dr=_frozen(dg_dr),
        )
