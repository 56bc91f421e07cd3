"""Tests for globemesh.tables: attenuation and gravity lookup tables."""

import numpy as np
import pytest

from globemesh import (
    AttenuationTableBuilder,
    GravityTableBuilder,
    MesherConfig,
    ModelEvaluationError,
    PlanetModel,
)
from globemesh.constants import GRAV, TABLE_ATTENUATION
from globemesh.tables import fit_standard_linear_solids, table_radii


class UniformModel:
    """Homogeneous solid sphere, optionally with a bad sample."""

    def __init__(self, density=5000.0, q_mu=100.0, bad=None):
        self.density = density
        self.q_mu = q_mu
        self.bad = bad

    def properties_at(self, radius_m):
        radius_m = np.asarray(radius_m, dtype=float)
        values = {
            "density": np.full(radius_m.shape, self.density),
            "vp": np.full(radius_m.shape, 8000.0),
            "vs": np.full(radius_m.shape, 4500.0),
            "q_mu": np.full(radius_m.shape, self.q_mu),
            "q_p": np.full(radius_m.shape, 600.0),
        }
        if self.bad is not None:
            name, index, value = self.bad
            values[name][index] = value
        return values


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(scope="module")
def config():
    return MesherConfig(nrad_attenuation=2001, nrad_gravity=2001)


@pytest.fixture(scope="module")
def prem():
    return PlanetModel.from_standard_model("prem")


@pytest.fixture(scope="module")
def attenuation(config, prem):
    return AttenuationTableBuilder(config, prem).build()


@pytest.fixture(scope="module")
def gravity(config, prem):
    return GravityTableBuilder(config, prem).build()


# ---------------------------------------------------------------------------
# Sampling
# ---------------------------------------------------------------------------

class TestTableRadii:
    @pytest.mark.parametrize("n", [2, 11, 70000])
    def test_strictly_increasing_from_center_to_surface(self, n):
        radii = table_radii(n)
        assert len(radii) == n
        assert radii[0] == 0.0
        assert radii[-1] == TABLE_ATTENUATION == pytest.approx(63710.0)
        assert np.all(np.diff(radii) > 0)

    def test_tables_share_sampling(self, attenuation, gravity):
        np.testing.assert_array_equal(attenuation.radius, gravity.radius)
        assert attenuation.size == 2001

    def test_sampling_ends_at_configured_surface(self, prem):
        config = MesherConfig(r_earth=6368000.0, nrad_attenuation=50, nrad_gravity=50)
        table = AttenuationTableBuilder(config, prem).build()
        assert table.radius[-1] == pytest.approx(63680.0)
        assert table.step == pytest.approx(config.table_step)
        assert config.table_step == pytest.approx(63680.0 / 49)
        assert GravityTableBuilder(config, prem).build().radius[-1] == pytest.approx(63680.0)

    def test_provider_failure_names_the_table(self):
        class Broken:
            def properties_at(self, radius_m):
                raise RuntimeError("no data")

        with pytest.raises(ModelEvaluationError, match="attenuation table") as excinfo:
            AttenuationTableBuilder(MesherConfig(nrad_attenuation=10), Broken()).build()
        assert isinstance(excinfo.value.__cause__, RuntimeError)


# ---------------------------------------------------------------------------
# Attenuation
# ---------------------------------------------------------------------------

class TestStandardLinearSolids:
    def test_relaxation_times_span_the_band(self):
        tau_sigma, tau_epsilon = fit_standard_linear_solids(100.0, 3, 20.0, 1000.0)
        assert tau_sigma[0] == pytest.approx(1000.0 / (2 * np.pi))
        assert tau_sigma[-1] == pytest.approx(20.0 / (2 * np.pi))
        assert np.all(tau_epsilon >= tau_sigma)

    def test_fit_reproduces_q(self):
        tau_sigma, tau_epsilon = fit_standard_linear_solids(100.0, 3, 20.0, 1000.0)
        omega = 2 * np.pi / np.sqrt(20.0 * 1000.0)
        wt = omega * tau_sigma
        inverse_q = np.sum((tau_epsilon / tau_sigma - 1.0) * wt / (1.0 + wt ** 2))
        assert 1.0 / inverse_q == pytest.approx(100.0, rel=0.2)

    def test_lower_q_is_stronger(self):
        _, weak = fit_standard_linear_solids(600.0, 3, 20.0, 1000.0)
        _, strong = fit_standard_linear_solids(80.0, 3, 20.0, 1000.0)
        assert np.all(strong >= weak)
        assert np.any(strong > weak)

    def test_results_read_only(self):
        tau_sigma, _ = fit_standard_linear_solids(312.0, 3, 20.0, 1000.0)
        with pytest.raises(ValueError):
            tau_sigma[0] = 1.0


class TestAttenuationTable:
    def test_shapes(self, attenuation, config):
        assert attenuation.q_mu.shape == (2001,)
        assert attenuation.tau_sigma.shape == (config.n_sls,)
        assert attenuation.tau_epsilon.shape == (2001, config.n_sls)
        assert attenuation.scale_factor.shape == (2001,)

    def test_fluid_core_gets_maximum_q(self, attenuation, config):
        values = attenuation.lookup(2500.0e3)
        assert values["q_mu"] == config.attenuation_comp_maximum

    def test_mantle_q(self, attenuation):
        assert attenuation.lookup(4000.0e3)["q_mu"] == pytest.approx(312.0)
        assert attenuation.lookup(6360.0e3)["q_mu"] == pytest.approx(600.0)

    def test_q_capped(self):
        config = MesherConfig(nrad_attenuation=50, attenuation_comp_maximum=300)
        table = AttenuationTableBuilder(config, UniformModel(q_mu=1000.0)).build()
        assert np.all(table.q_mu == 300)

    def test_q_rounded(self):
        config = MesherConfig(nrad_attenuation=50, attenuation_comp_resolution=0)
        table = AttenuationTableBuilder(config, UniformModel(q_mu=84.6)).build()
        assert np.all(table.q_mu == 85.0)

    def test_scale_factor_below_one_for_long_period_band(self, attenuation):
        assert np.all(np.isfinite(attenuation.scale_factor))
        assert np.all(attenuation.scale_factor < 1.0)
        assert np.all(attenuation.scale_factor > 0.9)

    def test_read_only(self, attenuation):
        with pytest.raises(ValueError):
            attenuation.q_mu[0] = 1.0

    def test_linear_lookup(self, attenuation):
        values = attenuation.lookup(np.array([1000.0e3, 5000.0e3]), method="linear")
        assert values["tau_epsilon"].shape == (2, 3)

    def test_unknown_lookup_method(self, attenuation):
        with pytest.raises(ValueError, match="Unknown lookup"):
            attenuation.lookup(1000.0, method="cubic")

    @pytest.mark.parametrize("bad", [
        ("q_mu", 7, np.nan),
        ("q_mu", 0, -5.0),
        ("vs", 12, np.inf),
    ])
    def test_invalid_model_values(self, bad):
        config = MesherConfig(nrad_attenuation=50)
        with pytest.raises(ModelEvaluationError) as excinfo:
            AttenuationTableBuilder(config, UniformModel(bad=bad)).build()
        assert excinfo.value.index == bad[1]
        assert excinfo.value.radius == pytest.approx(table_radii(50)[bad[1]] * 100.0)
        assert f"table index {bad[1]}" in str(excinfo.value)


# ---------------------------------------------------------------------------
# Gravity
# ---------------------------------------------------------------------------

class TestGravityTable:
    def test_surface_gravity(self, gravity):
        assert gravity.g[-1] == pytest.approx(9.82, rel=0.02)

    def test_gravity_peaks_near_cmb(self, gravity):
        peak = gravity.radius[np.argmax(gravity.g)] * 100.0
        assert 3000.0e3 < peak < 4000.0e3

    def test_center(self, gravity):
        assert gravity.g[0] == 0.0
        assert gravity.dg_dr[0] == pytest.approx(4.0 * np.pi * GRAV * gravity.density[0] / 3.0)

    def test_uniform_sphere(self):
        config = MesherConfig(nrad_gravity=1001)
        table = GravityTableBuilder(config, UniformModel(density=5000.0)).build()
        r = table.radius * 100.0
        expected = 4.0 / 3.0 * np.pi * GRAV * 5000.0 * r
        # trapezoid error on the enclosed mass decays as (step / r)^2
        np.testing.assert_allclose(table.g[30:], expected[30:], rtol=1e-3)
        np.testing.assert_allclose(table.dg_dr[30:], 4.0 / 3.0 * np.pi * GRAV * 5000.0, rtol=1e-2)

    def test_nearest_lookup(self, gravity):
        values = gravity.lookup(gravity.radius[100] * 100.0)
        assert values["g"] == gravity.g[100]

    @pytest.mark.parametrize("value", [np.nan, 0.0, -1.0])
    def test_invalid_density(self, value):
        config = MesherConfig(nrad_gravity=50)
        with pytest.raises(ModelEvaluationError) as excinfo:
            GravityTableBuilder(config, UniformModel(bad=("density", 20, value))).build()
        assert excinfo.value.index == 20

    def test_missing_property(self):
        class Empty:
            def properties_at(self, radius_m):
                return {}

        with pytest.raises(ModelEvaluationError, match="does not provide"):
            GravityTableBuilder(MesherConfig(nrad_gravity=10), Empty()).build()
