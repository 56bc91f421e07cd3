"""Tests for globemesh.earth_model: parsing, interpolation, SI properties."""

import numpy as np
import pytest

from globemesh import PlanetModel

STEP_MODEL = """\
# Model: STEP
0.0 6.0 3.5 2.7
10.0 6.0 3.5 2.7
10.0 8.0 4.5 3.3
100.0 8.0 4.5 3.3
core
100.0 5.0 0.0 10.0
200.0 5.0 0.0 10.0
"""


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(scope="module")
def prem():
    return PlanetModel.from_standard_model("prem")


@pytest.fixture
def step_model(tmp_path):
    """Four-column model with constant layers."""
    path = tmp_path / "step.nd"
    path.write_text(STEP_MODEL)
    return PlanetModel(str(path))


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

class TestLoading:
    def test_from_standard_model_loads(self, prem):
        assert isinstance(prem, PlanetModel)
        assert prem.name == "PREM"
        assert prem.radius == pytest.approx(6371.0)

    def test_from_standard_model_unknown_raises(self):
        with pytest.raises(ValueError, match="not found"):
            PlanetModel.from_standard_model("__nonexistent_model__")

    def test_list_standard_models(self):
        models = PlanetModel.list_standard_models()
        assert isinstance(models, list)
        assert "prem" in models

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            PlanetModel(str(tmp_path / "none.nd"))

    def test_header_name(self, step_model):
        assert step_model.name == "STEP"

    def test_custom_name(self, tmp_path):
        path = tmp_path / "step.nd"
        path.write_text(STEP_MODEL)
        assert PlanetModel(str(path), name="mine").name == "mine"

    def test_four_columns_default_q_to_zero(self, step_model):
        assert np.all(step_model.layers["surface"]["qs"] == 0.0)
        assert np.all(step_model.layers["core"]["qp"] == 0.0)

    def test_bad_line_raises(self, tmp_path):
        path = tmp_path / "bad.nd"
        path.write_text("0.0 6.0 3.5\n")
        with pytest.raises(ValueError, match="Expected format"):
            PlanetModel(str(path))

    def test_duplicate_layer_name_raises(self, tmp_path):
        path = tmp_path / "dup.nd"
        path.write_text(STEP_MODEL + "core\n200.0 5.0 0.0 10.0\n")
        with pytest.raises(ValueError, match="Duplicate layer"):
            PlanetModel(str(path))


# ---------------------------------------------------------------------------
# Properties
# ---------------------------------------------------------------------------

class TestProperties:
    @pytest.mark.parametrize("depth,prop,expected", [
        (5.0, "vp", 6.0),
        (50.0, "vs", 4.5),
        (150.0, "rho", 10.0),
        (200.0, "vs", 0.0),
    ])
    def test_step_profile(self, step_model, depth, prop, expected):
        assert step_model.layerwise_linear_interp(depth, prop) == pytest.approx(expected)

    def test_jump_across_discontinuity(self, step_model):
        above, below = step_model.layerwise_linear_interp(np.array([9.999, 10.001]), "vp")
        assert above == pytest.approx(6.0)
        assert below == pytest.approx(8.0)

    def test_out_of_range_depth(self, step_model):
        with pytest.raises(ValueError):
            step_model.layerwise_linear_interp(250.0, "vp")

    def test_unknown_property(self, step_model):
        with pytest.raises(ValueError, match="Unknown property"):
            step_model.layerwise_linear_interp(5.0, "density")

    def test_radius_scalar_and_array(self, step_model):
        assert isinstance(step_model.get_property_at_radius("vp", 195.0), float)
        values = step_model.get_property_at_radius("vp", np.array([195.0, 50.0]))
        np.testing.assert_allclose(values, [6.0, 5.0])

    def test_properties_at_si_units(self, prem):
        values = prem.properties_at(np.array([6371.0e3, 5000.0e3, 2500.0e3, 0.0]))
        assert set(values) == {"density", "vp", "vs", "q_mu", "q_p"}
        assert values["density"][0] == pytest.approx(2600.0)
        assert values["vs"][0] == pytest.approx(3200.0)
        assert values["vs"][2] == 0.0
        assert values["q_mu"][2] == 0.0
        assert values["q_mu"][1] == pytest.approx(312.0)
        assert values["q_p"][0] == pytest.approx(1456.0)
        assert values["density"][3] == pytest.approx(13088.48)

    def test_discontinuities(self, prem):
        discontinuities = prem.get_discontinuities()
        assert discontinuities["mantle"] == pytest.approx(6346.6)
        assert discontinuities["outer-core"] == pytest.approx(3480.0)
        assert discontinuities["inner-core"] == pytest.approx(1221.5)

    def test_info(self, prem):
        info = prem.get_info()
        assert info["name"] == "PREM"
        assert info["n_layers"] == 4
        assert "qs" in info["properties"]
