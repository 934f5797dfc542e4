"""
Unit tests for weight and dose unit conversions.
"""

import pytest

from api.src.services.unit_converter import (
    convert_mass,
    dose_volume,
    kg_to_lb,
    lb_to_kg,
    mass_unit,
    normalize_weight,
    to_kilograms,
    total_dose,
    volume_unit,
)


class TestWeightConversion:
    """Test kg/lb/g conversions"""

    def test_lb_to_kg(self):
        """Test pounds to kilograms rounds to 2 decimals"""
        assert lb_to_kg(10) == 4.54
        assert lb_to_kg(55.1) == 24.99

    def test_kg_to_lb(self):
        """Test kilograms to pounds rounds to 2 decimals"""
        assert kg_to_lb(25) == 55.12
        assert kg_to_lb(1) == 2.2

    @pytest.mark.parametrize("kilograms", [0.5, 4.2, 25.0, 68.3])
    def test_round_trip_within_rounding(self, kilograms):
        """Test kg -> lb -> kg stays within rounding tolerance"""
        assert abs(lb_to_kg(kg_to_lb(kilograms)) - kilograms) <= 0.01

    @pytest.mark.parametrize(
        "value,unit,expected",
        [
            (25, "kg", 25.0),
            (25, "KG", 25.0),
            (10, "lb", 4.54),
            (10, "lbs", 4.54),
            (4500, "g", 4.5),
        ],
    )
    def test_normalize_weight(self, value, unit, expected):
        """Test every accepted weight unit normalizes to kilograms"""
        assert normalize_weight(value, unit) == expected

    def test_to_kilograms_keeps_precision(self):
        assert to_kilograms(0.099, "kg") == 0.099
        assert to_kilograms(1000.004, "kg") == 1000.004
        assert to_kilograms(99, "g") == pytest.approx(0.099)
        assert normalize_weight(0.099, "kg") == 0.1

    def test_normalize_weight_unknown_unit(self):
        """Test unknown units are rejected"""
        with pytest.raises(ValueError, match="unsupported weight unit"):
            normalize_weight(10, "stone")


class TestMassUnits:
    """Test compound unit parsing and mass conversion"""

    def test_mass_unit(self):
        assert mass_unit("mg/kg") == "mg"
        assert mass_unit("MCG/kg") == "mcg"
        assert mass_unit("mg") == "mg"

    def test_volume_unit(self):
        assert volume_unit("mg/ml") == "ml"
        assert volume_unit("mg/tablet") == "tablet"
        assert volume_unit("mg") == "ml"

    def test_convert_mass(self):
        """Test g, mg and mcg convert through milligrams"""
        assert convert_mass(200, "mcg", "mg") == pytest.approx(0.2)
        assert convert_mass(1.5, "g", "mg") == pytest.approx(1500)
        assert convert_mass(5, "mg/kg", "mcg/kg") == pytest.approx(5000)
        assert convert_mass(7, "mg", "mg/ml") == 7

    def test_convert_mass_unknown_unit(self):
        with pytest.raises(ValueError, match="unsupported mass unit"):
            convert_mass(1, "IU", "mg")


class TestDoseArithmetic:
    """Test total dose and volume rounding"""

    def test_total_dose(self):
        assert total_dose(22, 25) == 550
        assert total_dose(0.1, 4.54) == 0.454

    def test_dose_volume(self):
        assert dose_volume(550, 250) == 2.2
        assert dose_volume(0.2, 0.3) == 0.67
