"""
Weight and dose unit conversions.

All functions are pure. Weight results are rounded to 2 decimals, matching
the precision patients are reported with.
"""

from typing import Dict

LB_TO_KG = 0.453592
KG_TO_LB = 2.20462

# Mass units expressed in milligrams
MASS_UNITS_IN_MG: Dict[str, float] = {
    "g": 1000.0,
    "mg": 1.0,
    "mcg": 0.001,
    "ug": 0.001,
    "µg": 0.001,
}

WEIGHT_UNITS = {"kg", "g", "lb", "lbs"}


def lb_to_kg(pounds: float) -> float:
    return round(pounds * LB_TO_KG, 2)


def kg_to_lb(kilograms: float) -> float:
    return round(kilograms * KG_TO_LB, 2)


def to_kilograms(value: float, unit: str) -> float:
    """
    Convert a body weight into kilograms without rounding.

    Args:
        value: Weight value
        unit: One of kg, g, lb, lbs (case-insensitive)

    Raises:
        ValueError: If the unit is not a known weight unit
    """
    unit_key = unit.strip().lower()
    if unit_key == "kg":
        return value
    if unit_key in ("lb", "lbs"):
        return value * LB_TO_KG
    if unit_key == "g":
        return value / 1000.0
    raise ValueError(f"unsupported weight unit: {unit}")


def normalize_weight(value: float, unit: str) -> float:
    """Body weight in kilograms, rounded to 2 decimals."""
    return round(to_kilograms(value, unit), 2)


def mass_unit(unit: str) -> str:
    """Mass part of a compound unit ("mg/kg" -> "mg", "mcg/ml" -> "mcg")."""
    return unit.split("/", 1)[0].strip().lower()


def volume_unit(concentration_unit: str) -> str:
    """Administration unit of a concentration ("mg/ml" -> "ml", "mg/tablet" -> "tablet")."""
    parts = concentration_unit.split("/", 1)
    if len(parts) != 2 or not parts[1].strip():
        return "ml"
    return parts[1].strip().lower()


def convert_mass(value: float, from_unit: str, to_unit: str) -> float:
    """
    Convert a mass between g, mg and mcg.

    Raises:
        ValueError: If either unit is unknown
    """
    source = mass_unit(from_unit)
    target = mass_unit(to_unit)
    if source == target:
        return value
    try:
        return value * MASS_UNITS_IN_MG[source] / MASS_UNITS_IN_MG[target]
    except KeyError as e:
        raise ValueError(f"unsupported mass unit: {e.args[0]}") from e


def total_dose(dose_per_kg: float, weight_kg: float) -> float:
    return round(dose_per_kg * weight_kg, 4)


def dose_volume(total: float, concentration: float) -> float:
    """
    Administration volume for a dose at the given concentration.

    Caller guarantees a non-zero concentration in the dose's mass unit.
    """
    return round(total / concentration, 2)
