"""Classification of a per-kg dose against a drug's safe range."""

import math
from dataclasses import dataclass, field
from typing import List, Sequence

from api.src.models.dosage import DoseRange, DoseRangeStatus, Species
from api.src.services.unit_converter import convert_mass, mass_unit


@dataclass(frozen=True)
class RangeClassification:
    status: DoseRangeStatus
    warnings: List[str] = field(default_factory=list)


def _format(value: float) -> str:
    return f"{value:g}"


def _at_bound(dose: float, bound: float) -> bool:
    # Unit conversion leaves float residue (9 mcg -> 0.009000000000000001 mg)
    return math.isclose(dose, bound, rel_tol=1e-9)


def classify_dose(
    drug_name: str,
    dose_per_kg: float,
    dose_unit: str,
    dose_range: DoseRange,
    species: Species,
    supported_species: Sequence[Species],
) -> RangeClassification:
    """
    Classify a per-kg dose.

    Contraindication is checked before the numeric comparison and always
    wins. Bounds are inclusive: a dose equal to min or max is within range.

    Args:
        drug_name: Canonical drug name, used in warnings
        dose_per_kg: Computed per-kg dose (not the total dose)
        dose_unit: Mass unit of the dose ("mg", "mcg", ...)
        dose_range: Applicable range for the species
        species: Patient species
        supported_species: Species the drug may be given to

    Returns:
        RangeClassification with status and warnings
    """
    if species not in supported_species:
        return RangeClassification(
            status=DoseRangeStatus.CONTRAINDICATED,
            warnings=[f"{drug_name} is contraindicated in {species.value}s"],
        )

    warnings: List[str] = []
    try:
        dose = convert_mass(dose_per_kg, dose_unit, mass_unit(dose_range.unit))
    except ValueError:
        # Unknown units on either side: compare as given
        dose = dose_per_kg
        warnings.append(
            f"Dose unit {dose_unit} of {drug_name} could not be converted to the range unit "
            f"{dose_range.unit}; compared without conversion"
        )

    bounds = f"{_format(dose_range.min)}-{_format(dose_range.max)} {dose_range.unit}"

    if dose < dose_range.min and not _at_bound(dose, dose_range.min):
        warnings.append(
            f"Dose of {_format(dose)} {dose_range.unit} for {drug_name} is below "
            f"the recommended range ({bounds})"
        )
        return RangeClassification(status=DoseRangeStatus.BELOW_RANGE, warnings=warnings)

    if dose > dose_range.max and not _at_bound(dose, dose_range.max):
        warnings.append(
            f"Dose of {_format(dose)} {dose_range.unit} for {drug_name} is above "
            f"the recommended range ({bounds})"
        )
        return RangeClassification(status=DoseRangeStatus.ABOVE_RANGE, warnings=warnings)

    return RangeClassification(status=DoseRangeStatus.WITHIN_RANGE, warnings=warnings)
