"""
Request validation for dosage calculations.

Checks the raw patient and drug list of a calculation request and either
builds the validated Patient and DrugRequest objects or collects every
violation found. Validation never stops at the first error so clients can
fix a request in one round trip.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import structlog

from api.src.exceptions import ValidationFailedError
from api.src.models.dosage import DrugRequest, Patient, Species
from api.src.services.unit_converter import WEIGHT_UNITS, to_kilograms

logger = structlog.get_logger(__name__)

SPECIES_ALIASES: Dict[str, Species] = {
    "dog": Species.DOG,
    "canine": Species.DOG,
    "cat": Species.CAT,
    "feline": Species.CAT,
}


@dataclass
class ValidationResult:
    """Outcome of validating one request."""
    patient: Optional[Patient] = None
    drugs: List[DrugRequest] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors and self.patient is not None


def _is_number(value: Any) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


def normalize_species(value: Any) -> Optional[Species]:
    """Map a raw species value onto a Species, or None if unrecognized."""
    if isinstance(value, Species):
        return value
    if not isinstance(value, str):
        return None
    return SPECIES_ALIASES.get(value.strip().lower())


class RequestValidator:
    """Validator for calculation request bodies."""

    def __init__(
        self,
        weight_min_kg: float = 0.1,
        weight_max_kg: float = 1000.0,
        max_drugs: int = 50,
    ):
        """
        Initialize validator.

        Args:
            weight_min_kg: Smallest accepted weight after conversion
            weight_max_kg: Largest accepted weight after conversion
            max_drugs: Largest accepted drug list
        """
        self.weight_min_kg = weight_min_kg
        self.weight_max_kg = weight_max_kg
        self.max_drugs = max_drugs

    def validate(self, payload: Any) -> ValidationResult:
        """
        Validate a raw request body.

        Args:
            payload: Decoded JSON body

        Returns:
            ValidationResult with either patient and drugs, or errors
        """
        result = ValidationResult()

        if not isinstance(payload, dict):
            result.errors.append("Request body must be a JSON object")
            return result

        raw_patient = payload.get("patient")
        if not isinstance(raw_patient, dict):
            result.errors.append("patient is required and must be an object")
            weight_kg, species = None, None
        else:
            weight_kg = self._validate_weight(raw_patient, result.errors)
            species = self._validate_species(raw_patient, result.errors)

        drugs = self._validate_drugs(payload.get("drugs"), result.errors)

        if result.errors:
            logger.info("request_validation_failed", error_count=len(result.errors))
            return result

        result.patient = Patient(weight_kg=weight_kg, species=species)
        result.drugs = drugs
        return result

    def validate_or_raise(self, payload: Any) -> Tuple[Patient, List[DrugRequest]]:
        """
        Validate a raw request body.

        Raises:
            ValidationFailedError: Carrying every violation found
        """
        result = self.validate(payload)
        if not result.ok:
            raise ValidationFailedError(result.errors)
        return result.patient, result.drugs

    # ------------------------------------------------------------------------
    # Patient
    # ------------------------------------------------------------------------

    def _validate_weight(self, raw_patient: Dict[str, Any], errors: List[str]) -> Optional[float]:
        if "weight_kg" in raw_patient:
            value, unit = raw_patient["weight_kg"], "kg"
        elif "weight_lb" in raw_patient or "weight_lbs" in raw_patient:
            value = raw_patient.get("weight_lb", raw_patient.get("weight_lbs"))
            unit = "lb"
        elif "weight" in raw_patient:
            value = raw_patient["weight"]
            unit = raw_patient.get("weight_unit", "kg")
        else:
            errors.append("patient.weight_kg is required")
            return None

        if not _is_number(value):
            errors.append("patient.weight_kg must be a number")
            return None

        if not isinstance(unit, str) or unit.strip().lower() not in WEIGHT_UNITS:
            errors.append(
                f"patient.weight_unit must be one of {sorted(WEIGHT_UNITS)}, got: {unit}"
            )
            return None

        weight_kg = to_kilograms(float(value), unit)
        if not self.weight_min_kg <= weight_kg <= self.weight_max_kg:
            errors.append(
                f"patient.weight_kg must be between {self.weight_min_kg} and "
                f"{self.weight_max_kg} kg, got: {round(weight_kg, 6)}"
            )
            return None
        return round(weight_kg, 2)

    def _validate_species(self, raw_patient: Dict[str, Any], errors: List[str]) -> Optional[Species]:
        raw_species = raw_patient.get("species")
        if raw_species is None or (isinstance(raw_species, str) and not raw_species.strip()):
            errors.append("patient.species is required")
            return None

        species = normalize_species(raw_species)
        if species is None:
            errors.append(f"patient.species must be 'dog' or 'cat', got: {raw_species}")
        return species

    # ------------------------------------------------------------------------
    # Drugs
    # ------------------------------------------------------------------------

    def _validate_drugs(self, raw_drugs: Any, errors: List[str]) -> List[DrugRequest]:
        if not isinstance(raw_drugs, list) or not raw_drugs:
            errors.append("drugs must be a non-empty array")
            return []

        if len(raw_drugs) > self.max_drugs:
            errors.append(f"drugs may contain at most {self.max_drugs} entries, got: {len(raw_drugs)}")
            return []

        drugs: List[DrugRequest] = []
        for index, entry in enumerate(raw_drugs):
            drug = self._validate_drug(index, entry, errors)
            if drug is not None:
                drugs.append(drug)
        return drugs

    def _validate_drug(self, index: int, entry: Any, errors: List[str]) -> Optional[DrugRequest]:
        prefix = f"drugs[{index}]"
        if not isinstance(entry, dict):
            errors.append(f"{prefix} must be an object")
            return None

        line_errors: List[str] = []

        drug_name = entry.get("drug_name")
        if not isinstance(drug_name, str) or not drug_name.strip():
            line_errors.append(f"{prefix}.drug_name is required")

        for numeric_field in ("concentration", "custom_dose"):
            value = entry.get(numeric_field)
            if value is not None and (not _is_number(value) or value <= 0):
                line_errors.append(f"{prefix}.{numeric_field} must be a positive number")

        for text_field in ("route", "frequency"):
            value = entry.get(text_field)
            if value is not None and (not isinstance(value, str) or not value.strip()):
                line_errors.append(f"{prefix}.{text_field} must be a non-empty string")

        if line_errors:
            errors.extend(line_errors)
            return None

        return DrugRequest(
            drug_name=drug_name.strip(),
            concentration=entry.get("concentration"),
            route=entry["route"].strip() if entry.get("route") else None,
            frequency=entry["frequency"].strip() if entry.get("frequency") else None,
            custom_dose=entry.get("custom_dose"),
        )
