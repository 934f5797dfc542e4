"""
Dose resolution for a single drug line.

Selects the per-kg dose (custom, feline or default), the concentration,
and computes total dose, administration volume, route and frequency.
"""

import math
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

import structlog

from api.src.exceptions import DoseResolutionError
from api.src.models.dosage import (
    ConcentrationOption,
    DoseRange,
    DoseSource,
    DrugRecord,
    DrugRequest,
    Patient,
    Species,
)
from api.src.services import unit_converter

logger = structlog.get_logger(__name__)

NO_CONCENTRATION_AVAILABLE = "no_concentration_available"
INVALID_CONCENTRATION = "invalid_concentration"
INCOMPATIBLE_UNITS = "incompatible_units"


@dataclass(frozen=True)
class DoseSelection:
    """Per-kg dose picked for a line, tagged with where it came from."""
    source: DoseSource
    dose_per_kg: float
    unit: str
    dose_range: DoseRange


@dataclass(frozen=True)
class ConcentrationSelection:
    """Concentration picked for a line and any warning the pick produced."""
    option: ConcentrationOption
    warning: Optional[str] = None


@dataclass(frozen=True)
class ResolvedDose:
    """Everything DoseResolver computes for one line."""
    selection: DoseSelection
    total_dose: float
    dose_unit: str
    route: str
    frequency: str
    concentration: Optional[ConcentrationOption] = None
    volume: Optional[float] = None
    volume_unit: Optional[str] = None
    warnings: Sequence[str] = ()


DoseRule = Callable[[Patient, DrugRecord, DrugRequest], Optional[DoseSelection]]


def _applicable_range(patient: Patient, record: DrugRecord) -> DoseRange:
    if patient.species == Species.CAT and record.feline_dose is not None:
        return record.feline_dose.dose_range
    return record.dose_range


def custom_dose_rule(patient: Patient, record: DrugRecord, request: DrugRequest) -> Optional[DoseSelection]:
    if request.custom_dose is None:
        return None
    return DoseSelection(
        source=DoseSource.CUSTOM,
        dose_per_kg=request.custom_dose,
        unit=_applicable_range(patient, record).unit,
        dose_range=_applicable_range(patient, record),
    )


def feline_dose_rule(patient: Patient, record: DrugRecord, request: DrugRequest) -> Optional[DoseSelection]:
    if patient.species != Species.CAT or record.feline_dose is None:
        return None
    return DoseSelection(
        source=DoseSource.FELINE,
        dose_per_kg=record.feline_dose.dose_per_kg,
        unit=record.feline_dose.unit,
        dose_range=record.feline_dose.dose_range,
    )


def default_dose_rule(patient: Patient, record: DrugRecord, request: DrugRequest) -> Optional[DoseSelection]:
    return DoseSelection(
        source=DoseSource.DEFAULT,
        dose_per_kg=record.default_dose_per_kg,
        unit=record.dose_unit,
        dose_range=record.dose_range,
    )


# Highest precedence first
DOSE_RULES: List[DoseRule] = [custom_dose_rule, feline_dose_rule, default_dose_rule]


def select_dose(
    patient: Patient,
    record: DrugRecord,
    request: DrugRequest,
    rules: Sequence[DoseRule] = DOSE_RULES,
) -> DoseSelection:
    """Walk the precedence chain and return the first rule that applies."""
    for rule in rules:
        selection = rule(patient, record, request)
        if selection is not None:
            return selection
    raise DoseResolutionError("no_dose_available", f"No dose defined for {record.name}")


def select_concentration(record: DrugRecord, requested: Optional[float]) -> ConcentrationSelection:
    """
    Pick the concentration for a line.

    A requested value matching one of the record's options wins; otherwise
    the default-flagged option, or the first option when none is flagged.

    Raises:
        DoseResolutionError: If the record has no concentration options
    """
    options = record.concentration_options
    if not options:
        raise DoseResolutionError(
            NO_CONCENTRATION_AVAILABLE,
            f"No concentration available for {record.name}",
        )

    fallback = next((option for option in options if option.default), options[0])

    if requested is None:
        return ConcentrationSelection(option=fallback)

    for option in options:
        if math.isclose(option.value, requested, rel_tol=1e-9, abs_tol=1e-9):
            return ConcentrationSelection(option=option)

    return ConcentrationSelection(
        option=fallback,
        warning=(
            f"Requested concentration {requested:g} is not available for {record.name}; "
            f"using {fallback.label}"
        ),
    )


class DoseResolver:
    """Resolver turning a drug record and patient into a concrete dose."""

    def __init__(self, rules: Sequence[DoseRule] = DOSE_RULES):
        self.rules = list(rules)

    def resolve(self, patient: Patient, record: DrugRecord, request: DrugRequest) -> ResolvedDose:
        """
        Compute dose, volume, route and frequency for one line.

        Args:
            patient: Validated patient
            record: Catalog record of the requested drug
            request: The line item with its overrides

        Returns:
            ResolvedDose

        Raises:
            DoseResolutionError: If no usable concentration exists
        """
        selection = select_dose(patient, record, request, self.rules)
        dose_unit = unit_converter.mass_unit(selection.unit)
        total = unit_converter.total_dose(selection.dose_per_kg, patient.weight_kg)

        concentration = select_concentration(record, request.concentration)
        option = concentration.option
        if option.value <= 0:
            raise DoseResolutionError(
                INVALID_CONCENTRATION,
                f"Concentration {option.label} of {record.name} has no usable value",
            )

        try:
            total_in_concentration_unit = unit_converter.convert_mass(total, dose_unit, option.unit)
        except ValueError as e:
            raise DoseResolutionError(
                INCOMPATIBLE_UNITS,
                f"Cannot convert {dose_unit} dose of {record.name} to {option.unit}: {e}",
            ) from e

        volume = unit_converter.dose_volume(total_in_concentration_unit, option.value)

        logger.debug(
            "dose_resolved",
            drug=record.name,
            dose_source=selection.source.value,
            dose_per_kg=selection.dose_per_kg,
            total_dose=total,
            volume=volume,
        )

        return ResolvedDose(
            selection=selection,
            total_dose=total,
            dose_unit=dose_unit,
            route=request.route or record.default_route,
            frequency=request.frequency or record.default_frequency,
            concentration=option,
            volume=volume,
            volume_unit=unit_converter.volume_unit(option.unit),
            warnings=(concentration.warning,) if concentration.warning else (),
        )

    def resolve_dose_only(self, patient: Patient, record: DrugRecord, request: DrugRequest) -> ResolvedDose:
        """Dose without volume, for lines whose concentration failed to resolve."""
        selection = select_dose(patient, record, request, self.rules)
        return ResolvedDose(
            selection=selection,
            total_dose=unit_converter.total_dose(selection.dose_per_kg, patient.weight_kg),
            dose_unit=unit_converter.mass_unit(selection.unit),
            route=request.route or record.default_route,
            frequency=request.frequency or record.default_frequency,
        )
