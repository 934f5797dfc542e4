"""
Batch dosage calculation.

Runs every requested drug through DoseResolver and the range classifier
against one catalog snapshot. One bad line never blocks the others:
unknown drugs are collected into `drugs_not_found`, and lines whose dose
cannot be fully resolved carry a `calculation_error` warning.
"""

from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence

import structlog

from api.src.exceptions import DoseResolutionError
from api.src.models.dosage import (
    CalculationMetadata,
    CalculationResponse,
    ConcentrationUsed,
    DoseResult,
    DrugRecord,
    DrugRequest,
    Patient,
)
from api.src.repositories.drug_catalog import DrugCatalog
from api.src.services.dose_resolver import DoseResolver, ResolvedDose
from api.src.services.range_classifier import classify_dose
from api.src.services.unit_converter import convert_mass, mass_unit
from shared.metrics import DosageMetrics
from shared.tracing import trace_function

logger = structlog.get_logger(__name__)


def _fmt(value: float) -> str:
    return f"{value:g}"


def format_instructions(drug_name: str, resolved: ResolvedDose) -> str:
    """Human readable administration instruction built from computed fields."""
    dose = f"{_fmt(resolved.total_dose)} {resolved.dose_unit}"
    if resolved.volume is not None and resolved.concentration is not None:
        return (
            f"Administer {_fmt(resolved.volume)} {resolved.volume_unit} ({dose}) of "
            f"{drug_name} {resolved.concentration.label} {resolved.route} {resolved.frequency}"
        )
    return f"Administer {dose} of {drug_name} {resolved.route} {resolved.frequency}"


def format_calculation_details(weight_kg: float, resolved: ResolvedDose) -> str:
    """Formula trace of the computation, derived from the numeric result."""
    selection = resolved.selection
    details = (
        f"{_fmt(selection.dose_per_kg)} {selection.unit} x {_fmt(weight_kg)} kg = "
        f"{_fmt(resolved.total_dose)} {resolved.dose_unit}"
    )
    if resolved.volume is not None and resolved.concentration is not None:
        concentration = resolved.concentration
        total = f"{_fmt(resolved.total_dose)} {resolved.dose_unit}"
        concentration_mass = mass_unit(concentration.unit)
        if concentration_mass != resolved.dose_unit:
            converted = convert_mass(resolved.total_dose, resolved.dose_unit, concentration_mass)
            total = f"{_fmt(converted)} {concentration_mass}"
            details += f" = {total}"
        details += (
            f"; {total} / "
            f"{_fmt(concentration.value)} {concentration.unit} = "
            f"{_fmt(resolved.volume)} {resolved.volume_unit}"
        )
    return details


def not_found_warning(names: Sequence[str]) -> str:
    return f"The following drugs were not found: {', '.join(names)}"


class CalculationEngine:
    """
    Orchestrates dose resolution and range classification for a batch.

    The engine holds no per-request state; a calculation is a function of
    the patient, the drug requests and the catalog snapshot.
    """

    def __init__(
        self,
        catalog: DrugCatalog,
        resolver: Optional[DoseResolver] = None,
        metrics: Optional[DosageMetrics] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        """
        Initialize calculation engine.

        Args:
            catalog: Drug catalog the records are read from
            resolver: Dose resolver (default precedence chain if None)
            metrics: Optional metrics sink
            clock: Timestamp source for response metadata
        """
        self.catalog = catalog
        self.resolver = resolver or DoseResolver()
        self.metrics = metrics
        self.clock = clock

    @trace_function("calculate_batch")
    def calculate(self, patient: Patient, requests: Sequence[DrugRequest]) -> CalculationResponse:
        """
        Calculate doses for every requested drug.

        Args:
            patient: Validated patient
            requests: Drug lines in request order

        Returns:
            CalculationResponse with results in input order

        Raises:
            CatalogUnavailableError: If the catalog has no snapshot
        """
        snapshot = self.catalog.snapshot()
        results: List[DoseResult] = []
        not_found: List[str] = []

        for request in requests:
            record = snapshot.get(request.drug_name)
            if record is None:
                logger.info("drug_not_found", drug_name=request.drug_name)
                not_found.append(request.drug_name)
                self._count_line("not_found")
                continue
            results.append(self.calculate_line(patient, record, request))

        warnings: List[str] = []
        if not_found:
            warnings.append(not_found_warning(not_found))

        logger.info(
            "calculation_completed",
            species=patient.species.value,
            drugs_requested=len(requests),
            drugs_processed=len(results),
            drugs_not_found=len(not_found),
            catalog_version=snapshot.version,
        )
        if self.metrics:
            self.metrics.calculations.labels(
                outcome="partial" if not_found else "complete"
            ).inc()

        return CalculationResponse(
            patient=patient,
            calculations=results,
            warnings=warnings,
            metadata=CalculationMetadata(
                timestamp=self.clock(),
                drugs_processed=len(results),
                drugs_not_found=not_found,
                catalog_version=snapshot.version,
            ),
        )

    def calculate_line(self, patient: Patient, record: DrugRecord, request: DrugRequest) -> DoseResult:
        """Resolve and classify a single line whose record is known."""
        warnings: List[str] = []
        try:
            resolved = self.resolver.resolve(patient, record, request)
            outcome = "ok"
        except DoseResolutionError as e:
            logger.warning(
                "dose_resolution_failed",
                drug=record.name,
                code=e.code,
                error=e.message,
            )
            warnings.append(f"calculation_error: {e.message}")
            resolved = self.resolver.resolve_dose_only(patient, record, request)
            outcome = "calculation_error"

        warnings.extend(resolved.warnings)

        selection = resolved.selection
        classification = classify_dose(
            drug_name=record.name,
            dose_per_kg=selection.dose_per_kg,
            dose_unit=resolved.dose_unit,
            dose_range=selection.dose_range,
            species=patient.species,
            supported_species=record.species,
        )
        warnings.extend(classification.warnings)

        self._count_line(outcome)
        if self.metrics:
            self.metrics.dose_range_status.labels(status=classification.status.value).inc()

        concentration = None
        if resolved.concentration is not None:
            concentration = ConcentrationUsed(
                id=resolved.concentration.id,
                label=resolved.concentration.label,
                value=resolved.concentration.value,
                unit=resolved.concentration.unit,
            )

        return DoseResult(
            drug_name=record.name,
            requested_name=request.drug_name,
            dose_source=selection.source,
            dose_per_kg=selection.dose_per_kg,
            total_dose=resolved.total_dose,
            dose_unit=resolved.dose_unit,
            volume=resolved.volume,
            volume_unit=resolved.volume_unit,
            concentration=concentration,
            route=resolved.route,
            frequency=resolved.frequency,
            instructions=format_instructions(record.name, resolved),
            calculation_details=format_calculation_details(patient.weight_kg, resolved),
            dose_range=selection.dose_range,
            dose_range_status=classification.status,
            warnings=warnings,
        )

    def _count_line(self, outcome: str) -> None:
        if self.metrics:
            self.metrics.drug_lines.labels(outcome=outcome).inc()
