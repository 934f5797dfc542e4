"""
Dosage calculation models.

Provides Pydantic schemas for:
- Patients and per-drug requests (validated request-scoped inputs)
- Drug records served by the drug catalog
- Per-drug dose results and the batch calculation response
- Species, dose source and dose range status enums
"""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


# ============================================================================
# Enums
# ============================================================================


class Species(str, Enum):
    """Patient species supported by the calculator."""
    DOG = "dog"
    CAT = "cat"


class DoseRangeStatus(str, Enum):
    """Classification of a computed dose against the drug's safe range."""
    WITHIN_RANGE = "within_range"
    BELOW_RANGE = "below_range"
    ABOVE_RANGE = "above_range"
    CONTRAINDICATED = "contraindicated"


class DoseSource(str, Enum):
    """
    Where the per-kg dose of a result came from.

    Precedence is CUSTOM > FELINE > DEFAULT.
    """
    CUSTOM = "custom"
    FELINE = "feline"
    DEFAULT = "default"


# ============================================================================
# Request-scoped inputs
# ============================================================================


class Patient(BaseModel):
    """Patient description, already normalized to kilograms."""
    weight_kg: float = Field(..., ge=0.1, le=1000, description="Body weight in kilograms")
    species: Species = Field(..., description="Patient species")

    model_config = {"frozen": True}


class DrugRequest(BaseModel):
    """One line item of a calculation batch."""
    drug_name: str = Field(..., min_length=1, description="Drug name as requested")
    concentration: Optional[float] = Field(None, gt=0, description="Preferred concentration value")
    route: Optional[str] = Field(None, description="Route override")
    frequency: Optional[str] = Field(None, description="Frequency override")
    custom_dose: Optional[float] = Field(None, gt=0, description="Custom dose per kg override")

    model_config = {"frozen": True}


# ============================================================================
# Drug catalog records
# ============================================================================


class DoseRange(BaseModel):
    """Safe per-kg dose range, bounds inclusive."""
    min: float = Field(..., ge=0)
    max: float = Field(..., ge=0)
    unit: str = Field("mg/kg")

    @model_validator(mode="after")
    def validate_bounds(self) -> "DoseRange":
        """Validate that min does not exceed max."""
        if self.min > self.max:
            raise ValueError(f"dose range min ({self.min}) exceeds max ({self.max})")
        return self

    model_config = {"frozen": True}


class SpeciesDose(BaseModel):
    """Species-specific override of the default dose and its range."""
    dose_per_kg: float = Field(..., gt=0)
    unit: str = Field("mg/kg")
    dose_range: DoseRange

    model_config = {"frozen": True}


class ConcentrationOption(BaseModel):
    """A formulation the drug is available in."""
    id: str
    label: str
    value: float = Field(..., ge=0, description="Concentration value; zero marks a broken record")
    unit: str = Field("mg/ml")
    default: bool = False

    model_config = {"frozen": True}


class DrugRecord(BaseModel):
    """Drug reference record, read-only to the calculator."""
    name: str = Field(..., min_length=1)
    category: str = Field(..., min_length=1)
    aliases: List[str] = Field(default_factory=list)
    default_dose_per_kg: float = Field(..., gt=0)
    dose_unit: str = Field("mg/kg")
    dose_range: DoseRange
    feline_dose: Optional[SpeciesDose] = None
    species: List[Species] = Field(default_factory=lambda: [Species.DOG, Species.CAT])
    default_route: str = Field("PO")
    default_frequency: str = Field("q24h")
    concentration_options: List[ConcentrationOption] = Field(default_factory=list)
    description: Optional[str] = None
    contraindications: List[str] = Field(default_factory=list)
    notes: Optional[str] = None

    @field_validator("concentration_options")
    @classmethod
    def validate_single_default(cls, v: List[ConcentrationOption]) -> List[ConcentrationOption]:
        """Validate at most one concentration option is flagged default."""
        if sum(1 for option in v if option.default) > 1:
            raise ValueError("at most one concentration option may be flagged default")
        return v

    model_config = {"frozen": True}


class DrugSummary(BaseModel):
    """Short catalog listing entry."""
    name: str
    category: str
    species: List[Species]
    default_route: str
    default_frequency: str

    @classmethod
    def from_record(cls, record: DrugRecord) -> "DrugSummary":
        return cls(
            name=record.name,
            category=record.category,
            species=record.species,
            default_route=record.default_route,
            default_frequency=record.default_frequency,
        )


class DrugSearchResponse(BaseModel):
    """Response body of the drug search endpoint."""
    drugs: List[DrugSummary]
    count: int
    categories: List[str]


# ============================================================================
# Results
# ============================================================================


class ConcentrationUsed(BaseModel):
    """Concentration a volume was computed from."""
    id: str
    label: str
    value: float
    unit: str


class DoseResult(BaseModel):
    """Dosing instructions for one resolved drug."""
    drug_name: str
    requested_name: str
    dose_source: DoseSource
    dose_per_kg: float
    total_dose: float
    dose_unit: str
    volume: Optional[float] = None
    volume_unit: Optional[str] = None
    concentration: Optional[ConcentrationUsed] = None
    route: str
    frequency: str
    instructions: str
    calculation_details: str
    dose_range: DoseRange
    dose_range_status: DoseRangeStatus
    warnings: List[str] = Field(default_factory=list)


class CalculationMetadata(BaseModel):
    """Batch-level bookkeeping."""
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    drugs_processed: int
    drugs_not_found: List[str] = Field(default_factory=list)
    catalog_version: Optional[str] = None


class CalculationResponse(BaseModel):
    """Response body of the calculate endpoint."""
    patient: Patient
    calculations: List[DoseResult]
    warnings: List[str] = Field(default_factory=list)
    metadata: CalculationMetadata
