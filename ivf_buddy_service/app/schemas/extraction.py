# app/schemas/extraction.py
"""
The single structured shape a protocol arrives in, whether it came from the
document extraction pipeline or from manual intake. Everything downstream
trusts these models; malformed offsets and times are rejected here.
"""
from datetime import date
from typing import Annotated, Any, Dict, List, Literal, Optional

from pydantic import AfterValidator, Field, field_validator

from app.schemas.models import AppointmentType, CamelModel, MilestoneType, TimeOfDay
from app.utils.local_time import is_valid_hhmm

EXTRACTION_SCHEMA_VERSION = 1

ConfidenceLevel = Literal["high", "medium", "low"]
DosageUnit = Literal["IU", "mg", "mcg", "mL", "pills", "patches", "units"]
Frequency = Literal[
    "once_daily", "twice_daily", "three_times_daily",
    "every_other_day", "as_needed", "single_dose",
]
Route = Literal["subcutaneous", "intramuscular", "oral", "vaginal", "patch", "nasal"]


def _check_time(v: Optional[str]) -> Optional[str]:
    if v is None or v == "":
        return None
    if not is_valid_hhmm(v):
        raise ValueError("exactTime must be HH:MM (24h)")
    return v


ExactTime = Annotated[Optional[str], AfterValidator(_check_time)]


class MedicationExtraction(CamelModel):
    name: str = Field(..., min_length=1)
    dosage_amount: Optional[float] = Field(default=None, gt=0)
    dosage_unit: Optional[DosageUnit] = None
    dosage: Optional[str] = None  # free text when amount/unit could not be split
    frequency: Frequency = "once_daily"
    route: Optional[Route] = None
    start_day_offset: int = Field(..., ge=0)
    duration_days: int = Field(..., ge=1)
    time_of_day: Optional[TimeOfDay] = None
    exact_time: ExactTime = None
    instructions: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("medication name is required")
        return v


class AppointmentExtraction(CamelModel):
    type: AppointmentType
    day_offset: int = Field(..., ge=0)
    exact_time: ExactTime = None
    notes: Optional[str] = None
    fasting: bool = False
    critical: bool = False  # exact time matters to the minute (trigger, retrieval, transfer)


class MilestoneExtraction(CamelModel):
    type: MilestoneType
    day_offset: int = Field(..., ge=0)
    label: Optional[str] = None
    details: Optional[str] = None


class Confidence(CamelModel):
    cycle_start_date: ConfidenceLevel = "low"
    medications: ConfidenceLevel = "low"
    appointments: ConfidenceLevel = "low"


class ProtocolExtraction(CamelModel):
    schema_version: Literal[1] = EXTRACTION_SCHEMA_VERSION
    cycle_start_date: Optional[date] = None
    medications: List[MedicationExtraction] = Field(default_factory=list)
    appointments: List[AppointmentExtraction] = Field(default_factory=list)
    milestones: List[MilestoneExtraction] = Field(default_factory=list)
    notes: Optional[str] = None
    confidence: Confidence = Field(default_factory=Confidence)
    missing_fields: List[str] = Field(default_factory=list)


def extraction_json_schema() -> Dict[str, Any]:
    """JSON schema handed to the extraction pipeline."""
    return ProtocolExtraction.model_json_schema(by_alias=True)
