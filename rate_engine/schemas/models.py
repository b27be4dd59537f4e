from datetime import datetime
from typing import Any, Dict, List, Literal, Optional
import re

from pydantic import BaseModel, Field, field_validator

SourceKind = Literal["remote_spreadsheet", "uploaded_file", "builtin"]
ValidationStatus = Literal["pending", "valid", "invalid"]
IssueType = Literal[
    "INVALID_RANGE",
    "GAP",
    "OVERLAP",
    "MISSING_ZONE",
    "MISSING_COLUMN",
    "INVALID_POSTAL_CODE",
    "INVALID_VALUE",
    "SOURCE_UNAVAILABLE",
]


def normalize_postal_code(value: Any) -> str:
    """Digits only, left-padded to 8 characters."""
    if value is None:
        return ""
    if isinstance(value, float):
        if value != value:  # NaN
            return ""
        value = int(value)
    digits = re.sub(r"\D", "", str(value))
    if not digits:
        return ""
    return digits.zfill(8)


class Zone(BaseModel):
    """Named rating region owned by the administrative subsystem"""
    zone_code: str
    state: str
    zone_type: Literal["capital", "interior"] = "capital"
    postal_start: str
    postal_end: str
    delivery_days: int = Field(5, gt=0, description="Default economic lead time")
    express_delivery_days: Optional[int] = Field(None, gt=0, description="Default express lead time")

    @field_validator("postal_start", "postal_end", mode="before")
    @classmethod
    def pad_postal(cls, v):
        normalized = normalize_postal_code(v)
        if len(normalized) != 8:
            raise ValueError("Postal code must have 8 digits")
        return normalized

    @property
    def name(self) -> str:
        return f"{self.state} - {self.zone_type} ({self.zone_code})"


class PricingTable(BaseModel):
    """A registered pricing data source"""
    id: str
    name: str
    source_kind: SourceKind
    location: Optional[str] = Field(None, description="URL, storage key or local path")
    is_active: bool = True
    validation_status: ValidationStatus = "pending"
    validation_issues: List["ValidationIssue"] = Field(default_factory=list)
    last_validated_at: Optional[datetime] = None
    registration_order: int = 0
    cnpj: Optional[str] = None

    # Commercial rules
    cubic_meter_kg_equivalent: Optional[float] = Field(None, gt=0, description="Volumetric factor in kg per m3")
    max_length_cm: Optional[float] = Field(None, gt=0)
    max_width_cm: Optional[float] = Field(None, gt=0)
    max_height_cm: Optional[float] = Field(None, gt=0)
    excess_weight_threshold_kg: Optional[float] = Field(None, gt=0)
    excess_weight_charge_per_kg: Optional[float] = Field(None, gt=0)
    ad_valorem_percentage: Optional[float] = Field(None, ge=0)
    gris_percentage: Optional[float] = Field(None, ge=0)

    @property
    def has_excess_rule(self) -> bool:
        return bool(self.excess_weight_threshold_kg and self.excess_weight_charge_per_kg)


class PriceTier(BaseModel):
    """One normalized pricing row"""
    postal_start: Optional[str] = None
    postal_end: Optional[str] = None
    weight_min: float
    weight_max: float
    price: float
    lead_time_days: int
    zone_label: Optional[str] = None
    express_price: Optional[float] = None
    express_lead_time_days: Optional[int] = None
    sheet: Optional[str] = None
    row_index: Optional[int] = None


class Quote(BaseModel):
    """Resolved quote; derived, never persisted"""
    economic_price: float
    express_price: float
    economic_days: int
    express_days: int
    zone: str
    zone_name: str
    table_id: str
    table_name: str
    cnpj: Optional[str] = None
    applied_weight: Optional[float] = None
    cubic_weight: Optional[float] = None
    ad_valorem_value: Optional[float] = None
    gris_value: Optional[float] = None
    excess_weight_charge: Optional[float] = None


class ValidationIssue(BaseModel):
    """One actionable structural defect"""
    type: IssueType
    description: str
    group: Optional[str] = None
    sheet: Optional[str] = None
    row_index: Optional[int] = None
    field: Optional[str] = None
    value: Optional[Any] = None
    weight_min: Optional[float] = None
    weight_max: Optional[float] = None


class ValidationSummary(BaseModel):
    total_rows: int = 0
    valid_rows: int = 0
    invalid_rows: int = 0
    missing_zones: List[str] = Field(default_factory=list)


class ValidationResult(BaseModel):
    """Verdict of a table audit"""
    table_id: Optional[str] = None
    is_valid: bool
    issues: List[ValidationIssue] = Field(default_factory=list)
    summary: ValidationSummary = Field(default_factory=ValidationSummary)
    validated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def status(self) -> ValidationStatus:
        return "valid" if self.is_valid else "invalid"

    def issues_of(self, issue_type: str) -> List[ValidationIssue]:
        return [issue for issue in self.issues if issue.type == issue_type]


class QuoteRequest(BaseModel):
    """Schema for a quote request"""
    destination_postal_code: str = Field(..., description="Destination CEP, with or without mask")
    weight_kg: float = Field(..., gt=0)
    quantity: int = Field(1, ge=1)
    length_cm: Optional[float] = Field(None, gt=0)
    width_cm: Optional[float] = Field(None, gt=0)
    height_cm: Optional[float] = Field(None, gt=0)
    merchandise_value: Optional[float] = Field(None, ge=0)

    def options(self) -> Dict[str, Optional[float]]:
        return {
            "length_cm": self.length_cm,
            "width_cm": self.width_cm,
            "height_cm": self.height_cm,
            "merchandise_value": self.merchandise_value,
        }


PricingTable.model_rebuild()
