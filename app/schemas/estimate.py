"""Schemas for project analyses and priced landscaping estimates."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ProjectAnalysis(_CamelModel):
    """Structured reading of a customer conversation."""

    project_summary: str = ""
    services: List[str] = Field(default_factory=list)
    materials: List[str] = Field(default_factory=list)
    problem_areas: List[str] = Field(default_factory=list)
    project_scope: str = "unknown"
    estimated_duration: str = "TBD"
    notes: List[str] = Field(default_factory=list)


class ServiceLineItem(_CamelModel):
    description: str
    quantity: float
    unit: str
    rate: float
    subtotal: float
    hours: float = 0
    notes: str = ""


class MaterialLineItem(_CamelModel):
    description: str
    quantity: float
    unit: str
    cost: float
    subtotal: float


class EstimatePricing(_CamelModel):
    labor_subtotal: float = 0
    material_subtotal: float = 0
    material_markup: float = 0
    subtotal: float = 0
    tax: float = 0
    total: float = 0
    total_hours: float = 0


class ProjectInfo(_CamelModel):
    summary: Optional[str] = None
    scope: Optional[str] = None
    estimated_duration: Optional[str] = None


class EstimateMetadata(_CamelModel):
    complexity: Optional[str] = None
    assumptions: List[str] = Field(default_factory=list)
    recommended_measurements: List[str] = Field(default_factory=list)
    created_date: Optional[str] = None


class Estimate(_CamelModel):
    """Priced estimate, also accepted as the body for QuickBooks estimate creation."""

    project_info: Optional[ProjectInfo] = None
    service_items: List[ServiceLineItem] = Field(default_factory=list)
    material_items: List[MaterialLineItem] = Field(default_factory=list)
    pricing: Optional[EstimatePricing] = None
    metadata: Optional[EstimateMetadata] = None
    customer_name: Optional[str] = Field(None, alias="customer_name")
    customer_email: Optional[str] = Field(None, alias="customer_email")


class AnalyzeTextRequest(BaseModel):
    text: str = Field(..., min_length=1, description="Transcribed customer conversation.")
    customer_info: Dict[str, Any] = Field(default_factory=dict)


class AnalyzeAudioRequest(BaseModel):
    audio_b64: str = Field(..., min_length=1, description="Base64 encoded recording.")
    mime_type: str = Field("audio/webm", description="MIME type of the recording.")
    customer_info: Dict[str, Any] = Field(default_factory=dict)


class EstimateOnlyRequest(BaseModel):
    analysis: ProjectAnalysis
    measurements: Dict[str, Any] = Field(default_factory=dict)
    customer_info: Dict[str, Any] = Field(default_factory=dict)


__all__ = [
    "AnalyzeAudioRequest",
    "AnalyzeTextRequest",
    "Estimate",
    "EstimateMetadata",
    "EstimateOnlyRequest",
    "EstimatePricing",
    "MaterialLineItem",
    "ProjectAnalysis",
    "ProjectInfo",
    "ServiceLineItem",
]
