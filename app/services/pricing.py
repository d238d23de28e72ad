"""Static price book and the arithmetic that turns a quantity plan into an estimate."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, List, Mapping, Optional

from app.schemas.estimate import (
    Estimate,
    EstimateMetadata,
    EstimatePricing,
    MaterialLineItem,
    ProjectAnalysis,
    ProjectInfo,
    ServiceLineItem,
)

logger = logging.getLogger(__name__)

MATERIAL_MARKUP = 1.25
TAX_RATE = 0.08


@dataclass(frozen=True)
class ServiceRate:
    rate: float
    unit: str
    description: str


@dataclass(frozen=True)
class MaterialCost:
    cost: float
    unit: str


SERVICE_RATES: Dict[str, ServiceRate] = {
    "lawn_installation": ServiceRate(0.75, "sq ft", "New lawn installation"),
    "lawn_seeding": ServiceRate(0.35, "sq ft", "Lawn seeding and prep"),
    "sod_installation": ServiceRate(1.25, "sq ft", "Sod installation"),
    "paver_installation": ServiceRate(12, "sq ft", "Paver installation with base prep"),
    "concrete_patio": ServiceRate(8, "sq ft", "Concrete patio installation"),
    "mulch_installation": ServiceRate(0.85, "sq ft", "Mulch installation"),
    "flower_bed_prep": ServiceRate(2.50, "sq ft", "Flower bed preparation"),
    "retaining_wall": ServiceRate(25, "linear ft", "Retaining wall installation"),
    "fence_installation": ServiceRate(35, "linear ft", "Fence installation"),
    "deck_staining": ServiceRate(2.75, "sq ft", "Deck cleaning and staining"),
    "drainage_repair": ServiceRate(85, "hour", "Drainage system repair"),
    "sprinkler_repair": ServiceRate(75, "hour", "Sprinkler system repair"),
    "tree_removal": ServiceRate(125, "hour", "Tree removal service"),
    "bush_trimming": ServiceRate(65, "hour", "Bush and shrub trimming"),
    "general_cleanup": ServiceRate(55, "hour", "General landscape cleanup"),
    "weed_removal": ServiceRate(45, "hour", "Weed removal and treatment"),
    "design_consultation": ServiceRate(150, "project", "Landscape design consultation"),
    "soil_testing": ServiceRate(75, "project", "Soil testing and analysis"),
    "permit_assistance": ServiceRate(200, "project", "Permit application assistance"),
}

MATERIAL_COSTS: Dict[str, MaterialCost] = {
    "sod": MaterialCost(0.45, "sq ft"),
    "mulch": MaterialCost(0.35, "sq ft"),
    "pavers": MaterialCost(4.50, "sq ft"),
    "concrete": MaterialCost(3.25, "sq ft"),
    "topsoil": MaterialCost(35, "cubic yard"),
    "gravel": MaterialCost(25, "cubic yard"),
    "sand": MaterialCost(20, "cubic yard"),
    "stone": MaterialCost(45, "cubic yard"),
    "lumber": MaterialCost(4.25, "linear ft"),
    "plants": MaterialCost(25, "each"),
}


def price_estimate(
    plan: Mapping[str, Any],
    analysis: ProjectAnalysis,
    *,
    today: Optional[date] = None,
) -> Estimate:
    """
    Price a quantity plan against the static rate tables.

    Plan entries referring to unknown service or material keys, or carrying a
    non-numeric quantity, are skipped with a warning rather than failing the
    whole estimate.
    """
    service_items: List[ServiceLineItem] = []
    labor_total = 0.0
    total_hours = 0.0
    for item in _entries(plan.get("serviceItems")):
        key = item.get("service")
        rate = SERVICE_RATES.get(key) if isinstance(key, str) else None
        quantity = _number(item.get("quantity"))
        if rate is None or quantity is None:
            logger.warning("Skipping unpriceable service item: %s", key)
            continue
        hours = _number(item.get("estimatedHours")) or 0.0
        subtotal = quantity * rate.rate
        labor_total += subtotal
        total_hours += hours
        service_items.append(
            ServiceLineItem(
                description=item.get("description") or rate.description,
                quantity=quantity,
                unit=item.get("unit") or rate.unit,
                rate=rate.rate,
                subtotal=round(subtotal, 2),
                hours=hours,
                notes=item.get("notes") or "",
            )
        )

    material_items: List[MaterialLineItem] = []
    material_total = 0.0
    for item in _entries(plan.get("materialItems")):
        key = item.get("material")
        material = MATERIAL_COSTS.get(key) if isinstance(key, str) else None
        quantity = _number(item.get("quantity"))
        if material is None or quantity is None:
            logger.warning("Skipping unpriceable material item: %s", key)
            continue
        subtotal = quantity * material.cost
        material_total += subtotal
        material_items.append(
            MaterialLineItem(
                description=item.get("description") or f"{key} ({material.unit})",
                quantity=quantity,
                unit=item.get("unit") or material.unit,
                cost=material.cost,
                subtotal=round(subtotal, 2),
            )
        )

    marked_up_materials = material_total * MATERIAL_MARKUP
    subtotal = labor_total + marked_up_materials
    tax = subtotal * TAX_RATE

    return Estimate(
        project_info=ProjectInfo(
            summary=analysis.project_summary,
            scope=analysis.project_scope,
            estimated_duration=analysis.estimated_duration,
        ),
        service_items=service_items,
        material_items=material_items,
        pricing=EstimatePricing(
            labor_subtotal=round(labor_total, 2),
            material_subtotal=round(material_total, 2),
            material_markup=round(marked_up_materials - material_total, 2),
            subtotal=round(subtotal, 2),
            tax=round(tax, 2),
            total=round(subtotal + tax, 2),
            total_hours=total_hours,
        ),
        metadata=EstimateMetadata(
            complexity=plan.get("projectComplexity"),
            assumptions=_strings(plan.get("assumptions")),
            recommended_measurements=_strings(plan.get("recommendedMeasurements")),
            created_date=(today or date.today()).isoformat(),
        ),
    )


def _entries(value: Any) -> List[Mapping[str, Any]]:
    if not isinstance(value, list):
        return []
    return [entry for entry in value if isinstance(entry, Mapping)]


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _strings(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(entry) for entry in value]


__all__ = ["MATERIAL_COSTS", "MATERIAL_MARKUP", "SERVICE_RATES", "TAX_RATE", "price_estimate"]
