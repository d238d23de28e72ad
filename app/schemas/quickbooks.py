"""Request bodies for tenant-scoped QuickBooks operations."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field

from app.schemas.estimate import Estimate


class CustomerInfo(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip: Optional[str] = None


class CreateCustomerRequest(BaseModel):
    customer_info: CustomerInfo


class CreateEstimateRequest(BaseModel):
    customer_id: str = Field(..., alias="customerId")
    estimate_data: Estimate

    model_config = {"populate_by_name": True}


__all__ = ["CreateCustomerRequest", "CreateEstimateRequest", "CustomerInfo"]
