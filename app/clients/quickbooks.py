"""
Tenant-scoped client for the QuickBooks Online accounting API.

Every call resolves a valid credential through the token lifecycle manager
first, so callers never handle access tokens or refreshes themselves. A
downstream 401 is surfaced as ``UpstreamAuthError`` and is not retried.
"""

from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

import httpx

from app.core.config import QuickBooksSettings
from app.core.errors import NotConnectedError, UpstreamAuthError, UpstreamRequestError
from app.models.credential import TenantId
from app.schemas.estimate import Estimate
from app.schemas.quickbooks import CustomerInfo

if TYPE_CHECKING:
    from app.services.token_lifecycle import TokenLifecycleManager

logger = logging.getLogger(__name__)

MINOR_VERSION = "65"
ESTIMATE_VALIDITY_DAYS = 30
SERVICES_ITEM_REF = {"value": "1", "name": "Services"}
MATERIALS_ITEM_REF = {"value": "2", "name": "Materials"}


class QuickBooksClient:
    """Perform accounting operations against a tenant's QuickBooks company."""

    def __init__(
        self,
        token_manager: "TokenLifecycleManager",
        settings: QuickBooksSettings,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._tokens = token_manager
        self._settings = settings
        self._transport = transport

    async def get_company_info(self, tenant_id: TenantId) -> Dict[str, Any]:
        return await self._request(tenant_id, "GET", "companyinfo/{realm_id}")

    async def query(self, tenant_id: TenantId, statement: str) -> Dict[str, Any]:
        """Run a QuickBooks SQL-like query and return the raw ``QueryResponse`` body."""
        return await self._request(tenant_id, "GET", "query", params={"query": statement})

    async def upsert_customer(
        self, tenant_id: TenantId, customer: CustomerInfo
    ) -> Tuple[Dict[str, Any], bool]:
        """
        Find a customer by email and update it, or create a new one.

        Returns the QuickBooks ``Customer`` object and whether it was created.
        """
        existing: Optional[Dict[str, Any]] = None
        if customer.email:
            escaped = customer.email.replace("'", "\\'")
            result = await self.query(
                tenant_id,
                f"SELECT * FROM Customer WHERE PrimaryEmailAddr = '{escaped}'",
            )
            matches = result.get("QueryResponse", {}).get("Customer") or []
            if matches:
                existing = matches[0]

        if existing is not None:
            body: Dict[str, Any] = {
                "Id": existing["Id"],
                "SyncToken": existing.get("SyncToken", "0"),
                "sparse": True,
            }
            if customer.name:
                body["Name"] = customer.name
            if customer.phone:
                body["PrimaryPhone"] = {"FreeFormNumber": customer.phone}
            payload = await self._request(tenant_id, "POST", "customer", json=body)
            logger.info("Updated QuickBooks customer %s for tenant %s.", existing["Id"], tenant_id)
            return payload.get("Customer", {}), False

        body = {"Name": customer.name or customer.email or "New Customer"}
        if customer.email:
            body["PrimaryEmailAddr"] = {"Address": customer.email}
        if customer.phone:
            body["PrimaryPhone"] = {"FreeFormNumber": customer.phone}
        if customer.address:
            body["BillAddr"] = {
                "Line1": customer.address,
                "City": customer.city,
                "CountrySubDivisionCode": customer.state,
                "PostalCode": customer.zip,
            }
        payload = await self._request(tenant_id, "POST", "customer", json=body)
        created = payload.get("Customer", {})
        logger.info("Created QuickBooks customer %s for tenant %s.", created.get("Id"), tenant_id)
        return created, True

    async def create_estimate(
        self, tenant_id: TenantId, customer_id: str, estimate: Estimate
    ) -> Dict[str, Any]:
        body = build_estimate_payload(customer_id, estimate)
        payload = await self._request(tenant_id, "POST", "estimate", json=body)
        created = payload.get("Estimate", {})
        logger.info("Created QuickBooks estimate %s for tenant %s.", created.get("Id"), tenant_id)
        return created

    async def list_estimates(
        self, tenant_id: TenantId, *, max_results: int = 20
    ) -> List[Dict[str, Any]]:
        result = await self.query(
            tenant_id,
            f"SELECT * FROM Estimate ORDER BY TxnDate DESC MAXRESULTS {max_results}",
        )
        return result.get("QueryResponse", {}).get("Estimate") or []

    async def list_invoices(
        self, tenant_id: TenantId, *, max_results: int = 20
    ) -> List[Dict[str, Any]]:
        result = await self.query(
            tenant_id,
            f"SELECT * FROM Invoice ORDER BY TxnDate DESC MAXRESULTS {max_results}",
        )
        return result.get("QueryResponse", {}).get("Invoice") or []

    async def _request(
        self,
        tenant_id: TenantId,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, str]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        credential = await self._tokens.get_valid_credential(tenant_id)
        if credential is None:
            raise NotConnectedError("QuickBooks not connected for this account")

        realm_id = credential.external_account_id
        endpoint = path.format(realm_id=realm_id)
        url = f"{self._settings.api_base_url}/v3/company/{realm_id}/{endpoint}"
        headers = {
            "Authorization": f"Bearer {credential.access_token}",
            "Accept": "application/json",
        }
        query_params = {"minorversion": MINOR_VERSION, **(params or {})}

        try:
            async with httpx.AsyncClient(
                timeout=self._settings.http_timeout_seconds, transport=self._transport
            ) as client:
                response = await client.request(
                    method, url, headers=headers, params=query_params, json=json
                )
        except httpx.HTTPError as exc:
            logger.error("QuickBooks %s %s failed for tenant %s: %s", method, endpoint, tenant_id, exc)
            raise UpstreamRequestError(f"QuickBooks request failed: {exc}") from exc

        if response.status_code == 401:
            raise UpstreamAuthError(
                "QuickBooks rejected the access token.", details=_response_details(response)
            )
        if response.is_error:
            details = _response_details(response)
            logger.error(
                "QuickBooks %s %s returned %s for tenant %s: %s",
                method,
                endpoint,
                response.status_code,
                tenant_id,
                details,
            )
            raise UpstreamRequestError(
                f"QuickBooks API error ({response.status_code}).", details=details
            )

        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamRequestError("QuickBooks returned a non-JSON body.") from exc


def build_estimate_payload(
    customer_id: str, estimate: Estimate, *, today: Optional[date] = None
) -> Dict[str, Any]:
    """Translate a priced estimate into a QuickBooks ``Estimate`` request body."""
    today = today or date.today()
    lines: List[Dict[str, Any]] = []

    for item in estimate.service_items:
        lines.append(
            _sales_line(
                amount=item.subtotal,
                description=(
                    f"{item.description} - {_fmt(item.quantity)} {item.unit} "
                    f"@ ${_fmt(item.rate)}/{item.unit}"
                ),
                item_ref=SERVICES_ITEM_REF,
                quantity=item.quantity,
                unit_price=item.rate,
            )
        )

    for material in estimate.material_items:
        lines.append(
            _sales_line(
                amount=material.subtotal,
                description=f"{material.description} - {_fmt(material.quantity)} {material.unit}",
                item_ref=MATERIALS_ITEM_REF,
                quantity=material.quantity,
                unit_price=material.cost,
            )
        )

    summary = estimate.project_info.summary if estimate.project_info else None
    if not lines:
        total = estimate.pricing.total if estimate.pricing else 0
        lines.append(
            _sales_line(
                amount=total,
                description=summary or "Landscaping Services",
                item_ref=SERVICES_ITEM_REF,
                quantity=1,
                unit_price=total,
            )
        )

    body: Dict[str, Any] = {
        "CustomerRef": {"value": str(customer_id)},
        "TxnDate": today.isoformat(),
        "ExpirationDate": (today + timedelta(days=ESTIMATE_VALIDITY_DAYS)).isoformat(),
        "Line": lines,
    }
    if summary:
        body["CustomerMemo"] = {"value": summary}
    return body


def _sales_line(
    *,
    amount: float,
    description: str,
    item_ref: Dict[str, str],
    quantity: float,
    unit_price: float,
) -> Dict[str, Any]:
    return {
        "Amount": round(amount, 2),
        "DetailType": "SalesItemLineDetail",
        "Description": description,
        "SalesItemLineDetail": {
            "ItemRef": dict(item_ref),
            "Qty": quantity,
            "UnitPrice": unit_price,
        },
    }


def _fmt(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


def _response_details(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


__all__ = ["QuickBooksClient", "build_estimate_payload"]
