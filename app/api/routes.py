"""
FastAPI routes for the QuickBooks connector and the estimate webhooks.
"""

from __future__ import annotations

import hmac
import html
import json
import logging
from datetime import datetime, timezone
from http import HTTPStatus
from typing import Annotated, Any, Optional

from fastapi import APIRouter, Depends, Header, Query
from fastapi.responses import HTMLResponse, RedirectResponse

from app.core.errors import IntegrationError, WebhookAuthError
from app.dependencies import (
    get_app_settings,
    get_authorization_handshake,
    get_estimate_log,
    get_estimate_service,
    get_quickbooks_client,
    get_token_lifecycle_manager,
)
from app.schemas import (
    AnalyzeAudioRequest,
    AnalyzeTextRequest,
    ConnectionStatus,
    CreateCustomerRequest,
    CreateEstimateRequest,
    EstimateOnlyRequest,
    OAuthCallbackQuery,
    RefreshResult,
)

router = APIRouter()
logger = logging.getLogger(__name__)

WEBHOOK_VERSION = "1.3"

TenantQuery = Annotated[str, Query(min_length=1, description="Tenant identifier.")]


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.get("/health", status_code=HTTPStatus.OK)
async def healthcheck() -> dict:
    """Simple health endpoint for monitoring."""
    return {"status": "ok"}


@router.get("/connect/status", status_code=HTTPStatus.OK)
async def connection_status(
    tenant: TenantQuery,
    token_manager: Annotated[Any, Depends(get_token_lifecycle_manager)],
    settings: Annotated[Any, Depends(get_app_settings)],
) -> dict:
    credential = await token_manager.get_valid_credential(tenant)
    status = ConnectionStatus(
        connected=credential is not None,
        external_account_id=credential.external_account_id if credential else None,
        token_expiry=credential.expires_at if credential else None,
        has_credentials=settings.quickbooks.has_credentials,
        environment=settings.quickbooks.environment,
        timestamp=datetime.now(timezone.utc),
    )
    return status.model_dump(mode="json", by_alias=True)


@router.get("/connect/authorize", status_code=HTTPStatus.OK)
async def start_authorization(
    tenant: TenantQuery,
    handshake: Annotated[Any, Depends(get_authorization_handshake)],
    redirect: bool = Query(
        default=True,
        description="When false, return the consent URL as JSON instead of redirecting.",
    ),
) -> Any:
    """Kick off the Intuit consent flow for a tenant."""
    authorization_url = handshake.build_authorization_url(tenant)
    if redirect:
        return RedirectResponse(url=authorization_url, status_code=HTTPStatus.FOUND)
    return {"authorization_url": authorization_url}


@router.get("/connect/callback", response_class=HTMLResponse)
async def authorization_callback(
    handshake: Annotated[Any, Depends(get_authorization_handshake)],
    settings: Annotated[Any, Depends(get_app_settings)],
    code: Optional[str] = Query(None),
    realm_id: Optional[str] = Query(None, alias="realmId"),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
) -> HTMLResponse:
    """Complete the handshake and report the outcome to the opener window."""
    query = OAuthCallbackQuery(
        code=code, external_account_id=realm_id, state=state, error=error
    )
    target_origin = (
        str(settings.frontend_base_url).rstrip("/") if settings.frontend_base_url else "*"
    )
    try:
        credential = await handshake.handle_callback(query)
    except IntegrationError as exc:
        logger.warning("QuickBooks callback failed: %s", exc.message)
        return HTMLResponse(
            _callback_page(
                title="Connection Failed",
                lines=[f"Error: {exc.message}"],
                message={"type": "quickbooks-connected", "success": False, "error": exc.message},
                target_origin=target_origin,
                close_after_ms=5000,
            ),
            status_code=exc.status_code,
        )

    return HTMLResponse(
        _callback_page(
            title="QuickBooks Connected Successfully!",
            lines=[
                f"QuickBooks Company ID: {credential.external_account_id}",
                "Your QuickBooks account is now connected.",
            ],
            message={"type": "quickbooks-connected", "success": True},
            target_origin=target_origin,
            close_after_ms=3000,
        )
    )


@router.post("/connect/refresh", status_code=HTTPStatus.OK)
async def refresh_connection(
    tenant: TenantQuery,
    token_manager: Annotated[Any, Depends(get_token_lifecycle_manager)],
) -> dict:
    credential = await token_manager.force_refresh(tenant)
    remaining = credential.expires_at - datetime.now(timezone.utc)
    result = RefreshResult(success=True, expires_in=max(int(remaining.total_seconds()), 0))
    return result.model_dump(by_alias=True)


@router.post("/connect/disconnect", status_code=HTTPStatus.OK)
async def disconnect(
    tenant: TenantQuery,
    token_manager: Annotated[Any, Depends(get_token_lifecycle_manager)],
) -> dict:
    was_connected = await token_manager.disconnect(tenant)
    return {"success": True, "wasConnected": was_connected}


@router.get("/quickbooks/company-info", status_code=HTTPStatus.OK)
async def company_info(
    tenant: TenantQuery,
    client: Annotated[Any, Depends(get_quickbooks_client)],
) -> dict:
    company = await client.get_company_info(tenant)
    return {"success": True, "company": company}


@router.post("/quickbooks/customers", status_code=HTTPStatus.OK)
async def upsert_customer(
    tenant: TenantQuery,
    payload: CreateCustomerRequest,
    client: Annotated[Any, Depends(get_quickbooks_client)],
) -> dict:
    customer, is_new = await client.upsert_customer(tenant, payload.customer_info)
    return {"success": True, "customer": customer, "isNew": is_new}


@router.post("/quickbooks/estimates", status_code=HTTPStatus.OK)
async def create_estimate(
    tenant: TenantQuery,
    payload: CreateEstimateRequest,
    client: Annotated[Any, Depends(get_quickbooks_client)],
    estimate_log: Annotated[Any, Depends(get_estimate_log)],
) -> dict:
    estimate = await client.create_estimate(tenant, payload.customer_id, payload.estimate_data)
    estimate_log.record(
        tenant_id=tenant,
        estimate_data=payload.estimate_data.model_dump(mode="json", by_alias=True),
        quickbooks_estimate_id=estimate.get("Id"),
        customer_name=payload.estimate_data.customer_name,
        customer_email=payload.estimate_data.customer_email,
    )
    return {"success": True, "estimate": estimate}


@router.get("/quickbooks/estimates", status_code=HTTPStatus.OK)
async def list_estimates(
    tenant: TenantQuery,
    client: Annotated[Any, Depends(get_quickbooks_client)],
) -> dict:
    return {"success": True, "estimates": await client.list_estimates(tenant)}


@router.get("/quickbooks/invoices", status_code=HTTPStatus.OK)
async def list_invoices(
    tenant: TenantQuery,
    client: Annotated[Any, Depends(get_quickbooks_client)],
) -> dict:
    return {"success": True, "invoices": await client.list_invoices(tenant)}


def require_webhook_api_key(
    settings: Annotated[Any, Depends(get_app_settings)],
    x_api_key: Optional[str] = Header(None, alias="X-API-Key"),
) -> None:
    """Reject webhook calls whose key does not match ``WEBHOOK_API_KEY`` when set."""
    expected = settings.security.webhook_api_key
    if not expected:
        return
    if not x_api_key or not hmac.compare_digest(x_api_key.encode(), expected.encode()):
        raise WebhookAuthError("Invalid API key")


@router.get("/webhook/status", status_code=HTTPStatus.OK)
async def webhook_status() -> dict:
    return {"status": "online", "timestamp": _now_iso(), "version": WEBHOOK_VERSION}


@router.post(
    "/webhook/analyze-text",
    status_code=HTTPStatus.OK,
    dependencies=[Depends(require_webhook_api_key)],
)
async def analyze_text(
    payload: AnalyzeTextRequest,
    estimate_service: Annotated[Any, Depends(get_estimate_service)],
) -> dict:
    analysis = await estimate_service.analyze(payload.text)
    estimate = await estimate_service.generate_estimate(analysis)
    return {
        "success": True,
        "customer_info": payload.customer_info,
        "transcription": payload.text,
        "analysis": analysis.model_dump(by_alias=True),
        "estimate": estimate.model_dump(by_alias=True, exclude_none=True),
        "timestamp": _now_iso(),
    }


@router.post(
    "/webhook/analyze-audio",
    status_code=HTTPStatus.OK,
    dependencies=[Depends(require_webhook_api_key)],
)
async def analyze_audio(
    payload: AnalyzeAudioRequest,
    estimate_service: Annotated[Any, Depends(get_estimate_service)],
) -> dict:
    transcription = await estimate_service.transcribe(payload.audio_b64, payload.mime_type)
    analysis = await estimate_service.analyze(transcription)
    estimate = await estimate_service.generate_estimate(analysis)
    return {
        "success": True,
        "customer_info": payload.customer_info,
        "transcription": transcription,
        "analysis": analysis.model_dump(by_alias=True),
        "estimate": estimate.model_dump(by_alias=True, exclude_none=True),
        "timestamp": _now_iso(),
    }


@router.post(
    "/webhook/estimate-only",
    status_code=HTTPStatus.OK,
    dependencies=[Depends(require_webhook_api_key)],
)
async def estimate_only(
    payload: EstimateOnlyRequest,
    estimate_service: Annotated[Any, Depends(get_estimate_service)],
) -> dict:
    estimate = await estimate_service.generate_estimate(
        payload.analysis, payload.measurements
    )
    return {
        "success": True,
        "customer_info": payload.customer_info,
        "estimate": estimate.model_dump(by_alias=True, exclude_none=True),
        "timestamp": _now_iso(),
    }


def _callback_page(
    *,
    title: str,
    lines: list[str],
    message: dict[str, Any],
    target_origin: str,
    close_after_ms: int,
) -> str:
    body = "\n".join(f"<p>{html.escape(line)}</p>" for line in lines)
    # JSON is valid JS; "</" is split so a value cannot close the script tag.
    script_message = json.dumps(message).replace("</", "<\\/")
    script_origin = json.dumps(target_origin).replace("</", "<\\/")
    return f"""<!DOCTYPE html>
<html>
  <head><title>{html.escape(title)}</title></head>
  <body>
    <h1>{html.escape(title)}</h1>
    {body}
    <script>
      if (window.opener) {{
        window.opener.postMessage({script_message}, {script_origin});
      }}
      setTimeout(() => window.close(), {close_after_ms});
    </script>
  </body>
</html>
"""


__all__ = ["router"]
