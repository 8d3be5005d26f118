"""Single RPC endpoint: ``POST /api`` with ``{action, payload}``."""

import asyncio
from typing import Annotated, Any, Awaitable, Callable

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, ValidationError

from ..auth import CurrentSession, SessionContext
from ..config import Settings, get_settings
from ..database import Database
from ..logging_config import get_logger
from ..models import (
    ApiRequest,
    CompleteJobPayload,
    CreateWorkOrderPayload,
    EstimatePayload,
    LogTimePayload,
    SyncUpPayload,
)
from ..rate_limit import limiter
from ..sync import EstimateNotFoundError, ReconciliationService, TenantResolutionError

logger = get_logger("foamsync.api")
router = APIRouter(tags=["api"])

PREFLIGHT_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
}


def get_service(
    store: Database,
    settings: Annotated[Settings, Depends(get_settings)],
) -> ReconciliationService:
    return ReconciliationService(store, settings.work_order_base_url)


Service = Annotated[ReconciliationService, Depends(get_service)]


def _parse(model: type[BaseModel], payload: dict[str, Any]):
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(p) for p in first.get("loc", ())) or "payload"
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid payload: {field}: {first.get('msg')}",
        )


# =============================================================================
# Action handlers
# =============================================================================

Handler = Callable[
    [ReconciliationService, str, SessionContext, dict[str, Any]], Awaitable[Any]
]


async def _sync_down(service, company_id, session, payload):
    return await asyncio.to_thread(service.sync_down, company_id, session)


async def _sync_up(service, company_id, session, payload):
    body = _parse(SyncUpPayload, payload)
    result = await asyncio.to_thread(
        service.sync_up, company_id, body.state, session.log_prefix
    )
    return result.model_dump()


async def _delete_estimate(service, company_id, session, payload):
    body = _parse(EstimatePayload, payload)
    await asyncio.to_thread(service.delete_estimate, company_id, body.estimateId)
    return {"deleted": True, "estimateId": body.estimateId}


async def _mark_job_paid(service, company_id, session, payload):
    body = _parse(EstimatePayload, payload)
    estimate = await asyncio.to_thread(service.mark_job_paid, company_id, body.estimateId)
    return {"estimate": estimate}


async def _complete_job(service, company_id, session, payload):
    body = _parse(CompleteJobPayload, payload)
    estimate = await asyncio.to_thread(
        service.complete_job, company_id, body.estimateId, body.actuals
    )
    return {"estimate": estimate}


async def _create_work_order(service, company_id, session, payload):
    body = _parse(CreateWorkOrderPayload, payload)
    url = await asyncio.to_thread(
        service.create_work_order, company_id, body.estimateId, body.estimateData
    )
    return {"url": url}


async def _log_time(service, company_id, session, payload):
    body = _parse(LogTimePayload, payload)
    await asyncio.to_thread(
        service.log_crew_time, company_id, body.model_dump(exclude_none=False)
    )
    return {"logged": True}


ACTIONS: dict[str, Handler] = {
    "SYNC_DOWN": _sync_down,
    "SYNC_UP": _sync_up,
    "DELETE_ESTIMATE": _delete_estimate,
    "MARK_JOB_PAID": _mark_job_paid,
    "COMPLETE_JOB": _complete_job,
    "CREATE_WORK_ORDER": _create_work_order,
    "LOG_TIME": _log_time,
}


# =============================================================================
# Routes
# =============================================================================


@router.options("/api")
async def api_preflight():
    """CORS pre-flight, answered unconditionally."""
    return PlainTextResponse("ok", headers=PREFLIGHT_HEADERS)


@router.post("/api")
@limiter.limit(lambda: get_settings().rate_limit)
async def api(request: Request, session: CurrentSession, service: Service):
    """
    Dispatch one action.

    Tenant scope always comes from the verified session; any company id
    inside the payload is ignored.
    """
    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Request body must be JSON"
        )
    try:
        envelope = ApiRequest.model_validate(body)
    except ValidationError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Request must be an object with 'action' and 'payload'",
        )

    handler = ACTIONS.get(envelope.action)
    if handler is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unknown action: {envelope.action}"
        )

    logger.info(f"{envelope.action} | {session.log_prefix}")
    try:
        company_id = await asyncio.to_thread(service.resolve_company, session)
        data = await handler(service, company_id, session, envelope.payload)
    except (HTTPException, TenantResolutionError, EstimateNotFoundError):
        raise
    except Exception as e:
        # Log full error server-side; the client gets a generic message
        logger.exception(f"{envelope.action} failed for {session.log_prefix}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal server error"
        )
    return {"status": "success", "data": data}
