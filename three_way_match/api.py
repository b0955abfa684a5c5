"""
FastAPI REST endpoint for the three-way match engine.
Can be run with: uvicorn three_way_match.api:app --reload

Tenant and user come from the authenticated session, forwarded by the
gateway as the X-Tenant-Id and X-User-Id headers.
"""

import asyncio
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query
from fastapi.responses import JSONResponse

from three_way_match.config import get_config
from three_way_match.errors import InvoiceNotFound, ReceiptAlreadyLinked
from three_way_match.main import get_store as open_store
from three_way_match.main import list_match_results, process_match_request
from three_way_match.schemas.match import MatchRequest, MatchStatus
from three_way_match.storage.sqlite_store import SQLiteStore
from three_way_match.utils.logging import setup_logging

config = get_config()
logger = setup_logging(__name__)

app = FastAPI(
    title="Three-Way Match API",
    description="Reconciles invoices against purchase orders and goods receipts",
    version="1.0.0",
    debug=config.API_DEBUG,
)

_store: Optional[SQLiteStore] = None


def get_store() -> SQLiteStore:
    """Shared store for the process, opened on first request."""
    global _store
    if _store is None:
        _store = open_store()
    return _store


def get_tenant_id(x_tenant_id: Optional[int] = Header(None)) -> int:
    if x_tenant_id is None:
        raise HTTPException(status_code=401, detail="Missing tenant")
    return x_tenant_id


def get_actor_id(x_user_id: Optional[int] = Header(None)) -> Optional[int]:
    return x_user_id


def _not_found(e: InvoiceNotFound) -> JSONResponse:
    return JSONResponse(
        content={
            "error": str(e),
            "message": "Invoice not found",
        },
        status_code=404,
    )


@app.post("/match")
async def match_endpoint(
    request: MatchRequest,
    tenant_id: int = Depends(get_tenant_id),
    actor_id: Optional[int] = Depends(get_actor_id),
    store: SQLiteStore = Depends(get_store),
):
    """
    Run the three-way match for an invoice, or only check payment eligibility.

    Returns:
        JSON with the stored match result, its exceptions and a summary, or
        the eligibility decision when check_payment_eligibility_only is set
    """
    try:
        output = await process_match_request(
            request,
            tenant_id=tenant_id,
            store=store,
            actor_id=actor_id,
        )
        return JSONResponse(content=output.model_dump(mode="json"), status_code=200)

    except InvoiceNotFound as e:
        return _not_found(e)

    except ReceiptAlreadyLinked as e:
        return JSONResponse(
            content={
                "error": str(e),
                "message": "Goods receipt linked concurrently, retry the match",
            },
            status_code=409,
        )

    except Exception as e:
        logger.exception(f"Match failed for invoice {request.invoice_id}")
        return JSONResponse(
            content={
                "error": str(e),
                "message": "Failed to run three-way match",
            },
            status_code=500,
        )


@app.get("/match-results")
async def list_match_results_endpoint(
    status: Optional[MatchStatus] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(config.LIST_PAGE_SIZE, ge=1, le=config.LIST_MAX_PAGE_SIZE),
    tenant_id: int = Depends(get_tenant_id),
    store: SQLiteStore = Depends(get_store),
):
    """List stored match results of the tenant, most recently updated first."""
    try:
        result_page = await asyncio.to_thread(
            list_match_results, tenant_id, store, status, page, page_size,
        )
        return JSONResponse(content=result_page.model_dump(mode="json"), status_code=200)

    except Exception as e:
        logger.exception("Listing match results failed")
        return JSONResponse(
            content={
                "error": str(e),
                "message": "Failed to list match results",
            },
            status_code=500,
        )


@app.get("/match-results/{invoice_id}")
async def get_match_result_endpoint(
    invoice_id: int,
    tenant_id: int = Depends(get_tenant_id),
    store: SQLiteStore = Depends(get_store),
):
    """Stored match result of one invoice."""
    result = await asyncio.to_thread(store.get_match_result, invoice_id, tenant_id)
    if result is None:
        return JSONResponse(
            content={
                "error": f"No match result for invoice {invoice_id}",
                "message": "Match result not found",
            },
            status_code=404,
        )
    return JSONResponse(content=result.model_dump(mode="json"), status_code=200)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": "1.0.0"}


@app.get("/config")
async def get_config_endpoint():
    """Get current configuration (sanitized)."""
    return {
        "default_quantity_tolerance_pct": config.DEFAULT_QUANTITY_TOLERANCE_PCT,
        "default_price_tolerance_pct": config.DEFAULT_PRICE_TOLERANCE_PCT,
        "default_allow_payment_without_match": config.DEFAULT_ALLOW_PAYMENT_WITHOUT_MATCH,
        "order_receipt_min_ratio": config.ORDER_RECEIPT_MIN_RATIO,
        "description_fuzzy_threshold": config.DESCRIPTION_FUZZY_THRESHOLD,
        "list_max_page_size": config.LIST_MAX_PAGE_SIZE,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        app,
        host=config.API_HOST,
        port=config.API_PORT,
        log_level=config.LOG_LEVEL.lower(),
    )
