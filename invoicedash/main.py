"""FastAPI application for the invoice dashboard."""

import logging
from datetime import date as date_type

from fastapi import Depends, FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware

from invoicedash.config import settings
from invoicedash.models import (
    CanonicalRecord,
    CategoryBreakdown,
    CategoryUpdateRequest,
    CategoryUpdateResponse,
    DocumentType,
    ExtractedFields,
    MonthlyBucket,
    SyncState,
    UploadResult,
)
from invoicedash.services import aggregation
from invoicedash.services.filtering import SORTABLE_FIELDS, FilterSet, SortState, apply
from invoicedash.services.store import RecordNotFoundError, RecordStore
from invoicedash.services.sync import SyncCoordinator
from invoicedash.services.upload import resolve_doc_type, save_document, upload_document
from invoicedash.services.webhook import WebhookClient

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(name)s %(levelname)s %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Invoice Dashboard",
    description="Invoices and receipts dashboard backed by a workflow-automation service",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def startup():
    """Wire the webhook client, store and sync coordinator."""
    settings.log_config()
    client = WebhookClient(settings)
    store = RecordStore(client, default_currency=settings.default_currency)
    app.state.client = client
    app.state.store = store
    app.state.coordinator = SyncCoordinator(
        store, client, success_display_seconds=settings.sync_success_display_seconds
    )


@app.on_event("shutdown")
async def shutdown():
    await app.state.coordinator.drain()
    await app.state.client.aclose()


def get_client(request: Request) -> WebhookClient:
    return request.app.state.client


def get_store(request: Request) -> RecordStore:
    return request.app.state.store


def get_coordinator(request: Request) -> SyncCoordinator:
    return request.app.state.coordinator


def _parse_date(value: str | None, name: str) -> date_type | None:
    if not value:
        return None
    try:
        return date_type.fromisoformat(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"{name} must be an ISO date (YYYY-MM-DD)")


def _parse_window(start_date: str | None, end_date: str | None) -> tuple[date_type, date_type] | None:
    start = _parse_date(start_date, "start_date")
    end = _parse_date(end_date, "end_date")
    if (start is None) != (end is None):
        raise HTTPException(status_code=400, detail="start_date and end_date must be given together")
    if start is None or end is None:
        return None
    if start > end:
        raise HTTPException(status_code=400, detail="start_date must not be after end_date")
    return start, end


async def _loaded_records(store: RecordStore) -> list[CanonicalRecord]:
    await store.ensure_loaded()
    if store.error:
        raise HTTPException(status_code=502, detail=store.error)
    return store.records


@app.get("/health")
async def health_check(store: RecordStore = Depends(get_store)):
    """Health check endpoint."""
    return {
        "status": "healthy",
        "record_count": len(store.records),
        "collection_error": store.error,
    }


# ==================== DOCUMENTS ====================


@app.get("/invoices", response_model=list[CanonicalRecord])
async def list_invoices(
    type: DocumentType = DocumentType.INVOICE,
    q: str = "",
    month: str | None = None,
    start_date: str | None = None,
    end_date: str | None = None,
    sort: str | None = None,
    direction: str = "asc",
    store: RecordStore = Depends(get_store),
):
    """Get documents of one type with optional filters, search and sorting."""
    if sort is not None and sort not in SORTABLE_FIELDS:
        raise HTTPException(status_code=400, detail=f"Cannot sort by {sort}")
    if direction not in ("asc", "desc"):
        raise HTTPException(status_code=400, detail="direction must be 'asc' or 'desc'")

    filters = FilterSet(
        doc_type=type,
        date_range=_parse_window(start_date, end_date),
        month=_parse_date(month, "month"),
        query=q,
    )
    sort_state = SortState(key=sort, direction=direction) if sort else None  # type: ignore[arg-type]

    records = await _loaded_records(store)
    return apply(records, filters, sort_state)


@app.post("/invoices/refresh")
async def refresh_invoices(store: RecordStore = Depends(get_store)):
    """Re-fetch the collection from the workflow."""
    await store.refresh()
    if store.error:
        raise HTTPException(status_code=502, detail=store.error)
    return {"status": "refreshed", "record_count": len(store.records)}


@app.put("/invoices/{record_id}/category", response_model=CategoryUpdateResponse, status_code=202)
async def update_invoice_category(
    record_id: str,
    update: CategoryUpdateRequest,
    store: RecordStore = Depends(get_store),
    coordinator: SyncCoordinator = Depends(get_coordinator),
):
    """Change a document's category; the sync runs in the background."""
    await _loaded_records(store)
    try:
        coordinator.update_category(record_id, update.category)
    except RecordNotFoundError:
        raise HTTPException(status_code=404, detail=f"Document {record_id} not found")

    return CategoryUpdateResponse(record=store.get(record_id), sync_state=store.sync_state(record_id))


@app.get("/sync-status", response_model=dict[str, SyncState])
async def get_sync_status(store: RecordStore = Depends(get_store)):
    """Get the sync state of every document with a pending or recent edit."""
    return store.sync_states


# ==================== DASHBOARD ENDPOINTS ====================


@app.get("/dashboard/overview")
async def get_dashboard_overview(
    start_date: str | None = None,
    end_date: str | None = None,
    store: RecordStore = Depends(get_store),
):
    """Get headline KPI figures, optionally for a date window."""
    window = _parse_window(start_date, end_date)
    records = await _loaded_records(store)

    stats = aggregation.dashboard_stats(records, *window) if window else aggregation.dashboard_stats(records)
    return {
        "total_spend": round(stats.total_spend, 2),
        "total_spend_display": aggregation.format_kpi_value(stats.total_spend),
        "spend_label": stats.spend_label,
        "invoice_count": stats.invoice_count,
        "receipt_count": stats.receipt_count,
        "document_count": stats.document_count,
        "period_suffix": stats.period_suffix,
    }


@app.get("/dashboard/monthly-spending", response_model=list[MonthlyBucket])
async def get_monthly_spending(
    range: str = "YTD",
    start_date: str | None = None,
    end_date: str | None = None,
    store: RecordStore = Depends(get_store),
):
    """Get monthly spend for a preset range or an explicit window."""
    window = _parse_window(start_date, end_date)
    if window is None:
        if range not in ("YTD", "L12M"):
            raise HTTPException(status_code=400, detail="range must be 'YTD' or 'L12M'")
        window = aggregation.resolve_range(range)  # type: ignore[arg-type]

    records = await _loaded_records(store)
    return aggregation.monthly_series(records, *window)


@app.get("/dashboard/category-breakdown", response_model=CategoryBreakdown)
async def get_category_breakdown(year: int | None = None, store: RecordStore = Depends(get_store)):
    """Get monthly spend per category for a year (current year by default)."""
    records = await _loaded_records(store)
    return aggregation.category_breakdown(records, year or date_type.today().year)


# ==================== UPLOADS ====================


@app.post("/upload", response_model=UploadResult)
async def upload_file(
    data: UploadFile = File(...),
    type: str | None = None,
    form_type: str | None = Form(None, alias="type"),
    client: WebhookClient = Depends(get_client),
):
    """Upload an invoice or receipt for extraction."""
    try:
        doc_type = resolve_doc_type(type, form_type)
    except ValueError:
        raise HTTPException(status_code=400, detail="type must be 'invoice' or 'receipt'")

    contents = await data.read()
    if not contents:
        raise HTTPException(status_code=400, detail="No file provided")

    return await upload_document(
        client, data.filename or "document", contents, data.content_type, doc_type
    )


@app.post("/save", response_model=UploadResult)
async def save_extracted(
    fields: ExtractedFields,
    client: WebhookClient = Depends(get_client),
    store: RecordStore = Depends(get_store),
):
    """Save confirmed document fields and reload the collection."""
    return await save_document(client, store, fields)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "invoicedash.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.dev_mode,
    )
