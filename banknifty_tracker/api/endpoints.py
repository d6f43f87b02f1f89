"""
FastAPI endpoints for Bank Nifty Tracker.
Thin routing over the tracker service; every response uses a ``success`` envelope.
"""

from typing import Optional

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from ..api.schemas import BulkMultiplierRequest, MultiplierUpdateRequest, PinRequest, utcnow
from ..core.logging_config import create_logger
from ..services.multiplier_store import InvalidInputError
from ..services.tracker_service import TrackerService

logger = create_logger(__name__)

# Create API router
router = APIRouter()


def get_service(request: Request) -> TrackerService:
    return request.app.state.tracker


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


def check_pin(service: TrackerService, pin: Optional[str]) -> Optional[JSONResponse]:
    """Return an error response when the PIN is missing or wrong, else None."""
    if not pin:
        return error_response(400, "PIN is required to update multipliers")
    if not service.store.verify_pin(pin):
        return error_response(401, "Invalid PIN")
    return None


@router.get("/health")
async def health_check(request: Request):
    """Liveness plus storage and background task status."""
    service = get_service(request)
    status = await service.health()
    status["timestamp"] = utcnow()
    return status


@router.get("/api/banknifty")
async def get_index(request: Request):
    """Current Bank Nifty index value."""
    service = get_service(request)
    quote = await service.fetcher.fetch_index()
    if quote is None:
        return error_response(502, "Bank Nifty index is unavailable")
    return {"success": True, "timestamp": utcnow(), "data": quote.dict()}


@router.get("/api/stocks")
async def get_stocks(request: Request):
    """Every constituent with its live quote and multiplier."""
    service = get_service(request)
    try:
        rows = await service.get_stocks()
    except Exception as e:
        logger.error("Failed to build stock list", extra={"error": str(e)})
        return error_response(500, f"Failed to retrieve stocks: {str(e)}")
    return {"success": True, "timestamp": utcnow(), "data": rows}


@router.get("/api/stocks/{symbol}")
async def get_stock(symbol: str, request: Request):
    """Single constituent through the secondary source."""
    service = get_service(request)
    constituent = service.tracker.find(symbol)
    if constituent is None:
        return error_response(404, "Stock not found")

    quote = await service.fetcher.fetch_one(constituent.symbol)
    data = {"symbol": constituent.symbol, "name": constituent.name}
    data.update(quote.dict(exclude={"symbol"}))
    data["multiplier"] = service.store.get_multiplier(constituent.symbol)
    return {"success": True, "data": data}


@router.get("/api/multipliers")
async def get_multipliers(request: Request):
    service = get_service(request)
    return {
        "success": True,
        "data": service.store.snapshot(),
        "metadata": {"lastSavedAt": service.store.last_saved_at}
    }


@router.post("/api/verify-pin")
async def verify_pin(body: PinRequest, request: Request):
    service = get_service(request)
    if not body.pin:
        return error_response(400, "PIN is required")
    if not service.store.verify_pin(body.pin):
        return error_response(401, "Invalid PIN")
    return {"success": True, "message": "PIN verified successfully"}


@router.post("/api/multipliers")
async def update_multipliers(body: BulkMultiplierRequest, request: Request):
    """Update several multipliers; invalid entries are skipped."""
    service = get_service(request)
    rejection = check_pin(service, body.pin)
    if rejection is not None:
        return rejection

    applied = service.store.set_many(body.multipliers)
    skipped = sorted(set(s.strip().upper() for s in body.multipliers if s and s.strip()) - set(applied))
    logger.info("Bulk multiplier update", extra={"applied": len(applied), "skipped": skipped})
    return {"success": True, "data": service.store.snapshot(), "applied": applied, "skipped": skipped}


@router.put("/api/multipliers/{symbol}")
async def update_multiplier(symbol: str, body: MultiplierUpdateRequest, request: Request):
    """Update one multiplier. The save runs in the background."""
    service = get_service(request)
    logger.info("Attempting to update multiplier", extra={"symbol": symbol, "multiplier": body.multiplier})

    rejection = check_pin(service, body.pin)
    if rejection is not None:
        return rejection

    try:
        value = service.store.set(symbol, body.multiplier)
    except InvalidInputError:
        return error_response(400, "Invalid multiplier value")

    return {
        "success": True,
        "data": {"symbol": symbol.strip().upper(), "multiplier": value},
        "lastSaved": utcnow()
    }


@router.get("/api/constituents")
async def get_constituents(request: Request):
    service = get_service(request)
    constituents = service.tracker.get_constituents()
    return {
        "success": True,
        "data": [c.dict() for c in constituents],
        "count": len(constituents),
        "lastCheck": service.tracker.last_diff.dict() if service.tracker.last_diff else None
    }


@router.post("/api/constituents/refresh")
async def refresh_constituents(request: Request):
    service = get_service(request)
    logger.info("Manual refresh of index constituents requested")
    diff = await service.tracker.refresh()
    constituents = service.tracker.get_constituents()
    return {
        "success": True,
        "data": [c.dict() for c in constituents],
        "count": len(constituents),
        "diff": diff.dict(),
        "message": "Constituents refreshed successfully" if diff.fetched else "Official list unavailable, kept current list"
    }


@router.get("/api/history")
async def get_history(request: Request):
    """Retained divergence points with summary statistics."""
    service = get_service(request)
    points, stats = service.history.read_log()
    return {
        "success": True,
        "data": [p.dict() for p in points],
        "stats": stats.dict(),
        "logging": service.history.is_active()
    }
