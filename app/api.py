"""
FastAPI routes for quote auditing, accounts and market data.
Thin API layer: request parsing and error mapping only, logic lives in services.
"""
import asyncio
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, File, Header, HTTPException, Query, Request, UploadFile
from fastapi.responses import FileResponse, JSONResponse
from pydantic import BaseModel

from core.config import get_settings
from core.exceptions import (
    ConfigurationError,
    DataNotFoundError,
    DocumentUnreadableError,
    FileTooLargeError,
    InsufficientCreditsError,
    PaymentError,
    RateGuardException,
    SeatLimitError,
    UnsupportedFileTypeError,
    ValidationError,
)
from core.logger import setup_logger
from core.schema import PRICING_PLAN
from services import account_service
from services.market_data import (
    fetch_market_rates,
    get_cached_rates,
    resolve_mid_market_rate,
    run_rate_sync_loop,
    sync_rates,
)
from services.quote_service import QuoteService

logger = setup_logger(__name__)

MEDIA_TYPES = {
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "csv": "text/csv",
}

# Most specific first
STATUS_CODES = (
    (FileTooLargeError, 413),
    (UnsupportedFileTypeError, 415),
    (ValidationError, 400),
    (PaymentError, 400),
    (InsufficientCreditsError, 402),
    (DataNotFoundError, 404),
    (SeatLimitError, 409),
    (DocumentUnreadableError, 422),
    (ConfigurationError, 503),
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    settings.ensure_directories()

    sync_task = None
    if settings.rate_sync_interval_minutes > 0:
        sync_task = asyncio.create_task(run_rate_sync_loop(settings.rate_sync_interval_minutes))

    yield

    if sync_task is not None:
        sync_task.cancel()
        try:
            await sync_task
        except asyncio.CancelledError:
            logger.info("Rate sync task stopped")


# Initialize FastAPI app
app = FastAPI(
    title="RateGuard FX",
    description="Audit bank wire confirmations for hidden FX markups",
    version="1.0.0",
    lifespan=lifespan,
)


class OnboardingRequest(BaseModel):
    country: Optional[str] = None
    tax_id: Optional[str] = None
    company_name: Optional[str] = None


class TeammateRequest(BaseModel):
    uid: str


class UpgradeRequest(BaseModel):
    subscription_id: str


class NoteRequest(BaseModel):
    text: str


class DisputeRequest(BaseModel):
    sender_name: str = "Treasury Team"


@app.exception_handler(RateGuardException)
async def rateguard_exception_handler(request: Request, exc: RateGuardException):
    """Map domain errors onto HTTP status codes."""
    status_code = 500
    for error_type, code in STATUS_CODES:
        if isinstance(exc, error_type):
            status_code = code
            break

    if status_code == 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}", exc_info=exc)
    else:
        logger.info(f"{request.method} {request.url.path} rejected ({status_code}): {exc.message}")

    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "details": exc.details},
    )


def require_user(user_id: Optional[str]) -> str:
    """
    Identity is established upstream and forwarded in X-User-Id.

    Raises:
        HTTPException: 401 when the header is missing
    """
    if not user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return user_id


def require_org(user_id: str) -> str:
    profile = account_service.sync_user(user_id)
    if not profile.org_id:
        raise ValidationError("Complete onboarding first", details={"uid": user_id})
    return profile.org_id


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    settings = get_settings()
    return {
        "status": "healthy",
        "service": "rateguard_fx",
        "version": "1.0.0",
        "demo_mode": settings.demo_mode,
    }


@app.post("/auth/session")
async def start_session(
    x_user_id: Optional[str] = Header(None),
    x_user_email: Optional[str] = Header(None),
    x_user_name: Optional[str] = Header(None),
):
    """Create or refresh the caller's profile after sign-in."""
    uid = require_user(x_user_id)
    profile, is_new = account_service.initialize_user_profile(uid, x_user_email, x_user_name)
    return {
        "profile": profile.model_dump(),
        "is_new": is_new,
        "needs_onboarding": account_service.needs_onboarding(profile),
    }


@app.get("/me")
async def get_me(x_user_id: Optional[str] = Header(None)):
    profile = account_service.sync_user(require_user(x_user_id))
    return {"profile": profile.model_dump(), "needs_onboarding": account_service.needs_onboarding(profile)}


@app.post("/onboarding")
async def onboarding(body: OnboardingRequest, x_user_id: Optional[str] = Header(None)):
    """Save compliance details; creates the caller's organization on first completion."""
    profile = account_service.update_compliance_profile(
        require_user(x_user_id), body.country, body.tax_id, body.company_name
    )
    return {"profile": profile.model_dump()}


@app.post("/me/intro-seen")
async def intro_seen(x_user_id: Optional[str] = Header(None)):
    profile = account_service.mark_intro_seen(require_user(x_user_id))
    return {"profile": profile.model_dump()}


@app.get("/organization")
async def get_organization(x_user_id: Optional[str] = Header(None)):
    org = account_service.get_organization(require_org(require_user(x_user_id)))
    return org.model_dump()


@app.get("/team")
async def get_team(x_user_id: Optional[str] = Header(None)):
    members = account_service.fetch_team_members(require_org(require_user(x_user_id)))
    return {"members": [m.model_dump() for m in members]}


@app.post("/team/members")
async def add_team_member(body: TeammateRequest, x_user_id: Optional[str] = Header(None)):
    org = account_service.add_teammate(require_user(x_user_id), body.uid)
    return org.model_dump()


@app.post("/billing/paypal/approve")
async def approve_subscription(body: UpgradeRequest, x_user_id: Optional[str] = Header(None)):
    """Payment provider approval callback, forwarded by the client."""
    uid = require_user(x_user_id)
    org = account_service.process_enterprise_upgrade(require_org(uid), uid, body.subscription_id)
    return org.model_dump()


@app.get("/billing/plan")
async def get_plan():
    return PRICING_PLAN


@app.post("/quotes", status_code=201)
async def upload_quote(file: UploadFile = File(...), x_user_id: Optional[str] = Header(None)):
    """
    Audit an uploaded wire confirmation.

    Args:
        file: Image or PDF of the bank confirmation
        x_user_id: Caller identity

    Returns:
        Stored quote with its cost breakdown and rate provenance
    """
    uid = require_user(x_user_id)
    logger.info(f"Received file: {file.filename} ({file.content_type})")

    # One byte past the ceiling is enough for validate_document to reject it
    content = await file.read(get_settings().max_upload_bytes + 1)
    result = await QuoteService().process_upload(uid, content, file.content_type, file.filename)
    result["quote"].pop("document_base64", None)
    return result


@app.get("/quotes")
async def list_quotes(search: Optional[str] = None, x_user_id: Optional[str] = Header(None)):
    org_id = require_org(require_user(x_user_id))
    return {"quotes": QuoteService().list_quotes(org_id, search)}


@app.get("/quotes/export")
async def export_quotes(
    fmt: str = Query("xlsx", alias="format"),
    x_user_id: Optional[str] = Header(None)
):
    """
    Download the organization ledger.

    Args:
        fmt: "xlsx" or "csv"
        x_user_id: Caller identity

    Returns:
        File response
    """
    org_id = require_org(require_user(x_user_id))
    loop = asyncio.get_event_loop()
    output_path = await loop.run_in_executor(None, QuoteService().export_ledger, org_id, fmt)
    return FileResponse(
        path=output_path,
        filename=Path(output_path).name,
        media_type=MEDIA_TYPES[fmt.lower()],
    )


@app.post("/quotes/batch-approve")
async def batch_approve(x_user_id: Optional[str] = Header(None)):
    approved = QuoteService().batch_approve(require_org(require_user(x_user_id)))
    return {"approved": approved, "count": len(approved)}


@app.get("/quotes/{quote_id}")
async def get_quote(quote_id: str, x_user_id: Optional[str] = Header(None)):
    org_id = require_org(require_user(x_user_id))
    return QuoteService().get_quote(quote_id, org_id)


@app.post("/quotes/{quote_id}/advance")
async def advance_quote(quote_id: str, x_user_id: Optional[str] = Header(None)):
    org_id = require_org(require_user(x_user_id))
    return QuoteService().advance_workflow(quote_id, org_id)


@app.post("/quotes/{quote_id}/notes")
async def add_quote_note(quote_id: str, body: NoteRequest, x_user_id: Optional[str] = Header(None)):
    uid = require_user(x_user_id)
    profile = account_service.sync_user(uid)
    if not profile.org_id:
        raise ValidationError("Complete onboarding first", details={"uid": uid})
    author = profile.display_name or profile.email or uid
    return QuoteService().add_note(quote_id, author, body.text, profile.org_id)


@app.post("/quotes/{quote_id}/dispute")
async def draft_dispute(
    quote_id: str,
    body: Optional[DisputeRequest] = None,
    x_user_id: Optional[str] = Header(None)
):
    org_id = require_org(require_user(x_user_id))
    sender_name = body.sender_name if body else "Treasury Team"
    return QuoteService().draft_dispute(quote_id, sender_name, org_id)


@app.get("/analytics")
async def analytics(x_user_id: Optional[str] = Header(None)):
    return QuoteService().analytics(require_org(require_user(x_user_id)))


@app.get("/rates/mid-market")
async def mid_market_rate(pair: str, date: Optional[str] = None):
    """Reference rate for a pair and optional value date (YYYY-MM-DD)."""
    loop = asyncio.get_event_loop()
    rate = await loop.run_in_executor(None, resolve_mid_market_rate, pair, date)
    return rate.model_dump()


@app.get("/rates/ticker")
async def rate_ticker():
    """Synced rates when available, otherwise the live or simulated ticker."""
    cached = get_cached_rates()
    if cached:
        return {"source": "cached", "rates": cached}

    loop = asyncio.get_event_loop()
    source, rows = await loop.run_in_executor(None, fetch_market_rates)
    return {"source": source, "rates": [row.model_dump() for row in rows]}


@app.post("/rates/sync")
async def trigger_rate_sync():
    loop = asyncio.get_event_loop()
    results = await loop.run_in_executor(None, sync_rates)
    return {"updated": results, "count": len(results)}
