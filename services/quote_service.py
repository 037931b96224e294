"""
Quote processing service.
Encapsulates the upload -> extract -> benchmark -> persist pipeline and the
review operations on stored quotes.
"""
import asyncio
import base64
import uuid
from typing import Any, Dict, List, Optional

from core.calculator import calculate_cost_breakdown, summarize_quotes
from core.config import get_settings
from core.db import DocumentStore, get_store
from core.dispute import draft_dispute_email
from core.exceptions import (
    DataNotFoundError,
    FileTooLargeError,
    InsufficientCreditsError,
    RateGuardException,
    UnsupportedFileTypeError,
    ValidationError,
)
from core.exporters import create_output_filename, export_ledger
from core.logger import log_event, setup_logger
from core.schema import AuditEntry, Comment, Quote, now_ms
from core.workflow import INITIAL_WORKFLOW_STATUS, initial_status, next_workflow_status
from llm.extract import extract_transaction
from services.account_service import decrement_credit, get_organization, sync_user
from services.market_data import resolve_mid_market_rate

logger = setup_logger(__name__)

QUOTES = "quotes"
AUDITS = "audits"
EXPORT_FORMATS = ("xlsx", "csv")


class QuoteService:
    """Service for auditing wire confirmations and managing the quote ledger."""

    def __init__(self, store: Optional[DocumentStore] = None):
        """Initialize quote service."""
        self.settings = get_settings()
        self.store = store or get_store()

    def validate_document(self, content: bytes, mime_type: Optional[str], filename: Optional[str] = None) -> str:
        """
        Check an upload and encode it for the extraction providers.

        Args:
            content: Raw file bytes
            mime_type: Declared MIME type
            filename: Original filename (for messages only)

        Returns:
            Base64-encoded document

        Raises:
            ValidationError: If the file is empty
            FileTooLargeError: If the file exceeds the upload ceiling
            UnsupportedFileTypeError: If the file is not an image or PDF
        """
        if not content:
            raise ValidationError("Uploaded file is empty", details={"filename": filename})

        if len(content) > self.settings.max_upload_bytes:
            raise FileTooLargeError(
                f"File too large: {len(content)} bytes (max {self.settings.max_upload_bytes})",
                details={"filename": filename, "size": len(content), "max_bytes": self.settings.max_upload_bytes}
            )

        mime_type = (mime_type or "").lower()
        if not (mime_type.startswith("image/") or mime_type == "application/pdf"):
            raise UnsupportedFileTypeError(
                f"Unsupported file type: {mime_type or 'unknown'}. Upload an image or PDF.",
                details={"filename": filename, "mime_type": mime_type}
            )

        return base64.b64encode(content).decode("ascii")

    def _require_credit(self, user_id: str):
        profile = sync_user(user_id, self.store)
        if not profile.org_id:
            raise ValidationError(
                "Complete onboarding before running an audit",
                details={"uid": user_id}
            )
        org = get_organization(profile.org_id, self.store)
        if not org.is_enterprise and org.credits <= 0:
            raise InsufficientCreditsError(
                "No audit credits left. Upgrade to continue.",
                details={"org_id": org.id, "plan": org.plan, "credits": org.credits}
            )
        return profile, org

    async def process_upload(
        self,
        user_id: str,
        content: bytes,
        mime_type: Optional[str],
        filename: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Audit one wire confirmation end to end.

        Args:
            user_id: Uploading user
            content: Raw file bytes
            mime_type: Declared MIME type
            filename: Original filename

        Returns:
            {"quote": stored quote, "breakdown": cost breakdown, "rate": rate quote, "extraction": provider trail}

        Raises:
            ValidationError: If the document is rejected at intake
            InsufficientCreditsError: If a free organization has no credits left
            DocumentUnreadableError: If no provider could read the document
        """
        base64_data = self.validate_document(content, mime_type, filename)
        profile, org = self._require_credit(user_id)

        log_event("analysis_started", org_id=org.id, filename=filename, mime_type=mime_type)
        logger.info(f"Auditing {filename or 'document'} ({len(content)} bytes) for org {org.id}")

        loop = asyncio.get_event_loop()
        try:
            extraction = await loop.run_in_executor(None, extract_transaction, base64_data, mime_type)
        except RateGuardException as e:
            log_event("analysis_failed", org_id=org.id, error=e.message)
            raise

        data = extraction.data
        rate = await loop.run_in_executor(None, resolve_mid_market_rate, data.currency_pair, data.value_date)

        fees = data.fee_list()
        breakdown = calculate_cost_breakdown(
            original_amount=data.original_amount,
            bank_rate=data.exchange_rate_bank,
            mid_market_rate=rate.rate,
            fees=fees,
            dispute_threshold_pct=self.settings.dispute_spread_threshold_pct,
            industry_average_spread_pct=self.settings.industry_average_spread_pct,
        )

        quote = Quote(
            user_id=user_id,
            org_id=org.id,
            bank=data.bank_name,
            pair=data.currency_pair,
            amount=data.original_amount,
            exchange_rate=data.exchange_rate_bank,
            mid_market_rate=rate.rate if breakdown.benchmarkable else None,
            rate_source=rate.source,
            rate_note=rate.note,
            fees=fees,
            markup_cost=breakdown.markup_cost,
            total_hidden_cost=breakdown.total_hidden_cost,
            spread_percentage=breakdown.spread_percentage,
            value_date=data.value_date,
            status=initial_status(breakdown),
            workflow_status=INITIAL_WORKFLOW_STATUS,
            dispute_recommended=breakdown.dispute_recommended,
            document_base64=base64_data,
            extraction_raw=data.raw,
        )
        stored = self.store.add(QUOTES, quote.model_dump(exclude={"id"}))

        audit = AuditEntry(
            org_id=org.id,
            user_id=user_id,
            user_name=profile.display_name or profile.email or user_id,
            pair=quote.pair,
            amount=quote.amount,
            bank_rate=quote.exchange_rate,
            mid_market_rate=quote.mid_market_rate,
            leakage=breakdown.markup_cost,
        )
        self.store.add(AUDITS, audit.model_dump(exclude={"id"}))

        decrement_credit(org.id, self.store)

        log_event(
            "analysis_complete",
            org_id=org.id,
            quote_id=stored["id"],
            strategy=extraction.strategy,
            rate_source=rate.source,
            value=breakdown.markup_cost,
        )
        logger.info(
            f"Quote {stored['id']}: {quote.bank} {quote.pair} spread {breakdown.spread_percentage:.4f}% "
            f"markup {breakdown.markup_cost:.2f} ({quote.status})"
        )

        return {
            "quote": stored,
            "breakdown": breakdown.model_dump(),
            "rate": rate.model_dump(),
            "extraction": {
                "strategy": extraction.strategy,
                "attempts": [a.model_dump() for a in extraction.attempts],
            },
        }

    def list_quotes(self, org_id: str, search: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        Organization ledger, newest first, without embedded documents.

        Args:
            org_id: Organization id
            search: Case-insensitive substring matched against bank, pair and id

        Returns:
            Quote documents
        """
        quotes = self.store.query(QUOTES, filters={"org_id": org_id}, order_by="created_at", descending=True)
        if search:
            needle = search.strip().lower()
            quotes = [
                q for q in quotes
                if any(needle in str(q.get(field) or "").lower() for field in ("bank", "pair", "id"))
            ]
        return [{k: v for k, v in q.items() if k != "document_base64"} for q in quotes]

    def get_quote(self, quote_id: str, org_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Raises:
            DataNotFoundError: If the quote does not exist or belongs to another organization
        """
        quote = self.store.get(QUOTES, quote_id)
        if quote is None or (org_id is not None and quote.get("org_id") != org_id):
            raise DataNotFoundError(f"Quote not found: {quote_id}", details={"quote_id": quote_id})
        return quote

    def advance_workflow(self, quote_id: str, org_id: Optional[str] = None) -> Dict[str, Any]:
        """Move a quote to the next review step."""
        quote = self.get_quote(quote_id, org_id)
        new_status = next_workflow_status(quote.get("workflow_status", INITIAL_WORKFLOW_STATUS))
        logger.info(f"Quote {quote_id}: {quote.get('workflow_status')} -> {new_status}")
        return self.store.update(QUOTES, quote_id, {"workflow_status": new_status})

    def add_note(self, quote_id: str, user: str, text: str, org_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Append a collaboration note.

        Raises:
            ValidationError: If the note is blank
        """
        text = (text or "").strip()
        if not text:
            raise ValidationError("Note text is required", details={"quote_id": quote_id})

        quote = self.get_quote(quote_id, org_id)
        note = Comment(id=uuid.uuid4().hex, user=user, text=text)
        notes = list(quote.get("notes") or []) + [note.model_dump()]
        return self.store.update(QUOTES, quote_id, {"notes": notes})

    def batch_approve(self, org_id: str) -> List[str]:
        """
        Approve every quote of the organization waiting in review.

        Returns:
            Ids of approved quotes
        """
        reviewed = self.store.query(QUOTES, filters={"org_id": org_id, "workflow_status": "reviewed"})
        approved = []
        for quote in reviewed:
            self.store.update(QUOTES, quote["id"], {"workflow_status": "approved"})
            approved.append(quote["id"])
        logger.info(f"Batch approved {len(approved)} quotes for org {org_id}")
        return approved

    def draft_dispute(self, quote_id: str, sender_name: str = "Treasury Team", org_id: Optional[str] = None) -> Dict[str, str]:
        """Render the dispute letter and mark the quote as drafted."""
        quote = self.get_quote(quote_id, org_id)
        letter = draft_dispute_email(quote, sender_name)
        self.store.update(QUOTES, quote_id, {"dispute_drafted": True})
        return letter

    def export_ledger(self, org_id: str, fmt: str = "xlsx") -> str:
        """
        Write the organization ledger to a timestamped file.

        Returns:
            Path to the created file

        Raises:
            ValidationError: If the format is not supported
            ExportError: If writing fails
        """
        fmt = (fmt or "").lower()
        if fmt not in EXPORT_FORMATS:
            raise ValidationError(
                f"Unsupported export format: {fmt}",
                details={"allowed": list(EXPORT_FORMATS)}
            )
        quotes = self.list_quotes(org_id)
        output_path = create_output_filename(org_id, fmt)
        return export_ledger(quotes, output_path, fmt)

    def analytics(self, org_id: str) -> Dict[str, Any]:
        """Dashboard totals, lane trend and bank scorecards."""
        summary = summarize_quotes(self.list_quotes(org_id))
        org = get_organization(org_id, self.store)
        summary.update({
            "industry_average_spread_pct": self.settings.industry_average_spread_pct,
            "plan": org.plan,
            "credits": org.credits,
            "generated_at": now_ms(),
        })
        return summary
