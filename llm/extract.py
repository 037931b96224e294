"""
Wire confirmation extraction with ordered provider fallback.

Strategies are tried in order and the first success wins:

    webhook (if configured)  ->  OCR chain + structured LLM extraction

The OCR chain is itself an ordered list (GLM-4V, then Gemini Vision). Each
provider is called once per document; transport retries live in the clients.
"""
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from core.config import get_settings
from core.exceptions import DocumentUnreadableError, ProviderError
from core.logger import setup_logger
from core.normalize import (
    find_field,
    normalize_bank_name,
    normalize_currency_pair,
    normalize_value_date,
)
from core.schema import ExtractedTransaction, now_ms
from llm.client import (
    create_response_schema,
    get_gemini_client,
    get_webhook_client,
    get_zhipu_client,
)
from llm.prompts import (
    GEMINI_OCR_PROMPT,
    ZHIPU_OCR_PROMPT,
    build_system_prompt,
    build_user_message,
)

logger = setup_logger(__name__)

# Max retries for validation errors (malformed LLM responses)
MAX_VALIDATION_RETRIES = 3

# Aliases used by integration nodes for each field
WEBHOOK_FIELDS: Dict[str, tuple] = {
    "bank_name": ("bank", "bank_name", "institution"),
    "original_amount": ("amount", "principal", "original_amount", "val"),
    "exchange_rate_bank": ("rate", "exchange_rate", "fx_rate", "price", "exchange_rate_bank"),
    "original_currency": ("currency", "original_currency", "source_currency", "code"),
    "value_date": ("date", "value_date", "transaction_date", "time"),
    "total_fees": ("fees", "fee", "total_fees", "commission"),
    "currency_pair": ("pair", "currency_pair"),
    "transaction_reference": ("id", "ref", "reference", "transaction_id"),
    "fee_items": ("fee_items", "fee_lines", "items"),
}


class StrategyAttempt(BaseModel):
    """Outcome of one provider call."""
    strategy: str
    succeeded: bool
    error: Optional[str] = None


class ExtractionResult(BaseModel):
    """Extracted transaction plus the provider trail that produced it."""
    data: ExtractedTransaction
    strategy: str
    attempts: List[StrategyAttempt] = Field(default_factory=list)


class Strategy:
    """A named provider call; raising ProviderError hands over to the next one."""

    def __init__(self, name: str, run: Callable[..., Any]):
        self.name = name
        self.run = run

    def __repr__(self) -> str:
        return f"Strategy({self.name!r})"


def _zhipu_ocr(base64_data: str, mime_type: str) -> str:
    return get_zhipu_client().transcribe(base64_data, mime_type, ZHIPU_OCR_PROMPT)


def _gemini_ocr(base64_data: str, mime_type: str) -> str:
    return get_gemini_client().transcribe(base64_data, mime_type, GEMINI_OCR_PROMPT)


def default_ocr_strategies() -> List[Strategy]:
    """Primary GLM-4V, secondary Gemini Vision."""
    return [Strategy("zhipu-glm4v", _zhipu_ocr), Strategy("gemini-vision", _gemini_ocr)]


def run_ocr_chain(
    base64_data: str,
    mime_type: str,
    strategies: Optional[List[Strategy]] = None,
    min_length: Optional[int] = None,
) -> tuple:
    """
    Transcribe a document with the first OCR provider that returns enough text.

    Args:
        base64_data: Base64-encoded document
        mime_type: Document MIME type
        strategies: OCR strategies in priority order
        min_length: Minimum transcript length accepted

    Returns:
        (transcript, provider name, attempts)

    Raises:
        DocumentUnreadableError: If every provider failed or returned too little text
    """
    if strategies is None:
        strategies = default_ocr_strategies()
    if min_length is None:
        min_length = get_settings().min_ocr_text_length

    attempts: List[StrategyAttempt] = []
    for strategy in strategies:
        try:
            text = strategy.run(base64_data, mime_type) or ""
        except ProviderError as e:
            logger.warning(f"OCR provider {strategy.name} failed, falling back: {e.message}")
            attempts.append(StrategyAttempt(strategy=strategy.name, succeeded=False, error=e.message))
            continue

        if len(text.strip()) < min_length:
            logger.warning(f"OCR provider {strategy.name} returned {len(text.strip())} chars, falling back")
            attempts.append(StrategyAttempt(
                strategy=strategy.name, succeeded=False, error="Transcript too short"
            ))
            continue

        attempts.append(StrategyAttempt(strategy=strategy.name, succeeded=True))
        logger.info(f"OCR succeeded with {strategy.name} ({len(text)} chars)")
        return text, strategy.name, attempts

    raise DocumentUnreadableError(
        "Document appeared empty or unreadable.",
        details={"attempts": [a.model_dump() for a in attempts]}
    )


def structure_transcript(ocr_text: str, temperature: float = 0.1) -> ExtractedTransaction:
    """
    Turn an OCR transcript into structured fields with the LLM.

    Args:
        ocr_text: OCR transcript
        temperature: LLM temperature (0.0-1.0)

    Returns:
        ExtractedTransaction (not yet finalized)

    Raises:
        ProviderError: If the call fails or never yields a valid payload
    """
    client = get_gemini_client()
    system_prompt = build_system_prompt()
    user_message = build_user_message(ocr_text)
    response_schema = create_response_schema()

    last_validation_error = None
    for attempt in range(MAX_VALIDATION_RETRIES):
        llm_response = client.call_with_structured_output(
            system_prompt=system_prompt,
            user_message=user_message,
            response_schema=response_schema,
            temperature=temperature,
        )

        fields = {k: v for k, v in llm_response.items() if k not in ("raw", "source")}
        try:
            return ExtractedTransaction(**fields, raw=llm_response)
        except PydanticValidationError as e:
            last_validation_error = e
            if attempt < MAX_VALIDATION_RETRIES - 1:
                logger.warning(
                    f"Validation failed (attempt {attempt + 1}/{MAX_VALIDATION_RETRIES}), retrying: {e}"
                )

    logger.error(f"Extraction response validation failed after {MAX_VALIDATION_RETRIES} attempts")
    raise ProviderError(
        "Extraction response did not match the schema",
        details={"error": str(last_validation_error)}
    )


def map_webhook_payload(source: Dict[str, Any]) -> ExtractedTransaction:
    """
    Map an integration node payload onto the extraction schema.

    Args:
        source: Unwrapped webhook payload

    Returns:
        ExtractedTransaction (not yet finalized)
    """
    fields = {name: find_field(source, aliases) for name, aliases in WEBHOOK_FIELDS.items()}
    if not isinstance(fields["fee_items"], (list, dict)):
        fields["fee_items"] = None
    try:
        return ExtractedTransaction(**fields, raw=source)
    except PydanticValidationError as e:
        raise ProviderError("Webhook payload did not match the schema", details={"error": str(e)})


def finalize_extraction(data: ExtractedTransaction, source: str) -> ExtractedTransaction:
    """
    Apply canonical bank names, currency pair inference and date defaults.

    Args:
        data: Raw extraction
        source: Strategy name

    Returns:
        Finalized copy
    """
    return data.model_copy(update={
        "bank_name": normalize_bank_name(data.bank_name),
        "original_amount": data.original_amount or 0.0,
        "exchange_rate_bank": data.exchange_rate_bank or 0.0,
        "original_currency": (data.original_currency or "USD").upper(),
        "currency_pair": normalize_currency_pair(data.currency_pair, data.original_currency),
        "value_date": normalize_value_date(data.value_date),
        "total_fees": data.fees_total,
        "source": source,
    })


def _webhook_strategy(base64_data: str, mime_type: str) -> ExtractedTransaction:
    payload = get_webhook_client().submit(base64_data, mime_type, now_ms())
    return map_webhook_payload(payload)


def _ocr_llm_strategy(base64_data: str, mime_type: str) -> ExtractedTransaction:
    text, ocr_provider, _ = run_ocr_chain(base64_data, mime_type)
    try:
        return structure_transcript(text)
    except ProviderError as e:
        # The document was readable; keep the transcript and let the quote land unbenchmarked
        logger.error(f"Structuring failed after {ocr_provider} OCR, keeping transcript only: {e.message}")
        return ExtractedTransaction(raw={"ocr_text": text, "ocr_provider": ocr_provider, "error": e.message})


def default_strategies() -> List[Strategy]:
    """Extraction strategies in priority order for the current configuration."""
    strategies = []
    if get_settings().extraction_webhook_url:
        strategies.append(Strategy("webhook", _webhook_strategy))
    strategies.append(Strategy("ocr+llm", _ocr_llm_strategy))
    return strategies


def extract_transaction(
    base64_data: str,
    mime_type: str,
    strategies: Optional[List[Strategy]] = None,
) -> ExtractionResult:
    """
    Extract transaction fields from a wire confirmation.

    Args:
        base64_data: Base64-encoded document
        mime_type: Document MIME type
        strategies: Extraction strategies in priority order

    Returns:
        ExtractionResult with the finalized transaction

    Raises:
        DocumentUnreadableError: If no strategy produced a transaction
    """
    if strategies is None:
        strategies = default_strategies()

    attempts: List[StrategyAttempt] = []
    for strategy in strategies:
        try:
            data = strategy.run(base64_data, mime_type)
        except ProviderError as e:
            logger.warning(f"Extraction strategy {strategy.name} failed, falling back: {e.message}")
            attempts.append(StrategyAttempt(strategy=strategy.name, succeeded=False, error=e.message))
            continue

        attempts.append(StrategyAttempt(strategy=strategy.name, succeeded=True))
        logger.info(f"Extraction succeeded with {strategy.name}")
        return ExtractionResult(
            data=finalize_extraction(data, strategy.name),
            strategy=strategy.name,
            attempts=attempts,
        )

    raise DocumentUnreadableError(
        "Document could not be read by any extraction provider.",
        details={"attempts": [a.model_dump() for a in attempts]}
    )
