"""
Unit tests for wire confirmation extraction and provider fallback.
"""
from unittest.mock import MagicMock, patch

import pytest
import requests

from core.config import reset_settings
from core.exceptions import DocumentUnreadableError, ProviderError, ProviderNotConfiguredError
from core.schema import ExtractedTransaction
from llm.client import GeminiClient, ZhipuVisionClient, reset_clients
from llm.extract import (
    Strategy,
    _ocr_llm_strategy,
    extract_transaction,
    finalize_extraction,
    map_webhook_payload,
    run_ocr_chain,
    structure_transcript,
)

TRANSCRIPT = "JPMORGAN CHASE\nAmount: $100,000.00\nRate: 1.1120\nWire Fee: $35.00"


def failing(message="boom"):
    return MagicMock(side_effect=ProviderError(message))


def test_primary_failure_falls_back_once():
    """Secondary OCR is invoked exactly once after the primary fails."""
    primary = failing()
    secondary = MagicMock(return_value=TRANSCRIPT)

    text, provider, attempts = run_ocr_chain(
        "ZmFrZQ==", "image/png",
        strategies=[Strategy("primary", primary), Strategy("secondary", secondary)],
    )

    assert text == TRANSCRIPT
    assert provider == "secondary"
    primary.assert_called_once_with("ZmFrZQ==", "image/png")
    secondary.assert_called_once_with("ZmFrZQ==", "image/png")
    assert [a.succeeded for a in attempts] == [False, True]


def test_short_transcript_falls_through():
    """A near-empty transcript counts as a failed provider."""
    secondary = MagicMock(return_value=TRANSCRIPT)

    _, provider, attempts = run_ocr_chain(
        "ZmFrZQ==", "image/png",
        strategies=[Strategy("primary", MagicMock(return_value="  ab ")), Strategy("secondary", secondary)],
    )

    assert provider == "secondary"
    assert attempts[0].error == "Transcript too short"


def test_all_ocr_providers_fail():
    """Every provider failing yields DocumentUnreadableError."""
    primary, secondary = failing("primary down"), MagicMock(return_value="")

    with pytest.raises(DocumentUnreadableError) as exc_info:
        run_ocr_chain(
            "ZmFrZQ==", "image/png",
            strategies=[Strategy("primary", primary), Strategy("secondary", secondary)],
        )

    assert primary.call_count == 1
    assert secondary.call_count == 1
    assert len(exc_info.value.details["attempts"]) == 2


def test_missing_credentials_make_document_unreadable():
    """Without provider keys both OCR clients refuse to start."""
    with pytest.raises(DocumentUnreadableError):
        run_ocr_chain("ZmFrZQ==", "image/png")


def test_unreadable_document_stops_extraction():
    """No later strategy runs once the OCR chain gives up."""
    ocr = MagicMock(side_effect=DocumentUnreadableError("Document appeared empty or unreadable."))
    later = MagicMock()

    with pytest.raises(DocumentUnreadableError):
        extract_transaction("ZmFrZQ==", "image/png", strategies=[Strategy("ocr+llm", ocr), Strategy("later", later)])

    later.assert_not_called()


def test_extraction_falls_back_from_webhook():
    """A failing webhook hands over to the next strategy."""
    webhook = failing("webhook 502")
    ocr_llm = MagicMock(return_value=ExtractedTransaction(
        bank_name="CITI", original_amount=5000, exchange_rate_bank=1.3, original_currency="GBP",
    ))

    result = extract_transaction(
        "ZmFrZQ==", "application/pdf",
        strategies=[Strategy("webhook", webhook), Strategy("ocr+llm", ocr_llm)],
    )

    assert result.strategy == "ocr+llm"
    assert result.data.bank_name == "Citibank"
    assert result.data.currency_pair == "USD/GBP"
    assert result.data.source == "ocr+llm"
    assert [a.strategy for a in result.attempts] == ["webhook", "ocr+llm"]


def test_map_webhook_payload_aliases():
    """Integration node keys are matched case-insensitively through aliases."""
    payload = {
        "Institution": "JPMORGAN CHASE BANK",
        "Principal": "$100,000.00",
        "FX_Rate": "1.1120",
        "currency": "eur",
        "Fees": "35",
        "Date": "2024-03-15",
    }

    data = finalize_extraction(map_webhook_payload(payload), "webhook")

    assert data.bank_name == "JPMorgan Chase"
    assert data.original_amount == 100000.0
    assert data.exchange_rate_bank == 1.112
    assert data.currency_pair == "USD/EUR"
    assert data.total_fees == 35.0
    assert data.value_date == "2024-03-15"
    assert data.fee_list()[0].amount == 35.0


def test_finalize_fills_missing_fields():
    """Missing values become zeros, defaults and placeholders."""
    data = finalize_extraction(ExtractedTransaction(), "ocr+llm")

    assert data.bank_name == "Unidentified Bank"
    assert data.original_amount == 0.0
    assert data.exchange_rate_bank == 0.0
    assert data.currency_pair == "USD/EUR"
    assert data.total_fees == 0.0


def test_structure_transcript_retries_invalid_payload():
    """Schema violations are retried before giving up."""
    client = MagicMock()
    client.call_with_structured_output.side_effect = [
        {"fee_items": "not a list"},
        {"bank_name": "HSBC", "original_amount": "$2,000.00", "fee_items": [{"name": "Wire", "amount": "$20"}]},
    ]

    with patch("llm.extract.get_gemini_client", return_value=client):
        data = structure_transcript(TRANSCRIPT)

    assert client.call_with_structured_output.call_count == 2
    assert data.original_amount == 2000.0
    assert data.fee_items[0].amount == 20.0


def test_structure_transcript_gives_up():
    """Persistent schema violations surface as ProviderError."""
    client = MagicMock()
    client.call_with_structured_output.return_value = {"fee_items": "still wrong"}

    with patch("llm.extract.get_gemini_client", return_value=client):
        with pytest.raises(ProviderError):
            structure_transcript(TRANSCRIPT)

    assert client.call_with_structured_output.call_count == 3


def test_structure_transcript_negative_fee_counts_as_zero():
    """A rebate line returned as a negative number is accepted on the first call."""
    client = MagicMock()
    client.call_with_structured_output.return_value = {
        "bank_name": "HSBC",
        "original_amount": 2000,
        "fee_items": [{"name": "Wire", "amount": 25}, {"name": "Rebate", "amount": -5}],
    }

    with patch("llm.extract.get_gemini_client", return_value=client):
        data = structure_transcript(TRANSCRIPT)

    assert client.call_with_structured_output.call_count == 1
    assert [fee.amount for fee in data.fee_items] == [25.0, 0.0]
    assert data.fees_total == 25.0


def test_webhook_negative_fee_string_is_not_flipped():
    """A "-5" string is a rebate, never a 5.00 charge."""
    payload = {
        "bank": "CITI",
        "amount": "5000",
        "fee_items": [{"name": "Rebate", "amount": "-5"}],
        "total_fees": "-5.00",
    }

    data = map_webhook_payload(payload)

    assert data.fee_items[0].amount == 0.0
    assert data.total_fees == 0.0


def test_structuring_failure_keeps_readable_document():
    """OCR text survives a structuring outage as a placeholder record."""
    client = MagicMock()
    client.call_with_structured_output.side_effect = ProviderError("gemini returned HTTP error: 500")

    with patch("llm.extract.run_ocr_chain", return_value=(TRANSCRIPT, "zhipu-glm4v", [])), \
            patch("llm.extract.get_gemini_client", return_value=client):
        result = extract_transaction("ZmFrZQ==", "image/png", strategies=[Strategy("ocr+llm", _ocr_llm_strategy)])

    assert result.strategy == "ocr+llm"
    assert result.data.bank_name == "Unidentified Bank"
    assert result.data.original_amount == 0.0
    assert result.data.exchange_rate_bank == 0.0
    assert result.data.total_fees == 0.0
    assert result.data.raw["ocr_text"] == TRANSCRIPT


def test_gemini_client_requires_key():
    """Missing key is a provider failure, not a crash."""
    with pytest.raises(ProviderNotConfiguredError):
        GeminiClient()


def test_gemini_structured_output_strips_fences(monkeypatch):
    """Fenced JSON content is parsed."""
    monkeypatch.setenv("GEMINI_API_KEY", "test-key")
    reset_settings()
    reset_clients()

    response = MagicMock()
    response.json.return_value = {
        "candidates": [{"content": {"parts": [{"text": '```json\n{"bank_name": "HSBC"}\n```'}]}}]
    }

    with patch("llm.client.requests.post", return_value=response) as mock_post:
        result = GeminiClient().call_with_structured_output("system", "user", {"type": "OBJECT"})

    assert result == {"bank_name": "HSBC"}
    assert mock_post.call_count == 1
    assert mock_post.call_args.kwargs["headers"]["x-goog-api-key"] == "test-key"


def test_zhipu_http_error_is_provider_error(monkeypatch):
    """HTTP errors are not retried and become ProviderError."""
    monkeypatch.setenv("ZHIPUAI_API_KEY", "test-key")
    reset_settings()

    response = MagicMock()
    response.raise_for_status.side_effect = requests.exceptions.HTTPError("503 Server Error")

    with patch("llm.client.requests.post", return_value=response) as mock_post:
        with pytest.raises(ProviderError):
            ZhipuVisionClient().transcribe("ZmFrZQ==", "image/png", "Transcribe")

    assert mock_post.call_count == 1
