"""
REST clients for the hosted OCR / LLM providers used by document extraction.
Handles API calls with transport retries and structured output.
"""
import json
from typing import Any, Dict, List, Optional

import requests
from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from core.config import get_settings
from core.exceptions import ProviderError, ProviderNotConfiguredError
from core.logger import setup_logger
from core.normalize import strip_code_fences

logger = setup_logger(__name__)

# Only transport failures are retried; HTTP errors go straight to the next provider
TRANSIENT_ERRORS = (requests.exceptions.Timeout, requests.exceptions.ConnectionError)


class _RestClient:
    """Shared POST-with-retry plumbing."""

    provider = "provider"

    def __init__(self, timeout: int, max_retries: int):
        self.timeout = timeout
        self._retrying = Retrying(
            stop=stop_after_attempt(max_retries),
            wait=wait_exponential(multiplier=1, min=2, max=10),
            retry=retry_if_exception_type(TRANSIENT_ERRORS),
            reraise=True,
        )

    def _post_json(self, url: str, payload: Dict[str, Any], headers: Dict[str, str]) -> Any:
        """
        POST a JSON payload and return the decoded JSON response.

        Raises:
            ProviderError: On timeout, HTTP error, connection failure or invalid JSON
        """
        try:
            response = self._retrying(
                requests.post,
                url,
                headers={"Content-Type": "application/json", **headers},
                data=json.dumps(payload),
                timeout=self.timeout,
            )
            response.raise_for_status()
            return response.json()

        except requests.exceptions.Timeout as e:
            logger.error(f"{self.provider} request timeout after {self.timeout}s: {e}")
            raise ProviderError(
                f"{self.provider} request timeout after {self.timeout}s",
                details={"provider": self.provider, "timeout": self.timeout}
            )

        except requests.exceptions.HTTPError as e:
            logger.error(f"{self.provider} HTTP error: {e}")
            raise ProviderError(
                f"{self.provider} returned HTTP error: {e}",
                details={
                    "provider": self.provider,
                    "status_code": getattr(e.response, "status_code", None),
                }
            )

        except ValueError as e:
            # requests' JSONDecodeError is both a ValueError and a RequestException
            logger.error(f"{self.provider} returned invalid JSON: {e}")
            raise ProviderError(
                f"{self.provider} returned invalid JSON: {e}",
                details={"provider": self.provider}
            )

        except requests.exceptions.RequestException as e:
            logger.error(f"{self.provider} request failed: {e}")
            raise ProviderError(
                f"Failed to connect to {self.provider}: {str(e)}",
                details={"provider": self.provider, "error": str(e)}
            )


class ZhipuVisionClient(_RestClient):
    """GLM-4V vision model through its OpenAI-compatible chat completions API."""

    provider = "zhipu-glm4v"

    def __init__(self):
        settings = get_settings()
        if not settings.zhipu_api_key:
            raise ProviderNotConfiguredError(
                "ZHIPUAI_API_KEY environment variable not set",
                details={"required_key": "ZHIPUAI_API_KEY"}
            )
        super().__init__(settings.llm_timeout, settings.llm_max_retries)
        self.api_url = settings.zhipu_api_url
        self.api_key = settings.zhipu_api_key
        self.model = settings.zhipu_model

        logger.info(f"Initialized Zhipu vision client with model: {self.model}")

    def transcribe(self, base64_data: str, mime_type: str, prompt: str) -> str:
        """
        Transcribe a document image to text.

        Args:
            base64_data: Base64-encoded document
            mime_type: Document MIME type
            prompt: Transcription instruction

        Returns:
            Transcript (may be empty)
        """
        payload = {
            "model": self.model,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": prompt},
                        {"type": "image_url", "image_url": {"url": f"data:{mime_type};base64,{base64_data}"}},
                    ],
                }
            ],
            "temperature": 0.1,
            "max_tokens": 2000,
        }
        data = self._post_json(self.api_url, payload, {"Authorization": f"Bearer {self.api_key}"})

        try:
            return data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError):
            logger.warning(f"Unexpected {self.provider} response structure: {str(data)[:200]}")
            return ""


class GeminiClient(_RestClient):
    """Gemini generateContent API, used for vision OCR and structured extraction."""

    provider = "gemini"

    def __init__(self):
        settings = get_settings()
        if not settings.gemini_api_key:
            raise ProviderNotConfiguredError(
                "GEMINI_API_KEY environment variable not set",
                details={"required_key": "GEMINI_API_KEY"}
            )
        super().__init__(settings.llm_timeout, settings.llm_max_retries)
        self.api_base = settings.gemini_api_base.rstrip("/")
        self.api_key = settings.gemini_api_key
        self.ocr_model = settings.gemini_ocr_model
        self.extraction_model = settings.gemini_extraction_model

        logger.info(
            f"Initialized Gemini client with models: {self.ocr_model} (ocr), "
            f"{self.extraction_model} (extraction)"
        )

    def _generate(self, model: str, body: Dict[str, Any]) -> str:
        url = f"{self.api_base}/models/{model}:generateContent"
        data = self._post_json(url, body, {"x-goog-api-key": self.api_key})

        try:
            parts: List[Dict[str, Any]] = data["candidates"][0]["content"]["parts"]
        except (KeyError, IndexError, TypeError):
            logger.warning(f"Gemini response had no candidates: {str(data)[:200]}")
            return ""

        if "usageMetadata" in data:
            usage = data["usageMetadata"]
            logger.debug(
                f"Token usage - Input: {usage.get('promptTokenCount', 'N/A')}, "
                f"Output: {usage.get('candidatesTokenCount', 'N/A')}"
            )

        return "".join(part.get("text", "") for part in parts)

    def transcribe(self, base64_data: str, mime_type: str, prompt: str) -> str:
        """Transcribe a document image to text."""
        body = {
            "contents": [{
                "parts": [
                    {"text": prompt},
                    {"inline_data": {"mime_type": mime_type, "data": base64_data}},
                ]
            }]
        }
        return self._generate(self.ocr_model, body)

    def call_with_structured_output(
        self,
        system_prompt: str,
        user_message: str,
        response_schema: Dict[str, Any],
        temperature: float = 0.1,
    ) -> Dict[str, Any]:
        """
        Call Gemini with a JSON response schema.

        Args:
            system_prompt: System instruction
            user_message: User message with the OCR transcript
            response_schema: Response schema (OpenAPI subset)
            temperature: Model temperature (0.0-1.0)

        Returns:
            Parsed JSON response

        Raises:
            ProviderError: If the call fails or the content is not a JSON object
        """
        body = {
            "systemInstruction": {"parts": [{"text": system_prompt}]},
            "contents": [{"role": "user", "parts": [{"text": user_message}]}],
            "generationConfig": {
                "responseMimeType": "application/json",
                "responseSchema": response_schema,
                "temperature": temperature,
            },
        }
        content = self._generate(self.extraction_model, body)

        try:
            result = json.loads(strip_code_fences(content or "{}"))
        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse Gemini content as JSON: {e}")
            logger.debug(f"Raw content: {content}")
            raise ProviderError(
                f"Gemini returned invalid JSON: {e}",
                details={"provider": self.provider, "raw_response": content[:500]}
            )

        if not isinstance(result, dict):
            raise ProviderError(
                "Gemini returned JSON that is not an object",
                details={"provider": self.provider, "raw_response": content[:500]}
            )
        return result


class WebhookClient(_RestClient):
    """Integration node that accepts the raw document and returns extracted fields."""

    provider = "webhook"

    def __init__(self):
        settings = get_settings()
        if not settings.extraction_webhook_url:
            raise ProviderNotConfiguredError(
                "EXTRACTION_WEBHOOK_URL environment variable not set",
                details={"required_key": "EXTRACTION_WEBHOOK_URL"}
            )
        super().__init__(settings.llm_timeout, settings.llm_max_retries)
        self.url = settings.extraction_webhook_url

    def submit(self, base64_data: str, mime_type: str, timestamp: int) -> Dict[str, Any]:
        """
        Send a document to the integration node.

        Returns:
            The payload holding the fields (unwrapped from "data" / "body")
        """
        data = self._post_json(
            self.url,
            {"file": base64_data, "mimeType": mime_type, "timestamp": timestamp},
            {},
        )
        if isinstance(data, dict):
            for wrapper in ("data", "body"):
                if isinstance(data.get(wrapper), dict):
                    return data[wrapper]
            return data
        raise ProviderError(
            "Webhook returned a non-object payload",
            details={"provider": self.provider, "type": type(data).__name__}
        )


def create_response_schema() -> Dict[str, Any]:
    """
    Create the response schema for wire confirmation extraction.

    Returns:
        Schema dictionary in Gemini's OpenAPI subset
    """
    def nullable(type_: str, description: str) -> Dict[str, Any]:
        return {"type": type_, "nullable": True, "description": description}

    return {
        "type": "OBJECT",
        "properties": {
            "bank_name": nullable("STRING", "Bank issuing the confirmation"),
            "transaction_reference": nullable("STRING", "Transaction reference / ID"),
            "sender_name": nullable("STRING", "Ordering customer"),
            "beneficiary_name": nullable("STRING", "Beneficiary"),
            "original_amount": nullable("NUMBER", "Principal before conversion"),
            "original_currency": nullable("STRING", "ISO code of the principal"),
            "converted_amount": nullable("NUMBER", "Amount after conversion"),
            "converted_currency": nullable("STRING", "ISO code after conversion"),
            "exchange_rate_bank": nullable("NUMBER", "Exchange rate applied by the bank"),
            "currency_pair": nullable("STRING", "Pair as BASE/QUOTE, e.g. USD/EUR"),
            "value_date": nullable("STRING", "Settlement date, YYYY-MM-DD"),
            "fee_items": {
                "type": "ARRAY",
                "items": {
                    "type": "OBJECT",
                    "properties": {
                        "name": {"type": "STRING"},
                        "amount": {"type": "NUMBER"},
                    },
                    "required": ["name", "amount"],
                },
                "description": "Every explicit fee line",
            },
            "total_fees": nullable("NUMBER", "Sum of fees if printed on the document"),
        },
        "required": ["bank_name", "original_amount", "exchange_rate_bank", "fee_items"],
    }


# Singleton client instances
_gemini_client: Optional[GeminiClient] = None
_zhipu_client: Optional[ZhipuVisionClient] = None
_webhook_client: Optional[WebhookClient] = None


def get_gemini_client() -> GeminiClient:
    """Get or create the Gemini client singleton."""
    global _gemini_client
    if _gemini_client is None:
        _gemini_client = GeminiClient()
    return _gemini_client


def get_zhipu_client() -> ZhipuVisionClient:
    """Get or create the Zhipu vision client singleton."""
    global _zhipu_client
    if _zhipu_client is None:
        _zhipu_client = ZhipuVisionClient()
    return _zhipu_client


def get_webhook_client() -> WebhookClient:
    """Get or create the webhook client singleton."""
    global _webhook_client
    if _webhook_client is None:
        _webhook_client = WebhookClient()
    return _webhook_client


def reset_clients() -> None:
    """Drop client singletons (useful for testing)."""
    global _gemini_client, _zhipu_client, _webhook_client
    _gemini_client = None
    _zhipu_client = None
    _webhook_client = None
