"""
Prompts for wire confirmation OCR and structured extraction.
"""
from core.normalize import clean_ocr_text

ZHIPU_OCR_PROMPT = (
    "Transcribe all text and numbers from this financial document exactly as they appear. "
    "Do not summarize."
)

GEMINI_OCR_PROMPT = "Transcribe text from image. Return only text."

AUDITOR_PERSONA = "You are the RateGuard Data Auditor. Your task is to extract bank confirmation data."


def build_system_prompt() -> str:
    """
    Build the system instruction for structured extraction.

    Returns:
        Complete system prompt string
    """
    return f"""{AUDITOR_PERSONA}

Extract data from this bank wire / FX confirmation.

**MAPPING RULES:**
1. **Bank Name**: Look at the very first line of the document. If it says 'JPMORGAN CHASE', 'CHASE' or 'JPM', the bank is 'JPMorgan Chase'.
2. **Numerical Values**: Strip all symbols ($, ¥, €, ,) and return only numbers with decimals.
   - *Example*: $125,000.00 -> 125000.00
3. **Exchange Rate**: The rate the bank actually applied, as printed (e.g. 1.1120). Never compute it yourself.
4. **Currency Pair**: BASE/QUOTE as printed or implied by the conversion (e.g. USD/EUR).
5. **Fees**: List EVERY fee line separately in fee_items (wire fee, FX fee, correspondent fee, ...).
   If the document prints a fee total, also return it in total_fees.
6. **Dates**: value_date as YYYY-MM-DD.

**STRICT:**
- Do not include markdown code blocks.
- If you cannot find a value, use null. Never use 0 unless the document explicitly says zero.
"""


def build_user_message(ocr_text: str) -> str:
    """
    Build the user message carrying the cleaned OCR transcript.

    Args:
        ocr_text: Raw OCR transcript

    Returns:
        User message string
    """
    return f"Data:\n{clean_ocr_text(ocr_text)}"
