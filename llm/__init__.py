"""
Hosted OCR / LLM integration for wire confirmation extraction.

This package contains:
- client: REST clients for Gemini, GLM-4V and the integration webhook
- extract: Extraction adapter with ordered provider fallback
- prompts: OCR and extraction prompt builders
"""
