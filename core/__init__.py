"""
Core modules for FX markup auditing.

This package contains:
- calculator: Spread, markup and benchmark math, ledger summaries
- config: Application configuration and settings
- db: SQLite-backed document store with change listeners
- dispute: Dispute letter rendering
- exceptions: Custom exception classes
- exporters: Excel / CSV ledger export
- logger: Logging configuration and analytics events
- normalize: Amount, bank, currency and OCR text normalization
- schema: Pydantic models for documents and API payloads
- workflow: Quote review state machine
"""
