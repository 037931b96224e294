"""
Service layer for business logic.

This package contains the services that orchestrate quote auditing
(upload, extraction, rate resolution, persistence), accounts and
billing, and market data.
"""
