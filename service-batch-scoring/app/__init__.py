"""Batch scoring service package.

Layout:
- ``api``: REST endpoints for published services and jobs.
- ``runtime``: the registry of published services.

Import convenience:
- from app.runtime.service_registry import ServiceRegistry
"""
