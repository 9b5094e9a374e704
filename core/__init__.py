"""Core module - ERP-neutral models, configuration and infrastructure.

This module contains the storefront and sync bookkeeping models, settings,
mapping, storage, audit, security and observability components. It is
intentionally ERP-agnostic.

ERP-specific logic (Service Layer transport, OData queries) belongs in /connectors/.
"""

__version__ = "1.0.0"
