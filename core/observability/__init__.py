"""
Observability Module for the ERP sync engine

Provides:
- Structured logging with correlation IDs
- Sync job metrics (lifecycle counters, processing times, stock outcomes)
"""

from core.observability.metrics import SyncMetrics

from core.observability.logging import (
    get_logger,
    configure_logging,
    mask_sensitive,
    CorrelationContext,
    with_correlation,
)

__all__ = [
    # Metrics
    "SyncMetrics",
    # Logging
    "get_logger",
    "configure_logging",
    "mask_sensitive",
    "CorrelationContext",
    "with_correlation",
]
