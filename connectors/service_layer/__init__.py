"""SAP Business One Service Layer connector."""

from connectors.service_layer.sl_client import RetryConfig, ServiceLayerClient
from connectors.service_layer.sl_query import FilterOperator, ODataQuery
from connectors.service_layer.sl_session import SessionManager, SLAuthConfig, SLSession

__all__ = [
    "RetryConfig",
    "ServiceLayerClient",
    "FilterOperator",
    "ODataQuery",
    "SessionManager",
    "SLAuthConfig",
    "SLSession",
]
