"""ERP connectors.

The sync handlers talk to the ERP only through ``ServiceLayerClient`` and
raise or catch ``ERPError``. Everything Service Layer specific (session
cookies, OData query syntax, response envelopes) stays in ``service_layer``.
"""

from connectors.errors import ERPError, ErrorKind

__all__ = [
    "ERPError",
    "ErrorKind",
]
