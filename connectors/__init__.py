"""Connectors - pluggable adapters to external systems.

The hub depends only on the Connector interface. Concrete connectors are
registered on a ConnectorRegistry, either in code or from HUB_CONNECTORS.
"""

from connectors.base import (
    Connector,
    ConnectionTestResult,
    SyncResult,
    UnsupportedJobType,
)
from connectors.registry import ConnectorRegistry, import_object

__all__ = [
    "Connector",
    "ConnectionTestResult",
    "SyncResult",
    "UnsupportedJobType",
    "ConnectorRegistry",
    "import_object",
]
