"""Connector Registry.

Maps an integration type to a connector factory. The registry is an explicit
instance built at startup and handed to IntegrationManager, so tests and
multiple hubs in one process never share registrations.

Usage:
    registry = ConnectorRegistry()

    @registry.connector("sync")
    class ErpConnector(Connector):
        ...

    registry.register_path("export", "my_erp.connectors:ExportConnector")
    connector = registry.resolve("sync")
"""

import importlib
from typing import Callable, Dict, List, Mapping, Union

from connectors.base import Connector
from core.errors import ConnectorNotFound
from core.observability.logging import get_logger


logger = get_logger(__name__)

ConnectorFactory = Callable[[], Connector]


def import_object(path: str):
    """Import `package.module:Name` (or `package.module.Name`)."""
    if ":" in path:
        module_name, attr = path.split(":", 1)
    else:
        module_name, _, attr = path.rpartition(".")
    if not module_name or not attr:
        raise ValueError(f"Connector path must look like 'module:Class', got {path!r}")
    module = importlib.import_module(module_name)
    try:
        return getattr(module, attr)
    except AttributeError:
        raise ValueError(f"{module_name} has no attribute {attr!r}")


class ConnectorRegistry:
    """Resolves integration types to connectors."""

    def __init__(self):
        self._factories: Dict[str, ConnectorFactory] = {}

    def register(self, integration_type: str, factory: Union[ConnectorFactory, type]) -> None:
        """Register a connector class or zero-argument factory for a type.

        Re-registering a type replaces the previous factory.
        """
        key = integration_type.lower()
        if key in self._factories:
            logger.info(f"Replacing connector for type '{key}'")
        self._factories[key] = factory

    def connector(self, integration_type: str):
        """Decorator to register a connector class."""
        def decorator(cls):
            self.register(integration_type, cls)
            return cls
        return decorator

    def register_path(self, integration_type: str, path: str) -> None:
        self.register(integration_type, import_object(path))

    def load(self, connectors: Mapping[str, str]) -> None:
        """Register every `type -> module:Class` entry (from HUB_CONNECTORS)."""
        for integration_type, path in connectors.items():
            self.register_path(integration_type, path)
            logger.info(f"Registered connector '{integration_type}' -> {path}")

    def resolve(self, integration_type: str) -> Connector:
        """Create a connector for the type.

        Raises:
            ConnectorNotFound: nothing is registered for the type
        """
        factory = self._factories.get((integration_type or "").lower())
        if factory is None:
            raise ConnectorNotFound(integration_type, self.types())
        return factory()

    def types(self) -> List[str]:
        return sorted(self._factories)

    def __contains__(self, integration_type: str) -> bool:
        return (integration_type or "").lower() in self._factories
