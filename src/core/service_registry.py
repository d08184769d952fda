"""
Service Registry - process-wide lookup for long-lived services.

The web layer resolves its linking services and identity provider here
instead of reaching for module globals, so tests can swap them freely.

Usage:
    from core.service_registry import services

    # App start-up
    services.register("linking", build_linking_services(cache=cache))

    # Request handling
    linking = services.require("linking")

    # Test teardown (root conftest.py)
    services.reset_all()
"""

import logging
from typing import Any, Callable, Dict

logger = logging.getLogger(__name__)


class ServiceRegistry:
    """
    Named registry of service instances.

    A service can also be registered as a factory, called on first lookup
    and cached from then on.
    """

    def __init__(self):
        self._services: Dict[str, Any] = {}
        self._factories: Dict[str, Callable[[], Any]] = {}

    def register(self, name: str, instance: Any) -> None:
        """
        Register a service instance, replacing any previous one.

        Args:
            name: Service identifier (e.g., "linking", "identity_provider")
            instance: The service instance
        """
        self._services[name] = instance
        logger.debug(f"Service registered: {name}")

    def register_factory(self, name: str, factory: Callable[[], Any]) -> None:
        """Register a factory that builds the service on first lookup."""
        self._factories[name] = factory
        logger.debug(f"Service factory registered: {name}")

    def get(self, name: str, default: Any = None) -> Any:
        """Return the named service, building it from its factory if needed."""
        if name in self._services:
            return self._services[name]

        factory = self._factories.get(name)
        if factory is None:
            return default

        instance = factory()
        self._services[name] = instance
        return instance

    def require(self, name: str) -> Any:
        """
        Return the named service.

        Raises:
            RuntimeError: If nothing is registered under the name.
        """
        if not self.has(name):
            raise RuntimeError(f"Service '{name}' is not registered")
        return self.get(name)

    def has(self, name: str) -> bool:
        """Check if a service is registered (instance or factory)."""
        return name in self._services or name in self._factories

    def unregister(self, name: str) -> None:
        """Remove a service and its factory."""
        self._services.pop(name, None)
        self._factories.pop(name, None)
        logger.debug(f"Service unregistered: {name}")

    def reset_all(self) -> None:
        """Drop every instance and factory. Used for test isolation."""
        self._services.clear()
        self._factories.clear()
        logger.debug("All services reset")


# Global singleton registry
services = ServiceRegistry()
