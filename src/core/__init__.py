"""
Core Module - shared process-wide infrastructure.

Holds the service registry the web layer resolves linking services from.
"""

from .service_registry import ServiceRegistry, services

__all__ = ["ServiceRegistry", "services"]
