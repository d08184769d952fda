"""
Wiring of the linking services.

Builds the service graph once and registers it in the service registry so
the web layer (and tests) can fetch it by name.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from cache.local_cache import LocalCache
from config.settings import Settings, get_settings
from core.service_registry import ServiceRegistry, services

from .accounts import AccountService
from .admin import PractitionerAdministration
from .applications import ApplicationService
from .connection_manager import ConnectionManager
from .identity import IdentityProvider, JwtIdentityProvider
from .intake import InviteNotifier, InviteService, RequestIntake
from .matching import MatchingEngine
from .reassignment import ReassignmentOrchestrator
from .reconciliation import Reconciler
from .record_store import RecordStore

logger = logging.getLogger(__name__)

LINKING_SERVICES = "linking"
IDENTITY_PROVIDER = "identity_provider"


@dataclass
class LinkingServices:
    """Every linking service, sharing one store and one cache."""
    store: RecordStore
    cache: Optional[LocalCache]
    accounts: AccountService
    connections: ConnectionManager
    matching: MatchingEngine
    reassignment: ReassignmentOrchestrator
    intake: RequestIntake
    invites: InviteService
    admin: PractitionerAdministration
    applications: ApplicationService
    reconciler: Optional[Reconciler]


def build_linking_services(
    store: Optional[RecordStore] = None,
    cache: Optional[LocalCache] = None,
    settings: Optional[Settings] = None,
    notifier: Optional[InviteNotifier] = None,
) -> LinkingServices:
    settings = settings or get_settings()
    linking = settings.linking
    store = store or RecordStore(settings=settings.resilience)

    connections = ConnectionManager(store, cache)
    matching = MatchingEngine(store, linking)
    reassignment = ReassignmentOrchestrator(store, connections, matching, linking)
    intake = RequestIntake(store, connections, matching, cache)
    admin = PractitionerAdministration(store, reassignment, linking, cache)

    return LinkingServices(
        store=store,
        cache=cache,
        accounts=AccountService(store, cache),
        connections=connections,
        matching=matching,
        reassignment=reassignment,
        intake=intake,
        invites=InviteService(store, connections, linking, notifier),
        admin=admin,
        applications=ApplicationService(store, admin),
        reconciler=Reconciler(cache, connections, intake) if cache is not None else None,
    )


def register_linking_services(
    linking_services: LinkingServices,
    identity: Optional[IdentityProvider] = None,
    registry: ServiceRegistry = services,
) -> None:
    registry.register(LINKING_SERVICES, linking_services)
    registry.register(IDENTITY_PROVIDER, identity or JwtIdentityProvider())
    logger.info("Linking services registered")


def get_linking_services(registry: ServiceRegistry = services) -> LinkingServices:
    return registry.require(LINKING_SERVICES)
