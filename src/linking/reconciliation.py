"""
Reconciliation of the local cache against the Record Store.

Two steps, both one-way:

1. Replay: every journaled write goes through the normal store write path.
   Applied and terminally rejected entries leave the journal; entries still
   blocked by StoreUnavailable stay queued for the next pass.
2. Refresh: every client and practitioner touched by the replay has its
   cache entries rewritten from the store.

Cache contents are never copied into the store.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from cache.local_cache import LocalCache, PendingWrite, PendingWriteKind
from domain.entities import ConnectionOrigin

from .connection_manager import ConnectionManager
from .errors import AlreadyConnected, LinkingError, StoreUnavailable
from .intake.service import RequestIntake

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationReport:
    """Outcome of one reconciliation pass."""
    applied: List[str] = field(default_factory=list)
    rejected: List[Dict[str, Any]] = field(default_factory=list)
    pending: List[str] = field(default_factory=list)
    refreshed_clients: List[str] = field(default_factory=list)
    refreshed_practitioners: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "applied": self.applied,
            "rejected": self.rejected,
            "pending": self.pending,
            "refreshed_clients": self.refreshed_clients,
            "refreshed_practitioners": self.refreshed_practitioners,
        }


class Reconciler:
    """
    Replays the journal and refreshes the cache.

    Usage:
        reconciler = Reconciler(cache, connections, intake)
        report = await reconciler.reconcile()

        stop = asyncio.Event()
        task = asyncio.create_task(reconciler.run_periodic(30.0, stop))
    """

    def __init__(
        self,
        cache: LocalCache,
        connections: ConnectionManager,
        intake: RequestIntake,
    ):
        self._cache = cache
        self._connections = connections
        self._intake = intake

    async def reconcile(self) -> ReconciliationReport:
        report = ReconciliationReport()
        clients: Set[str] = set()
        practitioners: Set[str] = set()

        for entry in await self._cache.pending_writes():
            client_id = entry.payload.get("client_id")
            try:
                practitioner_id = await self._replay(entry)
            except StoreUnavailable as e:
                entry.attempts += 1
                entry.last_error = e.message
                await self._cache.update_write(entry)
                report.pending.append(entry.write_id)
                continue
            except LinkingError as e:
                logger.warning(f"Journaled {entry.kind.value} {entry.write_id} rejected: {e.code}")
                await self._cache.discard_write(entry.write_id)
                report.rejected.append({
                    "write_id": entry.write_id,
                    "kind": entry.kind.value,
                    "code": e.code,
                    "message": e.message,
                })
                if client_id:
                    clients.add(client_id)
                continue

            await self._cache.discard_write(entry.write_id)
            report.applied.append(entry.write_id)
            if client_id:
                clients.add(client_id)
            if practitioner_id:
                practitioners.add(practitioner_id)

        await self._refresh(clients, practitioners, report)
        if report.applied or report.rejected or report.pending:
            logger.info(
                f"Reconciliation: {len(report.applied)} applied, "
                f"{len(report.rejected)} rejected, {len(report.pending)} still pending"
            )
        return report

    async def _replay(self, entry: PendingWrite) -> Optional[str]:
        """Apply one entry. Returns the practitioner whose roster it touched."""
        payload = entry.payload
        client_id = payload["client_id"]

        if entry.kind == PendingWriteKind.CONNECT:
            practitioner_id = payload["practitioner_id"]
            try:
                await self._connections.write_connect(
                    client_id,
                    practitioner_id,
                    origin=ConnectionOrigin(payload.get("origin", ConnectionOrigin.DIRECT.value)),
                    reason=payload.get("reason"),
                )
            except AlreadyConnected:
                # An earlier attempt may have committed without acknowledgement
                if not await self._connections.is_connected(client_id, practitioner_id):
                    raise
            return practitioner_id

        if entry.kind == PendingWriteKind.DISCONNECT:
            active = await self._connections.get_active_connection(client_id)
            await self._connections.write_disconnect(client_id)
            return active.practitioner_id if active else None

        if entry.kind == PendingWriteKind.CODE_REQUEST:
            request = await self._intake.write_code_request(client_id, payload["code"])
            return request.practitioner_id

        raise ValueError(f"Unknown journal entry kind: {entry.kind}")

    async def _refresh(
        self, clients: Set[str], practitioners: Set[str], report: ReconciliationReport
    ) -> None:
        for client_id in sorted(clients):
            try:
                active = await self._connections.get_active_connection(client_id)
            except StoreUnavailable:
                continue
            if active is not None:
                practitioners.add(active.practitioner_id)
            report.refreshed_clients.append(client_id)

        for practitioner_id in sorted(practitioners):
            try:
                await self._connections.list_connected_clients(practitioner_id)
            except StoreUnavailable:
                continue
            report.refreshed_practitioners.append(practitioner_id)

    async def run_periodic(self, interval: float, stop_event: asyncio.Event) -> None:
        """Reconcile every ``interval`` seconds until ``stop_event`` is set."""
        logger.info(f"Reconciliation loop started (every {interval}s)")
        while not stop_event.is_set():
            try:
                await self.reconcile()
            except Exception:
                logger.exception("Reconciliation pass failed")

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
        logger.info("Reconciliation loop stopped")
