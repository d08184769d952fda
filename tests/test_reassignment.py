"""Tests for the reassignment orchestrator."""

import pytest

from domain.entities import ConnectionOrigin, ConnectionStatus, LinkReason
from domain.event_bus import get_event_bus
from domain.events import ConnectionReassigned, ReassignmentCompleted
from linking.errors import PractitionerUnavailable
from linking.reassignment import ReassignmentState


async def connect_roster(linking, seed, practitioner_id, client_ids):
    for client_id in client_ids:
        await seed.client(client_id)
        await linking.connections.connect(client_id, practitioner_id)


class TestReassignClients:
    """Tests for ReassignmentOrchestrator.reassign_clients."""

    @pytest.mark.asyncio
    async def test_every_client_is_moved(self, linking, seed):
        await seed.practitioner("leaving", specializations=["tax"])
        await seed.practitioner("p1", specializations=["tax"])
        await seed.practitioner("p2", specializations=["tax"])
        await connect_roster(linking, seed, "leaving", ["c1", "c2", "c3", "c4"])

        report = await linking.reassignment.reassign_clients(
            "leaving", LinkReason.PRACTITIONER_DELETED, actor_id="admin-1"
        )

        assert report.failed == []
        assert sorted(o.client_id for o in report.succeeded) == ["c1", "c2", "c3", "c4"]
        assert await linking.connections.list_connected_clients("leaving") == []
        assert {o.new_practitioner_id for o in report.succeeded} == {"p1", "p2"}
        assert report.states == [
            ReassignmentState.ENUMERATING,
            ReassignmentState.PER_MATCHING,
            ReassignmentState.MIGRATING,
            ReassignmentState.REPORTING,
        ]
        assert report.finished_at is not None

    @pytest.mark.asyncio
    async def test_moved_links_carry_provenance(self, linking, seed):
        await seed.practitioner("leaving")
        await seed.practitioner("p1")
        await connect_roster(linking, seed, "leaving", ["c1"])

        await linking.reassignment.reassign_clients(
            "leaving", LinkReason.FRAUD_APPEAL_DEADLINE_EXPIRED
        )

        old, new = await linking.connections.connection_history("c1")
        assert old.status == ConnectionStatus.REASSIGNED
        assert new.practitioner_id == "p1"
        assert new.origin == ConnectionOrigin.REASSIGNMENT
        assert new.previous_practitioner_id == "leaving"
        assert new.reason == LinkReason.FRAUD_APPEAL_DEADLINE_EXPIRED.value

    @pytest.mark.asyncio
    async def test_matching_uses_last_known_needs(self, linking, seed):
        await seed.practitioner("leaving", specializations=["estate"])
        await seed.practitioner("generalist", specializations=["payroll"])
        await seed.practitioner("estate-expert", specializations=["estate"], rotation_cursor=10)
        await seed.client("c1")

        request = await linking.intake.submit_questionnaire("c1", ["estate"])
        await linking.intake.accept_request(request.request_id, request.practitioner_id)
        assert request.practitioner_id == "leaving"

        report = await linking.reassignment.reassign_clients(
            "leaving", LinkReason.PRACTITIONER_DELETED
        )

        assert [o.new_practitioner_id for o in report.succeeded] == ["estate-expert"]

    @pytest.mark.asyncio
    async def test_no_match_is_reported_not_raised(self, linking, seed):
        await seed.practitioner("leaving")
        await connect_roster(linking, seed, "leaving", ["c1", "c2"])

        report = await linking.reassignment.reassign_clients(
            "leaving", LinkReason.PRACTITIONER_DELETED
        )

        assert report.succeeded == []
        assert sorted(o.client_id for o in report.failed) == ["c1", "c2"]
        assert {o.error_code for o in report.failed} == {"no_eligible_practitioner"}
        # Unmatched clients stay where they were
        assert await linking.connections.is_connected("c1", "leaving")
        assert report.total == 2

    @pytest.mark.asyncio
    async def test_empty_roster(self, linking, seed):
        await seed.practitioner("leaving")

        report = await linking.reassignment.reassign_clients(
            "leaving", LinkReason.PRACTITIONER_DELETED
        )

        assert report.total == 0
        assert report.to_dict()["states"][-1] == "reporting"

    @pytest.mark.asyncio
    async def test_events_published(self, linking, seed):
        await seed.practitioner("leaving")
        await seed.practitioner("p1")
        await connect_roster(linking, seed, "leaving", ["c1"])

        received = []
        bus = get_event_bus()
        bus.subscribe(ConnectionReassigned, received.append)
        bus.subscribe(ReassignmentCompleted, received.append)

        await linking.reassignment.reassign_clients(
            "leaving", LinkReason.PRACTITIONER_DELETED, actor_id="admin-1"
        )

        reassigned, completed = received
        assert reassigned.client_id == "c1"
        assert reassigned.practitioner_id == "p1"
        assert completed.succeeded == ["c1"]
        assert completed.actor_id == "admin-1"

    @pytest.mark.asyncio
    async def test_failed_move_does_not_consume_rotation_slot(
        self, linking, seed, store, monkeypatch
    ):
        await seed.practitioner("leaving")
        await seed.practitioner("p1")
        await connect_roster(linking, seed, "leaving", ["c1"])

        async def suspended_meanwhile(*args, **kwargs):
            raise PractitionerUnavailable("Practitioner p1 is not accepting clients")

        monkeypatch.setattr(linking.connections, "migrate_in", suspended_meanwhile)

        report = await linking.reassignment.reassign_clients(
            "leaving", LinkReason.PRACTITIONER_DELETED
        )

        assert [o.error_code for o in report.failed] == ["practitioner_unavailable"]
        assert (await seed.account("p1")).rotation_cursor == 0
        assert await linking.connections.is_connected("c1", "leaving")
