"""
Tests for practitioner administration.

Covers status transitions, code assignment on approval, delete with
immediate reassignment, and the fraud appeal window and sweep.
"""

from datetime import timedelta

import pytest

from config.settings import LinkingSettings
from domain.entities import LinkReason, PractitionerStatus, utc_now
from linking.admin import PractitionerAdministration, can_change_status
from linking.errors import InvalidStatusTransition, NotFound


class TestStatusTransitions:

    def test_allowed(self):
        assert can_change_status(PractitionerStatus.PENDING, PractitionerStatus.APPROVED)
        assert can_change_status(PractitionerStatus.APPROVED, PractitionerStatus.FRAUD)
        assert can_change_status(PractitionerStatus.FRAUD, PractitionerStatus.APPROVED)
        assert can_change_status(PractitionerStatus.SUSPENDED, PractitionerStatus.DELETED)

    def test_disallowed(self):
        assert not can_change_status(PractitionerStatus.DELETED, PractitionerStatus.APPROVED)
        assert not can_change_status(PractitionerStatus.PENDING, PractitionerStatus.FRAUD)
        assert not can_change_status(None, PractitionerStatus.APPROVED)


class TestApprove:

    @pytest.mark.asyncio
    async def test_approve_assigns_code(self, linking, seed):
        await seed.practitioner("p1", status=PractitionerStatus.PENDING)

        account = await linking.admin.approve(
            "p1", specializations=["Tax", "estate"], actor_id="admin-1"
        )

        assert account.practitioner_status == PractitionerStatus.APPROVED
        assert account.specializations == ["tax", "estate"]
        assert len(account.practitioner_code) == LinkingSettings().code_length

    @pytest.mark.asyncio
    async def test_code_is_kept_across_reapproval(self, linking, seed):
        await seed.practitioner("p1", status=PractitionerStatus.PENDING)
        approved = await linking.admin.approve("p1")
        await linking.admin.suspend("p1")

        again = await linking.admin.approve("p1")

        assert again.practitioner_code == approved.practitioner_code

    @pytest.mark.asyncio
    async def test_colliding_codes_are_skipped(self, store, linking, seed):
        await seed.practitioner("p1", code="AAAAAA")
        await seed.practitioner("p2", status=PractitionerStatus.PENDING)
        codes = iter(["AAAAAA", "BBBBBB"])
        admin = PractitionerAdministration(
            store, linking.reassignment, LinkingSettings(), code_generator=lambda n: next(codes)
        )

        account = await admin.approve("p2")

        assert account.practitioner_code == "BBBBBB"

    @pytest.mark.asyncio
    async def test_approve_approved_fails(self, linking, seed):
        await seed.practitioner("p1")

        with pytest.raises(InvalidStatusTransition):
            await linking.admin.approve("p1")

    @pytest.mark.asyncio
    async def test_unknown_practitioner(self, linking, seed):
        await seed.client("c1")

        with pytest.raises(NotFound):
            await linking.admin.approve("nobody")
        with pytest.raises(NotFound):
            await linking.admin.suspend("c1")

    @pytest.mark.asyncio
    async def test_approved_code_is_mirrored(self, linking, seed, cache):
        await seed.practitioner("p1", status=PractitionerStatus.PENDING)

        account = await linking.admin.approve("p1")
        cached = await cache.get_practitioner_by_code(account.practitioner_code)

        assert cached.account_id == "p1"
        assert cached.is_approved


class TestSuspend:

    @pytest.mark.asyncio
    async def test_suspend_keeps_clients(self, linking, seed):
        await seed.practitioner("p1")
        await seed.practitioner("p2")
        await seed.client("c1")
        await linking.connections.connect("c1", "p1")

        account = await linking.admin.suspend("p1")

        assert account.practitioner_status == PractitionerStatus.SUSPENDED
        assert await linking.connections.is_connected("c1", "p1")
        assert await linking.matching.find_match([]) == "p2"

    @pytest.mark.asyncio
    async def test_suspend_pending_fails(self, linking, seed):
        await seed.practitioner("p1", status=PractitionerStatus.PENDING)

        with pytest.raises(InvalidStatusTransition):
            await linking.admin.suspend("p1")


class TestDelete:

    @pytest.mark.asyncio
    async def test_delete_reassigns_clients(self, linking, seed):
        await seed.practitioner("p1")
        await seed.practitioner("p2")
        for client_id in ("c1", "c2"):
            await seed.client(client_id)
            await linking.connections.connect(client_id, "p1")

        result = await linking.admin.delete("p1", actor_id="admin-1")

        assert result.account.practitioner_status == PractitionerStatus.DELETED
        assert result.report.reason == LinkReason.PRACTITIONER_DELETED
        assert sorted(o.client_id for o in result.report.succeeded) == ["c1", "c2"]
        assert [a.account_id for a in await linking.connections.list_connected_clients("p2")] == [
            "c1", "c2"
        ]

    @pytest.mark.asyncio
    async def test_deleted_is_terminal(self, linking, seed):
        await seed.practitioner("p1")
        await linking.admin.delete("p1")

        with pytest.raises(InvalidStatusTransition):
            await linking.admin.approve("p1")
        with pytest.raises(InvalidStatusTransition):
            await linking.admin.delete("p1")

    @pytest.mark.asyncio
    async def test_reassign_clients_left_behind(self, linking, seed):
        await seed.practitioner("p1")
        await seed.client("c1")
        await linking.connections.connect("c1", "p1")

        result = await linking.admin.delete("p1")
        assert [o.error_code for o in result.report.failed] == ["no_eligible_practitioner"]
        assert await linking.connections.is_connected("c1", "p1")

        await seed.practitioner("p2")
        report = await linking.admin.reassign_remaining("p1", actor_id="admin-1")

        assert [o.new_practitioner_id for o in report.succeeded] == ["p2"]
        assert report.reason == LinkReason.PRACTITIONER_DELETED
        assert await linking.connections.list_connected_clients("p1") == []
        assert await linking.connections.is_connected("c1", "p2")

    @pytest.mark.asyncio
    async def test_reassign_remaining_requires_deleted(self, linking, seed):
        await seed.practitioner("p1")
        await seed.client("c1")
        await linking.connections.connect("c1", "p1")

        with pytest.raises(InvalidStatusTransition):
            await linking.admin.reassign_remaining("p1")
        with pytest.raises(NotFound):
            await linking.admin.reassign_remaining("nobody")
        assert await linking.connections.is_connected("c1", "p1")


class TestFraud:

    @pytest.mark.asyncio
    async def test_tag_sets_deadline(self, linking, seed):
        await seed.practitioner("p1")
        before = utc_now()

        account = await linking.admin.tag_fraud("p1", actor_id="admin-1")

        assert account.practitioner_status == PractitionerStatus.FRAUD
        days = LinkingSettings().fraud_appeal_days
        assert before + timedelta(days=days) <= account.fraud_appeal_deadline
        assert account.fraud_appeal_deadline <= utc_now() + timedelta(days=days)

    @pytest.mark.asyncio
    async def test_clear_fraud_clears_deadline(self, linking, seed):
        await seed.practitioner("p1")
        await linking.admin.tag_fraud("p1")

        await linking.admin.clear_fraud("p1")

        account = await linking.admin.get_practitioner("p1")
        assert account.practitioner_status == PractitionerStatus.APPROVED
        assert account.fraud_appeal_deadline is None

    @pytest.mark.asyncio
    async def test_clients_stay_during_appeal(self, linking, seed):
        await seed.practitioner("p1")
        await seed.practitioner("p2")
        await seed.client("c1")
        await linking.connections.connect("c1", "p1")

        await linking.admin.tag_fraud("p1")
        sweep = await linking.admin.sweep_expired_fraud_reassignments(["p1"])

        assert sweep.eligible == []
        assert sweep.skipped == ["p1"]
        assert await linking.connections.is_connected("c1", "p1")

    @pytest.mark.asyncio
    async def test_sweep_lists_then_reassigns(self, linking, seed):
        past = utc_now() - timedelta(days=1)
        await seed.practitioner("p1")
        await seed.practitioner("p2")
        await seed.client("c1")
        await linking.connections.connect("c1", "p1")
        # Tagged long enough ago that the appeal window has closed
        await linking.store.write(
            lambda uow: uow.accounts.set_practitioner_status(
                "p1",
                PractitionerStatus.FRAUD,
                expected_status=PractitionerStatus.APPROVED,
                fraud_appeal_deadline=past,
            )
        )

        listing = await linking.admin.sweep_expired_fraud_reassignments()
        assert listing.processed == []
        (case,) = listing.eligible
        assert case["practitioner_id"] == "p1"
        assert case["client_count"] == 1

        sweep = await linking.admin.sweep_expired_fraud_reassignments(
            ["p1", "p2"], actor_id="admin-1"
        )

        (report,) = sweep.processed
        assert report.reason == LinkReason.FRAUD_APPEAL_DEADLINE_EXPIRED
        assert [o.new_practitioner_id for o in report.succeeded] == ["p2"]
        assert sweep.skipped == ["p2"]
        assert await linking.connections.is_connected("c1", "p2")


class TestQueries:

    @pytest.mark.asyncio
    async def test_list_practitioners_by_status(self, linking, seed):
        await seed.practitioner("p1")
        await seed.practitioner("p2", status=PractitionerStatus.PENDING)
        await seed.client("c1")

        assert [a.account_id for a in await linking.admin.list_practitioners()] == ["p1", "p2"]
        pending = await linking.admin.list_practitioners(PractitionerStatus.PENDING)
        assert [a.account_id for a in pending] == ["p2"]
