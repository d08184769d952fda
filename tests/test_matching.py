"""
Tests for the matching engine.

Selection is round-robin over approved practitioners covering a need:
lowest rotation cursor first, ties by sign-up order.
"""

import asyncio
from collections import Counter

import pytest

from config.settings import LinkingSettings
from domain.entities import PractitionerStatus
from linking.matching import MatchingEngine, normalize_tags


class TestNormalizeTags:

    def test_lowercases_trims_and_dedupes(self):
        assert normalize_tags([" Tax ", "tax", "ESTATE", "", None]) == ["tax", "estate"]

    def test_none_is_empty(self):
        assert normalize_tags(None) == []


class TestFindMatch:
    """Tests for MatchingEngine.find_match."""

    @pytest.mark.asyncio
    async def test_lowest_cursor_wins_and_advances(self, store, seed):
        await seed.practitioner("p1", specializations=["tax"], rotation_cursor=3)
        await seed.practitioner("p2", specializations=["tax"], rotation_cursor=1)
        engine = MatchingEngine(store, LinkingSettings())

        assert await engine.find_match(["tax"]) == "p2"
        assert (await seed.account("p2")).rotation_cursor == 2
        assert (await seed.account("p1")).rotation_cursor == 3

    @pytest.mark.asyncio
    async def test_rotation_is_fair(self, store, seed):
        for account_id in ("p1", "p2", "p3"):
            await seed.practitioner(account_id, specializations=["tax"])
        engine = MatchingEngine(store, LinkingSettings())

        picks = []
        for _ in range(9):
            before = {a: (await seed.account(a)).rotation_cursor for a in ("p1", "p2", "p3")}
            chosen = await engine.find_match(["tax"])
            after = {a: (await seed.account(a)).rotation_cursor for a in ("p1", "p2", "p3")}
            # Only the chosen practitioner moves, by exactly one
            assert after == {**before, chosen: before[chosen] + 1}
            picks.append(chosen)

        assert picks[:3] == ["p1", "p2", "p3"]
        assert Counter(picks) == {"p1": 3, "p2": 3, "p3": 3}
        for account_id in ("p1", "p2", "p3"):
            assert (await seed.account(account_id)).rotation_cursor == 3

    @pytest.mark.asyncio
    async def test_concurrent_matches_spread_load(self, store, seed):
        for account_id in ("p1", "p2"):
            await seed.practitioner(account_id, specializations=["tax"])
        engine = MatchingEngine(store, LinkingSettings())

        picks = await asyncio.gather(*(engine.find_match(["tax"]) for _ in range(4)))

        assert Counter(picks) == {"p1": 2, "p2": 2}

    @pytest.mark.asyncio
    async def test_needs_must_intersect(self, store, seed):
        await seed.practitioner("p1", specializations=["payroll"])
        await seed.practitioner("p2", specializations=["Estate", "tax"], rotation_cursor=5)
        engine = MatchingEngine(store, LinkingSettings())

        assert await engine.find_match(["estate"]) == "p2"

    @pytest.mark.asyncio
    async def test_empty_needs_match_anyone(self, store, seed):
        await seed.practitioner("p1", specializations=["payroll"])
        engine = MatchingEngine(store, LinkingSettings())

        assert await engine.find_match([]) == "p1"

    @pytest.mark.asyncio
    async def test_only_approved_practitioners(self, store, seed):
        await seed.practitioner("p1", specializations=["tax"], status=PractitionerStatus.SUSPENDED)
        await seed.practitioner("p2", specializations=["tax"], status=PractitionerStatus.FRAUD)
        await seed.practitioner("p3", specializations=["tax"], status=PractitionerStatus.PENDING)
        engine = MatchingEngine(store, LinkingSettings())

        assert await engine.find_match(["tax"]) is None

    @pytest.mark.asyncio
    async def test_exclusions(self, store, seed):
        for account_id in ("p1", "p2", "p3"):
            await seed.practitioner(account_id, specializations=["tax"])
        engine = MatchingEngine(store, LinkingSettings())

        match = await engine.find_match(["tax"], exclude_practitioner_id="p1", also_exclude=["p2"])

        assert match == "p3"

    @pytest.mark.asyncio
    async def test_no_match_leaves_cursors_alone(self, store, seed):
        await seed.practitioner("p1", specializations=["payroll"], rotation_cursor=4)
        engine = MatchingEngine(store, LinkingSettings())

        assert await engine.find_match(["estate"]) is None
        assert (await seed.account("p1")).rotation_cursor == 4

    @pytest.mark.asyncio
    async def test_fallback_to_any(self, store, seed):
        await seed.practitioner("p1", specializations=["payroll"])
        engine = MatchingEngine(store, LinkingSettings(matching_fallback_to_any=True))

        assert await engine.find_match(["estate"]) == "p1"
