"""Tests for the background activity poller."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from milestone_escrow.services.poller import VerificationPoller


class TestPollOnce:
    @pytest.mark.asyncio
    async def test_only_external_active_milestones_are_polled(
        self, coordinator, store, github, make_project, repository_config
    ) -> None:
        github.commits = 4
        polled = await make_project(["100", "50"], "repository_activity", repository_config)
        await make_project(["100"], "manual")
        await make_project(["100"], "repository_activity", repository_config, fund=False)

        attempts = await VerificationPoller(coordinator, store).poll_once()

        # Only the first milestone of the funded project is in progress.
        assert [(a.project_id, a.order_index) for a in attempts] == [(str(polled.id), 0)]
        assert attempts[0].verified is True
        assert len(github.requests) == 1
        assert (await store.get_milestone(polled.id, 0)).status == "verified"

    @pytest.mark.asyncio
    async def test_verified_milestones_are_not_polled_again(
        self, coordinator, store, github, make_project, repository_config
    ) -> None:
        github.commits = 4
        await make_project(["100"], "repository_activity", repository_config)
        poller = VerificationPoller(coordinator, store)

        await poller.poll_once()
        second = await poller.poll_once()

        assert second == []
        assert len(github.requests) == 1

    @pytest.mark.asyncio
    async def test_failures_are_skipped(
        self, coordinator, store, github, make_project, repository_config
    ) -> None:
        github.status_code = 502
        project = await make_project(["100"], "repository_activity", repository_config)

        attempts = await VerificationPoller(coordinator, store).poll_once()

        assert attempts == []
        assert (await store.get_milestone(project.id, 0)).status == "in_progress"
        assert store.verifications == []

    @pytest.mark.asyncio
    async def test_stale_ledger_address_does_not_stop_the_cycle(
        self, coordinator, store, github, make_project, repository_config
    ) -> None:
        github.commits = 5
        stale = await make_project(["100"], "repository_activity", repository_config)
        store.projects[stale.id].ledger_address = "0x" + "ab" * 20
        healthy = await make_project(["100"], "repository_activity", repository_config)

        attempts = await VerificationPoller(coordinator, store).poll_once()

        assert [a.project_id for a in attempts] == [str(healthy.id)]
        assert (await store.get_milestone(healthy.id, 0)).status == "verified"
        assert (await store.get_milestone(stale.id, 0)).status == "in_progress"
        assert await store.list_verification_records(stale.id) == []

    @pytest.mark.asyncio
    async def test_unexpected_errors_are_skipped(
        self, coordinator, store, github, make_project, repository_config
    ) -> None:
        github.commits = 5
        first = await make_project(["100"], "repository_activity", repository_config)
        second = await make_project(["100"], "repository_activity", repository_config)
        verify = coordinator.verify_milestone

        async def crash_on_first(project_id, order_index, **kwargs):
            if project_id == first.id:
                raise RuntimeError("connection reset")
            return await verify(project_id, order_index, **kwargs)

        coordinator.verify_milestone = crash_on_first

        attempts = await VerificationPoller(coordinator, store).poll_once()

        assert [a.project_id for a in attempts] == [str(second.id)]


class TestRunLoop:
    @pytest.mark.asyncio
    async def test_stops_when_event_is_set(self, coordinator, store) -> None:
        stop_event = asyncio.Event()
        poller = VerificationPoller(coordinator, store)
        poller.poll_once = AsyncMock(side_effect=lambda: stop_event.set())

        await asyncio.wait_for(poller.run(60, stop_event), timeout=1)

        poller.poll_once.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_cycle_errors_do_not_stop_the_loop(self, coordinator, store) -> None:
        stop_event = asyncio.Event()
        calls = 0

        async def flaky() -> list:
            nonlocal calls
            calls += 1
            if calls == 1:
                raise RuntimeError("store unavailable")
            stop_event.set()
            return []

        poller = VerificationPoller(coordinator, store)
        poller.poll_once = flaky

        await asyncio.wait_for(poller.run(0.01, stop_event), timeout=1)

        assert calls == 2
