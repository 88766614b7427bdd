"""Tests for RepositoryListing — pagination, per-organization cache, loading flag."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from pipeline_wizard.config import ListingConfig
from pipeline_wizard.models import ListingPage, Organization, PipelineGroup, RepoRef
from pipeline_wizard.repositories import RepositoryListing, selectable_repositories


def _repos(*names: str) -> list[RepoRef]:
    return [RepoRef(name=n) for n in names]


def _make_source(pages: dict[str, list[list[str]]]) -> AsyncMock:
    """Source serving ``pages[org][page - 1]``; the last page has no next page."""

    async def list_repositories(credential_id, org_name, page, page_size):
        org_pages = pages[org_name]
        index = page - 1
        next_page = page + 1 if index + 1 < len(org_pages) else None
        return ListingPage(items=_repos(*org_pages[index]), next_page=next_page)

    source = AsyncMock()
    source.list_repositories = AsyncMock(side_effect=list_repositories)
    return source


def _make_listing(source, page_size: int = 100) -> RepositoryListing:
    return RepositoryListing(source, ListingConfig(first_page=1, page_size=page_size))


# ── Pagination ───────────────────────────────────────────────────────────────


class TestPagination:
    async def test_fetches_every_page_in_order(self):
        source = _make_source({"acme": [["a", "b"], ["c"], ["d"]]})
        listing = _make_listing(source, page_size=2)

        result = await listing.load_all(Organization(name="acme"), "cred-1")

        assert [r.name for r in result] == ["a", "b", "c", "d"]
        assert source.list_repositories.await_count == 3
        pages = [call.args[2] for call in source.list_repositories.await_args_list]
        assert pages == [1, 2, 3]
        call = source.list_repositories.await_args_list[0]
        assert call.args == ("cred-1", "acme", 1, 2)

    async def test_single_page_makes_one_call(self):
        source = _make_source({"acme": [["a"]]})
        listing = _make_listing(source)

        await listing.load_all(Organization(name="acme"), "cred-1")

        assert source.list_repositories.await_count == 1
        assert listing.loading is False

    async def test_page_callback_reports_first_and_more(self):
        source = _make_source({"acme": [["a"], ["b"], ["c"]]})
        listing = _make_listing(source)
        calls = []

        await listing.load_all(
            Organization(name="acme"), "cred-1", on_page=lambda f, m: calls.append((f, m))
        )

        assert calls == [(True, True), (False, True), (False, False)]

    async def test_loading_flag_clears_on_final_page_only(self):
        source = _make_source({"acme": [["a"], ["b"]]})
        listing = _make_listing(source)
        observed = []

        def on_page(first_page, more_pages):
            observed.append(listing.loading)

        await listing.load_all(Organization(name="acme"), "cred-1", on_page=on_page)

        assert observed == [True, False]
        assert listing.loading is False

    async def test_error_clears_loading_and_propagates(self):
        source = AsyncMock()
        source.list_repositories = AsyncMock(side_effect=RuntimeError("boom"))
        listing = _make_listing(source)

        with pytest.raises(RuntimeError):
            await listing.load_all(Organization(name="acme"), "cred-1")

        assert listing.loading is False
        assert listing.cached("acme") is None

    async def test_partial_load_is_not_replayed(self):
        first = ListingPage(items=_repos("a", "b"), next_page=2)
        last = ListingPage(items=_repos("c"))
        source = AsyncMock()
        source.list_repositories = AsyncMock(
            side_effect=[first, RuntimeError("page 2 failed"), last]
        )
        listing = _make_listing(source)

        with pytest.raises(RuntimeError):
            await listing.load_all(Organization(name="acme"), "cred-1")
        assert listing.cached("acme") is None

        result = await listing.load_all(Organization(name="acme"), "cred-1")

        assert [r.name for r in result] == ["a", "b", "c"]
        assert source.list_repositories.await_count == 3
        assert source.list_repositories.await_args_list[2].args[2] == 2
        assert [r.name for r in listing.cached("acme")] == ["a", "b", "c"]
        assert listing.loading is False


# ── Cache ────────────────────────────────────────────────────────────────────


class TestCache:
    async def test_reselecting_organization_uses_cache(self):
        source = _make_source({"A": [["a1"], ["a2"]], "B": [["b1"]]})
        listing = _make_listing(source)

        await listing.load_all(Organization(name="A"), "cred-1")
        await listing.load_all(Organization(name="B"), "cred-1")
        calls_before = source.list_repositories.await_count

        result = await listing.load_all(Organization(name="A"), "cred-1")

        assert source.list_repositories.await_count == calls_before == 3
        assert [r.name for r in result] == ["a1", "a2"]
        assert [r.name for r in listing.items] == ["a1", "a2"]

    async def test_cached_replay_is_a_single_final_page(self):
        source = _make_source({"A": [["a1"], ["a2"]]})
        listing = _make_listing(source)
        await listing.load_all(Organization(name="A"), "cred-1")
        calls = []

        await listing.load_all(
            Organization(name="A"), "cred-1", on_page=lambda f, m: calls.append((f, m))
        )

        assert calls == [(True, False)]
        assert listing.loading is False

    async def test_items_replaced_on_organization_change(self):
        source = _make_source({"A": [["a1"]], "B": [["b1", "b2"]]})
        listing = _make_listing(source)

        await listing.load_all(Organization(name="A"), "cred-1")
        await listing.load_all(Organization(name="B"), "cred-1")

        assert [r.name for r in listing.items] == ["b1", "b2"]

    async def test_cached_returns_copy(self):
        source = _make_source({"A": [["a1"]]})
        listing = _make_listing(source)
        await listing.load_all(Organization(name="A"), "cred-1")

        listing.cached("A").append(RepoRef(name="extra"))

        assert [r.name for r in listing.cached("A")] == ["a1"]


class TestSupersededLoad:
    async def test_newer_load_stops_older_one(self):
        gate = asyncio.Event()

        async def list_repositories(credential_id, org_name, page, page_size):
            if org_name == "slow" and page == 2:
                await gate.wait()
                return ListingPage(items=_repos("slow-2"))
            if org_name == "slow":
                return ListingPage(items=_repos("slow-1"), next_page=2)
            return ListingPage(items=_repos("fast-1"))

        source = AsyncMock()
        source.list_repositories = AsyncMock(side_effect=list_repositories)
        listing = _make_listing(source)

        slow = asyncio.create_task(listing.load_all(Organization(name="slow"), "cred-1"))
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        await listing.load_all(Organization(name="fast"), "cred-1")
        gate.set()
        await slow

        assert [r.name for r in listing.items] == ["fast-1"]
        assert listing.loading is False

    async def test_superseded_organization_is_reloaded_in_full(self):
        gate = asyncio.Event()

        async def list_repositories(credential_id, org_name, page, page_size):
            if org_name == "A" and page == 2:
                await gate.wait()
                return ListingPage(items=_repos("a2"))
            if org_name == "A":
                return ListingPage(items=_repos("a1"), next_page=2)
            return ListingPage(items=_repos("b1"))

        source = AsyncMock()
        source.list_repositories = AsyncMock(side_effect=list_repositories)
        listing = _make_listing(source)

        first_a = asyncio.create_task(listing.load_all(Organization(name="A"), "cred-1"))
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        await listing.load_all(Organization(name="B"), "cred-1")
        gate.set()
        await first_a
        assert listing.cached("A") is None

        result = await listing.load_all(Organization(name="A"), "cred-1")

        assert [r.name for r in result] == ["a1", "a2"]
        assert [r.name for r in listing.cached("A")] == ["a1", "a2"]
        a_pages = [
            call.args[2]
            for call in source.list_repositories.await_args_list
            if call.args[1] == "A"
        ]
        assert a_pages == [1, 2, 2]

    async def test_reset_stops_load_in_progress(self):
        gate = asyncio.Event()

        async def list_repositories(credential_id, org_name, page, page_size):
            if page == 2:
                await gate.wait()
                return ListingPage(items=_repos("a2"))
            return ListingPage(items=_repos("a1"), next_page=2)

        source = AsyncMock()
        source.list_repositories = AsyncMock(side_effect=list_repositories)
        listing = _make_listing(source)

        load = asyncio.create_task(listing.load_all(Organization(name="A"), "cred-1"))
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        listing.reset()
        gate.set()
        await load

        assert listing.items == []
        assert listing.loading is False


# ── Selectable Repositories ──────────────────────────────────────────────────


class TestSelectableRepositories:
    def test_no_group_returns_everything(self):
        repos = _repos("a", "b")
        assert selectable_repositories(repos, None) == repos

    def test_excludes_existing_pipelines(self):
        group = PipelineGroup(name="acme", existing_pipeline_names=["b"])
        result = selectable_repositories(_repos("a", "b", "c"), group)
        assert [r.name for r in result] == ["a", "c"]

    def test_recomputed_when_group_arrives_after_repositories(self):
        repos = _repos("svc-a", "svc-b")
        before = selectable_repositories(repos, None)
        group = PipelineGroup(name="acme", existing_pipeline_names=["svc-a"])

        after = selectable_repositories(repos, group)

        assert [r.name for r in before] == ["svc-a", "svc-b"]
        assert [r.name for r in after] == ["svc-b"]

    def test_recomputed_when_repositories_grow(self):
        group = PipelineGroup(name="acme", existing_pipeline_names=["svc-a"])
        repos = _repos("svc-a")
        assert selectable_repositories(repos, group) == []

        repos.extend(_repos("svc-b"))

        assert [r.name for r in selectable_repositories(repos, group)] == ["svc-b"]
