"""Repository listing — paginated, cached retrieval of an organization's repositories.

Provides:
- RepositoryListing: loads every page of an organization's repositories into
  a working collection, caching the result per organization name.
- selectable_repositories: the subset of a collection not yet provisioned.

Pages are fetched strictly one after another; page N+1 is only requested
once page N has been merged. A cache entry is refreshed after every page and
remembers the next page to fetch. Only a complete entry is replayed; a load
that was interrupted (superseded or failed) is resumed from where it stopped.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Protocol

from pipeline_wizard.config import ListingConfig
from pipeline_wizard.models import ListingPage, Organization, PipelineGroup, RepoRef
from pipeline_wizard.timing import wait_at_least

logger = logging.getLogger(__name__)

# Called after every merged page with (first_page, more_pages).
PageCallback = Callable[[bool, bool], None]


class RepositorySource(Protocol):
    def list_repositories(
        self, credential_id: str | None, org_name: str, page: int, page_size: int
    ) -> Awaitable[ListingPage]: ...


def selectable_repositories(
    repositories: Sequence[RepoRef], group: PipelineGroup | None
) -> list[RepoRef]:
    """Return repositories that are not already pipelines of ``group``.

    With no group every repository is selectable.
    """
    if group is None or not group.existing_pipeline_names:
        return list(repositories)
    existing = set(group.existing_pipeline_names)
    return [repo for repo in repositories if repo.name not in existing]


@dataclass
class _CacheEntry:
    items: list[RepoRef] = field(default_factory=list)
    # Page to request next; None once the last page has been merged.
    next_page: int | None = None

    @property
    def complete(self) -> bool:
        return self.next_page is None


class RepositoryListing:
    """Working repository collection for the selected organization."""

    def __init__(
        self,
        source: RepositorySource,
        listing: ListingConfig | None = None,
        *,
        min_delay: float = 0.0,
    ):
        listing = listing or ListingConfig()
        self.source = source
        self.first_page = listing.first_page
        self.page_size = listing.page_size
        self.min_delay = min_delay

        self.items: list[RepoRef] = []
        self.loading = False

        self._cache: dict[str, _CacheEntry] = {}
        # Bumped on every load or reset so a superseded load stops merging pages.
        self._generation = 0

    def cached(self, org_name: str) -> list[RepoRef] | None:
        """Return a copy of the complete listing for ``org_name``, if any."""
        entry = self._cache.get(org_name)
        if entry is None or not entry.complete:
            return None
        return list(entry.items)

    def reset(self) -> None:
        """Empty the working collection and stop any load in progress."""
        self._generation += 1
        self.items = []
        self.loading = False

    async def load_all(
        self,
        organization: Organization,
        credential_id: str | None,
        on_page: PageCallback | None = None,
    ) -> list[RepoRef]:
        """Load every repository of ``organization`` into :attr:`items`.

        A completely cached organization is replayed as a single final page
        without any remote call. A partially cached one is replayed as a first
        page and paging resumes at the page that was never merged. Exceptions
        from the source propagate to the caller after the loading flag is
        cleared.
        """
        self._generation += 1
        generation = self._generation
        org_name = organization.name

        self.items = []
        self.loading = True

        entry = self._cache.get(org_name)
        try:
            if entry is not None:
                if entry.complete:
                    logger.debug(
                        "Replaying %d cached repositories for %s", len(entry.items), org_name
                    )
                else:
                    logger.debug(
                        "Resuming repositories for %s at page %d after %d cached",
                        org_name,
                        entry.next_page,
                        len(entry.items),
                    )
                page = await wait_at_least(self._replay(entry), self.min_delay)
            else:
                page = await wait_at_least(
                    self._fetch(org_name, credential_id, self.first_page), self.min_delay
                )

            first_page = True
            while True:
                if generation != self._generation:
                    logger.debug("Dropping superseded repository page for %s", org_name)
                    return list(self.items)

                more_pages = page.next_page is not None
                self.items.extend(page.items)
                self._cache[org_name] = _CacheEntry(
                    items=list(self.items), next_page=page.next_page
                )
                if not more_pages:
                    self.loading = False

                if on_page:
                    on_page(first_page, more_pages)
                first_page = False

                if not more_pages:
                    break
                page = await self._fetch(org_name, credential_id, page.next_page)
        except Exception:
            if generation == self._generation:
                self.loading = False
            raise

        logger.info("Loaded %d repositories for %s", len(self.items), org_name)
        return list(self.items)

    async def _fetch(self, org_name: str, credential_id: str | None, page: int) -> ListingPage:
        logger.debug(
            "Fetching repositories for %s (page=%d, size=%d)", org_name, page, self.page_size
        )
        return await self.source.list_repositories(credential_id, org_name, page, self.page_size)

    @staticmethod
    async def _replay(entry: _CacheEntry) -> ListingPage:
        return ListingPage(items=list(entry.items), next_page=entry.next_page)
