"""Completion Reconciler — turns push events, a timeout and a poll into one outcome.

After a group is saved the server indexes it asynchronously and reports
progress on the push-event feed. The feed is unreliable, so every save arms:

1. an event subscription, filtered to events under the saved group's URL;
2. a timeout task that resolves to EVENT_TIMEOUT if nothing conclusive arrives;
3. in single-repository mode, a delayed poll for the new pipeline once the
   group reports indexing success (the child may lag behind its parent).

Exactly one terminal state is reported per armed cycle. Teardown cancels the
subscription and both timer tasks, and is safe to call any number of times.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from collections.abc import Awaitable, Callable
from typing import Protocol

from pipeline_wizard.config import TimingConfig
from pipeline_wizard.event_feed import EventHandler
from pipeline_wizard.models import (
    IndexingResult,
    Pipeline,
    PipelineEvent,
    PipelineGroup,
    PipelineLookup,
)
from pipeline_wizard.states import WizardState

logger = logging.getLogger(__name__)


class EventSubscriber(Protocol):
    def subscribe(self, handler: EventHandler) -> str: ...

    def unsubscribe(self, handle: str) -> bool: ...


class PipelineFinder(Protocol):
    def find_pipeline_by_name(self, full_name: str) -> Awaitable[PipelineLookup]: ...


class ReconcilerStatus(str, enum.Enum):
    IDLE = "idle"
    ARMED = "armed"
    POLLING = "polling"
    RESOLVED = "resolved"


ResolveCallback = Callable[[WizardState, Pipeline | None], None]
IndexedCallback = Callable[[], None]


class CompletionReconciler:
    """Resolves a save to a single terminal state."""

    def __init__(
        self,
        feed: EventSubscriber,
        finder: PipelineFinder,
        timing: TimingConfig | None = None,
        *,
        on_resolve: ResolveCallback | None = None,
        on_pipeline_indexed: IndexedCallback | None = None,
    ):
        timing = timing or TimingConfig()
        self.feed = feed
        self.finder = finder
        self.event_timeout = timing.event_timeout
        self.pipeline_check_delay = timing.pipeline_check_delay
        self._on_resolve = on_resolve
        self._on_pipeline_indexed = on_pipeline_indexed

        self.status = ReconcilerStatus.IDLE
        self.outcome: WizardState | None = None
        self.group: PipelineGroup | None = None
        self.auto_discover = False
        self.pipeline_full_name: str | None = None

        self._subscription: str | None = None
        self._timeout_task: asyncio.Task | None = None
        self._poll_task: asyncio.Task | None = None
        self._indexed_urls: set[str] = set()

    @property
    def is_armed(self) -> bool:
        return self.status in (ReconcilerStatus.ARMED, ReconcilerStatus.POLLING)

    def arm(self, *, auto_discover: bool, pipeline_full_name: str | None = None) -> None:
        """Start a new cycle: subscribe to the feed and start the timeout.

        Any previous cycle is torn down first and will never resolve.
        """
        self.teardown()

        self.status = ReconcilerStatus.ARMED
        self.outcome = None
        self.group = None
        self.auto_discover = auto_discover
        self.pipeline_full_name = pipeline_full_name
        self._indexed_urls = set()

        logger.debug("Listening for group and pipeline indexing events...")
        self._subscription = self.feed.subscribe(self._on_event)
        self._timeout_task = asyncio.create_task(
            self._timeout_after(self.event_timeout), name="reconciler-timeout"
        )

    def anchor(self, group: PipelineGroup) -> None:
        """Set the saved group that incoming events must belong to."""
        self.group = group
        logger.debug("Reconciler anchored to %s (%s)", group.name, group.url)

    def teardown(self) -> None:
        """Cancel the subscription and every timer task. Idempotent."""
        if self._subscription or self._timeout_task or self._poll_task:
            logger.debug("Cleaning up event listeners")
        if self.is_armed:
            # Torn down from outside: this cycle will never resolve
            self.status = ReconcilerStatus.IDLE
        self._unsubscribe()
        self._cancel_timeout()
        self._cancel(self._poll_task)
        self._poll_task = None

    # ── Event Handling ───────────────────────────────────────────────────

    def _matches_group(self, event: PipelineEvent) -> bool:
        # Events for resources provisioned elsewhere share the feed
        if self.group is None or not self.group.url:
            return False
        return event.target_url.startswith(self.group.url)

    async def _on_event(self, event: PipelineEvent) -> None:
        if self.status != ReconcilerStatus.ARMED or not self._matches_group(event):
            return

        self._log_event(event)

        if event.group_indexing_result == IndexingResult.FAILURE:
            self._resolve(WizardState.STEP_COMPLETE_EVENT_ERROR)
            return

        if self.auto_discover and event.child_indexing_result == IndexingResult.SUCCESS:
            self._record_indexed(event.target_url)

        if event.group_indexing_result == IndexingResult.SUCCESS:
            if self.auto_discover:
                self._resolve(WizardState.STEP_COMPLETE_SUCCESS)
            else:
                self._start_polling()

    def _record_indexed(self, url: str) -> None:
        # Redelivered events for the same pipeline are counted once
        if url in self._indexed_urls:
            logger.debug("Ignoring repeated indexing event for %s", url)
            return
        self._indexed_urls.add(url)
        if self._on_pipeline_indexed:
            self._on_pipeline_indexed()

    def _log_event(self, event: PipelineEvent) -> None:
        if not logger.isEnabledFor(logging.DEBUG):
            return
        result = event.group_indexing_result or event.child_indexing_result
        if result is not None:
            logger.debug("Indexing for %s finished: %s", event.pipeline_name, result.value)

    # ── Polling Fallback ─────────────────────────────────────────────────

    def _start_polling(self) -> None:
        """Stop listening and check for the single pipeline after a delay."""
        self._unsubscribe()
        self._cancel_timeout()
        self.status = ReconcilerStatus.POLLING

        logger.debug("Group indexing completed but no pipeline has been created (yet?)")
        logger.debug(
            "Will check for creation of %s in %.1fs",
            self.pipeline_full_name,
            self.pipeline_check_delay,
        )
        self._poll_task = asyncio.create_task(
            self._poll_after(self.pipeline_check_delay), name="reconciler-poll"
        )

    async def _poll_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        if self.status != ReconcilerStatus.POLLING:
            return

        lookup: PipelineLookup | None = None
        try:
            lookup = await self.finder.find_pipeline_by_name(self.pipeline_full_name or "")
        except Exception:
            logger.exception("Pipeline lookup failed for %s", self.pipeline_full_name)

        if self.status != ReconcilerStatus.POLLING:
            return

        logger.debug(
            "Check for pipeline complete. created? %s", bool(lookup and lookup.is_found)
        )
        if lookup and lookup.is_found and lookup.pipeline:
            logger.info("Creation succeeded for %s", lookup.pipeline.full_name)
            if self._on_pipeline_indexed:
                self._on_pipeline_indexed()
            self._resolve(WizardState.STEP_COMPLETE_SUCCESS, lookup.pipeline)
        else:
            self._resolve(WizardState.STEP_COMPLETE_MISSING_DEFINITION)

    # ── Timeout ──────────────────────────────────────────────────────────

    async def _timeout_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        if self.status != ReconcilerStatus.ARMED:
            return
        logger.debug("Wait for events timed out after %.1fs", delay)
        self._resolve(WizardState.STEP_COMPLETE_EVENT_TIMEOUT)

    # ── Resolution & Cleanup ─────────────────────────────────────────────

    def _resolve(self, state: WizardState, pipeline: Pipeline | None = None) -> None:
        if not self.is_armed:
            return
        logger.debug("Finished listening: %s", state.value)
        self.status = ReconcilerStatus.RESOLVED
        self.outcome = state
        self.teardown()
        if self._on_resolve:
            self._on_resolve(state, pipeline)

    def _unsubscribe(self) -> None:
        if self._subscription:
            self.feed.unsubscribe(self._subscription)
            self._subscription = None

    def _cancel_timeout(self) -> None:
        self._cancel(self._timeout_task)
        self._timeout_task = None

    @staticmethod
    def _cancel(task: asyncio.Task | None) -> None:
        # The running task finishes on its own; cancelling it would turn its
        # normal return into a cancellation.
        if task is None or task.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        if task is not current:
            task.cancel()
