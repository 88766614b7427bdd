"""Flow Controller — drives the pipeline creation wizard.

Owns the current WizardState and every piece of wizard data. Each public
operation issues at most one remote call, interprets its result, moves to
the next state and tells the presentation sink which step to show.

Sequence for a typical run::

    start() ─▶ [credentials] ─▶ list_organizations() ─▶ select_organization()
        ─▶ select_discover_mode() ─▶ (select_repository()) ─▶ save_*()
        ─▶ CompletionReconciler ─▶ terminal state

All mutation happens on the continuation of an awaited call, so no locks are
needed as long as a single event loop drives the controller.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from typing import Protocol

from pipeline_wizard.config import WizardConfig
from pipeline_wizard.event_feed import EventHandler
from pipeline_wizard.models import (
    GroupLookup,
    ListingPage,
    ListOrganizationsOutcome,
    Organization,
    OrganizationsResult,
    Pipeline,
    PipelineGroup,
    PipelineLookup,
    RepoRef,
    StepRender,
    TokenResult,
)
from pipeline_wizard.presentation import StepPresenter
from pipeline_wizard.reconciler import CompletionReconciler
from pipeline_wizard.repositories import RepositoryListing, selectable_repositories
from pipeline_wizard.states import StepKind, WizardState, disables_steps, is_allowed, is_terminal
from pipeline_wizard.timing import wait_at_least

logger = logging.getLogger(__name__)

SUMMARY_PLACEHOLDER = "Complete"


class TokenManager(Protocol):
    credential_id: str | None

    def find_existing_credential(self) -> Awaitable[bool]: ...

    def create_access_token(self, token: str) -> Awaitable[TokenResult]: ...

    def mark_token_revoked(self) -> None: ...

    def mark_token_invalid_scopes(self) -> None: ...


class ProvisioningApi(Protocol):
    def list_organizations(self, credential_id: str | None) -> Awaitable[OrganizationsResult]: ...

    def find_existing_group(self, organization: Organization) -> Awaitable[GroupLookup]: ...

    def list_repositories(
        self, credential_id: str | None, org_name: str, page: int, page_size: int
    ) -> Awaitable[ListingPage]: ...

    def create_group(
        self, credential_id: str | None, organization: Organization, repo_names: list[str]
    ) -> Awaitable[PipelineGroup]: ...

    def update_group(
        self, credential_id: str | None, group: PipelineGroup, repo_names: list[str]
    ) -> Awaitable[PipelineGroup]: ...

    def find_pipeline_by_name(self, full_name: str) -> Awaitable[PipelineLookup]: ...


class EventFeedLike(Protocol):
    def subscribe(self, handler: EventHandler) -> str: ...

    def unsubscribe(self, handle: str) -> bool: ...


class FlowController:
    """Single source of truth for the wizard's state."""

    def __init__(
        self,
        api: ProvisioningApi,
        token_manager: TokenManager,
        feed: EventFeedLike,
        presenter: StepPresenter,
        config: WizardConfig | None = None,
    ):
        config = config or WizardConfig()
        self.api = api
        self.token_manager = token_manager
        self.presenter = presenter
        self.min_delay = config.timing.min_delay
        self.save_min_delay = config.timing.save_min_delay

        self.repositories = RepositoryListing(api, config.listing, min_delay=self.min_delay)
        self.reconciler = CompletionReconciler(
            feed,
            api,
            config.timing,
            on_resolve=self._on_reconciled,
            on_pipeline_indexed=self._increment_pipeline_count,
        )

        self.state: WizardState | None = None
        self._step: StepKind | None = None
        self._visited: set[WizardState] = set()
        self._finished = asyncio.Event()

        self.organizations: list[Organization] = []
        self.selected_organization: Organization | None = None
        self.existing_group: PipelineGroup | None = None
        self.selected_auto_discover: bool | None = None
        self.selected_repository: RepoRef | None = None
        self.saved_group: PipelineGroup | None = None
        self.saved_pipeline: Pipeline | None = None
        self.pipeline_count = 0

    # ── Derived State ────────────────────────────────────────────────────

    @property
    def credential_id(self) -> str | None:
        return self.token_manager.credential_id

    @property
    def steps_disabled(self) -> bool:
        return disables_steps(self.state)

    @property
    def is_finished(self) -> bool:
        return is_terminal(self.state)

    @property
    def existing_auto_discover(self) -> bool:
        return bool(self.existing_group and self.existing_group.auto_discover)

    @property
    def existing_pipeline_count(self) -> int:
        if self.existing_group is None:
            return 0
        return len(self.existing_group.existing_pipeline_names)

    @property
    def repositories_loading(self) -> bool:
        return self.repositories.loading

    @property
    def selectable_repositories(self) -> list[RepoRef]:
        return selectable_repositories(self.repositories.items, self.existing_group)

    def has_visited(self, state: WizardState) -> bool:
        return state in self._visited

    # ── Credentials ──────────────────────────────────────────────────────

    async def start(self) -> None:
        """Show the loading step and look for a stored credential."""
        if not self._render(WizardState.PENDING_LOADING_CREDS, StepKind.LOADING):
            return
        self.pipeline_count = 0
        self.presenter.set_summary_placeholder(SUMMARY_PLACEHOLDER)

        found = await wait_at_least(self.token_manager.find_existing_credential(), self.min_delay)
        if found:
            self._change_state(WizardState.PENDING_LOADING_ORGANIZATIONS)
            await self.list_organizations()
        else:
            self._render(WizardState.STEP_ACCESS_TOKEN, StepKind.CREDENTIALS)

    async def submit_credential(self, token: str) -> TokenResult:
        """Store a new access token and continue to the organization list.

        On failure the credentials step stays current; the returned result
        carries the error for display.
        """
        result = await self.token_manager.create_access_token(token)
        if result.success:
            if self._render(
                WizardState.PENDING_LOADING_ORGANIZATIONS,
                StepKind.LOADING,
                insert_after=WizardState.STEP_ACCESS_TOKEN,
            ):
                await self.list_organizations()
        return result

    # ── Organizations ────────────────────────────────────────────────────

    async def list_organizations(self) -> None:
        """Fetch the organizations visible to the current credential.

        Also used to refresh the list while the organization step is current.
        A token problem sends the wizard back to the credentials step.
        """
        result = await wait_at_least(
            self.api.list_organizations(self.credential_id), self.min_delay
        )
        after = (
            WizardState.STEP_ACCESS_TOKEN
            if self.has_visited(WizardState.STEP_ACCESS_TOKEN)
            else None
        )

        if result.outcome == ListOrganizationsOutcome.SUCCESS:
            self.organizations = list(result.organizations)
            if self.state == WizardState.STEP_CHOOSE_ORGANIZATION:
                # Refresh: the organization list is already on screen
                self._change_state(WizardState.STEP_CHOOSE_ORGANIZATION)
            else:
                self._render(
                    WizardState.STEP_CHOOSE_ORGANIZATION,
                    StepKind.ORGANIZATION_LIST,
                    insert_after=after,
                )
        elif result.outcome == ListOrganizationsOutcome.INVALID_TOKEN_REVOKED:
            self.token_manager.mark_token_revoked()
            self.organizations = []
            self._render(WizardState.STEP_ACCESS_TOKEN, StepKind.CREDENTIALS)
        elif result.outcome == ListOrganizationsOutcome.INVALID_TOKEN_SCOPES:
            self.token_manager.mark_token_invalid_scopes()
            self.organizations = []
            self._render(WizardState.STEP_ACCESS_TOKEN, StepKind.CREDENTIALS)
        else:
            logger.error("Listing organizations failed: %s", result.error)
            self._render(WizardState.ERROR_UNKNOWN, StepKind.UNKNOWN_ERROR, message=result.error)

    async def select_organization(self, organization: Organization) -> None:
        """Record ``organization`` and look up a group with the same name.

        May be called again while a previous lookup is pending or after it
        failed; only the latest selection moves the wizard on.
        """
        if not self._render(
            WizardState.PENDING_LOADING_ORGANIZATIONS,
            StepKind.LOADING,
            insert_after=WizardState.STEP_CHOOSE_ORGANIZATION,
        ):
            return

        self.selected_organization = organization
        self.existing_group = None
        self.selected_repository = None
        self.repositories.reset()

        try:
            lookup = await wait_at_least(self.api.find_existing_group(organization), self.min_delay)
        except Exception:
            logger.exception("Looking up an existing group for %s failed", organization.name)
            return

        if self.selected_organization is not organization:
            logger.debug("Dropping group lookup for superseded selection %s", organization.name)
            return

        if lookup.is_found and lookup.is_group and lookup.group is not None:
            logger.debug("Selected existing group: %s", lookup.group.name)
            self.existing_group = lookup.group
            self._render(
                WizardState.STEP_CHOOSE_DISCOVER,
                StepKind.CHOOSE_DISCOVER,
                insert_after=WizardState.STEP_CHOOSE_ORGANIZATION,
            )
        elif not lookup.is_found:
            logger.debug("Selected new organization: %s", organization.name)
            self._render(
                WizardState.STEP_CHOOSE_DISCOVER,
                StepKind.CHOOSE_DISCOVER,
                insert_after=WizardState.STEP_CHOOSE_ORGANIZATION,
            )
        else:
            logger.warning("%s exists but is not a pipeline group", organization.name)
            self._render(
                WizardState.STEP_INVALID_GROUP,
                StepKind.INVALID_GROUP,
                insert_after=WizardState.STEP_CHOOSE_ORGANIZATION,
            )
            self.presenter.set_summary_placeholder(None)

    # ── Discover Mode & Repositories ─────────────────────────────────────

    async def select_discover_mode(self, enabled: bool) -> None:
        """Choose between scanning every repository or picking one."""
        organization = self.selected_organization
        if organization is None:
            raise RuntimeError("No organization selected")

        if self.existing_auto_discover and enabled:
            # Nothing to save: the group already scans everything
            if self._render(
                WizardState.STEP_ALREADY_DISCOVER,
                StepKind.ALREADY_DISCOVER,
                insert_after=WizardState.STEP_CHOOSE_DISCOVER,
            ):
                self.selected_auto_discover = enabled
            return

        if not self._render(
            WizardState.PENDING_LOADING_REPOSITORIES,
            StepKind.LOADING,
            insert_after=WizardState.STEP_CHOOSE_DISCOVER,
        ):
            return
        self.selected_auto_discover = enabled
        self.selected_repository = None

        try:
            await self.repositories.load_all(
                organization, self.credential_id, on_page=self._on_repositories_page
            )
        except Exception:
            logger.exception("Loading repositories for %s failed", organization.name)

    def _on_repositories_page(self, first_page: bool, more_pages: bool) -> None:
        if self.selected_auto_discover and not more_pages:
            # The confirmation step shows the total, so wait for every page
            self._render(
                WizardState.STEP_CONFIRM_DISCOVER,
                StepKind.CONFIRM_DISCOVER,
                insert_after=WizardState.STEP_CHOOSE_DISCOVER,
            )
        elif not self.selected_auto_discover and first_page:
            # Render once; later pages extend the list in place
            self._render(
                WizardState.STEP_CHOOSE_REPOSITORY,
                StepKind.REPOSITORY_LIST,
                insert_after=WizardState.STEP_CHOOSE_DISCOVER,
            )

    def select_repository(self, repository: RepoRef) -> None:
        if self.steps_disabled:
            logger.warning("Ignoring repository selection while saving: %s", repository.name)
            return
        self.selected_repository = repository

    # ── Saving ───────────────────────────────────────────────────────────

    async def save_auto_discover(self) -> None:
        """Save a group that scans every repository."""
        await self._save_group([])

    async def save_single_repository(self) -> None:
        """Save the group with the chosen repository added to its scan list."""
        if self.selected_repository is None:
            raise ValueError("No repository selected")
        await self._save_group(self.full_repo_names())

    def full_repo_names(self) -> list[str]:
        """Repositories already scanned by the group plus the chosen one."""
        existing = list(self.existing_group.existing_pipeline_names) if self.existing_group else []
        if self.selected_repository is not None:
            existing.append(self.selected_repository.name)
        return existing

    async def _save_group(self, repo_names: list[str]) -> None:
        organization = self.selected_organization
        if organization is None:
            raise RuntimeError("No organization selected")

        auto_discover = bool(self.selected_auto_discover)
        after = (
            WizardState.STEP_CONFIRM_DISCOVER
            if auto_discover
            else WizardState.STEP_CHOOSE_REPOSITORY
        )
        if not self._render(
            WizardState.PENDING_CREATION_SAVING, StepKind.COMPLETE, insert_after=after
        ):
            return
        self.presenter.set_summary_placeholder(None)

        pipeline_full_name = None
        if not auto_discover and self.selected_repository is not None:
            pipeline_full_name = f"{organization.name}/{self.selected_repository.name}"
        self.reconciler.arm(auto_discover=auto_discover, pipeline_full_name=pipeline_full_name)

        if self.existing_group is None:
            call = self.api.create_group(self.credential_id, organization, repo_names)
        else:
            call = self.api.update_group(self.credential_id, self.existing_group, repo_names)

        try:
            group = await wait_at_least(call, self.save_min_delay)
        except Exception:
            logger.exception("Saving group for %s failed", organization.name)
            self.reconciler.teardown()
            self._change_state(WizardState.STEP_COMPLETE_SAVING_ERROR)
            return

        logger.info("Group saved successfully: %s", group.name)
        if not self.reconciler.is_armed:
            logger.warning("Group %s saved after the wizard had already finished", group.name)
            return

        self.saved_group = group
        self._change_state(WizardState.PENDING_CREATION_EVENTS)
        self.reconciler.anchor(group)

    # ── Completion ───────────────────────────────────────────────────────

    def _on_reconciled(self, state: WizardState, pipeline: Pipeline | None) -> None:
        if pipeline is not None:
            self.saved_pipeline = pipeline
        self._change_state(state)

    def _increment_pipeline_count(self) -> None:
        self.pipeline_count += 1

    async def wait_until_finished(self, timeout: float | None = None) -> WizardState | None:
        """Wait for a terminal state and return it."""
        await asyncio.wait_for(self._finished.wait(), timeout)
        return self.state

    def destroy(self) -> None:
        """Tear down listeners and timers. No callback fires afterwards."""
        self.reconciler.teardown()
        logger.debug("Wizard destroyed in state %s", self.state)

    # ── State Changes ────────────────────────────────────────────────────

    def _render(
        self,
        state: WizardState,
        step: StepKind,
        *,
        insert_after: WizardState | None = None,
        message: str | None = None,
    ) -> bool:
        """Enter ``state`` and present ``step`` for it."""
        if not self._transition(state):
            return False
        self._step = step
        self.presenter.present(
            StepRender(state=state, step=step, insert_after=insert_after, message=message)
        )
        return True

    def _change_state(self, state: WizardState) -> bool:
        """Enter ``state`` while keeping the current step on screen."""
        if not self._transition(state):
            return False
        self.presenter.present(
            StepRender(state=state, step=self._step or StepKind.LOADING, replace_current=True)
        )
        return True

    def _transition(self, state: WizardState) -> bool:
        if not is_allowed(self.state, state):
            logger.warning(
                "Ignoring transition %s -> %s",
                self.state.value if self.state else None,
                state.value,
            )
            return False

        logger.debug("State %s -> %s", self.state.value if self.state else None, state.value)
        self.state = state
        self._visited.add(state)
        if is_terminal(state):
            logger.info("Wizard finished: %s", state.value)
            self._finished.set()
        return True
