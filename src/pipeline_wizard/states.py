"""Wizard state graph.

The wizard walks a fixed, ordered set of states. Which edge is taken is
decided by the Flow Controller from the result of each remote call; this
module only knows which edges exist.

Key exports:
    WizardState — every state the wizard can be in
    StepKind — which step view is presented for a state
    is_allowed — whether an edge exists in the state graph
    is_terminal, disables_steps — derived predicates
"""

from __future__ import annotations

from enum import Enum


class WizardState(str, Enum):
    """All wizard states, in presentation order."""

    # Loading
    PENDING_LOADING_CREDS = "pending_loading_creds"
    STEP_ACCESS_TOKEN = "step_access_token"
    PENDING_LOADING_ORGANIZATIONS = "pending_loading_organizations"
    STEP_CHOOSE_ORGANIZATION = "step_choose_organization"
    ERROR_UNKNOWN = "error_unknown"
    STEP_INVALID_GROUP = "step_invalid_group"

    # Choice
    STEP_CHOOSE_DISCOVER = "step_choose_discover"
    STEP_ALREADY_DISCOVER = "step_already_discover"
    PENDING_LOADING_REPOSITORIES = "pending_loading_repositories"
    STEP_CONFIRM_DISCOVER = "step_confirm_discover"
    STEP_CHOOSE_REPOSITORY = "step_choose_repository"

    # Pending creation
    PENDING_CREATION_SAVING = "pending_creation_saving"
    PENDING_CREATION_EVENTS = "pending_creation_events"

    # Complete
    STEP_COMPLETE_SAVING_ERROR = "step_complete_saving_error"
    STEP_COMPLETE_EVENT_ERROR = "step_complete_event_error"
    STEP_COMPLETE_EVENT_TIMEOUT = "step_complete_event_timeout"
    STEP_COMPLETE_MISSING_DEFINITION = "step_complete_missing_definition"
    STEP_COMPLETE_SUCCESS = "step_complete_success"


class StepKind(str, Enum):
    """Step views the presentation sink knows how to draw."""

    LOADING = "loading"
    CREDENTIALS = "credentials"
    ORGANIZATION_LIST = "organization_list"
    UNKNOWN_ERROR = "unknown_error"
    INVALID_GROUP = "invalid_group"
    CHOOSE_DISCOVER = "choose_discover"
    ALREADY_DISCOVER = "already_discover"
    CONFIRM_DISCOVER = "confirm_discover"
    REPOSITORY_LIST = "repository_list"
    COMPLETE = "complete"


TERMINAL_STATES: frozenset[WizardState] = frozenset(
    {
        WizardState.ERROR_UNKNOWN,
        WizardState.STEP_INVALID_GROUP,
        WizardState.STEP_COMPLETE_SAVING_ERROR,
        WizardState.STEP_COMPLETE_EVENT_ERROR,
        WizardState.STEP_COMPLETE_EVENT_TIMEOUT,
        WizardState.STEP_COMPLETE_MISSING_DEFINITION,
        WizardState.STEP_COMPLETE_SUCCESS,
    }
)

# States in which the already-rendered steps must not accept input.
DISABLING_STATES: frozenset[WizardState] = frozenset(
    {
        WizardState.PENDING_CREATION_SAVING,
        WizardState.PENDING_CREATION_EVENTS,
        WizardState.STEP_COMPLETE_SAVING_ERROR,
        WizardState.STEP_COMPLETE_EVENT_ERROR,
        WizardState.STEP_COMPLETE_EVENT_TIMEOUT,
        WizardState.STEP_COMPLETE_MISSING_DEFINITION,
        WizardState.STEP_COMPLETE_SUCCESS,
    }
)

_S = WizardState

# Choice steps also allow going back to an earlier choice until saving starts.
# The loading states between choices accept the same re-selections, so a
# failed lookup or listing can be retried.
TRANSITIONS: dict[WizardState, frozenset[WizardState]] = {
    _S.PENDING_LOADING_CREDS: frozenset(
        {_S.STEP_ACCESS_TOKEN, _S.PENDING_LOADING_ORGANIZATIONS}
    ),
    _S.STEP_ACCESS_TOKEN: frozenset({_S.PENDING_LOADING_ORGANIZATIONS}),
    _S.PENDING_LOADING_ORGANIZATIONS: frozenset(
        {
            _S.STEP_ACCESS_TOKEN,
            _S.PENDING_LOADING_ORGANIZATIONS,
            _S.STEP_CHOOSE_ORGANIZATION,
            _S.ERROR_UNKNOWN,
            _S.STEP_CHOOSE_DISCOVER,
            _S.STEP_INVALID_GROUP,
        }
    ),
    # Refreshing the organization list leaves from the list step itself
    _S.STEP_CHOOSE_ORGANIZATION: frozenset(
        {
            _S.STEP_ACCESS_TOKEN,
            _S.PENDING_LOADING_ORGANIZATIONS,
            _S.STEP_CHOOSE_ORGANIZATION,
            _S.ERROR_UNKNOWN,
        }
    ),
    _S.STEP_CHOOSE_DISCOVER: frozenset(
        {
            _S.PENDING_LOADING_ORGANIZATIONS,
            _S.STEP_ALREADY_DISCOVER,
            _S.PENDING_LOADING_REPOSITORIES,
        }
    ),
    _S.STEP_ALREADY_DISCOVER: frozenset(
        {
            _S.PENDING_LOADING_ORGANIZATIONS,
            _S.STEP_ALREADY_DISCOVER,
            _S.PENDING_LOADING_REPOSITORIES,
        }
    ),
    _S.PENDING_LOADING_REPOSITORIES: frozenset(
        {
            _S.PENDING_LOADING_ORGANIZATIONS,
            _S.STEP_ALREADY_DISCOVER,
            _S.PENDING_LOADING_REPOSITORIES,
            _S.STEP_CONFIRM_DISCOVER,
            _S.STEP_CHOOSE_REPOSITORY,
        }
    ),
    _S.STEP_CONFIRM_DISCOVER: frozenset(
        {
            _S.PENDING_LOADING_ORGANIZATIONS,
            _S.STEP_ALREADY_DISCOVER,
            _S.PENDING_LOADING_REPOSITORIES,
            _S.PENDING_CREATION_SAVING,
        }
    ),
    _S.STEP_CHOOSE_REPOSITORY: frozenset(
        {
            _S.PENDING_LOADING_ORGANIZATIONS,
            _S.STEP_ALREADY_DISCOVER,
            _S.PENDING_LOADING_REPOSITORIES,
            _S.PENDING_CREATION_SAVING,
        }
    ),
    _S.PENDING_CREATION_SAVING: frozenset(
        {
            _S.PENDING_CREATION_EVENTS,
            _S.STEP_COMPLETE_SAVING_ERROR,
            _S.STEP_COMPLETE_EVENT_ERROR,
            _S.STEP_COMPLETE_EVENT_TIMEOUT,
        }
    ),
    _S.PENDING_CREATION_EVENTS: frozenset(
        {
            _S.STEP_COMPLETE_EVENT_ERROR,
            _S.STEP_COMPLETE_EVENT_TIMEOUT,
            _S.STEP_COMPLETE_MISSING_DEFINITION,
            _S.STEP_COMPLETE_SUCCESS,
        }
    ),
}


def is_terminal(state: WizardState | None) -> bool:
    return state in TERMINAL_STATES


def disables_steps(state: WizardState | None) -> bool:
    """Whether rendered steps should be frozen while in ``state``."""
    return state in DISABLING_STATES


def is_allowed(current: WizardState | None, requested: WizardState) -> bool:
    """Check whether ``current -> requested`` is an edge of the state graph.

    ``None`` is the state before the wizard starts; the only way out of it
    is the initial loading state.
    """
    if current is None:
        return requested == WizardState.PENDING_LOADING_CREDS
    if current in TERMINAL_STATES:
        return False
    return requested in TRANSITIONS.get(current, frozenset())

