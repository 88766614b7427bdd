"""Core data models for the pipeline creation wizard."""

from __future__ import annotations

import enum
from typing import Any

from pydantic import BaseModel, Field

from pipeline_wizard.states import StepKind, WizardState


# ── Organizations & Repositories ─────────────────────────────────────────────


class Organization(BaseModel):
    """A source-code hosting organization the credential can see."""

    name: str
    avatar: str | None = None
    jenkins_organization_pipeline: bool = Field(
        default=False, alias="jenkinsOrganizationPipeline"
    )

    model_config = {"populate_by_name": True}


class RepoRef(BaseModel):
    """One repository entry of a listing page."""

    name: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class ListingPage(BaseModel):
    """A page of repositories; ``next_page`` is None on the last page."""

    items: list[RepoRef] = Field(default_factory=list)
    next_page: int | None = Field(default=None, alias="nextPage")

    model_config = {"populate_by_name": True}


# ── Provisioned Resources ────────────────────────────────────────────────────


class PipelineGroup(BaseModel):
    """A provisioned pipeline group (organization folder)."""

    name: str
    auto_discover: bool = Field(default=False, description="Scans every repository")
    existing_pipeline_names: list[str] = Field(
        default_factory=list, description="Repositories already provisioned as pipelines"
    )
    url: str = Field(default="", description="REST self link, prefix of its children's links")


class Pipeline(BaseModel):
    """A single pipeline inside a group."""

    name: str
    full_name: str
    url: str = ""


# ── Remote Call Results ──────────────────────────────────────────────────────


class ListOrganizationsOutcome(str, enum.Enum):
    SUCCESS = "success"
    INVALID_TOKEN_REVOKED = "invalid_token_revoked"
    INVALID_TOKEN_SCOPES = "invalid_token_scopes"
    UNKNOWN = "unknown"


class OrganizationsResult(BaseModel):
    outcome: ListOrganizationsOutcome
    organizations: list[Organization] = Field(default_factory=list)
    error: str | None = None


class GroupLookup(BaseModel):
    """Result of probing for an existing group named after an organization.

    ``is_found`` without ``is_group`` means the name is taken by some other
    kind of resource.
    """

    is_found: bool = False
    is_group: bool = False
    group: PipelineGroup | None = None


class PipelineLookup(BaseModel):
    is_found: bool = False
    pipeline: Pipeline | None = None


class TokenResult(BaseModel):
    success: bool
    credential_id: str | None = None
    error: str | None = None


# ── Push Events ──────────────────────────────────────────────────────────────


class IndexingResult(str, enum.Enum):
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"


class PipelineEvent(BaseModel):
    """A status event from the push-event feed.

    Field aliases are the server's wire names so a raw event payload can be
    validated directly.
    """

    target_url: str = Field(default="", alias="blueocean_job_rest_url")
    group_indexing_result: IndexingResult | None = Field(
        default=None, alias="job_orgfolder_indexing_result"
    )
    child_indexing_result: IndexingResult | None = Field(
        default=None, alias="job_multibranch_indexing_result"
    )
    pipeline_name: str | None = Field(default=None, alias="blueocean_job_pipeline_name")
    event_type: str | None = Field(default=None, alias="jenkins_event")

    model_config = {"populate_by_name": True, "extra": "ignore"}


# ── Presentation ─────────────────────────────────────────────────────────────


class StepRender(BaseModel):
    """What the controller asks the presentation sink to show.

    ``insert_after`` drops every step after that state before appending.
    ``replace_current`` keeps the current step and only changes its state.
    """

    state: WizardState
    step: StepKind
    insert_after: WizardState | None = None
    message: str | None = None
    replace_current: bool = False
