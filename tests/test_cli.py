"""Tests for the pipeline-wizard CLI driver."""

from __future__ import annotations

import argparse
from unittest.mock import AsyncMock, MagicMock

import pytest

from pipeline_wizard.__main__ import _drive, main
from pipeline_wizard.config import TimingConfig, WizardConfig
from pipeline_wizard.event_feed import EventFeed
from pipeline_wizard.flow import FlowController
from pipeline_wizard.models import (
    GroupLookup,
    ListingPage,
    ListOrganizationsOutcome,
    Organization,
    OrganizationsResult,
    PipelineGroup,
    RepoRef,
)
from pipeline_wizard.presentation import StepHistory
from pipeline_wizard.states import WizardState


def _args(**overrides) -> argparse.Namespace:
    defaults = dict(org="acme", repo=None, auto_discover=True, token_env="TEST_WIZARD_TOKEN")
    defaults.update(overrides)
    return argparse.Namespace(**defaults)


def _make_flow(found_credential: bool = True) -> FlowController:
    api = AsyncMock()
    api.list_organizations = AsyncMock(
        return_value=OrganizationsResult(
            outcome=ListOrganizationsOutcome.SUCCESS, organizations=[Organization(name="acme")]
        )
    )
    api.find_existing_group = AsyncMock(return_value=GroupLookup(is_found=False))
    api.list_repositories = AsyncMock(return_value=ListingPage(items=[RepoRef(name="svc-a")]))
    api.create_group = AsyncMock(return_value=PipelineGroup(name="acme", url="/acme/"))

    tokens = MagicMock()
    tokens.credential_id = "cred-1" if found_credential else None
    tokens.find_existing_credential = AsyncMock(return_value=found_credential)

    config = WizardConfig(timing=TimingConfig(min_delay=0, save_min_delay=0, event_timeout=0.02))
    return FlowController(api, tokens, EventFeed(), StepHistory(), config)


class TestDrive:
    async def test_auto_discover_runs_to_completion(self):
        flow = _make_flow()

        state = await _drive(flow, _args())

        # No events arrive in the test, so the wait ends in a timeout
        assert state == WizardState.STEP_COMPLETE_EVENT_TIMEOUT
        flow.api.create_group.assert_awaited_once()

    async def test_unknown_organization_stops(self):
        flow = _make_flow()

        state = await _drive(flow, _args(org="globex"))

        assert state == WizardState.STEP_CHOOSE_ORGANIZATION
        flow.api.find_existing_group.assert_not_awaited()

    async def test_unknown_repository_stops(self):
        flow = _make_flow()

        state = await _drive(flow, _args(repo="missing", auto_discover=False))

        assert state == WizardState.STEP_CHOOSE_REPOSITORY
        flow.api.create_group.assert_not_awaited()

    async def test_missing_token_env_stops(self, monkeypatch):
        monkeypatch.delenv("TEST_WIZARD_TOKEN", raising=False)
        flow = _make_flow(found_credential=False)

        state = await _drive(flow, _args())

        assert state == WizardState.STEP_ACCESS_TOKEN


def test_no_command_prints_help(monkeypatch):
    monkeypatch.setattr("sys.argv", ["pipeline-wizard"])

    with pytest.raises(SystemExit) as exc:
        main()

    assert exc.value.code == 1
