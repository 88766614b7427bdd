"""Pipeline wizard CLI entry point."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

import httpx

from pipeline_wizard.client import ProvisioningClient
from pipeline_wizard.config import WizardConfig, load_config
from pipeline_wizard.credentials import AccessTokenManager
from pipeline_wizard.event_feed import EventFeed, SSEEventSource
from pipeline_wizard.flow import FlowController
from pipeline_wizard.presentation import LoggingPresenter
from pipeline_wizard.states import WizardState

logger = logging.getLogger("pipeline_wizard")

SUCCESS_STATES = {WizardState.STEP_COMPLETE_SUCCESS, WizardState.STEP_ALREADY_DISCOVER}


async def _drive(flow: FlowController, args: argparse.Namespace) -> WizardState | None:
    """Answer every wizard step from the command line arguments."""
    await flow.start()

    if flow.state == WizardState.STEP_ACCESS_TOKEN:
        token = os.environ.get(args.token_env)
        if not token:
            logger.error("No stored credential and $%s is not set", args.token_env)
            return flow.state
        result = await flow.submit_credential(token)
        if not result.success:
            logger.error("Access token rejected: %s", result.error)
            return flow.state

    if flow.state != WizardState.STEP_CHOOSE_ORGANIZATION:
        return flow.state

    organization = next((o for o in flow.organizations if o.name == args.org), None)
    if organization is None:
        logger.error("Organization %s is not visible to the credential", args.org)
        return flow.state

    await flow.select_organization(organization)
    if flow.state != WizardState.STEP_CHOOSE_DISCOVER:
        return flow.state

    await flow.select_discover_mode(args.auto_discover)

    if args.auto_discover:
        if flow.state != WizardState.STEP_CONFIRM_DISCOVER:
            return flow.state
        logger.info("Saving %s to scan %d repositories", args.org, len(flow.repositories.items))
        await flow.save_auto_discover()
    else:
        if flow.state != WizardState.STEP_CHOOSE_REPOSITORY:
            return flow.state
        repository = next((r for r in flow.selectable_repositories if r.name == args.repo), None)
        if repository is None:
            logger.error("Repository %s is unknown or already a pipeline", args.repo)
            return flow.state
        flow.select_repository(repository)
        await flow.save_single_repository()

    return await flow.wait_until_finished()


async def _run(args: argparse.Namespace) -> int:
    config = load_config(args.config) if args.config else WizardConfig()

    auth = None
    if args.user:
        auth = httpx.BasicAuth(args.user, os.environ.get("PIPELINE_WIZARD_PASSWORD", ""))

    client = ProvisioningClient(config.server, auth=auth)
    feed = EventFeed()
    events = SSEEventSource(feed, config)
    flow = FlowController(client, AccessTokenManager(client), feed, LoggingPresenter(), config)

    await client.start()
    await events.start()
    try:
        state = await _drive(flow, args)
    finally:
        flow.destroy()
        await events.stop()
        await client.close()

    logger.info("Wizard ended in %s", state.value if state else None)
    if state == WizardState.STEP_COMPLETE_SUCCESS:
        logger.info("%d pipeline(s) indexed", flow.pipeline_count)
    return 0 if state in SUCCESS_STATES else 1


def main():
    parser = argparse.ArgumentParser(
        prog="pipeline-wizard",
        description="Provision a CI pipeline group for a source-host organization",
    )

    subparsers = parser.add_subparsers(dest="command")

    # pipeline-wizard run
    run_parser = subparsers.add_parser("run", help="Run the wizard non-interactively")
    run_parser.add_argument(
        "--config",
        type=Path,
        help="Path to the wizard YAML config (default: built-in defaults)",
    )
    run_parser.add_argument("--org", required=True, help="Organization to provision")
    mode = run_parser.add_mutually_exclusive_group(required=True)
    mode.add_argument("--repo", help="Add a single repository to the group")
    mode.add_argument(
        "--auto-discover",
        action="store_true",
        help="Let the group scan every repository of the organization",
    )
    run_parser.add_argument(
        "--token-env",
        default="GITHUB_TOKEN",
        help="Environment variable holding an access token (default: GITHUB_TOKEN)",
    )
    run_parser.add_argument(
        "--user",
        help="CI server user; password is read from $PIPELINE_WIZARD_PASSWORD",
    )
    run_parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    try:
        sys.exit(asyncio.run(_run(args)))
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
