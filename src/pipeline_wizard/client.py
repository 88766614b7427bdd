"""Remote provisioning API client.

Async httpx client for the CI server's REST API: credential lookup and
validation, organization and repository listing, pipeline group
create/update, and pipeline lookup.

Listing calls report credential problems as outcomes rather than raising,
since the wizard recovers from them by asking for a new token.
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import httpx

from pipeline_wizard.config import ServerConfig
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
)

logger = logging.getLogger(__name__)

GROUP_CLASS_SUFFIX = "OrganizationFolder"
CREATE_REQUEST_CLASS = "io.jenkins.blueocean.blueocean_github_pipeline.GithubPipelineCreateRequest"

# HTTP 428 is how the server reports a token it cannot use
TOKEN_ERROR_STATUS = 428
TOKEN_ERROR_CODES = {
    "TOKEN_REVOKED": ListOrganizationsOutcome.INVALID_TOKEN_REVOKED,
    "TOKEN_INVALID_SCOPES": ListOrganizationsOutcome.INVALID_TOKEN_SCOPES,
}


class ProvisioningError(Exception):
    """A provisioning call failed with an unexpected response."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class TokenValidationError(ProvisioningError):
    """The server rejected an access token."""


def _error_message(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return resp.text[:200] or f"HTTP {resp.status_code}"
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])
    return f"HTTP {resp.status_code}"


def _segment(value: str) -> str:
    return quote(value, safe="")


class ProvisioningClient:
    """Async client for the CI server's provisioning endpoints."""

    def __init__(self, server: ServerConfig | None = None, *, auth: httpx.Auth | None = None):
        self.server = server or ServerConfig()
        self.base_url = self.server.base_url
        self.api_url = self.server.api_url
        self._org_path = f"/organizations/{_segment(self.server.organization)}"
        self._auth = auth
        self._client: httpx.AsyncClient | None = None

    async def start(self) -> None:
        """Initialize HTTP client."""
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "Accept": "application/json",
                "User-Agent": "pipeline-wizard/0.1.0",
            },
            auth=self._auth,
            timeout=self.server.request_timeout,
        )
        logger.info("Provisioning client started (%s)", self.base_url)

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("Provisioning client not started")
        return self._client

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        """Make a request and raise for any non-2xx status."""
        resp = await self.client.request(method, path, **kwargs)
        resp.raise_for_status()
        return resp

    # ── Credentials ──────────────────────────────────────────────────────

    async def find_credential(self) -> str | None:
        """Return the id of the stored source-host credential, if any."""
        try:
            resp = await self._request(
                "GET",
                f"{self._org_path}/scm/github/",
                params={"apiUrl": self.api_url},
            )
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                return None
            raise
        data = resp.json() or {}
        return data.get("credentialId")

    async def validate_access_token(self, token: str) -> str:
        """Store ``token`` as the source-host credential and return its id.

        Raises:
            TokenValidationError: The server rejected the token.
        """
        resp = await self.client.put(
            f"{self._org_path}/scm/github/validate/",
            params={"apiUrl": self.api_url},
            json={"accessToken": token},
        )
        if resp.status_code in (TOKEN_ERROR_STATUS, 400, 401, 403):
            raise TokenValidationError(_error_message(resp), resp.status_code)
        resp.raise_for_status()
        credential_id = (resp.json() or {}).get("credentialId")
        if not credential_id:
            raise TokenValidationError("Server returned no credential id", resp.status_code)
        return credential_id

    # ── Organizations & Repositories ─────────────────────────────────────

    async def list_organizations(self, credential_id: str | None) -> OrganizationsResult:
        """List organizations visible to ``credential_id``.

        Never raises for HTTP or transport failures; they become outcomes.
        """
        try:
            resp = await self.client.get(
                f"{self._org_path}/scm/github/organizations/",
                params={"credentialId": credential_id or "", "apiUrl": self.api_url},
            )
        except httpx.HTTPError as e:
            logger.warning("Listing organizations failed: %s", e)
            return OrganizationsResult(outcome=ListOrganizationsOutcome.UNKNOWN, error=str(e))

        if resp.status_code == TOKEN_ERROR_STATUS:
            code = ""
            try:
                code = (resp.json() or {}).get("code", "")
            except ValueError:
                pass
            outcome = TOKEN_ERROR_CODES.get(str(code).upper())
            if outcome is not None:
                return OrganizationsResult(outcome=outcome, error=_error_message(resp))

        if resp.is_error:
            return OrganizationsResult(
                outcome=ListOrganizationsOutcome.UNKNOWN, error=_error_message(resp)
            )

        organizations = [Organization.model_validate(o) for o in resp.json() or []]
        return OrganizationsResult(
            outcome=ListOrganizationsOutcome.SUCCESS, organizations=organizations
        )

    async def list_repositories(
        self, credential_id: str | None, org_name: str, page: int, page_size: int
    ) -> ListingPage:
        resp = await self._request(
            "GET",
            f"{self._org_path}/scm/github/organizations/{_segment(org_name)}/repositories/",
            params={
                "credentialId": credential_id or "",
                "pageNumber": page,
                "pageSize": page_size,
                "apiUrl": self.api_url,
            },
        )
        repositories = (resp.json() or {}).get("repositories") or {}
        items = [
            RepoRef(name=item["name"], metadata={k: v for k, v in item.items() if k != "name"})
            for item in repositories.get("items") or []
        ]
        next_page = repositories.get("nextPage")
        try:
            next_page = int(next_page) if next_page is not None else None
        except (TypeError, ValueError):
            next_page = None
        return ListingPage(items=items, next_page=next_page)

    # ── Pipeline Groups ──────────────────────────────────────────────────

    async def find_existing_group(self, organization: Organization) -> GroupLookup:
        """Look up an existing group named after ``organization``."""
        try:
            resp = await self._request(
                "GET", f"{self._org_path}/pipelines/{_segment(organization.name)}/"
            )
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                return GroupLookup(is_found=False)
            raise
        data = resp.json() or {}
        if not str(data.get("_class", "")).endswith(GROUP_CLASS_SUFFIX):
            return GroupLookup(is_found=True, is_group=False)
        return GroupLookup(is_found=True, is_group=True, group=self._parse_group(data))

    async def create_group(
        self, credential_id: str | None, organization: Organization, repo_names: list[str]
    ) -> PipelineGroup:
        resp = await self._save_group(
            "POST", f"{self._org_path}/pipelines/", organization.name, credential_id, repo_names
        )
        return self._parse_group(resp.json() or {})

    async def update_group(
        self, credential_id: str | None, group: PipelineGroup, repo_names: list[str]
    ) -> PipelineGroup:
        resp = await self._save_group(
            "PUT",
            f"{self._org_path}/pipelines/{_segment(group.name)}/",
            group.name,
            credential_id,
            repo_names,
        )
        return self._parse_group(resp.json() or {})

    async def _save_group(
        self,
        method: str,
        path: str,
        org_name: str,
        credential_id: str | None,
        repo_names: list[str],
    ) -> httpx.Response:
        # An empty repo list means "scan every repository"
        payload: dict[str, Any] = {
            "name": org_name,
            "$class": CREATE_REQUEST_CLASS,
            "scmConfig": {
                "credentialId": credential_id,
                "uri": self.api_url,
                "config": {"orgName": org_name, "repos": list(repo_names)},
            },
        }
        try:
            resp = await self._request(method, path, json=payload)
        except httpx.HTTPStatusError as e:
            raise ProvisioningError(
                f"Saving group {org_name} failed: {_error_message(e.response)}",
                e.response.status_code,
            ) from e
        logger.info("Saved pipeline group %s (%d repos)", org_name, len(repo_names))
        return resp

    @staticmethod
    def _parse_group(data: dict) -> PipelineGroup:
        links = data.get("_links") or {}
        return PipelineGroup(
            name=data.get("name", ""),
            auto_discover=bool(data.get("scanAllRepos", False)),
            existing_pipeline_names=list(data.get("pipelineFolderNames") or []),
            url=(links.get("self") or {}).get("href", ""),
        )

    # ── Pipelines ────────────────────────────────────────────────────────

    async def find_pipeline_by_name(self, full_name: str) -> PipelineLookup:
        """Look up ``owner/repo`` inside its group."""
        path = "/pipelines/".join(_segment(part) for part in full_name.split("/"))
        try:
            resp = await self._request("GET", f"{self._org_path}/pipelines/{path}/")
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                return PipelineLookup(is_found=False)
            raise
        data = resp.json() or {}
        links = data.get("_links") or {}
        pipeline = Pipeline(
            name=data.get("name", full_name.rsplit("/", 1)[-1]),
            full_name=data.get("fullName", full_name),
            url=(links.get("self") or {}).get("href", ""),
        )
        return PipelineLookup(is_found=True, pipeline=pipeline)
