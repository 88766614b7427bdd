"""Access-token manager for the source-host credential.

Wraps the provisioning client's credential endpoints and remembers why the
current credential stopped working, so the credentials step can tell the
user whether to create a new token or widen its scopes.
"""

from __future__ import annotations

import enum
import logging

import httpx

from pipeline_wizard.client import ProvisioningClient, TokenValidationError
from pipeline_wizard.models import TokenResult

logger = logging.getLogger(__name__)


class TokenStatus(str, enum.Enum):
    UNKNOWN = "unknown"
    VALID = "valid"
    REVOKED = "revoked"
    INVALID_SCOPES = "invalid_scopes"


class AccessTokenManager:
    """Finds, stores and invalidates the credential used by the wizard."""

    def __init__(self, client: ProvisioningClient):
        self.client = client
        self.credential_id: str | None = None
        self.status = TokenStatus.UNKNOWN

    async def find_existing_credential(self) -> bool:
        """Look up a stored credential. Lookup failures count as "none"."""
        try:
            credential_id = await self.client.find_credential()
        except httpx.HTTPError as e:
            logger.warning("Credential lookup failed: %s", e)
            credential_id = None

        self.credential_id = credential_id
        if credential_id:
            self.status = TokenStatus.VALID
            logger.info("Found existing credential %s", credential_id)
            return True
        return False

    async def create_access_token(self, token: str) -> TokenResult:
        """Validate and store a new access token."""
        try:
            credential_id = await self.client.validate_access_token(token)
        except TokenValidationError as e:
            logger.info("Access token rejected: %s", e)
            return TokenResult(success=False, error=str(e))
        except httpx.HTTPError as e:
            logger.warning("Access token validation failed: %s", e)
            return TokenResult(success=False, error=str(e))

        self.credential_id = credential_id
        self.status = TokenStatus.VALID
        logger.info("Created credential %s", credential_id)
        return TokenResult(success=True, credential_id=credential_id)

    def mark_token_revoked(self) -> None:
        logger.warning("Credential %s was revoked", self.credential_id)
        self.status = TokenStatus.REVOKED
        self.credential_id = None

    def mark_token_invalid_scopes(self) -> None:
        logger.warning("Credential %s is missing required scopes", self.credential_id)
        self.status = TokenStatus.INVALID_SCOPES
        self.credential_id = None
