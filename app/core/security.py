import logging
from typing import Optional

import httpx

from app.core import schemas
from app.core.config import Settings
from app.core.errors import AuthenticationError

logger = logging.getLogger(__name__)


class CredentialProvider:
    """
    Obtains a bearer token for the analytics engine through an OAuth2
    client-credentials exchange against the configured authority.

    A fresh token is requested on every call; nothing is cached.

    Example:
        provider = CredentialProvider(settings)
        token = await provider.acquire_token()
    """

    def __init__(
        self, config: Settings, transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.config = config
        # Tests swap in an httpx.MockTransport
        self.transport = transport

    @property
    def token_url(self) -> str:
        authority = self.config.authority
        if not authority:
            raise AuthenticationError(
                "No identity authority configured (set AUTHORITY_URL or TENANT_ID)"
            )
        return f"{authority}/oauth2/v2.0/token"

    async def acquire_token(self) -> schemas.AccessToken:
        token_url = self.token_url
        form = {
            "grant_type": "client_credentials",
            "client_id": self.config.CLIENT_ID,
            "client_secret": self.config.CLIENT_SECRET.get_secret_value(),
            "scope": self.config.SCOPE,
        }

        logger.info(f"Requesting access token for scope {self.config.SCOPE}")

        try:
            async with httpx.AsyncClient(
                timeout=self.config.AUTH_TIMEOUT_SECONDS, transport=self.transport
            ) as client:
                response = await client.post(token_url, data=form)
        except (httpx.HTTPError, httpx.InvalidURL) as error:
            logger.error(f"Identity provider unreachable: {error}")
            raise AuthenticationError(
                f"Identity provider unreachable: {error}"
            ) from error

        if response.status_code != 200:
            detail = _error_description(response)
            logger.error(
                f"Identity provider rejected the client credential "
                f"({response.status_code}): {detail}"
            )
            raise AuthenticationError(
                f"Identity provider rejected the client credential: {detail}"
            )

        try:
            payload = response.json()
        except ValueError as error:
            raise AuthenticationError(
                "Identity provider returned a malformed token response"
            ) from error

        access_token = payload.get("access_token") if isinstance(payload, dict) else None
        if not access_token:
            raise AuthenticationError("Identity provider returned no access token")

        return schemas.AccessToken(
            value=access_token,
            token_type=payload.get("token_type", "Bearer"),
            expires_in=_expires_in(payload.get("expires_in")),
        )


def _error_description(response: httpx.Response) -> str:
    # Entra ID answers with {"error": ..., "error_description": ...}
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200] or f"HTTP {response.status_code}"

    if isinstance(payload, dict):
        return (
            payload.get("error_description")
            or payload.get("error")
            or f"HTTP {response.status_code}"
        )
    return f"HTTP {response.status_code}"


def _expires_in(value) -> int:
    # Unreadable lifetime reads as 0
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0
