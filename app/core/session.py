import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional, Tuple

import httpx

from app.core import schemas
from app.core.config import CredentialMode, Settings
from app.core.errors import EngineConnectionError
from app.core.xmla.client import XmlaSession

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConnectionDescriptor:
    """Where the session goes: engine endpoint, dataset (catalog), credential."""

    data_source: str
    catalog: str
    provider: str = "MSOLAP"
    user_id: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)

    def connection_string(self, redact: bool = True) -> str:
        parts = [
            f"Data Source={self.data_source}",
            f"Initial Catalog={self.catalog}",
            f"Provider={self.provider}",
        ]
        if self.user_id:
            parts.append(f"User ID={self.user_id}")
        if self.password:
            parts.append(f"Password={'***' if redact else self.password}")
        return ";".join(parts) + ";"

    def __str__(self) -> str:
        return self.connection_string()


# Client options handed to httpx.AsyncClient for the session transport
ClientOptions = Dict[str, Any]


class AccessTokenCredential:
    """The token is its own session parameter, sent as a bearer header."""

    def apply(
        self, descriptor: ConnectionDescriptor, token: schemas.AccessToken
    ) -> Tuple[ConnectionDescriptor, ClientOptions]:
        bearer = token.value.get_secret_value()
        return descriptor, {"headers": {"Authorization": f"Bearer {bearer}"}}


class ConnectionStringCredential:
    """The token travels inside the descriptor as its Password."""

    def apply(
        self, descriptor: ConnectionDescriptor, token: schemas.AccessToken
    ) -> Tuple[ConnectionDescriptor, ClientOptions]:
        described = replace(descriptor, password=token.value.get_secret_value())
        # The transport reads its credential back out of the descriptor
        auth = httpx.BasicAuth(described.user_id or "", described.password)
        return described, {"auth": auth}


CREDENTIAL_STRATEGIES = {
    CredentialMode.ACCESS_TOKEN: AccessTokenCredential(),
    CredentialMode.CONNECTION_STRING: ConnectionStringCredential(),
}


class SessionFactory:
    """
    Opens XMLA sessions against the configured workspace.

    The credential strategy is picked once, from configuration, when the
    factory is built. Sessions are never pooled: every call opens a new one
    and the caller must close it (it is an async context manager).

    Example:
        session = await factory.open_session("Sales", token)
        async with session:
            ...
    """

    def __init__(
        self, config: Settings, transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.config = config
        self.credential = CREDENTIAL_STRATEGIES[config.CREDENTIAL_MODE]
        # Tests swap in an httpx.MockTransport
        self.transport = transport

    def describe(self, dataset: str) -> ConnectionDescriptor:
        return ConnectionDescriptor(
            data_source=self.config.WORKSPACE_CONNECTION, catalog=dataset
        )

    async def open_session(
        self, dataset: str, token: schemas.AccessToken
    ) -> XmlaSession:
        """
        Raises:
            EngineConnectionError: the handshake failed
        """
        descriptor, client_options = self.credential.apply(
            self.describe(dataset), token
        )
        logger.info(f"Opening session: {descriptor}")

        client = httpx.AsyncClient(
            timeout=self.config.ENGINE_TIMEOUT_SECONDS,
            transport=self.transport,
            **client_options,
        )
        session = XmlaSession(descriptor.data_source, descriptor.catalog, client)

        try:
            await session.begin()
        except EngineConnectionError as error:
            logger.error(f"Could not open session on dataset {dataset}: {error}")
            await session.close()
            raise

        return session
