import base64

import httpx
import pytest

from app.core import schemas
from app.core.config import CredentialMode
from app.core.errors import EngineConnectionError, QueryExecutionError
from app.core.executor import QueryExecutor
from app.core.session import ConnectionDescriptor, SessionFactory
from app.core.xmla.client import XmlaSession
from payloads import (
    CATALOGS_RESPONSE,
    EMPTY_RESPONSE,
    FAULT_RESPONSE,
    NO_CATALOGS_RESPONSE,
    ROWSET_RESPONSE,
)

TOKEN = schemas.AccessToken(value="tok-123")


class FakeEngine:
    """XMLA endpoint behind an httpx.MockTransport; remembers every request."""

    def __init__(self, handshake: str = CATALOGS_RESPONSE, handshake_status: int = 200):
        self.handshake = handshake
        self.handshake_status = handshake_status
        self.requests = []
        self.transport = httpx.MockTransport(self.handle)

    def bodies(self):
        return [request.content.decode() for request in self.requests]

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        body = request.content.decode()
        if "BeginSession" in body:
            return httpx.Response(self.handshake_status, text=self.handshake)
        if "EndSession" in body:
            return httpx.Response(200, text=EMPTY_RESPONSE)
        if "Nope" in body:
            return httpx.Response(500, text=FAULT_RESPONSE)
        return httpx.Response(200, text=ROWSET_RESPONSE)


@pytest.mark.asyncio
async def test_open_session_with_bearer_credential(config):
    engine = FakeEngine()
    factory = SessionFactory(config, transport=engine.transport)

    session = await factory.open_session("Sales", TOKEN)
    async with session:
        assert session.session_id == "S-1"

    handshake = engine.requests[0]
    assert handshake.headers["Authorization"] == "Bearer tok-123"
    assert handshake.headers["SOAPAction"] == '"urn:schemas-microsoft-com:xml-analysis:Discover"'
    assert str(handshake.url) == "https://engine.test/xmla"
    assert "<CATALOG_NAME>Sales</CATALOG_NAME>" in engine.bodies()[0]


@pytest.mark.asyncio
async def test_connection_string_credential_rides_in_descriptor(config):
    config = config.model_copy(update={"CREDENTIAL_MODE": CredentialMode.CONNECTION_STRING})
    engine = FakeEngine()
    factory = SessionFactory(config, transport=engine.transport)

    session = await factory.open_session("Sales", TOKEN)
    await session.close()

    expected = base64.b64encode(b":tok-123").decode()
    assert engine.requests[0].headers["Authorization"] == f"Basic {expected}"


def test_descriptor_redacts_password():
    descriptor = ConnectionDescriptor(
        data_source="https://engine.test/xmla", catalog="Sales", password="tok-123"
    )

    assert str(descriptor) == (
        "Data Source=https://engine.test/xmla;Initial Catalog=Sales;"
        "Provider=MSOLAP;Password=***;"
    )
    assert "tok-123" in descriptor.connection_string(redact=False)
    assert "tok-123" not in repr(descriptor)


@pytest.mark.asyncio
async def test_execute_uses_session_and_catalog(config):
    engine = FakeEngine()
    factory = SessionFactory(config, transport=engine.transport)

    session = await factory.open_session("Sales", TOKEN)
    async with session:
        records = await QueryExecutor().execute(session, "EVALUATE Geography")

    assert [list(record) for record in records] == [
        ["Geography[Region]", "[Total]", "[Updated]"]
    ] * 2
    assert records[0]["Geography[Region]"] == "East"

    query_body = engine.bodies()[1]
    assert 'SessionId="S-1"' in query_body
    assert "<Statement>EVALUATE Geography</Statement>" in query_body
    assert "<Catalog>Sales</Catalog>" in query_body


@pytest.mark.asyncio
async def test_close_ends_session_once(config):
    engine = FakeEngine()
    factory = SessionFactory(config, transport=engine.transport)

    session = await factory.open_session("Sales", TOKEN)
    await session.close()
    await session.close()

    end_requests = [body for body in engine.bodies() if "EndSession" in body]
    assert len(end_requests) == 1
    assert session.closed
    assert session.client.is_closed


@pytest.mark.asyncio
async def test_query_fault_closes_session(config):
    """Engine fault surfaces as QueryExecutionError; the session still closes"""
    engine = FakeEngine()
    factory = SessionFactory(config, transport=engine.transport)

    session = await factory.open_session("Sales", TOKEN)
    with pytest.raises(QueryExecutionError) as caught:
        async with session:
            await QueryExecutor().execute(session, "EVALUATE Nope")

    assert str(caught.value) == (
        "The query failed.\nQuery (1, 10) Cannot find table 'Nope'."
    )
    assert session.closed
    assert "EndSession" in engine.bodies()[-1]


@pytest.mark.asyncio
async def test_unknown_dataset(config):
    engine = FakeEngine(handshake=NO_CATALOGS_RESPONSE)
    factory = SessionFactory(config, transport=engine.transport)

    with pytest.raises(EngineConnectionError, match="Dataset 'Nope' was not found"):
        await factory.open_session("Nope", TOKEN)


@pytest.mark.asyncio
async def test_rejected_token(config):
    engine = FakeEngine(handshake="", handshake_status=401)
    factory = SessionFactory(config, transport=engine.transport)

    with pytest.raises(EngineConnectionError, match="HTTP 401"):
        await factory.open_session("Sales", TOKEN)


@pytest.mark.asyncio
async def test_unreachable_endpoint(config):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("Connection refused", request=request)

    factory = SessionFactory(config, transport=httpx.MockTransport(handler))

    with pytest.raises(EngineConnectionError, match="unreachable"):
        await factory.open_session("Sales", TOKEN)


@pytest.mark.asyncio
async def test_malformed_endpoint_url(config):
    engine = FakeEngine()
    config = config.model_copy(
        update={"WORKSPACE_CONNECTION": "https://engine.test:notaport/xmla"}
    )
    factory = SessionFactory(config, transport=engine.transport)

    with pytest.raises(EngineConnectionError, match="Invalid engine endpoint"):
        await factory.open_session("Sales", TOKEN)
    assert engine.requests == []


@pytest.mark.asyncio
async def test_malformed_endpoint_url_releases_client():
    engine = FakeEngine()
    session = XmlaSession(
        "https://engine.test:notaport/xmla",
        "Sales",
        httpx.AsyncClient(transport=engine.transport),
    )

    with pytest.raises(EngineConnectionError):
        await session.begin()
    await session.close()

    assert session.closed
    assert session.client.is_closed
