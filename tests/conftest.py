import os

# Settings are read at import time, so the environment goes first
os.environ.setdefault("CLIENT_ID", "test-client")
os.environ.setdefault("CLIENT_SECRET", "test-secret")
os.environ.setdefault("TENANT_ID", "test-tenant")
os.environ.setdefault("WORKSPACE_CONNECTION", "https://engine.test/xmla")

from typing import Dict, List, Optional, Sequence, Union

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from app.main import app
from app.core import schemas
from app.core.config import settings
from app.core.engine import get_credential_provider, get_session_factory
from app.core.xmla.rowset import Column, Rowset


def make_rowset(columns: Sequence[str], rows: Sequence[Sequence]) -> Rowset:
    """Rowset as the XMLA parser would produce it."""
    return Rowset(
        columns=[Column(name=name, element=name) for name in columns],
        rows=[list(row) for row in rows],
    )


class FakeSession:
    """
    Stands in for an open XMLA session.

    `responses` maps a statement to the Rowset it returns or the exception it
    raises; statements not listed get `default`.
    """

    def __init__(
        self,
        catalog: str = "Sales",
        responses: Optional[Dict[str, Union[Rowset, Exception]]] = None,
        default: Union[Rowset, Exception, None] = None,
    ):
        self.catalog = catalog
        self.responses = responses or {}
        self.default = default if default is not None else Rowset()
        self.statements: List[str] = []
        self.close_count = 0

    async def execute(self, statement: str) -> Rowset:
        self.statements.append(statement)
        outcome = self.responses.get(statement, self.default)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def close(self) -> None:
        self.close_count += 1

    async def __aenter__(self) -> "FakeSession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


class FakeCredentialProvider:
    def __init__(self, error: Optional[Exception] = None):
        self.error = error
        self.calls = 0

    async def acquire_token(self) -> schemas.AccessToken:
        self.calls += 1
        if self.error:
            raise self.error
        return schemas.AccessToken(value="fake-token", expires_in=3600)


class FakeSessionFactory:
    def __init__(self):
        self.session = FakeSession()
        self.error: Optional[Exception] = None
        self.opened: List[str] = []

    async def open_session(self, dataset: str, token: schemas.AccessToken):
        self.opened.append(dataset)
        if self.error:
            raise self.error
        self.session.catalog = dataset
        return self.session


@pytest.fixture
def config():
    # Independent copy so tests can tweak it freely
    return settings.model_copy(
        update={
            "TENANT_ID": "test-tenant",
            "AUTHORITY_URL": None,
            "WORKSPACE_CONNECTION": "https://engine.test/xmla",
        }
    )


@pytest.fixture
def credentials():
    return FakeCredentialProvider()


@pytest.fixture
def sessions():
    return FakeSessionFactory()


# Client
@pytest_asyncio.fixture(scope="function")
async def client(credentials, sessions):
    app.dependency_overrides[get_credential_provider] = lambda: credentials
    app.dependency_overrides[get_session_factory] = lambda: sessions

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
