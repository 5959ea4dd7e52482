from app.core.config import settings
from app.core.discovery import SchemaDiscoverer
from app.core.executor import QueryExecutor
from app.core.security import CredentialProvider
from app.core.session import SessionFactory

# Built once; they hold only the immutable settings
credential_provider = CredentialProvider(settings)
session_factory = SessionFactory(settings)
query_executor = QueryExecutor()
schema_discoverer = SchemaDiscoverer()


# The "Bridge" that gives routes their engine collaborators (overridden in tests)
def get_credential_provider() -> CredentialProvider:
    return credential_provider


def get_session_factory() -> SessionFactory:
    return session_factory


def get_query_executor() -> QueryExecutor:
    return query_executor


def get_schema_discoverer() -> SchemaDiscoverer:
    return schema_discoverer
