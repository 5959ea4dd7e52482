import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import PlainTextResponse

from app.core import schemas
from app.core.discovery import SchemaDiscoverer
from app.core.engine import (
    get_credential_provider,
    get_schema_discoverer,
    get_session_factory,
)
from app.core.errors import GatewayError
from app.core.security import CredentialProvider
from app.core.session import SessionFactory

router = APIRouter(tags=["Metadata"])

credentials_dep = Annotated[CredentialProvider, Depends(get_credential_provider)]
sessions_dep = Annotated[SessionFactory, Depends(get_session_factory)]
discoverer_dep = Annotated[SchemaDiscoverer, Depends(get_schema_discoverer)]


async def load_metadata(
    dataset: str,
    credentials: CredentialProvider,
    sessions: SessionFactory,
    discoverer: SchemaDiscoverer,
):
    logging.info(f"Getting metadata for dataset: {dataset}")

    try:
        token = await credentials.acquire_token()
        session = await sessions.open_session(dataset, token)
        async with session:
            metadata = await discoverer.discover(session)
    except GatewayError as error:
        logging.error(f"Error getting metadata for {dataset}: {error}")
        return PlainTextResponse(
            f"Error getting metadata: {error}",
            status_code=status.HTTP_400_BAD_REQUEST,
        )

    logging.info(
        f"Found {len(metadata.tables)} tables and {len(metadata.measures)} measures"
    )
    return metadata


@router.get("/metadata", response_model=schemas.Metadata)
async def get_metadata(
    dataset: Annotated[str, Query(min_length=1)],
    credentials: credentials_dep,
    sessions: sessions_dep,
    discoverer: discoverer_dep,
):
    """Tables (with columns) and visible measures of a dataset."""
    return await load_metadata(dataset, credentials, sessions, discoverer)


# Older frontend passes the dataset as "catalog"
@router.get(
    "/api/powerbi/metadata",
    response_model=schemas.Metadata,
    include_in_schema=False,
)
async def get_metadata_by_catalog(
    catalog: Annotated[str, Query(min_length=1)],
    credentials: credentials_dep,
    sessions: sessions_dep,
    discoverer: discoverer_dep,
):
    return await load_metadata(catalog, credentials, sessions, discoverer)
