import logging
from typing import Annotated

from fastapi import APIRouter, Depends, status
from fastapi.responses import PlainTextResponse

from app.core import schemas
from app.core.engine import (
    get_credential_provider,
    get_query_executor,
    get_session_factory,
)
from app.core.errors import GatewayError
from app.core.executor import QueryExecutor
from app.core.security import CredentialProvider
from app.core.session import SessionFactory

router = APIRouter(tags=["Query"])

credentials_dep = Annotated[CredentialProvider, Depends(get_credential_provider)]
sessions_dep = Annotated[SessionFactory, Depends(get_session_factory)]
executor_dep = Annotated[QueryExecutor, Depends(get_query_executor)]


# Run a query; the older frontend still posts to /api/powerbi/run-query
@router.post("/query", status_code=status.HTTP_200_OK)
@router.post("/api/powerbi/run-query", include_in_schema=False)
async def run_query(
    request: schemas.QueryRequest,
    credentials: credentials_dep,
    sessions: sessions_dep,
    executor: executor_dep,
):
    logging.info(f"Executing query for dataset: {request.dataset}")

    try:
        token = await credentials.acquire_token()
        session = await sessions.open_session(request.dataset, token)
        async with session:
            results = await executor.execute(session, request.query)
    except GatewayError as error:
        logging.error(f"Error executing query on {request.dataset}: {error}")
        # Engine diagnostics go back verbatim so users can fix their query
        return PlainTextResponse(
            f"Error executing query: {error}",
            status_code=status.HTTP_400_BAD_REQUEST,
        )

    return results
