import logging
import xml.etree.ElementTree as ET
from typing import Optional

import httpx

from app.core.errors import EngineConnectionError, QueryExecutionError
from app.core.xmla import envelope
from app.core.xmla.rowset import Rowset, XmlaFault, XmlaResponse, parse_response

logger = logging.getLogger(__name__)


class XmlaSession:
    """
    One XMLA session against a single catalog (dataset).

    Owns its HTTP client. Open it with `begin()`, release it with `close()`
    (or use it as an async context manager after `begin()`).

    Usage:
        session = XmlaSession(url, "Sales", httpx.AsyncClient(...))
        await session.begin()
        async with session:
            rowset = await session.execute("EVALUATE VALUES(Region)")
    """

    def __init__(self, url: str, catalog: str, client: httpx.AsyncClient):
        self.url = url
        self.catalog = catalog
        self.client = client
        self.session_id: Optional[str] = None
        self.closed = False

    async def __aenter__(self) -> "XmlaSession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _header(self) -> str:
        return envelope.session_header(self.session_id) if self.session_id else ""

    async def _call(self, action: str, payload: str) -> XmlaResponse:
        """POST one SOAP request.

        Raises XmlaFault, httpx.HTTPError, httpx.InvalidURL, ValueError or
        ET.ParseError.
        """
        headers = {
            "Content-Type": "text/xml; charset=utf-8",
            "SOAPAction": f'"{action}"',
        }
        response = await self.client.post(self.url, content=payload, headers=headers)

        if response.status_code in (401, 403):
            raise XmlaFault(
                f"The engine refused the credential (HTTP {response.status_code})"
            )

        # Faults usually arrive with HTTP 500 and a SOAP body
        try:
            return parse_response(response.content)
        except (ValueError, ET.ParseError):
            if response.status_code >= 400:
                raise XmlaFault(
                    f"HTTP {response.status_code}: {response.text[:200]}"
                )
            raise

    async def begin(self) -> None:
        """
        Handshake: start a server session and confirm the catalog exists.

        Raises:
            EngineConnectionError: endpoint unreachable, credential refused,
                or no catalog with this name
        """
        payload = envelope.build_discover(
            "DBSCHEMA_CATALOGS",
            restrictions={"CATALOG_NAME": self.catalog},
            header=envelope.begin_session_header(),
        )
        try:
            answer = await self._call(envelope.DISCOVER_ACTION, payload)
        except XmlaFault as fault:
            raise EngineConnectionError(_join(fault.message, fault.inner)) from fault
        except httpx.HTTPError as error:
            raise EngineConnectionError(f"Engine endpoint unreachable: {error}") from error
        except httpx.InvalidURL as error:
            raise EngineConnectionError(f"Invalid engine endpoint: {error}") from error
        except (ValueError, ET.ParseError) as error:
            raise EngineConnectionError(f"Malformed handshake response: {error}") from error

        self.session_id = answer.session_id
        if not answer.rowset.rows:
            raise EngineConnectionError(
                f"Dataset '{self.catalog}' was not found or is not accessible"
            )
        logger.info(f"XMLA session opened on catalog {self.catalog}")

    async def execute(self, statement: str) -> Rowset:
        """
        Run a statement (DAX query or $SYSTEM DMV select) and return its rowset.

        Raises:
            QueryExecutionError: engine fault or transport failure mid-read
        """
        payload = envelope.build_execute(statement, self.catalog, self._header())
        return await self._rowset(envelope.EXECUTE_ACTION, payload)

    async def _rowset(self, action: str, payload: str) -> Rowset:
        if self.closed:
            raise QueryExecutionError("Session is closed")
        try:
            answer = await self._call(action, payload)
        except XmlaFault as fault:
            raise QueryExecutionError(fault.message, fault.inner) from fault
        except (httpx.HTTPError, httpx.InvalidURL) as error:
            raise QueryExecutionError(f"Session failed mid-read: {error}") from error
        except (ValueError, ET.ParseError) as error:
            raise QueryExecutionError(f"Malformed engine response: {error}") from error
        return answer.rowset

    async def close(self) -> None:
        """End the server session (best effort) and release the HTTP client."""
        if self.closed:
            return
        self.closed = True
        try:
            if self.session_id:
                payload = envelope.build_execute(
                    "", self.catalog, envelope.end_session_header(self.session_id)
                )
                await self._call(envelope.EXECUTE_ACTION, payload)
        except (
            XmlaFault, httpx.HTTPError, httpx.InvalidURL, ValueError, ET.ParseError
        ) as error:
            logger.warning(f"Could not end XMLA session {self.session_id}: {error}")
        finally:
            await self.client.aclose()
            logger.info(f"XMLA session closed on catalog {self.catalog}")


def _join(message: str, inner: Optional[str]) -> str:
    return f"{message}\n{inner}" if inner else message
