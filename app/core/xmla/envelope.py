"""
XMLA request envelopes.

Every call to the engine is a SOAP 1.1 POST carrying either an Execute
(a statement: DAX query or $SYSTEM DMV select) or a Discover (a schema
rowset request with restrictions). Session state rides in the SOAP header:
BeginSession on the handshake, Session on every call after it, EndSession
on the call that releases it.
"""

from typing import Dict, Optional
from xml.sax.saxutils import escape, quoteattr

NAMESPACES = {
    "soap": "http://schemas.xmlsoap.org/soap/envelope/",
    "xmla": "urn:schemas-microsoft-com:xml-analysis",
    "rowset": "urn:schemas-microsoft-com:xml-analysis:rowset",
    "exception": "urn:schemas-microsoft-com:xml-analysis:exception",
    "xsd": "http://www.w3.org/2001/XMLSchema",
    "xsi": "http://www.w3.org/2001/XMLSchema-instance",
    "sql": "urn:schemas-microsoft-com:xml-sql",
}

EXECUTE_ACTION = "urn:schemas-microsoft-com:xml-analysis:Execute"
DISCOVER_ACTION = "urn:schemas-microsoft-com:xml-analysis:Discover"


def begin_session_header() -> str:
    return f'<BeginSession soap:mustUnderstand="1" xmlns="{NAMESPACES["xmla"]}"/>'


def session_header(session_id: str) -> str:
    return (
        f'<Session soap:mustUnderstand="1" SessionId={quoteattr(session_id)} '
        f'xmlns="{NAMESPACES["xmla"]}"/>'
    )


def end_session_header(session_id: str) -> str:
    return (
        f'<EndSession soap:mustUnderstand="1" SessionId={quoteattr(session_id)} '
        f'xmlns="{NAMESPACES["xmla"]}"/>'
    )


def _property_list(catalog: Optional[str]) -> str:
    catalog_xml = f"<Catalog>{escape(catalog)}</Catalog>" if catalog else ""
    return (
        "<Properties><PropertyList>"
        f"{catalog_xml}"
        "<Format>Tabular</Format>"
        "<Content>SchemaData</Content>"
        "</PropertyList></Properties>"
    )


def build_envelope(body: str, header: str = "") -> str:
    """Wrap a request body (and optional session header) in a SOAP envelope."""
    return f"""<?xml version="1.0" encoding="utf-8"?>
<soap:Envelope xmlns:soap="{NAMESPACES["soap"]}">
    <soap:Header>{header}</soap:Header>
    <soap:Body>
        {body}
    </soap:Body>
</soap:Envelope>"""


def build_execute(statement: str, catalog: Optional[str] = None, header: str = "") -> str:
    """Execute request; the statement is sent verbatim (XML-escaped only)."""
    body = (
        f'<Execute xmlns="{NAMESPACES["xmla"]}">'
        f"<Command><Statement>{escape(statement)}</Statement></Command>"
        f"{_property_list(catalog)}"
        "</Execute>"
    )
    return build_envelope(body, header)


def build_discover(
    request_type: str,
    restrictions: Optional[Dict[str, str]] = None,
    catalog: Optional[str] = None,
    header: str = "",
) -> str:
    restriction_xml = "".join(
        f"<{name}>{escape(value)}</{name}>"
        for name, value in (restrictions or {}).items()
    )
    body = (
        f'<Discover xmlns="{NAMESPACES["xmla"]}">'
        f"<RequestType>{escape(request_type)}</RequestType>"
        f"<Restrictions><RestrictionList>{restriction_xml}</RestrictionList></Restrictions>"
        f"{_property_list(catalog)}"
        "</Discover>"
    )
    return build_envelope(body, header)
