"""
XMLA response parsing.

A successful Execute/Discover answer carries a rowset:

    <return>
      <root xmlns="urn:schemas-microsoft-com:xml-analysis:rowset">
        <xsd:schema> ... complexType "row" lists the columns in order ... </xsd:schema>
        <row><C0>East</C0><C1>12</C1></row>
        ...
      </root>
    </return>

Column names are XML-encoded in element tags (`_x005B_` for `[`), so the
original name is taken from the `sql:field` attribute when the schema has
one. A cell that is missing or marked `xsi:nil` is the engine's null.

Failures come back either as a SOAP Fault or as an Exception/Messages block
inside the rowset root; both are raised as XmlaFault.
"""

import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, List, Optional, Union

from app.core.xmla.envelope import NAMESPACES

SOAP = "{%s}" % NAMESPACES["soap"]
XMLA = "{%s}" % NAMESPACES["xmla"]
ROWSET = "{%s}" % NAMESPACES["rowset"]
EXCEPTION = "{%s}" % NAMESPACES["exception"]
XSD = "{%s}" % NAMESPACES["xsd"]
XSI = "{%s}" % NAMESPACES["xsi"]
SQL = "{%s}" % NAMESPACES["sql"]

_ENCODED_CHAR = re.compile(r"_x([0-9A-Fa-f]{4})_")
_FRACTION = re.compile(r"\.(\d+)")


class XmlaFault(Exception):
    """The engine answered with an error instead of a rowset."""

    def __init__(self, message: str, inner: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.inner = inner


@dataclass
class Column:
    name: str
    element: str
    xsd_type: Optional[str] = None


@dataclass
class Rowset:
    columns: List[Column] = field(default_factory=list)
    rows: List[List[Any]] = field(default_factory=list)

    @property
    def column_names(self) -> List[str]:
        return [column.name for column in self.columns]


@dataclass
class XmlaResponse:
    rowset: Rowset
    session_id: Optional[str] = None


def decode_xml_name(name: str) -> str:
    """Undo XML name encoding: `_x005B_Sales_x005D_` -> `[Sales]`."""
    return _ENCODED_CHAR.sub(lambda match: chr(int(match.group(1), 16)), name)


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


# =========================
# Value conversion
# =========================
def _to_bool(text: str) -> bool:
    lowered = text.strip().lower()
    if lowered in ("true", "1"):
        return True
    if lowered in ("false", "0"):
        return False
    raise ValueError(f"not a boolean: {text!r}")


def _to_datetime(text: str) -> datetime:
    value = text.strip()
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    # The engine sends 1 to 7 fractional digits; fromisoformat wants exactly 6
    match = _FRACTION.search(value)
    if match:
        digits = match.group(1)[:6].ljust(6, "0")
        value = value[: match.start(1)] + digits + value[match.end(1):]
    return datetime.fromisoformat(value)


_INTEGER_TYPES = (
    "int", "integer", "long", "short", "byte",
    "unsignedInt", "unsignedLong", "unsignedShort", "unsignedByte",
)

_CONVERTERS = {
    "string": str,
    "boolean": _to_bool,
    "double": float,
    "float": float,
    "decimal": Decimal,
    "dateTime": _to_datetime,
    "date": _to_datetime,
    **{name: int for name in _INTEGER_TYPES},
}


def convert_value(text: str, xsd_type: Optional[str]) -> Any:
    """Convert cell text according to its XSD type; unknown types stay text."""
    converter = _CONVERTERS.get(xsd_type.split(":")[-1]) if xsd_type else None
    if converter is None:
        return text
    try:
        return converter(text)
    except (ValueError, InvalidOperation):
        return text


def _cell_value(cell: Optional[ET.Element], xsd_type: Optional[str]) -> Any:
    if cell is None:
        return None
    if cell.get(f"{XSI}nil") in ("true", "1"):
        return None
    # Variant columns type each cell individually
    cell_type = cell.get(f"{XSI}type") or xsd_type
    return convert_value(cell.text or "", cell_type)


# =========================
# Errors
# =========================
def _descriptions(element: ET.Element) -> List[str]:
    return [
        error.get("Description")
        for error in element.iter()
        if _local(error.tag) == "Error" and error.get("Description")
    ]


def _fault_from_soap(fault: ET.Element) -> XmlaFault:
    # faultstring may or may not carry the SOAP namespace
    faultstring = next(
        (child.text or "" for child in fault if _local(child.tag) == "faultstring"),
        "",
    ).strip()
    descriptions = _descriptions(fault)

    message = faultstring or (descriptions[0] if descriptions else "XMLA fault")
    inner = "\n".join(text for text in descriptions if text != message)
    return XmlaFault(message, inner or None)


def _raise_for_exception(rowset_root: ET.Element) -> None:
    if rowset_root.find(f"{EXCEPTION}Exception") is None:
        return
    messages = rowset_root.find(f"{EXCEPTION}Messages")
    descriptions = _descriptions(messages) if messages is not None else []
    if not descriptions:
        raise XmlaFault("The engine reported an error without a description")
    inner = "\n".join(descriptions[1:])
    raise XmlaFault(descriptions[0], inner or None)


# =========================
# Rowset
# =========================
def _read_columns(rowset_root: ET.Element) -> List[Column]:
    schema = rowset_root.find(f"{XSD}schema")
    if schema is not None:
        for complex_type in schema.iter(f"{XSD}complexType"):
            if complex_type.get("name") != "row":
                continue
            columns = []
            for element in complex_type.iter(f"{XSD}element"):
                tag = element.get("name", "")
                columns.append(
                    Column(
                        name=element.get(f"{SQL}field") or decode_xml_name(tag),
                        element=tag,
                        xsd_type=element.get("type"),
                    )
                )
            return columns

    # No inline schema: the first row fixes the column order
    first_row = rowset_root.find(f"{ROWSET}row")
    if first_row is None:
        return []
    return [
        Column(name=decode_xml_name(_local(cell.tag)), element=_local(cell.tag))
        for cell in first_row
    ]


def read_rowset(rowset_root: ET.Element) -> Rowset:
    _raise_for_exception(rowset_root)
    columns = _read_columns(rowset_root)

    rows = []
    for row in rowset_root.findall(f"{ROWSET}row"):
        cells = {_local(cell.tag): cell for cell in row}
        rows.append(
            [_cell_value(cells.get(column.element), column.xsd_type) for column in columns]
        )
    return Rowset(columns=columns, rows=rows)


def parse_response(content: Union[str, bytes]) -> XmlaResponse:
    """
    Parse a SOAP answer from the engine.

    Raises:
        XmlaFault: SOAP Fault or in-rowset exception
        ET.ParseError: the payload is not well-formed XML
        ValueError: the payload is XML but not a SOAP envelope
    """
    envelope = ET.fromstring(content)
    body = envelope.find(f"{SOAP}Body")
    if body is None:
        raise ValueError("Response is not a SOAP envelope")

    fault = body.find(f"{SOAP}Fault")
    if fault is not None:
        raise _fault_from_soap(fault)

    session_id = None
    header = envelope.find(f"{SOAP}Header")
    if header is not None:
        session = header.find(f"{XMLA}Session")
        if session is not None:
            session_id = session.get("SessionId")

    result = body.find(f"*/{XMLA}return")
    if result is None:
        return XmlaResponse(rowset=Rowset(), session_id=session_id)

    rowset_root = result.find(f"{ROWSET}root")
    if rowset_root is None:
        # Commands without a rowset answer with an "empty" root
        for other_root in result:
            _raise_for_exception(other_root)
        return XmlaResponse(rowset=Rowset(), session_id=session_id)

    return XmlaResponse(rowset=read_rowset(rowset_root), session_id=session_id)
