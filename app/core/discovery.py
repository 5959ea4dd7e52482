"""
SCHEMA DISCOVERY - Tables, columns and measures of a dataset

Engine versions differ in which $SYSTEM views they expose, so each half of
the metadata is read with an ordered list of strategies:

    tables:   storage view (no types) -> schema catalog view (typed) -> []
    measures: measure view with visibility -> same view without it -> []

The first strategy that succeeds wins. A failing strategy is logged as a
warning and the next one is tried; when all of them fail that half of the
metadata is empty. discover() itself never raises.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Sequence, Tuple, Union

from app.core import schemas
from app.core.executor import to_records
from app.core.schemas import ResultSet, UNKNOWN_DATA_TYPE
from app.core.xmla.client import XmlaSession

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Strategy:
    name: str
    statement: str
    fold: Callable[[ResultSet], List[Any]]


@dataclass(frozen=True)
class StrategyFailure:
    """A strategy that did not produce a result, and why."""

    strategy: str
    reason: str


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def name_key(name: str) -> Tuple[str, str]:
    """Case-insensitive order; names differing only by case keep a stable order."""
    return (name.casefold(), name)


# =========================
# Tables and columns
# =========================

# ADO names for the OLE DB type codes reported in DBSCHEMA_COLUMNS.DATA_TYPE
OLEDB_TYPE_NAMES = {
    2: "SmallInt",
    3: "Integer",
    4: "Single",
    5: "Double",
    6: "Currency",
    7: "Date",
    8: "BSTR",
    11: "Boolean",
    12: "Variant",
    14: "Decimal",
    16: "TinyInt",
    17: "UnsignedTinyInt",
    18: "UnsignedSmallInt",
    19: "UnsignedInt",
    20: "BigInt",
    21: "UnsignedBigInt",
    72: "GUID",
    128: "Binary",
    129: "Char",
    130: "WChar",
    131: "Numeric",
    133: "DBDate",
    134: "DBTime",
    135: "DBTimeStamp",
}


def data_type_name(value: Any) -> str:
    if value is None or value == "":
        return UNKNOWN_DATA_TYPE
    if isinstance(value, int) or (isinstance(value, str) and value.isdigit()):
        return OLEDB_TYPE_NAMES.get(int(value), str(value))
    return str(value)


def fold_storage_columns(records: ResultSet) -> List[schemas.TableSchema]:
    """
    (table, column) pairs -> tables sorted by name, columns sorted by name.
    The storage view has no type information.
    """
    grouped: Dict[str, Dict[str, schemas.ColumnSchema]] = {}
    for record in records:
        table_name = _text(record["DIMENSION_NAME"])
        column_name = _text(record["ATTRIBUTE_NAME"])
        grouped.setdefault(table_name, {}).setdefault(
            column_name,
            schemas.ColumnSchema(name=column_name, data_type=UNKNOWN_DATA_TYPE),
        )

    return [
        schemas.TableSchema(
            name=table_name,
            columns=sorted(columns.values(), key=lambda column: name_key(column.name)),
        )
        for table_name, columns in sorted(
            grouped.items(), key=lambda item: name_key(item[0])
        )
    ]


def fold_catalog_columns(records: ResultSet) -> List[schemas.TableSchema]:
    """
    (table, column, type) triples, sorted by table then column, folded into
    tables wherever the table name changes.
    """
    triples = sorted(
        (
            (
                _text(record["TABLE_NAME"]),
                _text(record["COLUMN_NAME"]),
                data_type_name(record["DATA_TYPE"]),
            )
            for record in records
        ),
        key=lambda triple: (name_key(triple[0]), name_key(triple[1])),
    )

    tables: List[schemas.TableSchema] = []
    current = None
    for table_name, column_name, data_type in triples:
        if current is None or current.name != table_name:
            current = schemas.TableSchema(name=table_name)
            tables.append(current)
        # Sorted, so a repeated column sits right after its first occurrence
        if current.columns and current.columns[-1].name == column_name:
            continue
        current.columns.append(
            schemas.ColumnSchema(name=column_name, data_type=data_type)
        )
    return tables


TABLE_STRATEGIES = (
    Strategy(
        name="storage columns",
        statement=(
            "SELECT [DIMENSION_NAME], [ATTRIBUTE_NAME] "
            "FROM $SYSTEM.DISCOVER_STORAGE_TABLE_COLUMNS "
            "WHERE [COLUMN_TYPE] = 'BASIC_DATA'"
        ),
        fold=fold_storage_columns,
    ),
    Strategy(
        name="schema catalog columns",
        statement=(
            "SELECT [TABLE_NAME], [COLUMN_NAME], [DATA_TYPE] "
            "FROM $SYSTEM.DBSCHEMA_COLUMNS"
        ),
        fold=fold_catalog_columns,
    ),
)


# =========================
# Measures
# =========================
VISIBILITY_FIELD = "MEASURE_IS_VISIBLE"


def is_visible(record: Dict[str, Any]) -> bool:
    """Hidden only when the visibility field exists and clearly says false."""
    value = record.get(VISIBILITY_FIELD)
    if value is None:
        return True
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str) and value.strip().lower() in ("false", "0"):
        return False
    return True


def fold_measures(records: ResultSet) -> List[schemas.MeasureSchema]:
    return [
        schemas.MeasureSchema(
            name=_text(record["MEASURE_NAME"]),
            caption=_text(record.get("MEASURE_CAPTION")),
            table_name=_text(record.get("MEASUREGROUP_NAME")),
            # Expression text is not queried
            expression="",
        )
        for record in records
        if is_visible(record)
    ]


MEASURE_STRATEGIES = (
    Strategy(
        name="measures with visibility",
        statement=(
            "SELECT [MEASURE_NAME], [MEASURE_CAPTION], [MEASUREGROUP_NAME], "
            f"[{VISIBILITY_FIELD}] FROM $SYSTEM.MDSCHEMA_MEASURES"
        ),
        fold=fold_measures,
    ),
    Strategy(
        name="measures",
        statement=(
            "SELECT [MEASURE_NAME], [MEASURE_CAPTION], [MEASUREGROUP_NAME] "
            "FROM $SYSTEM.MDSCHEMA_MEASURES"
        ),
        fold=fold_measures,
    ),
)


# =========================
# Strategy evaluation
# =========================
async def attempt(
    session: XmlaSession, strategy: Strategy
) -> Union[List[Any], StrategyFailure]:
    try:
        rowset = await session.execute(strategy.statement)
        return strategy.fold(to_records(rowset))
    except Exception as error:
        # Unsupported view, missing field, transport error: all mean "next tier"
        return StrategyFailure(strategy.name, str(error) or type(error).__name__)


async def first_success(
    session: XmlaSession, strategies: Sequence[Strategy], subject: str
) -> List[Any]:
    for strategy in strategies:
        outcome = await attempt(session, strategy)
        if not isinstance(outcome, StrategyFailure):
            logger.info(f"Found {len(outcome)} {subject} via {strategy.name}")
            return outcome
        logger.warning(
            f"{subject.capitalize()} discovery via {outcome.strategy} failed: "
            f"{outcome.reason}"
        )

    logger.warning(f"{subject.capitalize()} discovery degraded: returning no {subject}")
    return []


class SchemaDiscoverer:
    """Reads tables, columns and measures of the session's dataset."""

    def __init__(
        self,
        table_strategies: Sequence[Strategy] = TABLE_STRATEGIES,
        measure_strategies: Sequence[Strategy] = MEASURE_STRATEGIES,
    ):
        self.table_strategies = table_strategies
        self.measure_strategies = measure_strategies

    async def discover(self, session: XmlaSession) -> schemas.Metadata:
        # Independent halves: a failure in one leaves the other intact
        tables = await first_success(session, self.table_strategies, "tables")
        measures = await first_success(session, self.measure_strategies, "measures")
        return schemas.Metadata(tables=tables, measures=measures)
