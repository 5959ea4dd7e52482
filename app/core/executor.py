import logging
import math
from decimal import Decimal
from typing import Any

from app.core.schemas import ResultSet
from app.core.xmla.client import XmlaSession
from app.core.xmla.rowset import Rowset

logger = logging.getLogger(__name__)


def _finite_or_none(value: Any) -> Any:
    # INF / -INF / NaN (DAX 1/0, 0/0) have no JSON form
    if isinstance(value, float) and not math.isfinite(value):
        return None
    if isinstance(value, Decimal) and not value.is_finite():
        return None
    return value


def to_records(rowset: Rowset) -> ResultSet:
    """
    One dict per row, keys in the engine's column order, nulls as None.
    Non-finite numbers are returned as None.
    """
    names = rowset.column_names
    return [
        dict(zip(names, (_finite_or_none(value) for value in row)))
        for row in rowset.rows
    ]


class QueryExecutor:
    """Runs a query verbatim over an open session and materializes every row."""

    async def execute(self, session: XmlaSession, query: str) -> ResultSet:
        """
        Raises:
            QueryExecutionError: the engine rejected the query or the
                session failed while the rows were read
        """
        rowset = await session.execute(query)
        records = to_records(rowset)
        logger.info(
            f"Query on {session.catalog} returned {len(records)} rows "
            f"with columns {rowset.column_names}"
        )
        return records
