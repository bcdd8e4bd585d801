"""Hunter query generation for long running queries and transactions."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from sqlglot import exp

LONG_QUERY_TEMPLATE = """
    SELECT pl.id, pl.user, pl.db as current_schema, pl.command, pl.time, es.digest_text
    FROM performance_schema.processlist pl
    INNER JOIN performance_schema.threads t ON t.processlist_id = pl.id
    INNER JOIN performance_schema.events_statements_current es ON es.thread_id = t.thread_id
    WHERE pl.command NOT IN ('sleep', 'killed')
    AND pl.info NOT LIKE '%processlist%'
    AND pl.time >= {query_limit}
    {db_filter}
    ORDER BY pl.time DESC
"""

# trx_mysql_thread_id is the processlist id, which is what KILL expects.
# pl.command is selected so kill metrics carry the command for transactions too.
LONG_TRANSACTION_TEMPLATE = """
    SELECT trx.trx_id, pl.id as process_id, trx.trx_state,
        TIMESTAMPDIFF(SECOND, trx.trx_started, NOW()) AS time,
        pl.user, pl.db as current_schema, pl.command, es.digest_text
    FROM INFORMATION_SCHEMA.INNODB_TRX trx
    INNER JOIN performance_schema.processlist pl ON trx.trx_mysql_thread_id = pl.id
    INNER JOIN performance_schema.threads t ON t.processlist_id = pl.id
    INNER JOIN performance_schema.events_statements_current es ON es.thread_id = t.thread_id
    WHERE TIMESTAMPDIFF(SECOND, trx.trx_started, NOW()) >= {transaction_limit}
    {db_filter}
    ORDER BY time DESC
"""


@dataclass(frozen=True, slots=True)
class HunterQueries:
    """Compiled detection statements for a single sniper."""

    queries: str
    transactions: str


def normalize(sql: str) -> str:
    """Collapse every whitespace run into a single space."""

    return " ".join(sql.split())


def whole_seconds(limit: timedelta) -> int:
    """Truncate a duration to whole seconds (1.5s becomes 1)."""

    seconds = int(limit.total_seconds())
    if seconds < 0:
        raise ValueError(f"Time limit must not be negative, got {limit}")
    return seconds


def schema_filter(schema: str) -> str:
    if not schema:
        return ""
    literal = exp.Literal.string(schema).sql(dialect="mysql")
    return f"AND pl.db IN ({literal})"


def build_hunter_queries(
    query_limit: timedelta,
    transaction_limit: timedelta,
    schema: str = "",
) -> HunterQueries:
    """Render both hunter statements with thresholds and schema baked in."""

    db_filter = schema_filter(schema)
    queries = LONG_QUERY_TEMPLATE.format(
        query_limit=whole_seconds(query_limit),
        db_filter=db_filter,
    )
    transactions = LONG_TRANSACTION_TEMPLATE.format(
        transaction_limit=whole_seconds(transaction_limit),
        db_filter=db_filter,
    )
    return HunterQueries(queries=normalize(queries), transactions=normalize(transactions))


__all__ = [
    "HunterQueries",
    "LONG_QUERY_TEMPLATE",
    "LONG_TRANSACTION_TEMPLATE",
    "build_hunter_queries",
    "normalize",
    "schema_filter",
    "whole_seconds",
]
