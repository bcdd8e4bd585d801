"""Tests for hunter query generation."""

from __future__ import annotations

from datetime import timedelta

import pytest

from querysniper.queries import build_hunter_queries, normalize, schema_filter, whole_seconds


def test_queries_without_schema_only_filter_on_time() -> None:
    queries = build_hunter_queries(timedelta(seconds=30), timedelta(seconds=60))

    for fragment in (
        "SELECT pl.id, pl.user, pl.db as current_schema, pl.command, pl.time, es.digest_text",
        "FROM performance_schema.processlist pl",
        "INNER JOIN performance_schema.threads t ON t.processlist_id = pl.id",
        "INNER JOIN performance_schema.events_statements_current es ON es.thread_id = t.thread_id",
        "WHERE pl.command NOT IN ('sleep', 'killed')",
        "AND pl.info NOT LIKE '%processlist%'",
        "AND pl.time >= 30",
        "ORDER BY pl.time DESC",
    ):
        assert fragment in queries.queries
    assert "pl.db IN" not in queries.queries
    assert "pl.db IN" not in queries.transactions


def test_transaction_query_shape() -> None:
    queries = build_hunter_queries(timedelta(seconds=30), timedelta(seconds=60))

    for fragment in (
        "SELECT trx.trx_id, pl.id as process_id, trx.trx_state, TIMESTAMPDIFF(SECOND, trx.trx_started, NOW()) AS time",
        "FROM INFORMATION_SCHEMA.INNODB_TRX trx",
        "pl.user, pl.db as current_schema, pl.command, es.digest_text",
        "INNER JOIN performance_schema.processlist pl ON trx.trx_mysql_thread_id = pl.id",
        "INNER JOIN performance_schema.threads t ON t.processlist_id = pl.id",
        "INNER JOIN performance_schema.events_statements_current es ON es.thread_id = t.thread_id",
        "WHERE TIMESTAMPDIFF(SECOND, trx.trx_started, NOW()) >= 60",
        "ORDER BY time DESC",
    ):
        assert fragment in queries.transactions


def test_schema_filter_is_applied_to_both_queries() -> None:
    queries = build_hunter_queries(timedelta(seconds=60), timedelta(seconds=120), "prod")

    assert "AND pl.time >= 60" in queries.queries
    assert "AND pl.db IN ('prod')" in queries.queries
    assert queries.queries.endswith("ORDER BY pl.time DESC")
    assert "AND pl.db IN ('prod')" in queries.transactions
    assert queries.transactions.endswith("ORDER BY time DESC")


def test_minutes_are_rendered_as_seconds() -> None:
    queries = build_hunter_queries(timedelta(minutes=5), timedelta(minutes=10), "production")

    assert "AND pl.time >= 300" in queries.queries
    assert "WHERE TIMESTAMPDIFF(SECOND, trx.trx_started, NOW()) >= 600" in queries.transactions


@pytest.mark.parametrize(
    ("limit", "expected"),
    [
        (timedelta(milliseconds=1500), 1),
        (timedelta(milliseconds=2500), 2),
        (timedelta(milliseconds=999), 0),
        (timedelta(seconds=59, milliseconds=999), 59),
    ],
)
def test_fractional_seconds_are_truncated(limit: timedelta, expected: int) -> None:
    queries = build_hunter_queries(limit, limit)

    assert whole_seconds(limit) == expected
    assert f"AND pl.time >= {expected} " in queries.queries
    assert f"NOW()) >= {expected} " in queries.transactions


@pytest.mark.parametrize("schema", ["", "prod", "analytics_db"])
def test_queries_are_single_line_and_normalized(schema: str) -> None:
    queries = build_hunter_queries(timedelta(seconds=10), timedelta(seconds=20), schema)

    for sql in (queries.queries, queries.transactions):
        assert "\n" not in sql
        assert "\t" not in sql
        assert "  " not in sql
        assert normalize(sql) == sql
        assert ("pl.db IN" in sql) is bool(schema)


def test_schema_literal_is_quoted() -> None:
    rendered = schema_filter("o'brien")

    assert rendered.startswith("AND pl.db IN ('o")
    assert "o'brien'" not in rendered
    assert schema_filter("") == ""


def test_negative_limits_are_rejected() -> None:
    with pytest.raises(ValueError):
        build_hunter_queries(timedelta(seconds=-1), timedelta(seconds=0))


def test_normalize_collapses_whitespace() -> None:
    assert normalize("\n  SELECT 1\n\tFROM  dual  ") == "SELECT 1 FROM dual"
