"""Tests for alert and quote repositories."""
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from conftest import make_alert
from marketpulse.domain.entities import AlertCondition, AlertType, MarketQuote
from marketpulse.domain.errors import PersistenceError
from marketpulse.repository.alert_repository import ClickHouseAlertRepository, _alert_to_row
from marketpulse.repository.clickhouse_client import ClickHouseConnection
from marketpulse.repository.market_repository import ClickHouseMarketDataRepository


def test_memory_mark_triggered_is_one_shot(alert_repository, clock):
    alert_repository.create(make_alert())

    first = alert_repository.mark_triggered("a1", 20050, clock())
    second = alert_repository.mark_triggered("a1", 20100, clock())

    assert first.is_triggered
    assert second is None
    assert alert_repository.get("a1").current_value == 20050


def test_memory_mark_triggered_refuses_expired(alert_repository, clock):
    alert_repository.create(make_alert(expires_at=clock()))
    assert alert_repository.mark_triggered("a1", 20050, clock()) is None


def test_memory_mark_triggered_refuses_changed_definition(alert_repository, clock):
    evaluated = alert_repository.create(make_alert(target_value=20000))
    alert_repository.update("a1", {"target_value": 21000})

    assert alert_repository.mark_triggered("a1", 20050, clock(), expected=evaluated) is None
    assert not alert_repository.get("a1").is_triggered

    current = alert_repository.get("a1")
    assert alert_repository.mark_triggered("a1", 21050, clock(), expected=current).is_triggered


def test_memory_current_value_frozen_after_trigger(alert_repository, clock):
    alert_repository.create(make_alert())
    alert_repository.mark_triggered("a1", 20050, clock())
    alert_repository.update_current_value("a1", 1.0)
    assert alert_repository.get("a1").current_value == 20050


def test_memory_find_duplicate(alert_repository, clock):
    alert_repository.create(make_alert())
    found = alert_repository.find_duplicate(
        "user1", "NIFTY", AlertType.PRICE, AlertCondition.ABOVE, 20000.0, clock()
    )
    missing = alert_repository.find_duplicate(
        "user1", "NIFTY", AlertType.PRICE, AlertCondition.BELOW, 20000.0, clock()
    )
    assert found.id == "a1"
    assert missing is None


@pytest.fixture
def connection():
    conn = MagicMock(spec=ClickHouseConnection)
    conn.execute.return_value = []
    return conn


def test_clickhouse_quote_roundtrip_query(connection, clock):
    repository = ClickHouseMarketDataRepository(connection)
    quote = MarketQuote.from_snapshot("NIFTY", 20050, 19800, source="yahoo_finance", timestamp=clock())

    repository.upsert(quote)

    query, rows = connection.execute.call_args.args
    assert query.strip().startswith("INSERT INTO market_quotes")
    assert rows[0][0] == "NIFTY"
    assert rows[0][1] == "INDEX"


def test_clickhouse_get_latest_maps_row(connection, clock):
    connection.execute.return_value = [
        ("TCS", 3500.0, 50.0, 1.45, 1000, 3520.0, 3480.0, 3450.0, None, "yahoo_finance", clock().replace(tzinfo=None))
    ]
    repository = ClickHouseMarketDataRepository(connection)

    quote = repository.get_latest("tcs")

    assert connection.execute.call_args.args[1] == {"symbol": "TCS"}
    assert quote.change_percent == 1.45
    assert quote.timestamp == clock()


def test_clickhouse_mark_triggered_inserts_new_version(connection, clock):
    alert = make_alert(updated_at=clock())
    connection.execute.side_effect = [[_alert_to_row(alert)], []]
    repository = ClickHouseAlertRepository(connection)

    updated = repository.mark_triggered("a1", 20050, clock() + timedelta(seconds=1))

    assert updated.is_triggered
    assert updated.updated_at > alert.updated_at
    insert_query, rows = connection.execute.call_args.args
    assert insert_query.startswith("INSERT INTO alerts")
    assert rows[0][9] == 1


def test_clickhouse_mark_triggered_skips_ineligible(connection, clock):
    alert = make_alert(is_triggered=True)
    connection.execute.return_value = [_alert_to_row(alert)]
    repository = ClickHouseAlertRepository(connection)

    assert repository.mark_triggered("a1", 20050, clock()) is None
    assert connection.execute.call_count == 1


def test_clickhouse_mark_triggered_skips_changed_condition(connection, clock):
    evaluated = make_alert(condition=AlertCondition.ABOVE)
    stored = make_alert(condition=AlertCondition.BELOW)
    connection.execute.return_value = [_alert_to_row(stored)]
    repository = ClickHouseAlertRepository(connection)

    assert repository.mark_triggered("a1", 20050, clock(), expected=evaluated) is None
    assert connection.execute.call_count == 1


def test_clickhouse_stats(connection):
    connection.execute.return_value = [(4, 3, 1, 2)]
    stats = ClickHouseAlertRepository(connection).stats("user1")
    assert (stats.total, stats.active, stats.triggered, stats.pending) == (4, 3, 1, 2)


def test_connection_requires_connect():
    with pytest.raises(PersistenceError):
        ClickHouseConnection(host="localhost").execute("SELECT 1")
