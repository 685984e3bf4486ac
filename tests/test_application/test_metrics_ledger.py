"""
Tests for the metrics ledger
"""
from datetime import datetime, timedelta, timezone

import pytest

from nodescore.application.metrics_ledger import MetricsLedger
from nodescore.domain.errors import InvalidInputError, InvalidMeasureError, NodeNotFoundError
from nodescore.infrastructure.db.models import NodeMetric


def test_record_and_read_back(db_session, node, t0):
    ledger = MetricsLedger(db_session)
    t2 = t0 + timedelta(hours=1)

    ledger.record(node.id, t0, {"x": 5})
    ledger.record(node.id, t2, {"x": 7})

    window = list(ledger.metrics_since(node.id, t0 - timedelta(seconds=1)))
    assert [m.measures for m in window] == [{"x": 5.0}, {"x": 7.0}]
    assert [m.metric_timestamp for m in window] == [t0, t2]

    db_session.refresh(node)
    assert node.metrics_updated_at == t2


def test_since_is_inclusive(db_session, node, t0):
    ledger = MetricsLedger(db_session)
    ledger.record(node.id, t0 - timedelta(days=1), {"x": 1})
    ledger.record(node.id, t0, {"x": 2})

    assert [m.measures["x"] for m in ledger.metrics_since(node.id, t0)] == [2.0]
    assert len(list(ledger.metrics_since(node.id))) == 2


def test_window_ordered_by_timestamp_not_ingestion(db_session, node, t0):
    ledger = MetricsLedger(db_session)
    ledger.record(node.id, t0 + timedelta(hours=2), {"x": 3})
    ledger.record(node.id, t0, {"x": 1})
    ledger.record(node.id, t0 + timedelta(hours=1), {"x": 2})

    assert [m.measures["x"] for m in ledger.metrics_since(node.id)] == [1.0, 2.0, 3.0]


def test_window_is_restartable_and_sees_new_rows(db_session, node, t0):
    ledger = MetricsLedger(db_session)
    ledger.record(node.id, t0, {"x": 1})

    window = ledger.metrics_since(node.id)
    assert len(list(window)) == 1
    assert len(list(window)) == 1

    ledger.record(node.id, t0 + timedelta(hours=1), {"x": 2})
    assert len(list(window)) == 2
    assert window.count() == 2


def test_metrics_updated_at_never_moves_backwards(db_session, node, t0):
    ledger = MetricsLedger(db_session)
    ledger.record(node.id, t0, {"x": 1})
    ledger.record(node.id, t0 - timedelta(days=3), {"x": 2})

    db_session.refresh(node)
    assert node.metrics_updated_at == t0


def test_naive_timestamp_read_as_utc(db_session, node):
    ledger = MetricsLedger(db_session)
    ledger.record(node.id, datetime(2025, 3, 1, 8, 30), {"x": 1})

    metric = ledger.latest(node.id)
    assert metric.metric_timestamp == datetime(2025, 3, 1, 8, 30, tzinfo=timezone.utc)


def test_record_unknown_node(db_session, t0):
    with pytest.raises(NodeNotFoundError):
        MetricsLedger(db_session).record(999, t0, {"x": 1})


@pytest.mark.parametrize("measures", [{}, {"x": "abc"}, {"x": None}, {"x": True}])
def test_record_invalid_measures(db_session, node, t0, measures):
    with pytest.raises(InvalidMeasureError):
        MetricsLedger(db_session).record(node.id, t0, measures)
    assert db_session.query(NodeMetric).count() == 0


def test_record_invalid_timestamp_or_source(db_session, node, t0):
    ledger = MetricsLedger(db_session)
    with pytest.raises(InvalidInputError):
        ledger.record(node.id, "2025-01-01", {"x": 1})
    with pytest.raises(InvalidInputError):
        ledger.record(node.id, t0, {"x": 1}, source="bing")


def test_record_with_source(db_session, node, t0):
    metric = MetricsLedger(db_session).record(node.id, t0, {"impressions": 100}, source="gsc")
    assert metric.source == "gsc"


def test_record_many_is_all_or_nothing(db_session, node, t0):
    ledger = MetricsLedger(db_session)
    with pytest.raises(InvalidMeasureError):
        ledger.record_many(node.id, [(t0, {"x": 1}), (t0, {})])
    assert db_session.query(NodeMetric).count() == 0

    metrics = ledger.record_many(node.id, [(t0, {"x": 1}), (t0 + timedelta(hours=1), {"x": 2})], source="ga4")
    assert len(metrics) == 2
    db_session.refresh(node)
    assert node.metrics_updated_at == t0 + timedelta(hours=1)


def test_record_many_empty(db_session, node):
    with pytest.raises(InvalidInputError):
        MetricsLedger(db_session).record_many(node.id, [])


def test_metrics_since_unknown_node(db_session):
    with pytest.raises(NodeNotFoundError):
        MetricsLedger(db_session).metrics_since(999)


def test_latest_empty(db_session, node):
    assert MetricsLedger(db_session).latest(node.id) is None
