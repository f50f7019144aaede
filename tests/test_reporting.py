"""Tests for admin order statistics."""

import itertools
from datetime import datetime

import pytest

from reporting import OrderReports


@pytest.fixture
def reports(db):
    return OrderReports(db)


_numbers = itertools.count(1)


def insert_order(db, created_at, total=100.0, order_status="pending", payment_status="pending"):
    db["order"].insert_one({
        "order_number": f"ORD-TEST-{next(_numbers):04d}",
        "user_id": "u1",
        "items": [],
        "total": total,
        "order_status": order_status,
        "payment_status": payment_status,
        "created_at": created_at,
    })


def test_empty_store(reports):
    summary = reports.summary()
    assert summary["summary"] == {"total_orders": 0, "total_revenue": 0.0, "average_order_value": 0.0}
    assert set(summary["status_breakdown"].values()) == {0}
    assert reports.overview()["revenue"]["paid_orders"] == 0


def test_summary_counts_and_paid_revenue(db, reports):
    now = datetime(2024, 6, 15, 12, 0)
    insert_order(db, now, 100.0, "confirmed", "paid")
    insert_order(db, now, 50.0, "delivered", "paid")
    insert_order(db, now, 999.0, "pending", "failed")

    summary = reports.summary()
    assert summary["summary"]["total_orders"] == 3
    assert summary["summary"]["total_revenue"] == 150.0
    assert summary["summary"]["average_order_value"] == 75.0
    assert summary["status_breakdown"]["confirmed"] == 1
    assert summary["status_breakdown"]["pending"] == 1
    assert summary["status_breakdown"]["cancelled"] == 0
    assert summary["payment_breakdown"] == {"pending": 0, "paid": 2, "failed": 1, "refunded": 0}


def test_overview_windows(db, reports):
    now = datetime(2024, 6, 15, 12, 0)
    insert_order(db, datetime(2024, 6, 15, 8, 30))
    insert_order(db, datetime(2024, 6, 2, 9, 0))
    insert_order(db, datetime(2024, 2, 1, 9, 0))
    insert_order(db, datetime(2023, 12, 31, 23, 0))

    overview = reports.overview(now=now)
    assert overview["orders"] == {"total": 4, "today": 1, "this_month": 2, "this_year": 3}
    assert overview["status_breakdown"]["pending"] == 4


def test_status_statistics(db, reports):
    now = datetime(2024, 6, 15, 12, 0)
    insert_order(db, now, 40.0, "confirmed", "paid")
    insert_order(db, now, 60.0, "confirmed", "paid")
    insert_order(db, now, 10.0, "pending", "failed")

    stats = reports.status_statistics()
    assert stats["confirmed"] == {"count": 2, "revenue": 100.0}
    assert stats["pending"] == {"count": 1, "revenue": 0.0}
    assert stats["shipped"] == {"count": 0, "revenue": 0.0}


def test_status_statistics_keep_payment_filter(db, reports):
    now = datetime(2024, 6, 15, 12, 0)
    insert_order(db, now, 42.4, "confirmed", "paid")
    insert_order(db, now, 10.0, "pending", "failed")

    stats = reports.status_statistics({"payment_status": "failed"})
    assert stats["confirmed"] == {"count": 0, "revenue": 0.0}
    assert stats["pending"] == {"count": 1, "revenue": 0.0}


def test_revenue_with_no_matching_orders(db, reports):
    insert_order(db, datetime(2024, 6, 15, 12, 0), 42.4, "confirmed", "paid")
    assert reports.revenue({"payment_status": "failed"}) == {
        "total_revenue": 0.0, "average_order_value": 0.0, "paid_orders": 0,
    }
