import threading
from datetime import date, datetime

import pytest

from buteco.aggregates import date_key
from buteco.errors import ValidationError
from buteco.models import DAILY_AGGREGATES, TABLES


def test_date_key_normalises_inputs():
    assert date_key("2025-03-14") == "2025-03-14"
    assert date_key(date(2025, 3, 4)) == "2025-03-04"
    assert date_key(datetime(2025, 3, 4, 23, 59)) == "2025-03-04"
    with pytest.raises(ValidationError):
        date_key("14/03/2025")


def test_today_follows_the_clock(aggregates, clock):
    clock.set(datetime(2025, 12, 31, 23, 59, 0))
    assert aggregates.today() == "2025-12-31"


def test_get_or_create_is_lazy_and_unique(aggregates, store):
    assert aggregates.get("2025-03-14") is None
    first = aggregates.get_or_create("2025-03-14")
    second = aggregates.get_or_create("2025-03-14")
    assert first.id == second.id
    assert (first.tables_opened, first.total_orders, first.total_revenue) == (0, 0, 0.0)
    assert store.count(DAILY_AGGREGATES) == 1


def test_increments_accumulate(aggregates):
    aggregates.increment_tables_opened("2025-03-14")
    aggregates.increment_tables_opened("2025-03-14")
    aggregates.increment_order_stats("2025-03-14", 24.0)
    aggregates.increment_order_stats("2025-03-14", 16.5)
    agg = aggregates.get("2025-03-14")
    assert agg.tables_opened == 2
    assert agg.total_orders == 2
    assert agg.total_revenue == pytest.approx(40.5)
    assert aggregates.get("2025-03-15") is None


def test_no_decrement_path(aggregates):
    aggregates.increment_order_stats("2025-03-14", 10.0)
    with pytest.raises(ValidationError):
        aggregates.increment_order_stats("2025-03-14", -10.0)
    assert aggregates.get("2025-03-14").total_revenue == pytest.approx(10.0)


def test_realtime_stats_mix_date_counters_with_live_open_tables(aggregates, store):
    store.create(TABLES, {"name": "1", "status": "open"})
    store.create(TABLES, {"name": "2", "status": "open"})
    store.create(TABLES, {"name": "3", "status": "closed"})
    aggregates.increment_order_stats("2025-03-14", 8.0)

    stats = aggregates.get_realtime_stats("2025-03-14")
    assert stats.orders_today == 1
    assert stats.revenue_today == pytest.approx(8.0)
    assert stats.currently_open_tables == 2

    # a date without activity still reports the live open-table count
    empty = aggregates.get_realtime_stats("2020-01-01")
    assert (empty.tables_opened_today, empty.orders_today, empty.revenue_today) == (0, 0, 0.0)
    assert empty.currently_open_tables == 2


def test_concurrent_first_touch_creates_one_record(aggregates, store):
    threads = [
        threading.Thread(target=aggregates.increment_order_stats, args=("2025-03-20", 5.0))
        for _ in range(8)
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert store.count(DAILY_AGGREGATES, {"date": "2025-03-20"}) == 1
    agg = aggregates.get("2025-03-20")
    assert agg.total_orders == 8
    assert agg.total_revenue == pytest.approx(40.0)


@pytest.mark.parametrize("delta", [float("nan"), float("inf")])
def test_non_finite_revenue_is_rejected(aggregates, delta):
    aggregates.increment_order_stats("2025-03-14", 8.0)
    with pytest.raises(ValidationError):
        aggregates.increment_order_stats("2025-03-14", delta)
    agg = aggregates.get("2025-03-14")
    assert (agg.total_orders, agg.total_revenue) == (1, 8.0)


def test_date_locks_are_released_after_use(aggregates):
    for day in range(1, 11):
        aggregates.increment_tables_opened(f"2025-03-{day:02d}")
    aggregates.get_or_create("2025-04-01")
    assert aggregates._locks == {}
