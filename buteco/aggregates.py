"""
per-date running counters: tables opened, orders, revenue

counters only ever go up. a removed or refunded order is not subtracted;
that asymmetry is intentional until product decides otherwise.
"""

import logging
import math
import threading
from contextlib import contextmanager
from datetime import date as date_type, datetime
from typing import Callable, Iterator

from buteco.config import DATE_KEY_FORMAT
from buteco.errors import ConflictError, ValidationError
from buteco.models import DAILY_AGGREGATES, TABLES, DailyAggregate, RealtimeStats, TableStatus, money
from buteco.store.base import EntityStore

logger = logging.getLogger(__name__)


def date_key(value: str | date_type | datetime) -> str:
    """normalise a date / datetime / yyyy-mm-dd string to the yyyy-mm-dd key"""
    if isinstance(value, (date_type, datetime)):
        return value.strftime(DATE_KEY_FORMAT)
    try:
        return datetime.strptime(value.strip(), DATE_KEY_FORMAT).strftime(DATE_KEY_FORMAT)
    except (AttributeError, ValueError):
        raise ValidationError(f"invalid date {value!r} (expected yyyy-mm-dd)") from None


class DailyAggregationEngine:
    """owns the daily aggregate records; increments are serialised per date"""

    def __init__(self, store: EntityStore, clock: Callable[[], datetime] = datetime.now):
        self.store = store
        self.clock = clock
        # date -> [lock, number of callers using it]; dropped when unused
        self._locks: dict[str, list] = {}
        self._locks_guard = threading.Lock()

    def today(self) -> str:
        return date_key(self.clock())

    @contextmanager
    def _lock_for(self, key: str) -> Iterator[None]:
        """hold the lock of one date; the entry lives only while someone needs it"""
        with self._locks_guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._locks_guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    def get(self, date) -> DailyAggregate | None:
        rows = self.store.list(DAILY_AGGREGATES, {"date": date_key(date)})
        return DailyAggregate.from_record(rows[0]) if rows else None

    def _get_or_create(self, key: str) -> DailyAggregate:
        # caller holds the date's lock
        existing = self.get(key)
        if existing:
            return existing
        try:
            rid = self.store.create(DAILY_AGGREGATES, {
                "date": key,
                "tables_opened": 0,
                "total_orders": 0,
                "total_revenue": 0.0,
            })
        except ConflictError:
            # another process won the race; its row is the one to use
            return self.get(key)
        logger.debug("daily aggregate for %s created", key)
        return DailyAggregate.from_record(self.store.get(DAILY_AGGREGATES, rid))

    def get_or_create(self, date) -> DailyAggregate:
        key = date_key(date)
        with self._lock_for(key):
            return self._get_or_create(key)

    def _increment(self, key: str, deltas: dict):
        with self._lock_for(key):
            agg = self._get_or_create(key)
            self.store.increment(DAILY_AGGREGATES, agg.id, deltas)
        logger.debug("daily aggregate %s += %s", key, deltas)

    def increment_tables_opened(self, date):
        self._increment(date_key(date), {"tables_opened": 1})

    def increment_order_stats(self, date, revenue_delta: float):
        """one more order worth revenue_delta; there is no decrement counterpart"""
        revenue_delta = money(revenue_delta)
        if not math.isfinite(revenue_delta):
            raise ValidationError(f"invalid revenue amount {revenue_delta!r}")
        if revenue_delta < 0:
            raise ValidationError("daily aggregates are increment-only")
        self._increment(date_key(date), {"total_orders": 1, "total_revenue": revenue_delta})

    def get_realtime_stats(self, date) -> RealtimeStats:
        """counters for the given date plus the live number of open tables (any date)"""
        agg = self.get(date)
        return RealtimeStats(
            tables_opened_today=agg.tables_opened if agg else 0,
            orders_today=agg.total_orders if agg else 0,
            revenue_today=agg.total_revenue if agg else 0.0,
            currently_open_tables=self.store.count(TABLES, {"status": TableStatus.OPEN}),
        )
