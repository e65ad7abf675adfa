import logging
import math

from buteco.aggregates import DailyAggregationEngine
from buteco.auth import Action, AuthGate
from buteco.errors import AuthorizationError, ValidationError
from buteco.models import (
    LINE_ITEMS, MENU_ITEMS, TABLES,
    LineItemStatus, MenuItem, OrderLineItem, Table, TableStatus, money,
)
from buteco.store.base import EntityStore

logger = logging.getLogger(__name__)


def _parse_status(status: LineItemStatus | str) -> LineItemStatus:
    if isinstance(status, LineItemStatus):
        return status
    try:
        return LineItemStatus(str(status).strip().lower())
    except ValueError:
        raise ValidationError(f"unknown line item status {status!r}") from None


class LifecycleManager:
    """
    owns table occupancy, line-item status transitions and the totals
    cached on each table record.

    cached totals are always re-derived from the table's full set of line
    items, never patched incrementally, so a stale cache heals on the next
    write or on recompute_all_table_totals().
    """

    def __init__(self, store: EntityStore, aggregates: DailyAggregationEngine, auth: AuthGate):
        self.store = store
        self.aggregates = aggregates
        self.auth = auth

    # queries
    def get_table(self, table_id: str) -> Table:
        return Table.from_record(self.store.get(TABLES, table_id))

    def list_tables(self, status: TableStatus | None = None) -> list[Table]:
        where = {"status": status} if status else None
        return [Table.from_record(r) for r in self.store.list(TABLES, where)]

    def _line_items(self, table_id: str) -> list[OrderLineItem]:
        return [OrderLineItem.from_record(r) for r in self.store.list_children(TABLES, table_id, LINE_ITEMS)]

    def list_line_items(self, table_id: str) -> list[OrderLineItem]:
        """line items of a table, most recent first"""
        table = self.get_table(table_id)
        return sorted(self._line_items(table.id), key=lambda i: i.created_at, reverse=True)

    def get_line_item(self, table_id: str, line_item_id: str) -> OrderLineItem:
        return OrderLineItem.from_record(self.store.get_child(TABLES, table_id, LINE_ITEMS, line_item_id))

    def kitchen_queue(self) -> list[tuple[Table, OrderLineItem]]:
        """pending / preparing items of open tables, oldest first"""
        waiting = (LineItemStatus.PENDING, LineItemStatus.PREPARING)
        queue = [
            (table, item)
            for table in self.list_tables(TableStatus.OPEN)
            for item in self._line_items(table.id)
            if item.status in waiting
        ]
        return sorted(queue, key=lambda pair: pair[1].created_at)

    # table transitions
    def open_table(self, name: str) -> Table:
        name = (name or "").strip()
        if not name:
            raise ValidationError("table name is required")
        tid = self.store.create(TABLES, {
            "name": name,
            "status": TableStatus.OPEN,
            "total_orders": 0,
            "total_revenue": 0.0,
        })
        self.aggregates.increment_tables_opened(self.aggregates.today())
        logger.info("table %s (%s) opened", tid, name)
        return self.get_table(tid)

    def close_table(self, table_id: str) -> Table:
        table = self.get_table(table_id)
        if table.is_open:
            self.store.update(TABLES, table.id, {"status": TableStatus.CLOSED})
            logger.info("table %s (%s) closed", table.id, table.name)
        return self.get_table(table.id)

    def delete_table(self, table_id: str):
        """delete a closed table: every line item first, then the table itself"""
        self.auth.authorize(Action.DELETE_TABLE)
        table = self.get_table(table_id)
        if table.is_open:
            raise ValidationError("close the table before deleting it")
        with self.store.transaction():
            children = self.store.list_children(TABLES, table.id, LINE_ITEMS)
            for rec in children:
                self.store.delete_child(TABLES, table.id, LINE_ITEMS, rec["id"])
            self.store.delete(TABLES, table.id)
        logger.info("table %s (%s) deleted with %d line items", table.id, table.name, len(children))

    def settle_table(self, table_id: str) -> Table:
        """mark every delivered item paid and close the table"""
        self.auth.authorize(Action.SETTLE_TABLE)
        table = self.get_table(table_id)
        items = self._line_items(table.id)
        undelivered = [i for i in items if i.status.rank < LineItemStatus.DELIVERED.rank]
        if undelivered:
            raise ValidationError(f"{len(undelivered)} line item(s) not delivered yet")
        with self.store.transaction():
            for item in items:
                if item.status is LineItemStatus.DELIVERED:
                    self.store.update_child(TABLES, table.id, LINE_ITEMS, item.id, {"status": LineItemStatus.PAID})
            if table.is_open:
                self.store.update(TABLES, table.id, {"status": TableStatus.CLOSED})
        logger.info("table %s (%s) settled: %.2f", table.id, table.name, table.total_revenue)
        return self.get_table(table.id)

    # line items
    def add_line_item(self, table_id: str, item_name: str, unit_price: float, quantity: int,
                      added_by: str, menu_item_id: str | None = None) -> OrderLineItem:
        item_name = (item_name or "").strip()
        if not item_name:
            raise ValidationError("item name is required")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise ValidationError("quantity must be at least 1")
        try:
            unit_price = money(unit_price)
        except (TypeError, ValueError):
            raise ValidationError(f"invalid price {unit_price!r}") from None
        if not math.isfinite(unit_price) or unit_price < 0:
            raise ValidationError("price must be a finite, non-negative amount")
        table = self.get_table(table_id)
        if not table.is_open:
            raise ValidationError(f"table {table.name} is closed")

        line_total = money(unit_price * quantity)
        if not math.isfinite(line_total):
            raise ValidationError("line total is out of range")
        rid = self.store.create_child(TABLES, table.id, LINE_ITEMS, {
            "item_name": item_name,
            "unit_price": unit_price,
            "quantity": quantity,
            "line_total": line_total,
            "status": LineItemStatus.PENDING,
            "added_by": added_by or "",
            "menu_item_id": menu_item_id,
        })
        self.recompute_table_totals(table.id)
        self.aggregates.increment_order_stats(self.aggregates.today(), line_total)
        logger.info("%d x %s added to table %s by %s", quantity, item_name, table.id, added_by)
        return self.get_line_item(table.id, rid)

    def add_menu_item(self, table_id: str, menu_item_id: str, quantity: int = 1) -> OrderLineItem:
        """add a catalog item on behalf of the logged-in user"""
        user = self.auth.current_user
        if user is None:
            raise AuthorizationError("please login first")
        item = MenuItem.from_record(self.store.get(MENU_ITEMS, menu_item_id))
        if not item.available:
            raise ValidationError(f"{item.name} is not available")
        return self.add_line_item(table_id, item.name, item.price, quantity, user.name, menu_item_id=item.id)

    def advance_line_item(self, table_id: str, line_item_id: str,
                          status: LineItemStatus | str) -> OrderLineItem:
        """forward-only status change; kitchen steps and payment are role-gated"""
        status = _parse_status(status)
        if status in (LineItemStatus.PREPARING, LineItemStatus.READY):
            self.auth.authorize(Action.PREPARE_ITEMS)
        elif status is LineItemStatus.PAID:
            self.auth.authorize(Action.SETTLE_TABLE)
        item = self.get_line_item(table_id, line_item_id)
        if not item.status.can_advance_to(status):
            raise ValidationError(f"cannot move line item from {item.status.value} to {status.value}")
        self.store.update_child(TABLES, item.table_id, LINE_ITEMS, item.id, {"status": status})
        logger.info("line item %s on table %s: %s -> %s", item.id, item.table_id, item.status.value, status.value)
        return self.get_line_item(item.table_id, item.id)

    def mark_line_item_delivered(self, table_id: str, line_item_id: str) -> OrderLineItem:
        return self.advance_line_item(table_id, line_item_id, LineItemStatus.DELIVERED)

    # maintenance
    def recompute_table_totals(self, table_id: str) -> Table:
        """re-derive cached totals from the table's current line items; never touches daily aggregates"""
        items = self._line_items(table_id)
        totals = {
            "total_orders": len(items),
            "total_revenue": money(sum(i.line_total for i in items)),
        }
        self.store.update(TABLES, table_id, totals)
        logger.debug("table %s totals: %s", table_id, totals)
        return self.get_table(table_id)

    def recompute_all_table_totals(self) -> int:
        """repair every table; a failing table is logged and skipped"""
        repaired = 0
        for rec in self.store.list(TABLES):
            try:
                self.recompute_table_totals(rec["id"])
            except Exception:
                logger.warning("could not recompute totals for table %s", rec.get("id"), exc_info=True)
                continue
            repaired += 1
        logger.info("recomputed totals for %d table(s)", repaired)
        return repaired
