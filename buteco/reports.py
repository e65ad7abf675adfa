import logging
from datetime import datetime
from pathlib import Path

from buteco.aggregates import DailyAggregationEngine, date_key
from buteco.config import (
    DATE_KEY_FORMAT, DISPLAY_DATE_FORMAT, DISPLAY_DATETIME_FORMAT, RESTAURANT_NAME, TOP_ITEMS_LIMIT,
)
from buteco.models import LINE_ITEMS, TABLES, DailySummary, OrderLineItem, TableStatus, TopItem, money
from buteco.store.base import EntityStore

logger = logging.getLogger(__name__)

RULE_WIDE = "=" * 42
RULE = "-" * 40


def format_currency(value: float) -> str:
    """R$ with two decimals and a comma separator, eg. R$ 12,50"""
    return f"R$ {value:.2f}".replace(".", ",")


class ReportingFacade:
    """daily summary (aggregate counters + top items scan) and its text export"""

    def __init__(self, store: EntityStore, aggregates: DailyAggregationEngine):
        self.store = store
        self.aggregates = aggregates

    def _items_on(self, key: str) -> list[OrderLineItem]:
        """every line item created on the given local date, table by table"""
        start = datetime.strptime(key, DATE_KEY_FORMAT)
        end = start.replace(hour=23, minute=59, second=59, microsecond=999000)
        found = []
        for table in self.store.list(TABLES):
            try:
                records = self.store.list_children(TABLES, table["id"], LINE_ITEMS)
                items = [OrderLineItem.from_record(r) for r in records]
            except Exception:
                logger.warning("skipping line items of table %s", table.get("id"), exc_info=True)
                continue
            found += [i for i in items if i.created_at and start <= i.created_at <= end]
        return found

    def top_items(self, date, limit: int = TOP_ITEMS_LIMIT) -> list[TopItem]:
        """items grouped by name, by revenue descending; ties keep first-seen order"""
        grouped: dict[str, list] = {}
        for item in self._items_on(date_key(date)):
            qty_rev = grouped.setdefault(item.item_name, [0, 0.0])
            qty_rev[0] += item.quantity
            qty_rev[1] += item.line_total
        ranked = sorted(
            (TopItem(item=name, quantity=q, revenue=money(r)) for name, (q, r) in grouped.items()),
            key=lambda t: t.revenue,
            reverse=True,
        )
        return ranked[:limit]

    def get_daily_summary(self, date) -> DailySummary:
        key = date_key(date)
        agg = self.aggregates.get(key)
        return DailySummary(
            date=key,
            total_orders=agg.total_orders if agg else 0,
            total_revenue=agg.total_revenue if agg else 0.0,
            open_tables_now=self.store.count(TABLES, {"status": TableStatus.OPEN}),
            tables_opened_on_date=agg.tables_opened if agg else 0,
            top_items=self.top_items(key),
        )

    def export_to_text(self, summary: DailySummary, generated_at: datetime | None = None) -> str:
        generated_at = generated_at or self.aggregates.clock()
        day = datetime.strptime(summary.date, DATE_KEY_FORMAT)

        lines = [
            f"{RESTAURANT_NAME.upper()} - RESUMO DO DIA",
            RULE_WIDE,
            f"Data: {day.strftime(DISPLAY_DATE_FORMAT)}",
            RULE_WIDE,
            "",
            "RESUMO FINANCEIRO:",
            f"- Total de Pedidos: {summary.total_orders}",
            f"- Faturamento Total: {format_currency(summary.total_revenue)}",
            f"- Ticket Médio: {format_currency(summary.average_ticket)}",
            "",
        ]
        if summary.top_items:
            lines += ["ITENS MAIS VENDIDOS:", RULE]
            for n, item in enumerate(summary.top_items, start=1):
                lines += [
                    f"{n}. {item.item}",
                    f"   Quantidade: {item.quantity}",
                    f"   Faturamento: {format_currency(item.revenue)}",
                    "",
                ]
        lines += [
            RULE,
            f"Relatório gerado em: {generated_at.strftime(DISPLAY_DATETIME_FORMAT)}",
            f"Sistema: {RESTAURANT_NAME}",
        ]
        return "\n".join(lines) + "\n"

    @staticmethod
    def export_filename(summary: DailySummary) -> str:
        return f"resumo-{summary.date}.txt"

    def save_export(self, summary: DailySummary, directory: str | Path = ".",
                    generated_at: datetime | None = None) -> Path:
        path = Path(directory) / self.export_filename(summary)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.export_to_text(summary, generated_at), encoding="utf-8")
        logger.info("daily summary for %s exported to %s", summary.date, path)
        return path
