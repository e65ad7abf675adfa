from datetime import datetime

import pytest

from buteco.models import DailySummary, TopItem
from buteco.reports import format_currency


def sell(lifecycle, table, *lines):
    for name, price, qty in lines:
        lifecycle.add_line_item(table.id, name, price, qty, "ana")


def test_format_currency():
    assert format_currency(0) == "R$ 0,00"
    assert format_currency(12.5) == "R$ 12,50"
    assert format_currency(1234.567) == "R$ 1234,57"


def test_summary_for_two_rounds_of_beer(lifecycle, reports):
    mesa = lifecycle.open_table("Mesa 1")
    sell(lifecycle, mesa, ("Cerveja", 8.0, 3), ("Cerveja", 8.0, 2))

    summary = reports.get_daily_summary("2025-03-14")
    assert summary.total_orders == 2
    assert summary.total_revenue == pytest.approx(40.0)
    assert summary.tables_opened_on_date == 1
    assert summary.open_tables_now == 1
    assert summary.average_ticket == pytest.approx(20.0)
    assert summary.top_items == [TopItem(item="Cerveja", quantity=5, revenue=40.0)]


def test_top_items_rank_by_revenue_and_keep_ties_stable(lifecycle, reports):
    mesa1 = lifecycle.open_table("Mesa 1")
    mesa2 = lifecycle.open_table("Mesa 2")
    sell(lifecycle, mesa1, ("Pastel", 5.0, 2), ("Cerveja", 8.0, 1))
    sell(lifecycle, mesa2, ("Coxinha", 10.0, 1), ("Cerveja", 8.0, 2))

    top = reports.top_items("2025-03-14")
    assert [(t.item, t.quantity, t.revenue) for t in top] == [
        ("Cerveja", 3, 24.0),
        ("Pastel", 2, 10.0),
        ("Coxinha", 1, 10.0),
    ]
    assert [t.revenue for t in top] == sorted((t.revenue for t in top), reverse=True)


def test_top_items_only_count_the_requested_date(lifecycle, reports, clock):
    mesa = lifecycle.open_table("Mesa 1")
    sell(lifecycle, mesa, ("Cerveja", 8.0, 1))
    clock.set(datetime(2025, 3, 15, 0, 0, 0))
    sell(lifecycle, mesa, ("Caipirinha", 15.0, 1))
    clock.set(datetime(2025, 3, 15, 23, 59, 50))
    sell(lifecycle, mesa, ("Pastel", 6.0, 1))
    clock.set(datetime(2025, 3, 16, 0, 0, 0))
    sell(lifecycle, mesa, ("Coxinha", 7.0, 1))

    assert [t.item for t in reports.top_items("2025-03-14")] == ["Cerveja"]
    assert [t.item for t in reports.top_items("2025-03-15")] == ["Caipirinha", "Pastel"]
    assert reports.get_daily_summary("2025-03-15").total_orders == 2


def test_top_items_are_capped_at_ten(lifecycle, reports):
    mesa = lifecycle.open_table("Mesa 1")
    sell(lifecycle, mesa, *[(f"item {n:02d}", float(n), 1) for n in range(1, 13)])
    top = reports.get_daily_summary("2025-03-14").top_items
    assert len(top) == 10
    assert top[0].item == "item 12"
    assert top[-1].item == "item 03"


def test_top_items_survive_a_broken_table(lifecycle, reports, store, monkeypatch):
    good = lifecycle.open_table("good")
    bad = lifecycle.open_table("bad")
    sell(lifecycle, good, ("Cerveja", 8.0, 1))
    original = store.list_children

    def flaky(collection, parent_id, child, where=None):
        if parent_id == bad.id:
            raise RuntimeError("unreadable")
        return original(collection, parent_id, child, where)

    monkeypatch.setattr(store, "list_children", flaky)
    assert [t.item for t in reports.top_items("2025-03-14")] == ["Cerveja"]


def test_summary_of_a_quiet_day(reports):
    summary = reports.get_daily_summary("2024-01-01")
    assert (summary.total_orders, summary.total_revenue, summary.tables_opened_on_date) == (0, 0.0, 0)
    assert summary.average_ticket == 0.0
    assert summary.top_items == []


def test_export_without_orders_omits_top_items(reports):
    text = reports.export_to_text(reports.get_daily_summary("2025-03-14"),
                                  generated_at=datetime(2025, 3, 14, 23, 5))
    assert "- Total de Pedidos: 0\n" in text
    assert "- Faturamento Total: R$ 0,00\n" in text
    assert "- Ticket Médio: R$ 0,00\n" in text
    assert "ITENS MAIS VENDIDOS" not in text


def test_export_layout(reports):
    summary = DailySummary(
        date="2025-03-14",
        total_orders=3,
        total_revenue=52.5,
        open_tables_now=1,
        tables_opened_on_date=2,
        top_items=[
            TopItem(item="Cerveja", quantity=4, revenue=32.0),
            TopItem(item="Pastel", quantity=3, revenue=20.5),
        ],
    )
    expected = "\n".join([
        "BUTECO SÃO BENEDITO - RESUMO DO DIA",
        "=" * 42,
        "Data: 14/03/2025",
        "=" * 42,
        "",
        "RESUMO FINANCEIRO:",
        "- Total de Pedidos: 3",
        "- Faturamento Total: R$ 52,50",
        "- Ticket Médio: R$ 17,50",
        "",
        "ITENS MAIS VENDIDOS:",
        "-" * 40,
        "1. Cerveja",
        "   Quantidade: 4",
        "   Faturamento: R$ 32,00",
        "",
        "2. Pastel",
        "   Quantidade: 3",
        "   Faturamento: R$ 20,50",
        "",
        "-" * 40,
        "Relatório gerado em: 14/03/2025 23:05",
        "Sistema: Buteco São Benedito",
    ]) + "\n"
    assert reports.export_to_text(summary, generated_at=datetime(2025, 3, 14, 23, 5)) == expected


def test_save_export_writes_utf8_file(lifecycle, reports, tmp_path):
    mesa = lifecycle.open_table("Mesa 1")
    sell(lifecycle, mesa, ("Pão de queijo", 4.0, 5))
    summary = reports.get_daily_summary("2025-03-14")

    path = reports.save_export(summary, tmp_path / "exports", generated_at=datetime(2025, 3, 14, 22, 0))
    assert path.name == "resumo-2025-03-14.txt"
    content = path.read_text(encoding="utf-8")
    assert content.startswith("BUTECO SÃO BENEDITO - RESUMO DO DIA\n")
    assert "1. Pão de queijo" in content
    assert "Relatório gerado em: 14/03/2025 22:00" in content
