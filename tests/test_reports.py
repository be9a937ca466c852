"""Tests for report aggregation, presets, stock status and list filters."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from beauty_shop import constants, reports


def test_empty_report_has_zero_totals():
    report = reports.build_report([])

    assert report.total_revenue == Decimal("0")
    assert report.total_items == 0
    assert report.total_sales == 0
    assert report.average_sale == Decimal("0")
    assert report.top_products == []
    assert report.payment_breakdown == {"cash": Decimal("0"), "card": Decimal("0"), "mobile": Decimal("0")}


def test_report_totals_and_breakdown(make_sale):
    sales = [
        make_sale("Serum", quantity=2, unit_price="10.00", payment_method="cash"),
        make_sale("Lipstick", quantity=1, unit_price="15.99", payment_method="card"),
        make_sale("Serum", quantity=1, unit_price="10.00", payment_method="mobile"),
    ]

    report = reports.build_report(sales)

    assert report.total_revenue == Decimal("45.99")
    assert report.total_items == 4
    assert report.total_sales == 3
    assert report.average_sale == Decimal("15.33")
    assert report.payment_breakdown["cash"] == Decimal("20.00")
    assert report.payment_breakdown["card"] == Decimal("15.99")
    assert report.payment_breakdown["mobile"] == Decimal("10.00")
    assert sum(report.payment_breakdown.values()) == report.total_revenue


def test_report_does_not_modify_input(make_sale):
    sales = [make_sale("B", quantity=1), make_sale("A", quantity=3)]
    snapshot = list(sales)

    reports.build_report(sales, date(2024, 5, 15), date(2024, 5, 15))

    assert sales == snapshot


def test_top_products_ranked_by_revenue_and_limited(make_sale):
    sales = [make_sale(f"Item{i}", quantity=1, unit_price=f"{i}.00") for i in range(1, 8)]
    sales.append(make_sale("Item1", quantity=10, unit_price="1.00"))

    report = reports.build_report(sales)

    assert [p.name for p in report.top_products] == ["Item1", "Item7", "Item6", "Item5", "Item4"]
    top = report.top_products[0]
    assert top.quantity == 11
    assert top.revenue == Decimal("11.00")


def test_top_products_ties_keep_first_seen_order(make_sale):
    sales = [make_sale("Zeta"), make_sale("Alpha"), make_sale("Mid", unit_price="20.00")]

    report = reports.build_report(sales)

    assert [p.name for p in report.top_products] == ["Mid", "Zeta", "Alpha"]


def test_report_date_range_is_inclusive(make_sale):
    sales = [
        make_sale("Before", sale_date="2024-05-09T23:59:59+00:00"),
        make_sale("Start", sale_date="2024-05-10T00:00:00+00:00"),
        make_sale("End", sale_date="2024-05-12T23:59:59+00:00"),
        make_sale("After", sale_date="2024-05-13T00:00:00+00:00"),
    ]

    report = reports.build_report(sales, date(2024, 5, 10), date(2024, 5, 12))

    assert report.total_sales == 2
    assert {p.name for p in report.top_products} == {"Start", "End"}


def test_report_single_bound_disables_filter(make_sale):
    sales = [make_sale(sale_date="2020-01-01T00:00:00+00:00"), make_sale()]

    assert reports.build_report(sales, start_date=date(2024, 5, 1)).total_sales == 2


def test_unknown_payment_method_still_counted(make_sale):
    report = reports.build_report([make_sale(payment_method="voucher")])

    assert report.payment_breakdown["voucher"] == Decimal("10.00")
    assert report.total_revenue == Decimal("10.00")


@pytest.mark.parametrize(
    "today, expected_start",
    [
        (date(2024, 5, 15), date(2024, 5, 12)),  # Wednesday
        (date(2024, 5, 12), date(2024, 5, 12)),  # Sunday
        (date(2024, 5, 18), date(2024, 5, 12)),  # Saturday
        (date(2024, 5, 13), date(2024, 5, 12)),  # Monday
    ],
)
def test_weekly_period_starts_on_sunday(today, expected_start):
    assert reports.resolve_period("weekly", today) == (expected_start, today)


def test_daily_and_monthly_periods():
    today = date(2024, 2, 29)

    assert reports.resolve_period(constants.ReportPeriod.DAILY, today) == (today, today)
    assert reports.resolve_period("monthly", today) == (date(2024, 2, 1), today)


def test_custom_period_passes_bounds_through():
    start, end = date(2024, 1, 1), date(2024, 1, 31)

    assert reports.resolve_period("custom", date(2024, 6, 1), start, end) == (start, end)
    assert reports.resolve_period("custom", date(2024, 6, 1)) == (None, None)


def test_custom_period_rejects_inverted_range():
    with pytest.raises(ValueError):
        reports.resolve_period("custom", date(2024, 6, 1), date(2024, 2, 1), date(2024, 1, 1))


def test_unknown_period_rejected():
    with pytest.raises(ValueError):
        reports.resolve_period("yearly", date(2024, 6, 1))


@pytest.mark.parametrize(
    "stock, threshold, expected",
    [
        (0, None, constants.StockStatus.OUT_OF_STOCK),
        (5, None, constants.StockStatus.LOW_STOCK),
        (6, None, constants.StockStatus.IN_STOCK),
        (8, 10, constants.StockStatus.LOW_STOCK),
        (3, 2, constants.StockStatus.IN_STOCK),
    ],
)
def test_stock_status(make_product, stock, threshold, expected):
    product = make_product(stock_qty=stock, low_stock_threshold=threshold)

    assert reports.stock_status(product, default_threshold=5) is expected


def test_dashboard_summary(make_product, make_sale):
    products = [
        make_product("P1", stock_qty=25),
        make_product("P2", stock_qty=3),
        make_product("P3", stock_qty=0),
        make_product("P4", stock_qty=9, low_stock_threshold=10),
    ]
    sales = [
        make_sale(quantity=2, sale_date="2024-05-15T09:00:00+00:00"),
        make_sale(quantity=1, sale_date="2024-05-15T18:30:00+00:00"),
        make_sale(quantity=5, sale_date="2024-05-14T12:00:00+00:00"),
    ]

    summary = reports.build_dashboard_summary(products, sales, date(2024, 5, 15), default_threshold=5)

    assert summary.todays_sales == 2
    assert summary.todays_revenue == Decimal("30.00")
    assert summary.total_products == 4
    assert summary.low_stock_items == 3
    assert summary.out_of_stock_items == 1


def test_filter_products(make_product):
    products = [
        make_product("P1", name="Rose Serum", category="Skincare", stock_qty=20),
        make_product("P2", name="Red Lipstick", category="Makeup", stock_qty=2),
        make_product("P3", name="Shampoo", category="Haircare", stock_qty=0),
    ]

    assert [p.product_id for p in reports.filter_products(products, search="SERUM")] == ["P1"]
    assert [p.product_id for p in reports.filter_products(products, search="make")] == ["P2"]
    assert [p.product_id for p in reports.filter_products(products, category="Haircare")] == ["P3"]
    assert [p.product_id for p in reports.filter_products(products, stock_filter="low")] == ["P2", "P3"]
    assert [p.product_id for p in reports.filter_products(products, stock_filter="out")] == ["P3"]
    assert len(reports.filter_products(products, stock_filter="")) == 3


def test_filter_products_rejects_unknown_stock_filter(make_product):
    with pytest.raises(ValueError):
        reports.filter_products([make_product()], stock_filter="plenty")


def test_filter_sales(make_sale):
    sales = [
        make_sale("Serum", employee_name="Sarah Johnson", payment_method="cash"),
        make_sale("Lipstick", employee_name="Admin User", payment_method="card",
                  sale_date="2024-05-16T10:00:00+00:00"),
    ]

    assert len(reports.filter_sales(sales, search="sarah")) == 1
    assert len(reports.filter_sales(sales, search="lip")) == 1
    assert [s.product_name for s in reports.filter_sales(sales, on_date=date(2024, 5, 16))] == ["Lipstick"]
    assert [s.product_name for s in reports.filter_sales(sales, payment_method="cash")] == ["Serum"]
    assert len(reports.filter_sales(sales)) == 2
