"""Derived views over products and sales.

Everything here is a pure function of its arguments: records go in, frozen
summaries come out, and nothing touches the workbook. The CLI and tests feed
these helpers with snapshots obtained through :mod:`core_logic`.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from . import log
from .constants import (
    DEFAULT_LOW_STOCK_THRESHOLD,
    TOP_PRODUCTS_LIMIT,
    PaymentMethod,
    ReportPeriod,
    StockStatus,
)
from .data_manager import ProductRow, SaleRow

ZERO = Decimal("0.00")


@dataclass(frozen=True)
class ProductPerformance:
    """Quantity sold and revenue earned by one product within a report."""

    name: str
    quantity: int
    revenue: Decimal


@dataclass(frozen=True)
class SalesReport:
    """Aggregate figures for the sales that fall inside a date range."""

    total_revenue: Decimal
    total_items: int
    total_sales: int
    payment_breakdown: Dict[str, Decimal]
    top_products: List[ProductPerformance]
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    @property
    def average_sale(self) -> Decimal:
        if self.total_sales == 0:
            return ZERO
        return (self.total_revenue / self.total_sales).quantize(Decimal("0.01"))


@dataclass(frozen=True)
class DashboardSummary:
    """Headline numbers shown on the landing screen."""

    todays_sales: int
    todays_revenue: Decimal
    total_products: int
    low_stock_items: int
    out_of_stock_items: int


def sale_day(sale: SaleRow) -> date:
    """Return the calendar date a sale belongs to, ignoring the time of day."""
    return datetime.fromisoformat(sale.sale_date).date()


def resolve_period(
    period: Union[ReportPeriod, str],
    today: date,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> Tuple[Optional[date], Optional[date]]:
    """Translate a report preset into an inclusive ``(start, end)`` date pair.

    ``daily`` covers ``today`` only, ``weekly`` runs from the Sunday that
    opened the current week, ``monthly`` from the first of the month. For
    ``custom`` the caller's bounds are returned unchanged; leaving either one
    out means "no date filter".

    Raises:
        ValueError: For an unknown preset or a custom range that ends before
            it starts.
    """
    period = ReportPeriod(period)
    if period is ReportPeriod.DAILY:
        return today, today
    if period is ReportPeriod.WEEKLY:
        # date.weekday() is Monday-based; shift so Sunday opens the week.
        return today - timedelta(days=(today.weekday() + 1) % 7), today
    if period is ReportPeriod.MONTHLY:
        return today.replace(day=1), today
    if start is not None and end is not None and start > end:
        raise ValueError(f"Report range ends ({end}) before it starts ({start})")
    return start, end


def filter_sales_by_date(
    sales: Iterable[SaleRow],
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> List[SaleRow]:
    """Keep sales whose calendar date lies within ``[start_date, end_date]``.

    Filtering only applies when both bounds are given.
    """
    if start_date is None or end_date is None:
        return list(sales)
    return [sale for sale in sales if start_date <= sale_day(sale) <= end_date]


def build_report(
    sales: Sequence[SaleRow],
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    *,
    limit: int = TOP_PRODUCTS_LIMIT,
) -> SalesReport:
    """Aggregate ``sales`` into a :class:`SalesReport`.

    Sales are first narrowed to the inclusive date range (when both bounds
    are given). Revenue, item and sale counts are summed; the payment
    breakdown always lists every supported method, defaulting to zero; top
    products are grouped by product name and ranked by revenue, highest first,
    truncated to ``limit``. Products with equal revenue keep the order in
    which they were first encountered.

    Args:
        sales (Sequence[SaleRow]): Sales snapshot; not modified.
        start_date (date | None): Inclusive lower bound.
        end_date (date | None): Inclusive upper bound.
        limit (int): Maximum number of top products to return.

    Returns:
        SalesReport: Aggregated figures for the filtered sales.
    """
    filtered = filter_sales_by_date(sales, start_date, end_date)

    total_revenue = ZERO
    total_items = 0
    breakdown: Dict[str, Decimal] = {method.value: ZERO for method in PaymentMethod}
    grouped: Dict[str, Tuple[int, Decimal]] = {}

    for sale in filtered:
        total_revenue += sale.total_amount
        total_items += sale.quantity
        breakdown[sale.payment_method] = breakdown.get(sale.payment_method, ZERO) + sale.total_amount
        quantity, revenue = grouped.get(sale.product_name, (0, ZERO))
        grouped[sale.product_name] = (quantity + sale.quantity, revenue + sale.total_amount)

    ranked = sorted(
        (ProductPerformance(name=name, quantity=qty, revenue=rev) for name, (qty, rev) in grouped.items()),
        key=lambda item: item.revenue,
        reverse=True,
    )

    log.debug(
        "Built report over %d of %d sales (%s to %s): revenue=%s",
        len(filtered),
        len(sales),
        start_date,
        end_date,
        total_revenue,
    )
    return SalesReport(
        total_revenue=total_revenue,
        total_items=total_items,
        total_sales=len(filtered),
        payment_breakdown=breakdown,
        top_products=ranked[:limit],
        start_date=start_date,
        end_date=end_date,
    )


def effective_threshold(product: ProductRow, default_threshold: int = DEFAULT_LOW_STOCK_THRESHOLD) -> int:
    if product.low_stock_threshold is not None:
        return product.low_stock_threshold
    return default_threshold


def stock_status(product: ProductRow, default_threshold: int = DEFAULT_LOW_STOCK_THRESHOLD) -> StockStatus:
    """Classify a product as in stock, low stock or out of stock."""
    if product.stock_qty == 0:
        return StockStatus.OUT_OF_STOCK
    if product.stock_qty <= effective_threshold(product, default_threshold):
        return StockStatus.LOW_STOCK
    return StockStatus.IN_STOCK


def is_low_stock(product: ProductRow, default_threshold: int = DEFAULT_LOW_STOCK_THRESHOLD) -> bool:
    """True when the product needs replenishing, out-of-stock items included."""
    return product.stock_qty <= effective_threshold(product, default_threshold)


def build_dashboard_summary(
    products: Sequence[ProductRow],
    sales: Sequence[SaleRow],
    today: date,
    default_threshold: int = DEFAULT_LOW_STOCK_THRESHOLD,
) -> DashboardSummary:
    todays = filter_sales_by_date(sales, today, today)
    return DashboardSummary(
        todays_sales=len(todays),
        todays_revenue=sum((sale.total_amount for sale in todays), ZERO),
        total_products=len(products),
        low_stock_items=sum(1 for product in products if is_low_stock(product, default_threshold)),
        out_of_stock_items=sum(1 for product in products if product.stock_qty == 0),
    )


def filter_products(
    products: Iterable[ProductRow],
    *,
    search: Optional[str] = None,
    category: Optional[str] = None,
    stock_filter: Optional[str] = None,
    default_threshold: int = DEFAULT_LOW_STOCK_THRESHOLD,
) -> List[ProductRow]:
    """Narrow a product list the way the inventory screen does.

    Args:
        products: Products to filter.
        search: Case-insensitive substring matched against name or category.
        category: Exact category match.
        stock_filter: ``"low"`` for products at or below their threshold,
            ``"out"`` for products with no stock.
        default_threshold: Threshold for products without their own.

    Raises:
        ValueError: For an unknown ``stock_filter``.
    """
    if stock_filter not in (None, "", "low", "out"):
        raise ValueError(f"Unknown stock filter: {stock_filter}")

    result = list(products)
    if search:
        needle = search.lower()
        result = [p for p in result if needle in p.name.lower() or needle in p.category.lower()]
    if category:
        result = [p for p in result if p.category == category]
    if stock_filter == "low":
        result = [p for p in result if is_low_stock(p, default_threshold)]
    elif stock_filter == "out":
        result = [p for p in result if p.stock_qty == 0]
    return result


def filter_sales(
    sales: Iterable[SaleRow],
    *,
    search: Optional[str] = None,
    on_date: Optional[date] = None,
    payment_method: Optional[Union[PaymentMethod, str]] = None,
) -> List[SaleRow]:
    """Narrow a sale list the way the sales screen does.

    ``search`` matches product or employee name, case-insensitively.
    """
    result = list(sales)
    if search:
        needle = search.lower()
        result = [
            s for s in result
            if needle in s.product_name.lower() or needle in s.employee_name.lower()
        ]
    if on_date is not None:
        result = [s for s in result if sale_day(s) == on_date]
    if payment_method:
        method = PaymentMethod(payment_method).value
        result = [s for s in result if s.payment_method == method]
    return result
