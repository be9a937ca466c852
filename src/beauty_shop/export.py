"""Delimited-text export of sales and inventory listings."""

from __future__ import annotations

import csv
import io
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Sequence

from . import log
from .constants import DEFAULT_LOW_STOCK_THRESHOLD
from .data_manager import ProductRow, SaleRow
from .reports import effective_threshold, sale_day, stock_status

EXPORT_KINDS = ("sales", "inventory")


class EmptyExportError(ValueError):
    """Raised when an export is requested for an empty record list."""


def to_delimited_text(records: Sequence[Mapping[str, Any]], delimiter: str = ",") -> str:
    """Serialize uniform key/value rows into delimited text.

    The header is taken from the keys of the first record, in iteration order,
    and every row is written in that same key order. ``None`` renders as an
    empty cell and :mod:`csv` quotes cells holding the delimiter, a quote or a
    line break. Rows are separated by ``\\n`` with no trailing newline. An
    empty sequence produces an empty string; callers decide what "nothing to
    export" means for them.

    Raises:
        KeyError: If a later record lacks one of the header keys.
    """
    if not records:
        return ""

    headers = list(records[0].keys())
    buffer = io.StringIO()
    writer = csv.writer(buffer, delimiter=delimiter, lineterminator="\n")
    writer.writerow(headers)
    for record in records:
        writer.writerow(["" if record[header] is None else record[header] for header in headers])
    return buffer.getvalue().removesuffix("\n")


def _money(amount: Decimal) -> str:
    return f"{amount:.2f}"


def sales_export_rows(sales: Iterable[SaleRow]) -> List[Dict[str, Any]]:
    """Shape sales into the columns of the sales export file."""
    return [
        {
            "Date": sale_day(sale).isoformat(),
            "Product": sale.product_name,
            "Quantity": sale.quantity,
            "Unit Price": _money(sale.unit_price),
            "Total Amount": _money(sale.total_amount),
            "Payment Method": sale.payment_method,
            "Employee": sale.employee_name,
        }
        for sale in sales
    ]


def inventory_export_rows(
    products: Iterable[ProductRow],
    default_threshold: int = DEFAULT_LOW_STOCK_THRESHOLD,
) -> List[Dict[str, Any]]:
    """Shape products into the columns of the inventory export file."""
    return [
        {
            "Name": product.name,
            "Category": product.category,
            "Cost Price": _money(product.cost_price),
            "Selling Price": _money(product.selling_price),
            "Stock": product.stock_qty,
            "Low Stock Threshold": effective_threshold(product, default_threshold),
            "Status": stock_status(product, default_threshold).value,
        }
        for product in products
    ]


def export_filename(kind: str, today: date) -> str:
    """Return the download name for ``kind``, e.g. ``sales-report-2024-05-01.csv``."""
    if kind not in EXPORT_KINDS:
        raise ValueError(f"Unknown export kind: {kind}")
    return f"{kind}-report-{today.isoformat()}.csv"


def write_export(
    directory: Path,
    kind: str,
    records: Sequence[Mapping[str, Any]],
    today: date,
) -> Path:
    """Write ``records`` as a CSV file named after ``kind`` and ``today``.

    Raises:
        EmptyExportError: When ``records`` is empty.
        ValueError: For an unknown ``kind``.
    """
    filename = export_filename(kind, today)
    if not records:
        log.warning("Nothing to export for '%s'", kind)
        raise EmptyExportError(f"No {kind} records to export")

    directory = Path(directory).expanduser().resolve()
    directory.mkdir(parents=True, exist_ok=True)
    target = directory / filename
    target.write_text(to_delimited_text(records), encoding="utf-8")
    log.info("Exported %d %s record(s) to '%s'", len(records), kind, target)
    return target
