"""Data access layer for Beauty Shop Manager.

This module provides low-level helpers that read from and write to the shop
workbook. Business logic belongs elsewhere.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, validating, and persisting the Excel file.
3. Sheet operations: loading structured records and appending, updating or
   removing individual rows.
"""


from __future__ import annotations

import configparser
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Sequence

from openpyxl.workbook import Workbook
import openpyxl

from . import log
from .constants import DEFAULT_LOW_STOCK_THRESHOLD, SheetName


CONFIG_FILE_NAME = "config.ini"
PRODUCTS_SHEET = SheetName.PRODUCTS.value
SALES_SHEET = SheetName.SALES.value
USERS_SHEET = SheetName.USERS.value
SESSION_SHEET = SheetName.SESSION.value

# Column layout of every sheet, shared with the workbook bootstrap script.
SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    PRODUCTS_SHEET: [
        "ProductID",
        "Name",
        "Category",
        "CostPrice",
        "SellingPrice",
        "StockQty",
        "LowStockThreshold",
        "Version",
        "CreatedAt",
        "UpdatedAt",
    ],
    SALES_SHEET: [
        "SaleID",
        "ProductID",
        "ProductName",
        "Quantity",
        "UnitPrice",
        "TotalAmount",
        "PaymentMethod",
        "EmployeeID",
        "EmployeeName",
        "SaleDate",
        "CreatedAt",
    ],
    USERS_SHEET: [
        "UserID",
        "Name",
        "Email",
        "Role",
        "PasswordHash",
        "CreatedAt",
    ],
    SESSION_SHEET: [
        "UserID",
        "StartedAt",
    ],
}

# Attribute name -> sheet column for fields callers may update in place.
PRODUCT_FIELD_COLUMNS: Mapping[str, str] = {
    "name": "Name",
    "category": "Category",
    "cost_price": "CostPrice",
    "selling_price": "SellingPrice",
    "stock_qty": "StockQty",
    "low_stock_threshold": "LowStockThreshold",
    "version": "Version",
    "updated_at": "UpdatedAt",
}

USER_FIELD_COLUMNS: Mapping[str, str] = {
    "name": "Name",
    "email": "Email",
    "role": "Role",
    "password_hash": "PasswordHash",
}


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    shop_name: str
    schema_version: str
    low_stock_threshold: int = DEFAULT_LOW_STOCK_THRESHOLD


@dataclass(frozen=True)
class ProductRow:
    """In-memory view of a row from the ``Products`` sheet."""

    product_id: str
    name: str
    category: str
    cost_price: Decimal
    selling_price: Decimal
    stock_qty: int
    low_stock_threshold: Optional[int]
    version: int
    created_at: str
    updated_at: str


@dataclass(frozen=True)
class SaleRow:
    """In-memory view of a row from the ``Sales`` sheet."""

    sale_id: str
    product_id: str
    product_name: str
    quantity: int
    unit_price: Decimal
    total_amount: Decimal
    payment_method: str
    employee_id: str
    employee_name: str
    sale_date: str
    created_at: str


@dataclass(frozen=True)
class UserRow:
    """In-memory view of a row from the ``Users`` sheet."""

    user_id: str
    name: str
    email: str
    role: str
    password_hash: str
    created_at: str


@dataclass(frozen=True)
class SessionRow:
    """In-memory view of the single row kept on the ``Session`` sheet."""

    user_id: str
    started_at: str


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification, which allows the caller to deliberately target a
    non-standard location. When no explicit path is given the function walks up
    from the current working directory toward the filesystem root looking for a
    file named ``CONFIG_FILE_NAME``. The first match that exists on disk is
    considered authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If the search exhausts all parent directories without
            finding ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute.

    Returns:
        configparser.ConfigParser: Initialized parser containing the raw
            configuration data.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path, encoding="utf-8")
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    The ``[System]`` section is mandatory. ``[Defaults] LowStockThreshold`` is
    optional and falls back to ``DEFAULT_LOW_STOCK_THRESHOLD``. Relative data
    file paths are expanded against ``base_path`` when provided, or against the
    current working directory as a fallback.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory to use as the anchor for relative
            ``DataFile`` entries.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If one of the required sections or options is missing.
        ValueError: If ``LowStockThreshold`` is not a non-negative integer.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        shop_name = parser.get("System", "ShopName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    threshold = parser.getint(
        "Defaults", "LowStockThreshold", fallback=DEFAULT_LOW_STOCK_THRESHOLD)
    if threshold < 0:
        raise ValueError("LowStockThreshold must be zero or positive")

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        shop_name=shop_name,
        schema_version=schema_version,
        low_stock_threshold=threshold,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the shop workbook and verify every expected sheet is present.

    Args:
        data_file (Path): Filesystem path to the workbook.

    Returns:
        Workbook: ``openpyxl`` workbook instance backed by the provided file.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist.
        KeyError: If one of the sheets listed in ``SHEET_COLUMNS`` is missing.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    wb = openpyxl.load_workbook(data_file)
    missing = [name for name in SHEET_COLUMNS if name not in wb.sheetnames]
    if missing:
        log.error("Workbook '%s' is missing sheets: %s", data_file, ", ".join(missing))
        raise KeyError(f"Workbook is missing sheets: {', '.join(missing)}")
    return wb


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to disk, creating parent folders on demand."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


def _iter_sheet(workbook: Workbook, sheet_name: str) -> Iterable[tuple]:
    sheet = workbook[sheet_name]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        # skip fully empty rows
        if any(cell is not None for cell in raw):
            yield raw


def iter_products(workbook: Workbook) -> Iterable[ProductRow]:
    """Iterate over product records stored on the ``Products`` worksheet.

    Args:
        workbook (Workbook): Workbook containing the ``Products`` sheet.

    Yields:
        ProductRow: One structured row for each meaningful record in the sheet.
    """

    for raw in _iter_sheet(workbook, PRODUCTS_SHEET):
        yield deserialize_product(raw)


def iter_sales(workbook: Workbook) -> Iterable[SaleRow]:
    """Iterate over the ``Sales`` worksheet and yield typed records."""

    for raw in _iter_sheet(workbook, SALES_SHEET):
        yield deserialize_sale(raw)


def iter_users(workbook: Workbook) -> Iterable[UserRow]:
    """Iterate over the ``Users`` worksheet and yield typed records."""

    for raw in _iter_sheet(workbook, USERS_SHEET):
        yield deserialize_user(raw)


def iter_sessions(workbook: Workbook) -> Iterable[SessionRow]:
    """Iterate over the ``Session`` worksheet.

    The sheet normally holds at most one row; the iterator shape keeps the
    helper consistent with the other collections.
    """

    for raw in _iter_sheet(workbook, SESSION_SHEET):
        yield SessionRow(user_id=str(raw[0]), started_at=_text(raw[1]))


def append_product(workbook: Workbook, record: ProductRow) -> None:
    """Append a product record to the ``Products`` worksheet."""

    workbook[PRODUCTS_SHEET].append(serialize_product(record))


def append_sale(workbook: Workbook, record: SaleRow) -> None:
    """Append a sale record to the ``Sales`` worksheet.

    Monetary fields remain :class:`~decimal.Decimal` instances after
    serialization so openpyxl writes them as numeric cells.
    """

    workbook[SALES_SHEET].append(serialize_sale(record))


def append_user(workbook: Workbook, record: UserRow) -> None:
    """Append a user record to the ``Users`` worksheet."""

    workbook[USERS_SHEET].append(serialize_user(record))


def replace_session(workbook: Workbook, record: Optional[SessionRow]) -> None:
    """Replace the content of the ``Session`` sheet with ``record``.

    Passing ``None`` clears the sheet, which is how a logout is persisted.
    """

    sheet = workbook[SESSION_SHEET]
    if sheet.max_row > 1:
        sheet.delete_rows(2, sheet.max_row - 1)
    if record is not None:
        sheet.append([record.user_id, record.started_at])


def update_product(workbook: Workbook, product_id: str, *, field_values: dict[str, Any]) -> None:
    """Update selected columns for an existing product.

    Args:
        workbook (Workbook): Workbook containing the products sheet.
        product_id (str): Identifier used to locate the target row.
        field_values (dict[str, Any]): Mapping of column names to replacement
            values.

    Raises:
        KeyError: If the product or any referenced column cannot be found.
    """

    _update_row(workbook, PRODUCTS_SHEET, "ProductID", product_id, field_values, label="product")


def update_user(workbook: Workbook, user_id: str, *, field_values: dict[str, Any]) -> None:
    """Update selected columns for an existing user.

    Raises:
        KeyError: If the user or any referenced column is missing.
    """

    _update_row(workbook, USERS_SHEET, "UserID", user_id, field_values, label="user")


def delete_product(workbook: Workbook, product_id: str) -> None:
    """Remove the product row identified by ``product_id``.

    Raises:
        KeyError: If the product cannot be found.
    """

    _delete_row(workbook, PRODUCTS_SHEET, "ProductID", product_id, label="product")


def delete_sale(workbook: Workbook, sale_id: str) -> None:
    """Remove the sale row identified by ``sale_id``.

    Raises:
        KeyError: If the sale cannot be found.
    """

    _delete_row(workbook, SALES_SHEET, "SaleID", sale_id, label="sale")


def delete_user(workbook: Workbook, user_id: str) -> None:
    """Remove the user row identified by ``user_id``.

    Raises:
        KeyError: If the user cannot be found.
    """

    _delete_row(workbook, USERS_SHEET, "UserID", user_id, label="user")


def _header_map(workbook: Workbook, sheet_name: str) -> dict[str, int]:
    headers = list(workbook[sheet_name][1])
    return {cell.value: idx + 1 for idx, cell in enumerate(headers)}


def _update_row(
    workbook: Workbook,
    sheet_name: str,
    key_column: str,
    key_value: str,
    field_values: Mapping[str, Any],
    *,
    label: str,
) -> None:
    row_index = locate_row(workbook, sheet_name, key_column, key_value)
    if row_index is None:
        raise KeyError(f"{label.capitalize()} not found: {key_value}")

    sheet = workbook[sheet_name]
    header_map = _header_map(workbook, sheet_name)

    # Validate every column before touching any cell so a bad request leaves
    # the row untouched.
    for field in field_values:
        if field not in header_map:
            raise KeyError(f"Unknown {label} field: {field}")
    for field, value in field_values.items():
        sheet.cell(row=row_index, column=header_map[field], value=value)


def _delete_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str, *, label: str) -> None:
    row_index = locate_row(workbook, sheet_name, key_column, key_value)
    if row_index is None:
        raise KeyError(f"{label.capitalize()} not found: {key_value}")
    workbook[sheet_name].delete_rows(row_index, 1)


def locate_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> Optional[int]:
    """Find a row by matching a key value within the specified worksheet.

    The function constructs a mapping from header titles to column indices,
    verifies that ``key_column`` exists, and scans the worksheet for the first
    row whose value equals ``key_value``. The header row itself is not
    considered during matching.

    Args:
        workbook (Workbook): Workbook providing access to ``sheet_name``.
        sheet_name (str): Name of the worksheet to search.
        key_column (str): Header title identifying the column that stores the
            lookup key.
        key_value (str): Value to match within the key column.

    Returns:
        int | None: 1-based Excel row index when a match is found, otherwise
            ``None``.

    Raises:
        KeyError: If ``key_column`` is not present in the worksheet header.
    """

    sheet = workbook[sheet_name]
    header_map = _header_map(workbook, sheet_name)
    if key_column not in header_map:
        raise KeyError(f"Unknown column: {key_column}")

    key_col_index = header_map[key_column]

    for row_idx, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        cell_value = row[key_col_index - 1]
        if cell_value is not None and str(cell_value) == key_value:
            return row_idx

    return None


def serialize_product(record: ProductRow) -> list[object]:
    """Convert a product dataclass into the worksheet column ordering."""

    return [
        record.product_id,
        record.name,
        record.category,
        record.cost_price,
        record.selling_price,
        record.stock_qty,
        record.low_stock_threshold,
        record.version,
        record.created_at,
        record.updated_at,
    ]


def serialize_sale(record: SaleRow) -> list[object]:
    """Convert a sale dataclass into the worksheet column ordering."""

    return [
        record.sale_id,
        record.product_id,
        record.product_name,
        record.quantity,
        record.unit_price,
        record.total_amount,
        record.payment_method,
        record.employee_id,
        record.employee_name,
        record.sale_date,
        record.created_at,
    ]


def serialize_user(record: UserRow) -> list[object]:
    """Convert a user dataclass into the worksheet column ordering."""

    return [
        record.user_id,
        record.name,
        record.email,
        record.role,
        record.password_hash,
        record.created_at,
    ]


def _text(raw: object) -> str:
    return str(raw) if raw is not None else ""


def _decimal(raw: object, default: str = "0.00") -> Decimal:
    if raw is None or raw == "":
        return Decimal(default)
    try:
        return Decimal(str(raw))
    except InvalidOperation as exc:
        raise ValueError(f"Invalid decimal value in workbook: {raw!r}") from exc


def _int(raw: object, default: int = 0) -> int:
    if raw is None or raw == "":
        return default
    return int(raw)


def deserialize_product(raw_row: Sequence[object]) -> ProductRow:
    """Convert a raw worksheet row into a strongly typed product record.

    Numeric cells come back from Excel as ``int`` or ``float``; prices are
    routed through ``str`` before building :class:`~decimal.Decimal` values so
    binary float artefacts do not leak into currency amounts. A blank
    ``LowStockThreshold`` stays ``None`` so the configured default applies.
    """

    (
        product_id,
        name,
        category,
        cost_raw,
        selling_raw,
        stock_raw,
        threshold_raw,
        version_raw,
        created_at,
        updated_at,
    ) = raw_row

    return ProductRow(
        product_id=str(product_id),
        name=_text(name),
        category=_text(category),
        cost_price=_decimal(cost_raw),
        selling_price=_decimal(selling_raw),
        stock_qty=_int(stock_raw),
        low_stock_threshold=(None if threshold_raw in (None, "") else int(threshold_raw)),
        version=_int(version_raw, default=1),
        created_at=_text(created_at),
        updated_at=_text(updated_at),
    )


def deserialize_sale(raw_row: Sequence[object]) -> SaleRow:
    """Convert a raw worksheet row into a strongly typed sale record."""

    (
        sale_id,
        product_id,
        product_name,
        quantity_raw,
        unit_price_raw,
        total_raw,
        payment_method,
        employee_id,
        employee_name,
        sale_date,
        created_at,
    ) = raw_row

    return SaleRow(
        sale_id=str(sale_id),
        product_id=_text(product_id),
        product_name=_text(product_name),
        quantity=_int(quantity_raw),
        unit_price=_decimal(unit_price_raw),
        total_amount=_decimal(total_raw),
        payment_method=_text(payment_method),
        employee_id=_text(employee_id),
        employee_name=_text(employee_name),
        sale_date=_text(sale_date),
        created_at=_text(created_at),
    )


def deserialize_user(raw_row: Sequence[object]) -> UserRow:
    """Convert a raw worksheet row into a strongly typed user record."""

    user_id, name, email, role, password_hash, created_at = raw_row
    return UserRow(
        user_id=str(user_id),
        name=_text(name),
        email=_text(email),
        role=_text(role),
        password_hash=_text(password_hash),
        created_at=_text(created_at),
    )
