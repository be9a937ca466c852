"""Enumerations shared across Beauty Shop Manager modules.

Centralises domain constants so that the data access layer (DAL), business
logic layer (BLL), reporting helpers and the CLI rely on a single source of
truth for critical identifiers.
"""

from __future__ import annotations

from enum import Enum


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"

# Stock level at or below which a product without its own threshold is flagged.
DEFAULT_LOW_STOCK_THRESHOLD = 5

# Number of products listed in the "top products" section of a sales report.
TOP_PRODUCTS_LIMIT = 5


class PaymentMethod(str, Enum):
    """Enumerate supported payment mechanisms for sales."""

    CASH = "cash"
    CARD = "card"
    MOBILE = "mobile"


class Role(str, Enum):
    """Enumerate the roles a user account can hold."""

    ADMIN = "admin"
    EMPLOYEE = "employee"


class ReportPeriod(str, Enum):
    """Enumerate the date range presets offered by the reports screen."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    CUSTOM = "custom"


class StockStatus(str, Enum):
    """Enumerate the stock health labels shown on inventory views."""

    IN_STOCK = "In Stock"
    LOW_STOCK = "Low Stock"
    OUT_OF_STOCK = "Out of Stock"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the DAL."""

    PRODUCTS = "Products"
    SALES = "Sales"
    USERS = "Users"
    SESSION = "Session"


PRODUCT_CATEGORIES: tuple[str, ...] = (
    "Skincare",
    "Makeup",
    "Haircare",
    "Fragrance",
    "Tools & Accessories",
    "Nail Care",
    "Body Care",
    "Other",
)


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "DEFAULT_LOW_STOCK_THRESHOLD",
    "TOP_PRODUCTS_LIMIT",
    "PaymentMethod",
    "Role",
    "ReportPeriod",
    "StockStatus",
    "SheetName",
    "PRODUCT_CATEGORIES",
]
