"""Business logic layer for Beauty Shop Manager.

This module owns the domain rules for products, sales and user accounts. It
consumes the Data Access Layer (DAL) for all I/O while ensuring every mutation
passes through validation, role checks and, for stock changes, an optimistic
version check. Multi-step writes run inside a :class:`UnitOfWork` so a failure
half way through leaves the workbook as it was.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from openpyxl.workbook import Workbook

from . import data_manager, log, security
from .constants import EXPECTED_SCHEMA_VERSION, PaymentMethod, Role


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced product, sale, or user is unknown."""


class InsufficientStockError(BusinessRuleViolation):
    """Raised when a sale asks for more units than the product has in stock."""


class ConcurrentModificationError(BusinessRuleViolation):
    """Raised when a product changed since the caller last read it."""


class AuthorizationError(BusinessRuleViolation):
    """Raised when the session is missing or lacks the required role."""


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration and workbook references used by the BLL."""

    settings: data_manager.ConfigSettings
    workbook: Workbook
    _cache: Dict[str, Dict[str, Any]] = field(default_factory=dict, repr=False, compare=False)


@dataclass(frozen=True)
class Session:
    """The authenticated user on whose behalf an operation runs."""

    user: data_manager.UserRow
    started_at: datetime

    @property
    def role(self) -> Role:
        return Role(self.user.role)

    @property
    def is_admin(self) -> bool:
        return self.user.role == Role.ADMIN.value


@dataclass(frozen=True)
class ProductCommand:
    """User intent for creating a product."""

    name: str
    category: str
    cost_price: Decimal
    selling_price: Decimal
    stock_qty: int
    low_stock_threshold: Optional[int] = None


@dataclass(frozen=True)
class UserCommand:
    """User intent for creating an account."""

    name: str
    email: str
    password: str
    role: Union[Role, str] = Role.EMPLOYEE


@dataclass(frozen=True)
class SaleCommand:
    """User intent for recording a sale.

    ``expected_version`` carries the product version the caller saw when the
    sale was prepared; when set, the sale is refused if the product changed in
    the meantime.
    """

    product_id: str
    quantity: int
    payment_method: Union[PaymentMethod, str]
    sale_date: Optional[datetime] = None
    expected_version: Optional[int] = None


SEED_USERS: tuple[tuple[str, str, str, str, Role], ...] = (
    ("U1", "Admin User", "admin@beautyshop.com", "admin123", Role.ADMIN),
    ("U2", "Sarah Johnson", "sarah@beautyshop.com", "emp123", Role.EMPLOYEE),
)

SEED_PRODUCTS: tuple[tuple[str, str, str, str, str, int], ...] = (
    ("P1", "Hydrating Face Serum", "Skincare", "12.50", "29.99", 25),
    ("P2", "Matte Liquid Lipstick", "Makeup", "6.00", "15.99", 40),
    ("P3", "Argan Oil Shampoo", "Haircare", "8.75", "19.50", 3),
    ("P4", "Rose Eau de Parfum", "Fragrance", "30.00", "65.00", 0),
    ("P5", "Gel Nail Polish Set", "Nail Care", "9.00", "22.00", 12),
)

_UPDATABLE_PRODUCT_FIELDS = frozenset(
    {"name", "category", "cost_price", "selling_price", "stock_qty", "low_stock_threshold"}
)
_UPDATABLE_USER_FIELDS = frozenset({"name", "email", "role", "password"})


class UnitOfWork:
    """Group several workbook writes so they succeed or fail together.

    Each write registers a compensating action. If the ``with`` block raises,
    the compensations run in reverse order and the original exception keeps
    propagating. Caches touched by the work are invalidated either way.
    """

    def __init__(self, context: RuntimeContext, label: str, *cache_names: str) -> None:
        self.context = context
        self.label = label
        self.cache_names = cache_names
        self._compensations: List[Callable[[], None]] = []

    def add_compensation(self, action: Callable[[], None]) -> None:
        self._compensations.append(action)

    def __enter__(self) -> "UnitOfWork":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc_type is not None and self._compensations:
            log.error("Rolling back '%s' after failure: %s", self.label, exc)
            for action in reversed(self._compensations):
                try:
                    action()
                except Exception:
                    log.exception("Compensating action failed during '%s' rollback", self.label)
        _invalidate_cache(self.context, *self.cache_names)
        return False


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` when provided, otherwise the current UTC time."""

    return candidate if candidate is not None else datetime.now(UTC)


def _get_cache_bucket(context: RuntimeContext, name: str) -> Dict[str, Any]:
    """Return a mutable cache bucket dedicated to the supplied name.

    The business logic layer maintains in-memory caches keyed by collection
    (products, sales, users). Buckets are simple dictionaries that store
    precomputed query results, reducing repeated workbook scans.
    """

    bucket = context._cache.get(name)
    if bucket is None:
        log.debug("Initializing cache bucket '%s'", name)
        bucket = {}
        context._cache[name] = bucket
    return bucket


def _invalidate_cache(context: RuntimeContext, *names: str) -> None:
    """Evict one or more cache buckets after mutating workbook state."""

    if not names:
        return

    log.debug("Invalidating cache buckets: %s", ", ".join(names))

    for name in names:
        context._cache.pop(name, None)


def _ensure_cache(context: RuntimeContext, name: str, loader: Callable[[Workbook], Any], key: str) -> Dict[str, Any]:
    bucket = _get_cache_bucket(context, name)
    if "all" not in bucket:
        rows = list(loader(context.workbook))
        bucket["all"] = rows
        bucket["by_id"] = {getattr(row, key): row for row in rows}
        log.debug("Populated %s cache with %d entries", name, len(rows))
    return bucket


def _ensure_products_cache(context: RuntimeContext) -> Dict[str, Any]:
    return _ensure_cache(context, "products", data_manager.iter_products, "product_id")


def _ensure_sales_cache(context: RuntimeContext) -> Dict[str, Any]:
    return _ensure_cache(context, "sales", data_manager.iter_sales, "sale_id")


def _ensure_users_cache(context: RuntimeContext) -> Dict[str, Any]:
    return _ensure_cache(context, "users", data_manager.iter_users, "user_id")


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and a live workbook for the BLL.

    The helper resolves ``config.ini``, parses settings, and opens the Excel
    workbook that stores shop data. The resulting :class:`RuntimeContext`
    bundles the immutable settings with a mutable workbook handle and an empty
    cache store.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer performs its upward search from
            the current working directory.

    Returns:
        RuntimeContext: Fully populated context ready for orchestration
            functions.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook = data_manager.open_workbook(settings.data_file)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return RuntimeContext(settings=settings, workbook=workbook)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate workbook compatibility before mutating state.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def persist_context(context: RuntimeContext) -> None:
    """Persist any in-memory workbook changes to the configured data file."""
    data_manager.save_workbook(
        context.workbook,
        destination=context.settings.data_file,
    )
    log.info("Persisted workbook '%s'", context.settings.data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook to discard unsaved modifications.

    A new :class:`RuntimeContext` is produced, so any cached data from the
    previous context is discarded.

    Raises:
        FileNotFoundError: If the backing workbook cannot be reloaded.
    """
    workbook = data_manager.refresh_workbook(context.settings.data_file)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return RuntimeContext(settings=context.settings, workbook=workbook)


def seed_defaults(context: RuntimeContext) -> bool:
    """Populate demo users and products when the workbook holds no data at all.

    Seeding only happens when the users, products and sales collections are all
    empty, so a shop that deliberately removed its demo products does not see
    them come back.

    Returns:
        bool: ``True`` when the demo records were written.
    """
    if list_users(context) or list_products(context) or list_sales(context):
        return False

    created_at = _resolve_timestamp(None).isoformat()
    for user_id, name, email, password, role in SEED_USERS:
        data_manager.append_user(
            context.workbook,
            data_manager.UserRow(
                user_id=user_id,
                name=name,
                email=email,
                role=role.value,
                password_hash=security.hash_password(password),
                created_at=created_at,
            ),
        )
    for product_id, name, category, cost, price, stock in SEED_PRODUCTS:
        data_manager.append_product(
            context.workbook,
            data_manager.ProductRow(
                product_id=product_id,
                name=name,
                category=category,
                cost_price=Decimal(cost),
                selling_price=Decimal(price),
                stock_qty=stock,
                low_stock_threshold=None,
                version=1,
                created_at=created_at,
                updated_at=created_at,
            ),
        )
    _invalidate_cache(context, "users", "products")
    log.info("Seeded %d demo users and %d demo products", len(SEED_USERS), len(SEED_PRODUCTS))
    return True


# ---------------------------------------------------------------------------
# Authorization policy
# ---------------------------------------------------------------------------


def require_authenticated(session: Optional[Session]) -> Session:
    """Return ``session`` or raise when nobody is logged in."""
    if session is None:
        log.warning("Rejected operation without an authenticated session")
        raise AuthorizationError("You must be logged in to perform this action")
    return session


def require_role(session: Optional[Session], *roles: Role) -> Session:
    """Ensure the session belongs to a user holding one of ``roles``.

    Raises:
        AuthorizationError: If there is no session or the role is not allowed.
    """
    session = require_authenticated(session)
    allowed = {role.value for role in roles}
    if session.user.role not in allowed:
        log.warning(
            "User '%s' with role '%s' denied; requires one of %s",
            session.user.user_id,
            session.user.role,
            ", ".join(sorted(allowed)),
        )
        raise AuthorizationError("Your role does not allow this action")
    return session


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


def list_products(context: RuntimeContext) -> List[data_manager.ProductRow]:
    """Return cached product rows in sheet order."""
    return list(_ensure_products_cache(context)["all"])


def list_sales(context: RuntimeContext) -> List[data_manager.SaleRow]:
    """Return cached sale rows in sheet (recording) order."""
    return list(_ensure_sales_cache(context)["all"])


def list_users(context: RuntimeContext) -> List[data_manager.UserRow]:
    """Return cached user rows in sheet order."""
    return list(_ensure_users_cache(context)["all"])


def get_product(context: RuntimeContext, product_id: str) -> data_manager.ProductRow:
    """Resolve a product record by its identifier.

    Raises:
        MissingReferenceError: If ``product_id`` is absent from the workbook.
    """
    try:
        return _ensure_products_cache(context)["by_id"][product_id]
    except KeyError as exc:
        log.warning("Product lookup failed for id '%s'", product_id)
        raise MissingReferenceError(f"Unknown product id: {product_id}") from exc


def get_sale(context: RuntimeContext, sale_id: str) -> data_manager.SaleRow:
    """Resolve a sale record by its identifier.

    Raises:
        MissingReferenceError: If ``sale_id`` is absent from the workbook.
    """
    try:
        return _ensure_sales_cache(context)["by_id"][sale_id]
    except KeyError as exc:
        log.warning("Sale lookup failed for id '%s'", sale_id)
        raise MissingReferenceError(f"Unknown sale id: {sale_id}") from exc


def get_user(context: RuntimeContext, user_id: str) -> data_manager.UserRow:
    """Resolve a user record by its identifier.

    Raises:
        MissingReferenceError: If ``user_id`` is absent from the workbook.
    """
    try:
        return _ensure_users_cache(context)["by_id"][user_id]
    except KeyError as exc:
        log.warning("User lookup failed for id '%s'", user_id)
        raise MissingReferenceError(f"Unknown user id: {user_id}") from exc


def find_user_by_email(context: RuntimeContext, email: str) -> Optional[data_manager.UserRow]:
    """Return the user whose email matches ``email`` ignoring case, if any."""
    wanted = email.strip().lower()
    for user in _ensure_users_cache(context)["all"]:
        if user.email.lower() == wanted:
            return user
    return None


# ---------------------------------------------------------------------------
# Products
# ---------------------------------------------------------------------------


def create_product(context: RuntimeContext, session: Optional[Session], command: ProductCommand) -> data_manager.ProductRow:
    """Validate and append a new product.

    Raises:
        AuthorizationError: If the session is not an admin.
        ValueError: When a required field is blank or a number is out of range.
    """
    require_role(session, Role.ADMIN)
    timestamp = _resolve_timestamp(None).isoformat()
    product = data_manager.ProductRow(
        product_id=generate_id("P"),
        name=command.name.strip(),
        category=command.category.strip(),
        cost_price=command.cost_price,
        selling_price=command.selling_price,
        stock_qty=command.stock_qty,
        low_stock_threshold=command.low_stock_threshold,
        version=1,
        created_at=timestamp,
        updated_at=timestamp,
    )
    validate_product(product)
    data_manager.append_product(context.workbook, product)
    _invalidate_cache(context, "products")
    log.info("Created product '%s' (%s)", product.product_id, product.name)
    return product


def update_product(
    context: RuntimeContext,
    session: Optional[Session],
    product_id: str,
    changes: Mapping[str, Any],
    *,
    expected_version: Optional[int] = None,
) -> data_manager.ProductRow:
    """Apply a partial update to a product.

    Only the keys in ``changes`` are written. The product version is bumped and
    ``updated_at`` refreshed on every successful call.

    Args:
        context (RuntimeContext): Runtime context providing workbook access and
            caches.
        session (Session | None): Acting session; must be an admin.
        product_id (str): Product to modify.
        changes (Mapping[str, Any]): Attribute names mapped to new values.
        expected_version (int | None): When given, the update is refused if the
            stored version differs.

    Returns:
        data_manager.ProductRow: The product as stored after the update.

    Raises:
        AuthorizationError: If the session is not an admin.
        MissingReferenceError: If the product does not exist.
        ConcurrentModificationError: On a version mismatch.
        ValueError: If a field is unknown or a value is invalid.
    """
    require_role(session, Role.ADMIN)
    current = get_product(context, product_id)
    unknown = set(changes) - _UPDATABLE_PRODUCT_FIELDS
    if unknown:
        log.error("Rejected update of product '%s': unknown field(s) %s", product_id, sorted(unknown))
        raise ValueError(f"Unknown product field(s): {', '.join(sorted(unknown))}")
    _check_version(current, expected_version)

    cleaned = {
        key: value.strip() if isinstance(value, str) else value
        for key, value in changes.items()
    }
    updated = replace(
        current,
        **cleaned,
        version=current.version + 1,
        updated_at=_resolve_timestamp(None).isoformat(),
    )
    validate_product(updated)

    field_values = {
        data_manager.PRODUCT_FIELD_COLUMNS[name]: getattr(updated, name)
        for name in (*cleaned, "version", "updated_at")
    }
    data_manager.update_product(context.workbook, product_id, field_values=field_values)
    _invalidate_cache(context, "products")
    log.info("Updated product '%s' fields: %s", product_id, ", ".join(sorted(cleaned)) or "none")
    return updated


def delete_product(context: RuntimeContext, session: Optional[Session], product_id: str) -> None:
    """Remove a product. Recorded sales keep their product name snapshot.

    Raises:
        AuthorizationError: If the session is not an admin.
        MissingReferenceError: If the product does not exist.
    """
    require_role(session, Role.ADMIN)
    get_product(context, product_id)
    data_manager.delete_product(context.workbook, product_id)
    _invalidate_cache(context, "products")
    log.info("Deleted product '%s'", product_id)


def validate_product(product: data_manager.ProductRow) -> None:
    """Check required fields and numeric ranges of a product record.

    Raises:
        ValueError: On a blank name or category, negative price, negative or
            non-integer stock, or a negative threshold.
    """
    if not product.name:
        log.error("Product validation failed: blank name")
        raise ValueError("Product name is required")
    if not product.category:
        log.error("Product validation failed: blank category for '%s'", product.name)
        raise ValueError("Product category is required")
    require_nonnegative_money(product.cost_price)
    require_nonnegative_money(product.selling_price)
    if isinstance(product.stock_qty, bool) or not isinstance(product.stock_qty, int):
        log.error("Stock validation failed: %r is not a whole number", product.stock_qty)
        raise ValueError("Stock quantity must be a whole number")
    if product.stock_qty < 0:
        log.error("Stock validation failed: %s", product.stock_qty)
        raise ValueError("Stock quantity must be zero or positive")
    threshold = product.low_stock_threshold
    if threshold is None:
        return
    if isinstance(threshold, bool) or not isinstance(threshold, int):
        log.error("Threshold validation failed: %r is not a whole number", threshold)
        raise ValueError("Low stock threshold must be a whole number")
    if threshold < 0:
        log.error("Threshold validation failed: %s", threshold)
        raise ValueError("Low stock threshold must be zero or positive")


def _check_version(product: data_manager.ProductRow, expected_version: Optional[int]) -> None:
    if expected_version is not None and product.version != expected_version:
        log.warning(
            "Product '%s' changed: expected version %s, found %s",
            product.product_id,
            expected_version,
            product.version,
        )
        raise ConcurrentModificationError(
            f"Product '{product.product_id}' was modified by someone else; reload and try again"
        )


def compare_and_swap_stock(
    context: RuntimeContext,
    product_id: str,
    *,
    expected_version: int,
    new_stock: int,
    timestamp: datetime,
) -> data_manager.ProductRow:
    """Write ``new_stock`` only if the product is still at ``expected_version``.

    The product is read from the workbook again rather than trusting the
    caller's snapshot, so a write that happened in between is detected.

    Raises:
        ConcurrentModificationError: If the stored version moved on.
        InsufficientStockError: If ``new_stock`` would be negative.
    """
    _invalidate_cache(context, "products")
    current = get_product(context, product_id)
    _check_version(current, expected_version)
    if new_stock < 0:
        raise InsufficientStockError(
            f"Insufficient stock for '{current.name}': only {current.stock_qty} left"
        )

    updated = replace(
        current,
        stock_qty=new_stock,
        version=current.version + 1,
        updated_at=timestamp.isoformat(),
    )
    data_manager.update_product(
        context.workbook,
        product_id,
        field_values={
            "StockQty": updated.stock_qty,
            "Version": updated.version,
            "UpdatedAt": updated.updated_at,
        },
    )
    _invalidate_cache(context, "products")
    return updated


# ---------------------------------------------------------------------------
# Sales
# ---------------------------------------------------------------------------


def record_sale(context: RuntimeContext, session: Optional[Session], command: SaleCommand) -> data_manager.SaleRow:
    """Validate a sale, append it, and decrement the product's stock.

    The product name, selling price and employee name are copied onto the
    sale so later edits to the product or user do not rewrite history. The
    sale row and the stock decrement are written as one unit of work: if the
    stock write fails the sale row is removed again.

    Args:
        context (RuntimeContext): Runtime context providing workbook access and
            caches.
        session (Session | None): Acting session; any role may sell.
        command (SaleCommand): Structured intent describing the sale.

    Returns:
        data_manager.SaleRow: Newly appended sale.

    Raises:
        AuthorizationError: If nobody is logged in.
        ValueError: When the quantity is not a positive whole number.
        BusinessRuleViolation: If the payment method is unsupported.
        MissingReferenceError: If the product id is unknown.
        InsufficientStockError: If the quantity exceeds current stock.
        ConcurrentModificationError: If ``expected_version`` is stale.
    """
    session = require_authenticated(session)
    require_positive_quantity(command.quantity)
    payment_method = coerce_payment_method(command.payment_method)
    product = get_product(context, command.product_id)
    _check_version(product, command.expected_version)
    if command.quantity > product.stock_qty:
        log.warning(
            "Rejected sale of %s x '%s': only %s in stock",
            command.quantity,
            product.product_id,
            product.stock_qty,
        )
        raise InsufficientStockError(
            f"Insufficient stock for '{product.name}': requested {command.quantity}, "
            f"available {product.stock_qty}"
        )

    timestamp = _resolve_timestamp(None)
    sale = build_sale(
        product,
        session.user,
        command,
        payment_method=payment_method,
        sale_id=generate_id("S", when=timestamp),
        timestamp=timestamp,
    )

    with UnitOfWork(context, "record_sale", "sales", "products") as unit:
        data_manager.append_sale(context.workbook, sale)
        unit.add_compensation(lambda: data_manager.delete_sale(context.workbook, sale.sale_id))
        compare_and_swap_stock(
            context,
            product.product_id,
            expected_version=product.version,
            new_stock=product.stock_qty - command.quantity,
            timestamp=timestamp,
        )

    log.info(
        "Recorded sale '%s' of %s x '%s' (amount=%s, method=%s) by '%s'",
        sale.sale_id,
        sale.quantity,
        sale.product_id,
        sale.total_amount,
        sale.payment_method,
        sale.employee_id,
    )
    return sale


def void_sale(context: RuntimeContext, session: Optional[Session], sale_id: str) -> data_manager.ProductRow:
    """Remove a recorded sale and return its quantity to stock.

    Returns:
        data_manager.ProductRow: The restocked product.

    Raises:
        AuthorizationError: If the session is not an admin.
        MissingReferenceError: If the sale or its product no longer exists.
    """
    require_role(session, Role.ADMIN)
    sale = get_sale(context, sale_id)
    product = get_product(context, sale.product_id)

    with UnitOfWork(context, "void_sale", "sales", "products") as unit:
        data_manager.delete_sale(context.workbook, sale.sale_id)
        unit.add_compensation(lambda: data_manager.append_sale(context.workbook, sale))
        restocked = compare_and_swap_stock(
            context,
            product.product_id,
            expected_version=product.version,
            new_stock=product.stock_qty + sale.quantity,
            timestamp=_resolve_timestamp(None),
        )

    log.info("Voided sale '%s'; returned %s unit(s) to '%s'", sale_id, sale.quantity, product.product_id)
    return restocked


def build_sale(
    product: data_manager.ProductRow,
    employee: data_manager.UserRow,
    command: SaleCommand,
    *,
    payment_method: PaymentMethod,
    sale_id: str,
    timestamp: datetime,
) -> data_manager.SaleRow:
    """Materialize a :class:`SaleCommand` into a DAL sale row."""
    sale_date = command.sale_date if command.sale_date is not None else timestamp
    return data_manager.SaleRow(
        sale_id=sale_id,
        product_id=product.product_id,
        product_name=product.name,
        quantity=command.quantity,
        unit_price=product.selling_price,
        total_amount=product.selling_price * command.quantity,
        payment_method=payment_method.value,
        employee_id=employee.user_id,
        employee_name=employee.name,
        sale_date=sale_date.isoformat(),
        created_at=timestamp.isoformat(),
    )


def coerce_payment_method(candidate: Union[PaymentMethod, str]) -> PaymentMethod:
    """Return ``candidate`` as a :class:`PaymentMethod`.

    Raises:
        BusinessRuleViolation: If the value is outside the supported set.
    """
    try:
        return PaymentMethod(candidate)
    except ValueError as exc:
        log.error("Unsupported payment method provided: %s", candidate)
        raise BusinessRuleViolation(f"Unsupported payment method: {candidate}") from exc


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


def create_user(context: RuntimeContext, session: Optional[Session], command: UserCommand) -> data_manager.UserRow:
    """Validate and append a new user account with a hashed password.

    Raises:
        AuthorizationError: If the session is not an admin.
        ValueError: When the name, email or password is missing or malformed.
        BusinessRuleViolation: If the email is already registered or the role
            is unknown.
    """
    require_role(session, Role.ADMIN)
    name = command.name.strip()
    email = command.email.strip()
    role = coerce_role(command.role)
    _validate_user_fields(name, email)
    if not command.password:
        log.error("Rejected new user '%s': empty password", email)
        raise ValueError("Password is required")
    _require_unique_email(context, email)

    user = data_manager.UserRow(
        user_id=generate_id("U"),
        name=name,
        email=email,
        role=role.value,
        password_hash=security.hash_password(command.password),
        created_at=_resolve_timestamp(None).isoformat(),
    )
    data_manager.append_user(context.workbook, user)
    _invalidate_cache(context, "users")
    log.info("Created %s user '%s' (%s)", user.role, user.user_id, user.email)
    return user


def update_user(
    context: RuntimeContext,
    session: Optional[Session],
    user_id: str,
    changes: Mapping[str, Any],
) -> data_manager.UserRow:
    """Apply a partial update to a user account.

    ``password`` is accepted in ``changes`` and stored hashed. Demoting the
    last remaining admin is refused.

    Raises:
        AuthorizationError: If the session is not an admin.
        MissingReferenceError: If the user does not exist.
        ValueError: If a field is unknown or a value is malformed.
        BusinessRuleViolation: On a duplicate email, unknown role, or when the
            change would leave the shop without an admin.
    """
    require_role(session, Role.ADMIN)
    current = get_user(context, user_id)
    unknown = set(changes) - _UPDATABLE_USER_FIELDS
    if unknown:
        log.error("Rejected update of user '%s': unknown field(s) %s", user_id, sorted(unknown))
        raise ValueError(f"Unknown user field(s): {', '.join(sorted(unknown))}")

    updated = current
    if "name" in changes:
        updated = replace(updated, name=str(changes["name"]).strip())
    if "email" in changes:
        email = str(changes["email"]).strip()
        if email.lower() != current.email.lower():
            _require_unique_email(context, email)
        updated = replace(updated, email=email)
    if "role" in changes:
        role = coerce_role(changes["role"])
        if current.role == Role.ADMIN.value and role is not Role.ADMIN:
            _require_other_admin(context, current.user_id)
        updated = replace(updated, role=role.value)
    if "password" in changes:
        if not changes["password"]:
            log.error("Rejected update of user '%s': empty password", user_id)
            raise ValueError("Password is required")
        updated = replace(updated, password_hash=security.hash_password(str(changes["password"])))
    _validate_user_fields(updated.name, updated.email)

    field_values = {
        column: getattr(updated, name)
        for name, column in data_manager.USER_FIELD_COLUMNS.items()
        if getattr(updated, name) != getattr(current, name)
    }
    if field_values:
        data_manager.update_user(context.workbook, user_id, field_values=field_values)
        _invalidate_cache(context, "users")
    log.info("Updated user '%s' fields: %s", user_id, ", ".join(sorted(changes)) or "none")
    return updated


def delete_user(context: RuntimeContext, session: Optional[Session], user_id: str) -> None:
    """Remove a user account.

    Raises:
        AuthorizationError: If the session is not an admin.
        MissingReferenceError: If the user does not exist.
        BusinessRuleViolation: When deleting one's own account or the last
            admin.
    """
    session = require_role(session, Role.ADMIN)
    user = get_user(context, user_id)
    if user.user_id == session.user.user_id:
        log.warning("User '%s' attempted to delete their own account", user_id)
        raise BusinessRuleViolation("You cannot delete your own account")
    if user.role == Role.ADMIN.value:
        _require_other_admin(context, user.user_id)
    data_manager.delete_user(context.workbook, user_id)
    _invalidate_cache(context, "users")
    log.info("Deleted user '%s'", user_id)


def coerce_role(candidate: Union[Role, str]) -> Role:
    """Return ``candidate`` as a :class:`Role`.

    Raises:
        BusinessRuleViolation: If the value is not a known role.
    """
    try:
        return Role(candidate)
    except ValueError as exc:
        log.error("Unsupported role provided: %s", candidate)
        raise BusinessRuleViolation(f"Unsupported role: {candidate}") from exc


def _validate_user_fields(name: str, email: str) -> None:
    if not name:
        log.error("User validation failed: blank name")
        raise ValueError("Name is required")
    if "@" not in email or email.startswith("@") or email.endswith("@"):
        log.error("User validation failed: invalid email %r", email)
        raise ValueError(f"Invalid email address: {email!r}")


def _require_unique_email(context: RuntimeContext, email: str) -> None:
    if find_user_by_email(context, email) is not None:
        log.warning("Email '%s' is already registered", email)
        raise BusinessRuleViolation(f"A user with email '{email}' already exists")


def _require_other_admin(context: RuntimeContext, user_id: str) -> None:
    others = [
        user for user in list_users(context)
        if user.role == Role.ADMIN.value and user.user_id != user_id
    ]
    if not others:
        log.warning("Refused change that would remove the last admin '%s'", user_id)
        raise BusinessRuleViolation("At least one admin account must remain")


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


def generate_id(prefix: str, *, when: Optional[datetime] = None) -> str:
    """Generate a sortable identifier using UTC timestamps.

    Returns:
        str: Identifier formed as ``{prefix}{YYYYMMDDHHMMSSffffff}{XXXX}`` where
            the trailing four hex digits keep ids unique within one
            microsecond.
    """
    when = when or _resolve_timestamp(None)
    return f"{prefix}{when.strftime('%Y%m%d%H%M%S%f')}{uuid.uuid4().hex[:4].upper()}"


def require_positive_quantity(quantity: int) -> None:
    """Validate that a quantity is a strictly positive whole number.

    Raises:
        ValueError: If ``quantity`` is not an ``int`` or is below one.
    """
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        log.error("Quantity validation failed: %r is not a whole number", quantity)
        raise ValueError("Quantity must be a whole number")
    if quantity < 1:
        log.error("Quantity validation failed: %s", quantity)
        raise ValueError("Quantity must be greater than zero")


def require_nonnegative_money(amount: Decimal) -> None:
    """Validate that a monetary value is a nonnegative decimal.

    Raises:
        ValueError: If ``amount`` is not a ``Decimal`` or is below zero.
    """
    if not isinstance(amount, Decimal) or not amount.is_finite():
        log.error("Monetary value validation failed: %r", amount)
        raise ValueError("Amount must be a decimal number")
    if amount < Decimal("0"):
        log.error("Monetary value validation failed: %s", amount)
        raise ValueError("Amount must be zero or positive")
