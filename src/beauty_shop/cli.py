"""Command-line entry points for Beauty Shop Manager.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into the command objects consumed by the business
layer, and printing results. The signed-in user is resolved once per command
through :mod:`auth` and handed to the business layer explicitly.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from datetime import UTC, date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence

from . import auth, core_logic, export, log, reports
from .constants import PRODUCT_CATEGORIES, PaymentMethod, ReportPeriod, Role


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="beauty-shop",
        description="Command-line tools for the Beauty Shop Manager workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to searching upwards from the current directory).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def register_write_commands(subparsers: argparse._SubParsersAction) -> Dict[str, CommandSpec]:
    """Declare commands that change the workbook."""
    specs = {
        "login": _spec("login", "Sign in with email and password.", _add_login_arguments, run_login),
        "logout": _spec("logout", "Sign out the current user.", None, run_logout),
        "add-product": _spec("add-product", "Add a product to the inventory (admin).", _add_product_arguments, run_add_product),
        "update-product": _spec("update-product", "Edit a product (admin).", _update_product_arguments, run_update_product),
        "delete-product": _spec("delete-product", "Remove a product (admin).", _product_id_argument, run_delete_product),
        "sale": _spec("sale", "Record a sale for the signed-in user.", _sale_arguments, run_sale),
        "void-sale": _spec("void-sale", "Void a sale and restock its items (admin).", _sale_id_argument, run_void_sale),
        "add-user": _spec("add-user", "Create a user account (admin).", _add_user_arguments, run_add_user),
        "update-user": _spec("update-user", "Edit a user account (admin).", _update_user_arguments, run_update_user),
        "delete-user": _spec("delete-user", "Remove a user account (admin).", _user_id_argument, run_delete_user),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(subparsers: argparse._SubParsersAction) -> Dict[str, CommandSpec]:
    """Declare read-only commands such as listings and reports."""
    specs = {
        "whoami": _spec("whoami", "Show the signed-in user.", None, run_whoami),
        "products": _spec("products", "List products.", _products_arguments, run_products),
        "sales": _spec("sales", "List sales.", _sales_arguments, run_sales),
        "users": _spec("users", "List user accounts (admin).", None, run_users),
        "report": _spec("report", "Show a sales report for a period.", _report_arguments, run_report),
        "dashboard": _spec("dashboard", "Show today's headline figures.", None, run_dashboard),
        "export": _spec("export", "Export sales or inventory to a CSV file.", _export_arguments, run_export),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def _spec(
    name: str,
    help_text: str,
    add_arguments: Optional[Callable[[argparse.ArgumentParser], None]],
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int],
) -> CommandSpec:
    def registrar(action: argparse._SubParsersAction) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        if add_arguments is not None:
            add_arguments(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=execute)


# ---------------------------------------------------------------------------
# Argument declarations
# ---------------------------------------------------------------------------


def _add_login_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--email", required=True)
    parser.add_argument("--password", required=True)


def _add_product_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--name", required=True)
    parser.add_argument("--category", required=True, help=f"e.g. {', '.join(PRODUCT_CATEGORIES)}")
    parser.add_argument("--cost-price", required=True)
    parser.add_argument("--selling-price", required=True)
    parser.add_argument("--stock", type=int, required=True)
    parser.add_argument("--low-stock-threshold", type=int, default=None)


def _update_product_arguments(parser: argparse.ArgumentParser) -> None:
    _product_id_argument(parser)
    parser.add_argument("--name")
    parser.add_argument("--category")
    parser.add_argument("--cost-price")
    parser.add_argument("--selling-price")
    parser.add_argument("--stock", type=int)
    parser.add_argument("--low-stock-threshold", type=int)
    parser.add_argument("--expected-version", type=int, default=None)


def _product_id_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--product-id", required=True)


def _sale_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--product-id", required=True)
    parser.add_argument("--quantity", type=int, required=True)
    parser.add_argument(
        "--payment-method",
        choices=[member.value for member in PaymentMethod],
        default=PaymentMethod.CASH.value,
    )
    parser.add_argument("--expected-version", type=int, default=None)


def _sale_id_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--sale-id", required=True)


def _add_user_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--name", required=True)
    parser.add_argument("--email", required=True)
    parser.add_argument("--password", required=True)
    parser.add_argument("--role", choices=[member.value for member in Role], default=Role.EMPLOYEE.value)


def _update_user_arguments(parser: argparse.ArgumentParser) -> None:
    _user_id_argument(parser)
    parser.add_argument("--name")
    parser.add_argument("--email")
    parser.add_argument("--password")
    parser.add_argument("--role", choices=[member.value for member in Role])


def _user_id_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--user-id", required=True)


def _products_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--search")
    parser.add_argument("--category")
    parser.add_argument("--stock", choices=["low", "out"], default=None)


def _sales_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--search")
    parser.add_argument("--date", type=date.fromisoformat, default=None)
    parser.add_argument("--payment-method", choices=[member.value for member in PaymentMethod])


def _report_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--period",
        choices=[member.value for member in ReportPeriod],
        default=ReportPeriod.DAILY.value,
    )
    parser.add_argument("--start", type=date.fromisoformat, default=None)
    parser.add_argument("--end", type=date.fromisoformat, default=None)


def _export_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("kind", choices=list(export.EXPORT_KINDS))
    parser.add_argument("--output-dir", type=Path, default=Path.cwd())
    parser.add_argument("--start", type=date.fromisoformat, default=None)
    parser.add_argument("--end", type=date.fromisoformat, default=None)


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context and seed demo data on first use."""
    context = core_logic.load_runtime_context(config_path)
    core_logic.ensure_schema_version(context)
    core_logic.seed_defaults(context)
    return context


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


# ---------------------------------------------------------------------------
# Translation
# ---------------------------------------------------------------------------


def parse_money(raw: str) -> Decimal:
    """Parse a CLI currency argument.

    Raises:
        ValueError: If ``raw`` is not a decimal number.
    """
    try:
        return Decimal(raw)
    except InvalidOperation as exc:
        raise ValueError(f"Invalid amount: {raw!r}") from exc


def translate_add_product(args: argparse.Namespace) -> core_logic.ProductCommand:
    """Translate CLI args into a product command object."""
    return core_logic.ProductCommand(
        name=args.name,
        category=args.category,
        cost_price=parse_money(args.cost_price),
        selling_price=parse_money(args.selling_price),
        stock_qty=args.stock,
        low_stock_threshold=args.low_stock_threshold,
    )


def translate_update_product(args: argparse.Namespace) -> Dict[str, Any]:
    """Collect only the product fields given on the command line."""
    changes: Dict[str, Any] = {}
    if args.name is not None:
        changes["name"] = args.name
    if args.category is not None:
        changes["category"] = args.category
    if args.cost_price is not None:
        changes["cost_price"] = parse_money(args.cost_price)
    if args.selling_price is not None:
        changes["selling_price"] = parse_money(args.selling_price)
    if args.stock is not None:
        changes["stock_qty"] = args.stock
    if args.low_stock_threshold is not None:
        changes["low_stock_threshold"] = args.low_stock_threshold
    return changes


def translate_sale(args: argparse.Namespace) -> core_logic.SaleCommand:
    """Translate CLI args into a sale command object."""
    return core_logic.SaleCommand(
        product_id=args.product_id,
        quantity=args.quantity,
        payment_method=PaymentMethod(args.payment_method),
        expected_version=args.expected_version,
    )


def translate_add_user(args: argparse.Namespace) -> core_logic.UserCommand:
    """Translate CLI args into a user command object."""
    return core_logic.UserCommand(
        name=args.name,
        email=args.email,
        password=args.password,
        role=Role(args.role),
    )


def translate_update_user(args: argparse.Namespace) -> Dict[str, Any]:
    """Collect only the user fields given on the command line."""
    return {
        key: getattr(args, key)
        for key in ("name", "email", "password", "role")
        if getattr(args, key) is not None
    }


def _today() -> date:
    return datetime.now(UTC).date()


def _money(amount: Decimal) -> str:
    return f"${amount:.2f}"


# ---------------------------------------------------------------------------
# Executors
# ---------------------------------------------------------------------------


def run_login(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Sign in and remember the session in the workbook."""
    session = auth.login(context, args.email, args.password)
    if session is None:
        print("Invalid email or password")
        return 2
    print(f"Logged in as {session.user.name} ({session.user.role})")
    return 0


def run_logout(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Forget the stored session."""
    auth.logout(context)
    print("Logged out")
    return 0


def run_whoami(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the signed-in user, if any."""
    session = auth.current_session(context)
    if session is None:
        print("Not logged in")
        return 0
    print(f"{session.user.name} <{session.user.email}> ({session.user.role})")
    return 0


def run_add_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-product workflow in the BLL."""
    product = core_logic.create_product(context, auth.current_session(context), translate_add_product(args))
    print(f"Created product {product.product_id}: {product.name}")
    return 0


def run_update_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the update-product workflow in the BLL."""
    product = core_logic.update_product(
        context,
        auth.current_session(context),
        args.product_id,
        translate_update_product(args),
        expected_version=args.expected_version,
    )
    print(f"Updated product {product.product_id} (version {product.version})")
    return 0


def run_delete_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the delete-product workflow in the BLL."""
    core_logic.delete_product(context, auth.current_session(context), args.product_id)
    print(f"Deleted product {args.product_id}")
    return 0


def run_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the sale workflow via the BLL."""
    sale = core_logic.record_sale(context, auth.current_session(context), translate_sale(args))
    print(
        f"Recorded sale {sale.sale_id}: {sale.quantity} x {sale.product_name} "
        f"= {_money(sale.total_amount)} ({sale.payment_method})"
    )
    return 0


def run_void_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the void-sale workflow via the BLL."""
    product = core_logic.void_sale(context, auth.current_session(context), args.sale_id)
    print(f"Voided sale {args.sale_id}; {product.name} stock is now {product.stock_qty}")
    return 0


def run_add_user(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-user workflow via the BLL."""
    user = core_logic.create_user(context, auth.current_session(context), translate_add_user(args))
    print(f"Created user {user.user_id}: {user.name} ({user.role})")
    return 0


def run_update_user(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the update-user workflow via the BLL."""
    user = core_logic.update_user(context, auth.current_session(context), args.user_id, translate_update_user(args))
    print(f"Updated user {user.user_id}")
    return 0


def run_delete_user(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the delete-user workflow via the BLL."""
    core_logic.delete_user(context, auth.current_session(context), args.user_id)
    print(f"Deleted user {args.user_id}")
    return 0


def run_products(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """List products with their stock status."""
    core_logic.require_authenticated(auth.current_session(context))
    threshold = context.settings.low_stock_threshold
    products = reports.filter_products(
        core_logic.list_products(context),
        search=args.search,
        category=args.category,
        stock_filter=args.stock,
        default_threshold=threshold,
    )
    for product in products:
        print(
            f"{product.product_id}\t{product.name}\t{product.category}\t"
            f"{_money(product.selling_price)}\t{product.stock_qty}\t"
            f"{reports.stock_status(product, threshold).value}\tv{product.version}"
        )
    print(f"{len(products)} product(s)")
    return 0


def run_sales(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """List sales matching the given filters."""
    core_logic.require_authenticated(auth.current_session(context))
    sales = reports.filter_sales(
        core_logic.list_sales(context),
        search=args.search,
        on_date=args.date,
        payment_method=args.payment_method,
    )
    for sale in sales:
        print(
            f"{sale.sale_id}\t{reports.sale_day(sale).isoformat()}\t{sale.product_name}\t"
            f"{sale.quantity}\t{_money(sale.total_amount)}\t{sale.payment_method}\t{sale.employee_name}"
        )
    total = sum((sale.total_amount for sale in sales), Decimal("0.00"))
    print(f"{len(sales)} sale(s), {sum(sale.quantity for sale in sales)} item(s), {_money(total)}")
    return 0


def run_users(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """List user accounts; admins only."""
    core_logic.require_role(auth.current_session(context), Role.ADMIN)
    for user in core_logic.list_users(context):
        print(f"{user.user_id}\t{user.name}\t{user.email}\t{user.role}")
    return 0


def run_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the sales report for the requested period."""
    core_logic.require_authenticated(auth.current_session(context))
    start, end = reports.resolve_period(args.period, _today(), args.start, args.end)
    report = reports.build_report(core_logic.list_sales(context), start, end)
    print(f"Period: {start or 'all'} to {end or 'all'}")
    print(f"Total revenue: {_money(report.total_revenue)}")
    print(f"Total sales: {report.total_sales}")
    print(f"Items sold: {report.total_items}")
    print(f"Average sale: {_money(report.average_sale)}")
    print("Payment methods:")
    for method, amount in report.payment_breakdown.items():
        print(f"  {method}: {_money(amount)}")
    print("Top products:")
    for rank, item in enumerate(report.top_products, start=1):
        print(f"  {rank}. {item.name}: {item.quantity} sold, {_money(item.revenue)}")
    return 0


def run_dashboard(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print today's headline figures."""
    core_logic.require_authenticated(auth.current_session(context))
    summary = reports.build_dashboard_summary(
        core_logic.list_products(context),
        core_logic.list_sales(context),
        _today(),
        context.settings.low_stock_threshold,
    )
    print(f"{context.settings.shop_name}")
    print(f"Today's sales: {summary.todays_sales}")
    print(f"Today's revenue: {_money(summary.todays_revenue)}")
    print(f"Total products: {summary.total_products}")
    print(f"Low stock items: {summary.low_stock_items}")
    print(f"Out of stock items: {summary.out_of_stock_items}")
    return 0


def run_export(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Write the sales or inventory CSV file."""
    core_logic.require_authenticated(auth.current_session(context))
    if args.kind == "sales":
        sales = reports.filter_sales_by_date(core_logic.list_sales(context), args.start, args.end)
        records = export.sales_export_rows(sales)
    else:
        records = export.inventory_export_rows(
            core_logic.list_products(context), context.settings.low_stock_threshold
        )
    try:
        target = export.write_export(args.output_dir, args.kind, records, _today())
    except export.EmptyExportError as error:
        print(str(error))
        return 0
    print(f"Exported {len(records)} row(s) to {target}")
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    log.error("%s", error)
    if isinstance(error, core_logic.BusinessRuleViolation):
        return 2
    if isinstance(error, FileNotFoundError):
        return 3
    return 1


def persist_workbook(context: core_logic.RuntimeContext) -> None:
    """Persist workbook changes after successful execution."""
    try:
        core_logic.persist_context(context)
    except PermissionError as error:
        raise RuntimeError(str(error)) from error


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        exit_code = dispatch_command(context, args, command_table)
        if exit_code == 0:
            persist_workbook(context)
        return exit_code
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
