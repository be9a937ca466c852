"""Shared pytest fixtures and utilities for Beauty Shop Manager tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterator
from unittest.mock import Mock

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from beauty_shop import cli, constants, core_logic, data_manager, security  # noqa: E402
from beauty_shop.setup_workbook import create_master_workbook  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "ShopName = {shop_name}\n"
    "SchemaVersion = {schema_version}\n\n"
    "[Defaults]\n"
    "LowStockThreshold = {threshold}\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    schema_version: str
    shop_name: str


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture(autouse=True)
def _fast_password_hashing(monkeypatch: pytest.MonkeyPatch) -> None:
    """Use the cheapest bcrypt work factor so seeding stays quick in tests."""

    monkeypatch.setattr(security, "PASSWORD_HASH_ROUNDS", 4)


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates an initialized, empty workbook in a temp folder."""

    def _create_workbook(*, subdir: str | None = None, filename: str = "beauty_shop_data.xlsx") -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        return create_master_workbook(base_dir / filename, overwrite=True)

    return _create_workbook


@pytest.fixture
def master_workbook_path(workbook_factory: Callable[..., Path]) -> Path:
    """Return a fresh workbook ready for use in a test."""

    return workbook_factory(subdir=f"workbook_{uuid.uuid4().hex}")


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        shop_name: str = "Test Beauty Shop",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        threshold: int = constants.DEFAULT_LOW_STOCK_THRESHOLD,
    ) -> ConfigBundle:
        bundle_name = f"bundle_{uuid.uuid4().hex}"
        bundle_dir = tmp_path / bundle_name
        workbook_path = workbook_factory(subdir=bundle_name)
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                shop_name=shop_name,
                schema_version=schema_version,
                threshold=threshold,
            )
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            schema_version=schema_version,
            shop_name=shop_name,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


@pytest.fixture
def runtime_context(config_file: Path) -> core_logic.RuntimeContext:
    """Load an empty workbook through the public API."""

    context = core_logic.load_runtime_context(config_file)
    core_logic.ensure_schema_version(context)
    return context


@pytest.fixture
def seeded_context(runtime_context: core_logic.RuntimeContext) -> core_logic.RuntimeContext:
    """Runtime context populated with the demo users and products."""

    core_logic.seed_defaults(runtime_context)
    return runtime_context


@pytest.fixture
def admin_session(seeded_context: core_logic.RuntimeContext) -> core_logic.Session:
    return core_logic.Session(user=core_logic.get_user(seeded_context, "U1"), started_at=datetime.now(UTC))


@pytest.fixture
def employee_session(seeded_context: core_logic.RuntimeContext) -> core_logic.Session:
    return core_logic.Session(user=core_logic.get_user(seeded_context, "U2"), started_at=datetime.now(UTC))


@pytest.fixture
def make_sale() -> Callable[..., data_manager.SaleRow]:
    """Build sale rows with sensible defaults for reporting tests."""

    counter = {"next": 0}

    def _make(
        product_name: str = "Serum",
        *,
        quantity: int = 1,
        unit_price: str = "10.00",
        payment_method: str = constants.PaymentMethod.CASH.value,
        sale_date: str = "2024-05-15T10:00:00+00:00",
        employee_name: str = "Sarah Johnson",
        product_id: str | None = None,
    ) -> data_manager.SaleRow:
        counter["next"] += 1
        price = Decimal(unit_price)
        return data_manager.SaleRow(
            sale_id=f"S{counter['next']}",
            product_id=product_id or f"P-{product_name}",
            product_name=product_name,
            quantity=quantity,
            unit_price=price,
            total_amount=price * quantity,
            payment_method=payment_method,
            employee_id="U2",
            employee_name=employee_name,
            sale_date=sale_date,
            created_at=sale_date,
        )

    return _make


@pytest.fixture
def make_product() -> Callable[..., data_manager.ProductRow]:
    """Build product rows with sensible defaults."""

    def _make(
        product_id: str = "PX",
        *,
        name: str = "Test Product",
        category: str = "Skincare",
        cost_price: str = "4.00",
        selling_price: str = "10.00",
        stock_qty: int = 10,
        low_stock_threshold: int | None = None,
        version: int = 1,
    ) -> data_manager.ProductRow:
        return data_manager.ProductRow(
            product_id=product_id,
            name=name,
            category=category,
            cost_price=Decimal(cost_price),
            selling_price=Decimal(selling_price),
            stock_qty=stock_qty,
            low_stock_threshold=low_stock_threshold,
            version=version,
            created_at="2024-05-01T09:00:00+00:00",
            updated_at="2024-05-01T09:00:00+00:00",
        )

    return _make


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="beauty-shop", description="Beauty Shop CLI")


@pytest.fixture
def subparsers_action(cli_parser: argparse.ArgumentParser) -> argparse._SubParsersAction:
    """Return the subparser action used to register commands."""

    return cli_parser.add_subparsers(dest="command")


@pytest.fixture
def command_spec_iterable() -> list[cli.CommandSpec]:
    """Provide a list of command specs for indexing tests."""

    def _make_spec(name: str) -> cli.CommandSpec:
        return cli.CommandSpec(
            name,
            f"{name} help",
            lambda subparsers: subparsers.add_parser(name),
            lambda *_: 0,
        )

    return [_make_spec("alpha"), _make_spec("beta"), _make_spec("gamma")]


# ---------------------------------------------------------------------------
# Core logic fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    """Provide default configuration settings for runtime context tests."""

    return data_manager.ConfigSettings(
        data_file=tmp_path / "beauty_shop_data.xlsx",
        shop_name="Test Beauty Shop",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
    )


@pytest.fixture
def workbook() -> Mock:
    """Return a mock workbook object for business logic tests."""

    return Mock(name="workbook")


@pytest.fixture
def context(settings: data_manager.ConfigSettings, workbook: Mock) -> core_logic.RuntimeContext:
    """Assemble a runtime context from injected settings and workbook mocks."""

    return core_logic.RuntimeContext(settings=settings, workbook=workbook)


@pytest.fixture
def set_fixed_datetime(monkeypatch: pytest.MonkeyPatch) -> Callable[[datetime], datetime]:
    """Patch ``core_logic.datetime`` to return a predetermined moment."""

    def _apply(moment: datetime) -> datetime:
        class _FixedDateTime:
            @staticmethod
            def now(tz=None):
                assert tz is UTC
                return moment

        monkeypatch.setattr(core_logic, "datetime", _FixedDateTime)
        return moment

    return _apply
