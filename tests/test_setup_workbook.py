"""Tests for the workbook bootstrap script."""

from __future__ import annotations

import openpyxl
import pytest

from beauty_shop import data_manager, setup_workbook


def test_create_master_workbook_writes_bold_headers(tmp_path):
    path = setup_workbook.create_master_workbook(tmp_path / "shop.xlsx")

    workbook = openpyxl.load_workbook(path)
    assert workbook.sheetnames == list(data_manager.SHEET_COLUMNS)
    for sheet_name, columns in data_manager.SHEET_COLUMNS.items():
        header = [cell.value for cell in workbook[sheet_name][1]]
        assert header == list(columns)
        assert workbook[sheet_name].cell(row=1, column=1).font.bold
        assert workbook[sheet_name].max_row == 1


def test_create_master_workbook_refuses_overwrite(tmp_path):
    path = setup_workbook.create_master_workbook(tmp_path / "shop.xlsx")

    with pytest.raises(FileExistsError):
        setup_workbook.create_master_workbook(path)

    assert setup_workbook.create_master_workbook(path, overwrite=True) == path


def test_run_from_config_uses_data_file_entry(tmp_path):
    config_path = tmp_path / "config.ini"
    config_path.write_text("[System]\nDataFile=data/shop.xlsx\nShopName=S\nSchemaVersion=1.0.0\n")

    created = setup_workbook.run_from_config(config_path)

    assert created == (tmp_path / "data" / "shop.xlsx").resolve()
    assert created.exists()


def test_main_reports_missing_config(tmp_path, capsys):
    assert setup_workbook.main(["--config", str(tmp_path / "missing.ini")]) == 1
    assert "[ERROR]" in capsys.readouterr().out


def test_main_success_then_existing_file(tmp_path, capsys):
    config_path = tmp_path / "config.ini"
    config_path.write_text("[System]\nDataFile=shop.xlsx\nShopName=S\nSchemaVersion=1.0.0\n")

    assert setup_workbook.main(["--config", str(config_path)]) == 0
    assert "[SUCCESS]" in capsys.readouterr().out

    assert setup_workbook.main(["--config", str(config_path)]) == 1
    assert "--force" in capsys.readouterr().out

    assert setup_workbook.main(["--config", str(config_path), "--force"]) == 0
