"""Utility for initializing an empty ledger source workbook.

The module doubles as a script (``ledger-setup``) and as a library used by
tests or export tooling that needs a workbook with the expected sheets and
header rows.
"""

from __future__ import annotations

import argparse
import configparser
import sys
from pathlib import Path
from typing import Mapping, Sequence

import openpyxl
from openpyxl.styles import Font

from .constants import SheetName

SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    SheetName.ACCOUNTS.value: [
        "AccountID",
        "Kind",
        "Name",
        "AccountCode",
        "OpeningBalance",
    ],
    SheetName.DOCUMENTS.value: [
        "DocumentID",
        "Kind",
        "AccountKind",
        "AccountID",
        "AccountName",
        "Date",
        "Reference",
        "Status",
        "TotalAmount",
        "AmountReceived",
        "InvoiceID",
        "CreatedAt",
        "UpdatedAt",
        "Notes",
    ],
    SheetName.DOCUMENT_LINES.value: [
        "DocumentID",
        "ProductName",
        "Quantity",
        "UnitPrice",
        "DiscountValue",
        "DiscountType",
        "Total",
    ],
    SheetName.PRODUCTS.value: [
        "ProductID",
        "Name",
        "ProductCode",
        "ReorderPoint",
        "VendorID",
        "Category",
        "Unit",
    ],
    SheetName.STOCK_MOVEMENTS.value: [
        "MovementID",
        "CompanyID",
        "ProductID",
        "Qty",
        "Direction",
        "Reason",
        "Source",
        "SourceID",
        "SourceRef",
        "CreatedAt",
    ],
}

CONFIG_FILE = "config.ini"


def load_data_file(config_path: Path) -> Path:
    """Read ``DataFile`` from ``config.ini``, resolved against the config directory."""

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)

    try:
        data_file_raw = parser.get("System", "DataFile")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        data_file_path = (config_path.parent / data_file_path).resolve()
    return data_file_path


def create_master_workbook(
    destination: Path,
    *,
    sheet_columns: Mapping[str, Sequence[str]] = SHEET_COLUMNS,
    overwrite: bool = False,
) -> Path:
    """Create an empty source workbook at ``destination``.

    When ``overwrite`` is ``False`` (the default) this function raises
    ``FileExistsError`` if the target already exists.
    """

    destination = Path(destination).expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(
            f"Refusing to overwrite existing workbook: {destination}"
        )

    destination.parent.mkdir(parents=True, exist_ok=True)

    workbook = openpyxl.Workbook()

    # Remove the default sheet openpyxl generates so we can create ours.
    if workbook.active and workbook.active.title == "Sheet":
        workbook.remove(workbook.active)

    bold_font = Font(bold=True)

    for sheet_name, columns in sheet_columns.items():
        worksheet = workbook.create_sheet(title=sheet_name)
        for column_index, column_name in enumerate(columns, start=1):
            cell = worksheet.cell(row=1, column=column_index)
            cell.value = column_name
            cell.font = bold_font

    workbook.save(destination)
    return destination


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the setup script."""

    parser = argparse.ArgumentParser(description="Initialize an empty ledger source workbook")
    parser.add_argument(
        "--config",
        default=CONFIG_FILE,
        help="Path to configuration file (default: config.ini)",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite the target workbook if it already exists.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the setup script."""

    args = parse_args(argv)
    config_path = Path(args.config).expanduser().resolve()

    print(f"Using configuration: {config_path}")

    try:
        output_path = create_master_workbook(load_data_file(config_path), overwrite=args.force)
    except (FileNotFoundError, KeyError) as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except FileExistsError as exc:
        print(f"\n[ERROR] {exc}")
        print("Run with --force to overwrite the existing file if appropriate.")
        return 1
    except (PermissionError, OSError) as exc:
        print(f"\n[ERROR] Unable to write workbook: {exc}")
        return 1

    print(f"\n[SUCCESS] Created source workbook at '{output_path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised via manual runs
    sys.exit(main())
