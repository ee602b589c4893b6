#!/usr/bin/env python3
"""
Transaction Import CLI

Command-line tool to analyze broker exports and import them into a
portfolio account without going through the HTTP API.

Usage:
    python import_cli.py analyze <file.csv>
    python import_cli.py import <file.csv> --account <id> --user <user_id>
    python import_cli.py create-account <user_id> <name> [--currency EUR]
    python import_cli.py recalculate <account_id> --user <user_id>
"""
import sys
import argparse
import asyncio
import csv
import json
from pathlib import Path
from typing import List

# Add project root to path (file is in root)
PROJECT_ROOT = Path(__file__).parent
sys.path.insert(0, str(PROJECT_ROOT))

from sqlalchemy.ext.asyncio import AsyncSession

from folio_import.app.config import get_settings
from folio_import.app.db import base  # noqa: F401 - registers the tables on SQLModel.metadata
from folio_import.app.db.session import create_schema, get_async_engine
from folio_import.app.logging_config import configure_logging
from folio_import.app.schemas.analysis import AnalyzeFileRequest
from folio_import.app.schemas.imports import CreateAccountRequest, ImportBatchRequest, ImportOptions
from folio_import.app.services.import_pipeline.analysis_service import analyze_file
from folio_import.app.services.import_pipeline.context import ImportPipelineContext
from folio_import.app.services.import_pipeline.import_service import (
    AccountAccessError,
    create_account,
    execute_import,
    recalculate_assets,
    )
from folio_import.app.services.import_pipeline.row_mapper import apply_mapping


def read_csv(path: str) -> List[List[str]]:
    """All non-empty rows of a CSV file (delimiter sniffed from the first lines)."""
    with open(path, newline="", encoding="utf-8-sig") as f:
        head = f.read(4096)
        f.seek(0)
        try:
            dialect = csv.Sniffer().sniff(head, delimiters=",;\t")
        except csv.Error:
            dialect = csv.excel
        return [row for row in csv.reader(f, dialect) if any(cell.strip() for cell in row)]


async def cmd_analyze(path: str):
    """Print the analysis of a file as JSON."""
    settings = get_settings()
    rows = read_csv(path)
    context = ImportPipelineContext.from_settings(settings)
    try:
        result = await analyze_file(
            AnalyzeFileRequest(sample_data=rows[:settings.ANALYSIS_MAX_SAMPLE_ROWS], file_name=Path(path).name),
            context,
            )
    finally:
        await context.aclose()

    print(json.dumps(result.model_dump(mode="json"), indent=2, ensure_ascii=False))
    return result.readiness.can_proceed


async def cmd_import(path: str, account_id: int, user_id: str, create_assets: bool, skip_duplicates: bool, force: bool):
    """Analyze, map and import a whole file in batches."""
    settings = get_settings()
    rows = read_csv(path)
    if not rows:
        print(f"❌ {path} has no rows")
        return False

    engine = get_async_engine()
    await create_schema(engine)
    context = ImportPipelineContext.from_settings(settings)

    try:
        analysis = await analyze_file(
            AnalyzeFileRequest(sample_data=rows[:settings.ANALYSIS_MAX_SAMPLE_ROWS], file_name=Path(path).name),
            context,
            )
        if not analysis.readiness.can_proceed and not force:
            print(f"❌ Mapping not ready (confidence {analysis.overall_confidence:.2f})")
            for warning in analysis.warnings:
                print(f"   - {warning}")
            print("   Use --force to import anyway")
            return False

        mapped = apply_mapping(rows, analysis.mappings, analysis.has_header, analysis.detected_broker)
        batch_size = settings.IMPORT_MAX_BATCH_TRANSACTIONS
        imported = skipped = failed = 0

        async with AsyncSession(engine, expire_on_commit=False) as session:
            for start in range(0, len(mapped), batch_size):
                request = ImportBatchRequest(
                    portfolio_account_id=account_id,
                    transactions=mapped[start:start + batch_size],
                    options=ImportOptions(create_missing_assets=create_assets, skip_duplicates=skip_duplicates),
                    )
                try:
                    response = await execute_import(session, context, request, user_id)
                except AccountAccessError as e:
                    print(f"❌ {e}")
                    return False

                imported += response.summary.imported
                skipped += response.summary.skipped
                failed += response.summary.errors
                for error in response.errors:
                    print(f"   row {error.row_number:<5} {error.ticker:<8} {error.code.value:<20} {error.message}")
    finally:
        await context.aclose()

    status = "✅" if failed == 0 else "⚠️"
    print(f"{status} Imported {imported}, skipped {skipped} duplicate(s), {failed} error(s)")
    return failed == 0


async def cmd_create_account(user_id: str, name: str, currency: str):
    """Create a portfolio account."""
    engine = get_async_engine()
    await create_schema(engine)

    async with AsyncSession(engine, expire_on_commit=False) as session:
        account = await create_account(session, user_id, CreateAccountRequest(name=name, default_currency=currency))

    print(f"✅ Account '{account.name}' created with ID {account.id} ({account.default_currency})")
    return True


async def cmd_recalculate(account_id: int, user_id: str):
    """Replay every asset of an account."""
    engine = get_async_engine()

    async with AsyncSession(engine, expire_on_commit=False) as session:
        try:
            response = await recalculate_assets(session, account_id, user_id)
        except AccountAccessError as e:
            print(f"❌ {e}")
            return False

    print(f"\n{'ID':<6} {'Ticker':<10} {'Units':>16} {'Unit value':>16} {'Active':<8}")
    print("-" * 60)
    for asset in response.assets:
        active = "✅" if asset.is_active else "❌"
        print(f"{asset.asset_id:<6} {asset.ticker:<10} {asset.units:>16} {asset.unit_value:>16} {active:<8}")
    print(f"\nTotal: {len(response.assets)} asset(s)")
    return True


def main():
    parser = argparse.ArgumentParser(
        description="FolioImport Transaction Import CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python import_cli.py analyze trades.csv
  python import_cli.py import trades.csv --account 1 --user alice
  python import_cli.py create-account alice "Main account" --currency EUR
  python import_cli.py recalculate 1 --user alice
        """
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # analyze
    analyze_parser = subparsers.add_parser("analyze", help="Analyze a CSV file")
    analyze_parser.add_argument("file", help="CSV file")

    # import
    import_parser = subparsers.add_parser("import", help="Import a CSV file")
    import_parser.add_argument("file", help="CSV file")
    import_parser.add_argument("--account", type=int, required=True, help="Portfolio account ID")
    import_parser.add_argument("--user", required=True, help="User ID owning the account")
    import_parser.add_argument("--no-create-assets", action="store_true", help="Fail rows whose asset does not exist")
    import_parser.add_argument("--keep-duplicates", action="store_true", help="Import rows already in the ledger")
    import_parser.add_argument("--force", action="store_true", help="Import even when the mapping is not ready")

    # create-account
    account_parser = subparsers.add_parser("create-account", help="Create a portfolio account")
    account_parser.add_argument("user", help="User ID")
    account_parser.add_argument("name", help="Account name")
    account_parser.add_argument("--currency", default="USD", help="Default currency (ISO 4217)")

    # recalculate
    recalc_parser = subparsers.add_parser("recalculate", help="Recalculate asset aggregates of an account")
    recalc_parser.add_argument("account", type=int, help="Portfolio account ID")
    recalc_parser.add_argument("--user", required=True, help="User ID owning the account")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return

    configure_logging(get_settings().LOG_LEVEL, enable_file_logging=False)

    if args.command == "analyze":
        ok = asyncio.run(cmd_analyze(args.file))
    elif args.command == "import":
        ok = asyncio.run(cmd_import(
            args.file, args.account, args.user,
            create_assets=not args.no_create_assets,
            skip_duplicates=not args.keep_duplicates,
            force=args.force,
            ))
    elif args.command == "create-account":
        ok = asyncio.run(cmd_create_account(args.user, args.name, args.currency))
    else:
        ok = asyncio.run(cmd_recalculate(args.account, args.user))

    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()
