#!/usr/bin/env python3
"""
Roster Import CLI

Replaces the stores, contacts and store_schedules tables with the
contents of a JSON document or a roster workbook.

Usage:
    # Import a JSON document ({"stores": [...], "employees": [...], "schedules": [...]})
    python scripts/import_cli.py import-json --file complete-dataset.json

    # Import a workbook directly, or enqueue it on the Celery import queue
    python scripts/import_cli.py import-workbook --file roster.xlsx [--background]

    # Show how a workbook would be classified without touching the database
    python scripts/import_cli.py inspect --file roster.xlsx

    # Status of a background import
    python scripts/import_cli.py status --import-id <task id>
"""

import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

import json
import logging
from typing import Optional

import click
from dotenv import load_dotenv

# Load environment variables before settings are read
load_dotenv()

from backend.config import settings
from backend.database import create_db_engine, create_session_factory
from backend.models import Base
from services.classifier_service import classify_sheet
from services.errors import ClassificationMiss, RosterImportError
from services.import_service import ImportOrchestrator, ImportResult
from services.progress_service import get_import_status
from services.transform_service import transform_sheet
from services.workbook_service import parse_workbook_file

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format=settings.LOG_FORMAT,
    handlers=[
        logging.FileHandler(settings.LOG_FILE),
        logging.StreamHandler(sys.stdout)
    ]
)

logger = logging.getLogger('roster_import_cli')


@click.group()
@click.option('--database-url', envvar='DATABASE_URL', default=None,
              help='Target database URL (defaults to DATABASE_URL)')
@click.pass_context
def cli(ctx, database_url: Optional[str]):
    """Roster import pipeline"""
    ctx.ensure_object(dict)
    ctx.obj['database_url'] = database_url


def _progress_bar(stage: str, percent: float, message: str):
    bar_length = 40
    filled = int(bar_length * percent / 100)
    bar = '█' * filled + '░' * (bar_length - filled)
    click.echo(f"\r[{bar}] {percent:.1f}% - {stage}: {message}", nl=False)


def _print_result(result: ImportResult):
    """Print the import summary, exiting non-zero on failure."""
    click.echo()  # New line after progress bar

    if not result.success:
        click.echo(f"\n✗ Import failed: {result.error}", err=True)
        sys.exit(1)

    click.echo("\n✓ Import successful!")
    click.echo(f"Import ID: {result.import_id}")

    click.echo("\nImported:")
    for table, count in result.counts.items():
        click.echo(f"  {table}: {count}")

    skipped = [s for s in result.sheets if s.get('skipped') or s.get('dropped')]
    if skipped:
        click.echo("\nRows not loaded:")
        for s in skipped:
            name = s.get('sheet') or s.get('section')
            click.echo(f"  {name}: {s['skipped']} missing key fields, {s['dropped']} empty")

    if result.unclassified:
        click.echo(f"\n⚠️  Unclassified sheets skipped: {', '.join(result.unclassified)}")

    errors = result.verification.get('errors', [])
    if errors:
        click.echo("\n⚠️  Verification problems:")
        for error in errors:
            click.echo(f"  {error['table']} ({error['query']}): {error['error']}")


def _run_direct(database_url: Optional[str], run):
    engine = create_db_engine(database_url)
    Base.metadata.create_all(engine)
    Session = create_session_factory(engine)

    try:
        with Session() as session:
            orchestrator = ImportOrchestrator(
                session,
                progress_callback=_progress_bar,
                batch_size=settings.IMPORT_BATCH_SIZE,
                atomic=settings.IMPORT_ATOMIC,
                lock_key=settings.IMPORT_LOCK_KEY,
                max_rows=settings.IMPORT_MAX_ROWS,
                sample_size=settings.IMPORT_SAMPLE_SIZE
            )
            click.echo("\n")
            result = run(orchestrator)
    finally:
        engine.dispose()

    _print_result(result)


@cli.command('import-json')
@click.option('--file', '-f', 'file_path', required=True, type=click.Path(exists=True, dir_okay=False),
              help='Path to JSON document with stores, employees and schedules')
@click.option('--background', is_flag=True, help='Enqueue on the Celery import queue')
@click.pass_context
def import_json_cmd(ctx, file_path: str, background: bool):
    """Import a JSON roster document."""
    click.echo(f"\n📁 Importing: {file_path}")

    if background:
        from tasks.import_tasks import import_json_file
        task = import_json_file.delay(str(Path(file_path).resolve()))
        click.echo(f"✓ Enqueued. Import ID: {task.id}")
        return

    _run_direct(ctx.obj['database_url'], lambda orch: orch.import_json_file(file_path))


@cli.command('import-workbook')
@click.option('--file', '-f', 'file_path', required=True, type=click.Path(exists=True, dir_okay=False),
              help='Path to .xlsx workbook')
@click.option('--background', is_flag=True, help='Enqueue on the Celery import queue')
@click.pass_context
def import_workbook_cmd(ctx, file_path: str, background: bool):
    """Import a roster workbook."""
    click.echo(f"\n📁 Importing: {file_path}")

    if background:
        from tasks.import_tasks import import_workbook_file
        task = import_workbook_file.delay(str(Path(file_path).resolve()))
        click.echo(f"✓ Enqueued. Import ID: {task.id}")
        return

    _run_direct(ctx.obj['database_url'], lambda orch: orch.import_workbook_file(file_path))


@cli.command('inspect')
@click.option('--file', '-f', 'file_path', required=True, type=click.Path(exists=True, dir_okay=False),
              help='Path to .xlsx workbook')
def inspect_cmd(file_path: str):
    """Show sheet classification and transform counts without loading."""
    try:
        parsed = parse_workbook_file(file_path, max_rows=settings.IMPORT_MAX_ROWS)
    except RosterImportError as e:
        click.echo(f"✗ {e}", err=True)
        sys.exit(1)

    click.echo(f"\nWorkbook: {file_path}")
    click.echo("=" * 50)
    for sheet in parsed:
        entity_type = classify_sheet(sheet)
        if entity_type is None:
            miss = ClassificationMiss(sheet.name, sheet.headers, sheet.rows)
            click.echo(f"{sheet.name}: unclassified ({sheet.row_count} rows)")
            click.echo(f"  headers: {miss.headers}")
            for row in miss.to_dict()['data_preview']:
                click.echo(f"  row: {row}")
            continue

        transformed = transform_sheet(sheet, entity_type)
        click.echo(f"{sheet.name}: {entity_type.value} -> {entity_type.table_name}")
        click.echo(f"  rows: {sheet.row_count}, records: {len(transformed.records)}, "
                   f"skipped: {transformed.skipped}, columns mapped: {transformed.columns_mapped}")

    for name in parsed.empty_sheets:
        click.echo(f"{name}: empty")


@cli.command('status')
@click.option('--import-id', '-i', required=True, help='Import ID (Celery task id)')
@click.pass_context
def status_cmd(ctx, import_id: str):
    """Show the progress record of an import."""
    engine = create_db_engine(ctx.obj['database_url'])
    try:
        with create_session_factory(engine)() as session:
            status = get_import_status(session, import_id)
    finally:
        engine.dispose()

    if status is None:
        click.echo(f"✗ Import {import_id} not found", err=True)
        sys.exit(1)

    click.echo(json.dumps(status, indent=2, default=str))
    if status['status'] == 'failed':
        sys.exit(1)


if __name__ == '__main__':
    cli()
