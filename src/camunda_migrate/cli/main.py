"""Main CLI entry point for Camunda Migration Tool."""

import sys
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import click
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from .. import __version__
from ..config.config import Config
from ..migration.engine import MigrationEngine
from ..migration.orchestrator import MigrationPlan, MigrationSummary
from ..migration.strategy import MigratorMode
from ..persistence.mapping_store import MappingRecord
from ..persistence.models import EntityType
from ..utils.dates import format_date
from ..utils.logging import setup_logging

console = Console()

ENTITY_TYPE_OPTION = click.option(
    '--entity-type',
    '-t',
    'entity_types',
    multiple=True,
    type=click.Choice(sorted(EntityType.names()), case_sensitive=False),
    help='Restrict to an entity type (repeatable)',
)


@click.group()
@click.version_option(version=__version__, prog_name='camunda-migrate')
@click.option(
    '--config',
    '-c',
    type=click.Path(exists=True),
    help='Path to configuration file',
)
@click.option(
    '--verbose',
    '-v',
    is_flag=True,
    help='Enable verbose logging',
)
@click.pass_context
def cli(ctx: click.Context, config: Optional[str], verbose: bool) -> None:
    """Camunda Migration Tool - Migrate runtime instances, history and identity data from Camunda 7 to Camunda 8."""
    ctx.ensure_object(dict)

    # Store config path and verbose flag
    if config:
        ctx.obj['config_path'] = config
    ctx.obj['verbose'] = verbose

    # Setup basic logging first (will be enhanced later with config)
    log_level = 'DEBUG' if verbose else 'INFO'
    setup_logging(log_level)


@cli.command()
@click.option(
    '--output',
    '-o',
    default='config.yaml',
    help='Output configuration file path',
)
@click.pass_context
def init(ctx: click.Context, output: str) -> None:
    """Initialize a new configuration file."""
    console.print(
        Panel.fit(
            '[bold green]Camunda Migration Tool[/bold green]\n'
            'Initializing configuration...',
            border_style='green',
        )
    )

    try:
        Config.create_template(output)

        console.print(f'[green]✓[/green] Configuration template created at: {output}')
        console.print(
            f'[yellow]Please edit {output} with your Camunda 7 and Camunda 8 details[/yellow]'
        )

    except Exception as e:
        console.print(f'[red]✗[/red] Failed to create configuration: {e}')
        sys.exit(1)


@cli.command()
@click.option('--runtime', is_flag=True, help='Migrate running process instances')
@click.option('--history', is_flag=True, help='Migrate historic data')
@click.option('--identity', is_flag=True, help='Migrate tenants and authorizations')
@click.option(
    '--retry-skipped',
    is_flag=True,
    help='Retry entities skipped by earlier runs instead of scanning the source',
)
@ENTITY_TYPE_OPTION
@click.option(
    '--full-scan',
    is_flag=True,
    help='Scan the whole source instead of resuming after the last migrated entity',
)
@click.pass_context
def migrate(
    ctx: click.Context,
    runtime: bool,
    history: bool,
    identity: bool,
    retry_skipped: bool,
    entity_types: Tuple[str, ...],
    full_scan: bool,
) -> None:
    """Start the migration process.

    Without --runtime, --history or --identity only running process
    instances are migrated.
    """
    console.print(
        Panel.fit(
            '[bold blue]Camunda Migration Tool[/bold blue]\n'
            'Starting migration process...',
            border_style='blue',
        )
    )

    if retry_skipped:
        console.print('[yellow]Retrying previously skipped entities[/yellow]')

    try:
        config = _load_config(ctx)
        _setup_logging_with_config(ctx, config)

        plan = _create_plan(
            runtime,
            history,
            identity,
            entity_types,
            MigratorMode.RETRY_SKIPPED if retry_skipped else MigratorMode.MIGRATE,
            full_scan,
        )
        _run_migration(config, plan)

    except Exception as e:
        console.print(f'[red]✗[/red] Migration failed: {e}')
        if ctx.obj.get('verbose'):
            console.print_exception()
        sys.exit(1)


@cli.command('list-skipped')
@ENTITY_TYPE_OPTION
@click.pass_context
def list_skipped(ctx: click.Context, entity_types: Tuple[str, ...]) -> None:
    """List entities that were skipped and why."""
    try:
        config = _load_config(ctx)
        _setup_logging_with_config(ctx, config)

        engine = MigrationEngine(config)
        try:
            records = engine.list_skipped(_parse_entity_types(entity_types))
        finally:
            engine.close()

        _display_records('Skipped Entities', records, skipped=True)

    except Exception as e:
        console.print(f'[red]✗[/red] Failed to list skipped entities: {e}')
        if ctx.obj.get('verbose'):
            console.print_exception()
        sys.exit(1)


@cli.command('list-mappings')
@ENTITY_TYPE_OPTION
@click.pass_context
def list_mappings(ctx: click.Context, entity_types: Tuple[str, ...]) -> None:
    """List source ids with the target keys they were migrated to."""
    try:
        config = _load_config(ctx)
        _setup_logging_with_config(ctx, config)

        engine = MigrationEngine(config)
        try:
            records = engine.list_mappings(_parse_entity_types(entity_types))
        finally:
            engine.close()

        _display_records('Entity Mappings', records, skipped=False)

    except Exception as e:
        console.print(f'[red]✗[/red] Failed to list mappings: {e}')
        if ctx.obj.get('verbose'):
            console.print_exception()
        sys.exit(1)


@cli.command()
@click.pass_context
def validate(ctx: click.Context) -> None:
    """Validate configuration and connectivity to both engines."""
    console.print(
        Panel.fit(
            '[bold cyan]Camunda Migration Tool[/bold cyan]\nValidating setup...',
            border_style='cyan',
        )
    )

    try:
        config = _load_config(ctx)

        engine = MigrationEngine(config)
        try:
            engine._test_connectivity()
        finally:
            engine.close()

        console.print('[green]✓[/green] Connectivity validation passed')
        console.print('[green]✓[/green] Configuration validation completed')

    except Exception as e:
        console.print(f'[red]✗[/red] Validation failed: {e}')
        if ctx.obj.get('verbose'):
            console.print_exception()
        sys.exit(1)


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show migration configuration and progress."""
    console.print(
        Panel.fit(
            '[bold magenta]Camunda Migration Tool[/bold magenta]\nMigration Status',
            border_style='magenta',
        )
    )

    try:
        config = _load_config(ctx)
        _setup_logging_with_config(ctx, config)

        table = Table(title='Migration Configuration')
        table.add_column('Setting', style='cyan')
        table.add_column('Value', style='green')

        table.add_row('Source URL', config.source.url)
        table.add_row('Target URL', config.target.url)
        table.add_row('Mapping Database', config.database.url)
        table.add_row('History Database', config.database.history_url or config.database.url)
        table.add_row('Page Size', str(config.migration.page_size))
        table.add_row('Batch Size', str(config.migration.batch_size))
        table.add_row('Job Type', config.migration.job_type)
        table.add_row('Tenants', ', '.join(config.migration.tenant_ids) or '-')
        table.add_row('Resume Window', f'{config.migration.resume_window_seconds}s')

        console.print(table)

        engine = MigrationEngine(config)
        try:
            counts = engine.status()
        finally:
            engine.close()

        progress_table = Table(title='Migration Progress')
        progress_table.add_column('Entity Type', style='cyan')
        progress_table.add_column('Migrated', style='green')
        progress_table.add_column('Skipped', style='yellow')

        for entity_type, type_counts in counts.items():
            if not type_counts['migrated'] and not type_counts['skipped']:
                continue
            progress_table.add_row(
                entity_type.display_name,
                str(type_counts['migrated']),
                str(type_counts['skipped']),
            )

        if progress_table.row_count:
            console.print(progress_table)
        else:
            console.print('[yellow]Nothing has been migrated yet[/yellow]')

    except Exception as e:
        console.print(f'[red]✗[/red] Failed to load status: {e}')
        if ctx.obj.get('verbose'):
            console.print_exception()
        sys.exit(1)


@cli.command()
@click.confirmation_option(
    prompt='This deletes all mapping records and the next run starts over. Continue?'
)
@click.pass_context
def reset(ctx: click.Context) -> None:
    """Delete all mapping records."""
    try:
        config = _load_config(ctx)
        _setup_logging_with_config(ctx, config)

        engine = MigrationEngine(config)
        try:
            deleted = engine.reset()
        finally:
            engine.close()

        console.print(f'[green]✓[/green] Deleted {deleted} mapping records')

    except Exception as e:
        console.print(f'[red]✗[/red] Reset failed: {e}')
        if ctx.obj.get('verbose'):
            console.print_exception()
        sys.exit(1)


def _load_config(ctx: click.Context) -> Config:
    """Load configuration from file or environment."""
    config_path = ctx.obj.get('config_path')

    if config_path:
        if not Path(config_path).exists():
            raise FileNotFoundError(f'Configuration file not found: {config_path}')
        return Config.from_file(config_path)
    else:
        # Try to load from default locations
        default_paths = ['config.yaml', 'config.yml', '.camunda-migrate.yaml']
        for path in default_paths:
            if Path(path).exists():
                return Config.from_file(path)

        # Fall back to environment variables
        try:
            return Config.from_env()
        except Exception:
            raise FileNotFoundError(
                'No configuration found. Use --config to specify a file or run "camunda-migrate init" to create one.'
            )


def _setup_logging_with_config(ctx: click.Context, config: Config) -> None:
    """Setup logging with configuration from config file."""
    verbose = ctx.obj.get('verbose', False)

    # Verbose flag overrides the configured level
    log_level = 'DEBUG' if verbose else config.logging.level

    setup_logging(level=log_level, log_file=config.logging.file, log_format=config.logging.format)


def _parse_entity_types(names: Tuple[str, ...]) -> Optional[List[EntityType]]:
    if not names:
        return None
    return [EntityType.from_name(name) for name in names]


def _create_plan(
    runtime: bool,
    history: bool,
    identity: bool,
    entity_types: Tuple[str, ...],
    mode: MigratorMode,
    full_scan: bool,
) -> MigrationPlan:
    """Plan for the selected migrator families.

    With no family flag, the families owning the given entity types run,
    or only the runtime migrator when no type is given either.
    """
    types = _parse_entity_types(entity_types)

    if not (runtime or history or identity):
        if types is None:
            runtime = True
        else:
            runtime = any(t in EntityType.runtime_types() for t in types)
            history = any(t in EntityType.history_types() for t in types)
            identity = any(t in EntityType.identity_types() for t in types)

    return MigrationPlan(
        migrate_runtime=runtime,
        migrate_history=history,
        migrate_identity=identity,
        entity_types=types,
        mode=mode,
        full_scan=full_scan,
    )


def _run_migration(config: Config, plan: MigrationPlan) -> None:
    """Run the migration process with a progress spinner."""
    engine = MigrationEngine(config)

    try:
        with Progress(
            SpinnerColumn(),
            TextColumn('[progress.description]{task.description}'),
            console=console,
            transient=True,
        ) as progress:
            task = progress.add_task(f'[blue]Migration ({plan.mode.value}) in progress...')
            try:
                summary = engine.migrate(plan)
            except Exception as e:
                progress.update(task, description=f'[red]Failed: {e}')
                raise
    finally:
        engine.close()

    console.print('[green]✓[/green] Migration completed successfully')
    _display_migration_summary(summary)


def _display_migration_summary(summary: MigrationSummary) -> None:
    """Display migration summary results."""
    table = Table(title='Migration Summary')
    table.add_column('Entity Type', style='cyan')
    table.add_column('Migrated', style='green')
    table.add_column('Skipped', style='yellow')
    table.add_column('Already Migrated', style='blue')

    for entity_type, counts in summary.results_by_type.items():
        table.add_row(
            EntityType(entity_type).display_name,
            str(counts.get('migrated', 0)),
            str(counts.get('skipped', 0)),
            str(counts.get('already_migrated', 0)),
        )

    table.add_row(
        '[bold]Total[/bold]',
        str(summary.total_migrated),
        str(summary.total_skipped),
        str(summary.total_already_migrated),
    )

    console.print(table)

    if summary.completed_at:
        duration = summary.completed_at - summary.started_at
        console.print(f'\n[blue]Migration Duration:[/blue] {duration}')

    if summary.total_skipped:
        console.print(
            f'\n[yellow]{summary.total_skipped} entities were skipped. '
            f'Run "camunda-migrate list-skipped" for the reasons and '
            f'"camunda-migrate migrate --retry-skipped" once they are resolved.[/yellow]'
        )


def _display_records(
    title: str, records: Dict[EntityType, List[MappingRecord]], skipped: bool
) -> None:
    """Display mapping records grouped by entity type."""
    total = sum(len(r) for r in records.values())
    if not total:
        console.print(f'[yellow]{title}: none found[/yellow]')
        return

    table = Table(title=f'{title} ({total})')
    table.add_column('Entity Type', style='cyan')
    table.add_column('Source ID', style='blue')
    if skipped:
        table.add_column('Reason', style='yellow')
    else:
        table.add_column('Target Key', style='green')
    table.add_column('Created', style='magenta')

    for entity_type, type_records in records.items():
        for record in type_records:
            detail = record.skip_reason if skipped else record.target_key
            table.add_row(
                entity_type.display_name,
                record.source_id,
                '-' if detail is None else str(detail),
                format_date(record.create_time) or '-',
            )

    console.print(table)


def main() -> None:
    """Main entry point for the CLI application."""
    try:
        cli()
    except KeyboardInterrupt:
        console.print('\n[red]Migration interrupted by user[/red]')
        sys.exit(1)
    except Exception as e:
        console.print(f'[red]Error: {e}[/red]')
        sys.exit(1)


if __name__ == '__main__':
    main()
