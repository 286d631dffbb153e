"""Tests for CLI interface."""

import os
import tempfile
from datetime import datetime

import pytest
from unittest.mock import Mock, patch
from click.testing import CliRunner

from camunda_migrate.cli.main import (
    _create_plan,
    _load_config,
    cli,
    init,
    list_skipped,
    migrate,
    reset,
    status,
    validate,
)
from camunda_migrate.config.config import Config
from camunda_migrate.migration.orchestrator import MigrationSummary
from camunda_migrate.migration.strategy import MigratorMode
from camunda_migrate.persistence.mapping_store import MappingRecord
from camunda_migrate.persistence.models import EntityType


def mock_config():
    return Config(
        source={'url': 'http://c7.example.com/engine-rest'},
        target={'url': 'http://c8.example.com'},
        database={'url': 'sqlite://'},
    )


class TestCLI:
    """Test CLI commands."""

    def setup_method(self):
        """Set up test fixtures."""
        self.runner = CliRunner()

    def test_cli_help(self):
        """Test CLI help command."""
        result = self.runner.invoke(cli, ['--help'])

        assert result.exit_code == 0
        assert 'Camunda Migration Tool' in result.output
        for command in ('init', 'migrate', 'validate', 'status', 'list-skipped', 'reset'):
            assert command in result.output

    def test_cli_version(self):
        """Test CLI version command."""
        result = self.runner.invoke(cli, ['--version'])

        assert result.exit_code == 0
        assert '0.1.0' in result.output

    def test_init_command(self):
        """Test init command."""
        with tempfile.TemporaryDirectory() as temp_dir:
            config_path = os.path.join(temp_dir, 'test_config.yaml')

            result = self.runner.invoke(init, ['--output', config_path])

            assert result.exit_code == 0
            assert 'Configuration template created' in result.output
            assert os.path.exists(config_path)

            with open(config_path, 'r') as f:
                content = f.read()
                assert 'source:' in content
                assert 'target:' in content
                assert 'migration:' in content

    @patch('camunda_migrate.cli.main._load_config')
    @patch('camunda_migrate.cli.main._run_migration')
    def test_migrate_command_success(self, mock_run_migration, mock_load_config):
        """Test successful migrate command."""
        mock_load_config.return_value = mock_config()

        result = self.runner.invoke(migrate, obj={})

        assert result.exit_code == 0
        assert 'Starting migration process' in result.output
        plan = mock_run_migration.call_args[0][1]
        assert plan.migrate_runtime is True
        assert plan.migrate_history is False
        assert plan.mode == MigratorMode.MIGRATE

    @patch('camunda_migrate.cli.main._load_config')
    @patch('camunda_migrate.cli.main._run_migration')
    def test_migrate_command_retry(self, mock_run_migration, mock_load_config):
        """Test migrate command retrying skipped history."""
        mock_load_config.return_value = mock_config()

        result = self.runner.invoke(migrate, ['--history', '--retry-skipped'], obj={})

        assert result.exit_code == 0
        assert 'Retrying previously skipped entities' in result.output
        plan = mock_run_migration.call_args[0][1]
        assert plan.migrate_history is True
        assert plan.migrate_runtime is False
        assert plan.mode == MigratorMode.RETRY_SKIPPED

    @patch('camunda_migrate.cli.main._load_config')
    def test_migrate_command_config_not_found(self, mock_load_config):
        """Test migrate command when config is not found."""
        mock_load_config.side_effect = FileNotFoundError('Configuration file not found')

        result = self.runner.invoke(migrate, obj={})

        assert result.exit_code == 1
        assert 'Migration failed' in result.output

    @patch('camunda_migrate.cli.main._load_config')
    def test_validate_command_success(self, mock_load_config):
        """Test successful validate command."""
        mock_load_config.return_value = mock_config()
        mock_engine = Mock()

        with patch('camunda_migrate.cli.main.MigrationEngine', return_value=mock_engine):
            result = self.runner.invoke(validate, obj={})

        assert result.exit_code == 0
        assert 'Connectivity validation passed' in result.output
        mock_engine._test_connectivity.assert_called_once()
        mock_engine.close.assert_called_once()

    @patch('camunda_migrate.cli.main._load_config')
    def test_validate_command_failure(self, mock_load_config):
        """Test validate command failure."""
        mock_load_config.return_value = mock_config()
        mock_engine = Mock()
        mock_engine._test_connectivity.side_effect = ConnectionError(
            'Cannot connect to target Camunda 8 cluster'
        )

        with patch('camunda_migrate.cli.main.MigrationEngine', return_value=mock_engine):
            result = self.runner.invoke(validate, obj={})

        assert result.exit_code == 1
        assert 'Validation failed' in result.output

    @patch('camunda_migrate.cli.main._load_config')
    def test_status_command_success(self, mock_load_config):
        """Test successful status command."""
        mock_load_config.return_value = mock_config()
        mock_engine = Mock()
        mock_engine.status.return_value = {
            EntityType.RUNTIME_PROCESS_INSTANCE: {'migrated': 3, 'skipped': 1},
            EntityType.TENANT: {'migrated': 0, 'skipped': 0},
        }

        with patch('camunda_migrate.cli.main.MigrationEngine', return_value=mock_engine):
            result = self.runner.invoke(status, obj={})

        assert result.exit_code == 0
        assert 'Migration Configuration' in result.output
        assert 'c7.example.com' in result.output
        assert 'Migration Progress' in result.output

    @patch('camunda_migrate.cli.main._load_config')
    def test_status_command_failure(self, mock_load_config):
        """Test status command failure."""
        mock_load_config.side_effect = Exception('Failed to load status')

        result = self.runner.invoke(status, obj={})

        assert result.exit_code == 1
        assert 'Failed to load status' in result.output

    @patch('camunda_migrate.cli.main._load_config')
    def test_list_skipped(self, mock_load_config):
        """Test skipped entities are listed with their reasons."""
        mock_load_config.return_value = mock_config()
        mock_engine = Mock()
        mock_engine.list_skipped.return_value = {
            EntityType.HISTORY_INCIDENT: [
                MappingRecord(
                    source_id='inc-1',
                    entity_type=EntityType.HISTORY_INCIDENT,
                    create_time=datetime(2024, 1, 31, 10, 0),
                    skip_reason='Missing job reference',
                )
            ]
        }

        with patch('camunda_migrate.cli.main.MigrationEngine', return_value=mock_engine):
            result = self.runner.invoke(
                list_skipped, ['--entity-type', 'history_incident'], obj={}
            )

        assert result.exit_code == 0
        assert 'inc-1' in result.output
        mock_engine.list_skipped.assert_called_once_with([EntityType.HISTORY_INCIDENT])

    @patch('camunda_migrate.cli.main._load_config')
    def test_reset_requires_confirmation(self, mock_load_config):
        """Test reset asks before deleting mapping records."""
        mock_load_config.return_value = mock_config()
        mock_engine = Mock()
        mock_engine.reset.return_value = 7

        with patch('camunda_migrate.cli.main.MigrationEngine', return_value=mock_engine):
            aborted = self.runner.invoke(reset, obj={}, input='n\n')
            confirmed = self.runner.invoke(reset, ['--yes'], obj={})

        assert aborted.exit_code == 1
        assert 'Deleted 7 mapping records' in confirmed.output
        mock_engine.reset.assert_called_once()

    def test_verbose_flag(self):
        """Test verbose flag."""
        result = self.runner.invoke(cli, ['--verbose', '--help'])

        assert result.exit_code == 0

    @patch('camunda_migrate.cli.main.MigrationEngine')
    def test_run_migration_function(self, mock_engine_class):
        """Test the _run_migration function."""
        from camunda_migrate.cli.main import _run_migration
        from camunda_migrate.migration.orchestrator import MigrationPlan

        mock_engine = Mock()
        mock_engine.migrate.return_value = MigrationSummary(
            mode=MigratorMode.MIGRATE,
            started_at=datetime(2024, 1, 31, 10, 0),
            completed_at=datetime(2024, 1, 31, 10, 5),
            total_migrated=2,
            total_skipped=1,
            results_by_type={
                'RUNTIME_PROCESS_INSTANCE': {'migrated': 2, 'skipped': 1, 'already_migrated': 0}
            },
        )
        mock_engine_class.return_value = mock_engine

        _run_migration(mock_config(), MigrationPlan())

        mock_engine.migrate.assert_called_once()
        mock_engine.close.assert_called_once()


class TestCreatePlan:
    """Test how command line flags become a migration plan."""

    def test_entity_types_select_families(self):
        """Test families follow the requested types when no flag is given."""
        plan = _create_plan(
            False, False, False, ('TENANT', 'history_variable'), MigratorMode.MIGRATE, False
        )

        assert plan.migrate_identity is True
        assert plan.migrate_history is True
        assert plan.migrate_runtime is False
        assert plan.entity_types == [EntityType.TENANT, EntityType.HISTORY_VARIABLE]

    def test_explicit_flags(self):
        """Test family flags are taken as given."""
        plan = _create_plan(True, True, False, (), MigratorMode.MIGRATE, True)

        assert plan.migrate_runtime is True
        assert plan.migrate_history is True
        assert plan.migrate_identity is False
        assert plan.entity_types is None
        assert plan.full_scan is True


class TestConfigLoading:
    """Test configuration loading functions."""

    @patch('camunda_migrate.config.config.Config.from_file')
    def test_load_config_with_file(self, mock_from_file):
        """Test loading config from specified file."""
        mock_from_file.return_value = Mock(spec=Config)
        mock_ctx = Mock()
        mock_ctx.obj = {'config_path': '/path/to/config.yaml'}

        with patch('pathlib.Path.exists', return_value=True):
            config = _load_config(mock_ctx)

        assert config == mock_from_file.return_value
        mock_from_file.assert_called_once_with('/path/to/config.yaml')

    @patch('camunda_migrate.config.config.Config.from_env')
    def test_load_config_from_env(self, mock_from_env):
        """Test loading config from environment variables."""
        mock_from_env.return_value = Mock(spec=Config)
        mock_ctx = Mock()
        mock_ctx.obj = {}

        with patch('pathlib.Path.exists', return_value=False):
            config = _load_config(mock_ctx)

        assert config == mock_from_env.return_value
        mock_from_env.assert_called_once()

    def test_load_config_not_found(self):
        """Test loading config when no config is found."""
        mock_ctx = Mock()
        mock_ctx.obj = {}

        with patch('pathlib.Path.exists', return_value=False):
            with patch(
                'camunda_migrate.config.config.Config.from_env',
                side_effect=Exception(),
            ):
                with pytest.raises(FileNotFoundError):
                    _load_config(mock_ctx)
