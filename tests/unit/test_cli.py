"""
Unit tests for the command-line interface (backubrr/cli.py).
"""

import os
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from backubrr.cli import cli
from backubrr.utils.crypto import encrypt_file


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture(autouse=True)
def fast_kdf():
    with patch('backubrr.utils.crypto.KDF_ITERATIONS', 1000):
        yield


class TestRunCommand:
    """Test the default backup run."""

    def test_help(self, runner):
        result = runner.invoke(cli, ['-h'])

        assert result.exit_code == 0
        assert 'source_dirs' in result.output
        assert 'retention_days' in result.output

    def test_single_run(self, runner, source_tree, output_dir, write_config):
        config_path = write_config(source_dirs=[str(source_tree)], output_dir=str(output_dir))

        result = runner.invoke(cli, ['--config', str(config_path)])

        assert result.exit_code == 0, result.output
        archives = os.listdir(output_dir)
        assert len(archives) == 1
        assert archives[0].startswith('project_')
        assert archives[0].endswith('.tar.gz')
        assert 'Backup created successfully!' in result.output

    def test_single_run_with_passphrase(self, runner, source_tree, output_dir, write_config):
        config_path = write_config(source_dirs=[str(source_tree)], output_dir=str(output_dir))

        result = runner.invoke(cli, ['--config', str(config_path), '--passphrase', 'secret'])

        assert result.exit_code == 0, result.output
        assert all(name.endswith('.tar.gz.enc') for name in os.listdir(output_dir))

    def test_missing_config(self, runner, tmp_path):
        result = runner.invoke(cli, ['--config', str(tmp_path / 'missing.yaml')])

        assert result.exit_code == 1
        assert 'not found' in result.output

    def test_invalid_config(self, runner, tmp_path):
        config_path = tmp_path / 'config.yaml'
        config_path.write_text('interval: -2\n')

        result = runner.invoke(cli, ['--config', str(config_path)])

        assert result.exit_code == 1
        assert 'interval' in result.output

    def test_passphrase_conflicts_with_encryption_key(self, runner, output_dir, write_config):
        config_path = write_config(source_dirs=[], output_dir=str(output_dir), encryption_key='secret')

        result = runner.invoke(cli, ['--config', str(config_path), '--passphrase', 'other'])

        assert result.exit_code == 2
        assert 'encryption_key' in result.output

    def test_failed_source_still_exits_zero(self, runner, tmp_path, output_dir, write_config):
        """Per-source failures are reported, not fatal."""
        config_path = write_config(source_dirs=[str(tmp_path / 'missing')], output_dir=str(output_dir))

        result = runner.invoke(cli, ['--config', str(config_path)])

        assert result.exit_code == 0
        assert 'failed' in result.output

    @patch('backubrr.scheduler.sweep')
    def test_sweep_failure_exits_nonzero(self, mock_sweep, runner, source_tree, output_dir, write_config):
        from backubrr.backup.retention import SweepError

        mock_sweep.side_effect = SweepError("Failed to delete x.tar.gz: denied")
        config_path = write_config(source_dirs=[str(source_tree)], output_dir=str(output_dir))

        result = runner.invoke(cli, ['--config', str(config_path)])

        assert result.exit_code == 1
        assert 'Error cleaning up old backups' in result.output

    def test_log_file(self, runner, source_tree, output_dir, write_config, tmp_path):
        log_file = tmp_path / 'logs' / 'backubrr.log'
        config_path = write_config(
            source_dirs=[str(source_tree)],
            output_dir=str(output_dir),
            log_file=str(log_file)
        )

        result = runner.invoke(cli, ['--config', str(config_path)])

        assert result.exit_code == 0, result.output
        assert log_file.exists()


class TestVersionCommand:
    def test_version_from_environment(self, runner):
        env = {
            'BACKUBRR_VERSION': '2.0.0',
            'BACKUBRR_COMMIT': 'abcdef1234567',
            'BACKUBRR_DATE': '2024-01-15'
        }

        result = runner.invoke(cli, ['version'], env=env)

        assert result.exit_code == 0
        assert result.output.strip() == 'Backubrr 2.0.0 abcdef1 2024-01-15'

    def test_version_does_not_need_config(self, runner, tmp_path):
        result = runner.invoke(cli, ['--config', str(tmp_path / 'missing.yaml'), 'version'])

        assert result.exit_code == 0
        assert result.output.startswith('Backubrr ')


class TestDecryptCommand:
    """Test decrypting archives."""

    def test_decrypt(self, runner, tmp_path):
        archive = tmp_path / 'project.tar.gz'
        archive.write_bytes(b'archive bytes')
        encrypted = encrypt_file(str(archive), 'secret')
        archive.unlink()

        result = runner.invoke(cli, ['decrypt', encrypted, '--passphrase', 'secret'])

        assert result.exit_code == 0, result.output
        assert archive.read_bytes() == b'archive bytes'
        assert 'Archive decrypted to' in result.output

    def test_decrypt_to_output(self, runner, tmp_path):
        archive = tmp_path / 'project.tar.gz'
        archive.write_bytes(b'archive bytes')
        encrypted = encrypt_file(str(archive), 'secret')
        target = tmp_path / 'restored.tar.gz'

        result = runner.invoke(cli, ['decrypt', encrypted, '-o', str(target), '--passphrase', 'secret'])

        assert result.exit_code == 0, result.output
        assert target.read_bytes() == b'archive bytes'

    def test_wrong_passphrase(self, runner, tmp_path):
        archive = tmp_path / 'project.tar.gz'
        archive.write_bytes(b'archive bytes')
        encrypted = encrypt_file(str(archive), 'secret')
        archive.unlink()

        result = runner.invoke(cli, ['decrypt', encrypted, '--passphrase', 'wrong'])

        assert result.exit_code == 1
        assert 'Wrong passphrase' in result.output
        assert not archive.exists()

    def test_passphrase_prompt(self, runner, tmp_path):
        archive = tmp_path / 'project.tar.gz'
        archive.write_bytes(b'archive bytes')
        encrypted = encrypt_file(str(archive), 'secret')
        archive.unlink()

        result = runner.invoke(cli, ['decrypt', encrypted], input='secret\n')

        assert result.exit_code == 0, result.output
        assert archive.exists()
