"""
Command-line interface for Backubrr.
"""

import signal
import logging
from contextlib import contextmanager

import click

from backubrr import configure_logging
from backubrr.config import BuildInfo, ConfigError, DEFAULT_CONFIG_PATH, load_config
from backubrr.backup.retention import SweepError
from backubrr.scheduler import RunLoop, SetupError
from backubrr.utils.crypto import EncryptionError, decrypt_file


logger = logging.getLogger(__name__)

CONTEXT_SETTINGS = dict(help_option_names=['-h', '--help'])


@click.group(invoke_without_command=True, context_settings=CONTEXT_SETTINGS)
@click.option('--config', 'config_path', default=DEFAULT_CONFIG_PATH, show_default=True,
              type=click.Path(dir_okay=False), help='Path to the configuration file.')
@click.option('--passphrase', default=None,
              help='Encrypt archives with this passphrase (instead of encryption_key).')
@click.option('--debug', is_flag=True, help='Enable debug logging.')
@click.pass_context
def cli(ctx, config_path, passphrase, debug):
    """
    Backubrr - a command-line tool for backing up files and directories.

    \b
    Configuration options:
      source_dirs        A list of directories to back up.
      output_dir         The directory where backup files are saved.
      retention_days     The number of days to retain backup files.
      interval           Run every X hours.
      encryption_key     Passphrase used to encrypt backup files.
      discord            Send notifications to Discord after a backup run.
      reload_config      Re-read the configuration file before every run.
      log_file           Also write logs to this file.
    """
    if ctx.invoked_subcommand is not None:
        return

    configure_logging(logging.DEBUG if debug else logging.INFO)

    try:
        config = load_config(config_path)
    except ConfigError as e:
        raise click.ClickException(str(e))

    if passphrase and config.encryption_key:
        raise click.UsageError(
            "--passphrase cannot be used when encryption_key is set in the configuration file"
        )

    if config.log_file:
        configure_logging(logging.DEBUG if debug else logging.INFO, config.log_file)

    loop = RunLoop(config_path, passphrase=passphrase, config=config)

    with _stop_on_signals(loop):
        try:
            loop.run()
        except ConfigError as e:
            raise click.ClickException(str(e))
        except SetupError as e:
            raise click.ClickException(str(e))
        except SweepError as e:
            raise click.ClickException(f"Error cleaning up old backups: {e}")


@cli.command()
def version():
    """Print version information."""
    click.echo(str(BuildInfo.from_environment()))


@cli.command()
@click.argument('encrypted_file', type=click.Path(exists=True, dir_okay=False))
@click.option('--output', '-o', type=click.Path(dir_okay=False), default=None,
              help='Where to write the decrypted archive (default: strip .enc).')
@click.option('--passphrase', prompt=True, hide_input=True,
              help='Passphrase the archive was encrypted with.')
def decrypt(encrypted_file, output, passphrase):
    """Decrypt an encrypted backup archive back to .tar.gz."""
    try:
        output_path = decrypt_file(encrypted_file, passphrase, output)
    except EncryptionError as e:
        raise click.ClickException(str(e))

    click.secho(f"Archive decrypted to {output_path}", fg='green')


@contextmanager
def _stop_on_signals(loop: RunLoop):
    """Stop the run loop on SIGINT/SIGTERM, restoring previous handlers on exit."""
    def handler(signum, frame):
        logger.info(f"Received signal {signum}, shutting down")
        loop.stop()

    previous = {}
    for signum in (signal.SIGINT, signal.SIGTERM):
        previous[signum] = signal.signal(signum, handler)

    try:
        yield
    finally:
        for signum, old_handler in previous.items():
            signal.signal(signum, old_handler)


def main():
    cli(prog_name='backubrr')


if __name__ == '__main__':
    main()
