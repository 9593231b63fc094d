"""
Run loop for Backubrr.

One iteration backs up every source directory in order, sends the Discord
summary and enforces the retention policy. With a positive interval the
next iteration is scheduled on APScheduler `interval` hours after the
previous one finished.

Fatal errors (configuration, output directory, retention sweep) stop the
loop and are re-raised from RunLoop.run(). A failing source or a failing
notification is logged and the iteration continues.
"""

import os
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import click
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.executors.pool import ThreadPoolExecutor

from backubrr.config import Config, load_config
from backubrr.backup.archive import BackupCancelled
from backubrr.backup.executor import BackupExecutor, BackupResult
from backubrr.backup.retention import SweepResult, sweep
from backubrr.notifications import NotificationError, format_summary, send_to_discord_webhook


logger = logging.getLogger(__name__)

ITERATION_JOB_ID = 'backup_iteration'


class SetupError(Exception):
    """Raised when the output directory cannot be prepared."""
    pass


@dataclass
class IterationReport:
    """What happened during one run iteration."""
    results: List[BackupResult] = field(default_factory=list)
    notified: bool = False
    sweep: Optional[SweepResult] = None
    cancelled: bool = False


class RunLoop:
    """
    Orchestrates backup iterations.

    States: idle -> backing up -> notifying -> sweeping -> (sleeping | done)
    """

    def __init__(self, config_path: str, passphrase: Optional[str] = None, config: Optional[Config] = None):
        """
        Initialize the run loop.

        Args:
            config_path: YAML config file, re-read per iteration when reload_config is set
            passphrase: Encryption passphrase overriding encryption_key
            config: Already loaded config (loaded from config_path if omitted)
        """
        self.config_path = config_path
        self.passphrase = passphrase
        self.config = config

        self.scheduler = None
        self.next_run_time = None
        self._stop = threading.Event()
        self._fatal_error = None

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def stop(self):
        """Request shutdown: ends the interval wait and cancels in-flight archives."""
        if not self._stop.is_set():
            logger.info("Stop requested")
        self._stop.set()

    def check_cancelled(self):
        """Cancellation check passed to the archive writer."""
        if self._stop.is_set():
            raise BackupCancelled("Backup cancelled by shutdown request")

    def run(self):
        """
        Run once, or forever on the configured interval until stop() is called.

        Raises:
            ConfigError, SetupError, SweepError: Fatal errors from an iteration
        """
        config = self._current_config()

        if config.interval <= 0:
            self.run_iteration()
            return

        self.scheduler = BackgroundScheduler(
            executors={'default': ThreadPoolExecutor(max_workers=1)},
            job_defaults={
                'coalesce': True,  # Combine multiple pending instances into one
                'max_instances': 1,  # Only one iteration at a time
                'misfire_grace_time': None  # A late iteration still runs
            },
            timezone='UTC'
        )
        self.scheduler.start()
        self._schedule_iteration(datetime.now(timezone.utc))

        try:
            while not self._stop.wait(1):
                pass
        finally:
            self.scheduler.shutdown(wait=True)
            logger.info("Scheduler stopped")

        if self._fatal_error is not None:
            raise self._fatal_error

    def run_iteration(self) -> IterationReport:
        """
        Back up all sources, notify, then sweep.

        Returns:
            IterationReport for this iteration

        Raises:
            ConfigError: If reloading the configuration fails
            SetupError: If the output directory cannot be created
            SweepError: If the retention sweep fails
        """
        config = self._current_config()
        passphrase = self.passphrase or config.encryption_key or None
        report = IterationReport()

        try:
            os.makedirs(config.output_dir, exist_ok=True)
        except OSError as e:
            raise SetupError(f"Failed to create output directory {config.output_dir}: {e}")

        for source_dir in config.source_dirs:
            click.secho(f"Backing up {source_dir}...", fg='blue')

            executor = BackupExecutor(
                source_dir,
                config.output_dir,
                passphrase=passphrase,
                cancellation_check=self.check_cancelled
            )

            try:
                result = executor.execute()
            except BackupCancelled:
                click.secho(f"Backup of {source_dir} cancelled", fg='yellow')
                report.results.append(executor.result)
                report.cancelled = True
                return report

            report.results.append(result)

            if result.succeeded:
                if result.encrypted:
                    click.secho(f"Archive encrypted successfully! Saved to {result.archive_path}", fg='green')
                else:
                    click.secho(f"Backup created successfully! Archive saved to {result.archive_path}", fg='green')
            else:
                click.secho(f"Backup of {source_dir} failed: {result.error_message}", fg='red', err=True)

        if config.discord:
            report.notified = self._notify(config.discord, report.results)

        click.secho("Cleaning up old backups...", fg='blue')
        report.sweep = sweep(config.output_dir, config.retention_days)
        if report.sweep.deleted_any:
            click.secho(f"Deleted {len(report.sweep.deleted_files)} old backup(s)", fg='green')
        else:
            click.echo("No old backups found. Cleanup not needed.")

        return report

    def _current_config(self) -> Config:
        if self.config is None or self.config.reload_config:
            self.config = load_config(self.config_path)
        return self.config

    def _notify(self, webhook_url: str, results: List[BackupResult]) -> bool:
        try:
            send_to_discord_webhook(webhook_url, format_summary(results))
        except NotificationError as e:
            logger.error(f"Error sending message to Discord: {e}")
            click.secho(f"Error sending message to Discord: {e}", fg='red', err=True)
            return False

        click.echo("Message sent to Discord successfully!")
        return True

    def _schedule_iteration(self, run_date: datetime):
        self.next_run_time = run_date
        self.scheduler.add_job(
            func=self._scheduled_iteration,
            trigger=DateTrigger(run_date=run_date),
            id=ITERATION_JOB_ID,
            name='Backup iteration',
            replace_existing=True
        )

    def _scheduled_iteration(self):
        """Scheduler job: one iteration, then schedule the next one."""
        try:
            report = self.run_iteration()
        except Exception as e:
            logger.error(f"Backup run failed: {e}")
            self._fatal_error = e
            self.stop()
            return

        if report.cancelled or self.stopped:
            return

        interval = self.config.interval
        if interval <= 0:
            # reload_config turned the loop off
            self.stop()
            return

        next_run = datetime.now(timezone.utc) + timedelta(hours=interval)
        click.secho(
            f"Next backup will run at {next_run.astimezone().strftime('%Y-%m-%d %H:%M:%S')}",
            fg='cyan'
        )
        self._schedule_iteration(next_run)
