"""
Shared pytest fixtures for Backubrr tests.

This module provides fixtures for:
- Source directory trees (with hidden files and nested directories)
- Output directories and aged archive files
- Configuration files
- Mock fixtures for external services (Discord webhook, scheduler)
"""

import os
from datetime import datetime, timedelta
from unittest.mock import MagicMock, patch

import pytest
import yaml


def set_age(path, now, days):
    """Set a file's mtime to `days` days before `now`."""
    timestamp = (now - timedelta(days=days)).timestamp()
    os.utime(path, (timestamp, timestamp))


@pytest.fixture
def source_tree(tmp_path):
    """
    Create a source directory to back up.

    Creates project/ with:
    - a.txt
    - .hidden
    - sub/b.txt
    - sub/.secret
    - .git/config (hidden directory)
    - empty/ (empty directory)
    """
    source = tmp_path / 'data' / 'project'
    source.mkdir(parents=True)

    (source / 'a.txt').write_text('alpha')
    (source / '.hidden').write_text('hidden')

    sub = source / 'sub'
    sub.mkdir()
    (sub / 'b.txt').write_text('bravo')
    (sub / '.secret').write_text('secret')

    git = source / '.git'
    git.mkdir()
    (git / 'config').write_text('[core]')

    (source / 'empty').mkdir()

    return source


@pytest.fixture
def output_dir(tmp_path):
    """Output root for archives (not created)."""
    return tmp_path / 'backups'


@pytest.fixture
def aged_archives(tmp_path):
    """
    Create archives of different ages under an output directory.

    Returns (output_dir, now, paths) with paths keyed by name:
    - old: project_old.tar.gz, 10 days old
    - recent: project_recent.tar.gz, 1 day old
    - old_encrypted: nested/project_old.tar.gz.enc, 10 days old
    - old_other: notes.txt, 10 days old (not an archive)
    """
    out = tmp_path / 'backups'
    nested = out / 'nested'
    nested.mkdir(parents=True)

    now = datetime.now()
    paths = {
        'old': out / 'project_old.tar.gz',
        'recent': out / 'project_recent.tar.gz',
        'old_encrypted': nested / 'project_old.tar.gz.enc',
        'old_other': out / 'notes.txt',
    }
    ages = {'old': 10, 'recent': 1, 'old_encrypted': 10, 'old_other': 10}

    for key, path in paths.items():
        path.write_bytes(b'archive data')
        set_age(path, now, ages[key])

    return out, now, paths


@pytest.fixture
def write_config(tmp_path):
    """Factory writing a YAML config file and returning its path."""
    def _write(**options):
        config_path = tmp_path / 'config.yaml'
        config_path.write_text(yaml.safe_dump(options))
        return config_path

    return _write


@pytest.fixture
def mock_discord():
    """
    Mock httpx.post for Discord webhook calls.

    Responds with 204 No Content, like Discord does.
    """
    with patch('backubrr.notifications.httpx.post') as mock_post:
        response = MagicMock()
        response.status_code = 204
        response.is_success = True
        mock_post.return_value = response

        yield mock_post


@pytest.fixture
def mock_scheduler():
    """
    Mock APScheduler for testing the interval loop.
    """
    with patch('backubrr.scheduler.BackgroundScheduler') as mock_sched:
        scheduler_instance = MagicMock()
        mock_sched.return_value = scheduler_instance

        scheduler_instance.running = False
        scheduler_instance.get_jobs.return_value = []

        yield scheduler_instance
