"""
Discord webhook notifications for backup runs.
"""

import os
import re
import logging
from typing import List, Optional

import httpx

from backubrr.backup.executor import BackupResult


logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0  # seconds
DISCORD_MAX_LENGTH = 2000


class NotificationError(Exception):
    """Raised when a notification cannot be delivered."""
    pass


def redact_home(text: str, home: Optional[str] = None) -> str:
    """Replace the user's home directory prefix with '~'."""
    if home is None:
        home = os.environ.get('HOME', '')
    home = home.rstrip('/')
    if not home:
        return text
    # Only whole path components: /home/al must not match /home/alice
    return re.sub(re.escape(home) + r'(?=/|$|`|\s)', '~', text)


def format_summary(results: List[BackupResult], home: Optional[str] = None) -> str:
    """
    Build the notification text for a run.

    Args:
        results: Per-source backup results, in run order
        home: Home directory to redact (default: $HOME)

    Returns:
        Markdown text for Discord
    """
    lines = []
    for result in results:
        if result.succeeded:
            lines.append(
                f"Backup of **`{result.name}`** created successfully! "
                f"Archive saved to **`{result.archive_path}`**"
            )
        else:
            lines.append(f"Backup of **`{result.name}`** failed: {result.error_message}")

    if not lines:
        lines.append("No source directories configured. Nothing was backed up.")

    return redact_home('\n'.join(lines), home)


def send_to_discord_webhook(webhook_url: str, message: str, timeout: float = DEFAULT_TIMEOUT):
    """
    POST a message to a Discord webhook.

    Args:
        webhook_url: Discord webhook URL
        message: Message content (truncated to Discord's 2000 character limit)
        timeout: Request timeout in seconds

    Raises:
        NotificationError: On transport errors or a non-2xx response
    """
    if len(message) > DISCORD_MAX_LENGTH:
        message = message[:DISCORD_MAX_LENGTH - 3] + '...'

    try:
        response = httpx.post(
            webhook_url,
            json={'content': message},
            timeout=timeout
        )
    except httpx.HTTPError as e:
        raise NotificationError(f"Failed to send Discord notification: {e}")

    if not response.is_success:
        raise NotificationError(f"unexpected response status code {response.status_code}")

    logger.debug(f"Discord webhook responded with {response.status_code}")
