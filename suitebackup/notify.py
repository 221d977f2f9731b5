"""Desktop notifications for suitebackup.

Uses osascript on macOS and notify-send elsewhere. A notification that
cannot be shown is logged and otherwise ignored.
"""

import logging
import subprocess
import sys
from typing import List, Optional

from suitebackup.config import NotificationConfig

logger = logging.getLogger(__name__)


MAX_MESSAGE_LENGTH = 100


class Notifier:
    """Sends desktop notifications for sync outcomes."""

    def __init__(self, config: Optional[NotificationConfig] = None, platform: Optional[str] = None):
        self.config = config or NotificationConfig()
        self.platform = platform or sys.platform

    def notify_success(self, file_name: str, has_differences: bool, duration_seconds: float) -> bool:
        """
        Send the success notification if enabled.

        Args:
            file_name: Name of the uploaded file
            has_differences: Whether the account version differed from the local one
            duration_seconds: Duration of the whole workflow

        Returns:
            True if the notification was sent
        """
        if not self.config.notify_on_success:
            return False

        detail = "Account version differs from local" if has_differences else "Account version matches local"
        message = f"{file_name}\n{detail}\nDuration: {self._format_duration(duration_seconds)}"
        return self._send_notification(title="suitebackup: Upload Complete", message=message)

    def notify_failure(self, error_message: str, duration_seconds: float) -> bool:
        """Send the failure notification if enabled."""
        if not self.config.notify_on_failure:
            return False

        if len(error_message) > MAX_MESSAGE_LENGTH:
            error_message = error_message[:MAX_MESSAGE_LENGTH - 3] + "..."

        message = f"Error: {error_message}\nDuration: {self._format_duration(duration_seconds)}"
        return self._send_notification(title="suitebackup: Upload Failed", message=message)

    def _command(self, title: str, message: str) -> List[str]:
        if self.platform == "darwin":
            escaped_title = title.replace("\\", "\\\\").replace('"', '\\"')
            escaped_message = message.replace("\\", "\\\\").replace('"', '\\"')
            script = f'display notification "{escaped_message}" with title "{escaped_title}" sound name "default"'
            return ["osascript", "-e", script]
        return ["notify-send", title, message]

    def _send_notification(self, title: str, message: str) -> bool:
        cmd = self._command(title, message)
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=5)
        except subprocess.TimeoutExpired:
            logger.warning("Notification timed out")
            return False
        except FileNotFoundError:
            logger.warning(f"{cmd[0]} not found - notifications not available")
            return False
        except OSError as e:
            logger.warning(f"Notification error: {e}")
            return False

        if result.returncode != 0:
            logger.warning(f"Notification failed: {result.stderr}")
            return False
        return True

    def _format_duration(self, seconds: float) -> str:
        if seconds < 60:
            return f"{seconds:.1f}s"
        minutes, secs = divmod(int(seconds), 60)
        return f"{minutes}m {secs}s"
