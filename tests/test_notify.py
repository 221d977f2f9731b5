"""Tests for desktop notifications."""

import subprocess
from unittest.mock import patch

from hypothesis import given
from hypothesis import strategies as st

from suitebackup.config import NotificationConfig
from suitebackup.notify import MAX_MESSAGE_LENGTH, Notifier


def ok(*args, **kwargs):
    return subprocess.CompletedProcess(args=args, returncode=0, stdout="", stderr="")


class TestNotifier:

    def test_failure_sent_by_default(self):
        notifier = Notifier(platform="linux")
        with patch("suitebackup.notify.subprocess.run", side_effect=ok) as run:
            assert notifier.notify_failure("Upload failed: denied", 2.5) is True

        cmd = run.call_args.args[0]
        assert cmd[0] == "notify-send"
        assert cmd[1] == "suitebackup: Upload Failed"
        assert "Error: Upload failed: denied" in cmd[2]
        assert "Duration: 2.5s" in cmd[2]

    def test_success_disabled_by_default(self):
        notifier = Notifier(platform="linux")
        with patch("suitebackup.notify.subprocess.run") as run:
            assert notifier.notify_success("util.js", True, 1.0) is False
        run.assert_not_called()

    def test_success_when_enabled(self):
        notifier = Notifier(NotificationConfig(notify_on_success=True), platform="linux")
        with patch("suitebackup.notify.subprocess.run", side_effect=ok) as run:
            assert notifier.notify_success("util.js", True, 75) is True

        message = run.call_args.args[0][2]
        assert "util.js" in message
        assert "Account version differs from local" in message
        assert "Duration: 1m 15s" in message

    def test_failure_disabled(self):
        notifier = Notifier(NotificationConfig(notify_on_failure=False), platform="linux")
        with patch("suitebackup.notify.subprocess.run") as run:
            assert notifier.notify_failure("boom", 1.0) is False
        run.assert_not_called()

    def test_macos_uses_osascript(self):
        notifier = Notifier(platform="darwin")
        with patch("suitebackup.notify.subprocess.run", side_effect=ok) as run:
            notifier.notify_failure('bad "quote"', 1.0)

        cmd = run.call_args.args[0]
        assert cmd[:2] == ["osascript", "-e"]
        assert 'bad \\"quote\\"' in cmd[2]
        assert 'with title "suitebackup: Upload Failed"' in cmd[2]

    def test_missing_tool_is_not_fatal(self):
        notifier = Notifier(platform="linux")
        with patch("suitebackup.notify.subprocess.run", side_effect=FileNotFoundError()):
            assert notifier.notify_failure("boom", 1.0) is False

    def test_timeout_is_not_fatal(self):
        notifier = Notifier(platform="linux")
        with patch(
            "suitebackup.notify.subprocess.run",
            side_effect=subprocess.TimeoutExpired(cmd="notify-send", timeout=5),
        ):
            assert notifier.notify_failure("boom", 1.0) is False

    def test_nonzero_exit(self):
        notifier = Notifier(platform="linux")
        failed = subprocess.CompletedProcess(args=[], returncode=1, stdout="", stderr="no display")
        with patch("suitebackup.notify.subprocess.run", return_value=failed):
            assert notifier.notify_failure("boom", 1.0) is False


class TestMessageTruncation:

    @given(error=st.text(alphabet=st.characters(blacklist_characters="\n"), max_size=400))
    def test_error_text_is_capped(self, error):
        notifier = Notifier(platform="linux")
        with patch("suitebackup.notify.subprocess.run", side_effect=ok) as run:
            notifier.notify_failure(error, 1.0)

        first_line = run.call_args.args[0][2].split("\n")[0]
        shown = first_line[len("Error: "):]
        if len(error) > MAX_MESSAGE_LENGTH:
            assert len(shown) == MAX_MESSAGE_LENGTH
            assert shown == error[:MAX_MESSAGE_LENGTH - 3] + "..."
        else:
            assert shown == error
