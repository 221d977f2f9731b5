"""Tests for the suitecloud CLI gateway.

subprocess.run is patched throughout; no real suitecloud executable is
needed.
"""

import subprocess
from pathlib import Path
from unittest.mock import patch

import pytest

from suitebackup.accounts import AccountInfo
from suitebackup.config import Configuration, RetryConfig, SuiteCloudConfig
from suitebackup.suitecloud import (
    NOT_SUITESCRIPT_ERROR,
    SuiteCloudCLI,
    SuiteCloudError,
    parse_account_list,
    parse_auth_id,
    to_cabinet_path,
)


MANAGEAUTH_OUTPUT = """\
Account credentials were found for this project.
ID: acme-prod
Account: ACME Corp
"""

ACCOUNT_LIST_OUTPUT = """\
prod | ACME Corp (1234567) | https://1234567.app.netsuite.com
sb1 | Account: ACME Sandbox | 1234567_SB1 | Role: Administrator | https://1234567-sb1.app.netsuite.com
Select an account to continue
"""


def completed(returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess(args=["suitecloud"], returncode=returncode, stdout=stdout, stderr=stderr)


@pytest.fixture
def project(tmp_path):
    scripts = tmp_path / "src" / "FileCabinet" / "SuiteScripts" / "lib"
    scripts.mkdir(parents=True)
    script = scripts / "util.js"
    script.write_text("define([], () => ({}));\n")
    return tmp_path, script


class TestParseAuthId:

    def test_extracts_id(self):
        assert parse_auth_id(MANAGEAUTH_OUTPUT) == "acme-prod"

    def test_requires_credentials_marker(self):
        assert parse_auth_id("ID: acme-prod") is None

    def test_empty_output(self):
        assert parse_auth_id("") is None


class TestParseAccountList:

    def test_parses_both_line_shapes(self):
        accounts = parse_account_list(ACCOUNT_LIST_OUTPUT)

        assert accounts["prod"] == AccountInfo(
            name="ACME Corp",
            id="1234567",
            url="https://1234567.app.netsuite.com",
        )
        assert accounts["sb1"] == AccountInfo(
            name="ACME Sandbox",
            id="1234567_SB1",
            url="https://1234567-sb1.app.netsuite.com",
        )

    def test_ignores_lines_without_separator(self):
        assert set(parse_account_list(ACCOUNT_LIST_OUTPUT)) == {"prod", "sb1"}


class TestToCabinetPath:

    def test_file_cabinet_path(self, project):
        root, script = project
        assert to_cabinet_path(root, script) == "SuiteScripts/lib/util.js"

    def test_not_a_suitescript(self, tmp_path):
        other = tmp_path / "src" / "Objects" / "customscript.xml"
        assert to_cabinet_path(tmp_path, other) is None


class TestSuiteCloudCLI:

    def test_upload_runs_file_upload(self, project):
        root, script = project
        cli = SuiteCloudCLI(root)
        with patch("suitebackup.suitecloud.subprocess.run", return_value=completed(stdout="Uploaded")) as run:
            result = cli.upload_file(script)

        assert result.success
        cmd = run.call_args.args[0]
        assert cmd == ["suitecloud", "file:upload", "--paths", "SuiteScripts/lib/util.js"]
        assert run.call_args.kwargs["cwd"] == str(root)

    def test_import_uses_absolute_cabinet_path(self, project):
        root, script = project
        cli = SuiteCloudCLI(root, executable="/opt/suitecloud")
        with patch("suitebackup.suitecloud.subprocess.run", return_value=completed()) as run:
            cli.import_file(script)

        assert run.call_args.args[0] == ["/opt/suitecloud", "file:import", "--paths", "/SuiteScripts/lib/util.js"]

    def test_non_suitescript_is_rejected_without_running(self, tmp_path):
        other = tmp_path / "notes.txt"
        other.write_text("x")
        cli = SuiteCloudCLI(tmp_path)
        with patch("suitebackup.suitecloud.subprocess.run") as run:
            result = cli.upload_file(other)

        assert not result.success
        assert result.error == NOT_SUITESCRIPT_ERROR
        run.assert_not_called()

    def test_nonzero_exit_is_failure(self, project):
        root, script = project
        cli = SuiteCloudCLI(root)
        with patch("suitebackup.suitecloud.subprocess.run", return_value=completed(1, stderr="Permission denied")):
            result = cli.upload_file(script)

        assert not result.success
        assert result.error == "Permission denied"
        assert result.return_code == 1

    def test_timeout_is_failure(self, project):
        root, script = project
        cli = SuiteCloudCLI(root, timeout_seconds=7)
        with patch(
            "suitebackup.suitecloud.subprocess.run",
            side_effect=subprocess.TimeoutExpired(cmd="suitecloud", timeout=7),
        ):
            result = cli.upload_file(script)

        assert not result.success
        assert result.error == "Command timed out after 7 seconds"

    def test_missing_executable_raises(self, project):
        root, script = project
        cli = SuiteCloudCLI(root, executable="no-such-suitecloud")
        with patch("suitebackup.suitecloud.subprocess.run", side_effect=FileNotFoundError()):
            with pytest.raises(SuiteCloudError, match="no-such-suitecloud"):
                cli.upload_file(script)

    def test_missing_project_root(self, tmp_path):
        cli = SuiteCloudCLI(tmp_path / "gone")
        with patch("suitebackup.suitecloud.subprocess.run") as run:
            result = cli.run_command(["account:manageauth"])
        assert not result.success
        assert result.error == "No project root directory found"
        run.assert_not_called()

    def test_transient_failure_is_retried(self, project):
        root, script = project
        cli = SuiteCloudCLI(root, max_retries=2, retry_delay_seconds=0)
        responses = [completed(1, stderr="Error: read ECONNRESET"), completed(stdout="Uploaded")]
        with patch("suitebackup.suitecloud.subprocess.run", side_effect=responses) as run:
            result = cli.upload_file(script)

        assert result.success
        assert run.call_count == 2

    def test_permanent_failure_is_not_retried(self, project):
        root, script = project
        cli = SuiteCloudCLI(root, max_retries=2, retry_delay_seconds=0)
        with patch("suitebackup.suitecloud.subprocess.run", return_value=completed(1, stderr="Access denied")) as run:
            result = cli.upload_file(script)

        assert not result.success
        assert run.call_count == 1

    def test_detect_auth_id(self, project):
        root, _ = project
        cli = SuiteCloudCLI(root)
        with patch("suitebackup.suitecloud.subprocess.run", return_value=completed(stdout=MANAGEAUTH_OUTPUT)) as run:
            assert cli.detect_auth_id() == "acme-prod"
        assert run.call_args.args[0] == ["suitecloud", "account:manageauth"]

    def test_detect_auth_id_on_failure(self, project):
        root, _ = project
        cli = SuiteCloudCLI(root)
        with patch("suitebackup.suitecloud.subprocess.run", return_value=completed(1, stderr="not set up")):
            assert cli.detect_auth_id() is None

    def test_list_accounts(self, project):
        root, _ = project
        cli = SuiteCloudCLI(root)
        with patch("suitebackup.suitecloud.subprocess.run", return_value=completed(stdout=ACCOUNT_LIST_OUTPUT)) as run:
            accounts = cli.list_accounts()
        assert set(accounts) == {"prod", "sb1"}
        assert run.call_args.args[0] == ["suitecloud", "account:manageauth", "--list"]

    def test_from_config(self, tmp_path):
        config = Configuration(
            project_root=tmp_path,
            suitecloud=SuiteCloudConfig(executable="sc", command_timeout_seconds=42),
            retry=RetryConfig(retry_count=4, retry_delay_seconds=0.5),
        )
        cli = SuiteCloudCLI.from_config(config)
        assert cli.project_root == tmp_path
        assert cli.executable == "sc"
        assert cli.timeout_seconds == 42
        assert cli.max_retries == 4
        assert cli.retry_delay_seconds == 0.5
