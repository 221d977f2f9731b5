"""Tests for configuration management."""

from pathlib import Path

import hypothesis.strategies as st
import pytest
from hypothesis import given

from suitebackup.config import (
    Configuration,
    ConfigurationError,
    LoggingConfig,
    NotificationConfig,
    RestoreConfig,
    RetentionConfig,
    RetryConfig,
    SuiteCloudConfig,
    ValidationError,
    create_default_config,
    format_config,
    parse_config,
    parse_config_string,
    resolve_backup_root,
)


# Path segments without characters that need TOML escaping beyond quotes
valid_path_str = st.text(
    alphabet=st.characters(
        whitelist_categories=("L", "N"),
        whitelist_characters="-_. ",
    ),
    min_size=1,
    max_size=30,
).filter(lambda s: s.strip() and s.strip(".") and not s.startswith("~"))

valid_auth_id = st.from_regex(r"[A-Za-z][A-Za-z0-9_\-]{0,20}", fullmatch=True)


@st.composite
def configurations(draw):
    """Generate valid Configuration instances."""
    return Configuration(
        project_root=Path("/projects") / draw(valid_path_str),
        backup_directory=Path(draw(valid_path_str)),
        default_auth_id=draw(st.one_of(st.none(), valid_auth_id)),
        suitecloud=SuiteCloudConfig(
            executable=draw(st.sampled_from(["suitecloud", "/usr/local/bin/suitecloud"])),
            command_timeout_seconds=draw(st.integers(min_value=1, max_value=3600)),
        ),
        restore=RestoreConfig(
            timeout_seconds=draw(st.integers(min_value=1, max_value=600)),
            large_file_warning_bytes=draw(st.integers(min_value=1, max_value=10**9)),
        ),
        retention=RetentionConfig(max_versions_per_file=draw(st.integers(min_value=0, max_value=100))),
        logging=LoggingConfig(
            level=draw(st.sampled_from(["DEBUG", "INFO", "WARNING", "ERROR"])),
            log_file=Path("/tmp") / draw(valid_path_str),
            error_log_file=Path("/tmp") / draw(valid_path_str),
            log_max_size_mb=draw(st.integers(min_value=1, max_value=100)),
            log_backup_count=draw(st.integers(min_value=0, max_value=20)),
        ),
        retry=RetryConfig(
            retry_count=draw(st.integers(min_value=0, max_value=10)),
            retry_delay_seconds=draw(st.sampled_from([0.5, 1.0, 2.0, 10.0])),
        ),
        notifications=NotificationConfig(
            notify_on_success=draw(st.booleans()),
            notify_on_failure=draw(st.booleans()),
        ),
    )


class TestConfigRoundTrip:
    """format_config() output parses back to an equal Configuration."""

    @given(config=configurations())
    def test_format_then_parse_preserves_config(self, config: Configuration):
        parsed = parse_config_string(format_config(config))
        assert parsed == config


class TestParseConfigString:
    """Tests for parse_config_string."""

    def test_minimal_config_uses_defaults(self):
        config = parse_config_string('[main]\nproject_root = "/work/acme"\n')

        assert config.project_root == Path("/work/acme")
        assert config.backup_directory == Path("backups")
        assert config.default_auth_id is None
        assert config.suitecloud.executable == "suitecloud"
        assert config.restore.timeout_seconds == 120
        assert config.restore.large_file_warning_bytes == 1024 * 1024
        assert config.retention.max_versions_per_file == 0
        assert config.retry.retry_count == 2
        assert config.notifications.notify_on_failure is True
        assert config.notifications.notify_on_success is False

    def test_main_keys_at_root_are_accepted(self):
        config = parse_config_string('project_root = "/work/acme"\ndefault_auth_id = "prod"\n')
        assert config.project_root == Path("/work/acme")
        assert config.default_auth_id == "prod"

    def test_missing_project_root_raises(self):
        with pytest.raises(ConfigurationError, match="project_root"):
            parse_config_string('[main]\nbackup_directory = "b"\n')

    def test_invalid_toml_raises(self):
        with pytest.raises(ConfigurationError, match="Invalid TOML"):
            parse_config_string("[main\nproject_root = ")

    def test_wrong_type_raises_validation_error(self):
        with pytest.raises(ValidationError, match="restore.timeout_seconds"):
            parse_config_string('[main]\nproject_root = "/p"\n[restore]\ntimeout_seconds = "soon"\n')

    def test_bool_rejected_where_int_expected(self):
        with pytest.raises(ValidationError, match="expected int, got bool"):
            parse_config_string('[main]\nproject_root = "/p"\n[retention]\nmax_versions_per_file = true\n')

    def test_negative_retention_rejected(self):
        with pytest.raises(ValidationError, match="zero or positive"):
            parse_config_string('[main]\nproject_root = "/p"\n[retention]\nmax_versions_per_file = -1\n')

    def test_empty_default_auth_id_is_none(self):
        config = parse_config_string('[main]\nproject_root = "/p"\ndefault_auth_id = ""\n')
        assert config.default_auth_id is None

    def test_home_is_expanded(self):
        config = parse_config_string('[main]\nproject_root = "~/acme"\n')
        assert config.project_root == Path.home() / "acme"


class TestParseConfig:
    """Tests for parse_config file handling."""

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            parse_config(tmp_path / "missing.toml")

    def test_reads_file(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text('[main]\nproject_root = "/work/acme"\n')
        assert parse_config(path).project_root == Path("/work/acme")


class TestResolveBackupRoot:
    """Tests for resolve_backup_root."""

    def test_relative_directory_is_under_project(self):
        config = Configuration(project_root=Path("/work/acme"), backup_directory=Path("backups"))
        assert resolve_backup_root(config) == Path("/work/acme/backups")

    def test_absolute_directory_is_kept(self):
        config = Configuration(project_root=Path("/work/acme"), backup_directory=Path("/var/backups"))
        assert resolve_backup_root(config) == Path("/var/backups")


class TestCreateDefaultConfig:
    """The generated default config must be valid."""

    def test_default_config_parses(self, tmp_path):
        config = parse_config_string(create_default_config(tmp_path))
        assert config.project_root == tmp_path
        assert config.backup_directory == Path("backups")
