"""Property-based tests for BackupStore.

Covers stamp encoding, backup file naming, restore fidelity, checksum
verification and per-file retention.
"""

import tempfile
from datetime import datetime, timezone
from pathlib import Path

from hypothesis import given, settings
from hypothesis import strategies as st

from suitebackup.store import (
    BackupSource,
    BackupStore,
    format_stamp,
    parse_stamp,
    split_backup_name,
)


file_names = st.text(
    alphabet="abcdefghijklmnopqrstuvwxyz0123456789._-",
    min_size=1,
    max_size=30,
).filter(lambda name: name not in (".", ".."))

moments = st.datetimes(
    min_value=datetime(2000, 1, 1),
    max_value=datetime(2099, 12, 31),
    timezones=st.just(timezone.utc),
)


def make_store(tmp_dir: str) -> tuple:
    root = Path(tmp_dir) / "project"
    script = root / "src" / "FileCabinet" / "SuiteScripts" / "script.js"
    script.parent.mkdir(parents=True)
    return BackupStore(Path(tmp_dir) / "backups", root), script


class TestStampEncoding:

    @given(moment=moments)
    def test_parse_inverts_format_to_the_millisecond(self, moment):
        parsed = parse_stamp(format_stamp(moment))
        assert parsed == moment.replace(microsecond=(moment.microsecond // 1000) * 1000)

    @given(first=moments, second=moments)
    def test_stamps_sort_chronologically(self, first, second):
        first_ms = first.replace(microsecond=(first.microsecond // 1000) * 1000)
        second_ms = second.replace(microsecond=(second.microsecond // 1000) * 1000)
        if first_ms < second_ms:
            assert format_stamp(first) < format_stamp(second)

    @given(moment=moments)
    def test_stamp_is_filename_safe(self, moment):
        stamp = format_stamp(moment)
        assert ":" not in stamp
        assert "." not in stamp
        assert stamp.endswith("Z")


class TestBackupNaming:

    @given(name=file_names, moment=moments, seq=st.integers(min_value=0, max_value=99))
    def test_split_recovers_name_and_stamp(self, name, moment, seq):
        stamp = format_stamp(moment)
        if seq:
            stamp = f"{stamp}-{seq:02d}"
        assert split_backup_name(f"{name}.{stamp}.bak") == (name, stamp)

    @given(name=file_names)
    def test_non_backup_names_are_rejected(self, name):
        if not name.endswith(".bak"):
            assert split_backup_name(name) is None


class TestRestoreFidelity:

    @given(original=st.binary(max_size=2048), modified=st.binary(max_size=2048))
    @settings(deadline=None)
    def test_restore_brings_back_exact_bytes(self, original, modified):
        with tempfile.TemporaryDirectory() as tmp_dir:
            store, script = make_store(tmp_dir)
            script.write_bytes(original)
            backup = store.create_backup(script, BackupSource.LOCAL, "prod")

            script.write_bytes(modified)
            store.restore_file(script, backup)

            assert script.read_bytes() == original

    @given(first=st.binary(max_size=512), second=st.binary(max_size=512))
    @settings(deadline=None)
    def test_compare_matches_byte_equality(self, first, second):
        with tempfile.TemporaryDirectory() as tmp_dir:
            store, _ = make_store(tmp_dir)
            a = Path(tmp_dir) / "a"
            b = Path(tmp_dir) / "b"
            a.write_bytes(first)
            b.write_bytes(second)

            assert store.compare_files(a, b) == (first != second)


class TestVerification:

    @given(content=st.binary(min_size=1, max_size=1024), flip=st.integers(min_value=0))
    @settings(deadline=None)
    def test_any_modified_byte_is_detected(self, content, flip):
        with tempfile.TemporaryDirectory() as tmp_dir:
            store, script = make_store(tmp_dir)
            script.write_bytes(content)
            backup = store.create_backup(script, BackupSource.ACCOUNT, "prod")
            assert store.verify(store.find_record(backup)).ok

            index = flip % len(content)
            corrupted = bytearray(content)
            corrupted[index] ^= 0xFF
            backup.write_bytes(bytes(corrupted))

            assert not store.verify(store.find_record(backup)).ok


class TestRetention:

    @given(count=st.integers(min_value=1, max_value=6), keep=st.integers(min_value=1, max_value=6))
    @settings(deadline=None)
    def test_prune_keeps_newest_versions(self, count, keep):
        with tempfile.TemporaryDirectory() as tmp_dir:
            store, script = make_store(tmp_dir)
            created = []
            for i in range(count):
                script.write_text(f"version {i}")
                created.append(store.create_backup(script, BackupSource.LOCAL, "prod"))

            result = store.prune(keep)

            remaining = [r.path for r in store.history(script)]
            assert len(remaining) == min(count, keep)
            assert set(remaining) == set(created[-keep:])
            assert len(result.deleted) == max(0, count - keep)
