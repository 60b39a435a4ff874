"""
Unit tests for backup executor (dumpkeeper/backup/executor.py).

Tests BackupExecutor for single backup cycles.
"""

from datetime import datetime
from unittest.mock import MagicMock, patch

import pytest
from freezegun import freeze_time

from dumpkeeper.backup.executor import BackupExecutor, BackupState, CycleResult
from dumpkeeper.backup.retention import RetentionManager
from dumpkeeper.backup.sources import create_source, DumpError
from dumpkeeper.backup.storage import LocalStorage, S3Storage, StorageError
from dumpkeeper.backup.compression import CompressionError
from conftest import FAILING_TOOL, write_artifacts, artifact_names, listdir


def make_executor(config, s3_storage=None, state=None, source=None):
    return BackupExecutor(
        config=config,
        source=source or create_source(config.connection, config),
        local_storage=LocalStorage(config.path),
        s3_storage=s3_storage,
        state=state
    )


class TestBackupExecutor:
    """Test BackupExecutor without object storage."""

    def test_executor_initialization(self, make_config):
        config = make_config(max_files=3)

        executor = make_executor(config)

        assert executor.config is config
        assert executor.s3_storage is None
        assert isinstance(executor.retention, RetentionManager)
        assert executor.retention.max_files == 3
        assert executor.logs == []

    @freeze_time("2024-01-15 12:30:45")
    def test_successful_cycle(self, make_config, fake_bin, backup_dir):
        fake_bin.install('mariadb-dump')
        executor = make_executor(make_config())

        result = executor.execute(7)

        assert result.status == 'success'
        assert result.filename == 'backup_2024-01-15_12-30-45_000007.sql'
        assert result.artifact_path == str(backup_dir / result.filename)
        assert result.size_bytes > 0
        assert result.uploaded is False
        assert result.error is None
        assert listdir(backup_dir) == [result.filename]
        assert any('Local backup completed' in entry for entry in result.logs)

    @freeze_time("2024-01-15 12:30:45")
    def test_successful_cycle_gzip(self, make_config, fake_bin, backup_dir):
        fake_bin.install('mariadb-dump')
        executor = make_executor(make_config(gzip=True))

        result = executor.execute(0)

        assert result.filename == 'backup_2024-01-15_12-30-45_000000.sql.gz'
        assert listdir(backup_dir) == [result.filename]
        assert (backup_dir / result.filename).read_bytes()[:2] == b'\x1f\x8b'

    @freeze_time("2024-01-15 12:30:45")
    def test_redis_cycle_uses_rdb_extension(self, make_config, fake_bin, backup_dir):
        fake_bin.install('redis-cli')
        executor = make_executor(make_config(connection='redis'))

        result = executor.execute(1)

        assert result.filename == 'backup_2024-01-15_12-30-45_000001.rdb'

    def test_explicit_timestamp(self, make_config, fake_bin):
        fake_bin.install('mariadb-dump')
        executor = make_executor(make_config())

        result = executor.execute(2, now=datetime(2023, 5, 6, 7, 8, 9))

        assert result.filename == 'backup_2023-05-06_07-08-09_000002.sql'

    def test_dump_failure_aborts_cycle(self, make_config, fake_bin, populated_backup_dir):
        fake_bin.install('mariadb-dump', FAILING_TOOL)
        executor = make_executor(make_config(path=str(populated_backup_dir), max_files=1))

        result = executor.execute(9)

        assert result.status == 'failed'
        assert 'exited with status 2' in result.error
        assert result.artifact_path is None
        # Retention is skipped on a failed dump
        assert len(LocalStorage(str(populated_backup_dir)).list_files()) == 5

    def test_missing_tools_produce_no_artifact(self, make_config, fake_bin, backup_dir):
        executor = make_executor(make_config())

        result = executor.execute(0)

        assert result.status == 'failed'
        assert 'neither mariadb-dump nor mysqldump found in PATH' in result.error
        assert listdir(backup_dir) == []

    def test_size_probe_failure_does_not_abort(self, make_config, fake_bin, backup_dir):
        fake_bin.install('mariadb-dump')
        executor = make_executor(make_config())

        with patch('dumpkeeper.backup.executor.get_file_size', side_effect=CompressionError('gone')):
            result = executor.execute(0)

        assert result.status == 'success'
        assert result.size_bytes is None
        assert any('Error getting backup size' in entry for entry in result.logs)

    def test_local_retention_applied(self, make_config, fake_bin, backup_dir):
        fake_bin.install('mariadb-dump')
        write_artifacts(backup_dir, artifact_names(3, day='2020-01-01'))
        executor = make_executor(make_config(max_files=2))

        result = executor.execute(3)

        assert result.deleted_count == 2
        assert listdir(backup_dir) == sorted([artifact_names(3, day='2020-01-01')[2], result.filename])

    def test_state_updated(self, make_config, fake_bin):
        fake_bin.install('mariadb-dump')
        state = BackupState()
        executor = make_executor(make_config(), state=state)

        result = executor.execute(0)

        snapshot = state.snapshot()
        assert snapshot['cycles_run'] == 1
        assert snapshot['failures'] == 0
        assert snapshot['last_cycle']['filename'] == result.filename
        assert snapshot['last_success_at'] is not None

    def test_state_counts_failures(self, make_config, fake_bin):
        state = BackupState()
        executor = make_executor(make_config(), state=state)

        executor.execute(0)

        snapshot = state.snapshot()
        assert snapshot['failures'] == 1
        assert snapshot['last_success_at'] is None
        assert snapshot['last_cycle']['status'] == 'failed'


class TestBackupExecutorS3:
    """Test BackupExecutor with object storage configured."""

    @freeze_time("2024-01-15 12:30:45")
    def test_upload_removes_local_copy(self, make_config, fake_bin, backup_dir, mock_s3):
        fake_bin.install('mariadb-dump')
        config = make_config(gzip=True, s3_bucket='test-bucket', s3_region='us-east-1')
        storage = S3Storage(bucket_name='test-bucket', region='us-east-1')
        executor = make_executor(config, s3_storage=storage)

        result = executor.execute(4)

        assert result.status == 'success'
        assert result.uploaded is True
        assert result.s3_key == 'backups/backup_2024-01-15_12-30-45_000004.sql.gz'
        assert listdir(backup_dir) == []
        keys = [obj.key for obj in mock_s3.Bucket('test-bucket').objects.all()]
        assert keys == [result.s3_key]

    def test_upload_failure_keeps_local_copy(self, make_config, fake_bin, backup_dir):
        fake_bin.install('mariadb-dump')
        config = make_config(s3_bucket='test-bucket', s3_region='us-east-1')
        storage = MagicMock(spec=S3Storage)
        storage.upload.side_effect = StorageError('S3 upload failed (AccessDenied)')
        storage.list_objects.return_value = []
        executor = make_executor(config, s3_storage=storage)

        result = executor.execute(0)

        assert result.status == 'upload_failed'
        assert result.uploaded is False
        assert 'AccessDenied' in result.error
        assert listdir(backup_dir) == [result.filename]
        # Retention still runs, against the remote prefix
        storage.list_objects.assert_called_once_with('backups/')

    def test_remote_retention(self, make_config, fake_bin, backup_dir, mock_s3):
        fake_bin.install('mariadb-dump')
        bucket = mock_s3.Bucket('test-bucket')
        old = artifact_names(3, day='2020-01-01')
        for name in old:
            bucket.put_object(Key=f"backups/{name}", Body=b'old')
        write_artifacts(backup_dir, artifact_names(4, day='2019-01-01'))

        config = make_config(max_files=2, s3_bucket='test-bucket', s3_region='us-east-1')
        storage = S3Storage(bucket_name='test-bucket', region='us-east-1')
        result = make_executor(config, s3_storage=storage).execute(3)

        assert result.deleted_count == 2
        keys = sorted(obj.key for obj in bucket.objects.all())
        assert keys == sorted([f"backups/{old[2]}", result.s3_key])
        # Local directory is not swept when S3 is configured
        assert len(listdir(backup_dir)) == 4

    def test_custom_prefix(self, make_config, fake_bin, mock_s3):
        fake_bin.install('mariadb-dump')
        config = make_config(s3_bucket='test-bucket', s3_region='us-east-1', s3_prefix='db/prod/')
        storage = S3Storage(bucket_name='test-bucket', region='us-east-1')

        result = make_executor(config, s3_storage=storage).execute(0)

        assert result.s3_key.startswith('db/prod/backup_')


class TestCycleResult:
    """Test CycleResult serialization."""

    def test_to_dict(self):
        result = CycleResult(counter=1, filename='backup_x.sql', started_at=datetime(2024, 1, 15, 12, 0, 0))

        data = result.to_dict()

        assert data['started_at'] == '2024-01-15T12:00:00'
        assert data['completed_at'] is None
        assert data['status'] == 'running'
