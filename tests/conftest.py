"""
Shared pytest fixtures for dumpkeeper tests.

This module provides fixtures for:
- Validated BackupConfig instances
- Fake dump tools installed on an isolated PATH
- Mock S3 via moto
- Pre-populated backup directories
"""

import os
import stat

import pytest
import boto3
from moto import mock_aws

from dumpkeeper.config import BackupConfig


# Writes its argv and the credential environment variables to stdout
ECHO_TOOL = """#!/bin/sh
printf 'ARGS:%s\\n' "$*"
printf 'PGPASSWORD:%s\\n' "$PGPASSWORD"
printf 'REDISCLI_AUTH:%s\\n' "$REDISCLI_AUTH"
"""

FAILING_TOOL = """#!/bin/sh
echo "Access denied for user" >&2
exit 2
"""

HANGING_TOOL = """#!/bin/sh
while :; do :; done
"""


class FakeBin:
    """Directory of fake executables that replaces PATH for a test."""

    def __init__(self, path):
        self.path = path

    def install(self, name, body=ECHO_TOOL):
        tool = self.path / name
        tool.write_text(body)
        tool.chmod(tool.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return tool


@pytest.fixture
def fake_bin(tmp_path, monkeypatch):
    """
    Empty bin directory set as the only PATH entry.

    Tests install the tools they need with fake_bin.install(name, body).
    """
    bin_dir = tmp_path / 'bin'
    bin_dir.mkdir()
    monkeypatch.setenv('PATH', str(bin_dir))
    monkeypatch.delenv('PGPASSWORD', raising=False)
    monkeypatch.delenv('REDISCLI_AUTH', raising=False)
    return FakeBin(bin_dir)


@pytest.fixture
def backup_dir(tmp_path):
    """Empty local backup directory."""
    path = tmp_path / 'backups'
    path.mkdir()
    return path


@pytest.fixture
def make_config(backup_dir):
    """
    Factory for validated configurations.

    Defaults to a MariaDB connection writing into backup_dir.
    """
    def _make(**overrides):
        settings = {
            'connection': 'mariadb',
            'db_name': 'shop',
            'db_user': 'backup',
            'db_password': 's3cret',
            'path': str(backup_dir),
            'interval': 5,
            'max_files': 10,
        }
        settings.update(overrides)
        return BackupConfig(**settings).validate()

    return _make


@pytest.fixture
def aws_credentials(monkeypatch):
    """Dummy AWS credentials so boto3 never reaches for real ones."""
    monkeypatch.setenv('AWS_ACCESS_KEY_ID', 'testing')
    monkeypatch.setenv('AWS_SECRET_ACCESS_KEY', 'testing')
    monkeypatch.setenv('AWS_SECURITY_TOKEN', 'testing')
    monkeypatch.setenv('AWS_SESSION_TOKEN', 'testing')
    monkeypatch.setenv('AWS_DEFAULT_REGION', 'us-east-1')


@pytest.fixture
def mock_s3(aws_credentials):
    """
    Mock AWS S3 service using moto.

    Creates a test bucket 'test-bucket' in us-east-1 region.
    """
    with mock_aws():
        s3 = boto3.resource('s3', region_name='us-east-1')
        s3.create_bucket(Bucket='test-bucket')

        yield s3


def write_artifacts(directory, names, content=b'data'):
    """Create artifact files named `names` inside `directory`."""
    for name in names:
        (directory / name).write_bytes(content)


def artifact_names(count, extension='sql', compress=False, day='2024-01-15'):
    """Names for `count` consecutive cycles on the same day."""
    suffix = f".{extension}.gz" if compress else f".{extension}"
    return [
        f"backup_{day}_12-00-{i % 60:02d}_{i:06d}{suffix}"
        for i in range(count)
    ]


@pytest.fixture
def populated_backup_dir(backup_dir):
    """
    Backup directory with 5 artifacts plus unrelated files.

    Artifacts: counters 0..4 ('.sql'); extras: notes.txt, backup_partial.tmp
    """
    write_artifacts(backup_dir, artifact_names(5))
    (backup_dir / 'notes.txt').write_text('keep me')
    (backup_dir / 'backup_partial.tmp').write_text('not an artifact')
    return backup_dir


def listdir(path):
    return sorted(os.listdir(path))
