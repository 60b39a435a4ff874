"""
Backup module for dumpkeeper.

This module handles the core backup functionality including:
- Dump sources (MySQL/MariaDB, PostgreSQL, Redis)
- Artifact naming and gzip compression
- Storage (local directory and S3)
- Retention policy enforcement
- Per-cycle execution
"""

from .executor import BackupExecutor, BackupState, CycleResult
from .sources import create_source, DumpError, MySQLSource, PostgreSQLSource, RedisSource
from .compression import generate_backup_filename
from .storage import S3Storage, LocalStorage, StorageError
from .retention import RetentionManager

__all__ = [
    'BackupExecutor',
    'BackupState',
    'CycleResult',
    'create_source',
    'DumpError',
    'MySQLSource',
    'PostgreSQLSource',
    'RedisSource',
    'generate_backup_filename',
    'S3Storage',
    'LocalStorage',
    'StorageError',
    'RetentionManager'
]
