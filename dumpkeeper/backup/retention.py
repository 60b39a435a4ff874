"""
Retention policy enforcement for backups.

Keeps the newest `max_files` artifacts at the swept location (the local
backup directory, or the S3 prefix when object storage is configured) and
deletes the rest, oldest first.

Artifacts are ordered by name: the timestamp and zero-padded counter in the
filename make lexical order chronological.
"""

import logging
from datetime import datetime, timezone
from typing import Iterable, List

from .compression import is_backup_artifact
from .storage import LocalStorage, S3Storage, StorageError


logger = logging.getLogger(__name__)


def _sort_key(name: str) -> str:
    return name.rsplit('/', 1)[-1]


class RetentionManager:
    """
    Count-based retention for one storage location.
    """

    def __init__(self, max_files: int):
        """
        Initialize retention manager.

        Args:
            max_files: Number of newest artifacts to keep (>= 1)
        """
        if max_files < 1:
            raise ValueError(f"max_files must be at least 1, got {max_files}")

        self.max_files = max_files
        self.logs = []

    def select_expired(self, names: Iterable[str]) -> List[str]:
        """
        Pick the artifacts that fall outside the retention window.

        Names that are not backup artifacts are ignored.

        Returns:
            The oldest max(0, count - max_files) artifact names, oldest first
        """
        artifacts = sorted((name for name in names if is_backup_artifact(name)), key=_sort_key)

        excess = len(artifacts) - self.max_files
        if excess <= 0:
            return []
        return artifacts[:excess]

    def sweep_local(self, storage: LocalStorage) -> int:
        """
        Enforce retention on the local backup directory.

        Returns:
            Number of artifacts deleted
        """
        self.logs = []

        try:
            names = storage.list_files()
        except StorageError as e:
            self._log(f"Error finding backup files: {e}", logging.ERROR)
            return 0

        deleted_count = 0
        for name in self.select_expired(names):
            try:
                storage.delete(name)
                deleted_count += 1
                self._log(f"Deleted old backup: {name}")
            except StorageError as e:
                self._log(f"Failed to delete old backup {name}: {e}", logging.ERROR)

        return deleted_count

    def sweep_s3(self, storage: S3Storage, prefix: str) -> int:
        """
        Enforce retention on the objects under an S3 prefix.

        Returns:
            Number of objects deleted
        """
        self.logs = []

        try:
            objects = storage.list_objects(prefix)
        except StorageError as e:
            self._log(f"Failed to list S3 objects: {e}", logging.ERROR)
            return 0

        deleted_count = 0
        for key in self.select_expired(obj['Key'] for obj in objects):
            try:
                storage.delete(key)
                deleted_count += 1
                self._log(f"Deleted old backup from S3: {key}")
            except StorageError as e:
                self._log(f"Failed to delete old backup {key} from S3: {e}", logging.ERROR)

        return deleted_count

    def _log(self, message: str, level: int = logging.INFO):
        """
        Add a log message with timestamp.

        Args:
            message: Log message
            level: logging level used for the module logger
        """
        timestamp = datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')
        self.logs.append(f"[{timestamp}] {message}")
        logger.log(level, message)
