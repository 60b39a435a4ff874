"""
Backup executor - runs one backup cycle.

Workflow:
1. Generate the artifact filename (timestamp + cycle counter)
2. Dump the database into the local backup directory (optionally gzipped)
3. Probe the artifact size
4. Upload to S3 (if configured) and drop the local copy on success
5. Enforce retention on S3 (if configured) or on the local directory

A failed dump aborts the cycle; every later failure is logged and the cycle
carries on. Nothing raised by a step escapes execute().
"""

import logging
import os
import threading
import time
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import List, Optional

from .compression import generate_backup_filename, get_file_size, format_bytes, CompressionError
from .retention import RetentionManager
from .sources import DumpError
from .storage import StorageError


logger = logging.getLogger(__name__)


@dataclass
class CycleResult:
    """Outcome of one backup cycle"""

    counter: int
    filename: str
    started_at: datetime
    status: str = 'running'  # running, success, upload_failed, failed
    artifact_path: Optional[str] = None
    size_bytes: Optional[int] = None
    s3_key: Optional[str] = None
    uploaded: bool = False
    deleted_count: int = 0
    error: Optional[str] = None
    completed_at: Optional[datetime] = None
    duration_seconds: Optional[float] = None
    logs: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        data = asdict(self)
        data['started_at'] = self.started_at.isoformat()
        data['completed_at'] = self.completed_at.isoformat() if self.completed_at else None
        return data


class BackupState:
    """
    Running totals of the backup loop, shared with the health endpoint.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.status = 'starting'
        self.cycles_run = 0
        self.failures = 0
        self.last_result = None
        self.last_success_at = None

    def set_status(self, status: str):
        with self._lock:
            self.status = status

    def record(self, result: CycleResult):
        with self._lock:
            self.cycles_run += 1
            self.last_result = result
            if result.status == 'success':
                self.last_success_at = result.completed_at
            else:
                self.failures += 1

    def snapshot(self) -> dict:
        with self._lock:
            return {
                'status': self.status,
                'cycles_run': self.cycles_run,
                'failures': self.failures,
                'last_success_at': self.last_success_at.isoformat() if self.last_success_at else None,
                'last_cycle': self.last_result.to_dict() if self.last_result else None,
            }


class BackupExecutor:
    """
    Runs the dump -> upload -> retention steps of a single cycle.
    """

    def __init__(self, config, source, local_storage, s3_storage=None, retention=None, state=None):
        """
        Initialize backup executor.

        Args:
            config: Validated BackupConfig
            source: DumpSource for the configured connection
            local_storage: LocalStorage for the backup directory
            s3_storage: S3Storage, or None when object storage is not used
            retention: RetentionManager (defaults to one built from config.max_files)
            state: Optional BackupState updated after every cycle
        """
        self.config = config
        self.source = source
        self.local_storage = local_storage
        self.s3_storage = s3_storage
        self.retention = retention or RetentionManager(config.max_files)
        self.state = state
        self.logs = []

    def execute(self, counter: int, now: Optional[datetime] = None) -> CycleResult:
        """
        Execute one backup cycle.

        Args:
            counter: Cycle counter embedded in the filename
            now: Cycle timestamp (defaults to the current local time)

        Returns:
            CycleResult describing the cycle
        """
        started_at = now or datetime.now()
        self.logs = []

        result = CycleResult(
            counter=counter,
            filename=generate_backup_filename(started_at, counter, self.source.extension, self.config.gzip),
            started_at=started_at
        )
        clock = time.monotonic()

        try:
            self._execute_workflow(result)
        finally:
            result.completed_at = datetime.now()
            result.duration_seconds = round(time.monotonic() - clock, 3)
            result.logs = list(self.logs)
            if self.state is not None:
                self.state.record(result)

        return result

    def _execute_workflow(self, result: CycleResult):
        """Execute the cycle steps, recording progress on result."""
        timestamp = result.started_at.strftime('%Y-%m-%d_%H-%M-%S')
        clock = time.monotonic()

        # Step 1: Dump
        base_filename = generate_backup_filename(result.started_at, result.counter, self.source.extension)
        output_path = self.local_storage.get_full_path(base_filename)

        try:
            result.artifact_path = self.source.acquire(output_path, compress=self.config.gzip)
        except DumpError as e:
            result.status = 'failed'
            result.error = str(e)
            self._log(f"Backup failed: {e}", logging.ERROR)
            return

        # Step 2: Size probe
        try:
            result.size_bytes = get_file_size(result.artifact_path)
            self._log(
                f"[{timestamp}] Local backup completed in {time.monotonic() - clock:.2f}s, "
                f"size: {format_bytes(result.size_bytes)}"
            )
        except CompressionError as e:
            self._log(f"Error getting backup size: {e}", logging.ERROR)

        # Step 3: Upload
        if self.s3_storage is not None:
            self._upload(result, timestamp)

        # Step 4: Retention
        result.deleted_count = self._enforce_retention()

        if result.status == 'running':
            result.status = 'success'

    def _upload(self, result: CycleResult, timestamp: str):
        """Upload the artifact and drop the local copy once it is stored."""
        filename = os.path.basename(result.artifact_path)
        s3_key = f"{self.config.s3_prefix}{filename}"
        clock = time.monotonic()

        try:
            self.s3_storage.upload(result.artifact_path, s3_key)
        except StorageError as e:
            result.status = 'upload_failed'
            result.error = str(e)
            self._log(f"Failed to upload to S3: {e}", logging.ERROR)
            return

        result.s3_key = s3_key
        result.uploaded = True
        self._log(f"[{timestamp}] Uploaded to S3 in {time.monotonic() - clock:.2f}s, S3 Key: {s3_key}")

        try:
            self.local_storage.delete(filename)
        except StorageError as e:
            self._log(f"Failed to remove local copy {filename}: {e}", logging.WARNING)

    def _enforce_retention(self) -> int:
        """Sweep S3 when it is configured, the local directory otherwise."""
        if self.s3_storage is not None:
            deleted = self.retention.sweep_s3(self.s3_storage, self.config.s3_prefix)
        else:
            deleted = self.retention.sweep_local(self.local_storage)

        self.logs.extend(self.retention.logs)
        return deleted

    def _log(self, message: str, level: int = logging.INFO):
        """
        Add a log message with timestamp.

        Args:
            message: Log message
            level: logging level used for the module logger
        """
        timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S')
        self.logs.append(f"[{timestamp}] {message}")
        logger.log(level, message)
