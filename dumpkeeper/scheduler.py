"""
Backup loop for dumpkeeper.

Runs one cycle, sleeps for the configured interval, and repeats. The sleep
starts after the cycle finishes, so the cadence drifts by the cycle duration.
Exactly one cycle runs at a time.
"""

import logging
import threading
from typing import Callable, Optional

from dumpkeeper.backup.executor import BackupExecutor, BackupState
from dumpkeeper.backup.retention import RetentionManager
from dumpkeeper.backup.sources import create_source
from dumpkeeper.backup.storage import LocalStorage, S3Storage, StorageError
from dumpkeeper.config import SetupError
from dumpkeeper.database import check_connection


logger = logging.getLogger(__name__)


class BackupScheduler:
    """
    Sequential backup loop owning the cycle counter.
    """

    def __init__(self, executor: BackupExecutor, interval: float, sleep: Optional[Callable[[float], object]] = None):
        """
        Initialize the loop.

        Args:
            executor: BackupExecutor that runs each cycle
            interval: Seconds to sleep after each cycle
            sleep: Sleep function (defaults to an interruptible wait, see stop())
        """
        self.executor = executor
        self.interval = interval
        self.counter = 0
        self._stop_event = threading.Event()
        self._sleep = sleep or self._stop_event.wait

    @property
    def running(self) -> bool:
        return not self._stop_event.is_set()

    def stop(self):
        """Ask the loop to exit after the current cycle."""
        self._stop_event.set()

    def run_cycle(self):
        """
        Run a single cycle and advance the counter.

        Unexpected errors are logged; they never stop the loop.
        """
        result = None
        try:
            result = self.executor.execute(self.counter)
        except Exception:
            logger.exception(f"Unexpected error in backup cycle {self.counter}")
        finally:
            self.counter += 1
        return result

    def run(self, max_cycles: Optional[int] = None):
        """
        Run cycles until stop() is called (or max_cycles have run).

        Args:
            max_cycles: Upper bound on cycles, None for an unbounded loop
        """
        state = self.executor.state
        if state is not None:
            state.set_status('running')

        cycles = 0
        while self.running:
            self.run_cycle()
            cycles += 1

            if max_cycles is not None and cycles >= max_cycles:
                break

            self._sleep(self.interval)

        if state is not None:
            state.set_status('stopped')


def log_startup_banner(config):
    """Log the effective settings of the loop."""
    logger.info(f"Starting database backup for connection: {config.connection}")
    logger.info(f"Backup path: {config.path}")
    logger.info(f"Interval: {config.interval}s")
    logger.info(f"Max files to keep: {config.max_files}")
    logger.info(f"Compression: {config.gzip}")
    logger.info(f"Optimize: {config.optimize}")
    logger.info(f"Dump timeout: {config.dump_timeout_seconds or 'none'}")
    if config.use_s3:
        logger.info(f"Using S3: bucket={config.s3_bucket} endpoint={config.s3_endpoint} prefix={config.s3_prefix}")
    else:
        logger.info("Using S3: False")


def build_scheduler(config, state: Optional[BackupState] = None) -> BackupScheduler:
    """
    Set up storage, probe the database and build the loop.

    Args:
        config: Validated BackupConfig
        state: Optional BackupState shared with the health endpoint

    Returns:
        BackupScheduler ready to run

    Raises:
        SetupError: If the backup directory, the database or the S3 client
            cannot be set up
    """
    log_startup_banner(config)

    try:
        local_storage = LocalStorage(config.path)
    except StorageError as e:
        raise SetupError(str(e))

    check_connection(config)

    s3_storage = None
    if config.use_s3:
        try:
            s3_storage = S3Storage(
                bucket_name=config.s3_bucket,
                region=config.s3_region,
                endpoint_url=config.s3_endpoint,
                access_key=config.aws_access_key_id,
                secret_key=config.aws_secret_access_key
            )
        except StorageError as e:
            raise SetupError(str(e))

    executor = BackupExecutor(
        config=config,
        source=create_source(config.connection, config),
        local_storage=local_storage,
        s3_storage=s3_storage,
        retention=RetentionManager(config.max_files),
        state=state
    )

    return BackupScheduler(executor, config.interval)
