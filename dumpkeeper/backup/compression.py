"""
Naming and compression helpers for backup artifacts.

An artifact is named:
    backup_{YYYY-MM-DD_HH-MM-SS}_{counter:06d}.{sql|rdb}[.gz]

The timestamp format and the zero padding of the counter keep lexical order
equal to chronological order, which the retention sweep relies on.
"""

import gzip
import os
from contextlib import contextmanager
from datetime import datetime
from typing import Tuple


FILENAME_PREFIX = 'backup_'
TIMESTAMP_FORMAT = '%Y-%m-%d_%H-%M-%S'
COUNTER_WIDTH = 6
GZIP_SUFFIX = '.gz'

# Dump payload extensions per connection family
BASE_EXTENSIONS = ('sql', 'rdb')


class CompressionError(Exception):
    """Raised when an artifact cannot be written or inspected."""
    pass


def generate_backup_filename(timestamp: datetime, counter: int, extension: str, compress: bool = False) -> str:
    """
    Generate the artifact filename for one cycle.

    Args:
        timestamp: Cycle start time
        counter: Cycle counter (0-based)
        extension: 'sql' or 'rdb'
        compress: Whether the gzip suffix is appended

    Returns:
        Filename (without path)
    """
    if extension not in BASE_EXTENSIONS:
        raise ValueError(
            f"Invalid artifact extension: {extension}. "
            f"Valid options: {list(BASE_EXTENSIONS)}"
        )
    if counter < 0:
        raise ValueError(f"Counter must not be negative: {counter}")

    filename = f"{FILENAME_PREFIX}{timestamp.strftime(TIMESTAMP_FORMAT)}_{counter:0{COUNTER_WIDTH}d}.{extension}"
    if compress:
        filename += GZIP_SUFFIX
    return filename


def artifact_extensions() -> Tuple[str, ...]:
    """Suffixes accepted as backup artifacts, compressed or not."""
    suffixes = []
    for extension in BASE_EXTENSIONS:
        suffixes.append(f".{extension}")
        suffixes.append(f".{extension}{GZIP_SUFFIX}")
    return tuple(suffixes)


def is_backup_artifact(name: str) -> bool:
    """
    Check whether a file name or object key looks like a backup artifact.

    Only the basename is considered, so S3 keys with a prefix work too.
    """
    basename = name.rsplit('/', 1)[-1]
    return basename.startswith(FILENAME_PREFIX) and basename.endswith(artifact_extensions())


@contextmanager
def open_output(path: str, compress: bool = False):
    """
    Open an artifact for binary writing.

    With compress=True the stream goes through gzip in-process, so whatever
    is written lands on disk already compressed.
    """
    try:
        if compress:
            handle = gzip.open(path, 'wb')
        else:
            handle = open(path, 'wb')
    except OSError as e:
        raise CompressionError(f"Failed to open {path} for writing: {e}")

    try:
        yield handle
    finally:
        handle.close()


def get_file_size(path: str) -> int:
    """
    Get the size of an artifact in bytes.

    Raises:
        CompressionError: If the file doesn't exist or cannot be accessed
    """
    try:
        return os.path.getsize(path)
    except FileNotFoundError:
        raise CompressionError(f"Backup file not found: {path}")
    except OSError as e:
        raise CompressionError(f"Failed to get backup size: {e}")


def format_bytes(size: int) -> str:
    """Format a byte count using 1024-based units (e.g. '1.50 KB')."""
    unit = 1024
    if size < unit:
        return f"{size} B"

    div, exp = unit, 0
    n = size // unit
    while n >= unit:
        div *= unit
        exp += 1
        n //= unit

    return f"{size / div:.2f} {'KMGTPE'[exp]}B"
