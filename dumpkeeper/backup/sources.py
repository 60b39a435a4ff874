"""
Dump sources for backup operations.

Supports:
- MySQLSource: mariadb-dump (preferred) or mysqldump
- PostgreSQLSource: pg_dump
- RedisSource: redis-cli --rdb

Each source builds an argument vector plus the environment variables that
carry credentials, then runs the tool without a shell and streams its
standard output into the artifact file.
"""

import logging
import os
import shutil
import subprocess
import tempfile
import threading
from typing import Dict, List, NamedTuple, Optional

from .compression import open_output, CompressionError, GZIP_SUFFIX


logger = logging.getLogger(__name__)

# Bytes copied per read from the dump tool's stdout
CHUNK_SIZE = 1024 * 1024

# Max characters of tool stderr quoted in error messages
STDERR_TAIL = 500

# CPU and I/O deprioritization applied with optimize=True
OPTIMIZE_PREFIX = ['nice', '-n19', 'ionice', '-c3']


class DumpError(Exception):
    """Raised when a dump cannot be produced."""
    pass


class DumpCommand(NamedTuple):
    """A fully resolved dump invocation."""
    tool: str
    argv: List[str]
    env: Dict[str, str]


class DumpSource:
    """
    Base class for database dump sources.

    Subclasses declare the candidate tool names and implement
    _arguments() and, where credentials travel out of band, _environment().
    """

    tool_names: tuple = ()
    extension = 'sql'

    def __init__(
        self,
        host: str,
        port: str,
        user: str = '',
        password: str = '',
        name: str = '',
        optimize: bool = False,
        timeout: Optional[float] = None
    ):
        """
        Initialize dump source.

        Args:
            host: Database host
            port: Database port
            user: Database user
            password: Database password
            name: Database name
            optimize: Run the dump under nice/ionice
            timeout: Seconds before the dump process is killed (None = no limit)
        """
        self.host = host
        self.port = str(port)
        self.user = user
        self.password = password
        self.name = name
        self.optimize = optimize
        self.timeout = timeout

    def _resolve_tool(self) -> str:
        for tool_name in self.tool_names:
            tool_path = shutil.which(tool_name)
            if tool_path:
                return tool_path

        if len(self.tool_names) == 1:
            raise DumpError(f"{self.tool_names[0]} not found in PATH")
        raise DumpError(f"neither {' nor '.join(self.tool_names)} found in PATH")

    def _arguments(self) -> List[str]:
        raise NotImplementedError

    def _environment(self) -> Dict[str, str]:
        return {}

    def build_command(self) -> DumpCommand:
        """
        Build the dump invocation.

        Returns:
            DumpCommand with argv and environment overrides

        Raises:
            DumpError: If a required executable is not on PATH
        """
        tool_path = self._resolve_tool()
        argv = [tool_path] + self._arguments()

        if self.optimize:
            missing = [name for name in ('nice', 'ionice') if not shutil.which(name)]
            if missing:
                raise DumpError(f"optimize requires {', '.join(missing)} in PATH")
            argv = OPTIMIZE_PREFIX + argv

        return DumpCommand(
            tool=os.path.basename(tool_path),
            argv=argv,
            env=self._environment()
        )

    def acquire(self, output_path: str, compress: bool = False) -> str:
        """
        Run the dump and write its output to disk.

        Args:
            output_path: Artifact path without the compression suffix
            compress: Gzip the stream on the way to disk

        Returns:
            Path of the produced artifact ('.gz' appended when compressed)

        Raises:
            DumpError: If the tool is missing, fails, or times out
        """
        command = self.build_command()
        artifact_path = output_path + GZIP_SUFFIX if compress else output_path

        env = dict(os.environ)
        env.update(command.env)

        stderr = tempfile.TemporaryFile()
        try:
            try:
                process = subprocess.Popen(
                    command.argv,
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.PIPE,
                    stderr=stderr,
                    env=env
                )
            except OSError as e:
                raise DumpError(f"Failed to start {command.tool}: {e}")

            timed_out = threading.Event()
            timer = None
            if self.timeout:
                timer = threading.Timer(self.timeout, _kill_process, args=(process, timed_out))
                timer.daemon = True
                timer.start()

            try:
                with open_output(artifact_path, compress) as out:
                    shutil.copyfileobj(process.stdout, out, CHUNK_SIZE)
                returncode = process.wait()
            except (OSError, CompressionError) as e:
                _kill_process(process)
                _remove_partial(artifact_path)
                raise DumpError(f"Failed to write {artifact_path}: {e}")
            except BaseException:
                # Interrupted mid-dump: don't leave the tool running
                _kill_process(process)
                _remove_partial(artifact_path)
                raise
            finally:
                if timer is not None:
                    timer.cancel()
                process.stdout.close()

            # A timer that fires after a clean exit is ignored
            if timed_out.is_set() and returncode != 0:
                _remove_partial(artifact_path)
                raise DumpError(f"{command.tool} timed out after {self.timeout}s")

            if returncode != 0:
                _remove_partial(artifact_path)
                detail = _read_tail(stderr)
                message = f"{command.tool} exited with status {returncode}"
                if detail:
                    message += f": {detail}"
                raise DumpError(message)

        finally:
            stderr.close()

        return artifact_path


class MySQLSource(DumpSource):
    """
    MySQL / MariaDB dump via mariadb-dump, falling back to mysqldump.
    """

    tool_names = ('mariadb-dump', 'mysqldump')
    extension = 'sql'

    def _arguments(self) -> List[str]:
        return [
            f"--host={self.host}",
            f"--port={self.port}",
            f"--user={self.user}",
            f"--password={self.password}",
            '--single-transaction',
            '--routines',
            '--triggers',
            self.name
        ]


class PostgreSQLSource(DumpSource):
    """
    PostgreSQL dump via pg_dump. The password goes through PGPASSWORD.
    """

    tool_names = ('pg_dump',)
    extension = 'sql'

    def _arguments(self) -> List[str]:
        return [
            f"--host={self.host}",
            f"--port={self.port}",
            f"--username={self.user}",
            f"--dbname={self.name}"
        ]

    def _environment(self) -> Dict[str, str]:
        return {'PGPASSWORD': self.password}


class RedisSource(DumpSource):
    """
    Redis snapshot via `redis-cli --rdb -`, which writes the RDB file to stdout.

    A password, if set, goes through REDISCLI_AUTH.
    """

    tool_names = ('redis-cli',)
    extension = 'rdb'

    def _arguments(self) -> List[str]:
        return ['-h', self.host, '-p', self.port, '--rdb', '-']

    def _environment(self) -> Dict[str, str]:
        if self.password:
            return {'REDISCLI_AUTH': self.password}
        return {}


SOURCE_CLASSES = {
    'mysql': MySQLSource,
    'mariadb': MySQLSource,
    'postgresql': PostgreSQLSource,
    'redis': RedisSource,
}


def create_source(connection: str, config) -> DumpSource:
    """
    Factory function to create the dump source for a connection kind.

    Args:
        connection: 'mysql', 'mariadb', 'postgresql' or 'redis'
        config: BackupConfig with host, port and credentials

    Returns:
        DumpSource instance

    Raises:
        ValueError: If connection is not supported
    """
    source_class = SOURCE_CLASSES.get(connection)
    if source_class is None:
        raise ValueError(f"Unsupported database connection: {connection}")

    return source_class(
        host=config.db_host,
        port=config.db_port,
        user=config.db_user,
        password=config.db_password,
        name=config.db_name,
        optimize=config.optimize,
        timeout=config.dump_timeout_seconds
    )


def _kill_process(process: subprocess.Popen, flag: Optional[threading.Event] = None):
    if flag is not None:
        flag.set()
    if process.poll() is None:
        process.kill()
    process.wait()


def _remove_partial(path: str):
    try:
        if os.path.exists(path):
            os.remove(path)
    except OSError as e:
        logger.warning(f"Failed to remove partial artifact {path}: {e}")


def _read_tail(stream) -> str:
    stream.seek(0)
    text = stream.read().decode('utf-8', errors='replace').strip()
    return text[-STDERR_TAIL:]
