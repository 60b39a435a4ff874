from dataclasses import dataclass, replace
from typing import Optional


SUPPORTED_CONNECTIONS = ('mysql', 'mariadb', 'postgresql', 'redis')

# Accepted spellings that map onto a supported connection kind
CONNECTION_ALIASES = {
    'postgres': 'postgresql',
}

MIN_INTERVAL_SECONDS = 5


class SetupError(Exception):
    """Raised when the process cannot start (fatal)."""
    pass


class ConfigError(SetupError):
    """Raised when the configuration is invalid."""
    pass


@dataclass(frozen=True)
class BackupConfig:
    """Static configuration for the backup loop"""

    # Database
    connection: str = 'mariadb'
    db_host: str = '127.0.0.1'
    db_port: str = '3306'
    db_name: str = ''
    db_user: str = ''
    db_password: str = ''

    # Local storage
    path: str = './backups'

    # Object storage
    s3_bucket: str = ''
    s3_region: str = ''
    s3_endpoint: str = ''
    s3_prefix: str = 'backups/'
    aws_access_key_id: Optional[str] = None
    aws_secret_access_key: Optional[str] = None

    # Behaviour
    max_files: int = 10
    interval: int = 15
    gzip: bool = False
    optimize: bool = False
    dump_timeout: int = 0

    # Ambient
    health_port: int = 0
    log_level: str = 'INFO'
    log_file: Optional[str] = None

    @property
    def use_s3(self) -> bool:
        return bool(self.s3_bucket)

    @property
    def dump_timeout_seconds(self) -> Optional[int]:
        return self.dump_timeout or None

    def validate(self) -> 'BackupConfig':
        """
        Check the configuration and fill in derived values.

        Returns:
            A new, normalized BackupConfig

        Raises:
            ConfigError: If any setting is invalid
        """
        connection = (self.connection or '').strip().lower()
        connection = CONNECTION_ALIASES.get(connection, connection)

        if connection not in SUPPORTED_CONNECTIONS:
            raise ConfigError(
                f"Unsupported database connection: {self.connection}. "
                f"Valid options: {list(SUPPORTED_CONNECTIONS)}"
            )

        # Redis has no database name or user
        if connection != 'redis' and not (self.db_name and self.db_user and self.db_password):
            raise ConfigError("Database name, user, and password are required for SQL databases")

        if self.interval < MIN_INTERVAL_SECONDS:
            raise ConfigError(f"Interval must be at least {MIN_INTERVAL_SECONDS} seconds")

        if self.max_files < 1:
            raise ConfigError("Max files must be at least 1")

        if self.dump_timeout < 0:
            raise ConfigError("Dump timeout must not be negative")

        if not self.path:
            raise ConfigError("Backup path must not be empty")

        s3_endpoint = self.s3_endpoint
        if self.s3_bucket:
            if not self.s3_region:
                raise ConfigError("S3 region is required when using S3 storage")
            if not s3_endpoint:
                s3_endpoint = f"https://s3.{self.s3_region}.amazonaws.com"

        return replace(self, connection=connection, s3_endpoint=s3_endpoint)
