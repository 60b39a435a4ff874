"""
Command line entry point.

Every option can also be set through an environment variable; an explicit
flag wins over the environment.
"""

import logging
import os
import signal

import click

from dumpkeeper import __version__, configure_logging
from dumpkeeper.backup.executor import BackupState
from dumpkeeper.config import BackupConfig, SetupError
from dumpkeeper.health import start_health_server
from dumpkeeper.scheduler import build_scheduler


logger = logging.getLogger(__name__)

LOG_LEVELS = ['DEBUG', 'INFO', 'WARNING', 'ERROR']


def _handle_sigterm(signum, frame):
    raise KeyboardInterrupt


@click.command(context_settings={'help_option_names': ['-h', '--help'], 'show_default': True})
@click.version_option(__version__, prog_name='dumpkeeper')
@click.option('--connection', envvar='DB_CONNECTION', default='mariadb',
              help='Database connection to backup (mysql, mariadb, postgresql, redis)')
@click.option('--db-host', envvar='DB_HOST', default='127.0.0.1', help='Database host')
@click.option('--db-port', envvar='DB_PORT', default='3306', help='Database port')
@click.option('--db-name', envvar='DB_NAME', default='', help='Database name')
@click.option('--db-user', envvar='DB_USER', default='', help='Database user')
@click.option('--db-password', envvar='DB_PASSWORD', default='', show_default=False, help='Database password')
@click.option('--path', 'path', envvar='BACKUP_PATH', default='./backups', help='Backup storage path')
@click.option('--s3-bucket', envvar='S3_BUCKET', default='', help='S3 bucket name for backup storage')
@click.option('--s3-region', envvar='S3_REGION', default='', help='S3 region')
@click.option('--s3-endpoint', envvar='S3_ENDPOINT', default='',
              help='S3 custom endpoint URL (defaults to the AWS endpoint of the region)')
@click.option('--s3-prefix', envvar='S3_PREFIX', default='backups/', help='S3 object prefix')
@click.option('--max-files', envvar='MAX_FILES', type=int, default=10,
              help='Maximum number of backup files to keep')
@click.option('--interval', envvar='BACKUP_INTERVAL', type=int, default=15,
              help='Interval in seconds between backups (min 5 seconds)')
@click.option('--gzip/--no-gzip', 'gzip', envvar='GZIP_COMPRESSION', default=False,
              help='Compress backup files with gzip')
@click.option('--optimize/--no-optimize', envvar='OPTIMIZE_BACKUP', default=False,
              help='Run dumps with lowered CPU and I/O priority')
@click.option('--dump-timeout', envvar='DUMP_TIMEOUT', type=int, default=0,
              help='Seconds before a running dump is killed (0 = no limit; a limit fails dumps that outgrow it)')
@click.option('--health-port', envvar='HEALTH_PORT', type=int, default=0,
              help='Port for the /health and /status endpoint (0 = disabled)')
@click.option('--log-level', envvar='LOG_LEVEL', type=click.Choice(LOG_LEVELS, case_sensitive=False),
              default='INFO', help='Log level')
@click.option('--log-file', envvar='LOG_FILE', default=None, help='Also log to this rotating file')
def cli(connection, db_host, db_port, db_name, db_user, db_password, path, s3_bucket, s3_region,
        s3_endpoint, s3_prefix, max_files, interval, gzip, optimize, dump_timeout, health_port,
        log_level, log_file):
    """Periodically dump a database, optionally upload it to S3, and prune old backups."""
    try:
        configure_logging(log_level, log_file)
    except (OSError, ValueError) as e:
        raise click.ClickException(f"Failed to configure logging: {e}")

    config = BackupConfig(
        connection=connection,
        db_host=db_host,
        db_port=db_port,
        db_name=db_name,
        db_user=db_user,
        db_password=db_password,
        path=path,
        s3_bucket=s3_bucket,
        s3_region=s3_region,
        s3_endpoint=s3_endpoint,
        s3_prefix=s3_prefix,
        aws_access_key_id=os.environ.get('AWS_ACCESS_KEY_ID'),
        aws_secret_access_key=os.environ.get('AWS_SECRET_ACCESS_KEY'),
        max_files=max_files,
        interval=interval,
        gzip=gzip,
        optimize=optimize,
        dump_timeout=dump_timeout,
        health_port=health_port,
        log_level=log_level,
        log_file=log_file
    )

    state = BackupState()

    try:
        config = config.validate()
        scheduler = build_scheduler(config, state=state)
    except SetupError as e:
        logger.error(f"Startup failed: {e}")
        raise click.ClickException(str(e))

    health_server = None
    if config.health_port:
        try:
            health_server = start_health_server(state, config.health_port)
        except OSError as e:
            raise click.ClickException(f"Failed to start health server: {e}")

    signal.signal(signal.SIGTERM, _handle_sigterm)

    try:
        scheduler.run()
    except KeyboardInterrupt:
        logger.info("Termination requested, stopping backup loop")
        state.set_status('stopped')
    finally:
        if health_server is not None:
            health_server.shutdown()


def main():
    cli(prog_name='dumpkeeper')


if __name__ == '__main__':
    main()
