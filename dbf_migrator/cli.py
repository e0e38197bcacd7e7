"""
Command-line interface for the DBF migration system.

This module provides the main entry point for running a migration from the
command line. Configuration is layered: defaults, DBF_MIGRATOR_* environment
variables, an optional YAML/JSON settings file, then command-line flags.
"""

import argparse
import logging
import signal
import sys

from typing import Optional

from .config.config_manager import ConfigManager
from .config.processing_defaults import ProcessingDefaults
from .exceptions import ConfigurationError, MigrationLockError
from .models import RunStatus
from .processing.migration_orchestrator import CancellationToken, MigrationOrchestrator
from .tracking.checkpoint_manager import CheckpointManager


EXIT_COMPLETED = 0
EXIT_FAILED = 1
EXIT_CONFIGURATION_ERROR = 2
EXIT_CANCELLED = 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dbf-migrator",
        description="Migrate a folder of FoxPro/dBase tables into a MySQL-compatible database"
    )

    parser.add_argument("--source-folder", help="Folder containing the .dbf files")
    parser.add_argument("--database", help="Destination database name (created if missing)")
    parser.add_argument("--config", help="YAML or JSON settings file")

    connection = parser.add_argument_group("destination connection")
    connection.add_argument("--server", help=f"Database server (default: {ProcessingDefaults.DB_SERVER})")
    connection.add_argument("--port", type=int, help=f"Database port (default: {ProcessingDefaults.DB_PORT})")
    connection.add_argument("--username", help="Database username")
    connection.add_argument("--password", help="Database password")
    connection.add_argument("--driver", help=f"ODBC driver name (default: {ProcessingDefaults.DB_DRIVER})")
    connection.add_argument("--connection-string", help="Full server-level ODBC connection string")

    load = parser.add_argument_group("load options")
    load.add_argument("--mode", choices=["replace", "merge"],
                      help=f"replace drops and recreates tables, merge appends ignoring duplicates "
                           f"(default: {ProcessingDefaults.MODE})")
    load.add_argument("--batch-size", type=int,
                      help=f"Rows per transaction, {ProcessingDefaults.MIN_BATCH_SIZE}-"
                           f"{ProcessingDefaults.MAX_BATCH_SIZE} (default: {ProcessingDefaults.BATCH_SIZE})")
    load.add_argument("--safe-mode", dest="safe_mode", action="store_true", default=None,
                      help="Widen character columns and clean text (default)")
    load.add_argument("--no-safe-mode", dest="safe_mode", action="store_false",
                      help="Use declared character widths and keep text as read")
    load.add_argument("--skip-deleted", dest="skip_deleted", action="store_true", default=None,
                      help="Skip records marked deleted in the source (default)")
    load.add_argument("--keep-deleted", dest="skip_deleted", action="store_false",
                      help="Migrate deleted records with is_deleted set")
    load.add_argument("--source-encoding",
                      help=f"Character encoding of the source files (default: {ProcessingDefaults.SOURCE_ENCODING})")

    resume = parser.add_mutually_exclusive_group()
    resume.add_argument("--resume", action="store_true",
                        help="Resume an unfinished migration from its checkpoint")
    resume.add_argument("--restart", action="store_true",
                        help="Discard an unfinished migration's checkpoint and start over")

    parser.add_argument("--log-root", help=f"Folder for run logs and checkpoints (default: {ProcessingDefaults.LOG_ROOT})")
    parser.add_argument("--log-level", default=ProcessingDefaults.LOG_LEVEL,
                        choices=["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"],
                        help=f"Logging level (default: {ProcessingDefaults.LOG_LEVEL})")
    return parser


def main(args: Optional[list] = None) -> int:
    """
    Main entry point for the CLI application.

    Args:
        args: Optional command line arguments (defaults to sys.argv)

    Returns:
        Exit code (0 completed, 1 failed, 2 configuration error, 130 cancelled)
    """
    options = build_parser().parse_args(args)

    # Set up logging without reconfiguring root if already configured
    root_logger = logging.getLogger()
    if not root_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
        root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, options.log_level))
    logger = logging.getLogger(__name__)
    if options.log_level == "DEBUG":
        ProcessingDefaults.log_summary(logger)

    try:
        config_manager = ConfigManager(options.config)
        config_manager.apply_overrides(
            source_folder=options.source_folder,
            database=options.database,
            server=options.server,
            port=options.port,
            username=options.username,
            password=options.password,
            driver=options.driver,
            connection_string=options.connection_string,
            mode=options.mode,
            batch_size=options.batch_size,
            safe_mode=options.safe_mode,
            skip_deleted=options.skip_deleted,
            source_encoding=options.source_encoding,
            log_root=options.log_root,
        )
        config_manager.validate_configuration()

        params = config_manager.migration_params
        database = config_manager.database_config.database
        checkpoint_manager = CheckpointManager(params.log_root)

        resume_checkpoint = None
        if options.restart:
            with checkpoint_manager.lock(database):
                checkpoint_manager.delete(database)
        elif checkpoint_manager.exists(database):
            resume_checkpoint = checkpoint_manager.load(str(params.source_folder), database)
            if not options.resume:
                raise ConfigurationError(
                    f"An unfinished migration checkpoint exists for database {database} "
                    f"({checkpoint_manager.checkpoint_path(database)}). "
                    f"Use --resume to continue it or --restart to start over."
                )
            if resume_checkpoint is None:
                logger.warning("No matching checkpoint to resume; starting a fresh migration")
        elif options.resume:
            logger.warning(f"No checkpoint found for database {database}; starting a fresh migration")

        settings = config_manager.build_settings(resume_checkpoint)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return EXIT_CONFIGURATION_ERROR
    except MigrationLockError as e:
        logger.error(f"Cannot restart: {e}")
        return EXIT_FAILED

    summary = config_manager.get_configuration_summary()
    logger.info(f"Source folder: {summary['migration']['source_folder']}")
    logger.info(f"Destination: {summary['database']['server']}:{summary['database']['port']}/"
                f"{summary['database']['database']}")

    token = CancellationToken()
    orchestrator = MigrationOrchestrator(settings, checkpoint_manager=checkpoint_manager,
                                         cancellation_token=token)

    def _request_cancel(signum, frame):
        print("\n Cancellation requested; finishing current step...")
        token.cancel()

    previous_handler = signal.signal(signal.SIGINT, _request_cancel)
    try:
        result = orchestrator.run()
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    print("\n" + "=" * 82)
    for table in result.table_results:
        if table.resumed:
            print(f" {table.table_name}: already completed (skipped)")
        elif table.failed:
            print(f" {table.table_name}: FAILED - {table.error_message}")
        else:
            print(f" {table.table_name}: {table.row_count} rows, {table.skipped_count} skipped, "
                  f"{table.deleted_count} deleted kept, {table.error_count} errors")
        if table.error_log:
            print(f"   see {table.error_log}")
    stats = result.statistics
    print("=" * 82)
    print(f" Migration {result.status.value.upper()}: {stats.rows_migrated} rows in "
          f"{stats.elapsed_seconds:.1f}s ({stats.rows_per_second:.1f} rows/sec)")
    if result.log_folder:
        print(f" Logs: {result.log_folder}")

    if result.status == RunStatus.COMPLETED:
        return EXIT_COMPLETED
    if result.status == RunStatus.CANCELLED:
        print(" Progress saved; rerun with --resume to continue.")
        return EXIT_CANCELLED
    if isinstance(result.error, ConfigurationError):
        return EXIT_CONFIGURATION_ERROR
    if result.is_connectivity_failure:
        print(" Destination unreachable; completed tables are checkpointed. Rerun with --resume.")
    return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
