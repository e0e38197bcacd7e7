"""
Centralized configuration defaults for migration runs.

This module defines operational configuration constants used throughout the system.
CLI arguments, environment variables and settings files override these defaults;
the resolved values reach the engine only through a MigrationSettings instance.
"""


class ProcessingDefaults:
    """
    Centralized operational configuration for migration runs.

    All values are defaults that can be overridden via CLI arguments:
    - dbf-migrator --batch-size 500 --mode merge
    - dbf-migrator --log-level DEBUG
    """

    # Batch processing
    BATCH_SIZE = 1000  # Rows committed per transaction
    MIN_BATCH_SIZE = 1
    MAX_BATCH_SIZE = 10000
    CANCELLATION_CHECK_INTERVAL = 100  # Records between cancellation checks

    # Migration behaviour
    MODE = "replace"  # replace | merge
    SAFE_MODE = True  # Inflate character widths and clean text
    SKIP_DELETED = True  # Skip soft-deleted records instead of migrating them flagged

    # Source files
    SOURCE_ENCODING = "cp1252"

    # Destination connection (MySQL ODBC)
    DB_DRIVER = "MySQL ODBC 8.0 Unicode Driver"
    DB_SERVER = "localhost"
    DB_PORT = 3306
    DB_CHARSET = "utf8mb4"
    CONNECTION_TIMEOUT = 30  # Connection timeout in seconds

    # Logging
    LOG_ROOT = "migration_logs"
    LOG_LEVEL = "INFO"  # Default logging level (CRITICAL, ERROR, WARNING, INFO, DEBUG)

    @classmethod
    def to_dict(cls) -> dict:
        """
        Export all defaults as a dictionary.

        Returns:
            Dictionary of all ProcessingDefaults class attributes.
        """
        return {
            key: getattr(cls, key)
            for key in dir(cls)
            if not key.startswith('_') and key.isupper()
        }

    @classmethod
    def log_summary(cls, logger=None):
        """
        Log a summary of all operational defaults.

        Args:
            logger: Optional logger instance. If None, prints to stdout.
        """
        config_dict = cls.to_dict()
        summary = "\n".join([f"  {key}: {value}" for key, value in sorted(config_dict.items())])
        message = f"Migration Configuration Defaults:\n{summary}"

        if logger:
            logger.info(message)
        else:
            print(message)
