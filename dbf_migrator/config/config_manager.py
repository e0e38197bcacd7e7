"""
Centralized configuration management for the DBF migration system.

This module provides the ConfigManager class that serves as the single source of truth
for run configuration: destination connection parameters, migration parameters,
an optional YAML/JSON settings file and command-line overrides. The resolved values
are handed to the engine as one MigrationSettings instance.

Precedence (lowest to highest): ProcessingDefaults, environment variables,
settings file, explicit overrides (CLI).
"""

import os
import json
import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Optional, Union

from ..exceptions import ConfigurationError
from ..models import MigrationCheckpoint, MigrationMode, MigrationSettings
from .processing_defaults import ProcessingDefaults
from ..utils import StringUtils


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"Environment variable {name} must be an integer, got {value!r}")


@dataclass
class DatabaseConfig:
    """Destination connection configuration with environment variable support."""
    connection_string: str = ""
    driver: str = ProcessingDefaults.DB_DRIVER
    server: str = ProcessingDefaults.DB_SERVER
    port: int = ProcessingDefaults.DB_PORT
    database: str = ""
    username: str = ""
    password: str = field(default="", repr=False)
    charset: str = ProcessingDefaults.DB_CHARSET
    connection_timeout: int = ProcessingDefaults.CONNECTION_TIMEOUT
    explicit_connection_string: bool = False

    def __post_init__(self):
        if not self.connection_string:
            self.connection_string = self.build_connection_string()

    def build_connection_string(self) -> str:
        """
        Server-level ODBC connection string; the database is selected after
        the engine has made sure it exists.
        """
        connection_string = (
            f"DRIVER={{{self.driver}}};"
            f"SERVER={self.server};"
            f"PORT={self.port};"
        )
        if self.username:
            connection_string += f"UID={self.username};"
            connection_string += f"PWD={self.password};"
        if self.charset:
            connection_string += f"CHARSET={self.charset};"
        return connection_string

    def with_overrides(self, **overrides) -> 'DatabaseConfig':
        """Copy with non-None overrides applied and the connection string rebuilt."""
        values = {key: value for key, value in overrides.items() if value is not None}
        if not values:
            return self
        if values.get('connection_string'):
            return replace(self, explicit_connection_string=True, **values)
        updated = replace(self, **values)
        if not updated.explicit_connection_string:
            updated.connection_string = updated.build_connection_string()
        return updated

    @classmethod
    def from_environment(cls) -> 'DatabaseConfig':
        """Create database configuration from environment variables."""
        # Primary connection string from environment
        connection_string = os.environ.get('DBF_MIGRATOR_CONNECTION_STRING')
        database = os.environ.get('DBF_MIGRATOR_DB_DATABASE', '')

        if connection_string:
            return cls(connection_string=connection_string, database=database,
                       explicit_connection_string=True)

        return cls(
            driver=os.environ.get('DBF_MIGRATOR_DB_DRIVER', ProcessingDefaults.DB_DRIVER),
            server=os.environ.get('DBF_MIGRATOR_DB_SERVER', ProcessingDefaults.DB_SERVER),
            port=_env_int('DBF_MIGRATOR_DB_PORT', ProcessingDefaults.DB_PORT),
            database=database,
            username=os.environ.get('DBF_MIGRATOR_DB_USERNAME', ''),
            password=os.environ.get('DBF_MIGRATOR_DB_PASSWORD', ''),
            charset=os.environ.get('DBF_MIGRATOR_DB_CHARSET', ProcessingDefaults.DB_CHARSET),
            connection_timeout=_env_int('DBF_MIGRATOR_DB_CONNECTION_TIMEOUT', ProcessingDefaults.CONNECTION_TIMEOUT),
        )


@dataclass
class MigrationParameters:
    """Migration parameters with environment variable support."""
    source_folder: str = ""
    mode: str = ProcessingDefaults.MODE
    batch_size: int = ProcessingDefaults.BATCH_SIZE
    safe_mode: bool = ProcessingDefaults.SAFE_MODE
    skip_deleted: bool = ProcessingDefaults.SKIP_DELETED
    log_root: str = ProcessingDefaults.LOG_ROOT
    source_encoding: str = ProcessingDefaults.SOURCE_ENCODING
    cancellation_check_interval: int = ProcessingDefaults.CANCELLATION_CHECK_INTERVAL

    @classmethod
    def from_environment(cls) -> 'MigrationParameters':
        """Create migration parameters from environment variables."""
        return cls(
            source_folder=os.environ.get('DBF_MIGRATOR_SOURCE_FOLDER', ''),
            mode=os.environ.get('DBF_MIGRATOR_MODE', ProcessingDefaults.MODE),
            batch_size=_env_int('DBF_MIGRATOR_BATCH_SIZE', ProcessingDefaults.BATCH_SIZE),
            safe_mode=_env_bool('DBF_MIGRATOR_SAFE_MODE', ProcessingDefaults.SAFE_MODE),
            skip_deleted=_env_bool('DBF_MIGRATOR_SKIP_DELETED', ProcessingDefaults.SKIP_DELETED),
            log_root=os.environ.get('DBF_MIGRATOR_LOG_ROOT', ProcessingDefaults.LOG_ROOT),
            source_encoding=os.environ.get('DBF_MIGRATOR_SOURCE_ENCODING', ProcessingDefaults.SOURCE_ENCODING),
        )


class ConfigManager:
    """
    Centralized configuration manager serving as single source of truth.

    This class consolidates:
    - Destination connection configuration
    - Migration parameters
    - Settings file loading (YAML or JSON)
    - Environment variable handling
    """

    # Settings file keys per section, mapped to (target object, attribute)
    _FILE_KEYS = {
        'source': {'folder': ('migration', 'source_folder'), 'encoding': ('migration', 'source_encoding')},
        'target': {
            'database': ('database', 'database'), 'server': ('database', 'server'),
            'port': ('database', 'port'), 'username': ('database', 'username'),
            'password': ('database', 'password'), 'driver': ('database', 'driver'),
            'charset': ('database', 'charset'), 'connection_string': ('database', 'connection_string'),
            'connection_timeout': ('database', 'connection_timeout'),
        },
        'load': {
            'mode': ('migration', 'mode'), 'batch_size': ('migration', 'batch_size'),
            'safe_mode': ('migration', 'safe_mode'), 'skip_deleted': ('migration', 'skip_deleted'),
            'log_root': ('migration', 'log_root'),
        },
    }

    def __init__(self, settings_file: Optional[Union[str, Path]] = None):
        """
        Initialize the configuration manager.

        Args:
            settings_file: Optional YAML or JSON settings file layered over the environment
        """
        self.logger = logging.getLogger(__name__)

        self.database_config = DatabaseConfig.from_environment()
        self.migration_params = MigrationParameters.from_environment()
        self.settings_file = Path(settings_file) if settings_file else None

        if self.settings_file:
            self.apply_settings_file(self.settings_file)

        self.logger.debug(f"Database server: {self.database_config.server}")
        self.logger.debug(f"Batch size: {self.migration_params.batch_size}")

    def load_settings_file(self, path: Union[str, Path]) -> Dict[str, Any]:
        """
        Read a YAML or JSON settings file.

        Raises:
            ConfigurationError: If the file is missing, unparsable or of unknown format
        """
        full_path = Path(path)
        if not full_path.exists():
            raise ConfigurationError(f"Settings file not found: {full_path}")

        try:
            with open(full_path, 'r', encoding='utf-8') as file:
                if full_path.suffix.lower() in ['.yaml', '.yml']:
                    import yaml
                    data = yaml.safe_load(file)
                elif full_path.suffix.lower() == '.json':
                    data = json.load(file)
                else:
                    raise ConfigurationError(f"Unsupported file format: {full_path.suffix}")
        except ConfigurationError:
            raise
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Failed to parse settings file {full_path}: {e}")
        except Exception as e:
            raise ConfigurationError(f"Failed to read settings file {full_path}: {e}")

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"Settings file {full_path} must contain a mapping at the top level")
        return data

    def apply_settings_file(self, path: Union[str, Path]) -> None:
        data = self.load_settings_file(path)
        database_overrides: Dict[str, Any] = {}
        migration_overrides: Dict[str, Any] = {}

        for section, keys in self._FILE_KEYS.items():
            values = data.get(section) or {}
            if not isinstance(values, dict):
                raise ConfigurationError(f"Section '{section}' in {path} must be a mapping")
            for key, value in values.items():
                if key not in keys:
                    self.logger.warning(f"Ignoring unknown setting {section}.{key} in {path}")
                    continue
                target, attribute = keys[key]
                (database_overrides if target == 'database' else migration_overrides)[attribute] = value

        self.apply_overrides(**database_overrides, **migration_overrides)
        self.logger.info(f"Loaded settings from {path}")

    def apply_overrides(self, **overrides) -> None:
        """
        Apply explicit overrides (e.g. from the command line); None values are ignored.

        Keys are DatabaseConfig or MigrationParameters attribute names.
        """
        database_fields = set(DatabaseConfig.__dataclass_fields__)
        migration_fields = set(MigrationParameters.__dataclass_fields__)
        database_values = {}
        migration_values = {}
        for key, value in overrides.items():
            if value is None:
                continue
            if key in database_fields:
                database_values[key] = value
            elif key in migration_fields:
                migration_values[key] = value
            else:
                raise ConfigurationError(f"Unknown configuration key: {key}")

        self.database_config = self.database_config.with_overrides(**database_values)
        if migration_values:
            self.migration_params = replace(self.migration_params, **migration_values)

    def validate_configuration(self) -> bool:
        """
        Validate all configuration settings.

        Returns:
            True if all configurations are valid

        Raises:
            ConfigurationError: If any configuration is invalid
        """
        errors = []
        params = self.migration_params

        if not self.database_config.connection_string:
            errors.append("Database connection string is empty")
        if not StringUtils.safe_string_check(self.database_config.database):
            errors.append("Target database name is empty")

        if not params.source_folder:
            errors.append("Source folder is not set")
        elif not Path(params.source_folder).is_dir():
            errors.append(f"Source folder does not exist: {params.source_folder}")

        if not isinstance(params.batch_size, int) or not (
            ProcessingDefaults.MIN_BATCH_SIZE <= params.batch_size <= ProcessingDefaults.MAX_BATCH_SIZE
        ):
            errors.append(f"Batch size must be between {ProcessingDefaults.MIN_BATCH_SIZE} and "
                          f"{ProcessingDefaults.MAX_BATCH_SIZE}, got {params.batch_size}")

        if str(params.mode).lower() not in [mode.value for mode in MigrationMode]:
            errors.append(f"Mode must be one of {[mode.value for mode in MigrationMode]}, got {params.mode}")

        if errors:
            raise ConfigurationError(f"Configuration validation failed: {'; '.join(errors)}")

        self.logger.info("Configuration validation passed")
        return True

    def build_settings(self, resume_checkpoint: Optional[MigrationCheckpoint] = None) -> MigrationSettings:
        """
        Validate and freeze the current configuration into MigrationSettings.

        Raises:
            ConfigurationError: If the configuration is invalid
        """
        self.validate_configuration()
        params = self.migration_params
        return MigrationSettings(
            source_folder=str(params.source_folder),
            target_database=self.database_config.database,
            connection_string=self.database_config.connection_string,
            mode=MigrationMode(str(params.mode).lower()),
            batch_size=params.batch_size,
            safe_mode=params.safe_mode,
            skip_deleted=params.skip_deleted,
            resume_checkpoint=resume_checkpoint,
            log_root=params.log_root,
            source_encoding=params.source_encoding,
            cancellation_check_interval=params.cancellation_check_interval,
            connection_timeout=self.database_config.connection_timeout,
        )

    def get_configuration_summary(self) -> Dict[str, Any]:
        """
        Get a summary of all configuration settings (password masked).

        Returns:
            Dictionary containing configuration summary
        """
        return {
            'database': {
                'server': self.database_config.server,
                'port': self.database_config.port,
                'database': self.database_config.database,
                'driver': self.database_config.driver,
                'username': self.database_config.username,
                'password': '****' if self.database_config.password else '',
                'connection_timeout': self.database_config.connection_timeout,
            },
            'migration': {
                'source_folder': self.migration_params.source_folder,
                'mode': self.migration_params.mode,
                'batch_size': self.migration_params.batch_size,
                'safe_mode': self.migration_params.safe_mode,
                'skip_deleted': self.migration_params.skip_deleted,
                'log_root': self.migration_params.log_root,
                'source_encoding': self.migration_params.source_encoding,
            },
            'settings_file': str(self.settings_file) if self.settings_file else None,
        }


# Global configuration manager instance
_global_config_manager: Optional[ConfigManager] = None


def get_config_manager(settings_file: Optional[Union[str, Path]] = None) -> ConfigManager:
    """
    Get the global configuration manager instance.

    Args:
        settings_file: Optional settings file. Only used on first call.

    Returns:
        Global ConfigManager instance
    """
    global _global_config_manager

    if _global_config_manager is None:
        _global_config_manager = ConfigManager(settings_file)

    return _global_config_manager


def reset_config_manager() -> None:
    """Reset the global configuration manager instance."""
    global _global_config_manager
    _global_config_manager = None
