"""
Table Provisioner - creates or verifies destination tables.

Every destination table gets a synthetic auto-increment identity column, one
column per source column and a soft-delete flag with a supporting index.
DDL failures are fatal for the table and are never retried.
"""

import logging

from typing import List

from ..interfaces import SqlChannelInterface
from ..exceptions import DatabaseConnectionError, SchemaProvisioningError
from ..models import MigrationMode, TableMigrationPlan
from ..schema.type_mapper import IDENTITY_COLUMN, SOFT_DELETE_COLUMN, SOFT_DELETE_INDEX
from ..utils import IdentifierUtils


class TableProvisioner:
    """Issues the DDL that prepares the destination for a table migration."""

    def __init__(self, channel: SqlChannelInterface):
        self.channel = channel
        self.logger = logging.getLogger(__name__)

    def ensure_database_exists(self, database_name: str) -> None:
        """
        Create the destination database if needed and make it the active database.

        Idempotent: running it against an existing database changes nothing.
        """
        quoted = IdentifierUtils.quote(database_name)
        try:
            self.channel.execute_ddl(f"CREATE DATABASE IF NOT EXISTS {quoted}")
            self.channel.change_database(database_name)
        except DatabaseConnectionError:
            raise
        except Exception as e:
            raise SchemaProvisioningError(f"Failed to prepare database {database_name}: {e}",
                                          error_category="ddl_failure")
        self.logger.info(f"Using destination database {database_name}")

    def provision_table(self, plan: TableMigrationPlan, mode: MigrationMode) -> None:
        """
        Prepare the destination table for a plan.

        Args:
            plan: Table plan with resolved destination types
            mode: REPLACE drops and recreates the table; MERGE creates it only if absent

        Raises:
            SchemaProvisioningError: If any DDL statement fails or an existing
                table lacks columns the plan needs (merge mode)
            DatabaseConnectionError: If the connection drops
        """
        table = IdentifierUtils.quote(plan.table_name)
        definitions = ", ".join(self.build_column_definitions(plan))

        try:
            if mode == MigrationMode.REPLACE:
                self.channel.execute_ddl(f"DROP TABLE IF EXISTS {table}")
                self.channel.execute_ddl(f"CREATE TABLE {table} ({definitions})")
                self.logger.info(f"Recreated table {plan.table_name} ({len(plan.columns)} columns)")
            else:
                self.channel.execute_ddl(f"CREATE TABLE IF NOT EXISTS {table} ({definitions})")
                self._verify_existing_columns(plan)
                self.logger.info(f"Table {plan.table_name} ready for merge")
        except (DatabaseConnectionError, SchemaProvisioningError):
            raise
        except Exception as e:
            self.logger.error(f"DDL failed for table {plan.table_name}: {e}")
            raise SchemaProvisioningError(f"Failed to provision table {plan.table_name}: {e}",
                                          table_name=plan.table_name, error_category="ddl_failure")

    @staticmethod
    def build_column_definitions(plan: TableMigrationPlan) -> List[str]:
        """Column and index definitions in creation order."""
        definitions = [f"{IdentifierUtils.quote(IDENTITY_COLUMN)} INT AUTO_INCREMENT PRIMARY KEY"]
        for column, column_type in zip(plan.columns, plan.column_types):
            definitions.append(f"{IdentifierUtils.quote(column.safe_name)} {column_type}")
        definitions.append(f"{IdentifierUtils.quote(SOFT_DELETE_COLUMN)} BOOLEAN DEFAULT FALSE")
        definitions.append(
            f"INDEX {IdentifierUtils.quote(SOFT_DELETE_INDEX)} ({IdentifierUtils.quote(SOFT_DELETE_COLUMN)})"
        )
        return definitions

    def _verify_existing_columns(self, plan: TableMigrationPlan) -> None:
        rows = self.channel.query(
            "SELECT COLUMN_NAME FROM information_schema.COLUMNS "
            "WHERE TABLE_SCHEMA = DATABASE() AND TABLE_NAME = ?",
            [plan.table_name]
        )
        existing = {str(row[0]).lower() for row in rows}
        missing = [name for name in plan.insert_columns if name not in existing]
        if missing:
            raise SchemaProvisioningError(
                f"Existing table {plan.table_name} is missing columns: {', '.join(missing)}",
                table_name=plan.table_name, error_category="schema_mismatch"
            )
