"""Destination database access: SQL channel, table provisioning and batch writes."""

from .sql_channel import PyodbcSqlChannel
from .table_provisioner import TableProvisioner
from .batch_writer import BatchWriter

__all__ = ['PyodbcSqlChannel', 'TableProvisioner', 'BatchWriter']
