"""Schema translation from legacy column descriptors to destination types."""

from .type_mapper import map_column_type, build_table_plan

__all__ = ['map_column_type', 'build_table_plan']
