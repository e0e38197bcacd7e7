"""Source table access."""

from .dbf_cursor import DbfSourceCatalog, DbfSourceCursor

__all__ = ['DbfSourceCatalog', 'DbfSourceCursor']
