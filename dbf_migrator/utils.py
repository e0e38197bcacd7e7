"""
Utility functions for common patterns across the DBF migration system.
"""

import re
from typing import Any, Iterable, Optional, Set


class StringUtils:
    """Utility methods for string validation and processing."""

    # Cached regex patterns for performance
    _regex_cache = {
        'unsafe_identifier': re.compile(r'[^a-z0-9_]'),
        'repeated_underscore': re.compile(r'_{2,}'),
    }

    @staticmethod
    def safe_string_check(value: Any) -> bool:
        """
        Standardized string validation.

        Args:
            value: Value to check

        Returns:
            True if value is a non-empty string after stripping whitespace
        """
        return value is not None and str(value).strip() != ''

    @staticmethod
    def clean_text(value: str) -> str:
        """
        Remove embedded NUL characters and surrounding whitespace.

        Fixed-width legacy columns are padded with spaces and sometimes NULs.
        """
        return value.replace('\x00', '').strip()


class IdentifierUtils:
    """Builds destination-safe SQL identifiers from legacy names."""

    # MySQL reserved words likely to appear as legacy column or table names
    RESERVED = set(
        """
        add all alter analyze and as asc before between bigint binary blob both by call cascade case change char
        character check collate column condition constraint continue convert create cross current_date current_time
        current_timestamp current_user cursor database databases day_hour dec decimal declare default delayed delete
        desc describe distinct div double drop dual each else elseif enclosed escaped exists exit explain false fetch
        float for force foreign from fulltext grant group having high_priority if ignore in index infile inner inout
        insert int integer interval into is iterate join key keys kill leading leave left like limit lines load
        localtime lock long longblob longtext loop low_priority match mediumint minute_second mod modifies natural not
        null numeric on optimize option optionally or order out outer outfile precision primary procedure purge range
        read reads real references regexp release rename repeat replace require restrict return revoke right rlike
        schema schemas select separator set show smallint spatial sql ssl starting table terminated then tinyint to
        trailing trigger true undo union unique unlock unsigned update usage use using utc_date utc_time values
        varbinary varchar varying when where while with write xor year_month zerofill
        """.split()
    )

    @staticmethod
    def safe_sql_name(name: str) -> str:
        """
        Normalize a legacy name into a lower-case SQL identifier.

        Examples:
            'CUST NAME' -> 'cust_name'
            '2NDADDR'   -> '_2ndaddr'
            'ORDER'     -> '_order'
        """
        n = name.strip().lower().replace(' ', '_')
        n = StringUtils._regex_cache['unsafe_identifier'].sub('_', n)
        n = StringUtils._regex_cache['repeated_underscore'].sub('_', n)
        if not n:
            n = '_'
        if n in IdentifierUtils.RESERVED or n[0].isdigit():
            n = f"_{n}"
        return n

    @staticmethod
    def unique_names(names: Iterable[str], taken: Optional[Set[str]] = None) -> list:
        """
        Make names unique by appending _2, _3, ... to later duplicates.

        Args:
            names: Candidate names in order
            taken: Names already in use (e.g. synthetic columns)

        Returns:
            List of unique names aligned with the input
        """
        used = set(taken or ())
        result = []
        for name in names:
            candidate = name
            suffix = 2
            while candidate in used:
                candidate = f"{name}_{suffix}"
                suffix += 1
            used.add(candidate)
            result.append(candidate)
        return result

    @staticmethod
    def quote(identifier: str) -> str:
        """Back-tick quote an identifier for MySQL DDL and DML."""
        return "`" + identifier.replace("`", "``") + "`"
