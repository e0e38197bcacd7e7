"""
Unit tests for identifier normalization and text helpers.
"""

import pytest

from dbf_migrator.utils import IdentifierUtils, StringUtils


class TestSafeSqlName:

    @pytest.mark.parametrize("raw, expected", [
        ("CUST NAME", "cust_name"),
        ("  Amount$ ", "amount_"),
        ("a--b", "a_b"),
        ("2NDADDR", "_2ndaddr"),
        ("ORDER", "_order"),
        ("Desc", "_desc"),
        ("", "_"),
    ])
    def test_normalization(self, raw, expected):
        assert IdentifierUtils.safe_sql_name(raw) == expected

    def test_unique_names_respects_taken(self):
        assert IdentifierUtils.unique_names(["a", "a", "primary_id", "a"], taken={"primary_id"}) == \
            ["a", "a_2", "primary_id_2", "a_3"]

    def test_quote_escapes_backticks(self):
        assert IdentifierUtils.quote("we`ird") == "`we``ird`"


class TestStringUtils:

    def test_clean_text(self):
        assert StringUtils.clean_text(" abc\x00 ") == "abc"

    def test_safe_string_check(self):
        assert StringUtils.safe_string_check("x")
        assert not StringUtils.safe_string_check("   ")
        assert not StringUtils.safe_string_check(None)
