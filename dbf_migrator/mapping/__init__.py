"""Mapping of decoded source values to destination parameters."""

from .value_mapper import ValueMapper

__all__ = ['ValueMapper']
