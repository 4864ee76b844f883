"""
Equities domain: query normalization, schema validation and stock data selection.
"""

from domains.equities.data_selector import DataSelector
from domains.equities.normalizer import QueryNormalizer
from domains.equities.overrides import apply_rule_overrides
from domains.equities.validator import FieldValidator

__all__ = ["DataSelector", "FieldValidator", "QueryNormalizer", "apply_rule_overrides"]
