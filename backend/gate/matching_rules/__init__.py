"""
Matching Rules Module
"""

from .permit_rules import canonical_value, evaluate, find_mismatches, is_permit_expired

__all__ = ["canonical_value", "evaluate", "find_mismatches", "is_permit_expired"]
