"""Relation-graph grouping of records into bounded connected components."""

from issuecorpus.core.grouping.engine import GroupingEngine
from issuecorpus.core.grouping.relations import RelationGraph, extract_relation_values, sanitize_field

__all__ = [
    "GroupingEngine",
    "RelationGraph",
    "extract_relation_values",
    "sanitize_field",
]
