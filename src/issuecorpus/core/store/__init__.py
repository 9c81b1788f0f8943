"""Issue store access: connection management, schema and the ResilientStore."""

from issuecorpus.core.store.database import StoreDatabase
from issuecorpus.core.store.deadline import Deadline, interrupt_on_expiry
from issuecorpus.core.store.failures import CallTrace, classify_store_failure
from issuecorpus.core.store.resilient import ResilientStore, split_script
from issuecorpus.core.store.schema import (
    comments_table,
    corpus_metadata,
    corpus_stats_table,
    document_terms_table,
    issues_table,
    keywords_table,
    source_metadata,
)

__all__ = [
    "CallTrace",
    "Deadline",
    "ResilientStore",
    "StoreDatabase",
    "classify_store_failure",
    "comments_table",
    "corpus_metadata",
    "corpus_stats_table",
    "document_terms_table",
    "interrupt_on_expiry",
    "issues_table",
    "keywords_table",
    "source_metadata",
    "split_script",
]
