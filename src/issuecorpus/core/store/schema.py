# src/issuecorpus/core/store/schema.py
"""SQLAlchemy table definitions for the issue store.

Uses SQLAlchemy Core (not ORM) for explicit control over queries.
Two metadata collections are kept apart: the upstream tables written by
the ingestion loader (read-only to the pipeline), and the corpus tables the
pipeline owns and may reset.
"""

from sqlalchemy import (
    Column,
    Float,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
)

# === Upstream (written by the ingestion loader) ===

source_metadata = MetaData()

issues_table = Table(
    "issues",
    source_metadata,
    Column("issue_key", String(64), primary_key=True),
    Column("title", Text),
    Column("description", Text),
    Column("summary", Text),
    Column("resolution_description", Text),
    Column("related_url", Text),
    Column("related_artifacts", Text),
    Column("related_pages", Text),
)

comments_table = Table(
    "comments",
    source_metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("comment_id", String(64), unique=True),
    Column("issue_key", String(64), ForeignKey("issues.issue_key"), nullable=False),
    Column("author", String(255)),
    Column("created_at", String(64)),
    Column("body", Text),
)

Index("ix_comments_issue_key", comments_table.c.issue_key)

SOURCE_TABLES: tuple[str, ...] = ("issues", "comments")

# === Corpus output (owned by the pipeline) ===

corpus_metadata = MetaData()

document_terms_table = Table(
    "document_terms",
    corpus_metadata,
    Column("issue_key", String(64), primary_key=True),
    Column("term", String(128), primary_key=True),
    Column("term_frequency", Float, nullable=False),
    Column("batch_index", Integer, nullable=False),
)

Index("ix_document_terms_term", document_terms_table.c.term)
Index("ix_document_terms_batch", document_terms_table.c.batch_index)

corpus_stats_table = Table(
    "corpus_stats",
    corpus_metadata,
    Column("keyword", String(128), primary_key=True),
    Column("idf_score", Float, nullable=False),
    Column("document_frequency", Integer, nullable=False),
    Column("total_documents", Integer, nullable=False),
)

keywords_table = Table(
    "keywords",
    corpus_metadata,
    Column("issue_key", String(64), primary_key=True),
    Column("keyword", String(128), primary_key=True),
    Column("tfidf_score", Float, nullable=False),
    Column("tf_score", Float, nullable=False),
    Column("idf_score", Float, nullable=False),
)

Index("ix_keywords_keyword", keywords_table.c.keyword)
Index("ix_keywords_score", keywords_table.c.issue_key, keywords_table.c.tfidf_score)
