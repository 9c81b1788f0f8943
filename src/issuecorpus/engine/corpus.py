# src/issuecorpus/engine/corpus.py
"""CorpusWriter: per-document term persistence and final corpus artifacts.

Document term vectors are written per record while batches are scored, so
a resumed run keeps what earlier runs persisted. Corpus statistics and
keywords are derived from those rows at the end of the run. Every store
access goes through the ResilientStore.
"""

import math
from collections.abc import Iterable, Iterator, Sequence

from sqlalchemy import Connection, delete, distinct, func, insert, select

from issuecorpus.contracts.results import CorpusTermStats, KeywordScore, TermVector
from issuecorpus.core.config import ScorerSettings
from issuecorpus.core.logging import get_logger
from issuecorpus.core.store.deadline import Deadline
from issuecorpus.core.store.resilient import ResilientStore
from issuecorpus.core.store.schema import corpus_stats_table, document_terms_table, keywords_table
from issuecorpus.engine.scoring import Scorer

logger = get_logger(__name__)


class CorpusWriter:
    """Reads and writes the corpus output tables."""

    def __init__(self, store: ResilientStore, settings: ScorerSettings) -> None:
        self._store = store
        self._settings = settings

    def ensure_tables(self) -> None:
        def op(deadline: Deadline) -> None:
            self._store.db.ensure_corpus_tables()

        self._store.execute(op, "ensure_corpus_tables")

    def reset(self) -> None:
        """Empty every corpus table in one transaction."""

        def clear(conn: Connection) -> None:
            for table in (keywords_table, corpus_stats_table, document_terms_table):
                conn.execute(delete(table))

        self._store.transaction(clear, "reset_corpus")
        logger.info("Corpus tables reset")

    # === Document terms ===

    @staticmethod
    def write_document(conn: Connection, issue_key: str, terms: TermVector, batch_index: int) -> int:
        """Replace the term vector of one document. Returns rows written."""
        conn.execute(delete(document_terms_table).where(document_terms_table.c.issue_key == issue_key))
        if not terms:
            return 0
        conn.execute(
            insert(document_terms_table),
            [
                {"issue_key": issue_key, "term": term, "term_frequency": tf, "batch_index": batch_index}
                for term, tf in terms.items()
            ],
        )
        return len(terms)

    def iter_document_keys(self, chunk_size: int) -> Iterator[list[str]]:
        """Yield keys of documents with persisted terms in key-ordered chunks."""
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        last_key: str | None = None
        while True:
            stmt = select(distinct(document_terms_table.c.issue_key).label("issue_key"))
            if last_key is not None:
                stmt = stmt.where(document_terms_table.c.issue_key > last_key)
            rows = self._store.all(
                stmt.order_by(document_terms_table.c.issue_key).limit(chunk_size),
                name="iter_document_keys",
            )
            keys = [row["issue_key"] for row in rows]
            if keys:
                yield keys
            if len(keys) < chunk_size:
                return
            last_key = keys[-1]

    def load_terms(self, keys: Sequence[str]) -> dict[str, TermVector]:
        """Term vectors of ``keys``; documents without terms are absent."""
        if not keys:
            return {}
        rows = self._store.all(
            select(document_terms_table.c.issue_key, document_terms_table.c.term, document_terms_table.c.term_frequency)
            .where(document_terms_table.c.issue_key.in_(list(keys)))
            .order_by(document_terms_table.c.issue_key, document_terms_table.c.term),
            name="load_terms",
        )
        terms: dict[str, TermVector] = {}
        for row in rows:
            terms.setdefault(row["issue_key"], {})[row["term"]] = row["term_frequency"]
        return terms

    # === Corpus statistics ===

    def compute_corpus_stats(self, scorer: Scorer) -> list[CorpusTermStats]:
        """Document frequency and IDF of every term that passes the df filters.

        A term is kept when it appears in at least ``min_document_frequency``
        documents and in at most ``floor(max_document_frequency * N)``.
        """
        total_row = self._store.get(
            select(func.count(distinct(document_terms_table.c.issue_key)).label("n")),
            name="count_documents",
        )
        total_documents = int(total_row["n"]) if total_row is not None else 0
        if total_documents == 0:
            return []

        max_df = math.floor(self._settings.max_document_frequency * total_documents)
        df = func.count(document_terms_table.c.issue_key).label("df")
        rows = self._store.all(
            select(document_terms_table.c.term, df)
            .group_by(document_terms_table.c.term)
            .having(func.count(document_terms_table.c.issue_key) >= self._settings.min_document_frequency)
            .having(func.count(document_terms_table.c.issue_key) <= max_df)
            .order_by(document_terms_table.c.term),
            name="document_frequencies",
        )
        stats = [
            CorpusTermStats(
                keyword=row["term"],
                document_frequency=int(row["df"]),
                total_documents=total_documents,
                idf_score=scorer.idf(int(row["df"]), total_documents),
            )
            for row in rows
        ]
        logger.info(
            "Corpus statistics computed",
            total_documents=total_documents,
            corpus_terms=len(stats),
            min_document_frequency=self._settings.min_document_frequency,
            max_document_frequency=max_df,
        )
        return stats

    @staticmethod
    def write_corpus_stats(conn: Connection, stats: Sequence[CorpusTermStats]) -> int:
        conn.execute(delete(corpus_stats_table))
        if stats:
            conn.execute(
                insert(corpus_stats_table),
                [
                    {
                        "keyword": s.keyword,
                        "idf_score": s.idf_score,
                        "document_frequency": s.document_frequency,
                        "total_documents": s.total_documents,
                    }
                    for s in stats
                ],
            )
        return len(stats)

    # === Keywords ===

    @staticmethod
    def write_keywords(conn: Connection, keywords_by_key: dict[str, list[KeywordScore]]) -> int:
        """Replace the keywords of every document in ``keywords_by_key``."""
        keys = list(keywords_by_key)
        if not keys:
            return 0
        conn.execute(delete(keywords_table).where(keywords_table.c.issue_key.in_(keys)))
        rows = [
            {
                "issue_key": key,
                "keyword": score.keyword,
                "tfidf_score": score.tfidf_score,
                "tf_score": score.tf_score,
                "idf_score": score.idf_score,
            }
            for key, scores in keywords_by_key.items()
            for score in scores
        ]
        if rows:
            conn.execute(insert(keywords_table), rows)
        return len(rows)

    def rank_documents(
        self,
        keys: Iterable[str],
        scorer: Scorer,
        idf_by_term: dict[str, float],
        top_n: int,
    ) -> dict[str, list[KeywordScore]]:
        terms = self.load_terms(list(keys))
        return {key: scorer.rank(vector, idf_by_term, top_n) for key, vector in terms.items()}

    # === Counters ===

    def _count(self, table_name: str) -> int:
        table = {t.name: t for t in (document_terms_table, corpus_stats_table, keywords_table)}[table_name]
        row = self._store.get(select(func.count().label("n")).select_from(table), name=f"count_{table_name}")
        return int(row["n"]) if row is not None else 0

    def count_document_terms(self) -> int:
        return self._count("document_terms")

    def count_keywords(self) -> int:
        return self._count("keywords")

    def count_corpus_terms(self) -> int:
        return self._count("corpus_stats")
