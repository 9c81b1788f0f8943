# src/issuecorpus/engine/scoring.py
"""Downstream TF/IDF scorers.

The pipeline depends only on the Scorer protocol. Two backends exist:

- STANDARD: stop words removed, term frequency normalized by document
  length, IDF = log(N / df).
- LIGHTWEIGHT: no stop-word list, raw term counts, smoothed
  IDF = log((1 + N) / (1 + df)) + 1.
"""

import math
import re
from collections import Counter
from typing import Protocol, runtime_checkable

from issuecorpus.contracts.enums import ScorerBackend
from issuecorpus.contracts.records import Record
from issuecorpus.contracts.results import KeywordScore, TermVector
from issuecorpus.core.config import ScorerSettings

_HTML_ENTITY = re.compile(r"&[a-zA-Z]+;|&#\d+;")
_HTML_TAG = re.compile(r"<[^>]*>")
_TOKEN = re.compile(r"[a-z0-9_]+")
_NUMERIC = re.compile(r"^[0-9_]+$")

STOP_WORDS: frozenset[str] = frozenset(
    """
    a about above after again against all am an and any are as at be because been before being below between
    both but by can could did do does doing down during each few for from further had has have having he her
    here hers herself him himself his how i if in into is it its itself just me more most my myself no nor not
    now of off on once only or other our ours ourselves out over own same she should so some such than that the
    their theirs them themselves then there these they this those through to too under until up very was we
    were what when where which while who whom why will with would you your yours yourself yourselves also may
    might must shall us via per etc
    """.split()
)


@runtime_checkable
class Scorer(Protocol):
    """Capability interface of a downstream scorer."""

    @property
    def backend(self) -> ScorerBackend: ...

    def analyze(self, record: Record) -> TermVector:
        """Term frequencies of one record's text. Empty for content-less records."""
        ...

    def idf(self, document_frequency: int, total_documents: int) -> float: ...

    def rank(self, terms: TermVector, idf_by_term: dict[str, float], top_n: int) -> list[KeywordScore]:
        """Top ``top_n`` corpus terms of a document by TF-IDF, ties by keyword."""
        ...


class _TokenizingScorer:
    """Shared tokenizer and ranking."""

    _stop_words: frozenset[str] = frozenset()

    def __init__(self, settings: ScorerSettings) -> None:
        self._settings = settings

    def tokenize(self, text: str) -> list[str]:
        if not text:
            return []
        text = text[: self._settings.max_text_length]
        text = _HTML_TAG.sub(" ", _HTML_ENTITY.sub(" ", text)).lower()
        return [
            token
            for token in _TOKEN.findall(text)
            if self._settings.min_term_length <= len(token) <= self._settings.max_term_length
            and not _NUMERIC.match(token)
            and token not in self._stop_words
        ]

    def rank(self, terms: TermVector, idf_by_term: dict[str, float], top_n: int) -> list[KeywordScore]:
        scores = [
            KeywordScore(keyword=term, tfidf_score=tf * idf_by_term[term], tf_score=tf, idf_score=idf_by_term[term])
            for term, tf in terms.items()
            if term in idf_by_term
        ]
        scores.sort(key=lambda s: (-s.tfidf_score, s.keyword))
        return scores[:top_n]


class StandardScorer(_TokenizingScorer):
    """Stop-word filtered, length-normalized TF with classic IDF."""

    _stop_words = STOP_WORDS

    @property
    def backend(self) -> ScorerBackend:
        return ScorerBackend.STANDARD

    def analyze(self, record: Record) -> TermVector:
        tokens = self.tokenize(record.text)
        if not tokens:
            return {}
        total = len(tokens)
        return {term: count / total for term, count in Counter(tokens).items()}

    def idf(self, document_frequency: int, total_documents: int) -> float:
        if document_frequency <= 0 or total_documents <= 0:
            return 0.0
        return math.log(total_documents / document_frequency)


class LightweightScorer(_TokenizingScorer):
    """Raw-count TF with smoothed IDF; no stop-word list."""

    @property
    def backend(self) -> ScorerBackend:
        return ScorerBackend.LIGHTWEIGHT

    def analyze(self, record: Record) -> TermVector:
        return {term: float(count) for term, count in Counter(self.tokenize(record.text)).items()}

    def idf(self, document_frequency: int, total_documents: int) -> float:
        return math.log((1 + total_documents) / (1 + document_frequency)) + 1.0


def create_scorer(backend: ScorerBackend | str, settings: ScorerSettings | None = None) -> Scorer:
    """Factory for scorer backends.

    Raises:
        ValueError: If ``backend`` names no known backend
    """
    settings = settings or ScorerSettings()
    match ScorerBackend(backend):
        case ScorerBackend.STANDARD:
            return StandardScorer(settings)
        case ScorerBackend.LIGHTWEIGHT:
            return LightweightScorer(settings)
