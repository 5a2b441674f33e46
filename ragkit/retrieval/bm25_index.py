"""BM25 keyword search index for document chunks."""

import logging
import math
import re
from collections.abc import Callable, Sequence
from typing import Any

import numpy as np
from rank_bm25 import BM25Okapi

from ragkit.errors import ConfigError, IndexNotBuiltError, InvalidInputError
from ragkit.models.chunk import Chunk
from ragkit.models.search import HybridScores, RetrievalResult
from ragkit.storage.filters import matches_filter

logger = logging.getLogger(__name__)

Tokenizer = Callable[[str], list[str]]

_TOKEN_PATTERN = re.compile(r"[^\W_]+")
MIN_TOKEN_LENGTH = 2


def tokenize(text: str) -> list[str]:
    """Default BM25 tokenizer.

    Lower-cases the text, splits on anything that is not a letter or digit
    and drops tokens shorter than two characters.

    Args:
        text: Text to tokenize

    Returns:
        List of tokens
    """
    return [token for token in _TOKEN_PATTERN.findall(text.lower()) if len(token) >= MIN_TOKEN_LENGTH]


class _FilteredBM25(BM25Okapi):
    """BM25Okapi with a non-negative IDF and document-frequency filtering.

    rank_bm25 builds the corpus statistics (term frequencies per document,
    document lengths, average length, document frequencies). The IDF is
    replaced by ``ln(1 + (N - df + 0.5) / (df + 0.5))``, which never goes
    negative for common terms, and terms outside
    ``[min_doc_freq, floor(N * max_doc_freq_ratio)]`` are left out of the
    vocabulary entirely.
    """

    def __init__(
        self,
        corpus: list[list[str]],
        k1: float,
        b: float,
        min_doc_freq: int,
        max_doc_freq_ratio: float,
    ):
        self.min_doc_freq = min_doc_freq
        self.max_doc_freq_ratio = max_doc_freq_ratio
        self.doc_freq: dict[str, int] = {}
        super().__init__(corpus, k1=k1, b=b)

    def _calc_idf(self, nd: dict[str, int]) -> None:
        max_doc_freq = math.floor(self.corpus_size * self.max_doc_freq_ratio)
        self.doc_freq = dict(nd)
        for term, df in nd.items():
            if df < self.min_doc_freq or df > max_doc_freq:
                continue
            self.idf[term] = math.log(1 + (self.corpus_size - df + 0.5) / (df + 0.5))

    def get_scores(self, query: list[str]) -> np.ndarray:
        """Score every document against the query terms.

        Only documents that contain a term accumulate that term's weight,
        so empty documents never divide by zero.
        """
        scores = np.zeros(self.corpus_size)
        terms = [term for term in query if term in self.idf]
        if not terms:
            return scores

        doc_len = np.array(self.doc_len, dtype=float)
        length_norm = 1 - self.b + self.b * doc_len / self.avgdl

        for term in terms:
            tf = np.array([doc.get(term, 0) for doc in self.doc_freqs], dtype=float)
            matched = tf > 0
            scores[matched] += (
                self.idf[term]
                * tf[matched]
                * (self.k1 + 1)
                / (tf[matched] + self.k1 * length_norm[matched])
            )
        return scores


class BM25Index:
    """BM25 keyword search index for document chunks.

    Scores are computed with the Okapi BM25 formula. Results are sorted by
    score descending with ties kept in insertion order, and the returned
    ``score`` is normalized by the best raw score so it lies in (0, 1]. The
    raw BM25 score is kept in ``scores.sparse``.
    """

    def __init__(
        self,
        k1: float = 1.2,
        b: float = 0.75,
        min_doc_freq: int = 1,
        max_doc_freq_ratio: float = 1.0,
        tokenizer: Tokenizer | None = None,
    ):
        """Initialize BM25 index.

        Args:
            k1: BM25 k1 parameter (term frequency saturation)
            b: BM25 b parameter (length normalization)
            min_doc_freq: Drop terms found in fewer documents than this
            max_doc_freq_ratio: Drop terms found in more than this fraction of documents
            tokenizer: Custom tokenizer (default: :func:`tokenize`)

        Raises:
            ConfigError: If any parameter is out of range
        """
        if k1 < 0:
            raise ConfigError(f"k1 must be non-negative, got {k1}")
        if not 0 <= b <= 1:
            raise ConfigError(f"b must be between 0 and 1, got {b}")
        if min_doc_freq < 1:
            raise ConfigError(f"min_doc_freq must be at least 1, got {min_doc_freq}")
        if not 0 < max_doc_freq_ratio <= 1:
            raise ConfigError(
                f"max_doc_freq_ratio must be in (0, 1], got {max_doc_freq_ratio}"
            )

        self.k1 = k1
        self.b = b
        self.min_doc_freq = min_doc_freq
        self.max_doc_freq_ratio = max_doc_freq_ratio
        self.tokenizer: Tokenizer = tokenizer or tokenize

        # Index data structures
        self.chunks: list[Chunk] = []
        self.tokenized_corpus: list[list[str]] = []
        self.bm25: _FilteredBM25 | None = None
        self._built = False

        logger.info(f"Initialized BM25Index with k1={k1}, b={b}")

    @classmethod
    def from_settings(cls, settings: Any, tokenizer: Tokenizer | None = None) -> "BM25Index":
        """Create an index configured from a Settings instance."""
        return cls(
            k1=settings.bm25_k1,
            b=settings.bm25_b,
            min_doc_freq=settings.bm25_min_doc_freq,
            max_doc_freq_ratio=settings.bm25_max_doc_freq_ratio,
            tokenizer=tokenizer,
        )

    @property
    def is_built(self) -> bool:
        return self._built

    @property
    def document_count(self) -> int:
        return len(self.chunks)

    @property
    def vocabulary_size(self) -> int:
        return len(self.bm25.idf) if self.bm25 is not None else 0

    def build_index(self, documents: Sequence[Chunk]) -> None:
        """Build the index from scratch, replacing any previous contents.

        An empty document list is valid and produces an index that matches
        nothing.

        Args:
            documents: Chunks to index

        Raises:
            InvalidInputError: If two documents share an id
        """
        seen: set[str] = set()
        for document in documents:
            if document.id in seen:
                raise InvalidInputError(f"Duplicate document id '{document.id}'")
            seen.add(document.id)

        self.chunks = list(documents)
        self.tokenized_corpus = [self.tokenizer(document.content) for document in self.chunks]
        self._rebuild_bm25()
        self._built = True

        logger.info(
            f"Built BM25 index: {self.document_count} documents, "
            f"{self.vocabulary_size} terms"
        )

    def add_documents(self, documents: Sequence[Chunk]) -> None:
        """Add documents and rebuild the corpus statistics.

        Raises:
            InvalidInputError: If an id is already indexed or repeated
        """
        self.build_index([*self.chunks, *documents])

    def remove_documents(self, doc_ids: Sequence[str]) -> int:
        """Remove documents by id and rebuild.

        Returns:
            Number of documents removed
        """
        to_remove = set(doc_ids)
        remaining = [chunk for chunk in self.chunks if chunk.id not in to_remove]
        removed_count = len(self.chunks) - len(remaining)
        if removed_count > 0:
            self.build_index(remaining)
            logger.info(f"Removed {removed_count} documents from BM25 index")
        return removed_count

    def retrieve(
        self,
        query: str,
        top_k: int = 10,
        min_score: float | None = None,
        metadata_filter: dict[str, Any] | None = None,
    ) -> list[RetrievalResult]:
        """Search the index and return the top-k matching chunks.

        Args:
            query: Free-text query
            top_k: Number of results to return
            min_score: Minimum raw BM25 score
            metadata_filter: Optional metadata filter (see ``matches_filter``)

        Returns:
            Results sorted by score descending

        Raises:
            IndexNotBuiltError: If build_index has not been called
            InvalidInputError: If the query is empty or top_k < 1
        """
        if not self._built:
            raise IndexNotBuiltError("BM25 index has not been built; call build_index() first")
        if not query or not query.strip():
            raise InvalidInputError("Query cannot be empty")
        if top_k < 1:
            raise InvalidInputError(f"top_k must be at least 1, got {top_k}")

        if self.bm25 is None:
            return []

        scores = self.bm25.get_scores(self.tokenizer(query))

        hits = [(i, float(score)) for i, score in enumerate(scores) if score > 0]
        if min_score is not None:
            hits = [(i, score) for i, score in hits if score >= min_score]
        if metadata_filter:
            hits = [(i, score) for i, score in hits if matches_filter(self.chunks[i], metadata_filter)]

        # sorted() is stable, so equal scores keep insertion order
        hits = sorted(hits, key=lambda hit: hit[1], reverse=True)[:top_k]
        if not hits:
            return []

        best = hits[0][1]
        results = [
            RetrievalResult(
                id=self.chunks[i].id,
                chunk=self.chunks[i],
                score=score / best,
                scores=HybridScores(sparse=score),
                sparse_rank=rank,
            )
            for rank, (i, score) in enumerate(hits, 1)
        ]

        logger.debug(f"BM25 retrieve returned {len(results)} results (requested top_k={top_k})")
        return results

    def has_term(self, term: str) -> bool:
        """Whether a term survived vocabulary filtering."""
        return self.bm25 is not None and term.lower() in self.bm25.idf

    def get_idf(self, term: str) -> float | None:
        """IDF of a term, or None when it is not in the vocabulary."""
        if self.bm25 is None:
            return None
        return self.bm25.idf.get(term.lower())

    def get_document_frequency(self, term: str) -> int:
        """Number of documents containing a term, before vocabulary filtering."""
        if self.bm25 is None:
            return 0
        return self.bm25.doc_freq.get(term.lower(), 0)

    def _rebuild_bm25(self) -> None:
        """Rebuild BM25 statistics from the tokenized corpus."""
        if len(self.tokenized_corpus) > 0:
            self.bm25 = _FilteredBM25(
                self.tokenized_corpus,
                k1=self.k1,
                b=self.b,
                min_doc_freq=self.min_doc_freq,
                max_doc_freq_ratio=self.max_doc_freq_ratio,
            )
            logger.debug(f"Rebuilt BM25 index with {len(self.tokenized_corpus)} documents")
        else:
            self.bm25 = None
            logger.debug("BM25 index is empty")
