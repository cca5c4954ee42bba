"""
BM25 lexical search.

The index is rebuilt per query over the supplied corpus; there is no
incremental maintenance. Scores use the Okapi BM25 formula with
k1=1.5 and b=0.75 and the non-negative idf variant
``ln((N - df + 0.5) / (df + 0.5) + 1)``.
"""

import math
from collections import Counter
from dataclasses import dataclass, field

from suggestion_engine.core.tokenizer import tokenize

DEFAULT_K1 = 1.5
DEFAULT_B = 0.75


@dataclass
class BM25Index:
    """Term statistics for a corpus."""

    corpus: list[str]
    tokenized_corpus: list[list[str]] = field(default_factory=list)
    term_freqs: list[Counter] = field(default_factory=list)
    doc_freq: Counter = field(default_factory=Counter)
    doc_lengths: list[int] = field(default_factory=list)
    avg_doc_length: float = 0.0

    @classmethod
    def build(cls, corpus: list[str]) -> "BM25Index":
        index = cls(corpus=list(corpus))
        for doc in index.corpus:
            tokens = tokenize(doc)
            tf = Counter(tokens)
            index.tokenized_corpus.append(tokens)
            index.term_freqs.append(tf)
            index.doc_freq.update(tf.keys())
            index.doc_lengths.append(len(tokens))

        if index.doc_lengths:
            index.avg_doc_length = sum(index.doc_lengths) / len(index.doc_lengths)
        return index

    def idf(self, term: str) -> float:
        n_docs = len(self.corpus)
        df = self.doc_freq.get(term, 0)
        return math.log((n_docs - df + 0.5) / (df + 0.5) + 1)

    def score(
        self,
        query_tokens: list[str],
        doc_index: int,
        k1: float = DEFAULT_K1,
        b: float = DEFAULT_B,
    ) -> float:
        """BM25 score of one document against already-tokenized query terms."""
        tf = self.term_freqs[doc_index]
        doc_length = self.doc_lengths[doc_index]
        # All-empty corpus: no term can match, so normalisation is irrelevant
        length_ratio = doc_length / self.avg_doc_length if self.avg_doc_length > 0 else 0.0

        total = 0.0
        for term in query_tokens:
            term_freq = tf.get(term, 0)
            if term_freq == 0:
                continue
            tf_norm = (term_freq * (k1 + 1)) / (term_freq + k1 * (1 - b + b * length_ratio))
            total += self.idf(term) * tf_norm
        return total


def bm25_search(corpus: list[str], query: str) -> tuple[list[int], list[float]]:
    """
    Rank documents by BM25 relevance to ``query``.

    Args:
        corpus: Document texts
        query: Free-text query

    Returns:
        (indices, scores) sorted by score descending. Ties keep corpus order.
        An empty query returns every document with score 0 in corpus order.
    """
    if not corpus:
        return [], []

    index = BM25Index.build(corpus)
    query_tokens = tokenize(query)

    if not query_tokens:
        return list(range(len(corpus))), [0.0] * len(corpus)

    scored = [(i, index.score(query_tokens, i)) for i in range(len(corpus))]
    # sorted() is stable, so equal scores stay in corpus order
    scored.sort(key=lambda pair: pair[1], reverse=True)

    return [i for i, _ in scored], [s for _, s in scored]
