"""
TF-IDF vectors for diversity scoring.

Vectors are built with scikit-learn's TfidfVectorizer, fed by our own
tokenizer so stemming and stopwords match BM25. Smoothed idf
``ln((N + 1) / (df + 1)) + 1`` and L2 normalisation; the rows are unit
length, so cosine similarity is a plain dot product.
"""

import numpy as np
from sklearn.feature_extraction.text import TfidfVectorizer

from suggestion_engine.core.tokenizer import tokenize


def build_tfidf_matrix(documents: list[str]) -> np.ndarray:
    """
    Build a dense (n_docs, vocab) TF-IDF matrix.

    Documents without any token get an all-zero row. If no document has a
    token the result has zero columns.
    """
    if not documents:
        return np.zeros((0, 0))

    vectorizer = TfidfVectorizer(
        tokenizer=tokenize,
        lowercase=False,
        token_pattern=None,
        smooth_idf=True,
        norm="l2",
    )
    try:
        matrix = vectorizer.fit_transform(documents)
    except ValueError:
        # Empty vocabulary
        return np.zeros((len(documents), 0))

    return np.asarray(matrix.todense(), dtype=float)


def cosine_similarity_matrix(matrix: np.ndarray) -> np.ndarray:
    """Pairwise cosine similarity of L2-normalised rows."""
    if matrix.size == 0:
        return np.zeros((matrix.shape[0], matrix.shape[0]))
    return matrix @ matrix.T
