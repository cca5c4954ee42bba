"""
Tokenization and stemming for lexical retrieval.

Pipeline for ``tokenize``:
1. Lowercase and split on non-alphanumeric runs
2. Drop single-character tokens and English stopwords
3. Stem with a simplified Porter stemmer
4. Drop stems that collapsed to a single character

Usage:
    from suggestion_engine.core.tokenizer import tokenize

    tokenize("Refactoring the authentication modules")
    # ['refactor', 'authentic', 'module']
"""

import re

STOPWORDS = frozenset({
    "a", "an", "and", "are", "as", "at", "be", "by", "for", "from", "has", "he",
    "in", "is", "it", "its", "of", "on", "that", "the", "to", "was", "were",
    "will", "with", "this", "but", "they", "have", "had", "what", "when",
    "where", "who", "which", "why", "how", "all", "each", "every", "both", "few",
    "more", "most", "other", "some", "such", "no", "nor", "not", "only", "own",
    "same", "so", "than", "too", "very", "just", "can", "should", "now", "i",
    "you", "your", "we", "our", "my", "me", "him", "her", "them", "their", "been",
    "being", "do", "does", "did", "doing", "would", "could", "might", "must",
    "shall", "into", "if", "then", "else", "because", "until", "while", "about",
    "against", "between", "through", "during", "before", "after", "above", "below",
    "up", "down", "out", "off", "over", "under", "again", "further", "once", "here",
    "there", "any", "also", "am", "or",
})

_SPLIT_RE = re.compile(r"[^a-z0-9]+")
_VOWEL_RE = re.compile(r"[aeiou]")

_STEP2_SUFFIXES = (
    ("ational", "ate"), ("tional", "tion"), ("enci", "ence"), ("anci", "ance"),
    ("izer", "ize"), ("isation", "ize"), ("ization", "ize"), ("ation", "ate"),
    ("ator", "ate"), ("alism", "al"), ("iveness", "ive"), ("fulness", "ful"),
    ("ousness", "ous"), ("aliti", "al"), ("iviti", "ive"), ("biliti", "ble"),
)

_STEP3_SUFFIXES = (
    ("icate", "ic"), ("ative", ""), ("alize", "al"), ("iciti", "ic"),
    ("ical", "ic"), ("ful", ""), ("ness", ""),
)


def _apply_suffix_table(word: str, table: tuple[tuple[str, str], ...]) -> str:
    """Replace the first matching suffix, if the word is long enough."""
    for suffix, replacement in table:
        if word.endswith(suffix) and len(word) > len(suffix) + 2:
            return word[: -len(suffix)] + replacement
    return word


def stem(word: str) -> str:
    """Simplified Porter stemmer (steps 1a, 1b, 1c, 2, 3)."""
    word = word.lower()

    # Step 1a: plurals
    if word.endswith("sses"):
        word = word[:-2]
    elif word.endswith("ies"):
        word = word[:-2]
    elif word.endswith("ss"):
        pass
    elif word.endswith("s"):
        word = word[:-1]

    # Step 1b: past tense and progressive
    if word.endswith("eed"):
        if len(word) > 4:
            word = word[:-1]
    elif word.endswith("ed") or word.endswith("ing"):
        cut = 2 if word.endswith("ed") else 3
        if _VOWEL_RE.search(word[:-cut]):
            word = word[:-cut]
            if word.endswith(("at", "bl", "iz")):
                word += "e"

    # Step 1c: y after a consonant
    if word.endswith("y") and len(word) > 2 and word[-2] not in "aeiou":
        word = word[:-1] + "i"

    word = _apply_suffix_table(word, _STEP2_SUFFIXES)
    return _apply_suffix_table(word, _STEP3_SUFFIXES)


def _words(text: str) -> list[str]:
    return [w for w in _SPLIT_RE.split(text.lower()) if len(w) > 1 and w not in STOPWORDS]


def tokenize(text: str) -> list[str]:
    """Lowercase, split, drop stopwords, stem. Order is preserved."""
    if not text:
        return []
    return [s for s in (stem(w) for w in _words(text)) if len(s) > 1]


def extract_terms(text: str) -> list[str]:
    """Unstemmed, stopword-filtered words, in order of appearance."""
    if not text:
        return []
    return _words(text)
