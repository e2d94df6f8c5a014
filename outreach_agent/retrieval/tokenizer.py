"""Text normalisation shared by indexing and querying.

Both sides of the inverted index must agree on what a "term" is, so every
code path that turns raw text into terms goes through :func:`tokenize`.
No stemming is applied: ``automate`` and ``automation`` are distinct terms.
"""

from __future__ import annotations

import re

MIN_TERM_LENGTH = 4

# Anything that is not a lowercase ASCII letter or digit is a separator
_SEPARATOR_RE = re.compile(r"[^a-z0-9]+")

# Only words that survive the length filter need to be listed here
STOPWORDS: frozenset[str] = frozenset(
    {
        "about", "above", "after", "again", "against", "also", "been",
        "before", "being", "below", "between", "both", "could", "does",
        "doing", "down", "during", "each", "even", "from", "further",
        "have", "having", "here", "hers", "herself", "himself", "into",
        "itself", "just", "know", "like", "more", "most", "much", "myself",
        "once", "only", "other", "ours", "ourselves", "over", "same",
        "should", "some", "such", "than", "that", "their", "theirs", "them",
        "themselves", "then", "there", "these", "they", "this", "those",
        "through", "under", "until", "very", "want", "were", "what", "when",
        "where", "which", "while", "whom", "will", "with", "would", "your",
        "yours", "yourself", "yourselves",
    }
)


def tokenize(text: str) -> list[str]:
    """Split *text* into index-worthy terms, preserving order and repeats.

    >>> tokenize("Do you help manufacturing businesses?")
    ['help', 'manufacturing', 'businesses']
    """
    if not text:
        return []
    normalised = _SEPARATOR_RE.sub(" ", text.lower())
    return [
        term
        for term in normalised.split()
        if len(term) >= MIN_TERM_LENGTH and term not in STOPWORDS
    ]


def unique_terms(text: str) -> list[str]:
    """Like :func:`tokenize` but each term appears once, in first-seen order."""
    return list(dict.fromkeys(tokenize(text)))
