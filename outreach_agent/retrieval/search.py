"""Lexical search over an :class:`~outreach_agent.retrieval.index.InvertedIndex`.

Scoring is deliberately simple: a document earns one point for every distinct
query term it contains and qualifies once at least a quarter of the query
terms matched.  Qualifying documents contribute short excerpts around the
matched terms, which are what the prompt actually sees.
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field

from outreach_agent.config import CONTEXT_CHAR_BUDGET
from outreach_agent.retrieval.index import InvertedIndex
from outreach_agent.retrieval.tokenizer import unique_terms
from outreach_agent.services.metrics import metrics

logger = logging.getLogger(__name__)

# A document must match at least 1/MIN_MATCH_DENOMINATOR of the query terms
MIN_MATCH_DENOMINATOR = 4
WINDOW_CHARS = 100
WINDOWS_PER_TERM = 3
MAX_CONTEXTS_PER_DOCUMENT = 5
TRUNCATION_MARKER = "\n...[truncated]"


@dataclass
class SearchHit:
    match_count: int
    contexts: list[str] = field(default_factory=list)


def _qualifies(match_count: int, term_count: int) -> bool:
    # Integer form of ``match_count / term_count >= 0.25``
    return match_count * MIN_MATCH_DENOMINATOR >= term_count


def _extract_windows(content: str, term: str) -> list[str]:
    windows = []
    for match in re.finditer(re.escape(term), content, re.IGNORECASE):
        start = max(0, match.start() - WINDOW_CHARS)
        end = min(len(content), match.end() + WINDOW_CHARS)
        windows.append(content[start:end])
        if len(windows) >= WINDOWS_PER_TERM:
            break
    return windows


def search(index: InvertedIndex, query: str) -> dict[str, SearchHit]:
    """Return qualifying documents keyed by name, in no particular order."""
    t0 = time.perf_counter()
    terms = unique_terms(query)
    if not terms:
        return {}

    matched_terms: dict[int, list[str]] = {}
    for term in terms:
        for doc_id in index.postings.get(term, ()):
            matched_terms.setdefault(doc_id, []).append(term)

    results: dict[str, SearchHit] = {}
    for doc_id, doc_terms in matched_terms.items():
        if not _qualifies(len(doc_terms), len(terms)):
            continue

        content = index.document_content[doc_id]
        contexts: list[str] = []
        for term in doc_terms:
            for window in _extract_windows(content, term):
                if window not in contexts:
                    contexts.append(window)
        results[index.document_names[doc_id]] = SearchHit(
            match_count=len(doc_terms),
            contexts=contexts[:MAX_CONTEXTS_PER_DOCUMENT],
        )

    elapsed = (time.perf_counter() - t0) * 1000
    metrics.record_latency("search", elapsed)
    logger.debug(
        "Search %r: %d terms, %d/%d documents qualified (%.1fms)",
        query[:80], len(terms), len(results), len(matched_terms), elapsed,
    )
    return results


def rank_hits(results: dict[str, SearchHit]) -> list[tuple[str, SearchHit]]:
    """Order search results by match count (highest first), then by name."""
    return sorted(results.items(), key=lambda item: (-item[1].match_count, item[0]))


def build_context(results: dict[str, SearchHit], budget: int = CONTEXT_CHAR_BUDGET) -> str:
    """Render ranked excerpts for the prompt, cut to *budget* characters."""
    if not results:
        return ""

    blocks = []
    for name, hit in rank_hits(results):
        excerpts = "\n...\n".join(ctx.strip() for ctx in hit.contexts)
        blocks.append(f"[{name}]\n{excerpts}")
    context = "\n\n".join(blocks)

    if len(context) > budget:
        context = context[:budget] + TRUNCATION_MARKER
    return context
