"""In-memory inverted index over the document corpus.

An :class:`InvertedIndex` is immutable once built.  :class:`IndexManager`
owns the currently published index and replaces it wholesale on rebuild, so
a reader holding a reference keeps a consistent view even while a new index
is being built next to it.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType

from outreach_agent.config import CORPUS_DIR, INDEX_CHECK_INTERVAL_SECONDS, INDEX_STALENESS_SECONDS
from outreach_agent.retrieval.corpus import CorpusUnavailableError, load_corpus
from outreach_agent.retrieval.tokenizer import unique_terms
from outreach_agent.services.metrics import metrics

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Document:
    id: int
    name: str
    content: str


@dataclass(frozen=True)
class InvertedIndex:
    """Posting lists plus the raw documents they point at."""

    postings: Mapping[str, frozenset[int]] = field(default_factory=dict)
    document_content: Mapping[int, str] = field(default_factory=dict)
    document_names: Mapping[int, str] = field(default_factory=dict)
    last_built: float = 0.0

    @property
    def document_count(self) -> int:
        return len(self.document_names)

    @property
    def term_count(self) -> int:
        return len(self.postings)

    def documents(self) -> list[Document]:
        return [
            Document(id=doc_id, name=name, content=self.document_content[doc_id])
            for doc_id, name in self.document_names.items()
        ]


EMPTY_INDEX = InvertedIndex()


def build_index(documents: Mapping[str, str], *, built_at: float | None = None) -> InvertedIndex:
    """Build a complete index from a ``{name: content}`` corpus snapshot.

    Document ids follow the iteration order of *documents*.
    """
    t0 = time.perf_counter()
    postings: dict[str, set[int]] = {}
    contents: dict[int, str] = {}
    names: dict[int, str] = {}

    for doc_id, (name, content) in enumerate(documents.items()):
        contents[doc_id] = content
        names[doc_id] = name
        for term in unique_terms(content):
            postings.setdefault(term, set()).add(doc_id)

    index = InvertedIndex(
        postings=MappingProxyType({term: frozenset(ids) for term, ids in postings.items()}),
        document_content=MappingProxyType(contents),
        document_names=MappingProxyType(names),
        last_built=time.time() if built_at is None else built_at,
    )

    elapsed = (time.perf_counter() - t0) * 1000
    metrics.record_latency("index_build", elapsed)
    logger.info(
        "Indexed %d documents (%d terms) in %.0fms",
        index.document_count, index.term_count, elapsed,
    )
    return index


class IndexManager:
    """Holds the published index and rebuilds it from the corpus on demand.

    The corpus is read before the ``asyncio.Lock`` is taken, so slow disk I/O
    never blocks other rebuilds; the lock only serialises building and
    publishing.  Readers never take it and simply read :attr:`current`,
    which is swapped in a single assignment once the new index is complete.
    A load that finishes after a newer one has been published is dropped.
    """

    def __init__(
        self,
        corpus_dir: str | Path = CORPUS_DIR,
        *,
        staleness_seconds: float = INDEX_STALENESS_SECONDS,
        loader: Callable[[str | Path], Mapping[str, str]] = load_corpus,
    ) -> None:
        self.corpus_dir = Path(corpus_dir)
        self.staleness_seconds = staleness_seconds
        self._loader = loader
        self._current: InvertedIndex = EMPTY_INDEX
        self._rebuild_lock = asyncio.Lock()
        self._load_seq = 0
        self._published_seq = 0

    @property
    def current(self) -> InvertedIndex:
        return self._current

    def publish(self, index: InvertedIndex) -> None:
        """Swap in a fully built index."""
        self._current = index

    def is_stale(self, now: float | None = None) -> bool:
        now = time.time() if now is None else now
        return now - self._current.last_built > self.staleness_seconds

    async def rebuild(self) -> bool:
        """Reload the corpus and publish a fresh index.

        Returns ``True`` if a new index was published.  When the corpus
        cannot be read, the previous index stays in place.
        """
        self._load_seq += 1
        seq = self._load_seq
        try:
            documents = await asyncio.to_thread(self._loader, self.corpus_dir)
        except CorpusUnavailableError as exc:
            logger.warning("Corpus unavailable, keeping previous index: %s", exc)
            return False

        async with self._rebuild_lock:
            if seq < self._published_seq:
                logger.debug("Skipping superseded corpus load #%d", seq)
                return False
            index = await asyncio.to_thread(build_index, documents)
            self.publish(index)
            self._published_seq = seq
            return True

    async def refresh_if_stale(self) -> bool:
        if not self.is_stale():
            return False
        logger.info("Index is stale (built at %.0f), rebuilding", self._current.last_built)
        return await self.rebuild()

    async def run_refresh_loop(self, interval: float = INDEX_CHECK_INTERVAL_SECONDS) -> None:
        """Check staleness every *interval* seconds until cancelled."""
        while True:
            await asyncio.sleep(interval)
            try:
                await self.refresh_if_stale()
            except Exception:
                logger.exception("Index refresh failed")
