"""Loading the private document corpus from disk.

The corpus is a flat directory of text files (the same folder documents are
uploaded into).  Each file becomes one document keyed by its file name.
"""

from __future__ import annotations

import logging
from pathlib import Path

logger = logging.getLogger(__name__)


class CorpusUnavailableError(Exception):
    """Raised when the corpus directory cannot be read at all."""


def load_corpus(directory: str | Path) -> dict[str, str]:
    """Read every regular, non-hidden file in *directory*.

    Returns a ``{name: content}`` mapping ordered by name so that document
    ids assigned by the indexer are stable between rebuilds.  Individual
    unreadable files are skipped with a warning; an unreadable directory
    raises :class:`CorpusUnavailableError`.
    """
    root = Path(directory)
    try:
        entries = sorted(root.iterdir(), key=lambda p: p.name)
    except OSError as exc:
        raise CorpusUnavailableError(f"Cannot read corpus directory {root}: {exc}") from exc

    documents: dict[str, str] = {}
    for path in entries:
        if path.name.startswith(".") or not path.is_file():
            continue
        try:
            documents[path.name] = path.read_text(encoding="utf-8", errors="ignore")
        except OSError:
            logger.warning("Skipping unreadable corpus file %s", path)

    logger.debug("Loaded %d documents from %s", len(documents), root)
    return documents


def save_document(directory: str | Path, filename: str, data: bytes) -> Path:
    """Store an uploaded document in the corpus directory.

    Only the final path component of *filename* is kept, so an upload can
    never escape the corpus directory.
    """
    name = Path(filename).name
    if not name or name.startswith("."):
        raise ValueError(f"Invalid document name: {filename!r}")

    root = Path(directory)
    root.mkdir(parents=True, exist_ok=True)
    target = root / name
    target.write_bytes(data)
    logger.info("Stored document %s (%d bytes)", target, len(data))
    return target
