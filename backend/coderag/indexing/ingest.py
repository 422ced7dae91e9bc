"""Local directory ingestion: walk, chunk and store source files."""

from __future__ import annotations

import dataclasses
import fnmatch
import logging
import time
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from ..config import DEFAULT_EXCLUDE_PATTERNS, DEFAULT_INCLUDE_PATTERNS
from ..config.manager import _expand_patterns
from ..core.chunking import Chunker, chunk_files, get_language_for_file
from ..core.models import FileRecord
from ..utils import is_binary_file, read_text

logger = logging.getLogger(__name__)


def _match_any(path: str, globs: List[str]) -> bool:
    return any(fnmatch.fnmatch(path, g) for g in globs)


def iter_files(root: Path, cfg: Dict) -> Iterable[Path]:
    include_globs = cfg.get("include_globs", _expand_patterns(DEFAULT_INCLUDE_PATTERNS))
    exclude_globs = cfg.get("exclude_globs", _expand_patterns(DEFAULT_EXCLUDE_PATTERNS))
    max_kb = int(cfg.get("max_file_size_kb", 512))

    for p in sorted(root.rglob("*")):
        if not p.is_file():
            continue
        rel = p.relative_to(root).as_posix()
        if _match_any(rel, exclude_globs):
            continue
        if not _match_any(rel, include_globs):
            continue
        try:
            if (p.stat().st_size / 1024.0) > max_kb:
                continue
        except OSError as e:
            logger.warning(f"Cannot stat {rel}: {e}")
            continue
        if is_binary_file(p):
            continue
        yield p


def load_directory(root: Path, cfg: Dict) -> Iterable[FileRecord]:
    """Yield a FileRecord for every indexable file under root, with repo-relative paths."""
    for p in iter_files(root, cfg):
        rel = p.relative_to(root).as_posix()
        try:
            text = read_text(p)
        except OSError as e:
            logger.warning(f"Cannot read {rel}: {e}")
            continue
        yield FileRecord(
            path=rel,
            content=text,
            language=get_language_for_file(p.name) or "",
            size=len(text.encode("utf-8")),
        )


@dataclasses.dataclass
class IngestSummary:
    repository_id: str
    files: int
    chunks: int
    stored: int
    duration: float


def ingest_files(
    files: Iterable[FileRecord],
    repository_id: str,
    chunk_store,
    chunker: Optional[Chunker] = None,
    lexical_index=None,
) -> IngestSummary:
    """Chunk files, store the chunks and invalidate the repository's text index."""
    started = time.perf_counter()
    files = list(files)
    chunks = chunk_files(files, repository_id, chunker)
    stored = chunk_store.insert_chunks(chunks) if chunks else 0
    if lexical_index is not None:
        lexical_index.invalidate(repository_id)
    summary = IngestSummary(
        repository_id=repository_id,
        files=len(files),
        chunks=len(chunks),
        stored=stored,
        duration=time.perf_counter() - started,
    )
    logger.info(
        f"Ingested {summary.files} files into {repository_id}: "
        f"{summary.stored}/{summary.chunks} chunks stored in {summary.duration:.2f}s"
    )
    return summary


def ingest_directory(
    root: Path,
    repository_id: str,
    cfg: Dict,
    chunk_store,
    chunker: Optional[Chunker] = None,
    lexical_index=None,
) -> IngestSummary:
    root = Path(root)
    if not root.is_dir():
        raise FileNotFoundError(f"{root} is not a directory")
    return ingest_files(load_directory(root, cfg), repository_id, chunk_store, chunker, lexical_index)
