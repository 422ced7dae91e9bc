"""Line-window chunking of source files with pattern-based metadata extraction."""

from __future__ import annotations

import dataclasses
import logging
import os
import re
from typing import Dict, Iterable, List, Optional, Pattern, Tuple

from .errors import EmptyContentError, TooShortError, ValidationError
from .models import ChunkMetadata, CodeChunk, FileRecord, normalize_language

logger = logging.getLogger(__name__)

CHUNK_LINES = 150
OVERLAP_LINES = 50
MIN_CHUNK_LINES = 10
MIN_FILE_LINES = 5
MAX_VARIABLES = 20

EXT_TO_LANG = {
    ".py": "python",
    ".js": "javascript",
    ".jsx": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".go": "go",
    ".rs": "rust",
    ".java": "java",
    ".cpp": "cpp",
    ".cc": "cpp",
    ".hpp": "cpp",
    ".c": "c",
    ".h": "c",
    ".php": "php",
    ".rb": "ruby",
    ".cs": "csharp",
    ".sh": "shell",
    ".sql": "sql",
    ".md": "markdown",
    ".yaml": "yaml",
    ".yml": "yaml",
    ".json": "json",
}


def get_language_for_file(filename: str) -> Optional[str]:
    """Get language name from file extension."""
    _, ext = os.path.splitext(filename)
    return EXT_TO_LANG.get(ext.lower())


# -----------------------------------------------------------------------------
# Recognizers
# -----------------------------------------------------------------------------

FUNCTION = "function"
CLASS = "class"
VARIABLE = "variable"
TYPE = "type"
IMPORT = "import"


@dataclasses.dataclass(frozen=True)
class Recognizer:
    """A pattern whose first group captures one identifier of the given kind."""

    kind: str
    pattern: Pattern[str]

    def find(self, content: str) -> List[str]:
        return [m.group(1) for m in self.pattern.finditer(content) if m.group(1)]


def _r(kind: str, pattern: str) -> Recognizer:
    return Recognizer(kind, re.compile(pattern))


_JS_IDENT = r"[a-zA-Z_$][a-zA-Z0-9_$]*"
_IDENT = r"[a-zA-Z_][a-zA-Z0-9_]*"

_JS_COMMON = [
    _r(FUNCTION, rf"function\s+({_JS_IDENT})\s*\("),
    _r(FUNCTION, rf"const\s+({_JS_IDENT})\s*=\s*\("),
    _r(FUNCTION, rf"({_JS_IDENT})\s*:\s*\([^)]*\)\s*=>"),
    _r(FUNCTION, rf"({_JS_IDENT})\s*\([^)]*\)\s*{{\s*$"),
    _r(CLASS, rf"class\s+({_JS_IDENT})"),
    _r(CLASS, rf"interface\s+({_JS_IDENT})"),
    _r(VARIABLE, rf"(?:const|let|var)\s+({_JS_IDENT})"),
    _r(IMPORT, r"""import\s+.*\s+from\s+['"]([^'"]+)['"]"""),
    _r(IMPORT, r"""import\s+['"]([^'"]+)['"]"""),
    _r(IMPORT, r"""require\(['"]([^'"]+)['"]\)"""),
]

_JAVA_LIKE = [
    _r(FUNCTION, rf"(?:public|private|protected|static|\s)+\s*\w+\s+({_IDENT})\s*\("),
    _r(CLASS, rf"(?:public|private|protected|\s)*\s*class\s+({_IDENT})"),
    _r(CLASS, rf"(?:public|private|protected|\s)*\s*interface\s+({_IDENT})"),
]

_CPP_FUNCTION = _r(FUNCTION, rf"(?:static|extern|inline|\s)*\s*\w+\s+({_IDENT})\s*\([^)]*\)\s*{{")

RECOGNIZERS: Dict[str, List[Recognizer]] = {
    "javascript": _JS_COMMON,
    "typescript": _JS_COMMON + [
        _r(TYPE, rf"type\s+({_JS_IDENT})\s*="),
        _r(TYPE, rf"interface\s+({_JS_IDENT})"),
    ],
    "python": [
        _r(FUNCTION, rf"def\s+({_IDENT})\s*\("),
        _r(FUNCTION, rf"async\s+def\s+({_IDENT})\s*\("),
        _r(CLASS, rf"class\s+({_IDENT})"),
        # Anchored at the start of the chunk only.
        _r(VARIABLE, rf"^({_IDENT})\s*="),
        _r(IMPORT, r"import\s+([a-zA-Z_][a-zA-Z0-9_.]*)"),
        _r(IMPORT, r"from\s+([a-zA-Z_][a-zA-Z0-9_.]*)\s+import"),
    ],
    "go": [
        _r(FUNCTION, rf"func\s+({_IDENT})\s*\("),
        _r(FUNCTION, rf"func\s+\([^)]*\)\s+({_IDENT})\s*\("),
        _r(CLASS, rf"type\s+({_IDENT})\s+struct"),
        _r(CLASS, rf"type\s+({_IDENT})\s+interface"),
        _r(VARIABLE, rf"var\s+({_IDENT})"),
        _r(VARIABLE, rf"({_IDENT})\s*:="),
        _r(TYPE, rf"type\s+({_IDENT})\s+"),
        _r(IMPORT, r'import\s+"([^"]+)"'),
        _r(IMPORT, r'import\s+\(\s*"([^"]+)"'),
    ],
    "java": _JAVA_LIKE + [
        _r(IMPORT, r"import\s+([a-zA-Z_][a-zA-Z0-9_.]*)"),
    ],
    "csharp": _JAVA_LIKE + [
        _r(IMPORT, r"using\s+([a-zA-Z_][a-zA-Z0-9_.]*)"),
    ],
    "cpp": [
        _CPP_FUNCTION,
        _r(CLASS, rf"class\s+({_IDENT})"),
        _r(CLASS, rf"struct\s+({_IDENT})"),
    ],
    "c": [_CPP_FUNCTION],
    "rust": [
        _r(FUNCTION, rf"fn\s+({_IDENT})\s*\("),
        _r(CLASS, rf"struct\s+({_IDENT})"),
        _r(CLASS, rf"trait\s+({_IDENT})"),
        _r(CLASS, rf"enum\s+({_IDENT})"),
        _r(TYPE, rf"type\s+({_IDENT})\s*="),
        _r(IMPORT, r"use\s+([a-zA-Z_][a-zA-Z0-9_:]*)"),
    ],
    "php": [_r(FUNCTION, rf"function\s+({_IDENT})\s*\(")],
    "ruby": [_r(FUNCTION, rf"def\s+({_IDENT})")],
}

DEFAULT_RECOGNIZERS: List[Recognizer] = [
    _r(FUNCTION, rf"function\s+({_IDENT})\s*\("),
    _r(FUNCTION, rf"def\s+({_IDENT})\s*\("),
]

COMPLEXITY_PATTERNS: List[Pattern[str]] = [
    re.compile(p)
    for p in (
        r"if\s*\(", r"else\s+if", r"else",
        r"for\s*\(", r"while\s*\(", r"do\s+{",
        r"switch\s*\(", r"case\s+", r"default:",
        r"catch\s*\(", r"except:", r"finally:",
        r"\?\s*:", r"&&", r"\|\|",
    )
]


def get_recognizers(language: str) -> List[Recognizer]:
    return RECOGNIZERS.get(language, DEFAULT_RECOGNIZERS)


def dedupe(items: Iterable[str]) -> List[str]:
    """Remove duplicates, keeping first-occurrence order."""
    return list(dict.fromkeys(items))


def calculate_complexity(content: str) -> int:
    """Rough cyclomatic complexity: 1 plus every decision point found."""
    return 1 + sum(len(p.findall(content)) for p in COMPLEXITY_PATTERNS)


def extract_metadata(content: str, language: str) -> Tuple[ChunkMetadata, List[str]]:
    """Run the language's recognizers over content.

    Returns:
        (metadata, imports) tuple
    """
    found: Dict[str, List[str]] = {FUNCTION: [], CLASS: [], VARIABLE: [], TYPE: [], IMPORT: []}
    for recognizer in get_recognizers(language):
        found[recognizer.kind].extend(recognizer.find(content))

    metadata = ChunkMetadata(
        functions=dedupe(found[FUNCTION]),
        classes=dedupe(found[CLASS]),
        variables=dedupe(found[VARIABLE][:MAX_VARIABLES]),
        types=dedupe(found[TYPE]),
        complexity=calculate_complexity(content),
    )
    return metadata, dedupe(found[IMPORT])


# -----------------------------------------------------------------------------
# Chunker
# -----------------------------------------------------------------------------

class Chunker:
    """Abstract base class for file chunking."""

    def chunk(self, file: FileRecord, repository_id: str = "") -> List[CodeChunk]:
        """Split a file into chunks.

        Args:
            file: File to split
            repository_id: Repository the chunks belong to

        Returns:
            List of chunks in file order
        """
        raise NotImplementedError


class LineWindowChunker(Chunker):
    """Fixed-size overlapping line windows."""

    def __init__(
        self,
        chunk_lines: int = CHUNK_LINES,
        overlap_lines: int = OVERLAP_LINES,
        min_chunk_lines: int = MIN_CHUNK_LINES,
        min_file_lines: int = MIN_FILE_LINES,
    ):
        if overlap_lines >= chunk_lines:
            raise ValueError("overlap must be smaller than the chunk size")
        self.chunk_lines = chunk_lines
        self.overlap_lines = overlap_lines
        self.min_chunk_lines = min_chunk_lines
        self.min_file_lines = min_file_lines

    def windows(self, total_lines: int) -> List[Tuple[int, int]]:
        """0-indexed, end-exclusive (start, end) windows over total_lines."""
        step = self.chunk_lines - self.overlap_lines
        out = []
        for start in range(0, total_lines, step):
            end = min(start + self.chunk_lines, total_lines)
            if end - start < self.min_chunk_lines:
                break
            out.append((start, end))
        return out

    def chunk(self, file: FileRecord, repository_id: str = "") -> List[CodeChunk]:
        if not file.content:
            raise EmptyContentError(f"file content is empty: {file.path}")

        lines = file.content.split("\n")
        if len(lines) < self.min_file_lines:
            raise TooShortError(f"file too short for chunking: {file.path} ({len(lines)} lines)")

        language = normalize_language(file.language or get_language_for_file(file.path) or "")
        chunks = []
        for start, end in self.windows(len(lines)):
            text = "\n".join(lines[start:end])
            metadata, imports = extract_metadata(text, language)
            chunks.append(
                CodeChunk(
                    repository_id=repository_id,
                    file_path=file.path,
                    language=language,
                    start_line=start + 1,
                    end_line=end,
                    content=text,
                    metadata=metadata,
                    imports=imports,
                )
            )

        logger.debug(f"Created {len(chunks)} chunks for file {file.path} ({len(lines)} lines)")
        return chunks


def make_chunker(cfg: Dict) -> LineWindowChunker:
    chunking = cfg.get("chunking", {})
    return LineWindowChunker(
        chunk_lines=int(chunking.get("chunk_lines", CHUNK_LINES)),
        overlap_lines=int(chunking.get("overlap_lines", OVERLAP_LINES)),
        min_chunk_lines=int(chunking.get("min_chunk_lines", MIN_CHUNK_LINES)),
        min_file_lines=int(chunking.get("min_file_lines", MIN_FILE_LINES)),
    )


def chunk_files(
    files: Iterable[FileRecord],
    repository_id: str,
    chunker: Optional[Chunker] = None,
) -> List[CodeChunk]:
    """Chunk a stream of files, skipping the ones that cannot be chunked."""
    chunker = chunker or LineWindowChunker()
    all_chunks: List[CodeChunk] = []
    file_count = 0
    for file in files:
        file_count += 1
        try:
            all_chunks.extend(chunker.chunk(file, repository_id=repository_id))
        except ValidationError as e:
            logger.info(f"Skipping {file.path}: {e}")
    logger.info(f"Created {len(all_chunks)} chunks from {file_count} files")
    return all_chunks
