"""Tests for line-window chunking and metadata extraction."""

import pytest

from coderag.core.chunking import (
    LineWindowChunker,
    calculate_complexity,
    chunk_files,
    dedupe,
    extract_metadata,
    get_language_for_file,
    make_chunker,
)
from coderag.core.errors import EmptyContentError, TooShortError
from coderag.core.models import FileRecord

from conftest import make_go_source


def _lines(n: int) -> str:
    return "\n".join(f"line {i}" for i in range(1, n + 1))


class TestWindows:
    @pytest.mark.parametrize(
        "total,expected",
        [
            (150, [(0, 150), (100, 150)]),
            (200, [(0, 150), (100, 200)]),
            (105, [(0, 105)]),
            (12, [(0, 12)]),
            (300, [(0, 150), (100, 250), (200, 300)]),
        ],
    )
    def test_window_boundaries(self, total, expected):
        assert LineWindowChunker().windows(total) == expected

    def test_trailing_window_under_minimum_is_dropped(self):
        # 0-150, 100-209 and then 200-209 (9 lines) is too short
        assert LineWindowChunker().windows(209) == [(0, 150), (100, 209)]

    def test_overlap_must_be_smaller_than_chunk(self):
        with pytest.raises(ValueError):
            LineWindowChunker(chunk_lines=50, overlap_lines=50)


class TestChunker:
    def test_two_hundred_line_file(self, go_file):
        chunks = LineWindowChunker().chunk(go_file, repository_id="r")
        assert [(c.start_line, c.end_line) for c in chunks] == [(1, 150), (101, 200)]
        assert chunks[0].content.split("\n")[100:] == chunks[1].content.split("\n")[:50]
        for c in chunks:
            assert c.repository_id == "r"
            assert c.language == "go"
            assert c.file_name == "main.go"
            assert c.vector_id is None

    def test_metadata_follows_window(self, go_file):
        first, second = LineWindowChunker().chunk(go_file)
        assert first.metadata.functions == ["HandleAlpha"]
        assert second.metadata.functions == ["ProcessOmega"]
        assert first.imports == ["fmt"]
        assert second.imports == []

    def test_empty_content(self):
        with pytest.raises(EmptyContentError):
            LineWindowChunker().chunk(FileRecord(path="a.py", content=""))

    def test_too_short(self):
        with pytest.raises(TooShortError):
            LineWindowChunker().chunk(FileRecord(path="a.py", content="a\nb\nc"))

    def test_short_file_still_chunked_when_above_file_minimum(self):
        chunks = LineWindowChunker().chunk(FileRecord(path="a.py", content=_lines(12)))
        assert len(chunks) == 1
        assert (chunks[0].start_line, chunks[0].end_line) == (1, 12)

    def test_file_shorter_than_minimum_chunk_gives_no_chunks(self):
        assert LineWindowChunker().chunk(FileRecord(path="a.txt", content=_lines(7))) == []

    def test_language_detected_from_extension(self):
        chunks = LineWindowChunker().chunk(FileRecord(path="src/app.ts", content=_lines(20)))
        assert chunks[0].language == "typescript"

    def test_language_alias_is_normalized(self):
        chunks = LineWindowChunker().chunk(FileRecord(path="x", content=_lines(20), language="golang"))
        assert chunks[0].language == "go"

    def test_deterministic(self, go_file):
        a = LineWindowChunker().chunk(go_file)
        b = LineWindowChunker().chunk(go_file)
        assert [(c.content, c.metadata, c.imports) for c in a] == [(c.content, c.metadata, c.imports) for c in b]

    def test_make_chunker_reads_config(self):
        chunker = make_chunker({"chunking": {"chunk_lines": 40, "overlap_lines": 10}})
        assert chunker.windows(100) == [(0, 40), (30, 70), (60, 100), (90, 100)]


class TestChunkFiles:
    def test_skips_unchunkable_files(self):
        files = [
            FileRecord(path="empty.py", content=""),
            FileRecord(path="short.py", content="x = 1"),
            FileRecord(path="main.go", content=make_go_source()),
        ]
        chunks = chunk_files(files, "repo")
        assert len(chunks) == 2
        assert {c.file_path for c in chunks} == {"main.go"}


class TestExtractMetadata:
    def test_python(self):
        src = (
            "import os\n"
            "from typing import List\n"
            "class Parser:\n"
            "    def parse(self):\n"
            "        pass\n"
            "async def fetch(url):\n"
            "    pass\n"
        )
        meta, imports = extract_metadata(src, "python")
        assert meta.functions == ["parse", "fetch"]
        assert meta.classes == ["Parser"]
        assert imports == ["os", "List", "typing"]

    def test_go(self):
        src = (
            'import "net/http"\n'
            "type Server struct {}\n"
            "type Handler interface {}\n"
            "func (s *Server) Start() error {\n"
            "    addr := s.addr\n"
            "}\n"
            "func main() {}\n"
        )
        meta, imports = extract_metadata(src, "go")
        assert meta.functions == ["main", "Start"]
        assert meta.classes == ["Server", "Handler"]
        assert "addr" in meta.variables
        assert "Server" in meta.types
        assert imports == ["net/http"]

    def test_javascript(self):
        src = (
            "import React from 'react'\n"
            "const fs = require('fs')\n"
            "function render(props) {\n"
            "}\n"
            "class Widget {}\n"
        )
        meta, imports = extract_metadata(src, "javascript")
        assert "render" in meta.functions
        assert meta.classes == ["Widget"]
        assert imports == ["react", "fs"]

    def test_typescript_types(self):
        meta, _ = extract_metadata("type Id = string\ninterface User {}\n", "typescript")
        assert meta.types == ["Id", "User"]
        assert meta.classes == ["User"]

    def test_rust(self):
        meta, imports = extract_metadata("use std::io;\nstruct Point {}\nfn main() {}\n", "rust")
        assert meta.functions == ["main"]
        assert meta.classes == ["Point"]
        assert imports == ["std::io"]

    def test_unknown_language_uses_generic_recognizers(self):
        meta, imports = extract_metadata("def helper(x):\nfunction other() {}\n", "elixir")
        assert meta.functions == ["other", "helper"]
        assert imports == []

    def test_identifiers_deduplicated(self):
        meta, _ = extract_metadata("def a():\n    pass\ndef a():\n    pass\n", "python")
        assert meta.functions == ["a"]


class TestComplexity:
    @pytest.mark.parametrize(
        "src,expected",
        [
            ("x = 1", 1),
            ("if (a) {}", 2),
            ("if (a) {} else {}", 3),
            ("for (;;) {}\nwhile (x) {}", 3),
            ("a && b || c", 3),
            ("switch (x) { case 1: break; default: }", 4),
        ],
    )
    def test_decision_points(self, src, expected):
        assert calculate_complexity(src) == expected


def test_dedupe_keeps_first_occurrence_order():
    assert dedupe(["b", "a", "b", "c", "a"]) == ["b", "a", "c"]


@pytest.mark.parametrize(
    "name,lang",
    [("a.py", "python"), ("b.GO", "go"), ("c.tsx", "typescript"), ("d.unknown", None)],
)
def test_language_for_file(name, lang):
    assert get_language_for_file(name) == lang
