"""Tests for the BM25 text index."""

import pytest

from coderag.core.errors import LexicalIndexMissingError
from coderag.core.models import CodeChunk
from coderag.search.lexical import file_type_matches, tokenize_query

from conftest import REPO


class TestLexicalIndex:
    def test_search_before_build(self, lexical_index, stored_chunks):
        assert not lexical_index.is_built(REPO)
        with pytest.raises(LexicalIndexMissingError):
            lexical_index.search("HandleAlpha", REPO)

    def test_build_counts_chunks(self, lexical_index, stored_chunks):
        assert lexical_index.build(REPO) == 2
        assert lexical_index.is_built(REPO)
        assert not lexical_index.is_built(None)

    def test_term_found_in_one_chunk(self, lexical_index, stored_chunks):
        lexical_index.build(REPO)
        hits = lexical_index.search("HandleAlpha", REPO)
        assert [chunk.id for chunk, _ in hits] == [stored_chunks[0].id]
        assert hits[0][1] > 0

    def test_term_found_in_both_chunks(self, lexical_index, stored_chunks):
        lexical_index.build(REPO)
        hits = lexical_index.search("filler", REPO)
        assert len(hits) == 2
        assert hits[0][1] >= hits[1][1]

    def test_no_match(self, lexical_index, stored_chunks):
        lexical_index.build(REPO)
        assert lexical_index.search("kubernetes", REPO) == []
        assert lexical_index.search("!!", REPO) == []

    @pytest.mark.parametrize("language,found", [("go", True), ("golang", True), ("python", False)])
    def test_language_filter(self, lexical_index, stored_chunks, language, found):
        lexical_index.build(REPO)
        assert bool(lexical_index.search("HandleAlpha", REPO, language=language)) is found

    @pytest.mark.parametrize("file_type,found", [("go", True), (".GO", True), ("py", False)])
    def test_file_type_filter(self, lexical_index, stored_chunks, file_type, found):
        lexical_index.build(REPO)
        assert bool(lexical_index.search("HandleAlpha", REPO, file_type=file_type)) is found

    def test_global_index_spans_repositories(self, lexical_index, chunk_store, stored_chunks):
        other = CodeChunk(
            repository_id="other", file_path="alpha.py", language="python",
            start_line=1, end_line=12, content="def HandleAlpha():\n    pass\n",
        )
        chunk_store.insert_chunks([other])
        lexical_index.build(None)
        assert len(lexical_index.search("HandleAlpha")) == 2
        lexical_index.build(REPO)
        assert len(lexical_index.search("HandleAlpha", REPO)) == 1

    def test_field_matches_outrank_content_only(self, lexical_index, chunk_store):
        named = CodeChunk(
            repository_id=REPO, file_path="src/tokenizer.py", language="python",
            start_line=1, end_line=10, content="class Tokenizer:\n    pass\n",
        )
        named.metadata.classes = ["Tokenizer"]
        mentioned = CodeChunk(
            repository_id=REPO, file_path="src/main.py", language="python",
            start_line=1, end_line=10, content="# uses the tokenizer\nrun()\n",
        )
        chunk_store.insert_chunks([named, mentioned])
        lexical_index.build(REPO)
        hits = lexical_index.search("tokenizer", REPO)
        assert [c.id for c, _ in hits] == [named.id, mentioned.id]

    def test_invalidate_drops_repository_and_global(self, lexical_index, stored_chunks):
        lexical_index.build(REPO)
        lexical_index.build(None)
        lexical_index.build("other")
        lexical_index.invalidate(REPO)
        assert not lexical_index.is_built(REPO)
        assert not lexical_index.is_built(None)
        assert lexical_index.is_built("other")

    def test_empty_store(self, lexical_index):
        assert lexical_index.build(REPO) == 0
        assert lexical_index.search("anything", REPO) == []


def test_tokenize_query_lowercases():
    assert tokenize_query("HandleAlpha Request") == ["handlealpha", "request"]


@pytest.mark.parametrize(
    "path,file_type,expected",
    [("a/b.go", "go", True), ("a/b.GO", "go", True), ("a/b.go.txt", "go", False), ("a/bgo", "go", False)],
)
def test_file_type_matches(path, file_type, expected):
    assert file_type_matches(path, file_type) is expected
