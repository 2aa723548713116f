from __future__ import annotations

from typing import List

import pytest

from sep_rag.chunking import semantic_chunker
from sep_rag.chunking.semantic_chunker import PREAMBLE_MAX_TOKENS, SectionProcessor, SemanticChunker
from sep_rag.clients.conversion import ConversionClient
from sep_rag.models import ArticleSection
from sep_rag.preprocessing.dual_format import DualFormatBuilder


class _WordEncoding:
    def encode(self, text: str) -> List[str]:
        return text.split()


@pytest.fixture()
def chunker(monkeypatch) -> SemanticChunker:
    monkeypatch.setattr(semantic_chunker.tiktoken, "get_encoding", lambda name: _WordEncoding())
    return SemanticChunker(max_tokens=5)


def test_units_are_packed_greedily_up_to_budget(chunker):
    units = [("a b c", "A B C"), ("d e", "D E"), ("f g h", "F G H")]

    chunks = chunker.chunk_units(units)

    assert len(chunks) == 2
    assert chunks[0].retrieval_text == "a b c\n\nd e"
    assert chunks[0].generation_text == "A B C\n\nD E"
    assert chunks[0].token_count == 5
    assert chunks[1].retrieval_text == "f g h"
    assert chunks[1].token_count == 3


def test_oversized_unit_becomes_its_own_chunk(chunker):
    units = [("a b", "A B"), ("1 2 3 4 5 6 7", "long"), ("c", "C")]

    chunks = chunker.chunk_units(units)

    assert [chunk.retrieval_text for chunk in chunks] == ["a b", "1 2 3 4 5 6 7", "c"]
    assert chunks[1].token_count == 7
    assert chunks[1].generation_text == "long"


def test_unbounded_budget_keeps_everything_together(chunker):
    units = [("a b c", "A"), ("d e f", "B"), ("g h i", "C")]

    chunks = chunker.chunk_units(units, max_tokens=PREAMBLE_MAX_TOKENS)

    assert len(chunks) == 1
    assert chunks[0].token_count == 9


def test_no_units_means_no_chunks(chunker):
    assert chunker.chunk_units([]) == []


def test_section_processor_runs_segmentation_normalization_and_packing(chunker):
    processor = SectionProcessor(DualFormatBuilder(ConversionClient(api_key=None)), chunker)
    section = ArticleSection(
        number="1",
        heading="Intro",
        content='<p>A</p><ol start="2"><li>x</li><li>y</li></ol><p>B</p>',
    )

    chunks = processor.process(section, "Logic", max_tokens=1024)

    assert len(chunks) == 1
    assert chunks[0].retrieval_text == "A\n\nx y\n\nB"
    assert chunks[0].generation_text == "A\n\n2. x\n3. y\n\nB"
    assert chunks[0].token_count == 4


def test_section_heading_includes_number():
    assert SectionProcessor.section_heading(ArticleSection(number="2.1", heading="Syntax", content="")) == "2.1 Syntax"
    assert SectionProcessor.section_heading(ArticleSection(number="", heading="Notes", content="")) == "Notes"


class _BlankingConversion:
    def summarize_tables_batch(self, tables, article_title="", section_heading="", cancel_event=None):
        return ["" for _ in tables]

    def convert_tex_batch(self, texts, article_title="", section_heading="", cancel_event=None):
        return ["" for _ in texts]


def test_retrieval_and_generation_chunks_cover_the_same_units(chunker):
    processor = SectionProcessor(DualFormatBuilder(_BlankingConversion()), chunker)
    section = ArticleSection(
        number="3",
        heading="Semantics",
        content=(
            "<p>one two three</p>"
            r"<p>\(\sum_i x_i\)</p>"
            "<ol><li>four</li><li>five</li></ol>"
            "<table></table>"
            "<p>six seven eight nine</p>"
        ),
    )

    chunks = processor.process(section, "Logic")

    assert len(chunks) == 2
    assert chunks[0].retrieval_text.split() == ["one", "two", "three", "four", "five"]
    assert chunks[0].generation_text == "one two three\n\n\\(\\sum_i x_i\\)\n\n1. four\n2. five"
    assert chunks[0].token_count == 5
    assert chunks[1].retrieval_text == "six seven eight nine"
    assert chunks[1].generation_text == "six seven eight nine"
    assert all("<table" not in chunk.generation_text for chunk in chunks)
