"""Tests for page-aware sentence chunking."""
import pytest

from pdfchat.rag.chunker import TextChunker


def _sentences(count: int):
    return [f"Sentence number {i} has some words in it." for i in range(count)]


def test_short_page_is_single_stripped_chunk():
    chunker = TextChunker(chunk_size=1000)

    chunks = chunker.chunk_pages({1: "  Reset the router by holding the button.  \n"})

    assert len(chunks) == 1
    assert chunks[0].content == "Reset the router by holding the button."
    assert chunks[0].page_number == 1
    assert chunks[0].chunk_index == 0
    assert chunks[0].overlap_chars == 0


def test_default_overlap_is_ten_percent():
    assert TextChunker(chunk_size=1000).chunk_overlap == 100


def test_chunks_respect_size_limit():
    chunker = TextChunker(chunk_size=200, chunk_overlap=20)
    text = " ".join(_sentences(60))

    chunks = chunker.chunk_pages({1: text})

    assert len(chunks) > 1
    assert all(len(c.content) <= 200 for c in chunks)


def test_chunks_reconstruct_page_text():
    chunker = TextChunker(chunk_size=200, chunk_overlap=20)
    sentences = _sentences(60)

    chunks = chunker.chunk_pages({1: " ".join(sentences)})

    rebuilt = " ".join(
        chunk.content[chunk.overlap_chars:] if i else chunk.content
        for i, chunk in enumerate(chunks)
    )
    assert rebuilt == " ".join(sentences)


def test_overlap_carries_trailing_words():
    chunker = TextChunker(chunk_size=200, chunk_overlap=20)

    chunks = chunker.chunk_pages({1: " ".join(_sentences(20))})

    second = chunks[1]
    assert 0 < second.overlap_chars <= 21
    carried = second.content[:second.overlap_chars - 1]
    assert chunks[0].content.endswith(carried)
    # Whole words only
    assert chunks[0].content[-len(carried) - 1] == " "


def test_zero_overlap_disables_carry_over():
    chunker = TextChunker(chunk_size=200, chunk_overlap=0)

    chunks = chunker.chunk_pages({1: " ".join(_sentences(20))})

    assert all(c.overlap_chars == 0 for c in chunks)


def test_oversized_sentence_is_kept_whole():
    chunker = TextChunker(chunk_size=50, chunk_overlap=5)
    long_sentence = "This sentence keeps going " + "and going " * 10 + "without a stop."
    text = f"Short one. {long_sentence} Another short one."

    chunks = chunker.chunk_pages({1: text})

    assert any(c.content.endswith(long_sentence) and len(c.content) > 50 for c in chunks)
    assert "".join(c.content for c in chunks).count("without a stop.") == 1


def test_pages_keep_provenance_and_global_indices():
    chunker = TextChunker(chunk_size=100, chunk_overlap=10)
    pages = {
        3: "Third page text.",
        1: " ".join(_sentences(6)),
        2: "   ",
    }

    chunks = chunker.chunk_pages(pages)

    assert [c.chunk_index for c in chunks] == list(range(len(chunks)))
    assert chunks[-1].page_number == 3
    assert chunks[-1].content == "Third page text."
    assert {c.page_number for c in chunks} == {1, 3}
    page_numbers = [c.page_number for c in chunks]
    assert page_numbers == sorted(page_numbers)


def test_empty_document_has_no_chunks():
    assert TextChunker().chunk_pages({1: "", 2: "  \n"}) == []


@pytest.mark.parametrize("chunk_size,chunk_overlap", [(0, None), (100, 100), (100, -1)])
def test_invalid_parameters_rejected(chunk_size, chunk_overlap):
    with pytest.raises(ValueError):
        TextChunker(chunk_size=chunk_size, chunk_overlap=chunk_overlap)


def test_chunk_stats():
    chunker = TextChunker(chunk_size=100, chunk_overlap=10)
    chunks = chunker.chunk_pages({1: "One page.", 2: "Another page here."})

    stats = chunker.get_chunk_stats(chunks)

    assert stats["chunk_count"] == 2
    assert stats["min_chunk_size"] == len("One page.")
    assert stats["max_chunk_size"] == len("Another page here.")
    assert stats["pages"] == 2
