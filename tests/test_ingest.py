"""Tests for the document ingestion pipeline."""
import asyncio
import threading

import pytest

from pdfchat.rag.chunker import TextChunker
from pdfchat.rag.ingest import IngestPipeline
from tests.conftest import StaticExtractor


@pytest.fixture
def make_pipeline(app_context):
    def _make(pages, batch_size=100, chunk_size=1000):
        return IngestPipeline(
            app_context.db,
            extractor=StaticExtractor(pages),
            chunker=TextChunker(chunk_size=chunk_size),
            embedding_client=app_context.embedding_client,
            index_client=app_context.index_client,
            batch_size=batch_size,
        )

    return _make


@pytest.fixture
def document_id(app_context, write_pdf):
    path = write_pdf("router-manual.pdf")
    return app_context.db.insert_document(
        filename="router-manual.pdf",
        original_filename="Router Manual.pdf",
        file_path=str(path),
        file_size=path.stat().st_size,
    )


def _upserted_vectors(fake_services):
    return [v for body in fake_services.payloads("/vectors/upsert") for v in body["vectors"]]


async def test_failed_chunk_is_skipped(app_context, fake_services, make_pipeline, document_id):
    fake_services.embed_failures.add("FAILME")
    pipeline = make_pipeline({
        1: "Unplug the router before cleaning.",
        2: "FAILME this page cannot be embedded.",
        3: "Contact support if the light stays red.",
    })

    ran = await pipeline.process_document(document_id)

    assert ran is True
    document = app_context.db.get_document(document_id)
    assert document["status"] == "processed"
    assert document["total_chunks"] == 3
    assert document["processed_chunks"] == 2
    assert document["metadata_json"] == {"title": "Manual"}

    vectors = _upserted_vectors(fake_services)
    assert [v["id"] for v in vectors] == [f"{document_id}_chunk_0", f"{document_id}_chunk_2"]
    assert [v["metadata"]["page_number"] for v in vectors] == [1, 3]
    metadata = vectors[1]["metadata"]
    assert metadata["document_id"] == document_id
    assert metadata["filename"] == "Router Manual.pdf"
    assert metadata["chunk_index"] == 2
    assert metadata["text"] == "Contact support if the light stays red."
    assert metadata["created_at"]


async def test_reprocessing_reuses_vector_ids(app_context, fake_services, make_pipeline, document_id):
    pipeline = make_pipeline({1: "First page.", 2: "Second page."})

    await pipeline.process_document(document_id)
    first_ids = [v["id"] for v in _upserted_vectors(fake_services)]
    fake_services.requests.clear()

    assert await pipeline.process_document(document_id) is False
    assert await pipeline.process_document(document_id, force=True) is True

    assert [v["id"] for v in _upserted_vectors(fake_services)] == first_ids


async def test_forced_rerun_clears_previous_vectors_first(app_context, fake_services, document_id):
    pages = {1: "First page.", 2: "Second page.", 3: "Third page."}
    extractor = StaticExtractor(pages)
    pipeline = IngestPipeline(
        app_context.db,
        extractor=extractor,
        chunker=TextChunker(chunk_size=1000),
        embedding_client=app_context.embedding_client,
        index_client=app_context.index_client,
    )
    await pipeline.process_document(document_id)
    fake_services.requests.clear()

    extractor.pages = {1: "First page, revised."}
    assert await pipeline.process_document(document_id, force=True) is True

    paths = [r.url.path for r in fake_services.requests if not r.url.path.endswith("/embeddings")]
    assert paths == ["/vectors/delete", "/vectors/upsert"]
    assert fake_services.payloads("/vectors/delete") == [{"filter": {"document_id": {"$eq": document_id}}}]
    assert [v["id"] for v in _upserted_vectors(fake_services)] == [f"{document_id}_chunk_0"]
    assert app_context.db.get_document(document_id)["processed_chunks"] == 1


async def test_forced_rerun_fails_when_previous_vectors_cannot_be_removed(
    app_context, fake_services, make_pipeline, document_id
):
    pipeline = make_pipeline({1: "First page."})
    await pipeline.process_document(document_id)
    fake_services.failures["/vectors/delete"] = (503, {"message": "index unavailable"})
    fake_services.requests.clear()

    assert await pipeline.process_document(document_id, force=True) is True

    document = app_context.db.get_document(document_id)
    assert document["status"] == "failed"
    assert "index unavailable" in document["error_message"]
    assert fake_services.payloads("/vectors/upsert") == []


async def test_first_run_does_not_touch_existing_vectors(fake_services, make_pipeline, document_id):
    await make_pipeline({1: "First page."}).process_document(document_id)

    assert fake_services.payloads("/vectors/delete") == []


async def test_extraction_runs_off_the_event_loop_thread(app_context, make_pipeline, document_id):
    seen = []

    class ThreadRecordingExtractor(StaticExtractor):
        def _extract(self, file_path):
            seen.append(threading.get_ident())
            return super()._extract(file_path)

    pipeline = make_pipeline({1: "Some text."})
    pipeline.extractor = ThreadRecordingExtractor({1: "Some text."})

    await pipeline.process_document(document_id)

    assert seen and seen[0] != threading.get_ident()
    assert app_context.db.get_document(document_id)["status"] == "processed"


async def test_document_being_processed_is_skipped(app_context, fake_services, make_pipeline, document_id):
    pipeline = make_pipeline({1: "Some text."})
    assert app_context.db.claim_document(document_id, ("uploaded",))

    assert await pipeline.process_document(document_id) is False
    assert await pipeline.process_document(document_id, force=True) is False

    assert fake_services.requests == []
    assert app_context.db.get_document(document_id)["status"] == "processing"


async def test_concurrent_runs_are_single_flight(app_context, fake_services, make_pipeline, document_id):
    pipeline = make_pipeline({1: "Page one.", 2: "Page two."})

    results = await asyncio.gather(
        pipeline.process_document(document_id),
        pipeline.process_document(document_id),
    )

    assert sorted(results) == [False, True]
    assert len(fake_services.payloads("/embeddings")) == 2


async def test_upserts_are_batched(app_context, fake_services, make_pipeline, document_id):
    pages = {n: f"Page {n} text." for n in range(1, 251)}
    pipeline = make_pipeline(pages, batch_size=100)

    await pipeline.process_document(document_id)

    batches = [len(body["vectors"]) for body in fake_services.payloads("/vectors/upsert")]
    assert batches == [100, 100, 50]
    assert app_context.db.get_document(document_id)["processed_chunks"] == 250


async def test_upsert_failure_does_not_fail_document(app_context, fake_services, make_pipeline, document_id):
    fake_services.failures["/vectors/upsert"] = (503, {"message": "index unavailable"})
    pipeline = make_pipeline({1: "Page one.", 2: "Page two."})

    assert await pipeline.process_document(document_id) is True

    document = app_context.db.get_document(document_id)
    assert document["status"] == "processed"
    assert document["processed_chunks"] == 2


async def test_invalid_pdf_marks_document_failed(app_context, make_pipeline, tmp_path):
    bogus = tmp_path / "notes.pdf"
    bogus.write_bytes(b"just some text")
    document_id = app_context.db.insert_document("notes.pdf", "notes.pdf", str(bogus), 14)

    await make_pipeline({1: "unused"}).process_document(document_id)

    document = app_context.db.get_document(document_id)
    assert document["status"] == "failed"
    assert document["error_message"] == "Invalid PDF file"


async def test_document_without_text_fails(app_context, fake_services, make_pipeline, document_id):
    await make_pipeline({1: "   ", 2: ""}).process_document(document_id)

    document = app_context.db.get_document(document_id)
    assert document["status"] == "failed"
    assert document["error_message"] == "No extractable text found"
    assert fake_services.requests == []


async def test_missing_file_fails(app_context, make_pipeline, tmp_path):
    document_id = app_context.db.insert_document("gone.pdf", "gone.pdf", str(tmp_path / "gone.pdf"), 10)

    await make_pipeline({1: "unused"}).process_document(document_id)

    document = app_context.db.get_document(document_id)
    assert document["status"] == "failed"
    assert "not found" in document["error_message"]


async def test_failed_document_can_be_retried(app_context, fake_services, make_pipeline, document_id):
    fake_services.failures["/embeddings"] = (401, {"error": {"message": "Invalid key"}})
    pipeline = make_pipeline({1: "Only page."})
    await pipeline.process_document(document_id)
    assert app_context.db.get_document(document_id)["processed_chunks"] == 0

    app_context.db.mark_document_failed(document_id, "manual retry")
    fake_services.failures.clear()

    assert await pipeline.process_document(document_id) is True
    document = app_context.db.get_document(document_id)
    assert document["status"] == "processed"
    assert document["processed_chunks"] == 1
    assert document["error_message"] is None


async def test_index_metadata_is_recorded(app_context, make_pipeline, document_id):
    await make_pipeline({1: "Only page."}).process_document(document_id)

    metadata = app_context.db.get_setting("index_metadata")
    assert metadata["embedding_model"] == "text-embedding-ada-002"
    assert metadata["extractor"] == "static"
    assert metadata["last_document_id"] == document_id


async def test_process_pending(app_context, make_pipeline, write_pdf):
    ids = [
        app_context.db.insert_document(f"doc{i}.pdf", f"doc{i}.pdf", str(write_pdf(f"doc{i}.pdf")), 20)
        for i in range(2)
    ]

    stats = await make_pipeline({1: "Shared page."}).process_pending()

    assert stats == {"documents_found": 2, "documents_processed": 2, "documents_skipped": 0}
    assert all(app_context.db.get_document(i)["status"] == "processed" for i in ids)


async def test_regex_extractor_end_to_end(app_context, fake_services, write_pdf):
    path = write_pdf("faq.pdf", b"(Passwords expire every ninety days.) Tj")
    document_id = app_context.documents.register_file(path)

    assert await app_context.ingest.process_document(document_id) is True

    vectors = _upserted_vectors(fake_services)
    assert vectors[0]["metadata"]["text"] == "Passwords expire every ninety days."
    assert vectors[0]["metadata"]["page_number"] == 1
