"""Tests for the document registry and the upload-directory watcher."""
import asyncio
from pathlib import Path

import pytest

from pdfchat.documents import safe_filename
from pdfchat.errors import UpstreamError, ValidationError
from pdfchat.rag.watcher import PdfFileHandler

PDF_BYTES = b"%PDF-1.4\n(Warranty covers two years.) Tj"


def test_safe_filename():
    assert safe_filename("../../etc/passwd.pdf") == "passwd.pdf"
    assert safe_filename("C:\\Users\\me\\Quick Start Guide.pdf") == "Quick-Start-Guide.pdf"
    assert safe_filename("...") == "document.pdf"


class TestUpload:
    def test_register_upload_stores_file_and_row(self, app_context):
        document_id = app_context.documents.register_upload("Quick Start.pdf", PDF_BYTES)

        document = app_context.documents.get_document(document_id)
        assert document["status"] == "uploaded"
        assert document["original_filename"] == "Quick Start.pdf"
        assert document["filename"] == "Quick-Start.pdf"
        assert document["file_size"] == len(PDF_BYTES)
        assert Path(document["file_path"]).read_bytes() == PDF_BYTES
        assert Path(document["file_path"]).parent == app_context.settings.upload_dir

    def test_duplicate_names_do_not_overwrite(self, app_context):
        first = app_context.documents.register_upload("manual.pdf", PDF_BYTES)
        second = app_context.documents.register_upload("manual.pdf", PDF_BYTES + b" ")

        paths = {app_context.documents.get_document(i)["file_path"] for i in (first, second)}
        assert len(paths) == 2

    @pytest.mark.parametrize("filename,data,message", [
        ("manual.docx", PDF_BYTES, "Only PDF files"),
        ("manual.pdf", b"PK\x03\x04 zip archive", "Only PDF files"),
        ("manual.pdf", b"", "empty"),
        ("", PDF_BYTES, "No file uploaded"),
    ])
    def test_invalid_uploads_rejected(self, app_context, filename, data, message):
        with pytest.raises(ValidationError, match=message):
            app_context.documents.register_upload(filename, data)

        assert app_context.documents.list_documents() == []

    def test_size_limit(self, make_context):
        context = make_context(max_file_size=1024)

        with pytest.raises(ValidationError, match="exceeds maximum"):
            context.documents.register_upload("big.pdf", b"%PDF" + b"0" * 2048)

    def test_register_file_skips_known_paths(self, app_context, write_pdf):
        path = write_pdf()

        assert app_context.documents.register_file(path) is not None
        assert app_context.documents.register_file(path) is None

    def test_register_file_rejects_non_pdf(self, app_context, tmp_path):
        path = tmp_path / "fake.pdf"
        path.write_bytes(b"hello")

        assert app_context.documents.register_file(path) is None


class TestDelete:
    async def test_processed_document_removes_vectors_file_and_row(self, app_context, fake_services):
        document_id = app_context.documents.register_upload("manual.pdf", PDF_BYTES)
        await app_context.ingest.process_document(document_id)
        file_path = Path(app_context.documents.get_document(document_id)["file_path"])

        assert await app_context.documents.delete_document(document_id) is True

        assert fake_services.payloads("/vectors/delete") == [{"filter": {"document_id": {"$eq": document_id}}}]
        assert not file_path.exists()
        assert app_context.documents.get_document(document_id) is None

    async def test_unprocessed_document_skips_index(self, app_context, fake_services):
        document_id = app_context.documents.register_upload("manual.pdf", PDF_BYTES)

        assert await app_context.documents.delete_document(document_id) is True
        assert fake_services.requests == []

    async def test_unknown_document(self, app_context):
        assert await app_context.documents.delete_document(404) is False

    async def test_document_in_processing_cannot_be_deleted(self, app_context):
        document_id = app_context.documents.register_upload("manual.pdf", PDF_BYTES)
        app_context.db.claim_document(document_id, ("uploaded",))

        with pytest.raises(ValidationError):
            await app_context.documents.delete_document(document_id)

    async def test_index_failure_keeps_row(self, app_context, fake_services):
        document_id = app_context.documents.register_upload("manual.pdf", PDF_BYTES)
        await app_context.ingest.process_document(document_id)
        fake_services.failures["/vectors/delete"] = (500, {"message": "index unavailable"})

        with pytest.raises(UpstreamError):
            await app_context.documents.delete_document(document_id)

        assert app_context.documents.get_document(document_id) is not None


class TestWatcher:
    @pytest.fixture
    async def handler(self, app_context):
        return PdfFileHandler(
            documents=app_context.documents,
            ingest_pipeline=app_context.ingest,
            loop=asyncio.get_running_loop(),
            debounce_seconds=0.01,
        )

    async def test_created_file_is_registered_and_processed(self, app_context, handler, write_pdf):
        path = write_pdf("dropped.pdf", b"(Dropped into the folder.) Tj")

        document_id = await handler.handle_created(path)

        document = app_context.documents.get_document(document_id)
        assert document["status"] == "processed"
        assert document["processed_chunks"] == 1

    async def test_known_file_is_not_reprocessed(self, app_context, fake_services, handler, write_pdf):
        path = write_pdf("dropped.pdf")
        await handler.handle_created(path)
        fake_services.requests.clear()

        assert await handler.handle_created(path) is None
        assert fake_services.requests == []

    async def test_deleted_file_removes_document(self, app_context, fake_services, handler, write_pdf):
        path = write_pdf("dropped.pdf")
        document_id = await handler.handle_created(path)
        path.unlink()

        assert await handler.handle_deleted(path) is True

        assert app_context.documents.get_document(document_id) is None
        assert len(fake_services.payloads("/vectors/delete")) == 1

    async def test_deleted_unknown_file(self, handler, tmp_path):
        assert await handler.handle_deleted(tmp_path / "never-seen.pdf") is False
