"""Ingest pipeline for indexing uploaded PDF documents.

Orchestrates:
- Single-flight claim of the document
- PDF text extraction
- Text chunking
- Embedding generation
- Batched vector upserts
- Final document status
"""
import asyncio
from pathlib import Path
from typing import Any, Dict, List

import structlog

from pdfchat.db import Database, utcnow
from pdfchat.errors import ChatSupportError
from pdfchat.rag.chunker import TextChunk, TextChunker
from pdfchat.rag.embeddings import EmbeddingClient
from pdfchat.rag.extractor import ExtractionError, TextExtractor
from pdfchat.rag.vector_index import MAX_UPSERT_BATCH, PineconeIndexClient, VectorRecord, vector_id_for

logger = structlog.get_logger()

CLAIMABLE_STATUSES = ("uploaded", "failed")


class IngestPipeline:
    """Pipeline that takes one stored document from 'uploaded' to 'processed'."""

    def __init__(
        self,
        db: Database,
        extractor: TextExtractor,
        chunker: TextChunker,
        embedding_client: EmbeddingClient,
        index_client: PineconeIndexClient,
        batch_size: int = MAX_UPSERT_BATCH,
    ):
        """Initialize the ingest pipeline.

        Args:
            db: Database with the documents table
            extractor: Configured PDF text extractor
            chunker: Chunker for extracted pages
            embedding_client: Client for chunk embeddings
            index_client: Vector index receiving the records
            batch_size: Records per upsert call (at most MAX_UPSERT_BATCH)
        """
        if not 0 < batch_size <= MAX_UPSERT_BATCH:
            raise ValueError(f"batch_size must be between 1 and {MAX_UPSERT_BATCH}")

        self.db = db
        self.extractor = extractor
        self.chunker = chunker
        self.embedding_client = embedding_client
        self.index_client = index_client
        self.batch_size = batch_size

        logger.info(
            "ingest_pipeline_initialized",
            extractor=extractor.name,
            chunk_size=chunker.chunk_size,
            chunk_overlap=chunker.chunk_overlap,
            batch_size=batch_size,
        )

    async def process_document(self, document_id: int, force: bool = False) -> bool:
        """Process one document. Failures are recorded on the document, never raised.

        Args:
            document_id: Document to process
            force: Also re-process documents that are already 'processed'

        Returns:
            True if this call ran the pipeline, False if the document was
            missing or already claimed by another run
        """
        allowed = CLAIMABLE_STATUSES + (("processed",) if force else ())
        previous = self.db.get_document(document_id)

        if not self.db.claim_document(document_id, allowed):
            document = self.db.get_document(document_id)
            logger.info(
                "document_processing_skipped",
                document_id=document_id,
                status=document["status"] if document else None,
                reason="not_found" if document is None else "status_not_claimable",
            )
            return False

        document = self.db.get_document(document_id)
        logger.info("document_processing_started", document_id=document_id, filename=document["original_filename"])

        # Vector ids are positional; clear the previous run before re-indexing
        if previous and previous["processed_chunks"] > 0:
            try:
                await self.index_client.delete_by_document(document_id)
            except ChatSupportError as e:
                self._fail(document_id, f"Could not remove previous vectors: {e.message}")
                return True
            logger.info("previous_vectors_removed", document_id=document_id, chunks=previous["processed_chunks"])

        try:
            stats = await self._run(document)
        except (ExtractionError, FileNotFoundError) as e:
            self._fail(document_id, str(e))
            return True
        except Exception as e:
            logger.error(
                "document_processing_crashed",
                document_id=document_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            self._fail(document_id, str(e) or type(e).__name__)
            return True

        if stats is None:
            self._fail(document_id, "No text content found in PDF")
            return True

        self.db.mark_document_processed(
            document_id,
            total_chunks=stats["total_chunks"],
            processed_chunks=stats["processed_chunks"],
            metadata=stats["metadata"] or None,
        )

        self.db.set_setting("index_metadata", {
            "indexed_at": utcnow(),
            "embedding_model": self.embedding_client.model,
            "extractor": self.extractor.name,
            "chunk_size": self.chunker.chunk_size,
            "chunk_overlap": self.chunker.chunk_overlap,
            "last_document_id": document_id,
        })

        if stats["processed_chunks"] < stats["total_chunks"]:
            logger.warning(
                "partial_ingestion",
                document_id=document_id,
                total_chunks=stats["total_chunks"],
                processed_chunks=stats["processed_chunks"],
                skipped_chunks=stats["total_chunks"] - stats["processed_chunks"],
            )

        logger.info(
            "document_processed",
            document_id=document_id,
            total_chunks=stats["total_chunks"],
            processed_chunks=stats["processed_chunks"],
            upsert_failures=stats["upsert_failures"],
        )
        return True

    async def process_pending(self) -> Dict[str, int]:
        """Process every document still in 'uploaded' state (scheduled job entry point).

        Returns:
            Counts of documents processed and skipped
        """
        pending = self.db.list_documents(status="uploaded", limit=1000)
        stats = {"documents_found": len(pending), "documents_processed": 0, "documents_skipped": 0}

        for document in pending:
            if await self.process_document(document["id"]):
                stats["documents_processed"] += 1
            else:
                stats["documents_skipped"] += 1

        logger.info("process_pending_completed", **stats)
        return stats

    async def _run(self, document: Dict[str, Any]):
        """Extract, chunk, embed and upsert. Returns None when there is nothing to index."""
        # pdfminer and pdftotext are blocking
        extracted = await asyncio.to_thread(self.extractor.extract, Path(document["file_path"]))
        chunks = self.chunker.chunk_pages(extracted.pages)

        if not chunks:
            logger.warning("no_chunks_created", document_id=document["id"])
            return None

        processed = 0
        upsert_failures = 0
        batch: List[VectorRecord] = []

        for chunk in chunks:
            record = await self._embed_chunk(document, chunk)
            if record is None:
                continue

            batch.append(record)
            processed += 1

            if len(batch) >= self.batch_size:
                upsert_failures += await self._flush(document["id"], batch)
                batch = []

        if batch:
            upsert_failures += await self._flush(document["id"], batch)

        return {
            "total_chunks": len(chunks),
            "processed_chunks": processed,
            "upsert_failures": upsert_failures,
            "metadata": extracted.metadata,
        }

    async def _embed_chunk(self, document: Dict[str, Any], chunk: TextChunk):
        """Embed one chunk; a failure skips the chunk instead of failing the document."""
        try:
            embedding = await self.embedding_client.embed(chunk.content)
        except ChatSupportError as e:
            logger.warning(
                "chunk_embedding_skipped",
                document_id=document["id"],
                chunk_index=chunk.chunk_index,
                page_number=chunk.page_number,
                error=e.message,
                error_type=type(e).__name__,
            )
            return None

        return VectorRecord(
            id=vector_id_for(document["id"], chunk.chunk_index),
            values=embedding,
            metadata={
                "document_id": document["id"],
                "filename": document["original_filename"],
                "chunk_index": chunk.chunk_index,
                "page_number": chunk.page_number,
                "text": chunk.content,
                "created_at": utcnow(),
            },
        )

    async def _flush(self, document_id: int, batch: List[VectorRecord]) -> int:
        """Upsert a batch; returns 1 on failure so the caller can count them."""
        try:
            await self.index_client.upsert(batch)
        except ChatSupportError as e:
            logger.error(
                "vector_upsert_failed",
                document_id=document_id,
                batch_size=len(batch),
                error=e.message,
            )
            return 1
        return 0

    def _fail(self, document_id: int, message: str) -> None:
        self.db.mark_document_failed(document_id, message)
        logger.error("document_processing_failed", document_id=document_id, error=message)
