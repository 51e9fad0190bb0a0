"""Application wiring: logging setup and the shared service objects."""
import logging
from dataclasses import dataclass
from typing import Optional

import httpx
import structlog

from pdfchat.chat import ChatService
from pdfchat.config import Settings
from pdfchat.db import Database
from pdfchat.documents import DocumentManager
from pdfchat.llm_client import CompletionClient
from pdfchat.memory import ConversationManager, RateLimiter
from pdfchat.rag.chunker import TextChunker
from pdfchat.rag.embeddings import EmbeddingClient
from pdfchat.rag.extractor import get_extractor
from pdfchat.rag.ingest import IngestPipeline
from pdfchat.rag.retriever import Retriever
from pdfchat.rag.vector_index import PineconeIndexClient

logger = structlog.get_logger()


def configure_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging."""
    logging.basicConfig(format="%(message)s", level=getattr(logging, level.upper(), logging.INFO))

    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
    )


@dataclass
class AppContext:
    """Everything a request handler or job needs, built once per process."""

    settings: Settings
    db: Database
    embedding_client: EmbeddingClient
    completion_client: CompletionClient
    index_client: PineconeIndexClient
    conversations: ConversationManager
    rate_limiter: RateLimiter
    retriever: Retriever
    chat_service: ChatService
    documents: DocumentManager
    ingest: IngestPipeline


def build_context(
    settings: Settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> AppContext:
    """Build the application context from settings.

    Args:
        settings: Validated settings
        transport: Optional httpx transport shared by all service clients

    Returns:
        AppContext with an initialized database
    """
    settings.ensure_directories()

    db = Database(settings.db_path)
    db.init_schema()

    embedding_client = EmbeddingClient(
        api_key=settings.openai_api_key,
        model=settings.embedding_model,
        base_url=settings.openai_base_url,
        timeout=settings.embed_timeout,
        batch_timeout=settings.long_timeout,
        transport=transport,
    )
    completion_client = CompletionClient(
        api_key=settings.openai_api_key,
        model=settings.chat_model,
        base_url=settings.openai_base_url,
        timeout=settings.long_timeout,
        transport=transport,
    )
    index_client = PineconeIndexClient(
        api_key=settings.pinecone_api_key,
        index_host=settings.pinecone_index_host,
        timeout=settings.short_timeout,
        upsert_timeout=settings.embed_timeout,
        transport=transport,
    )

    conversations = ConversationManager(db, history_limit=settings.history_limit)
    rate_limiter = RateLimiter(
        db,
        max_requests=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window,
    )
    retriever = Retriever(
        embedding_client,
        index_client,
        top_k=settings.retrieval_top_k,
        similarity_threshold=settings.similarity_threshold,
    )
    chat_service = ChatService(
        conversations,
        rate_limiter,
        retriever,
        completion_client,
        max_response_tokens=settings.max_response_tokens,
        temperature=settings.temperature,
    )
    documents = DocumentManager(
        db,
        index_client,
        upload_dir=settings.upload_dir,
        max_file_size=settings.max_file_size,
    )
    ingest = IngestPipeline(
        db,
        extractor=get_extractor(settings.pdf_extractor),
        chunker=TextChunker(chunk_size=settings.chunk_size, chunk_overlap=settings.chunk_overlap),
        embedding_client=embedding_client,
        index_client=index_client,
        batch_size=settings.upsert_batch_size,
    )

    logger.info(
        "app_context_built",
        db_path=str(settings.db_path),
        upload_dir=str(settings.upload_dir),
        embedding_model=settings.embedding_model,
        chat_model=settings.chat_model,
        pdf_extractor=settings.pdf_extractor,
    )

    return AppContext(
        settings=settings,
        db=db,
        embedding_client=embedding_client,
        completion_client=completion_client,
        index_client=index_client,
        conversations=conversations,
        rate_limiter=rate_limiter,
        retriever=retriever,
        chat_service=chat_service,
        documents=documents,
        ingest=ingest,
    )
