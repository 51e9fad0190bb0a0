"""Retriever for semantic search over indexed PDF passages.

Handles:
- Query embedding generation
- Vector index search
- Similarity threshold filtering
- Source deduplication by (filename, page)
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import structlog

from pdfchat.rag.embeddings import EmbeddingClient
from pdfchat.rag.vector_index import PineconeIndexClient, QueryMatch

logger = structlog.get_logger()


@dataclass
class RetrievedPassage:
    """A retrieved chunk that passed the similarity threshold."""

    text: str
    filename: str
    page: Any
    relevance: float
    metadata: Dict[str, Any]

    @property
    def source(self) -> str:
        """Get a formatted source string for display."""
        return f"{self.filename} (Page {self.page})"


@dataclass
class RetrievalResult:
    """Passages used as grounding context and their unique sources."""

    passages: List[RetrievedPassage] = field(default_factory=list)
    sources: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def has_context(self) -> bool:
        return bool(self.passages)


def filter_matches(matches: List[QueryMatch], threshold: float) -> RetrievalResult:
    """Drop matches below the threshold and collect unique sources.

    Sources are keyed by (filename, page); the first occurrence fixes the
    position in the list and the highest relevance seen is kept.

    Args:
        matches: Matches in index rank order
        threshold: Minimum score (inclusive)

    Returns:
        RetrievalResult
    """
    result = RetrievalResult()
    sources: Dict[Tuple[str, Any], Dict[str, Any]] = {}

    for match in matches:
        if match.score < threshold:
            continue

        metadata = match.metadata
        filename = metadata.get("filename", "unknown")
        page = metadata.get("page_number")

        result.passages.append(
            RetrievedPassage(
                text=metadata.get("text", ""),
                filename=filename,
                page=page,
                relevance=match.score,
                metadata=metadata,
            )
        )

        key = (filename, page)
        if key not in sources:
            sources[key] = {"filename": filename, "page": page, "relevance": match.score}
        elif match.score > sources[key]["relevance"]:
            sources[key]["relevance"] = match.score

    result.sources = list(sources.values())
    return result


class Retriever:
    """Semantic retriever for the answering pipeline."""

    def __init__(
        self,
        embedding_client: EmbeddingClient,
        index_client: PineconeIndexClient,
        top_k: int = 5,
        similarity_threshold: float = 0.7,
    ):
        """Initialize the retriever.

        Args:
            embedding_client: Client used to embed queries
            index_client: Vector index to search
            top_k: Number of nearest neighbours to fetch
            similarity_threshold: Minimum score for a match to be used
        """
        self.embedding_client = embedding_client
        self.index_client = index_client
        self.top_k = top_k
        self.similarity_threshold = similarity_threshold

    async def embed_query(self, query: str) -> List[float]:
        return await self.embedding_client.embed(query)

    async def search(
        self,
        query_embedding: List[float],
        top_k: Optional[int] = None,
    ) -> RetrievalResult:
        """Query the index and apply the similarity filter.

        Args:
            query_embedding: Embedded user query
            top_k: Overrides the default neighbour count

        Returns:
            RetrievalResult with passages and deduplicated sources
        """
        top_k = top_k or self.top_k
        matches = await self.index_client.query(query_embedding, top_k=top_k)
        result = filter_matches(matches, self.similarity_threshold)

        logger.info(
            "retrieval_completed",
            matches=len(matches),
            passages_kept=len(result.passages),
            unique_sources=len(result.sources),
            threshold=self.similarity_threshold,
        )
        return result
