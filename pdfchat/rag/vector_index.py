"""Client for a Pinecone-compatible vector index.

Handles:
- Vector upserts (caller-batched)
- Top-k similarity queries with metadata
- Filter-based deletion of a document's vectors
- Index statistics
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx
import structlog

from pdfchat.errors import ConfigError, UpstreamError, ValidationError
from pdfchat.http_client import JSONServiceClient

logger = structlog.get_logger()

MAX_UPSERT_BATCH = 100


def vector_id_for(document_id: int, chunk_index: int) -> str:
    """Deterministic vector id, so re-processing overwrites instead of duplicating."""
    return f"{document_id}_chunk_{chunk_index}"


@dataclass
class VectorRecord:
    """A vector and its metadata, ready for upsert."""

    id: str
    values: List[float]
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        return {"id": self.id, "values": self.values, "metadata": self.metadata}


@dataclass
class QueryMatch:
    """A single nearest-neighbour match."""

    id: str
    score: float
    metadata: Dict[str, Any]


class PineconeIndexClient(JSONServiceClient):
    """Async client for one Pinecone index, addressed by its host URL."""

    def __init__(
        self,
        api_key: str,
        index_host: str,
        timeout: float = 30.0,
        upsert_timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the index client.

        Args:
            api_key: Pinecone API key
            index_host: Index host URL (e.g. https://my-index-abc123.svc.pinecone.io)
            timeout: Timeout for query, delete and stats calls
            upsert_timeout: Timeout for upsert calls
            transport: Optional httpx transport
        """
        super().__init__(timeout=timeout, transport=transport)
        self.api_key = api_key
        self.index_host = index_host.rstrip("/")
        if self.index_host and "://" not in self.index_host:
            self.index_host = f"https://{self.index_host}"
        self.upsert_timeout = upsert_timeout

    @property
    def service_name(self) -> str:
        return "pinecone"

    def _get_base_url(self) -> str:
        return self.index_host

    def _get_auth_header(self) -> Dict[str, str]:
        return {"Api-Key": self.api_key}

    def _check_credentials(self) -> None:
        if not self.api_key:
            raise ConfigError("Pinecone API key not configured")
        if not self.index_host:
            raise ConfigError("Pinecone index host not configured")

    async def upsert(self, records: List[VectorRecord]) -> int:
        """Upsert one batch of vectors.

        The client does not re-batch; callers submit at most
        MAX_UPSERT_BATCH records per call.

        Args:
            records: Vectors to write

        Returns:
            Number of vectors the index reports as upserted

        Raises:
            ValidationError: If the batch exceeds MAX_UPSERT_BATCH
        """
        if not records:
            return 0
        if len(records) > MAX_UPSERT_BATCH:
            raise ValidationError(
                f"Upsert batch of {len(records)} exceeds limit of {MAX_UPSERT_BATCH}"
            )

        data = await self.do_request(
            "POST",
            "/vectors/upsert",
            json={"vectors": [r.to_payload() for r in records]},
            timeout=self.upsert_timeout,
            default_error="Failed to upsert vectors",
        )
        upserted = int(data.get("upsertedCount", len(records)))

        logger.info("vectors_upserted", count=upserted)
        return upserted

    async def query(
        self,
        vector: List[float],
        top_k: int = 5,
        filter: Optional[Dict[str, Any]] = None,
    ) -> List[QueryMatch]:
        """Find the nearest vectors.

        Args:
            vector: Query embedding
            top_k: Number of matches to return
            filter: Optional metadata filter

        Returns:
            Matches as ranked by the index (best first)
        """
        payload: Dict[str, Any] = {
            "vector": vector,
            "topK": top_k,
            "includeMetadata": True,
            "includeValues": False,
        }
        if filter:
            payload["filter"] = filter

        data = await self.do_request(
            "POST",
            "/query",
            json=payload,
            default_error="Failed to query vectors",
        )

        raw_matches = data.get("matches")
        if raw_matches is None:
            raw_matches = []
        if not isinstance(raw_matches, list):
            raise UpstreamError("Invalid query response")

        matches = [
            QueryMatch(
                id=str(m.get("id", "")),
                score=float(m.get("score", 0.0)),
                metadata=m.get("metadata") or {},
            )
            for m in raw_matches
        ]

        logger.info(
            "vector_search_completed",
            top_k=top_k,
            results_found=len(matches),
            top_score=matches[0].score if matches else None,
        )
        return matches

    async def delete_by_document(self, document_id: int) -> None:
        """Delete every vector whose metadata document_id equals the given id.

        Deleting a document with no vectors is not an error.
        """
        await self.do_request(
            "POST",
            "/vectors/delete",
            json={"filter": {"document_id": {"$eq": document_id}}},
            default_error="Failed to delete vectors",
        )
        logger.info("document_vectors_deleted", document_id=document_id)

    async def describe_index_stats(self) -> Dict[str, Any]:
        """Return index statistics (dimension, vector counts)."""
        return await self.do_request(
            "POST",
            "/describe_index_stats",
            json={},
            default_error="Failed to get index stats",
        )
