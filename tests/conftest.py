"""Pytest configuration and fixtures.

External services (the OpenAI-compatible API and the Pinecone index) are
replaced by a single in-process fake served through httpx.MockTransport.
"""
import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx
import pytest

from pdfchat.config import Settings
from pdfchat.context import build_context
from pdfchat.db import Database
from pdfchat.rag.extractor import ExtractedText, TextExtractor

OPENAI_BASE_URL = "https://api.openai.test/v1"
INDEX_HOST = "https://docs-index.svc.pinecone.test"


class FakeServices:
    """Scriptable stand-in for the embedding, completion and index APIs."""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.embedding = [0.1, 0.2, 0.3]
        # Single-text embedding requests containing one of these substrings fail
        self.embed_failures = set()
        self.matches: List[Dict[str, Any]] = []
        self.completion = "Here is what the documentation says."
        self.models = ["gpt-3.5-turbo", "text-embedding-ada-002"]
        # Path suffix -> (status code, JSON body) for forced failures
        self.failures: Dict[str, tuple] = {}

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        payload = json.loads(request.content) if request.content else None

        for suffix, (status_code, body) in self.failures.items():
            if path.endswith(suffix):
                return httpx.Response(status_code, json=body)

        if path.endswith("/embeddings"):
            return self._embeddings(payload)
        if path.endswith("/chat/completions"):
            return httpx.Response(200, json={
                "choices": [{"message": {"role": "assistant", "content": self.completion}, "finish_reason": "stop"}],
                "usage": {"prompt_tokens": 42, "completion_tokens": 7, "total_tokens": 49},
            })
        if path.endswith("/models"):
            return httpx.Response(200, json={"data": [{"id": m} for m in self.models]})
        if path.endswith("/vectors/upsert"):
            return httpx.Response(200, json={"upsertedCount": len(payload["vectors"])})
        if path.endswith("/query"):
            return httpx.Response(200, json={"matches": self.matches, "namespace": ""})
        if path.endswith("/vectors/delete"):
            return httpx.Response(200, json={})
        if path.endswith("/describe_index_stats"):
            return httpx.Response(200, json={"dimension": 3, "totalVectorCount": 12, "namespaces": {}})

        return httpx.Response(404, json={"message": f"unexpected path {path}"})

    def _embeddings(self, payload: Dict[str, Any]) -> httpx.Response:
        text = payload["input"]
        if isinstance(text, str):
            if any(marker in text for marker in self.embed_failures):
                return httpx.Response(500, json={"error": {"message": "embedding backend unavailable"}})
            return httpx.Response(200, json={
                "data": [{"index": 0, "embedding": self.embedding}],
                "usage": {"prompt_tokens": 3, "total_tokens": 3},
            })
        return httpx.Response(200, json={
            "data": [{"index": i, "embedding": self.embedding} for i in range(len(text))],
        })

    def payloads(self, suffix: str) -> List[Optional[Dict[str, Any]]]:
        """JSON bodies of every request whose path ends with suffix."""
        return [
            json.loads(r.content) if r.content else None
            for r in self.requests
            if r.url.path.endswith(suffix)
        ]

    @staticmethod
    def match(score: float, filename: str, page: int, text: str, document_id: int = 1) -> Dict[str, Any]:
        return {
            "id": f"{document_id}_chunk_{page}",
            "score": score,
            "metadata": {
                "document_id": document_id,
                "filename": filename,
                "page_number": page,
                "chunk_index": page - 1,
                "text": text,
            },
        }


class StaticExtractor(TextExtractor):
    """Extractor returning fixed pages, for multi-page ingestion scenarios."""

    name = "static"

    def __init__(self, pages: Dict[int, str]):
        self.pages = pages

    def _extract(self, file_path: Path) -> ExtractedText:
        return ExtractedText(pages=dict(self.pages), metadata={"title": "Manual"})


@pytest.fixture
def fake_services() -> FakeServices:
    return FakeServices()


@pytest.fixture
def transport(fake_services) -> httpx.MockTransport:
    return httpx.MockTransport(fake_services.handler)


@pytest.fixture
def make_settings(tmp_path):
    """Factory for settings rooted in a temporary data directory."""

    def _make(**overrides) -> Settings:
        values = {
            "data_dir": tmp_path / "data",
            "openai_api_key": "sk-test",
            "openai_base_url": OPENAI_BASE_URL,
            "pinecone_api_key": "pc-test",
            "pinecone_index_host": INDEX_HOST,
            "pdf_extractor": "regex",
        }
        values.update(overrides)
        return Settings(**values)

    return _make


@pytest.fixture
def make_context(make_settings, transport):
    """Factory for a fully wired AppContext talking to the fake services."""

    def _make(**overrides):
        return build_context(make_settings(**overrides), transport=transport)

    return _make


@pytest.fixture
def app_context(make_context):
    return make_context()


@pytest.fixture
def db(tmp_path) -> Database:
    database = Database(tmp_path / "test.sqlite")
    database.init_schema()
    return database


@pytest.fixture
def write_pdf(tmp_path):
    """Write a file with a PDF header and return its path."""

    def _write(name: str = "manual.pdf", body: bytes = b"(Hello from the manual) Tj") -> Path:
        path = tmp_path / name
        path.write_bytes(b"%PDF-1.4\n" + body)
        return path

    return _write
