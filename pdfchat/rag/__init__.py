"""RAG (Retrieval-Augmented Generation) pipeline components.

This package contains modules for:
- PDF text extraction
- Sentence-based chunking with overlap
- Embedding generation
- Pinecone vector index access
- Semantic retrieval
- Document ingestion and the upload-directory watcher
"""
