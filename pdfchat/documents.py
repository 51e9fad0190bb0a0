"""Document registry: upload validation, storage and deletion."""
import re
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog

from pdfchat.db import Database
from pdfchat.errors import ChatSupportError, ValidationError
from pdfchat.rag.extractor import PDF_MAGIC
from pdfchat.rag.vector_index import PineconeIndexClient

logger = structlog.get_logger()

ALLOWED_EXTENSIONS = (".pdf",)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def safe_filename(filename: str) -> str:
    """Strip directories and unsafe characters from a client-supplied name."""
    name = Path(filename.replace("\\", "/")).name
    name = _UNSAFE_CHARS.sub("-", name).strip(".-")
    return name or "document.pdf"


class DocumentManager:
    """Registers uploaded PDFs and removes them with their vectors."""

    def __init__(
        self,
        db: Database,
        index_client: PineconeIndexClient,
        upload_dir: Path,
        max_file_size: int = 10 * 1024 * 1024,
    ):
        self.db = db
        self.index_client = index_client
        self.upload_dir = Path(upload_dir)
        self.max_file_size = max_file_size

    def validate_upload(self, filename: str, data: bytes) -> None:
        """Reject files that are not PDFs or exceed the size limit.

        Raises:
            ValidationError: With a user-facing message
        """
        if not filename:
            raise ValidationError("No file uploaded")

        if Path(filename).suffix.lower() not in ALLOWED_EXTENSIONS:
            raise ValidationError("Invalid file type. Only PDF files are allowed.")

        if not data:
            raise ValidationError("Uploaded file is empty")

        if len(data) > self.max_file_size:
            raise ValidationError(
                f"File size exceeds maximum allowed size of {self.max_file_size // (1024 * 1024)} MB"
            )

        if not data.startswith(PDF_MAGIC):
            raise ValidationError("Invalid file type. Only PDF files are allowed.")

    def register_upload(self, filename: str, data: bytes) -> int:
        """Validate and store an uploaded PDF.

        Args:
            filename: Client-supplied file name
            data: File contents

        Returns:
            ID of the new document (status 'uploaded')
        """
        self.validate_upload(filename, data)

        self.upload_dir.mkdir(parents=True, exist_ok=True)
        stored_name = self._unique_name(safe_filename(filename))
        file_path = self.upload_dir / stored_name
        file_path.write_bytes(data)

        try:
            document_id = self.db.insert_document(
                filename=stored_name,
                original_filename=filename,
                file_path=str(file_path),
                file_size=len(data),
            )
        except Exception:
            file_path.unlink(missing_ok=True)
            raise

        logger.info("document_uploaded", document_id=document_id, filename=stored_name, file_size=len(data))
        return document_id

    def register_file(self, file_path: Path) -> Optional[int]:
        """Register a PDF that was placed in the upload directory directly.

        Returns:
            Document ID, or None if the file is not a valid PDF or is already known
        """
        file_path = Path(file_path)
        existing = self.db.get_document_by_path(str(file_path))
        if existing is not None:
            logger.debug("document_already_registered", document_id=existing["id"], path=str(file_path))
            return None

        try:
            data = file_path.read_bytes()
            self.validate_upload(file_path.name, data)
        except (OSError, ValidationError) as e:
            logger.warning("document_file_rejected", path=str(file_path), error=str(e))
            return None

        document_id = self.db.insert_document(
            filename=file_path.name,
            original_filename=file_path.name,
            file_path=str(file_path),
            file_size=len(data),
        )
        logger.info("document_registered", document_id=document_id, path=str(file_path))
        return document_id

    def get_document(self, document_id: int) -> Optional[Dict[str, Any]]:
        return self.db.get_document(document_id)

    def list_documents(self, status: Optional[str] = None) -> List[Dict[str, Any]]:
        return self.db.list_documents(status=status)

    async def delete_document(self, document_id: int, delete_file: bool = True) -> bool:
        """Delete a document's vectors, file and row.

        Args:
            document_id: Document to delete
            delete_file: Also remove the stored PDF

        Returns:
            True if the document existed

        Raises:
            ValidationError: If the document is being processed
            ChatSupportError: If vector deletion fails (the row is kept)
        """
        document = self.db.get_document(document_id)
        if document is None:
            return False

        if document["status"] == "processing":
            raise ValidationError("Document is being processed; try again later")

        if document["status"] == "processed" or document["processed_chunks"]:
            try:
                await self.index_client.delete_by_document(document_id)
            except ChatSupportError as e:
                logger.error("document_vector_delete_failed", document_id=document_id, error=e.message)
                raise

        if delete_file:
            Path(document["file_path"]).unlink(missing_ok=True)

        self.db.delete_document(document_id)
        logger.info("document_deleted", document_id=document_id)
        return True

    def _unique_name(self, name: str) -> str:
        if not (self.upload_dir / name).exists():
            return name
        stem, suffix = Path(name).stem, Path(name).suffix
        return f"{stem}-{uuid.uuid4().hex[:8]}{suffix}"
