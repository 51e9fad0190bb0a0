"""File watcher for the upload directory.

PDFs copied into the upload directory are registered and processed; PDFs
removed from it have their vectors and document rows deleted.
"""
import asyncio
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional, Set

import structlog
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from pdfchat.documents import DocumentManager
from pdfchat.errors import ChatSupportError
from pdfchat.rag.ingest import IngestPipeline

logger = structlog.get_logger()


def _is_pdf(event: FileSystemEvent) -> bool:
    return not event.is_directory and str(event.src_path).lower().endswith(".pdf")


class PdfFileHandler(FileSystemEventHandler):
    """Handler for PDF file system events."""

    def __init__(
        self,
        documents: DocumentManager,
        ingest_pipeline: IngestPipeline,
        loop: asyncio.AbstractEventLoop,
        debounce_seconds: float = 2.0,
    ):
        """Initialize the file handler.

        Args:
            documents: Registry used to register and delete documents
            ingest_pipeline: Pipeline that processes new documents
            loop: Event loop the async work is scheduled on
            debounce_seconds: Quiet period before a new file is picked up (lets copies finish)
        """
        super().__init__()
        self.documents = documents
        self.ingest_pipeline = ingest_pipeline
        self.loop = loop
        self.debounce_seconds = debounce_seconds

        self._pending: Set[Path] = set()
        self._last_change_time: Optional[datetime] = None
        self._draining = False
        self._shutdown = False

    def on_created(self, event: FileSystemEvent):
        if _is_pdf(event):
            logger.info("upload_file_created", path=str(event.src_path))
            self._schedule_registration(Path(event.src_path))

    def on_modified(self, event: FileSystemEvent):
        # Large copies emit modify events; they only push the debounce back
        if _is_pdf(event) and Path(event.src_path) in self._pending:
            self._last_change_time = datetime.now()

    def on_moved(self, event: FileSystemEvent):
        if not event.is_directory and str(event.dest_path).lower().endswith(".pdf"):
            logger.info("upload_file_moved", path=str(event.dest_path))
            self._schedule_registration(Path(event.dest_path))

    def on_deleted(self, event: FileSystemEvent):
        if _is_pdf(event):
            logger.info("upload_file_deleted", path=str(event.src_path))
            asyncio.run_coroutine_threadsafe(self.handle_deleted(Path(event.src_path)), self.loop)

    def _schedule_registration(self, file_path: Path):
        self._pending.add(file_path)
        self._last_change_time = datetime.now()

        if not self._draining:
            self._draining = True
            asyncio.run_coroutine_threadsafe(self._debounced_process(), self.loop)

    async def _debounced_process(self):
        """Register pending files once no change has arrived for the debounce period."""
        try:
            while not self._shutdown:
                await asyncio.sleep(self.debounce_seconds)

                if self._last_change_time:
                    quiet_for = datetime.now() - self._last_change_time
                    if quiet_for < timedelta(seconds=self.debounce_seconds):
                        continue

                if self._pending:
                    paths = self._pending.copy()
                    self._pending.clear()
                    self._last_change_time = None

                    for file_path in sorted(paths):
                        await self.handle_created(file_path)
                break
        finally:
            self._draining = False

    async def handle_created(self, file_path: Path) -> Optional[int]:
        """Register and process a new PDF.

        Returns:
            Document ID, or None if the file was skipped
        """
        if not file_path.exists():
            logger.warning("upload_file_disappeared", path=str(file_path))
            return None

        document_id = self.documents.register_file(file_path)
        if document_id is None:
            return None

        await self.ingest_pipeline.process_document(document_id)
        return document_id

    async def handle_deleted(self, file_path: Path) -> bool:
        """Remove the document backed by a deleted file.

        Returns:
            True if a document was removed
        """
        document = self.documents.db.get_document_by_path(str(file_path))
        if document is None:
            logger.debug("no_document_for_file", path=str(file_path))
            return False

        try:
            return await self.documents.delete_document(document["id"], delete_file=False)
        except ChatSupportError as e:
            logger.error(
                "deletion_handling_failed",
                path=str(file_path),
                document_id=document["id"],
                error=e.message,
            )
            return False

    def shutdown(self):
        self._shutdown = True


class UploadWatcher:
    """Watcher for the upload directory."""

    def __init__(
        self,
        upload_dir: Path,
        documents: DocumentManager,
        ingest_pipeline: IngestPipeline,
        debounce_seconds: float = 2.0,
    ):
        self.upload_dir = Path(upload_dir)
        self.documents = documents
        self.ingest_pipeline = ingest_pipeline
        self.debounce_seconds = debounce_seconds

        self.event_handler: Optional[PdfFileHandler] = None
        self.observer: Optional[Observer] = None
        self._started = False

    async def start(self):
        """Start watching for file changes."""
        if self._started:
            logger.warning("watcher_already_started")
            return

        self.event_handler = PdfFileHandler(
            documents=self.documents,
            ingest_pipeline=self.ingest_pipeline,
            loop=asyncio.get_running_loop(),
            debounce_seconds=self.debounce_seconds,
        )

        self.upload_dir.mkdir(parents=True, exist_ok=True)
        self.observer = Observer()
        self.observer.schedule(self.event_handler, str(self.upload_dir), recursive=False)
        self.observer.start()
        self._started = True

        logger.info("upload_watcher_started", upload_dir=str(self.upload_dir))

    def stop(self):
        """Stop watching for file changes."""
        if not self._started:
            return

        if self.observer:
            self.observer.stop()
            self.observer.join(timeout=5.0)

        if self.event_handler:
            self.event_handler.shutdown()

        self._started = False
        logger.info("upload_watcher_stopped")
