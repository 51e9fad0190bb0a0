"""Main Quart application for PDF Chat Support."""
import asyncio
import os
from typing import Optional

import structlog
from hypercorn.asyncio import serve
from hypercorn.config import Config as HypercornConfig
from pydantic import ValidationError as PydanticValidationError
from quart import Quart, current_app, jsonify, request
from werkzeug.exceptions import HTTPException

from pdfchat.chat import RATE_LIMITED_MESSAGE, ChatRequest, ChatStage
from pdfchat.config import Settings
from pdfchat.context import AppContext, build_context, configure_logging
from pdfchat.db import DOCUMENT_STATUSES
from pdfchat.errors import ChatSupportError, ConfigError, ValidationError
from pdfchat.rag.watcher import UploadWatcher

logger = structlog.get_logger()


def _ctx() -> AppContext:
    return current_app.config["PDFCHAT_CONTEXT"]


def _failure(message: str, status_code: int):
    return jsonify({"success": False, "message": message}), status_code


def create_app(context: Optional[AppContext] = None) -> Quart:
    """Create the Quart application.

    Args:
        context: Prebuilt application context (built from the environment if omitted)

    Returns:
        Configured Quart app
    """
    if context is None:
        settings = Settings.from_env()
        configure_logging(settings.log_level)
        context = build_context(settings)

    app = Quart(__name__)
    app.config["PDFCHAT_CONTEXT"] = context
    app.config["MAX_CONTENT_LENGTH"] = context.settings.max_file_size + 1024 * 1024

    watcher = UploadWatcher(
        upload_dir=context.settings.upload_dir,
        documents=context.documents,
        ingest_pipeline=context.ingest,
    )

    @app.before_serving
    async def start_watcher():
        if context.settings.watch_uploads:
            await watcher.start()

    @app.after_serving
    async def stop_watcher():
        watcher.stop()

    @app.route("/api/chat", methods=["POST"])
    async def chat():
        """Answer a chat message.

        Expects JSON body:
        {
            "message": "user message text",
            "session_id": "client session token",
            "conversation_id": 12  // optional
        }

        Returns the ChatResponse payload; 400 for rejected input, 429 when
        rate limited, 502 when an upstream service failed.
        """
        data = await request.get_json(silent=True) or {}

        # Only a proxy-set header identifies a user; the body is client-controlled
        user_header = _ctx().settings.user_id_header
        user_id = request.headers.get(user_header) if user_header else None

        try:
            chat_request = ChatRequest(
                message=str(data.get("message") or ""),
                session_id=str(data.get("session_id") or ""),
                conversation_id=data.get("conversation_id"),
                user_id=user_id or None,
                user_ip=request.remote_addr or "",
                user_agent=request.headers.get("User-Agent"),
            )
        except PydanticValidationError:
            return _failure("Invalid conversation ID", 400)

        response = await _ctx().chat_service.handle_message(chat_request)

        status_code = 200
        if not response.success:
            if response.stage == ChatStage.REJECTED:
                status_code = 429 if response.message == RATE_LIMITED_MESSAGE else 400
            else:
                status_code = 502

        return jsonify(response.to_payload()), status_code

    @app.route("/api/documents", methods=["POST"])
    async def upload_document():
        """Upload a PDF (multipart field 'file') and queue it for processing.

        Returns 202 when processing was queued, 201 when auto-processing is off.
        """
        files = await request.files
        upload = files.get("file")
        if upload is None:
            return _failure("No file uploaded", 400)

        document_id = _ctx().documents.register_upload(upload.filename or "", upload.read())
        document = _ctx().documents.get_document(document_id)

        if not _ctx().settings.auto_process_uploads:
            return jsonify({"success": True, "document": document}), 201

        app.add_background_task(_ctx().ingest.process_document, document_id)
        logger.info("document_processing_queued", document_id=document_id, force=False)
        return jsonify({"success": True, "document": document, "processing": "queued"}), 202

    @app.route("/api/documents", methods=["GET"])
    async def list_documents():
        status = request.args.get("status")
        if status and status not in DOCUMENT_STATUSES:
            return _failure(f"Unknown status: {status}", 400)
        return jsonify({"documents": _ctx().documents.list_documents(status=status)})

    @app.route("/api/documents/<int:document_id>", methods=["GET"])
    async def get_document(document_id: int):
        document = _ctx().documents.get_document(document_id)
        if document is None:
            return _failure("Document not found", 404)
        return jsonify({"document": document})

    @app.route("/api/documents/<int:document_id>", methods=["DELETE"])
    async def delete_document(document_id: int):
        deleted = await _ctx().documents.delete_document(document_id)
        if not deleted:
            return _failure("Document not found", 404)
        return "", 204

    @app.route("/api/documents/<int:document_id>/process", methods=["POST"])
    async def process_document(document_id: int):
        """Queue a document for processing and return immediately."""
        document = _ctx().documents.get_document(document_id)
        if document is None:
            return _failure("Document not found", 404)

        data = await request.get_json(silent=True) or {}
        force = bool(data.get("force", False))

        app.add_background_task(_ctx().ingest.process_document, document_id, force)
        logger.info("document_processing_queued", document_id=document_id, force=force)
        return jsonify({"success": True, "document_id": document_id, "status": "queued"}), 202

    @app.route("/api/conversations/<int:conversation_id>/messages", methods=["GET"])
    async def get_conversation_messages(conversation_id: int):
        conversations = _ctx().conversations
        if conversations.get(conversation_id) is None:
            return _failure("Conversation not found", 404)
        return jsonify({"messages": conversations.get_all_messages(conversation_id)})

    @app.route("/api/conversations/<int:conversation_id>/end", methods=["POST"])
    async def end_conversation(conversation_id: int):
        if not _ctx().conversations.end_conversation(conversation_id):
            return _failure("Conversation not found", 404)
        return jsonify({"success": True, "conversation_id": conversation_id, "status": "ended"})

    @app.route("/api/sessions/<session_id>/conversation", methods=["GET"])
    async def get_session_conversation(session_id: str):
        """Resume the conversation of a chat widget session."""
        conversations = _ctx().conversations
        conversation = conversations.get_by_session(session_id)
        if conversation is None:
            return _failure("Conversation not found", 404)
        return jsonify({
            "conversation": conversation,
            "messages": conversations.get_all_messages(conversation["id"]),
        })

    @app.route("/api/stats", methods=["GET"])
    async def stats():
        """Conversation, message and document counts plus recent conversations."""
        limit = request.args.get("recent", default=10, type=int)
        return jsonify(_ctx().db.get_stats(recent_limit=max(1, min(limit, 100))))

    @app.route("/health/ready")
    async def health_ready():
        """Readiness probe - check that the model provider and vector index are reachable."""
        checks = {
            "status": "healthy",
            "openai": False,
            "pinecone": False,
        }
        errors = {}

        try:
            models = await _ctx().completion_client.list_models()
            checks["openai"] = True
            if _ctx().settings.chat_model not in models:
                errors["models"] = f"Missing chat model: {_ctx().settings.chat_model}"
        except ChatSupportError as e:
            errors["openai"] = e.message

        try:
            stats = await _ctx().index_client.describe_index_stats()
            checks["pinecone"] = True
            checks["total_vectors"] = stats.get("totalVectorCount", 0)
        except ChatSupportError as e:
            errors["pinecone"] = e.message

        if errors:
            checks["status"] = "unhealthy"
            checks["errors"] = errors
            logger.warning("health_check_failed", **errors)

        return jsonify(checks), 200 if not errors else 503

    @app.route("/health/live")
    async def health_live():
        """Liveness probe - check if app is running."""
        return jsonify({"status": "alive"}), 200

    @app.errorhandler(ValidationError)
    async def validation_error(error: ValidationError):
        return _failure(error.message, 400)

    @app.errorhandler(ConfigError)
    async def config_error(error: ConfigError):
        logger.error("service_not_configured", error=error.message)
        return _failure(error.message, 503)

    @app.errorhandler(ChatSupportError)
    async def upstream_error(error: ChatSupportError):
        logger.error("upstream_request_failed", error=error.message, error_type=type(error).__name__)
        return _failure(error.message, 502)

    @app.errorhandler(404)
    async def not_found(error):
        return _failure("Not found", 404)

    @app.errorhandler(413)
    async def too_large(error):
        return _failure("Uploaded file is too large", 413)

    @app.errorhandler(Exception)
    async def internal_error(error):
        if isinstance(error, HTTPException):
            return error
        logger.error("internal_server_error", error=str(error), error_type=type(error).__name__)
        return _failure("Internal server error", 500)

    return app


def run() -> None:
    """Serve the app with hypercorn (console entry point)."""
    config = HypercornConfig()
    config.bind = [os.getenv("BIND", "0.0.0.0:5000")]
    asyncio.run(serve(create_app(), config))


if __name__ == "__main__":
    # For development - use `pdfchat-server` (hypercorn) in production
    create_app().run(host="0.0.0.0", port=5000, debug=True)
