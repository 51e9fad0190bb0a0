"""Retrieval-augmented answering for chat messages.

A request moves through RECEIVED → RATE_CHECKED → EMBEDDED → RETRIEVED →
FILTERED → PROMPTED → COMPLETED, or stops early as REJECTED (validation or
rate limit) or FAILED (an upstream call failed). Callers always get a
ChatResponse back; nothing is raised out of handle_message().
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

import structlog
from pydantic import BaseModel, Field

from pdfchat.errors import ChatSupportError, RateLimitError, ValidationError
from pdfchat.llm_client import CompletionClient
from pdfchat.memory import ConversationManager, RateLimiter, rate_limit_key
from pdfchat.rag.retriever import RetrievedPassage, Retriever

logger = structlog.get_logger()

EMBED_FAILED_MESSAGE = "Failed to process your question"
SEARCH_FAILED_MESSAGE = "Failed to search documents"
GENERATION_FAILED_MESSAGE = "Failed to generate response"
RATE_LIMITED_MESSAGE = "Too many requests. Please wait before sending another message."
GENERIC_FAILURE_MESSAGE = "Sorry, something went wrong. Please try again."


class ChatStage(str, Enum):
    RECEIVED = "received"
    RATE_CHECKED = "rate_checked"
    EMBEDDED = "embedded"
    RETRIEVED = "retrieved"
    FILTERED = "filtered"
    PROMPTED = "prompted"
    COMPLETED = "completed"
    REJECTED = "rejected"
    FAILED = "failed"


class ChatRequest(BaseModel):
    """Incoming chat message."""

    message: str = ""
    session_id: str = ""
    conversation_id: Optional[int] = None
    user_id: Optional[str] = None
    user_ip: str = ""
    user_agent: Optional[str] = None


class ChatResponse(BaseModel):
    """Outcome of a chat message; `message` carries the error on failure."""

    success: bool
    conversation_id: Optional[int] = None
    ai_response: Optional[str] = None
    sources: List[Dict[str, Any]] = Field(default_factory=list)
    timestamp: Optional[str] = None
    user_message_id: Optional[int] = None
    ai_message_id: Optional[int] = None
    message: Optional[str] = None
    stage: ChatStage = ChatStage.COMPLETED

    def to_payload(self) -> Dict[str, Any]:
        """Serialize for the HTTP layer, leaving out unset fields."""
        return self.model_dump(mode="json", exclude_none=True, exclude={"stage"})


def build_system_prompt(passages: List[RetrievedPassage]) -> str:
    """Build the system prompt for the grounded or no-context case."""
    prompt = (
        "You are a helpful customer support assistant for a website. "
        "Your role is to answer questions based on the provided documentation.\n\n"
    )

    if passages:
        prompt += "Use the following context from the uploaded documents to answer questions:\n\n"
        prompt += "Based on the following information from the uploaded documents:\n\n"
        for passage in passages:
            prompt += f"From {passage.filename} (Page {passage.page}):\n"
            prompt += f"{passage.text}\n\n"
        prompt += (
            "Instructions:\n"
            "1. Answer questions based primarily on the provided context\n"
            "2. If the answer isn't in the context, politely say you don't have that "
            "information in the available documents\n"
            "3. Be helpful, concise, and professional\n"
            "4. When referencing information, mention which document and page it comes from\n"
            "5. If asked about topics not covered in the documents, suggest contacting "
            "support for more help\n"
        )
    else:
        prompt += (
            "I don't have any specific document context for this conversation. "
            "Please let the user know that you don't have access to relevant documentation "
            "for their question and suggest they contact support directly. "
            "Do not answer from general knowledge.\n"
        )

    return prompt


class ChatService:
    """Answers chat messages from the indexed documents."""

    def __init__(
        self,
        conversations: ConversationManager,
        rate_limiter: RateLimiter,
        retriever: Retriever,
        completion_client: CompletionClient,
        max_response_tokens: int = 500,
        temperature: float = 0.7,
    ):
        self.conversations = conversations
        self.rate_limiter = rate_limiter
        self.retriever = retriever
        self.completion_client = completion_client
        self.max_response_tokens = max_response_tokens
        self.temperature = temperature

    async def handle_message(self, request: ChatRequest) -> ChatResponse:
        """Answer one chat message.

        Args:
            request: The user's message and session details

        Returns:
            ChatResponse (success=False with a user-facing message on any failure)
        """
        log = logger.bind(session_id=request.session_id, conversation_id=request.conversation_id)
        log.info("chat_request_received", stage=ChatStage.RECEIVED.value, message_length=len(request.message))

        try:
            return await self._answer(request, log)
        except Exception as e:
            log.error("chat_request_crashed", error=str(e), error_type=type(e).__name__)
            return ChatResponse(success=False, message=GENERIC_FAILURE_MESSAGE, stage=ChatStage.FAILED)

    async def _answer(self, request: ChatRequest, log) -> ChatResponse:
        message = request.message.strip()

        try:
            conversation = self._validate(request, message)
            self._check_rate_limit(request)
        except (ValidationError, RateLimitError) as e:
            log.info("chat_request_rejected", stage=ChatStage.REJECTED.value, reason=e.message)
            return ChatResponse(success=False, message=e.message, stage=ChatStage.REJECTED)
        log.debug("chat_request_admitted", stage=ChatStage.RATE_CHECKED.value)

        if conversation is None:
            conversation = self.conversations.get_or_create(
                request.session_id,
                user_id=request.user_id,
                user_ip=request.user_ip,
                user_agent=request.user_agent,
            )
        conversation_id = conversation["id"]
        log = log.bind(conversation_id=conversation_id)

        # Loaded before storing the new message so it only holds prior turns
        history = self.conversations.format_history(conversation_id)
        user_message_id = self.conversations.add_message(conversation_id, "user", message)

        def failed(text: str) -> ChatResponse:
            return ChatResponse(
                success=False,
                conversation_id=conversation_id,
                user_message_id=user_message_id,
                message=text,
                stage=ChatStage.FAILED,
            )

        try:
            query_embedding = await self.retriever.embed_query(message)
        except ChatSupportError as e:
            log.error("query_embedding_failed", stage=ChatStage.FAILED.value, error=e.message)
            return failed(EMBED_FAILED_MESSAGE)
        log.debug("query_embedded", stage=ChatStage.EMBEDDED.value, dimension=len(query_embedding))

        try:
            retrieval = await self.retriever.search(query_embedding)
        except ChatSupportError as e:
            log.error("document_search_failed", stage=ChatStage.FAILED.value, error=e.message)
            return failed(SEARCH_FAILED_MESSAGE)
        log.debug(
            "passages_filtered",
            stage=ChatStage.FILTERED.value,
            passages=len(retrieval.passages),
            sources=len(retrieval.sources),
        )

        messages = [{"role": "system", "content": build_system_prompt(retrieval.passages)}]
        messages.extend(history)
        messages.append({"role": "user", "content": message})

        log.info(
            "chat_prompt_built",
            stage=ChatStage.PROMPTED.value,
            has_context=retrieval.has_context,
            history_messages=len(history),
        )

        try:
            completion = await self.completion_client.chat(
                messages,
                max_tokens=self.max_response_tokens,
                temperature=self.temperature,
            )
        except ChatSupportError as e:
            log.error("completion_failed", stage=ChatStage.FAILED.value, error=e.message)
            return failed(GENERATION_FAILED_MESSAGE)

        ai_message_id = self.conversations.add_message(
            conversation_id,
            "assistant",
            completion.content,
            retrieval.sources,
        )

        log.info(
            "chat_response_sent",
            stage=ChatStage.COMPLETED.value,
            response_length=len(completion.content),
            sources=len(retrieval.sources),
            usage=completion.usage,
        )

        return ChatResponse(
            success=True,
            conversation_id=conversation_id,
            ai_response=completion.content,
            sources=retrieval.sources,
            timestamp=datetime.now(timezone.utc).isoformat(),
            user_message_id=user_message_id,
            ai_message_id=ai_message_id,
        )

    def _validate(self, request: ChatRequest, message: str) -> Optional[Dict[str, Any]]:
        """Check the request; returns the referenced conversation if one was given."""
        if not message:
            raise ValidationError("Message cannot be empty")

        if not request.session_id:
            raise ValidationError("Session ID is required")

        if request.conversation_id is None:
            return None

        conversation = self.conversations.get(request.conversation_id)
        if conversation is None or conversation["session_id"] != request.session_id:
            raise ValidationError("Conversation not found")
        return conversation

    def _check_rate_limit(self, request: ChatRequest) -> None:
        decision = self.rate_limiter.check(rate_limit_key(request.user_id, request.user_ip))
        if not decision.allowed:
            raise RateLimitError(RATE_LIMITED_MESSAGE)
