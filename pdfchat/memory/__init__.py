"""Conversation state: sessions, message history and rate limits."""
from pdfchat.memory.manager import ConversationManager
from pdfchat.memory.rate_limit import RateLimiter, rate_limit_key

__all__ = ["ConversationManager", "RateLimiter", "rate_limit_key"]
