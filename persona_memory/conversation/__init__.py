"""Conversation log exports."""
from __future__ import annotations

from ..config import ConversationConfig, RuntimeConfig
from .log import (
    ConversationLog,
    ConversationMessage,
    InMemoryConversationLog,
    SessionInfo,
    SQLiteConversationLog,
)


def _resolve_config(config: RuntimeConfig | ConversationConfig | None) -> ConversationConfig:
    if isinstance(config, RuntimeConfig):
        return config.conversation
    if isinstance(config, ConversationConfig):
        return config
    return ConversationConfig()


def get_conversation_log(config: RuntimeConfig | ConversationConfig | None = None) -> ConversationLog:
    conversation_config = _resolve_config(config)
    if conversation_config.backend == "memory":
        return InMemoryConversationLog()
    if conversation_config.backend == "sqlite":
        return SQLiteConversationLog(conversation_config.db_path)
    raise ValueError(f"Unknown conversation log backend '{conversation_config.backend}'")


__all__ = [
    "ConversationLog",
    "ConversationMessage",
    "InMemoryConversationLog",
    "SQLiteConversationLog",
    "SessionInfo",
    "get_conversation_log",
]
