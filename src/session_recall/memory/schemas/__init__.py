# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Message and snapshot schemas."""

from session_recall.memory.schemas.message_types import (
    DocumentRecord,
    Message,
    MessageRole,
    SessionSnapshot,
    ToolCall,
    create_message,
)

__all__ = [
    "DocumentRecord",
    "Message",
    "MessageRole",
    "SessionSnapshot",
    "ToolCall",
    "create_message",
]
