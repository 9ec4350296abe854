# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""
Message and snapshot schemas for session recall.

Defines Pydantic models for conversation messages and for the persisted
session snapshot. Field aliases carry the camelCase wire names used in
the JSON payload (``toolCallId``, ``distanceMetric``...); Python code uses
the snake_case attribute names.
"""

import json
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class MessageRole(str, Enum):
    """Roles a conversation message can carry."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class ToolCall(BaseModel):
    """A tool call requested by the assistant."""

    id: str = Field(..., description="Tool call identifier")
    name: str = Field(..., description="Name of the tool to invoke")
    arguments: dict[str, Any] = Field(default_factory=dict)


class Message(BaseModel):
    """A conversation message.

    Attributes:
        role: Who produced the message.
        content: Message text.
        tool_call_id: For tool results, the call this message answers.
        tool_calls: For assistant messages, tool calls requested.
    """

    model_config = ConfigDict(populate_by_name=True)

    role: MessageRole = Field(..., description="Message role")
    content: str = Field(default="", description="Message text")
    tool_call_id: Optional[str] = Field(default=None, alias="toolCallId")
    tool_calls: Optional[list[ToolCall]] = Field(default=None, alias="toolCalls")

    @field_validator("content", mode="before")
    @classmethod
    def null_content(cls, v: Any) -> Any:
        """Assistant messages that only carry tool calls may have null content."""
        return "" if v is None else v

    def to_wire(self) -> dict[str, Any]:
        """Serialize with wire aliases, omitting absent optional fields."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def create_message(
    role: MessageRole | str,
    content: str,
    tool_call_id: Optional[str] = None,
    tool_calls: Optional[list[ToolCall]] = None,
) -> Message:
    """Create a properly formatted message."""
    return Message(
        role=MessageRole(role),
        content=content,
        tool_call_id=tool_call_id,
        tool_calls=tool_calls,
    )


class DocumentRecord(BaseModel):
    """A stored document as it appears in a snapshot."""

    id: str
    content: str
    vector: list[float]
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("metadata", mode="before")
    @classmethod
    def default_metadata(cls, v: Any) -> Any:
        """Older snapshots store absent metadata as null."""
        return {} if v is None else v


class SessionSnapshot(BaseModel):
    """Persisted form of one session: vector index export plus history.

    Wire format::

        {"dimensions": 3, "distanceMetric": "cosine",
         "documents": [{"id", "content", "vector", "metadata"}],
         "messages": [{"role", "content", "toolCallId"?, "toolCalls"?}]}
    """

    model_config = ConfigDict(populate_by_name=True)

    dimensions: int = Field(..., gt=0)
    distance_metric: str = Field(..., alias="distanceMetric")
    documents: list[DocumentRecord] = Field(default_factory=list)
    messages: list[Message] = Field(default_factory=list)

    def to_json(self) -> str:
        """Serialize to the JSON wire format."""
        # Documents keep None metadata values; only messages drop absent fields
        return json.dumps(
            {
                "dimensions": self.dimensions,
                "distanceMetric": self.distance_metric,
                "documents": [doc.model_dump(mode="json") for doc in self.documents],
                "messages": [msg.to_wire() for msg in self.messages],
            }
        )
