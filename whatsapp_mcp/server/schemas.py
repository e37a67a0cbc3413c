"""Request schemas for the WhatsApp MCP tools.

Pydantic models validate tool arguments after sanitization. Their JSON
schemas (by alias, so `chatId` / `includeMedia` keep their wire names) are
the input shapes published in `tools/list`.

Example:
    from whatsapp_mcp.server.schemas import ChatHistoryRequest

    # Valid request (wire names)
    request = ChatHistoryRequest(chatId="15551234567@c.us", limit=20)

    # Invalid request (will raise ValidationError)
    request = ChatHistoryRequest(chatId="", limit=0)
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

MAX_HISTORY_LIMIT = 1000

EMPTY_INPUT_SCHEMA: dict[str, Any] = {"type": "object", "properties": {}}


class SendMessageRequest(BaseModel):
    """Request schema for send_message."""

    to: str = Field(
        ...,
        min_length=1,
        description=(
            "The phone number or group ID to send message to "
            "(format: number@c.us or groupId@g.us)"
        ),
        examples=["15551234567@c.us"],
    )
    message: str = Field(..., min_length=1, description="The message content to send")

    model_config = ConfigDict(str_strip_whitespace=True)


class ChatHistoryRequest(BaseModel):
    """Request schema for get_chat_history.

    Constraints:
    - chatId: non-empty
    - limit: 1-1000 messages (default: 50)
    """

    chat_id: str = Field(
        ...,
        alias="chatId",
        min_length=1,
        description="The chat ID (phone number with @c.us or group ID with @g.us)",
    )
    limit: int = Field(
        default=50,
        ge=1,
        le=MAX_HISTORY_LIMIT,
        description="Maximum number of messages to retrieve (default: 50)",
    )
    include_media: bool = Field(
        default=False,
        alias="includeMedia",
        description=(
            "Whether to download and include media URLs "
            "(default: false, WARNING: can be slow for media-heavy chats)"
        ),
    )

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)


class SearchChatsRequest(BaseModel):
    """Request schema for search_chats."""

    query: str = Field(
        ..., min_length=1, description="Search query (name or phone number)"
    )

    model_config = ConfigDict(str_strip_whitespace=True)


class ConfirmationRequest(BaseModel):
    """Request schema for the confirmation-gated tools.

    Any string is accepted here; a value other than the exact literal is
    answered with guidance by the tool itself.
    """

    confirmation: str = Field(
        ..., description="Exact confirmation literal required by the tool"
    )


def input_schema(model: type[BaseModel] | None, confirmation: str | None = None) -> dict[str, Any]:
    """Build the published JSON schema for a request model.

    Args:
        model: Request model (None for no-input tools)
        confirmation: Literal to mention in the confirmation field description

    Returns:
        JSON schema dict
    """
    if model is None:
        return dict(EMPTY_INPUT_SCHEMA)

    schema = model.model_json_schema(by_alias=True)
    schema.pop("title", None)
    if confirmation is not None:
        schema["properties"]["confirmation"]["description"] = (
            f'Must be exactly "{confirmation}" to confirm'
        )
    return schema


__all__ = [
    "EMPTY_INPUT_SCHEMA",
    "MAX_HISTORY_LIMIT",
    "ChatHistoryRequest",
    "ConfirmationRequest",
    "SearchChatsRequest",
    "SendMessageRequest",
    "input_schema",
]
