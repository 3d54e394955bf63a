"""Data models and schemas for the NIM proxy."""

from typing import Dict, List, Any, Optional
from pydantic import BaseModel


class ChatCompletionRequest(BaseModel):
    """Request model for chat completions.

    Messages are kept as plain dicts so they reach the upstream verbatim.
    """
    model: Any = None
    messages: List[Dict[str, Any]]
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    stream: Optional[bool] = False


class Message(BaseModel):
    """Chat message model."""
    role: str = "assistant"
    content: str = ""


class Choice(BaseModel):
    """Choice model for chat completions."""
    index: int = 0
    message: Message
    finish_reason: Optional[str] = None


class Usage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ChatCompletionResponse(BaseModel):
    """Response model for chat completions."""
    id: str
    object: str = "chat.completion"
    created: int
    model: str
    choices: List[Choice]
    usage: Usage = Usage()


class ModelCard(BaseModel):
    id: str
    object: str = "model"
    created: int
    owned_by: str = "nvidia-nim-proxy"


class ModelList(BaseModel):
    object: str = "list"
    data: List[ModelCard]


class ErrorDetail(BaseModel):
    message: str
    type: str = "invalid_request_error"
    code: int = 500


class ErrorResponse(BaseModel):
    """Error envelope returned for every failed request."""
    error: ErrorDetail
