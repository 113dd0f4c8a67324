"""Chat endpoint schemas."""

from pydantic import BaseModel, Field


class ChatMessageRequest(BaseModel):
    session_id: str = Field(..., min_length=1, max_length=255)
    message: str = Field(..., min_length=1, max_length=4000)
    provider_id: str = Field(..., min_length=1)
    fallback_provider_id: str | None = None
    stream: bool = False


class TokenUsageSchema(BaseModel):
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None


class ChatMessageResponse(BaseModel):
    success: bool
    message: str
    session_id: str
    provider: str | None = None
    model_used: str | None = None
    response_time_ms: float | None = None
    token_usage: TokenUsageSchema | None = None
    fallback_from: str | None = None
