"""Chat endpoint — the widget's send-message entry point."""

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, StreamingResponse
from slowapi.util import get_remote_address
from sqlalchemy.exc import SQLAlchemyError

from app.core.config import settings
from app.core.dependencies import (
    GatewayServices,
    get_context_builder,
    get_provider_source,
    get_services,
    get_turn_sink,
)
from app.core.exceptions import NotFoundError, TooManyRequestsError
from app.core.metrics import GATEWAY_RATE_LIMITED
from app.gateway.context import ContextBuilder, TurnSink
from app.gateway.streaming import error_frame
from app.gateway.types import UniformResult
from app.schemas.chat import ChatMessageRequest, ChatMessageResponse, TokenUsageSchema
from app.services.chat_store import SqlProviderConfigSource

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["chat"])

END_USER_ERROR = "Sorry, I encountered an error. Please try again later."

_STREAM_HEADERS = {"Cache-Control": "no-cache", "X-Accel-Buffering": "no"}


async def _persist(sink: TurnSink, body: ChatMessageRequest, result: UniformResult, address: str) -> None:
    try:
        await sink.record_exchange(body.session_id, body.message, result, client_address=address)
    except SQLAlchemyError:
        logger.exception("Failed to persist chat exchange for session %s", body.session_id)


@router.post("/message", response_model=None)
async def send_message(
    request: Request,
    body: ChatMessageRequest,
    services: GatewayServices = Depends(get_services),
    providers: SqlProviderConfigSource = Depends(get_provider_source),
    context_builder: ContextBuilder = Depends(get_context_builder),
    sink: TurnSink = Depends(get_turn_sink),
):
    address = get_remote_address(request)
    decision = await services.rate_limiter.hit(address, body.session_id)
    if not decision.allowed:
        GATEWAY_RATE_LIMITED.inc()
        raise TooManyRequestsError(decision.retry_after)
    rate_headers = {"X-RateLimit-Limit": str(decision.limit), "X-RateLimit-Remaining": str(decision.remaining)}

    config = await providers.get(body.provider_id)
    if config is None:
        raise NotFoundError("AI provider not found")

    fallback_type = fallback_config = None
    if body.fallback_provider_id:
        fallback_config = await providers.get(body.fallback_provider_id)
        if fallback_config is None:
            raise NotFoundError("Fallback AI provider not found")
        fallback_type = fallback_config.provider_type

    context = await context_builder.build(body.session_id, config.context_window or settings.context_max_turns)

    if body.stream:

        async def on_complete(result: UniformResult) -> None:
            await _persist(sink, body, result, address)

        frames = await services.gateway.process(
            config.provider_type,
            body.message,
            config,
            stream=True,
            context=context,
            fallback_provider_type=fallback_type,
            fallback_config=fallback_config,
            is_disconnected=request.is_disconnected,
            on_complete=on_complete,
        )

        async def end_user_frames():
            async for frame in frames:
                # vendor detail stays in the logs
                yield error_frame(END_USER_ERROR) if frame.startswith('data: {"error"') else frame

        return StreamingResponse(
            end_user_frames(), media_type="text/event-stream", headers={**_STREAM_HEADERS, **rate_headers}
        )

    result = await services.gateway.process(
        config.provider_type,
        body.message,
        config,
        context=context,
        fallback_provider_type=fallback_type,
        fallback_config=fallback_config,
    )
    await _persist(sink, body, result, address)

    if not result.success:
        payload = ChatMessageResponse(success=False, message=END_USER_ERROR, session_id=body.session_id)
        return JSONResponse(status_code=500, content=payload.model_dump(), headers=rate_headers)

    payload = ChatMessageResponse(
        success=True,
        message=result.content or "",
        session_id=body.session_id,
        provider=result.provider,
        model_used=result.model_used,
        response_time_ms=round(result.response_time_ms, 2),
        token_usage=TokenUsageSchema(**result.token_usage.to_dict()),
        fallback_from=result.fallback_from,
    )
    return JSONResponse(content=payload.model_dump(), headers=rate_headers)
