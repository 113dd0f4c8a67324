"""Result Normalizer — post-processes UniformResults.

Applies final normalization after the vendor adapter returns:
  - Fills total_tokens when the vendor reported only the two halves
  - Trims surrounding whitespace from generated content
  - Turns a blank successful reply into a response-format failure
  - Defaults finish_reason on successful replies
"""

from __future__ import annotations

from app.gateway.errors import ResponseFormatError
from app.gateway.types import UniformResult

EMPTY_REPLY_MESSAGE = "Provider returned an empty response"


def normalize_result(result: UniformResult) -> UniformResult:
    """Apply normalization to a result.

    This is idempotent — can be called multiple times safely.
    """
    usage = result.token_usage
    if usage.total_tokens is None and usage.prompt_tokens is not None and usage.completion_tokens is not None:
        usage.total_tokens = usage.prompt_tokens + usage.completion_tokens

    if not result.success:
        return result

    result.content = (result.content or "").strip()
    if not result.content:
        failed = UniformResult.failure(
            result.provider,
            ResponseFormatError(EMPTY_REPLY_MESSAGE),
            model_used=result.model_used,
            response_time_ms=result.response_time_ms,
        )
        failed.token_usage = usage
        failed.fallback_from = result.fallback_from
        return failed

    if not result.finish_reason:
        result.finish_reason = "stop"

    return result
