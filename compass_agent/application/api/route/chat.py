"""Chat endpoints: streaming and non-streaming turns, history clearing, cancellation."""

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import StreamingResponse
import structlog

from compass_agent.application.api.rate_limit import RateLimitDecision, client_identifier
from compass_agent.application.api.schema.requests import (
    CancelRequestBody,
    CancelResponse,
    ChatRequestBody,
    ClearRequestBody,
    ClearResponse,
)
from compass_agent.domain.errors import InvalidRequest, RateLimitExceeded
from compass_agent.domain.models.persona import looks_like_session_id
from compass_agent.domain.orchestration.core.main_agent import ConversationDriver
from compass_agent.infrastructure.observability.logging import metrics

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/chat", tags=["chat"])

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def get_driver(request: Request) -> ConversationDriver:
    return request.app.state.container.driver


async def rate_limited(request: Request, response: Response) -> RateLimitDecision:
    """Count the request against the caller's window; 429 once it is used up"""

    client_id = client_identifier(request)
    decision = await request.app.state.rate_limiter.hit(client_id)
    if not decision.allowed:
        logger.warning("rate_limit_exceeded", client_id=client_id, retry_after=decision.retry_after)
        metrics.increment_counter("http.rate_limited")
        raise RateLimitExceeded(f"rate limit exceeded for {client_id}", headers=decision.headers())
    response.headers.update(decision.headers())
    return decision


@router.post("/stream")
async def stream_chat(
    body: ChatRequestBody,
    driver: ConversationDriver = Depends(get_driver),
    decision: RateLimitDecision = Depends(rate_limited)
) -> StreamingResponse:
    """
    Run a turn and stream it as server-sent events.

    Identity errors surface as typed JSON errors before the stream opens.
    """

    prepared = await driver.prepare_turn(body.to_turn_request())
    frames = driver.stream_turn(prepared)

    return StreamingResponse(
        driver.streaming_handler.encode_stream(frames),
        media_type="text/event-stream",
        headers={**SSE_HEADERS, **decision.headers()},
    )


@router.post("")
async def chat(
    body: ChatRequestBody,
    driver: ConversationDriver = Depends(get_driver),
    _: RateLimitDecision = Depends(rate_limited)
):
    """Run a turn and return the whole answer at once"""

    prepared = await driver.prepare_turn(body.to_turn_request())
    turn = await driver.streaming_handler.collect(driver.stream_turn(prepared))
    return turn.model_dump(mode="json", by_alias=True)


@router.post("/clear", response_model=ClearResponse)
async def clear_chat(
    body: ClearRequestBody,
    driver: ConversationDriver = Depends(get_driver),
    _: RateLimitDecision = Depends(rate_limited)
) -> ClearResponse:
    if not looks_like_session_id(body.session_id):
        raise InvalidRequest("Invalid session ID format")

    result = await driver.clear_history(body.session_id, body.user_id)
    return ClearResponse(
        success=True,
        messages_deleted=result.messages_deleted,
        sessions_deleted=result.sessions_deleted,
    )


@router.post("/cancel", response_model=CancelResponse)
async def cancel_chat(
    body: CancelRequestBody,
    driver: ConversationDriver = Depends(get_driver),
    _: RateLimitDecision = Depends(rate_limited)
) -> CancelResponse:
    if not looks_like_session_id(body.session_id):
        raise InvalidRequest("Invalid session ID format")

    return CancelResponse(success=True, cancelled=driver.cancel_turn(body.session_id, body.user_id))
