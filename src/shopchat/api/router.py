"""
FastAPI Router for the shop chat agent.

Endpoints:
- POST /chat: run a chat session (SSE when Accept is text/event-stream,
  otherwise a single JSON document)
- GET /chat: conversation history (?history=true) or an SSE session for
  EventSource clients
- GET /auth/callback: OAuth redirect target for customer authorization
- GET /health: liveness check
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError

from ..config import AppConfig, ErrorMessages
from ..domain.entities import SessionContext, deserialize_content, new_conversation_id
from ..exceptions import AuthorizationStateError, TokenExchangeError
from ..orchestrator import BufferedEventEmitter, ChatOrchestrator, StreamingEventEmitter
from ..orchestrator.event_streamer import STREAM_END
from ..security.oauth import CustomerAuthService
from .schemas import (
    MAX_MESSAGE_LENGTH,
    AuthCallbackResponse,
    ChatRequest,
    ChatResponse,
    HistoryMessage,
    HistoryResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["chat"])

# Seconds of silence before an SSE keep-alive comment
KEEP_ALIVE_SECONDS = 10.0

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",  # Disable Nginx buffering
}


# =============================================================================
# Dependencies
# =============================================================================


class ChatDependencies:
    """Container for chat dependencies.

    Injected at application startup.
    """

    orchestrator: Optional[ChatOrchestrator] = None
    auth_service: Optional[CustomerAuthService] = None
    config: Optional[AppConfig] = None


_deps = ChatDependencies()


def create_chat_dependencies(
    orchestrator: Optional[ChatOrchestrator],
    auth_service: Optional[CustomerAuthService] = None,
    config: Optional[AppConfig] = None,
) -> None:
    """Initialize chat dependencies.

    Call this at application startup.

    Args:
        orchestrator: The chat orchestrator
        auth_service: Customer authorization service for the OAuth callback
        config: Application configuration
    """
    _deps.orchestrator = orchestrator
    _deps.auth_service = auth_service
    _deps.config = config


def get_orchestrator() -> ChatOrchestrator:
    """Get the chat orchestrator dependency."""
    if not _deps.orchestrator:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Chat agent not initialized",
        )
    return _deps.orchestrator


def get_auth_service() -> CustomerAuthService:
    """Get the customer authorization service dependency."""
    if not _deps.auth_service:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Customer authorization not configured",
        )
    return _deps.auth_service


def get_app_config() -> AppConfig:
    """Get the application configuration (defaults if none was injected)."""
    if _deps.config is None:
        _deps.config = AppConfig()
    return _deps.config


# =============================================================================
# Helpers
# =============================================================================


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def _rejection(error: ValidationError, messages: ErrorMessages) -> str:
    """Client-facing error string for a request that failed validation."""
    for detail in error.errors():
        if detail["loc"][:1] != ("message",):
            continue
        if detail["type"] == "string_too_long":
            return messages.message_too_long
        return messages.missing_message
    return messages.invalid_request


def _wants_event_stream(request: Request) -> bool:
    return "text/event-stream" in request.headers.get("accept", "")


def _task_exception_handler(task: asyncio.Task) -> None:
    """Handle exceptions from background tasks.

    Ensures exceptions are logged and don't cause unhandled exception warnings.
    """
    try:
        exc = task.exception()
        if exc:
            logger.error(
                f"Background task {task.get_name()} failed: {exc}",
                exc_info=(type(exc), exc, exc.__traceback__),
            )
    except asyncio.CancelledError:
        pass  # Task was cancelled, not an error


def _build_context(
    request: Request,
    message: str,
    conversation_id: Optional[str],
    prompt_type: Optional[str],
    config: AppConfig,
) -> SessionContext:
    return SessionContext(
        conversation_id=conversation_id or new_conversation_id(),
        user_message=message,
        prompt_type=prompt_type or config.api.default_prompt_type,
        shop_id=request.headers.get("x-shopify-shop-id"),
        shop_domain=request.headers.get("origin", ""),
    )


def _stream_session(
    request: Request,
    context: SessionContext,
    orchestrator: ChatOrchestrator,
    config: AppConfig,
) -> StreamingResponse:
    """Run a session in the background and relay its events as SSE.

    A client disconnect detaches the emitter; the session itself keeps
    running so its messages are still persisted.
    """
    emitter = StreamingEventEmitter(config.error_messages)
    task = asyncio.create_task(
        orchestrator.run(context, emitter),
        name=f"chat-{context.conversation_id}",
    )
    task.add_done_callback(_task_exception_handler)

    async def event_generator():
        """Generate SSE frames from the emitter queue."""
        try:
            while True:
                if await request.is_disconnected():
                    logger.info(
                        f"Client disconnected from conversation {context.conversation_id}"
                    )
                    break

                try:
                    frame = await asyncio.wait_for(
                        emitter.queue.get(), timeout=KEEP_ALIVE_SECONDS
                    )
                except asyncio.TimeoutError:
                    yield ": keep-alive\n\n"
                    continue

                if frame is STREAM_END:
                    break
                yield frame
        finally:
            emitter.detach()

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


async def _buffered_session(
    context: SessionContext,
    orchestrator: ChatOrchestrator,
    config: AppConfig,
) -> JSONResponse:
    emitter = BufferedEventEmitter(config.error_messages)
    await orchestrator.run(context, emitter)
    result = emitter.get_result()

    response = ChatResponse(
        conversation_id=context.conversation_id,
        message=result.text,
        products=result.products,
        events=result.events,
        error=result.error,
    )
    return JSONResponse(
        status_code=500 if result.error else 200,
        content=response.model_dump(exclude_none=True),
    )


def _history_response(
    conversation_id: str, messages: list[Any]
) -> HistoryResponse:
    return HistoryResponse(
        conversation_id=conversation_id,
        messages=[
            HistoryMessage(
                role=message.role,
                content=[block.to_dict() for block in deserialize_content(message.content)],
                created_at=message.created_at,
            )
            for message in messages
        ],
    )


# =============================================================================
# Chat Endpoints
# =============================================================================


@router.post("/chat")
async def post_chat(
    request: Request,
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
    config: AppConfig = Depends(get_app_config),
):
    """Send a chat message.

    Streams Server-Sent Events when the client accepts text/event-stream,
    otherwise returns the buffered result of the whole session.
    """
    try:
        body = await request.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}

    try:
        chat_request = ChatRequest.model_validate(body)
    except ValidationError as e:
        logger.warning(f"Rejected chat request: {e}")
        return _error(status.HTTP_400_BAD_REQUEST, _rejection(e, config.error_messages))

    message = (chat_request.message or "").strip()
    if not message:
        return _error(status.HTTP_400_BAD_REQUEST, config.error_messages.missing_message)

    try:
        context = _build_context(
            request,
            message,
            chat_request.conversation_id,
            chat_request.prompt_type,
            config,
        )

        if _wants_event_stream(request):
            return _stream_session(request, context, orchestrator, config)

        return await _buffered_session(context, orchestrator, config)

    except Exception as e:
        logger.exception(f"Error in chat request: {e}")
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(e))


@router.get("/chat")
async def get_chat(
    request: Request,
    history: bool = Query(default=False),
    conversation_id: Optional[str] = Query(default=None),
    message: Optional[str] = Query(default=None),
    prompt_type: Optional[str] = Query(default=None),
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
    config: AppConfig = Depends(get_app_config),
):
    """Conversation history, or an SSE chat session for EventSource clients."""
    try:
        if history and conversation_id:
            messages = await orchestrator.get_conversation_history(conversation_id)
            return _history_response(conversation_id, messages)

        if not _wants_event_stream(request):
            return _error(status.HTTP_400_BAD_REQUEST, config.error_messages.api_unsupported)

        text = (message or "").strip()
        if not text:
            return _error(status.HTTP_400_BAD_REQUEST, config.error_messages.missing_message)
        if len(text) > MAX_MESSAGE_LENGTH:
            return _error(status.HTTP_400_BAD_REQUEST, config.error_messages.message_too_long)

        context = _build_context(request, text, conversation_id, prompt_type, config)
        return _stream_session(request, context, orchestrator, config)

    except Exception as e:
        logger.exception(f"Error in chat request: {e}")
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(e))


# =============================================================================
# Authorization Endpoints
# =============================================================================


@router.get("/auth/callback", response_model=AuthCallbackResponse)
async def auth_callback(
    code: Optional[str] = Query(default=None),
    state: Optional[str] = Query(default=None),
    auth_service: CustomerAuthService = Depends(get_auth_service),
):
    """Complete a customer authorization started by the chat agent."""
    if not code or not state:
        return _error(status.HTTP_400_BAD_REQUEST, "Missing authorization code or state")

    try:
        session = await auth_service.redeem_callback(code, state)
    except AuthorizationStateError as e:
        logger.warning(f"Rejected authorization callback: {e}")
        return _error(status.HTTP_400_BAD_REQUEST, e.message)
    except TokenExchangeError as e:
        logger.error(f"Token exchange failed: {e}")
        return _error(status.HTTP_502_BAD_GATEWAY, e.message)

    return AuthCallbackResponse(conversation_id=session.conversation_id)


@router.get("/health")
async def health() -> dict[str, str]:
    """Liveness check."""
    return {"status": "ok"}
