
import json
import logging
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import Settings
from .context_assembler import ContextAssembler
from .context_store import SessionStore
from .di import (
    client_key,
    get_chat_limiter,
    get_settings,
    inquiry_notifier,
    lifespan,
    orchestrator,
    retriever,
    session_store,
)
from .errors import NotificationError, RateLimitExceeded
from .models import (
    ChatRequest,
    HistoryMessage,
    HistoryResponse,
    InquirySubmission,
    NotifyRequest,
    NotifyResponse,
    SearchResponse,
    SearchResult,
    SessionRequest,
    SessionResponse,
)
from .notifier import InquiryNotifier
from .orchestrator import ChatOrchestrator
from .rate_limiter import SlidingWindowRateLimiter
from .retriever import Retriever

logger = logging.getLogger(__name__)

DONE_FRAME = "data: [DONE]\n\n"

app = FastAPI(title="Portfolio chat", lifespan=lifespan)


# --------------------------------------------------------------------------- #
# error responses: always {"error": ...}
# --------------------------------------------------------------------------- #
@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = f"{field}: {first.get('msg')}" if field else str(first.get("msg"))
    else:
        message = "Invalid request"
    return JSONResponse(status_code=400, content={"error": message})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)}, headers=exc.headers)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return JSONResponse(
        status_code=429,
        content={"error": str(exc)},
        headers={"Retry-After": str(exc.retry_after)} if exc.retry_after else None,
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# --------------------------------------------------------------------------- #
# chat
# --------------------------------------------------------------------------- #
def sse_frame(event: Dict[str, Any]) -> str:
    return f"data: {json.dumps(event)}\n\n"


async def sse_stream(events: AsyncIterator[Dict[str, Any]]) -> AsyncIterator[str]:
    """Frame pipeline events for the browser; an error event ends the stream without [DONE]."""
    async for event in events:
        yield sse_frame(event)
        if "error" in event:
            return
    yield DONE_FRAME


@app.post("/chat")
async def chat_endpoint(
    req: ChatRequest,
    request: Request,
    orch: ChatOrchestrator = Depends(orchestrator),
    limiter: SlidingWindowRateLimiter = Depends(get_chat_limiter),
):
    key = client_key(request)
    if not await limiter.admit(key):
        raise RateLimitExceeded(
            "Too many requests. Please wait a moment before trying again.",
            retry_after=await limiter.retry_after(key),
        )

    session_id = await orch.open_session(req.session_id)
    return StreamingResponse(
        sse_stream(orch.stream_reply(req.message, session_id)),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Session-Id": session_id,
        },
    )


@app.post("/chat/session", response_model=SessionResponse, response_model_by_alias=True)
async def open_session_endpoint(
    req: Optional[SessionRequest] = None,
    store: SessionStore = Depends(session_store),
):
    try:
        session = await store.get_or_create_session(req.session_id if req else None)
    except Exception:  # noqa: BLE001
        logger.exception("session error")
        raise HTTPException(500, "Failed to manage session")
    return SessionResponse(session_id=session.session_id, created_at=session.created_at)


@app.get("/chat/session", response_model=HistoryResponse, response_model_exclude_none=True)
async def history_endpoint(
    session_id: Optional[str] = Query(None, alias="sessionId"),
    store: SessionStore = Depends(session_store),
):
    if not session_id:
        raise HTTPException(400, "Session ID required")
    try:
        messages = await store.load_messages(session_id)
    except Exception:  # noqa: BLE001
        logger.exception("get history error for session %s", session_id)
        raise HTTPException(500, "Failed to get chat history")
    return HistoryResponse(
        messages=[
            HistoryMessage(
                id=m.id,
                content=m.content,
                role=m.role,
                timestamp=m.created_at,
                metadata=m.metadata,
            )
            for m in messages
        ]
    )


# --------------------------------------------------------------------------- #
# notifications
# --------------------------------------------------------------------------- #
@app.post("/notify", response_model=NotifyResponse)
async def notify_endpoint(
    req: NotifyRequest,
    notifier: Optional[InquiryNotifier] = Depends(inquiry_notifier),
):
    if notifier is None:
        raise HTTPException(500, "Notifications are not configured")
    try:
        record = await notifier.submit(InquirySubmission(**req.model_dump()))
    except NotificationError:
        raise HTTPException(500, "Failed to send notification")
    return NotifyResponse(success=True, email_id=record.provider_message_id)


# --------------------------------------------------------------------------- #
# generic profile search
# --------------------------------------------------------------------------- #
@app.get("/search", response_model=SearchResponse)
async def search_endpoint(
    query: str = Query(..., min_length=1, max_length=1000),
    limit: Optional[int] = Query(None, ge=1, le=50),
    min_score: Optional[float] = Query(None, ge=0.0, le=1.0),
    retr: Retriever = Depends(retriever),
    settings: Settings = Depends(get_settings),
):
    floor = settings.search_relevance_floor if min_score is None else min_score
    passages = await retr.retrieve(query, top_k=limit or settings.search_limit)
    selected = ContextAssembler(floor).select(passages)
    return SearchResponse(
        results=[SearchResult(id=p.id, score=p.score, content=text) for p, text in selected]
    )


@app.get("/health")
async def health():
    return {"status": "ok"}
