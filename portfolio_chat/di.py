import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, Request
from langchain_openai import ChatOpenAI
from redis.asyncio import Redis

from .agents import AnswerGenerator
from .config import Settings
from .context_assembler import ContextAssembler
from .context_store import RedisContextStore, SessionStore
from .inquiry import InquiryExtractor
from .logging_config import configure_logging
from .notifier import InquiryNotifier, RedisNotificationLog, ResendClient
from .orchestrator import ChatOrchestrator
from .prompt_builder import PromptBuilder
from .query_rewriter import QueryRewriter
from .rate_limiter import SlidingWindowRateLimiter
from .retriever import Retriever, UpstashVectorIndex, VectorIndex

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app):
    settings = Settings()
    configure_logging(settings.log_level)

    redis = Redis.from_url(settings.redis_url, decode_responses=True)
    app.state.settings = settings
    app.state.redis = redis
    app.state.chat_limiter = SlidingWindowRateLimiter(
        settings.chat_rate_limit, settings.chat_rate_window_seconds
    )
    app.state.notify_limiter = SlidingWindowRateLimiter(
        settings.notify_rate_limit, settings.notify_rate_window_seconds
    )
    app.state.vector_index = None
    if settings.upstash_vector_url and settings.upstash_vector_token:
        app.state.vector_index = UpstashVectorIndex.from_credentials(
            settings.upstash_vector_url, settings.upstash_vector_token
        )
    else:
        logger.warning("UPSTASH_VECTOR_REST_URL/TOKEN not set; answers will have no profile context")

    logger.info("portfolio chat started (model=%s)", settings.openai_model)
    try:
        yield
    finally:
        await redis.aclose()


# --------------------------------------------------------------------------- #
# app state
# --------------------------------------------------------------------------- #
def get_settings(request: Request) -> Settings:
    return request.app.state.settings


async def get_redis(request: Request) -> Redis:
    return request.app.state.redis            # already set in lifespan()


def get_chat_limiter(request: Request) -> SlidingWindowRateLimiter:
    return request.app.state.chat_limiter


def get_notify_limiter(request: Request) -> SlidingWindowRateLimiter:
    return request.app.state.notify_limiter


def get_vector_index(request: Request) -> Optional[VectorIndex]:
    return request.app.state.vector_index


def client_key(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


# --------------------------------------------------------------------------- #
# services
# --------------------------------------------------------------------------- #
def session_store(
    redis: Redis = Depends(get_redis),
    settings: Settings = Depends(get_settings),
) -> SessionStore:
    return RedisContextStore(redis, ttl_seconds=settings.session_ttl_seconds)


def query_rewriter(settings: Settings = Depends(get_settings)) -> QueryRewriter:
    return QueryRewriter(
        ChatOpenAI(
            model=settings.effective_rewrite_model,
            temperature=settings.rewrite_temperature,
            max_tokens=settings.rewrite_max_tokens,
        )
    )


class _NoIndex:
    async def query(self, text: str, top_k: int):
        return []


def retriever(
    index: Optional[VectorIndex] = Depends(get_vector_index),
    settings: Settings = Depends(get_settings),
) -> Retriever:
    return Retriever(index or _NoIndex(), top_k=settings.top_k)


def prompt_builder(settings: Settings = Depends(get_settings)) -> PromptBuilder:
    return PromptBuilder(
        owner_name=settings.owner_name,
        history_limit=settings.history_limit,
        max_history_tokens=settings.max_history_tokens,
    )


def answer_generator(
    builder: PromptBuilder = Depends(prompt_builder),
    settings: Settings = Depends(get_settings),
) -> AnswerGenerator:
    llm = ChatOpenAI(
        model=settings.openai_model,
        temperature=settings.answer_temperature,
        max_tokens=settings.answer_max_tokens,
        streaming=True,
    )
    return AnswerGenerator(llm, builder)


def inquiry_notifier(
    redis: Redis = Depends(get_redis),
    limiter: SlidingWindowRateLimiter = Depends(get_notify_limiter),
    settings: Settings = Depends(get_settings),
) -> Optional[InquiryNotifier]:
    if not settings.resend_api_key:
        logger.debug("RESEND_API_KEY not set; inquiry notifications are disabled")
        return None
    return InquiryNotifier(
        client=ResendClient(settings.resend_api_key, settings.notification_sender),
        recipient=settings.notification_email,
        limiter=limiter,
        log=RedisNotificationLog(redis),
        llm=ChatOpenAI(model=settings.openai_model, temperature=0.5, max_tokens=500),
        extractor=InquiryExtractor(),
        owner_name=settings.owner_name,
    )


def orchestrator(
    store: SessionStore = Depends(session_store),
    rewriter: QueryRewriter = Depends(query_rewriter),
    retr: Retriever = Depends(retriever),
    generator: AnswerGenerator = Depends(answer_generator),
    notifier: Optional[InquiryNotifier] = Depends(inquiry_notifier),
    settings: Settings = Depends(get_settings),
) -> ChatOrchestrator:
    return ChatOrchestrator(
        store=store,
        rewriter=rewriter,
        retriever=retr,
        assembler=ContextAssembler(settings.chat_relevance_floor),
        generator=generator,
        notifier=notifier,
        history_limit=settings.history_limit,
    )
