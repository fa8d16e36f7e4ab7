from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

env_path = Path(__file__).resolve().parent.parent / ".env"


class Settings(BaseSettings):
    """
    Runtime configuration, read from the environment and the project ``.env``.

    Fields map to the upper-cased env var of the same name unless an alias
    says otherwise. Empty variables count as unset. The chat and search
    relevance floors are separate knobs; the chat path is more permissive
    than the generic search tool.
    """

    model_config = SettingsConfigDict(
        env_file=env_path,
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        extra="ignore",
        populate_by_name=True,
    )

    # language model
    openai_model: str = "gpt-4o-mini"
    answer_temperature: float = Field(0.7, ge=0.0, le=2.0)
    answer_max_tokens: int = Field(500, gt=0)
    rewrite_model: Optional[str] = None
    rewrite_temperature: float = Field(0.1, ge=0.0, le=2.0)
    rewrite_max_tokens: int = Field(50, gt=0)

    # collaborators
    redis_url: str = "redis://localhost:6379/0"
    session_ttl_seconds: int = Field(30 * 86_400, gt=0)
    upstash_vector_url: Optional[str] = Field(None, alias="UPSTASH_VECTOR_REST_URL")
    upstash_vector_token: Optional[str] = Field(None, alias="UPSTASH_VECTOR_REST_TOKEN")
    resend_api_key: Optional[str] = None
    notification_email: str = "owner@example.com"
    notification_sender: str = "Portfolio Assistant <onboarding@resend.dev>"
    owner_name: str = Field("the portfolio owner", alias="PROFILE_OWNER_NAME")

    # retrieval
    top_k: int = Field(5, gt=0, alias="RETRIEVAL_TOP_K")
    chat_relevance_floor: float = Field(0.6, ge=0.0, le=1.0)
    search_relevance_floor: float = Field(0.7, ge=0.0, le=1.0)
    search_limit: int = Field(10, gt=0)

    # conversation
    history_limit: int = Field(10, ge=0)
    max_history_tokens: int = Field(3_000, gt=0)

    # rate limits
    chat_rate_limit: int = Field(10, gt=0)
    chat_rate_window_seconds: int = Field(60, gt=0)
    notify_rate_limit: int = Field(3, gt=0)
    notify_rate_window_seconds: int = Field(3_600, gt=0)

    log_level: str = "INFO"

    @property
    def effective_rewrite_model(self) -> str:
        return self.rewrite_model or self.openai_model
