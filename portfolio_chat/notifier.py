
import html
import logging
from typing import Any, Dict, Optional, Protocol, Sequence

import httpx
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage
from pydantic import BaseModel
from redis.asyncio import Redis

from .errors import NotificationError, RateLimitExceeded
from .inquiry import EMAIL_RE, InquiryExtractor
from .models import ConversationMessage, InquirySubmission, NotificationRecord
from .rate_limiter import SlidingWindowRateLimiter
from .response_parser import message_text

logger = logging.getLogger(__name__)

NAME_PLACEHOLDER = "Not provided"
EMAIL_PLACEHOLDER = "not-provided"

APOLOGY = (
    "I'm sorry, I couldn't pass your message along just now. "
    "Please use the contact details on this page to get in touch directly."
)


# --------------------------------------------------------------------------- #
# e-mail provider
# --------------------------------------------------------------------------- #
class EmailResult(BaseModel):
    ok: bool                                # True if HTTP 2xx
    status: int                             # HTTP status code (0 = network failure)
    id: Optional[str] = None                # provider message id
    error: Optional[str] = None             # short reason
    raw: Optional[Dict[str, Any]] = None    # full server payload


class ResendClient:
    """
    Minimal Resend e-mail client. Always returns an ``EmailResult``;
    HTTP and network failures are reported, not raised.
    """

    BASE_URL = "https://api.resend.com"

    def __init__(
        self,
        api_key: Optional[str],
        sender: str,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 10.0,
    ) -> None:
        if not api_key:
            raise ValueError(
                "No Resend API key found ─ set RESEND_API_KEY in your environment "
                "or pass api_key='…' to ResendClient()."
            )
        self.api_key = api_key
        self.sender = sender
        self._transport = transport
        self._timeout = timeout

    async def send_email(
        self,
        to: str,
        subject: str,
        html_body: str,
        reply_to: Optional[str] = None,
    ) -> EmailResult:
        payload: Dict[str, Any] = {
            "from": self.sender,
            "to": [to],
            "subject": subject,
            "html": html_body,
        }
        if reply_to:
            payload["reply_to"] = reply_to

        headers = {"Authorization": f"Bearer {self.api_key}"}
        async with httpx.AsyncClient(
            base_url=self.BASE_URL, transport=self._transport, timeout=self._timeout
        ) as client:
            try:
                resp = await client.post("/emails", json=payload, headers=headers)
            except httpx.RequestError as exc:
                return EmailResult(ok=False, status=0, error=f"Network error: {exc}")

        status = resp.status_code
        try:
            body = resp.json()
        except ValueError:
            body = {"raw_text": resp.text or "<empty>"}
        if not isinstance(body, dict):
            body = {"raw": body}

        if 200 <= status < 300:
            return EmailResult(ok=True, status=status, id=body.get("id"), raw=body)

        error_msg = body.get("message") or body.get("error") or resp.reason_phrase
        return EmailResult(ok=False, status=status, error=str(error_msg), raw=body)


# --------------------------------------------------------------------------- #
# notification log
# --------------------------------------------------------------------------- #
class NotificationLog(Protocol):
    async def record(self, record: NotificationRecord) -> None: ...


class RedisNotificationLog:
    def __init__(self, redis: Redis, key: str = "chat:notifications") -> None:
        self.redis = redis
        self.key = key

    async def record(self, record: NotificationRecord) -> None:
        await self.redis.rpush(self.key, record.model_dump_json())


# --------------------------------------------------------------------------- #
# notifier
# --------------------------------------------------------------------------- #
SUMMARY_PROMPT = """\
You write short internal notes for {owner} about visitors who contacted the
AI assistant on their portfolio website. Summarise the inquiry in plain text
with these parts: who got in touch, what kind of inquiry it is, the key
points of their request, and a suggested next step with its priority.
Be concise and factual; do not invent details that are not in the input.
"""

EMAIL_TEMPLATE = """\
<!DOCTYPE html>
<html>
<body style="font-family: -apple-system, 'Segoe UI', Roboto, Arial, sans-serif; color: #1a1a1a;">
  <h1 style="font-size: 22px;">New inquiry via your portfolio assistant</h1>
  <table style="font-size: 14px;">
    <tr><td><strong>Name</strong></td><td>{name}</td></tr>
    <tr><td><strong>Email</strong></td><td>{email}</td></tr>
    <tr><td><strong>Inquiry type</strong></td><td>{inquiry_type}</td></tr>
    <tr><td><strong>Session</strong></td><td>{session_id}</td></tr>
  </table>
  <h2 style="font-size: 14px; text-transform: uppercase;">Message</h2>
  <div style="white-space: pre-wrap;">{message}</div>
  {summary_section}
  {context_section}
</body>
</html>
"""


class InquiryNotifier:
    """
    Sends the owner an e-mail about a visitor inquiry and records it.

    Submissions are rate limited per visitor e-mail. The optional model is
    only used to write a summary for the e-mail; if it fails the e-mail is
    sent without one.
    """

    def __init__(
        self,
        client: ResendClient,
        recipient: str,
        limiter: SlidingWindowRateLimiter,
        log: Optional[NotificationLog] = None,
        llm: Optional[BaseChatModel] = None,
        extractor: Optional[InquiryExtractor] = None,
        owner_name: str = "the portfolio owner",
    ) -> None:
        self._client = client
        self._recipient = recipient
        self._limiter = limiter
        self._log = log
        self._llm = llm
        self._extractor = extractor or InquiryExtractor()
        self._owner = owner_name

    async def submit(self, submission: InquirySubmission) -> NotificationRecord:
        """
        Raises
        ------
        RateLimitExceeded
            Too many notifications for this visitor e-mail in the window.
        NotificationError
            The e-mail provider rejected the message or was unreachable.
        """
        key = submission.visitor_email.strip().lower()
        if not await self._limiter.admit(key):
            raise RateLimitExceeded(
                "Too many notification requests. Please wait before sending another inquiry.",
                retry_after=await self._limiter.retry_after(key),
            )

        inquiry_type = submission.inquiry_type or "general"
        summary = await self._summarize(submission)
        subject = (
            f"Work inquiry from {submission.visitor_name or submission.visitor_email}"
            f" - {inquiry_type.replace('-', ' ')}"
        )
        reply_to = submission.visitor_email if EMAIL_RE.fullmatch(submission.visitor_email) else None

        result = await self._client.send_email(
            to=self._recipient,
            subject=subject,
            html_body=render_email(submission, summary),
            reply_to=reply_to,
        )
        if not result.ok:
            logger.error("notification e-mail failed (status=%s): %s", result.status, result.error)
            raise NotificationError(result.error or "e-mail provider error")

        record = NotificationRecord(
            visitor_email=submission.visitor_email,
            visitor_name=submission.visitor_name,
            inquiry_type=inquiry_type,
            message=submission.message,
            conversation_excerpt=submission.conversation_context,
            session_id=submission.session_id,
            provider_message_id=result.id,
        )
        logger.info("notification sent (id=%s, type=%s)", result.id, inquiry_type)

        if self._log is not None:
            try:
                await self._log.record(record)
            except Exception:  # noqa: BLE001
                logger.exception("failed to log notification %s", result.id)
        return record

    async def notify_from_conversation(
        self,
        messages: Sequence[ConversationMessage],
        session_id: Optional[str] = None,
    ) -> Optional[str]:
        """
        Extract contact details from ``messages`` and submit them.

        Returns ``None`` on success, otherwise an apology meant to be shown
        to the visitor in the chat.
        """
        details = self._extractor.extract(messages)
        logger.info("inquiry extracted (rules=%s)", details.matched_rules)
        submission = InquirySubmission(
            visitor_email=details.email or EMAIL_PLACEHOLDER,
            visitor_name=details.name or NAME_PLACEHOLDER,
            inquiry_type=details.inquiry_type,
            message=details.message or "(no message)",
            conversation_context=details.conversation_excerpt,
            session_id=session_id,
        )
        try:
            await self.submit(submission)
        except RateLimitExceeded:
            logger.warning("inquiry notification rate limited for session %s", session_id)
            return APOLOGY
        except Exception:  # noqa: BLE001
            logger.exception("inquiry notification failed for session %s", session_id)
            return APOLOGY
        return None

    async def _summarize(self, submission: InquirySubmission) -> Optional[str]:
        if self._llm is None:
            return None
        details = (
            f"Visitor email: {submission.visitor_email}\n"
            f"Visitor name: {submission.visitor_name or NAME_PLACEHOLDER}\n"
            f"Inquiry type: {submission.inquiry_type or 'general'}\n"
            f"Message: {submission.message}\n"
        )
        if submission.conversation_context:
            details += f"\nConversation context:\n{submission.conversation_context}"
        try:
            reply = await self._llm.ainvoke([
                SystemMessage(content=SUMMARY_PROMPT.format(owner=self._owner)),
                HumanMessage(content=details),
            ])
        except Exception as exc:  # noqa: BLE001
            logger.warning("inquiry summary failed, sending without it: %s", exc)
            return None
        return message_text(reply).strip() or None


def render_email(submission: InquirySubmission, summary: Optional[str]) -> str:
    summary_section = ""
    if summary:
        summary_section = (
            '<h2 style="font-size: 14px; text-transform: uppercase;">AI summary</h2>'
            f'<div style="white-space: pre-wrap;">{html.escape(summary)}</div>'
        )
    context_section = ""
    if submission.conversation_context:
        context_section = (
            '<h2 style="font-size: 14px; text-transform: uppercase;">Conversation</h2>'
            f'<pre style="font-size: 12px; white-space: pre-wrap;">'
            f"{html.escape(submission.conversation_context)}</pre>"
        )
    return EMAIL_TEMPLATE.format(
        name=html.escape(submission.visitor_name or NAME_PLACEHOLDER),
        email=html.escape(submission.visitor_email),
        inquiry_type=html.escape((submission.inquiry_type or "general").replace("-", " ")),
        session_id=html.escape(submission.session_id or "-"),
        message=html.escape(submission.message),
        summary_section=summary_section,
        context_section=context_section,
    )
