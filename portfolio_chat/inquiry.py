"""Contact-intent extraction from free-text conversation.

This is a best-effort heuristic, not a parser: the first match of each
ordered rule wins and nothing is validated beyond the patterns themselves.
Callers must treat the result as a hint and substitute placeholders for
whatever could not be found.
"""
import re
from dataclasses import dataclass
from typing import List, Optional, Pattern, Sequence, Tuple

from .models import ConversationMessage, InquiryDetails

EMAIL_RE = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")

_NAME = r"([A-Z][a-zA-Z'-]+(?:\s+[A-Z][a-zA-Z'-]+)?)"


@dataclass(frozen=True)
class Rule:
    tag: str
    pattern: Pattern[str]


# Priority order matters: the first rule that matches decides.
NAME_RULES: Tuple[Rule, ...] = (
    Rule("im", re.compile(r"\b(?i:i['’]?m|i am)\s+" + _NAME)),
    Rule("my-name-is", re.compile(r"\b(?i:my name is|my name's)\s+" + _NAME)),
    Rule("x-here", re.compile(r"(?:^|[.!?,]\s*|\b(?i:hi|hello|hey)[,!]?\s+)" + _NAME + r"\s+(?i:here)\b")),
    Rule("this-is", re.compile(r"\b(?i:this is)\s+" + _NAME)),
)

CATEGORY_RULES: Tuple[Rule, ...] = (
    Rule("job-opportunity", re.compile(
        r"\b(job|jobs|hiring|hire|recruit\w*|position|role|full[- ]time|part[- ]time|employment|vacancy|opening)\b",
        re.IGNORECASE,
    )),
    Rule("freelance-project", re.compile(
        r"\b(freelanc\w*|contract\w*|gig|build|built|develop|quote|budget)\b",
        re.IGNORECASE,
    )),
    Rule("collaboration", re.compile(
        r"\b(collaborat\w*|partner\w*|team up|work together|co-?found\w*|open[- ]source)\b",
        re.IGNORECASE,
    )),
    Rule("consulting", re.compile(
        r"\b(consult\w*|advice|advise|advisory|audit|mentor\w*)\b",
        re.IGNORECASE,
    )),
)
DEFAULT_CATEGORY = "general"

REQUEST_RE = re.compile(
    r"\b(project|need|needs|want|wants|looking for|build|help|interested|hire|hiring|"
    r"opportunity|work with|app|website|idea)\b",
    re.IGNORECASE,
)
SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+|\n+")

EXCERPT_MESSAGES = 10
EXCERPT_MAX_CHARS = 2_000


def _first(rules: Sequence[Rule], texts: Sequence[str]) -> Optional[Tuple[str, str]]:
    for rule in rules:
        for text in texts:
            m = rule.pattern.search(text)
            if m:
                return rule.tag, (m.group(1) if m.groups() else m.group(0))
    return None


class InquiryExtractor:
    """
    Ordered rule pipeline:

    1. e-mail   - full conversation, first match
    2. name     - visitor text only, ``NAME_RULES`` in priority order
    3. category - visitor text only, ``CATEGORY_RULES`` in priority order
    4. summary  - visitor sentences with request keywords, else last three visitor turns
    """

    def extract(self, messages: Sequence[ConversationMessage]) -> InquiryDetails:
        all_text = "\n".join(m.content for m in messages)
        user_turns = [m.content for m in messages if m.role == "user"]
        matched: List[str] = []

        email = None
        m = EMAIL_RE.search(all_text)
        if m:
            email = m.group(0)
            matched.append("email")

        name = None
        hit = _first(NAME_RULES, user_turns)
        if hit:
            tag, name = hit
            matched.append(f"name:{tag}")

        inquiry_type = DEFAULT_CATEGORY
        user_text = "\n".join(user_turns)
        for rule in CATEGORY_RULES:
            if rule.pattern.search(user_text):
                inquiry_type = rule.tag
                matched.append(f"category:{rule.tag}")
                break

        return InquiryDetails(
            email=email,
            name=name,
            inquiry_type=inquiry_type,
            message=self.summarize(user_turns),
            conversation_excerpt=conversation_excerpt(messages),
            matched_rules=matched,
        )

    @staticmethod
    def summarize(user_turns: Sequence[str]) -> str:
        sentences = [
            s.strip()
            for turn in user_turns
            for s in SENTENCE_SPLIT_RE.split(turn)
            if s.strip() and REQUEST_RE.search(s)
        ]
        if sentences:
            return " ".join(sentences)
        return " ".join(t.strip() for t in user_turns[-3:])


def conversation_excerpt(
    messages: Sequence[ConversationMessage],
    limit: int = EXCERPT_MESSAGES,
    max_chars: int = EXCERPT_MAX_CHARS,
) -> str:
    lines = [
        f"{'Visitor' if m.role == 'user' else 'Assistant'}: {m.content}"
        for m in messages[-limit:]
        if m.role != "system"
    ]
    excerpt = "\n".join(lines)
    if len(excerpt) > max_chars:
        excerpt = excerpt[-max_chars:]
    return excerpt
