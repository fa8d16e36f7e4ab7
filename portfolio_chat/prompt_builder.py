
from typing import Callable, List, Optional, Sequence

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from .models import ConversationMessage
from .response_parser import INQUIRY_MARKER
from .utils import num_tokens, prune_history

NO_INFORMATION = "I don't have that information"

DEFLECTION = (
    "I'm here to talk about {owner}'s professional background, skills, and "
    "experience. For anything personal, please reach out to {owner} directly."
)

EMPTY_CONTEXT = "(no relevant profile information was found for this question)"


ASSISTANT_PROMPT_TEMPLATE: str = """\
You are the AI assistant on {owner}'s professional portfolio website.
You answer visitors' questions about {owner}'s professional profile.

──────────────────────────────────────────────────────────────────────────────
**Scope**
• Only answer questions about {owner}'s professional life: skills, work
  experience, projects, education, availability and how to get in touch.
• If the visitor asks anything personal or unrelated to {owner}'s
  professional profile, reply with exactly this sentence and nothing else:
  "{deflection}"

──────────────────────────────────────────────────────────────────────────────
**Grounding**
Use ONLY the profile information between the markers below. It may be
incomplete. If it does not contain the answer, say "{no_information}"
(you may suggest a related topic that is covered). Never invent employers,
dates, technologies, numbers or links.

=== PROFILE INFORMATION ===
{context}
=== END PROFILE INFORMATION ===

──────────────────────────────────────────────────────────────────────────────
**Style**
• Speak about {owner} in the third person, warm and concise.
• Plain text or light Markdown; a few sentences is usually enough.

──────────────────────────────────────────────────────────────────────────────
**Connecting visitors**
If the visitor clearly wants {owner} to contact them (hiring, a project,
collaboration or consulting) and has shared at least an e-mail address in
this conversation, confirm that you will pass the message on and end your
reply with the token {marker} on its own. Never mention or explain the token.
If they want to connect but gave no e-mail address, ask for it instead.
"""


class PromptBuilder:
    """
    Builds the system + conversation messages for the portfolio assistant.
    """

    def __init__(
        self,
        owner_name: str = "the portfolio owner",
        history_limit: int = 10,
        max_history_tokens: int = 3_000,
        token_counter: Optional[Callable[[str], int]] = None,
    ) -> None:
        self.owner_name = owner_name
        self.history_limit = history_limit
        self.max_history_tokens = max_history_tokens
        self._count = token_counter or num_tokens

    def system_prompt(self, context: str) -> str:
        return ASSISTANT_PROMPT_TEMPLATE.format(
            owner=self.owner_name,
            deflection=self.deflection,
            no_information=NO_INFORMATION,
            context=context if context.strip() else EMPTY_CONTEXT,
            marker=INQUIRY_MARKER,
        )

    @property
    def deflection(self) -> str:
        return DEFLECTION.format(owner=self.owner_name)

    def build(
        self,
        user_msg: str,
        context: str,
        history: Sequence[ConversationMessage] = (),
    ) -> List[BaseMessage]:
        messages: List[BaseMessage] = [SystemMessage(content=self.system_prompt(context))]

        turns = [m for m in history if m.role != "system"]
        turns = turns[-self.history_limit:] if self.history_limit else []
        for turn in prune_history(turns, self.max_history_tokens, self._count):
            if turn.role == "user":
                messages.append(HumanMessage(content=turn.content))
            else:
                messages.append(AIMessage(content=turn.content))

        messages.append(HumanMessage(content=user_msg))
        return messages
